"""reL4 development installer.

Fetches, configures and builds the reL4 kernel, libseL4 and the seL4 kernel
loader, then installs them into a prefix.

Core design goals:
- One sequential pipeline, first failure aborts
- Idempotent fetches (existing staging dirs are reused unless forced)
- Bounded retry for clones only
- Pure command composition, testable without spawning tools
- Centralized logging
"""

__all__ = []
