from __future__ import annotations

import tempfile
from dataclasses import dataclass, field


def _default_staging_root() -> str:
    return tempfile.gettempdir()


@dataclass(frozen=True)
class Paths:
    install_prefix: str = "/workspace/.seL4"
    staging_root: str = field(default_factory=_default_staging_root)
    log_default: str = "logs/rel4-installer.log"
    state_default: str = "logs/rel4-installer-state.json"


PATHS = Paths()

# Removed from the environment of every `rustup run <toolchain>` command.
TOOLCHAIN_SELECTION_VARS = ("RUSTUP_TOOLCHAIN", "CARGO")
