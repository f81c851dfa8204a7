from __future__ import annotations

import logging
from typing import Any, Dict

from ..composer import compose_stage
from ..lib.command import StageKind
from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)


class InstallKernelLoaderStep:
    step_id = "40_install_kernel_loader"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        # Fetched and built by cargo itself; nothing is staged locally.
        ctx.runner.run(compose_stage(cfg, StageKind.LOADER_TOOL_INSTALL))
        ctx.runner.run(compose_stage(cfg, StageKind.KERNEL_LOADER_INSTALL))
        logger.info("Kernel loader (rev %s) installed into %s", cfg.settings.loader_rev, cfg.install_prefix)
        return state
