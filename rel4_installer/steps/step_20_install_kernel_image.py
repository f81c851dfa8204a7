from __future__ import annotations

import logging
from typing import Any, Dict

from ..composer import installed_kernel_path, kernel_artifact_path
from ..lib.assets import install_artifact
from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)


class InstallKernelImageStep:
    step_id = "20_install_kernel_image"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        if cfg.baseline or not cfg.binary_mode:
            logger.info("No standalone kernel image in this mode; nothing to install")
            return state

        dst = install_artifact(kernel_artifact_path(cfg), installed_kernel_path(cfg), dry_run=ctx.dry_run)
        state.setdefault("execution", {}).setdefault("decisions", {})["kernel_image"] = str(dst)
        return state
