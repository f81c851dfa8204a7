from __future__ import annotations

import logging
from typing import Any, Dict

from ..composer import compose_stage
from ..lib.command import StageKind
from ..lib.source import acquire_source
from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)

BUILD_SEQUENCE = (
    StageKind.KERNEL_CONFIGURE,
    StageKind.KERNEL_COMPILE,
    StageKind.KERNEL_INSTALL,
)


class BuildSeL4KernelStep:
    """Configure, build and install the C kernel and libsel4 into the prefix."""

    step_id = "30_build_sel4_kernel"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        result = acquire_source(
            cfg.sel4_source,
            ctx.runner,
            force_refetch=cfg.force_refetch,
            dry_run=ctx.dry_run,
        )
        decisions = state.setdefault("execution", {}).setdefault("decisions", {})
        decisions["sel4_source"] = {"path": str(result.path), "fresh_clone": result.fresh_clone}
        decisions["sel4_flavor"] = "upstream" if cfg.baseline else "rel4"

        for kind in BUILD_SEQUENCE:
            ctx.runner.run(compose_stage(cfg, kind))

        logger.info("seL4 kernel installed into %s", cfg.install_prefix)
        return state
