from __future__ import annotations

import logging
from typing import Any, Dict

from ..composer import compose_stage
from ..lib.command import StageKind
from ..lib.source import RemoteSource, acquire_source
from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)


class BuildRel4KernelStep:
    step_id = "10_build_rel4_kernel"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        if cfg.baseline:
            logger.info("seL4 baseline %s selected; skipping reL4 kernel build", cfg.baseline_revision)
            return state

        # The dependency pin only applies to a tree we cloned ourselves.
        post_clone = []
        if isinstance(cfg.kernel_source, RemoteSource):
            post_clone.append(compose_stage(cfg, StageKind.KERNEL_PIN_FIXUP))

        result = acquire_source(
            cfg.kernel_source,
            ctx.runner,
            force_refetch=cfg.force_refetch,
            post_clone=post_clone,
            dry_run=ctx.dry_run,
        )
        decisions = state.setdefault("execution", {}).setdefault("decisions", {})
        decisions["kernel_source"] = {"path": str(result.path), "fresh_clone": result.fresh_clone}

        ctx.runner.run(compose_stage(cfg, StageKind.KERNEL_BUILD))

        logger.info(
            "reL4 kernel built (%s mode, platform=%s)",
            "binary" if cfg.binary_mode else "lib",
            cfg.platform.value,
        )
        return state
