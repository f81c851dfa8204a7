from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .build_config import BuildConfig
from .errors import ConfigValidationError
from .lib.command import Runner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallCtx:
    cfg: BuildConfig
    runner: Runner

    @property
    def dry_run(self) -> bool:
        return self.cfg.dry_run


class Step(Protocol):
    """A single pipeline step. Safe to re-run."""

    step_id: str

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]


def run_pipeline(
    *,
    ctx: InstallCtx,
    state: Dict[str, Any],
    steps: Sequence[Step],
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
) -> PipelineResult:
    """Run steps in order; the first exception aborts the rest."""

    known = [s.step_id for s in steps]
    for wanted in (start_at, stop_after):
        if wanted is not None and wanted not in known:
            raise ConfigValidationError(f"Unknown step_id {wanted!r} (expected one of: {', '.join(known)})")
    if start_at is not None and stop_after is not None and known.index(stop_after) < known.index(start_at):
        raise ConfigValidationError(f"stop_after {stop_after!r} comes before start_at {start_at!r}")

    ran: List[str] = []
    started = start_at is None

    for step in steps:
        if not started:
            if step.step_id == start_at:
                started = True
            else:
                continue

        state.setdefault("execution", {})["current_step"] = step.step_id
        logger.info("Running step %s", step.step_id)
        state = step.run(ctx, state)
        ran.append(step.step_id)

        if stop_after is not None and step.step_id == stop_after:
            logger.info("Stopping after %s", stop_after)
            break

    state.setdefault("execution", {})["current_step"] = None
    return PipelineResult(state=state, ran_steps=ran)
