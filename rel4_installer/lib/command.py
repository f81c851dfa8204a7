from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Protocol, Sequence

from ..errors import BuildFailureError, ProcessSpawnError

logger = logging.getLogger(__name__)


class StageKind(str, Enum):
    SOURCE_CLONE = "source_clone"
    SOURCE_CHECKOUT = "source_checkout"
    KERNEL_PIN_FIXUP = "kernel_pin_fixup"
    KERNEL_BUILD = "kernel_build"
    KERNEL_CONFIGURE = "kernel_configure"
    KERNEL_COMPILE = "kernel_compile"
    KERNEL_INSTALL = "kernel_install"
    LOADER_TOOL_INSTALL = "loader_tool_install"
    KERNEL_LOADER_INSTALL = "kernel_loader_install"


@dataclass(frozen=True)
class BuildStage:
    """One external tool invocation, produced once and run once."""

    kind: StageKind
    tool: str
    args: tuple[str, ...]
    working_dir: Path | None = None
    env_overrides: Mapping[str, str] = field(default_factory=dict)
    env_unset: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.tool, *self.args]


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def stage_env(
    stage: BuildStage,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Inherited environment minus ``env_unset``, plus ``env_overrides``."""

    env = dict(os.environ if base is None else base)
    for name in stage.env_unset:
        env.pop(name, None)
    env.update(stage.env_overrides)
    return env


def run_cmd(
    stage: BuildStage,
    *,
    check: bool = True,
    dry_run: bool = False,
) -> CmdResult:
    """Run a build stage with consistent logging.

    - Always logs the command, its working directory and env changes.
    - stdout/stderr are inherited so tool output shows live.
    - dry_run logs but does not execute.
    """

    argv_list = stage.argv
    logger.info("CMD %s", _fmt_argv(argv_list))
    if stage.working_dir is not None:
        logger.debug("  cwd=%s", stage.working_dir)
    for name in stage.env_unset:
        logger.debug("  unset %s", name)
    for name, value in stage.env_overrides.items():
        logger.debug("  env %s=%s", name, value)

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0)

    try:
        p = subprocess.run(
            argv_list,
            cwd=str(stage.working_dir) if stage.working_dir is not None else None,
            env=stage_env(stage),
        )
    except OSError as e:
        raise ProcessSpawnError(
            f"Could not start {stage.tool}: {e}",
            stage=stage.kind.value,
            argv=argv_list,
            hint=f"Is {stage.tool} installed and on PATH?",
        ) from e

    if check and p.returncode != 0:
        raise BuildFailureError(
            f"Command failed ({p.returncode}) during {stage.kind.value}",
            stage=stage.kind.value,
            argv=argv_list,
            returncode=p.returncode,
        )

    return CmdResult(argv=argv_list, returncode=p.returncode)


class Runner(Protocol):
    def run(self, stage: BuildStage, *, check: bool = True) -> CmdResult:
        ...


class CommandRunner:
    """Executes build stages; the single gateway to external tools."""

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def run(self, stage: BuildStage, *, check: bool = True) -> CmdResult:
        return run_cmd(stage, check=check, dry_run=self.dry_run)
