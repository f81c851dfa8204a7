from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

from ..errors import BuildFailureError, SourceUnavailableError
from .command import BuildStage, Runner, StageKind

logger = logging.getLogger(__name__)


CLONE_ATTEMPTS = 3


@dataclass(frozen=True)
class LocalSource:
    """A caller-owned source tree. Never fetched, never removed."""

    path: Path


@dataclass(frozen=True)
class RemoteSource:
    """A git repository cloned into a staging directory owned by the installer."""

    name: str
    url: str
    staging_dir: Path
    branch: Optional[str] = None
    revision: Optional[str] = None
    shallow: bool = True


SourceSpec = Union[LocalSource, RemoteSource]


@dataclass(frozen=True)
class AcquisitionResult:
    path: Path
    fresh_clone: bool


def source_dir(spec: SourceSpec) -> Path:
    if isinstance(spec, LocalSource):
        return spec.path
    return spec.staging_dir


def clone_stage(spec: RemoteSource) -> BuildStage:
    args = [
        "clone",
        spec.url,
        str(spec.staging_dir),
        "--config",
        "advice.detachedHead=false",
    ]
    # A commit id cannot go through --branch, so pinned revisions get a full clone.
    if spec.revision is None:
        if spec.shallow:
            args += ["--depth", "1"]
        if spec.branch:
            args += ["--branch", spec.branch]
    return BuildStage(kind=StageKind.SOURCE_CLONE, tool="git", args=tuple(args))


def checkout_stage(spec: RemoteSource) -> BuildStage:
    assert spec.revision is not None
    return BuildStage(
        kind=StageKind.SOURCE_CHECKOUT,
        tool="git",
        args=("checkout", "--detach", spec.revision),
        working_dir=spec.staging_dir,
    )


def remove_staging_dir(path: Path, *, dry_run: bool = False) -> None:
    if dry_run:
        logger.info("Would remove %s", path)
        return
    try:
        shutil.rmtree(path)
        logger.info("Removed stale staging dir %s", path)
    except FileNotFoundError:
        pass


def _clone_with_retry(spec: RemoteSource, runner: Runner) -> None:
    stage = clone_stage(spec)
    for attempt in range(1, CLONE_ATTEMPTS + 1):
        if runner.run(stage, check=False).ok:
            return
        if attempt < CLONE_ATTEMPTS:
            logger.warning(
                "%s git clone failed. Retrying... (attempt %d/%d)",
                spec.name,
                attempt,
                CLONE_ATTEMPTS,
            )
    raise SourceUnavailableError(
        f"Could not clone {spec.name} after {CLONE_ATTEMPTS} attempts",
        hint="Check network access to the repository and the requested branch.",
        context={"url": spec.url, "branch": spec.branch or "", "staging_dir": str(spec.staging_dir)},
    )


def acquire_source(
    spec: SourceSpec,
    runner: Runner,
    *,
    force_refetch: bool = False,
    post_clone: Sequence[BuildStage] = (),
    dry_run: bool = False,
) -> AcquisitionResult:
    """Make sure a usable source tree exists and return where it is.

    Remote sources are reused when their staging dir already exists, unless
    ``force_refetch`` is set. ``post_clone`` stages only run after a fresh
    clone; a failure there is a SourceUnavailableError of its own.
    """

    if isinstance(spec, LocalSource):
        logger.info("Using local source %s", spec.path)
        return AcquisitionResult(path=spec.path, fresh_clone=False)

    if spec.staging_dir.exists() and not force_refetch:
        logger.info("Reusing %s at %s (pass --force to refetch)", spec.name, spec.staging_dir)
        return AcquisitionResult(path=spec.staging_dir, fresh_clone=False)

    remove_staging_dir(spec.staging_dir, dry_run=dry_run)
    if not dry_run:
        spec.staging_dir.parent.mkdir(parents=True, exist_ok=True)
    _clone_with_retry(spec, runner)

    stages = list(post_clone)
    if spec.revision is not None:
        stages.insert(0, checkout_stage(spec))

    for stage in stages:
        try:
            runner.run(stage)
        except BuildFailureError as e:
            raise SourceUnavailableError(
                f"Post-clone step {stage.kind.value} failed for {spec.name}",
                hint="The fresh clone is left in place; rerun with --force to start over.",
                context={"command": e.context.get("command", ""), "returncode": str(e.returncode)},
            ) from e

    return AcquisitionResult(path=spec.staging_dir, fresh_clone=True)
