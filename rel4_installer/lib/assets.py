from __future__ import annotations

import logging
import shutil
from pathlib import Path

from ..errors import ArtifactInstallError, ArtifactMissingError

logger = logging.getLogger(__name__)


def install_artifact(src: str | Path, dst: str | Path, *, dry_run: bool = False) -> Path:
    """Copy a single build output to its install location, overwriting.

    A missing ``src`` means the build reported success without producing the
    file, which is reported as ArtifactMissingError rather than a build
    failure.
    """

    s = Path(src)
    d = Path(dst)

    if dry_run:
        logger.info("Would install %s -> %s", str(s), str(d))
        return d

    if not s.is_file():
        raise ArtifactMissingError(
            f"Build finished but no artifact at {s}",
            hint="The kernel build script may have changed its output location.",
            context={"expected": str(s), "destination": str(d)},
        )

    try:
        d.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(s, d)
    except OSError as e:
        raise ArtifactInstallError(
            f"Could not install {s.name} to {d}: {e.strerror or e}",
            hint="Check that the install prefix is writable (see --sel4-prefix).",
            context={"source": str(s), "destination": str(d)},
        ) from e
    logger.info("Installed %s -> %s", str(s), str(d))
    return d
