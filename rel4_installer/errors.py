"""Typed installer errors.

Every failure aborts the pipeline. The CLI maps each error to a process exit
code via ``InstallerError.exit_code``.
"""

from __future__ import annotations

import shlex
from enum import Enum
from typing import Mapping, Optional, Sequence


class ErrorCode(str, Enum):
    CONFIG_VALIDATION = "E_CONFIG_VALIDATION"
    SOURCE_UNAVAILABLE = "E_SOURCE_UNAVAILABLE"
    BUILD_FAILURE = "E_BUILD_FAILURE"
    ARTIFACT_MISSING = "E_ARTIFACT_MISSING"
    ARTIFACT_INSTALL = "E_ARTIFACT_INSTALL"
    PROCESS_SPAWN = "E_PROCESS_SPAWN"


class InstallerError(Exception):
    """Base error carrying a stable code, an optional hint and context."""

    code: ErrorCode = ErrorCode.BUILD_FAILURE
    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for k, v in self.context.items():
            if v:
                parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code.value,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ConfigValidationError(InstallerError):
    code = ErrorCode.CONFIG_VALIDATION
    exit_code = 2


class SourceUnavailableError(InstallerError):
    code = ErrorCode.SOURCE_UNAVAILABLE


class ArtifactMissingError(InstallerError):
    code = ErrorCode.ARTIFACT_MISSING


class ArtifactInstallError(InstallerError):
    """The artifact exists but could not be copied into the prefix."""

    code = ErrorCode.ARTIFACT_INSTALL


class _StageError(InstallerError):
    def __init__(
        self,
        message: str,
        *,
        stage: str,
        argv: Sequence[str],
        hint: Optional[str] = None,
    ) -> None:
        self.stage = stage
        self.argv = list(argv)
        super().__init__(
            message,
            hint=hint,
            context={"stage": stage, "command": " ".join(shlex.quote(a) for a in self.argv)},
        )


class BuildFailureError(_StageError):
    """An external command exited non-zero."""

    code = ErrorCode.BUILD_FAILURE

    def __init__(self, message: str, *, stage: str, argv: Sequence[str], returncode: int) -> None:
        super().__init__(message, stage=stage, argv=argv)
        self.returncode = returncode
        self.context["returncode"] = str(returncode)

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        # Signals come back as negative return codes.
        return self.returncode if self.returncode > 0 else 1


class ProcessSpawnError(_StageError):
    """The external tool could not be started at all."""

    code = ErrorCode.PROCESS_SPAWN
