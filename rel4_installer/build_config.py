from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigValidationError
from .lib.env import PATHS
from .lib.source import LocalSource, RemoteSource, SourceSpec

logger = logging.getLogger(__name__)


DEFAULT_REPOS = {
    "rel4_integral": "https://github.com/reL4team2/rel4-integral.git",
    "sel4_c_impl": "https://github.com/reL4team2/seL4_c_impl.git",
    "sel4_upstream": "https://github.com/seL4/seL4.git",
    "rust_sel4": "https://github.com/reL4team2/rust-sel4.git",
}

DEFAULT_TOOLCHAINS = {
    "kernel": "nightly-2024-02-01",
    "loader": "nightly-2024-08-01",
}

DEFAULT_LOADER_REV = "642b58d807c5e5fc22f0c15d1467d6bec328faa9"

# Staging directory names under the staging root.
REL4_KERNEL_DIR = "rel4_kernel"
SEL4_KERNEL_DIR = "seL4_kernel"
SEL4_BASELINE_DIR = "seL4_baseline"
DEFAULT_BRANCH = "master"


class Platform(str, Enum):
    SPIKE = "spike"
    QEMU_ARM_VIRT = "qemu-arm-virt"


SUPPORTED_PLATFORMS = tuple(p.value for p in Platform)


_UNSAFE_DIR_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def staging_dir_name(base: str, ref: Optional[str]) -> str:
    """Staging directory for one requested ref, so different refs never share a tree.

    ``None`` (the default branch) keeps the bare name.
    """

    if not ref:
        return base
    return f"{base}-{_UNSAFE_DIR_CHARS.sub('_', ref)}"


@dataclass(frozen=True)
class InstallerSettings:
    """Overridable repository URLs, toolchains and paths (YAML-backed)."""

    raw: Dict[str, Any] = field(default_factory=dict)

    def repo(self, key: str) -> str:
        return str(((self.raw.get("repos") or {}).get(key)) or DEFAULT_REPOS[key])

    def toolchain(self, key: str) -> str:
        return str(((self.raw.get("toolchains") or {}).get(key)) or DEFAULT_TOOLCHAINS[key])

    @property
    def loader_rev(self) -> str:
        return str(self.raw.get("loader_rev") or DEFAULT_LOADER_REV)

    @property
    def staging_root(self) -> str:
        return str(self.raw.get("staging_root") or PATHS.staging_root)


def load_settings(path: Optional[str]) -> InstallerSettings:
    if path is None:
        return InstallerSettings()

    p = Path(path)
    if not p.exists():
        raise ConfigValidationError(f"Settings file not found: {path}")

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigValidationError("settings file must be YAML", context={"path": path})

    try:
        import yaml  # type: ignore
    except Exception as e:
        raise RuntimeError("PyYAML is required to read the settings file") from e

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigValidationError("settings file must contain a mapping/object", context={"path": path})

    for key in ("repos", "toolchains"):
        section = raw.get(key)
        if section is not None and not isinstance(section, dict):
            raise ConfigValidationError(f"'{key}' must be a mapping", context={"path": path})
        for name, value in (section or {}).items():
            if not isinstance(value, str):
                raise ConfigValidationError(f"'{key}.{name}' must be a string", context={"path": path})
    for key in ("staging_root", "loader_rev"):
        if raw.get(key) is not None and not isinstance(raw[key], str):
            raise ConfigValidationError(f"'{key}' must be a string", context={"path": path})

    return InstallerSettings(raw=raw)


@dataclass(frozen=True)
class BuildConfig:
    platform: Platform
    mcs: bool
    fastpath_enabled: bool
    binary_mode: bool
    install_prefix: Path
    kernel_source: SourceSpec
    sel4_source: SourceSpec
    force_refetch: bool
    baseline_revision: Optional[str]
    staging_root: Path
    settings: InstallerSettings = field(default_factory=InstallerSettings)
    dry_run: bool = False

    @property
    def baseline(self) -> bool:
        return self.baseline_revision is not None

    def summary(self) -> Dict[str, Any]:
        """Plain-data view for the run record."""

        def _src(s: SourceSpec) -> Dict[str, Any]:
            if isinstance(s, LocalSource):
                return {"local": str(s.path)}
            return {"url": s.url, "dir": str(s.staging_dir), "branch": s.branch, "revision": s.revision}

        return {
            "platform": self.platform.value,
            "mcs": self.mcs,
            "fastpath_enabled": self.fastpath_enabled,
            "binary_mode": self.binary_mode,
            "install_prefix": str(self.install_prefix),
            "kernel_source": _src(self.kernel_source),
            "sel4_source": _src(self.sel4_source),
            "force_refetch": self.force_refetch,
            "baseline_revision": self.baseline_revision,
            "dry_run": self.dry_run,
        }


def resolve_platform(name: str) -> Platform:
    try:
        return Platform(str(name).strip().lower())
    except ValueError:
        raise ConfigValidationError(
            f"Unsupported platform: {name}",
            hint=f"Expected one of: {', '.join(SUPPORTED_PLATFORMS)}",
        ) from None


def resolve_options(
    *,
    platform: str = Platform.QEMU_ARM_VIRT.value,
    mcs: bool = False,
    nofastpath: bool = False,
    binary: bool = False,
    sel4_prefix: str = PATHS.install_prefix,
    local: Optional[str] = None,
    branch: str = DEFAULT_BRANCH,
    force: bool = False,
    sel4_baseline: Optional[str] = None,
    staging_root: Optional[str] = None,
    settings: Optional[InstallerSettings] = None,
    dry_run: bool = False,
) -> BuildConfig:
    """Validate raw flag values into a BuildConfig.

    Reads the filesystem (to check ``local``) but never modifies it.
    """

    settings = settings or InstallerSettings()
    plat = resolve_platform(platform)

    if not branch or not branch.strip():
        raise ConfigValidationError("--branch must not be empty")
    branch = branch.strip()

    baseline: Optional[str] = None
    if sel4_baseline is not None:
        baseline = sel4_baseline.strip()
        if not baseline:
            raise ConfigValidationError("--sel4-baseline must name a revision")

    local_path: Optional[Path] = None
    if local is not None:
        local_path = Path(local).expanduser().absolute()
        if not local_path.is_dir():
            raise ConfigValidationError(
                f"Local source is not a directory: {local}",
                context={"resolved": str(local_path)},
            )

    root = Path(staging_root or settings.staging_root).expanduser().absolute()
    prefix = Path(sel4_prefix).expanduser().absolute()

    if baseline is not None and binary:
        logger.warning("Binary mode has no reL4 kernel to build against the seL4 baseline; only the baseline kernel is built")

    kernel_source: SourceSpec
    sel4_source: SourceSpec
    if baseline is None:
        kernel_ref = None if branch == DEFAULT_BRANCH else branch
        kernel_source = (
            LocalSource(path=local_path)
            if local_path is not None
            else RemoteSource(
                name="rel4-integral",
                url=settings.repo("rel4_integral"),
                staging_dir=root / staging_dir_name(REL4_KERNEL_DIR, kernel_ref),
                branch=branch,
            )
        )
        sel4_source = RemoteSource(
            name="seL4_c_impl",
            url=settings.repo("sel4_c_impl"),
            staging_dir=root / SEL4_KERNEL_DIR,
            shallow=False,
        )
    else:
        # Only the upstream kernel is built; --local stands in for it.
        sel4_source = (
            LocalSource(path=local_path)
            if local_path is not None
            else RemoteSource(
                name="seL4",
                url=settings.repo("sel4_upstream"),
                staging_dir=root / staging_dir_name(SEL4_BASELINE_DIR, baseline),
                revision=baseline,
            )
        )
        kernel_source = sel4_source

    return BuildConfig(
        platform=plat,
        mcs=bool(mcs),
        fastpath_enabled=not nofastpath,
        binary_mode=bool(binary),
        install_prefix=prefix,
        kernel_source=kernel_source,
        sel4_source=sel4_source,
        force_refetch=bool(force),
        baseline_revision=baseline,
        staging_root=root,
        settings=settings,
        dry_run=bool(dry_run),
    )
