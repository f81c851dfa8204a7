"""Derive external build invocations from a BuildConfig.

Everything here is pure: given the same config, the same stages come out.
Flag names and values are the external tools' own CLI contracts and are
reproduced verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

from .build_config import BuildConfig, Platform
from .lib.command import BuildStage, StageKind
from .lib.env import TOOLCHAIN_SELECTION_VARS
from .lib.source import source_dir

KERNEL_BUILD_DIR = "build"
KERNEL_ARTIFACT_NAME = "rel4_kernel"
INSTALLED_KERNEL_IMAGE = "bin/kernel.elf"

LOADER_PAYLOAD_TOOL = "sel4-kernel-loader-add-payload"
LOADER_CRATE = "sel4-kernel-loader"

# Pins `home` back to a release the kernel nightly can still build.
PIN_FIXUP_ARGS = ("update", "home@0.5.11", "--precise", "0.5.5")


@dataclass(frozen=True)
class PlatformProfile:
    xtask_args: Tuple[str, ...]
    kernel_target: str
    loader_target: str
    cross_compiler_prefix: str
    kernel_settings: str
    project_cmake_flags: Tuple[str, ...]
    upstream_cmake_flags: Tuple[str, ...]


PROFILES: Dict[Platform, PlatformProfile] = {
    Platform.SPIKE: PlatformProfile(
        xtask_args=("--platform", "spike"),
        kernel_target="riscv64imac-unknown-none-elf",
        loader_target="riscv64imac-unknown-none-elf",
        cross_compiler_prefix="riscv64-linux-gnu-",
        kernel_settings="./kernel-settings-riscv64.cmake",
        project_cmake_flags=(),
        upstream_cmake_flags=(
            "-DKernelPlatform=spike",
            "-DKernelSel4Arch=riscv64",
        ),
    ),
    Platform.QEMU_ARM_VIRT: PlatformProfile(
        xtask_args=("--platform", "qemu-arm-virt", "-s", "on", "--arm-pcnt", "--arm-ptmr"),
        kernel_target="aarch64-unknown-none-softfloat",
        loader_target="aarch64-unknown-none",
        cross_compiler_prefix="aarch64-linux-gnu-",
        kernel_settings="./kernel-settings-aarch64.cmake",
        project_cmake_flags=(
            "-DKernelAllowSMCCalls=ON",
            "-DKernelArmExportPCNTUser=ON",
            "-DKernelArmExportPTMRUser=ON",
        ),
        upstream_cmake_flags=(
            "-DKernelPlatform=qemu-arm-virt",
            "-DKernelSel4Arch=aarch64",
            "-DKernelArmExportPCNTUser=ON",
            "-DKernelArmExportPTMRUser=ON",
        ),
    ),
}


def profile_for(platform: Platform) -> PlatformProfile:
    profile = PROFILES.get(platform)
    # Unsupported platforms are rejected by resolve_options.
    assert profile is not None, f"no build profile for {platform!r}"
    return profile


def _rustup_run(kind: StageKind, toolchain: str, args: List[str], **kwargs) -> BuildStage:
    return BuildStage(
        kind=kind,
        tool="rustup",
        args=("run", toolchain, "cargo", *args),
        env_unset=TOOLCHAIN_SELECTION_VARS,
        **kwargs,
    )


def _mode_cmake_flags(cfg: BuildConfig) -> List[str]:
    flags: List[str] = []
    if cfg.mcs:
        flags.append("-DKernelIsMCS=ON")
    if not cfg.fastpath_enabled:
        flags.append("-DKernelFastpath=OFF")
    return flags


def _kernel_build(cfg: BuildConfig) -> BuildStage:
    assert not cfg.baseline, "the seL4 baseline has no reL4 kernel build"
    profile = profile_for(cfg.platform)
    args = ["xtask", "build", "--rust-only", *profile.xtask_args]
    if cfg.mcs:
        args += ["--mcs", "on"]
    if not cfg.fastpath_enabled:
        args.append("--nofastpath")
    if cfg.binary_mode:
        args.append("--bin")
    return _rustup_run(
        StageKind.KERNEL_BUILD,
        cfg.settings.toolchain("kernel"),
        args,
        working_dir=source_dir(cfg.kernel_source),
    )


def _kernel_configure(cfg: BuildConfig) -> BuildStage:
    profile = profile_for(cfg.platform)
    src = source_dir(cfg.sel4_source)
    args = [
        f"-DCROSS_COMPILER_PREFIX={profile.cross_compiler_prefix}",
        f"-DCMAKE_INSTALL_PREFIX={cfg.install_prefix}",
    ]
    if cfg.baseline:
        args.append("-DCMAKE_TOOLCHAIN_FILE=gcc.cmake")
        args += profile.upstream_cmake_flags
        args += _mode_cmake_flags(cfg)
    else:
        args += profile.project_cmake_flags
        args.append(f"-DREL4_KERNEL={'TRUE' if cfg.binary_mode else 'FALSE'}")
        args += _mode_cmake_flags(cfg)
        args += ["-C", profile.kernel_settings]
    args += ["-G", "Ninja", "-S", ".", "-B", str(src / KERNEL_BUILD_DIR)]
    return BuildStage(kind=StageKind.KERNEL_CONFIGURE, tool="cmake", args=tuple(args), working_dir=src)


def _ninja(cfg: BuildConfig, kind: StageKind, target: str) -> BuildStage:
    return BuildStage(
        kind=kind,
        tool="ninja",
        args=("-C", KERNEL_BUILD_DIR, target),
        working_dir=source_dir(cfg.sel4_source),
    )


def _loader_common(cfg: BuildConfig) -> List[str]:
    return [
        "--git",
        cfg.settings.repo("rust_sel4"),
        "--rev",
        cfg.settings.loader_rev,
        "--root",
        str(cfg.install_prefix),
    ]


def _loader_tool_install(cfg: BuildConfig) -> BuildStage:
    return _rustup_run(
        StageKind.LOADER_TOOL_INSTALL,
        cfg.settings.toolchain("loader"),
        ["install", "--force", *_loader_common(cfg), LOADER_PAYLOAD_TOOL],
    )


def _loader_install(cfg: BuildConfig) -> BuildStage:
    profile = profile_for(cfg.platform)
    target = profile.loader_target
    args = [
        "install",
        "--force",
        "-Z",
        "build-std=core,compiler_builtins",
        "-Z",
        "build-std-features=compiler-builtins-mem",
        "--target",
        target,
        *_loader_common(cfg),
        LOADER_CRATE,
    ]
    env = {
        "SEL4_PREFIX": str(cfg.install_prefix),
        f"CC_{target.replace('-', '_')}": f"{profile.cross_compiler_prefix}gcc",
    }
    return _rustup_run(
        StageKind.KERNEL_LOADER_INSTALL,
        cfg.settings.toolchain("loader"),
        args,
        env_overrides=env,
    )


def _pin_fixup(cfg: BuildConfig) -> BuildStage:
    return BuildStage(
        kind=StageKind.KERNEL_PIN_FIXUP,
        tool="cargo",
        args=PIN_FIXUP_ARGS,
        working_dir=source_dir(cfg.kernel_source),
    )


_COMPOSERS = {
    StageKind.KERNEL_PIN_FIXUP: _pin_fixup,
    StageKind.KERNEL_BUILD: _kernel_build,
    StageKind.KERNEL_CONFIGURE: _kernel_configure,
    StageKind.KERNEL_COMPILE: lambda cfg: _ninja(cfg, StageKind.KERNEL_COMPILE, "all"),
    StageKind.KERNEL_INSTALL: lambda cfg: _ninja(cfg, StageKind.KERNEL_INSTALL, "install"),
    StageKind.LOADER_TOOL_INSTALL: _loader_tool_install,
    StageKind.KERNEL_LOADER_INSTALL: _loader_install,
}


def compose_stage(cfg: BuildConfig, kind: StageKind) -> BuildStage:
    composer = _COMPOSERS.get(kind)
    if composer is None:
        raise ValueError(f"{kind.value} is not composed from a BuildConfig")
    return composer(cfg)


def kernel_artifact_path(cfg: BuildConfig) -> Path:
    target = profile_for(cfg.platform).kernel_target
    return source_dir(cfg.kernel_source) / "target" / target / "release" / KERNEL_ARTIFACT_NAME


def installed_kernel_path(cfg: BuildConfig) -> Path:
    return cfg.install_prefix / INSTALLED_KERNEL_IMAGE
