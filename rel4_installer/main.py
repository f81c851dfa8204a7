from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, Optional

from .build_config import DEFAULT_BRANCH, SUPPORTED_PLATFORMS, Platform, load_settings, resolve_options
from .errors import InstallerError
from .lib.command import CommandRunner, Runner
from .lib.env import PATHS
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import InstallCtx, run_pipeline
from .state_store import new_state, save_state
from .steps import (
    BuildRel4KernelStep,
    BuildSeL4KernelStep,
    InstallKernelImageStep,
    InstallKernelLoaderStep,
)

logger = logging.getLogger(__name__)


DEFAULT_STATE_PATH = PATHS.state_default


def build_steps():
    return [
        BuildRel4KernelStep(),
        InstallKernelImageStep(),
        BuildSeL4KernelStep(),
        InstallKernelLoaderStep(),
    ]


def run(
    *,
    options: Dict[str, Any],
    state_path: Optional[str] = DEFAULT_STATE_PATH,
    log_path: str = DEFAULT_LOG_PATH,
    config_path: Optional[str] = None,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    dry_run: bool = False,
    verbose: bool = False,
    runner: Optional[Runner] = None,
) -> Dict[str, Any]:
    """Resolve options and run the install pipeline, writing a run record."""

    actual_log_path = configure_logging(log_path=log_path, verbose=verbose)

    state = new_state()
    state["execution"]["log_path"] = actual_log_path

    try:
        settings = load_settings(config_path)
        cfg = resolve_options(settings=settings, dry_run=dry_run, **options)
        state["config"] = cfg.summary()

        ctx = InstallCtx(cfg=cfg, runner=runner or CommandRunner(dry_run=dry_run))
        result = run_pipeline(
            ctx=ctx,
            state=state,
            steps=build_steps(),
            start_at=start_at,
            stop_after=stop_after,
        )
        state = result.state
        state["execution"]["summary"]["ran_steps"] = result.ran_steps
        return state
    except InstallerError as e:
        logger.error("Install failed: %s", e)
        state["execution"]["errors"].append({"step": state["execution"].get("current_step"), **e.to_dict()})
        raise
    except Exception as e:
        logger.exception("Installer failed")
        state["execution"]["errors"].append(
            {"step": state["execution"].get("current_step"), "error": str(e)}
        )
        raise
    finally:
        if state_path:
            save_state(state_path, state)


def _add_kernel_parser(sub: argparse._SubParsersAction) -> None:
    k = sub.add_parser("kernel", help="Install reL4 kernel, libseL4 and the kernel loader")
    k.add_argument(
        "-p",
        "--platform",
        default=Platform.QEMU_ARM_VIRT.value,
        help=f"Target platform ({'|'.join(SUPPORTED_PLATFORMS)})",
    )
    k.add_argument("-m", "--mcs", action="store_true", help="Enable kernel MCS mode")
    k.add_argument("--nofastpath", action="store_true", help="Disable the kernel fastpath")
    k.add_argument(
        "-B",
        "--bin",
        dest="binary",
        action="store_true",
        help="Binary mode: build a standalone reL4 kernel.elf instead of the lib linked into seL4",
    )
    k.add_argument("-P", "--sel4-prefix", default=PATHS.install_prefix, help="Install prefix")
    k.add_argument("--local", default=None, help="Build from this local kernel checkout instead of cloning")
    k.add_argument("--branch", default=DEFAULT_BRANCH, help="reL4 kernel branch to clone")
    k.add_argument("--force", action="store_true", help="Remove and re-clone staged sources")
    k.add_argument(
        "--sel4-baseline",
        default=None,
        metavar="REV",
        help="Build upstream seL4 at REV instead of the reL4 kernel",
    )
    k.add_argument("--staging-root", default=None, help="Where remote sources are cloned")
    k.add_argument("--start-at", default=None, help="Start at step_id (e.g. 30_build_sel4_kernel)")
    k.add_argument("--stop-after", default=None, help="Stop after step_id")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rel4-installer")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--state", default=DEFAULT_STATE_PATH, help="Path to run record (json|yaml)")
    p.add_argument("--config", default=None, help="YAML settings (repos, toolchains, staging_root)")
    p.add_argument("--dry-run", action="store_true", help="Log commands without running them")
    p.add_argument("-v", "--verbose", action="store_true")

    commands = p.add_subparsers(dest="command", required=True)
    install = commands.add_parser("install", help="Install development dependencies")
    targets = install.add_subparsers(dest="target", required=True)
    _add_kernel_parser(targets)
    return p


def main(argv: Optional[list[str]] = None, *, runner: Optional[Runner] = None) -> int:
    args = build_parser().parse_args(argv)

    options = {
        "platform": args.platform,
        "mcs": args.mcs,
        "nofastpath": args.nofastpath,
        "binary": args.binary,
        "sel4_prefix": args.sel4_prefix,
        "local": args.local,
        "branch": args.branch,
        "force": args.force,
        "sel4_baseline": args.sel4_baseline,
        "staging_root": args.staging_root,
    }

    try:
        run(
            options=options,
            state_path=args.state,
            log_path=args.log,
            config_path=args.config,
            start_at=args.start_at,
            stop_after=args.stop_after,
            dry_run=bool(args.dry_run),
            verbose=bool(args.verbose),
            runner=runner,
        )
    except InstallerError as e:
        return e.exit_code
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
