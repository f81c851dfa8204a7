import json
from pathlib import Path
from typing import List

import pytest

from rel4_installer.lib.command import BuildStage, StageKind
from rel4_installer.main import main

from fakes import RecordingRunner


@pytest.fixture
def paths(tmp_path: Path):
    class P:
        staging = tmp_path / "staging"
        prefix = tmp_path / "prefix"
        state = tmp_path / "state.json"
        log = tmp_path / "install.log"

    return P


def _argv(paths, *kernel_flags: str, top: List[str] = ()) -> List[str]:
    return [
        "--log",
        str(paths.log),
        "--state",
        str(paths.state),
        *top,
        "install",
        "kernel",
        "--staging-root",
        str(paths.staging),
        "--sel4-prefix",
        str(paths.prefix),
        *kernel_flags,
    ]


def _record(paths) -> dict:
    return json.loads(paths.state.read_text(encoding="utf-8"))


FULL_FRESH_RUN = [
    StageKind.SOURCE_CLONE,
    StageKind.KERNEL_PIN_FIXUP,
    StageKind.KERNEL_BUILD,
    StageKind.SOURCE_CLONE,
    StageKind.KERNEL_CONFIGURE,
    StageKind.KERNEL_COMPILE,
    StageKind.KERNEL_INSTALL,
    StageKind.LOADER_TOOL_INSTALL,
    StageKind.KERNEL_LOADER_INSTALL,
]


def test_qemu_lib_mode_fresh_install(paths) -> None:
    runner = RecordingRunner()

    assert main(_argv(paths, "--platform", "qemu-arm-virt"), runner=runner) == 0

    assert runner.kinds == FULL_FRESH_RUN
    build = runner.of_kind(StageKind.KERNEL_BUILD)[0]
    assert "--arm-pcnt" in build.args and "--arm-ptmr" in build.args
    assert "--mcs" not in build.args and "--bin" not in build.args
    kernel_clone, sel4_clone = runner.of_kind(StageKind.SOURCE_CLONE)
    assert kernel_clone.args[2] == str(paths.staging / "rel4_kernel")
    assert sel4_clone.args[2] == str(paths.staging / "seL4_kernel")
    assert not (paths.prefix / "bin" / "kernel.elf").exists()

    record = _record(paths)
    assert record["execution"]["summary"]["ran_steps"] == [
        "10_build_rel4_kernel",
        "20_install_kernel_image",
        "30_build_sel4_kernel",
        "40_install_kernel_loader",
    ]
    assert record["execution"]["errors"] == []
    assert record["config"]["platform"] == "qemu-arm-virt"


def _fake_kernel_build(paths, target: str):
    def effect(stage: BuildStage) -> None:
        out = paths.staging / "rel4_kernel" / "target" / target / "release" / "rel4_kernel"
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(b"\x7fELF spike")

    return effect


def test_spike_binary_mode_with_staged_sources(paths) -> None:
    (paths.staging / "rel4_kernel").mkdir(parents=True)
    (paths.staging / "seL4_kernel").mkdir(parents=True)
    runner = RecordingRunner(
        effects={StageKind.KERNEL_BUILD: _fake_kernel_build(paths, "riscv64imac-unknown-none-elf")}
    )

    assert main(_argv(paths, "-p", "spike", "-B"), runner=runner) == 0

    assert StageKind.SOURCE_CLONE not in runner.kinds
    assert StageKind.KERNEL_PIN_FIXUP not in runner.kinds
    build = runner.of_kind(StageKind.KERNEL_BUILD)[0]
    assert build.args[-1] == "--bin"
    assert (paths.prefix / "bin" / "kernel.elf").read_bytes() == b"\x7fELF spike"
    assert "riscv64imac-unknown-none-elf" in runner.of_kind(StageKind.KERNEL_LOADER_INSTALL)[0].args


def test_binary_mode_without_artifact_reports_artifact_missing(paths) -> None:
    runner = RecordingRunner()

    assert main(_argv(paths, "--bin"), runner=runner) == 1

    assert StageKind.KERNEL_CONFIGURE not in runner.kinds
    errors = _record(paths)["execution"]["errors"]
    assert errors[0]["code"] == "E_ARTIFACT_MISSING"
    assert errors[0]["step"] == "20_install_kernel_image"


def test_build_failure_propagates_exit_status_and_stops(paths) -> None:
    runner = RecordingRunner(returncodes={StageKind.KERNEL_CONFIGURE: [7]})

    assert main(_argv(paths), runner=runner) == 7

    assert runner.kinds[-1] == StageKind.KERNEL_CONFIGURE
    assert StageKind.KERNEL_LOADER_INSTALL not in runner.kinds
    errors = _record(paths)["execution"]["errors"]
    assert errors[0]["code"] == "E_BUILD_FAILURE"
    assert errors[0]["context"]["returncode"] == "7"


def test_unsupported_platform_fails_before_any_process(paths) -> None:
    runner = RecordingRunner()

    assert main(_argv(paths, "--platform", "x86_64"), runner=runner) == 2

    assert runner.stages == []
    assert _record(paths)["execution"]["errors"][0]["code"] == "E_CONFIG_VALIDATION"


def test_clone_outage_is_source_unavailable(paths) -> None:
    runner = RecordingRunner(returncodes={StageKind.SOURCE_CLONE: [128, 128, 128]})

    assert main(_argv(paths), runner=runner) == 1

    assert runner.kinds == [StageKind.SOURCE_CLONE] * 3
    assert _record(paths)["execution"]["errors"][0]["code"] == "E_SOURCE_UNAVAILABLE"


def test_baseline_builds_upstream_kernel_only(paths) -> None:
    runner = RecordingRunner()

    assert main(_argv(paths, "--sel4-baseline", "abc123"), runner=runner) == 0

    assert runner.kinds == [
        StageKind.SOURCE_CLONE,
        StageKind.SOURCE_CHECKOUT,
        StageKind.KERNEL_CONFIGURE,
        StageKind.KERNEL_COMPILE,
        StageKind.KERNEL_INSTALL,
        StageKind.LOADER_TOOL_INSTALL,
        StageKind.KERNEL_LOADER_INSTALL,
    ]
    clone = runner.of_kind(StageKind.SOURCE_CLONE)[0]
    assert clone.args[1] == "https://github.com/seL4/seL4.git"
    configure = runner.of_kind(StageKind.KERNEL_CONFIGURE)[0]
    assert "-DKernelPlatform=qemu-arm-virt" in configure.args
    assert not any("kernel-settings" in a for a in configure.args)
    assert _record(paths)["execution"]["decisions"]["sel4_flavor"] == "upstream"


def test_rerun_reuses_sources_and_force_refetches(paths) -> None:
    first = RecordingRunner()
    assert main(_argv(paths), runner=first) == 0

    second = RecordingRunner()
    assert main(_argv(paths), runner=second) == 0
    assert StageKind.SOURCE_CLONE not in second.kinds

    forced = RecordingRunner()
    assert main(_argv(paths, "--force"), runner=forced) == 0
    assert forced.kinds.count(StageKind.SOURCE_CLONE) == 2
    assert forced.kinds.count(StageKind.KERNEL_PIN_FIXUP) == 1


def test_local_source_skips_kernel_clone_and_fixup(paths, tmp_path: Path) -> None:
    checkout = tmp_path / "my-rel4"
    checkout.mkdir()
    runner = RecordingRunner()

    assert main(_argv(paths, "--local", str(checkout), "--force"), runner=runner) == 0

    assert runner.of_kind(StageKind.KERNEL_BUILD)[0].working_dir == checkout
    assert StageKind.KERNEL_PIN_FIXUP not in runner.kinds
    assert runner.kinds.count(StageKind.SOURCE_CLONE) == 1


def test_start_at_loader(paths) -> None:
    runner = RecordingRunner()

    assert main(_argv(paths, "--start-at", "40_install_kernel_loader"), runner=runner) == 0

    assert runner.kinds == [StageKind.LOADER_TOOL_INSTALL, StageKind.KERNEL_LOADER_INSTALL]


def test_settings_file_is_applied(paths, tmp_path: Path) -> None:
    settings = tmp_path / "settings.yaml"
    settings.write_text("repos:\n  rel4_integral: https://mirror.invalid/rel4.git\n", encoding="utf-8")
    runner = RecordingRunner()

    assert main(_argv(paths, top=["--config", str(settings)]), runner=runner) == 0

    assert runner.of_kind(StageKind.SOURCE_CLONE)[0].args[1] == "https://mirror.invalid/rel4.git"


def test_dry_run_spawns_nothing_and_touches_nothing(paths) -> None:
    assert main(_argv(paths, "--bin", top=["--dry-run"])) == 0

    assert not paths.staging.exists()
    assert not paths.prefix.exists()
    assert _record(paths)["config"]["dry_run"] is True


def test_subcommand_is_required(paths) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["install"])
    assert exc.value.code == 2


def test_yaml_run_record(paths, tmp_path: Path) -> None:
    import yaml

    paths.state = tmp_path / "record.yaml"

    assert main(_argv(paths, "--mcs"), runner=RecordingRunner()) == 0

    record = yaml.safe_load(paths.state.read_text(encoding="utf-8"))
    assert record["config"]["mcs"] is True
    assert record["execution"]["decisions"]["kernel_source"]["fresh_clone"] is True


def test_changed_baseline_revision_is_fetched_not_reused(paths) -> None:
    assert main(_argv(paths, "--sel4-baseline", "abc123"), runner=RecordingRunner()) == 0

    second = RecordingRunner()
    assert main(_argv(paths, "--sel4-baseline", "def456"), runner=second) == 0

    assert second.kinds[:2] == [StageKind.SOURCE_CLONE, StageKind.SOURCE_CHECKOUT]
    assert second.of_kind(StageKind.SOURCE_CHECKOUT)[0].args[-1] == "def456"
    configure = second.of_kind(StageKind.KERNEL_CONFIGURE)[0]
    assert configure.working_dir == paths.staging / "seL4_baseline-def456"

    again = RecordingRunner()
    assert main(_argv(paths, "--sel4-baseline", "abc123"), runner=again) == 0
    assert StageKind.SOURCE_CLONE not in again.kinds
    assert again.of_kind(StageKind.KERNEL_CONFIGURE)[0].working_dir == paths.staging / "seL4_baseline-abc123"


def test_changed_branch_is_cloned_separately(paths) -> None:
    assert main(_argv(paths), runner=RecordingRunner()) == 0

    second = RecordingRunner()
    assert main(_argv(paths, "--branch", "dev"), runner=second) == 0

    kernel_clone = second.of_kind(StageKind.SOURCE_CLONE)[0]
    assert kernel_clone.args[2] == str(paths.staging / "rel4_kernel-dev")
    assert kernel_clone.args[-2:] == ("--branch", "dev")
    assert second.of_kind(StageKind.KERNEL_BUILD)[0].working_dir == paths.staging / "rel4_kernel-dev"
    assert second.kinds.count(StageKind.SOURCE_CLONE) == 1


@pytest.mark.parametrize("content", ["repos: [a, b]\n", "toolchains: nightly\n"])
def test_malformed_settings_file_is_a_validation_error(paths, tmp_path: Path, content: str) -> None:
    settings = tmp_path / "settings.yaml"
    settings.write_text(content, encoding="utf-8")
    runner = RecordingRunner()

    assert main(_argv(paths, top=["--config", str(settings)]), runner=runner) == 2

    assert runner.stages == []
    assert _record(paths)["execution"]["errors"][0]["code"] == "E_CONFIG_VALIDATION"


def test_stop_after_before_start_at_is_rejected(paths) -> None:
    runner = RecordingRunner()
    argv = _argv(
        paths,
        "--start-at",
        "30_build_sel4_kernel",
        "--stop-after",
        "10_build_rel4_kernel",
    )

    assert main(argv, runner=runner) == 2
    assert runner.stages == []


def test_unwritable_prefix_is_reported_not_raised(paths) -> None:
    (paths.staging / "rel4_kernel").mkdir(parents=True)
    (paths.staging / "seL4_kernel").mkdir(parents=True)
    paths.prefix.parent.mkdir(parents=True, exist_ok=True)
    paths.prefix.write_text("not a directory", encoding="utf-8")
    runner = RecordingRunner(
        effects={StageKind.KERNEL_BUILD: _fake_kernel_build(paths, "aarch64-unknown-none-softfloat")}
    )

    assert main(_argv(paths, "--bin"), runner=runner) == 1

    error = _record(paths)["execution"]["errors"][0]
    assert error["code"] == "E_ARTIFACT_INSTALL"
    assert error["step"] == "20_install_kernel_image"
