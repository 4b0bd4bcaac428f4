# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path

import pytest

from ulb.config import Bootloader, Config, InitSystem
from ulb.distributions import Distribution
from ulb.log import EnvironmentUnavailable, StageExecutionFailure, UnsupportedCombination, ValidationFailure
from ulb.pipeline import Pipeline, PipelineState
from ulb.run import TIMEOUT_EXIT_STATUS
from ulb.stages import STAGES, find_scripts

from . import RecordingEnvironment, make_profile

STAGE_NAMES = [
    "Environment Setup",
    "Base System Install",
    "Package Install",
    "Package Removal",
    "Overlay Copy",
    "Script Execution",
    "System Configuration",
    "Image Assembly",
]


def test_stage_order() -> None:
    assert [s.name for s in STAGES] == STAGE_NAMES


def test_end_to_end(config: Config, environment: RecordingEnvironment) -> None:
    result = Pipeline(config, environment).run(make_profile())

    assert result.state == PipelineState.completed
    assert [r.name for r in result.records] == STAGE_NAMES
    assert result.artifact == config.build_dir / "MyDistro-1.0.iso"
    assert result.artifact.exists()
    assert not (config.workspace_dir / "output/MyDistro-1.0.iso").exists()

    skipped = [r.name for r in result.records if r.skipped]
    assert skipped == ["Package Removal", "Overlay Copy", "Script Execution"]

    assert environment.checks == 1
    assert environment.images == {"docker.io/library/ubuntu:latest"}

    scripts = [i.script for i in environment.invocations]
    assert len(scripts) == 7
    assert "debootstrap" in scripts[1]
    assert "apt-get install --assume-yes vim git" in scripts[2]
    assert "systemctl preset-all" in scripts[3]
    assert "grub-mkimage" in scripts[4]
    assert "update-initramfs" in scripts[5]
    assert "xorriso -as mkisofs" in scripts[6]


def test_privileged_stages(config: Config, environment: RecordingEnvironment) -> None:
    Pipeline(config, environment).run(make_profile())

    toolchain, bootstrap, install, *configure, assemble = environment.invocations

    assert not toolchain.privileged
    assert bootstrap.privileged
    assert not install.privileged
    assert all(i.privileged for i in configure)
    assert assemble.privileged


def test_mounts(config: Config, environment: RecordingEnvironment) -> None:
    Pipeline(config, environment).run(make_profile())

    toolchain, bootstrap, install, *_, assemble = environment.invocations

    cache = toolchain.mount("/var/cache/apt/archives")
    assert cache
    assert cache.host == config.workspace_dir / "build-files/cache/ubuntu"
    assert bootstrap.mount("/var/cache/apt/archives") == cache

    rootfs = install.mount("/rootfs")
    assert rootfs
    assert rootfs.host == config.workspace_dir / "rootfs"

    output = assemble.mount("/output")
    assert output
    assert output.host == config.workspace_dir / "output"


def test_empty_package_lists_are_noops(config: Config, environment: RecordingEnvironment) -> None:
    result = Pipeline(config, environment).run(make_profile(packages=(), packages_to_remove=()))

    assert result.state == PipelineState.completed
    assert len(result.records) == 8
    assert not any("apt-get install --assume-yes vim" in i.script for i in environment.invocations)
    assert not any("apt-get remove" in i.script for i in environment.invocations)


def test_package_removal(config: Config, environment: RecordingEnvironment) -> None:
    result = Pipeline(config, environment).run(make_profile(packages_to_remove=("nano",)))

    assert result.state == PipelineState.completed
    assert not next(r for r in result.records if r.name == "Package Removal").skipped
    assert sum("apt-get remove --assume-yes nano" in i.script for i in environment.invocations) == 1


def test_fail_fast(config: Config) -> None:
    environment = RecordingEnvironment(fail_on="systemctl")
    result = Pipeline(config, environment).run(make_profile())

    assert result.state == PipelineState.failed
    assert result.failed_stage == "System Configuration"
    assert result.records[-1].name == "System Configuration"
    assert "Image Assembly" not in [r.name for r in result.records]
    assert not any("grub-mkimage" in i.script or "mkisofs" in i.script for i in environment.invocations)
    assert not (config.build_dir / "MyDistro-1.0.iso").exists()

    assert isinstance(result.failure, StageExecutionFailure)
    assert result.failure.returncode == 1
    assert result.failure.excerpt() == "something went wrong"


def test_fail_fast_removes_stale_artifact(config: Config) -> None:
    config.build_dir.mkdir(parents=True)
    (config.build_dir / "MyDistro-1.0.iso").touch()

    result = Pipeline(config, RecordingEnvironment(fail_on="debootstrap --arch")).run(make_profile())

    assert result.state == PipelineState.failed
    assert result.failed_stage == "Base System Install"
    assert not (config.build_dir / "MyDistro-1.0.iso").exists()


def test_failure_keeps_rootfs(config: Config) -> None:
    result = Pipeline(config, RecordingEnvironment(fail_on="xorriso -as mkisofs")).run(make_profile())

    assert result.state == PipelineState.failed
    assert result.failed_stage == "Image Assembly"
    assert (config.workspace_dir / "rootfs").is_dir()


def test_timeout_hint(config: Config) -> None:
    environment = RecordingEnvironment(fail_on="debootstrap --arch", returncode=TIMEOUT_EXIT_STATUS)
    environment.timeout = 60
    result = Pipeline(config, environment).run(make_profile())

    assert isinstance(result.failure, StageExecutionFailure)
    assert result.failure.hint == "Timed out after 60s"


def test_firmware_rejected_before_environment(environment: RecordingEnvironment) -> None:
    with pytest.raises(ValidationFailure):
        make_profile(uefi_support=False, bios_support=False)

    assert environment.invocations == []
    assert environment.checks == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(init_system=InitSystem.openrc),
        dict(bootloader=Bootloader.systemd_boot, bios_support=True),
    ],
)
def test_unsupported_before_environment(config: Config, environment: RecordingEnvironment, kwargs: dict) -> None:
    with pytest.raises(UnsupportedCombination):
        Pipeline(config, environment).run(make_profile(**kwargs))

    assert environment.invocations == []
    assert environment.checks == 0
    assert not config.workspace_dir.exists()


def test_script_order(config: Config, environment: RecordingEnvironment) -> None:
    config.scripts_dir.mkdir()
    for name in ("10-a.sh", "02-b.sh", "z.sh", "README"):
        (config.scripts_dir / name).write_text("#!/bin/bash\ntrue\n")

    assert [p.name for p in find_scripts(config.scripts_dir)] == ["02-b.sh", "10-a.sh", "z.sh"]

    result = Pipeline(config, environment).run(make_profile())
    assert result.state == PipelineState.completed

    executed = [m.host.name for i in environment.invocations if (m := i.mount("/rootfs/work/script"))]
    assert executed == ["02-b.sh", "10-a.sh", "z.sh"]

    script = next(i for i in environment.invocations if i.mount("/rootfs/work/script"))
    assert script.command == ("chroot", "/rootfs", "bash", "/work/script")
    assert not script.privileged
    assert script.env["ULB_DISTRO_NAME"] == "MyDistro"
    assert script.env["ULB_DISTRIBUTION"] == "ubuntu"
    assert script.env["ULB_ATOMIC"] == "0"

    assert not (config.workspace_dir / "rootfs/work").exists()


def test_first_failing_script_aborts(config: Config) -> None:
    config.scripts_dir.mkdir()
    for name in ("01-ok.sh", "02-fail.sh", "03-never.sh"):
        (config.scripts_dir / name).write_text("#!/bin/bash\n")

    environment = RecordingEnvironment(fail_on="/work/script")
    result = Pipeline(config, environment).run(make_profile())

    assert result.state == PipelineState.failed
    assert result.failed_stage == "Script Execution"
    assert result.failure and result.failure.hint == "Script 01-ok.sh failed"

    executed = [m.host.name for i in environment.invocations if (m := i.mount("/rootfs/work/script"))]
    assert executed == ["01-ok.sh"]
    assert not (config.workspace_dir / "rootfs/work").exists()


def test_missing_directories_are_not_errors(config: Config, environment: RecordingEnvironment) -> None:
    assert not config.files_dir.exists()
    assert not config.scripts_dir.exists()

    result = Pipeline(config, environment).run(make_profile())

    assert result.state == PipelineState.completed


def test_overlay_copy(config: Config, environment: RecordingEnvironment) -> None:
    (config.files_dir / "etc").mkdir(parents=True)
    (config.files_dir / "etc/motd").write_text("Welcome\n")

    result = Pipeline(config, environment).run(make_profile())

    assert result.state == PipelineState.completed
    assert not next(r for r in result.records if r.name == "Overlay Copy").skipped
    assert (config.workspace_dir / "rootfs/etc/motd").read_text() == "Welcome\n"


def test_fedora_atomic(config: Config, environment: RecordingEnvironment) -> None:
    profile = make_profile(base=Distribution.fedora, atomic=True, bios_support=False)
    result = Pipeline(config, environment).run(profile)

    assert result.state == PipelineState.completed
    assert environment.images == {"registry.fedoraproject.org/fedora:latest"}

    scripts = [i.script for i in environment.invocations]
    assert "rpm-ostree compose rootfs" in scripts[1]
    assert "dnf install --assumeyes vim git" in scripts[2]
    assert "ostree --repo=/build/iso/ostree/repo commit" in scripts[-1]
    assert "mksquashfs /rootfs /build/iso/LiveOS/squashfs.img" in scripts[-1]


def test_workspace_paths_are_injected(tmp_path: Path, environment: RecordingEnvironment) -> None:
    config = Config(directory=tmp_path, workspace_dir=tmp_path / "a", build_dir=tmp_path / "b")
    result = Pipeline(config, environment).run(make_profile())

    assert result.artifact == tmp_path / "b/MyDistro-1.0.iso"
    assert (tmp_path / "a/rootfs").is_dir()
    assert (tmp_path / "a/logs").is_dir()


def test_environment_unavailable(config: Config) -> None:
    environment = RecordingEnvironment(unavailable=True)

    with pytest.raises(EnvironmentUnavailable):
        Pipeline(config, environment).run(make_profile())

    assert environment.checks == 1
    assert environment.invocations == []
    assert not config.workspace_dir.exists()
    assert not (config.build_dir / "MyDistro-1.0.iso").exists()


def test_pull_failure(config: Config) -> None:
    environment = RecordingEnvironment(pull_fails=True)
    result = Pipeline(config, environment).run(make_profile())

    assert result.state == PipelineState.failed
    assert result.failed_stage == "Environment Setup"
    assert [r.name for r in result.records] == ["Environment Setup"]
    assert isinstance(result.failure, StageExecutionFailure)
    assert result.failure.hint == "Could not pull docker.io/library/ubuntu:latest"
    assert result.failure.excerpt() == "Error: manifest unknown"
    assert environment.invocations == []
    assert not (config.build_dir / "MyDistro-1.0.iso").exists()
