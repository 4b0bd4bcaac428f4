# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path

import pytest

from ulb import run_build, run_clean, run_init, run_summary, run_tutorials
from ulb.config import Args, Config, InitSystem, Verb, load_profile
from ulb.log import EnvironmentUnavailable, UlbException, UnsupportedCombination

from . import RecordingEnvironment, make_profile


def build_args(config: Config, force: bool = False) -> Args:
    return Args(verb=Verb.build, profile=None, directory=config.directory, debug=False, force=force)


def test_init(config: Config) -> None:
    run_init(config)

    assert config.files_dir.is_dir()
    assert config.build_dir.is_dir()
    assert load_profile(config.profiles_dir / "example.toml") == make_profile()

    script = config.scripts_dir / "01-hello.sh"
    assert script.stat().st_mode & 0o111
    assert "ULB_DISTRO_NAME" in script.read_text()


def test_init_does_not_overwrite(config: Config) -> None:
    config.profiles_dir.mkdir(parents=True)
    (config.profiles_dir / "example.toml").write_text("# mine\n")

    run_init(config)

    assert (config.profiles_dir / "example.toml").read_text() == "# mine\n"
    assert (config.scripts_dir / "01-hello.sh").exists()


def test_tutorials(capsys: pytest.CaptureFixture[str]) -> None:
    run_tutorials()
    assert "ulb build" in capsys.readouterr().out


def test_clean(config: Config) -> None:
    (config.workspace_dir / "rootfs/etc").mkdir(parents=True)

    run_clean(config)
    assert not config.workspace_dir.exists()

    run_clean(config)
    assert not config.workspace_dir.exists()


def test_summary(config: Config, capsys: pytest.CaptureFixture[str]) -> None:
    run_init(config)
    run_summary(build_args(config), config)

    out = capsys.readouterr().out
    assert "MyDistro" in out
    assert "COMMANDS:" in out
    assert "debootstrap" in out


def test_build(config: Config, environment: RecordingEnvironment) -> None:
    run_build(build_args(config), config, make_profile(), environment)

    assert (config.build_dir / "MyDistro-1.0.iso").exists()
    assert (config.workspace_dir / "logs/ulb.log").exists()


def test_build_existing_output(config: Config, environment: RecordingEnvironment) -> None:
    config.build_dir.mkdir(parents=True)
    (config.build_dir / "MyDistro-1.0.iso").write_text("old")

    run_build(build_args(config), config, make_profile(), environment)

    assert environment.invocations == []
    assert (config.build_dir / "MyDistro-1.0.iso").read_text() == "old"

    run_build(build_args(config, force=True), config, make_profile(), environment)

    assert environment.invocations
    assert (config.build_dir / "MyDistro-1.0.iso").read_text() == ""


def test_build_populated_rootfs(config: Config, environment: RecordingEnvironment) -> None:
    (config.workspace_dir / "rootfs/etc").mkdir(parents=True)

    with pytest.raises(UlbException, match="earlier build"):
        run_build(build_args(config), config, make_profile(), environment)

    assert environment.invocations == []

    run_build(build_args(config, force=True), config, make_profile(), environment)

    assert not (config.workspace_dir / "rootfs/etc").exists()
    assert (config.build_dir / "MyDistro-1.0.iso").exists()


def test_build_failure_exits(config: Config) -> None:
    with pytest.raises(SystemExit) as e:
        run_build(build_args(config), config, make_profile(), RecordingEnvironment(fail_on="update-initramfs"))

    assert e.value.code == 1
    assert not (config.build_dir / "MyDistro-1.0.iso").exists()


def test_build_with_custom_directories(tmp_path: Path, environment: RecordingEnvironment) -> None:
    config = Config(directory=tmp_path, workspace_dir=tmp_path / "ws", build_dir=tmp_path / "images")

    run_build(build_args(config), config, make_profile(), environment)

    assert (tmp_path / "images/MyDistro-1.0.iso").exists()


@pytest.mark.parametrize(
    "environment,kwargs,exception",
    [
        (RecordingEnvironment(), dict(init_system=InitSystem.openrc), UnsupportedCombination),
        (RecordingEnvironment(unavailable=True), {}, EnvironmentUnavailable),
    ],
)
def test_force_keeps_rootfs_when_build_cannot_start(
    config: Config,
    environment: RecordingEnvironment,
    kwargs: dict,
    exception: type[UlbException],
) -> None:
    (config.workspace_dir / "rootfs/etc").mkdir(parents=True)
    (config.workspace_dir / "rootfs/etc/keep").touch()

    with pytest.raises(exception):
        run_build(build_args(config, force=True), config, make_profile(**kwargs), environment)

    assert (config.workspace_dir / "rootfs/etc/keep").exists()
    assert environment.invocations == []
