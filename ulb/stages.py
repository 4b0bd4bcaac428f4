# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Callable

from ulb.bootloader import check_firmware
from ulb.context import Context
from ulb.log import StageExecutionFailure, complete_step
from ulb.resolve import CommandSpec, Step
from ulb.run import TIMEOUT_EXIT_STATUS
from ulb.sandbox import Mount, MountMode
from ulb.tree import copy_tree, rmtree


@dataclasses.dataclass(frozen=True)
class Stage:
    name: str
    run: Callable[[Context], None]
    precondition: Callable[[Context], bool] = lambda context: True


def execute(context: Context, stage: str, spec: CommandSpec, mounts: Sequence[Mount] = ()) -> None:
    if (pull := context.environment.ensure_image(spec.image)) is not None:
        raise StageExecutionFailure(
            stage,
            pull.returncode,
            pull.stderr,
            hint=f"Could not pull {spec.image}",
        )

    result = context.environment.run(
        spec.image,
        [*context.mounts(spec.binds), *mounts],
        spec.command,
        privileged=spec.privileged,
        env=spec.environment,
    )

    if result.stdout:
        logging.debug(result.stdout.rstrip())

    if result.returncode == TIMEOUT_EXIT_STATUS:
        raise StageExecutionFailure(
            stage,
            result.returncode,
            result.stderr,
            hint=f"Timed out after {context.environment.timeout}s",
        )

    if result.returncode != 0:
        raise StageExecutionFailure(stage, result.returncode, result.stderr)


def setup_environment(context: Context) -> None:
    # Packages from an earlier run might be outdated and conflict with the current ones.
    rmtree(context.cache_dir)
    context.cache_dir.mkdir(parents=True)

    execute(context, "Environment Setup", context.command(Step.toolchain))


def install_base_system(context: Context) -> None:
    execute(context, "Base System Install", context.command(Step.bootstrap))


def install_packages(context: Context) -> None:
    logging.info(f"Installing {' '.join(context.profile.packages)}")
    execute(context, "Package Install", context.command(Step.install))


def remove_packages(context: Context) -> None:
    logging.info(f"Removing {' '.join(context.profile.packages_to_remove)}")
    execute(context, "Package Removal", context.command(Step.remove))


def copy_overlay(context: Context) -> None:
    copy_tree(context.config.files_dir, context.workspace.rootfs, preserve=False)


def find_scripts(directory: Path) -> list[Path]:
    """Scripts are executed in lexicographic order of their file names."""
    if not directory.is_dir():
        return []

    return sorted((p for p in directory.glob("*.sh") if p.is_file()), key=lambda p: p.name)


def run_scripts(context: Context) -> None:
    work = context.workspace.rootfs / "work"
    work.mkdir(exist_ok=True)
    (work / "script").touch()

    spec = context.command(Step.script)

    try:
        for script in find_scripts(context.config.scripts_dir):
            with complete_step(f"Running script {script.name}…"):
                try:
                    execute(
                        context,
                        "Script Execution",
                        spec,
                        [Mount(script, "/rootfs/work/script", MountMode.ro)],
                    )
                except StageExecutionFailure as e:
                    e.hint = e.hint or f"Script {script.name} failed"
                    raise
    finally:
        rmtree(work)


def configure_system(context: Context) -> None:
    check_firmware(context.profile)

    with complete_step("Enabling init system…"):
        execute(context, "System Configuration", context.command(Step.init_system))

    with complete_step("Installing bootloader…"):
        execute(context, "System Configuration", context.command(Step.bootloader))

    with complete_step("Regenerating initramfs…"):
        execute(context, "System Configuration", context.command(Step.initramfs))


def assemble_image(context: Context) -> None:
    output = context.workspace.output / context.profile.output_name
    output.unlink(missing_ok=True)

    execute(context, "Image Assembly", context.command(Step.assemble))

    if not output.exists():
        raise StageExecutionFailure("Image Assembly", 0, hint=f"No image was written to {output}")


STAGES: tuple[Stage, ...] = (
    Stage("Environment Setup", setup_environment),
    Stage("Base System Install", install_base_system),
    Stage("Package Install", install_packages, lambda context: bool(context.profile.packages)),
    Stage("Package Removal", remove_packages, lambda context: bool(context.profile.packages_to_remove)),
    Stage("Overlay Copy", copy_overlay, lambda context: context.config.files_dir.is_dir()),
    Stage("Script Execution", run_scripts, lambda context: bool(find_scripts(context.config.scripts_dir))),
    Stage("System Configuration", configure_system),
    Stage("Image Assembly", assemble_image),
)
