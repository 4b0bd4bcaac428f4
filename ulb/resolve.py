# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import enum
import re
import shlex
from collections.abc import Mapping, Sequence
from typing import Callable

from ulb.bootloader import (
    boot_files_script,
    check_firmware,
    enable_init_system_script,
    install_bootloader_script,
    iso_boot_options,
)
from ulb.config import Profile
from ulb.log import UnsupportedCombination, die
from ulb.sandbox import MountMode
from ulb.util import StrEnum, one_zero


class Step(StrEnum):
    toolchain = enum.auto()
    bootstrap = enum.auto()
    install = enum.auto()
    remove = enum.auto()
    script = enum.auto()
    init_system = enum.auto()
    bootloader = enum.auto()
    initramfs = enum.auto()
    assemble = enum.auto()


class WorkspaceDir(StrEnum):
    rootfs = enum.auto()
    scratch = enum.auto()
    cache = enum.auto()
    output = enum.auto()


@dataclasses.dataclass(frozen=True)
class Bind:
    source: WorkspaceDir
    target: str
    mode: MountMode = MountMode.rw


@dataclasses.dataclass(frozen=True)
class CommandSpec:
    """A fully resolved invocation of the build environment. Never carries an empty command."""

    step: Step
    image: str
    command: tuple[str, ...]
    binds: tuple[Bind, ...] = ()
    privileged: bool = False
    environment: Mapping[str, str] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "binds", tuple(self.binds))
        assert self.command and all(self.command), f"Empty command resolved for {self.step}"

    def __str__(self) -> str:
        return shlex.join(self.command)


ROOTFS = Bind(WorkspaceDir.rootfs, "/rootfs")
SCRATCH = Bind(WorkspaceDir.scratch, "/build")
OUTPUT = Bind(WorkspaceDir.output, "/output")


def cache_bind(profile: Profile) -> Bind:
    return Bind(WorkspaceDir.cache, profile.base.package_manager().cache_dir())


def shell(script: str) -> list[str]:
    return ["bash", "-c", script]


def chroot(script: str, *, api_vfs: bool = False) -> list[str]:
    cmd = ["chroot", "/rootfs", "bash", "-c", script]

    if not api_vfs:
        return cmd

    # The mounts disappear together with the ephemeral build environment.
    return shell(
        " && ".join(
            [
                "mount -t proc proc /rootfs/proc",
                "mount -t sysfs sysfs /rootfs/sys",
                "mount --rbind /dev /rootfs/dev",
                shlex.join(cmd),
            ]
        )
    )


def ostree_ref(profile: Profile) -> str:
    name = re.sub(r"[^A-Za-z0-9._-]", "_", profile.distro_name)
    version = re.sub(r"[^A-Za-z0-9._-]", "_", profile.version)
    return f"{name}/{version}/x86_64"


def resolve_toolchain(profile: Profile) -> CommandSpec:
    pm = profile.base.package_manager()

    return CommandSpec(
        step=Step.toolchain,
        image=profile.base.container_image(),
        command=shell(pm.toolchain_script(profile.base.toolchain(profile.atomic))),
        binds=(cache_bind(profile),),
        environment=pm.environment(),
    )


def resolve_bootstrap(profile: Profile) -> CommandSpec:
    pm = profile.base.package_manager()

    return CommandSpec(
        step=Step.bootstrap,
        image=profile.base.container_image(),
        command=shell(f"{pm.install_cached_script()} && {profile.base.bootstrap(profile)}"),
        binds=(ROOTFS, SCRATCH, cache_bind(profile)),
        privileged=True,
        environment=pm.environment(),
    )


def resolve_install(profile: Profile) -> CommandSpec:
    pm = profile.base.package_manager()

    if not profile.packages:
        die("No packages to install", exception=UnsupportedCombination)

    return CommandSpec(
        step=Step.install,
        image=profile.base.container_image(),
        command=chroot(pm.install_script(profile.packages)),
        binds=(ROOTFS,),
        environment=pm.environment(),
    )


def resolve_remove(profile: Profile) -> CommandSpec:
    pm = profile.base.package_manager()

    if not profile.packages_to_remove:
        die("No packages to remove", exception=UnsupportedCombination)

    return CommandSpec(
        step=Step.remove,
        image=profile.base.container_image(),
        command=chroot(pm.remove_script(profile.packages_to_remove)),
        binds=(ROOTFS,),
        environment=pm.environment(),
    )


def resolve_script(profile: Profile) -> CommandSpec:
    # The script itself is mounted at /rootfs/work/script by the caller.
    return CommandSpec(
        step=Step.script,
        image=profile.base.container_image(),
        command=["chroot", "/rootfs", "bash", "/work/script"],
        binds=(ROOTFS,),
        environment={
            **profile.base.package_manager().environment(),
            "ULB_DISTRIBUTION": str(profile.base),
            "ULB_DISTRO_NAME": profile.distro_name,
            "ULB_VERSION": profile.version,
            "ULB_ATOMIC": one_zero(profile.atomic),
        },
    )


def resolve_init_system(profile: Profile) -> CommandSpec:
    return CommandSpec(
        step=Step.init_system,
        image=profile.base.container_image(),
        command=chroot(enable_init_system_script(profile), api_vfs=True),
        binds=(ROOTFS,),
        privileged=True,
    )


def resolve_bootloader(profile: Profile) -> CommandSpec:
    return CommandSpec(
        step=Step.bootloader,
        image=profile.base.container_image(),
        command=chroot(install_bootloader_script(profile), api_vfs=True),
        binds=(ROOTFS,),
        privileged=True,
        environment=profile.base.package_manager().environment(),
    )


def resolve_initramfs(profile: Profile) -> CommandSpec:
    return CommandSpec(
        step=Step.initramfs,
        image=profile.base.container_image(),
        command=chroot(shlex.join(profile.base.initramfs()), api_vfs=True),
        binds=(ROOTFS,),
        privileged=True,
    )


def assemble_script(profile: Profile) -> str:
    check_firmware(profile)

    pm = profile.base.package_manager()
    script = [
        pm.install_cached_script(),
        "rm -rf /build/iso",
        "mkdir -p /build/iso/boot",
        "kver=$(ls /rootfs/usr/lib/modules | sort -V | tail -n 1)",
        'test -n "$kver"',
        # Depending on the distribution and the composition technique the kernel and initrd live in /boot or
        # next to the kernel modules.
        'cp "$(ls /rootfs/boot/vmlinuz-$kver /rootfs/usr/lib/modules/$kver/vmlinuz 2>/dev/null | head -n 1)" '
        "/build/iso/boot/vmlinuz",
        'cp "$(ls /rootfs/boot/initrd.img-$kver /rootfs/boot/initramfs-$kver.img '
        '/rootfs/usr/lib/modules/$kver/initramfs.img 2>/dev/null | head -n 1)" /build/iso/boot/initrd.img',
        boot_files_script(profile),
    ]

    # The live system boots from the squashfs. Atomic images additionally carry their tree as an ostree
    # repository for installation.
    squashfs = f"/build/iso/{profile.base.live_squashfs()}"
    script += [
        shlex.join(["mkdir", "-p", squashfs.rpartition("/")[0]]),
        shlex.join(["mksquashfs", "/rootfs", squashfs, "-noappend", "-comp", "xz", "-e", "boot/efi"]),
    ]

    if profile.atomic:
        repo = "/build/iso/ostree/repo"
        script += [
            f"mkdir -p {repo}",
            shlex.join(["ostree", f"--repo={repo}", "init", "--mode=archive"]),
            shlex.join(
                [
                    "ostree", f"--repo={repo}", "commit",
                    f"--branch={ostree_ref(profile)}",
                    f"--subject={profile.distro_name} {profile.version}",
                    "--tree=dir=/rootfs",
                ]
            ),
        ]  # fmt: skip

    script += [
        shlex.join(
            [
                "xorriso", "-as", "mkisofs",
                "-o", f"/output/{profile.output_name}",
                "-R", "-J",
                "-V", profile.volume_label,
                *iso_boot_options(profile),
                "/build/iso",
            ]
        ),
    ]  # fmt: skip

    return " && ".join(script)


def resolve_assemble(profile: Profile) -> CommandSpec:
    return CommandSpec(
        step=Step.assemble,
        image=profile.base.container_image(),
        command=shell(assemble_script(profile)),
        binds=(Bind(WorkspaceDir.rootfs, "/rootfs", MountMode.ro), SCRATCH, cache_bind(profile), OUTPUT),
        privileged=True,
        environment=profile.base.package_manager().environment(),
    )


RESOLVERS: dict[Step, Callable[[Profile], CommandSpec]] = {
    Step.toolchain: resolve_toolchain,
    Step.bootstrap: resolve_bootstrap,
    Step.install: resolve_install,
    Step.remove: resolve_remove,
    Step.script: resolve_script,
    Step.init_system: resolve_init_system,
    Step.bootloader: resolve_bootloader,
    Step.initramfs: resolve_initramfs,
    Step.assemble: resolve_assemble,
}


def resolve(step: Step, profile: Profile) -> CommandSpec:
    """Map a step and a profile to the command implementing it, without side effects."""
    if not (resolver := RESOLVERS.get(step)):
        die(f"No command is known for step {step}", exception=UnsupportedCombination)

    return resolver(profile)


def resolve_plan(profile: Profile) -> dict[Step, CommandSpec]:
    """
    Resolve every step the profile needs up front.

    Steps whose input is empty are left out of the plan since there is nothing to run for them. Any
    unsupported combination is reported here, before anything is executed.
    """
    plan: dict[Step, CommandSpec] = {}

    for step in Step:
        if step == Step.install and not profile.packages:
            continue
        if step == Step.remove and not profile.packages_to_remove:
            continue

        plan[step] = resolve(step, profile)

    return plan


def check_supported(profile: Profile) -> None:
    resolve_plan(profile)


def describe_plan(plan: Mapping[Step, CommandSpec]) -> Sequence[str]:
    return [f"{step}: {spec}" for step, spec in plan.items()]
