# SPDX-License-Identifier: LGPL-2.1-or-later

import shlex
from typing import TYPE_CHECKING

from ulb.distributions import DistributionInstaller
from ulb.installer import PackageManager
from ulb.installer.apt import Apt

if TYPE_CHECKING:
    from ulb.config import Profile


class Installer(DistributionInstaller):
    @classmethod
    def pretty_name(cls) -> str:
        return "Debian"

    @classmethod
    def package_manager(cls) -> type[PackageManager]:
        return Apt

    @classmethod
    def container_image(cls) -> str:
        return "docker.io/library/debian:stable"

    @classmethod
    def default_release(cls) -> str:
        return "stable"

    @classmethod
    def default_mirror(cls) -> str:
        return "http://deb.debian.org/debian"

    @classmethod
    def toolchain(cls, atomic: bool) -> list[str]:
        return ["debootstrap", "squashfs-tools", "xorriso", "dosfstools", "mtools"]

    @classmethod
    def kernel_packages(cls) -> list[str]:
        return ["linux-image-amd64", "live-boot", "systemd-sysv"]

    @classmethod
    def live_squashfs(cls) -> str:
        return "live/filesystem.squashfs"

    @classmethod
    def kernel_command_line(cls, label: str) -> list[str]:
        return ["boot=live", "quiet"]

    @classmethod
    def bootstrap(cls, profile: "Profile") -> str:
        return shlex.join(
            [
                "debootstrap",
                "--arch=amd64",
                f"--include={','.join(cls.kernel_packages())}",
                profile.release or cls.default_release(),
                "/rootfs",
                profile.mirror or cls.default_mirror(),
            ]
        )

    @classmethod
    def initramfs(cls) -> list[str]:
        return ["update-initramfs", "-u", "-k", "all"]
