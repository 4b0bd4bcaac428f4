# SPDX-License-Identifier: LGPL-2.1-or-later

import shlex
from typing import TYPE_CHECKING

from ulb.distributions import DistributionInstaller
from ulb.installer import PackageManager
from ulb.installer.dnf import Dnf

if TYPE_CHECKING:
    from ulb.config import Profile

# Packages composed into the tree of atomic images. Everything else is layered on top by the package
# install stage.
ATOMIC_BASE_PACKAGES = (
    "fedora-release",
    "kernel",
    "systemd",
    "bash",
    "dnf",
    "dracut",
    "dracut-live",
    "ostree",
    "rpm-ostree",
)


class Installer(DistributionInstaller):
    @classmethod
    def pretty_name(cls) -> str:
        return "Fedora Linux"

    @classmethod
    def package_manager(cls) -> type[PackageManager]:
        return Dnf

    @classmethod
    def container_image(cls) -> str:
        return "registry.fedoraproject.org/fedora:latest"

    @classmethod
    def default_release(cls) -> str:
        # Follow the release of the build container.
        return "$(rpm -E %fedora)"

    @classmethod
    def supports_atomic(cls) -> bool:
        return True

    @classmethod
    def toolchain(cls, atomic: bool) -> list[str]:
        if atomic:
            return ["ostree", "rpm-ostree", "squashfs-tools", "xorriso", "dosfstools", "mtools"]

        return ["squashfs-tools", "xorriso", "dosfstools", "mtools"]

    @classmethod
    def kernel_packages(cls) -> list[str]:
        return ["kernel", "dracut-live"]

    @classmethod
    def live_squashfs(cls) -> str:
        return "LiveOS/squashfs.img"

    @classmethod
    def kernel_command_line(cls, label: str) -> list[str]:
        return [f"root=live:CDLABEL={label}", "rd.live.image", "quiet"]

    @classmethod
    def bootstrap(cls, profile: "Profile") -> str:
        release = profile.release or cls.default_release()

        if not profile.atomic:
            return (
                "dnf install --assumeyes --installroot=/rootfs --use-host-config "
                f"--releasever={release} --setopt=install_weak_deps=False @core "
                + " ".join(cls.kernel_packages())
            )

        treefile = [
            f"releasever: {release}",
            "repos:",
            "  - fedora",
            "  - updates",
            "packages:",
            *(f"  - {p}" for p in ATOMIC_BASE_PACKAGES),
        ]

        return " && ".join(
            [
                "mkdir -p /build/atomic/cache",
                "cp /etc/yum.repos.d/*.repo /build/atomic/",
                # Double quotes so the default release expands inside the build environment.
                "printf '%s\\n' " + " ".join(f'"{line}"' for line in treefile) + " > /build/atomic/treefile.yaml",
                shlex.join(
                    [
                        "rpm-ostree", "compose", "rootfs",
                        "--cachedir=/build/atomic/cache",
                        "/build/atomic/treefile.yaml",
                        "/rootfs",
                    ]
                ),
            ]
        )  # fmt: skip

    @classmethod
    def initramfs(cls) -> list[str]:
        # The live image is not booted on the machine it was built on so include everything needed to find
        # the squashfs on any hardware.
        return ["dracut", "--force", "--no-hostonly", "--add", "dmsquash-live", "--regenerate-all"]
