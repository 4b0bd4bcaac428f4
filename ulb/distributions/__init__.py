# SPDX-License-Identifier: LGPL-2.1-or-later

import enum
import importlib
from typing import TYPE_CHECKING, cast

from ulb.util import StrEnum

if TYPE_CHECKING:
    from ulb.config import Profile
    from ulb.installer import PackageManager


class DistributionInstaller:
    @classmethod
    def pretty_name(cls) -> str:
        raise NotImplementedError

    @classmethod
    def package_manager(cls) -> type["PackageManager"]:
        raise NotImplementedError

    @classmethod
    def container_image(cls) -> str:
        raise NotImplementedError

    @classmethod
    def default_release(cls) -> str:
        raise NotImplementedError

    @classmethod
    def default_mirror(cls) -> str:
        return ""

    @classmethod
    def supports_atomic(cls) -> bool:
        return False

    @classmethod
    def toolchain(cls, atomic: bool) -> list[str]:
        raise NotImplementedError

    @classmethod
    def kernel_packages(cls) -> list[str]:
        """Kernel and live boot support, installed together with the base system."""
        raise NotImplementedError

    @classmethod
    def live_squashfs(cls) -> str:
        raise NotImplementedError

    @classmethod
    def kernel_command_line(cls, label: str) -> list[str]:
        raise NotImplementedError

    @classmethod
    def bootstrap(cls, profile: "Profile") -> str:
        raise NotImplementedError

    @classmethod
    def initramfs(cls) -> list[str]:
        raise NotImplementedError


class Distribution(StrEnum):
    ubuntu = enum.auto()
    debian = enum.auto()
    fedora = enum.auto()

    def is_apt_distribution(self) -> bool:
        return self in (Distribution.debian, Distribution.ubuntu)

    def pretty_name(self) -> str:
        return self.installer().pretty_name()

    def package_manager(self) -> type["PackageManager"]:
        return self.installer().package_manager()

    def container_image(self) -> str:
        return self.installer().container_image()

    def default_release(self) -> str:
        return self.installer().default_release()

    def default_mirror(self) -> str:
        return self.installer().default_mirror()

    def supports_atomic(self) -> bool:
        return self.installer().supports_atomic()

    def toolchain(self, atomic: bool) -> list[str]:
        return self.installer().toolchain(atomic)

    def kernel_packages(self) -> list[str]:
        return self.installer().kernel_packages()

    def live_squashfs(self) -> str:
        return self.installer().live_squashfs()

    def kernel_command_line(self, label: str) -> list[str]:
        return self.installer().kernel_command_line(label)

    def bootstrap(self, profile: "Profile") -> str:
        return self.installer().bootstrap(profile)

    def initramfs(self) -> list[str]:
        return self.installer().initramfs()

    def installer(self) -> type[DistributionInstaller]:
        modname = str(self).replace("-", "_")
        mod = importlib.import_module(f"ulb.distributions.{modname}")
        installer = getattr(mod, "Installer")
        assert issubclass(installer, DistributionInstaller)
        return cast(type[DistributionInstaller], installer)
