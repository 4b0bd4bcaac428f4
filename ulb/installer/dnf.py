# SPDX-License-Identifier: LGPL-2.1-or-later

from collections.abc import Sequence

from ulb.installer import PackageManager


class Dnf(PackageManager):
    @classmethod
    def executable(cls) -> str:
        return "dnf"

    @classmethod
    def cache_dir(cls) -> str:
        # dnf5 keeps its system cache here, and it is the dnf shipped in the fedora container images.
        return "/var/cache/libdnf5"

    @classmethod
    def install_cmd(cls, packages: Sequence[str], *, keep_cache: bool = False) -> list[str]:
        cmdline = [cls.executable(), "install", "--assumeyes"]

        if keep_cache:
            cmdline += ["--setopt=keepcache=True"]

        return [*cmdline, *packages]

    @classmethod
    def remove_cmd(cls, packages: Sequence[str]) -> list[str]:
        return [cls.executable(), "remove", "--assumeyes", *packages]

    @classmethod
    def cached_packages(cls) -> str:
        return f"{cls.cache_dir()}/*/packages/*.rpm"
