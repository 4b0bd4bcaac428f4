# SPDX-License-Identifier: LGPL-2.1-or-later

from collections.abc import Sequence

from ulb.installer import PackageManager


class Apt(PackageManager):
    @classmethod
    def executable(cls) -> str:
        return "apt-get"

    @classmethod
    def cache_dir(cls) -> str:
        return "/var/cache/apt/archives"

    @classmethod
    def environment(cls) -> dict[str, str]:
        return {
            "DEBIAN_FRONTEND": "noninteractive",
            "DEBCONF_INTERACTIVE_SEEN": "true",
        }

    @classmethod
    def keep_cache_cmds(cls) -> list[list[str]]:
        # The official container images remove downloaded packages after every dpkg run, which
        # would empty the toolchain cache we mount into the build environment.
        return [["rm", "-f", "/etc/apt/apt.conf.d/docker-clean"]]

    @classmethod
    def refresh_cmds(cls) -> list[list[str]]:
        return [[cls.executable(), "update"]]

    @classmethod
    def install_cmd(cls, packages: Sequence[str], *, keep_cache: bool = False) -> list[str]:
        cmdline = [cls.executable(), "install", "--assume-yes"]

        if keep_cache:
            cmdline += ["-o", "APT::Keep-Downloaded-Packages=true"]

        return [*cmdline, *packages]

    @classmethod
    def remove_cmd(cls, packages: Sequence[str]) -> list[str]:
        return [cls.executable(), "remove", "--assume-yes", *packages]

    @classmethod
    def cached_packages(cls) -> str:
        return f"{cls.cache_dir()}/*.deb"
