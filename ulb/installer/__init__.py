# SPDX-License-Identifier: LGPL-2.1-or-later

import shlex
from collections.abc import Sequence


class PackageManager:
    @classmethod
    def executable(cls) -> str:
        raise NotImplementedError

    @classmethod
    def cache_dir(cls) -> str:
        """Where the package manager of the build environment keeps downloaded packages."""
        raise NotImplementedError

    @classmethod
    def environment(cls) -> dict[str, str]:
        return {}

    @classmethod
    def keep_cache_cmds(cls) -> list[list[str]]:
        return []

    @classmethod
    def refresh_cmds(cls) -> list[list[str]]:
        return []

    @classmethod
    def install_cmd(cls, packages: Sequence[str], *, keep_cache: bool = False) -> list[str]:
        raise NotImplementedError

    @classmethod
    def remove_cmd(cls, packages: Sequence[str]) -> list[str]:
        raise NotImplementedError

    @classmethod
    def cached_packages(cls) -> str:
        """Shell glob matching the packages downloaded into the cache directory."""
        raise NotImplementedError

    @classmethod
    def install_script(cls, packages: Sequence[str]) -> str:
        return join_commands(*cls.refresh_cmds(), cls.install_cmd(packages))

    @classmethod
    def remove_script(cls, packages: Sequence[str]) -> str:
        return join_commands(cls.remove_cmd(packages))

    @classmethod
    def install_cached_script(cls) -> str:
        # The glob has to stay unquoted so the shell expands it.
        return f"{shlex.join(cls.install_cmd([]))} {cls.cached_packages()}"

    @classmethod
    def toolchain_script(cls, packages: Sequence[str]) -> str:
        return join_commands(
            *cls.keep_cache_cmds(),
            *cls.refresh_cmds(),
            cls.install_cmd(packages, keep_cache=True),
        )


def join_commands(*cmdlines: Sequence[str]) -> str:
    return " && ".join(shlex.join(cmdline) for cmdline in cmdlines)
