# SPDX-License-Identifier: LGPL-2.1-or-later

from ulb.distributions import debian


class Installer(debian.Installer):
    @classmethod
    def pretty_name(cls) -> str:
        return "Ubuntu"

    @classmethod
    def container_image(cls) -> str:
        return "docker.io/library/ubuntu:latest"

    @classmethod
    def default_release(cls) -> str:
        return "noble"

    @classmethod
    def default_mirror(cls) -> str:
        return "http://archive.ubuntu.com/ubuntu"

    @classmethod
    def kernel_packages(cls) -> list[str]:
        return ["linux-image-generic", "casper", "systemd-sysv"]

    @classmethod
    def live_squashfs(cls) -> str:
        return "casper/filesystem.squashfs"

    @classmethod
    def kernel_command_line(cls, label: str) -> list[str]:
        return ["boot=casper", "quiet"]
