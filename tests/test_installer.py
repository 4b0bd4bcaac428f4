# SPDX-License-Identifier: LGPL-2.1-or-later

from ulb.distributions import Distribution
from ulb.installer.apt import Apt
from ulb.installer.dnf import Dnf


def test_package_manager_for_distribution() -> None:
    assert Distribution.debian.package_manager() is Apt
    assert Distribution.ubuntu.package_manager() is Apt
    assert Distribution.fedora.package_manager() is Dnf


def test_apt_scripts() -> None:
    assert Apt.install_script(["vim", "git"]) == "apt-get update && apt-get install --assume-yes vim git"
    assert Apt.remove_script(["nano"]) == "apt-get remove --assume-yes nano"
    assert Apt.install_cached_script() == "apt-get install --assume-yes /var/cache/apt/archives/*.deb"
    assert Apt.toolchain_script(["debootstrap"]) == (
        "rm -f /etc/apt/apt.conf.d/docker-clean && "
        "apt-get update && "
        "apt-get install --assume-yes -o APT::Keep-Downloaded-Packages=true debootstrap"
    )
    assert Apt.environment()["DEBIAN_FRONTEND"] == "noninteractive"


def test_dnf_scripts() -> None:
    assert Dnf.install_script(["vim"]) == "dnf install --assumeyes vim"
    assert Dnf.remove_script(["nano", "vi"]) == "dnf remove --assumeyes nano vi"
    assert Dnf.install_cached_script() == "dnf install --assumeyes /var/cache/libdnf5/*/packages/*.rpm"
    assert Dnf.toolchain_script(["xorriso"]) == "dnf install --assumeyes --setopt=keepcache=True xorriso"
    assert Dnf.environment() == {}


def test_package_names_are_quoted() -> None:
    assert Apt.install_script(["libc6:i386", "foo bar"]) == (
        "apt-get update && apt-get install --assume-yes libc6:i386 'foo bar'"
    )
