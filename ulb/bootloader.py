# SPDX-License-Identifier: LGPL-2.1-or-later

import shlex
import textwrap
from collections.abc import Sequence

from ulb.config import Bootloader, InitSystem, Profile
from ulb.installer import join_commands
from ulb.log import UnsupportedCombination, die
from ulb.util import unique

# Modules embedded into every grub image we generate. Nothing else is available at boot since the ISO does
# not carry a module directory.
GRUB_MODULES = (
    "cat",
    "configfile",
    "echo",
    "fat",
    "iso9660",
    "linux",
    "loadenv",
    "ls",
    "normal",
    "part_gpt",
    "part_msdos",
    "reboot",
    "search",
    "search_fs_file",
    "sleep",
    "test",
    "true",
)

GRUB_PACKAGES = {
    # (apt, efi, bios)
    (True, True, False): ["grub-common", "grub-efi-amd64-bin"],
    (True, False, True): ["grub-common", "grub-pc-bin"],
    (False, True, False): ["grub2-tools", "grub2-efi-x64-modules"],
    (False, False, True): ["grub2-tools", "grub2-pc-modules"],
}

SYSTEMD_BOOT_PACKAGES = {
    True: ["systemd-boot"],
    False: ["systemd-boot-unsigned"],
}

ESP = "/boot/efi"
BIOS_IMAGE = "boot/grub/bios.img"
EFI_IMAGE = "boot/efi.img"


def check_firmware(profile: Profile) -> None:
    if not profile.uefi_support and not profile.bios_support:
        die("Neither UEFI nor BIOS support is enabled", exception=UnsupportedCombination)

    if profile.bootloader == Bootloader.systemd_boot and profile.bios_support:
        die(
            "systemd-boot cannot boot on BIOS firmware",
            hint="Use bootloader = \"grub\" or set bios_support = false",
            exception=UnsupportedCombination,
        )


def bootloader_packages(profile: Profile) -> list[str]:
    apt = profile.base.is_apt_distribution()

    if profile.bootloader == Bootloader.systemd_boot:
        return SYSTEMD_BOOT_PACKAGES[apt]

    packages: list[str] = []
    if profile.uefi_support:
        packages += GRUB_PACKAGES[apt, True, False]
    if profile.bios_support:
        packages += GRUB_PACKAGES[apt, False, True]

    return unique(packages)


def grub_mkimage(profile: Profile, *, target: str, output: str, modules: Sequence[str] = ()) -> list[str]:
    return [
        "grub-mkimage" if profile.base.is_apt_distribution() else "grub2-mkimage",
        "--config", "/boot/grub/early.cfg",
        "--prefix", "/boot/grub",
        "--output", output,
        "--format", target,
        *GRUB_MODULES,
        *modules,
    ]  # fmt: skip


def grub_early_config() -> str:
    return textwrap.dedent(
        """\
        search --no-floppy --set=root --file /boot/grub/grub.cfg
        set prefix=($root)/boot/grub
        configfile /boot/grub/grub.cfg
        """
    )


def install_bootloader_script(profile: Profile) -> str:
    """Shell snippet run chrooted into the root file system to install the bootloader."""
    check_firmware(profile)

    pm = profile.base.package_manager()
    script = [pm.install_script(bootloader_packages(profile))]

    if profile.bootloader == Bootloader.grub:
        script += [
            "mkdir -p /boot/grub",
            f"printf '%s' {shlex.quote(grub_early_config())} > /boot/grub/early.cfg",
        ]

        if profile.uefi_support:
            script += [
                f"mkdir -p {ESP}/EFI/BOOT",
                shlex.join(grub_mkimage(profile, target="x86_64-efi", output=f"{ESP}/EFI/BOOT/BOOTX64.EFI")),
            ]

        if profile.bios_support:
            script += [
                shlex.join(
                    grub_mkimage(
                        profile,
                        target="i386-pc-eltorito",
                        output=f"/{BIOS_IMAGE}",
                        modules=["biosdisk"],
                    )
                ),
            ]
    elif profile.bootloader == Bootloader.systemd_boot:
        script += [
            f"mkdir -p {ESP}",
            # The ESP is a plain directory here, it only becomes a FAT file system on the ISO.
            f"SYSTEMD_RELAX_ESP_CHECKS=1 bootctl install --esp-path={ESP} --no-variables",
        ]
    else:
        die(f"Unsupported bootloader {profile.bootloader}", exception=UnsupportedCombination)

    return " && ".join(script)


def enable_init_system_script(profile: Profile) -> str:
    if profile.init_system == InitSystem.systemd:
        return join_commands(
            ["systemctl", "preset-all"],
            ["systemctl", "set-default", "multi-user.target"],
        )

    die(
        f"Enabling {profile.init_system} is not supported on {profile.base.pretty_name()}",
        hint="Use init_system = \"systemd\"",
        exception=UnsupportedCombination,
    )


def grub_config(profile: Profile) -> str:
    cmdline = " ".join(profile.base.kernel_command_line(profile.volume_label))

    return textwrap.dedent(
        f"""\
        set timeout=5
        menuentry "{profile.distro_name} {profile.version}" {{
            linux /boot/vmlinuz {cmdline}
            initrd /boot/initrd.img
        }}
        """
    )


def systemd_boot_entry(profile: Profile) -> str:
    cmdline = " ".join(profile.base.kernel_command_line(profile.volume_label))

    return textwrap.dedent(
        f"""\
        title {profile.distro_name} {profile.version}
        linux /vmlinuz
        initrd /initrd.img
        options {cmdline}
        """
    )


def boot_files_script(profile: Profile) -> str:
    """
    Shell snippet run in the build environment that stages the boot files of the ISO below /build/iso.
    """
    script = ["mkdir -p /build/iso/boot/grub"]

    if profile.bootloader == Bootloader.grub:
        script += [f"printf '%s' {shlex.quote(grub_config(profile))} > /build/iso/boot/grub/grub.cfg"]

    if profile.bios_support:
        script += [f"cp /rootfs/{BIOS_IMAGE} /build/iso/{BIOS_IMAGE}"]

    if profile.uefi_support:
        script += ["rm -rf /build/efi", "mkdir -p /build/efi", f"cp -r /rootfs{ESP}/. /build/efi/"]

        if profile.bootloader == Bootloader.systemd_boot:
            script += [
                "mkdir -p /build/efi/loader/entries",
                "cp /build/iso/boot/vmlinuz /build/iso/boot/initrd.img /build/efi/",
                f"printf '%s' {shlex.quote(systemd_boot_entry(profile))} > /build/efi/loader/entries/live.conf",
            ]

        # Size the FAT image after its contents with some slack for the file system metadata.
        script += [
            f"mkfs.vfat -n ESP -C /build/iso/{EFI_IMAGE} $(( $(du -sk /build/efi | cut -f1) + 4096 ))",
            f"mcopy -s -i /build/iso/{EFI_IMAGE} /build/efi/* ::/",
        ]

    return " && ".join(script)


def iso_boot_options(profile: Profile) -> list[str]:
    options: list[str] = []

    if profile.bios_support:
        options += [
            "-b", BIOS_IMAGE,
            "-no-emul-boot",
            "-boot-load-size", "4",
            "-boot-info-table",
            "--grub2-boot-info",
        ]  # fmt: skip

    if profile.uefi_support:
        if profile.bios_support:
            options += ["-eltorito-alt-boot"]

        options += ["-e", EFI_IMAGE, "-no-emul-boot", "-isohybrid-gpt-basdat"]

    return options
