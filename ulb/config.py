# SPDX-License-Identifier: LGPL-2.1-or-later

import argparse
import dataclasses
import enum
import os
import re
import textwrap
import tomllib
from collections.abc import Collection, Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar

from ulb._version import __version__
from ulb.distributions import Distribution
from ulb.log import Style, ValidationFailure, die
from ulb.util import StrEnum

T = TypeVar("T")
SE = TypeVar("SE", bound=StrEnum)

SAFE_VALUE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._+~-]*")
SAFE_PACKAGE = re.compile(r"[A-Za-z0-9@_][A-Za-z0-9._+~:=@-]*")
SAFE_URL = re.compile(r"[A-Za-z0-9._~:/?#@!&'()*+,;=%-]+")


class Verb(StrEnum):
    build = enum.auto()
    clean = enum.auto()
    init = enum.auto()
    summary = enum.auto()
    tutorials = enum.auto()
    show_build = enum.auto()


class InitSystem(StrEnum):
    systemd = enum.auto()
    openrc = enum.auto()


class Bootloader(StrEnum):
    grub = enum.auto()
    systemd_boot = enum.auto()

    def supports_bios(self) -> bool:
        return self == Bootloader.grub


class OutputFormat(StrEnum):
    iso = enum.auto()

    def extension(self) -> str:
        return str(self)


def try_parse_boolean(s: str) -> Optional[bool]:
    "Parse 1/true/yes/y/t/on as true and 0/false/no/n/f/off/None as false"

    s_l = s.lower()
    if s_l in {"1", "true", "yes", "y", "t", "on", "always"}:
        return True

    if s_l in {"0", "false", "no", "n", "f", "off", "never"}:
        return False

    return None


def parse_boolean(s: str) -> bool:
    value = try_parse_boolean(s)

    if value is None:
        die(f"Invalid boolean literal: {s!r}", exception=ValidationFailure)

    return value


def make_enum_parser(type: type[SE]) -> Callable[[Any], SE]:
    def parse_enum(value: Any) -> SE:
        try:
            return type(value)
        except ValueError:
            die(
                f"'{value}' is not a valid {type.__name__}",
                hint=f"Choose one of: {', '.join(type.values())}",
                exception=ValidationFailure,
            )

    return parse_enum


def parse_string(value: Any) -> str:
    if not isinstance(value, str):
        die(f"Expected a string but got {value!r}", exception=ValidationFailure)

    return value.strip()


def parse_optional_string(value: Any) -> Optional[str]:
    if value is None:
        return None

    return parse_string(value) or None


def parse_bool_value(value: Any) -> bool:
    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        return parse_boolean(value)

    die(f"Expected a boolean but got {value!r}", exception=ValidationFailure)


def parse_package_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")

    if not isinstance(value, list):
        die(f"Expected a list of packages but got {value!r}", exception=ValidationFailure)

    return tuple(p for p in (parse_string(v) for v in value) if p)


@dataclasses.dataclass(frozen=True)
class ProfileSetting(Generic[T]):
    dest: str
    parse: Callable[[Any], T]
    default: Optional[T] = None
    required: bool = True
    help: Optional[str] = None


PROFILE_SETTINGS: list[ProfileSetting[Any]] = [
    ProfileSetting("distro_name", parse_string, help="Name of your distribution"),
    ProfileSetting("version", parse_string, help="Version string"),
    ProfileSetting(
        "base",
        make_enum_parser(Distribution),
        help=f"Base distribution ({', '.join(Distribution.values())})",
    ),
    ProfileSetting(
        "atomic",
        parse_bool_value,
        default=False,
        required=False,
        help="true for an atomic (fedora only) image, false for a classic one",
    ),
    ProfileSetting(
        "init_system",
        make_enum_parser(InitSystem),
        help=f"Init system ({', '.join(InitSystem.values())})",
    ),
    ProfileSetting(
        "bootloader",
        make_enum_parser(Bootloader),
        help=f"Bootloader ({', '.join(Bootloader.values())})",
    ),
    ProfileSetting("uefi_support", parse_bool_value, help="true/false"),
    ProfileSetting("bios_support", parse_bool_value, help="true/false"),
    ProfileSetting(
        "packages",
        parse_package_list,
        default=(),
        required=False,
        help="List of packages to install",
    ),
    ProfileSetting(
        "packages_to_remove",
        parse_package_list,
        default=(),
        required=False,
        help="List of packages to remove",
    ),
    ProfileSetting(
        "format",
        make_enum_parser(OutputFormat),
        default=OutputFormat.iso,
        required=False,
        help="iso (only supported format)",
    ),
    ProfileSetting(
        "release",
        parse_optional_string,
        required=False,
        help="Release or suite to bootstrap (defaults to the base distribution's)",
    ),
    ProfileSetting(
        "mirror",
        parse_optional_string,
        required=False,
        help="Mirror to bootstrap from (debian and ubuntu only)",
    ),
]


@dataclasses.dataclass(frozen=True)
class Profile:
    """Validated description of the image to build. Construction fails if any invariant is violated."""

    distro_name: str
    version: str
    base: Distribution
    init_system: InitSystem
    bootloader: Bootloader
    uefi_support: bool
    bios_support: bool
    atomic: bool = False
    packages: tuple[str, ...] = ()
    packages_to_remove: tuple[str, ...] = ()
    format: OutputFormat = OutputFormat.iso
    release: Optional[str] = None
    mirror: Optional[str] = None

    def __post_init__(self) -> None:
        # Accept any sequence for the package lists but store them immutably.
        object.__setattr__(self, "packages", tuple(self.packages))
        object.__setattr__(self, "packages_to_remove", tuple(self.packages_to_remove))
        check_profile(self)

    @property
    def output_name(self) -> str:
        return f"{self.distro_name}-{self.version}.{self.format.extension()}"

    @property
    def volume_label(self) -> str:
        # ISO9660 volume identifiers are limited to 32 characters.
        return re.sub(r"[^A-Za-z0-9_-]", "_", self.distro_name)[:32]


def check_profile(profile: Profile) -> None:
    for field in ("distro_name", "version"):
        value = getattr(profile, field)
        if not value:
            die(f"{field} must not be empty", exception=ValidationFailure)
        if "/" in value or value in (".", ".."):
            die(f"{field} '{value}' cannot be used in a file name", exception=ValidationFailure)

    if not profile.uefi_support and not profile.bios_support:
        die(
            "The image must support at least one of UEFI or BIOS firmware",
            hint="Set uefi_support or bios_support to true",
            exception=ValidationFailure,
        )

    if profile.atomic and not profile.base.supports_atomic():
        die(
            f"Atomic images are not supported for {profile.base.pretty_name()}",
            hint="Use base = \"fedora\" or set atomic = false",
            exception=ValidationFailure,
        )

    if profile.format != OutputFormat.iso:
        die(f"Unsupported output format {profile.format}", exception=ValidationFailure)

    if profile.release and not SAFE_VALUE.fullmatch(profile.release):
        die(f"Invalid release '{profile.release}'", exception=ValidationFailure)

    if profile.mirror:
        if not profile.base.is_apt_distribution():
            die(
                f"A bootstrap mirror cannot be configured for {profile.base.pretty_name()}",
                exception=ValidationFailure,
            )
        if not SAFE_URL.fullmatch(profile.mirror):
            die(f"Invalid mirror '{profile.mirror}'", exception=ValidationFailure)

    for package in (*profile.packages, *profile.packages_to_remove):
        if not SAFE_PACKAGE.fullmatch(package):
            die(f"Invalid package name '{package}'", exception=ValidationFailure)


def profile_from_dict(values: Mapping[str, Any], source: str = "profile") -> Profile:
    lookup = {s.dest: s for s in PROFILE_SETTINGS}

    if unknown := sorted(set(values) - set(lookup)):
        die(f"{source}: Unknown setting {', '.join(unknown)}", exception=ValidationFailure)

    parsed: dict[str, Any] = {}

    for setting in PROFILE_SETTINGS:
        if setting.dest in values:
            parsed[setting.dest] = setting.parse(values[setting.dest])
        elif setting.required:
            die(f"{source}: Missing required setting {setting.dest}", exception=ValidationFailure)
        else:
            parsed[setting.dest] = setting.default

    return Profile(**parsed)


def load_profile(path: Path) -> Profile:
    try:
        with path.open("rb") as f:
            values = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        die(f"{path}: Failed to parse TOML: {e}", exception=ValidationFailure)

    return profile_from_dict(values, source=os.fspath(path))


def find_profile(profiles_dir: Path, name: Optional[str] = None) -> Path:
    profiles = sorted(profiles_dir.rglob("*.toml")) if profiles_dir.is_dir() else []

    if not profiles:
        die(
            f"No profiles found in {profiles_dir}",
            hint="Run 'ulb init' to create an example profile",
        )

    if name:
        target = profiles_dir / (name if name.endswith(".toml") else f"{name}.toml")
        if target not in profiles:
            die(f"Profile '{name}' not found in {profiles_dir}")

        return target

    if len(profiles) > 1:
        die(
            "Multiple profiles found, please specify one",
            hint=f"Available: {', '.join(p.stem for p in profiles)}",
        )

    return profiles[0]


def parse_ini(path: Path, only_sections: Collection[str] = ()) -> Iterator[tuple[str, str, str]]:
    """
    We have our own parser instead of using configparser as the latter does not support specifying the same
    setting multiple times in the same configuration file.
    """
    section: Optional[str] = None
    setting: Optional[str] = None
    value: Optional[str] = None

    for line in textwrap.dedent(path.read_text()).splitlines():
        comment = line.find("#")
        if comment >= 0:
            line = line[:comment]

        if not line.strip():
            continue

        # If we have a section, setting and value, any line that's indented is considered part of the
        # setting's value.
        if section and setting and value is not None and line[0].isspace():
            value = f"{value}\n{line.strip()}"
            continue

        # So the line is not indented, that means we either found a new section or a new setting. Either way,
        # let's yield the previous setting and its value before parsing the new section/setting.
        if section and setting and value is not None:
            yield section, setting, value
            setting = value = None

        line = line.strip()

        if line[0] == "[":
            if line[-1] != "]":
                die(f"{line} is not a valid section", exception=ValidationFailure)

            # Yield the section name with an empty key and value to indicate we've finished the current
            # section.
            if section:
                yield section, "", ""

            section = line[1:-1].strip()
            if not section:
                die("Section name cannot be empty or whitespace", exception=ValidationFailure)

            continue

        if not section:
            die(f"Setting {line} is located outside of section", exception=ValidationFailure)

        if only_sections and section not in only_sections:
            continue

        setting, delimiter, value = line.partition("=")
        if not delimiter:
            die(f"Setting {setting} must be followed by '='", exception=ValidationFailure)
        if not setting:
            die(f"Missing setting name before '=' in {line}", exception=ValidationFailure)

        setting = setting.strip()
        value = value.strip()

    # Make sure we yield any final setting and its value.
    if section and setting and value is not None:
        yield section, setting, value

    if section and (not only_sections or section in only_sections):
        yield section, "", ""


def parse_path(value: str) -> Path:
    if not value:
        die("Path must not be empty", exception=ValidationFailure)

    return Path(os.path.expanduser(value))


def parse_runtime(value: str) -> str:
    if not SAFE_VALUE.fullmatch(value):
        die(f"Invalid container runtime '{value}'", exception=ValidationFailure)

    return value


def parse_timeout(value: str) -> Optional[int]:
    if value in ("", "infinity"):
        return None

    try:
        timeout = int(value)
    except ValueError:
        die(f"Invalid timeout '{value}'", hint="Specify a number of seconds", exception=ValidationFailure)

    if timeout <= 0:
        die(f"Timeout must be positive, got {timeout}", exception=ValidationFailure)

    return timeout


@dataclasses.dataclass(frozen=True)
class ConfigSetting(Generic[T]):
    dest: str
    section: str
    parse: Callable[[str], T]
    default_factory: Callable[[Path], T]
    name: str = ""
    long: str = ""
    metavar: Optional[str] = None
    help: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", "".join(x.capitalize() for x in self.dest.split("_") if x))
        if not self.long:
            object.__setattr__(self, "long", f"--{self.dest.replace('_', '-')}")


SETTINGS: list[ConfigSetting[Any]] = [
    ConfigSetting(
        dest="workspace_dir",
        name="WorkspaceDirectory",
        section="Build",
        parse=parse_path,
        default_factory=lambda directory: Path("/tmp/.ulb"),
        metavar="PATH",
        help="Ephemeral working area holding the rootfs, scratch space and logs",
    ),
    ConfigSetting(
        dest="build_dir",
        name="BuildDirectory",
        section="Build",
        parse=parse_path,
        default_factory=lambda directory: directory / "build/iso",
        metavar="PATH",
        help="Directory the finished image is placed in",
    ),
    ConfigSetting(
        dest="runtime",
        section="Build",
        parse=parse_runtime,
        default_factory=lambda directory: "podman",
        metavar="NAME",
        help="Container runtime used for the build environment",
    ),
    ConfigSetting(
        dest="timeout",
        section="Build",
        parse=parse_timeout,
        default_factory=lambda directory: None,
        metavar="SECONDS",
        help="Abort any single command after this many seconds",
    ),
]


@dataclasses.dataclass(frozen=True)
class Config:
    """Build configuration, i.e. where things live and how commands are executed."""

    directory: Path
    workspace_dir: Path
    build_dir: Path
    runtime: str = "podman"
    timeout: Optional[int] = None

    @property
    def files_dir(self) -> Path:
        return self.directory / "files"

    @property
    def scripts_dir(self) -> Path:
        return self.directory / "scripts"

    @property
    def profiles_dir(self) -> Path:
        return self.directory / "profiles"

    @property
    def config_file(self) -> Path:
        return self.directory / "ulb.conf"

    def output_path(self, profile: Profile) -> Path:
        return self.build_dir / profile.output_name

    @classmethod
    def default(cls, directory: Path) -> "Config":
        return cls(
            directory=directory,
            **{s.dest: s.default_factory(directory) for s in SETTINGS},
        )


@dataclasses.dataclass(frozen=True)
class Args:
    verb: Verb
    profile: Optional[str]
    directory: Path
    debug: bool
    force: bool


def parse_chdir(path: str) -> Path:
    if not path:
        die("Directory must not be empty", exception=ValidationFailure)

    p = Path(path).absolute()
    if not p.is_dir():
        die(f"{p} is not a directory", exception=ValidationFailure)

    return p


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ulb",
        description="Build bootable live images from declarative profiles",
        allow_abbrev=False,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """\
            verbs:
              build       build the image described by PROFILE
              clean       remove the ephemeral working area
              init        create a project skeleton with an example profile
              summary     show the profile and the commands a build would run
              tutorials   explain the profile format and the project layout
              show-build  build interactively, answering questions instead of writing a profile
            """
        ),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "verb",
        type=Verb,
        choices=list(Verb),
        metavar="VERB",
        help=argparse.SUPPRESS,
    )
    parser.add_argument(
        "profile",
        nargs="?",
        metavar="PROFILE",
        help="Profile name in the profiles/ directory (optional if only one exists)",
    )
    parser.add_argument(
        "-C", "--directory",
        type=parse_chdir,
        default=None,
        metavar="PATH",
        help="Project directory containing profiles/, files/ and scripts/",
    )  # fmt: skip
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Log every executed command and show tracebacks",
    )
    parser.add_argument(
        "-f", "--force",
        action="store_true",
        default=False,
        help="Overwrite an existing image and start from a fresh root file system",
    )  # fmt: skip

    for s in SETTINGS:
        parser.add_argument(s.long, dest=s.dest, default=None, metavar=s.metavar, help=s.help)

    return parser


def parse_config(argv: Sequence[str]) -> tuple[Args, Config]:
    ns = create_argument_parser().parse_args(argv)

    directory = ns.directory or Path.cwd()
    lookup = {s.name: s for s in SETTINGS}
    values: dict[str, Any] = {}

    config_file = directory / "ulb.conf"
    if config_file.exists():
        for section, name, value in parse_ini(config_file, only_sections={s.section for s in SETTINGS}):
            if not name and not value:
                continue

            if not (s := lookup.get(name)):
                die(f"{config_file}: Unknown setting {name}", exception=ValidationFailure)

            values[s.dest] = s.parse(value)

    for s in SETTINGS:
        if (v := getattr(ns, s.dest)) is not None:
            values[s.dest] = s.parse(v)

    for s in SETTINGS:
        if s.dest not in values:
            values[s.dest] = s.default_factory(directory)

    for dest in ("workspace_dir", "build_dir"):
        if not values[dest].is_absolute():
            values[dest] = directory / values[dest]

    args = Args(
        verb=ns.verb,
        profile=ns.profile,
        directory=directory,
        debug=ns.debug,
        force=ns.force,
    )

    return args, Config(directory=directory, **values)


def yes_no(b: bool) -> str:
    return "yes" if b else "no"


def none_to_default(s: Optional[object]) -> str:
    return "default" if s is None else str(s)


def line_join_list(array: Sequence[object]) -> str:
    return "\n                                ".join(str(item) for item in array) if array else "none"


def bold(s: Any) -> str:
    return f"{Style.bold}{s}{Style.reset}"


def summary(profile: Profile, config: Config) -> str:
    return f"""\
{bold(f"PROFILE: {profile.distro_name} {profile.version}")}

    {bold("DISTRIBUTION")}:
                   Base Distribution: {profile.base.pretty_name()}
                             Release: {profile.release or profile.base.default_release()}
                              Atomic: {yes_no(profile.atomic)}
                         Init System: {profile.init_system}
                          Bootloader: {profile.bootloader}
                        UEFI Support: {yes_no(profile.uefi_support)}
                        BIOS Support: {yes_no(profile.bios_support)}

    {bold("CONTENT")}:
                            Packages: {line_join_list(profile.packages)}
                  Packages to Remove: {line_join_list(profile.packages_to_remove)}
                     Files Directory: {config.files_dir}
                   Scripts Directory: {config.scripts_dir}

    {bold("OUTPUT")}:
                       Output Format: {profile.format}
                              Output: {config.output_path(profile)}
                 Workspace Directory: {config.workspace_dir}
                   Container Runtime: {config.runtime}
                     Command Timeout: {none_to_default(config.timeout)}
"""
