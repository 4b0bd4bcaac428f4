# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import re
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Optional

from ulb.config import Bootloader, InitSystem, Profile
from ulb.distributions import Distribution
from ulb.log import EnvironmentUnavailable, die
from ulb.run import CompletedProcess
from ulb.sandbox import BuildEnvironment, Mount


def make_profile(**kwargs: Any) -> Profile:
    values: dict[str, Any] = dict(
        distro_name="MyDistro",
        version="1.0",
        base=Distribution.ubuntu,
        atomic=False,
        init_system=InitSystem.systemd,
        bootloader=Bootloader.grub,
        uefi_support=True,
        bios_support=True,
        packages=("vim", "git"),
        packages_to_remove=(),
    )
    values.update(kwargs)
    return Profile(**values)


@dataclasses.dataclass(frozen=True)
class Invocation:
    image: str
    mounts: tuple[Mount, ...]
    command: tuple[str, ...]
    privileged: bool
    env: Mapping[str, str]

    def mount(self, container: str) -> Optional[Mount]:
        return next((m for m in self.mounts if m.container == container), None)

    @property
    def script(self) -> str:
        return " ".join(self.command)


class RecordingEnvironment(BuildEnvironment):
    """
    Build environment that records every invocation instead of starting containers.

    Commands succeed unless their command line contains `fail_on`. Image assembly commands leave an empty
    image in the mounted output directory like the real tools would. `unavailable` makes the runtime check
    fail and `pull_fails` makes every image pull fail.
    """

    def __init__(
        self,
        fail_on: Optional[str] = None,
        returncode: int = 1,
        *,
        unavailable: bool = False,
        pull_fails: bool = False,
    ) -> None:
        super().__init__("podman")
        self.fail_on = fail_on
        self.returncode = returncode
        self.unavailable = unavailable
        self.pull_fails = pull_fails
        self.invocations: list[Invocation] = []
        self.checks = 0

    def check_available(self) -> None:
        self.checks += 1

        if self.unavailable:
            die("Container runtime podman not found", exception=EnvironmentUnavailable)

    def ensure_image(self, image: str) -> Optional[CompletedProcess]:
        if self.pull_fails:
            return subprocess.CompletedProcess(["podman", "pull", image], 125, "", "Error: manifest unknown\n")

        self.images.add(image)
        return None

    def run(
        self,
        image: str,
        mounts: Sequence[Mount],
        command: Sequence[str],
        *,
        privileged: bool = False,
        env: Mapping[str, str] = {},
    ) -> CompletedProcess:
        invocation = Invocation(image, tuple(mounts), tuple(command), privileged, dict(env))
        self.invocations.append(invocation)

        if self.fail_on and self.fail_on in invocation.script:
            return subprocess.CompletedProcess(list(command), self.returncode, "", "something went wrong\n")

        if (output := invocation.mount("/output")) and (m := re.search(r"-o /output/([^\s']+)", invocation.script)):
            Path(output.host / m.group(1)).touch()

        return subprocess.CompletedProcess(list(command), 0, "", "")
