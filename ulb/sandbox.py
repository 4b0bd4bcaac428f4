# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import enum
import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Optional

from ulb.log import EnvironmentUnavailable, die
from ulb.run import CompletedProcess, find_binary, run
from ulb.util import StrEnum, flatten


class MountMode(StrEnum):
    rw = enum.auto()
    ro = enum.auto()


@dataclasses.dataclass(frozen=True)
class Mount:
    host: Path
    container: str
    mode: MountMode = MountMode.rw

    def options(self) -> list[str]:
        # "z" relabels the host directory so the mount is accessible on SELinux enforcing hosts.
        opts = "z" if self.mode == MountMode.rw else "ro,z"
        return ["--volume", f"{os.fspath(self.host)}:{self.container}:{opts}"]


class BuildEnvironment:
    """
    Ephemeral, isolated execution context for provisioning commands.

    Every invocation starts a fresh container from the given image which is removed again once the command
    exits, so nothing but the mounted host directories survives between invocations.
    """

    def __init__(self, runtime: str = "podman", timeout: Optional[int] = None) -> None:
        self.runtime = runtime
        self.timeout = timeout
        self.images: set[str] = set()
        self.available = False

    def cmdline(
        self,
        image: str,
        mounts: Sequence[Mount],
        command: Sequence[str],
        *,
        privileged: bool = False,
        env: Mapping[str, str] = {},
    ) -> list[str]:
        return [
            self.runtime,
            "run",
            "--rm",
            "--pull=never",
            *(["--privileged"] if privileged else []),
            *flatten(["--env", f"{k}={v}"] for k, v in sorted(env.items())),
            *flatten(m.options() for m in mounts),
            image,
            *command,
        ]

    def check_available(self) -> None:
        if self.available:
            return

        if not find_binary(self.runtime):
            die(
                f"Container runtime {self.runtime} not found",
                hint="Install podman or select another runtime with --runtime",
                exception=EnvironmentUnavailable,
            )

        result = run([self.runtime, "--version"], check=False, timeout=self.timeout)
        if result.returncode != 0:
            die(
                f"Container runtime {self.runtime} is not functional: {result.stderr.strip()}",
                exception=EnvironmentUnavailable,
            )

        logging.debug(result.stdout.strip())
        self.available = True

    def ensure_image(self, image: str) -> Optional[CompletedProcess]:
        """Make sure the image is available locally, returning the result of the pull if one failed."""
        if image in self.images:
            return None

        if run([self.runtime, "image", "inspect", image], check=False, timeout=self.timeout).returncode != 0:
            logging.info(f"Pulling {image}")

            result = run([self.runtime, "pull", image], check=False, timeout=self.timeout)
            if result.returncode != 0:
                return result

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
        return run(
            self.cmdline(image, mounts, command, privileged=privileged, env=env),
            check=False,
            timeout=self.timeout,
        )
