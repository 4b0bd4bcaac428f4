# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Optional

from ulb.config import Config, Profile
from ulb.resolve import Bind, CommandSpec, Step, WorkspaceDir, resolve
from ulb.sandbox import BuildEnvironment, Mount
from ulb.tree import rmtree


class Workspace:
    """
    On-disk staging area of a build.

    Everything a pipeline run produces before the final image is moved into place lives below the root
    directory, so removing it restores a pristine state.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    @property
    def rootfs(self) -> Path:
        return self.root / "rootfs"

    @property
    def scratch(self) -> Path:
        return self.root / "build-files"

    @property
    def cache(self) -> Path:
        return self.scratch / "cache"

    @property
    def output(self) -> Path:
        return self.root / "output"

    @property
    def logs(self) -> Path:
        return self.root / "logs"

    @property
    def log_file(self) -> Path:
        return self.logs / "ulb.log"

    def is_populated(self) -> bool:
        return self.rootfs.exists() and any(self.rootfs.iterdir())

    def create(self) -> None:
        for d in (self.rootfs, self.scratch, self.cache, self.output, self.logs):
            d.mkdir(parents=True, exist_ok=True)

    def reset_rootfs(self) -> None:
        rmtree(self.rootfs)
        self.rootfs.mkdir(parents=True)

    def purge(self) -> None:
        if not self.root.exists():
            logging.info(f"{self.root} does not exist, nothing to clean")
            return

        rmtree(self.root)


class Context:
    """State of a single pipeline run."""

    def __init__(
        self,
        profile: Profile,
        config: Config,
        workspace: Workspace,
        environment: BuildEnvironment,
        plan: Optional[Mapping[Step, CommandSpec]] = None,
    ) -> None:
        self.profile = profile
        self.config = config
        self.workspace = workspace
        self.environment = environment
        self.plan = dict(plan or {})

    @property
    def cache_dir(self) -> Path:
        # Packages of different distributions must never be mixed in the same cache.
        return self.workspace.cache / str(self.profile.base)

    def host_path(self, d: WorkspaceDir) -> Path:
        return {
            WorkspaceDir.rootfs: self.workspace.rootfs,
            WorkspaceDir.scratch: self.workspace.scratch,
            WorkspaceDir.cache: self.cache_dir,
            WorkspaceDir.output: self.workspace.output,
        }[d]

    def mounts(self, binds: Sequence[Bind]) -> list[Mount]:
        return [Mount(self.host_path(b.source), b.target, b.mode) for b in binds]

    def command(self, step: Step) -> CommandSpec:
        if step not in self.plan:
            self.plan[step] = resolve(step, self.profile)

        return self.plan[step]
