# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import enum
import logging
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Optional

from ulb.config import Config, Profile
from ulb.context import Context, Workspace
from ulb.log import StageExecutionFailure, UlbException, complete_step, log_notice
from ulb.resolve import CommandSpec, Step, resolve_plan
from ulb.sandbox import BuildEnvironment
from ulb.stages import STAGES, Stage
from ulb.tree import move_tree
from ulb.util import StrEnum


class PipelineState(StrEnum):
    completed = enum.auto()
    failed = enum.auto()


@dataclasses.dataclass(frozen=True)
class StageRecord:
    name: str
    skipped: bool = False


@dataclasses.dataclass(frozen=True)
class PipelineResult:
    state: PipelineState
    records: tuple[StageRecord, ...]
    artifact: Optional[Path] = None
    failure: Optional[UlbException] = None

    @property
    def failed_stage(self) -> Optional[str]:
        if isinstance(self.failure, StageExecutionFailure):
            return self.failure.stage

        return None


class Pipeline:
    """
    Runs the build stages in order against one workspace.

    The first failing stage stops the run. The root file system is left as is for inspection and no image
    is moved into the build directory.
    """

    def __init__(
        self,
        config: Config,
        environment: Optional[BuildEnvironment] = None,
        stages: Sequence[Stage] = STAGES,
    ) -> None:
        self.config = config
        self.environment = environment or BuildEnvironment(config.runtime, config.timeout)
        self.stages = stages
        self.workspace = Workspace(config.workspace_dir)

    def prepare(self, profile: Profile) -> dict[Step, CommandSpec]:
        """Resolve every command and check the build environment without touching the workspace."""
        plan = resolve_plan(profile)
        self.environment.check_available()
        return plan

    def run(self, profile: Profile, plan: Optional[Mapping[Step, CommandSpec]] = None) -> PipelineResult:
        if plan is None:
            plan = self.prepare(profile)

        self.workspace.create()
        artifact = self.config.output_path(profile)
        artifact.unlink(missing_ok=True)

        context = Context(profile, self.config, self.workspace, self.environment, plan)
        records: list[StageRecord] = []

        for stage in self.stages:
            if not stage.precondition(context):
                logging.info(f"Skipping {stage.name}")
                records.append(StageRecord(stage.name, skipped=True))
                continue

            records.append(StageRecord(stage.name))

            try:
                with complete_step(f"{stage.name}…"):
                    stage.run(context)
            except subprocess.CalledProcessError as e:
                failure = StageExecutionFailure(stage.name, e.returncode, e.stderr or "")
                return self.fail(records, failure)
            except UlbException as e:
                return self.fail(records, e)

        self.config.build_dir.mkdir(parents=True, exist_ok=True)
        move_tree(self.workspace.output / profile.output_name, artifact)

        log_notice(f"{artifact} ready")

        return PipelineResult(PipelineState.completed, tuple(records), artifact=artifact)

    def fail(self, records: Sequence[StageRecord], failure: UlbException) -> PipelineResult:
        logging.error(str(failure))

        if isinstance(failure, StageExecutionFailure) and (excerpt := failure.excerpt()):
            for line in excerpt.splitlines():
                logging.error(f"  {line}")

        if failure.hint:
            logging.info(f"({failure.hint})")

        logging.info(f"The root file system is kept at {self.workspace.rootfs} for inspection")

        return PipelineResult(PipelineState.failed, tuple(records), failure=failure)
