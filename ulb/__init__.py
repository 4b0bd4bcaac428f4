# SPDX-License-Identifier: LGPL-2.1-or-later

import contextlib
import importlib.resources
import logging
import sys
from pathlib import Path
from typing import Optional

from ulb.config import Args, Config, Profile, Verb, find_profile, load_profile, summary
from ulb.context import Workspace
from ulb.log import complete_step, die, log_notice, log_to_file
from ulb.pipeline import Pipeline, PipelineState
from ulb.prompt import Prompter, prompt_profile
from ulb.resolve import describe_plan, resolve_plan
from ulb.sandbox import BuildEnvironment
from ulb.util import flock_or_die


def resource(name: str) -> str:
    return importlib.resources.files("ulb.resources").joinpath(name).read_text()


def write_if_missing(path: Path, text: str, mode: int = 0o644) -> None:
    if path.exists():
        logging.info(f"{path} already exists, not overwriting")
        return

    path.write_text(text)
    path.chmod(mode)
    logging.info(f"Created {path}")


def run_init(config: Config) -> None:
    with complete_step(f"Initializing project in {config.directory}…"):
        for d in (config.profiles_dir, config.files_dir, config.scripts_dir, config.build_dir):
            d.mkdir(parents=True, exist_ok=True)

        write_if_missing(config.profiles_dir / "example.toml", resource("example.toml"))
        write_if_missing(config.scripts_dir / "01-hello.sh", resource("01-hello.sh"), mode=0o755)

    log_notice("Edit profiles/example.toml and run 'ulb build' to build your first image")


def run_tutorials() -> None:
    print(resource("tutorials.txt"), end="")


def run_clean(config: Config) -> None:
    workspace = Workspace(config.workspace_dir)

    with complete_step(f"Removing {workspace.root}…"):
        workspace.purge()


def run_summary(args: Args, config: Config) -> None:
    profile = load_profile(find_profile(config.profiles_dir, args.profile))

    text = summary(profile, config)
    text += "\n    COMMANDS:\n"
    text += "\n".join(f"        {line}" for line in describe_plan(resolve_plan(profile)))

    print(text)


def run_build(
    args: Args,
    config: Config,
    profile: Profile,
    environment: Optional[BuildEnvironment] = None,
) -> None:
    output = config.output_path(profile)

    if output.exists() and not args.force:
        logging.info(f"Output path {output} exists already. (Use --force to rebuild.)")
        return

    pipeline = Pipeline(config, environment)
    # Unsupported profiles and a missing runtime must be reported before the workspace is touched.
    plan = pipeline.prepare(profile)

    workspace = pipeline.workspace
    workspace.root.mkdir(parents=True, exist_ok=True)

    with flock_or_die(workspace.root), contextlib.ExitStack() as stack:
        handler = log_to_file(workspace.log_file)
        stack.callback(logging.getLogger().removeHandler, handler)
        stack.callback(handler.close)

        if workspace.is_populated():
            if not args.force:
                die(
                    f"{workspace.rootfs} contains a root file system from an earlier build",
                    hint="Use --force to start from scratch or remove it with 'ulb clean'",
                )

            with complete_step(f"Removing {workspace.rootfs}…"):
                workspace.reset_rootfs()

        log_notice(f"Building {profile.distro_name} {profile.version} ({profile.base.pretty_name()})")

        result = pipeline.run(profile, plan)

    if result.state == PipelineState.failed:
        sys.exit(1)


def run_show_build(args: Args, config: Config) -> None:
    profile = prompt_profile(Prompter())
    print(summary(profile, config))
    run_build(args, config, profile)


def run_verb(args: Args, config: Config) -> None:
    if args.verb == Verb.init:
        return run_init(config)

    if args.verb == Verb.tutorials:
        return run_tutorials()

    if args.verb == Verb.clean:
        return run_clean(config)

    if args.verb == Verb.summary:
        return run_summary(args, config)

    if args.verb == Verb.show_build:
        return run_show_build(args, config)

    if args.verb == Verb.build:
        profile = load_profile(find_profile(config.profiles_dir, args.profile))
        return run_build(args, config, profile)

    die(f"Unknown verb {args.verb}")
