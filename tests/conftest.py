# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path

import pytest

from ulb.config import Config

from . import RecordingEnvironment


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        directory=tmp_path,
        workspace_dir=tmp_path / "workspace",
        build_dir=tmp_path / "build/iso",
    )


@pytest.fixture
def environment() -> RecordingEnvironment:
    return RecordingEnvironment()
