# SPDX-License-Identifier: LGPL-2.1-or-later

import enum
import fcntl
import os
from pathlib import Path

import pytest

from ulb.log import UlbException
from ulb.util import StrEnum, chdir, flatten, flock, flock_or_die, one_zero, unique


class Fruit(StrEnum):
    apple = enum.auto()
    blood_orange = enum.auto()


def test_strenum() -> None:
    assert str(Fruit.apple) == "apple"
    assert str(Fruit.blood_orange) == "blood-orange"
    assert Fruit("blood-orange") == Fruit.blood_orange
    assert Fruit.values() == ["apple", "blood-orange"]


def test_flatten() -> None:
    assert flatten([[1, 2], [], [3]]) == [1, 2, 3]
    assert flatten([]) == []


def test_unique() -> None:
    assert unique(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_one_zero() -> None:
    assert one_zero(True) == "1"
    assert one_zero(False) == "0"


def test_chdir(tmp_path: Path) -> None:
    old = Path.cwd()

    with chdir(tmp_path):
        assert Path.cwd() == tmp_path

    assert Path.cwd() == old


def test_flock_or_die(tmp_path: Path) -> None:
    with flock_or_die(tmp_path) as path:
        assert path == tmp_path

    with flock(tmp_path):
        # flock() locks are per open file description, so a second open of the same path contends.
        with pytest.raises(UlbException, match="locked by another process"):
            with flock_or_die(tmp_path):
                pass

    with flock_or_die(tmp_path, fcntl.LOCK_SH):
        assert os.path.isdir(tmp_path)
