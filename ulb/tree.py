# SPDX-License-Identifier: LGPL-2.1-or-later

import errno
import logging
import re
from pathlib import Path

from ulb.run import run


def cp_version() -> tuple[int, ...]:
    version = run(["cp", "--version"]).stdout.splitlines()[0].split()[-1]
    return tuple(int(x) for x in re.findall(r"\d+", version))


def copy_tree(src: Path, dst: Path, *, preserve: bool = True) -> Path:
    src = src.absolute()
    dst = dst.absolute()

    attrs = "mode,links"
    if preserve:
        attrs += ",timestamps"

    cmdline: list[str] = [
        "cp",
        "--recursive",
        "--no-dereference",
        f"--preserve={attrs}",
        "--reflink=auto",
        str(src),
        str(dst),
    ]

    # Keep symlinks to directories in the destination (e.g. /bin -> usr/bin) instead of failing to replace
    # them with real directories.
    if dst.is_dir() and any(dst.iterdir()) and cp_version() >= (9, 5):
        cmdline += ["--keep-directory-symlink"]

    # If the source and destination are both directories, we want to merge the source directory with the
    # destination directory. If the source if a file and the destination is a directory, we want to copy
    # the source inside the directory.
    if src.is_dir():
        cmdline += ["--no-target-directory"]

    run(cmdline)

    return dst


def rmtree(*paths: Path) -> None:
    if not paths:
        return

    filtered = sorted({p.absolute() for p in paths if p.exists() or p.is_symlink()})
    if filtered:
        run(["rm", "-rf", "--", *(str(p) for p in filtered)])


def move_tree(src: Path, dst: Path) -> Path:
    src = src.absolute()
    dst = dst.absolute()

    if src == dst:
        return dst

    if dst.is_dir():
        dst = dst / src.name

    try:
        src.rename(dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise e

        logging.info(
            f"Could not rename {src} to {dst} as they are located on different devices, "
            "falling back to copying"
        )
        copy_tree(src, dst)
        rmtree(src)

    return dst
