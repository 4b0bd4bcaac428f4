# SPDX-License-Identifier: LGPL-2.1-or-later

import contextlib
import contextvars
import logging
import os
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any, NoReturn, Optional

# This global should be initialized after parsing arguments
ARG_DEBUG = contextvars.ContextVar("debug", default=False)
LEVEL = 0


def terminal_is_dumb() -> bool:
    return not sys.stdout.isatty() or not sys.stderr.isatty() or os.getenv("TERM", "") == "dumb"


class Style:
    # fmt: off
    bold: str   = "\033[0;1;39m"     if not terminal_is_dumb() else ""
    blue: str   = "\033[0;1;34m"     if not terminal_is_dumb() else ""
    gray: str   = "\033[0;38;5;245m" if not terminal_is_dumb() else ""
    red: str    = "\033[31;1m"       if not terminal_is_dumb() else ""
    yellow: str = "\033[33;1m"       if not terminal_is_dumb() else ""
    reset: str  = "\033[0m"          if not terminal_is_dumb() else ""
    # fmt: on


class UlbException(Exception):
    """Leads to sys.exit"""

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint


class EnvironmentUnavailable(UlbException):
    """The container runtime backing the build environment cannot be used"""


class UnsupportedCombination(UlbException):
    """No command is known for the requested combination of profile attributes"""


class ValidationFailure(UlbException):
    """A profile or configuration value violates an invariant"""


class StageExecutionFailure(UlbException):
    def __init__(
        self,
        stage: str,
        returncode: int,
        stderr: str = "",
        *,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(f"Stage '{stage}' failed with exit code {returncode}", hint=hint)
        self.stage = stage
        self.returncode = returncode
        self.stderr = stderr

    def excerpt(self, lines: int = 20) -> str:
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


def die(
    message: str,
    *,
    hint: Optional[str] = None,
    exception: type[UlbException] = UlbException,
) -> NoReturn:
    raise exception(message, hint=hint)


def log_step(text: str) -> None:
    prefix = " " * LEVEL

    if sys.exc_info()[0]:
        # We are falling through exception handling blocks.
        # De-emphasize this step here, so the user can tell more
        # easily which step generated the exception. The exception
        # or error will only be printed after we finish cleanup.
        logging.info(f"{prefix}({text})")
    else:
        logging.info(f"{prefix}{Style.bold}{text}{Style.reset}")


def log_notice(text: str) -> None:
    logging.info(f"{Style.bold}{text}{Style.reset}")


@contextlib.contextmanager
def complete_step(text: str, text2: Optional[str] = None) -> Iterator[list[Any]]:
    global LEVEL

    log_step(text)

    LEVEL += 1
    try:
        args: list[Any] = []
        yield args
    finally:
        LEVEL -= 1
        assert LEVEL >= 0

    if text2 is not None:
        log_step(text2.format(*args))


class Formatter(logging.Formatter):
    def __init__(self, fmt: Optional[str] = None, *args: Any, **kwargs: Any) -> None:
        fmt = fmt or "%(message)s"

        self.formatters = {
            logging.DEBUG:    logging.Formatter(f"‣ {Style.gray}{fmt}{Style.reset}"),
            logging.INFO:     logging.Formatter(f"‣ {fmt}"),
            logging.WARNING:  logging.Formatter(f"‣ {Style.yellow}{fmt}{Style.reset}"),
            logging.ERROR:    logging.Formatter(f"‣ {Style.red}{fmt}{Style.reset}"),
            logging.CRITICAL: logging.Formatter(f"‣ {Style.red}{Style.bold}{fmt}{Style.reset}"),
        }  # fmt: skip

        super().__init__(fmt, *args, **kwargs)

    def format(self, record: logging.LogRecord) -> str:
        return self.formatters[record.levelno].format(record)


def log_setup(default_log_level: str = "info") -> None:
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(Formatter())

    logging.getLogger().addHandler(handler)
    logging.getLogger().setLevel(
        logging.getLevelName(os.getenv("ULB_LOG_LEVEL", default_log_level).upper())
    )


def log_to_file(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logging.getLogger().addHandler(handler)

    return handler
