# SPDX-License-Identifier: LGPL-2.1-or-later

import contextlib
import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
from collections.abc import Iterator, Mapping, Sequence
from types import TracebackType
from typing import TYPE_CHECKING, Callable, NoReturn, Optional

from ulb.log import ARG_DEBUG, UlbException, die
from ulb.util import _FILE, PathString

# These types are only generic during type checking and not at runtime, leading
# to a TypeError during compilation.
# Let's be as strict as we can with the description for the usage we have.
if TYPE_CHECKING:
    CompletedProcess = subprocess.CompletedProcess[str]
    Popen = subprocess.Popen[str]
else:
    CompletedProcess = subprocess.CompletedProcess
    Popen = subprocess.Popen

# Same convention as timeout(1).
TIMEOUT_EXIT_STATUS = 124


def ensure_exc_info() -> tuple[type[BaseException], BaseException, TracebackType]:
    exctype, exc, tb = sys.exc_info()
    assert exctype
    assert exc
    assert tb
    return (exctype, exc, tb)


@contextlib.contextmanager
def uncaught_exception_handler(exit: Callable[[int], NoReturn] = sys.exit) -> Iterator[None]:
    rc = 0
    try:
        yield
    except SystemExit as e:
        rc = e.code if isinstance(e.code, int) else 1

        if ARG_DEBUG.get():
            sys.excepthook(*ensure_exc_info())
    except KeyboardInterrupt:
        rc = 1

        if ARG_DEBUG.get():
            sys.excepthook(*ensure_exc_info())
        else:
            logging.error("Interrupted")
    except UlbException as e:
        rc = 1

        logging.error(str(e))
        if e.hint:
            logging.info(f"({e.hint})")

        if ARG_DEBUG.get():
            sys.excepthook(*ensure_exc_info())
    except subprocess.CalledProcessError as e:
        # We always log when subprocess.CalledProcessError is raised, so we don't log again here.
        rc = e.returncode

        if ARG_DEBUG.get():
            sys.excepthook(*ensure_exc_info())
    except BaseException:
        sys.excepthook(*ensure_exc_info())
        rc = 1
    finally:
        sys.stdout.flush()
        sys.stderr.flush()
        exit(rc)


def log_process_failure(cmdline: Sequence[str], returncode: int) -> None:
    if returncode == TIMEOUT_EXIT_STATUS:
        logging.error(f'"{shlex.join(cmdline)}" timed out.')
    elif returncode < 0:
        logging.error(f'"{shlex.join(cmdline)}" was killed by {signal.Signals(-returncode).name} signal.')
    elif returncode == 127:
        logging.error(f"{cmdline[0]} not found.")
    else:
        logging.error(f'"{shlex.join(cmdline)}" returned non-zero exit code {returncode}.')


def run(
    cmdline: Sequence[PathString],
    check: bool = True,
    stdin: _FILE = None,
    stdout: _FILE = subprocess.PIPE,
    stderr: _FILE = subprocess.PIPE,
    input: Optional[str] = None,
    env: Mapping[str, str] = {},
    log: bool = True,
    timeout: Optional[float] = None,
) -> CompletedProcess:
    """
    Run a command to completion and return its exit status and captured output.

    Output is captured by default since callers decide on success or failure only after the command
    has returned. A command that exceeds the timeout is killed and reported with exit status 124.
    """
    cmd = [os.fspath(x) for x in cmdline]

    if ARG_DEBUG.get():
        logging.info(f"+ {shlex.join(cmd)}")

    if input is not None:
        assert stdin is None  # stdin and input cannot be specified together
        stdin = subprocess.PIPE
    elif stdin is None:
        stdin = subprocess.DEVNULL

    env = {
        "PATH": os.environ["PATH"],
        "TERM": os.getenv("TERM", "vt220"),
        "LANG": "C.UTF-8",
        **{k: v for k, v in env.items() if k != "LANG" and not k.startswith("LC_")},
    }

    for e in ("HOME", "TMPDIR", "XDG_RUNTIME_DIR", "CONTAINER_HOST", "DOCKER_HOST"):
        if e in os.environ and e not in env:
            env[e] = os.environ[e]

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            text=True,
            env=env,
        )
    except FileNotFoundError as e:
        if check:
            die(f"{e.filename} not found.")
        return CompletedProcess(cmd, 127, "", f"{cmd[0]} not found")

    try:
        out, err = proc.communicate(input, timeout=timeout)
        returncode = proc.returncode
    except subprocess.TimeoutExpired:
        proc.kill()
        out, err = proc.communicate()
        returncode = TIMEOUT_EXIT_STATUS
    except KeyboardInterrupt:
        proc.send_signal(signal.SIGINT)
        proc.wait()
        raise
    except BaseException:
        proc.terminate()
        proc.wait()
        raise

    if check and returncode != 0:
        if log:
            log_process_failure(cmd, returncode)
        raise subprocess.CalledProcessError(returncode, cmd, out, err)

    return CompletedProcess(cmd, returncode, out or "", err or "")


def find_binary(*names: PathString) -> Optional[str]:
    for name in names:
        if binary := shutil.which(os.fspath(name)):
            return binary

    return None
