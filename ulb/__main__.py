# SPDX-License-Identifier: LGPL-2.1-or-later

import faulthandler
import signal
import sys
from types import FrameType
from typing import Optional

from ulb import run_verb
from ulb.config import parse_config
from ulb.log import ARG_DEBUG, log_setup
from ulb.run import uncaught_exception_handler


def onsigterm(signal: int, frame: Optional[FrameType]) -> None:
    raise KeyboardInterrupt()


@uncaught_exception_handler()
def main() -> None:
    signal.signal(signal.SIGTERM, onsigterm)

    log_setup()

    args, config = parse_config(sys.argv[1:])

    if args.debug:
        ARG_DEBUG.set(args.debug)
        faulthandler.enable()

    run_verb(args, config)


if __name__ == "__main__":
    main()
