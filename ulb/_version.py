# SPDX-License-Identifier: LGPL-2.1-or-later
# The version is obtained from the environment variable ULB_VERSION if set, to allow overriding it for
# debugging purposes, otherwise from the metadata of the installed distribution, falling back to the static
# version below when ulb is run from a source checkout.

import importlib.metadata
import os
from typing import Optional

STATIC_VERSION = "1.0"


def version_from_metadata() -> Optional[str]:
    try:
        return importlib.metadata.version("ulb")
    except importlib.metadata.PackageNotFoundError:
        return None


__version__ = os.getenv("ULB_VERSION") or version_from_metadata() or STATIC_VERSION
