#!/usr/bin/python3
# SPDX-License-Identifier: LGPL-2.1-or-later

from setuptools import find_packages, setup

setup(
    name="ulb",
    version="1.0",
    description="Build bootable live images from declarative profiles",
    license="LGPLv2+",
    python_requires=">=3.11",
    packages=find_packages(".", exclude=["tests"]),
    package_data={"": ["*.sh", "*.toml", "*.txt"]},
    include_package_data=True,
    extras_require={"tests": ["pytest"]},
    entry_points={"console_scripts": ["ulb = ulb.__main__:main"]},
)
