#!/usr/bin/env python3
"""
Setup script for condamigrator

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

from setuptools import setup, find_namespace_packages

setup(
    name="condamigrator",
    version="0.1.0",
    description="Migrate an Anaconda/Miniconda installation to Miniforge",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src"),
    entry_points={
        "console_scripts": [
            "condamigrator=condamigrator.__main__:main",
        ],
    },
    install_requires=[
        "distro>=1.5.0",  # For Linux distribution detection
        "requests>=2.25.0",  # For downloading the installer
        "tqdm>=4.60.0",   # For progress bars
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: GNU Affero General Public License v3",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Topic :: System :: Systems Administration",
        "Topic :: System :: Installation/Setup",
    ],
)
