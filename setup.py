#!/usr/bin/env python

import os
import re

from setuptools import setup, find_packages


def find_version(*segments):
    root = os.path.abspath(os.path.dirname(__file__))
    abspath = os.path.join(root, *segments)
    with open(abspath, "r") as file:
        content = file.read()
    match = re.search(r"^__version__ = ['\"]([^'\"]+)['\"]", content, re.MULTILINE)
    if match:
        return match.group(1)
    raise RuntimeError("Unable to find version string!")


setup(
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    description="Publishes and retrieves content addressed artifacts to and from OCI registries.",
    entry_points={"console_scripts": ["oci-transfer = oci_transfer.cli:main"]},
    extras_require={
        "dev": [
            "black",
            "pylint",
            "pytest",
            "pytest-asyncio",
            "twine",
            "wheel",
        ],
        "test": ["pytest", "pytest-asyncio"],
    },
    include_package_data=True,
    python_requires=">=3.8",
    install_requires=[
        "aiodns",
        "aiofiles",
        "aiohttp",
        "typer",
        "www_authenticate",
    ],
    keywords="async cli oci oci-registry registry push fetch",
    license="Apache License 2.0",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    name="oci_transfer",
    packages=find_packages(exclude=["tests", "tests.*"]),
    tests_require=["pytest", "pytest-asyncio"],
    test_suite="tests",
    version=find_version("oci_transfer", "__init__.py"),
)
