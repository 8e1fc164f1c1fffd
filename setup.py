"""Packaging information for cloudtree."""

import re
import sys

import setuptools


def _version():
    with open("cloudtree/constants.py") as f:
        return re.search(r'^VERSION = "([^"]+)"', f.read(), re.M).group(1)


VERSION = _version()

if sys.version_info[:3] < (3, 10, 0):
    print("cloudtree requires Python 3.10 to run.")
    sys.exit(1)

install_requires = [
    "fasteners>=0.16",
    "msgpack>=1.0.0",
    "watchfiles>=0.18",
]

extras_require = {
    "dev": [
        "flake8>=3.7.9",
        "flake8-docstrings>=1.5.0",
        "flake8-import-order>=0.18.1",
        "black>=19.10b0",
        "mypy>=0.770",
        "pytest>=7.0",
        "pytest-asyncio>=0.21",
        "pytest-cov>=2.8.1",
    ]
}


def _long_description():
    with open("README.md") as f:
        return f.read()


setuptools.setup(
    name="cloudtree",
    version=VERSION,
    description="Coordinated asynchronous access to directory trees kept in sync.",
    long_description=_long_description(),
    long_description_content_type="text/markdown",
    license="Apache",
    packages=setuptools.find_packages(exclude=["cloudtree.tests", "cloudtree.tests.*"]),
    install_requires=install_requires,
    extras_require=extras_require,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Framework :: AsyncIO",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: POSIX",
        "Topic :: System :: Filesystems",
    ],
    python_requires=">=3.10",
)
