#!/usr/bin/env python
"""Setup script for timeline-archiver."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

# Read version from package
version = {}
with open("src/timeline_archiver/__init__.py") as f:
    for line in f:
        if line.startswith("__version__"):
            exec(line, version)
            break

setup(
    name="timeline-archiver",
    version=version.get("__version__", "0.1.0"),
    description="CLI tool to archive public Twitter timelines and their media",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Parker",
    license="MIT",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "aiohttp>=3.9.0",
        "aiofiles>=23.1.0",
        "pydantic>=2.0",
        "click>=8.1.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "aioresponses>=0.7.4",
            # aioresponses cannot build responses under aiohttp 3.14+
            "aiohttp<3.14",
        ],
    },
    entry_points={
        "console_scripts": [
            "timeline-archiver=timeline_archiver.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet",
        "Topic :: System :: Archiving",
    ],
    keywords="twitter timeline archive download media cli",
)
