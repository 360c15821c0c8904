[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "walkv"
version = "0.1.0"
description = "A small durable key-value store built on a write-ahead log, checkpointed segment files and sparse indexes"
requires-python = ">=3.10"
dependencies = []
keywords = ["key-value", "write-ahead-log", "wal", "sstable", "storage", "database"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
walkv = "walkv.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["walkv"]

[tool.pytest.ini_options]
addopts = "-ra"
