[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vulnfeeds"
version = "0.1.0"
description = "Load vulnerability advisory feeds (Rocky, Wolfi, SUSE CVRF, Ubuntu, Root.io) into a keyed advisory store and query them"
requires-python = ">=3.10"
dependencies = []
keywords = ["vulnerability", "advisory", "cve", "security", "database"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vulnfeeds"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
