[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ldbcore"
version = "0.1.0"
description = "Building blocks of a LevelDB-style key/value store: storage backends, sorted table files and table-file bookkeeping"
requires-python = ">=3.10"
dependencies = []
keywords = ["leveldb", "sstable", "key-value", "storage", "database", "snappy"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ldbcore"]

[tool.pytest.ini_options]
addopts = "-ra"
