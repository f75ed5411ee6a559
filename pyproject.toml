[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mcstore"
version = "0.1.0"
description = "Building blocks of a memory object cache: bip buffer, object pool, growing hash table, CRC-32C and a file-backed page store"
requires-python = ">=3.10"
dependencies = []
keywords = ["cache", "hash table", "crc32c", "bip buffer", "object pool", "storage engine"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
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
packages = ["mcstore"]

[tool.pytest.ini_options]
addopts = "-ra"
