[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "metashrew"
version = "8.6.1"
description = "Block indexer host: height-annotated key-value history, reorg rollback and a JSON-RPC block sync loop"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["bitcoin", "indexer", "key-value", "reorg", "json-rpc", "blockchain"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["metashrew"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
