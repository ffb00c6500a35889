[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aibgraph"
version = "0.1.0"
description = "Infrastructure asset graph: SQLite storage, blast-radius analysis, exports and graph-database mirroring"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "infrastructure",
    "asset-graph",
    "blast-radius",
    "dependency",
    "sqlite",
    "cypher",
    "graphviz",
    "mermaid",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["aibgraph"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
