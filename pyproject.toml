[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rsprof"
version = "0.1.1"
description = "Profiler toolkit: a shared-memory trace ring buffer, per-call-site heap aggregation, user-frame attribution and tools for inspecting SQLite profile databases"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "profiler",
    "profiling",
    "cpu",
    "heap",
    "sampling",
    "sqlite",
    "shared-memory",
    "ring-buffer",
    "performance",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rsprof = "rsprof.cli:main"
rsprof-demo = "rsprof.demo.app:main"

[tool.hatch.build.targets.wheel]
packages = ["rsprof"]

[tool.hatch.build.targets.sdist]
include = ["rsprof", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
check_untyped_defs = true
