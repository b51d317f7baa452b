[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minimr"
version = "0.1.0"
description = "A small MapReduce coordinator and worker that talk over a local Unix socket"
requires-python = ">=3.10"
dependencies = []
keywords = ["mapreduce", "distributed", "coordinator", "worker", "word-count"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["minimr"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
