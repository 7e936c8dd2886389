[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hive"
version = "0.1.0"
description = "Models of kernel memory and object-store primitives: a TLSF allocator, a physical page bitmap, a memory pool, region mapping and a knode namespace"
requires-python = ">=3.10"
dependencies = []
keywords = ["tlsf", "allocator", "kernel", "memory", "bitmap", "object-store"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Operating System Kernels",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["hive"]

[tool.pytest.ini_options]
addopts = "-ra"
