[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "zmaptools"
version = "0.1.0"
description = "Scan-pipeline helpers: a result tee with progress monitoring, gateway discovery, raw frame sending and scan option handling"
requires-python = ">=3.10"
dependencies = []
keywords = ["network", "scanning", "netlink", "gateway", "csv", "tee", "monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX :: Linux",
    "Operating System :: POSIX :: BSD",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ztee = "zmaptools.ztee:main"

[tool.hatch.build.targets.wheel]
packages = ["zmaptools"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
