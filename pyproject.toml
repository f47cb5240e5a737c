[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tunasync"
version = "0.8.0"
description = "Mirror job manager: an HTTP manager that tracks sync workers and mirror status, and a control client for it"
requires-python = ">=3.11"
keywords = ["mirror", "rsync", "sync", "manager", "mirror-status"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Mirroring",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "flask",
    "requests",
    "redis",
    "lmdb",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
tunasync = "tunasync.cli:main"
tunasynctl = "tunasync.ctl:main"

[tool.hatch.build.targets.wheel]
packages = ["tunasync"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
ignore_missing_imports = true
