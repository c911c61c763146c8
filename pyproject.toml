[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sfcli"
version = "0.1.0"
description = "Helpers for local PHP development: humanised logs, git wrappers, a FastCGI client, Link header parsing, route decoding and .env loading"
requires-python = ">=3.10"
keywords = ["symfony", "php", "fastcgi", "php-fpm", "logs", "dotenv", "git", "link-header"]
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
    "Topic :: Software Development",
]
dependencies = [
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sfcli"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
