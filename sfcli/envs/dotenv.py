"""Loading of a project's .env files, following the framework's lookup rules."""

from __future__ import annotations

import os

from dotenv import dotenv_values


def _read(path: str) -> dict[str, str] | None:
    try:
        values = dotenv_values(path)
    except (OSError, UnicodeDecodeError):
        return None
    return {key: "" if value is None else value for key, value in values.items()}


def _merge(variables: dict[str, str], path: str) -> None:
    if not os.path.exists(path):
        return
    values = _read(path)
    if values is None:
        return
    for key, value in values.items():
        variables.setdefault(key, value)


def load_dot_env(variables: dict[str, str], script_dir: str) -> dict[str, str]:
    """Add variables from the .env files found at or above script_dir.

    Variables already present are kept. Keys added (except APP_ENV) are listed,
    comma separated, in SYMFONY_DOTENV_VARS. The mapping is updated in place
    and returned.
    """
    directory = find_dot_env_dir(script_dir)
    variables["SYMFONY_DOTENV_VARS"] = os.environ.get("SYMFONY_DOTENV_VARS", "")
    for key, value in (lookup_dot_env(directory) or {}).items():
        if key in variables:
            continue
        variables[key] = value
        if key != "APP_ENV":
            if variables["SYMFONY_DOTENV_VARS"]:
                variables["SYMFONY_DOTENV_VARS"] += ","
            variables["SYMFONY_DOTENV_VARS"] += key
    return variables


def lookup_dot_env(directory: str) -> dict[str, str] | None:
    """Read .env (or .env.dist) and its local and per-environment overrides.

    Returns None if a main file exists but cannot be read.
    """
    variables: dict[str, str] = {}
    path = os.path.join(directory, ".env")
    dist = os.path.join(directory, ".env.dist")
    if os.path.exists(path):
        read = _read(path)
        if read is None:
            return None
        variables = read
    elif os.path.exists(dist):
        read = _read(dist)
        if read is None:
            return None
        variables = read

    app_env = os.environ.get("APP_ENV", "") or variables.get("APP_ENV", "") or "dev"
    variables["APP_ENV"] = app_env

    if app_env != "test":
        _merge(variables, os.path.join(directory, ".env.local"))
    _merge(variables, os.path.join(directory, f".env.{app_env}"))
    _merge(variables, os.path.join(directory, f".env.{app_env}.local"))
    return variables


def find_dot_env_dir(directory: str) -> str:
    """Return the nearest directory at or above this one holding .env or .env.dist, or ""."""
    while True:
        if os.path.exists(os.path.join(directory, ".env")):
            return directory
        if os.path.exists(os.path.join(directory, ".env.dist")):
            return directory
        parent = os.path.dirname(directory)
        if parent == directory:
            return ""
        directory = parent