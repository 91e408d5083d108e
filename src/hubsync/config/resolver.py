"""
Placeholder substitution for loaded configuration.

``${NAME}`` reads an environment variable, ``${NAME:-fallback}`` supplies a
fallback when it is unset or empty, and ``{env}`` becomes the active
environment name.
"""

import os
import re
from typing import Any

_ENV_VAR = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


def resolve_config(config_data: dict[str, Any], env: str = "dev") -> dict[str, Any]:
    """
    Return a copy of ``config_data`` with every string placeholder substituted.

    A variable that is unset and has no fallback stays as the literal
    ``${NAME}`` text, so a missing secret shows up in error messages instead
    of silently becoming an empty string.
    """
    return _substitute(config_data, env)


def _substitute(value: Any, env: str) -> Any:
    if isinstance(value, dict):
        return {key: _substitute(item, env) for key, item in value.items()}
    if isinstance(value, list):
        return [_substitute(item, env) for item in value]
    if isinstance(value, str):
        return _ENV_VAR.sub(_lookup, value).replace("{env}", env)
    return value


def _lookup(match: re.Match) -> str:
    current = os.environ.get(match.group("name"))
    if current:
        return current
    fallback = match.group("fallback")
    if fallback is not None:
        return fallback
    return current if current is not None else match.group(0)
