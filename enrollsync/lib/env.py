"""Environment variable utilities.

Loads ``.env`` files with python-dotenv and expands ``${VAR_NAME}``
references in values read from YAML settings files.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

__all__ = ["expand_env_vars", "expand_options", "load_env_file"]

# ${VAR_NAME} or $VAR_NAME
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load environment variables from a .env file.

    Args:
        path: Path to the file. If None, python-dotenv searches upwards
              from the current directory.
        override: If True, values from the file replace existing variables.

    Returns:
        True if a file was found and loaded.
    """
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``$VAR``; unknown variables are left as written.

    Example:
        >>> os.environ["SHEET"] = "abc"
        >>> expand_env_vars("id-${SHEET}")
        'id-abc'
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(2)
        return os.environ.get(var_name, match.group(0))

    return ENV_VAR_PATTERN.sub(replacer, value)


def expand_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively expand environment variables in string values."""
    result: Dict[str, Any] = {}
    for key, value in options.items():
        if isinstance(value, str):
            result[key] = expand_env_vars(value)
        elif isinstance(value, dict):
            result[key] = expand_options(value)
        elif isinstance(value, list):
            result[key] = [expand_env_vars(item) if isinstance(item, str) else item for item in value]
        else:
            result[key] = value
    return result
