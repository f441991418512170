from __future__ import annotations

import platform
import sys
from typing import Mapping, Optional, Tuple

from dotwin.core.errors import EnvironmentValidationError
from dotwin.settings import env_flag


MIN_WINDOWS_BUILD = 22000
MIN_PYTHON = (3, 10)


def windows_build(version: Optional[str] = None) -> int:
    v = platform.version() if version is None else version
    parts = v.split(".")
    try:
        return int(parts[2]) if len(parts) >= 3 else 0
    except ValueError:
        return 0


def validate_environment(
    *,
    system: Optional[str] = None,
    version: Optional[str] = None,
    python: Optional[Tuple[int, int]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Raise EnvironmentValidationError unless running on Windows 11 with a
    supported Python. DOTWIN_SKIP_ENV_CHECK=1 bypasses the check.
    """
    if env_flag("DOTWIN_SKIP_ENV_CHECK", environ):
        return

    py = python or (sys.version_info.major, sys.version_info.minor)
    if tuple(py) < MIN_PYTHON:
        raise EnvironmentValidationError(
            code="env.python_unsupported",
            message="Python {}.{}+ is required (found {}.{})".format(*MIN_PYTHON, *py),
            data={"python": list(py)},
        )

    os_name = system or platform.system()
    if os_name != "Windows":
        raise EnvironmentValidationError(
            code="env.os_unsupported",
            message=f"DotWin configures Windows 11 machines (found {os_name or 'unknown'})",
            data={"system": os_name},
        )

    build = windows_build(version)
    if build < MIN_WINDOWS_BUILD:
        raise EnvironmentValidationError(
            code="env.windows_unsupported",
            message=f"Windows 11 (build {MIN_WINDOWS_BUILD}+) is required (found build {build})",
            data={"build": build},
        )
