from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DotWinError(Exception):
    """
    Base error for DotWin; ``code`` is a dotted machine-readable id such as
    ``config.not_found`` or ``run.aborted``.

    ``data`` is a JSON-serialisable payload for whoever handles the error: the
    CLI prints it under the message (minus any full ``report``, which it prints
    separately) and plugin or schema failures put their validation errors here.
    """

    code: str
    message: str
    data: dict[str, Any] | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(DotWinError):
    pass


class InvalidParent(DotWinError):
    pass


class UnknownProgressId(DotWinError):
    pass


class EnvironmentValidationError(DotWinError):
    pass


class ConfigurationLoadError(DotWinError):
    pass


class ExportError(DotWinError):
    pass


class PluginError(DotWinError):
    pass


class ItemExecutionError(DotWinError):
    pass
