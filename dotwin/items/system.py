"""Thin adapters over the OS: processes, the registry and the elevation probe.

Items never call ``subprocess`` or ``winreg`` directly; they go through these
adapters so tests can substitute fakes and non-Windows hosts fail per item
instead of at import time.
"""

from __future__ import annotations

import ctypes
import os
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence, Union

try:  # Windows-only module
    import winreg  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore


RegistryValue = Union[str, int, None]


class CommandRunner(Protocol):
    def run(self, command: Sequence[str], *, timeout: Optional[float] = None) -> subprocess.CompletedProcess:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    def __init__(self, default_timeout: Optional[float] = 600.0):
        self.default_timeout = default_timeout

    def run(self, command: Sequence[str], *, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        return subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout if timeout is not None else self.default_timeout,
        )


def powershell_command(script: str) -> list[str]:
    return ["powershell", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", script]


def ps_quote(value: str) -> str:
    """Single-quote a value for a PowerShell command line."""
    return "'" + str(value).replace("'", "''") + "'"


class RegistryAccessor(Protocol):
    def get_value(self, path: str, value_name: str) -> RegistryValue:  # pragma: no cover - protocol
        ...

    def set_value(self, path: str, value_name: str, value: Union[str, int], value_type: str = "auto") -> None:  # pragma: no cover - protocol
        ...


class WindowsRegistryAccessor:
    """Minimal registry helper backed by winreg."""

    _TYPES = ("auto", "dword", "qword", "string", "expand_string")

    def __init__(self) -> None:
        if winreg is None:
            raise RuntimeError("winreg not available on this platform")

    def get_value(self, path: str, value_name: str) -> RegistryValue:
        hive, subkey = self._split_path(path)
        try:
            with winreg.OpenKey(hive, subkey) as key:  # type: ignore[arg-type]
                value, _ = winreg.QueryValueEx(key, value_name)
                return value
        except FileNotFoundError:
            return None

    def set_value(self, path: str, value_name: str, value: Union[str, int], value_type: str = "auto") -> None:
        if value_type not in self._TYPES:
            raise ValueError(f"Unsupported registry value type: {value_type}")
        hive, subkey = self._split_path(path)
        if value_type == "auto":
            value_type = "dword" if isinstance(value, int) else "string"
        reg_type = {
            "dword": winreg.REG_DWORD,
            "qword": winreg.REG_QWORD,
            "string": winreg.REG_SZ,
            "expand_string": winreg.REG_EXPAND_SZ,
        }[value_type]
        with winreg.CreateKeyEx(hive, subkey, 0, winreg.KEY_WRITE) as key:  # type: ignore[arg-type]
            winreg.SetValueEx(key, value_name, 0, reg_type, value)

    def _split_path(self, path: str) -> tuple[object, str]:
        hive_name, subkey = split_registry_path(path)
        hive_map = {
            "HKLM": winreg.HKEY_LOCAL_MACHINE,
            "HKCU": winreg.HKEY_CURRENT_USER,
            "HKCR": winreg.HKEY_CLASSES_ROOT,
            "HKU": winreg.HKEY_USERS,
            "HKCC": winreg.HKEY_CURRENT_CONFIG,
        }
        try:
            return hive_map[hive_name], subkey
        except KeyError as exc:
            raise ValueError(f"Unsupported hive: {hive_name}") from exc


def split_registry_path(path: str) -> tuple[str, str]:
    """Split ``HKCU:\\Software\\X`` into (``HKCU``, ``Software\\X``)."""
    cleaned = str(path).replace("/", "\\")
    marker = ":\\"
    if marker not in cleaned:
        raise ValueError(f"Invalid registry path: {path}")
    hive_name, subkey = cleaned.split(marker, 1)
    return hive_name.upper(), subkey.lstrip("\\")


def is_elevated() -> bool:
    """True when running as Administrator (Windows) or root (elsewhere)."""
    if os.name == "nt":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
        except (AttributeError, OSError):
            return False
    geteuid = getattr(os, "geteuid", None)
    return bool(geteuid is not None and geteuid() == 0)


@dataclass
class SystemAdapters:
    """OS collaborators handed to every configuration item."""

    runner: CommandRunner = field(default_factory=SubprocessRunner)
    registry_factory: Callable[[], RegistryAccessor] = WindowsRegistryAccessor
    elevated: Callable[[], bool] = is_elevated
    _registry: Optional[RegistryAccessor] = field(default=None, init=False, repr=False)

    @property
    def registry(self) -> RegistryAccessor:
        if self._registry is None:
            self._registry = self.registry_factory()
        return self._registry
