from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotwin.core.errors import ItemExecutionError, ValidationError

from .base import ConfigurationItem, ItemKind
from .system import split_registry_path


_REGISTRY_TYPES = ("auto", "dword", "qword", "string", "expand_string")


def _normalize_registry_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return value


class RegistryItem(ConfigurationItem):
    """
    A single registry value.

    properties:
      - path: key path such as "HKCU:\\Software\\Microsoft\\Windows\\CurrentVersion\\Themes\\Personalize"
      - name: value name
      - value: desired data (int or string)
      - value_type: auto | dword | qword | string | expand_string (default auto)
    """

    kind = ItemKind.REGISTRY.value

    def validate(self) -> None:
        path = self.require_prop("path")
        self.require_prop("name")
        if "value" not in self.properties:
            raise ValidationError(
                code="item.property_missing",
                message=f"registry item '{self.name}' requires property 'value'",
                data={"item": self.name, "property": "value"},
            )
        try:
            split_registry_path(path)
        except ValueError as e:
            raise ValidationError(code="item.property_invalid", message=str(e), data={"item": self.name}) from e
        if self.value_type not in _REGISTRY_TYPES:
            raise ValidationError(
                code="item.property_invalid",
                message=f"registry item '{self.name}': unsupported value_type {self.value_type}",
                data={"item": self.name},
            )

    @property
    def value_type(self) -> str:
        return str(self.prop("value_type", "auto")).lower()

    def needs_elevation(self) -> bool:
        hive, _ = split_registry_path(self.prop("path"))
        return hive == "HKLM"

    def _current(self) -> Any:
        return self.adapters.registry.get_value(self.prop("path"), self.prop("name"))

    def test(self) -> bool:
        return _normalize_registry_value(self._current()) == _normalize_registry_value(self.prop("value"))

    def get_current_state(self) -> Dict[str, Any]:
        return {"path": self.prop("path"), "name": self.prop("name"), "value": self._current()}

    def apply(self) -> Dict[str, Any]:
        before = self._current()
        value = self.prop("value")
        if self.value_type in ("dword", "qword") or (self.value_type == "auto" and isinstance(value, bool)):
            value = int(value)
        self.adapters.registry.set_value(self.prop("path"), self.prop("name"), value, self.value_type)
        return {"path": self.prop("path"), "name": self.prop("name"), "before": before, "after": value}


def _is_subset(desired: Any, current: Any) -> bool:
    if isinstance(desired, dict):
        if not isinstance(current, dict):
            return False
        return all(k in current and _is_subset(v, current[k]) for k, v in desired.items())
    return desired == current


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in overlay.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def default_terminal_settings_path() -> Path:
    local = os.environ.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
    return Path(local) / "Packages" / "Microsoft.WindowsTerminal_8wekyb3d8bbwe" / "LocalState" / "settings.json"


class TerminalItem(ConfigurationItem):
    """
    Windows Terminal settings merged into settings.json.

    properties:
      - settings: object deep-merged into the current document
      - settings_path: optional override of the settings.json location
    """

    kind = ItemKind.TERMINAL.value

    def validate(self) -> None:
        self.require_prop("settings", dict)

    @property
    def settings_path(self) -> Path:
        p = self.prop("settings_path")
        return Path(os.path.expandvars(os.path.expanduser(p))) if p else default_terminal_settings_path()

    def _read(self) -> Optional[Dict[str, Any]]:
        path = self.settings_path
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ItemExecutionError(
                code="item.terminal_unreadable",
                message=f"Windows Terminal settings are not plain JSON: {path}",
                data={"item": self.name, "error": repr(e)},
            ) from e
        return data if isinstance(data, dict) else {}

    def test(self) -> bool:
        current = self._read()
        return current is not None and _is_subset(self.prop("settings"), current)

    def get_current_state(self) -> Dict[str, Any]:
        current = self._read()
        return {"settings_path": str(self.settings_path), "exists": current is not None, "settings": current or {}}

    def apply(self) -> Dict[str, Any]:
        current = self._read() or {}
        merged = _deep_merge(current, self.prop("settings"))
        path = self.settings_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(merged, ensure_ascii=False, indent=4) + "\n", encoding="utf-8")
        return {"settings_path": str(path), "keys": sorted(self.prop("settings").keys())}


def default_profile_path() -> Path:
    return Path.home() / "Documents" / "PowerShell" / "Microsoft.PowerShell_profile.ps1"


class ProfileItem(ConfigurationItem):
    """
    PowerShell profile content.

    properties:
      - content: text that must be present in the profile
      - path: optional profile path (default: ~/Documents/PowerShell/Microsoft.PowerShell_profile.ps1)
      - mode: "append" (content must be contained) | "replace" (file must equal content)
    """

    kind = ItemKind.PROFILE.value
    MODES = ("append", "replace")

    def validate(self) -> None:
        self.require_prop("content")
        if self.mode not in self.MODES:
            raise ValidationError(
                code="item.property_invalid",
                message=f"profile item '{self.name}': mode must be append or replace",
                data={"item": self.name, "mode": self.mode},
            )

    @property
    def mode(self) -> str:
        return str(self.prop("mode", "append")).lower()

    @property
    def path(self) -> Path:
        p = self.prop("path")
        return Path(os.path.expandvars(os.path.expanduser(p))) if p else default_profile_path()

    @property
    def content(self) -> str:
        return str(self.prop("content")).replace("\r\n", "\n")

    def _read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8").replace("\r\n", "\n")

    def test(self) -> bool:
        text = self._read()
        if text is None:
            return False
        if self.mode == "replace":
            return text.strip() == self.content.strip()
        return self.content.strip() in text

    def get_current_state(self) -> Dict[str, Any]:
        text = self._read()
        return {"path": str(self.path), "exists": text is not None, "length": len(text or "")}

    def apply(self) -> Dict[str, Any]:
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        if self.mode == "replace":
            path.write_text(self.content.rstrip("\n") + "\n", encoding="utf-8")
            return {"path": str(path), "mode": "replace"}
        existing = self._read() or ""
        if self.content.strip() in existing:
            return {"path": str(path), "mode": "append", "appended": False}
        sep = "" if not existing or existing.endswith("\n") else "\n"
        path.write_text(existing + sep + self.content.rstrip("\n") + "\n", encoding="utf-8")
        return {"path": str(path), "mode": "append", "appended": True}
