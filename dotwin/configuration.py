"""Configuration documents: the declarative desired state of a machine.

A document is JSON (or YAML with the same structure)::

    {
      "name": "workstation",
      "description": "Developer workstation baseline",
      "version": "1.0",
      "items": [
        {"name": "git", "type": "package", "properties": {"id": "Git.Git"}},
        {"name": "dark-mode", "type": "registry", "properties": {...}}
      ],
      "settings": {"continueOnError": true},
      "metadata": {"owner": "it"}
    }

Only structure is validated on load. An unknown item ``type`` is accepted
here and fails for that single item when it is tested or applied.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .core.errors import ConfigurationLoadError
from .schema_store import CONFIGURATION, SchemaStore, default_store


@dataclass(frozen=True)
class ItemSpec:
    name: str
    type: str
    description: str = ""
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ItemSpec":
        props = raw.get("properties")
        return cls(
            name=str(raw.get("name", "")),
            type=str(raw.get("type", "")),
            description=str(raw.get("description") or ""),
            properties=dict(props) if isinstance(props, dict) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "properties": dict(self.properties),
        }


@dataclass(frozen=True)
class ConfigurationDocument:
    name: str
    items: List[ItemSpec]
    description: str = ""
    version: str = ""
    settings: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: Optional[Path] = None

    @classmethod
    def from_dict(
        cls,
        raw: Any,
        *,
        store: Optional[SchemaStore] = None,
        source: Optional[Path] = None,
    ) -> "ConfigurationDocument":
        (store or default_store()).require_valid(
            CONFIGURATION,
            raw,
            error=ConfigurationLoadError,
            code="config.invalid",
            message="Configuration document is structurally invalid: {}".format(source or "<memory>"),
        )
        return cls(
            name=str(raw["name"]),
            items=[ItemSpec.from_dict(it) for it in raw.get("items", [])],
            description=str(raw.get("description") or ""),
            version=str(raw.get("version") or ""),
            settings=dict(raw.get("settings") or {}),
            metadata=dict(raw.get("metadata") or {}),
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "items": [it.to_dict() for it in self.items],
            "settings": dict(self.settings),
            "metadata": dict(self.metadata),
        }

    def setting(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)


def _parse(path: Path, text: str) -> Any:
    if path.suffix.lower() in (".yml", ".yaml"):
        return yaml.safe_load(text)
    return json.loads(text)


def load_configuration(path: Path, *, store: Optional[SchemaStore] = None) -> ConfigurationDocument:
    p = Path(path).expanduser()
    if not p.exists() or not p.is_file():
        raise ConfigurationLoadError(
            code="config.not_found",
            message=f"Configuration file not found: {p}",
            data={"path": str(p)},
        )
    try:
        raw = _parse(p, p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationLoadError(
            code="config.parse_error",
            message=f"Configuration file could not be read: {p}",
            data={"path": str(p), "error": repr(e)},
        ) from e
    return ConfigurationDocument.from_dict(raw, store=store, source=p)
