from __future__ import annotations

import importlib
import sys
from typing import Any, Dict, List, Optional, Type

from dotwin.configuration import ItemSpec
from dotwin.core.errors import ValidationError
from dotwin.items.base import ConfigurationItem
from dotwin.items.system import SystemAdapters


ItemClass = Type[ConfigurationItem]


def import_path(cls: type) -> str:
    return f"{cls.__module__}:{cls.__qualname__}"


def is_importable(cls: type) -> bool:
    """A fresh interpreter can re-import ``cls`` from its import path."""
    return cls.__module__ in sys.modules and "<locals>" not in cls.__qualname__


def resolve_import_path(path: str) -> Any:
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValidationError(code="item.kind_path_invalid", message=f"Expected 'module:object', got: {path}")
    obj: Any = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


class ItemRegistry:
    """
    Registry of configuration item kinds.

    - maps an item ``type`` string to the class that implements it
    - kinds are registered once; plugins add kinds through the same call
    """

    def __init__(self) -> None:
        self._classes: Dict[str, ItemClass] = {}
        self._origins: Dict[str, str] = {}

    def register(self, kind: str, cls: ItemClass, *, origin: str = "builtin") -> None:
        if not kind:
            raise ValidationError(code="item.kind_invalid", message="Item kind must be non-empty")
        if not (isinstance(cls, type) and issubclass(cls, ConfigurationItem)):
            raise ValidationError(
                code="item.kind_invalid",
                message=f"Item kind '{kind}' must be a ConfigurationItem subclass",
                data={"kind": kind},
            )
        if kind in self._classes:
            raise ValidationError(code="item.kind_duplicate", message=f"Duplicate item kind: {kind}", data={"kind": kind})
        self._classes[kind] = cls
        self._origins[kind] = origin

    def unregister_origin(self, origin: str) -> List[str]:
        removed = [k for k, o in self._origins.items() if o == origin]
        for k in removed:
            self._classes.pop(k, None)
            self._origins.pop(k, None)
        return removed

    def get(self, kind: str) -> Optional[ItemClass]:
        return self._classes.get(kind)

    def __contains__(self, kind: object) -> bool:
        return kind in self._classes

    def create(self, spec: ItemSpec, adapters: Optional[SystemAdapters] = None) -> ConfigurationItem:
        cls = self._classes.get(spec.type)
        if cls is None:
            raise ValidationError(
                code="item.unknown_type",
                message=f"Unknown item type '{spec.type}' for item '{spec.name}'",
                data={"item": spec.name, "type": spec.type, "known": sorted(self._classes.keys())},
            )
        return cls(spec, adapters)

    def import_paths(self, *, importable_only: bool = False) -> Dict[str, str]:
        """
        kind -> "module:qualname". With ``importable_only``, kinds whose class
        lives in a module loaded by file path (or a function body) are left out.
        """
        return {k: import_path(c) for k, c in self._classes.items() if not importable_only or is_importable(c)}

    def list_kinds(self) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for kind in sorted(self._classes.keys()):
            cls = self._classes[kind]
            out.append(
                {
                    "kind": kind,
                    "class": import_path(cls),
                    "origin": self._origins[kind],
                    "requires_elevation": bool(cls.requires_elevation),
                }
            )
        return out
