from __future__ import annotations

import importlib
import importlib.util
import inspect
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotwin.core.errors import DotWinError, PluginError
from dotwin.schema_store import PLUGIN_MANIFEST, SchemaStore, default_store

from .item_registry import ItemRegistry


@dataclass
class LoadedPlugin:
    name: str
    plugin: Any
    source: str
    manifest: Dict[str, Any] = field(default_factory=dict)
    item_kinds: List[str] = field(default_factory=list)
    rule_count: int = 0

    @property
    def version(self) -> str:
        return str(self.manifest.get("version") or getattr(self.plugin, "version", "") or "")

    @property
    def description(self) -> str:
        return str(self.manifest.get("description") or getattr(self.plugin, "description", "") or "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "source": self.source,
            "item_kinds": list(self.item_kinds),
            "rules": self.rule_count,
        }


def _import_module(module_name: str, search_dir: Optional[Path]) -> Any:
    try:
        return importlib.import_module(module_name)
    except ModuleNotFoundError:
        if search_dir is None:
            raise
    # Plugin directories outside the installed packages are loaded by file path.
    path = search_dir / (module_name.rsplit(".", 1)[-1] + ".py")
    if not path.is_file():
        raise ModuleNotFoundError(module_name)
    spec = importlib.util.spec_from_file_location(f"dotwin_plugin_{search_dir.name}", path)
    if spec is None or spec.loader is None:
        raise ModuleNotFoundError(module_name)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def import_object(spec: str, *, search_dir: Optional[Path] = None) -> Any:
    """
    Import by "module:attr" spec.
    """
    if ":" not in spec:
        raise PluginError(code="plugin.spec_invalid", message="plugin spec must be 'module:object'", data={"spec": spec})
    mod_name, attr = spec.split(":", 1)
    if not mod_name or not attr:
        raise PluginError(code="plugin.spec_invalid", message="plugin spec must be 'module:object'", data={"spec": spec})
    try:
        mod = _import_module(mod_name, search_dir)
    except Exception as e:  # noqa: BLE001
        raise PluginError(code="plugin.not_found", message="Failed to import plugin module", data={"module": mod_name, "error": repr(e)}) from e
    if not hasattr(mod, attr):
        raise PluginError(code="plugin.not_found", message="Plugin object not found in module", data={"module": mod_name, "attr": attr})
    return getattr(mod, attr)


class PluginManager:
    """
    Name-keyed registry of loaded plugins.

    A plugin is any object with a ``name``; optional hooks:
    - initialize(context) on load, cleanup() on unload
    - item_kinds() -> {kind: ConfigurationItem subclass}
    - recommendation_rules() -> [rule]
    """

    def __init__(
        self,
        *,
        item_registry: Optional[ItemRegistry] = None,
        engine: Any = None,
        context: Any = None,
        store: Optional[SchemaStore] = None,
    ) -> None:
        self._items = item_registry
        self._engine = engine
        self._context = context
        self._store = store
        self._plugins: Dict[str, LoadedPlugin] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)

    def register(self, plugin: Any, *, source: str = "<object>", manifest: Optional[Dict[str, Any]] = None) -> LoadedPlugin:
        manifest = dict(manifest or {})
        name = str(manifest.get("name") or getattr(plugin, "name", "") or "").strip()
        if not name:
            raise PluginError(code="plugin.invalid", message="Plugin must have a non-empty name", data={"source": source})
        if name in self._plugins:
            raise PluginError(code="plugin.duplicate", message=f"Duplicate plugin name: {name}", data={"name": name})

        origin = f"plugin:{name}"
        loaded = LoadedPlugin(name=name, plugin=plugin, source=source, manifest=manifest)

        initialize = getattr(plugin, "initialize", None)
        if callable(initialize):
            try:
                initialize(self._context)
            except Exception as e:  # noqa: BLE001
                raise PluginError(
                    code="plugin.initialize_failed",
                    message=f"Plugin '{name}' failed to initialize",
                    data={"name": name, "error": repr(e)},
                ) from e

        try:
            kinds_fn = getattr(plugin, "item_kinds", None)
            if callable(kinds_fn):
                if self._items is None:
                    raise PluginError(code="plugin.invalid", message=f"Plugin '{name}' provides item kinds but no item registry is attached")
                for kind, cls in (kinds_fn() or {}).items():
                    self._items.register(kind, cls, origin=origin)
                    loaded.item_kinds.append(kind)

            declared = manifest.get("item_kinds")
            if isinstance(declared, list) and sorted(declared) != sorted(loaded.item_kinds):
                raise PluginError(
                    code="plugin_manifest.mismatch",
                    message=f"Plugin '{name}' item kinds do not match its manifest",
                    data={"declared": sorted(declared), "provided": sorted(loaded.item_kinds)},
                )

            rules_fn = getattr(plugin, "recommendation_rules", None)
            if callable(rules_fn) and self._engine is not None:
                for rule in rules_fn() or []:
                    self._engine.add_rule(rule, origin=origin)
                    loaded.rule_count += 1
        except DotWinError as e:
            self._detach(name)
            if isinstance(e, PluginError):
                raise
            raise PluginError(code="plugin.invalid", message=f"Plugin '{name}' could not be registered: {e.message}", data=e.data) from e

        self._plugins[name] = loaded
        return loaded

    def load(self, spec: str, *, search_dir: Optional[Path] = None, manifest: Optional[Dict[str, Any]] = None) -> LoadedPlugin:
        obj = import_object(spec, search_dir=search_dir)
        try:
            plugin = obj() if inspect.isclass(obj) or (callable(obj) and not hasattr(obj, "name")) else obj
        except TypeError as e:
            raise PluginError(code="plugin.invalid", message="Plugin could not be constructed", data={"spec": spec}) from e
        return self.register(plugin, source=spec, manifest=manifest)

    def load_from_dir(self, plugins_dir: Path) -> List[str]:
        if not plugins_dir.exists():
            raise FileNotFoundError(str(plugins_dir))

        store = self._store or default_store()
        manifests = []
        for manifest_path in sorted(plugins_dir.glob("*/manifest.json")):
            try:
                raw = json.loads(manifest_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise PluginError(
                    code="plugin_manifest.invalid",
                    message="Plugin manifest is not readable JSON: {}".format(manifest_path),
                    data={"error": repr(e)},
                ) from e
            store.require_valid(
                PLUGIN_MANIFEST,
                raw,
                error=PluginError,
                code="plugin_manifest.invalid",
                message="Plugin manifest validation failed: {}".format(manifest_path),
            )
            manifests.append((manifest_path, raw))

        names: List[str] = []
        for manifest_path, raw in manifests:
            loaded = self.load(raw["entry"], search_dir=manifest_path.parent, manifest=raw)
            names.append(loaded.name)
        return names

    def unload(self, name: str) -> None:
        loaded = self._plugins.get(name)
        if loaded is None:
            raise PluginError(code="plugin.unknown", message=f"Unknown plugin: {name}", data={"name": name})
        del self._plugins[name]
        self._detach(name)

        cleanup = getattr(loaded.plugin, "cleanup", None)
        if callable(cleanup):
            try:
                cleanup()
            except Exception as e:  # noqa: BLE001
                raise PluginError(
                    code="plugin.cleanup_failed",
                    message=f"Plugin '{name}' failed to clean up",
                    data={"name": name, "error": repr(e)},
                ) from e

    def unload_all(self) -> None:
        for name in sorted(self._plugins.keys(), reverse=True):
            self.unload(name)

    def get(self, name: str) -> Optional[Any]:
        loaded = self._plugins.get(name)
        return loaded.plugin if loaded else None

    def list_plugins(self) -> List[Dict[str, Any]]:
        return [self._plugins[k].to_dict() for k in sorted(self._plugins.keys())]

    def _detach(self, name: str) -> None:
        origin = f"plugin:{name}"
        if self._items is not None:
            self._items.unregister_origin(origin)
        if self._engine is not None:
            self._engine.remove_rules(origin)
