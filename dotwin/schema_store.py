from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type

import jsonschema
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from dotwin.core.errors import DotWinError

from .resources import schemas_dir as default_schemas_dir


CONFIGURATION = "configuration.schema.json"
PLUGIN_MANIFEST = "plugin_manifest.schema.json"
RECOMMENDATIONS_EXPORT = "recommendations_export.schema.json"
TEST_RESULTS_EXPORT = "test_results_export.schema.json"
DEFS = "defs.schema.json"


class SchemaStore:
    """
    The JSON Schemas DotWin documents are checked against: configuration
    files, plugin manifests and both export formats.

    Notes:
    - every schema is registered under its file URI and its $id, so relative
      refs such as "defs.schema.json#/$defs/object" resolve either way.
    - validators are built once per schema and reused.
    """

    def __init__(self, schemas_dir: Optional[Path] = None):
        self._schemas_dir = schemas_dir or default_schemas_dir()
        self._schemas: Dict[str, Dict[str, Any]] = {}
        self._validators: Dict[str, jsonschema.Draft202012Validator] = {}
        self._registry: Registry = Registry()

    @property
    def schemas_dir(self) -> Path:
        return self._schemas_dir

    def load(self) -> "SchemaStore":
        if not self._schemas_dir.exists():
            raise FileNotFoundError(str(self._schemas_dir))

        registry = Registry()
        for p in sorted(self._schemas_dir.glob("*.schema.json")):
            schema = json.loads(p.read_text(encoding="utf-8"))
            self._schemas[p.name] = schema
            resource = Resource.from_contents(schema, default_specification=DRAFT202012)
            registry = registry.with_resource(uri=p.resolve().as_uri(), resource=resource)
            schema_id = schema.get("$id")
            if isinstance(schema_id, str) and schema_id:
                registry = registry.with_resource(uri=schema_id, resource=resource)
        self._registry = registry.crawl()
        self._validators.clear()

        if DEFS not in self._schemas:
            raise FileNotFoundError(f"{DEFS} is required in {self._schemas_dir}")
        return self

    def list_schema_names(self) -> List[str]:
        return sorted(self._schemas.keys())

    def _validator(self, schema_name: str) -> jsonschema.Draft202012Validator:
        validator = self._validators.get(schema_name)
        if validator is None:
            schema = self._schemas.get(schema_name)
            if schema is None:
                raise KeyError(schema_name)
            validator = jsonschema.Draft202012Validator(schema, registry=self._registry)
            self._validators[schema_name] = validator
        return validator

    def check_schemas(self) -> List[Tuple[str, str]]:
        """(schema_name, error_message) for every schema that is not itself valid."""
        errors: List[Tuple[str, str]] = []
        for name in self.list_schema_names():
            try:
                jsonschema.Draft202012Validator.check_schema(self._schemas[name])
            except jsonschema.SchemaError as e:
                errors.append((name, e.message))
        return errors

    def validate(self, schema_name: str, instance: Any) -> List[str]:
        """
        Error strings for ``instance``, each prefixed with its JSON path
        (``items/0/type: ...``); empty means valid.
        """
        out: List[str] = []
        errors = self._validator(schema_name).iter_errors(instance)
        for e in sorted(errors, key=lambda err: ([str(p) for p in err.absolute_path], err.message)):
            where = "/".join(str(p) for p in e.absolute_path)
            out.append(f"{where}: {e.message}" if where else e.message)
        return out

    def require_valid(
        self,
        schema_name: str,
        instance: Any,
        *,
        error: Type[DotWinError],
        code: str,
        message: str,
    ) -> None:
        errors = self.validate(schema_name, instance)
        if errors:
            raise error(code=code, message=message, data={"schema": schema_name, "errors": errors})


_DEFAULT_STORE: Optional[SchemaStore] = None


def default_store() -> SchemaStore:
    """Shipped schemas are immutable, so one loaded store is shared per process."""
    global _DEFAULT_STORE
    if _DEFAULT_STORE is None:
        _DEFAULT_STORE = SchemaStore().load()
    return _DEFAULT_STORE
