from __future__ import annotations

import abc
import enum
from typing import Any, ClassVar, Dict, Optional

from dotwin.configuration import ItemSpec
from dotwin.core.errors import ItemExecutionError, ValidationError

from .system import SystemAdapters


class ItemKind(str, enum.Enum):
    PACKAGE = "package"
    BLOATWARE = "bloatware"
    REGISTRY = "registry"
    TERMINAL = "terminal"
    PROFILE = "profile"


class ConfigurationItem(abc.ABC):
    """
    A named unit of desired state.

    Contract:
    - test() is read-only and returns True when the machine already complies.
    - get_current_state() is read-only and returns a JSON-serializable snapshot.
    - apply() converges the machine and returns a JSON-serializable summary.
    - any of them may raise; the orchestrator records the failure per item.
    """

    kind: ClassVar[str] = ""
    requires_elevation: ClassVar[bool] = False

    def __init__(self, spec: ItemSpec, adapters: Optional[SystemAdapters] = None):
        self.spec = spec
        self.adapters = adapters or SystemAdapters()
        self.validate()

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def properties(self) -> Dict[str, Any]:
        return self.spec.properties

    def prop(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    def require_prop(self, key: str, expected: type = str) -> Any:
        value = self.properties.get(key)
        if value is None or (expected is str and (not isinstance(value, str) or not value.strip())):
            raise ValidationError(
                code="item.property_missing",
                message=f"{self.kind} item '{self.name}' requires property '{key}'",
                data={"item": self.name, "property": key},
            )
        if not isinstance(value, expected):
            raise ValidationError(
                code="item.property_invalid",
                message=f"{self.kind} item '{self.name}': property '{key}' must be {expected.__name__}",
                data={"item": self.name, "property": key},
            )
        return value

    def validate(self) -> None:
        """Check properties at build time; raise ValidationError on bad input."""

    def needs_elevation(self) -> bool:
        return self.requires_elevation

    def ensure_can_apply(self) -> None:
        if self.needs_elevation() and not self.adapters.elevated():
            raise ItemExecutionError(
                code="item.elevation_required",
                message=f"Item '{self.name}' requires an elevated (Administrator) session to apply",
                data={"item": self.name, "type": self.kind},
            )

    @abc.abstractmethod
    def test(self) -> bool:
        ...

    @abc.abstractmethod
    def get_current_state(self) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    def apply(self) -> Dict[str, Any]:
        ...

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.kind,
            "description": self.spec.description,
            "requires_elevation": self.needs_elevation(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
