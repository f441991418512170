from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional

from dotwin.core.errors import ValidationError
from dotwin.items.base import ConfigurationItem
from dotwin.items.packages import run_checked
from dotwin.items.system import powershell_command, ps_quote
from dotwin.profiler import SystemProfile
from dotwin.recommend.engine import Priority, Recommendation


STARTUP_TYPES = ("Automatic", "Manual", "Disabled")


class ServiceItem(ConfigurationItem):
    """
    A Windows service startup type (and optionally its run state).

    properties:
      - service: service name (e.g. "DiagTrack")
      - startup_type: Automatic | Manual | Disabled
      - state: optional "Running" | "Stopped"
    """

    kind = "service"
    requires_elevation = True

    def validate(self) -> None:
        self.require_prop("service")
        startup = self.require_prop("startup_type")
        if startup not in STARTUP_TYPES:
            raise ValidationError(
                code="item.property_invalid",
                message=f"service item '{self.name}': startup_type must be one of {', '.join(STARTUP_TYPES)}",
                data={"item": self.name, "startup_type": startup},
            )
        state = self.prop("state")
        if state is not None and state not in ("Running", "Stopped"):
            raise ValidationError(
                code="item.property_invalid",
                message=f"service item '{self.name}': state must be Running or Stopped",
                data={"item": self.name, "state": state},
            )

    def _query(self) -> Dict[str, Optional[str]]:
        script = (
            f"$s = Get-Service -Name {ps_quote(self.prop('service'))} -ErrorAction SilentlyContinue; "
            "if ($s) { \"$($s.StartType)|$($s.Status)\" }"
        )
        proc = run_checked(self, powershell_command(script))
        line = (proc.stdout or "").strip()
        if not line:
            return {"startup_type": None, "state": None}
        startup, _, state = line.partition("|")
        return {"startup_type": startup.strip() or None, "state": state.strip() or None}

    def test(self) -> bool:
        current = self._query()
        if current["startup_type"] != self.prop("startup_type"):
            return False
        return self.prop("state") is None or current["state"] == self.prop("state")

    def get_current_state(self) -> Dict[str, Any]:
        return {"service": self.prop("service"), **self._query()}

    def apply(self) -> Dict[str, Any]:
        name = ps_quote(self.prop("service"))
        script = f"Set-Service -Name {name} -StartupType {self.prop('startup_type')}"
        state = self.prop("state")
        if state == "Stopped":
            script += f"; Stop-Service -Name {name} -Force"
        elif state == "Running":
            script += f"; Start-Service -Name {name}"
        run_checked(self, powershell_command(script))
        return {"service": self.prop("service"), "startup_type": self.prop("startup_type"), "state": state}


def diagtrack_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    if profile.os_name != "Windows":
        return
    if profile.telemetry_level is None or profile.telemetry_level > 1:
        yield Recommendation(
            title="Disable the Connected User Experiences service",
            description="DiagTrack uploads diagnostic data in the background.",
            category="privacy",
            priority=Priority.LOW,
            confidence_score=0.65,
            implementation={
                "name": "Disable DiagTrack",
                "type": "service",
                "properties": {"service": "DiagTrack", "startup_type": "Disabled", "state": "Stopped"},
            },
            prerequisites=["elevated"],
            metadata={"effects": {"telemetry.level": 1}},
        )


def search_indexer_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    if profile.os_name == "Windows" and 0 < profile.memory_gb < 8:
        yield Recommendation(
            title="Set Windows Search to manual start",
            description="The search indexer competes for memory on machines with little RAM.",
            category="performance",
            priority=Priority.LOW,
            confidence_score=0.55,
            implementation={
                "name": "Windows Search manual",
                "type": "service",
                "properties": {"service": "WSearch", "startup_type": "Manual"},
            },
            prerequisites=["elevated"],
        )


class WindowsPlugin:
    name = "builtin.windows"
    version = "0.1.0"
    description = "Windows services as configuration items"

    def __init__(self) -> None:
        self.context: Any = None

    def initialize(self, context: Any) -> None:
        self.context = context
        if context is not None:
            context.sink.debug(f"Plugin {self.name} initialized")

    def cleanup(self) -> None:
        self.context = None

    def item_kinds(self) -> Dict[str, type]:
        return {"service": ServiceItem}

    def recommendation_rules(self) -> List[Any]:
        return [diagtrack_rule, search_indexer_rule]
