"""Machine profile consumed by the recommendation engine.

``SystemProfiler.collect()`` queries the local machine; every query is
best-effort and leaves its field at the default when it fails.
``SystemProfile.from_dict()`` rebuilds a profile from a JSON snapshot so
recommendations can be generated for another machine (``--profile-json``).
"""

from __future__ import annotations

import json
import os
import platform
import re
import shutil
import socket
import subprocess
import tempfile
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Dict, List, Optional, TypeVar

from dotwin.items.system import SystemAdapters, powershell_command
from dotwin.log_sink import LogSink


T = TypeVar("T")

DEV_TOOLS = ("git", "code", "python", "pwsh", "wt", "docker", "node", "winget", "choco")
TELEMETRY_KEY = "HKLM:\\SOFTWARE\\Policies\\Microsoft\\Windows\\DataCollection"
_GUID_NAME_RE = re.compile(r"GUID:\s*([0-9a-fA-F-]+)\s*\((.+)\)")


@dataclass
class SystemProfile:
    os_name: str = ""
    os_version: str = ""
    build: int = 0
    hostname: str = ""
    cpu_cores: int = 0
    memory_gb: float = 0.0
    disk_total_gb: float = 0.0
    disk_free_gb: float = 0.0
    elevated: bool = False
    has_battery: bool = False
    installed_packages: List[str] = field(default_factory=list)
    appx_packages: List[str] = field(default_factory=list)
    startup_items: int = 0
    power_plan: str = ""
    telemetry_level: Optional[int] = None
    dev_tools: Dict[str, bool] = field(default_factory=dict)

    @property
    def disk_free_ratio(self) -> float:
        if self.disk_total_gb <= 0:
            return 1.0
        return self.disk_free_gb / self.disk_total_gb

    def has_tool(self, name: str) -> bool:
        return bool(self.dev_tools.get(name))

    def has_package(self, package_id: str) -> bool:
        needle = package_id.lower()
        return any(p.lower() == needle for p in self.installed_packages)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SystemProfile":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in raw.items() if k in known})


def _parse_build(version: str) -> int:
    # "10.0.22631" -> 22631
    parts = [p for p in re.split(r"[^\d]+", version) if p]
    return int(parts[2]) if len(parts) >= 3 else 0


class SystemProfiler:
    def __init__(self, adapters: Optional[SystemAdapters] = None, sink: Optional[LogSink] = None):
        self.adapters = adapters or SystemAdapters()
        self.sink = sink
        self._progress_id: Optional[str] = None

    def collect(self, progress_id: Optional[str] = None) -> SystemProfile:
        version = platform.version()
        profile = SystemProfile(
            os_name=platform.system(),
            os_version=version,
            build=_parse_build(version) if platform.system() == "Windows" else 0,
            hostname=socket.gethostname(),
            cpu_cores=os.cpu_count() or 0,
        )
        self._progress_id = progress_id
        profile.memory_gb = self._query("memory", self._memory_gb, 0.0)
        total, free = self._query("disk", self._disk_gb, (0.0, 0.0))
        profile.disk_total_gb, profile.disk_free_gb = total, free
        profile.elevated = self._query("elevation", self.adapters.elevated, False)
        profile.dev_tools = {name: shutil.which(name) is not None for name in DEV_TOOLS}

        if profile.os_name == "Windows":
            profile.has_battery = self._query("battery", self._has_battery, False)
            profile.appx_packages = self._query("appx", self._appx_packages, [])
            profile.installed_packages = self._query("packages", self._winget_packages, [])
            profile.startup_items = self._query("startup", self._startup_items, 0)
            profile.power_plan = self._query("power plan", self._power_plan, "")
            profile.telemetry_level = self._query("telemetry", self._telemetry_level, None)
        return profile

    def _query(self, what: str, fn: Callable[[], T], default: T) -> T:
        try:
            return fn()
        except (OSError, ValueError, RuntimeError, subprocess.SubprocessError) as e:
            if self.sink is not None:
                self.sink.verbose(f"Profile query '{what}' failed: {e}", progress_id=self._progress_id)
            return default

    def _powershell(self, script: str) -> str:
        proc = self.adapters.runner.run(powershell_command(script), timeout=120)
        if proc.returncode != 0:
            raise RuntimeError((proc.stderr or "").strip() or f"powershell exited with {proc.returncode}")
        return (proc.stdout or "").strip()

    def _memory_gb(self) -> float:
        if platform.system() == "Windows":
            out = self._powershell("(Get-CimInstance Win32_ComputerSystem).TotalPhysicalMemory")
            return round(int(out.splitlines()[0]) / 1024 ** 3, 1)
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
        return round(pages * page_size / 1024 ** 3, 1)

    @staticmethod
    def _disk_gb() -> tuple:
        root = os.environ.get("SystemDrive", "C:") + "\\" if platform.system() == "Windows" else "/"
        usage = shutil.disk_usage(root)
        return round(usage.total / 1024 ** 3, 1), round(usage.free / 1024 ** 3, 1)

    def _has_battery(self) -> bool:
        return bool(self._powershell("@(Get-CimInstance Win32_Battery).Count").strip() not in ("", "0"))

    def _appx_packages(self) -> List[str]:
        out = self._powershell("Get-AppxPackage | Select-Object -ExpandProperty Name")
        return sorted({line.strip() for line in out.splitlines() if line.strip()})

    def _winget_packages(self) -> List[str]:
        if shutil.which("winget") is None:
            return []
        with tempfile.TemporaryDirectory() as tmp:
            out = os.path.join(tmp, "packages.json")
            self.adapters.runner.run(
                ["winget", "export", "--output", out, "--accept-source-agreements", "--disable-interactivity"], timeout=300
            )
            if not os.path.exists(out):
                raise RuntimeError("winget export produced no file")
            with open(out, encoding="utf-8") as f:
                doc = json.load(f)
        ids = [
            pkg.get("PackageIdentifier")
            for source in doc.get("Sources", [])
            for pkg in source.get("Packages", [])
            if isinstance(pkg, dict) and pkg.get("PackageIdentifier")
        ]
        return sorted(set(ids))

    def _startup_items(self) -> int:
        return int(self._powershell("@(Get-CimInstance Win32_StartupCommand).Count") or 0)

    def _power_plan(self) -> str:
        proc = self.adapters.runner.run(["powercfg", "/getactivescheme"], timeout=30)
        m = _GUID_NAME_RE.search(proc.stdout or "")
        return m.group(2).strip() if m else ""

    def _telemetry_level(self) -> Optional[int]:
        value = self.adapters.registry.get_value(TELEMETRY_KEY, "AllowTelemetry")
        return int(value) if value is not None else None
