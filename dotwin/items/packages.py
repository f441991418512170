from __future__ import annotations

import subprocess
from typing import Any, Dict, List, Sequence

from dotwin.core.errors import ItemExecutionError, ValidationError

from .base import ConfigurationItem, ItemKind
from .system import powershell_command, ps_quote


def run_checked(item: ConfigurationItem, command: Sequence[str]) -> subprocess.CompletedProcess:
    try:
        proc = item.adapters.runner.run(command)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ItemExecutionError(
            code="item.command_failed",
            message=f"Could not run {command[0]} for item '{item.name}'",
            data={"item": item.name, "command": list(command), "error": repr(e)},
        ) from e
    if proc.returncode != 0:
        raise ItemExecutionError(
            code="item.command_failed",
            message=f"{command[0]} exited with {proc.returncode} for item '{item.name}'",
            data={
                "item": item.name,
                "command": list(command),
                "returncode": proc.returncode,
                "stderr": (proc.stderr or "")[-2000:],
            },
        )
    return proc


class PackageItem(ConfigurationItem):
    """
    A package installed through winget (default) or Chocolatey.

    properties:
      - id: package identifier (e.g. "Git.Git" for winget, "git" for choco)
      - manager: "winget" | "choco" (default "winget")
      - version: optional pinned version
      - source: optional winget source name
    """

    kind = ItemKind.PACKAGE.value
    MANAGERS = ("winget", "choco")

    def validate(self) -> None:
        self.require_prop("id")
        if self.manager not in self.MANAGERS:
            raise ValidationError(
                code="item.property_invalid",
                message=f"package item '{self.name}': manager must be one of {', '.join(self.MANAGERS)}",
                data={"item": self.name, "manager": self.manager},
            )

    @property
    def package_id(self) -> str:
        return str(self.prop("id")).strip()

    @property
    def manager(self) -> str:
        return str(self.prop("manager", "winget")).strip().lower()

    def needs_elevation(self) -> bool:
        return self.manager == "choco" or self.prop("scope") == "machine"

    def _list_command(self) -> List[str]:
        if self.manager == "choco":
            return ["choco", "list", "--exact", self.package_id, "--limit-output"]
        return ["winget", "list", "--id", self.package_id, "--exact", "--accept-source-agreements", "--disable-interactivity"]

    def _install_command(self) -> List[str]:
        version = self.prop("version")
        if self.manager == "choco":
            cmd = ["choco", "install", self.package_id, "-y", "--no-progress"]
            if version:
                cmd += ["--version", str(version)]
            return cmd
        cmd = [
            "winget",
            "install",
            "--id",
            self.package_id,
            "--exact",
            "--silent",
            "--accept-package-agreements",
            "--accept-source-agreements",
            "--disable-interactivity",
        ]
        if version:
            cmd += ["--version", str(version)]
        if self.prop("source"):
            cmd += ["--source", str(self.prop("source"))]
        if self.prop("scope") in ("user", "machine"):
            cmd += ["--scope", str(self.prop("scope"))]
        return cmd

    def _installed(self) -> bool:
        try:
            proc = self.adapters.runner.run(self._list_command())
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ItemExecutionError(
                code="item.command_failed",
                message=f"{self.manager} is not available to query item '{self.name}'",
                data={"item": self.name, "error": repr(e)},
            ) from e
        if proc.returncode != 0:
            return False
        out = (proc.stdout or "").lower()
        needle = self.package_id.lower()
        if self.manager == "choco":
            return any(line.split("|", 1)[0].strip() == needle for line in out.splitlines())
        return needle in out

    def test(self) -> bool:
        return self._installed()

    def get_current_state(self) -> Dict[str, Any]:
        return {"id": self.package_id, "manager": self.manager, "installed": self._installed()}

    def apply(self) -> Dict[str, Any]:
        proc = run_checked(self, self._install_command())
        return {"id": self.package_id, "manager": self.manager, "installed": True, "output": (proc.stdout or "")[-500:]}


class BloatwareItem(ConfigurationItem):
    """
    Appx packages that must not be installed.

    properties:
      - packages: list of Appx package names (wildcards allowed, e.g. "Microsoft.BingNews")
      - all_users: remove for all users (default true)
    """

    kind = ItemKind.BLOATWARE.value
    requires_elevation = True

    def validate(self) -> None:
        packages = self.require_prop("packages", list)
        if not packages or any(not isinstance(p, str) or not p.strip() for p in packages):
            raise ValidationError(
                code="item.property_invalid",
                message=f"bloatware item '{self.name}': packages must be a non-empty list of names",
                data={"item": self.name},
            )

    @property
    def packages(self) -> List[str]:
        return [str(p).strip() for p in self.prop("packages", [])]

    def _installed_packages(self) -> List[str]:
        names = ",".join(ps_quote(p) for p in self.packages)
        script = f"@({names}) | ForEach-Object {{ Get-AppxPackage -Name $_ }} | Select-Object -ExpandProperty Name"
        proc = run_checked(self, powershell_command(script))
        return sorted({line.strip() for line in (proc.stdout or "").splitlines() if line.strip()})

    def test(self) -> bool:
        return not self._installed_packages()

    def get_current_state(self) -> Dict[str, Any]:
        return {"installed": self._installed_packages(), "requested": self.packages}

    def apply(self) -> Dict[str, Any]:
        installed = self._installed_packages()
        all_users = bool(self.prop("all_users", True))
        suffix = " -AllUsers" if all_users else ""
        removed: List[str] = []
        for name in installed:
            script = f"Get-AppxPackage -Name {ps_quote(name)}{suffix} | Remove-AppxPackage{suffix}"
            run_checked(self, powershell_command(script))
            removed.append(name)
        return {"removed": removed}
