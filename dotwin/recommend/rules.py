from __future__ import annotations

from typing import Iterator, List

from dotwin.profiler import SystemProfile

from .engine import Priority, Recommendation, Rule


KNOWN_BLOATWARE = (
    "Microsoft.BingNews",
    "Microsoft.BingWeather",
    "Microsoft.GetHelp",
    "Microsoft.Getstarted",
    "Microsoft.MicrosoftSolitaireCollection",
    "Microsoft.People",
    "Microsoft.WindowsFeedbackHub",
    "Microsoft.ZuneMusic",
    "Microsoft.ZuneVideo",
    "Clipchamp.Clipchamp",
    "MicrosoftTeams",
)

STARTUP_ITEMS_LIMIT = 15
EXPLORER_ADVANCED = "HKCU:\\Software\\Microsoft\\Windows\\CurrentVersion\\Explorer\\Advanced"


def _install(title: str, package_id: str) -> dict:
    return {"name": title, "type": "package", "properties": {"id": package_id, "manager": "winget"}}


def memory_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    if 0 < profile.memory_gb < 8:
        yield Recommendation(
            title="Add more memory",
            description=f"Only {profile.memory_gb:g} GB of RAM installed; 16 GB is recommended for development work.",
            category="performance",
            priority=Priority.HIGH,
            confidence_score=0.9,
            metadata={"memory_gb": profile.memory_gb},
        )


def disk_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    if profile.disk_total_gb <= 0:
        return
    ratio = profile.disk_free_ratio
    if ratio < 0.15:
        yield Recommendation(
            title="Free up disk space",
            description=f"{profile.disk_free_gb:g} GB free of {profile.disk_total_gb:g} GB on the system drive.",
            category="storage",
            priority=Priority.CRITICAL if ratio < 0.05 else Priority.HIGH,
            confidence_score=0.95,
            metadata={"free_ratio": round(ratio, 3), "command": "cleanmgr /sagerun:1"},
        )


def startup_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    if profile.startup_items > STARTUP_ITEMS_LIMIT:
        yield Recommendation(
            title="Reduce startup programs",
            description=f"{profile.startup_items} programs start with Windows; disable the ones you do not need.",
            category="performance",
            priority=Priority.MEDIUM,
            confidence_score=0.7,
            metadata={"startup_items": profile.startup_items},
        )


def dev_tools_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    wanted = (
        ("git", "Install Git", "Git.Git", Priority.HIGH, 0.9),
        ("wt", "Install Windows Terminal", "Microsoft.WindowsTerminal", Priority.MEDIUM, 0.8),
        ("pwsh", "Install PowerShell 7", "Microsoft.PowerShell", Priority.MEDIUM, 0.75),
        ("code", "Install Visual Studio Code", "Microsoft.VisualStudioCode", Priority.LOW, 0.6),
    )
    for tool, title, package_id, priority, confidence in wanted:
        if profile.has_tool(tool) or profile.has_package(package_id):
            continue
        yield Recommendation(
            title=title,
            description=f"'{tool}' was not found on PATH.",
            category="development",
            priority=priority,
            confidence_score=confidence,
            implementation=_install(title, package_id),
            metadata={"tool": tool},
        )


def power_plan_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    plan = profile.power_plan.lower()
    if not plan:
        return
    if profile.has_battery and "high performance" in plan:
        yield Recommendation(
            title="Use the Balanced power plan",
            description="High performance drains the battery quickly on a laptop.",
            category="power",
            priority=Priority.MEDIUM,
            confidence_score=0.7,
            metadata={"effects": {"power.plan": "balanced"}, "command": "powercfg /setactive SCHEME_BALANCED"},
        )
    elif not profile.has_battery and "high performance" not in plan and profile.cpu_cores >= 8:
        yield Recommendation(
            title="Use the High performance power plan",
            description="Desktop machines gain responsiveness from the High performance plan.",
            category="power",
            priority=Priority.LOW,
            confidence_score=0.6,
            metadata={"effects": {"power.plan": "high_performance"}, "command": "powercfg /setactive SCHEME_MIN"},
        )


def bloatware_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    installed = set(profile.appx_packages)
    present = [p for p in KNOWN_BLOATWARE if p in installed]
    if present:
        yield Recommendation(
            title="Remove preinstalled apps",
            description=f"{len(present)} preinstalled apps can be removed: {', '.join(present)}.",
            category="maintenance",
            priority=Priority.MEDIUM,
            confidence_score=0.8,
            implementation={"name": "Remove preinstalled apps", "type": "bloatware", "properties": {"packages": present}},
            prerequisites=["elevated"],
            metadata={"packages": present},
        )


def telemetry_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    if profile.os_name and profile.os_name != "Windows":
        return
    if profile.telemetry_level is None or profile.telemetry_level > 1:
        yield Recommendation(
            title="Limit diagnostic data",
            description="Diagnostic data collection is above the 'Required' level.",
            category="privacy",
            priority=Priority.MEDIUM,
            confidence_score=0.75,
            implementation={
                "name": "Limit diagnostic data",
                "type": "registry",
                "properties": {
                    "path": "HKLM:\\SOFTWARE\\Policies\\Microsoft\\Windows\\DataCollection",
                    "name": "AllowTelemetry",
                    "value": 1,
                    "value_type": "dword",
                },
            },
            prerequisites=["elevated"],
            metadata={"effects": {"telemetry.level": 1}, "current": profile.telemetry_level},
        )


def file_extensions_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    if profile.os_name and profile.os_name != "Windows":
        return
    yield Recommendation(
        title="Show file extensions",
        description="Explorer hides known file extensions by default.",
        category="productivity",
        priority=Priority.LOW,
        confidence_score=0.6,
        implementation={
            "name": "Show file extensions",
            "type": "registry",
            "properties": {"path": EXPLORER_ADVANCED, "name": "HideFileExt", "value": 0, "value_type": "dword"},
        },
        metadata={"effects": {"explorer.hide_file_ext": 0}},
    )


def elevation_rule(profile: SystemProfile) -> Iterator[Recommendation]:
    if not profile.elevated:
        yield Recommendation(
            title="Run from an elevated session",
            description="Some recommendations need Administrator rights to apply.",
            category="security",
            priority=Priority.LOW,
            confidence_score=0.5,
        )


def builtin_rules() -> List[Rule]:
    return [
        memory_rule,
        disk_rule,
        startup_rule,
        dev_tools_rule,
        power_plan_rule,
        bloatware_rule,
        telemetry_rule,
        file_extensions_rule,
        elevation_rule,
    ]
