import json
import subprocess
import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotwin.bootstrap_items import build_item_registry
from dotwin.configuration import ItemSpec
from dotwin.core.errors import ItemExecutionError, ValidationError
from dotwin.items import BloatwareItem, PackageItem, ProfileItem, RegistryItem, SystemAdapters, TerminalItem
from dotwin.items.system import split_registry_path


class FakeRunner:
    """Returns canned output per executable; records every command."""

    def __init__(self, responses: Optional[Dict[str, List[Tuple[int, str]]]] = None) -> None:
        self.responses = responses or {}
        self.commands: List[List[str]] = []

    def run(self, command: Sequence[str], *, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        self.commands.append(list(command))
        queue = self.responses.get(command[0], [])
        code, out = queue.pop(0) if queue else (0, "")
        return subprocess.CompletedProcess(list(command), code, stdout=out, stderr="boom" if code else "")


class FakeRegistry:
    def __init__(self) -> None:
        self.values: Dict[Tuple[str, str], Any] = {}
        self.writes: List[Tuple[str, str, Any, str]] = []

    def get_value(self, path: str, value_name: str) -> Any:
        return self.values.get((path, value_name))

    def set_value(self, path: str, value_name: str, value: Any, value_type: str = "auto") -> None:
        self.values[(path, value_name)] = value
        self.writes.append((path, value_name, value, value_type))


def _adapters(runner=None, registry=None, elevated=True) -> SystemAdapters:
    reg = registry or FakeRegistry()
    return SystemAdapters(runner=runner or FakeRunner(), registry_factory=lambda: reg, elevated=lambda: elevated)


def _spec(name: str, type_: str, /, **props: Any) -> ItemSpec:
    return ItemSpec(name=name, type=type_, properties=props)


class TestPackageItem(unittest.TestCase):
    def test_winget_installed(self) -> None:
        runner = FakeRunner({"winget": [(0, "Name  Id       Version\nGit   Git.Git  2.45.0\n")]})
        item = PackageItem(_spec("git", "package", id="Git.Git"), _adapters(runner))
        self.assertTrue(item.test())
        self.assertEqual(runner.commands[0][:4], ["winget", "list", "--id", "Git.Git"])

    def test_winget_missing_then_install(self) -> None:
        runner = FakeRunner({"winget": [(1, "No installed package found"), (0, "Successfully installed")]})
        item = PackageItem(_spec("git", "package", id="Git.Git", version="2.45.0"), _adapters(runner))
        self.assertFalse(item.test())
        out = item.apply()
        self.assertTrue(out["installed"])
        install = runner.commands[1]
        self.assertEqual(install[:2], ["winget", "install"])
        self.assertIn("--version", install)

    def test_choco_exact_match_and_elevation(self) -> None:
        runner = FakeRunner({"choco": [(0, "git|2.45.0\ngit.install|2.45.0\n")]})
        item = PackageItem(_spec("git", "package", id="git", manager="choco"), _adapters(runner, elevated=False))
        self.assertTrue(item.test())
        self.assertTrue(item.needs_elevation())
        with self.assertRaises(ItemExecutionError) as cm:
            item.ensure_can_apply()
        self.assertEqual(cm.exception.code, "item.elevation_required")

    def test_install_failure_raises(self) -> None:
        runner = FakeRunner({"winget": [(1, "")]})
        item = PackageItem(_spec("git", "package", id="Git.Git"), _adapters(runner))
        with self.assertRaises(ItemExecutionError) as cm:
            item.apply()
        self.assertEqual(cm.exception.code, "item.command_failed")

    def test_invalid_properties(self) -> None:
        with self.assertRaises(ValidationError):
            PackageItem(_spec("x", "package"), _adapters())
        with self.assertRaises(ValidationError):
            PackageItem(_spec("x", "package", id="a", manager="scoop"), _adapters())


class TestBloatwareItem(unittest.TestCase):
    def test_reports_and_removes_installed_packages(self) -> None:
        runner = FakeRunner({"powershell": [(0, "Microsoft.BingNews\n"), (0, "Microsoft.BingNews\n"), (0, "")]})
        item = BloatwareItem(_spec("junk", "bloatware", packages=["Microsoft.BingNews", "Microsoft.People"]), _adapters(runner))
        self.assertFalse(item.test())
        out = item.apply()
        self.assertEqual(out["removed"], ["Microsoft.BingNews"])
        self.assertIn("Remove-AppxPackage", runner.commands[-1][-1])
        self.assertIn("'Microsoft.BingNews'", runner.commands[-1][-1])

    def test_requires_elevation(self) -> None:
        item = BloatwareItem(_spec("junk", "bloatware", packages=["A"]), _adapters(elevated=False))
        with self.assertRaises(ItemExecutionError):
            item.ensure_can_apply()

    def test_empty_package_list_is_invalid(self) -> None:
        with self.assertRaises(ValidationError):
            BloatwareItem(_spec("junk", "bloatware", packages=[]), _adapters())


class TestRegistryItem(unittest.TestCase):
    PATH = "HKCU:\\Software\\Microsoft\\Windows\\CurrentVersion\\Themes\\Personalize"

    def test_test_and_apply(self) -> None:
        reg = FakeRegistry()
        item = RegistryItem(
            _spec("dark", "registry", path=self.PATH, name="AppsUseLightTheme", value=0, value_type="dword"),
            _adapters(registry=reg),
        )
        self.assertFalse(item.test())
        out = item.apply()
        self.assertIsNone(out["before"])
        self.assertEqual(reg.writes, [(self.PATH, "AppsUseLightTheme", 0, "dword")])
        self.assertTrue(item.test())
        self.assertFalse(item.needs_elevation())

    def test_value_normalization(self) -> None:
        reg = FakeRegistry()
        reg.values[(self.PATH, "Flag")] = 1
        item = RegistryItem(_spec("flag", "registry", path=self.PATH, name="Flag", value="1"), _adapters(registry=reg))
        self.assertTrue(item.test())

    def test_hklm_needs_elevation(self) -> None:
        item = RegistryItem(
            _spec("t", "registry", path="HKLM:\\SOFTWARE\\Policies\\X", name="Y", value=1), _adapters(elevated=False)
        )
        self.assertTrue(item.needs_elevation())
        with self.assertRaises(ItemExecutionError):
            item.ensure_can_apply()

    def test_invalid_path(self) -> None:
        with self.assertRaises(ValidationError):
            RegistryItem(_spec("bad", "registry", path="Software\\X", name="Y", value=1), _adapters())

    def test_split_registry_path(self) -> None:
        self.assertEqual(split_registry_path("hkcu:\\Software\\X"), ("HKCU", "Software\\X"))
        self.assertEqual(split_registry_path("HKLM:/SOFTWARE/Y"), ("HKLM", "SOFTWARE\\Y"))


class TestTerminalItem(unittest.TestCase):
    def test_deep_merge_and_subset_test(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "settings.json"
            path.write_text(json.dumps({"theme": "light", "profiles": {"defaults": {"fontSize": 10}, "list": []}}), encoding="utf-8")
            item = TerminalItem(
                _spec("wt", "terminal", settings={"theme": "dark", "profiles": {"defaults": {"font": {"face": "Cascadia Mono"}}}}, settings_path=str(path)),
                _adapters(),
            )
            self.assertFalse(item.test())
            item.apply()
            self.assertTrue(item.test())
            doc = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(doc["theme"], "dark")
            self.assertEqual(doc["profiles"]["defaults"]["fontSize"], 10)
            self.assertEqual(doc["profiles"]["defaults"]["font"]["face"], "Cascadia Mono")
            self.assertEqual(doc["profiles"]["list"], [])

    def test_missing_file_is_created(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "LocalState" / "settings.json"
            item = TerminalItem(_spec("wt", "terminal", settings={"copyOnSelect": True}, settings_path=str(path)), _adapters())
            self.assertFalse(item.test())
            self.assertFalse(item.get_current_state()["exists"])
            item.apply()
            self.assertTrue(item.test())

    def test_unreadable_settings_raise(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "settings.json"
            path.write_text("{ // comments are not JSON\n}", encoding="utf-8")
            item = TerminalItem(_spec("wt", "terminal", settings={"a": 1}, settings_path=str(path)), _adapters())
            with self.assertRaises(ItemExecutionError):
                item.test()


class TestProfileItem(unittest.TestCase):
    def test_append_is_idempotent(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "profile.ps1"
            path.write_text("Set-Alias ll Get-ChildItem", encoding="utf-8")
            item = ProfileItem(_spec("prof", "profile", content="Import-Module posh-git", path=str(path)), _adapters())
            self.assertFalse(item.test())
            self.assertTrue(item.apply()["appended"])
            self.assertTrue(item.test())
            self.assertFalse(item.apply()["appended"])
            text = path.read_text(encoding="utf-8")
            self.assertEqual(text.count("Import-Module posh-git"), 1)
            self.assertTrue(text.startswith("Set-Alias ll Get-ChildItem\n"))

    def test_replace_mode(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "nested" / "profile.ps1"
            item = ProfileItem(_spec("prof", "profile", content="$x = 1", path=str(path), mode="replace"), _adapters())
            self.assertFalse(item.test())
            item.apply()
            self.assertEqual(path.read_text(encoding="utf-8"), "$x = 1\n")
            self.assertTrue(item.test())

    def test_invalid_mode(self) -> None:
        with self.assertRaises(ValidationError):
            ProfileItem(_spec("prof", "profile", content="x", mode="prepend"), _adapters())


class TestItemRegistry(unittest.TestCase):
    def test_builtin_kinds(self) -> None:
        reg = build_item_registry()
        kinds = [k["kind"] for k in reg.list_kinds()]
        self.assertEqual(kinds, ["bloatware", "package", "profile", "registry", "terminal"])

    def test_unknown_type(self) -> None:
        reg = build_item_registry()
        with self.assertRaises(ValidationError) as cm:
            reg.create(_spec("mystery", "firmware"))
        self.assertEqual(cm.exception.code, "item.unknown_type")

    def test_duplicate_kind_rejected(self) -> None:
        reg = build_item_registry()
        with self.assertRaises(ValidationError):
            reg.register("package", PackageItem)

    def test_import_paths_resolve(self) -> None:
        from dotwin.registry.item_registry import resolve_import_path

        reg = build_item_registry()
        for kind, path in reg.import_paths().items():
            self.assertIs(resolve_import_path(path), reg.get(kind))


if __name__ == "__main__":
    unittest.main()
