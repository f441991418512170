import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

from dotwin.cli.dwin import _format_cli_error, main
from dotwin.core.errors import ItemExecutionError


_ENV_KEYS = (
    "DOTWIN_DISABLE_DOTENV",
    "DOTWIN_SKIP_ENV_CHECK",
    "DOTWIN_PLUGINS_DIR",
    "DOTWIN_TRACE_PATH",
    "DOTWIN_LOG_PATH",
)


class TestDotWinCLI(unittest.TestCase):
    def setUp(self) -> None:
        self._old_env = {k: os.environ.get(k) for k in _ENV_KEYS}
        for k in _ENV_KEYS:
            os.environ.pop(k, None)
        os.environ["DOTWIN_DISABLE_DOTENV"] = "1"
        os.environ["DOTWIN_SKIP_ENV_CHECK"] = "1"

    def tearDown(self) -> None:
        for k, v in self._old_env.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v

    def _run(self, argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            rc = main(argv)
        return rc, out.getvalue(), err.getvalue()

    def _write_config(self, root: Path, items) -> Path:
        path = root / "config.json"
        path.write_text(json.dumps({"name": "cli-box", "items": items}), encoding="utf-8")
        return path

    def test_list_kinds_json_includes_plugin_kinds(self) -> None:
        rc, out, _ = self._run(["list-kinds", "--json"])
        self.assertEqual(rc, 0)
        kinds = {k["kind"] for k in json.loads(out)}
        self.assertEqual(kinds, {"bloatware", "package", "profile", "registry", "service", "terminal"})

    def test_list_plugins(self) -> None:
        rc, out, _ = self._run(["list-plugins"])
        self.assertEqual(rc, 0)
        self.assertIn("builtin.windows", out)
        self.assertIn("kinds: service", out)

    def test_check_schemas(self) -> None:
        rc, out, _ = self._run(["check-schemas"])
        self.assertEqual(rc, 0)
        self.assertIn("Schemas OK", out)

    def test_check_schemas_reports_invalid_config(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            bad = Path(td) / "bad.json"
            bad.write_text(json.dumps({"items": [{"type": "package"}]}), encoding="utf-8")
            rc, out, _ = self._run(["check-schemas", "--config", str(bad)])
        self.assertEqual(rc, 1)
        self.assertIn("failed validation", out)
        self.assertIn("'name' is a required property", out)

    def test_apply_dry_run_then_apply_with_trace(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            profile = root / "profile.ps1"
            config = self._write_config(
                root, [{"name": "aliases", "type": "profile", "properties": {"content": "Set-Alias g git", "path": str(profile)}}]
            )
            trace = root / "trace.jsonl"

            rc, out, _ = self._run(["apply", str(config), "--dry-run", "--trace", str(trace), "--run-id", "run_cli"])
            self.assertEqual(rc, 0)
            report = json.loads(out)
            self.assertTrue(report["dry_run"])
            self.assertEqual(report["summary"]["would_apply"], 1)
            self.assertFalse(profile.exists())

            export = root / "out" / "results.json"
            rc, out, _ = self._run(["apply", str(config), "--export", str(export)])
            self.assertEqual(rc, 0)
            self.assertEqual(json.loads(out)["summary"]["changed"], 1)
            self.assertIn("Set-Alias g git", profile.read_text(encoding="utf-8"))
            exported = json.loads(export.read_text(encoding="utf-8"))
            self.assertEqual(exported["summary"]["byType"], {"profile": 1})

            rc, out, _ = self._run(["show-trace", "--trace", str(trace), "--event-type", "run_finished"])
            self.assertEqual(rc, 0)
            events = [json.loads(line) for line in out.splitlines()]
            self.assertEqual(len(events), 1)
            self.assertEqual(events[0]["run_id"], "run_cli")

            rc, out, _ = self._run(["show-trace", "--trace", str(trace), "--tail", "2"])
            self.assertEqual(len(out.splitlines()), 2)

            rc, out, _ = self._run(["show-trace", "--trace", str(trace), "--runs"])
            self.assertEqual(rc, 0)
            self.assertTrue(out.startswith("run_cli "))
            self.assertIn("\"would_apply\": 1", out)

    def test_test_command_exit_code_reflects_failures(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            config = self._write_config(Path(td), [{"name": "fw", "type": "firmware"}])
            rc, out, err = self._run(["test", str(config)])
        self.assertEqual(rc, 1)
        report = json.loads(out)
        self.assertEqual(report["summary"]["failed"], 1)
        self.assertIn("item.unknown_type", err)

    def test_apply_fail_fast_prints_report(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            blocker = root / "blocker"
            blocker.write_text("file", encoding="utf-8")
            config = self._write_config(
                root,
                [
                    {"name": "bad", "type": "profile", "properties": {"content": "x", "path": str(blocker / "p.ps1")}},
                    {"name": "good", "type": "profile", "properties": {"content": "x", "path": str(root / "g.ps1")}},
                ],
            )
            rc, out, _ = self._run(["apply", str(config), "--fail-fast"])
            self.assertEqual(rc, 1)
            report = json.loads(out)
            self.assertTrue(report["aborted"])
            self.assertEqual([r["status"] for r in report["results"]], ["failed", "skipped"])
            self.assertFalse((root / "g.ps1").exists())

    def test_recommend_from_profile_json_with_export(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            profile = root / "profile.json"
            profile.write_text(
                json.dumps({"os_name": "Windows", "memory_gb": 4, "disk_total_gb": 100, "disk_free_gb": 50, "telemetry_level": 1}),
                encoding="utf-8",
            )
            export = root / "recs.json"
            rc, out, _ = self._run(
                ["recommend", "--profile-json", str(profile), "--priority", "high", "--export", str(export)]
            )
            self.assertEqual(rc, 0)
            titles = [r["title"] for r in json.loads(out)["recommendations"]]
            self.assertIn("Add more memory", titles)
            self.assertIn("Install Git", titles)
            self.assertNotIn("Show file extensions", titles)

            doc = json.loads(export.read_text(encoding="utf-8"))
            self.assertEqual(doc["summary"]["total"], len(titles))
            self.assertEqual(doc["summary"]["byPriority"].get("high"), len(titles))

    def test_error_formatting_drops_full_report(self) -> None:
        e = ItemExecutionError(
            code="run.aborted",
            message="Item 'bad' failed",
            data={"item": "bad", "report": {"results": [1, 2, 3]}},
        )
        text = _format_cli_error(e)
        head, _, body = text.partition("\n")
        self.assertEqual(head, "run.aborted: Item 'bad' failed")
        self.assertEqual(json.loads(body), {"item": "bad"})
        self.assertEqual(_format_cli_error(ItemExecutionError(code="x", message="y")), "x: y")

    def test_missing_config_is_an_error(self) -> None:
        rc, out, _ = self._run(["test", str(Path(tempfile.gettempdir()) / "dotwin-missing.json")])
        self.assertEqual(rc, 1)
        self.assertIn("config.not_found", out)

    def test_environment_check_blocks_non_windows(self) -> None:
        os.environ.pop("DOTWIN_SKIP_ENV_CHECK", None)
        with tempfile.TemporaryDirectory() as td:
            config = self._write_config(Path(td), [])
            with mock.patch("dotwin.environment.platform.system", return_value="Linux"):
                rc, out, _ = self._run(["test", str(config)])
        self.assertEqual(rc, 1)
        self.assertIn("env.os_unsupported", out)


if __name__ == "__main__":
    unittest.main()
