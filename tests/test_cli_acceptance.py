from __future__ import annotations

import io
import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from umlayout import cli

TIMELINE_MODEL = {
    "type": "timeline",
    "operations": [
        {"op": "participant", "name": "A", "kind": "actor"},
        {"op": "message", "from": "A", "to": "B", "text": "hi", "shorthand": "++"},
        {"op": "return", "text": "ok"},
    ],
}

HIERARCHY_MODEL = {
    "type": "hierarchy",
    "components": [{"name": "api", "kind": "package"}, {"name": "web", "parent": "api"}, {"name": "db"}],
    "relationships": [{"from": "web", "to": "db", "label": "reads"}],
}


class _StdoutCapture:
    def __init__(self) -> None:
        self._text = io.StringIO()
        self.buffer = io.BytesIO()

    def write(self, value: str) -> int:
        return self._text.write(value)

    def flush(self) -> None:
        pass

    def get_text(self) -> str:
        return self._text.getvalue()


class CLIAcceptanceTests(unittest.TestCase):
    def run_cli(self, argv: list[str], stdin_text: str = "") -> tuple[int, str, str]:
        stdout = _StdoutCapture()
        stderr = io.StringIO()
        stdin = io.StringIO(stdin_text)
        with mock.patch("sys.stdout", stdout), mock.patch("sys.stderr", stderr), mock.patch("sys.stdin", stdin):
            code = cli.main(argv)
        return code, stdout.get_text(), stderr.getvalue()

    def test_requires_subcommand(self) -> None:
        code, _out, err = self.run_cli([])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)
        self.assertIn("subcommand", err)

    def test_layout_file_writes_json_beside_input(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "model.json"
            src.write_text(json.dumps(TIMELINE_MODEL))
            code, out, err = self.run_cli(["layout", str(src)])
            self.assertEqual(code, 0, err)
            target = Path(td) / "model.layout.json"
            self.assertTrue(target.exists())
            self.assertIn("Wrote", out)

            payload = json.loads(target.read_text())
            self.assertEqual(payload["type"], "timeline")
            self.assertEqual(len(payload["messages"]), 2)
            self.assertEqual(payload["participants"][0]["participant"]["kind"], "actor")

    def test_layout_output_path_and_stdout_flag(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "model.json"
            src.write_text(json.dumps(HIERARCHY_MODEL))
            custom = Path(td) / "out" / "custom.json"
            custom.parent.mkdir()

            code, _out, err = self.run_cli(["layout", str(src), "-o", str(custom)])
            self.assertEqual(code, 0, err)
            self.assertEqual(json.loads(custom.read_text())["type"], "hierarchy")

            code, out, err = self.run_cli(["layout", str(src), "--stdout", "--indent", "0"])
            self.assertEqual(code, 0, err)
            self.assertEqual(len(out.strip().splitlines()), 1)
            self.assertFalse((Path(td) / "model.layout.json").exists())

    def test_layout_text_and_stdin(self) -> None:
        code, out, err = self.run_cli(["layout", "--text", json.dumps(HIERARCHY_MODEL)])
        self.assertEqual(code, 0, err)
        payload = json.loads(out)
        names = [c["component"]["name"] for c in payload["components"]]
        self.assertEqual(names, ["api", "web", "db"])

        code, out, err = self.run_cli(["layout"], stdin_text=json.dumps(TIMELINE_MODEL))
        self.assertEqual(code, 0, err)
        self.assertEqual(json.loads(out)["type"], "timeline")

    def test_empty_stdin_is_usage_error(self) -> None:
        code, _out, err = self.run_cli(["layout"], stdin_text="  \n")
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)

    def test_text_and_file_are_exclusive(self) -> None:
        code, _out, err = self.run_cli(["layout", "model.json", "--text", "{}"])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)

    def test_stdout_and_output_are_exclusive(self) -> None:
        code, _out, err = self.run_cli(["layout", "--text", "{}", "--stdout", "-o", "x.json"])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)

    def test_missing_input_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            code, _out, err = self.run_cli(["layout", str(Path(td) / "absent.json")])
        self.assertEqual(code, 2)
        self.assertIn("E_IO_READ", err)

    def test_invalid_json_reports_location(self) -> None:
        code, _out, err = self.run_cli(
            ["--error-format", "json", "layout", "--text", '{"type": "timeline",\n  oops}']
        )
        self.assertEqual(code, 2)
        payload = json.loads(err.strip().splitlines()[-1])
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["code"], "E_PARSE_JSON")
        self.assertEqual(payload["line"], 2)
        self.assertEqual(payload["file"], "<text>")

    def test_invalid_model_exits_3(self) -> None:
        bad = {"type": "timeline", "operations": [{"op": "teleport"}]}
        code, _out, err = self.run_cli(["layout", "--text", json.dumps(bad)])
        self.assertEqual(code, 3)
        self.assertIn("E_MODEL", err)
        self.assertIn("operation 0", err)
        self.assertIn("hint:", err)

    def test_theme_file_overrides_padding(self) -> None:
        model = {"type": "timeline", "operations": [{"op": "participant", "name": "A"}]}
        with tempfile.TemporaryDirectory() as td:
            theme = Path(td) / "theme.json"
            theme.write_text(json.dumps({"timeline": {"padding": 10}, "hierarchy": {"padding": 0}}))
            code, out, err = self.run_cli(["layout", "--text", json.dumps(model), "--theme", str(theme)])
        self.assertEqual(code, 0, err)
        self.assertEqual(json.loads(out)["participants"][0]["x"], 10)

    def test_unknown_theme_key_exits_3(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            theme = Path(td) / "theme.json"
            theme.write_text(json.dumps({"gutter": 4}))
            code, _out, err = self.run_cli(
                ["layout", "--text", json.dumps(HIERARCHY_MODEL), "--theme", str(theme)]
            )
        self.assertEqual(code, 3)
        self.assertIn("E_THEME", err)

    def test_missing_font_is_read_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            code, _out, err = self.run_cli(
                ["layout", "--text", json.dumps(TIMELINE_MODEL), "--font", str(Path(td) / "none.ttf")]
            )
        self.assertEqual(code, 2)
        self.assertIn("E_IO_READ", err)

    def test_avoid_obstacles_flag_bends_blocked_connector(self) -> None:
        model = {
            "type": "hierarchy",
            "components": [{"name": "a"}, {"name": "b"}],
            "relationships": [{"from": "a", "to": "b"}, {"from": "a", "to": "N1"}],
            "notes": [{"text": "floating", "alias": "N1"}],
        }
        code, out, err = self.run_cli(["layout", "--text", json.dumps(model)])
        self.assertEqual(code, 0, err)
        self.assertEqual(len(json.loads(out)["relationships"][1]["path"]), 2)

        code, out, err = self.run_cli(["layout", "--text", json.dumps(model), "--avoid-obstacles"])
        self.assertEqual(code, 0, err)
        self.assertEqual(len(json.loads(out)["relationships"][1]["path"]), 4)

    def test_theme_cannot_switch_routing(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            theme = Path(td) / "theme.json"
            theme.write_text(json.dumps({"avoid_obstacles": True}))
            code, _out, err = self.run_cli(
                ["layout", "--text", json.dumps(HIERARCHY_MODEL), "--theme", str(theme)]
            )
        self.assertEqual(code, 3)
        self.assertIn("E_THEME", err)

    def test_format_prints_reference(self) -> None:
        code, out, err = self.run_cli(["format"])
        self.assertEqual(code, 0, err)
        self.assertIn("umlayout model format", out)
        self.assertIn("Hierarchy models", out)

    def test_unknown_flag_is_usage_error(self) -> None:
        code, _out, err = self.run_cli(["layout", "--bogus"])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)


if __name__ == "__main__":
    unittest.main()
