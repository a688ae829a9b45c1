from __future__ import annotations

import io
import json
import sys
import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path
from unittest import mock

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from diagrid import cli

SIMPLE = """
<diagram minx="1 60" pad="6">
  <rect width="40" height="20" fill="teal"/>
  <text grid="1 2">Hello</text>
</diagram>
""".strip()


class CLIAcceptanceTests(unittest.TestCase):
    def run_cli(self, argv: list[str], stdin_text: str = "") -> tuple[int, str, str]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        stdin = io.StringIO(stdin_text)
        with mock.patch("sys.stdout", stdout), mock.patch("sys.stderr", stderr), mock.patch("sys.stdin", stdin):
            code = cli.main(argv)
        return code, stdout.getvalue(), stderr.getvalue()

    def test_requires_subcommand(self) -> None:
        code, _out, err = self.run_cli([])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)
        self.assertIn("subcommand", err)

    def test_unknown_flag_is_usage_error(self) -> None:
        code, _out, err = self.run_cli(["compile", "--bogus"])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)

    def test_compile_file_writes_svg(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "input.dg"
            src.write_text(SIMPLE)
            code, out, err = self.run_cli(["compile", str(src)])
            self.assertEqual(code, 0, err)
            target = Path(td) / "input.svg"
            self.assertTrue(target.exists())
            self.assertIn("Wrote", out)
            root = ET.fromstring(target.read_text())
            self.assertEqual(root.tag, "{http://www.w3.org/2000/svg}svg")

    def test_compile_text_to_stdout(self) -> None:
        code, out, err = self.run_cli(["compile", "--text", SIMPLE])
        self.assertEqual(code, 0, err)
        self.assertTrue(out.lstrip().startswith("<svg"))
        self.assertIn("Hello", out)

    def test_compile_stdin(self) -> None:
        code, out, err = self.run_cli(["compile"], stdin_text=SIMPLE)
        self.assertEqual(code, 0, err)
        self.assertIn("<svg", out)

    def test_compile_many_files_concurrently(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths = []
            for i in range(4):
                path = Path(td) / f"d{i}.dg"
                path.write_text(f'<diagram><rect width="{10 + i}" stroke="none"/></diagram>')
                paths.append(str(path))
            code, out, err = self.run_cli(["compile", *paths, "--jobs", "3"])
            self.assertEqual(code, 0, err)
            for i in range(4):
                root = ET.fromstring((Path(td) / f"d{i}.svg").read_text())
                self.assertEqual(root.get("width"), str(10 + i))
            self.assertEqual(out.count("Wrote"), 4)
            self.assertLess(out.index("d0.svg"), out.index("d3.svg"))

    def test_one_bad_file_does_not_stop_others(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            good = Path(td) / "good.dg"
            bad = Path(td) / "bad.dg"
            good.write_text(SIMPLE)
            bad.write_text('<diagram><use ref="nowhere"/></diagram>')
            code, _out, err = self.run_cli(["compile", str(bad), str(good), "--jobs", "2"])
            self.assertEqual(code, 3)
            self.assertIn("E_TEMPLATE_UNRESOLVED", err)
            self.assertIn(str(bad), err)
            self.assertTrue((Path(td) / "good.svg").exists())

    def test_output_requires_single_input(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            a = Path(td) / "a.dg"
            b = Path(td) / "b.dg"
            a.write_text(SIMPLE)
            b.write_text(SIMPLE)
            code, _out, err = self.run_cli(["compile", str(a), str(b), "-o", str(Path(td) / "x.svg")])
            self.assertEqual(code, 2)
            self.assertIn("single input", err)

    def test_missing_input_file(self) -> None:
        code, _out, err = self.run_cli(["compile", "definitely_missing.dg"])
        self.assertEqual(code, 2)
        self.assertIn("E_IO_READ", err)

    def test_parse_error_json(self) -> None:
        code, _out, err = self.run_cli(["--error-format", "json", "compile", "--text", "<diagram>"])
        self.assertEqual(code, 2)
        payload = json.loads(err.strip().splitlines()[-1])
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["code"], "E_PARSE_XML")
        self.assertIsNotNone(payload["line"])

    def test_structural_error(self) -> None:
        code, _out, err = self.run_cli(["compile", "--text", "<diagram><blob/></diagram>"])
        self.assertEqual(code, 3)
        self.assertIn("error[E_STRUCTURE]", err)
        self.assertIn("hint:", err)

    def test_overconstrained_layout_error(self) -> None:
        src = '<diagram minx="1 10 2 10"><rect gridx="1 3" width="50" stroke="none"/></diagram>'
        code, _out, err = self.run_cli(["compile", "--text", src])
        self.assertEqual(code, 3)
        self.assertIn("E_LAYOUT_OVERCONSTRAINED", err)
        self.assertIn("layout/rect[1]", err)

    def test_overflow_is_a_warning(self) -> None:
        src = '<diagram><rect width="50" stroke="none"/></diagram>'
        code, out, err = self.run_cli(["compile", "--text", src, "--width", "20", "--height", "20"])
        self.assertEqual(code, 0, err)
        self.assertIn("warning[W_OVERFLOW]", err)
        root = ET.fromstring(out)
        self.assertEqual(root.get("width"), "20")

    def test_width_needs_height(self) -> None:
        code, _out, err = self.run_cli(["compile", "--text", SIMPLE, "--width", "20"])
        self.assertEqual(code, 2)
        self.assertIn("--height", err)

    def test_templates_precedence_last_shared_wins_and_local_override(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            t1 = Path(td) / "t1.dg"
            t2 = Path(td) / "t2.dg"
            diagram = Path(td) / "diagram.dg"
            t1.write_text('<diagram><defs><rect id="card" width="11" stroke="none"/></defs></diagram>')
            t2.write_text('<diagram><defs><rect id="card" width="22" stroke="none"/></defs></diagram>')
            diagram.write_text('<diagram><use ref="card"/></diagram>')

            out_svg = Path(td) / "out.svg"
            code, _out, err = self.run_cli(
                ["compile", str(diagram), "-o", str(out_svg), "--templates", str(t1), str(t2)]
            )
            self.assertEqual(code, 0, err)
            self.assertEqual(ET.fromstring(out_svg.read_text()).get("width"), "22")

            local = Path(td) / "local.dg"
            local.write_text(
                '<diagram><defs><rect id="card" width="33" stroke="none"/></defs><use ref="card"/></diagram>'
            )
            out_svg2 = Path(td) / "out2.svg"
            code, _out, err = self.run_cli(
                ["compile", str(local), "-o", str(out_svg2), "--templates", str(Path(td) / "t*.dg")]
            )
            self.assertEqual(code, 0, err)
            self.assertEqual(ET.fromstring(out_svg2.read_text()).get("width"), "33")

    def test_template_glob_without_matches(self) -> None:
        code, _out, err = self.run_cli(["compile", "--text", SIMPLE, "--templates", "nothing-here-*.dg"])
        self.assertEqual(code, 3)
        self.assertIn("E_TEMPLATE", err)

    def test_geometry_json(self) -> None:
        code, out, err = self.run_cli(["geometry", "--text", SIMPLE])
        self.assertEqual(code, 0, err)
        payload = json.loads(out)
        kinds = [p["kind"] for p in payload["primitives"]]
        self.assertEqual(kinds, ["group", "rect", "text"])
        self.assertEqual(payload["primitives"][1]["attributes"]["fill"], [0, 128, 128])
        self.assertEqual(payload["warnings"], [])
        self.assertEqual(payload["width"], payload["primitives"][0]["border_box"][2])

    def test_geometry_error_names_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "broken.dg"
            src.write_text('<diagram><rule select="class=x" style="nope"/></diagram>')
            code, _out, err = self.run_cli(["--error-format", "json", "geometry", str(src)])
            self.assertEqual(code, 3)
            payload = json.loads(err.strip().splitlines()[-1])
            self.assertEqual(payload["code"], "E_STYLE_UNRESOLVED")
            self.assertEqual(payload["file"], str(src))

    def test_cheatsheet(self) -> None:
        code, out, err = self.run_cli(["cheatsheet"])
        self.assertEqual(code, 0, err)
        self.assertIn("diagrid quick reference", out)
        self.assertIn("minx", out)


if __name__ == "__main__":
    unittest.main()
