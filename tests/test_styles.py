from __future__ import annotations

import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from diagrid.errors import StructuralError, UnresolvedStyleError
from diagrid.model import KIND_DEFAULTS
from diagrid.reader import load_document
from diagrid.styles import StyleSheet

RED = (255, 0, 0)
BLUE = (0, 0, 255)
GREEN = (0, 128, 0)


def _styled(source: str, **kwargs):
    document = load_document(source)
    sheet = StyleSheet(document.styles, document.rules, **kwargs)
    return sheet, sheet.apply(document.root)


class CascadeTests(unittest.TestCase):
    def test_kind_defaults(self) -> None:
        _sheet, tree = _styled('<diagram><rect width="5"/><text>hi</text></diagram>')
        rect, text = tree.children
        self.assertEqual(rect.style["stroke"], KIND_DEFAULTS["rect"]["stroke"])
        self.assertEqual(rect.style["width"], 5.0)
        self.assertIsNone(rect.style["fill"])
        self.assertEqual(text.style["font-size"], 10.0)
        self.assertNotIn("anchor", rect.style)

    def test_id_rule_beats_class_rule_in_any_order(self) -> None:
        for rules in (
            '<rule select="id=x" fill="red"/><rule select="class=c" fill="blue"/>',
            '<rule select="class=c" fill="blue"/><rule select="#x" fill="red"/>',
        ):
            with self.subTest(rules=rules):
                _sheet, tree = _styled(
                    f'<diagram>{rules}<rect id="x" class="c" width="5"/><rect class="c" width="5"/></diagram>'
                )
                self.assertEqual(tree.children[0].style["fill"], RED)
                self.assertEqual(tree.children[1].style["fill"], BLUE)

    def test_later_class_rule_wins(self) -> None:
        _sheet, tree = _styled(
            '<diagram><rule select=".a" fill="red"/><rule select=".b" fill="blue"/>'
            '<rect class="b a" width="5"/></diagram>'
        )
        self.assertEqual(tree.children[0].style["fill"], BLUE)

    def test_inline_attributes_win(self) -> None:
        _sheet, tree = _styled(
            '<diagram><rule select="id=x" fill="red"/><rect id="x" fill="green" width="5"/></diagram>'
        )
        self.assertEqual(tree.children[0].style["fill"], GREEN)

    def test_rule_references_style_and_overrides_it(self) -> None:
        _sheet, tree = _styled(
            """
<diagram>
  <style id="base" fill="red" stroke="blue" stroke-width="3"/>
  <rule select="class=k" style="base" stroke-width="5"/>
  <rect class="k" width="5"/>
</diagram>
"""
        )
        style = tree.children[0].style
        self.assertEqual(style["fill"], RED)
        self.assertEqual(style["stroke"], BLUE)
        self.assertEqual(style["stroke-width"], 5.0)

    def test_properties_outside_vocabulary_are_skipped(self) -> None:
        _sheet, tree = _styled(
            '<diagram><rule select="class=k" font-size="30" fill="red"/>'
            '<rect class="k" width="5"/><text class="k">x</text></diagram>'
        )
        rect, text = tree.children
        self.assertNotIn("font-size", rect.style)
        self.assertEqual(text.style["font-size"], 30.0)
        self.assertEqual(text.style["fill"], RED)

    def test_defaults_override(self) -> None:
        _sheet, tree = _styled(
            "<diagram><text>hi</text></diagram>", defaults={"text": {"font-size": 14.0}}
        )
        self.assertEqual(tree.children[0].style["font-size"], 14.0)
        self.assertEqual(KIND_DEFAULTS["text"]["font-size"], 10.0)

    def test_source_tree_untouched(self) -> None:
        document = load_document('<diagram><rule select=".k" fill="red"/><rect class="k" width="5"/></diagram>')
        StyleSheet(document.styles, document.rules).apply(document.root)
        self.assertEqual(document.root.children[0].style, {})


class NestedRuleTests(unittest.TestCase):
    def test_nested_rule_only_applies_below_outer_match(self) -> None:
        _sheet, tree = _styled(
            """
<diagram>
  <rule select="class=outer">
    <rule select="class=inner" fill="red"/>
  </rule>
  <group class="outer"><rect class="inner" width="5"/></group>
  <rect class="inner" width="5"/>
</diagram>
"""
        )
        group, loose = tree.children
        self.assertEqual(group.children[0].style["fill"], RED)
        self.assertIsNone(loose.style["fill"])

    def test_outer_match_may_be_any_ancestor(self) -> None:
        _sheet, tree = _styled(
            '<diagram><rule select=".outer"><rule select=".inner" stroke="blue"/></rule>'
            '<group class="outer"><group><rect class="inner" width="5"/></group></group></diagram>'
        )
        rect = tree.children[0].children[0].children[0]
        self.assertEqual(rect.style["stroke"], BLUE)

    def test_node_matching_both_is_not_its_own_ancestor(self) -> None:
        _sheet, tree = _styled(
            '<diagram><rule select=".outer"><rule select=".inner" fill="red"/></rule>'
            '<rect class="outer inner" width="5"/></diagram>'
        )
        self.assertIsNone(tree.children[0].style["fill"])

    def test_outer_and_nested_declarations_both_apply(self) -> None:
        _sheet, tree = _styled(
            '<diagram><rule select=".card" bg="blue"><rule select=".title" font-size="18"/></rule>'
            '<group class="card"><text class="title">T</text></group></diagram>'
        )
        group = tree.children[0]
        self.assertEqual(group.style["bg"], BLUE)
        self.assertEqual(group.children[0].style["font-size"], 18.0)
        self.assertIsNone(group.children[0].style["bg"])

    def test_rule_with_id_and_class_needs_both(self) -> None:
        for rule in ('<rule id="x" class="c" fill="red"/>', '<rule select="class=c" id="x" fill="red"/>'):
            with self.subTest(rule=rule):
                sheet, tree = _styled(
                    f'<diagram>{rule}<rect id="x" class="c" width="5"/>'
                    '<rect id="y" class="c" width="5"/><rect id="z" width="5"/></diagram>'
                )
                self.assertEqual([r.selects_id for r in sheet.rules], [True])
                self.assertEqual([c.style["fill"] for c in tree.children], [RED, None, None])

    def test_conflicting_ids_rejected(self) -> None:
        with self.assertRaises(StructuralError):
            _styled('<diagram><rule select="id=a" id="b" fill="red"/></diagram>')


class InheritanceTests(unittest.TestCase):
    def test_group_properties_flow_to_descendants(self) -> None:
        _sheet, tree = _styled(
            """
<diagram>
  <group fill="red" font-size="14">
    <rect width="5"/>
    <text>hi</text>
    <group><circle width="4"/></group>
  </group>
</diagram>
"""
        )
        rect, text, inner = tree.children[0].children
        self.assertEqual(rect.style["fill"], RED)
        self.assertNotIn("font-size", rect.style)
        self.assertEqual(text.style["fill"], RED)
        self.assertEqual(text.style["font-size"], 14.0)
        self.assertEqual(inner.children[0].style["fill"], RED)

    def test_rules_and_inline_beat_inherited(self) -> None:
        _sheet, tree = _styled(
            '<diagram><rule select=".k" fill="blue"/><group fill="red">'
            '<rect class="k" width="5"/><rect fill="green" width="5"/></group></diagram>'
        )
        self.assertEqual([c.style["fill"] for c in tree.children[0].children], [BLUE, GREEN])

    def test_inherited_from_rule_on_group(self) -> None:
        _sheet, tree = _styled(
            '<diagram stroke="green"><rule select=".g" stroke-width="3"/>'
            '<group class="g"><path coords="0 0 4 4"/></group></diagram>'
        )
        path = tree.children[0].children[0]
        self.assertEqual(path.style["stroke"], GREEN)
        self.assertEqual(path.style["stroke-width"], 3.0)

    def test_box_properties_are_not_inherited(self) -> None:
        _sheet, tree = _styled('<diagram><group bg="red" pad="3"><rect width="5"/></group></diagram>')
        rect = tree.children[0].children[0]
        self.assertIsNone(rect.style["bg"])
        self.assertEqual(rect.style["pad"], (0.0, 0.0, 0.0, 0.0))


class StyleSheetErrorTests(unittest.TestCase):
    def test_unresolved_style(self) -> None:
        with self.assertRaises(UnresolvedStyleError) as ctx:
            _styled('<diagram><rule select="class=k" style="missing"/></diagram>')
        self.assertEqual(ctx.exception.code, "E_STYLE_UNRESOLVED")

    def test_duplicate_style(self) -> None:
        with self.assertRaises(StructuralError):
            _styled('<diagram><style id="s" fill="red"/><style id="s" fill="blue"/></diagram>')

    def test_table_is_read_only(self) -> None:
        sheet, _tree = _styled('<diagram><style id="s" fill="red"/></diagram>')
        with self.assertRaises(TypeError):
            sheet.styles["s"]["fill"] = BLUE  # type: ignore[index]


if __name__ == "__main__":
    unittest.main()
