"""Style cascade.

Ascending precedence: kind defaults < properties inherited from the parent
< class rules < id rules < inline attributes. Rules may nest; a nested rule
only matches nodes below a node matched by its enclosing rule.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import StructuralError, UnresolvedStyleError
from .model import (
    INHERITED_ATTRIBUTES,
    KIND_DEFAULTS,
    TAG_ATTRIBUTES,
    Node,
    NodeKind,
    rule_criteria,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StyleRule:
    id: Optional[str]
    classes: Tuple[str, ...]
    declarations: Mapping[str, Any]
    parent: Optional["StyleRule"] = None

    @property
    def selects_id(self) -> bool:
        return self.id is not None

    def matches(self, node: Node, ancestors: Sequence[Node] = ()) -> bool:
        """``ancestors`` runs from the root down to ``node``'s parent."""
        if self.id is not None and node.id != self.id:
            return False
        if any(name not in node.classes for name in self.classes):
            return False
        if self.parent is None:
            return True
        for index in range(len(ancestors) - 1, -1, -1):
            if self.parent.matches(ancestors[index], ancestors[:index]):
                return True
        return False


class StyleSheet:
    """Document-scoped style table; read-only once constructed."""

    def __init__(
        self,
        styles: Sequence[Node] = (),
        rules: Sequence[Node] = (),
        *,
        defaults: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> None:
        self._defaults: Dict[str, Dict[str, Any]] = {
            tag: dict(values) for tag, values in KIND_DEFAULTS.items()
        }
        for tag, overrides in (defaults or {}).items():
            self._defaults.setdefault(tag, {}).update(overrides)
        style_defs: Dict[str, Mapping[str, Any]] = {}
        for style in styles:
            if style.kind is not NodeKind.STYLE:
                raise StructuralError(f"<{style.tag}> is not a style definition")
            if style.id in style_defs:
                raise StructuralError(f'duplicate style id "{style.id}"')
            style_defs[style.id or ""] = MappingProxyType(dict(style.attributes))

        collected: List[StyleRule] = []
        for rule_node in rules:
            self._collect(rule_node, None, style_defs, collected)

        self._styles: Mapping[str, Mapping[str, Any]] = MappingProxyType(style_defs)
        # id rules are applied after class rules whatever their declaration order
        self._class_rules: Tuple[StyleRule, ...] = tuple(r for r in collected if not r.selects_id)
        self._id_rules: Tuple[StyleRule, ...] = tuple(r for r in collected if r.selects_id)
        logger.debug(
            "stylesheet: %d styles, %d class rules, %d id rules (%d nested)",
            len(style_defs),
            len(self._class_rules),
            len(self._id_rules),
            sum(1 for r in collected if r.parent is not None),
        )

    @staticmethod
    def _collect(
        rule_node: Node,
        parent: Optional[StyleRule],
        style_defs: Mapping[str, Mapping[str, Any]],
        collected: List[StyleRule],
    ) -> None:
        if rule_node.kind is not NodeKind.RULE:
            raise StructuralError(f"<{rule_node.tag}> is not a rule")
        rule_id, classes = rule_criteria(rule_node)
        declarations: Dict[str, Any] = {}
        style_ref = rule_node.attributes.get("style")
        if style_ref is not None:
            if style_ref not in style_defs:
                raise UnresolvedStyleError(
                    f'rule {rule_node.label()} references undefined style "{style_ref}"'
                )
            declarations.update(style_defs[style_ref])
        for key, value in rule_node.attributes.items():
            if key not in {"select", "style"}:
                declarations[key] = value
        rule = StyleRule(rule_id, classes, MappingProxyType(declarations), parent)
        collected.append(rule)
        for child in rule_node.children:
            StyleSheet._collect(child, rule, style_defs, collected)

    @property
    def styles(self) -> Mapping[str, Mapping[str, Any]]:
        return self._styles

    @property
    def rules(self) -> Tuple[StyleRule, ...]:
        return self._class_rules + self._id_rules

    def resolve(
        self,
        node: Node,
        ancestors: Sequence[Node] = (),
        inherited: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        allowed = TAG_ATTRIBUTES[node.tag]
        resolved: Dict[str, Any] = dict(self._defaults.get(node.tag, {}))
        for key, value in (inherited or {}).items():
            if key in allowed:
                resolved[key] = value
        for rule in self._class_rules + self._id_rules:
            if not rule.matches(node, ancestors):
                continue
            for key, value in rule.declarations.items():
                if key in allowed:
                    resolved[key] = value
        resolved.update(node.attributes)
        return resolved

    def apply(
        self,
        tree: Node,
        _ancestors: Tuple[Node, ...] = (),
        _inherited: Optional[Mapping[str, Any]] = None,
    ) -> Node:
        """Return the same tree shape with ``style`` filled on every node."""
        style = self.resolve(tree, _ancestors, _inherited)
        passed_on = {key: style[key] for key in INHERITED_ATTRIBUTES if key in style}
        ancestors = _ancestors + (tree,)
        return replace(
            tree,
            attributes=dict(tree.attributes),
            style=style,
            children=[self.apply(child, ancestors, passed_on) for child in tree.children],
        )


__all__ = ["StyleSheet", "StyleRule"]
