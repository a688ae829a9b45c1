"""Document model: typed node tree built from raw parser output."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from PIL import ImageColor

from .errors import StructuralError

logger = logging.getLogger(__name__)


class NodeKind(Enum):
    GROUP = "group"
    SHAPE = "shape"
    TEXT = "text"
    PATH = "path"
    STYLE = "style"
    RULE = "rule"
    USE = "use"


TAG_KINDS: Dict[str, NodeKind] = {
    "layout": NodeKind.GROUP,
    "group": NodeKind.GROUP,
    "rect": NodeKind.SHAPE,
    "circle": NodeKind.SHAPE,
    "polygon": NodeKind.SHAPE,
    "text": NodeKind.TEXT,
    "path": NodeKind.PATH,
    "style": NodeKind.STYLE,
    "rule": NodeKind.RULE,
    "use": NodeKind.USE,
}

PLACEMENT_KEYS = ("grid", "gridx", "gridy")

Color = Tuple[int, int, int]


@dataclass(frozen=True)
class GridPlacement:
    """Occupied grid lines on each axis; ``x = (start, end)`` with end > start."""

    x: Tuple[int, int] = (1, 2)
    y: Tuple[int, int] = (1, 2)

    def span(self, axis: str) -> Tuple[int, int]:
        return self.x if axis == "x" else self.y

    @classmethod
    def cell(cls, column: int, row: int) -> "GridPlacement":
        return cls((column, column + 1), (row, row + 1))


@dataclass(frozen=True)
class IntervalConstraint:
    """Minimum for the interval following ``line``; ``weight`` > 0 marks it expandable."""

    line: int
    size: float = 0.0
    weight: float = 0.0

    @property
    def relative(self) -> bool:
        return self.weight > 0.0


@dataclass
class RawNode:
    """Parser output: untyped attribute strings and nesting."""

    tag: str
    id: Optional[str] = None
    classes: List[str] = field(default_factory=list)
    placement: Dict[str, str] = field(default_factory=dict)
    attributes: Dict[str, str] = field(default_factory=dict)
    children: List["RawNode"] = field(default_factory=list)
    text_lines: List[str] = field(default_factory=list)


@dataclass
class Node:
    kind: NodeKind
    tag: str
    id: Optional[str] = None
    classes: Tuple[str, ...] = ()
    placement: GridPlacement = field(default_factory=GridPlacement)
    attributes: Dict[str, Any] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list)
    text_lines: Tuple[str, ...] = ()
    style: Dict[str, Any] = field(default_factory=dict)
    # True when the source gave grid/gridx/gridy rather than the default cell
    placed: bool = False

    @property
    def is_layout(self) -> bool:
        return self.kind is NodeKind.GROUP and self.tag == "layout"

    def label(self) -> str:
        if self.id:
            return f"{self.tag}#{self.id}"
        if self.classes:
            return f"{self.tag}.{self.classes[0]}"
        return self.tag


@dataclass
class Document:
    """One diagram: the root layout plus document-scoped declarations."""

    root: Node
    templates: List[Node] = field(default_factory=list)
    styles: List[Node] = field(default_factory=list)
    rules: List[Node] = field(default_factory=list)


# Attribute value parsers. Each takes the raw string and returns a typed value
# or raises ValueError with a short reason.


def _parse_floats(value: str) -> Tuple[float, ...]:
    parts = [p for p in re.split(r"[\s,]+", value.strip()) if p]
    if not parts:
        raise ValueError("expected at least one number")
    try:
        return tuple(float(p) for p in parts)
    except ValueError:
        raise ValueError(f"expected numbers, got {value!r}") from None


def _parse_float(value: str) -> float:
    floats = _parse_floats(value)
    if len(floats) != 1:
        raise ValueError(f"expected a single number, got {value!r}")
    return floats[0]


def _parse_nonnegative(value: str) -> float:
    number = _parse_float(value)
    if number < 0:
        raise ValueError("must be >= 0")
    return number


def _parse_positive(value: str) -> float:
    number = _parse_float(value)
    if number <= 0:
        raise ValueError("must be > 0")
    return number


def _parse_point(value: str) -> Tuple[float, float]:
    floats = _parse_floats(value)
    if len(floats) > 2:
        raise ValueError("expected one or two numbers")
    return floats[0], floats[-1]


def _parse_ints(value: str) -> Tuple[int, ...]:
    parts = [p for p in re.split(r"[\s,]+", value.strip()) if p]
    if not parts:
        raise ValueError("expected at least one integer")
    try:
        return tuple(int(p) for p in parts)
    except ValueError:
        raise ValueError(f"expected integers, got {value!r}") from None


def _parse_pair(low: float, high: float) -> Callable[[str], Tuple[float, float]]:
    def _parse(value: str) -> Tuple[float, float]:
        floats = _parse_floats(value)
        if len(floats) > 2:
            raise ValueError("expected one or two numbers")
        pair = (floats[0], floats[-1])
        for v in pair:
            if v < low or v > high:
                raise ValueError(f"values must lie in [{low:g}, {high:g}]")
        return pair

    return _parse


def _parse_sides(value: str) -> Tuple[float, float, float, float]:
    floats = _parse_floats(value)
    if len(floats) == 1:
        sides = (floats[0],) * 4
    elif len(floats) == 2:
        sides = (floats[0], floats[1], floats[0], floats[1])
    elif len(floats) == 4:
        sides = floats
    else:
        raise ValueError("expected 1, 2 or 4 numbers")
    if any(v < 0 for v in sides):
        raise ValueError("must be >= 0")
    return sides  # type: ignore[return-value]


def parse_color(value: str) -> Optional[Color]:
    text = value.strip()
    if text.lower() in {"none", "transparent"}:
        return None
    try:
        rgb = ImageColor.getrgb(text)
    except ValueError:
        raise ValueError(f"unknown colour {value!r}") from None
    return rgb[0], rgb[1], rgb[2]


def _parse_text(value: str) -> str:
    text = value.strip()
    if (text.startswith('"') and text.endswith('"')) or (
        text.startswith("'") and text.endswith("'")
    ):
        text = text[1:-1]
    return text


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes"}:
        return True
    if lowered in {"0", "false", "no"}:
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


def _parse_vertices(value: str) -> int:
    ints = _parse_ints(value)
    if len(ints) != 1 or ints[0] < 3:
        raise ValueError("expected an integer >= 3")
    return ints[0]


def _parse_coords(value: str) -> Tuple[Tuple[float, float], ...]:
    floats = _parse_floats(value)
    if len(floats) % 2 or len(floats) < 4:
        raise ValueError("expected an even list of at least two x,y pairs")
    return tuple((floats[i], floats[i + 1]) for i in range(0, len(floats), 2))


def parse_interval_constraints(value: str) -> Tuple[IntervalConstraint, ...]:
    """Parse ``minx``/``miny``: ``line size line size ...``.

    A size written ``+w`` marks the interval as expansion-eligible with weight
    ``w`` and a zero floor. A trailing bare line index closes the list and is
    ignored.
    """
    tokens = [t for t in re.split(r"[\s,]+", value.strip()) if t]
    if not tokens:
        raise ValueError("expected line/size pairs")
    constraints: List[IntervalConstraint] = []
    last_line = 0
    for idx in range(0, len(tokens), 2):
        try:
            line = int(tokens[idx])
        except ValueError:
            raise ValueError(f"expected a grid line index, got {tokens[idx]!r}") from None
        if line < 1:
            raise ValueError("grid lines are numbered from 1")
        if line <= last_line:
            raise ValueError("grid line indices must increase")
        last_line = line
        if idx + 1 >= len(tokens):
            break
        size_token = tokens[idx + 1]
        try:
            if size_token.startswith("+"):
                weight = float(size_token[1:])
                if weight < 0:
                    raise ValueError
                constraints.append(IntervalConstraint(line, 0.0, weight))
            else:
                size = float(size_token)
                if size < 0:
                    raise ValueError
                constraints.append(IntervalConstraint(line, size, 0.0))
        except ValueError:
            raise ValueError(f"bad interval size {size_token!r}") from None
    return tuple(constraints)


ATTRIBUTE_PARSERS: Dict[str, Callable[[str], Any]] = {
    "anchor": _parse_pair(-1.0, 1.0),
    "expand": _parse_pair(0.0, 1.0),
    "minx": parse_interval_constraints,
    "miny": parse_interval_constraints,
    "place": _parse_point,
    "pad": _parse_sides,
    "margin": _parse_sides,
    "bg": parse_color,
    "border-color": parse_color,
    "border-width": _parse_nonnegative,
    "border-round": _parse_nonnegative,
    "translate": _parse_point,
    "scale": _parse_positive,
    "rotate": _parse_float,
    "fill": parse_color,
    "stroke": parse_color,
    "stroke-width": _parse_nonnegative,
    "width": _parse_nonnegative,
    "height": _parse_nonnegative,
    "round": _parse_nonnegative,
    "vertices": _parse_vertices,
    "stellate": _parse_nonnegative,
    "font-family": _parse_text,
    "font-size": _parse_nonnegative,
    "font-weight": _parse_text,
    "font-style": _parse_text,
    "coords": _parse_coords,
    "closed": _parse_bool,
    "ref": _parse_text,
    "select": _parse_text,
    "style": _parse_text,
}

BOX_ATTRIBUTES = frozenset(
    {
        "anchor",
        "place",
        "pad",
        "margin",
        "bg",
        "border-color",
        "border-width",
        "border-round",
        "translate",
    }
)

# Properties a group passes on to descendants that do not set them.
INHERITED_ATTRIBUTES = frozenset(
    {"fill", "stroke", "stroke-width", "font-family", "font-size", "font-weight", "font-style"}
)

# Properties a style or rule may carry; anything else is structural.
PRESENTATION_ATTRIBUTES = INHERITED_ATTRIBUTES | {
    "pad",
    "margin",
    "bg",
    "border-color",
    "border-width",
    "border-round",
    "translate",
    "scale",
    "round",
    "stellate",
}

_LEAF_ATTRIBUTES = BOX_ATTRIBUTES | {"rotate", "scale"}
_SHAPE_ATTRIBUTES = _LEAF_ATTRIBUTES | {"fill", "stroke", "stroke-width", "width", "height"}

TAG_ATTRIBUTES: Dict[str, frozenset] = {
    "layout": BOX_ATTRIBUTES | INHERITED_ATTRIBUTES | {"expand", "minx", "miny"},
    "group": BOX_ATTRIBUTES | INHERITED_ATTRIBUTES,
    "rect": _SHAPE_ATTRIBUTES | {"round"},
    "circle": _SHAPE_ATTRIBUTES,
    "polygon": _SHAPE_ATTRIBUTES | {"vertices", "round", "stellate"},
    "text": _LEAF_ATTRIBUTES
    | {"fill", "font-family", "font-size", "font-weight", "font-style"},
    "path": _LEAF_ATTRIBUTES | {"fill", "stroke", "stroke-width", "coords", "closed"},
    "style": PRESENTATION_ATTRIBUTES,
    "rule": PRESENTATION_ATTRIBUTES | {"select", "style"},
    "use": frozenset(ATTRIBUTE_PARSERS) - {"select", "style"},
}

# "anchor" has no kind default; the layout engine falls back to its configured one.
_BOX_DEFAULTS: Dict[str, Any] = {
    "pad": (0.0, 0.0, 0.0, 0.0),
    "margin": (0.0, 0.0, 0.0, 0.0),
    "bg": None,
    "border-color": None,
    "border-width": 0.0,
    "border-round": 0.0,
    "translate": (0.0, 0.0),
}

_SHAPE_DEFAULTS: Dict[str, Any] = {
    **_BOX_DEFAULTS,
    "rotate": 0.0,
    "scale": 1.0,
    "fill": None,
    "stroke": (0, 0, 0),
    "stroke-width": 1.0,
    "width": 10.0,
    "round": 0.0,
}

KIND_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "layout": {**_BOX_DEFAULTS, "expand": (0.0, 0.0), "minx": (), "miny": ()},
    "group": dict(_BOX_DEFAULTS),
    "rect": dict(_SHAPE_DEFAULTS),
    "circle": {k: v for k, v in _SHAPE_DEFAULTS.items() if k != "round"},
    "polygon": {**_SHAPE_DEFAULTS, "vertices": 4, "stellate": 0.0},
    "text": {
        **_BOX_DEFAULTS,
        "rotate": 0.0,
        "scale": 1.0,
        "fill": (0, 0, 0),
        "font-family": None,
        "font-size": 10.0,
        "font-weight": None,
        "font-style": None,
    },
    "path": {
        **_BOX_DEFAULTS,
        "rotate": 0.0,
        "scale": 1.0,
        "fill": None,
        "stroke": (0, 0, 0),
        "stroke-width": 1.0,
        "closed": False,
    },
}


def parse_placement(tokens: Dict[str, str]) -> Optional[GridPlacement]:
    """Combine ``grid``/``gridx``/``gridy`` tokens; None when none were given."""
    if not any(key in tokens for key in PLACEMENT_KEYS):
        return None
    grid: Optional[Tuple[Tuple[int, int], Tuple[int, int]]] = None
    if "grid" in tokens:
        g = _parse_ints(tokens["grid"])
        if len(g) == 1:
            grid = ((g[0], g[0] + 1), (g[0], g[0] + 1))
        elif len(g) == 2:
            grid = ((g[0], g[0] + 1), (g[1], g[1] + 1))
        elif len(g) == 3:
            grid = ((g[0], g[2]), (g[1], g[1] + 1))
        elif len(g) == 4:
            grid = ((g[0], g[2]), (g[1], g[3]))
        else:
            raise ValueError("grid takes 1 to 4 line indices")

    def _axis(key: str) -> Optional[Tuple[int, int]]:
        if key not in tokens:
            return None
        g = _parse_ints(tokens[key])
        if len(g) == 1:
            return g[0], g[0] + 1
        if len(g) == 2:
            return g[0], g[1]
        raise ValueError(f"{key} takes 1 or 2 line indices")

    x = _axis("gridx") or (grid[0] if grid else (1, 2))
    y = _axis("gridy") or (grid[1] if grid else (1, 2))
    for name, (start, end) in (("x", x), ("y", y)):
        if start < 1 or end < 1:
            raise ValueError("grid lines are numbered from 1")
        if end <= start:
            raise ValueError(f"{name} span must end after it starts ({start} -> {end})")
    return GridPlacement(x, y)


def parse_attributes(tag: str, raw: Dict[str, str], allowed: frozenset) -> Dict[str, Any]:
    attributes: Dict[str, Any] = {}
    for key, value in raw.items():
        parser = ATTRIBUTE_PARSERS.get(key)
        if parser is None or key not in allowed:
            raise StructuralError(f'attribute "{key}" is not supported on <{tag}>')
        try:
            attributes[key] = parser(value)
        except ValueError as exc:
            raise StructuralError(f'bad value for "{key}" on <{tag}>: {exc}') from None
    return attributes


def validate_attributes(node: Node) -> None:
    """Check typed attributes against the node's vocabulary (used after merges)."""
    allowed = TAG_ATTRIBUTES[node.tag]
    for key in node.attributes:
        if key not in allowed:
            raise StructuralError(
                f'attribute "{key}" is not supported on <{node.tag}>', node_path=node.label()
            )


def _ordered_classes(classes: Sequence[str]) -> Tuple[str, ...]:
    seen: List[str] = []
    for name in classes:
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


def build_node(raw: RawNode) -> Node:
    """Construct a typed node (recursively) from raw parser output."""
    kind = TAG_KINDS.get(raw.tag)
    if kind is None:
        raise StructuralError(f"unknown element <{raw.tag}>")
    desc = f"<{raw.tag}{' id=' + repr(raw.id) if raw.id else ''}>"

    try:
        placement = parse_placement(raw.placement)
    except ValueError as exc:
        raise StructuralError(f"bad grid placement on {desc}: {exc}") from None
    if placement is not None and kind in (NodeKind.STYLE, NodeKind.RULE):
        raise StructuralError(f"{desc} cannot take a grid placement")

    attributes = parse_attributes(raw.tag, raw.attributes, TAG_ATTRIBUTES[raw.tag])

    if kind is NodeKind.STYLE and not raw.id:
        raise StructuralError("<style> needs an id so rules can reference it")
    if kind is NodeKind.RULE:
        if "select" not in attributes and not raw.id and not raw.classes:
            raise StructuralError(f'{desc} needs a "select", "id" or "class" attribute')
        if "select" in attributes:
            parse_selector(attributes["select"])
        for child in raw.children:
            if child.tag != "rule":
                raise StructuralError(f"{desc} can only contain nested <rule> elements")
    if "place" in attributes and placement is not None:
        raise StructuralError(f'{desc} cannot take both "place" and a grid placement')
    if kind is NodeKind.USE:
        if not attributes.get("ref"):
            raise StructuralError(f'{desc} needs a "ref" attribute naming a template')
        if raw.children:
            raise StructuralError(f"{desc} cannot have children")
    if kind not in (NodeKind.GROUP, NodeKind.RULE) and raw.children:
        raise StructuralError(f"{desc} cannot have children")
    if kind is NodeKind.PATH and "coords" not in attributes:
        raise StructuralError(f'{desc} needs a "coords" attribute')
    if raw.text_lines and kind is not NodeKind.TEXT:
        raise StructuralError(f"{desc} cannot contain text")

    node = Node(
        kind=kind,
        tag=raw.tag,
        id=raw.id or None,
        classes=_ordered_classes(raw.classes),
        placement=placement or GridPlacement(),
        attributes=attributes,
        text_lines=tuple(raw.text_lines),
        placed=placement is not None,
    )
    for child in raw.children:
        child_node = build_node(child)
        if kind is not NodeKind.RULE and child_node.kind in (NodeKind.STYLE, NodeKind.RULE):
            raise StructuralError(
                f"<{child.tag}> must be declared at document level, not inside {desc}"
            )
        node.children.append(child_node)
    return node


def parse_selector(selector: str) -> Tuple[str, str]:
    """Return ``("class"|"id", name)`` for ``class=x``, ``id=x``, ``.x`` or ``#x``."""
    text = selector.strip()
    if text.startswith("."):
        kind, name = "class", text[1:]
    elif text.startswith("#"):
        kind, name = "id", text[1:]
    elif "=" in text:
        kind, name = (part.strip() for part in text.split("=", 1))
    else:
        kind, name = "", ""
    if kind not in {"class", "id"} or not name:
        raise StructuralError(f'bad rule selector "{selector}" (use class=NAME or id=NAME)')
    return kind, name


def rule_criteria(rule: Node) -> Tuple[Optional[str], Tuple[str, ...]]:
    """Id and classes a node must carry to match ``rule``.

    ``select`` and the rule's own ``id``/``class`` attributes combine; a rule
    with both an id and classes matches only nodes that have all of them.
    """
    rule_id = rule.id
    classes = list(rule.classes)
    if "select" in rule.attributes:
        kind, name = parse_selector(rule.attributes["select"])
        if kind == "class":
            classes.append(name)
        elif rule_id is not None and rule_id != name:
            raise StructuralError(f'rule selects id "{name}" but also carries id "{rule_id}"')
        else:
            rule_id = name
    return rule_id, _ordered_classes(classes)


def build_document(raw_root: RawNode) -> Document:
    """Split a raw ``<diagram>`` into root layout and document declarations."""
    if raw_root.tag != "diagram":
        raise StructuralError(f"root element must be <diagram>, got <{raw_root.tag}>")
    if any(key in raw_root.placement for key in PLACEMENT_KEYS):
        raise StructuralError("<diagram> cannot take a grid placement")
    if "place" in raw_root.attributes:
        raise StructuralError('<diagram> cannot take a "place" position')
    root = Node(
        kind=NodeKind.GROUP,
        tag="layout",
        id=raw_root.id or None,
        classes=_ordered_classes(raw_root.classes),
        attributes=parse_attributes("diagram", raw_root.attributes, TAG_ATTRIBUTES["layout"]),
    )
    document = Document(root=root)
    for raw in raw_root.children:
        if raw.tag == "defs":
            for raw_template in raw.children:
                template = build_node(raw_template)
                if template.kind in (NodeKind.STYLE, NodeKind.RULE):
                    raise StructuralError(f"<{raw_template.tag}> cannot be used as a template")
                if not template.id:
                    raise StructuralError(
                        f"template <{raw_template.tag}> inside <defs> needs an id (its name)"
                    )
                document.templates.append(template)
            continue
        node = build_node(raw)
        if node.kind is NodeKind.STYLE:
            document.styles.append(node)
        elif node.kind is NodeKind.RULE:
            document.rules.append(node)
        else:
            root.children.append(node)
    logger.debug(
        "built document: %d top-level nodes, %d templates, %d styles, %d rules",
        len(root.children),
        len(document.templates),
        len(document.styles),
        len(document.rules),
    )
    return document


def walk(node: Node) -> Iterator[Node]:
    """Depth-first, pre-order, children in declaration order."""
    yield node
    for child in node.children:
        yield from walk(child)


def check_unique_ids(root: Node) -> None:
    seen: Dict[str, Node] = {}
    for node in walk(root):
        if not node.id:
            continue
        if node.id in seen:
            raise StructuralError(f'duplicate id "{node.id}"', node_path=node.label())
        seen[node.id] = node


__all__ = [
    "NodeKind",
    "GridPlacement",
    "IntervalConstraint",
    "RawNode",
    "Node",
    "Document",
    "build_node",
    "build_document",
    "walk",
    "check_unique_ids",
]
