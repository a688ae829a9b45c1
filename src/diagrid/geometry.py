"""Geometry output adapter: positioned tree -> flat list of primitives."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import UnsupportedPrimitiveError
from .layout import Box, ResolvedBox
from .model import IntervalConstraint, NodeKind

SHAPE_TAGS = ("rect", "circle", "polygon")


@dataclass(frozen=True)
class Primitive:
    """One positioned, styled drawing primitive.

    ``box`` is the content box; ``border_box`` is the box inside the margin,
    where backgrounds and borders are drawn. ``rotation`` (degrees) and
    ``scale`` apply about the centre of ``box``.

    ``box`` is always the unrotated, unscaled content: a rotated leaf keeps
    its own width and height and is centred in its cell, so ``box`` may
    extend past the parent. ``bounds`` is the axis-aligned box actually
    covered after scaling and rotation, and is what the parent sized for.
    """

    kind: str
    id: Optional[str]
    path: str
    box: Box
    border_box: Box
    rotation: float
    attributes: Mapping[str, Any]
    text_lines: Tuple[str, ...] = ()
    path_vertices: Tuple[Tuple[float, float], ...] = ()
    bounds: Optional[Box] = None
    scale: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "path": self.path,
            "box": _box_list(self.box),
            "border_box": _box_list(self.border_box),
            "rotation": self.rotation,
            "scale": self.scale,
            "bounds": _box_list(self.bounds or self.box),
            "attributes": {
                key: _jsonable(value) for key, value in sorted(self.attributes.items())
            },
            "text_lines": list(self.text_lines),
            "path_vertices": [list(pt) for pt in self.path_vertices],
        }


def _box_list(box: Box) -> List[float]:
    return [box.x, box.y, box.width, box.height]


def _jsonable(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_jsonable(v) for v in value]
    if isinstance(value, IntervalConstraint):
        return {"line": value.line, "size": value.size, "weight": value.weight}
    return value


def _primitive_kind(resolved: ResolvedBox) -> str:
    node = resolved.node
    if node.kind is NodeKind.GROUP:
        return "group"
    if node.kind is NodeKind.SHAPE and node.tag in SHAPE_TAGS:
        return node.tag
    if node.kind is NodeKind.TEXT:
        return "text"
    if node.kind is NodeKind.PATH:
        return "path"
    raise UnsupportedPrimitiveError(
        f"cannot render <{node.tag}> ({node.kind.value})", node_path=resolved.path
    )


def emit_primitives(root: ResolvedBox) -> List[Primitive]:
    """Depth-first, parents before children, children in declaration order."""
    primitives: List[Primitive] = []

    def _walk(resolved: ResolvedBox) -> None:
        primitives.append(
            Primitive(
                kind=_primitive_kind(resolved),
                id=resolved.node.id,
                path=resolved.path,
                box=resolved.content,
                border_box=resolved.border_box,
                rotation=resolved.rotation,
                attributes=resolved.style,
                text_lines=resolved.node.text_lines,
                path_vertices=resolved.path_vertices,
                bounds=resolved.bounds or resolved.content,
                scale=resolved.scale,
            )
        )
        for child in resolved.children:
            _walk(child)

    _walk(root)
    return primitives


__all__ = ["Primitive", "emit_primitives"]
