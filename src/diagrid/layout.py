"""Grid layout engine.

Layout runs in two passes over the styled tree. The bottom-up pass computes
every node's natural size; for a group that means sizing the intervals
between its grid lines on each axis from explicit ``minx``/``miny`` floors,
single-cell children and spanning children. The top-down pass hands each
node a box (the union of the intervals it spans in its parent), anchors the
node inside it, grows expandable intervals, and recurses. Children with a
``place`` position skip the grid: they are centred on a point measured from
the grid origin and only widen the group's natural size.

Each node's working state lives in a ``LayoutRecord`` that moves through
``LayoutState`` strictly in order. The finished geometry is returned as an
immutable ``ResolvedBox`` tree.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import (
    LayoutOverflowWarning,
    LayoutStateError,
    LayoutWarning,
    OverconstrainedLayoutError,
    UnsupportedPrimitiveError,
    UnusedExpansionWarning,
)
from .model import IntervalConstraint, Node, NodeKind
from .text import TEXT_MEASURER, TextMeasurer

logger = logging.getLogger(__name__)

AXES = ("x", "y")
EPSILON = 1e-9

Size = Tuple[float, float]


class LayoutState(IntEnum):
    UNRESOLVED = 0
    NATURAL_SIZE_KNOWN = 1
    BOX_ASSIGNED = 2
    POSITIONED = 3


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def start(self, axis: str) -> float:
        return self.x if axis == "x" else self.y

    def size(self, axis: str) -> float:
        return self.width if axis == "x" else self.height

    def shrink(self, left: float, top: float, right: float, bottom: float) -> "Box":
        width = max(self.width - left - right, 0.0)
        height = max(self.height - top - bottom, 0.0)
        return Box(self.x + left, self.y + top, width, height)

    def moved(self, dx: float, dy: float) -> "Box":
        return Box(self.x + dx, self.y + dy, self.width, self.height)

    def contains(self, other: "Box", tolerance: float = 1e-6) -> bool:
        return (
            other.x >= self.x - tolerance
            and other.y >= self.y - tolerance
            and other.right <= self.right + tolerance
            and other.bottom <= self.bottom + tolerance
        )

    @classmethod
    def from_spans(cls, x: Tuple[float, float], y: Tuple[float, float]) -> "Box":
        return cls(x[0], y[0], x[1], y[1])


@dataclass
class Interval:
    """Space between grid line ``line`` and ``line + 1`` on one axis."""

    line: int
    size: float = 0.0
    literal: bool = False
    weight: float = 0.0
    minimum: float = 0.0


class GridAxis:
    """Interval sizes along one axis of a layout node."""

    def __init__(self, axis: str, line_count: int) -> None:
        self.axis = axis
        self.intervals: List[Interval] = [Interval(line) for line in range(1, line_count)]

    @property
    def line_count(self) -> int:
        return len(self.intervals) + 1

    def interval(self, line: int) -> Interval:
        return self.intervals[line - 1]

    def apply_constraints(self, constraints: Sequence[IntervalConstraint]) -> None:
        for constraint in constraints:
            interval = self.interval(constraint.line)
            if constraint.relative:
                interval.weight = constraint.weight
            elif constraint.size > 0:
                interval.size = max(interval.size, constraint.size)
                interval.literal = True

    def add_cell(self, line: int, size: float) -> None:
        interval = self.interval(line)
        interval.size = max(interval.size, size)

    def add_span(self, start: int, end: int, size: float, path: str) -> None:
        spanned = self.intervals[start - 1 : end - 1]
        deficit = size - sum(i.size for i in spanned)
        if deficit <= EPSILON:
            return
        candidates = [i for i in spanned if not i.literal]
        if not candidates:
            raise OverconstrainedLayoutError(
                f"{self.axis} intervals between lines {start} and {end} are fixed at "
                f"{size - deficit:g} but a spanning child needs {size:g}",
                axis=self.axis,
                interval_range=(start, end),
                node_path=path,
            )
        share = deficit / len(candidates)
        for interval in candidates:
            interval.size += share

    def freeze_minimums(self) -> None:
        for interval in self.intervals:
            interval.minimum = interval.size

    @property
    def total(self) -> float:
        return sum(i.size for i in self.intervals)

    @property
    def total_weight(self) -> float:
        return sum(i.weight for i in self.intervals)

    def grow(self, slack: float) -> None:
        total_weight = self.total_weight
        for interval in self.intervals:
            if interval.weight > 0:
                interval.size += slack * interval.weight / total_weight

    def positions(self, origin: float) -> List[float]:
        """Absolute position of every line; index 0 is line 1."""
        positions = [origin]
        for interval in self.intervals:
            positions.append(positions[-1] + interval.size)
        return positions


@dataclass
class LayoutRecord:
    """Mutable working state for one node during layout."""

    node: Node
    path: str
    parent: Optional["LayoutRecord"] = None
    children: List["LayoutRecord"] = field(default_factory=list)
    state: LayoutState = LayoutState.UNRESOLVED
    content_size: Size = (0.0, 0.0)
    natural: Size = (0.0, 0.0)
    axes: Dict[str, GridAxis] = field(default_factory=dict)
    cell: Optional[Box] = None
    outer: Optional[Box] = None
    border_box: Optional[Box] = None
    content: Optional[Box] = None
    bounds: Optional[Box] = None
    # per axis: lowest start and highest end of "place"d children, grid origin at 0
    extents: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    lines: Dict[str, Tuple[float, ...]] = field(default_factory=dict)

    @property
    def style(self) -> Mapping[str, Any]:
        return self.node.style or self.node.attributes

    def advance(self, target: LayoutState) -> None:
        if target != self.state + 1:
            raise LayoutStateError(
                f"cannot move from {self.state.name} to {target.name}", node_path=self.path
            )
        if target is LayoutState.NATURAL_SIZE_KNOWN:
            pending = [c for c in self.children if c.state < LayoutState.NATURAL_SIZE_KNOWN]
        elif target is LayoutState.BOX_ASSIGNED:
            pending = [self.parent] if self.parent and self.parent.state < target else []
        else:
            pending = [c for c in self.children if c.state < LayoutState.BOX_ASSIGNED]
        if pending:
            raise LayoutStateError(
                f"cannot reach {target.name} before {pending[0].path}", node_path=self.path
            )
        self.state = target


@dataclass(frozen=True)
class ResolvedBox:
    """Final geometry and presentation of one node.

    ``content`` is the unscaled, unrotated content box. ``bounds`` is the
    axis-aligned box the content covers once ``scale`` and ``rotation`` are
    applied about its centre; it equals ``content`` for groups and for
    leaves drawn as laid out.
    """

    node: Node
    path: str
    outer: Box
    border_box: Box
    content: Box
    rotation: float
    style: Mapping[str, Any]
    children: Tuple["ResolvedBox", ...] = ()
    grid_lines: Mapping[str, Tuple[float, ...]] = field(default_factory=dict)
    path_vertices: Tuple[Tuple[float, float], ...] = ()
    bounds: Optional[Box] = None
    scale: float = 1.0


def _rotated_size(width: float, height: float, degrees: float) -> Size:
    if not degrees:
        return width, height
    rad = math.radians(degrees)
    cos_a = abs(math.cos(rad))
    sin_a = abs(math.sin(rad))
    return width * cos_a + height * sin_a, width * sin_a + height * cos_a


def _drawn_size(size: Size, scale: float, degrees: float) -> Size:
    return _rotated_size(size[0] * scale, size[1] * scale, degrees)


def _path_bounds(coords: Sequence[Tuple[float, float]]) -> Tuple[float, float, float, float]:
    xs = [pt[0] for pt in coords]
    ys = [pt[1] for pt in coords]
    return min(xs), min(ys), max(xs), max(ys)


def _anchored_start(start: float, available: float, size: float, anchor: float) -> float:
    return start + (available - size) * (anchor + 1.0) / 2.0


class LayoutEngine:
    """Resolves absolute geometry for one styled, template-free tree."""

    def __init__(
        self,
        *,
        measurer: TextMeasurer = TEXT_MEASURER,
        default_font_family: Optional[str] = None,
        default_anchor: Tuple[float, float] = (0.0, 0.0),
    ) -> None:
        self.measurer = measurer
        self.default_font_family = default_font_family
        self.default_anchor = default_anchor
        self.warnings: List[LayoutWarning] = []

    def layout(self, root: Node, size: Optional[Size] = None) -> ResolvedBox:
        record = self._build(root, root.label(), None)
        self._measure(record)
        width, height = size if size is not None else record.natural
        self._assign(record, Box(0.0, 0.0, width, height))
        return self._resolve(record)

    def _build(self, node: Node, path: str, parent: Optional[LayoutRecord]) -> LayoutRecord:
        record = LayoutRecord(node=node, path=path, parent=parent)
        for index, child in enumerate(node.children, start=1):
            label = child.label() if child.id else f"{child.label()}[{index}]"
            record.children.append(self._build(child, f"{path}/{label}", record))
        return record

    # Bottom-up pass

    def _measure(self, record: LayoutRecord) -> None:
        for child in record.children:
            self._measure(child)
        style = record.style
        node = record.node
        rotation = 0.0
        if node.kind is NodeKind.GROUP:
            record.content_size = self._measure_grid(record)
        elif node.kind is NodeKind.SHAPE:
            width = style.get("width", 0.0)
            height = style.get("height", width)
            stroke = style.get("stroke-width", 0.0) if style.get("stroke") else 0.0
            record.content_size = (width + stroke, height + stroke)
            rotation = style.get("rotate", 0.0)
        elif node.kind is NodeKind.TEXT:
            family = style.get("font-family") or self.default_font_family
            record.content_size = self.measurer.text_size(
                node.text_lines, style.get("font-size", 10.0), family
            )
            rotation = style.get("rotate", 0.0)
        elif node.kind is NodeKind.PATH:
            x0, y0, x1, y1 = _path_bounds(style["coords"])
            stroke = style.get("stroke-width", 0.0) if style.get("stroke") else 0.0
            record.content_size = (x1 - x0 + stroke, y1 - y0 + stroke)
            rotation = style.get("rotate", 0.0)
        else:
            raise UnsupportedPrimitiveError(
                f"<{node.tag}> cannot be laid out", node_path=record.path
            )

        width, height = _drawn_size(record.content_size, style.get("scale", 1.0), rotation)
        pl, pt, pr, pb = style.get("pad", (0.0, 0.0, 0.0, 0.0))
        ml, mt, mr, mb = style.get("margin", (0.0, 0.0, 0.0, 0.0))
        border = style.get("border-width", 0.0)
        record.natural = (
            width + pl + pr + ml + mr + 2 * border,
            height + pt + pb + mt + mb + 2 * border,
        )
        record.advance(LayoutState.NATURAL_SIZE_KNOWN)

    def _measure_grid(self, record: LayoutRecord) -> Size:
        style = record.style
        gridded = [c for c in record.children if c.style.get("place") is None]
        placed = [c for c in record.children if c.style.get("place") is not None]
        sizes: List[float] = []
        for axis_index, axis in enumerate(AXES):
            constraints: Sequence[IntervalConstraint] = style.get("min" + axis, ())
            line_count = 1
            for child in gridded:
                line_count = max(line_count, child.node.placement.span(axis)[1])
            for constraint in constraints:
                line_count = max(line_count, constraint.line + 1)

            grid = GridAxis(axis, line_count)
            grid.apply_constraints(constraints)
            spanning: List[Tuple[int, int, LayoutRecord]] = []
            for order, child in enumerate(gridded):
                start, end = child.node.placement.span(axis)
                if end - start == 1:
                    grid.add_cell(start, child.natural[axis_index])
                else:
                    spanning.append((end - start, order, child))
            for _, _, child in sorted(spanning, key=lambda item: (item[0], item[1])):
                start, end = child.node.placement.span(axis)
                grid.add_span(start, end, child.natural[axis_index], child.path)
            grid.freeze_minimums()
            record.axes[axis] = grid

            low, high = 0.0, 0.0
            for child in placed:
                centre = child.style["place"][axis_index]
                half = child.natural[axis_index] / 2
                low = min(low, centre - half)
                high = max(high, centre + half)
            record.extents[axis] = (low, high)
            sizes.append(max(grid.total, high) - low)
            logger.debug(
                "%s %s intervals: %s",
                record.path,
                axis,
                ", ".join(f"{i.line}:{i.size:g}" for i in grid.intervals) or "none",
            )
        return sizes[0], sizes[1]

    # Top-down pass

    def _assign(self, record: LayoutRecord, cell: Box) -> None:
        record.cell = cell
        record.advance(LayoutState.BOX_ASSIGNED)
        style = record.style
        node = record.node
        anchor = style.get("anchor", self.default_anchor)
        expand = style.get("expand", (0.0, 0.0)) if node.is_layout else (0.0, 0.0)

        spans = []
        for i, axis in enumerate(AXES):
            available = cell.size(axis)
            natural = record.natural[i]
            if natural > available + 1e-6:
                self._warn(
                    LayoutOverflowWarning(
                        f"content needs {natural:g} on {axis} but its box is {available:g}",
                        node_path=record.path,
                    )
                )
            size = natural
            if expand[i] > 0 and available > natural:
                size = natural + (available - natural) * expand[i]
            spans.append((_anchored_start(cell.start(axis), available, size, anchor[i]), size))
        record.outer = Box.from_spans(spans[0], spans[1])

        ml, mt, mr, mb = style.get("margin", (0.0, 0.0, 0.0, 0.0))
        record.border_box = record.outer.shrink(ml, mt, mr, mb)
        border = style.get("border-width", 0.0)
        pl, pt, pr, pb = style.get("pad", (0.0, 0.0, 0.0, 0.0))
        padded = record.border_box.shrink(border, border, border, border).shrink(pl, pt, pr, pb)

        if node.kind is NodeKind.GROUP:
            self._place_grid(record, padded, anchor, expand)
            record.bounds = record.content
        else:
            cx, cy = padded.center
            width, height = record.content_size
            record.content = Box(cx - width / 2, cy - height / 2, width, height)
            drawn_w, drawn_h = _drawn_size(
                record.content_size, style.get("scale", 1.0), style.get("rotate", 0.0)
            )
            record.bounds = Box(cx - drawn_w / 2, cy - drawn_h / 2, drawn_w, drawn_h)
        record.advance(LayoutState.POSITIONED)

    def _place_grid(
        self,
        record: LayoutRecord,
        padded: Box,
        anchor: Tuple[float, float],
        expand: Tuple[float, float],
    ) -> None:
        origins = []
        spans = []
        for i, axis in enumerate(AXES):
            grid = record.axes[axis]
            low, high = record.extents[axis]
            slack = padded.size(axis) - (max(grid.total, high) - low)
            start = padded.start(axis)
            if slack > EPSILON and expand[i] > 0 and grid.total_weight > 0:
                grid.grow(slack)
            elif slack > EPSILON:
                if expand[i] > 0:
                    self._warn(
                        UnusedExpansionWarning(
                            f"layout expands on {axis} but has no expandable interval",
                            node_path=record.path,
                        )
                    )
                start = _anchored_start(
                    start, padded.size(axis), max(grid.total, high) - low, anchor[i]
                )
            origin = start - low
            record.lines[axis] = tuple(grid.positions(origin))
            origins.append(origin)
            spans.append((start, max(grid.total, high) - low))
        record.content = Box.from_spans(spans[0], spans[1])

        lines_x = record.lines["x"]
        lines_y = record.lines["y"]
        for child in record.children:
            place = child.style.get("place")
            if place is not None:
                width, height = child.natural
                cell = Box(
                    origins[0] + place[0] - width / 2,
                    origins[1] + place[1] - height / 2,
                    width,
                    height,
                )
            else:
                (x1, x2), (y1, y2) = child.node.placement.x, child.node.placement.y
                cell = Box(
                    lines_x[x1 - 1],
                    lines_y[y1 - 1],
                    lines_x[x2 - 1] - lines_x[x1 - 1],
                    lines_y[y2 - 1] - lines_y[y1 - 1],
                )
            self._assign(child, cell)

    def _warn(self, warning: LayoutWarning) -> None:
        logger.warning("%s", warning)
        self.warnings.append(warning)

    def _resolve(
        self, record: LayoutRecord, offset: Tuple[float, float] = (0.0, 0.0)
    ) -> ResolvedBox:
        """Freeze a positioned record; ``translate`` shifts the node and its subtree."""
        if record.state is not LayoutState.POSITIONED:
            raise LayoutStateError("node was never positioned", node_path=record.path)
        style = record.style
        assert record.outer and record.border_box and record.content and record.bounds
        tx, ty = style.get("translate", (0.0, 0.0))
        dx, dy = offset[0] + tx, offset[1] + ty
        content = record.content.moved(dx, dy)
        vertices: Tuple[Tuple[float, float], ...] = ()
        if record.node.kind is NodeKind.PATH:
            coords = style["coords"]
            x0, y0, _, _ = _path_bounds(coords)
            stroke = style.get("stroke-width", 0.0) if style.get("stroke") else 0.0
            ox = content.x + stroke / 2 - x0
            oy = content.y + stroke / 2 - y0
            vertices = tuple((x + ox, y + oy) for x, y in coords)
        is_group = record.node.kind is NodeKind.GROUP
        shifts = {"x": dx, "y": dy}
        return ResolvedBox(
            node=record.node,
            path=record.path,
            outer=record.outer.moved(dx, dy),
            border_box=record.border_box.moved(dx, dy),
            content=content,
            rotation=0.0 if is_group else style.get("rotate", 0.0),
            style=dict(style),
            children=tuple(self._resolve(child, (dx, dy)) for child in record.children),
            grid_lines={
                axis: tuple(pos + shifts[axis] for pos in lines)
                for axis, lines in record.lines.items()
            },
            path_vertices=vertices,
            bounds=record.bounds.moved(dx, dy),
            scale=1.0 if is_group else style.get("scale", 1.0),
        )


__all__ = [
    "AXES",
    "Box",
    "GridAxis",
    "Interval",
    "LayoutEngine",
    "LayoutRecord",
    "LayoutState",
    "ResolvedBox",
]
