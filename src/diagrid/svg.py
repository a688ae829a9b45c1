"""SVG serializer for compiled primitives."""
from __future__ import annotations

import math
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import UnsupportedPrimitiveError
from .geometry import Primitive
from .layout import Box
from .text import TEXT_MEASURER, TextMeasurer

if TYPE_CHECKING:  # pragma: no cover
    from .compiler import CompileResult

SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)


def _q(tag: str) -> str:
    return f"{{{SVG_NS}}}{tag}"


def render_svg(
    result: "CompileResult",
    *,
    measurer: TextMeasurer = TEXT_MEASURER,
    default_font_family: Optional[str] = None,
) -> str:
    """Serialize a compile result as an indented SVG document."""
    width = _fmt(result.width)
    height = _fmt(result.height)
    svg_root = ET.Element(
        _q("svg"),
        {"width": width, "height": height, "viewBox": f"0 0 {width} {height}"},
    )
    for primitive in result.primitives:
        for elem in _render_primitive(primitive, measurer, default_font_family):
            svg_root.append(elem)
    return _pretty_xml(svg_root)


def _render_primitive(
    primitive: Primitive, measurer: TextMeasurer, default_font_family: Optional[str]
) -> List[ET.Element]:
    attrs = primitive.attributes
    elements: List[ET.Element] = []
    decoration = _decoration_rect(primitive.border_box, attrs)
    if decoration is not None:
        elements.append(decoration)

    kind = primitive.kind
    if kind == "group":
        if primitive.id and decoration is not None:
            decoration.set("id", primitive.id)
        return elements

    if kind in ("rect", "circle", "polygon"):
        elem = _render_shape(kind, primitive.box, attrs)
    elif kind == "text":
        elem = _render_text(primitive, measurer, default_font_family)
    elif kind == "path":
        elem = _render_path(primitive)
    else:
        raise UnsupportedPrimitiveError(f"no SVG mapping for primitive {kind!r}")

    if primitive.id:
        elem.set("id", primitive.id)
    transform = _transform(primitive)
    if transform:
        elem.set("transform", transform)
    elements.append(elem)
    return elements


def _transform(primitive: Primitive) -> str:
    cx, cy = primitive.box.center
    if primitive.scale == 1.0:
        if not primitive.rotation:
            return ""
        return f"rotate({_fmt(primitive.rotation)} {_fmt(cx)} {_fmt(cy)})"
    parts = [f"translate({_fmt(cx)} {_fmt(cy)})"]
    if primitive.rotation:
        parts.append(f"rotate({_fmt(primitive.rotation)})")
    parts.append(f"scale({_fmt(primitive.scale)})")
    parts.append(f"translate({_fmt(-cx)} {_fmt(-cy)})")
    return " ".join(parts)


def _decoration_rect(border_box: Box, attrs: Mapping[str, Any]) -> Optional[ET.Element]:
    bg = attrs.get("bg")
    border_color = attrs.get("border-color")
    border_width = attrs.get("border-width", 0.0)
    stroked = border_color is not None and border_width > 0
    if bg is None and not stroked:
        return None
    inset = border_width / 2 if stroked else 0.0
    box = border_box.shrink(inset, inset, inset, inset)
    rect_attrs = {
        "x": _fmt(box.x),
        "y": _fmt(box.y),
        "width": _fmt(box.width),
        "height": _fmt(box.height),
        "fill": _color(bg),
    }
    if attrs.get("border-round"):
        rect_attrs["rx"] = _fmt(attrs["border-round"])
    if stroked:
        rect_attrs["stroke"] = _color(border_color)
        rect_attrs["stroke-width"] = _fmt(border_width)
    return ET.Element(_q("rect"), rect_attrs)


def _paint(attrs: Mapping[str, Any]) -> Dict[str, str]:
    paint = {"fill": _color(attrs.get("fill")), "stroke": _color(attrs.get("stroke"))}
    if attrs.get("stroke") is not None:
        paint["stroke-width"] = _fmt(attrs.get("stroke-width", 0.0))
    return paint


def _render_shape(kind: str, box: Box, attrs: Mapping[str, Any]) -> ET.Element:
    stroke = attrs.get("stroke-width", 0.0) if attrs.get("stroke") is not None else 0.0
    inner = box.shrink(stroke / 2, stroke / 2, stroke / 2, stroke / 2)
    paint = _paint(attrs)
    if kind == "rect":
        rect_attrs = {
            "x": _fmt(inner.x),
            "y": _fmt(inner.y),
            "width": _fmt(inner.width),
            "height": _fmt(inner.height),
        }
        if attrs.get("round"):
            rect_attrs["rx"] = _fmt(attrs["round"])
        return ET.Element(_q("rect"), {**rect_attrs, **paint})
    cx, cy = inner.center
    rx, ry = inner.width / 2, inner.height / 2
    if kind == "circle":
        return ET.Element(
            _q("ellipse"),
            {"cx": _fmt(cx), "cy": _fmt(cy), "rx": _fmt(rx), "ry": _fmt(ry), **paint},
        )
    corners = polygon_points(
        cx, cy, rx, ry, attrs.get("vertices", 4), stellate=attrs.get("stellate", 0.0)
    )
    if attrs.get("round"):
        return ET.Element(_q("path"), {"d": rounded_polygon_path(corners, attrs["round"]), **paint})
    points = " ".join(f"{_fmt(x)},{_fmt(y)}" for x, y in corners)
    return ET.Element(_q("polygon"), {"points": points, **paint})


def polygon_points(
    cx: float,
    cy: float,
    rx: float,
    ry: float,
    vertices: int,
    *,
    stellate: float = 0.0,
) -> List[Tuple[float, float]]:
    """Regular polygon inscribed in the ellipse, flat-bottomed for even counts.

    A non-zero ``stellate`` makes a star: an inner point is added halfway
    between each pair of corners at radius ``stellate`` (vertical units,
    stretched like the outer corners).
    """
    offset = math.pi / vertices if vertices % 2 == 0 else 0.0
    inner_x = stellate * rx / ry if ry else stellate
    points = []
    for k in range(vertices):
        theta = -math.pi / 2 + offset + 2 * math.pi * k / vertices
        points.append((cx + rx * math.cos(theta), cy + ry * math.sin(theta)))
        if stellate:
            theta += math.pi / vertices
            points.append((cx + inner_x * math.cos(theta), cy + stellate * math.sin(theta)))
    return points


def rounded_polygon_path(corners: Sequence[Tuple[float, float]], radius: float) -> str:
    """Closed path through ``corners`` with each corner cut back by ``radius``
    along both edges and bridged by a quadratic curve controlled by the corner."""
    count = len(corners)
    cuts = []
    for index, (x, y) in enumerate(corners):
        before = _toward((x, y), corners[index - 1], radius)
        after = _toward((x, y), corners[(index + 1) % count], radius)
        cuts.append((before, (x, y), after))
    d = f"M {_fmt(cuts[0][2][0])} {_fmt(cuts[0][2][1])}"
    for before, corner, after in cuts[1:] + cuts[:1]:
        d += f" L {_fmt(before[0])} {_fmt(before[1])}"
        d += f" Q {_fmt(corner[0])} {_fmt(corner[1])} {_fmt(after[0])} {_fmt(after[1])}"
    return d + " Z"


def _toward(
    start: Tuple[float, float], end: Tuple[float, float], distance: float
) -> Tuple[float, float]:
    # never past the edge midpoint, so neighbouring corners do not overlap
    length = math.hypot(end[0] - start[0], end[1] - start[1])
    if length == 0:
        return start
    step = min(distance, length / 2) / length
    return start[0] + (end[0] - start[0]) * step, start[1] + (end[1] - start[1]) * step


def _render_text(
    primitive: Primitive, measurer: TextMeasurer, default_font_family: Optional[str]
) -> ET.Element:
    attrs = primitive.attributes
    size = attrs.get("font-size", 10.0)
    family = attrs.get("font-family") or default_font_family
    ascent, _descent, line_height = measurer.metrics(size, family)
    text_attrs = {
        "x": _fmt(primitive.box.x),
        "y": _fmt(primitive.box.y + ascent),
        "font-size": _fmt(size),
        "fill": _color(attrs.get("fill")),
    }
    if family:
        text_attrs["font-family"] = family
    if attrs.get("font-weight"):
        text_attrs["font-weight"] = attrs["font-weight"]
    if attrs.get("font-style"):
        text_attrs["font-style"] = attrs["font-style"]
    elem = ET.Element(_q("text"), text_attrs)
    for index, line in enumerate(primitive.text_lines):
        tspan = ET.SubElement(
            elem,
            _q("tspan"),
            {"x": text_attrs["x"], "dy": "0" if index == 0 else _fmt(line_height)},
        )
        tspan.text = line
    return elem


def _render_path(primitive: Primitive) -> ET.Element:
    vertices = primitive.path_vertices
    d = "M " + " L ".join(f"{_fmt(x)} {_fmt(y)}" for x, y in vertices)
    if primitive.attributes.get("closed"):
        d += " Z"
    return ET.Element(_q("path"), {"d": d, **_paint(primitive.attributes)})


def _color(value: Optional[Tuple[int, int, int]]) -> str:
    if value is None:
        return "none"
    return "#{:02x}{:02x}{:02x}".format(*value)


def _pretty_xml(element: ET.Element) -> str:
    ET.indent(element, space="  ")
    return ET.tostring(element, encoding="unicode")


def _fmt(value: float) -> str:
    if math.isclose(value, round(value), abs_tol=1e-9):
        return str(int(round(value)))
    return f"{value:.3f}".rstrip("0").rstrip(".")


__all__ = ["render_svg", "polygon_points", "rounded_polygon_path", "SVG_NS"]
