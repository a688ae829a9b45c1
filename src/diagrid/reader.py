"""XML front end: diagram source text -> raw node tree."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import List, Optional

from .errors import SourceError
from .model import PLACEMENT_KEYS, Document, RawNode, build_document


def parse_source(source: str) -> RawNode:
    try:
        root = ET.fromstring(source)
    except ET.ParseError as exc:
        line, column = getattr(exc, "position", (None, None))
        location = (
            f" at line {line}, column {column}" if line is not None and column is not None else ""
        )
        raise SourceError(
            "Failed to parse diagram input. Ensure XML entities like &, <, > are escaped "
            f"(use &amp;, &lt;, &gt;){location}",
            line=line,
            column=column,
        ) from exc
    return _raw_node(root)


def load_document(source: str) -> Document:
    return build_document(parse_source(source))


def _raw_node(elem: ET.Element) -> RawNode:
    tag = _local_name(elem.tag)
    raw = RawNode(tag=tag)
    for key, value in elem.attrib.items():
        local = _local_name(key)
        if local == "id":
            raw.id = value.strip() or None
        elif local == "class":
            raw.classes = value.split()
        elif local in PLACEMENT_KEYS:
            raw.placement[local] = value
        else:
            raw.attributes[local] = value
    raw.text_lines = _text_lines(elem.text)
    for child in elem:
        raw.children.append(_raw_node(child))
    return raw


def _text_lines(text: Optional[str]) -> List[str]:
    if not text or not text.strip():
        return []
    lines = [line.strip() for line in text.strip().splitlines()]
    return [line for line in lines if line]


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


__all__ = ["parse_source", "load_document"]
