"""Compilation pipeline: document -> expanded, styled, laid-out primitives."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .errors import LayoutWarning
from .geometry import Primitive, emit_primitives
from .layout import LayoutEngine
from .model import Document, check_unique_ids
from .reader import load_document
from .styles import StyleSheet
from .svg import render_svg
from .templates import DEFAULT_MAX_DEPTH, TemplateRegistry
from .text import TEXT_MEASURER, TextMeasurer

logger = logging.getLogger(__name__)


@dataclass
class CompileOptions:
    """Knobs that apply to a whole compilation."""

    default_anchor: Tuple[float, float] = (0.0, 0.0)
    max_template_depth: int = DEFAULT_MAX_DEPTH
    default_font_family: Optional[str] = None
    default_font_size: float = 10.0
    # Box handed to the root layout; its natural size when unset.
    size: Optional[Tuple[float, float]] = None
    measurer: TextMeasurer = field(default=TEXT_MEASURER, repr=False)


@dataclass
class CompileResult:
    primitives: List[Primitive]
    warnings: List[LayoutWarning]
    width: float
    height: float


def shared_registry(
    sources: Sequence[str], *, max_depth: int = DEFAULT_MAX_DEPTH
) -> Optional[TemplateRegistry]:
    """Build a registry chain from template files, later files shadowing earlier ones."""
    registry: Optional[TemplateRegistry] = None
    for source in sources:
        document = load_document(source)
        registry = TemplateRegistry(registry, max_depth=max_depth)
        registry.define_all(document.templates)
    return registry


def compile_document(
    document: Document,
    options: Optional[CompileOptions] = None,
    shared_registry: Optional[TemplateRegistry] = None,
) -> CompileResult:
    options = options or CompileOptions()
    registry = TemplateRegistry(shared_registry, max_depth=options.max_template_depth)
    registry.define_all(document.templates)
    tree = registry.expand(document.root)
    check_unique_ids(tree)
    logger.debug("expanded templates: %s", ", ".join(registry.names()) or "none")

    sheet = StyleSheet(
        document.styles,
        document.rules,
        defaults={"text": {"font-size": options.default_font_size}},
    )
    styled = sheet.apply(tree)

    engine = LayoutEngine(
        measurer=options.measurer,
        default_font_family=options.default_font_family,
        default_anchor=options.default_anchor,
    )
    resolved = engine.layout(styled, options.size)
    primitives = emit_primitives(resolved)
    width, height = options.size or (resolved.outer.width, resolved.outer.height)
    logger.debug(
        "compiled %d primitives (%g x %g), %d warnings",
        len(primitives),
        width,
        height,
        len(engine.warnings),
    )
    return CompileResult(
        primitives=primitives,
        warnings=list(engine.warnings),
        width=width,
        height=height,
    )


def compile_source(
    source: str,
    shared_template_sources: Optional[Sequence[str]] = None,
    options: Optional[CompileOptions] = None,
) -> CompileResult:
    options = options or CompileOptions()
    parent = shared_registry(
        shared_template_sources or (), max_depth=options.max_template_depth
    )
    return compile_document(load_document(source), options, parent)


def diagrid(
    source: str,
    shared_template_sources: Optional[Sequence[str]] = None,
    options: Optional[CompileOptions] = None,
) -> str:
    """Convert diagram markup to SVG."""
    options = options or CompileOptions()
    result = compile_source(source, shared_template_sources, options)
    return render_svg(
        result, measurer=options.measurer, default_font_family=options.default_font_family
    )


__all__ = [
    "CompileOptions",
    "CompileResult",
    "compile_document",
    "compile_source",
    "diagrid",
    "shared_registry",
]
