"""Public API for diagrid."""
from .compiler import CompileOptions, CompileResult, compile_document, compile_source, diagrid
from .errors import (
    DiagridError,
    DuplicateTemplateError,
    LayoutOverflowWarning,
    LayoutStateError,
    LayoutWarning,
    OverconstrainedLayoutError,
    SourceError,
    StructuralError,
    TemplateCycleError,
    UnresolvedStyleError,
    UnresolvedTemplateError,
    UnsupportedPrimitiveError,
    UnusedExpansionWarning,
)
from .geometry import Primitive
from .reader import load_document, parse_source
from .svg import render_svg

__all__ = [
    "diagrid",
    "compile_source",
    "compile_document",
    "CompileOptions",
    "CompileResult",
    "Primitive",
    "parse_source",
    "load_document",
    "render_svg",
    "DiagridError",
    "SourceError",
    "StructuralError",
    "DuplicateTemplateError",
    "UnresolvedTemplateError",
    "TemplateCycleError",
    "UnresolvedStyleError",
    "OverconstrainedLayoutError",
    "UnsupportedPrimitiveError",
    "LayoutStateError",
    "LayoutWarning",
    "LayoutOverflowWarning",
    "UnusedExpansionWarning",
]
