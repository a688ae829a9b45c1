"""Error and warning taxonomy shared by every compilation stage."""
from __future__ import annotations

from typing import Optional, Tuple


class DiagridError(ValueError):
    """Fatal compilation error with a stable code for CLI mapping."""

    code = "E_DIAGRID"

    def __init__(self, message: str, *, node_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.node_path = node_path

    def __str__(self) -> str:
        if self.node_path:
            return f"{self.message} (at {self.node_path})"
        return self.message


class SourceError(DiagridError):
    """Raised when diagram source text cannot be parsed."""

    code = "E_PARSE_XML"

    def __init__(
        self, message: str, *, line: Optional[int] = None, column: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.line = line
        self.column = column


class StructuralError(DiagridError):
    code = "E_STRUCTURE"


class DuplicateTemplateError(DiagridError):
    code = "E_TEMPLATE_DUPLICATE"


class UnresolvedTemplateError(DiagridError):
    code = "E_TEMPLATE_UNRESOLVED"


class TemplateCycleError(DiagridError):
    code = "E_TEMPLATE_CYCLE"


class UnresolvedStyleError(DiagridError):
    code = "E_STYLE_UNRESOLVED"


class OverconstrainedLayoutError(DiagridError):
    """A spanning child cannot fit because every spanned interval is fixed."""

    code = "E_LAYOUT_OVERCONSTRAINED"

    def __init__(
        self,
        message: str,
        *,
        axis: str,
        interval_range: Tuple[int, int],
        node_path: Optional[str] = None,
    ) -> None:
        super().__init__(message, node_path=node_path)
        self.axis = axis
        self.interval_range = interval_range


class UnsupportedPrimitiveError(DiagridError):
    code = "E_INTERNAL_PRIMITIVE"


class LayoutStateError(DiagridError):
    code = "E_INTERNAL_STATE"


class LayoutWarning(UserWarning):
    """Non-fatal layout condition collected on the compile result."""

    code = "W_LAYOUT"

    def __init__(self, message: str, *, node_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.node_path = node_path

    def __str__(self) -> str:
        if self.node_path:
            return f"{self.message} (at {self.node_path})"
        return self.message


class LayoutOverflowWarning(LayoutWarning):
    code = "W_OVERFLOW"


class UnusedExpansionWarning(LayoutWarning):
    code = "W_EXPAND_UNUSED"


__all__ = [
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
