"""reqgraph - schema-driven requirements element store."""

try:
    from reqgraph._version import __version__
except ImportError:
    __version__ = "0.0.0"

from reqgraph.core.models import Element, PagedResult, ProjectGraph, ValidationResult, ValidationViolation

__all__ = ["Element", "PagedResult", "ProjectGraph", "ValidationResult", "ValidationViolation"]
