"""Core domain models for reqgraph."""

from reqgraph.core.models import Element, PagedResult, ProjectGraph, ValidationResult, ValidationViolation

__all__ = ["Element", "PagedResult", "ProjectGraph", "ValidationResult", "ValidationViolation"]
