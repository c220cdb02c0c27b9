"""Element and traceability services."""

from reqgraph.service.elements import ABSENT, BulkFailure, BulkResult, ElementService
from reqgraph.service.traceability import RELATION_TYPES, TraceabilityService

__all__ = [
    "ABSENT",
    "RELATION_TYPES",
    "BulkFailure",
    "BulkResult",
    "ElementService",
    "TraceabilityService",
]
