"""Persistence layer for reqgraph projects."""

from reqgraph.storage.documents import read_project_document, write_project_document
from reqgraph.storage.store import ElementStore

__all__ = [
    "ElementStore",
    "read_project_document",
    "write_project_document",
]
