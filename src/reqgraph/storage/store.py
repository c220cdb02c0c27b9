"""File-backed element store with a per-project cache."""

import logging
import re
import shutil
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from reqgraph.core.errors import InvalidArgumentError, NotFoundError
from reqgraph.core.models import ProjectGraph
from reqgraph.storage.documents import atomic_write_yaml, read_project_document, write_project_document

logger = logging.getLogger("reqgraph")

MODEL_FILE = "model.yml"
METADATA_FILE = "metadata.yml"

_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_project_id(project_id: str) -> str:
    """Return *project_id* if it is safe to use as a directory name.

    Raises:
        InvalidArgumentError: If the id is empty, contains a path
            separator, or is ``.``/``..``.
    """
    if not isinstance(project_id, str) or not _PROJECT_ID_RE.match(project_id) or project_id in (".", ".."):
        raise InvalidArgumentError(f"Invalid project id: {project_id!r}")
    return project_id


class ElementStore:
    """Per-project persistence of element graphs.

    Each project lives in ``<data_root>/projects/<project_id>/model.yml``.
    Loaded graphs are cached in memory; every save writes the document
    through to disk before returning, so the cache is never ahead of the
    file.

    The store also owns one re-entrant lock per project. Callers that
    read-modify-write a graph hold :meth:`lock` for the whole operation.
    """

    def __init__(self, data_root: Path | str):
        self.data_root = Path(data_root)
        self._cache: dict[str, ProjectGraph] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    @property
    def projects_dir(self) -> Path:
        return self.data_root / "projects"

    def project_path(self, project_id: str) -> Path:
        """Return the path of a project's model document."""
        return self.projects_dir / validate_project_id(project_id) / MODEL_FILE

    @contextmanager
    def lock(self, project_id: str) -> Iterator[None]:
        """Hold the lock of one project.

        Projects do not share locks, so work on different projects
        never waits on each other.
        """
        with self._registry_lock:
            project_lock = self._locks.setdefault(project_id, threading.RLock())
        with project_lock:
            yield

    def exists(self, project_id: str) -> bool:
        return project_id in self._cache or self.project_path(project_id).is_file()

    def load_project(self, project_id: str) -> ProjectGraph:
        """Return the graph of a project, loading it on first access.

        A project without a document is created empty and persisted
        before it is returned.

        The returned graph is the cached instance; hold :meth:`lock`
        while reading or modifying it.

        Raises:
            InvalidArgumentError: If the project id is not valid.
            StorageError: If the document exists but cannot be read.
        """
        path = self.project_path(project_id)
        with self.lock(project_id):
            cached = self._cache.get(project_id)
            if cached is not None:
                return cached

            if path.is_file():
                graph = read_project_document(path, project_id)
                logger.debug("Loaded project %s with %d elements", project_id, len(graph))
            else:
                graph = ProjectGraph(project_id=project_id)
                self._write(project_id, graph)
                logger.info("Created project %s at %s", project_id, path)

            self._cache[project_id] = graph
            return graph

    def save_project(self, project_id: str, graph: ProjectGraph) -> None:
        """Persist a project graph and make it the cached copy.

        The write is atomic: a crash mid-write leaves the previous
        document intact.
        """
        validate_project_id(project_id)
        with self.lock(project_id):
            self._write(project_id, graph)
            self._cache[project_id] = graph
        logger.debug("Saved project %s with %d elements", project_id, len(graph))

    def list_projects(self) -> list[str]:
        """Return the ids of all projects with a model document."""
        if not self.projects_dir.is_dir():
            return []
        return sorted(
            path.name for path in self.projects_dir.iterdir() if path.is_dir() and (path / MODEL_FILE).is_file()
        )

    def invalidate_cache(self, project_id: str | None = None) -> None:
        """Drop the cached graph of one project, or of all projects."""
        with self._registry_lock:
            if project_id is None:
                self._cache.clear()
            else:
                self._cache.pop(project_id, None)

    def delete_project(self, project_id: str) -> None:
        """Remove a project and its files.

        Raises:
            NotFoundError: If the project does not exist.
        """
        project_dir = self.project_path(project_id).parent
        with self.lock(project_id):
            if not project_dir.is_dir():
                raise NotFoundError(f"Project not found: {project_id}")
            shutil.rmtree(project_dir)
            self._cache.pop(project_id, None)
        logger.info("Deleted project %s", project_id)

    def _write(self, project_id: str, graph: ProjectGraph) -> None:
        path = self.project_path(project_id)
        write_project_document(graph, path)
        metadata = {
            "projectId": project_id,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        atomic_write_yaml(metadata, path.parent / METADATA_FILE)
