"""Project document reading and writing.

A project is stored as one YAML document holding an ordered list of
top-level entries. Each entry carries the element type in ``eClass``
and a flat property bag in ``data``; contained elements are nested
under their containment feature name inside the owner's entry.
"""

import os
import tempfile
import warnings
from pathlib import Path
from typing import IO, Any

import yaml

from reqgraph.core.errors import StorageError
from reqgraph.core.models import Element, ProjectGraph

DOCUMENT_VERSION = 1

TYPE_KEY = "eClass"
DATA_KEY = "data"
ID_KEY = "elementId"


class _BlockScalarDumper(yaml.SafeDumper):
    """YAML dumper that uses literal block scalar style for multiline strings."""


def _str_representer(dumper: _BlockScalarDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_BlockScalarDumper.add_representer(str, _str_representer)


def dump_yaml(data: dict[str, Any], stream: IO[str], **kwargs: Any) -> None:
    """Dump YAML using block scalar style for multiline strings.

    Args:
        data: The dictionary to serialize as YAML.
        stream: A writable file-like object for the YAML output.
        **kwargs: Additional keyword arguments passed to ``yaml.dump``.
    """
    kwargs.setdefault("default_flow_style", False)
    kwargs.setdefault("sort_keys", False)
    kwargs.setdefault("allow_unicode", True)
    yaml.dump(data, stream, Dumper=_BlockScalarDumper, **kwargs)


def atomic_write_yaml(data: dict[str, Any], path: Path) -> None:
    """Write *data* to *path* so that readers never see a partial file.

    The document is written to a temporary file in the same directory
    and then moved over the target.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(suffix=".yml", prefix=".tmp_", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            dump_yaml(data, f)
        Path(tmp_path).replace(path)  # Atomic on POSIX
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def element_to_entry(element: Element) -> dict[str, Any]:
    """Convert an element and its subtree to a document entry."""
    data: dict[str, Any] = {ID_KEY: element.id}
    data.update(element.properties)
    entry: dict[str, Any] = {TYPE_KEY: element.type, DATA_KEY: data}
    for feature, contained in element.children.items():
        if contained:
            entry[feature] = [element_to_entry(child) for child in contained]
    return entry


def entry_to_element(
    entry: dict[str, Any],
    parent: Element | None = None,
    feature: str | None = None,
    source: str = "<document>",
) -> Element:
    """Convert a document entry back into an element tree.

    Raises:
        StorageError: If the entry has no type or no element id.
    """
    element_type = entry.get(TYPE_KEY)
    if not element_type:
        raise StorageError(f"Entry without '{TYPE_KEY}' in {source}: {repr(entry)[:200]}")
    # "sysml:Foo" style tags are accepted and normalized.
    element_type = str(element_type).split(":", 1)[-1]

    data = entry.get(DATA_KEY) or {}
    if not isinstance(data, dict):
        raise StorageError(f"Entry '{DATA_KEY}' must be a mapping in {source}: {repr(entry)[:200]}")
    properties = dict(data)
    element_id = properties.pop(ID_KEY, None)
    if element_id is None or str(element_id).strip() == "":
        raise StorageError(f"Entry without '{ID_KEY}' in {source}: {repr(entry)[:200]}")

    element = Element(
        id=str(element_id),
        type=element_type,
        properties=properties,
        parent_id=parent.id if parent is not None else None,
        containing_feature=feature,
    )

    for key, value in entry.items():
        if key in (TYPE_KEY, DATA_KEY):
            continue
        if not isinstance(value, list):
            warnings.warn(
                f"Element '{element.id}' in {source} has non-list feature '{key}', ignoring it",
                stacklevel=2,
            )
            continue
        contained = element.children.setdefault(key, [])
        for child_entry in value:
            if not isinstance(child_entry, dict):
                warnings.warn(
                    f"Skipping non-mapping entry under '{element.id}.{key}' in {source}",
                    stacklevel=2,
                )
                continue
            contained.append(entry_to_element(child_entry, element, key, source))
    return element


def graph_to_document(graph: ProjectGraph) -> dict[str, Any]:
    """Build the persisted document for a project graph."""
    return {
        "version": DOCUMENT_VERSION,
        "project": graph.project_id,
        "retired": sorted(graph.retired_ids),
        "elements": [element_to_entry(root) for root in graph.roots],
    }


def document_to_graph(data: Any, project_id: str, source: str = "<document>") -> ProjectGraph:
    """Build a project graph from a parsed document.

    Raises:
        StorageError: If the document structure is invalid or an id is
            used twice.
    """
    if data is None:
        return ProjectGraph(project_id=project_id)
    if not isinstance(data, dict):
        raise StorageError(f"Expected a mapping in {source}, got {type(data).__name__}")

    raw_elements = data.get("elements") or []
    if not isinstance(raw_elements, list):
        raise StorageError(f"'elements' must be a list in {source}")

    graph = ProjectGraph(project_id=project_id)
    for entry in raw_elements:
        if not isinstance(entry, dict):
            warnings.warn(f"Skipping non-mapping element entry in {source}: {entry!r}", stacklevel=2)
            continue
        graph.roots.append(entry_to_element(entry, source=source))

    graph.retired_ids = {str(r) for r in data.get("retired") or []}

    seen: set[str] = set()
    for element in graph.iter_elements():
        if element.id in seen:
            raise StorageError(f"Duplicate element id '{element.id}' in {source}")
        seen.add(element.id)
    return graph


def read_project_document(path: Path, project_id: str) -> ProjectGraph:
    """Read a project document from disk.

    Args:
        path: Path to the ``model.yml`` document.
        project_id: The project the document belongs to.

    Returns:
        The project graph described by the document.

    Raises:
        StorageError: If the file cannot be read or is not a valid
            project document.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise StorageError(f"Failed to read file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise StorageError(f"Invalid YAML in file {path}: {e}") from e
    return document_to_graph(data, project_id, source=str(path))


def write_project_document(graph: ProjectGraph, path: Path) -> None:
    """Atomically write a project graph to *path*."""
    atomic_write_yaml(graph_to_document(graph), path)
