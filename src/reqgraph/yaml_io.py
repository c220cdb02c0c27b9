"""YAML import/export for project element graphs."""

from __future__ import annotations

import logging
import uuid
import warnings
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from reqgraph.core.errors import InvalidArgumentError, StorageError
from reqgraph.storage.documents import DATA_KEY, TYPE_KEY, atomic_write_yaml, element_to_entry

if TYPE_CHECKING:
    from reqgraph.service.elements import BulkResult, ElementService

logger = logging.getLogger("reqgraph")

RECOGNIZED_KEYS = {"project", "version", "elements"}

_TYPE_KEYS = (TYPE_KEY, "type")
_ID_KEYS = ("elementId", "id")


def export_project(service: ElementService, project_id: str, output_path: Path) -> int:
    """Export a whole project to a YAML file.

    Entries have the persisted document shape, with contained elements
    nested under their owner's containment feature.

    Args:
        service: The element service to read from.
        project_id: The project to export.
        output_path: Path to write YAML file.

    Returns:
        The number of elements written.
    """
    snapshot = service.snapshot(project_id)
    data: dict[str, Any] = {
        "project": project_id,
        "elements": [element_to_entry(root) for root in snapshot.roots],
    }
    atomic_write_yaml(data, output_path)
    logger.info("Exported %d elements of project %s to %s", len(snapshot), project_id, output_path)
    return len(snapshot)


def load_import_file(path: Path, echo: Callable[[str], object] | None = None) -> dict[str, Any]:
    """Load and validate a YAML import file.

    Args:
        path: Path to YAML file.
        echo: Optional callable for warning output (e.g., print or click.echo).

    Returns:
        Dict with an ``elements`` list.

    Raises:
        StorageError: If the file cannot be read.
        InvalidArgumentError: If the file is not a valid import document.
    """
    if echo is None:
        echo = print

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise StorageError(f"Failed to read file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise InvalidArgumentError(f"Invalid YAML in file {path}: {e}") from e

    if data is None:
        warnings.warn(f"File {path} is empty or contains only null", stacklevel=2)
        data = {}
    elif not isinstance(data, dict):
        raise InvalidArgumentError(f"Expected dict in {path}, got {type(data).__name__}")

    unrecognized = set(data.keys()) - RECOGNIZED_KEYS
    if unrecognized:
        echo(f"Warning: unrecognized top-level keys: {', '.join(sorted(unrecognized))}")

    elements = data.setdefault("elements", [])
    if elements is None:
        elements = data["elements"] = []
    if not isinstance(elements, list):
        raise InvalidArgumentError(f"'elements' must be a list in {path}")
    if not elements:
        echo("Warning: YAML file contains no elements")

    for entry in elements:
        if not isinstance(entry, dict):
            raise InvalidArgumentError(f"Element entry must be a mapping: {repr(entry)[:200]}")
        if not any(entry.get(key) for key in _TYPE_KEYS):
            raise InvalidArgumentError(f"Element missing '{TYPE_KEY}' or 'type': {repr(entry)[:200]}")

    return data


def import_project(
    service: ElementService,
    project_id: str,
    path: Path,
    echo: Callable[[str], object] | None = None,
) -> BulkResult:
    """Import elements from a YAML file into a project.

    Nested entries are flattened so that owners are created before the
    elements they contain; a contained entry without an owner reference
    gets one pointing at the enclosing entry. Entries that fail are
    skipped and reported in the result.

    Args:
        service: The element service to create elements with.
        project_id: The project to import into.
        path: Path to YAML file.
        echo: Optional function for output (defaults to print).

    Returns:
        The bulk result with the created count and the failures.
    """
    data = load_import_file(path, echo=echo)
    flat: list[dict[str, Any]] = []
    for entry in data["elements"]:
        _flatten(service, entry, None, None, flat)
    result = service.bulk_create(project_id, flat)
    logger.info("Imported %d of %d elements from %s", result.created, len(flat), path)
    return result


def _flatten(
    service: ElementService,
    entry: dict[str, Any],
    owner_id: str | None,
    feature: str | None,
    out: list[dict[str, Any]],
) -> None:
    type_name = str(next(entry[k] for k in _TYPE_KEYS if entry.get(k))).split(":", 1)[-1]

    nested: dict[str, list] = {}
    if isinstance(entry.get(DATA_KEY), dict) or isinstance(entry.get("properties"), dict):
        body_key = DATA_KEY if isinstance(entry.get(DATA_KEY), dict) else "properties"
        properties = dict(entry[body_key])
        for key, value in entry.items():
            if key in (*_TYPE_KEYS, body_key):
                continue
            if key in _ID_KEYS:
                properties.setdefault(key, value)
            elif isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
                nested[key] = value
            else:
                properties.setdefault(key, value)
    else:
        properties = {k: v for k, v in entry.items() if k not in _TYPE_KEYS}

    if nested and not any(properties.get(k) for k in _ID_KEYS):
        properties["elementId"] = f"{type_name.lower()}-{uuid.uuid4()}"

    if owner_id is not None and feature is not None:
        _set_owner_reference(service, type_name, properties, owner_id, feature)

    out.append({"type": type_name, "properties": properties})

    element_id = next(str(properties[k]) for k in _ID_KEYS if properties.get(k)) if nested else None
    for child_feature, children in nested.items():
        for child in children:
            if not any(child.get(k) for k in _TYPE_KEYS):
                warnings.warn(f"Skipping nested entry without a type under '{child_feature}'", stacklevel=2)
                continue
            _flatten(service, child, element_id, child_feature, out)


def _set_owner_reference(
    service: ElementService, type_name: str, properties: dict[str, Any], owner_id: str, feature: str
) -> None:
    registry = service.registry
    if not registry.is_valid_type(type_name):
        return
    candidates = [attr for attr, containment in registry.owner_references(type_name).items() if containment == feature]
    if any(properties.get(attr) for attr in registry.owner_references(type_name)):
        return
    if not candidates:
        warnings.warn(
            f"{type_name} has no owner reference for containment '{feature}'; importing it at the top level",
            stacklevel=2,
        )
        return
    properties[sorted(candidates)[0]] = owner_id
