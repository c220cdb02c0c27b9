"""Generic create/read/update/delete over elements of any schema type."""

import copy
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from reqgraph.core.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    ReferentialIntegrityError,
    ReqGraphError,
)
from reqgraph.core.models import Element, ProjectGraph
from reqgraph.schema.registry import SchemaRegistry
from reqgraph.storage.store import ElementStore

logger = logging.getLogger("reqgraph")


class _Absent:
    """Marker for a patch value that removes the property."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __deepcopy__(self, memo: dict) -> "_Absent":
        return self


ABSENT = _Absent()

ID_FIELDS = ("elementId", "id")
TYPE_FIELDS = ("eClass", "type")

# Runtime bookkeeping that is never stored in a property bag.
BOOKKEEPING_FIELDS = frozenset({*ID_FIELDS, *TYPE_FIELDS, "parentId", "children", "_version", "_containingFeature"})

READ_ONLY_FIELDS = frozenset({*ID_FIELDS, *TYPE_FIELDS, "createdAt"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class BulkFailure:
    """A single entry that could not be created during a bulk operation."""

    index: int
    element_id: str | None
    error: str


@dataclass
class BulkResult:
    """Outcome of a best-effort bulk create."""

    created: int = 0
    created_ids: list[str] = field(default_factory=list)
    failures: list[BulkFailure] = field(default_factory=list)


class ElementService:
    """Create, read, update and delete elements of any schema type.

    Every operation is keyed by a project id. The registry decides which
    types and owner references are legal; the store holds durable state.
    Mutations work on a private copy of the project graph and replace the
    cached graph only after the new document has been written, so a
    failed operation never leaves partial changes behind.

    Args:
        registry: The loaded schema registry.
        store: The element store holding project graphs.
    """

    def __init__(self, registry: SchemaRegistry, store: ElementStore):
        self.registry = registry
        self.store = store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, project_id: str, element_id: str) -> Element:
        """Return a copy of one element, including its contained subtree.

        Raises:
            NotFoundError: If no element has that id.
        """
        with self.store.lock(project_id):
            graph = self.store.load_project(project_id)
            element = graph.find(element_id)
            if element is None:
                raise NotFoundError(f"Element not found: {element_id}")
            return copy.deepcopy(element)

    def query(self, project_id: str, type_name: str | None = None, *, include_subtypes: bool = False) -> list[Element]:
        """Return all elements of a project as a flat list.

        Top-level and contained elements are both returned, owners before
        the elements they contain.

        Args:
            project_id: The project to read.
            type_name: Only return elements of this type.
            include_subtypes: With *type_name*, also return elements whose
                type inherits from it.

        Raises:
            InvalidArgumentError: If *type_name* is not a schema type.
        """
        if type_name is not None and not self.registry.is_valid_type(type_name):
            raise InvalidArgumentError(f"Unknown type: {type_name}")

        snapshot = self.snapshot(project_id)
        elements = list(snapshot.iter_elements())
        if type_name is None:
            return elements
        if include_subtypes:
            return [
                e for e in elements if self.registry.is_valid_type(e.type) and self.registry.is_subtype(e.type, type_name)
            ]
        return [e for e in elements if e.type == type_name]

    def all_elements(self, project_id: str) -> list[Element]:
        """Return every element of a project; input for validation and queries."""
        return self.query(project_id)

    def snapshot(self, project_id: str) -> ProjectGraph:
        """Return an independent copy of a whole project graph."""
        with self.store.lock(project_id):
            return self.store.load_project(project_id).copy()

    def referrers(self, project_id: str, element_id: str) -> list[Element]:
        """Return elements whose relation or owner properties name *element_id*."""
        result = []
        for element in self.all_elements(project_id):
            if element.id == element_id:
                continue
            if element_id in self._referenced_ids(element):
                result.append(element)
        return result

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, project_id: str, type_name: str, properties: Mapping[str, Any] | None = None) -> Element:
        """Create an element.

        Bookkeeping fields (``elementId``/``id``, ``eClass``/``type``,
        ``parentId``...) are lifted out of *properties*; every other key,
        known to the schema or not, is stored unchanged. An id is
        generated when none is supplied.

        When *properties* sets an owner reference of the type (for
        example ``requirementDefinition`` on a ``RequirementUsage``), the
        new element is nested under that owner's containment feature
        instead of being added at the top level.

        Raises:
            InvalidArgumentError: If the type is unknown or abstract, more
                than one owner reference is set, or the owner cannot
                contain the element.
            ConflictError: If the supplied id is already in use or was
                used by a deleted element.
            NotFoundError: If the named owner does not exist.
        """
        if not self.registry.is_valid_type(type_name):
            raise InvalidArgumentError(f"Unknown type: {type_name}")
        with self.store.lock(project_id):
            working = self.store.load_project(project_id).copy()
            element = self._insert(working, type_name, properties or {})
            self.store.save_project(project_id, working)
            logger.info("Created %s %s in project %s", element.type, element.id, project_id)
            return copy.deepcopy(element)

    def bulk_create(self, project_id: str, entries: Iterable[Mapping[str, Any]]) -> BulkResult:
        """Create many elements, skipping the ones that fail.

        Each entry is either ``{"type": ..., "properties": {...}}`` or a
        flat mapping carrying its type under ``type``/``eClass``. Entries
        are created in order, so owners must come before the elements they
        contain. Failures are recorded and do not stop the run; the
        project is written once at the end.
        """
        result = BulkResult()
        with self.store.lock(project_id):
            working = self.store.load_project(project_id).copy()
            for index, entry in enumerate(entries):
                element_id = None
                try:
                    if not isinstance(entry, Mapping):
                        raise InvalidArgumentError(f"Entry must be a mapping, got {type(entry).__name__}")
                    type_name, properties = _split_entry(entry)
                    element_id = next((str(properties[k]) for k in ID_FIELDS if properties.get(k)), None)
                    if not type_name:
                        raise InvalidArgumentError("Entry has no type")
                    element = self._insert(working, type_name, properties)
                except ReqGraphError as e:
                    result.failures.append(BulkFailure(index=index, element_id=element_id, error=str(e)))
                    logger.debug("Bulk entry %d (%s) skipped: %s", index, element_id, e)
                    continue
                result.created += 1
                result.created_ids.append(element.id)
            if result.created:
                self.store.save_project(project_id, working)
        logger.info(
            "Bulk created %d elements in project %s (%d failed)", result.created, project_id, len(result.failures)
        )
        return result

    def patch(self, project_id: str, element_id: str, changes: Mapping[str, Any]) -> Element:
        """Merge *changes* into an element's properties.

        Only the supplied keys change. A key mapped to :data:`ABSENT` is
        removed. Changing an owner reference moves the element under the
        new owner and drops the element's other owner references;
        setting it to :data:`ABSENT` or ``None`` moves the element to the
        top level. The element stays where it is otherwise.

        Raises:
            NotFoundError: If the element or a new owner does not exist.
            InvalidArgumentError: If a read-only field would change, or
                the new owner cannot contain the element or is the element
                itself or one of its descendants.
        """
        with self.store.lock(project_id):
            working = self.store.load_project(project_id).copy()
            element = working.find(element_id)
            if element is None:
                raise NotFoundError(f"Element not found: {element_id}")

            updates: dict[str, Any] = {}
            for key, value in changes.items():
                if key in READ_ONLY_FIELDS:
                    if _read_only_value(element, key) != value:
                        raise InvalidArgumentError(f"Field '{key}' is read-only")
                    continue
                if key in BOOKKEEPING_FIELDS:
                    continue
                updates[key] = value

            owner_refs = self._owner_references(element.type)
            new_owner = [attr for attr in owner_refs if attr in updates and not _clears(updates[attr])]
            cleared = [attr for attr in owner_refs if attr in updates and _clears(updates[attr])]
            if len(new_owner) > 1:
                raise InvalidArgumentError(f"Only one owner reference may be set, got: {', '.join(new_owner)}")
            if new_owner:
                attr = new_owner[0]
                self._reparent(working, element, updates[attr], owner_refs[attr])
                # Keep a single owner reference.
                for other in owner_refs:
                    if other != attr:
                        updates[other] = ABSENT
            elif any(element.properties.get(attr) == element.parent_id for attr in cleared):
                self._reparent(working, element, ABSENT, owner_refs[cleared[0]])

            for key, value in updates.items():
                if value is ABSENT:
                    element.properties.pop(key, None)
                else:
                    element.properties[key] = copy.deepcopy(value)
            if "updatedAt" not in updates:
                element.properties["updatedAt"] = _now()

            self.store.save_project(project_id, working)
            logger.debug("Patched %s in project %s: %s", element_id, project_id, sorted(updates))
            return copy.deepcopy(element)

    def delete(self, project_id: str, element_id: str, *, cascade: bool = False) -> bool:
        """Remove an element from whichever container holds it.

        Contained children are not removed implicitly: deleting an owner
        that still contains elements is refused unless *cascade* is set,
        in which case the whole subtree goes. Removed ids are retired and
        cannot be used again.

        Raises:
            NotFoundError: If the element does not exist.
            ReferentialIntegrityError: If the element contains other
                elements and *cascade* is false.
        """
        with self.store.lock(project_id):
            working = self.store.load_project(project_id).copy()
            element = working.find(element_id)
            if element is None:
                raise NotFoundError(f"Element not found: {element_id}")

            contained = [child.id for child in element.iter_children()]
            if contained and not cascade:
                raise ReferentialIntegrityError(
                    f"Cannot delete {element_id}: it contains {len(contained)} elements "
                    f"({', '.join(contained)}); delete them first or cascade"
                )

            _detach(working, element)
            removed = [e.id for e in element.iter_subtree()]
            working.retired_ids.update(removed)
            self.store.save_project(project_id, working)
        logger.info("Deleted %s from project %s (%d elements removed)", element_id, project_id, len(removed))
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _insert(self, graph: ProjectGraph, type_name: str, properties: Mapping[str, Any]) -> Element:
        """Validate and add one element to *graph*; *graph* is untouched on failure."""
        if not self.registry.is_valid_type(type_name):
            raise InvalidArgumentError(f"Unknown type: {type_name}")
        if self.registry.is_abstract(type_name):
            raise InvalidArgumentError(f"Type {type_name} is abstract")

        supplied_id = next((properties[k] for k in ID_FIELDS if properties.get(k) not in (None, "")), None)
        props = {k: copy.deepcopy(v) for k, v in properties.items() if k not in BOOKKEEPING_FIELDS and v is not ABSENT}

        by_id = graph.index()
        if supplied_id is not None:
            element_id = str(supplied_id)
            if element_id in by_id:
                raise ConflictError(f"Element id already exists: {element_id}")
            if element_id in graph.retired_ids:
                raise ConflictError(f"Element id was used by a deleted element: {element_id}")
        else:
            element_id = f"{type_name.lower()}-{uuid.uuid4()}"

        owner: Element | None = None
        containment: str | None = None
        owner_refs = self._owner_references(type_name)
        set_refs = [attr for attr in owner_refs if props.get(attr) not in (None, "")]
        if len(set_refs) > 1:
            raise InvalidArgumentError(f"Only one owner reference may be set, got: {', '.join(set_refs)}")
        if set_refs:
            attr = set_refs[0]
            owner_id = str(props[attr])
            owner = by_id.get(owner_id)
            if owner is None:
                raise NotFoundError(f"Owner element not found: {owner_id} (referenced by '{attr}')")
            containment = owner_refs[attr]
            self._check_can_contain(owner, containment)

        now = _now()
        props.setdefault("createdAt", now)
        props.setdefault("updatedAt", now)

        element = Element(
            id=element_id,
            type=type_name,
            properties=props,
            parent_id=owner.id if owner is not None else None,
            containing_feature=containment,
        )
        if owner is not None and containment is not None:
            owner.children.setdefault(containment, []).append(element)
        else:
            graph.roots.append(element)
        return element

    def _reparent(self, graph: ProjectGraph, element: Element, owner_value: Any, containment: str) -> None:
        if owner_value is ABSENT or owner_value is None or owner_value == "":
            if element.parent_id is not None:
                _detach(graph, element)
                element.parent_id = None
                element.containing_feature = None
                graph.roots.append(element)
            return

        owner_id = str(owner_value)
        if owner_id == element.parent_id and element.containing_feature == containment:
            return
        owner = graph.find(owner_id)
        if owner is None:
            raise NotFoundError(f"Owner element not found: {owner_id}")
        if owner.id == element.id or any(a.id == element.id for a in graph.ancestors(owner.id)):
            raise InvalidArgumentError(f"Cannot move {element.id} under {owner_id}: containment would form a cycle")
        self._check_can_contain(owner, containment)

        _detach(graph, element)
        element.parent_id = owner.id
        element.containing_feature = containment
        owner.children.setdefault(containment, []).append(element)

    def _check_can_contain(self, owner: Element, containment: str) -> None:
        if not self.registry.is_valid_type(owner.type) or not self.registry.is_containment_feature(
            owner.type, containment
        ):
            raise InvalidArgumentError(f"Element {owner.id} of type {owner.type} has no containment '{containment}'")

    def _owner_references(self, type_name: str) -> dict[str, str]:
        if not self.registry.is_valid_type(type_name):
            return {}
        return self.registry.owner_references(type_name)

    def _referenced_ids(self, element: Element) -> set[str]:
        if not self.registry.is_valid_type(element.type):
            return set()
        names = set(self.registry.reference_attributes(element.type)) | set(self.registry.owner_references(element.type))
        ids: set[str] = set()
        for name in names:
            value = element.properties.get(name)
            if isinstance(value, list):
                ids.update(str(v) for v in value if v is not None)
            elif value is not None:
                ids.add(str(value))
        return ids


def _detach(graph: ProjectGraph, element: Element) -> None:
    container = graph.container_of(element)
    for position, candidate in enumerate(container):
        if candidate is element:
            del container[position]
            return
    raise KeyError(element.id)


def _clears(value: Any) -> bool:
    return value is ABSENT or value is None or value == ""


def _read_only_value(element: Element, key: str) -> Any:
    if key in ID_FIELDS:
        return element.id
    if key in TYPE_FIELDS:
        return element.type
    return element.properties.get(key)


def _split_entry(entry: Mapping[str, Any]) -> tuple[str | None, dict[str, Any]]:
    if "properties" in entry and isinstance(entry["properties"], Mapping):
        properties = dict(entry["properties"])
        type_name = entry.get("type") or entry.get("eClass")
        for key in ID_FIELDS:
            if key in entry and key not in properties:
                properties[key] = entry[key]
    else:
        properties = dict(entry)
        type_name = properties.get("type") or properties.get("eClass")
    if type_name is not None:
        type_name = str(type_name).split(":", 1)[-1]
    return type_name, properties
