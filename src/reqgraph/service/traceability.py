"""Requirement and trace-relation operations built on the element service."""

import logging
from collections.abc import Mapping
from typing import Any

from reqgraph.core.errors import ConflictError, InvalidArgumentError, NotFoundError, ReferentialIntegrityError
from reqgraph.core.models import Element
from reqgraph.service.elements import ElementService

logger = logging.getLogger("reqgraph")

REQUIREMENT_TYPE = "RequirementDefinition"
USAGE_TYPE = "RequirementUsage"

RELATION_TYPES = {
    "derive": "DeriveRequirement",
    "refine": "Refine",
    "satisfy": "Satisfy",
    "trace": "Trace",
}

# Types that may satisfy a requirement.
SATISFYING_TYPES = ("PartUsage", "ActionUsage")


class TraceabilityService:
    """Requirements, their usages, and the trace relations between them.

    Args:
        elements: The element service used for storage and validation.
        business_key: Property holding the user-facing requirement code.
    """

    def __init__(self, elements: ElementService, business_key: str = "reqId"):
        self.elements = elements
        self.business_key = business_key

    @property
    def registry(self):
        return self.elements.registry

    def is_requirement_like(self, type_name: str) -> bool:
        """Return True for requirement definitions, usages and their subtypes."""
        if not self.registry.is_valid_type(type_name):
            return False
        return self.registry.is_subtype(type_name, REQUIREMENT_TYPE) or self.registry.is_subtype(type_name, USAGE_TYPE)

    def create_requirement(self, project_id: str, properties: Mapping[str, Any]) -> Element:
        """Create a requirement definition with a unique business key.

        Raises:
            InvalidArgumentError: If the business key is missing or blank.
            ConflictError: If another element already uses the key.
        """
        key = properties.get(self.business_key)
        if key is None or str(key).strip() == "":
            raise InvalidArgumentError(f"Requirement requires '{self.business_key}'")

        with self.elements.store.lock(project_id):
            for element in self.elements.all_elements(project_id):
                existing = element.properties.get(self.business_key)
                if existing is not None and str(existing) == str(key):
                    raise ConflictError(
                        f"Requirement with {self.business_key} '{key}' already exists: {element.id}"
                    )
            return self.elements.create(project_id, REQUIREMENT_TYPE, properties)

    def create_usage(self, project_id: str, definition_id: str, properties: Mapping[str, Any] | None = None) -> Element:
        """Create a requirement usage contained by a requirement definition.

        Raises:
            NotFoundError: If the definition does not exist.
            InvalidArgumentError: If *definition_id* is not a requirement
                definition.
        """
        with self.elements.store.lock(project_id):
            definition = self.elements.get(project_id, definition_id)
            if not self.registry.is_subtype(definition.type, REQUIREMENT_TYPE):
                raise InvalidArgumentError(f"{definition_id} is a {definition.type}, not a {REQUIREMENT_TYPE}")
            props = dict(properties or {})
            props["requirementDefinition"] = definition_id
            return self.elements.create(project_id, USAGE_TYPE, props)

    def delete_requirement(self, project_id: str, element_id: str) -> bool:
        """Delete a requirement nothing refers to any more.

        Raises:
            NotFoundError: If the requirement does not exist.
            ReferentialIntegrityError: If relations, usages or contained
                elements still point at it.
        """
        with self.elements.store.lock(project_id):
            self.elements.get(project_id, element_id)
            referrers = sorted(e.id for e in self.elements.referrers(project_id, element_id))
            if referrers:
                raise ReferentialIntegrityError(
                    f"Cannot delete {element_id}: still referenced by {', '.join(referrers)}"
                )
            return self.elements.delete(project_id, element_id)

    def create_relation(
        self,
        project_id: str,
        kind: str,
        source: str | None,
        target: str | None,
        properties: Mapping[str, Any] | None = None,
    ) -> Element:
        """Create a derive, refine, satisfy or trace relation.

        Args:
            project_id: The project to create the relation in.
            kind: One of ``derive``, ``refine``, ``satisfy``, ``trace``.
            source: Id of the source element.
            target: Id of the target element.
            properties: Extra properties stored on the relation.

        Raises:
            InvalidArgumentError: If the kind is unknown, an endpoint is
                missing, or the endpoint types do not fit the kind.
            NotFoundError: If an endpoint does not exist.
            ConflictError: If the same relation already exists.
        """
        relation_type = RELATION_TYPES.get(str(kind).lower())
        if relation_type is None:
            raise InvalidArgumentError(f"Unknown relation kind: {kind} (expected one of {', '.join(RELATION_TYPES)})")
        if not source or not target:
            raise InvalidArgumentError("Relation requires both source and target")

        with self.elements.store.lock(project_id):
            snapshot = self.elements.snapshot(project_id)
            by_id = snapshot.index()
            for endpoint in (source, target):
                if endpoint not in by_id:
                    raise NotFoundError(f"Element not found: {endpoint}")
            self._check_endpoints(kind.lower(), by_id[source], by_id[target])

            for existing in snapshot.iter_elements():
                if (
                    existing.type == relation_type
                    and existing.properties.get("source") == source
                    and existing.properties.get("target") == target
                ):
                    raise ConflictError(f"{relation_type} from {source} to {target} already exists: {existing.id}")

            props = dict(properties or {})
            props["source"] = source
            props["target"] = target
            relation = self.elements.create(project_id, relation_type, props)
        logger.info("Linked %s -[%s]-> %s in project %s", source, kind.lower(), target, project_id)
        return relation

    def relations(self, project_id: str, kind: str | None = None, element_id: str | None = None) -> list[Element]:
        """Return trace relations, optionally of one kind or touching one element."""
        if kind is not None:
            if str(kind).lower() not in RELATION_TYPES:
                raise InvalidArgumentError(f"Unknown relation kind: {kind}")
            types = {RELATION_TYPES[str(kind).lower()]}
        else:
            types = set(RELATION_TYPES.values())

        result = []
        for element in self.elements.all_elements(project_id):
            if element.type not in types:
                continue
            if element_id is not None and element_id not in (
                element.properties.get("source"),
                element.properties.get("target"),
            ):
                continue
            result.append(element)
        return result

    def _check_endpoints(self, kind: str, source: Element, target: Element) -> None:
        if kind in ("derive", "refine"):
            for end in (source, target):
                if not self.is_requirement_like(end.type):
                    raise InvalidArgumentError(
                        f"{kind} relations connect requirements; {end.id} is a {end.type}"
                    )
        elif kind == "satisfy":
            if not self.registry.is_valid_type(source.type) or not any(
                self.registry.is_subtype(source.type, t) for t in SATISFYING_TYPES
            ):
                raise InvalidArgumentError(
                    f"satisfy source must be a {' or '.join(SATISFYING_TYPES)}; {source.id} is a {source.type}"
                )
            if not self.is_requirement_like(target.type):
                raise InvalidArgumentError(f"satisfy target must be a requirement; {target.id} is a {target.type}")
