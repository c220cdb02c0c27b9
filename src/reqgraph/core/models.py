"""Domain models for the requirements element graph."""

import copy
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Literal

RuleCode = Literal["DUP_REQID", "CYCLE_DERIVE_REFINE", "BROKEN_REF"]


@dataclass
class Element:
    """A typed element with a free-form property bag.

    Attributes:
        id (str): Identifier, unique within its project.
        type (str): Name of the schema class this element instantiates.
        properties (dict[str, Any]): Property values keyed by name. Keys the
            schema does not know are kept as-is.
        parent_id (str | None): Id of the owning element, or ``None`` for a
            top-level element.
        containing_feature (str | None): Containment feature of the owner
            that holds this element.
        children (dict[str, list[Element]]): Contained elements keyed by
            containment feature name, in insertion order.
    """

    id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    parent_id: str | None = None
    containing_feature: str | None = None
    children: dict[str, list["Element"]] = field(default_factory=dict)

    @property
    def name(self) -> str | None:
        """Return the declared name, falling back to ``name``."""
        value = self.properties.get("declaredName", self.properties.get("name"))
        return None if value is None else str(value)

    def iter_children(self) -> Iterator["Element"]:
        """Yield direct children across all containment features."""
        for contained in self.children.values():
            yield from contained

    def iter_subtree(self) -> Iterator["Element"]:
        """Yield this element and all its descendants in pre-order."""
        yield self
        for child in self.iter_children():
            yield from child.iter_subtree()

    def to_dict(self) -> dict[str, Any]:
        """Return the flat external view of this element.

        Children are not included; each contained element carries its
        owner in ``parentId`` instead.
        """
        data: dict[str, Any] = {"id": self.id, "type": self.type}
        data.update(copy.deepcopy(self.properties))
        if self.parent_id is not None:
            data["parentId"] = self.parent_id
        return data


@dataclass
class ProjectGraph:
    """The element forest of a single project.

    Attributes:
        project_id (str): The project name.
        roots (list[Element]): Top-level elements in document order.
        retired_ids (set[str]): Ids of deleted elements. They are never
            handed out again.
    """

    project_id: str
    roots: list[Element] = field(default_factory=list)
    retired_ids: set[str] = field(default_factory=set)

    def iter_elements(self) -> Iterator[Element]:
        """Yield every element, top-level and contained, in pre-order."""
        for root in self.roots:
            yield from root.iter_subtree()

    def index(self) -> dict[str, Element]:
        """Return a mapping of element id to element."""
        return {element.id: element for element in self.iter_elements()}

    def find(self, element_id: str) -> Element | None:
        """Return the element with the given id, or ``None``."""
        for element in self.iter_elements():
            if element.id == element_id:
                return element
        return None

    def ancestors(self, element_id: str) -> list[Element]:
        """Return the owners of an element, nearest first.

        Stops at an id already seen, so a corrupted graph cannot loop.
        """
        by_id = self.index()
        result: list[Element] = []
        seen = {element_id}
        current = by_id.get(element_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id in seen:
                break
            seen.add(current.parent_id)
            current = by_id.get(current.parent_id)
            if current is not None:
                result.append(current)
        return result

    def container_of(self, element: Element) -> list[Element]:
        """Return the list that currently holds *element*.

        Raises:
            KeyError: If the element is not attached to this graph.
        """
        if element.parent_id is None:
            return self.roots
        owner = self.find(element.parent_id)
        if owner is None or element.containing_feature is None:
            raise KeyError(element.id)
        return owner.children.setdefault(element.containing_feature, [])

    def __len__(self) -> int:
        return sum(1 for _ in self.iter_elements())

    def copy(self) -> "ProjectGraph":
        """Return a deep, independent snapshot of this graph."""
        return copy.deepcopy(self)


@dataclass
class ValidationViolation:
    """A single integrity rule violation.

    Attributes:
        rule_code (str): ``DUP_REQID``, ``CYCLE_DERIVE_REFINE`` or
            ``BROKEN_REF``.
        target_id (str): Id of the element the violation is reported on.
        message (str): Human-readable description.
        details (str | None): Supporting detail such as the cycle path.
        related_ids (list[str]): Ids involved: the duplicate group, the
            cycle path, or the dangling target.
    """

    rule_code: RuleCode
    target_id: str
    message: str
    details: str | None = None
    related_ids: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        """Return a one-line representation of the violation."""
        text = f"[{self.rule_code}] {self.target_id}: {self.message}"
        if self.details:
            text += f" ({self.details})"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleCode": self.rule_code,
            "targetId": self.target_id,
            "message": self.message,
            "details": self.details,
            "relatedIds": list(self.related_ids),
        }


@dataclass
class ValidationResult:
    """Outcome of a full validation run."""

    violations: list[ValidationViolation] = field(default_factory=list)
    element_count: int = 0
    validated_at: str = ""
    processing_time_ms: float = 0.0
    version: str = "1.0"

    @property
    def ok(self) -> bool:
        """Return True when no rule was violated."""
        return not self.violations

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "elementCount": self.element_count,
            "validatedAt": self.validated_at,
            "processingTimeMs": self.processing_time_ms,
            "version": self.version,
            "violations": [violation.to_dict() for violation in self.violations],
        }


@dataclass
class PagedResult:
    """One page of a query engine result."""

    content: list[Element]
    page: int
    size: int
    total_elements: int
    total_pages: int
    first: bool
    last: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": [element.to_dict() for element in self.content],
            "page": self.page,
            "size": self.size,
            "totalElements": self.total_elements,
            "totalPages": self.total_pages,
            "first": self.first,
            "last": self.last,
        }
