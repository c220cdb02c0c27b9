"""Filter, search, sort and paginate element lists."""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from reqgraph.core.errors import InvalidArgumentError
from reqgraph.core.models import Element, PagedResult

SORTABLE_FIELDS = frozenset(
    {"id", "name", "declaredName", "type", "createdAt", "updatedAt", "reqId", "text", "status"}
)
FILTERABLE_FIELDS = frozenset({"type", "status", "reqId", "name", "declaredName"})

# Filters on these fields match substrings instead of whole values.
SUBSTRING_FILTER_FIELDS = frozenset({"name", "declaredName"})

MAX_PAGE_SIZE = 200
TYPE_PREFIX = "sysml:"

Direction = Literal["asc", "desc"]


@dataclass
class QuerySpec:
    """What to select from an element list and which page to return.

    Attributes:
        page (int): Zero-based page number.
        size (int): Number of elements per page, 1 to 200.
        sort (list[tuple[str, str]]): ``(field, direction)`` pairs,
            most significant first.
        filter (list[tuple[str, str]]): ``(field, value)`` pairs, all of
            which must match.
        search (str | None): Case-insensitive text to look for.
    """

    page: int = 0
    size: int = 50
    sort: list[tuple[str, Direction]] = field(default_factory=list)
    filter: list[tuple[str, str]] = field(default_factory=list)
    search: str | None = None

    @classmethod
    def parse(
        cls,
        page: int = 0,
        size: int = 50,
        sort: Sequence[str] = (),
        filter: Sequence[str] = (),
        search: str | None = None,
    ) -> "QuerySpec":
        """Build a spec from ``field,direction`` and ``field:value`` strings.

        Raises:
            InvalidArgumentError: If a sort or filter term is malformed.
        """
        sort_terms: list[tuple[str, Direction]] = []
        for term in sort:
            name, _, direction = term.partition(",")
            name = name.strip()
            direction = direction.strip().lower() or "asc"
            if not name:
                raise InvalidArgumentError(f"Invalid sort term: {term!r}")
            if direction not in ("asc", "desc"):
                raise InvalidArgumentError(f"Invalid sort direction in {term!r}: expected asc or desc")
            sort_terms.append((name, direction))  # type: ignore[arg-type]

        filter_terms: list[tuple[str, str]] = []
        for term in filter:
            name, sep, value = term.partition(":")
            if not sep or not name.strip():
                raise InvalidArgumentError(f"Invalid filter term: {term!r} (expected field:value)")
            filter_terms.append((name.strip(), value.strip()))

        return cls(page=page, size=size, sort=sort_terms, filter=filter_terms, search=search or None)

    def check(self) -> None:
        """Raise InvalidArgumentError if the spec cannot be applied."""
        if self.page < 0:
            raise InvalidArgumentError(f"Page must be >= 0, got {self.page}")
        if not 1 <= self.size <= MAX_PAGE_SIZE:
            raise InvalidArgumentError(f"Size must be between 1 and {MAX_PAGE_SIZE}, got {self.size}")
        for name, direction in self.sort:
            if name not in SORTABLE_FIELDS:
                raise InvalidArgumentError(f"Invalid sort field: {name}")
            if direction not in ("asc", "desc"):
                raise InvalidArgumentError(f"Invalid sort direction for {name}: {direction}")
        for name, _ in self.filter:
            if name not in FILTERABLE_FIELDS:
                raise InvalidArgumentError(f"Invalid filter field: {name}")


def field_value(element: Element, name: str) -> Any:
    """Return the value of a queryable field of an element."""
    if name == "id":
        return element.id
    if name == "type":
        return element.type
    if name == "name":
        return element.name
    return element.properties.get(name)


def apply(elements: Iterable[Element], spec: QuerySpec) -> PagedResult:
    """Run filter, search, sort and pagination, in that order.

    Args:
        elements: The elements to query, typically a flattened project.
        spec: What to select and which page to return.

    Returns:
        The requested page and the totals before pagination.

    Raises:
        InvalidArgumentError: If the spec names an unknown field or a page
            or size out of range.
    """
    spec.check()

    selected = [e for e in elements if all(_matches(e, name, value) for name, value in spec.filter)]
    if spec.search:
        needle = spec.search.lower()
        selected = [e for e in selected if _contains_text(e, needle)]
    selected = _sorted(selected, spec.sort)

    total = len(selected)
    total_pages = math.ceil(total / spec.size)
    offset = spec.page * spec.size
    return PagedResult(
        content=selected[offset : offset + spec.size],
        page=spec.page,
        size=spec.size,
        total_elements=total,
        total_pages=total_pages,
        first=spec.page == 0,
        last=spec.page >= total_pages - 1,
    )


def _matches(element: Element, name: str, expected: str) -> bool:
    if name == "type":
        wanted = expected[len(TYPE_PREFIX) :] if expected.startswith(TYPE_PREFIX) else expected
        return element.type == wanted
    value = field_value(element, name)
    if value is None:
        return False
    if name in SUBSTRING_FILTER_FIELDS:
        return expected.lower() in str(value).lower()
    return str(value) == expected


def _contains_text(element: Element, needle: str) -> bool:
    if needle in element.id.lower():
        return True
    for value in element.properties.values():
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            if isinstance(candidate, str) and needle in candidate.lower():
                return True
    return False


def _sort_key(value: Any) -> tuple:
    # Missing values first, then numbers, then everything else as text.
    if value is None:
        return (0,)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value, "")
    return (2, 0, str(value))


def _sorted(elements: list[Element], sort: Sequence[tuple[str, str]]) -> list[Element]:
    result = list(elements)
    # Sorting by the least significant key first relies on sort stability.
    for name, direction in reversed(sort):
        result.sort(key=lambda e, n=name: _sort_key(field_value(e, n)), reverse=direction == "desc")
    return result
