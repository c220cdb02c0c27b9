"""Whole-project integrity checks over an element snapshot."""

import logging
import time
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from reqgraph.core.models import Element, ValidationResult, ValidationViolation

logger = logging.getLogger("reqgraph")

DERIVE_REFINE_TYPES = frozenset({"DeriveRequirement", "Refine"})
DERIVE_REFINE_KINDS = frozenset({"derive", "refine"})
GENERIC_DEPENDENCY_TYPE = "Dependency"

DEFAULT_RELATION_FIELDS = ("source", "target")


def validate_static(
    elements: Iterable[Element],
    *,
    business_key: str = "reqId",
    relation_fields: Sequence[str] = DEFAULT_RELATION_FIELDS,
    check_duplicates: bool = True,
    check_cycles: bool = True,
    check_references: bool = True,
) -> ValidationResult:
    """Run the integrity rules over one project snapshot.

    The snapshot is indexed once and shared by all passes. Violations are
    ordered by rule (duplicates, cycles, broken references) and, within
    a rule, independently of the order of *elements*.

    Args:
        elements: Every element of the project, contained ones included.
        business_key: Property that must be unique across the project.
        relation_fields: Properties holding weak references to other
            elements.
        check_duplicates: Report elements sharing a business key.
        check_cycles: Report cycles among derive/refine relations.
        check_references: Report relation values naming missing elements.

    Returns:
        A ValidationResult holding the violations found.
    """
    started = time.perf_counter()
    snapshot = list(elements)
    by_id = {element.id: element for element in snapshot}

    violations: list[ValidationViolation] = []
    if check_duplicates:
        violations.extend(_check_duplicate_keys(snapshot, business_key))
    if check_cycles:
        violations.extend(_check_derive_refine_cycles(snapshot, by_id))
    if check_references:
        violations.extend(_check_broken_references(snapshot, by_id, relation_fields))

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.debug("Validated %d elements in %.1f ms: %d violations", len(snapshot), elapsed_ms, len(violations))
    return ValidationResult(
        violations=violations,
        element_count=len(snapshot),
        validated_at=datetime.now(timezone.utc).isoformat(),
        processing_time_ms=elapsed_ms,
    )


def _check_duplicate_keys(snapshot: list[Element], business_key: str) -> list[ValidationViolation]:
    """Report every member of each group of elements sharing a business key."""
    groups: dict[str, list[str]] = {}
    for element in snapshot:
        value = element.properties.get(business_key)
        if value is None or str(value).strip() == "":
            continue
        groups.setdefault(str(value), []).append(element.id)

    violations = []
    for key in sorted(groups):
        members = sorted(groups[key])
        if len(members) < 2:
            continue
        for element_id in members:
            others = [m for m in members if m != element_id]
            violations.append(
                ValidationViolation(
                    rule_code="DUP_REQID",
                    target_id=element_id,
                    message=f"Duplicate {business_key} '{key}' (also used by {', '.join(others)})",
                    details=f"{business_key}={key}",
                    related_ids=members,
                )
            )
    return violations


def _is_derive_or_refine(element: Element) -> bool:
    if element.type in DERIVE_REFINE_TYPES:
        return True
    if element.type != GENERIC_DEPENDENCY_TYPE:
        return False
    kind = element.properties.get("kind")
    return isinstance(kind, str) and kind.lower() in DERIVE_REFINE_KINDS


def _check_derive_refine_cycles(snapshot: list[Element], by_id: dict[str, Element]) -> list[ValidationViolation]:
    """Detect cycles among derive/refine relations using DFS.

    Each relation element contributes an edge from its ``source`` to its
    ``target``; endpoints that are not in the snapshot are left to the
    broken reference pass. A depth-first search with three-color
    marking finds back edges. Nodes and their neighbours are visited in
    sorted order and each cycle is reported once, rotated to start at
    its smallest id, so the outcome does not depend on input order.
    """
    adjacency: dict[str, set[str]] = {}
    for element in snapshot:
        if not _is_derive_or_refine(element):
            continue
        source = element.properties.get("source")
        target = element.properties.get("target")
        if not isinstance(source, str) or not isinstance(target, str):
            continue
        if source not in by_id or target not in by_id:
            continue
        adjacency.setdefault(source, set()).add(target)
        adjacency.setdefault(target, set())

    neighbours = {node: sorted(targets) for node, targets in adjacency.items()}

    WHITE, GRAY, BLACK = 0, 1, 2
    color: dict[str, int] = {node: WHITE for node in neighbours}
    reported: set[tuple[str, ...]] = set()
    cycles: list[list[str]] = []
    path: list[str] = []

    for start in sorted(neighbours):
        if color[start] != WHITE:
            continue

        stack: list[tuple[str, int]] = [(start, 0)]
        color[start] = GRAY
        path.append(start)

        while stack:
            node, index = stack[-1]
            targets = neighbours[node]

            if index < len(targets):
                stack[-1] = (node, index + 1)
                target = targets[index]
                if color[target] == GRAY:
                    cycle = tuple(_rotate_to_smallest(path[path.index(target) :]))
                    if cycle not in reported:
                        reported.add(cycle)
                        cycles.append(list(cycle))
                elif color[target] == WHITE:
                    color[target] = GRAY
                    path.append(target)
                    stack.append((target, 0))
            else:
                stack.pop()
                path.pop()
                color[node] = BLACK

    violations = []
    for cycle in sorted(cycles):
        loop = " -> ".join([*cycle, cycle[0]])
        violations.append(
            ValidationViolation(
                rule_code="CYCLE_DERIVE_REFINE",
                target_id=cycle[0],
                message=f"Cycle in derive/refine relations: {loop}",
                details=loop,
                related_ids=cycle,
            )
        )
    return violations


def _rotate_to_smallest(cycle: list[str]) -> list[str]:
    pivot = cycle.index(min(cycle))
    return cycle[pivot:] + cycle[:pivot]


def _check_broken_references(
    snapshot: list[Element], by_id: dict[str, Element], relation_fields: Sequence[str]
) -> list[ValidationViolation]:
    """Report each relation value that names an id missing from the snapshot."""
    violations = []
    for element in sorted(snapshot, key=lambda e: e.id):
        for field_name in relation_fields:
            value = element.properties.get(field_name)
            values = value if isinstance(value, list) else [value]
            for referenced in values:
                if referenced is None or referenced == "":
                    continue
                if str(referenced) in by_id:
                    continue
                violations.append(
                    ValidationViolation(
                        rule_code="BROKEN_REF",
                        target_id=element.id,
                        message=f"'{field_name}' references missing element {referenced}",
                        details=f"{field_name}={referenced}",
                        related_ids=[str(referenced)],
                    )
                )
    return violations
