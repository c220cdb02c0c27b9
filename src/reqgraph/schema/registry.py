"""Runtime schema registry.

The registry is built once from a class-hierarchy description and is
read-only afterwards. Inherited attributes, supertypes and containment
features are flattened into per-class lookup tables at load time so
that every query is a dictionary lookup.
"""

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from reqgraph.core.errors import InvalidArgumentError, SchemaLoadError

logger = logging.getLogger("reqgraph")

ATTRIBUTE_KINDS = frozenset({"string", "integer", "float", "boolean", "date", "reference", "owner"})

DEFAULT_MIN_CLASSES = 100

# Core vocabulary the rest of the package relies on, root first.
REQUIRED_CHAIN: tuple[str, ...] = (
    "Element",
    "Namespace",
    "Type",
    "Classifier",
    "Definition",
    "OccurrenceDefinition",
    "ConstraintDefinition",
    "RequirementDefinition",
)


@dataclass(frozen=True)
class AttributeDescriptor:
    """A single attribute of a schema class.

    Attributes:
        name (str): Attribute name.
        kind (str): Value kind. ``reference`` marks a weak relation to
            another element's id; ``owner`` marks the id of the element
            that contains this one.
        many (bool): Whether the attribute holds a list of values.
        containment (str | None): For ``owner`` attributes, the
            containment feature of the owner that holds the element.
        declared_by (str): Name of the class that declares the attribute.
    """

    name: str
    kind: str = "string"
    many: bool = False
    containment: str | None = None
    declared_by: str = ""


@dataclass(frozen=True)
class SchemaClass:
    """A class of the schema with its own (non-inherited) features."""

    name: str
    abstract: bool = False
    supertypes: tuple[str, ...] = ()
    attributes: tuple[AttributeDescriptor, ...] = ()
    containments: tuple[str, ...] = ()


@dataclass
class _Closure:
    supertypes: tuple[str, ...]
    attributes: dict[str, AttributeDescriptor]
    containments: frozenset[str]


@dataclass
class SchemaRegistry:
    """Read-only index over a loaded schema.

    Use :func:`load_schema` to build one; the constructor expects the
    classes to be consistent already.
    """

    classes: dict[str, SchemaClass]
    name: str = "schema"
    _closures: dict[str, _Closure] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not self._closures:
            self._closures = _compute_closures(self.classes)

    def __len__(self) -> int:
        return len(self.classes)

    def __contains__(self, name: object) -> bool:
        return name in self.classes

    @property
    def class_names(self) -> list[str]:
        """Return all class names in declaration order."""
        return list(self.classes)

    def is_valid_type(self, name: str) -> bool:
        """Return True if *name* is a class of the schema."""
        return name in self.classes

    def is_abstract(self, name: str) -> bool:
        return self._class(name).abstract

    def attributes_of(self, name: str) -> frozenset[AttributeDescriptor]:
        """Return all attributes of a class, inherited ones included."""
        return frozenset(self._closure(name).attributes.values())

    def attribute(self, name: str, attribute: str) -> AttributeDescriptor | None:
        """Return one attribute of a class, or ``None`` if it has none by that name."""
        return self._closure(name).attributes.get(attribute)

    def supertypes_of(self, name: str) -> tuple[str, ...]:
        """Return all transitive supertypes, nearest first."""
        return self._closure(name).supertypes

    def is_subtype(self, name: str, of: str) -> bool:
        """Return True if *name* is *of* or inherits from it."""
        return name == of or of in self._closure(name).supertypes

    def containments_of(self, name: str) -> frozenset[str]:
        """Return every containment feature a class declares or inherits."""
        return self._closure(name).containments

    def is_containment_feature(self, type_name: str, feature: str) -> bool:
        """Return True if *feature* is a containment feature of *type_name*."""
        return feature in self._closure(type_name).containments

    def owner_references(self, name: str) -> dict[str, str]:
        """Return owner attribute names mapped to their containment feature."""
        return {
            attr.name: attr.containment
            for attr in self._closure(name).attributes.values()
            if attr.kind == "owner" and attr.containment
        }

    def reference_attributes(self, name: str) -> frozenset[str]:
        """Return names of the weak relation attributes of a class."""
        return frozenset(attr.name for attr in self._closure(name).attributes.values() if attr.kind == "reference")

    def subtypes_of(self, name: str) -> list[str]:
        """Return every class that is *name* or inherits from it."""
        self._class(name)
        return [candidate for candidate in self.classes if self.is_subtype(candidate, name)]

    def _class(self, name: str) -> SchemaClass:
        try:
            return self.classes[name]
        except KeyError:
            raise InvalidArgumentError(f"Unknown type: {name}") from None

    def _closure(self, name: str) -> _Closure:
        try:
            return self._closures[name]
        except KeyError:
            raise InvalidArgumentError(f"Unknown type: {name}") from None


def load_schema(
    source: Path | str | None = None,
    *,
    min_classes: int = DEFAULT_MIN_CLASSES,
    required_chain: Iterable[str] = REQUIRED_CHAIN,
) -> SchemaRegistry:
    """Load a schema description and build the registry.

    Args:
        source: Path to a YAML class-hierarchy description. ``None``
            loads the schema bundled with the package.
        min_classes: Minimum number of classes the schema must declare.
        required_chain: Class names that must exist and form a single
            inheritance chain, root first.

    Returns:
        The loaded :class:`SchemaRegistry`.

    Raises:
        SchemaLoadError: If the source is missing or malformed, declares
            too few classes, or lacks the required chain.
    """
    if source is None:
        text = resources.files("reqgraph.schema").joinpath("sysml.yml").read_text(encoding="utf-8")
        origin = "bundled schema"
    else:
        path = Path(source)
        if not path.is_file():
            raise SchemaLoadError(f"Schema source not found: {path}")
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise SchemaLoadError(f"Failed to read schema {path}: {e}") from e
        origin = str(path)

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SchemaLoadError(f"Invalid YAML in schema {origin}: {e}") from e

    registry = parse_schema(data, origin=origin)

    if len(registry) < min_classes:
        raise SchemaLoadError(f"Schema {origin} declares {len(registry)} classes, at least {min_classes} required")

    _check_required_chain(registry, tuple(required_chain), origin)

    logger.info("Loaded schema %s from %s with %d classes", registry.name, origin, len(registry))
    return registry


def parse_schema(data: Any, origin: str = "<schema>") -> SchemaRegistry:
    """Build a registry from an already-parsed schema document.

    The document is a mapping with a ``classes`` entry, given either as
    a mapping of class name to definition or as a list of definitions
    carrying a ``name``. A definition may hold ``abstract``,
    ``supertypes``, ``containments`` and ``attributes``; each attribute
    is either a kind string or a mapping with ``kind``, ``many`` and
    ``containment``.

    Raises:
        SchemaLoadError: If the document is structurally invalid.
    """
    if not isinstance(data, dict) or "classes" not in data:
        raise SchemaLoadError(f"Schema {origin} must be a mapping with a 'classes' entry")

    raw_classes = data["classes"]
    if isinstance(raw_classes, dict):
        entries = [(name, spec) for name, spec in raw_classes.items()]
    elif isinstance(raw_classes, list):
        entries = []
        for spec in raw_classes:
            if not isinstance(spec, dict) or not spec.get("name"):
                raise SchemaLoadError(f"Schema {origin} has a class without a name: {spec!r}")
            entries.append((spec["name"], spec))
    else:
        raise SchemaLoadError(f"Schema {origin}: 'classes' must be a mapping or a list")

    classes: dict[str, SchemaClass] = {}
    for name, spec in entries:
        name = str(name)
        if name in classes:
            raise SchemaLoadError(f"Schema {origin} declares class '{name}' twice")
        classes[name] = _parse_class(name, spec or {}, origin)

    declared_containments = {feature for cls in classes.values() for feature in cls.containments}
    for cls in classes.values():
        for parent in cls.supertypes:
            if parent not in classes:
                raise SchemaLoadError(f"Schema {origin}: class '{cls.name}' extends unknown class '{parent}'")
        for attr in cls.attributes:
            if attr.kind == "owner" and attr.containment not in declared_containments:
                raise SchemaLoadError(
                    f"Schema {origin}: owner attribute '{cls.name}.{attr.name}' "
                    f"names undeclared containment '{attr.containment}'"
                )

    try:
        closures = _compute_closures(classes)
    except ValueError as e:
        raise SchemaLoadError(f"Schema {origin}: {e}") from e

    return SchemaRegistry(classes=classes, name=str(data.get("name", "schema")), _closures=closures)


def _parse_class(name: str, spec: Any, origin: str) -> SchemaClass:
    if not isinstance(spec, dict):
        raise SchemaLoadError(f"Schema {origin}: class '{name}' must be a mapping")

    supertypes = spec.get("supertypes") or []
    if isinstance(supertypes, str):
        supertypes = [supertypes]
    containments = spec.get("containments") or []
    if isinstance(containments, str):
        containments = [containments]

    raw_attributes = spec.get("attributes") or {}
    if isinstance(raw_attributes, list):
        raw_attributes = {a.get("name"): a for a in raw_attributes if isinstance(a, dict)}
    if not isinstance(raw_attributes, dict):
        raise SchemaLoadError(f"Schema {origin}: attributes of '{name}' must be a mapping")

    attributes = []
    for attr_name, attr_spec in raw_attributes.items():
        if not attr_name:
            raise SchemaLoadError(f"Schema {origin}: class '{name}' has an attribute without a name")
        if isinstance(attr_spec, str) or attr_spec is None:
            attr_spec = {"kind": attr_spec or "string"}
        if not isinstance(attr_spec, dict):
            raise SchemaLoadError(f"Schema {origin}: attribute '{name}.{attr_name}' is malformed")
        kind = str(attr_spec.get("kind", "string"))
        if kind not in ATTRIBUTE_KINDS:
            raise SchemaLoadError(f"Schema {origin}: attribute '{name}.{attr_name}' has unknown kind '{kind}'")
        containment = attr_spec.get("containment")
        if kind == "owner" and not containment:
            raise SchemaLoadError(f"Schema {origin}: owner attribute '{name}.{attr_name}' needs a containment")
        attributes.append(
            AttributeDescriptor(
                name=str(attr_name),
                kind=kind,
                many=bool(attr_spec.get("many", False)),
                containment=str(containment) if containment else None,
                declared_by=name,
            )
        )

    return SchemaClass(
        name=name,
        abstract=bool(spec.get("abstract", False)),
        supertypes=tuple(str(s) for s in supertypes),
        attributes=tuple(attributes),
        containments=tuple(str(c) for c in containments),
    )


def _compute_closures(classes: dict[str, SchemaClass]) -> dict[str, _Closure]:
    """Flatten inherited features for every class.

    Raises:
        ValueError: If the inheritance graph has a cycle.
    """
    # Kahn's algorithm: supertypes are resolved before their subtypes.
    in_degree = {name: 0 for name in classes}
    children: dict[str, list[str]] = {name: [] for name in classes}
    for cls in classes.values():
        for parent in cls.supertypes:
            if parent in classes:
                in_degree[cls.name] += 1
                children[parent].append(cls.name)

    queue: deque[str] = deque(name for name, degree in in_degree.items() if degree == 0)
    order: list[str] = []
    while queue:
        name = queue.popleft()
        order.append(name)
        for child in children[name]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    if len(order) != len(classes):
        cyclic = sorted(set(classes) - set(order))
        raise ValueError(f"inheritance cycle among classes: {', '.join(cyclic)}")

    closures: dict[str, _Closure] = {}
    for name in order:
        cls = classes[name]
        supertypes: list[str] = []
        attributes: dict[str, AttributeDescriptor] = {}
        containments: set[str] = set(cls.containments)

        # Breadth-first over direct supertypes gives nearest-first order.
        for parent in cls.supertypes:
            if parent not in supertypes:
                supertypes.append(parent)
        for parent in cls.supertypes:
            for ancestor in closures[parent].supertypes:
                if ancestor not in supertypes:
                    supertypes.append(ancestor)

        for parent in reversed(cls.supertypes):
            attributes.update(closures[parent].attributes)
            containments |= closures[parent].containments
        for attr in cls.attributes:
            attributes[attr.name] = attr

        closures[name] = _Closure(
            supertypes=tuple(supertypes),
            attributes=attributes,
            containments=frozenset(containments),
        )
    return closures


def _check_required_chain(registry: SchemaRegistry, chain: tuple[str, ...], origin: str) -> None:
    missing = [name for name in chain if not registry.is_valid_type(name)]
    if missing:
        raise SchemaLoadError(f"Schema {origin} is missing required classes: {', '.join(missing)}")
    for parent, child in zip(chain, chain[1:]):
        if parent not in registry.supertypes_of(child):
            raise SchemaLoadError(f"Schema {origin}: required class '{child}' must inherit from '{parent}'")
