"""Schema registry for reqgraph element types."""

from reqgraph.schema.registry import (
    REQUIRED_CHAIN,
    AttributeDescriptor,
    SchemaClass,
    SchemaRegistry,
    load_schema,
    parse_schema,
)

__all__ = [
    "REQUIRED_CHAIN",
    "AttributeDescriptor",
    "SchemaClass",
    "SchemaRegistry",
    "load_schema",
    "parse_schema",
]
