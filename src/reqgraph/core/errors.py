"""Error taxonomy for reqgraph.

Every operation on the core raises one of these types. Only
:class:`SchemaLoadError` is fatal; the others describe a single bad
request and leave the store untouched.
"""


class ReqGraphError(Exception):
    """Base class for all reqgraph errors."""


class NotFoundError(ReqGraphError, KeyError):
    """A project or element does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else ""


class ConflictError(ReqGraphError):
    """A duplicate id on create or a duplicate relation tuple."""


class InvalidArgumentError(ReqGraphError, ValueError):
    """An unknown type or field, malformed input, or a missing required field."""


class ReferentialIntegrityError(ReqGraphError):
    """A delete is blocked because other elements still depend on the target."""


class SchemaLoadError(ReqGraphError):
    """The schema source is missing, malformed, or incomplete.

    Raised only while loading the schema; the process must not continue
    without a valid schema.
    """


class StorageError(ReqGraphError, OSError):
    """A project document could not be read or is malformed."""
