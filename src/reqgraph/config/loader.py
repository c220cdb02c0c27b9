"""Load reqgraph configuration from pyproject.toml."""

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib  # type: ignore[import-not-found]
except ImportError:
    import tomli as tomllib

from reqgraph.query import MAX_PAGE_SIZE

DATA_ROOT_ENV = "REQGRAPH_DATA_ROOT"

RECOGNIZED_KEYS = frozenset(
    {
        "data_root",
        "schema_path",
        "min_schema_classes",
        "business_key",
        "relation_fields",
        "default_page_size",
    }
)


@dataclass
class ReqGraphConfig:
    """Configuration schema for reqgraph.

    Attributes:
        data_root (str): Directory holding the ``projects/`` tree.
        schema_path (str | None): Schema file to load, or ``None`` for the
            bundled SysML subset.
        min_schema_classes (int): Fewest classes a schema may declare.
        business_key (str): Property checked for duplicates by validation
            and required on requirements.
        relation_fields (list[str]): Properties treated as weak references
            to other elements.
        default_page_size (int): Page size used when a query names none.

    Examples:
        Construct a config with custom settings::

            >>> config = ReqGraphConfig(data_root="store", business_key="code")
            >>> config.business_key
            'code'
    """

    data_root: str = "data"
    schema_path: str | None = None
    min_schema_classes: int = 100
    business_key: str = "reqId"
    relation_fields: list[str] = field(default_factory=lambda: ["source", "target"])
    default_page_size: int = 50

    def validate(self) -> list[str]:
        """Check the values for settings that cannot work.

        Returns:
            List of validation warning messages. Empty if no issues found.
        """
        validation_warnings: list[str] = []

        if not 1 <= self.default_page_size <= MAX_PAGE_SIZE:
            validation_warnings.append(
                f"default_page_size {self.default_page_size} is outside 1..{MAX_PAGE_SIZE}"
            )
        if self.min_schema_classes < 1:
            validation_warnings.append(f"min_schema_classes must be at least 1, got {self.min_schema_classes}")
        if not self.business_key:
            validation_warnings.append("business_key is empty; duplicate detection is disabled")
        if not self.relation_fields:
            validation_warnings.append("relation_fields is empty; broken reference detection is disabled")
        if self.schema_path and not Path(self.schema_path).is_file():
            validation_warnings.append(f"schema_path '{self.schema_path}' does not exist")

        return validation_warnings


def load_config(config_path: Path | None = None) -> ReqGraphConfig:
    """Load reqgraph configuration from pyproject.toml.

    Looks for the ``[tool.reqgraph]`` section. Relative ``data_root`` and
    ``schema_path`` values are resolved against the directory holding
    the file. The ``REQGRAPH_DATA_ROOT`` environment variable overrides
    ``data_root``.

    Args:
        config_path: Optional path to pyproject.toml. If None, uses cwd.

    Returns:
        ReqGraphConfig with loaded values or defaults.
    """
    if config_path is None:
        config_path = Path.cwd() / "pyproject.toml"

    section: dict = {}
    if config_path.exists():
        with open(config_path, "rb") as f:
            pyproject = tomllib.load(f)
        section = pyproject.get("tool", {}).get("reqgraph", {})

    unknown = set(section) - RECOGNIZED_KEYS
    if unknown:
        warnings.warn(
            f"Unrecognized keys in [tool.reqgraph]: {', '.join(sorted(unknown))}",
            stacklevel=2,
        )

    base_dir = config_path.parent
    data_root = os.environ.get(DATA_ROOT_ENV) or str(base_dir / section.get("data_root", "data"))
    schema_path = section.get("schema_path")
    if schema_path is not None:
        schema_path = str(base_dir / schema_path)

    return ReqGraphConfig(
        data_root=data_root,
        schema_path=schema_path,
        min_schema_classes=section.get("min_schema_classes", 100),
        business_key=section.get("business_key", "reqId"),
        relation_fields=list(section.get("relation_fields", ["source", "target"])),
        default_page_size=section.get("default_page_size", 50),
    )
