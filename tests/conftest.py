"""Shared fixtures for reqgraph tests."""

import contextlib
import copy
import os
import warnings
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from reqgraph.cli.commands import cli
from reqgraph.core.models import Element
from reqgraph.schema.registry import SchemaRegistry, load_schema, parse_schema
from reqgraph.service.elements import ElementService
from reqgraph.service.traceability import TraceabilityService
from reqgraph.storage.store import ElementStore

# =============================================================================
# Warning Suppression Utilities
# =============================================================================


@contextlib.contextmanager
def expect_user_warning(match: str | None = None):
    """Context manager for code that is expected to emit UserWarning.

    Args:
        match: Optional regex pattern to match against warning message.
              If provided, asserts that at least one warning matches.
    """
    with warnings.catch_warnings(record=True) as recorded:
        warnings.simplefilter("always", UserWarning)
        yield recorded
        if match is not None:
            import re

            matched = any(re.search(match, str(w.message)) for w in recorded)
            if not matched:
                got = [str(w.message) for w in recorded]
                msg = f"Expected UserWarning matching '{match}', got: {got}"
                raise AssertionError(msg)


# =============================================================================
# Shared Test Helpers
# =============================================================================


def _invoke(runner: CliRunner, args: list[str], *, cwd: Path | None = None):
    """Invoke CLI, optionally inside *cwd*.  Returns the Click result."""
    if cwd is not None:
        old = os.getcwd()
        os.chdir(cwd)
        try:
            return runner.invoke(cli, args, catch_exceptions=False)
        finally:
            os.chdir(old)
    return runner.invoke(cli, args, catch_exceptions=False)


def _read_yaml(path: Path) -> dict:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _write_yaml(path: Path, data: dict) -> None:
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def make_element(element_id: str, type_name: str = "RequirementDefinition", **properties) -> Element:
    """Build a detached element for pure-function tests."""
    return Element(id=element_id, type=type_name, properties=properties)


def make_relation(element_id: str, source: str, target: str, type_name: str = "DeriveRequirement") -> Element:
    return Element(id=element_id, type=type_name, properties={"source": source, "target": target})


# =============================================================================
# Schema Fixtures
# =============================================================================

MINI_SCHEMA = {
    "name": "mini",
    "classes": {
        "Element": {
            "abstract": True,
            "attributes": {
                "elementId": "string",
                "declaredName": "string",
                "owningNamespace": {"kind": "owner", "containment": "ownedMember"},
            },
        },
        "Namespace": {"supertypes": ["Element"], "containments": ["ownedMember"]},
        "Package": {"supertypes": ["Namespace"]},
        "Type": {"abstract": True, "supertypes": ["Namespace"], "containments": ["ownedFeature"]},
        "Classifier": {"abstract": True, "supertypes": ["Type"]},
        "Definition": {"abstract": True, "supertypes": ["Classifier"]},
        "OccurrenceDefinition": {"supertypes": ["Definition"]},
        "ConstraintDefinition": {"supertypes": ["OccurrenceDefinition"], "attributes": {"text": "string"}},
        "RequirementDefinition": {
            "supertypes": ["ConstraintDefinition"],
            "attributes": {"reqId": "string", "status": "string"},
        },
        "RequirementUsage": {
            "supertypes": ["Type"],
            "attributes": {
                "reqId": "string",
                "requirementDefinition": {"kind": "owner", "containment": "ownedFeature"},
            },
        },
        "PartUsage": {"supertypes": ["Type"]},
        "ActionUsage": {"supertypes": ["Type"]},
        "Relationship": {
            "abstract": True,
            "supertypes": ["Element"],
            "attributes": {"source": "reference", "target": "reference"},
        },
        "DeriveRequirement": {"supertypes": ["Relationship"]},
        "Refine": {"supertypes": ["Relationship"]},
        "Satisfy": {"supertypes": ["Relationship"]},
        "Trace": {"supertypes": ["Relationship"]},
    },
}


@pytest.fixture
def mini_schema_data() -> dict:
    """A small but complete schema document (17 classes)."""
    return copy.deepcopy(MINI_SCHEMA)


@pytest.fixture
def mini_registry(mini_schema_data) -> SchemaRegistry:
    return parse_schema(mini_schema_data, origin="mini")


@pytest.fixture
def mini_schema_file(tmp_path, mini_schema_data) -> Path:
    path = tmp_path / "mini.yml"
    _write_yaml(path, mini_schema_data)
    return path


@pytest.fixture(scope="session")
def registry() -> SchemaRegistry:
    """The bundled SysML schema."""
    return load_schema()


# =============================================================================
# Store and Service Fixtures
# =============================================================================


@pytest.fixture
def data_root(tmp_path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def store(data_root) -> ElementStore:
    return ElementStore(data_root)


@pytest.fixture
def service(registry, store) -> ElementService:
    return ElementService(registry, store)


@pytest.fixture
def trace(service) -> TraceabilityService:
    return TraceabilityService(service)


@pytest.fixture
def populated(service):
    """A project with a definition, a contained usage, a part and a relation."""
    project = "demo"
    definition = service.create(
        project,
        "RequirementDefinition",
        {"elementId": "REQ-1", "reqId": "R-001", "declaredName": "Battery capacity", "status": "approved"},
    )
    usage = service.create(project, "RequirementUsage", {"elementId": "USE-1", "requirementDefinition": "REQ-1"})
    part = service.create(project, "PartUsage", {"elementId": "PART-1", "declaredName": "Battery pack"})
    relation = service.create(project, "Satisfy", {"elementId": "SAT-1", "source": "PART-1", "target": "REQ-1"})
    return project, definition, usage, part, relation


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def sample_pyproject(tmp_path) -> Path:
    """Create a sample pyproject.toml with reqgraph config."""
    content = """
[tool.reqgraph]
data_root = "store"
business_key = "code"
relation_fields = ["source", "target", "satisfiedBy"]
default_page_size = 25
"""
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(content)
    return pyproject


@pytest.fixture
def empty_pyproject(tmp_path) -> Path:
    """Create a pyproject.toml without reqgraph section."""
    content = """
[project]
name = "test-project"
version = "0.1.0"
"""
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(content)
    return pyproject


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()
