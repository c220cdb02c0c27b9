"""Tests for reqgraph.schema.registry module."""

import pytest
from conftest import _write_yaml

from reqgraph.core.errors import InvalidArgumentError, SchemaLoadError
from reqgraph.schema.registry import REQUIRED_CHAIN, load_schema, parse_schema


class TestBundledSchema:
    def test_declares_at_least_100_classes(self, registry):
        assert len(registry) >= 100

    def test_required_chain_present(self, registry):
        for name in REQUIRED_CHAIN:
            assert registry.is_valid_type(name)

    def test_chain_is_single_inheritance_line(self, registry):
        for parent, child in zip(REQUIRED_CHAIN, REQUIRED_CHAIN[1:]):
            assert registry.is_subtype(child, parent)

    def test_inherited_attributes(self, registry):
        names = {a.name for a in registry.attributes_of("RequirementDefinition")}
        assert {"elementId", "declaredName", "text", "reqId", "status"} <= names

    def test_attribute_records_declaring_class(self, registry):
        attr = registry.attribute("RequirementDefinition", "text")
        assert attr is not None
        assert attr.declared_by == "ConstraintDefinition"

    def test_supertypes_nearest_first(self, registry):
        supertypes = registry.supertypes_of("RequirementDefinition")
        assert supertypes[0] == "ConstraintDefinition"
        assert "Element" in supertypes

    def test_containment_features_are_inherited(self, registry):
        assert registry.is_containment_feature("RequirementDefinition", "ownedFeature")
        assert registry.is_containment_feature("RequirementDefinition", "ownedMember")
        assert not registry.is_containment_feature("Package", "ownedFeature")

    def test_owner_references(self, registry):
        assert registry.owner_references("RequirementUsage") == {
            "owningNamespace": "ownedMember",
            "requirementDefinition": "ownedFeature",
        }

    def test_reference_attributes(self, registry):
        assert registry.reference_attributes("DeriveRequirement") == frozenset({"source", "target"})

    def test_abstract_classes(self, registry):
        assert registry.is_abstract("Element")
        assert not registry.is_abstract("RequirementDefinition")

    def test_subtypes_include_self(self, registry):
        subtypes = registry.subtypes_of("RequirementUsage")
        assert "RequirementUsage" in subtypes
        assert "SatisfyRequirementUsage" in subtypes
        assert "RequirementDefinition" not in subtypes

    def test_unknown_type(self, registry):
        assert not registry.is_valid_type("Spaceship")
        assert "Spaceship" not in registry
        with pytest.raises(InvalidArgumentError, match="Unknown type: Spaceship"):
            registry.attributes_of("Spaceship")


class TestLoadSchema:
    def test_load_from_file(self, mini_schema_file):
        registry = load_schema(mini_schema_file, min_classes=10)
        assert registry.name == "mini"
        assert len(registry) == 17

    def test_missing_file(self, tmp_path):
        with pytest.raises(SchemaLoadError, match="not found"):
            load_schema(tmp_path / "nope.yml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("classes: [unclosed\n")
        with pytest.raises(SchemaLoadError, match="Invalid YAML"):
            load_schema(path)

    def test_too_few_classes(self, mini_schema_file):
        with pytest.raises(SchemaLoadError, match="at least 100 required"):
            load_schema(mini_schema_file)

    def test_missing_required_class(self, tmp_path, mini_schema_data):
        del mini_schema_data["classes"]["RequirementDefinition"]
        path = tmp_path / "schema.yml"
        _write_yaml(path, mini_schema_data)
        with pytest.raises(SchemaLoadError, match="missing required classes: RequirementDefinition"):
            load_schema(path, min_classes=1)

    def test_broken_required_chain(self, tmp_path, mini_schema_data):
        mini_schema_data["classes"]["Definition"]["supertypes"] = ["Type"]
        path = tmp_path / "schema.yml"
        _write_yaml(path, mini_schema_data)
        with pytest.raises(SchemaLoadError, match="must inherit from 'Classifier'"):
            load_schema(path, min_classes=1)

    def test_custom_required_chain(self, mini_schema_file):
        registry = load_schema(mini_schema_file, min_classes=1, required_chain=("Element", "Relationship"))
        assert registry.is_subtype("Trace", "Relationship")


class TestParseSchema:
    def test_list_form(self):
        registry = parse_schema(
            {
                "classes": [
                    {"name": "Base", "abstract": True, "attributes": {"label": "string"}},
                    {"name": "Leaf", "supertypes": "Base"},
                ]
            }
        )
        assert registry.class_names == ["Base", "Leaf"]
        assert registry.attribute("Leaf", "label").declared_by == "Base"

    def test_diamond_inheritance(self):
        registry = parse_schema(
            {
                "classes": {
                    "Top": {"attributes": {"a": "string"}},
                    "Left": {"supertypes": ["Top"], "attributes": {"b": "integer"}},
                    "Right": {"supertypes": ["Top"], "attributes": {"c": "boolean"}},
                    "Bottom": {"supertypes": ["Left", "Right"]},
                }
            }
        )
        assert registry.supertypes_of("Bottom") == ("Left", "Right", "Top")
        assert {a.name for a in registry.attributes_of("Bottom")} == {"a", "b", "c"}

    def test_not_a_mapping(self):
        with pytest.raises(SchemaLoadError, match="'classes' entry"):
            parse_schema(["Element"])

    def test_duplicate_class(self):
        with pytest.raises(SchemaLoadError, match="twice"):
            parse_schema({"classes": [{"name": "A"}, {"name": "A"}]})

    def test_unknown_supertype(self):
        with pytest.raises(SchemaLoadError, match="unknown class 'Ghost'"):
            parse_schema({"classes": {"A": {"supertypes": ["Ghost"]}}})

    def test_unknown_attribute_kind(self):
        with pytest.raises(SchemaLoadError, match="unknown kind 'blob'"):
            parse_schema({"classes": {"A": {"attributes": {"x": "blob"}}}})

    def test_owner_without_containment(self):
        with pytest.raises(SchemaLoadError, match="needs a containment"):
            parse_schema({"classes": {"A": {"attributes": {"owner": {"kind": "owner"}}}}})

    def test_owner_with_undeclared_containment(self):
        with pytest.raises(SchemaLoadError, match="undeclared containment 'parts'"):
            parse_schema({"classes": {"A": {"attributes": {"owner": {"kind": "owner", "containment": "parts"}}}}})

    def test_inheritance_cycle(self):
        with pytest.raises(SchemaLoadError, match="inheritance cycle"):
            parse_schema({"classes": {"A": {"supertypes": ["B"]}, "B": {"supertypes": ["A"]}}})
