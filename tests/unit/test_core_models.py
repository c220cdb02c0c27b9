"""Tests for reqgraph.core.models module."""

import pytest

from reqgraph.core.errors import NotFoundError
from reqgraph.core.models import Element, PagedResult, ProjectGraph, ValidationResult, ValidationViolation


def _tree() -> ProjectGraph:
    leaf = Element(id="C", type="RequirementUsage", parent_id="B", containing_feature="ownedFeature")
    middle = Element(
        id="B",
        type="RequirementDefinition",
        parent_id="A",
        containing_feature="ownedMember",
        children={"ownedFeature": [leaf]},
    )
    root = Element(id="A", type="Package", children={"ownedMember": [middle]})
    other = Element(id="D", type="PartUsage")
    return ProjectGraph(project_id="p", roots=[root, other])


class TestElement:
    def test_name_prefers_declared_name(self):
        element = Element(id="1", type="Package", properties={"declaredName": "Power", "name": "ignored"})
        assert element.name == "Power"

    def test_name_falls_back_to_name(self):
        assert Element(id="1", type="Package", properties={"name": "Power"}).name == "Power"
        assert Element(id="1", type="Package").name is None

    def test_iter_subtree_preorder(self):
        graph = _tree()
        assert [e.id for e in graph.roots[0].iter_subtree()] == ["A", "B", "C"]

    def test_to_dict(self):
        element = Element(id="X", type="PartUsage", properties={"tags": ["a"]}, parent_id="P")
        data = element.to_dict()
        assert data == {"id": "X", "type": "PartUsage", "tags": ["a"], "parentId": "P"}
        data["tags"].append("b")
        assert element.properties["tags"] == ["a"]


class TestProjectGraph:
    def test_iter_elements_flattens(self):
        assert [e.id for e in _tree().iter_elements()] == ["A", "B", "C", "D"]
        assert len(_tree()) == 4

    def test_find(self):
        graph = _tree()
        assert graph.find("C").type == "RequirementUsage"
        assert graph.find("Z") is None

    def test_ancestors_nearest_first(self):
        assert [e.id for e in _tree().ancestors("C")] == ["B", "A"]
        assert _tree().ancestors("A") == []

    def test_ancestors_stops_on_loop(self):
        a = Element(id="A", type="Package", parent_id="B", containing_feature="ownedMember")
        b = Element(id="B", type="Package", parent_id="A", containing_feature="ownedMember")
        graph = ProjectGraph(project_id="p", roots=[a, b])
        assert [e.id for e in graph.ancestors("A")] == ["B"]

    def test_container_of(self):
        graph = _tree()
        assert graph.container_of(graph.find("D")) is graph.roots
        assert graph.container_of(graph.find("C")) is graph.find("B").children["ownedFeature"]

    def test_container_of_detached(self):
        graph = _tree()
        with pytest.raises(KeyError):
            graph.container_of(Element(id="Q", type="Package", parent_id="missing", containing_feature="x"))

    def test_copy_is_independent(self):
        graph = _tree()
        snapshot = graph.copy()
        snapshot.find("C").properties["text"] = "changed"
        assert "text" not in graph.find("C").properties


class TestValidationViolation:
    def test_str_format(self):
        violation = ValidationViolation("BROKEN_REF", "E1", "references missing element Z", details="target=Z")
        assert str(violation) == "[BROKEN_REF] E1: references missing element Z (target=Z)"

    def test_to_dict(self):
        violation = ValidationViolation("DUP_REQID", "A", "dup", related_ids=["A", "B"])
        assert violation.to_dict()["relatedIds"] == ["A", "B"]
        assert violation.to_dict()["ruleCode"] == "DUP_REQID"

    def test_result_ok(self):
        assert ValidationResult().ok
        assert not ValidationResult(violations=[ValidationViolation("BROKEN_REF", "A", "x")]).ok


class TestPagedResult:
    def test_to_dict_uses_camel_case_totals(self):
        page = PagedResult(
            content=[Element(id="A", type="Package")],
            page=0,
            size=1,
            total_elements=3,
            total_pages=3,
            first=True,
            last=False,
        )
        data = page.to_dict()
        assert data["totalElements"] == 3
        assert data["totalPages"] == 3
        assert data["content"] == [{"id": "A", "type": "Package"}]


class TestErrors:
    def test_not_found_message_is_not_quoted(self):
        assert str(NotFoundError("Element not found: X")) == "Element not found: X"

    def test_not_found_is_key_error(self):
        with pytest.raises(KeyError):
            raise NotFoundError("missing")
