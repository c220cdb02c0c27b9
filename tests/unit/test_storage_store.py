"""Tests for reqgraph.storage.store module."""

import threading

import pytest
from conftest import _read_yaml

from reqgraph.core.errors import InvalidArgumentError, NotFoundError, StorageError
from reqgraph.core.models import Element, ProjectGraph
from reqgraph.storage.store import ElementStore, validate_project_id


class TestProjectIds:
    @pytest.mark.parametrize("project_id", ["demo", "Demo_2", "a.b-c"])
    def test_valid(self, project_id):
        assert validate_project_id(project_id) == project_id

    @pytest.mark.parametrize("project_id", ["", "..", "../etc", "a/b", ".hidden", "with space"])
    def test_invalid(self, project_id):
        with pytest.raises(InvalidArgumentError, match="Invalid project id"):
            validate_project_id(project_id)


class TestLoadProject:
    def test_missing_project_is_created_and_persisted(self, store, data_root):
        graph = store.load_project("demo")
        assert len(graph) == 0
        path = data_root / "projects" / "demo" / "model.yml"
        assert path.is_file()
        assert _read_yaml(path)["elements"] == []
        assert _read_yaml(path.parent / "metadata.yml")["projectId"] == "demo"

    def test_load_is_cached(self, store):
        assert store.load_project("demo") is store.load_project("demo")

    def test_load_reads_existing_document(self, data_root):
        first = ElementStore(data_root)
        first.save_project("demo", ProjectGraph("demo", roots=[Element(id="A", type="Package")]))
        second = ElementStore(data_root)
        assert second.load_project("demo").find("A") is not None

    def test_corrupt_document(self, store, data_root):
        path = data_root / "projects" / "demo" / "model.yml"
        path.parent.mkdir(parents=True)
        path.write_text("elements: {not: [a list\n")
        with pytest.raises(StorageError):
            store.load_project("demo")


class TestSaveProject:
    def test_save_writes_through(self, store, data_root):
        graph = store.load_project("demo")
        graph.roots.append(Element(id="A", type="Package", properties={"declaredName": "Top"}))
        store.save_project("demo", graph)
        document = _read_yaml(data_root / "projects" / "demo" / "model.yml")
        assert document["elements"][0]["data"] == {"elementId": "A", "declaredName": "Top"}

    def test_save_replaces_cache(self, store):
        replacement = ProjectGraph("demo", roots=[Element(id="B", type="Package")])
        store.save_project("demo", replacement)
        assert store.load_project("demo") is replacement

    def test_invalidate_cache_reloads_from_disk(self, store):
        store.save_project("demo", ProjectGraph("demo", roots=[Element(id="B", type="Package")]))
        cached = store.load_project("demo")
        store.invalidate_cache("demo")
        reloaded = store.load_project("demo")
        assert reloaded is not cached
        assert reloaded.find("B") is not None

    def test_invalidate_all(self, store):
        a = store.load_project("a")
        store.load_project("b")
        store.invalidate_cache()
        assert store.load_project("a") is not a


class TestListAndDelete:
    def test_list_projects(self, store):
        assert store.list_projects() == []
        store.load_project("zeta")
        store.load_project("alpha")
        assert store.list_projects() == ["alpha", "zeta"]

    def test_exists(self, store):
        assert not store.exists("demo")
        store.load_project("demo")
        assert store.exists("demo")

    def test_delete_project(self, store):
        store.load_project("demo")
        store.delete_project("demo")
        assert store.list_projects() == []
        assert not store.exists("demo")

    def test_delete_missing_project(self, store):
        with pytest.raises(NotFoundError):
            store.delete_project("ghost")


class TestLocking:
    def test_lock_is_reentrant(self, store):
        with store.lock("demo"):
            with store.lock("demo"):
                store.load_project("demo")

    def test_projects_do_not_share_locks(self, store):
        acquired = threading.Event()

        def other_project():
            with store.lock("other"):
                acquired.set()

        with store.lock("demo"):
            thread = threading.Thread(target=other_project)
            thread.start()
            assert acquired.wait(timeout=5)
            thread.join()
