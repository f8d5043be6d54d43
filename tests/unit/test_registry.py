"""
Unit tests for SessionRegistry.

These tests use a temporary directory for the registry file, allowing us
to test all persistence operations without touching production data.
"""

import json
import multiprocessing
import threading

import pytest

from agentdeck.exceptions import PersistenceError, SessionExistsError, SessionNotFoundError
from agentdeck.registry import SessionRegistry
from agentdeck.session import (
    STATE_EXITED,
    STATE_IDLE,
    STATE_WAITING_USER,
    STATE_WORKING,
    Session,
    SessionCollection,
)

from tests.fixtures import create_session, populate_registry


@pytest.fixture
def registry(tmp_path):
    return SessionRegistry(tmp_path / "sessions.json")


def _toggle_then_add(path, worker, toggles):
    # Runs in a forked child; each child gets its own flock file descriptor
    registry = SessionRegistry(path)
    for _ in range(toggles):
        registry.toggle_flag("a")
    registry.add(create_session(f"p{worker}"))


class TestRegistryBasics:
    """Test basic CRUD operations"""

    def test_missing_file_is_empty(self, registry):
        collection = registry.load()

        assert len(collection) == 0
        assert collection.ordered_names == []

    def test_empty_file_is_empty(self, registry):
        registry.path.write_text("")

        assert len(registry.load()) == 0

    def test_corrupt_file_raises_persistence_error(self, registry):
        registry.path.write_text("{not json")

        with pytest.raises(PersistenceError):
            registry.load()

    def test_non_object_document_raises(self, registry):
        registry.path.write_text("[1, 2, 3]")

        with pytest.raises(PersistenceError):
            registry.load()

    def test_default_path_uses_state_dir(self, isolated_state_dir):
        assert SessionRegistry().path == isolated_state_dir / "sessions.json"

    def test_add_and_get(self, registry):
        registry.add(create_session("alpha", display_name="Alpha"))

        session = registry.get("alpha")
        assert session is not None
        assert session.display_name == "Alpha"
        assert session.state == STATE_IDLE

    def test_get_missing_returns_none(self, registry):
        assert registry.get("nope") is None

    def test_add_duplicate_raises(self, registry):
        registry.add(create_session("alpha"))

        with pytest.raises(SessionExistsError):
            registry.add(create_session("alpha"))

    def test_add_puts_session_at_head(self, registry):
        registry.add(create_session("first"))
        registry.add(create_session("second"))

        assert registry.load().ordered_names == ["second", "first"]

    def test_delete(self, registry):
        populate_registry(registry, "a", "b")

        registry.delete("a")

        assert registry.get("a") is None
        assert registry.load().ordered_names == ["b"]

    def test_delete_missing_raises(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.delete("ghost")

    def test_persisted_document_shape(self, registry):
        registry.add(create_session("alpha"))

        data = json.loads(registry.path.read_text())
        assert data["version"] == 1
        assert data["order"] == ["alpha"]
        assert "alpha" in data["sessions"]
        assert "name" not in data["sessions"]["alpha"]
        assert data["revision"] == 1

    def test_revision_increments_on_every_write(self, registry):
        registry.add(create_session("alpha"))
        registry.toggle_flag("alpha")

        assert registry.load().revision == 2

    def test_no_temp_files_left_behind(self, registry, tmp_path):
        populate_registry(registry, "a", "b", "c")

        leftovers = [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_save_replaces_collection(self, registry):
        populate_registry(registry, "a", "b")
        collection = SessionCollection(
            sessions={"c": create_session("c")},
            ordered_names=["c"],
        )

        registry.save(collection)

        loaded = registry.load()
        assert list(loaded.sessions) == ["c"]
        assert loaded.revision > 2


class TestRegistryOrder:
    """Test the manual order"""

    def test_swap_positions(self, registry):
        populate_registry(registry, "a", "b", "c")

        registry.swap_positions("a", "c")

        assert registry.load().ordered_names == ["c", "b", "a"]

    def test_swap_twice_restores_order(self, registry):
        populate_registry(registry, "a", "b", "c", "d")

        registry.swap_positions("b", "d")
        registry.swap_positions("b", "d")

        assert registry.load().ordered_names == ["a", "b", "c", "d"]

    def test_swap_unknown_name_raises(self, registry):
        populate_registry(registry, "a")

        with pytest.raises(SessionNotFoundError):
            registry.swap_positions("a", "ghost")

    def test_missing_order_falls_back_to_alphabetical(self, registry):
        registry.path.write_text(json.dumps({
            "sessions": {"zeta": {}, "alpha": {}, "mid": {}},
        }))

        assert registry.load().ordered_names == ["alpha", "mid", "zeta"]

    def test_stale_and_missing_names_are_normalized(self, registry):
        registry.path.write_text(json.dumps({
            "order": ["gone", "b"],
            "sessions": {"a": {}, "b": {}, "c": {}},
        }))

        assert registry.load().ordered_names == ["b", "a", "c"]

    def test_rename_keeps_position(self, registry):
        populate_registry(registry, "a", "b", "c")

        registry.rename("b", "bee", display_name="Bee")

        assert registry.load().ordered_names == ["a", "bee", "c"]
        assert registry.get("bee").display_name == "Bee"
        assert registry.get("b") is None

    def test_rename_to_taken_name_raises(self, registry):
        populate_registry(registry, "a", "b")

        with pytest.raises(SessionExistsError):
            registry.rename("a", "b")


class TestRegistryArchive:
    """Test archive filtering"""

    def test_archived_hidden_by_default(self, registry):
        populate_registry(registry, "a", "b")

        assert registry.toggle_archive("a") is True

        assert registry.load().ordered_names == ["b"]
        assert [s.name for s in registry.list()] == ["b"]

    def test_archived_included_on_request(self, registry):
        populate_registry(registry, "a", "b")
        registry.toggle_archive("a")

        assert [s.name for s in registry.list(include_archived=True)] == ["a", "b"]

    def test_get_returns_archived(self, registry):
        populate_registry(registry, "a")
        registry.toggle_archive("a")

        assert registry.get("a").is_archived is True

    def test_unarchive_restores_position(self, registry):
        populate_registry(registry, "a", "b", "c")
        registry.toggle_archive("b")
        registry.toggle_archive("b")

        assert registry.load().ordered_names == ["a", "b", "c"]


class TestRegistryMutators:
    """Test field updates"""

    def test_update_state(self, registry):
        populate_registry(registry, "a")

        registry.update_state("a", STATE_WORKING, execution_id="exec-1")

        session = registry.get("a")
        assert session.state == STATE_WORKING
        assert session.execution_id == "exec-1"

    def test_update_state_without_execution_id_keeps_existing(self, registry):
        registry.add(create_session("a", execution_id="exec-1"))

        registry.update_state("a", STATE_EXITED)

        assert registry.get("a").execution_id == "exec-1"

    def test_update_state_rejects_invalid_state(self, registry):
        populate_registry(registry, "a")

        with pytest.raises(ValueError):
            registry.update_state("a", "sleeping")

    def test_update_state_missing_session(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.update_state("ghost", STATE_IDLE)

    def test_unknown_persisted_state_coerced_to_idle(self, registry):
        registry.path.write_text(json.dumps({
            "order": ["a"],
            "sessions": {"a": {"state": "confused"}},
        }))

        assert registry.get("a").state == STATE_IDLE

    def test_unknown_persisted_fields_are_ignored(self, registry):
        registry.path.write_text(json.dumps({
            "sessions": {"a": {"state": "working", "from_the_future": 1}},
        }))

        assert registry.get("a").state == STATE_WORKING

    def test_toggle_flag(self, registry):
        populate_registry(registry, "a")

        assert registry.toggle_flag("a") is True
        assert registry.toggle_flag("a") is False

    def test_set_comment_and_clear(self, registry):
        populate_registry(registry, "a")

        registry.set_comment("a", "  needs review  ")
        assert registry.get("a").comment == "needs review"

        registry.set_comment("a", "   ")
        assert registry.get("a").comment == ""

    def test_set_status_and_clear(self, registry):
        populate_registry(registry, "a")

        registry.set_status("a", "review")
        assert registry.get("a").status == "review"

        registry.set_status("a", None)
        assert registry.get("a").status is None

    def test_update_display_name(self, registry):
        populate_registry(registry, "a")

        registry.update_display_name("a", "A (renamed)")

        assert registry.get("a").display_name == "A (renamed)"

    def test_mutation_updates_last_updated(self, registry):
        session = registry.add(create_session("a"))
        before = session.last_updated

        registry.toggle_flag("a")

        assert registry.get("a").last_updated >= before


class TestRegistryCompanions:
    """Test companion shell links"""

    def _add_with_shell(self, registry):
        populate_registry(registry, "a", "b")
        registry.add(create_session("a-shell", parent_name="a"))
        registry.link_shell_session("a", "a-shell")

    def test_companion_is_not_ordered(self, registry):
        self._add_with_shell(registry)

        assert registry.load().ordered_names == ["a", "b"]

    def test_list_places_companion_after_parent(self, registry):
        self._add_with_shell(registry)

        assert [s.name for s in registry.list()] == ["a", "a-shell", "b"]

    def test_link_sets_both_directions(self, registry):
        self._add_with_shell(registry)

        assert registry.get("a").shell_session == "a-shell"
        assert registry.get("a-shell").parent_name == "a"

    def test_delete_companion_clears_reference(self, registry):
        self._add_with_shell(registry)

        registry.delete("a-shell")

        assert registry.get("a").shell_session is None

    def test_delete_parent_orphans_companion(self, registry):
        self._add_with_shell(registry)

        registry.delete("a")

        orphan = registry.get("a-shell")
        assert orphan.parent_name is None
        assert "a-shell" in registry.load().ordered_names

    def test_rename_parent_updates_companion_link(self, registry):
        self._add_with_shell(registry)

        registry.rename("a", "alpha")

        assert registry.get("a-shell").parent_name == "alpha"


class TestRegistryConcurrency:
    """Test concurrent writers"""

    def test_concurrent_adds_are_all_kept(self, registry):
        errors = []

        def add(i):
            try:
                registry.add(create_session(f"s{i}"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=add, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(registry.load()) == 20

    def test_concurrent_toggles_are_serialized(self, registry):
        populate_registry(registry, "a")

        threads = [threading.Thread(target=registry.toggle_flag, args=("a",)) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # An even number of toggles leaves the flag where it started
        assert registry.get("a").is_flagged is False
        assert registry.load().revision == 11

    @pytest.mark.slow
    @pytest.mark.skipif(
        "fork" not in multiprocessing.get_all_start_methods(), reason="needs fork"
    )
    def test_concurrent_processes_lose_no_updates(self, registry):
        populate_registry(registry, "a")
        ctx = multiprocessing.get_context("fork")

        workers = [
            ctx.Process(target=_toggle_then_add, args=(registry.path, i, 5))
            for i in range(4)
        ]
        for p in workers:
            p.start()
        for p in workers:
            p.join(timeout=30)

        assert [p.exitcode for p in workers] == [0, 0, 0, 0]
        document = json.loads(registry.path.read_text())
        assert sorted(document["sessions"]) == ["a", "p0", "p1", "p2", "p3"]
        # 20 toggles leave the flag unset; 1 + 20 + 4 writes in total
        assert document["sessions"]["a"]["is_flagged"] is False
        assert document["revision"] == 25

    def test_two_registry_instances_share_state(self, registry):
        other = SessionRegistry(registry.path)
        registry.add(create_session("a"))

        other.update_state("a", STATE_WAITING_USER)

        assert registry.get("a").state == STATE_WAITING_USER


class TestRevision:

    def test_revision_none_when_missing(self, registry):
        assert registry.revision() is None

    def test_revision_changes_after_write(self, registry):
        registry.add(create_session("a"))
        first = registry.revision()

        registry.add(create_session("b"))

        assert registry.revision() != first

    def test_revision_stable_without_writes(self, registry):
        registry.add(create_session("a"))

        assert registry.revision() == registry.revision()
