"""Tests for conflict sessions and their resolution on real merges."""

import asyncio

import pytest

from storesync.catalog.model import (
    ConflictKind,
    FieldSelection,
    ResolutionMethod,
)
from storesync.core.errors import NotAutoMergeableError, SyncError
from storesync.core.result import ConflictHandle


def diverge(alice, bob, record_id, remote_fields, local_fields,
            file="products.json"):
    """Bob pushes one edit, Alice commits a competing one and publishes."""
    bob.edit(record_id, file=file, **remote_fields)
    bob.commit_and_push("remote edit")
    alice.edit(record_id, file=file, **local_fields)
    outcome = asyncio.run(alice.sync.publish())
    assert isinstance(outcome, ConflictHandle)
    return outcome


def details(clone):
    return asyncio.run(clone.sync.get_conflict_details())


def test_no_conflict(alice):
    assert details(alice) is None

    with pytest.raises(SyncError, match="no conflict"):
        asyncio.run(alice.sync.resolve_conflict("local"))


class TestSession:

    def test_same_field_conflict(self, alice, bob):
        diverge(alice, bob, 3, {"name": "Gizmo"}, {"name": "Gadget"})

        session = details(alice)

        assert session.kind is ConflictKind.MERGE
        assert session.conflicted_file_paths == ["products.json"]
        assert session.message == "1 record(s) have conflicts"
        assert not session.can_auto_merge
        [record] = session.record_conflicts["products.json"]
        assert record.record_name == "Gadget"
        name = record.field("name")
        assert name.label == "Product Name"
        assert (name.local_value, name.remote_value) == ("Gadget", "Gizmo")

    def test_session_tracks_the_index(self, alice, bob):
        """The session is rebuilt from git each time it is asked for."""
        diverge(alice, bob, 3, {"name": "Gizmo"}, {"name": "Gadget"})
        first = details(alice)

        alice.git("checkout", "--theirs", "products.json")
        alice.git("add", "products.json")

        assert first.files
        assert details(alice).files == []

    def test_delete_against_edit(self, alice, bob):
        bob.edit(3, stock=0)
        bob.commit_and_push()
        alice.write([r for r in alice.read() if r["id"] != 3])
        asyncio.run(alice.sync.publish())

        [record] = details(alice).all_record_conflicts
        existence = record.field("_exists")
        assert existence.label == "Product Existence"
        assert existence.local_value is False
        assert existence.remote_value is True
        assert not record.can_auto_merge

        remaining = asyncio.run(
            alice.sync.resolve_conflict_with_field_selections([
                FieldSelection(record_id=3, field="_exists", use_local=False),
            ])
        )

        assert remaining is None
        assert [r["id"] for r in alice.read()] == [7, 3]
        assert alice.read()[1]["stock"] == 0

    def test_non_catalog_file(self, alice, bob):
        (bob.path / "README.md").write_text("bob\n")
        bob.commit_and_push()
        (alice.path / "README.md").write_text("alice\n")
        asyncio.run(alice.sync.publish(paths=["README.md"]))

        session = details(alice)
        [readme] = session.files
        assert readme.path == "README.md"
        assert not readme.is_catalog
        assert readme.record_conflicts == []

        with pytest.raises(NotAutoMergeableError, match="README.md"):
            asyncio.run(alice.sync.resolve_conflict("smart_merge"))
        assert details(alice) is not None

        asyncio.run(alice.sync.resolve_conflict("remote"))
        assert (alice.path / "README.md").read_text() == "bob\n"


class TestResolution:

    def test_custom_selection_takes_remote_value(self, alice, bob):
        diverge(alice, bob, 3, {"name": "Gizmo"}, {"name": "Gadget"})

        remaining = asyncio.run(
            alice.sync.resolve_conflict_with_field_selections([
                FieldSelection(record_id=3, field="name", use_local=False),
            ])
        )

        assert remaining is None
        assert alice.read()[0]["name"] == "Gizmo"

    def test_resolution_consumes_the_session(self, alice, bob):
        diverge(alice, bob, 7, {"stock": 0}, {"price": 12.0})

        asyncio.run(alice.sync.resolve_conflict(ResolutionMethod.SMART_MERGE))

        assert details(alice) is None
        assert not alice.repo.is_merging()
        assert alice.git("status", "--porcelain").strip() == ""
        parents = alice.git("log", "-1", "--format=%P").split()
        assert len(parents) == 2

        with pytest.raises(SyncError):
            asyncio.run(alice.sync.resolve_conflict("local"))

    def test_smart_merge_keeps_non_conflicted_records(self, alice, bob):
        """Records edited on one side only come through unchanged."""
        bob.edit(3, stock=1)
        bob.edit(7, stock=0)
        bob.commit_and_push()
        alice.edit(7, price=12.0)
        alice.write([*alice.read(), {"id": 9, "name": "Mug", "price": 4.0}])
        asyncio.run(alice.sync.publish())

        asyncio.run(alice.sync.resolve_conflict("smart_merge"))

        records = alice.read()
        assert [r["id"] for r in records] == [3, 7, 9]
        assert records[0]["stock"] == 1
        assert (records[1]["price"], records[1]["stock"]) == (12.0, 0)

    def test_keep_local(self, alice, bob):
        diverge(alice, bob, 3, {"name": "Gizmo"}, {"name": "Gadget"})

        asyncio.run(alice.sync.resolve_conflict("local"))

        assert alice.read()[0]["name"] == "Gadget"

    def test_abort_merge(self, alice, bob):
        diverge(alice, bob, 3, {"name": "Gizmo"}, {"name": "Gadget"})
        local_commit = alice.head()

        asyncio.run(alice.sync.abort_conflict())

        assert details(alice) is None
        assert not alice.repo.is_merging()
        assert alice.head() == local_commit
        assert alice.read()[0]["name"] == "Gadget"

    @pytest.mark.parametrize("method, winner", [("local", 0), ("remote", 1)])
    def test_binary_file_taken_byte_for_byte(self, alice, bob, method, winner):
        """A product image survives keep-local and keep-remote unchanged."""
        images = [bytes([0xFF, 0xFE, 0x00, n]) * 256 for n in (1, 2)]
        (bob.path / "images").mkdir()
        (bob.path / "images" / "p.jpg").write_bytes(images[1])
        bob.commit_and_push()
        (alice.path / "images").mkdir()
        (alice.path / "images" / "p.jpg").write_bytes(images[0])
        asyncio.run(alice.sync.publish(paths=["images/p.jpg"]))

        asyncio.run(alice.sync.resolve_conflict(method))

        assert (alice.path / "images" / "p.jpg").read_bytes() == images[winner]
        assert not alice.repo.is_merging()

    def test_abort_without_conflict_is_a_no_op(self, alice):
        asyncio.run(alice.sync.abort_conflict())
        assert details(alice) is None
