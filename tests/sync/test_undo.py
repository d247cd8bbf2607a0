"""Tests for restoring files and undoing single record changes."""

import asyncio

import pytest

from storesync.catalog.model import ChangeKind
from storesync.core.errors import CatalogIOError


def status(clone):
    return asyncio.run(clone.sync.get_status())


def only_change(clone, record_id, path="products.json"):
    return status(clone).changesets[path].find(record_id)


class TestRestoreFile:

    def test_restore_modified_file(self, alice):
        alice.edit(7, price=12.0)

        asyncio.run(alice.sync.restore_file("products.json"))

        assert status(alice).clean

    def test_restore_is_idempotent(self, alice):
        alice.edit(7, price=12.0)

        asyncio.run(alice.sync.restore_file("products.json"))
        asyncio.run(alice.sync.restore_file("products.json"))

        assert status(alice).clean
        assert alice.read()[1]["price"] == 10.0

    def test_other_files_are_left_alone(self, alice):
        alice.edit(7, price=12.0)
        alice.edit(1, file="coupons.json", amount=15)

        asyncio.run(alice.sync.restore_file("products.json"))

        assert status(alice).modified == ["coupons.json"]

    def test_restore_deleted_file(self, alice):
        (alice.path / "coupons.json").unlink()

        asyncio.run(alice.sync.restore_file("coupons.json"))

        assert alice.read("coupons.json")[0]["code"] == "SAVE10"

    def test_uncommitted_new_file_is_removed(self, alice):
        (alice.path / "notes.txt").write_text("todo\n")

        asyncio.run(alice.sync.restore_file("notes.txt"))

        assert not (alice.path / "notes.txt").exists()
        assert status(alice).clean


class TestUndoChange:

    def test_undo_added_record(self, alice):
        alice.write([*alice.read(), {"id": 9, "name": "Mug"}])
        change = only_change(alice, 9)
        assert change.kind is ChangeKind.ADDED

        asyncio.run(alice.sync.undo_change(change))

        assert status(alice).clean

    def test_undo_removed_record_restores_position(self, alice):
        alice.write([r for r in alice.read() if r["id"] != 3])
        change = only_change(alice, 3)
        assert change.kind is ChangeKind.REMOVED

        asyncio.run(alice.sync.undo_change(change))

        assert [r["id"] for r in alice.read()] == [3, 7]
        assert status(alice).clean

    def test_undo_modified_record(self, alice):
        alice.edit(7, price=12.0, isNew=True)

        asyncio.run(alice.sync.undo_change(only_change(alice, 7)))

        assert "isNew" not in alice.read()[1]
        assert status(alice).clean

    def test_other_changes_survive(self, alice):
        alice.edit(7, price=12.0)
        alice.edit(3, stock=0)

        asyncio.run(alice.sync.undo_change(only_change(alice, 7)))

        changeset = status(alice).changesets["products.json"]
        assert [c.record_id for c in changeset.changes] == [3]

    def test_stale_change_is_refused(self, alice):
        alice.write([*alice.read(), {"id": 9, "name": "Mug"}])
        change = only_change(alice, 9)
        asyncio.run(alice.sync.restore_file("products.json"))

        with pytest.raises(CatalogIOError, match="no longer"):
            asyncio.run(alice.sync.undo_change(change))

    def test_coupon_change(self, alice):
        alice.edit(1, file="coupons.json", enabled=False)
        change = only_change(alice, 1, "coupons.json")
        assert change.description == "SAVE10: Enabled changed: yes → no"

        asyncio.run(alice.sync.undo_change(change))

        assert status(alice).clean
