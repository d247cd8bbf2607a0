"""Tests for status, remote checks and conflict previews on real clones."""

import asyncio
import json

import pytest

from storesync.core.errors import NotARepositoryError
from storesync.git.repository import Repository
from storesync.sync.service import CatalogSync


class TestGetStatus:

    def test_clean_clone(self, alice):
        status = asyncio.run(alice.sync.get_status())

        assert status.clean
        assert status.branch == "main"
        assert status.tracking == "origin/main"
        assert status.ahead == status.behind == 0
        assert not status.changesets

    def test_modified_record(self, alice):
        alice.edit(7, price=12.0)

        status = asyncio.run(alice.sync.get_status())

        assert not status.clean
        assert status.modified == ["products.json"]
        changeset = status.changesets["products.json"]
        assert changeset.descriptions == [
            "Lamp: Price changed: 10.00 → 12.00"
        ]
        assert status.record_changes == changeset.changes

    def test_added_record(self, alice):
        alice.write([*alice.read(), {"id": 9, "name": "Mug", "price": 4.5}])

        status = asyncio.run(alice.sync.get_status())

        added = status.changesets["products.json"].added
        assert [c.record_id for c in added] == [9]
        assert added[0].description == "Added product: Mug"

    def test_untracked_files_count_as_added(self, alice):
        (alice.path / "notes.txt").write_text("todo\n")

        status = asyncio.run(alice.sync.get_status())

        assert status.added == ["notes.txt"]
        assert not status.changesets

    def test_reformatting_only_has_no_record_changes(self, alice):
        """A file rewritten with different whitespace changes no record."""
        (alice.path / "products.json").write_text(json.dumps(alice.read()))

        status = asyncio.run(alice.sync.get_status())

        assert status.modified == ["products.json"]
        assert status.changesets == {}

    def test_not_a_repository(self, tmp_path):
        sync = CatalogSync(Repository(tmp_path))

        with pytest.raises(NotARepositoryError):
            asyncio.run(sync.get_status())


class TestRemoteChanges:

    def test_up_to_date(self, alice):
        changes = asyncio.run(alice.sync.check_remote_changes())

        assert not changes.has_remote_changes
        assert changes.up_to_date
        assert changes.message == "Your local copy is up to date"

    def test_remote_edit_is_described(self, alice, bob):
        bob.edit(3, stock=0)
        bob.commit_and_push("Sold out")

        changes = asyncio.run(alice.sync.check_remote_changes())

        assert changes.has_remote_changes
        assert changes.behind_by == 1
        assert changes.ahead_by == 0
        assert [f.path for f in changes.files] == ["products.json"]
        assert changes.changesets["products.json"].descriptions == [
            "Widget: Stock Quantity changed: 5 → 0"
        ]
        assert changes.message == "1 new change(s) available"

    def test_non_catalog_files_have_no_changeset(self, alice, bob):
        (bob.path / "README.md").write_text("shop catalog\n")
        bob.commit_and_push()

        changes = asyncio.run(alice.sync.check_remote_changes())

        assert [f.path for f in changes.files] == ["README.md"]
        assert changes.changesets == {}


class TestPotentialConflicts:

    def test_nothing_diverged(self, alice):
        alice.edit(7, price=12.0)

        preview = asyncio.run(alice.sync.check_potential_conflicts())

        assert preview.has_local_changes
        assert not preview.has_remote_changes
        assert not preview.diverged
        assert not preview.potential_conflicts

    def test_same_field_overlaps(self, alice, bob):
        bob.edit(3, name="Gizmo")
        bob.commit_and_push()
        alice.edit(3, name="Gadget")

        preview = asyncio.run(alice.sync.check_potential_conflicts())

        assert preview.diverged
        assert preview.potential_conflicts
        [record] = preview.records
        assert record.record_id == 3
        assert record.overlapping_fields == ["name"]

    def test_disjoint_fields_do_not_overlap(self, alice, bob):
        bob.edit(7, stock=0)
        bob.commit_and_push()
        alice.edit(7, price=12.0)

        preview = asyncio.run(alice.sync.check_potential_conflicts())

        assert preview.diverged
        assert not preview.potential_conflicts
        assert preview.records[0].local_fields == ["price"]
        assert preview.records[0].remote_fields == ["stock"]

    def test_delete_against_edit_overlaps(self, alice, bob):
        bob.edit(3, stock=0)
        bob.commit_and_push()
        alice.write([r for r in alice.read() if r["id"] != 3])

        preview = asyncio.run(alice.sync.check_potential_conflicts())

        assert preview.records[0].overlapping_fields == ["_exists", "stock"]


class TestValidateRemote:

    def test_matching_url(self, alice, remote):
        check = asyncio.run(
            alice.sync.validate_remote_matches(str(remote) + "/")
        )
        assert check.matches
        assert check.current_url == str(remote)

    def test_other_url(self, alice):
        check = asyncio.run(alice.sync.validate_remote_matches(
            "https://example.com/shop/catalog.git"
        ))
        assert not check.matches
