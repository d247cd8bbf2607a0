"""Tests for the publish workflow against a shared bare remote."""

import asyncio

import pytest

from storesync.catalog.model import ConflictKind, Resolution, ResolutionMethod
from storesync.core.errors import BusyError, NetworkError, NotAutoMergeableError
from storesync.core.result import ConflictHandle, Done


def publish(clone, **kwargs):
    return asyncio.run(clone.sync.publish(**kwargs))


def pull_plain(clone):
    clone.git("pull", "-q", "--no-rebase", "origin", "main")


class TestPublish:

    def test_publishes_catalog_edit(self, alice, bob):
        alice.edit(7, price=12.0)

        outcome = publish(alice)

        assert isinstance(outcome, Done)
        assert outcome.pushed
        assert outcome.commit == alice.head()
        assert outcome.message == "Changes published"
        assert outcome.status.clean
        pull_plain(bob)
        assert bob.read()[1]["price"] == 12.0

    def test_generated_commit_message(self, alice):
        alice.edit(7, price=12.0)
        alice.edit(1, file="coupons.json", amount=15)

        publish(alice)

        assert alice.git("log", "-1", "--format=%s").strip() == (
            "Update catalog via storesync: Modified 2 file(s)"
        )

    def test_explicit_message_and_paths(self, alice):
        alice.edit(7, price=12.0)
        alice.edit(1, file="coupons.json", amount=15)

        outcome = publish(alice, message="Lamp sale", paths=["products.json"])

        assert outcome.pushed
        assert alice.git("log", "-1", "--format=%s").strip() == "Lamp sale"
        assert outcome.status.modified == ["coupons.json"]

    def test_non_catalog_files_stay_local(self, alice):
        alice.edit(7, price=12.0)
        (alice.path / "notes.txt").write_text("todo\n")

        outcome = publish(alice)

        assert outcome.pushed
        assert outcome.status.added == ["notes.txt"]

    def test_nothing_to_publish(self, alice):
        outcome = publish(alice)

        assert isinstance(outcome, Done)
        assert not outcome.pushed
        assert outcome.commit is None
        assert outcome.message == "Nothing to publish"

    def test_unrelated_remote_changes_are_merged(self, alice, bob):
        bob.edit(1, file="coupons.json", enabled=False)
        bob.commit_and_push()
        alice.edit(7, price=12.0)

        outcome = publish(alice)

        assert outcome.pushed
        assert alice.read("coupons.json")[0]["enabled"] is False
        assert alice.head() == alice.head("origin/main")

    def test_unpushed_commit_is_published(self, alice):
        alice.edit(7, price=12.0)
        alice.commit("local only")

        outcome = publish(alice)

        assert outcome.pushed
        assert outcome.commit is None
        assert alice.head() == alice.head("origin/main")

    def test_rejected_push_fetches_again(self, alice, bob, monkeypatch):
        """Bob pushes between Alice's fetch and her push."""
        push = alice.repo.push
        calls = []

        def racing_push():
            calls.append(1)
            if len(calls) == 1:
                bob.edit(1, file="coupons.json", amount=20)
                bob.commit_and_push()
            push()

        monkeypatch.setattr(alice.repo, "push", racing_push)
        alice.edit(7, price=12.0)

        outcome = publish(alice)

        assert outcome.pushed
        assert len(calls) == 2
        assert alice.read("coupons.json")[0]["amount"] == 20


class TestSelectivePublish:
    """Edits outside the published paths are set aside and come back."""

    def test_remote_change_to_unpublished_file(self, alice, bob):
        bob.edit(1, file="coupons.json", amount=20)
        bob.commit_and_push()
        alice.edit(7, price=12.0)
        alice.edit(1, file="coupons.json", enabled=False)

        outcome = publish(alice, paths=["products.json"])

        assert isinstance(outcome, Done)
        assert outcome.pushed
        assert outcome.status.modified == ["coupons.json"]
        coupon = alice.read("coupons.json")[0]
        assert (coupon["amount"], coupon["enabled"]) == (20, False)
        assert alice.repo.stash_count() == 0
        pull_plain(bob)
        assert bob.read()[1]["price"] == 12.0
        assert bob.read("coupons.json")[0]["enabled"] is True

    def test_clash_with_unpublished_edit_pauses(self, alice, bob):
        bob.edit(1, file="coupons.json", amount=20)
        bob.commit_and_push()
        alice.edit(7, price=12.0)
        alice.edit(1, file="coupons.json", amount=15)

        outcome = publish(alice, paths=["products.json"])

        assert isinstance(outcome, ConflictHandle)
        assert outcome.operation == "publish"
        assert outcome.conflict_kind is ConflictKind.STASH
        assert outcome.conflicted_files == ["coupons.json"]
        assert alice.head() == alice.head("origin/main")

        assert asyncio.run(alice.sync.resolve_conflict("local")) is None
        assert alice.read("coupons.json")[0]["amount"] == 15
        assert alice.repo.stash_count() == 0

    def test_failed_push_gives_edits_back(self, alice, monkeypatch):
        def offline():
            raise NetworkError("Could not reach the remote")

        monkeypatch.setattr(alice.repo, "push", offline)
        alice.edit(7, price=12.0)
        alice.edit(1, file="coupons.json", amount=15)

        with pytest.raises(NetworkError):
            publish(alice, paths=["products.json"])

        assert alice.repo.stash_count() == 0
        assert alice.read("coupons.json")[0]["amount"] == 15


class TestPublishConflicts:

    def test_disjoint_fields_pause_then_smart_merge(self, alice, bob):
        """Local price and remote stock edits on the same product."""
        bob.edit(7, stock=0)
        bob.commit_and_push()
        alice.edit(7, price=12.0)

        outcome = publish(alice)

        assert isinstance(outcome, ConflictHandle)
        assert outcome.operation == "publish"
        assert outcome.conflict_kind is ConflictKind.MERGE
        assert outcome.conflicted_files == ["products.json"]

        session = asyncio.run(alice.sync.get_conflict_details())
        [record] = session.all_record_conflicts
        assert record.record_id == 7
        assert record.can_auto_merge

        outcome = asyncio.run(alice.sync.continue_publish(
            resolution=Resolution(method=ResolutionMethod.SMART_MERGE)
        ))

        assert isinstance(outcome, Done)
        assert outcome.pushed
        lamp = alice.read()[1]
        assert (lamp["price"], lamp["stock"]) == (12.0, 0)
        pull_plain(bob)
        assert bob.read() == alice.read()

    def test_same_field_needs_a_choice(self, alice, bob):
        bob.edit(3, name="Gizmo")
        bob.commit_and_push()
        alice.edit(3, name="Gadget")

        outcome = publish(alice)
        assert isinstance(outcome, ConflictHandle)

        with pytest.raises(NotAutoMergeableError):
            asyncio.run(alice.sync.continue_publish(
                resolution=Resolution(method=ResolutionMethod.SMART_MERGE)
            ))
        # Refused up front: the conflict is still open and untouched
        assert asyncio.run(alice.sync.get_conflict_details()) is not None
        assert alice.repo.is_merging()

        outcome = asyncio.run(alice.sync.continue_publish(
            resolution=Resolution(method=ResolutionMethod.REMOTE)
        ))

        assert outcome.pushed
        assert alice.read()[0]["name"] == "Gizmo"

    def test_publish_refused_while_conflict_open(self, alice, bob):
        bob.edit(3, name="Gizmo")
        bob.commit_and_push()
        alice.edit(3, name="Gadget")
        publish(alice)

        with pytest.raises(BusyError):
            publish(alice)

    def test_continue_without_resolution_is_refused(self, alice, bob):
        bob.edit(3, name="Gizmo")
        bob.commit_and_push()
        alice.edit(3, name="Gadget")
        publish(alice)

        with pytest.raises(BusyError):
            asyncio.run(alice.sync.continue_publish())

    def test_continue_after_separate_resolve(self, alice, bob):
        bob.edit(3, name="Gizmo")
        bob.commit_and_push()
        alice.edit(3, name="Gadget")
        publish(alice)

        assert asyncio.run(alice.sync.resolve_conflict("local")) is None
        outcome = asyncio.run(alice.sync.continue_publish())

        assert outcome.pushed
        pull_plain(bob)
        assert bob.read()[0]["name"] == "Gadget"


def test_second_orchestration_is_busy(alice):
    with alice.repo.lock.hold("pull"):
        with pytest.raises(BusyError, match="pull is in progress"):
            publish(alice)
    assert not alice.repo.lock.locked
