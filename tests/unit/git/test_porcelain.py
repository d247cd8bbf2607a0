"""Tests for porcelain v1 status parsing."""

from storesync.git.porcelain import parse_status


def z(*entries):
    return "\0".join(entries) + "\0"


def test_clean_tracking_branch():
    status = parse_status(z("## main...origin/main"))
    assert status.branch == "main"
    assert status.tracking == "origin/main"
    assert status.ahead == status.behind == 0
    assert status.is_clean


def test_ahead_and_behind():
    status = parse_status(z("## main...origin/main [ahead 2, behind 1]"))
    assert status.ahead == 2
    assert status.behind == 1


def test_branch_without_commits():
    status = parse_status(z("## No commits yet on main"))
    assert status.branch == "main"
    assert status.tracking is None


def test_detached_head():
    assert parse_status(z("## HEAD (no branch)")).branch is None


def test_file_buckets():
    status = parse_status(z(
        "## main",
        " M products.json",
        "M  coupons.json",
        "A  images/mug.jpg",
        " D old.json",
        "?? notes.txt",
        "UU prices.json",
    ))

    assert status.modified == ["products.json", "coupons.json"]
    assert status.added == ["images/mug.jpg"]
    assert status.deleted == ["old.json"]
    assert status.untracked == ["notes.txt"]
    assert status.conflicted == ["prices.json"]
    assert status.staged == ["coupons.json", "images/mug.jpg"]
    assert not status.is_clean


def test_rename_consumes_source_path():
    status = parse_status(z("## main", "R  new.json", "old.json", " M a.json"))
    assert status.renamed == ["new.json"]
    assert status.modified == ["a.json"]


def test_changed_files_are_unique_and_sorted():
    status = parse_status(z("## main", "?? b.json", " M a.json"))
    assert status.changed_files == ["a.json", "b.json"]
