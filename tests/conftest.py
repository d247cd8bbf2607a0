"""Pytest configuration and fixtures for storesync tests."""

import json
import subprocess
import sys
import tempfile
from pathlib import Path

import pytest

from storesync.catalog.files import CatalogRegistry
from storesync.core.config import SyncConfig
from storesync.core.log import ConsoleSink, setup_logger
from storesync.git.repository import Repository
from storesync.sync.service import CatalogSync

PRODUCTS = [
    {"id": 3, "name": "Widget", "price": 10.0, "stock": 5,
     "category": "tools"},
    {"id": 7, "name": "Lamp", "price": 10.0, "stock": 5,
     "category": "home", "images": ["lamp.jpg"]},
]

COUPONS = [
    {"id": 1, "code": "SAVE10", "type": "percent", "amount": 10,
     "minSpend": 50, "enabled": True},
]


@pytest.fixture(autouse=True, scope="session")
def configure_logging():
    """Console-only logging at debug level for the whole session."""
    setup_logger(
        log_root=Path(tempfile.gettempdir()) / "storesync-tests",
        repo_name="test",
        console=ConsoleSink(level="debug"),
    )


@pytest.fixture(scope="session")
def test_config():
    """Config loaded from the package defaults, without CLI parsing."""
    from storesync.core.config import State

    old_argv = sys.argv
    sys.argv = ['storesync']
    try:
        state = State()
        return state.config
    finally:
        sys.argv = old_argv


def git(cwd: Path, *args: str) -> str:
    """Run git in cwd and return stdout; raises on failure."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


class Clone:
    """One working copy of the shared test remote."""

    def __init__(self, path: Path):
        self.path = path
        self.repo = Repository(path, remote="origin", branch="main")
        self.sync = CatalogSync(
            self.repo,
            CatalogRegistry(),
            SyncConfig(backoff_base=0.0, backoff_cap=0.0),
        )

    def git(self, *args: str) -> str:
        return git(self.path, *args)

    def read(self, name: str = "products.json") -> list[dict]:
        return json.loads((self.path / name).read_text())

    def write(self, records: list[dict], name: str = "products.json"):
        (self.path / name).write_text(json.dumps(records, indent=2) + "\n")

    def edit(self, record_id: int, *, file: str = "products.json", **fields):
        """Change fields of one record in the working tree.

        The catalog is picked with ``file``, so records can still be
        given a new ``name``.
        """
        records = self.read(file)
        for record in records:
            if record["id"] == record_id:
                record.update(fields)
        self.write(records, file)

    def commit(self, message: str = "edit") -> None:
        self.git("add", "-A")
        self.git("commit", "-q", "-m", message)

    def commit_and_push(self, message: str = "edit") -> None:
        self.commit(message)
        self.git("push", "-q", "origin", "HEAD:main")

    def head(self, ref: str = "HEAD") -> str:
        return self.git("rev-parse", ref).strip()


def _configure(path: Path) -> None:
    git(path, "config", "user.name", "Test User")
    git(path, "config", "user.email", "test@example.com")
    git(path, "config", "commit.gpgsign", "false")
    git(path, "config", "core.autocrlf", "false")


@pytest.fixture
def remote(tmp_path):
    """Bare remote seeded with products.json and coupons.json."""
    bare = tmp_path / "remote.git"
    git(tmp_path, "init", "-q", "--bare", "-b", "main", str(bare))

    seed = tmp_path / "seed"
    git(tmp_path, "clone", "-q", str(bare), str(seed))
    _configure(seed)
    git(seed, "symbolic-ref", "HEAD", "refs/heads/main")
    (seed / "products.json").write_text(json.dumps(PRODUCTS, indent=2) + "\n")
    (seed / "coupons.json").write_text(json.dumps(COUPONS, indent=2) + "\n")
    (seed / "README.md").write_text("catalog\n")
    git(seed, "add", "-A")
    git(seed, "commit", "-q", "-m", "Initial catalog")
    git(seed, "push", "-q", "origin", "main")
    return bare


def make_clone(remote: Path, path: Path) -> Clone:
    git(path.parent, "clone", "-q", "-b", "main", str(remote), str(path))
    _configure(path)
    return Clone(path)


@pytest.fixture
def alice(remote, tmp_path) -> Clone:
    return make_clone(remote, tmp_path / "alice")


@pytest.fixture
def bob(remote, tmp_path) -> Clone:
    return make_clone(remote, tmp_path / "bob")
