"""Repository binding: every git invocation storesync makes.

One Repository is bound to one working directory, one remote and one
branch. Methods are blocking; the sync service runs them in worker
threads. Failures are raised as SyncError subclasses built by
classify_git_failure(), so callers can tell a dropped connection from
rejected credentials.
"""

from __future__ import annotations

import contextlib
import shlex
import threading
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from invoke import Result

from storesync.catalog.model import ConflictKind, FileDiffStat
from storesync.core.errors import (
    BusyError,
    NetworkError,
    NotARepositoryError,
    NotConfiguredError,
    classify_git_failure,
)
from storesync.core.log import logger
from storesync.core.runner import Runner, redact
from storesync.git.porcelain import GitStatus, parse_status

# Default argument templates, overridable through commands.git
GIT_COMMANDS = {
    "fetch": "fetch --prune {remote}",
    "push": "push {remote} HEAD:refs/heads/{branch}",
    "pull": "pull --no-rebase --no-edit {remote} {branch}",
    "merge": "merge --no-edit {ref}",
    "commit": "commit -q -m {message}",
    "stash_push": "stash push --include-untracked -m {message}",
    "stash_pop": "stash pop",
    "reset": "reset -q --{mode} {ref}",
    "clean": "clean -f -d",
}

# git show/cat-file messages meaning "no such blob", not a failure
_MISSING_BLOB = (
    "does not exist",
    "exists on disk, but not in",
    "not at stage",
    "bad revision",
    "invalid object name",
    "unknown revision",
)

_GIT_ENV = {
    # Never block on a credential prompt
    "GIT_TERMINAL_PROMPT": "0",
    # Failure classification matches English messages
    "LC_ALL": "C",
}


class RepositoryLock:
    """Exclusive, non-blocking lock for write orchestrations.

    A second publish or pull against the same Repository fails with
    BusyError instead of queueing behind the first.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.holder: str | None = None

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @contextlib.contextmanager
    def hold(self, operation: str):
        if not self._lock.acquire(blocking=False):
            raise BusyError(
                f"Cannot start {operation}: {self.holder} is in progress"
            )
        self.holder = operation
        try:
            yield self
        finally:
            self.holder = None
            self._lock.release()


class Repository:
    """Git working copy bound to a remote branch."""

    def __init__(
        self,
        workdir: Path,
        remote: str = "origin",
        branch: str = "main",
        username: str | None = None,
        token: str | None = None,
        git: str = "git",
        timeout: int | None = 120,
        commands: dict[str, str] | None = None,
        runner: Runner | None = None,
    ):
        self.workdir = Path(workdir)
        self.remote = remote
        self.branch = branch
        self.username = username
        self.token = token
        self.git = git
        self.timeout = timeout
        self.commands = {**GIT_COMMANDS, **(commands or {})}
        self.runner = runner or Runner()
        self.lock = RepositoryLock()

    @classmethod
    def from_config(cls, config) -> Repository:
        """Build a Repository from a storesync Config."""
        return cls(
            workdir=config.git.workdir,
            remote=config.git.remote,
            branch=config.git.branch,
            username=config.git.username,
            token=config.git.token,
            git=config.git.binary,
            timeout=config.git.timeout,
            commands=config.commands.get("git"),
        )

    @property
    def remote_ref(self) -> str:
        """Remote-tracking ref of the bound branch, e.g. origin/main."""
        return f"{self.remote}/{self.branch}"

    # ------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------

    def _template(self, name: str, **values: str) -> str:
        quoted = {key: shlex.quote(str(value)) for key, value in values.items()}
        return self.commands[name].format(**quoted)

    def _run(self, args: str, check: bool = True, op: str | None = None) -> Result:
        """Run ``git <args>`` in the working directory.

        Args:
            args: Argument string, already shell-quoted
            check: Raise a classified SyncError on non-zero exit
            op: Operation name used in error messages

        Raises:
            NetworkError: The command timed out
            SyncError: Non-zero exit when check is set
        """
        op = op or args.split()[0]
        result = self.runner.execute(
            f"{shlex.quote(self.git)} {args}",
            cwd=self.workdir,
            timeout=self.timeout,
            check=False,
            env=_GIT_ENV,
        )
        if result.exited == -1:
            raise NetworkError(f"git {op} timed out after {self.timeout}s")
        if check and result.exited != 0:
            output = "\n".join(
                part for part in (result.stderr, result.stdout) if part.strip()
            )
            raise classify_git_failure(f"git {op}", redact(output))
        return result

    def _lines(self, args: str, op: str | None = None) -> list[str]:
        return [
            line for line in self._run(args, op=op).stdout.splitlines()
            if line.strip()
        ]

    # ------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------

    def verify(self) -> None:
        """Raise unless the working directory is a git working tree."""
        if not self.workdir.is_dir():
            raise NotARepositoryError(f"{self.workdir} does not exist")
        result = self._run("rev-parse --is-inside-work-tree", check=False)
        if result.exited != 0 or result.stdout.strip() != "true":
            raise NotARepositoryError(
                f"{self.workdir} is not a git repository", result.stderr
            )

    @property
    def git_dir(self) -> Path:
        path = Path(self._run("rev-parse --git-dir").stdout.strip())
        return path if path.is_absolute() else self.workdir / path

    def status(self) -> GitStatus:
        result = self._run(
            "status --porcelain=v1 -b -z --untracked-files=all", op="status"
        )
        return parse_status(result.stdout)

    def rev_parse(self, ref: str) -> str | None:
        """Commit id of ref, or None if it does not resolve."""
        result = self._run(
            f"rev-parse -q --verify {shlex.quote(ref + '^{commit}')}",
            check=False,
        )
        return result.stdout.strip() if result.exited == 0 else None

    def merge_base(self, a: str, b: str) -> str | None:
        result = self._run(
            f"merge-base {shlex.quote(a)} {shlex.quote(b)}", check=False
        )
        return result.stdout.strip() if result.exited == 0 else None

    def ahead_behind(self, local: str, upstream: str) -> tuple[int, int]:
        """Commits on local not on upstream, and the reverse."""
        if self.rev_parse(local) is None or self.rev_parse(upstream) is None:
            return 0, 0
        out = self._run(
            f"rev-list --left-right --count "
            f"{shlex.quote(f'{local}...{upstream}')}",
            op="rev-list",
        ).stdout.split()
        return int(out[0]), int(out[1])

    def show(self, rev: str, path: str) -> str | None:
        """Content of path at rev (or index stage ":N"), None if absent.

        Examples:
            repo.show("HEAD", "products.json")
            repo.show(":2", "products.json")  # "ours" of a merge
        """
        result = self._run(
            f"show {shlex.quote(f'{rev}:{path}')}", check=False
        )
        if result.exited == 0:
            return result.stdout
        if any(marker in result.stderr for marker in _MISSING_BLOB):
            return None
        raise classify_git_failure("git show", redact(result.stderr))

    def diff_numstat(self, a: str, b: str | None = None) -> list[FileDiffStat]:
        """Per-file line counts between two commits (or a and the tree)."""
        refs = shlex.quote(a) + (f" {shlex.quote(b)}" if b else "")
        stats = []
        for line in self._lines(
            f"diff --numstat --no-renames {refs}", op="diff"
        ):
            added, deleted, path = line.split("\t", 2)
            binary = added == "-"
            stats.append(FileDiffStat(
                path=path,
                additions=0 if binary else int(added),
                deletions=0 if binary else int(deleted),
                binary=binary,
            ))
        return stats

    def has_staged_changes(self) -> bool:
        if self.rev_parse("HEAD") is None:
            return bool(self._lines("ls-files --cached"))
        return self._run("diff --cached --quiet", check=False).exited == 1

    def unmerged_paths(self) -> list[str]:
        out = self._run(
            "diff --name-only -z --diff-filter=U", op="diff"
        ).stdout
        return sorted({path for path in out.split("\0") if path})

    def is_merging(self) -> bool:
        return self.rev_parse("MERGE_HEAD") is not None

    def conflict_kind(self) -> ConflictKind | None:
        """Which interrupted operation left unmerged paths, if any."""
        if self.is_merging():
            return ConflictKind.MERGE
        if self.unmerged_paths():
            return ConflictKind.STASH
        return None

    def list_remote_branches(self) -> list[str]:
        return [
            name for name in self._lines(
                "branch -r --format='%(refname:short)'", op="branch"
            )
            if not name.endswith("/HEAD") and "/" in name
        ]

    def get_remotes(self) -> dict[str, str]:
        """Remote name to fetch URL, credentials masked."""
        remotes = {}
        for line in self._lines("remote -v", op="remote"):
            name, _, rest = line.partition("\t")
            url, _, kind = rest.rpartition(" ")
            if kind == "(fetch)":
                remotes[name] = redact(url)
        return remotes

    def get_remote_url(self, name: str | None = None) -> str | None:
        result = self._run(
            f"remote get-url {shlex.quote(name or self.remote)}", check=False
        )
        return result.stdout.strip() if result.exited == 0 else None

    def set_remote_url(self, name: str, url: str) -> None:
        self._run(
            f"remote set-url {shlex.quote(name)} {shlex.quote(url)}",
            op="remote set-url",
        )

    def stash_messages(self) -> list[str]:
        """Stash subjects, newest first."""
        return self._lines("stash list --format=%s", op="stash list")

    def stash_count(self) -> int:
        return len(self.stash_messages())

    # ------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------

    def remove_stale_lock(self) -> bool:
        """Delete an index.lock left behind by a crashed git process.

        Only called while this Repository's own lock is held, so no
        storesync command can be writing the index at the same time.
        """
        lock = self.git_dir / "index.lock"
        if not lock.exists():
            return False
        logger.warn("Removing stale index lock", path=str(lock))
        lock.unlink(missing_ok=True)
        return True

    @contextlib.contextmanager
    def _authenticated(self):
        """Temporarily embed username/token in the remote URL.

        The original URL is restored even when the wrapped command
        fails. Without configured credentials this is a no-op and git
        falls back to its own credential helpers.
        """
        if not (self.username and self.token):
            yield
            return

        original = self.get_remote_url()
        if original is None:
            raise NotConfiguredError(f"Remote '{self.remote}' is not configured")
        parts = urlsplit(original)
        if parts.scheme not in ("http", "https"):
            yield
            return

        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        netloc = f"{quote(self.username, safe='')}:{quote(self.token, safe='')}@{host}"
        self.set_remote_url(self.remote, urlunsplit(parts._replace(netloc=netloc)))
        try:
            yield
        finally:
            self.set_remote_url(self.remote, original)

    # ------------------------------------------------------------
    # Network
    # ------------------------------------------------------------

    def fetch(self, remote: str | None = None) -> None:
        with self._authenticated():
            self._run(
                self._template("fetch", remote=remote or self.remote),
                op="fetch",
            )

    def push(self) -> None:
        """Push HEAD to the bound branch.

        Raises:
            GitCommandError: rejected=True when the remote moved on
        """
        with self._authenticated():
            self._run(
                self._template("push", remote=self.remote, branch=self.branch),
                op="push",
            )
        logger.info("Pushed", remote=self.remote, branch=self.branch)

    def pull(self) -> bool:
        """Fetch and merge the bound branch; False if it conflicted."""
        with self._authenticated():
            result = self._run(
                self._template("pull", remote=self.remote, branch=self.branch),
                check=False,
                op="pull",
            )
        return self._merge_outcome(result, "pull")

    # ------------------------------------------------------------
    # Local writes
    # ------------------------------------------------------------

    def stage(self, paths: list[str] | None = None) -> None:
        """Stage the given paths (deletions included), or everything."""
        if paths is None:
            self._run("add -A", op="add")
            return
        if not paths:
            return
        quoted = " ".join(shlex.quote(p) for p in paths)
        self._run(f"add -A -- {quoted}", op="add")

    def unstage(self) -> None:
        """Reset the index to HEAD, keeping working tree edits."""
        self._run("reset -q", op="reset")

    def commit(self, message: str) -> str | None:
        """Commit the index; returns the new commit id.

        Nothing staged is a successful no-op and returns None.
        """
        if not self.has_staged_changes():
            logger.debug("Nothing staged, skipping commit")
            return None
        self._run(self._template("commit", message=message), op="commit")
        return self.rev_parse("HEAD")

    def commit_merge(self) -> str | None:
        """Conclude an in-progress merge with its prepared message."""
        self._run("commit -q --no-edit", op="commit")
        return self.rev_parse("HEAD")

    def merge(self, ref: str) -> bool:
        """Merge ref into HEAD; False if it stopped on conflicts."""
        result = self._run(
            self._template("merge", ref=ref), check=False, op="merge"
        )
        return self._merge_outcome(result, "merge")

    def _merge_outcome(self, result: Result, op: str) -> bool:
        if result.exited == 0:
            return True
        if self.unmerged_paths():
            logger.info(f"git {op} stopped on conflicts")
            return False
        output = "\n".join(
            part for part in (result.stderr, result.stdout) if part.strip()
        )
        raise classify_git_failure(f"git {op}", redact(output))

    def merge_abort(self) -> None:
        self._run("merge --abort", op="merge --abort")

    def reset(self, mode: str = "hard", ref: str = "HEAD") -> None:
        self._run(self._template("reset", mode=mode, ref=ref), op="reset")

    def clean(self, dirs: bool = True) -> None:
        self._run(self.commands["clean"] if dirs else "clean -f", op="clean")

    def stash_push(self, message: str) -> bool:
        """Stash tracked and untracked edits; False if nothing to stash."""
        before = self.stash_count()
        self._run(self._template("stash_push", message=message), op="stash push")
        return self.stash_count() > before

    def stash_pop(self) -> bool:
        """Re-apply the newest stash; False if it stopped on conflicts.

        On conflict git keeps the stash entry, so nothing is lost.
        """
        result = self._run(
            self.commands["stash_pop"], check=False, op="stash pop"
        )
        return self._merge_outcome(result, "stash pop")

    def stash_drop(self) -> None:
        self._run("stash drop -q", op="stash drop")

    def checkout_file(self, path: str, ref: str = "HEAD") -> None:
        self._run(
            f"checkout -q {shlex.quote(ref)} -- {shlex.quote(path)}",
            op="checkout",
        )

    def checkout_stage(self, path: str, stage: int) -> None:
        """Take one side of an unmerged path, byte for byte, and stage it.

        Stage 2 is git's "ours", stage 3 its "theirs".
        """
        side = {2: "--ours", 3: "--theirs"}[stage]
        self._run(
            f"checkout -q {side} -- {shlex.quote(path)}", op="checkout"
        )
        self.stage([path])

    def remove_file(self, path: str) -> None:
        """Delete path from the index and the working tree."""
        self._run(
            f"rm -q -f --ignore-unmatch -- {shlex.quote(path)}", op="rm"
        )
