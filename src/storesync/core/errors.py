"""Failure classes raised by the sync engine."""

from __future__ import annotations

import re
from enum import StrEnum


class ErrorClass(StrEnum):
    """Machine-readable failure class carried by every SyncError."""

    NETWORK = "network"
    AUTH = "auth"
    NOT_A_REPO = "not_a_repo"
    NOT_CONFIGURED = "not_configured"
    CONFLICT = "conflict"
    BUSY = "busy"
    IO_ERROR = "io_error"
    GIT = "git"


class SyncError(Exception):
    """Base class for all storesync failures.

    Attributes:
        error_class: Which ErrorClass the failure belongs to
        message: Human-readable explanation
        stderr: Output of the failing git command, if any
    """

    error_class: ErrorClass = ErrorClass.GIT

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.message = message
        self.stderr = stderr

    @property
    def retryable(self) -> bool:
        return self.error_class is ErrorClass.NETWORK

    def to_dict(self) -> dict:
        return {"error": str(self.error_class), "message": self.message}


class NetworkError(SyncError):
    error_class = ErrorClass.NETWORK


class AuthError(SyncError):
    error_class = ErrorClass.AUTH


class NotARepositoryError(SyncError):
    error_class = ErrorClass.NOT_A_REPO


class NotConfiguredError(SyncError):
    error_class = ErrorClass.NOT_CONFIGURED


class ConflictError(SyncError):
    """A git operation stopped with unmerged paths.

    Orchestrators turn this into a paused conflict outcome; it only
    escapes to callers from the raw repository primitives.
    """

    error_class = ErrorClass.CONFLICT


class BusyError(SyncError):
    error_class = ErrorClass.BUSY


class CatalogIOError(SyncError):
    """A catalog file is unreadable, unwritable or not a JSON array."""

    error_class = ErrorClass.IO_ERROR


class GitCommandError(SyncError):
    """Any other git failure.

    ``rejected`` is set when a push was refused because the remote
    moved on; the publish workflow fetches and integrates again.
    """

    error_class = ErrorClass.GIT

    def __init__(self, message: str, stderr: str = "", rejected: bool = False):
        super().__init__(message, stderr)
        self.rejected = rejected


class NotAutoMergeableError(SyncError):
    """Smart-merge was requested for a session it cannot merge."""

    error_class = ErrorClass.CONFLICT


# Order matters: auth hints are checked before the generic
# "unable to access", which git prints for both.
_PATTERNS: list[tuple[re.Pattern, type[SyncError]]] = [
    (re.compile(
        r"authentication failed|could not read username|"
        r"invalid username or password|\b401\b|\b403\b|"
        r"permission denied \(publickey\)",
        re.I,
    ), AuthError),
    (re.compile(
        r"could not resolve host|failed to connect|connection timed out|"
        r"operation timed out|unable to access|connection refused|"
        r"network is unreachable|could not read from remote repository",
        re.I,
    ), NetworkError),
    (re.compile(r"not a git repository", re.I), NotARepositoryError),
    (re.compile(
        r"index\.lock|another git process", re.I
    ), BusyError),
    (re.compile(r"^CONFLICT|merge conflict|unmerged", re.M), ConflictError),
]

_REJECTED = re.compile(
    r"\[rejected\]|non-fast-forward|fetch first|failed to push some refs",
    re.I,
)


def classify_git_failure(command: str, stderr: str) -> SyncError:
    """Build the SyncError matching a failed git command's output."""
    text = stderr.strip()
    for pattern, error_type in _PATTERNS:
        if pattern.search(text):
            return error_type(f"{command} failed: {text}", stderr)
    return GitCommandError(
        f"{command} failed: {text or 'no output'}",
        stderr,
        rejected=bool(_REJECTED.search(text)),
    )


__all__ = [
    "AuthError",
    "BusyError",
    "CatalogIOError",
    "ConflictError",
    "ErrorClass",
    "GitCommandError",
    "NetworkError",
    "NotARepositoryError",
    "NotAutoMergeableError",
    "NotConfiguredError",
    "SyncError",
    "classify_git_failure",
]
