"""Parse ``git status --porcelain=v1 -b -z`` output."""

import re
from dataclasses import dataclass, field

UNMERGED_CODES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}

_BRANCH = re.compile(
    r"^## (?:No commits yet on |Initial commit on )?"
    r"(?P<branch>[^.\s]+(?:\.(?!\.)[^.\s]*)*)"
    r"(?:\.\.\.(?P<tracking>\S+))?"
    r"(?: \[(?P<counts>[^\]]*)\])?"
)


@dataclass
class GitStatus:
    """File-level working tree status."""

    branch: str | None = None
    tracking: str | None = None
    ahead: int = 0
    behind: int = 0
    modified: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    renamed: list[str] = field(default_factory=list)
    conflicted: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    staged: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (
            self.modified or self.added or self.deleted or self.renamed
            or self.conflicted or self.untracked
        )

    @property
    def changed_files(self) -> list[str]:
        return sorted({
            *self.modified, *self.added, *self.deleted, *self.renamed,
            *self.conflicted, *self.untracked,
        })


def _parse_branch(header: str, status: GitStatus) -> None:
    if header.startswith("## HEAD (no branch)"):
        return
    match = _BRANCH.match(header)
    if not match:
        return
    status.branch = match.group("branch")
    status.tracking = match.group("tracking")
    for part in (match.group("counts") or "").split(","):
        name, _, number = part.strip().partition(" ")
        if name == "ahead" and number.isdigit():
            status.ahead = int(number)
        elif name == "behind" and number.isdigit():
            status.behind = int(number)


def parse_status(output: str) -> GitStatus:
    """Parse NUL-separated porcelain v1 output.

    Args:
        output: stdout of ``git status --porcelain=v1 -b -z``

    Returns:
        GitStatus with paths bucketed by change type
    """
    status = GitStatus()
    entries = output.split("\0")
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if not entry:
            continue
        if entry.startswith("## "):
            _parse_branch(entry, status)
            continue

        code, path = entry[:2], entry[3:]
        x, y = code[0], code[1]

        if code in UNMERGED_CODES:
            status.conflicted.append(path)
            continue
        if code == "??":
            status.untracked.append(path)
            continue
        if code == "!!":
            continue

        if x in "RC":
            # Rename/copy entries are followed by the source path
            i += 1
            if x == "R":
                status.renamed.append(path)
            else:
                status.added.append(path)
        elif "D" in code:
            status.deleted.append(path)
        elif x == "A":
            status.added.append(path)
        elif "M" in code or "T" in code:
            status.modified.append(path)

        if x not in " ?":
            status.staged.append(path)

    return status
