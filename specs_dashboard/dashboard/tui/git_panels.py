"""Panels for the git view: status summary, changed files and commits."""

from typing import List, Optional, Sequence, Tuple

from ..models import GitChangeSet
from .files import FileEntry, FileGroup, Row
from .text import Line

BUCKET_GROUPS = (
    ("staged", "staged"),
    ("unstaged", "unstaged"),
    ("untracked", "untracked"),
    ("conflicted", "conflicts"),
)


def get_git_changes(snapshot) -> GitChangeSet:
    changes = getattr(snapshot, "git_changes", None)
    if changes is None:
        return GitChangeSet(branch="(unavailable)")
    return changes


def build_git_status_lines(snapshot) -> List[Line]:
    git = get_git_changes(snapshot)
    if not git.available:
        message = "Repository unavailable"
        if git.error:
            message = f"{message}: {git.error}"
        return [Line(text=message, color="red", bold=True)]

    if git.upstream:
        tracking = f"{git.upstream} (ahead {git.ahead}, behind {git.behind})"
    else:
        tracking = "no upstream"

    counts = git.counts
    return [
        Line(text=f"branch: {git.branch}{' [detached]' if git.detached else ''}", color="green", bold=True),
        Line(text=f"tracking: {tracking}", color="dim"),
        Line(text=f"changes: {counts.total} total", color="dim"),
        Line(text=f"staged {counts.staged} | unstaged {counts.unstaged}", color="yellow"),
        Line(text=f"untracked {counts.untracked} | conflicts {counts.conflicted}", color="yellow"),
    ]


def build_git_change_groups(snapshot) -> List[FileGroup]:
    """One group per porcelain bucket; empty buckets are kept so counts show."""
    git = get_git_changes(snapshot)
    if not git.available:
        return []

    groups = []
    for bucket, title in BUCKET_GROUPS:
        items = getattr(git, bucket)
        files = tuple(
            FileEntry(
                path=item.path,
                label=item.relative_path,
                scope=bucket,
                preview_type="git-diff",
                repo_root=item.repo_root or git.root_path or "",
                relative_path=item.relative_path,
                bucket=item.bucket,
                allow_missing=True,
            )
            for item in items
        )
        groups.append(FileGroup(key=f"git:{bucket}", label=f"{title} ({len(files)})", files=files))
    return groups


def build_git_commit_rows(commits: Sequence[Tuple[str, str]], repo_root: Optional[str], available: bool = True) -> List[Row]:
    """Turn ``(hash, subject)`` pairs into selectable commit rows."""
    if not available:
        return [Row(kind="info", key="git:commits:unavailable", label="No commit history (git unavailable)", selectable=False)]
    if not commits:
        return [Row(kind="info", key="git:commits:empty", label="No commits found", selectable=False)]

    rows = []
    for index, (commit_hash, subject) in enumerate(commits):
        rows.append(Row(
            kind="git-commit",
            key=f"git:commit:{commit_hash or index}:{index}",
            label=f"{commit_hash} {subject}".strip(),
            entry=FileEntry(
                path=commit_hash,
                label=f"{commit_hash} {subject}".strip(),
                scope="commit",
                preview_type="git-commit",
                repo_root=repo_root or "",
                commit_hash=commit_hash,
            ),
        ))
    return rows
