"""Git change collection for the dashboard's git view.

This module runs the ``git`` executable through GitPython's command wrapper
with exact argument lists, then parses porcelain status output into staged,
unstaged, untracked and conflicted buckets. A directory outside any
repository is not an error: it yields an unavailable change set with zero
counts.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from git.cmd import Git
from git.exc import GitError

from specs_dashboard.dashboard.models import GitChange, GitChangeSet, GitCounts

logger = logging.getLogger(__name__)

STATUS_ARGS = [
    "-c", "color.ui=false",
    "-c", "core.quotepath=false",
    "status", "--porcelain", "--branch", "--untracked-files=all",
]

COMMIT_LOG_LIMIT = 30

_AHEAD_PATTERN = re.compile(r"ahead\s+(\d+)")
_BEHIND_PATTERN = re.compile(r"behind\s+(\d+)")


@dataclass
class GitResult:
    """Outcome of a single git invocation."""

    ok: bool
    error: Optional[str]
    stdout: str
    stderr: str


@dataclass
class BranchSummary:
    branch: str
    upstream: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    detached: bool = False


@dataclass
class StatusEntry:
    code: str
    status_x: str
    status_y: str
    relative_path: str
    absolute_path: str
    staged: bool
    unstaged: bool
    untracked: bool
    conflicted: bool


def run_git(args: Sequence[str], cwd: Union[str, Path], accepted_statuses: Sequence[int] = (0,)) -> GitResult:
    """Run ``git <args>`` in ``cwd``.

    Args:
        args: Arguments after the ``git`` executable name.
        cwd: Working directory.
        accepted_statuses: Exit codes treated as success. ``diff --no-index``
            exits 1 when the inputs differ, so callers pass ``(0, 1)``.

    Returns:
        GitResult; never raises for git or OS failures.
    """
    try:
        status, stdout, stderr = Git(str(cwd)).execute(
            ["git", *args],
            with_extended_output=True,
            with_exceptions=False,
            strip_newline_in_stdout=False,
        )
    except (GitError, OSError) as error:
        logger.debug(f"git {' '.join(args)} failed in {cwd}: {error}")
        return GitResult(ok=False, error=str(error), stdout="", stderr="")

    stdout = stdout or ""
    stderr = stderr or ""
    if status not in accepted_statuses:
        return GitResult(
            ok=False,
            error=stderr.strip() or f"git exited with code {status}",
            stdout=stdout,
            stderr=stderr,
        )
    return GitResult(ok=True, error=None, stdout=stdout, stderr=stderr)


def find_git_root(path: Union[str, Path, None]) -> Optional[str]:
    if path is None or not str(path).strip():
        return None
    if not Path(path).is_dir():
        return None
    toplevel = run_git(["rev-parse", "--show-toplevel"], path)
    if not toplevel.ok:
        return None
    root = toplevel.stdout.strip()
    return root or None


def parse_branch_summary(line: str) -> BranchSummary:
    """Parse the ``## branch...upstream [ahead N, behind M]`` status header."""
    raw = re.sub(r"^##\s*", "", line or "").strip()
    if not raw:
        return BranchSummary(branch="(unknown)")
    if raw.startswith("HEAD "):
        return BranchSummary(branch="(detached)", detached=True)
    for prefix in ("No commits yet on ", "Initial commit on "):
        if raw.startswith(prefix):
            raw = raw[len(prefix):]

    parts = raw.split(None, 1)
    branch = parts[0]
    tracking = parts[1] if len(parts) > 1 else ""
    upstream = None
    if "..." in branch:
        name, remote = branch.split("...", 1)
        branch = name or "(unknown)"
        upstream = remote or None

    ahead = _AHEAD_PATTERN.search(tracking)
    behind = _BEHIND_PATTERN.search(tracking)
    return BranchSummary(
        branch=branch or "(unknown)",
        upstream=upstream,
        ahead=int(ahead.group(1)) if ahead else 0,
        behind=int(behind.group(1)) if behind else 0,
    )


def parse_status_entry(line: str, repo_root: str) -> Optional[StatusEntry]:
    """Classify one porcelain status line.

    ``??`` is untracked; a ``U`` in either column, ``AA`` or ``DD`` is
    conflicted; a non-space index column is staged and a non-space worktree
    column is unstaged. Renames keep only the destination path.
    """
    if not line or not line.strip() or line.startswith("## "):
        return None

    code = line[:2]
    status_x = code[:1]
    status_y = code[1:2]
    relative = line[3:].strip() if len(line) > 3 else ""
    if " -> " in relative:
        relative = relative.split(" -> ")[-1].strip()

    untracked = code == "??"
    return StatusEntry(
        code=code,
        status_x=status_x,
        status_y=status_y,
        relative_path=relative,
        absolute_path=str(Path(repo_root) / relative) if relative else "",
        staged=not untracked and status_x != " ",
        unstaged=not untracked and status_y != " ",
        untracked=untracked,
        conflicted=status_x == "U" or status_y == "U" or code in ("AA", "DD"),
    )


def _bucket_item(entry: StatusEntry, bucket: str, repo_root: str) -> GitChange:
    return GitChange(
        key=f"{bucket}:{entry.relative_path}",
        bucket=bucket,
        code=entry.code,
        path=entry.absolute_path,
        relative_path=entry.relative_path,
        label=entry.relative_path,
        repo_root=repo_root,
    )


def list_git_changes(path: Union[str, Path]) -> GitChangeSet:
    """Collect the working tree status of the repository containing ``path``."""
    root = find_git_root(path)
    if root is None:
        return GitChangeSet(available=False, branch="(not a git repo)")

    result = run_git(STATUS_ARGS, root)
    if not result.ok:
        logger.warning(f"git status failed in {root}: {result.error}")
        return GitChangeSet(
            available=False,
            root_path=root,
            branch="(status unavailable)",
            error=result.error,
        )

    lines = [line for line in result.stdout.splitlines() if line]
    summary = parse_branch_summary(lines[0] if lines else "")

    buckets: Dict[str, List[GitChange]] = {"staged": [], "unstaged": [], "untracked": [], "conflicted": []}
    for line in lines[1:]:
        entry = parse_status_entry(line, root)
        if entry is None or not entry.relative_path:
            continue
        for bucket in ("conflicted", "staged", "unstaged", "untracked"):
            if getattr(entry, bucket):
                buckets[bucket].append(_bucket_item(entry, bucket, root))

    unique = {item.relative_path for items in buckets.values() for item in items}
    return GitChangeSet(
        available=True,
        root_path=root,
        branch=summary.branch,
        upstream=summary.upstream,
        ahead=summary.ahead,
        behind=summary.behind,
        detached=summary.detached,
        clean=not unique,
        counts=GitCounts(
            total=len(unique),
            staged=len(buckets["staged"]),
            unstaged=len(buckets["unstaged"]),
            untracked=len(buckets["untracked"]),
            conflicted=len(buckets["conflicted"]),
        ),
        **buckets,
    )


def _read_untracked_diff(repo_root: str, absolute_path: str) -> str:
    if not absolute_path or not Path(absolute_path).exists():
        return ""
    result = run_git(
        ["-c", "color.ui=false", "--no-pager", "diff", "--no-index", "--", "/dev/null", absolute_path],
        repo_root,
        accepted_statuses=(0, 1),
    )
    return result.stdout if result.ok else ""


def load_git_diff_preview(
    repo_root: Optional[str],
    relative_path: str,
    bucket: str = "unstaged",
    absolute_path: str = "",
) -> str:
    """Return diff text for one changed file, or a ``[git]`` message."""
    if not repo_root:
        return "[git] repository is unavailable for preview."
    if not relative_path:
        return "[git] no file selected."

    if bucket == "untracked":
        raw = _read_untracked_diff(repo_root, absolute_path)
        if raw.strip():
            return raw

    args = ["-c", "color.ui=false", "--no-pager", "diff"]
    if bucket == "staged":
        args.append("--cached")
    args.extend(["--", relative_path])

    result = run_git(args, repo_root)
    if not result.ok:
        return f"[git] unable to load diff: {result.error}"
    if not result.stdout.strip():
        return "[git] no diff output for this file."
    return result.stdout


def load_git_commit_preview(repo_root: Optional[str], commit_hash: Optional[str]) -> str:
    """Return ``git show`` output for a commit, or a ``[git]`` message."""
    commit_hash = (commit_hash or "").strip()
    if not repo_root:
        return "[git] repository is unavailable for commit preview."
    if not commit_hash:
        return "[git] no commit selected."

    result = run_git(
        ["-c", "color.ui=false", "--no-pager", "show", "--patch", "--stat", "--no-ext-diff", commit_hash],
        repo_root,
    )
    if not result.ok:
        return f"[git] unable to load commit diff: {result.error}"
    if not result.stdout.strip():
        return "[git] no commit output for this selection."
    return result.stdout


def list_git_commits(repo_root: Optional[str], limit: int = COMMIT_LOG_LIMIT) -> List[Tuple[str, str]]:
    """Return recent ``(short_hash, subject)`` pairs, newest first."""
    if not repo_root:
        return []
    result = run_git(
        ["-c", "color.ui=false", "log", "--date=relative", "--pretty=format:%h %s", f"--max-count={limit}"],
        repo_root,
    )
    if not result.ok:
        return []

    commits = []
    for line in result.stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        commit_hash, _, subject = line.partition(" ")
        commits.append((commit_hash, subject))
    return commits
