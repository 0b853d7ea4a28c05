from __future__ import annotations

import re

from .git import CommandError, GitRunner, run_git
from .models import NEW_FILE_SUFFIX, NO_REMOTE, BranchStatus, CommitRecord, FileChange, RepoScan
from .paths import RepoLocation

_REFLOG_BRANCH_RE = re.compile(r"^refs/heads/(.+)@\{")


def _lines(out: str) -> list[str]:
    return [line for line in out.splitlines() if line]


def day_bounds(date_str: str) -> tuple[str, str]:
    return f"{date_str} 00:00", f"{date_str} 23:59"


def discover_branches(location: RepoLocation, date_str: str, run: GitRunner = run_git) -> list[str]:
    """
    Branches with reflog activity since the start of `date_str`, in reflog order.

    Falls back to the checked-out branch when the reflog yields nothing.
    Returns [] when neither source works; callers treat that as "skip repo".
    """
    since, _ = day_bounds(date_str)
    found: dict[str, None] = {}
    try:
        out = run(location, ["reflog", "--all", f"--since={since}", "--format=%gD"])
    except CommandError:
        out = ""
    for line in _lines(out):
        m = _REFLOG_BRANCH_RE.match(line)
        if m:
            found.setdefault(m.group(1), None)
    if found:
        return list(found)

    try:
        current = run(location, ["rev-parse", "--abbrev-ref", "HEAD"]).strip()
    except CommandError:
        return []
    return [current] if current else []


def parse_commit_log(out: str, *, repo: str, branch: str, seen: set[str]) -> list[CommitRecord]:
    commits: list[CommitRecord] = []
    for line in _lines(out):
        parts = line.split("|")
        if len(parts) < 2:
            continue
        sha, time = parts[0], parts[1]
        if sha in seen:
            continue
        seen.add(sha)
        commits.append(CommitRecord(time=time, message="|".join(parts[2:]), repo=repo, branch=branch))
    return commits


def collect_commits(
    location: RepoLocation,
    branch: str,
    date_str: str,
    *,
    author: str = "",
    seen: set[str],
    run: GitRunner = run_git,
) -> list[CommitRecord]:
    since, until = day_bounds(date_str)
    args = ["log", branch, f"--since={since}", f"--until={until}"]
    if author:
        args.append(f"--author={author}")
    args += ["--pretty=format:%H|%ad|%s", "--date=format:%H:%M"]
    out = run(location, args)
    return parse_commit_log(out, repo=location.name, branch=branch, seen=seen)


def branch_push_status(location: RepoLocation, branch: str, run: GitRunner = run_git) -> BranchStatus:
    try:
        out = run(location, ["log", f"origin/{branch}..{branch}", "--oneline"])
    except CommandError:
        return BranchStatus(repo=location.name, name=branch, unpushed_count=NO_REMOTE)
    return BranchStatus(repo=location.name, name=branch, unpushed_count=len(_lines(out)))


def working_tree_changes(location: RepoLocation, run: GitRunner = run_git) -> tuple[list[FileChange], list[FileChange], list[str]]:
    """Staged and unstaged files; untracked files are folded into unstaged with a " (new)" suffix."""
    staged: list[FileChange] = []
    unstaged: list[FileChange] = []
    errors: list[str] = []

    queries = [
        (["diff", "--cached", "--name-only"], staged, ""),
        (["diff", "--name-only"], unstaged, ""),
        (["ls-files", "--others", "--exclude-standard"], unstaged, NEW_FILE_SUFFIX),
    ]
    for args, target, suffix in queries:
        try:
            out = run(location, args)
        except CommandError as e:
            errors.append(str(e))
            continue
        target.extend(FileChange(repo=location.name, file=f + suffix) for f in _lines(out))
    return staged, unstaged, errors


def scan_repository(
    location: RepoLocation,
    date_str: str,
    *,
    author: str = "",
    run: GitRunner = run_git,
) -> RepoScan:
    """
    Collect one repository's activity for `date_str`.

    Never raises: failures are recorded on `RepoScan.errors`. Whatever was
    collected before an unexpected error is kept.
    """
    result = RepoScan(name=location.name, path=location.path)
    try:
        branches = discover_branches(location, date_str, run=run)
        if not branches:
            result.skipped = True
            result.errors.append("no active branch found (reflog and HEAD lookup failed)")
            return result
        result.branch_names = branches

        seen: set[str] = set()
        for branch in branches:
            try:
                result.commits.extend(collect_commits(location, branch, date_str, author=author, seen=seen, run=run))
            except CommandError as e:
                result.errors.append(str(e))

        for branch in branches:
            result.branches.append(branch_push_status(location, branch, run=run))

        staged, unstaged, errs = working_tree_changes(location, run=run)
        result.staged.extend(staged)
        result.unstaged.extend(unstaged)
        result.errors.extend(errs)
    except Exception as e:
        result.errors.append(f"scan aborted: {e}")
    return result
