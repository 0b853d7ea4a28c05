from __future__ import annotations

import dataclasses
import os
from concurrent.futures import ThreadPoolExecutor

from .git import GitRunner, run_git
from .models import BranchStatus, CommitRecord, FileChange, RepoScan, RepositoryView
from .paths import RepoLocation, resolve_location
from .scanner import scan_repository


def default_jobs() -> int:
    return max(1, min(8, (os.cpu_count() or 4)))


@dataclasses.dataclass(frozen=True)
class Aggregate:
    commits: tuple[CommitRecord, ...]
    staged: tuple[FileChange, ...]
    unstaged: tuple[FileChange, ...]
    branches: tuple[BranchStatus, ...]
    repositories: tuple[RepositoryView, ...]
    errors: tuple[str, ...] = ()


def _scan_isolated(location: RepoLocation, date_str: str, author: str, run: GitRunner) -> RepoScan:
    try:
        return scan_repository(location, date_str, author=author, run=run)
    except Exception as e:
        return RepoScan(name=location.name, path=location.path, errors=[f"scan aborted: {e}"])


def group_by_repository(
    names: list[str],
    commits: list[CommitRecord],
    staged: list[FileChange],
    unstaged: list[FileChange],
    branches: list[BranchStatus],
) -> tuple[RepositoryView, ...]:
    return tuple(
        RepositoryView(
            name=name,
            commits=tuple(c for c in commits if c.repo == name),
            staged=tuple(f for f in staged if f.repo == name),
            unstaged=tuple(f for f in unstaged if f.repo == name),
            branches=tuple(b for b in branches if b.repo == name),
        )
        for name in names
    )


def aggregate(
    directories: list[str],
    author: str,
    date_str: str,
    *,
    jobs: int = 1,
    run: GitRunner = run_git,
) -> Aggregate:
    """
    Scan every configured directory and merge the results.

    Blank entries are ignored. Each remaining directory yields exactly one
    repository view, in configuration order, even when its scan failed.
    """
    locations = [resolve_location(d) for d in directories if d and d.strip()]

    if jobs <= 1 or len(locations) <= 1:
        scans = [_scan_isolated(loc, date_str, author, run) for loc in locations]
    else:
        with ThreadPoolExecutor(max_workers=jobs) as ex:
            futs = [ex.submit(_scan_isolated, loc, date_str, author, run) for loc in locations]
            scans = [fut.result() for fut in futs]

    commits: list[CommitRecord] = []
    staged: list[FileChange] = []
    unstaged: list[FileChange] = []
    branches: list[BranchStatus] = []
    errors: list[str] = []
    for scan in scans:
        commits.extend(scan.commits)
        staged.extend(scan.staged)
        unstaged.extend(scan.unstaged)
        branches.extend(scan.branches)
        errors.extend(f"{scan.name}: {e}" for e in scan.errors)

    # HH:MM is zero-padded, so string order is time order; sort is stable.
    commits.sort(key=lambda c: c.time)

    return Aggregate(
        commits=tuple(commits),
        staged=tuple(staged),
        unstaged=tuple(unstaged),
        branches=tuple(branches),
        repositories=group_by_repository([loc.name for loc in locations], commits, staged, unstaged, branches),
        errors=tuple(errors),
    )
