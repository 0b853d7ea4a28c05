from __future__ import annotations

import dataclasses

NEW_FILE_SUFFIX = " (new)"
NO_REMOTE = -1


@dataclasses.dataclass(frozen=True)
class CommitRecord:
    time: str  # HH:MM
    message: str
    repo: str
    branch: str

    def to_dict(self) -> dict[str, object]:
        return {"time": self.time, "message": self.message, "repo": self.repo, "branch": self.branch}


@dataclasses.dataclass(frozen=True)
class FileChange:
    repo: str
    file: str  # untracked files carry NEW_FILE_SUFFIX

    def to_dict(self) -> dict[str, object]:
        return {"repo": self.repo, "file": self.file}


@dataclasses.dataclass(frozen=True)
class BranchStatus:
    repo: str
    name: str
    unpushed_count: int  # NO_REMOTE when origin/<name> does not exist

    @property
    def is_pushed(self) -> bool:
        return self.unpushed_count == 0

    @property
    def has_remote(self) -> bool:
        return self.unpushed_count != NO_REMOTE

    def to_dict(self) -> dict[str, object]:
        return {
            "repo": self.repo,
            "name": self.name,
            "isPushed": self.is_pushed,
            "unpushedCount": self.unpushed_count,
        }


@dataclasses.dataclass
class RepoScan:
    name: str
    path: str
    branch_names: list[str] = dataclasses.field(default_factory=list)
    commits: list[CommitRecord] = dataclasses.field(default_factory=list)
    staged: list[FileChange] = dataclasses.field(default_factory=list)
    unstaged: list[FileChange] = dataclasses.field(default_factory=list)
    branches: list[BranchStatus] = dataclasses.field(default_factory=list)
    skipped: bool = False
    errors: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(frozen=True)
class RepositoryView:
    name: str
    commits: tuple[CommitRecord, ...] = ()
    staged: tuple[FileChange, ...] = ()
    unstaged: tuple[FileChange, ...] = ()
    branches: tuple[BranchStatus, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "commits": [c.to_dict() for c in self.commits],
            "staged": [f.to_dict() for f in self.staged],
            "unstaged": [f.to_dict() for f in self.unstaged],
            "branches": [b.to_dict() for b in self.branches],
        }


@dataclasses.dataclass(frozen=True)
class ReportContext:
    commits: tuple[CommitRecord, ...]
    staged: tuple[FileChange, ...]
    unstaged: tuple[FileChange, ...]
    branches: tuple[BranchStatus, ...]
    repositories: tuple[RepositoryView, ...]
    timestamp: str  # YYYY-MM-DD HH:MM
    date: str  # YYYY-MM-DD

    def to_template_data(self) -> dict[str, object]:
        return {
            "commits": [c.to_dict() for c in self.commits],
            "staged": [f.to_dict() for f in self.staged],
            "unstaged": [f.to_dict() for f in self.unstaged],
            "branches": [b.to_dict() for b in self.branches],
            "repositories": [r.to_dict() for r in self.repositories],
            "timestamp": self.timestamp,
            "date": self.date,
        }
