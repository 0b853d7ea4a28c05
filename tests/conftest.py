from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest

from gitlog_summary.git import CommandError


def _run(cmd: list[str], *, cwd: Path, env: dict[str, str] | None = None) -> str:
    proc = subprocess.run(cmd, cwd=str(cwd), env=env, check=True, capture_output=True, text=True)
    return proc.stdout


class GitRepo:
    def __init__(self, path: Path) -> None:
        self.path = path

    def git(self, *args: str, env: dict[str, str] | None = None) -> str:
        return _run(["git", *args], cwd=self.path, env=env)

    def commit(self, filename: str, message: str, when: str) -> str:
        (self.path / filename).write_text(f"{message}\n", encoding="utf-8")
        self.git("add", filename)
        env = os.environ.copy()
        env["GIT_AUTHOR_DATE"] = when
        env["GIT_COMMITTER_DATE"] = when
        self.git("commit", "-q", "-m", message, env=env)
        return self.git("rev-parse", "HEAD").strip()


@pytest.fixture
def make_repo(tmp_path: Path, monkeypatch):
    global_cfg = tmp_path / "global.gitconfig"
    global_cfg.write_text("[user]\n\temail = dev@example.com\n\tname = Dev\n", encoding="utf-8")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_cfg))

    def _make(name: str) -> GitRepo:
        path = tmp_path / name
        path.mkdir(parents=True)
        _run(["git", "-c", "init.defaultBranch=main", "init", "-q"], cwd=path)
        _run(["git", "config", "user.name", "Dev"], cwd=path)
        _run(["git", "config", "user.email", "dev@example.com"], cwd=path)
        return GitRepo(path)

    return _make


class FakeGit:
    """Stands in for run_git: answers by exact argument vector, fails like git for anything else."""

    def __init__(self, responses: dict[tuple[str, tuple[str, ...]], object]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    def __call__(self, location, args: list[str]) -> str:
        key = (location.name, tuple(args))
        self.calls.append(key)
        if key not in self.responses:
            raise CommandError(location.path, " ".join(args), "fatal: unknown revision or path")
        r = self.responses[key]
        if isinstance(r, BaseException):
            raise r
        return str(r)

    @staticmethod
    def reflog(date: str) -> tuple[str, ...]:
        return ("reflog", "--all", f"--since={date} 00:00", "--format=%gD")

    @staticmethod
    def head() -> tuple[str, ...]:
        return ("rev-parse", "--abbrev-ref", "HEAD")

    @staticmethod
    def log(branch: str, date: str, author: str = "") -> tuple[str, ...]:
        args = ["log", branch, f"--since={date} 00:00", f"--until={date} 23:59"]
        if author:
            args.append(f"--author={author}")
        return tuple(args + ["--pretty=format:%H|%ad|%s", "--date=format:%H:%M"])

    @staticmethod
    def unpushed(branch: str) -> tuple[str, ...]:
        return ("log", f"origin/{branch}..{branch}", "--oneline")

    STAGED = ("diff", "--cached", "--name-only")
    UNSTAGED = ("diff", "--name-only")
    UNTRACKED = ("ls-files", "--others", "--exclude-standard")


@pytest.fixture
def fake_git():
    return FakeGit
