from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import Callable

from .paths import RepoLocation

WSL_EXECUTABLE = "wsl"

GitRunner = Callable[[RepoLocation, list[str]], str]


class CommandError(Exception):
    def __init__(self, repo: str, command: str, cause: str) -> None:
        super().__init__(f"{command!r} failed in {repo}: {cause}" if cause else f"{command!r} failed in {repo}")
        self.repo = repo
        self.command = command
        self.cause = cause


def wsl_argv(location: RepoLocation, args: list[str]) -> list[str]:
    line = f"cd {shlex.quote(location.remote_path)} && {shlex.join(['git', *args])}"
    return [WSL_EXECUTABLE, "-d", location.environment, "--", "bash", "-c", line]


def run_git(location: RepoLocation, args: list[str], timeout_s: int = 300) -> str:
    """
    Run one git subcommand against `location` and return its raw stdout.

    Networked WSL paths are routed through `wsl -d <distro> -- bash -c ...`;
    everything else runs `git` directly with `cwd` set. A non-zero exit,
    a spawn failure and a timeout all raise `CommandError`.
    """
    if location.is_remote:
        cmd = wsl_argv(location, args)
        cwd = None
    else:
        cmd = ["git", *args]
        cwd = location.path
    command = shlex.join(["git", *args])

    try:
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired:
        raise CommandError(location.path, command, f"timed out after {timeout_s}s") from None
    except OSError as e:
        raise CommandError(location.path, command, str(e)) from e

    if proc.returncode != 0:
        cause = (proc.stderr or "").strip() or f"exit code {proc.returncode}"
        raise CommandError(location.path, command, cause)
    return proc.stdout


def global_user_email(cwd: Path | None = None) -> str:
    try:
        proc = subprocess.run(
            ["git", "config", "--global", "--get", "user.email"],
            cwd=str(cwd or Path.cwd()),
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired):
        return ""
    if proc.returncode != 0:
        return ""
    return proc.stdout.strip()
