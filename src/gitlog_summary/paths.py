from __future__ import annotations

import dataclasses
import re

# \\wsl$\<distro>\<subpath> or \\wsl.localhost\<distro>\<subpath>
_WSL_PATH_RE = re.compile(r"^[\\/]{2}wsl(?:\.localhost|\$)[\\/]([^\\/]+)(?:[\\/](.*))?$", re.IGNORECASE)


@dataclasses.dataclass(frozen=True)
class RepoLocation:
    path: str
    name: str
    environment: str = ""
    remote_path: str = ""

    @property
    def is_remote(self) -> bool:
        return bool(self.environment)


def display_name(path: str) -> str:
    parts = [p for p in re.split(r"[\\/]", path) if p]
    if not parts:
        return path
    return parts[-1]


def resolve_location(path: str) -> RepoLocation:
    p = (path or "").strip()
    m = _WSL_PATH_RE.match(p)
    if m is None:
        return RepoLocation(path=p, name=display_name(p))
    sub = (m.group(2) or "").replace("\\", "/").strip("/")
    return RepoLocation(path=p, name=display_name(p), environment=m.group(1), remote_path="/" + sub)
