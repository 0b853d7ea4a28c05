from __future__ import annotations

import dataclasses
import json
from pathlib import Path

from .git import global_user_email


def default_config_path() -> Path:
    return Path.home() / ".config" / "gitlog-summary" / "config.json"


@dataclasses.dataclass(frozen=True)
class ReportConfig:
    directories: tuple[str, ...] = ()
    author_email: str = ""
    template: str = ""  # "" -> built-in default template
    jobs: int = 1


def load_config(config_path: Path) -> dict:
    if not config_path.exists():
        return {}
    return json.loads(config_path.read_text(encoding="utf-8"))


def save_config(config_path: Path, config: dict) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False) + "\n", encoding="utf-8")


def _directories(value: object) -> tuple[str, ...]:
    # The settings UI stored directories as one path per line.
    if isinstance(value, str):
        items = value.splitlines()
    elif isinstance(value, list):
        items = [str(v) for v in value if v is not None]
    else:
        items = []
    return tuple(s.strip() for s in items if s.strip())


def report_config_from_dict(config: dict) -> ReportConfig:
    try:
        jobs = int(config.get("jobs", 1) or 1)
    except (TypeError, ValueError):
        jobs = 1
    return ReportConfig(
        directories=_directories(config.get("directories")),
        author_email=str(config.get("author_email", "") or "").strip(),
        template=str(config.get("template", "") or ""),
        jobs=max(1, jobs),
    )


def ensure_config_file(*, config_path: Path, template: str = "") -> dict:
    """
    If `config_path` does not exist, write a starter config (author email taken
    from the global git config when set) and return it; otherwise load it.
    """
    if config_path.exists():
        return load_config(config_path)

    config = {
        "directories": [],
        "author_email": global_user_email(),
        "template": template,
        "jobs": 1,
    }
    save_config(config_path, config)
    return load_config(config_path)
