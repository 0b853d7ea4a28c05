from __future__ import annotations

import argparse
import dataclasses
import sys
from pathlib import Path

from .aggregate import default_jobs
from .config import default_config_path, ensure_config_file, load_config, report_config_from_dict
from .report import DEFAULT_TEMPLATE, build_report, parse_date


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitlog-summary",
        description="Summarize one day's git activity across local repositories.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json (default: ~/.config/gitlog-summary/config.json).")
    parser.add_argument("--dir", dest="dirs", action="append", default=[], help="Repository directory (repeatable; overrides config).")
    parser.add_argument("--author", type=str, default=None, help="Only include commits by this author email (overrides config).")
    parser.add_argument("--date", type=str, default="", help="Day to report (YYYY-MM-DD, default: today).")
    parser.add_argument("--template-file", type=Path, default=None, help="Template file (overrides config `template`).")
    parser.add_argument("--jobs", type=int, default=0, help=f"Parallel repository scans (default: config or {default_jobs()}).")
    parser.add_argument("--append-to", type=Path, default=None, help="Append the report to this file instead of printing it.")
    parser.add_argument("--init", action="store_true", help="Write a starter config file and exit.")
    parser.add_argument("--print-template", action="store_true", help="Print the built-in default template and exit.")
    return parser


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)

    if args.print_template:
        sys.stdout.write(DEFAULT_TEMPLATE)
        return 0

    config_path: Path = args.config or default_config_path()
    if args.init:
        existed = config_path.exists()
        ensure_config_file(config_path=config_path, template=DEFAULT_TEMPLATE)
        print(f"{'Config already exists' if existed else 'Wrote new config'}: {config_path}")
        return 0

    try:
        raw = load_config(config_path)
    except ValueError as e:
        print(f"Invalid config {config_path}: {e}", file=sys.stderr)
        return 2
    config = report_config_from_dict(raw)
    if "jobs" not in raw:
        config = dataclasses.replace(config, jobs=default_jobs())

    overrides: dict[str, object] = {}
    if args.dirs:
        overrides["directories"] = tuple(d for d in args.dirs if d.strip())
    if args.author is not None:
        overrides["author_email"] = args.author.strip()
    if args.template_file is not None:
        try:
            overrides["template"] = args.template_file.read_text(encoding="utf-8")
        except OSError as e:
            print(f"Cannot read template file: {e}", file=sys.stderr)
            return 2
    if args.jobs > 0:
        overrides["jobs"] = args.jobs
    config = dataclasses.replace(config, **overrides)

    date_str = None
    if args.date:
        try:
            date_str = parse_date(args.date)
        except ValueError:
            print(f"Invalid --date {args.date!r} (expected YYYY-MM-DD)", file=sys.stderr)
            return 2

    if not config.directories:
        print(f"No repository directories configured. Use --dir or edit {config_path} (create it with --init).", file=sys.stderr)
        return 1

    template_failed = False

    def report_error(err: Exception) -> None:
        nonlocal template_failed
        template_failed = True
        print(f"Template error: {err}", file=sys.stderr)

    warnings: list[str] = []
    text = build_report(config, date_str, report_error=report_error, warnings=warnings)
    for w in warnings:
        print(f"Warning: {w}", file=sys.stderr)
    if template_failed:
        return 2

    if args.append_to is not None:
        args.append_to.parent.mkdir(parents=True, exist_ok=True)
        with args.append_to.open("a", encoding="utf-8") as f:
            f.write(text)
        print(f"Appended report to: {args.append_to}")
        return 0

    sys.stdout.write(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
