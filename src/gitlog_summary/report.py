from __future__ import annotations

import datetime as dt
import sys
from typing import Callable

from .aggregate import Aggregate, aggregate
from .config import ReportConfig
from .git import GitRunner, run_git
from .models import ReportContext
from .template import TemplateError, compile_template

DEFAULT_TEMPLATE = """\
{{#if commits}}
### Commits
{{#each commits}}
- {{time}} [{{repo}}] {{message}}
{{/each}}
{{/if}}
{{#if staged}}

### Staged
{{#each staged}}
- [{{repo}}] {{file}}
{{/each}}
{{/if}}
{{#if unstaged}}

### Unstaged
{{#each unstaged}}
- [{{repo}}] {{file}}
{{/each}}
{{/if}}

({{timestamp}})

---

"""

ErrorReporter = Callable[[TemplateError], None]


def print_template_error(err: TemplateError) -> None:
    print(f"Template error: {err}", file=sys.stderr)


def format_date(d: dt.date) -> str:
    return d.strftime("%Y-%m-%d")


def format_timestamp(now: dt.datetime) -> str:
    return now.strftime("%Y-%m-%d %H:%M")


def parse_date(value: str) -> str:
    """Validate a YYYY-MM-DD string and return it normalized."""
    return format_date(dt.date.fromisoformat(value.strip()))


def build_context(agg: Aggregate, *, date_str: str, now: dt.datetime) -> ReportContext:
    return ReportContext(
        commits=agg.commits,
        staged=agg.staged,
        unstaged=agg.unstaged,
        branches=agg.branches,
        repositories=agg.repositories,
        timestamp=format_timestamp(now),
        date=date_str,
    )


def build(
    directories: list[str],
    author: str,
    template: str,
    date_str: str | None = None,
    *,
    jobs: int = 1,
    now: dt.datetime | None = None,
    run: GitRunner = run_git,
    report_error: ErrorReporter | None = None,
    warnings: list[str] | None = None,
) -> str:
    """
    Render one day's report.

    Returns "" after passing the error to `report_error` when the template
    is malformed or fails while rendering; never a partial render.
    Per-repository scan problems are appended to `warnings` when given.
    """
    if now is None:
        now = dt.datetime.now()
    if not date_str:
        date_str = format_date(now.date())
    if report_error is None:
        report_error = print_template_error

    try:
        compiled = compile_template(template)
    except TemplateError as e:
        report_error(e)
        return ""

    agg = aggregate(directories, author, date_str, jobs=jobs, run=run)
    if warnings is not None:
        warnings.extend(agg.errors)

    context = build_context(agg, date_str=date_str, now=now)
    try:
        return compiled.render(context.to_template_data())
    except TemplateError as e:
        report_error(e)
        return ""


def build_report(
    config: ReportConfig,
    date_str: str | None = None,
    *,
    now: dt.datetime | None = None,
    run: GitRunner = run_git,
    report_error: ErrorReporter | None = None,
    warnings: list[str] | None = None,
) -> str:
    return build(
        list(config.directories),
        config.author_email,
        config.template or DEFAULT_TEMPLATE,
        date_str,
        jobs=config.jobs,
        now=now,
        run=run,
        report_error=report_error,
        warnings=warnings,
    )
