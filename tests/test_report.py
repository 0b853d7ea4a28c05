from __future__ import annotations

import datetime as dt

import pytest

from gitlog_summary.config import ReportConfig
from gitlog_summary.report import DEFAULT_TEMPLATE, build, build_report, parse_date
from gitlog_summary.template import TemplateError

DATE = "2025-03-01"
NOW = dt.datetime(2025, 3, 1, 18, 5)


def _api_responses(fake_git) -> dict:
    return {
        ("api", fake_git.reflog(DATE)): "refs/heads/main@{0}\nrefs/heads/feature@{0}\n",
        ("api", fake_git.log("main", DATE)): "m1|09:00|fix: login\n",
        ("api", fake_git.log("feature", DATE)): "f1|08:30|feat: search\n",
        ("api", fake_git.unpushed("main")): "",
        ("api", fake_git.unpushed("feature")): "f1 feat: search\n",
        ("api", fake_git.STAGED): "src/app.py\n",
        ("api", fake_git.UNSTAGED): "README.md\n",
        ("api", fake_git.UNTRACKED): "notes.txt\n",
    }


def test_default_template_matches_classic_layout(fake_git) -> None:
    out = build(["/src/api"], "", DEFAULT_TEMPLATE, DATE, now=NOW, run=fake_git(_api_responses(fake_git)))
    assert out == (
        "### Commits\n"
        "- 08:30 [api] feat: search\n"
        "- 09:00 [api] fix: login\n"
        "\n"
        "### Staged\n"
        "- [api] src/app.py\n"
        "\n"
        "### Unstaged\n"
        "- [api] README.md\n"
        "- [api] notes.txt (new)\n"
        "\n"
        "(2025-03-01 18:05)\n"
        "\n"
        "---\n"
        "\n"
    )


def test_default_template_with_no_activity_keeps_timestamp_only(fake_git) -> None:
    out = build(["/src/api"], "", DEFAULT_TEMPLATE, DATE, now=NOW, run=fake_git({}))
    assert out == "\n(2025-03-01 18:05)\n\n---\n\n"


def test_grouped_template_hides_empty_repositories(fake_git) -> None:
    template = (
        "{{#each repositories}}\n"
        "{{#if (or commits staged unstaged)}}\n"
        "## {{name}}\n"
        "{{#each commits}}\n"
        "- {{time}} {{message}} ({{branch}})\n"
        "{{/each}}\n"
        "{{#each branches}}\n"
        "{{#eq unpushedCount -1}}\n"
        "- {{name}}: no remote\n"
        "{{else}}\n"
        "{{#unless isPushed}}\n"
        "- {{name}}: {{unpushedCount}} unpushed\n"
        "{{/unless}}\n"
        "{{/eq}}\n"
        "{{/each}}\n"
        "{{/if}}\n"
        "{{/each}}\n"
        "{{date}}"
    )
    out = build(["/src/api", "/src/quiet"], "", template, DATE, now=NOW, run=fake_git(_api_responses(fake_git)))
    assert out == (
        "## api\n"
        "- 08:30 feat: search (feature)\n"
        "- 09:00 fix: login (main)\n"
        "- feature: 1 unpushed\n"
        "2025-03-01"
    )


def test_some_helper_over_report_commits(fake_git) -> None:
    template = '{{#some commits messageStartsWith="fix"}}has fixes{{/some}}|{{#some commits messageNotStartsWithAny="fix,feat"}}other{{else}}only fix/feat{{/some}}'
    out = build(["/src/api"], "", template, DATE, now=NOW, run=fake_git(_api_responses(fake_git)))
    assert out == "has fixes|only fix/feat"


def test_unclosed_block_returns_empty_and_reports(fake_git) -> None:
    reported: list[TemplateError] = []
    run = fake_git(_api_responses(fake_git))
    out = build(["/src/api"], "", "{{#if commits}}\n- {{commits.length}}\n", DATE, now=NOW, run=run, report_error=reported.append)
    assert out == ""
    assert len(reported) == 1
    assert isinstance(reported[0], TemplateError)
    assert run.calls == []


def test_render_failure_returns_empty_and_reports(fake_git) -> None:
    reported: list[TemplateError] = []
    out = build(["/src/api"], "", "ok {{#bogus commits}}x{{/bogus}}", DATE, now=NOW, run=fake_git(_api_responses(fake_git)), report_error=reported.append)
    assert out == ""
    assert "bogus" in str(reported[0])


def test_default_error_reporter_prints_to_stderr(fake_git, capsys) -> None:
    out = build(["/src/api"], "", "{{/if}}", DATE, now=NOW, run=fake_git({}))
    assert out == ""
    assert "Template error:" in capsys.readouterr().err


def test_output_is_not_trimmed(fake_git) -> None:
    out = build(["/src/api"], "", "\n\n  {{date}}  \n\n", DATE, now=NOW, run=fake_git({}))
    assert out == "\n\n  2025-03-01  \n\n"


def test_date_defaults_to_today(fake_git) -> None:
    run = fake_git({})
    out = build(["/src/api"], "", "{{date}} {{timestamp}}", now=NOW, run=run)
    assert out == "2025-03-01 2025-03-01 18:05"
    assert ("api", fake_git.reflog("2025-03-01")) in run.calls


def test_warnings_collect_repository_errors(fake_git) -> None:
    warnings: list[str] = []
    build(["/src/api"], "", "x", DATE, now=NOW, run=fake_git({}), warnings=warnings)
    assert warnings and warnings[0].startswith("api: ")


def test_build_report_uses_config(fake_git) -> None:
    run = fake_git(
        {
            ("api", fake_git.head()): "main\n",
            ("api", fake_git.log("main", DATE, author="me@example.com")): "m1|09:00|mine\n",
        }
    )
    config = ReportConfig(directories=("/src/api",), author_email="me@example.com", template="{{#each commits}}{{message}}{{/each}}")
    assert build_report(config, DATE, now=NOW, run=run) == "mine"

    default_cfg = ReportConfig(directories=("/src/api",), author_email="me@example.com")
    assert build_report(default_cfg, DATE, now=NOW, run=run).startswith("### Commits\n- 09:00 [api] mine\n")


def test_parse_date() -> None:
    assert parse_date(" 2025-03-01 ") == "2025-03-01"
    with pytest.raises(ValueError):
        parse_date("03/01/2025")


def test_end_to_end_with_real_repository(make_repo) -> None:
    repo = make_repo("service")
    repo.commit("old.txt", "yesterday", "2025-02-28T12:00:00")
    repo.commit("a.txt", "init", f"{DATE}T07:10:00")
    repo.git("checkout", "-q", "-b", "feature")
    repo.commit("b.txt", "feat: b", f"{DATE}T08:30:00")
    repo.git("checkout", "-q", "main")
    repo.commit("c.txt", "fix: c", f"{DATE}T09:00:00")
    (repo.path / "c.txt").write_text("edited\n", encoding="utf-8")
    (repo.path / "staged.txt").write_text("s\n", encoding="utf-8")
    repo.git("add", "staged.txt")
    (repo.path / "untracked.txt").write_text("u\n", encoding="utf-8")

    template = (
        "{{#each commits}}\n"
        "{{time}} {{message}} [{{branch}}]\n"
        "{{/each}}\n"
        "{{#each branches}}\n"
        "{{name}}={{unpushedCount}}\n"
        "{{/each}}\n"
        "{{#each staged}}S {{file}}\n{{/each}}\n"
        "{{#each unstaged}}U {{file}}\n{{/each}}\n"
    )
    warnings: list[str] = []
    out = build([str(repo.path)], "dev@example.com", template, DATE, now=NOW, warnings=warnings)

    lines = out.splitlines()
    commit_lines = [line for line in lines if line[:2].isdigit()]
    assert commit_lines == sorted(commit_lines)
    assert len(commit_lines) == 3
    assert commit_lines[0].startswith("07:10 init [")
    assert commit_lines[1:] == ["08:30 feat: b [feature]", "09:00 fix: c [main]"]
    assert "yesterday" not in out
    assert sorted(line for line in lines if "=" in line) == ["feature=-1", "main=-1"]
    assert "S staged.txt" in lines
    assert "U c.txt" in lines
    assert "U untracked.txt (new)" in lines
