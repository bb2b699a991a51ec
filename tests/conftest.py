"""Shared test fixtures."""

import os
import stat
import sys
from pathlib import Path

import pytest

from vault_orchestra.config import OrchestraSettings


SAMPLE_TASK = """# Task: ABC-1 - Fix the login bug

| Field | Value |
|-------|-------|
| Status | IN_PROGRESS |
| Project | web |
| Trust Level | medium |
| Priority | high |
| Created | 2026-01-04 |
| Activated | 2026-01-05 |
| Branch | fix/login |

## Task Description
Users are logged out after a password change.

## Acceptance Criteria
- [ ] tests pass
- [x] bug reproduced

## Execution Log
- [2026-01-05T10:00:00Z] Started
"""


def make_task_document(
    task_id: str = "ABC-1",
    title: str = "Fix the login bug",
    status: str = "IN_PROGRESS",
    criteria=(("tests pass", False), ("bug reproduced", True)),
    log=("[2026-01-05T10:00:00Z] Started",),
    repo_path: str = "",
) -> str:
    """Render a task document in the vault format."""
    rows = [
        "| Field | Value |",
        "|-------|-------|",
        f"| Status | {status} |",
        "| Project | web |",
        "| Priority | high |",
    ]
    if repo_path:
        rows.append(f"| Repo Path | {repo_path} |")

    lines = [f"# Task: {task_id} - {title}", "", *rows, "", "## Task Description", "Do the work.", ""]
    lines.append("## Acceptance Criteria")
    lines.extend(f"- [{'x' if done else ' '}] {text}" for text, done in criteria)
    lines.extend(["", "## Execution Log"])
    lines.extend(f"- {entry}" for entry in log)
    return "\n".join(lines) + "\n"


@pytest.fixture()
def settings(tmp_path: Path) -> OrchestraSettings:
    return OrchestraSettings(
        vault_path=tmp_path / "vault",
        code_projects_path=tmp_path / "projects",
    )


@pytest.fixture()
def layout(settings):
    return settings.layout


@pytest.fixture()
def fake_claude(tmp_path: Path):
    """Factory writing an executable Python script that stands in for the CLI."""

    def _make(body: str, name: str = "fake-claude") -> str:
        script = tmp_path / name
        script.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return os.fspath(script)

    return _make
