from pathlib import Path

import pytest

from vault_orchestra.config import OrchestraSettings, VaultLayout
from vault_orchestra.exceptions import ConfigurationError


REQUIRED = {"OBSIDIAN_VAULT_PATH": "/vault", "CODE_PROJECTS_PATH": "/projects"}


def test_defaults() -> None:
    settings = OrchestraSettings.from_env(REQUIRED)

    assert settings.vault_path == Path("/vault")
    assert settings.code_projects_path == Path("/projects")
    assert settings.claude_code_path == "claude"
    assert settings.log_level == "INFO"
    assert settings.graceful_stop_timeout_ms == 10_000
    assert settings.execution_timeout_ms == 3_600_000
    assert settings.flush_interval_ms == 1500
    assert settings.max_buffer_size == 1500
    assert settings.stability_threshold_ms == 500
    assert settings.use_polling is False


def test_environment_values_are_parsed() -> None:
    settings = OrchestraSettings.from_env({
        **REQUIRED,
        "CLAUDE_CODE_PATH": "/opt/claude",
        "LOG_LEVEL": "debug",
        "GRACEFUL_STOP_TIMEOUT_MS": "250",
        "USE_POLLING": "true",
    })

    assert settings.claude_code_path == "/opt/claude"
    assert settings.log_level == "DEBUG"
    assert settings.graceful_stop_timeout_ms == 250
    assert settings.use_polling is True


def test_overrides_win_and_none_falls_through() -> None:
    settings = OrchestraSettings.from_env(
        {**REQUIRED, "CLAUDE_CODE_PATH": "/env/claude"},
        vault_path="/cli/vault",
        claude_code_path=None,
    )

    assert settings.vault_path == Path("/cli/vault")
    assert settings.claude_code_path == "/env/claude"


def test_missing_required_variable() -> None:
    with pytest.raises(ConfigurationError, match="OBSIDIAN_VAULT_PATH"):
        OrchestraSettings.from_env({"CODE_PROJECTS_PATH": "/projects"})


def test_unparseable_number_names_the_variable() -> None:
    with pytest.raises(ConfigurationError, match="Invalid value for MAX_BUFFER_SIZE"):
        OrchestraSettings.from_env({**REQUIRED, "MAX_BUFFER_SIZE": "lots"})


def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="EXECUTION_TIMEOUT_MS"):
        OrchestraSettings.from_env({**REQUIRED, "EXECUTION_TIMEOUT_MS": "0"})


def test_layout() -> None:
    layout = OrchestraSettings.from_env(REQUIRED).layout

    assert layout == VaultLayout.from_vault(Path("/vault"))
    assert layout.active_path == Path("/vault/_orchestra/ACTIVE.md")
    assert layout.queue_path == Path("/vault/_orchestra/queue")
    assert layout.completed_path == Path("/vault/_orchestra/completed")
    assert layout.blocked_path == Path("/vault/_orchestra/blocked")
    assert layout.lock_path == Path("/vault/_orchestra/.claude.pid")
