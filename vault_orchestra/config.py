"""Settings loading for the orchestrator.

Settings come from environment variables, with explicit overrides (usually
CLI options) taking precedence. The vault layout is derived from the vault
root and never configured separately.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError, field_validator

from vault_orchestra.exceptions import ConfigurationError


ORCHESTRA_DIR = "_orchestra"
ACTIVE_FILE = "ACTIVE.md"
# pid of the running CLI, shared by every orchestrator process on the vault.
LOCK_FILE = ".claude.pid"

# Content of the active file while no task is active.
ACTIVE_PLACEHOLDER = """# Task: None

No active task. Use `vault-orchestra activate <filename>` to activate a task from the queue.
"""

# field name -> environment variable
ENV_VARIABLES: Dict[str, str] = {
    'vault_path': 'OBSIDIAN_VAULT_PATH',
    'code_projects_path': 'CODE_PROJECTS_PATH',
    'claude_code_path': 'CLAUDE_CODE_PATH',
    'log_level': 'LOG_LEVEL',
    'graceful_stop_timeout_ms': 'GRACEFUL_STOP_TIMEOUT_MS',
    'execution_timeout_ms': 'EXECUTION_TIMEOUT_MS',
    'flush_interval_ms': 'FLUSH_INTERVAL_MS',
    'max_buffer_size': 'MAX_BUFFER_SIZE',
    'stability_threshold_ms': 'STABILITY_THRESHOLD_MS',
    'use_polling': 'USE_POLLING',
}


@dataclass(frozen=True)
class VaultLayout:
    """Paths of the active file, the three task directories and the run lock."""
    root: Path
    active_path: Path
    queue_path: Path
    completed_path: Path
    blocked_path: Path
    lock_path: Path

    @classmethod
    def from_vault(cls, vault_path: Path) -> 'VaultLayout':
        root = Path(vault_path) / ORCHESTRA_DIR
        return cls(
            root=root,
            active_path=root / ACTIVE_FILE,
            queue_path=root / 'queue',
            completed_path=root / 'completed',
            blocked_path=root / 'blocked',
            lock_path=root / LOCK_FILE,
        )


class OrchestraSettings(BaseModel):
    """Runtime settings for the monitor, the executor and the streamer."""
    vault_path: Path
    code_projects_path: Path
    claude_code_path: str = 'claude'
    log_level: str = 'info'
    graceful_stop_timeout_ms: int = 10_000
    execution_timeout_ms: int = 3_600_000
    flush_interval_ms: int = 1500
    max_buffer_size: int = 1500
    stability_threshold_ms: int = 500
    use_polling: bool = False

    @field_validator(
        'graceful_stop_timeout_ms',
        'execution_timeout_ms',
        'flush_interval_ms',
        'max_buffer_size',
        'stability_threshold_ms',
    )
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('must be positive')
        return value

    @field_validator('log_level')
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper() or 'INFO'

    @property
    def layout(self) -> VaultLayout:
        return VaultLayout.from_vault(self.vault_path)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> 'OrchestraSettings':
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).
            **overrides: Field values that win over the environment; ``None``
                values are ignored so unset CLI options fall through.

        Returns:
            Validated settings.

        Raises:
            ConfigurationError: If a required value is missing or a value
                cannot be parsed.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for field_name, variable in ENV_VARIABLES.items():
            raw = environ.get(variable)
            if raw:
                values[field_name] = raw

        for field_name, value in overrides.items():
            if value is not None:
                values[field_name] = value

        for field_name in ('vault_path', 'code_projects_path'):
            if field_name not in values:
                raise ConfigurationError(
                    f"Missing required environment variable: {ENV_VARIABLES[field_name]}"
                )

        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            field_name = str(first['loc'][0]) if first.get('loc') else 'settings'
            variable = ENV_VARIABLES.get(field_name, field_name)
            raise ConfigurationError(f"Invalid value for {variable}: {first['msg']}") from e
