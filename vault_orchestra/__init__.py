"""Vault Orchestra - run Claude Code against tasks kept in an Obsidian vault.

Tasks are Markdown documents in ``<vault>/_orchestra``. The orchestrator
watches them, drives the Claude Code CLI against the active task, streams its
output and moves finished documents through the review workflow
(approve, reject, block).
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Package exports
from vault_orchestra.exceptions import (
    OrchestraError,
    ConfigurationError,
    UnknownStatusError,
    InvalidTransitionError,
    SpawnError,
    DeliveryError,
    RateLimitError,
)

__all__ = [
    "__version__",
    "__license__",
    "OrchestraError",
    "ConfigurationError",
    "UnknownStatusError",
    "InvalidTransitionError",
    "SpawnError",
    "DeliveryError",
    "RateLimitError",
]
