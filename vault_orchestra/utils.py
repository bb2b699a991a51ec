"""Utility functions for executable discovery and formatting."""

import asyncio
import os
import platform
import shutil
from typing import Optional


async def find_claude_executable(preferred: str = 'claude') -> Optional[str]:
    """Find a working Claude Code executable.

    Tries the preferred path or command name first. The usual installation
    locations of the current platform are searched only when ``preferred`` is
    a bare command name; an explicit path is never replaced. A candidate
    counts only if ``<candidate> --version`` exits with 0.

    Args:
        preferred: Configured path or command name.

    Returns:
        The first working candidate, or None.
    """
    system = platform.system().lower()

    if system == "windows":
        known_paths = [
            os.path.expanduser("~\\.claude\\local\\claude.exe"),
            os.path.expanduser("~\\AppData\\Local\\claude\\claude.exe"),
            "C:\\Program Files\\claude\\claude.exe",
        ]
    else:
        known_paths = [
            os.path.expanduser("~/.claude/local/claude"),
            "/usr/local/bin/claude",
            "/usr/bin/claude",
        ]
        if system == "darwin":
            known_paths.append("/opt/homebrew/bin/claude")

    candidates = [shutil.which(preferred) or preferred]
    if os.path.basename(preferred) == preferred:
        candidates.extend(path for path in known_paths if os.path.exists(path))

    for candidate in candidates:
        try:
            process = await asyncio.create_subprocess_exec(
                candidate, '--version',
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            await process.communicate()
        except OSError:
            continue
        if process.returncode == 0:
            return candidate

    return None


def format_duration(seconds: float) -> str:
    """Format a duration as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
