"""Constants and environment-driven settings for the nspecify CLI."""

import os
import re
from pathlib import Path

AI_CHOICES = {
    "claude": "Claude Code",
    "gemini": "Gemini CLI",
    "copilot": "GitHub Copilot",
    "cursor": "Cursor",
}
DEFAULT_AI = "claude"

SCRIPT_TYPE_CHOICES = {"sh": "POSIX Shell (bash/zsh)", "ps": "PowerShell"}

GITHUB_OWNER = "pnocera"
GITHUB_REPO = "nspecify"
ISSUES_URL = f"https://github.com/{GITHUB_OWNER}/{GITHUB_REPO}/issues"

PROJECT_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")

# Claude CLI local installation path after migrate-installer
CLAUDE_LOCAL_PATHS = [
    Path.home() / ".claude" / "local" / "claude",
    Path.home() / ".claude" / "local" / "claude.exe",
    Path.home() / "AppData" / "Local" / "claude" / "claude.exe",
]
GIT_MIN_VERSION = (2, 0, 0)

# Terminal engine timing (seconds)
DEBOUNCE_DELAY = 0.05
REFRESH_PER_SECOND = 10
DEFAULT_WIDTH = 80

CACHE_MAX_AGE = 24 * 60 * 60
CACHE_PRUNE_AGE = 7 * 24 * 60 * 60

DOWNLOAD_CHUNK_SIZE = 8192
REQUEST_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 60

_TRUTHY = {"1", "true", "yes", "on"}


def default_script_type() -> str:
    return "ps" if os.name == "nt" else "sh"


def debug_from_env() -> bool:
    """Return True when NSPECIFY_DEBUG or DEBUG asks for verbose output."""
    for name in ("NSPECIFY_DEBUG", "DEBUG"):
        if os.getenv(name, "").strip().lower() in _TRUTHY:
            return True
    return False
