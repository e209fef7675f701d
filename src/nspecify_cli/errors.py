"""Error classification and user-facing error panels."""

import os
import traceback
from enum import Enum

import httpx
from rich.markup import escape
from rich.panel import Panel

from .config import ISSUES_URL


class ErrorKind(str, Enum):
    NETWORK = "network"
    PERMISSION = "permission"
    INVALID_INPUT = "invalid_input"
    MISSING_DEPENDENCY = "missing_dependency"
    FILE_SYSTEM = "file_system"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class NspecifyError(Exception):
    """An expected failure carrying a kind and optional hints for the user."""

    def __init__(self, message: str, *, kind: ErrorKind = ErrorKind.UNKNOWN, context: str | None = None, suggestion: str | None = None):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.context = context
        self.suggestion = suggestion


def detect_error_kind(exc: BaseException) -> ErrorKind:
    """Classify an exception for suggestion lookup."""
    if isinstance(exc, NspecifyError):
        return exc.kind
    if isinstance(exc, (httpx.TransportError, httpx.HTTPStatusError)):
        return ErrorKind.NETWORK
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION
    if isinstance(exc, (FileNotFoundError, FileExistsError, IsADirectoryError, NotADirectoryError)):
        return ErrorKind.FILE_SYSTEM

    message = str(exc).lower()
    if any(word in message for word in ("network", "timeout", "timed out", "certificate", "ssl")):
        return ErrorKind.NETWORK
    if "permission" in message:
        return ErrorKind.PERMISSION
    if "file" in message or "directory" in message:
        return ErrorKind.FILE_SYSTEM
    if "invalid" in message or "illegal" in message:
        return ErrorKind.INVALID_INPUT
    if "not found" in message or "missing" in message:
        return ErrorKind.MISSING_DEPENDENCY
    return ErrorKind.UNKNOWN


def error_suggestions(kind: ErrorKind, exc: BaseException | None = None) -> list[str]:
    message = str(exc).lower() if exc is not None else ""
    suggestions: list[str] = []

    if kind is ErrorKind.NETWORK:
        suggestions.append("Check your internet connection")
        suggestions.append("Verify firewall/proxy settings")
        if "certificate" in message or "ssl" in message:
            suggestions.append("Try the --skip-tls flag (not recommended)")
            suggestions.append("Update your system certificates")
        if "rate limit" in message or "403" in message:
            suggestions.append("Set GH_TOKEN or GITHUB_TOKEN, or pass --github-token")
        suggestions.append("Try again in a few moments")
    elif kind is ErrorKind.PERMISSION:
        suggestions.append("Check directory/file permissions")
        if os.name == "nt":
            suggestions.append("Run as Administrator if needed")
        else:
            suggestions.append("Make sure you own the target directory")
    elif kind is ErrorKind.FILE_SYSTEM:
        suggestions.append("Check that the path exists and is writable")
        suggestions.append("Choose a different project name or use --here")
    elif kind is ErrorKind.INVALID_INPUT:
        suggestions.append("Run 'nspecify --help' for usage information")
    elif kind is ErrorKind.MISSING_DEPENDENCY:
        suggestions.append("Run 'nspecify check' to see which tools are missing")
    elif kind is ErrorKind.CONFIGURATION:
        suggestions.append("Review your command-line options and environment variables")

    if isinstance(exc, NspecifyError) and exc.suggestion:
        suggestions.insert(0, exc.suggestion)
    return suggestions


def error_panel(exc: BaseException, *, context: str | None = None, show_traceback: bool = False) -> Panel:
    """Build the red panel printed when a command fails."""
    kind = detect_error_kind(exc)
    lines = [f"[red]{escape(str(exc)) or type(exc).__name__}[/red]"]

    ctx = context or getattr(exc, "context", None)
    if ctx:
        lines.append(f"[bright_black]Context: {escape(ctx)}[/bright_black]")

    suggestions = error_suggestions(kind, exc)
    if suggestions:
        lines.append("")
        lines.append("[yellow]Suggestions:[/yellow]")
        lines.extend(f"[yellow]  • {escape(s)}[/yellow]" for s in suggestions)

    if show_traceback:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        lines.append("")
        lines.append(f"[bright_black]{escape(tb.rstrip())}[/bright_black]")

    lines.append("")
    lines.append(f"[bright_black]For more help run with --debug or visit {ISSUES_URL}[/bright_black]")
    return Panel("\n".join(lines), title="[red]Error[/red]", border_style="red", padding=(1, 2))
