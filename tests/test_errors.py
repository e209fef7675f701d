"""
Tests for error classification and the error panel.
"""

from __future__ import annotations

import httpx
import pytest

from conftest import make_console, output_of
from nspecify_cli.errors import ErrorKind, NspecifyError, detect_error_kind, error_panel, error_suggestions


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (NspecifyError("x", kind=ErrorKind.CONFIGURATION), ErrorKind.CONFIGURATION),
        (httpx.ConnectError("refused"), ErrorKind.NETWORK),
        (PermissionError("denied"), ErrorKind.PERMISSION),
        (FileExistsError("exists"), ErrorKind.FILE_SYSTEM),
        (RuntimeError("request timed out"), ErrorKind.NETWORK),
        (RuntimeError("invalid project name"), ErrorKind.INVALID_INPUT),
        (RuntimeError("git not found"), ErrorKind.MISSING_DEPENDENCY),
        (RuntimeError("something odd"), ErrorKind.UNKNOWN),
    ],
)
def test_detect_error_kind(exc, kind):
    assert detect_error_kind(exc) is kind


def test_rate_limit_suggests_token():
    exc = NspecifyError("GitHub API returned 403 (rate limit exceeded)", kind=ErrorKind.NETWORK)
    suggestions = error_suggestions(ErrorKind.NETWORK, exc)
    assert any("GITHUB_TOKEN" in s for s in suggestions)


def test_certificate_errors_suggest_skip_tls():
    suggestions = error_suggestions(ErrorKind.NETWORK, RuntimeError("SSL certificate verify failed"))
    assert any("--skip-tls" in s for s in suggestions)


def test_custom_suggestion_comes_first():
    exc = NspecifyError("boom", kind=ErrorKind.MISSING_DEPENDENCY, suggestion="Install git")
    assert error_suggestions(exc.kind, exc)[0] == "Install git"


def test_unknown_kind_has_no_suggestions():
    assert error_suggestions(ErrorKind.UNKNOWN, RuntimeError("x")) == []


def test_error_panel_renders_message_context_and_hints():
    console = make_console(width=100)
    exc = NspecifyError("No release asset matches [x]", kind=ErrorKind.MISSING_DEPENDENCY, context="Available assets: a.zip")
    console.print(error_panel(exc))
    text = output_of(console)
    assert "Error" in text
    assert "No release asset matches [x]" in text
    assert "Context: Available assets: a.zip" in text
    assert "Suggestions:" in text
    assert "nspecify check" in text


def test_error_panel_with_traceback():
    console = make_console(width=100)
    try:
        raise ValueError("broken value")
    except ValueError as exc:
        console.print(error_panel(exc, context="Parsing", show_traceback=True))
    text = output_of(console)
    assert "Traceback" in text
    assert "Context: Parsing" in text
