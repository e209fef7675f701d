"""Detection of the external tools nspecify relies on."""

import asyncio
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from .config import CLAUDE_LOCAL_PATHS, GIT_MIN_VERSION
from .tracker import StepTracker

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


@dataclass
class ToolStatus:
    name: str
    installed: bool = False
    path: str | None = None
    version: tuple[int, int, int] | None = None
    meets_minimum: bool = True
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.installed and self.meets_minimum and self.error is None

    @property
    def version_text(self) -> str | None:
        return ".".join(str(p) for p in self.version) if self.version else None


def parse_version(text: str) -> tuple[int, int, int] | None:
    match = _VERSION_RE.search(text or "")
    if not match:
        return None
    return tuple(int(part) for part in match.groups())


async def get_command_version(command: str, version_flag: str = "--version") -> str | None:
    """Run ``command --version`` and return its stdout, or None on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            version_flag,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await proc.communicate()
    except OSError:
        return None
    if proc.returncode != 0:
        return None
    return stdout.decode("utf-8", errors="replace").strip()


async def check_tool(command: str, *, min_version: tuple[int, int, int] | None = None, version_flag: str = "--version", local_paths: list[Path] | None = None, install_hint: str | None = None) -> ToolStatus:
    status = ToolStatus(command)

    tool_path = shutil.which(command)
    if tool_path is None:
        for candidate in local_paths or []:
            if candidate.exists() and candidate.is_file():
                tool_path = str(candidate)
                break
    if tool_path is None:
        status.error = f"{command} not found" + (f". {install_hint}" if install_hint else "")
        return status

    status.installed = True
    status.path = tool_path

    output = await get_command_version(tool_path, version_flag)
    if output:
        status.version = parse_version(output)
    if min_version is not None:
        if status.version is None:
            status.error = f"Could not determine {command} version"
        elif status.version < min_version:
            status.meets_minimum = False
            minimum = ".".join(str(p) for p in min_version)
            status.error = f"{command} version {status.version_text} is below minimum required version {minimum}"
    return status


async def check_git() -> ToolStatus:
    return await check_tool("git", min_version=GIT_MIN_VERSION, install_hint="Install from https://git-scm.com/downloads")


async def check_claude() -> ToolStatus:
    return await check_tool("claude", local_paths=CLAUDE_LOCAL_PATHS, install_hint="Install from https://docs.anthropic.com/en/docs/claude-code/setup")


def _tool_detail(status: ToolStatus) -> str:
    if status.ok:
        return status.version_text or "available"
    return status.error or "not found"


async def check_all_tools(tracker: StepTracker) -> dict[str, ToolStatus]:
    """Check git and the Claude CLI, reporting each on the tracker."""
    tracker.add("git", "Git version control")
    tracker.add("claude", "Claude Code CLI")

    results: dict[str, ToolStatus] = {}
    for key, check in (("git", check_git), ("claude", check_claude)):
        tracker.start(key, "checking")
        status = await check()
        results[key] = status
        (tracker.complete if status.ok else tracker.error)(key, _tool_detail(status))
    return results
