#!/usr/bin/env python3
"""
nspecify CLI - Setup tool for Spec-Driven Development projects

Usage:
    nspecify init <project-name>
    nspecify init --here
    nspecify check

Or install globally:
    uv tool install --from . nspecify-cli
"""

import asyncio
import shlex
import shutil
import sys
import tempfile
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path

import typer
from rich.align import Align
from rich.console import Console
from rich.panel import Panel

from . import cache
from .config import (
    AI_CHOICES,
    DEFAULT_AI,
    PROJECT_NAME_PATTERN,
    SCRIPT_TYPE_CHOICES,
    default_script_type,
)
from .errors import error_panel
from .github import build_client, download_asset, fetch_latest_release, find_template_asset
from .keyboard import KeySource, open_key_input
from .logger import Logger
from .project import ensure_executable_scripts, extract_template, init_git_repo, is_git_repo
from .selector import select_with_arrows
from .surface import RenderSurface
from .tools import check_all_tools
from .tracker import StepTracker, create_live_tracker

console = Console()

TAGLINE = "nspecify - Spec-Driven Development Toolkit"


class CliContext:
    """Per-process state handed to every command through ``ctx.obj``.

    Holds the one key source of the process; it is opened lazily so that
    non-interactive commands never touch the terminal.
    """

    def __init__(self, console: Console = console, logger: Logger | None = None, keys: KeySource | None = None):
        self.console = console
        self.logger = logger or Logger(console)
        self._keys = keys

    @property
    def keys(self) -> KeySource:
        if self._keys is None:
            self._keys = KeySource(open_key_input(), logger=self.logger)
        return self._keys

    def close(self) -> None:
        if self._keys is not None:
            self._keys.close()


def _version() -> str:
    try:
        return package_version("nspecify-cli")
    except PackageNotFoundError:
        return "0.0.0"


def _version_callback(value: bool):
    if value:
        console.print(f"nspecify {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="nspecify",
    help="Setup tool for Spec-Driven Development projects",
    add_completion=False,
    invoke_without_command=True,
)
cache_app = typer.Typer(help="Manage downloaded template archives")
app.add_typer(cache_app, name="cache")


def _state(ctx: typer.Context) -> CliContext:
    if ctx.obj is None:
        ctx.obj = CliContext()
        ctx.call_on_close(ctx.obj.close)
    return ctx.obj


def _run(coro):
    """Run a command coroutine; Ctrl+C outside raw mode cancels quietly."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(0)


@app.callback()
def callback(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    show_version: bool = typer.Option(False, "--version", "-v", help="Display version number", callback=_version_callback, is_eager=True),
):
    """Show a usage hint when no subcommand is provided."""
    state = _state(ctx)
    if debug:
        state.logger.debug_enabled = True
        state.logger.debug("Debug mode enabled")
    if ctx.invoked_subcommand is None:
        state.console.print(Align.center(f"[bold cyan]{TAGLINE}[/bold cyan]"))
        state.console.print(Align.center("[dim]Run 'nspecify --help' for usage information[/dim]"))
        state.console.print()


@app.command()
def check(
    ctx: typer.Context,
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output except errors"),
):
    """Check that all required tools are installed."""
    state = _state(ctx)
    out = state.console
    if not quiet:
        out.print("[bold]Checking for installed tools...[/bold]\n")

    async def run_checks():
        if quiet:
            return await check_all_tools(StepTracker("Check Available Tools"))
        tracker, updater = create_live_tracker("Check Available Tools", RenderSurface(out), logger=state.logger)
        with updater:
            return await check_all_tools(tracker)

    results = _run(run_checks())
    for status in results.values():
        state.logger.debug(f"{status.name}: path={status.path} version={status.version_text}")

    if not all(status.ok for status in results.values()):
        out.print("\n[red]✗ System check failed[/red]")
        for status in results.values():
            if not status.ok:
                out.print(f"  [yellow]{status.error}[/yellow]")
        out.print("[yellow]Please install missing tools and try again.[/yellow]")
        raise typer.Exit(1)

    if not quiet:
        out.print("\n[bold green]✓ All system requirements met![/bold green]")
        out.print("[dim]You can now use nspecify to create spec-driven projects.[/dim]")


def _fail(message: str, title: str = "Error") -> None:
    console.print()
    console.print(Panel(message, title=f"[red]{title}[/red]", border_style="red", padding=(1, 2)))
    raise typer.Exit(1)


def _remove_new_project(project_path: Path, here: bool) -> None:
    """Roll back a project directory created by this run; never the current one."""
    if not here and project_path.exists():
        shutil.rmtree(project_path)


INIT_STEPS = [
    ("fetch", "Fetch latest release"),
    ("download", "Download template"),
    ("extract", "Extract template"),
    ("cleanup", "Remove temporary archive"),
    ("chmod", "Ensure scripts executable"),
    ("git", "Initialize git repository"),
    ("final", "Finalize"),
]


async def _obtain_template(tracker: StepTracker, work_dir: Path, ai: str, script: str, *, skip_tls: bool, github_token: str | None, use_cache: bool, debug: bool, logger: Logger) -> tuple[Path, bool]:
    """Return (zip path, came from cache)."""
    if use_cache:
        cached = cache.get_cached_template(ai, script, logger=logger)
        if cached is not None:
            tracker.skip("fetch", "using cached template")
            tracker.complete("download", f"cached {cached.name}")
            return cached, True

    async with build_client(skip_tls) as client:
        tracker.start("fetch", "contacting GitHub API")
        release = await fetch_latest_release(client, github_token=github_token, debug=debug)
        asset = find_template_asset(release, ai, script)
        tracker.complete("fetch", f"release {release.get('tag_name', '?')} ({asset.get('size', 0):,} bytes)")

        tracker.start("download", asset["name"])

        def on_progress(downloaded: int, total: int) -> None:
            if total:
                tracker.update("download", "running", f"{downloaded * 100 // total}%")

        zip_path = await download_asset(client, asset, work_dir / asset["name"], github_token=github_token, on_progress=on_progress)
        tracker.complete("download", asset["name"])

    if use_cache:
        cache.cache_template(ai, script, zip_path, logger=logger)
    return zip_path, False


async def _run_init(state: CliContext, project_path: Path, *, here: bool, ai: str, script: str, no_git: bool, should_init_git: bool, skip_tls: bool, github_token: str | None, use_cache: bool) -> None:
    debug = state.logger.debug_enabled
    tracker, updater = create_live_tracker("Initialize nspecify Project", RenderSurface(state.console), logger=state.logger)
    # Pre steps recorded as completed before live rendering
    tracker.add("precheck", "Check required tools")
    tracker.complete("precheck", "ok")
    tracker.add("ai-select", "Select AI assistant")
    tracker.complete("ai-select", ai)
    tracker.add("script-select", "Select script type")
    tracker.complete("script-select", script)
    for key, label in INIT_STEPS:
        tracker.add(key, label)

    with updater:
        try:
            with tempfile.TemporaryDirectory(prefix="nspecify-") as work_dir:
                zip_path, from_cache = await _obtain_template(
                    tracker, Path(work_dir), ai, script,
                    skip_tls=skip_tls, github_token=github_token, use_cache=use_cache, debug=debug, logger=state.logger,
                )

                tracker.start("extract")
                try:
                    summary = await asyncio.to_thread(extract_template, zip_path, project_path, is_current_dir=here)
                except Exception as e:
                    tracker.error("extract", str(e))
                    raise
                detail = f"{summary['entries']} entries, {summary['items']} top-level items"
                if summary["flattened"]:
                    detail += ", flattened"
                tracker.complete("extract", detail)

            if from_cache:
                tracker.skip("cleanup", "cached archive kept")
            else:
                tracker.complete("cleanup")

            tracker.start("chmod")
            updated, failures = ensure_executable_scripts(project_path)
            chmod_detail = f"{updated} updated" + (f", {len(failures)} failed" if failures else "")
            (tracker.error if failures else tracker.complete)("chmod", chmod_detail)
            for failure in failures:
                state.logger.debug(f"chmod failed: {failure}")

            if no_git:
                tracker.skip("git", "--no-git flag")
            else:
                tracker.start("git")
                if await is_git_repo(project_path):
                    tracker.complete("git", "existing repo detected")
                elif should_init_git:
                    ok, err = await init_git_repo(project_path)
                    if ok:
                        tracker.complete("git", "initialized")
                    else:
                        tracker.error("git", err or "init failed")
                else:
                    tracker.skip("git", "git not available")

            tracker.complete("final", "project ready")
        except Exception as e:
            tracker.error("final", str(e))
            raise


@app.command()
def init(
    ctx: typer.Context,
    project_name: str = typer.Argument(None, help="Name for your new project directory (optional if using --here)"),
    ai_assistant: str = typer.Option(None, "--ai", help=f"AI assistant to use: {', '.join(AI_CHOICES)}"),
    script_type: str = typer.Option(None, "--script", help="Script type to use: sh or ps"),
    no_git: bool = typer.Option(False, "--no-git", help="Skip git repository initialization"),
    here: bool = typer.Option(False, "--here", help="Initialize project in the current directory instead of creating a new one"),
    force: bool = typer.Option(False, "--force", help="Force merge/overwrite when using --here (skip confirmation)"),
    skip_tls: bool = typer.Option(False, "--skip-tls", help="Skip SSL/TLS verification (not recommended)"),
    github_token: str = typer.Option(None, "--github-token", help="GitHub token to use for API requests (or set GH_TOKEN or GITHUB_TOKEN environment variable)"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Always download a fresh template"),
):
    """
    Initialize a new nspecify project from the latest template.

    Examples:
        nspecify init my-project
        nspecify init my-project --ai claude --script sh
        nspecify init --here --no-git
        nspecify init --here --force
    """
    state = _state(ctx)
    out = state.console

    if here and project_name:
        _fail("Cannot specify both project name and --here flag")
    if not here and not project_name:
        _fail("Must specify either a project name or use --here flag")

    if here:
        project_path = Path.cwd()
        project_name = project_path.name
        if (project_path / ".specify").exists() and not force:
            _fail("This directory already has a .specify folder.\nRemove it first or pass --force to merge.", "Directory Conflict")
        existing = list(project_path.iterdir())
        if existing and not force:
            out.print(f"[yellow]Warning:[/yellow] Current directory is not empty ({len(existing)} items)")
            out.print("[yellow]Template files will be merged with existing content and may overwrite existing files[/yellow]")
            if not typer.confirm("Do you want to continue?"):
                out.print("[yellow]Operation cancelled[/yellow]")
                raise typer.Exit(0)
    else:
        if not PROJECT_NAME_PATTERN.match(project_name):
            _fail("Project name must start with a letter and contain only letters, numbers, hyphens, and underscores", "Invalid Project Name")
        project_path = Path(project_name).resolve()
        if project_path.exists():
            _fail(
                f"Directory '[cyan]{project_name}[/cyan]' already exists\n"
                "Please choose a different project name or remove the existing directory.",
                "Directory Conflict",
            )

    setup_lines = [
        "[cyan]nspecify Project Setup[/cyan]",
        "",
        f"{'Project':<15} [green]{project_path.name}[/green]",
        f"{'Working Path':<15} [dim]{Path.cwd()}[/dim]",
    ]
    if not here:
        setup_lines.append(f"{'Target Path':<15} [dim]{project_path}[/dim]")
    out.print(Panel("\n".join(setup_lines), border_style="cyan", padding=(1, 2)))

    should_init_git = False
    if not no_git:
        should_init_git = shutil.which("git") is not None
        if not should_init_git:
            out.print("[yellow]Git not found - will skip repository initialization[/yellow]")

    if ai_assistant:
        if ai_assistant not in AI_CHOICES:
            _fail(f"Invalid AI assistant '{ai_assistant}'. Choose from: {', '.join(AI_CHOICES)}")
        selected_ai = ai_assistant
    elif sys.stdin.isatty():
        selected_ai = select_with_arrows(AI_CHOICES, "Choose your AI assistant:", DEFAULT_AI, keys=state.keys, console=out)
    else:
        selected_ai = DEFAULT_AI

    if script_type:
        if script_type not in SCRIPT_TYPE_CHOICES:
            _fail(f"Invalid script type '{script_type}'. Choose from: {', '.join(SCRIPT_TYPE_CHOICES)}")
        selected_script = script_type
    else:
        default_script = default_script_type()
        if sys.stdin.isatty():
            selected_script = select_with_arrows(SCRIPT_TYPE_CHOICES, "Choose script type (or press Enter)", default_script, keys=state.keys, console=out)
        else:
            selected_script = default_script

    out.print(f"[cyan]Selected AI assistant:[/cyan] {selected_ai}")
    out.print(f"[cyan]Selected script type:[/cyan] {selected_script}")

    try:
        _run(_run_init(
            state,
            project_path,
            here=here,
            ai=selected_ai,
            script=selected_script,
            no_git=no_git,
            should_init_git=should_init_git,
            skip_tls=skip_tls,
            github_token=github_token,
            use_cache=not no_cache,
        ))
    except typer.Exit:
        # Cancelled while running
        _remove_new_project(project_path, here)
        raise
    except Exception as e:
        out.print(error_panel(e, context="Project initialization failed", show_traceback=state.logger.debug_enabled))
        _remove_new_project(project_path, here)
        raise typer.Exit(1)

    out.print("\n[bold green]Project ready.[/bold green]")

    steps_lines = []
    if not here:
        steps_lines.append(f"1. Go to the project folder: [cyan]cd {shlex.quote(project_name)}[/cyan]")
    else:
        steps_lines.append("1. You're already in the project directory!")
    steps_lines.append("2. Read [cyan].specify/overview.md[/cyan] for detailed guidance")
    if selected_script == "ps":
        steps_lines.append("3. Start a feature: [cyan].\\scripts\\create-new-feature.ps1 my-feature[/cyan]")
    else:
        steps_lines.append("3. Start a feature: [cyan]./scripts/create-new-feature.sh my-feature[/cyan]")
    steps_lines.append("4. Start using slash commands with your AI agent:")
    steps_lines.append("   4.1 [cyan]/specify[/] - Create specifications")
    steps_lines.append("   4.2 [cyan]/plan[/] - Create implementation plans")
    steps_lines.append("   4.3 [cyan]/tasks[/] - Generate actionable tasks")

    out.print()
    out.print(Panel("\n".join(steps_lines), title="Next Steps", border_style="cyan", padding=(1, 2)))


@cache_app.command("info")
def cache_info(ctx: typer.Context):
    """Show cached template archives."""
    state = _state(ctx)
    stats = cache.cache_stats()
    state.console.print(f"[cyan]Cache directory:[/cyan] {cache.cache_dir()}")
    state.logger.key_value({
        "Files": stats["file_count"],
        "Total size": f"{stats['total_size']:,} bytes",
        "Oldest": stats["oldest"] or "-",
        "Newest": stats["newest"] or "-",
    })


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    ai_assistant: str = typer.Option(None, "--ai", help="Only clear the template for this AI assistant"),
    script_type: str = typer.Option(None, "--script", help="Only clear the template for this script type"),
):
    """Remove cached template archives."""
    state = _state(ctx)
    if bool(ai_assistant) != bool(script_type):
        _fail("--ai and --script must be given together")
    removed = cache.clear_cache(ai_assistant, script_type, logger=state.logger)
    state.logger.success(f"Removed {removed} cached template(s)")


@cache_app.command("prune")
def cache_prune(
    ctx: typer.Context,
    days: float = typer.Option(7, "--days", help="Remove templates older than this many days"),
):
    """Remove cached templates older than a given age."""
    state = _state(ctx)
    pruned = cache.prune_cache(days * 24 * 60 * 60, logger=state.logger)
    state.logger.success(f"Pruned {pruned} cached template(s)")


def main():
    state = CliContext()
    try:
        app(obj=state)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    finally:
        # Last-resort terminal restoration for any exit path
        state.close()


if __name__ == "__main__":
    main()
