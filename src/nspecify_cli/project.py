"""Project directory setup: template extraction, script permissions, git."""

import asyncio
import os
import shutil
import tempfile
import zipfile
from pathlib import Path


def _merge_tree(source: Path, dest: Path) -> None:
    for item in source.iterdir():
        dest_path = dest / item.name
        if item.is_dir():
            if dest_path.exists():
                # Recursively copy directory contents
                for sub_item in item.rglob("*"):
                    if sub_item.is_file():
                        dest_file = dest_path / sub_item.relative_to(item)
                        dest_file.parent.mkdir(parents=True, exist_ok=True)
                        shutil.copy2(sub_item, dest_file)
            else:
                shutil.copytree(item, dest_path)
        else:
            shutil.copy2(item, dest_path)


def extract_template(zip_path: Path, project_path: Path, *, is_current_dir: bool = False) -> dict:
    """Extract a template archive into ``project_path``.

    GitHub-style archives with a single root directory are flattened. When
    extracting into the current directory, files are merged over whatever is
    already there. Returns a summary with entry and item counts.
    """
    with zipfile.ZipFile(zip_path, "r") as zip_ref:
        entries = len(zip_ref.namelist())
        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            zip_ref.extractall(temp_path)

            extracted_items = list(temp_path.iterdir())
            source_dir = temp_path
            flattened = False
            if len(extracted_items) == 1 and extracted_items[0].is_dir():
                source_dir = extracted_items[0]
                flattened = True

            project_path.mkdir(parents=True, exist_ok=is_current_dir)
            _merge_tree(source_dir, project_path)

    return {
        "entries": entries,
        "items": len(list(project_path.iterdir())),
        "flattened": flattened,
    }


def ensure_executable_scripts(project_path: Path) -> tuple[int, list[str]]:
    """Ensure POSIX .sh scripts under the project have execute bits.

    Returns (updated count, failures). No-op on Windows.
    """
    if os.name == "nt":
        return 0, []
    failures: list[str] = []
    updated = 0
    for scripts_root in (project_path / ".specify" / "scripts", project_path / "scripts"):
        if not scripts_root.is_dir():
            continue
        for script in scripts_root.rglob("*.sh"):
            if script.is_symlink() or not script.is_file():
                continue
            try:
                with script.open("rb") as f:
                    if f.read(2) != b"#!":
                        continue
                mode = script.stat().st_mode
                if mode & 0o111:
                    continue
                new_mode = mode
                if mode & 0o400:
                    new_mode |= 0o100
                if mode & 0o040:
                    new_mode |= 0o010
                if mode & 0o004:
                    new_mode |= 0o001
                os.chmod(script, new_mode | 0o100)
                updated += 1
            except OSError as e:
                failures.append(f"{script.relative_to(project_path)}: {e}")
    return updated, failures


async def _git(project_path: Path, *args: str) -> tuple[int, str]:
    proc = await asyncio.create_subprocess_exec(
        "git",
        *args,
        cwd=project_path,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    stdout, _ = await proc.communicate()
    return proc.returncode, stdout.decode("utf-8", errors="replace").strip()


async def is_git_repo(path: Path | None = None) -> bool:
    """Check if the specified path is inside a git repository."""
    if path is None:
        path = Path.cwd()
    if not path.is_dir():
        return False
    try:
        code, _ = await _git(path, "rev-parse", "--is-inside-work-tree")
    except OSError:
        return False
    return code == 0


async def init_git_repo(project_path: Path, message: str = "Initial commit from nspecify template") -> tuple[bool, str | None]:
    """Initialize a repository and commit everything in it.

    Returns (success, error message).
    """
    for args in (("init",), ("add", "."), ("commit", "-m", message)):
        try:
            code, output = await _git(project_path, *args)
        except OSError as exc:
            return False, str(exc)
        if code != 0:
            return False, f"git {args[0]} failed: {output}"
    return True, None
