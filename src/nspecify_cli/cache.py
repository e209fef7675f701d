"""Local cache of downloaded template archives.

Cache problems are never fatal: every failure is logged at debug level and
the caller carries on as if the cache were empty.
"""

import shutil
import time
from pathlib import Path

from platformdirs import user_cache_dir

from .config import CACHE_MAX_AGE, CACHE_PRUNE_AGE


def cache_dir() -> Path:
    return Path(user_cache_dir("nspecify")) / "templates"


def cache_path(ai_assistant: str, script_type: str, directory: Path | None = None) -> Path:
    return (directory or cache_dir()) / f"{ai_assistant}-{script_type}.zip"


def has_valid_cache(ai_assistant: str, script_type: str, *, max_age: float = CACHE_MAX_AGE, directory: Path | None = None, logger=None) -> bool:
    path = cache_path(ai_assistant, script_type, directory)
    try:
        age = time.time() - path.stat().st_mtime
    except OSError:
        return False
    valid = age < max_age
    if logger is not None:
        logger.debug(f"Cache for {ai_assistant}-{script_type}: {'valid' if valid else 'expired'} (age: {round(age)}s)")
    return valid


def get_cached_template(ai_assistant: str, script_type: str, *, directory: Path | None = None, logger=None) -> Path | None:
    if not has_valid_cache(ai_assistant, script_type, directory=directory, logger=logger):
        return None
    return cache_path(ai_assistant, script_type, directory)


def cache_template(ai_assistant: str, script_type: str, source: Path, *, directory: Path | None = None, logger=None) -> Path | None:
    target = cache_path(ai_assistant, script_type, directory)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
    except OSError as exc:
        if logger is not None:
            logger.debug("Failed to cache template:", exc)
        return None
    if logger is not None:
        logger.debug(f"Cached template: {target}")
    return target


def clear_cache(ai_assistant: str | None = None, script_type: str | None = None, *, directory: Path | None = None, logger=None) -> int:
    """Remove one cached template, or all of them. Returns files removed."""
    root = directory or cache_dir()
    if ai_assistant and script_type:
        targets = [cache_path(ai_assistant, script_type, root)]
    else:
        targets = list(root.glob("*.zip")) if root.is_dir() else []
    removed = 0
    for target in targets:
        try:
            target.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as exc:
            if logger is not None:
                logger.debug(f"Failed to remove {target}:", exc)
    return removed


def cache_stats(*, directory: Path | None = None) -> dict:
    root = directory or cache_dir()
    stats = {"total_size": 0, "file_count": 0, "oldest": None, "newest": None}
    if not root.is_dir():
        return stats
    oldest_mtime = newest_mtime = None
    for path in root.glob("*.zip"):
        st = path.stat()
        stats["total_size"] += st.st_size
        stats["file_count"] += 1
        if oldest_mtime is None or st.st_mtime < oldest_mtime:
            oldest_mtime, stats["oldest"] = st.st_mtime, path.name
        if newest_mtime is None or st.st_mtime > newest_mtime:
            newest_mtime, stats["newest"] = st.st_mtime, path.name
    return stats


def prune_cache(max_age: float = CACHE_PRUNE_AGE, *, directory: Path | None = None, logger=None) -> int:
    """Delete cached templates older than ``max_age`` seconds."""
    root = directory or cache_dir()
    if not root.is_dir():
        return 0
    now = time.time()
    pruned = 0
    for path in root.glob("*.zip"):
        try:
            if now - path.stat().st_mtime > max_age:
                path.unlink()
                pruned += 1
                if logger is not None:
                    logger.debug(f"Pruned old cache file: {path.name}")
        except OSError as exc:
            if logger is not None:
                logger.debug(f"Failed to prune {path.name}:", exc)
    return pruned
