"""GitHub release lookup and template download."""

import os
import ssl
from pathlib import Path
from typing import Callable

import httpx
import truststore

from .config import DOWNLOAD_CHUNK_SIZE, DOWNLOAD_TIMEOUT, GITHUB_OWNER, GITHUB_REPO, REQUEST_TIMEOUT
from .errors import ErrorKind, NspecifyError

ssl_context = truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

ProgressCallback = Callable[[int, int], None]


def _github_token(cli_token: str | None = None) -> str | None:
    """Return sanitized GitHub token (cli arg takes precedence) or None."""
    return ((cli_token or os.getenv("GH_TOKEN") or os.getenv("GITHUB_TOKEN") or "").strip()) or None


def _github_auth_headers(cli_token: str | None = None) -> dict:
    """Return Authorization header dict only when a non-empty token exists."""
    token = _github_token(cli_token)
    return {"Authorization": f"Bearer {token}"} if token else {}


def build_client(skip_tls: bool = False, **kwargs) -> httpx.AsyncClient:
    verify = False if skip_tls else ssl_context
    return httpx.AsyncClient(verify=verify, follow_redirects=True, **kwargs)


def asset_pattern(ai_assistant: str, script_type: str) -> str:
    return f"{GITHUB_REPO}-template-{ai_assistant}-{script_type}"


async def fetch_latest_release(client: httpx.AsyncClient, *, github_token: str | None = None, debug: bool = False) -> dict:
    api_url = f"https://api.github.com/repos/{GITHUB_OWNER}/{GITHUB_REPO}/releases/latest"
    response = await client.get(api_url, timeout=REQUEST_TIMEOUT, headers=_github_auth_headers(github_token))
    if response.status_code != 200:
        msg = f"GitHub API returned {response.status_code} for {api_url}"
        if response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0":
            msg += " (rate limit exceeded)"
        if debug:
            msg += f"\nBody (truncated 500): {response.text[:500]}"
        raise NspecifyError(msg, kind=ErrorKind.NETWORK, context="Fetching latest release")
    try:
        return response.json()
    except ValueError as exc:
        raise NspecifyError(f"Failed to parse release JSON: {exc}", kind=ErrorKind.NETWORK) from exc


def find_template_asset(release: dict, ai_assistant: str, script_type: str) -> dict:
    """Pick the zip asset matching the assistant and script type."""
    pattern = asset_pattern(ai_assistant, script_type)
    assets = release.get("assets", [])
    for asset in assets:
        name = asset.get("name", "")
        if pattern in name and name.endswith(".zip"):
            return asset
    available = ", ".join(a.get("name", "?") for a in assets) or "(no assets)"
    raise NspecifyError(
        f"No release asset matches {pattern}",
        kind=ErrorKind.MISSING_DEPENDENCY,
        context=f"Available assets: {available}",
    )


async def download_asset(client: httpx.AsyncClient, asset: dict, target: Path, *, github_token: str | None = None, on_progress: ProgressCallback | None = None) -> Path:
    """Stream an asset to ``target``, reporting (downloaded, total) bytes."""
    url = asset["browser_download_url"]
    try:
        async with client.stream("GET", url, timeout=DOWNLOAD_TIMEOUT, headers=_github_auth_headers(github_token)) as response:
            if response.status_code != 200:
                raise NspecifyError(f"Download failed with {response.status_code} for {url}", kind=ErrorKind.NETWORK)
            total = int(response.headers.get("content-length", 0) or asset.get("size", 0) or 0)
            downloaded = 0
            with open(target, "wb") as f:
                async for chunk in response.aiter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    downloaded += len(chunk)
                    if on_progress is not None:
                        on_progress(downloaded, total)
    except BaseException:
        if target.exists():
            target.unlink()
        raise
    return target
