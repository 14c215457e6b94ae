#!/usr/bin/env python3
"""
downloader.py - Async Filter List Fetcher with Smart Caching

Fetches filter lists concurrently and hands back their text. Identifiers
without an http(s) scheme are read as local files.

Failure is never an exception here: a source that can't be obtained comes
back as None and the pipeline simply gets no rules from it.

Caching (optional, when a cache directory is given):
    - Successful bodies are stored under the cache dir with their
      ETag/Last-Modified headers recorded in state.json
    - Later requests are conditional; 304 Not Modified serves the cached copy
    - If every attempt fails, the cached copy is served instead
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Final, Iterable
from urllib.parse import urlparse

import aiofiles
import aiohttp

from filtermerge import __version__

logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_TIMEOUT: Final[int] = 30
DEFAULT_RETRIES: Final[int] = 3
DEFAULT_CONCURRENCY: Final[int] = 8

USER_AGENT: Final[str] = f"filtermerge/{__version__}"

#: Statuses that won't get better by retrying
NO_RETRY_STATUSES: Final[frozenset[int]] = frozenset({403, 404, 503})

# State file for ETag/Last-Modified tracking
STATE_FILE: Final[str] = "state.json"


def is_remote(identifier: str) -> bool:
    return identifier.startswith(("http://", "https://"))


def url_to_filename(url: str) -> str:
    """Generate a safe, unique cache filename from a URL."""
    url_hash = hashlib.sha256(url.encode()).hexdigest()[:16]
    domain = urlparse(url).netloc.replace(".", "_")[:30] or "local"
    return f"{domain}_{url_hash}.txt"


def load_sources(sources_file: str | Path) -> list[str]:
    """Load identifiers from a sources file, skipping comments and empty lines."""
    path = Path(sources_file)
    if not path.exists():
        logger.error("Sources file not found: %s", sources_file)
        return []

    identifiers = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            identifiers.append(line)
    return identifiers


def load_state(cache_dir: Path) -> dict:
    """Load state.json containing ETag/Last-Modified cache."""
    state_path = cache_dir / STATE_FILE
    if state_path.exists():
        try:
            with open(state_path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not load %s: %s", state_path, e)
    return {}


def save_state(cache_dir: Path, state: dict) -> None:
    """Save state.json atomically."""
    state_path = cache_dir / STATE_FILE
    temp_path = state_path.with_suffix(".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)
        temp_path.replace(state_path)
    except OSError as e:
        logger.warning("Could not save %s: %s", state_path, e)


async def _read_text(path: Path) -> str | None:
    try:
        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
    except OSError as e:
        logger.error("Error reading %s: %s", path, e)
        return None
    return content.decode("utf-8-sig", errors="replace")


async def _read_cached(cache_path: Path | None, url: str, reason: str) -> str | None:
    if cache_path is None or not cache_path.exists():
        logger.error("Giving up on %s: %s", url, reason)
        return None
    logger.warning("%s for %s, using cached version", reason, url)
    return await _read_text(cache_path)


async def fetch_content(
    identifier: str,
    session: aiohttp.ClientSession | None = None,
    *,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    cache_dir: Path | None = None,
    state: dict | None = None,
    backoff: float = 1.0,
) -> str | None:
    """
    Fetch one filter list.

    Args:
        identifier: URL or local file path
        session: Shared session; a private one is opened if omitted
        timeout: Total timeout per attempt, in seconds
        retries: Attempts before giving up
        cache_dir: Directory for cached bodies (enables conditional requests)
        state: ETag/Last-Modified state, updated in place
        backoff: Base delay; attempt n waits backoff * 2**n seconds

    Returns:
        The list's text, or None if it couldn't be obtained
    """
    if not is_remote(identifier):
        logger.info("Reading local file: %s", identifier)
        return await _read_text(Path(identifier))

    if session is None:
        async with aiohttp.ClientSession(headers={"User-Agent": USER_AGENT}) as own_session:
            return await fetch_content(
                identifier, own_session,
                timeout=timeout, retries=retries,
                cache_dir=cache_dir, state=state, backoff=backoff,
            )

    state = {} if state is None else state
    cache_path = cache_dir / url_to_filename(identifier) if cache_dir else None

    headers = {}
    url_state = state.get(identifier, {})
    if cache_path is not None and cache_path.exists():
        if url_state.get("etag"):
            headers["If-None-Match"] = url_state["etag"]
        if url_state.get("last_modified"):
            headers["If-Modified-Since"] = url_state["last_modified"]

    reason = "Max retries exceeded"
    for attempt in range(max(retries, 1)):
        if attempt:
            await asyncio.sleep(backoff * 2 ** (attempt - 1))
        try:
            async with session.get(
                identifier,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:

                # 304 Not Modified - use cached version
                if response.status == 304:
                    return await _read_cached(cache_path, identifier, "Not modified")

                if response.status in NO_RETRY_STATUSES:
                    return await _read_cached(cache_path, identifier, f"HTTP {response.status}")

                if response.status >= 400:
                    reason = f"HTTP {response.status}"
                    logger.warning("Attempt %d/%d failed for %s: %s", attempt + 1, retries, identifier, reason)
                    continue

                body = await response.read()

                if cache_path is not None:
                    cache_path.parent.mkdir(parents=True, exist_ok=True)
                    async with aiofiles.open(cache_path, "wb") as f:
                        await f.write(body)
                    new_state = {"filename": cache_path.name}
                    if "ETag" in response.headers:
                        new_state["etag"] = response.headers["ETag"]
                    if "Last-Modified" in response.headers:
                        new_state["last_modified"] = response.headers["Last-Modified"]
                    new_state["fetched_at"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
                    state[identifier] = new_state

                return body.decode("utf-8-sig", errors="replace")

        except asyncio.TimeoutError:
            reason = f"Timed out after {timeout}s"
            logger.warning("Attempt %d/%d timed out for %s", attempt + 1, retries, identifier)
        except (aiohttp.ClientError, OSError) as e:
            reason = str(e) or type(e).__name__
            logger.warning("Attempt %d/%d failed for %s: %s", attempt + 1, retries, identifier, reason)

    return await _read_cached(cache_path, identifier, reason)


async def fetch_sources(
    identifiers: Iterable[str],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    cache_dir: Path | None = None,
) -> dict[str, str | None]:
    """Fetch all identifiers concurrently. Returns identifier -> text (or None)."""
    identifiers = list(dict.fromkeys(identifiers))
    state: dict = {}
    if cache_dir is not None:
        cache_dir.mkdir(parents=True, exist_ok=True)
        state = load_state(cache_dir)

    semaphore = asyncio.Semaphore(concurrency)

    async def fetch_with_semaphore(identifier: str) -> str | None:
        async with semaphore:
            return await fetch_content(
                identifier, session,
                timeout=timeout, retries=retries, cache_dir=cache_dir, state=state,
            )

    connector = aiohttp.TCPConnector(limit=concurrency, limit_per_host=2)
    async with aiohttp.ClientSession(
        connector=connector, headers={"User-Agent": USER_AGENT}
    ) as session:
        results = await asyncio.gather(
            *(fetch_with_semaphore(i) for i in identifiers), return_exceptions=True
        )

    contents: dict[str, str | None] = {}
    for identifier, result in zip(identifiers, results):
        if isinstance(result, BaseException):
            logger.error("Fetching %s failed: %s", identifier, result)
            contents[identifier] = None
        else:
            contents[identifier] = result

    if cache_dir is not None:
        save_state(cache_dir, state)
    return contents
