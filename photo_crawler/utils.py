from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_random

logger = logging.getLogger(__name__)

# ========== Environment helpers ==========

def getenv_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return v if v is not None and v.strip() else default

def getenv_int(name: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    if min_val is not None:
        val = max(min_val, val)
    if max_val is not None:
        val = min(max_val, val)
    return val


def getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


# parse CSV-ish envs into tuples (trim blanks)
def getenv_csv(name: str, default_csv: str) -> Tuple[str, ...]:
    raw = getenv_str(name, default_csv)
    parts = [x.strip() for x in raw.split(",")]
    return tuple(p for p in parts if p)


# ========== Exceptions ==========

class TransientHTTPError(Exception):
    """Retryable transient network error (connect/read failures, timeouts)."""


# ========== Retry decorators ==========

def retry_async(max_attempts: int, initial_delay_ms: int, max_delay_ms: int, jitter_ms: int):
    def _decorator(fn: Callable[..., Awaitable]):
        @retry(
            reraise=True,
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=initial_delay_ms / 1000.0, max=max_delay_ms / 1000.0)
            + wait_random(0, jitter_ms / 1000.0),
            retry=retry_if_exception_type((TransientHTTPError, IOError, TimeoutError)),
        )
        async def wrapper(*args, **kwargs):
            return await fn(*args, **kwargs)
        return wrapper
    return _decorator


# ========== File I/O ==========

def atomic_write_text(path: Path, data: str, encoding: str = "utf-8") -> None:
    """
    Write text atomically using a NamedTemporaryFile and os.replace on the same filesystem.
    Safer than Path.write_text and reduces partial writes.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding=encoding, dir=str(path.parent), delete=False) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)

def append_text(path: Path, data: str, encoding: str = "utf-8") -> None:
    """
    Append a block of text with a single O_APPEND write. Existing content is never touched.
    """
    if not data:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    b = data.encode(encoding)
    fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
    try:
        os.write(fd, b)
    finally:
        os.close(fd)


# ========== HTTPX client ==========

def httpx_client(cfg) -> httpx.AsyncClient:
    """
    Return a preconfigured AsyncClient for header-only existence probes.
    """
    limits = httpx.Limits(max_keepalive_connections=16, max_connections=64)
    timeout = httpx.Timeout(cfg.probe_timeout_ms / 1000.0)
    headers = {
        "User-Agent": cfg.user_agent,
        "Accept": "image/avif,image/webp,image/*,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }
    return httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        headers=headers,
        follow_redirects=True,
    )


# ========== Playwright helpers ==========

async def try_close(obj, timeout_ms: int = 1500) -> None:
    """
    Best-effort, bounded-time close of a Playwright page/context so a stuck
    driver cannot hold a scheduler slot after the task is finished.
    """
    if obj is None:
        return
    try:
        await asyncio.wait_for(obj.close(), timeout=max(0.1, (timeout_ms or 1) / 1000.0))
    except Exception as e:
        logger.debug("close() failed for %r: %s", obj, e)
