from __future__ import annotations

import asyncio
import logging
import posixpath
from typing import Any, AsyncContextManager, Awaitable, Callable, Iterable, Optional
from urllib.parse import quote, urlsplit, urlunsplit

import httpx
from playwright.async_api import TimeoutError as PWTimeoutError

from .config import Config
from .utils import TransientHTTPError, retry_async

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[Any]]
Probe = Callable[[str], Awaitable[bool]]


class ResolutionError(Exception):
    """Resolving one (owner, item) pair failed; the run continues without it."""

    def __init__(self, owner_id: str, item_id: int, cause: BaseException):
        super().__init__(f"resolution failed for {owner_id}/{item_id}: {cause!r}")
        self.owner_id = owner_id
        self.item_id = item_id
        self.cause = cause


# ---------------------------
# URL helpers
# ---------------------------

def photo_page_url(owner_id: str, item_id: int, template: str) -> str:
    return template.format(owner=quote(str(owner_id), safe="@"), item=int(item_id))


def is_candidate_request(url: str, item_id: int, extensions: Iterable[str]) -> bool:
    return str(item_id) in url and url.lower().endswith(tuple(extensions))


def upgrade_candidate(url: str, suffixes: Iterable[str]) -> Optional[str]:
    """
    `.../123_abc_s.jpg` -> `.../123_abc.jpg` when the filename stem carries a
    small-variant suffix; None when there is nothing to upgrade.
    """
    parts = urlsplit(url)
    head, filename = posixpath.split(parts.path)
    stem, ext = posixpath.splitext(filename)
    for suffix in suffixes:
        if suffix and stem.endswith(suffix) and len(stem) > len(suffix):
            path = posixpath.join(head, stem[: -len(suffix)] + ext)
            return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))
    return None


# ---------------------------
# Discovery
# ---------------------------

async def discover(
    page,
    address: str,
    item_id: int,
    *,
    extensions: Iterable[str],
    wait_until: str,
    timeout_ms: int,
) -> Optional[str]:
    """
    Navigate to the item page and capture the first outbound request that
    looks like the item's image. That request is aborted so the image body is
    never downloaded; every other request continues.
    """
    exts = tuple(extensions)
    found: dict[str, Optional[str]] = {"url": None}

    async def _on_route(route, request) -> None:
        req_url = request.url
        try:
            if found["url"] is None and is_candidate_request(req_url, item_id, exts):
                found["url"] = req_url
                await route.abort()
                return
            await route.continue_()
        except Exception as e:
            # page closed underneath the handler
            logger.debug("route handler error for %s: %s", req_url, e)

    await page.route("**/*", _on_route)
    try:
        await page.goto(address, wait_until=wait_until, timeout=timeout_ms)
    except PWTimeoutError:
        if found["url"] is None:
            raise
        logger.debug("Navigation to %s timed out after candidate was captured", address)
    return found["url"]


# ---------------------------
# Existence probe
# ---------------------------

class HttpxProbe:
    """HEAD-only existence check; 2xx after redirects counts as present."""

    def __init__(self, client: httpx.AsyncClient, cfg: Config):
        self.client = client
        self._head = retry_async(
            cfg.probe_max_attempts,
            cfg.probe_retry_initial_delay_ms,
            cfg.probe_retry_max_delay_ms,
            cfg.probe_retry_jitter_ms,
        )(self._head_once)

    async def _head_once(self, url: str) -> bool:
        try:
            resp = await self.client.head(url)
        except httpx.TransportError as e:
            raise TransientHTTPError(f"HEAD {url}: {e!r}") from e
        logger.debug("HEAD %s -> %s", url, resp.status_code)
        return resp.is_success

    async def __call__(self, url: str) -> bool:
        return await self._head(url)


# ---------------------------
# Resolver
# ---------------------------

class PhotoResolver:
    def __init__(self, session_factory: SessionFactory, probe: Probe, cfg: Config):
        self.session_factory = session_factory
        self.probe = probe
        self.cfg = cfg

    async def resolve(self, owner_id: str, item_id: int) -> Optional[str]:
        timeout = self.cfg.item_timeout_s or None
        try:
            return await asyncio.wait_for(self._resolve(owner_id, item_id), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ResolutionError(owner_id, item_id, e) from e

    async def _resolve(self, owner_id: str, item_id: int) -> Optional[str]:
        address = photo_page_url(owner_id, item_id, self.cfg.page_url_template)
        logger.debug("Fetching photo page %s", address)
        try:
            async with self.session_factory() as page:
                photo_url = await discover(
                    page,
                    address,
                    item_id,
                    extensions=self.cfg.image_extensions,
                    wait_until=self.cfg.navigation_wait_until,
                    timeout_ms=self.cfg.page_load_timeout_ms,
                )
        except Exception as e:
            raise ResolutionError(owner_id, item_id, e) from e

        if photo_url is None:
            logger.info("No photo request seen for %s/%s", owner_id, item_id)
            return None
        return await self._upgrade(owner_id, item_id, photo_url)

    async def _upgrade(self, owner_id: str, item_id: int, photo_url: str) -> str:
        larger = upgrade_candidate(photo_url, self.cfg.small_variant_suffixes)
        if larger is None:
            return photo_url
        try:
            exists = await self.probe(larger)
        except Exception as e:
            raise ResolutionError(owner_id, item_id, e) from e
        if exists:
            return larger
        logger.debug("Larger variant missing for %s; keeping %s", item_id, photo_url)
        return photo_url
