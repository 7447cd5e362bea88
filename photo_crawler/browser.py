from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Tuple

from playwright.async_api import async_playwright, Browser, Page, Playwright

from .config import Config
from .utils import try_close

logger = logging.getLogger(__name__)

# Benign/expected aborts we don't want to spam logs for; the resolver aborts
# the captured image request on purpose.
_SILENCE_PATTERNS = (
    "net::ERR_ABORTED",
    "frame was detached",
    "Target closed",
    "Target page, context or browser has been closed",
    "Navigation failed because page was closed",
    "TargetClosedError",
)

_ACTIVE: dict[str, Any] = {
    "loop_old_ex_handler": None,
}


def _browser_args(cfg: Config) -> list[str]:
    args: list[str] = [
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-extensions",
        "--disable-background-networking",
        "--disable-sync",
        "--mute-audio",
        "--no-default-browser-check",
        "--no-first-run",
        "--disable-default-apps",
        "--disable-gpu",
    ]
    for a in cfg.browser_args_extra or ():
        if isinstance(a, str) and a.strip():
            args.append(a.strip())
    return args


def _install_loop_exception_silencer() -> None:
    """
    Suppress noisy loop-level 'Future exception was never retrieved' logs for
    request aborts and page closes we trigger ourselves.
    """
    loop = asyncio.get_running_loop()
    prev = loop.get_exception_handler()
    _ACTIVE["loop_old_ex_handler"] = prev

    def _handler(_loop, context: dict):
        exc = context.get("exception")
        text = f"{exc!r}" if exc else context.get("message", "")
        if (text and any(p in text for p in _SILENCE_PATTERNS)) or type(exc).__name__ == "TargetClosedError":
            logger.debug("Suppressed loop exception: %s", text)
            return
        if prev:
            prev(_loop, context)
        else:
            _loop.default_exception_handler(context)

    loop.set_exception_handler(_handler)


def _restore_loop_exception_handler() -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    loop.set_exception_handler(_ACTIVE.get("loop_old_ex_handler"))
    _ACTIVE["loop_old_ex_handler"] = None


async def init_browser(cfg: Config) -> Tuple[Playwright, Browser]:
    proxy = {"server": cfg.proxy_server} if cfg.proxy_server else None

    pw = await async_playwright().start()
    try:
        browser = await pw.chromium.launch(
            headless=cfg.headless,
            args=_browser_args(cfg),
            proxy=proxy,
        )
    except Exception:
        await pw.stop()
        raise

    _install_loop_exception_silencer()
    logger.info("Browser initialized UA=%s proxy=%s headless=%s", cfg.user_agent, bool(proxy), cfg.headless)
    return pw, browser


async def shutdown_browser(pw: Playwright, browser: Optional[Browser]) -> None:
    try:
        if browser:
            await browser.close()
    except Exception as e:
        logger.warning("Error while closing browser: %s", e)

    try:
        await pw.stop()
    except Exception as e:
        logger.warning("Error while stopping Playwright: %s", e)

    _restore_loop_exception_handler()


@asynccontextmanager
async def acquire_session(browser: Browser, cfg: Config) -> AsyncIterator[Page]:
    """
    One isolated browser context + page per unit of work. Both are closed on
    every exit path; nothing is pooled or shared between tasks.
    """
    context = await browser.new_context(
        user_agent=cfg.user_agent,
        viewport={"width": 1366, "height": 900},
        java_script_enabled=True,
        extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
    )
    page: Optional[Page] = None
    try:
        context.set_default_timeout(cfg.page_load_timeout_ms)
        context.set_default_navigation_timeout(cfg.page_load_timeout_ms)
        page = await context.new_page()
        yield page
    finally:
        await try_close(page, cfg.page_close_timeout_ms)
        await try_close(context, cfg.page_close_timeout_ms)


class BrowserSessions:
    """
    Owns the Playwright driver and the Chromium process for a run and hands
    out per-task sessions via `session()`.
    """

    def __init__(self, cfg: Config):
        self.cfg = cfg
        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "BrowserSessions":
        self._pw, self._browser = await init_browser(self.cfg)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._pw is not None:
            await shutdown_browser(self._pw, self._browser)
        self._pw = self._browser = None

    def session(self):
        if self._browser is None:
            raise RuntimeError("Browser not initialized")
        return acquire_session(self._browser, self.cfg)
