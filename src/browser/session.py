"""Browser session management using patchright.

Used only for the interactive steps (login, recon). Extraction itself runs
over plain HTTP with the saved session.

Hard rules:
  - headless=False always (the user completes SSO/MFA by hand)
  - Single browser context per run
  - patchright, not vanilla playwright
"""

import asyncio
import logging
from pathlib import Path
from types import TracebackType
from typing import Any
from urllib.parse import urlparse

from patchright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from src.core.config import Settings
from src.session.state import SessionState
from src.session.store import save_session, session_from_browser_cookies

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 60_000


class BrowserSession:
    """Async context manager that owns one patchright browser + context + page.

    Usage::

        async with BrowserSession(base_url, session=existing) as browser:
            await browser.page.goto(base_url)
            cookies = await browser.cookies()
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: SessionState | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._base_url = base_url
        self._session = session
        self._timeout_ms = timeout_ms
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        """The single page for this session. Raises if not entered."""
        if self._page is None:
            msg = "BrowserSession not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            msg = "BrowserSession not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._context

    async def __aenter__(self) -> "BrowserSession":
        pw = await async_playwright().start()
        self._playwright = pw
        self._browser = await pw.chromium.launch(headless=False)
        self._context = await self._browser.new_context()

        cookies = browser_cookies(self._session, self._base_url) if self._session else []
        if cookies:
            await self._context.add_cookies(cookies)
            logger.info("Loaded %d cookies from the saved session", len(cookies))

        self._context.set_default_timeout(self._timeout_ms)
        self._page = await self._context.new_page()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    async def cookies(self) -> list[Any]:
        return await self.context.cookies()


def browser_cookies(session: SessionState, base_url: str) -> list[dict[str, Any]]:
    """Session cookies in the shape ``BrowserContext.add_cookies`` expects."""
    host = urlparse(base_url).hostname or ""
    parts = host.split(".")
    domain = "." + ".".join(parts[-2:]) if len(parts) >= 2 else host
    return [
        {
            "name": name,
            "value": value,
            "domain": domain,
            "path": "/",
            "httpOnly": True,
            "secure": True,
        }
        for name, value in session.cookies.items()
    ]


async def interactive_login(settings: Settings) -> Path:
    """Open the application, wait for the user to log in, save the session.

    Raises:
        ValueError: the browser holds none of the configured auth cookies.
    """
    async with BrowserSession(settings.http.base_url) as browser:
        await browser.page.goto(settings.http.base_url)
        await asyncio.to_thread(
            input, "\n>>> Log in (SSO/MFA) in the browser window, then press Enter here...",
        )
        cookies = await browser.cookies()

    session = session_from_browser_cookies(cookies)
    if not session.has_auth_cookie(settings.session.auth_cookie_names):
        msg = (
            "No authentication cookie found after login "
            f"(expected one of: {', '.join(settings.session.auth_cookie_names)})"
        )
        raise ValueError(msg)
    logger.info("Captured %d cookies", len(session.cookies))
    return save_session(session, settings.session.path)
