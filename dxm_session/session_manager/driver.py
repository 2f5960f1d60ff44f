"""Narrow browser-driver interface and its Playwright / Camoufox implementation."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Protocol

from camoufox.async_api import AsyncCamoufox
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import BROWSER_ENGINE, BROWSER_EXECUTABLE_PATH, BROWSER_HEADLESS, BROWSER_TIMEOUT
from ..constants import CHROMIUM_ARGS, DESKTOP_USER_AGENT, VIEWPORT
from .errors import BrowserLaunchError, FormNotFoundError, NavigationError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class BrowserDriver(Protocol):
    """Everything the login state machine needs from a browser."""

    async def navigate(self, url: str, timeout_ms: int) -> None: ...

    async def wait_for(self, selector: str, timeout_ms: int) -> bool: ...

    async def fill_field(self, selector: str, value: str) -> None: ...

    async def screenshot_element(self, selector: str) -> bytes: ...

    async def click(self, selector: str) -> None: ...

    async def press(self, key: str) -> None: ...

    async def has_element(self, selector: str) -> bool: ...

    async def text_of(self, selector: str) -> Optional[str]: ...

    async def current_url(self) -> str: ...

    async def get_cookies(self) -> list[dict]: ...

    async def close(self) -> None: ...


class PlaywrightDriver:
    """Drives one page in a fresh Chromium or Camoufox browser."""

    def __init__(self, engine: str = BROWSER_ENGINE, headless: bool = BROWSER_HEADLESS):
        self.engine = engine
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._camoufox: Optional[AsyncCamoufox] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def start(self) -> "PlaywrightDriver":
        logger.info(f"Launching {self.engine} (headless={self.headless})...")
        try:
            if self.engine == "camoufox":
                self._camoufox = AsyncCamoufox(
                    headless=self.headless,
                    humanize=True,
                    i_know_what_im_doing=True,
                )
                self._browser = await self._camoufox.__aenter__()
                self._context = await self._browser.new_context(viewport=VIEWPORT)
            else:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=CHROMIUM_ARGS,
                    executable_path=BROWSER_EXECUTABLE_PATH,
                )
                self._context = await self._browser.new_context(
                    viewport=VIEWPORT,
                    user_agent=DESKTOP_USER_AGENT,
                )
            self._page = await self._context.new_page()
            self._page.set_default_timeout(BROWSER_TIMEOUT)
        except Exception as e:
            logger.error(f"Failed to launch browser: {e}")
            await self.close()
            raise BrowserLaunchError(f"Failed to launch {self.engine}: {e}") from e

        logger.info("Browser launched.")
        return self

    def _require_page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser is not running.")
        return self._page

    async def navigate(self, url: str, timeout_ms: int = BROWSER_TIMEOUT) -> None:
        page = self._require_page()
        try:
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out after {timeout_ms}ms loading {url}") from e
        except PlaywrightError as e:
            raise NavigationError(f"Failed to load {url}: {e}") from e

    async def wait_for(self, selector: str, timeout_ms: int) -> bool:
        try:
            await self._require_page().wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def fill_field(self, selector: str, value: str) -> None:
        page = self._require_page()
        try:
            await page.click(selector)
            await page.fill(selector, "")
            await page.type(selector, value)
        except PlaywrightError as e:
            raise FormNotFoundError(f"Could not fill {selector}: {e}") from e

    async def screenshot_element(self, selector: str) -> bytes:
        element = await self._require_page().query_selector(selector)
        if element is None:
            raise FormNotFoundError(f"Element {selector} not found for screenshot")
        return await element.screenshot(type="png")

    async def click(self, selector: str) -> None:
        await self._require_page().click(selector)

    async def press(self, key: str) -> None:
        await self._require_page().keyboard.press(key)

    async def has_element(self, selector: str) -> bool:
        return await self._require_page().query_selector(selector) is not None

    async def text_of(self, selector: str) -> Optional[str]:
        element = await self._require_page().query_selector(selector)
        if element is None:
            return None
        return await element.text_content()

    async def current_url(self) -> str:
        return self._require_page().url

    async def get_cookies(self) -> list[dict]:
        if self._context is None:
            return []
        return await self._context.cookies()

    async def close(self) -> None:
        """Release every browser resource. Safe to call more than once."""
        try:
            if self._context:
                await self._context.close()
        except Exception as e:
            logger.warning(f"Error closing context: {e}")
        finally:
            self._context = None
            self._page = None

        try:
            if self._camoufox:
                await self._camoufox.__aexit__(None, None, None)
            elif self._browser:
                await self._browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")
        finally:
            self._camoufox = None
            self._browser = None

        try:
            if self._playwright:
                await self._playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping playwright: {e}")
        finally:
            self._playwright = None


async def launch_driver() -> PlaywrightDriver:
    """Default driver factory used by the login session and health check."""
    return await PlaywrightDriver().start()
