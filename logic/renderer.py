"""
Headless browser rendering with Playwright.

One Chromium process is started lazily and shared by every render; each call
gets its own browser context (user agent, viewport, headers, init scripts) that
is closed again no matter how the render ends.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright
from playwright_stealth import Stealth

from core.config import settings
from logic.errors import NavigationTimeoutError, RenderError
from logic.user_agents import ClientIdentity, UserAgentRotator

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


@dataclass
class RenderedPage:
    html: str
    final_url: str


class HumanScrollSimulation:
    """Scrolls part way down the page and back, pausing like a reader would.

    Some sites only release content (or drop bot suspicion) after scroll
    events. Swap in another object with an async ``simulate(page)`` to change
    the behaviour.
    """

    def __init__(self, rng: Optional[random.Random] = None,
                 sleep: Callable[[float], Any] = asyncio.sleep):
        self._rng = rng or random.Random()
        self._sleep = sleep

    async def simulate(self, page) -> None:
        distance = self._rng.randint(200, 700)
        await page.evaluate("(y) => window.scrollBy(0, y)", distance)
        await self._sleep(self._rng.uniform(1.0, 3.0))
        await page.evaluate("() => window.scrollTo(0, 0)")
        await self._sleep(0.5)


class NoInteraction:
    async def simulate(self, page) -> None:
        return None


class BrowserRenderer:
    """Shared Chromium instance with per-render stealth contexts.

    ``stealth`` is anything with an async ``apply_stealth_async(context)``;
    the default is playwright-stealth's fingerprint patching.
    """

    def __init__(self, rotator: Optional[UserAgentRotator] = None, *,
                 interaction=None,
                 stealth=None,
                 headless: Optional[bool] = None,
                 navigation_timeout: Optional[float] = None,
                 playwright_factory: Callable[[], Any] = async_playwright):
        self.rotator = rotator or UserAgentRotator()
        self.interaction = interaction or HumanScrollSimulation()
        self.stealth = stealth or Stealth(navigator_languages_override=("en-US", "en"))
        self.headless = settings.browser_headless if headless is None else headless
        self.navigation_timeout = navigation_timeout or settings.navigation_timeout
        self._playwright_factory = playwright_factory
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> None:
        """Launch the browser once; concurrent callers share the same launch.

        A browser that crashed or disconnected is torn down and relaunched.
        """
        if self.is_running:
            return
        async with self._lock:
            if self.is_running:
                return
            if self._browser is not None:
                logger.warning("Chromium is no longer connected, relaunching")
                await self._close()
            logger.info("Starting Chromium (headless=%s)...", self.headless)
            playwright = await self._playwright_factory().start()
            try:
                self._browser = await playwright.chromium.launch(headless=self.headless, args=BROWSER_ARGS)
            except Exception:
                await playwright.stop()
                raise
            self._playwright = playwright
            logger.info("Chromium started")

    async def stop(self) -> None:
        async with self._lock:
            await self._close()

    async def _close(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning(f"Error while closing browser: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning(f"Error while stopping Playwright: {e}")
            logger.info("Chromium stopped")

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    async def render(self, url: str) -> RenderedPage:
        try:
            await self.start()
        except Exception as e:
            raise RenderError(f"Failed to start browser: {e}") from e

        identity = self.rotator.next()
        context = await self._new_context(identity)
        try:
            page = await context.new_page()
            timeout_ms = int(self.navigation_timeout * 1000)
            logger.info(f"Navigating to URL: {url}")
            try:
                await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            except PlaywrightTimeoutError as e:
                raise NavigationTimeoutError(
                    f"Navigation timeout of {timeout_ms} ms exceeded for {url}"
                ) from e

            await self.interaction.simulate(page)

            html = await page.content()
            final_url = page.url or url
            logger.info(f"Rendered {final_url} ({len(html)} chars)")
            return RenderedPage(html=html, final_url=final_url)
        except RenderError:
            raise
        except PlaywrightError as e:
            raise RenderError(str(e)) from e
        finally:
            try:
                await context.close()
            except Exception as e:
                logger.debug(f"Failed to close browser context: {e}")

    async def _new_context(self, identity: ClientIdentity):
        try:
            context = await self._browser.new_context(
                user_agent=identity.user_agent,
                viewport=identity.viewport_size,
                locale="en-US",
                extra_http_headers=DEFAULT_HEADERS,
            )
        except PlaywrightError as e:
            raise RenderError(f"Failed to open browser context: {e}") from e
        try:
            await self.stealth.apply_stealth_async(context)
        except Exception:
            await context.close()
            raise
        return context
