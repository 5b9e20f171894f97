import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright_stealth import Stealth

from logic.errors import NavigationTimeoutError, RenderError
from logic.recipe_parser import TextRecipeExtractor
from logic.renderer import (
    DEFAULT_HEADERS,
    BrowserRenderer,
    HumanScrollSimulation,
    NoInteraction,
)
from logic.user_agents import UserAgentRotator
from logic.web_scraper import RecipeScraper


class FakePlaywright:
    """Just enough of the Playwright object graph for BrowserRenderer."""

    def __init__(self):
        self.page = MagicMock()
        self.page.goto = AsyncMock()
        self.page.content = AsyncMock(return_value="<html><h1>Hello</h1></html>")
        self.page.evaluate = AsyncMock()
        self.page.url = "https://example.com/final"

        self.context = MagicMock()
        self.context.new_page = AsyncMock(return_value=self.page)
        self.context.close = AsyncMock()

        self.browser = MagicMock()
        self.browser.is_connected = MagicMock(return_value=True)
        self.browser.new_context = AsyncMock(return_value=self.context)
        self.browser.close = AsyncMock()

        self.playwright = MagicMock()
        self.playwright.chromium.launch = AsyncMock(return_value=self.browser)
        self.playwright.stop = AsyncMock()

        manager = MagicMock()
        manager.start = AsyncMock(return_value=self.playwright)
        self.factory = MagicMock(return_value=manager)

        self.stealth = MagicMock()
        self.stealth.apply_stealth_async = AsyncMock()


@pytest.fixture
def fake():
    return FakePlaywright()


@pytest.fixture
def renderer(fake):
    rotator = UserAgentRotator(user_agents=["UA-1", "UA-2"], viewports=[(1280, 720)], rng=random.Random(1))
    return BrowserRenderer(rotator, interaction=NoInteraction(), stealth=fake.stealth, headless=True,
                           navigation_timeout=45, playwright_factory=fake.factory)


async def test_render_returns_html_and_final_url(renderer, fake):
    page = await renderer.render("https://example.com/recipe")

    assert page.html == "<html><h1>Hello</h1></html>"
    assert page.final_url == "https://example.com/final"
    fake.page.goto.assert_awaited_once_with("https://example.com/recipe", wait_until="networkidle", timeout=45000)
    fake.stealth.apply_stealth_async.assert_awaited_once_with(fake.context)
    fake.context.close.assert_awaited_once()


async def test_each_render_gets_a_fresh_identity_context(renderer, fake):
    await renderer.render("https://example.com/a")
    await renderer.render("https://example.com/b")

    calls = fake.browser.new_context.await_args_list
    assert len(calls) == 2
    assert calls[0].kwargs["user_agent"] != calls[1].kwargs["user_agent"]
    assert calls[0].kwargs["viewport"] == {"width": 1280, "height": 720}
    assert calls[0].kwargs["extra_http_headers"] == DEFAULT_HEADERS
    assert fake.context.close.await_count == 2


async def test_browser_is_started_once(renderer, fake):
    await asyncio.gather(renderer.start(), renderer.start(), renderer.render("https://example.com/a"))
    fake.playwright.chromium.launch.assert_awaited_once()
    assert renderer.is_running


async def test_navigation_timeout_is_not_retryable(renderer, fake):
    fake.page.goto.side_effect = PlaywrightTimeoutError("Timeout 45000ms exceeded.")

    with pytest.raises(NavigationTimeoutError) as exc_info:
        await renderer.render("https://slow.example.com/recipe")

    assert exc_info.value.retryable is False
    assert "Navigation timeout of 45000 ms exceeded" in str(exc_info.value)
    fake.context.close.assert_awaited_once()


async def test_navigation_error_becomes_render_error(renderer, fake):
    fake.page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://nope.invalid/")

    with pytest.raises(RenderError) as exc_info:
        await renderer.render("https://nope.invalid/")

    assert "ERR_NAME_NOT_RESOLVED" in str(exc_info.value)
    fake.context.close.assert_awaited_once()


async def test_launch_failure_is_reported_and_cleaned_up(renderer, fake):
    fake.playwright.chromium.launch.side_effect = PlaywrightError("Executable doesn't exist")

    with pytest.raises(RenderError, match="Failed to start browser"):
        await renderer.render("https://example.com/recipe")

    fake.playwright.stop.assert_awaited_once()
    assert not renderer.is_running


async def test_stop_closes_browser(renderer, fake):
    await renderer.start()
    await renderer.stop()

    fake.browser.close.assert_awaited_once()
    fake.playwright.stop.assert_awaited_once()
    assert not renderer.is_running


async def test_restart_launches_a_new_browser(renderer, fake):
    await renderer.start()
    await renderer.restart()
    assert fake.playwright.chromium.launch.await_count == 2


async def test_scroll_simulation_scrolls_down_and_back():
    delays = []

    async def record(delay):
        delays.append(delay)

    page = MagicMock()
    page.evaluate = AsyncMock()
    await HumanScrollSimulation(rng=random.Random(3), sleep=record).simulate(page)

    assert page.evaluate.await_count == 2
    distance = page.evaluate.await_args_list[0].args[1]
    assert 200 <= distance <= 700
    assert 1.0 <= delays[0] <= 3.0
    assert delays[1] == 0.5


def test_default_stealth_is_playwright_stealth(fake):
    renderer = BrowserRenderer(playwright_factory=fake.factory)
    assert isinstance(renderer.stealth, Stealth)


async def test_stealth_failure_closes_context(renderer, fake):
    fake.stealth.apply_stealth_async.side_effect = RuntimeError("script injection failed")

    with pytest.raises(RuntimeError):
        await renderer.render("https://example.com/recipe")

    fake.context.close.assert_awaited_once()
    fake.page.goto.assert_not_awaited()


async def test_disconnected_browser_is_relaunched(renderer, fake):
    await renderer.start()
    dead_browser = fake.browser
    dead_browser.is_connected.return_value = False
    dead_browser.new_context.side_effect = PlaywrightError("Target page, context or browser has been closed")

    fresh = FakePlaywright()
    fake.playwright.chromium.launch.return_value = fresh.browser
    assert not renderer.is_running

    page = await renderer.render("https://example.com/recipe")

    assert page.html == "<html><h1>Hello</h1></html>"
    assert fake.playwright.chromium.launch.await_count == 2
    dead_browser.close.assert_awaited_once()
    fresh.browser.new_context.assert_awaited_once()
    assert renderer.is_running


async def test_health_check_relaunches_crashed_browser(renderer, fake, registry, fast_rate_limiter):
    await renderer.start()
    fake.browser.is_connected.return_value = False
    fresh = FakePlaywright()
    fake.playwright.chromium.launch.return_value = fresh.browser

    scraper = RecipeScraper(renderer=renderer, rate_limiter=fast_rate_limiter, registry=registry,
                            text_extractor=TextRecipeExtractor(llm=MagicMock()))
    status = await scraper.health_check()

    assert status.status == "healthy"
    assert status.browser == "ready"
    assert fake.playwright.chromium.launch.await_count == 2
