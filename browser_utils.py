"""
Browser utilities: the page-load capability the crawler drives
"""
import asyncio
import contextlib
import itertools
import random
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from playwright.async_api import async_playwright, Error as PlaywrightError

from config import config
from exceptions import BrowserStartupError

logger = logging.getLogger(__name__)

STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined,
    });
"""

EXTENDED_STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'plugins', {
        get: () => [1, 2, 3, 4, 5],
    });
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en'],
    });
    window.chrome = {
        runtime: {},
    };
"""

SCROLL_STEP_SCRIPT = """
    (distance) => {
        const before = window.scrollY;
        window.scrollBy(0, distance);
        return {
            before: before,
            after: window.scrollY,
            atBottom: window.innerHeight + window.scrollY >= document.body.scrollHeight,
        };
    }
"""


def parse_proxy(proxy_url: str) -> Dict[str, str]:
    """Turn a proxy URL into Playwright's proxy settings"""
    parsed = urlparse(proxy_url)
    if not parsed.scheme or not parsed.hostname:
        raise ValueError(f"Invalid proxy URL: {proxy_url}")

    server = f"{parsed.scheme}://{parsed.hostname}"
    if parsed.port:
        server += f":{parsed.port}"

    proxy = {'server': server}
    if parsed.username:
        proxy['username'] = parsed.username
    if parsed.password:
        proxy['password'] = parsed.password
    return proxy


class PageSession:
    """One page in its own browser context.

    Every call is fallible and bounded by a timeout; Playwright errors are
    left to propagate to the caller.
    """

    def __init__(self, page, context=None):
        self._page = page
        self._context = context

    @property
    def url(self) -> str:
        return self._page.url

    async def navigate(self, url: str, timeout_ms: int = 30000):
        return await self._page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")

    async def wait_for_network_idle(self, timeout_ms: int):
        await self._page.wait_for_load_state("networkidle", timeout=timeout_ms)

    async def wait_for_selector(self, selector: str, timeout_ms: int):
        return await self._page.wait_for_selector(selector, timeout=timeout_ms)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def set_viewport(self, width: int, height: int):
        await self._page.set_viewport_size({'width': width, 'height': height})

    async def set_extra_headers(self, headers: Dict[str, str]):
        await self._page.set_extra_http_headers(headers)

    async def add_init_script(self, script: str):
        await self._page.add_init_script(script=script)

    async def query_selector(self, selector: str):
        return await self._page.query_selector(selector)

    async def click(self, selector: str, timeout_ms: int = 5000):
        await self._page.click(selector, timeout=timeout_ms)

    async def content(self) -> str:
        return await self._page.content()

    async def close(self):
        try:
            await self._page.close()
        except PlaywrightError as e:
            logger.debug(f"Error closing page: {e}")
        if self._context:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing browser context: {e}")


class BrowserManager:
    """Launches Chromium and hands out fresh pages, rotating proxies when given"""

    def __init__(self, proxy_list: Optional[List[str]] = None, crawler_config=None):
        self.config = crawler_config or config
        self.proxy_list = list(proxy_list or [])
        self._proxies = itertools.cycle(self.proxy_list) if self.proxy_list else None
        self.playwright = None
        self.browser = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Start Playwright and launch the browser"""
        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=self.config.headless,
                args=self.config.browser_args
            )
            logger.info(f"Browser started ({len(self.proxy_list)} proxies in rotation)")
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.close()
            raise BrowserStartupError(f"Failed to start browser: {e}") from e

    def next_proxy(self) -> Optional[Dict[str, str]]:
        if self._proxies is None:
            return None
        return parse_proxy(next(self._proxies))

    async def new_page(self) -> PageSession:
        """Open a page in a fresh context, routed through the next proxy"""
        if not self.browser:
            raise BrowserStartupError("BrowserManager not started. Use: `async with BrowserManager() as b:`")

        options = {'user_agent': random.choice(self.config.user_agents)}
        proxy = self.next_proxy()
        if proxy:
            options['proxy'] = proxy
            logger.debug(f"Routing page through proxy {proxy['server']}")

        context = await self.browser.new_context(**options)
        page = await context.new_page()
        return PageSession(page, context)

    async def close(self):
        """Safely close browser and playwright"""
        try:
            if self.browser:
                await self.browser.close()
            if self.playwright:
                await self.playwright.stop()
            logger.info("Browser closed")
        except Exception as e:
            logger.error(f"Error closing browser: {e}")
        finally:
            self.browser = None
            self.playwright = None


async def auto_scroll(page, step: int = 300, max_iterations: int = 10, pause: float = 0.2) -> int:
    """Scroll down in fixed steps to trigger lazy-loaded content.

    Stops after ``max_iterations`` or as soon as the scroll position stops
    advancing. Returns the number of steps taken.
    """
    steps = 0
    for _ in range(max_iterations):
        state = await page.evaluate(SCROLL_STEP_SCRIPT, step)
        steps += 1
        await asyncio.sleep(pause)
        if not state or state.get('after', 0) <= state.get('before', 0) or state.get('atBottom'):
            break
    logger.debug(f"Auto-scrolled {steps} steps")
    return steps


@contextlib.asynccontextmanager
async def browser_session(browser=None, proxy_list: Optional[List[str]] = None, crawler_config=None):
    """Yield ``browser`` as-is when given, otherwise a started BrowserManager"""
    if browser is not None:
        yield browser
        return

    manager = BrowserManager(proxy_list=proxy_list, crawler_config=crawler_config)
    await manager.start()
    try:
        yield manager
    finally:
        await manager.close()
