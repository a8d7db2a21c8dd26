"""
Pytest configuration and shared fixtures
"""
import pytest
import os
import tempfile
import asyncio
from dataclasses import replace

# Add project root to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from config import CrawlerConfig
from database import SnapshotStore
from exceptions import BrowserStartupError
from models import CrawlKind, PageSnapshot
from politeness import RetryPolicy, policy_for


SERP_HTML = """
<html>
  <body>
    <div id="search">
      <div class="g"><a href="https://example.com/one"><h3>Result One</h3></a><div class="VwiC3b">First snippet</div></div>
      <div class="g"><h3>Sponsored without link</h3><div class="VwiC3b">Ad copy</div></div>
      <div class="g"><a href="https://example.com/three"><h3>Result Three</h3></a><div data-sncf="1">Third snippet</div><div class="VwiC3b">Ignored</div></div>
      <div class="g"><a href="https://example.com/four"><h3>Result Four</h3></a></div>
      <div class="g"><a href="/search?q=related"><h3>Related searches</h3></a></div>
      <div class="g"><a href="https://example.com/six"><h3>Result Six</h3></a><div class="VwiC3b">Sixth snippet</div></div>
      <div class="g"><a href="https://example.com/seven"><h3>Result Seven</h3></a><div class="VwiC3b">Seventh snippet</div></div>
      <div class="g"><a href="https://example.com/eight"><h3>Result Eight</h3></a><div class="VwiC3b">Eighth snippet</div></div>
    </div>
  </body>
</html>
"""

COMPETITOR_HTML = """
<html>
  <head>
    <title>Acme Widgets</title>
    <script>var tracking = "these words are not visible";</script>
  </head>
  <body>
    <h1>Acme Widgets</h1>
    <h2>Features</h2>
    <h2>Pricing</h2>
    <h3>Basic</h3>
    <p>Widgets for everyone.</p>
    <p>Fast shipping worldwide.</p>
    <a href="/about">About</a>
    <a href="https://acme.example.com/contact">Contact</a>
    <a href="https://twitter.com/acme">Twitter</a>
    <img src="hero.png">
    <img src="logo.png">
    <script>console.log("not counted either")</script>
  </body>
</html>
"""

G2_HTML = """
<html>
  <body>
    <div itemprop="review">
      <div itemprop="author"><span itemprop="name">Jane D.</span></div>
      <meta itemprop="ratingValue" content="4.5">
      <meta itemprop="datePublished" content="2024-01-10">
      <div itemprop="reviewBody">Great tool for distributed teams.</div>
    </div>
    <div itemprop="review">
      <div itemprop="author"><span itemprop="name">Mark S.</span></div>
      <meta itemprop="ratingValue" content="3.5">
      <meta itemprop="datePublished" content="2024-01-12">
      <div itemprop="reviewBody">Solid, but the reporting is slow.</div>
    </div>
    <div itemprop="review">
      <div itemprop="author"><span itemprop="name">Empty Reviewer</span></div>
      <meta itemprop="ratingValue" content="1">
    </div>
  </body>
</html>
"""

TRUSTPILOT_HTML = """
<html>
  <body>
    <article data-service-review-card-paper="true">
      <span data-consumer-name-typography="true">Alice</span>
      <div data-service-review-rating="5"></div>
      <time datetime="2024-02-01T10:00:00.000Z">Feb 1, 2024</time>
      <p data-service-review-text-typography="true">Excellent service, fast delivery.</p>
    </article>
    <article data-service-review-card-paper="true">
      <span data-consumer-name-typography="true">Bob</span>
      <div data-service-review-rating="2"></div>
      <time datetime="2024-02-03T08:30:00.000Z">Feb 3, 2024</time>
      <p data-service-review-text-typography="true">Package arrived damaged.</p>
    </article>
    <article data-service-review-card-paper="true">
      <div data-service-review-rating="4"></div>
      <p data-service-review-text-typography="true">No name on this card.</p>
    </article>
  </body>
</html>
"""

GOOGLE_REVIEWS_HTML = """
<html>
  <body>
    <div data-review-id="r1">
      <div class="d4r55 reviewer-name">Carol</div>
      <span aria-label="4 stars"></span>
      <span class="rsqaWe review-date">2 weeks ago</span>
      <span class="wiI7pd review-text">Lovely place, friendly staff.</span>
    </div>
    <div data-review-id="r2">
      <span aria-label="5 stars"></span>
      <span class="review-text">Best coffee in town.</span>
    </div>
  </body>
</html>
"""


@pytest.fixture
def temp_db():
    """Create a temporary database for testing"""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def test_config(temp_db, tmp_path):
    """Test configuration with temporary database and no pacing"""
    return CrawlerConfig(
        db_path=temp_db,
        min_delay_ms=0,
        max_delay_ms=0,
        log_dir=str(tmp_path / "logs")
    )


@pytest.fixture
def snapshot_store(temp_db):
    """Snapshot store with temporary database"""
    return SnapshotStore(temp_db)


@pytest.fixture
def no_backoff():
    """Retry policy that retries immediately"""
    return RetryPolicy(max_retries=3, backoff_base=0)


@pytest.fixture
def make_policy(no_backoff):
    """Build a kind's default policy with pacing removed"""
    def factory(kind=CrawlKind.COMPETITOR, **overrides):
        policy = policy_for(kind, min_delay_ms=0, max_delay_ms=0, retry=no_backoff)
        return replace(policy, **{'settle_timeout_ms': 100, **overrides})
    return factory


@pytest.fixture
def sample_snapshot():
    """Sample page snapshot for testing"""
    return PageSnapshot(
        url="https://acme.example.com/",
        h1_tags=["Acme Widgets"],
        h2_tags=["Features", "Pricing"],
        h3_tags=["Basic"],
        word_count=500,
        content_hash="5d41402abc4b2a76b9719d911017c592",
        paragraphs=["Widgets for everyone.", "Fast shipping worldwide."],
        image_count=4,
        internal_link_count=20,
        external_link_count=3,
        captured_at="2024-01-01T00:00:00+00:00"
    )


class FakeElement:
    """Clickable element handle"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.clicks = 0

    async def click(self):
        if self.fail:
            raise PlaywrightError("Element is not attached to the DOM")
        self.clicks += 1


class FakePage:
    """In-memory stand-in for PageSession driven by its FakeBrowser"""

    def __init__(self, browser):
        self.browser = browser
        self.url = "about:blank"
        self.requested_url = None
        self.calls = []
        self.viewport = None
        self.headers = {}
        self.init_scripts = []
        self.closed = False

    async def navigate(self, url, timeout_ms=30000):
        self.calls.append('navigate')
        self.browser.navigations.append(url)
        self.requested_url = url

        if self.browser.latency:
            await asyncio.sleep(self.browser.latency)
        if url in self.browser.hang:
            await asyncio.sleep(60)

        remaining = self.browser.failures.get(url, 0)
        if remaining:
            self.browser.failures[url] = remaining - 1
            raise PlaywrightError(f"net::ERR_CONNECTION_RESET at {url}")

        self.url = self.browser.redirects.get(url, url)

    async def wait_for_network_idle(self, timeout_ms):
        self.calls.append('wait_for_network_idle')
        if self.browser.settle_timeout:
            raise PlaywrightTimeoutError(f"Timeout {timeout_ms}ms exceeded.")

    async def wait_for_selector(self, selector, timeout_ms):
        self.calls.append('wait_for_selector')
        return None

    async def evaluate(self, script, arg=None):
        self.calls.append('evaluate')
        if self.browser.scroll_states:
            return self.browser.scroll_states.pop(0)
        return {'before': 0, 'after': 0, 'atBottom': True}

    async def set_viewport(self, width, height):
        self.calls.append('set_viewport')
        self.viewport = (width, height)

    async def set_extra_headers(self, headers):
        self.calls.append('set_extra_headers')
        self.headers.update(headers)

    async def add_init_script(self, script):
        self.calls.append('add_init_script')
        self.init_scripts.append(script)

    async def query_selector(self, selector):
        return self.browser.elements.get(selector)

    async def click(self, selector, timeout_ms=5000):
        element = self.browser.elements.get(selector)
        if element is None:
            raise PlaywrightTimeoutError(f"Timeout {timeout_ms}ms exceeded.")
        await element.click()

    async def content(self):
        return self.browser.pages.get(self.requested_url, self.browser.default_html)

    async def close(self):
        if not self.closed:
            self.closed = True
            self.browser.open_pages -= 1


class FakeBrowser:
    """Hands out FakePages and records what the crawler did with them"""

    def __init__(self, pages=None, default_html="<html><body></body></html>",
                 failures=None, redirects=None, elements=None, hang=(),
                 settle_timeout=False, latency=0.0, scroll_states=None,
                 startup_error=False):
        self.pages = dict(pages or {})
        self.default_html = default_html
        self.failures = dict(failures or {})
        self.redirects = dict(redirects or {})
        self.elements = dict(elements or {})
        self.hang = set(hang)
        self.settle_timeout = settle_timeout
        self.latency = latency
        self.scroll_states = list(scroll_states or [])
        self.startup_error = startup_error

        self.navigations = []
        self.opened = []
        self.open_pages = 0
        self.max_open_pages = 0

    async def new_page(self):
        if self.startup_error:
            raise BrowserStartupError("Executable doesn't exist")
        page = FakePage(self)
        self.opened.append(page)
        self.open_pages += 1
        self.max_open_pages = max(self.max_open_pages, self.open_pages)
        return page


@pytest.fixture
def fake_browser():
    """Factory for fake browsers"""
    return FakeBrowser


@pytest.fixture
def fake_element():
    """Factory for fake clickable elements"""
    return FakeElement


@pytest.fixture
def serp_html():
    """Search page with eight result cards, two of them unusable"""
    return SERP_HTML


@pytest.fixture
def competitor_html():
    """Competitor page with headings, paragraphs, links and images"""
    return COMPETITOR_HTML


@pytest.fixture
def review_pages():
    """Review pages keyed by source type"""
    return {
        'g2': G2_HTML,
        'trustpilot': TRUSTPILOT_HTML,
        'google': GOOGLE_REVIEWS_HTML,
    }
