"""
Tests for the crawl orchestrator
"""
import pytest

from crawler import CrawlOrchestrator
from exceptions import BrowserStartupError, TargetBlocked
from models import CrawlKind, Target
from monitoring import CrawlMetrics


def make_targets(*urls, kind=CrawlKind.COMPETITOR):
    return [Target(url=url, kind=kind, ordinal=i) for i, url in enumerate(urls)]


async def echo_handler(page, target):
    return [target.url]


async def empty_handler(page, target):
    return []


def blocked_by_marker(url):
    return '/blocked' in url


class TestOrchestratorRun:
    """Tests for dispatching and aggregating targets"""

    @pytest.mark.asyncio
    async def test_collects_records_for_every_target(self, fake_browser, make_policy, test_config):
        browser = fake_browser()
        orchestrator = CrawlOrchestrator(browser, make_policy(), crawler_config=test_config)
        urls = ["https://a.example.com/", "https://b.example.com/", "https://c.example.com/"]

        results = await orchestrator.run(make_targets(*urls), echo_handler)

        assert sorted(results) == urls
        assert all(page.closed for page in browser.opened)
        assert browser.open_pages == 0

    @pytest.mark.asyncio
    async def test_empty_target_list(self, fake_browser, make_policy, test_config):
        orchestrator = CrawlOrchestrator(fake_browser(), make_policy(), crawler_config=test_config)
        assert await orchestrator.run([], echo_handler) == []

    @pytest.mark.asyncio
    async def test_empty_extraction_is_not_a_failure(self, fake_browser, make_policy, test_config):
        metrics = CrawlMetrics()
        orchestrator = CrawlOrchestrator(fake_browser(), make_policy(), metrics, crawler_config=test_config)

        results = await orchestrator.run(make_targets("https://a.example.com/"), empty_handler)

        assert results == []
        assert metrics.targets_succeeded == 1
        assert metrics.empty_extractions == 1
        assert metrics.targets_failed == 0

    @pytest.mark.asyncio
    async def test_concurrency_cap(self, fake_browser, make_policy, test_config):
        browser = fake_browser(latency=0.02)
        policy = make_policy(CrawlKind.COMPETITOR)
        orchestrator = CrawlOrchestrator(browser, policy, crawler_config=test_config)
        urls = [f"https://site{i}.example.com/" for i in range(5)]

        results = await orchestrator.run(make_targets(*urls), echo_handler)

        assert len(results) == 5
        assert browser.max_open_pages == policy.max_concurrency == 2

    @pytest.mark.asyncio
    async def test_sequential_kind_keeps_input_order(self, fake_browser, make_policy, test_config):
        browser = fake_browser(latency=0.01)
        orchestrator = CrawlOrchestrator(browser, make_policy(CrawlKind.SERP), crawler_config=test_config)
        urls = [f"https://site{i}.example.com/" for i in range(4)]

        results = await orchestrator.run(make_targets(*urls, kind=CrawlKind.SERP), echo_handler)

        assert results == urls
        assert browser.navigations == urls
        assert browser.max_open_pages == 1

    @pytest.mark.asyncio
    async def test_run_timeout_stops_dispatching(self, fake_browser, make_policy, test_config):
        browser = fake_browser(latency=0.05)
        orchestrator = CrawlOrchestrator(browser, make_policy(CrawlKind.SERP), crawler_config=test_config)
        urls = [f"https://site{i}.example.com/" for i in range(3)]

        results = await orchestrator.run(make_targets(*urls), echo_handler, timeout=0.01)

        assert results == [urls[0]]
        assert browser.navigations == [urls[0]]

    @pytest.mark.asyncio
    async def test_browser_startup_error_propagates(self, fake_browser, make_policy, test_config):
        orchestrator = CrawlOrchestrator(fake_browser(startup_error=True), make_policy(), crawler_config=test_config)

        with pytest.raises(BrowserStartupError):
            await orchestrator.run(make_targets("https://a.example.com/"), echo_handler)


class TestOrchestratorRetries:
    """Tests for retry and drop behaviour"""

    @pytest.mark.asyncio
    async def test_retries_until_success(self, fake_browser, make_policy, test_config):
        url = "https://flaky.example.com/"
        browser = fake_browser(failures={url: 2})
        metrics = CrawlMetrics()
        orchestrator = CrawlOrchestrator(browser, make_policy(), metrics, crawler_config=test_config)

        results = await orchestrator.run(make_targets(url), echo_handler)

        assert results == [url]
        assert browser.navigations == [url] * 3
        assert metrics.retries == 2
        assert metrics.targets_succeeded == 1

    @pytest.mark.asyncio
    async def test_each_attempt_uses_a_fresh_page(self, fake_browser, make_policy, test_config):
        url = "https://flaky.example.com/"
        browser = fake_browser(failures={url: 1})
        orchestrator = CrawlOrchestrator(browser, make_policy(), crawler_config=test_config)

        await orchestrator.run(make_targets(url), echo_handler)

        assert len(browser.opened) == 2
        assert all(page.closed for page in browser.opened)

    @pytest.mark.asyncio
    async def test_dropped_after_max_retries(self, fake_browser, make_policy, no_backoff, test_config):
        bad = "https://down.example.com/"
        good = "https://up.example.com/"
        browser = fake_browser(failures={bad: 10})
        metrics = CrawlMetrics()
        orchestrator = CrawlOrchestrator(browser, make_policy(), metrics, crawler_config=test_config)

        results = await orchestrator.run(make_targets(bad, good), echo_handler)

        assert results == [good]
        assert browser.navigations.count(bad) == no_backoff.max_retries + 1
        assert metrics.targets_failed == 1
        assert metrics.targets_succeeded == 1

    @pytest.mark.asyncio
    async def test_request_timeout_counts_as_failure(self, fake_browser, make_policy, test_config):
        url = "https://slow.example.com/"
        browser = fake_browser(hang=[url])
        metrics = CrawlMetrics()
        policy = make_policy(request_timeout=0.05)
        orchestrator = CrawlOrchestrator(browser, policy, metrics, crawler_config=test_config)

        results = await orchestrator.run(make_targets(url), echo_handler)

        assert results == []
        assert metrics.targets_failed == 1
        assert len(browser.navigations) == policy.max_retries + 1
        assert all(page.closed for page in browser.opened)

    @pytest.mark.asyncio
    async def test_handler_error_is_retried(self, fake_browser, make_policy, test_config):
        calls = []

        async def handler(page, target):
            calls.append(target.url)
            if len(calls) == 1:
                raise ValueError("unexpected markup")
            return [target.url]

        orchestrator = CrawlOrchestrator(fake_browser(), make_policy(), crawler_config=test_config)
        results = await orchestrator.run(make_targets("https://a.example.com/"), handler)

        assert results == ["https://a.example.com/"]
        assert len(calls) == 2


class TestOrchestratorBlocking:
    """Tests for block detection"""

    @pytest.mark.asyncio
    async def test_block_aborts_run_with_partial_results(self, fake_browser, make_policy, test_config):
        urls = ["https://a.example.com/", "https://b.example.com/", "https://c.example.com/"]
        browser = fake_browser(redirects={urls[1]: "https://b.example.com/blocked"})
        metrics = CrawlMetrics()
        orchestrator = CrawlOrchestrator(browser, make_policy(CrawlKind.SERP), metrics,
                                         is_blocked=blocked_by_marker, crawler_config=test_config)

        with pytest.raises(TargetBlocked) as exc_info:
            await orchestrator.run(make_targets(*urls, kind=CrawlKind.SERP), echo_handler)

        assert exc_info.value.partial_results == [urls[0]]
        assert urls[2] not in browser.navigations
        assert browser.navigations.count(urls[1]) == 1
        assert metrics.targets_blocked == 1

    @pytest.mark.asyncio
    async def test_block_skips_target_when_not_aborting(self, fake_browser, make_policy, test_config):
        urls = ["https://a.example.com/", "https://b.example.com/", "https://c.example.com/"]
        browser = fake_browser(redirects={urls[1]: "https://b.example.com/blocked"})
        metrics = CrawlMetrics()
        orchestrator = CrawlOrchestrator(browser, make_policy(CrawlKind.REVIEW), metrics,
                                         is_blocked=blocked_by_marker, crawler_config=test_config)

        results = await orchestrator.run(make_targets(*urls, kind=CrawlKind.REVIEW), echo_handler)

        assert results == [urls[0], urls[2]]
        assert metrics.targets_blocked == 1

    @pytest.mark.asyncio
    async def test_block_raised_by_handler(self, fake_browser, make_policy, test_config):
        async def handler(page, target):
            raise TargetBlocked(target.url, "captcha")

        orchestrator = CrawlOrchestrator(fake_browser(), make_policy(CrawlKind.SERP), crawler_config=test_config)

        with pytest.raises(TargetBlocked) as exc_info:
            await orchestrator.run(make_targets("https://a.example.com/", kind=CrawlKind.SERP), handler)

        assert exc_info.value.partial_results == []


class TestPagePreparation:
    """Tests for stealth, settle and consent handling"""

    @pytest.mark.asyncio
    async def test_stealth_applied_before_navigation(self, fake_browser, make_policy, test_config):
        browser = fake_browser()
        orchestrator = CrawlOrchestrator(browser, make_policy(), crawler_config=test_config)

        await orchestrator.run(make_targets("https://a.example.com/"), echo_handler)

        page = browser.opened[0]
        assert page.calls.index('add_init_script') < page.calls.index('navigate')
        assert page.calls.index('set_viewport') < page.calls.index('navigate')
        assert page.viewport == (test_config.viewport_width, test_config.viewport_height)
        assert page.headers['Accept-Language'] == test_config.accept_language
        assert 'webdriver' in page.init_scripts[0]

    @pytest.mark.asyncio
    async def test_settle_timeout_is_tolerated(self, fake_browser, make_policy, test_config):
        browser = fake_browser(settle_timeout=True)
        metrics = CrawlMetrics()
        orchestrator = CrawlOrchestrator(browser, make_policy(), metrics, crawler_config=test_config)

        results = await orchestrator.run(make_targets("https://a.example.com/"), echo_handler)

        assert results == ["https://a.example.com/"]
        assert metrics.retries == 0

    @pytest.mark.asyncio
    async def test_consent_dismissed(self, fake_browser, fake_element, make_policy, test_config):
        button = fake_element()
        browser = fake_browser(elements={'button[aria-label="I agree"]': button})
        orchestrator = CrawlOrchestrator(browser, make_policy(), crawler_config=test_config)

        await orchestrator.run(make_targets("https://a.example.com/"), echo_handler)

        assert button.clicks == 1

    @pytest.mark.asyncio
    async def test_consent_falls_through_failing_selector(self, fake_browser, fake_element, make_policy, test_config):
        broken = fake_element(fail=True)
        working = fake_element()
        browser = fake_browser(elements={
            'button[aria-label="Accept all"]': broken,
            'button:has-text("Accept")': working,
        })
        orchestrator = CrawlOrchestrator(browser, make_policy(), crawler_config=test_config)
        page = await browser.new_page()

        selector = await orchestrator.dismiss_consent(page)

        assert selector == 'button:has-text("Accept")'
        assert working.clicks == 1

    @pytest.mark.asyncio
    async def test_no_consent_button(self, fake_browser, make_policy, test_config):
        browser = fake_browser()
        orchestrator = CrawlOrchestrator(browser, make_policy(), crawler_config=test_config)
        page = await browser.new_page()

        assert await orchestrator.dismiss_consent(page) is None
