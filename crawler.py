"""
Crawl orchestrator: drives page visits under a politeness policy
"""
import asyncio
import time
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from browser_utils import STEALTH_INIT_SCRIPT, EXTENDED_STEALTH_SCRIPT, PageSession
from config import config
from exceptions import BrowserStartupError, TargetBlocked, TargetNavigationFailure, TargetTimeout
from models import Target
from monitoring import CrawlMetrics
from politeness import PolitenessController, PolitenessPolicy

logger = logging.getLogger(__name__)

Handler = Callable[[PageSession, Target], Awaitable[Iterable[Any]]]

CONSENT_SETTLE_MS = 15000


class CrawlOrchestrator:
    """Visits targets with a bounded worker pool and aggregates handler output.

    Each worker takes one target end-to-end: fresh page, anti-detection hooks,
    navigation, settle, consent, politeness delay, then the handler. Failed
    targets are retried from scratch and finally dropped; only a block on a
    policy with ``abort_on_block`` stops the run early.
    """

    def __init__(self, browser, policy: PolitenessPolicy,
                 metrics: Optional[CrawlMetrics] = None,
                 log: Optional[logging.Logger] = None,
                 is_blocked: Optional[Callable[[str], bool]] = None,
                 crawler_config=None):
        self.browser = browser
        self.policy = policy
        self.politeness = PolitenessController(policy)
        self.metrics = metrics or CrawlMetrics()
        self.logger = log or logger
        self.is_blocked = is_blocked
        self.config = crawler_config or config
        self._stop = asyncio.Event()

    def cancel(self):
        """Stop dispatching new targets; in-flight targets finish"""
        self._stop.set()

    async def run(self, targets: List[Target], handler: Handler,
                  timeout: Optional[float] = None) -> List[Any]:
        """Crawl every target and return the accumulated records.

        Completion order is a race when concurrency > 1; callers sort by the
        record's own key if they need a stable order.
        """
        results: List[Any] = []
        pending = deque(targets)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        blocked: List[TargetBlocked] = []
        self._stop.clear()

        async def worker(worker_id: int):
            while pending and not self._stop.is_set():
                if deadline is not None and loop.time() >= deadline:
                    self.logger.warning(f"Run timeout reached, {len(pending)} targets not dispatched")
                    self._stop.set()
                    break

                target = pending.popleft()
                self.logger.debug(f"Worker {worker_id} picked up {target.url}")
                try:
                    records = await self._process_target(target, handler)
                except TargetBlocked as e:
                    self.metrics.record_target_blocked()
                    self.logger.error(f"Blocked while crawling {target.url}: {e}")
                    if self.policy.abort_on_block:
                        blocked.append(e)
                        self._stop.set()
                    continue

                if records is not None:
                    results.extend(records)

        worker_count = max(1, min(self.policy.max_concurrency, len(targets)))
        workers = [asyncio.create_task(worker(i)) for i in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        if blocked:
            error = blocked[0]
            error.partial_results = list(results)
            raise error

        return results

    async def _process_target(self, target: Target, handler: Handler) -> Optional[List[Any]]:
        """Run one target with retries; None means it was dropped"""
        max_retries = self.policy.max_retries
        last_error = None

        for attempt in range(1, max_retries + 2):
            started = time.time()
            try:
                records = await asyncio.wait_for(
                    self._attempt(target, handler),
                    timeout=self.policy.request_timeout
                )
            except (TargetBlocked, BrowserStartupError):
                raise
            except asyncio.TimeoutError:
                last_error = TargetTimeout(target.url, f"Timed out after {self.policy.request_timeout}s")
            except Exception as e:
                last_error = TargetNavigationFailure(target.url, str(e))
            else:
                duration = time.time() - started
                self.metrics.record_target_succeeded(duration, len(records))
                if records:
                    self.logger.info(f"Extracted {len(records)} records from {target.url} in {duration:.2f}s")
                else:
                    self.logger.info(f"Page loaded but nothing matched for {target.url}")
                return records

            if attempt > max_retries:
                break

            self.metrics.record_retry()
            delay = self.policy.retry.backoff_delay(attempt)
            self.logger.warning(
                f"Attempt {attempt} failed for {target.url}: {last_error}. Retrying in {delay:.2f}s"
            )
            if delay > 0:
                await asyncio.sleep(delay)

        self.metrics.record_target_failed()
        self.logger.error(f"Dropping {target.url} after {max_retries} retries: {last_error}")
        return None

    async def _attempt(self, target: Target, handler: Handler) -> List[Any]:
        page = await self.browser.new_page()
        try:
            await self.apply_stealth(page)
            await page.navigate(target.url, timeout_ms=int(self.policy.request_timeout * 1000))
            self._check_blocked(target, page)

            await self.wait_for_settle(page, self.policy.settle_timeout_ms)
            await self.dismiss_consent(page)
            self._check_blocked(target, page)

            await self.politeness.wait()
            records = await handler(page, target)
            return list(records or [])
        finally:
            await page.close()

    def _check_blocked(self, target: Target, page):
        if self.is_blocked and self.is_blocked(page.url):
            raise TargetBlocked(target.url, f"Block page detected at {page.url}")

    async def apply_stealth(self, page):
        """Anti-detection hooks; must run before any page script"""
        await page.set_viewport(self.config.viewport_width, self.config.viewport_height)
        await page.set_extra_headers({'Accept-Language': self.config.accept_language})
        script = STEALTH_INIT_SCRIPT
        if self.config.stealth_mode:
            script += EXTENDED_STEALTH_SCRIPT
        await page.add_init_script(script)

    async def wait_for_settle(self, page, timeout_ms: int) -> bool:
        """Wait for network idle; a timeout is tolerated"""
        try:
            await page.wait_for_network_idle(timeout_ms)
            return True
        except (PlaywrightTimeoutError, asyncio.TimeoutError):
            self.logger.warning(f"Timeout waiting for network idle on {page.url}, continuing")
            return False

    async def dismiss_consent(self, page) -> Optional[str]:
        """Click the first matching consent button; returns its selector"""
        for selector in self.config.consent_selectors:
            try:
                button = await page.query_selector(selector)
                if not button:
                    continue
                await button.click()
            except PlaywrightError as e:
                self.logger.debug(f"Consent selector {selector} failed: {e}")
                continue

            self.logger.info(f"Consent accepted using selector: {selector}")
            await self.wait_for_settle(page, CONSENT_SETTLE_MS)
            return selector

        return None
