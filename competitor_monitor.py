"""
Competitor monitoring: snapshot pages and report what changed since last run
"""
import logging
from typing import List, Optional

from browser_utils import browser_session
from config import config
from crawler import CrawlOrchestrator
from database import SnapshotStore, snapshot_key
from diff_engine import detect_changes, has_changes
from extractors import extract_page_snapshot
from models import CompetitorResult, CrawlKind, Target
from monitoring import CrawlMetrics
from politeness import PolitenessPolicy, RetryPolicy, policy_for
from schemas import CompetitorCrawlRequest, parse_request
from utils import PerformanceMonitor

logger = logging.getLogger(__name__)


class CompetitorMonitor:
    """Compares each freshly extracted page with the stored snapshot"""

    def __init__(self, store: SnapshotStore, include_snapshots: bool = True, crawler_config=None):
        self.store = store
        self.include_snapshots = include_snapshots
        self.config = crawler_config or config

    async def handle(self, page, target: Target) -> List[CompetitorResult]:
        html = await page.content()
        current = extract_page_snapshot(html, target.url, page.url, self.config.paragraph_limit)
        return [await self.compare_and_store(current)]

    async def compare_and_store(self, current) -> CompetitorResult:
        key = snapshot_key(current.url)

        # read-then-write for one key must not interleave with another worker
        async with self.store.lock_for(key):
            previous = self.store.get(key)
            changes = detect_changes(previous, current, self.config.structure_link_tolerance)
            if self.include_snapshots:
                self.store.put(key, current)

        result = CompetitorResult(
            url=current.url,
            previous_snapshot=previous,
            current_snapshot=current,
            changes=changes,
            has_changes=has_changes(changes)
        )
        logger.info(f"Completed: {current.url} - changes detected: {result.has_changes}")
        return result


async def run_competitor_crawl(urls: List[str], include_snapshots: bool = True,
                               store: Optional[SnapshotStore] = None,
                               browser=None, metrics: Optional[CrawlMetrics] = None,
                               log: Optional[logging.Logger] = None,
                               retry: Optional[RetryPolicy] = None,
                               policy: Optional[PolitenessPolicy] = None,
                               timeout: Optional[float] = None,
                               crawler_config=None) -> List[CompetitorResult]:
    """Crawl competitor pages and diff them against their last snapshot.

    With ``include_snapshots`` false the history is read but not updated.
    """
    request = parse_request(CompetitorCrawlRequest, urls=urls, include_snapshots=include_snapshots)
    cfg = crawler_config or config
    store = store or SnapshotStore(cfg.db_path)
    policy = policy or policy_for(CrawlKind.COMPETITOR, retry=retry)
    targets = [
        Target(url=url, kind=CrawlKind.COMPETITOR, ordinal=index)
        for index, url in enumerate(request.urls)
    ]
    metrics = metrics or CrawlMetrics(CrawlKind.COMPETITOR.value)
    monitor = CompetitorMonitor(store, request.include_snapshots, cfg)

    perf = PerformanceMonitor()
    perf.start_timer("competitor_crawl")
    logger.info(f"Starting competitor crawl for {len(targets)} URLs")

    async with browser_session(browser, crawler_config=cfg) as manager:
        orchestrator = CrawlOrchestrator(manager, policy, metrics, log, crawler_config=cfg)
        results = await orchestrator.run(targets, monitor.handle, timeout)

    perf.end_timer("competitor_crawl")
    metrics.log_summary(logger)

    order = {}
    for index, url in enumerate(request.urls):
        order.setdefault(url, index)
    return sorted(results, key=lambda r: order.get(r.url, len(order)))
