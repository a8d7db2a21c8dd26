"""
Review aggregation across Trustpilot, G2 and Google
"""
import asyncio
import logging
from typing import List, Optional

from playwright.async_api import Error as PlaywrightError

from browser_utils import auto_scroll, browser_session
from config import config
from crawler import CrawlOrchestrator
from extractors import extract_reviews
from models import CrawlKind, ReviewAggregate, Target
from monitoring import CrawlMetrics
from politeness import PolitenessPolicy, RetryPolicy, policy_for
from schemas import ReviewCrawlRequest, parse_request
from utils import PerformanceMonitor

logger = logging.getLogger(__name__)

MORE_REVIEWS_SELECTOR = '[aria-label="More reviews"]'
MORE_REVIEWS_WAIT = 2.0


async def expand_google_reviews(page, wait: float = MORE_REVIEWS_WAIT) -> bool:
    """Click Google's "More reviews" expander when present"""
    try:
        button = await page.query_selector(MORE_REVIEWS_SELECTOR)
        if not button:
            return False
        await button.click()
    except PlaywrightError as e:
        logger.debug(f"Could not expand Google reviews: {e}")
        return False

    await asyncio.sleep(wait)
    return True


def make_review_handler(max_reviews: int, scroll_pause: float = 0.2, expand_wait: float = MORE_REVIEWS_WAIT):
    async def handle(page, target: Target) -> List[ReviewAggregate]:
        logger.info(f"Crawling {target.source_type} reviews for: {target.business_name}")

        if target.source_type == 'google':
            await expand_google_reviews(page, expand_wait)
        await auto_scroll(page, pause=scroll_pause)

        html = await page.content()
        reviews = extract_reviews(html, target.source_type, target.business_name, max_reviews)
        logger.info(f"Extracted {len(reviews)} reviews from {target.source_type}")
        return [ReviewAggregate.from_reviews(target.source_type, target.business_name, reviews)]

    return handle


async def run_review_crawl(sources: List[dict], max_reviews_per_source: Optional[int] = None,
                           browser=None, metrics: Optional[CrawlMetrics] = None,
                           log: Optional[logging.Logger] = None,
                           retry: Optional[RetryPolicy] = None,
                           policy: Optional[PolitenessPolicy] = None,
                           timeout: Optional[float] = None,
                           crawler_config=None) -> List[ReviewAggregate]:
    """Crawl each review source and aggregate its reviews.

    ``sources`` items are mappings with ``type``, ``url`` and
    ``business_name``.
    """
    request = parse_request(ReviewCrawlRequest, sources=sources,
                            max_reviews_per_source=max_reviews_per_source)
    cfg = crawler_config or config
    policy = policy or policy_for(CrawlKind.REVIEW, retry=retry)
    targets = [
        Target(
            url=source.url,
            kind=CrawlKind.REVIEW,
            source_type=source.type,
            business_name=source.business_name,
            ordinal=index
        )
        for index, source in enumerate(request.sources)
    ]
    metrics = metrics or CrawlMetrics(CrawlKind.REVIEW.value)

    perf = PerformanceMonitor()
    perf.start_timer("review_crawl")
    logger.info(f"Starting review crawl for {len(targets)} sources")

    async with browser_session(browser, crawler_config=cfg) as manager:
        orchestrator = CrawlOrchestrator(manager, policy, metrics, log, crawler_config=cfg)
        results = await orchestrator.run(targets, make_review_handler(request.max_reviews_per_source), timeout)

    perf.end_timer("review_crawl")
    metrics.log_summary(logger)

    order = {}
    for target in targets:
        order.setdefault((target.source_type, target.business_name), target.ordinal)
    return sorted(results, key=lambda r: order.get((r.source_type, r.business_name), len(order)))
