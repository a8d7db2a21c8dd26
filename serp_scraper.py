"""
SERP crawl: ranked organic results for a list of keywords
"""
import logging
from typing import Dict, List, Optional
from urllib.parse import quote

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser_utils import browser_session
from config import config
from crawler import CrawlOrchestrator
from exceptions import TargetBlocked
from extractors import extract_serp_results, is_google_block_page
from models import CrawlKind, SearchResultRecord, Target
from monitoring import CrawlMetrics
from politeness import PolitenessPolicy, RetryPolicy, policy_for
from schemas import SerpCrawlRequest, parse_request
from utils import PerformanceMonitor

logger = logging.getLogger(__name__)

RESULTS_CONTAINER = '#search'
RESULTS_CONTAINER_TIMEOUT_MS = 30000


def build_serp_targets(keywords: List[str], max_results: int, crawler_config=None) -> List[Target]:
    cfg = crawler_config or config
    return [
        Target(
            url=cfg.serp_search_url.format(query=quote(keyword, safe=''), num=max_results),
            kind=CrawlKind.SERP,
            keyword=keyword,
            ordinal=index
        )
        for index, keyword in enumerate(keywords)
    ]


def make_serp_handler(max_results: int, is_blocked=is_google_block_page):
    async def handle(page, target: Target) -> List[SearchResultRecord]:
        try:
            await page.wait_for_selector(RESULTS_CONTAINER, RESULTS_CONTAINER_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.warning(f"No {RESULTS_CONTAINER} container found for keyword \"{target.keyword}\"")

        html = await page.content()
        return extract_serp_results(html, target.keyword, max_results, page.url, is_blocked)

    return handle


def sort_serp_results(results: List[SearchResultRecord], keywords: List[str]) -> List[SearchResultRecord]:
    order: Dict[str, int] = {}
    for index, keyword in enumerate(keywords):
        order.setdefault(keyword, index)
    return sorted(results, key=lambda r: (order.get(r.keyword, len(order)), r.position))


async def run_serp_crawl(keywords: List[str], max_results: Optional[int] = None,
                         proxy_list: Optional[List[str]] = None,
                         min_delay_ms: Optional[int] = None,
                         max_delay_ms: Optional[int] = None,
                         browser=None, metrics: Optional[CrawlMetrics] = None,
                         log: Optional[logging.Logger] = None,
                         retry: Optional[RetryPolicy] = None,
                         policy: Optional[PolitenessPolicy] = None,
                         is_blocked=is_google_block_page,
                         timeout: Optional[float] = None,
                         crawler_config=None) -> List[SearchResultRecord]:
    """Crawl one search page per keyword, strictly sequentially.

    Raises InvalidInput before any navigation, and TargetBlocked (with the
    partial results attached) when the search engine serves its block page.
    """
    request = parse_request(
        SerpCrawlRequest,
        keywords=keywords,
        max_results=max_results,
        proxy_list=proxy_list,
        min_delay_ms=min_delay_ms,
        max_delay_ms=max_delay_ms,
    )
    policy = policy or policy_for(CrawlKind.SERP, request.min_delay_ms, request.max_delay_ms, retry)
    targets = build_serp_targets(request.keywords, request.max_results, crawler_config)
    metrics = metrics or CrawlMetrics(CrawlKind.SERP.value)

    monitor = PerformanceMonitor()
    monitor.start_timer("serp_crawl")
    logger.info(f"Starting SERP crawl for {len(targets)} keywords")

    async with browser_session(browser, request.proxy_list, crawler_config) as manager:
        orchestrator = CrawlOrchestrator(manager, policy, metrics, log,
                                         is_blocked=is_blocked, crawler_config=crawler_config)
        try:
            results = await orchestrator.run(
                targets, make_serp_handler(request.max_results, is_blocked), timeout
            )
        except TargetBlocked as e:
            e.partial_results = sort_serp_results(e.partial_results, request.keywords)
            metrics.log_summary(logger)
            raise

    monitor.end_timer("serp_crawl")
    metrics.log_summary(logger)
    return sort_serp_results(results, request.keywords)
