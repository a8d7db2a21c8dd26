"""
Extraction adapters: turn a loaded page's DOM into typed records.

Every adapter works from an ordered table of selector strategies. The first
strategy whose container selector matches at least one element wins, so new
markup variants are added as rows rather than branches. A candidate missing a
required field is skipped on its own; it never fails the whole extraction.
"""
import re
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from config import config
from exceptions import InvalidInput, TargetBlocked
from models import PageSnapshot, ReviewRecord, SearchResultRecord, REVIEW_SOURCE_TYPES
from utils import md5_hex, normalize_whitespace, safe_extract_attribute, safe_extract_text, utc_now_iso

logger = logging.getLogger(__name__)

# Only these fields feed the content hash; extend this tuple when new
# snapshot fields should count as a content change.
CONTENT_HASH_FIELDS = ('h1_tags', 'h2_tags', 'h3_tags', 'paragraphs')

GOOGLE_BLOCK_PATHS = ('/sorry/',)


@dataclass(frozen=True)
class FieldRule:
    """Read a value from the first element matching ``selector``.

    With no ``attribute`` the element's normalized text is used.
    """
    selector: str
    attribute: Optional[str] = None

    def read(self, container) -> str:
        element = container.select_one(self.selector)
        if element is None:
            return ""
        if self.attribute:
            return safe_extract_attribute(element, self.attribute)
        return safe_extract_text(element)


def first_value(container, rules: Sequence[FieldRule]) -> str:
    """Try each rule in order and return the first non-empty value"""
    for rule in rules:
        value = rule.read(container)
        if value:
            return value
    return ""


def select_candidates(soup, strategies):
    """Return (strategy, containers) for the first strategy with any match"""
    for strategy in strategies:
        containers = soup.select(strategy.container)
        if containers:
            logger.debug(f"Strategy '{strategy.name}' matched {len(containers)} candidates")
            return strategy, containers
    return None, []


# ----------------------------------------------------------------------------
# Search results
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class SerpStrategy:
    name: str
    container: str
    link: Tuple[FieldRule, ...]
    title: Tuple[FieldRule, ...]
    description: Tuple[FieldRule, ...]


_SERP_LINK = (FieldRule('a[href^="http"]', 'href'),)
_SERP_TITLE = (FieldRule('h3'),)
_SERP_DESCRIPTION = (
    FieldRule('[data-sncf]'),
    FieldRule('.VwiC3b'),
    FieldRule('div[style*="-webkit-line-clamp"]'),
)

SERP_STRATEGIES = (
    SerpStrategy('classic-organic', '#search .g', _SERP_LINK, _SERP_TITLE, _SERP_DESCRIPTION),
    SerpStrategy('result-block', '#search div.MjjYud', _SERP_LINK, _SERP_TITLE, _SERP_DESCRIPTION),
    SerpStrategy('sokoban', '#search div[data-sokoban-container]', _SERP_LINK, _SERP_TITLE, _SERP_DESCRIPTION),
    SerpStrategy('rso-children', '#rso > div', _SERP_LINK, _SERP_TITLE, _SERP_DESCRIPTION),
)


def is_google_block_page(url: str) -> bool:
    """True when the browser landed on Google's anti-bot interstitial"""
    if not url:
        return False
    path = urlparse(url).path or ""
    return any(path.startswith(block_path) for block_path in GOOGLE_BLOCK_PATHS)


def extract_serp_results(html: str, keyword: str, max_results: int,
                         page_url: str = "",
                         is_blocked: Optional[Callable[[str], bool]] = is_google_block_page,
                         strategies=SERP_STRATEGIES) -> List[SearchResultRecord]:
    """Extract ranked organic results in document order.

    Positions are dense: skipped candidates do not consume a number.
    """
    if is_blocked and is_blocked(page_url):
        raise TargetBlocked(page_url, f"Search engine block page for keyword '{keyword}'")

    soup = BeautifulSoup(html, 'html.parser')
    strategy, candidates = select_candidates(soup, strategies)
    if strategy is None:
        logger.info(f"No result containers matched for keyword '{keyword}'")
        return []

    results = []
    for card in candidates:
        if len(results) >= max_results:
            break

        url = first_value(card, strategy.link)
        title = first_value(card, strategy.title)
        if not url or not title:
            continue

        results.append(SearchResultRecord(
            keyword=keyword,
            position=len(results) + 1,
            url=url,
            title=title,
            description=first_value(card, strategy.description),
            captured_at=utc_now_iso()
        ))

    return results


# ----------------------------------------------------------------------------
# Competitor page snapshots
# ----------------------------------------------------------------------------

def compute_content_hash(snapshot_fields: Dict[str, List[str]]) -> str:
    """Digest over the ordered hash input fields"""
    return md5_hex([snapshot_fields[name] for name in CONTENT_HASH_FIELDS])


def _element_texts(soup, tag: str) -> List[str]:
    return [text for text in (safe_extract_text(el) for el in soup.find_all(tag)) if text]


def _visible_word_count(soup) -> int:
    body = soup.body
    if body is None:
        return 0
    for hidden in body(['script', 'style', 'noscript', 'template']):
        hidden.decompose()
    return len(body.get_text(' ').split())


def _count_links(soup, page_url: str) -> Tuple[int, int]:
    """Count internal and external links by hostname"""
    internal_count = 0
    external_count = 0
    host = (urlparse(page_url).hostname or "").lower()

    for link in soup.select('a[href]'):
        try:
            link_host = urlparse(urljoin(page_url, link['href'].strip())).hostname or ""
        except ValueError:
            continue
        if link_host.lower() == host:
            internal_count += 1
        else:
            external_count += 1

    return internal_count, external_count


def extract_page_snapshot(html: str, url: str, page_url: Optional[str] = None,
                          paragraph_limit: Optional[int] = None) -> PageSnapshot:
    """Build a PageSnapshot from a loaded page.

    ``url`` is the monitored target; ``page_url`` is where the browser ended
    up and decides which links count as internal.
    """
    paragraph_limit = paragraph_limit if paragraph_limit is not None else config.paragraph_limit
    soup = BeautifulSoup(html, 'html.parser')

    fields = {
        'h1_tags': _element_texts(soup, 'h1'),
        'h2_tags': _element_texts(soup, 'h2'),
        'h3_tags': _element_texts(soup, 'h3'),
        'paragraphs': _element_texts(soup, 'p')[:paragraph_limit],
    }
    internal_links, external_links = _count_links(soup, page_url or url)
    image_count = len(soup.find_all('img'))

    return PageSnapshot(
        url=url,
        h1_tags=fields['h1_tags'],
        h2_tags=fields['h2_tags'],
        h3_tags=fields['h3_tags'],
        word_count=_visible_word_count(soup),
        content_hash=compute_content_hash(fields),
        paragraphs=fields['paragraphs'],
        image_count=image_count,
        internal_link_count=internal_links,
        external_link_count=external_links,
        captured_at=utc_now_iso()
    )


# ----------------------------------------------------------------------------
# Reviews
# ----------------------------------------------------------------------------

def _int_rating(value: str) -> float:
    match = re.search(r'-?\d+', value or "")
    return int(match.group()) if match else 0


def _float_rating(value: str) -> float:
    match = re.search(r'-?\d+(?:\.\d+)?', value or "")
    return float(match.group()) if match else 0


def _first_digit_rating(value: str) -> float:
    match = re.search(r'(\d)', value or "")
    return int(match.group(1)) if match else 0


@dataclass(frozen=True)
class ReviewStrategy:
    name: str
    container: str
    reviewer: Tuple[FieldRule, ...]
    rating: Tuple[FieldRule, ...]
    text: Tuple[FieldRule, ...]
    date: Tuple[FieldRule, ...]
    rating_parser: Callable[[str], float] = _float_rating
    required: Tuple[str, ...] = ('text',)


# schema.org microdata works as a last resort on every platform
_MICRODATA_REVIEW = ReviewStrategy(
    name='schema-org-review',
    container='[itemprop="review"]',
    reviewer=(FieldRule('[itemprop="author"] [itemprop="name"]'), FieldRule('[itemprop="author"]')),
    rating=(FieldRule('[itemprop="ratingValue"]', 'content'), FieldRule('[itemprop="ratingValue"]')),
    text=(FieldRule('[itemprop="reviewBody"]'),),
    date=(FieldRule('[itemprop="datePublished"]', 'content'), FieldRule('time', 'datetime')),
    rating_parser=_float_rating,
)

REVIEW_STRATEGIES = {
    'trustpilot': (
        ReviewStrategy(
            name='trustpilot-card',
            container='[data-service-review-card-paper]',
            reviewer=(FieldRule('[data-consumer-name-typography]'),),
            rating=(FieldRule('[data-service-review-rating]', 'data-service-review-rating'),),
            text=(FieldRule('[data-service-review-text-typography]'),),
            date=(FieldRule('time', 'datetime'),),
            rating_parser=_int_rating,
            required=('reviewer', 'text'),
        ),
        ReviewStrategy(
            name='trustpilot-article',
            container='article[class*="reviewCard"]',
            reviewer=(FieldRule('[class*="consumerName"]'), FieldRule('aside a span')),
            rating=(FieldRule('img[alt^="Rated"]', 'alt'),),
            text=(FieldRule('p[class*="reviewText"]'), FieldRule('section p')),
            date=(FieldRule('time', 'datetime'),),
            rating_parser=_int_rating,
            required=('reviewer', 'text'),
        ),
        _MICRODATA_REVIEW,
    ),
    'g2': (
        _MICRODATA_REVIEW,
        ReviewStrategy(
            name='g2-survey-response',
            container='[id^="survey-response-"]',
            reviewer=(FieldRule('[class*="reviewer"] a'), FieldRule('[class*="reviewer"]')),
            rating=(FieldRule('[class*="stars"]', 'class'),),
            text=(FieldRule('[itemprop="reviewBody"]'), FieldRule('[data-poison-text]')),
            date=(FieldRule('time', 'datetime'),),
            rating_parser=_float_rating,
        ),
    ),
    'google': (
        ReviewStrategy(
            name='google-review-id',
            container='[data-review-id]',
            reviewer=(FieldRule('[class*="reviewer"]'), FieldRule('[aria-label*="Photo of"]')),
            rating=(FieldRule('[aria-label*="stars"]', 'aria-label'),),
            text=(FieldRule('[class*="review-text"]'), FieldRule('.review-full-text')),
            date=(FieldRule('[class*="review-date"]'),),
            rating_parser=_first_digit_rating,
        ),
        _MICRODATA_REVIEW,
    ),
}


def extract_reviews(html: str, source_type: str, business_name: str,
                    max_reviews: int, strategies=None) -> List[ReviewRecord]:
    """Extract up to ``max_reviews`` reviews for one source type"""
    if strategies is None:
        if source_type not in REVIEW_STRATEGIES:
            raise InvalidInput(f"Unsupported review source: {source_type!r} (expected one of {', '.join(REVIEW_SOURCE_TYPES)})")
        strategies = REVIEW_STRATEGIES[source_type]

    soup = BeautifulSoup(html, 'html.parser')
    strategy, cards = select_candidates(soup, strategies)
    if strategy is None:
        logger.info(f"No {source_type} review cards matched for {business_name}")
        return []

    reviews = []
    for card in cards:
        if len(reviews) >= max_reviews:
            break

        values = {
            'reviewer': first_value(card, strategy.reviewer),
            'rating': first_value(card, strategy.rating),
            'text': first_value(card, strategy.text),
            'date': first_value(card, strategy.date),
        }
        if not all(values[name] for name in strategy.required):
            continue

        reviews.append(ReviewRecord(
            source_type=source_type,
            business_name=business_name,
            reviewer_name=normalize_whitespace(values['reviewer']) or 'Anonymous',
            rating=strategy.rating_parser(values['rating']),
            review_text=values['text'],
            review_date=values['date'],
            captured_at=utc_now_iso()
        ))

    return reviews
