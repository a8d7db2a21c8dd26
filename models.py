"""
Data models for the web intelligence crawler
"""
from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from typing import List, Dict, Any, Optional


class CrawlKind(str, Enum):
    """The three crawl kinds sharing the orchestrator"""
    SERP = "serp"
    COMPETITOR = "competitor"
    REVIEW = "review"


REVIEW_SOURCE_TYPES = ("google", "trustpilot", "g2")


@dataclass(frozen=True)
class Target:
    """One unit of work: a URL plus kind-specific context"""
    url: str
    kind: CrawlKind
    keyword: Optional[str] = None
    source_type: Optional[str] = None
    business_name: Optional[str] = None
    ordinal: int = 0


@dataclass
class SearchResultRecord:
    """One ranked organic search result"""
    keyword: str
    position: int
    url: str
    title: str
    description: str
    captured_at: str


@dataclass
class PageSnapshot:
    """Point-in-time extracted representation of a competitor page"""
    url: str
    h1_tags: List[str]
    h2_tags: List[str]
    h3_tags: List[str]
    word_count: int
    content_hash: str
    paragraphs: List[str]
    image_count: int
    internal_link_count: int
    external_link_count: int
    captured_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["PageSnapshot"]:
        """Rebuild a snapshot; old-shaped or foreign records yield None"""
        if not isinstance(data, dict):
            return None
        names = {f.name for f in fields(cls)}
        if set(data) != names:
            return None
        return cls(**data)


@dataclass
class ChangeRecord:
    """Changes between two snapshots of the same page"""
    headings_changed: bool = False
    content_changed: bool = False
    word_count_diff: int = 0
    structure_changed: bool = False


@dataclass
class CompetitorResult:
    """Result of monitoring a single competitor page"""
    url: str
    previous_snapshot: Optional[PageSnapshot]
    current_snapshot: PageSnapshot
    changes: ChangeRecord
    has_changes: bool


@dataclass
class ReviewRecord:
    """A single extracted review"""
    source_type: str
    business_name: str
    reviewer_name: str
    rating: float
    review_text: str
    review_date: str
    captured_at: str


@dataclass
class ReviewAggregate:
    """All reviews extracted from one source, with summary stats"""
    source_type: str
    business_name: str
    reviews: List[ReviewRecord] = field(default_factory=list)
    average_rating: float = 0.0
    total_reviews: int = 0

    @classmethod
    def from_reviews(cls, source_type: str, business_name: str,
                     reviews: List[ReviewRecord]) -> "ReviewAggregate":
        total = len(reviews)
        average = sum(r.rating for r in reviews) / total if total else 0
        return cls(
            source_type=source_type,
            business_name=business_name,
            reviews=list(reviews),
            average_rating=round(average, 2),
            total_reviews=total
        )
