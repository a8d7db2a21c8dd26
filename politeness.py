"""
Politeness controller: per-kind concurrency caps, pacing jitter and retry policy
"""
import asyncio
import random
import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from models import CrawlKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Explicit retry/backoff shape consumed by the orchestrator"""
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_factor: float = 2.0
    backoff_max: float = 30.0
    jitter: float = 1.0

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)"""
        if self.backoff_base <= 0:
            return 0.0
        delay = min(self.backoff_base * (self.backoff_factor ** (attempt - 1)), self.backoff_max)
        return delay + random.uniform(0, self.jitter)


@dataclass(frozen=True)
class PolitenessPolicy:
    """Pacing parameters for one crawl kind"""
    max_concurrency: int
    request_timeout: float
    min_delay_ms: int
    max_delay_ms: int
    settle_timeout_ms: int
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    abort_on_block: bool = False

    @property
    def max_retries(self) -> int:
        return self.retry.max_retries


# SERP stays strictly sequential; review platforms are rate-sensitive too
DEFAULT_POLICIES = {
    CrawlKind.SERP: PolitenessPolicy(
        max_concurrency=1,
        request_timeout=60,
        min_delay_ms=3000,
        max_delay_ms=8000,
        settle_timeout_ms=45000,
        abort_on_block=True,
    ),
    CrawlKind.COMPETITOR: PolitenessPolicy(
        max_concurrency=2,
        request_timeout=60,
        min_delay_ms=1000,
        max_delay_ms=3000,
        settle_timeout_ms=15000,
    ),
    CrawlKind.REVIEW: PolitenessPolicy(
        max_concurrency=1,
        request_timeout=90,
        min_delay_ms=2000,
        max_delay_ms=4000,
        settle_timeout_ms=30000,
    ),
}


def policy_for(kind: CrawlKind, min_delay_ms: Optional[int] = None,
               max_delay_ms: Optional[int] = None,
               retry: Optional[RetryPolicy] = None) -> PolitenessPolicy:
    """Return the policy for a crawl kind, with optional caller overrides"""
    policy = DEFAULT_POLICIES[CrawlKind(kind)]
    overrides = {}
    if min_delay_ms is not None:
        overrides['min_delay_ms'] = min_delay_ms
    if max_delay_ms is not None:
        overrides['max_delay_ms'] = max_delay_ms
    if retry is not None:
        overrides['retry'] = retry
    if overrides:
        policy = replace(policy, **overrides)
    if policy.min_delay_ms > policy.max_delay_ms:
        raise ValueError(f"min_delay_ms ({policy.min_delay_ms}) exceeds max_delay_ms ({policy.max_delay_ms})")
    return policy


class PolitenessController:
    """Hands out jittered per-target delays for a policy.

    This only randomizes per-target pacing; there is no shared rate limiter
    across targets.
    """

    def __init__(self, policy: PolitenessPolicy):
        self.policy = policy

    def jittered_delay(self) -> float:
        """Delay in seconds drawn uniformly from [min_delay_ms, max_delay_ms]"""
        delay_ms = random.uniform(self.policy.min_delay_ms, self.policy.max_delay_ms)
        return delay_ms / 1000.0

    async def wait(self) -> float:
        """Suspend for a jittered delay and return how long we slept"""
        delay = self.jittered_delay()
        if delay > 0:
            logger.debug(f"Politeness delay of {delay:.2f} seconds")
            await asyncio.sleep(delay)
        return delay
