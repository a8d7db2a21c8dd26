"""
FastAPI front door for the crawler
"""
from fastapi import FastAPI, Body, Request
from fastapi.responses import JSONResponse
from dataclasses import asdict, is_dataclass
from typing import Any, Dict
import logging
import time
from datetime import datetime
import uvicorn

from competitor_monitor import run_competitor_crawl
from exceptions import InvalidInput, TargetBlocked
from review_scraper import run_review_crawl
from serp_scraper import run_serp_crawl

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Web Intelligence Crawler API",
    description="SERP extraction, competitor monitoring and review aggregation",
    version="1.0.0"
)


def _to_json(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, list):
        return [_to_json(item) for item in value]
    return value


def _param(payload: Dict[str, Any], name: str, alias: str) -> Any:
    """Read a body field by its snake_case name or its camelCase alias"""
    return payload[name] if name in payload else payload.get(alias)


def _envelope(started: float, status_code: int = 200, **fields) -> JSONResponse:
    content = dict(fields)
    content['executionTime'] = int((time.time() - started) * 1000)
    return JSONResponse(status_code=status_code, content=content)


async def _run(name: str, operation, **kwargs) -> JSONResponse:
    started = time.time()
    try:
        data = await operation(**kwargs)
    except InvalidInput as e:
        logger.warning(f"Rejected {name} request: {e}")
        return _envelope(started, 400, success=False, error=str(e))
    except TargetBlocked as e:
        logger.error(f"{name} crawl blocked: {e}")
        return _envelope(started, 500, success=False, error=str(e), data=_to_json(e.partial_results))
    except Exception as e:
        logger.error(f"{name} crawler error: {e}")
        return _envelope(started, 500, success=False, error=str(e) or e.__class__.__name__)

    logger.info(f"{name} crawl completed in {time.time() - started:.2f}s, {len(data)} results")
    return _envelope(started, success=True, data=_to_json(data))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info(f"[{datetime.now().isoformat()}] {request.method} {request.url.path}")
    return await call_next(request)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.post("/serp")
async def serp(payload: Dict[str, Any] = Body(...)):
    """Extract ranked search results for a list of keywords"""
    return await _run(
        "SERP", run_serp_crawl,
        keywords=payload.get("keywords"),
        max_results=_param(payload, "max_results", "maxResults"),
        proxy_list=_param(payload, "proxy_list", "proxyUrls"),
        min_delay_ms=_param(payload, "min_delay_ms", "minDelay"),
        max_delay_ms=_param(payload, "max_delay_ms", "maxDelay"),
    )


@app.post("/competitor")
async def competitor(payload: Dict[str, Any] = Body(...)):
    """Snapshot competitor pages and report changes since the last run"""
    return await _run(
        "Competitor", run_competitor_crawl,
        urls=payload.get("urls"),
        include_snapshots=_param(payload, "include_snapshots", "includeSnapshots"),
    )


@app.post("/review")
async def review(payload: Dict[str, Any] = Body(...)):
    """Aggregate reviews from Google, Trustpilot and G2 pages"""
    return await _run(
        "Review", run_review_crawl,
        sources=payload.get("sources"),
        max_reviews_per_source=_param(payload, "max_reviews_per_source", "maxReviewsPerSource"),
    )


if __name__ == "__main__":
    uvicorn.run(
        "api:app",
        host="0.0.0.0",
        port=3000,
        log_level="info"
    )
