"""
Utility functions shared by the extractors, store and drivers
"""
import time
import json
import hashlib
import logging
from typing import Any
from datetime import datetime, timezone
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

def validate_url(url: str) -> bool:
    """Validate if a URL is a well-formed http(s) URL"""
    if not isinstance(url, str):
        return False
    try:
        result = urlparse(url)
        return result.scheme in ('http', 'https') and bool(result.netloc)
    except ValueError:
        return False

def md5_hex(value: Any) -> str:
    """Deterministic MD5 digest of a string, or of a value's compact JSON form"""
    if not isinstance(value, str):
        value = json.dumps(value, ensure_ascii=False, separators=(',', ':'))
    return hashlib.md5(value.encode('utf-8')).hexdigest()

def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace and trim"""
    if not text:
        return ""
    return ' '.join(text.split())

def safe_extract_text(element, default: str = "") -> str:
    """Safely extract normalized text from a BeautifulSoup element"""
    if element is None:
        return default
    return normalize_whitespace(element.get_text()) or default

def safe_extract_attribute(element, attribute: str, default: str = "") -> str:
    """Safely extract attribute from a BeautifulSoup element"""
    if element is None:
        return default
    value = element.get(attribute, default)
    if isinstance(value, list):
        value = ' '.join(value)
    return value.strip() if value else default

def utc_now_iso() -> str:
    """Current UTC time as ISO-8601"""
    return datetime.now(timezone.utc).isoformat()

class PerformanceMonitor:
    """Monitor and log performance metrics"""

    def __init__(self):
        self.metrics = {}

    def start_timer(self, operation: str):
        """Start timing an operation"""
        self.metrics[operation] = {'start': time.time()}

    def end_timer(self, operation: str) -> float:
        """End timing and log results"""
        if operation in self.metrics:
            duration = time.time() - self.metrics[operation]['start']
            self.metrics[operation]['duration'] = duration
            logger.info(f"Operation '{operation}' completed in {duration:.2f} seconds")
            return duration
        return 0

    def get_metrics(self) -> dict:
        """Get all recorded metrics"""
        return self.metrics.copy()
