"""
Logging setup and crawl metrics for the crawler
"""
import logging
import os
import time
from typing import Dict, List, Any
from datetime import datetime
from threading import Lock

import psutil

from config import config

def setup_logging(log_level: str = None, log_dir: str = None):
    """Setup console and file logging"""
    log_level = log_level or config.log_level
    log_dir = log_dir or config.log_dir

    # Create logs directory if it doesn't exist
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    # Create formatters
    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    simple_formatter = logging.Formatter(config.log_format)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level))

    # Clear existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(simple_formatter)
    root_logger.addHandler(console_handler)

    # File handler for all logs
    file_handler = logging.FileHandler(
        os.path.join(log_dir, 'crawler.log'),
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(file_handler)

    # Error log handler
    error_handler = logging.FileHandler(
        os.path.join(log_dir, 'errors.log'),
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(error_handler)

    return root_logger


class CrawlMetrics:
    """Per-run observability sink injected into the orchestrator"""

    def __init__(self, kind: str = "crawl"):
        self.kind = kind
        self.metrics_lock = Lock()
        self.started_at = time.time()

        self.targets_succeeded = 0
        self.targets_failed = 0
        self.targets_blocked = 0
        self.retries = 0
        self.records_extracted = 0
        self.empty_extractions = 0
        self.target_times: List[float] = []

    def record_target_succeeded(self, duration: float, record_count: int):
        with self.metrics_lock:
            self.targets_succeeded += 1
            self.records_extracted += record_count
            self.target_times.append(duration)
            if record_count == 0:
                self.empty_extractions += 1

    def record_target_failed(self):
        with self.metrics_lock:
            self.targets_failed += 1

    def record_target_blocked(self):
        with self.metrics_lock:
            self.targets_blocked += 1

    def record_retry(self):
        with self.metrics_lock:
            self.retries += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of the counters plus derived rates"""
        with self.metrics_lock:
            attempted = self.targets_succeeded + self.targets_failed + self.targets_blocked
            success_rate = (self.targets_succeeded / attempted * 100) if attempted > 0 else 100.0
            avg_target_time = sum(self.target_times) / len(self.target_times) if self.target_times else 0.0

            return {
                'kind': self.kind,
                'timestamp': datetime.now().isoformat(),
                'targets_succeeded': self.targets_succeeded,
                'targets_failed': self.targets_failed,
                'targets_blocked': self.targets_blocked,
                'retries': self.retries,
                'records_extracted': self.records_extracted,
                'empty_extractions': self.empty_extractions,
                'success_rate': round(success_rate, 2),
                'avg_target_time': round(avg_target_time, 3),
                'elapsed': round(time.time() - self.started_at, 3),
                'memory_mb': round(psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024, 1),
            }

    def log_summary(self, logger: logging.Logger = None):
        logger = logger or logging.getLogger(__name__)
        metrics = self.get_metrics()
        logger.info(
            f"{metrics['kind']} run finished: {metrics['targets_succeeded']} succeeded, "
            f"{metrics['targets_failed']} failed, {metrics['targets_blocked']} blocked, "
            f"{metrics['records_extracted']} records in {metrics['elapsed']:.2f}s"
        )
        return metrics
