"""
Configuration file for the web intelligence crawler
"""
from dataclasses import dataclass
from typing import List

@dataclass
class CrawlerConfig:
    """Configuration settings for the crawler"""

    # Snapshot store settings
    db_path: str = "crawler_snapshots.db"

    # Browser settings
    headless: bool = True
    stealth_mode: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    accept_language: str = "en-US,en;q=0.9"

    # Pacing defaults (milliseconds)
    min_delay_ms: int = 3000
    max_delay_ms: int = 8000

    # SERP settings
    serp_search_url: str = "https://www.google.com/search?q={query}&num={num}"
    max_results: int = 10

    # Review settings
    max_reviews_per_source: int = 50

    # Competitor settings
    paragraph_limit: int = 10
    structure_link_tolerance: int = 5

    # User agents for rotation
    user_agents: List[str] = None
    browser_args: List[str] = None
    consent_selectors: List[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(levelname)s - %(message)s"
    log_dir: str = "logs"

    def __post_init__(self):
        if self.user_agents is None:
            self.user_agents = [
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
                "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
            ]

        if self.browser_args is None:
            self.browser_args = [
                '--disable-blink-features=AutomationControlled',
                '--disable-dev-shm-usage',
                '--no-sandbox',
            ]

        # Affirmative consent buttons, tried in order
        if self.consent_selectors is None:
            self.consent_selectors = [
                'button[aria-label="Accept all"]',
                'button[aria-label="I agree"]',
                'button:has-text("I agree")',
                'button:has-text("Accept all")',
                'button:has-text("Accept")',
            ]

# Default configuration instance
config = CrawlerConfig()
