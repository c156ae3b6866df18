"""Source agents package."""

from .base_scraper import BaseScraper, AgentRun, ScrapingError, RateLimitError, MissingCredentialsError, ParseError
from .rate_limiter import SlidingWindowRateLimiter
from .zillow_scraper import ZillowScraper
from .attom_scraper import AttomScraper
from .county_records_scraper import CountyRecordsScraper, guess_county
from .foreclosure_sites_scraper import (
    ForeclosureSitesScraper,
    ForeclosureDotComScraper,
    HudHomesScraper,
    HomePathScraper,
    HomeStepsScraper,
)

__all__ = [
    "BaseScraper",
    "AgentRun",
    "ScrapingError",
    "RateLimitError",
    "MissingCredentialsError",
    "ParseError",
    "SlidingWindowRateLimiter",
    "ZillowScraper",
    "AttomScraper",
    "CountyRecordsScraper",
    "guess_county",
    "ForeclosureSitesScraper",
    "ForeclosureDotComScraper",
    "HudHomesScraper",
    "HomePathScraper",
    "HomeStepsScraper",
]
