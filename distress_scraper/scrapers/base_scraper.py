"""Base agent class with anti-detection measures and common functionality."""

import asyncio
import random
import re
import time
import logging
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Tuple, Union, Callable, Awaitable
import httpx
from bs4 import BeautifulSoup

from ..config import settings
from ..models.property_models import ScrapedProperty, empty_scraped_property
from ..models.scraper_models import AgentError, AgentResult
from ..monitoring.logger import ScrapingLogger


SleepFunc = Callable[[float], Awaitable[None]]

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36 Edg/123.0.0.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0",
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 OPR/110.0.0.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
]

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


def random_user_agent() -> str:
    """Pick a random user agent string."""
    if settings.scraper.rotate_user_agents:
        return random.choice(USER_AGENTS)
    return USER_AGENTS[0]


async def random_delay(min_seconds: float, max_seconds: float,
                       sleep: Optional[SleepFunc] = None) -> float:
    """Sleep for a random interval between the bounds.

    Args:
        min_seconds: Lower bound
        max_seconds: Upper bound
        sleep: Sleep coroutine, defaults to asyncio.sleep

    Returns:
        float: The delay that was applied
    """
    delay = random.uniform(min_seconds, max_seconds)
    await (sleep or asyncio.sleep)(delay)
    return delay


class ScrapingError(Exception):
    """Custom exception for scraping errors."""

    def __init__(self, message: str, url: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.url = url
        self.code = code


class RateLimitError(ScrapingError):
    """Exception raised when rate limit is exceeded."""
    pass


class MissingCredentialsError(ScrapingError):
    """Exception raised when a keyed source has no credential configured."""
    pass


class ParseError(ScrapingError):
    """Exception raised when a response cannot be decoded."""
    pass


class AgentRun:
    """Collects properties, errors and request counts for one agent call.

    Anything an agent would otherwise swallow goes through ``add_error`` so
    it is logged and kept on the result envelope.
    """

    def __init__(self, agent: str, scrape_logger: Optional[ScrapingLogger] = None):
        self.agent = agent
        self.properties: List[ScrapedProperty] = []
        self.errors: List[AgentError] = []
        self.request_count = 0
        self.scrape_logger = scrape_logger or ScrapingLogger(agent)
        self._started = time.monotonic()

    def add(self, prop: ScrapedProperty) -> None:
        self.properties.append(prop)

    def add_error(self, error: Union[BaseException, str], url: Optional[str] = None,
                  prefix: str = "", code: Optional[str] = None) -> AgentError:
        """Record a failure as data.

        Args:
            error: The caught exception or a plain message
            url: Request URL, if any
            prefix: Context prepended to the message
            code: Explicit error code

        Returns:
            AgentError: The recorded error
        """
        if isinstance(error, BaseException):
            record = AgentError.from_exception(error, prefix=prefix, agent=self.agent, url=url)
            if code:
                record.code = code
            self.scrape_logger.log_error(error, {"url": record.url, "prefix": prefix})
        else:
            message = f"{prefix}: {error}" if prefix else error
            record = AgentError(message=message, code=code, url=url, agent=self.agent)
            self.scrape_logger.logger.warning("Agent error captured", error=message,
                                              url=url, agent=self.agent)
        self.errors.append(record)
        return record

    def merge(self, result: AgentResult) -> None:
        """Fold a sub-agent's envelope into this run."""
        self.properties.extend(result.properties)
        self.errors.extend(result.errors)
        self.request_count += result.request_count

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def to_result(self) -> AgentResult:
        return AgentResult(
            agent=self.agent,
            properties=self.properties,
            errors=self.errors,
            duration_ms=self.duration_ms,
            request_count=self.request_count,
        )


class BaseScraper(ABC):
    """Base agent with async HTTP, jitter and user agent rotation.

    Subclasses implement ``_search`` and append to the ``AgentRun`` they are
    given; ``search`` guarantees an ``AgentResult`` comes back no matter what
    ``_search`` raises.
    """

    AGENT_NAME = "base"

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 sleep: Optional[SleepFunc] = None,
                 min_delay: Optional[float] = None,
                 max_delay: Optional[float] = None,
                 timeout: Optional[float] = None):
        """Initialize the agent.

        Args:
            client: Shared HTTP client; one is created and owned if omitted
            sleep: Sleep coroutine used for jitter, defaults to asyncio.sleep
            min_delay: Lower jitter bound in seconds
            max_delay: Upper jitter bound in seconds
            timeout: Per-request timeout in seconds
        """
        self.logger = logging.getLogger(f"{__name__}.{self.AGENT_NAME}")
        self.scrape_logger = ScrapingLogger(self.AGENT_NAME)

        self._client = client
        self._owns_client = client is None
        self.sleep: SleepFunc = sleep or asyncio.sleep

        self.random_delays = settings.scraper.random_delays
        self.min_delay = settings.scraper.min_delay if min_delay is None else min_delay
        self.max_delay = settings.scraper.max_delay if max_delay is None else max_delay
        self.timeout = settings.scraper.request_timeout if timeout is None else timeout

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    def new_property(self) -> ScrapedProperty:
        """Blank record tagged with this agent's name."""
        return empty_scraped_property(self.AGENT_NAME)

    def _build_headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": random_user_agent(),
            "Accept": HTML_ACCEPT,
            "Accept-Language": "en-US,en;q=0.9",
        }
        if extra:
            headers.update(extra)
        return headers

    async def jitter(self, delay_range: Optional[Tuple[float, float]] = None) -> None:
        """Apply the randomized inter-request delay.

        Args:
            delay_range: (min, max) seconds overriding the agent defaults
        """
        if not self.random_delays:
            return
        low, high = delay_range or (self.min_delay, self.max_delay)
        await random_delay(low, high, self.sleep)

    async def request(self, method: str, url: str, run: Optional[AgentRun] = None,
                      headers: Optional[Dict[str, str]] = None,
                      delay_range: Optional[Tuple[float, float]] = None,
                      **kwargs) -> httpx.Response:
        """Make a jittered HTTP request with a random user agent.

        Args:
            method: HTTP method
            url: The URL to request
            run: Run whose request count is incremented
            headers: Extra headers merged over the defaults
            delay_range: Jitter bounds for this call
            **kwargs: Additional arguments for httpx (params, data, json)

        Returns:
            httpx.Response: The successful response

        Raises:
            RateLimitError: On HTTP 429
            ScrapingError: On any other failure
        """
        await self.jitter(delay_range)
        if run is not None:
            run.request_count += 1

        try:
            response = await self.client.request(
                method, url, headers=self._build_headers(headers), timeout=self.timeout, **kwargs
            )

            if response.status_code == 429:
                self.logger.warning(f"Rate limited by {url}")
                raise RateLimitError("Rate limit exceeded", url=url, code="429")

            if response.status_code == 403:
                self.logger.warning(f"Access forbidden by {url}, retrying with a new user agent")
                await self.jitter(delay_range)
                if run is not None:
                    run.request_count += 1
                response = await self.client.request(
                    method, url, headers=self._build_headers(headers), timeout=self.timeout, **kwargs
                )

            if not response.is_success:
                raise ScrapingError(
                    f"HTTP {response.status_code} fetching {url}",
                    url=url,
                    code=str(response.status_code),
                )
            return response

        except httpx.HTTPError as e:
            self.logger.error(f"Request failed for {url}: {e}")
            raise ScrapingError(f"Request failed: {e}", url=url) from e

    async def fetch_text(self, url: str, run: Optional[AgentRun] = None, **kwargs) -> str:
        response = await self.request("GET", url, run=run, **kwargs)
        return response.text

    async def fetch_json(self, url: str, run: Optional[AgentRun] = None, **kwargs) -> Any:
        """GET a URL and decode its JSON body.

        Raises:
            ParseError: If the body is not JSON
        """
        headers = {"Accept": "application/json"}
        headers.update(kwargs.pop("headers", None) or {})
        response = await self.request("GET", url, run=run, headers=headers, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {url}: {e}", url=url) from e

    async def post_form(self, url: str, data: Dict[str, Any],
                        run: Optional[AgentRun] = None, **kwargs) -> httpx.Response:
        return await self.request("POST", url, run=run, data=data, **kwargs)

    def parse_html(self, html: str) -> BeautifulSoup:
        """Parse HTML content with BeautifulSoup.

        Args:
            html: HTML content to parse

        Returns:
            BeautifulSoup: Parsed HTML object
        """
        return BeautifulSoup(html, 'html.parser')

    def safe_extract_text(self, element, selector: str, default: str = "") -> str:
        """Safely extract text from an element using CSS selector.

        A comma-separated selector list returns the first match in document
        order.
        """
        if element is None:
            return default
        found = element.select_one(selector)
        return found.get_text(" ", strip=True) if found else default

    def safe_extract_attribute(self, element, selector: str, attribute: str, default: str = "") -> str:
        if element is None:
            return default
        found = element.select_one(selector)
        if not found:
            return default
        value = found.get(attribute)
        return value if value else default

    def parse_details_text(self, text: str) -> Dict[str, Optional[float]]:
        """Pull bedrooms, bathrooms and square feet out of free card text.

        Args:
            text: Card text such as ``"3 bds | 2 ba | 1,450 sqft"``

        Returns:
            Dict[str, Optional[float]]: bedrooms, bathrooms and sqft keys
        """
        bed_match = re.search(r"(\d+)\s*(?:bd|bed|br)", text, re.IGNORECASE)
        bath_match = re.search(r"([\d.]+)\s*(?:ba|bath)", text, re.IGNORECASE)
        sqft_match = re.search(r"([\d,]+)\s*(?:sq\s*\.?\s*ft|sqft|sf)", text, re.IGNORECASE)

        bathrooms = None
        if bath_match:
            try:
                bathrooms = float(bath_match.group(1))
            except ValueError:
                bathrooms = None

        return {
            "bedrooms": int(bed_match.group(1)) if bed_match else None,
            "bathrooms": bathrooms,
            "sqft": int(sqft_match.group(1).replace(",", "")) if sqft_match else None,
        }

    async def search(self, city: str, state: str, **filters) -> AgentResult:
        """Run the agent; never raises.

        Args:
            city: City name
            state: State abbreviation
            **filters: Agent-specific filters

        Returns:
            AgentResult: Properties found and errors captured
        """
        run = AgentRun(self.AGENT_NAME, self.scrape_logger)
        self.scrape_logger.log_search_start(city, state, filters)

        try:
            await self._search(run, city, state, **filters)
        except Exception as e:
            self.logger.error(f"{self.AGENT_NAME} search failed: {e}")
            run.add_error(e, prefix=f"{self.AGENT_NAME} search failed")

        result = run.to_result()
        self.scrape_logger.log_search_complete(
            len(result.properties), len(result.errors), result.duration_ms, result.request_count
        )
        return result

    @abstractmethod
    async def _search(self, run: AgentRun, city: str, state: str, **filters) -> None:
        """Fetch and map records into ``run``.

        Args:
            run: Collector for properties, errors and request counts
            city: City name
            state: State abbreviation
            **filters: Agent-specific filters
        """
        pass

    async def aclose(self) -> None:
        """Close the HTTP client if this agent created it."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            except Exception as e:
                self.logger.error(f"Error closing HTTP client: {e}")
            finally:
                self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
