"""ATTOM Data API agent for pre-foreclosure and foreclosure records."""

from typing import Dict, Any, Optional

from .base_scraper import BaseScraper, AgentRun, MissingCredentialsError, ParseError
from .rate_limiter import SlidingWindowRateLimiter
from ..config import settings
from ..etl.transform import as_int, as_number, as_text, first_present
from ..models.property_models import ScrapedProperty, DistressType


# kind -> (endpoint, distress tag)
SEARCH_KINDS = {
    "preforeclosure": ("/property/preforeclosure", DistressType.PRE_FORECLOSURE.value),
    "foreclosure": ("/property/foreclosure", DistressType.AUCTION.value),
}

PAGE_SIZE = 50


def _section(record: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = record.get(key)
    return value if isinstance(value, dict) else {}


class AttomScraper(BaseScraper):
    """Rate-limited API agent backed by ATTOM Data.

    Every call waits on a sliding-window limiter first. The limiter belongs
    to the instance; pass one in to share it between agents in a process.
    """

    AGENT_NAME = "attom"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 rate_limiter: Optional[SlidingWindowRateLimiter] = None, **kwargs):
        """Initialize the ATTOM agent.

        Args:
            api_key: ATTOM key, defaults to settings.api.attom_api_key
            base_url: API root, defaults to settings.api.attom_base_url
            rate_limiter: Limiter to acquire before each call
            **kwargs: BaseScraper options
        """
        kwargs.setdefault("min_delay", 0.5)
        kwargs.setdefault("max_delay", 1.0)
        super().__init__(**kwargs)
        self.api_key = settings.api.attom_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.api.attom_base_url).rstrip("/")
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            settings.api.attom_max_requests,
            settings.api.attom_window_seconds,
            sleep=self.sleep,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> str:
        if not self.api_key:
            raise MissingCredentialsError(
                "ATTOM_API_KEY is not set. ATTOM agent cannot run.",
                code="MissingCredentialsError",
            )
        return self.api_key

    async def _fetch(self, path: str, params: Dict[str, str],
                     run: Optional[AgentRun] = None) -> Any:
        """Acquire a limiter slot, then GET an ATTOM endpoint."""
        api_key = self._require_key()

        waited = await self.rate_limiter.acquire()
        if waited:
            self.scrape_logger.log_rate_limit(waited)

        return await self.fetch_json(
            f"{self.base_url}{path}",
            run=run,
            params=params,
            headers={"apikey": api_key},
        )

    async def _search(self, run: AgentRun, city: str, state: str,
                      kind: str = "preforeclosure", **filters) -> None:
        if not self.configured:
            run.add_error(
                "ATTOM_API_KEY is not set. ATTOM agent cannot run.",
                code="MissingCredentialsError",
            )
            return

        if kind not in SEARCH_KINDS:
            raise ValueError(f"Unknown ATTOM search kind: {kind}")
        path, distress_type = SEARCH_KINDS[kind]

        data = await self._fetch(path, {
            "address1": f"{city}, {state}",
            "page": "1",
            "pageSize": str(PAGE_SIZE),
        }, run)
        if not isinstance(data, dict):
            raise ParseError(f"Unexpected ATTOM payload type {type(data).__name__}")

        records = data.get("property")
        if not isinstance(records, list):
            status_msg = _section(data, "status").get("msg")
            if status_msg:
                run.add_error(f"ATTOM {kind}: {status_msg}", url=f"{self.base_url}{path}")
            return

        self.scrape_logger.log_page_fetched(f"{self.base_url}{path}", len(records))
        for record in records:
            try:
                run.add(self.map_property(record, distress_type))
            except Exception as e:
                run.add_error(e, prefix=f"Failed to map ATTOM {kind} record")

    def map_property(self, record: Dict[str, Any],
                     distress_type: Optional[str] = None) -> ScrapedProperty:
        """Map one ATTOM property record.

        Args:
            record: Raw ATTOM ``property`` entry
            distress_type: Tag to apply

        Returns:
            ScrapedProperty: Normalized record
        """
        prop = self.new_property()

        address = _section(record, "address")
        prop.address = as_text(first_present(address, "line1", "oneLine"))
        prop.city = as_text(first_present(address, "locality", "city"))
        prop.state = as_text(first_present(address, "countrySubd", "state"))
        prop.zip = as_text(first_present(address, "postal1", "zip"))
        prop.county = as_text(address.get("county"))

        location = _section(record, "location")
        prop.latitude = as_number(location.get("latitude"))
        prop.longitude = as_number(location.get("longitude"))

        identifier = _section(record, "identifier")
        prop.source_id = as_text(
            first_present(identifier, "attomId", "Id", default=record.get("id"))
        )

        building = _section(record, "building")
        rooms = _section(building, "rooms")
        size = _section(building, "size")
        summary = _section(building, "summary")
        prop.bedrooms = as_int(rooms.get("beds"))
        prop.bathrooms = as_number(rooms.get("bathsFull"))
        prop.sqft = as_int(size.get("livingSize"))
        prop.year_built = as_int(summary.get("yearBuilt"))
        prop.property_type = as_text(first_present(summary, "propClass", "propType")).lower() or None

        prop.lot_size = as_number(_section(record, "lot").get("lotSize1"))

        sale = _section(record, "sale")
        prop.last_sale_price = as_number(_section(sale, "amount").get("saleAmt"))
        prop.last_sale_date = as_text(sale.get("saleTransDate")) or None

        market = _section(_section(record, "assessment"), "market")
        prop.estimated_value = as_number(market.get("mktTtlValue"))

        owner = _section(record, "owner")
        owner1 = owner.get("owner1")
        if isinstance(owner1, dict):
            owner1 = owner1.get("fullName") or owner1.get("lastName")
        prop.owner_name = as_text(owner1) or None
        prop.owner_occupied = owner.get("absenteeInd") == "O"

        mortgage = _section(record, "mortgage")
        first_mortgage = _section(mortgage, "first") or mortgage
        prop.loan_balance = as_number(first_mortgage.get("amount"))

        default_amount = as_number(_section(record, "foreclosure").get("defaultAmount"))
        if prop.loan_balance is None and default_amount:
            prop.loan_balance = default_amount

        if distress_type:
            prop.distress_types = [distress_type]

        prop.raw_data = record
        return prop

    async def get_property_details(self, address: str) -> Optional[ScrapedProperty]:
        """Owner-level detail for one address.

        Args:
            address: Full address string

        Returns:
            Optional[ScrapedProperty]: Detail record, None when unavailable
        """
        if not self.configured:
            return None
        try:
            data = await self._fetch("/property/detailowner", {"address1": address})
        except Exception as e:
            self.logger.error(f"get_property_details failed for {address}: {e}")
            return None

        records = data.get("property") if isinstance(data, dict) else None
        if not records:
            return None
        return self.map_property(records[0])

    async def get_assessment(self, address: str) -> Optional[Dict[str, Any]]:
        """Tax assessment for one address.

        Returns:
            Optional[Dict[str, Any]]: assessed_value, market_value, tax_amount
            and raw_data, or None when unavailable
        """
        if not self.configured:
            return None
        try:
            data = await self._fetch("/assessment/detail", {"address1": address})
        except Exception as e:
            self.logger.error(f"get_assessment failed for {address}: {e}")
            return None

        records = data.get("property") if isinstance(data, dict) else None
        if not records:
            return None

        record = records[0]
        assessment = _section(record, "assessment")
        return {
            "assessed_value": as_number(_section(assessment, "assessed").get("assdTtlValue")),
            "market_value": as_number(_section(assessment, "market").get("mktTtlValue")),
            "tax_amount": as_number(_section(assessment, "tax").get("taxAmt")),
            "raw_data": record,
        }
