"""Zillow agent: RapidAPI search with HTML fallbacks."""

import re
import json
from typing import Dict, Any, Optional, List
from urllib.parse import urljoin, quote

from .base_scraper import BaseScraper, AgentRun, ParseError
from .extraction import ExtractionChain, css_cards_strategy
from ..config import settings
from ..etl.transform import as_int, as_number, as_text, city_slug, first_present, parse_price, state_slug
from ..models.property_models import ScrapedProperty, DistressType


# City centres used to build search bounding boxes
CITY_COORDS = {
    "phoenix-az": (33.4484, -112.0740),
    "scottsdale-az": (33.4942, -111.9261),
    "mesa-az": (33.4152, -111.8315),
    "tempe-az": (33.4255, -111.9400),
    "glendale-az": (33.5387, -112.1860),
    "chandler-az": (33.3062, -111.8413),
    "gilbert-az": (33.3528, -111.7890),
    "peoria-az": (33.5806, -112.2374),
    "surprise-az": (33.6292, -112.3680),
    "goodyear-az": (33.4353, -112.3577),
}
DEFAULT_COORDS = CITY_COORDS["phoenix-az"]

# Half-width of the search box in degrees (~17 miles)
BOUNDS_OFFSET = 0.25


def location_slug(city: str, state: str) -> str:
    return f"{city_slug(city)}-{state_slug(state)}"


def map_bounds(city: str, state: str) -> Dict[str, float]:
    """Bounding box around the city centre, Phoenix when the city is unknown."""
    lat, lng = CITY_COORDS.get(location_slug(city, state), DEFAULT_COORDS)
    return {
        "north": lat + BOUNDS_OFFSET,
        "south": lat - BOUNDS_OFFSET,
        "east": lng + BOUNDS_OFFSET,
        "west": lng - BOUNDS_OFFSET,
    }


def build_filter_state(distress_type: str) -> Dict[str, Any]:
    """Zillow ``filterState`` clause for a distress category.

    Args:
        distress_type: Requested category, matched case-insensitively

    Returns:
        Dict[str, Any]: filterState including the default sort
    """
    filter_state: Dict[str, Any] = {
        "sort": {"value": "globalrelevanceex"},
        "isAllHomes": {"value": True},
    }

    dt = distress_type.lower()
    if "pre-foreclosure" in dt or "nod" in dt or "lis pendens" in dt:
        filter_state["isPreForeclosure"] = {"value": True}
    elif "auction" in dt:
        filter_state["isForSaleForeclosure"] = {"value": True}
    elif "foreclosure" in dt:
        filter_state["isForSaleForeclosure"] = {"value": True}
        filter_state["isPreForeclosure"] = {"value": True}
    elif "reo" in dt or "bank" in dt:
        filter_state["isRecentlySold"] = {"value": True}

    return filter_state


def build_search_query_state(city: str, state: str, distress_type: str) -> Dict[str, Any]:
    return {
        "mapBounds": map_bounds(city, state),
        "isMapVisible": True,
        "filterState": build_filter_state(distress_type),
        "isListVisible": True,
    }


def build_search_url(city: str, state: str, distress_type: Optional[str] = None) -> str:
    """Public Zillow search page URL, filtered when a category is given."""
    url = f"{ZillowScraper.BASE_URL}/{location_slug(city, state)}/"
    if distress_type:
        query_state = json.dumps(build_search_query_state(city, state, distress_type),
                                 separators=(",", ":"))
        url += f"?searchQueryState={quote(query_state, safe='')}"
    return url


def infer_distress_type(listing: Dict[str, Any]) -> Optional[str]:
    """Map homeStatus/marketingStatus to a distress tag, None for regular listings."""
    status = as_text(first_present(
        listing, "homeStatus", "marketingStatus", "status", "statusType"
    )).lower()

    if "pre_foreclosure" in status or "preforeclosure" in status:
        return DistressType.PRE_FORECLOSURE.value
    if "foreclosed" in status or "reo" in status:
        return DistressType.REO.value
    if "foreclosure" in status or "auction" in status:
        return DistressType.AUCTION.value
    return None


def _distress_tags(listing: Dict[str, Any], distress_type: Optional[str]) -> List[str]:
    if distress_type:
        return [distress_type]
    inferred = infer_distress_type(listing)
    return [inferred] if inferred else []


class ZillowScraper(BaseScraper):
    """Structured-API agent for Zillow listings.

    Uses the RapidAPI Zillow endpoints when a key is configured. Without a
    key it degrades to the public search page: embedded ``__NEXT_DATA__``
    JSON first, property cards second.
    """

    AGENT_NAME = "zillow"
    BASE_URL = "https://www.zillow.com"

    def __init__(self, api_key: Optional[str] = None, api_host: Optional[str] = None, **kwargs):
        """Initialize the Zillow agent.

        Args:
            api_key: RapidAPI key, defaults to settings.api.rapidapi_key
            api_host: RapidAPI host, defaults to settings.api.rapidapi_zillow_host
            **kwargs: BaseScraper options
        """
        super().__init__(**kwargs)
        self.api_key = settings.api.rapidapi_key if api_key is None else api_key
        self.api_host = api_host or settings.api.rapidapi_zillow_host
        self.html_delay = (settings.scraper.html_min_delay, settings.scraper.html_max_delay)

        self.card_chain = ExtractionChain([
            css_cards_strategy('article[data-test="property-card"]'),
            css_cards_strategy('li[class*="ListItem"] article'),
        ])

    @property
    def use_api(self) -> bool:
        return bool(self.api_key)

    def _api_headers(self) -> Dict[str, str]:
        return {
            "X-RapidAPI-Key": self.api_key or "",
            "X-RapidAPI-Host": self.api_host,
            "Accept": "application/json",
        }

    async def _api_fetch(self, path: str, params: Dict[str, str],
                         run: Optional[AgentRun] = None) -> Any:
        url = f"https://{self.api_host}{path}"
        return await self.fetch_json(url, run=run, params=params, headers=self._api_headers())

    async def _search(self, run: AgentRun, city: str, state: str,
                      distress_type: Optional[str] = None, **filters) -> None:
        if self.use_api:
            await self._search_api(run, city, state, distress_type)
        else:
            await self._search_html(run, city, state, distress_type)

    async def _search_api(self, run: AgentRun, city: str, state: str,
                          distress_type: Optional[str]) -> None:
        if not distress_type:
            params = {k: str(v) for k, v in map_bounds(city, state).items()}
            params["page"] = "1"
            self.logger.info(f"bymapbounds search for {city}, {state}")
            path = "/api/search/bymapbounds"
        else:
            query_state = json.dumps(build_search_query_state(city, state, distress_type))
            zillow_url = f"{self.BASE_URL}/{location_slug(city, state)}/?searchQueryState={quote(query_state, safe='')}"
            self.logger.info(f"byurl search for {city}, {state} filtered by {distress_type}")
            params = {"url": zillow_url, "page": "1"}
            path = "/api/search/byurl"

        data = await self._api_fetch(path, params, run)
        listings = self._listings_from_payload(data)
        self.scrape_logger.log_page_fetched(f"https://{self.api_host}{path}", len(listings))

        for listing in listings:
            try:
                run.add(self.map_api_listing(listing, city, state, distress_type))
            except Exception as e:
                run.add_error(e, prefix="Failed to map listing")

    def _listings_from_payload(self, data: Any) -> List[Any]:
        """Listing array from whichever envelope key the API used."""
        if isinstance(data, list):
            return data
        if not isinstance(data, dict):
            raise ParseError(f"Unexpected RapidAPI payload type {type(data).__name__}")

        for key in ("results", "props"):
            if isinstance(data.get(key), list):
                return data[key]
        search_results = data.get("searchResults")
        if isinstance(search_results, dict) and isinstance(search_results.get("listResults"), list):
            return search_results["listResults"]
        if isinstance(data.get("data"), list):
            return data["data"]
        return []

    async def _search_html(self, run: AgentRun, city: str, state: str,
                           distress_type: Optional[str]) -> None:
        search_url = build_search_url(city, state, distress_type)
        html = await self.fetch_text(search_url, run=run, delay_range=self.html_delay)
        soup = self.parse_html(html)

        script = soup.select_one("script#__NEXT_DATA__")
        if script and (script.string or script.get_text()):
            try:
                next_data = json.loads(script.string or script.get_text())
                results = (
                    next_data.get("props", {}).get("pageProps", {}).get("searchPageState", {})
                    .get("cat1", {}).get("searchResults", {}).get("listResults", [])
                ) or []
            except (ValueError, AttributeError) as e:
                run.add_error(e, url=search_url, prefix="Failed to parse Zillow __NEXT_DATA__ JSON")
                results = []

            for item in results:
                try:
                    run.add(self.map_next_data_listing(item, city, state, distress_type))
                except Exception as e:
                    run.add_error(e, url=search_url, prefix="Failed to map NEXT_DATA listing")

        if run.properties:
            self.scrape_logger.log_page_fetched(search_url, len(run.properties))
            return

        cards = self.card_chain.extract(soup).items
        for card in cards:
            try:
                prop = self.map_card(card, city, state, distress_type)
            except Exception as e:
                run.add_error(e, url=search_url, prefix="Failed to parse property card")
                continue
            if prop.address:
                run.add(prop)
        self.scrape_logger.log_page_fetched(search_url, len(run.properties))

    def map_api_listing(self, listing: Dict[str, Any], city: str, state: str,
                        distress_type: Optional[str] = None) -> ScrapedProperty:
        """Map one RapidAPI search result.

        Args:
            listing: Raw listing object
            city: Searched city, used when the listing has none
            state: Searched state, used when the listing has none
            distress_type: Filter the search ran with

        Returns:
            ScrapedProperty: Normalized record
        """
        prop = self.new_property()
        prop.source_id = as_text(first_present(listing, "zpid", "id"))

        address = listing.get("address")
        if isinstance(address, dict):
            prop.address = as_text(first_present(address, "street", "streetAddress"))
            prop.city = as_text(address.get("city"), city)
            prop.state = as_text(address.get("state"), state)
            prop.zip = as_text(first_present(address, "zipcode", "zip"))
        else:
            prop.address = as_text(first_present(listing, "address", "streetAddress"))
            prop.city = as_text(listing.get("city"), city)
            prop.state = as_text(listing.get("state"), state)
            prop.zip = as_text(first_present(listing, "zipcode", "zip"))
        prop.county = as_text(listing.get("county"))

        prop.latitude = as_number(listing.get("latitude"))
        prop.longitude = as_number(listing.get("longitude"))

        list_price = as_number(listing.get("unformattedPrice"))
        if list_price is None:
            list_price = as_number(listing.get("price"))
        if list_price is None:
            list_price = parse_price(as_text(listing.get("price")))
        prop.list_price = list_price
        prop.zestimate = as_number(listing.get("zestimate"))
        prop.estimated_value = prop.zestimate if prop.zestimate is not None else prop.list_price

        prop.bedrooms = as_int(first_present(listing, "beds", "bedrooms"))
        prop.bathrooms = as_number(first_present(listing, "baths", "bathrooms"))
        prop.sqft = as_int(first_present(listing, "area", "livingArea"))
        prop.lot_size = as_number(listing.get("lotAreaValue"))
        prop.year_built = as_int(listing.get("yearBuilt"))
        prop.property_type = as_text(first_present(listing, "homeType", "propertyType")).lower() or None

        detail_url = first_present(listing, "detailUrl", "url")
        prop.source_url = urljoin(self.BASE_URL, str(detail_url)) if detail_url else None

        prop.distress_types = _distress_tags(listing, distress_type)
        prop.raw_data = listing
        return prop

    def map_next_data_listing(self, item: Dict[str, Any], city: str, state: str,
                              distress_type: Optional[str] = None) -> ScrapedProperty:
        prop = self.new_property()
        prop.source_id = as_text(first_present(item, "zpid", "id"))
        prop.address = as_text(first_present(item, "address", "streetAddress"))
        prop.city = city
        prop.state = state
        prop.zip = as_text(item.get("zipcode"))

        list_price = as_number(item.get("unformattedPrice"))
        prop.list_price = list_price if list_price is not None else parse_price(as_text(item.get("price")))

        lat_long = item.get("latLong") or {}
        prop.latitude = as_number(lat_long.get("latitude"))
        prop.longitude = as_number(lat_long.get("longitude"))

        prop.bedrooms = as_int(item.get("beds"))
        prop.bathrooms = as_number(item.get("baths"))
        prop.sqft = as_int(item.get("area"))

        detail_url = first_present(item, "detailUrl", "url")
        prop.source_url = urljoin(self.BASE_URL, str(detail_url)) if detail_url else None

        prop.distress_types = _distress_tags(item, distress_type)
        prop.raw_data = item
        return prop

    def map_card(self, card, city: str, state: str,
                 distress_type: Optional[str] = None) -> ScrapedProperty:
        """Map a rendered property card (last-resort path)."""
        prop = self.new_property()
        prop.address = self.safe_extract_text(card, '[data-test="property-card-addr"], address')
        prop.list_price = parse_price(self.safe_extract_text(card, '[data-test="property-card-price"]'))

        link = self.safe_extract_attribute(card, 'a[data-test="property-card-link"], a[href*="_zpid"]', "href")
        if link:
            prop.source_url = urljoin(self.BASE_URL, link)
            zpid_match = re.search(r"(\d+)_zpid", link)
            if zpid_match:
                prop.source_id = zpid_match.group(1)

        prop.city = city
        prop.state = state
        if distress_type:
            prop.distress_types = [distress_type]

        details = self.parse_details_text(
            self.safe_extract_text(card, '[data-test="property-card-details"]') or card.get_text(" ", strip=True)
        )
        prop.bedrooms = details["bedrooms"]
        prop.bathrooms = details["bathrooms"]
        prop.sqft = details["sqft"]
        return prop

    def map_detail(self, data: Dict[str, Any]) -> ScrapedProperty:
        """Map a property-info payload."""
        prop = self.new_property()
        prop.source_id = as_text(data.get("zpid"))
        prop.address = as_text(first_present(data, "streetAddress", "address"))
        address = data.get("address")
        if isinstance(address, dict):
            prop.address = as_text(first_present(address, "streetAddress", "street"))
        prop.city = as_text(data.get("city"))
        prop.state = as_text(data.get("state"))
        prop.zip = as_text(first_present(data, "zipcode", "zip"))
        prop.county = as_text(data.get("county"))

        prop.latitude = as_number(data.get("latitude"))
        prop.longitude = as_number(data.get("longitude"))

        prop.list_price = as_number(data.get("price"))
        prop.zestimate = as_number(data.get("zestimate"))
        prop.estimated_value = prop.zestimate if prop.zestimate is not None else prop.list_price

        prop.bedrooms = as_int(data.get("bedrooms"))
        prop.bathrooms = as_number(data.get("bathrooms"))
        prop.sqft = as_int(data.get("livingArea"))
        prop.lot_size = as_number(data.get("lotAreaValue"))
        prop.year_built = as_int(data.get("yearBuilt"))
        prop.property_type = as_text(data.get("homeType")).lower() or None
        prop.owner_name = as_text(data.get("ownerName")) or None

        prop.last_sale_price = as_number(data.get("lastSoldPrice"))
        prop.last_sale_date = as_text(data.get("lastSoldDate")) or None

        prop.source_url = (
            as_text(data.get("url"))
            or f"{self.BASE_URL}/homedetails/{prop.source_id}_zpid/"
        )
        prop.raw_data = data
        return prop

    async def get_property_details(self, zpid: str) -> Optional[ScrapedProperty]:
        """Get detailed property info by Zillow property ID.

        Args:
            zpid: Zillow property ID

        Returns:
            Optional[ScrapedProperty]: Detail record, None when unavailable
        """
        try:
            if self.use_api:
                data = await self._api_fetch("/api/property-info", {"zpid": zpid})
                return self.map_detail(data) if isinstance(data, dict) else None

            url = f"{self.BASE_URL}/homedetails/{zpid}_zpid/"
            html = await self.fetch_text(url, delay_range=self.html_delay)
            soup = self.parse_html(html)

            script = soup.select_one("script#__NEXT_DATA__")
            if not script:
                return None
            next_data = json.loads(script.string or script.get_text())
            cache = (
                next_data.get("props", {}).get("pageProps", {})
                .get("componentProps", {}).get("gdpClientCache")
            )
            if not cache:
                return None

            # gdpClientCache is a JSON string keyed by a query hash
            if isinstance(cache, str):
                cache = json.loads(cache)
            if not cache:
                return None
            entry = next(iter(cache.values()))
            if isinstance(entry, str):
                entry = json.loads(entry)
            prop_data = entry.get("property") if isinstance(entry, dict) else None
            return self.map_detail(prop_data) if prop_data else None

        except Exception as e:
            self.logger.error(f"get_property_details({zpid}) failed: {e}")
            return None

    async def get_zestimate(self, address: str) -> Optional[float]:
        """Get the Zestimate for a full address.

        Only available through the API; there is no reliable scraping path.

        Args:
            address: Full address string

        Returns:
            Optional[float]: Dollar value or None
        """
        if not self.use_api:
            return None
        try:
            data = await self._api_fetch("/api/property-info", {"address": address})
        except Exception as e:
            self.logger.error(f"get_zestimate failed for {address}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return as_number(first_present(data, "zestimate", "zEstimate"))
