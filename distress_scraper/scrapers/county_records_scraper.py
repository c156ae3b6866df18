"""County recorder and treasurer agent.

Scrapes recorded Notices of Default, Lis Pendens and Notices of Trustee
Sale plus the treasurer's tax lien listing. Maricopa County, AZ is the only
jurisdiction configured; others are added through ``COUNTIES``.
"""

import re
from datetime import date, timedelta
from typing import Dict, Any, Optional, List, Callable
from urllib.parse import quote, urlencode

from pydantic import BaseModel

from .base_scraper import BaseScraper, AgentRun
from .extraction import ExtractionChain, TableRow, script_json_strategy, table_rows_strategy
from ..config import settings
from ..etl.transform import as_text, first_present, parse_amount
from ..models.property_models import ScrapedProperty, DistressType, utcnow


class CountyConfig(BaseModel):
    """Recorder/treasurer endpoints and lookups for one county."""

    name: str
    state: str
    fips: str
    recorder_url: str
    treasurer_url: str
    default_city: str
    # Document type labels -> recorder codes
    doc_type_codes: Dict[str, str]
    # ZIP -> city for filings that only carry a ZIP
    zip_city_map: Dict[str, str]


def _zips(city: str, *codes: str) -> Dict[str, str]:
    return {code: city for code in codes}


MARICOPA = CountyConfig(
    name="Maricopa",
    state="AZ",
    fips="04013",
    recorder_url="https://recorder.maricopa.gov",
    treasurer_url="https://treasurer.maricopa.gov",
    default_city="Phoenix",
    doc_type_codes={
        "NOD": "NOD",
        "NOTICE OF DEFAULT": "NOD",
        "LIS PENDENS": "LP",
        "LP": "LP",
        "NOTICE OF TRUSTEE SALE": "NTS",
        "NTS": "NTS",
        "TRUSTEE DEED": "TD",
    },
    zip_city_map={
        **_zips(
            "Phoenix",
            "85001", "85002", "85003", "85004", "85006", "85007", "85008", "85009",
            "85012", "85013", "85014", "85015", "85016", "85017", "85018", "85019",
            "85020", "85021", "85022", "85023", "85024", "85027", "85028", "85029",
            "85031", "85032", "85033", "85034", "85035", "85040", "85041", "85042",
            "85043", "85044", "85045", "85048", "85050", "85051", "85053", "85054",
            "85083", "85085", "85086",
        ),
        **_zips(
            "Mesa",
            "85201", "85202", "85203", "85204", "85205", "85206", "85207", "85208",
            "85209", "85210", "85212", "85213", "85215",
        ),
        **_zips("Gilbert", "85233", "85234", "85295", "85296", "85297"),
        **_zips("Chandler", "85224", "85225", "85226", "85248", "85249", "85286"),
        **_zips(
            "Scottsdale",
            "85250", "85251", "85253", "85254", "85255", "85256", "85257", "85258",
            "85259", "85260", "85262", "85266", "85268",
        ),
        **_zips("Tempe", "85281", "85282", "85283", "85284"),
        **_zips(
            "Glendale",
            "85301", "85302", "85303", "85304", "85305", "85306", "85307", "85308", "85310",
        ),
        **_zips("Goodyear", "85338", "85395"),
        **_zips("Litchfield Park", "85340"),
        **_zips("Peoria", "85345", "85381", "85382", "85383"),
        **_zips("Sun City", "85351"),
        **_zips("Sun City West", "85373", "85375"),
        **_zips("Surprise", "85374", "85379", "85388"),
        **_zips("Avondale", "85392"),
        **_zips("Queen Creek", "85142"),
        **_zips("San Tan Valley", "85143"),
    },
)

COUNTIES = {
    "maricopa-az": MARICOPA,
}

# Recorder searches run for every call, followed by the treasurer search
RECORDER_DOC_TYPES = ["NOD", "LP", "NTS"]

# City -> county for the cities the pipeline is usually pointed at
CITY_COUNTIES = {
    "phoenix-az": "maricopa",
    "scottsdale-az": "maricopa",
    "mesa-az": "maricopa",
    "tempe-az": "maricopa",
    "chandler-az": "maricopa",
    "glendale-az": "maricopa",
    "gilbert-az": "maricopa",
    "peoria-az": "maricopa",
    "surprise-az": "maricopa",
    "goodyear-az": "maricopa",
    "avondale-az": "maricopa",
    "buckeye-az": "maricopa",
    "tucson-az": "pima",
    "flagstaff-az": "coconino",
}

RESULT_TABLE_SELECTORS = [
    "table.rgMasterTable tbody tr",
    "table#searchResults tbody tr",
    ".search-results table tbody tr",
    "table.gridview tbody tr",
    "#ContentPlaceHolder1_gvResults tr",
    "table tr",
]

KNOWN_CITY_SUFFIX = re.compile(
    r",?\s*(?:Phoenix|Mesa|Tempe|Scottsdale|Chandler|Gilbert|Glendale|Surprise|Peoria|Goodyear|Avondale)"
    r"\s*,?\s*(?:AZ)?\s*$",
    re.IGNORECASE,
)


def guess_county(city: str, state: str) -> str:
    """Best-effort county for a city, the lower-cased city when unknown."""
    key = f"{city.strip().lower()}-{state.strip().lower()}"
    return CITY_COUNTIES.get(key, city.strip().lower())


def format_recorder_date(value: date) -> str:
    return value.strftime("%m/%d/%Y")


def map_doc_type_to_distress(doc_type: str) -> List[str]:
    """Distress tags for a recorded document type.

    Args:
        doc_type: Recorder code or label, e.g. ``"NOD"`` or ``"LIS PENDENS"``

    Returns:
        List[str]: Tags, Pre-Foreclosure when the type is unrecognized
    """
    upper = doc_type.upper().strip()

    if "NOD" in upper or "NOTICE OF DEFAULT" in upper:
        return [DistressType.PRE_FORECLOSURE.value, DistressType.NOD.value]
    if "LIS PENDENS" in upper or upper == "LP":
        return [DistressType.PRE_FORECLOSURE.value, DistressType.LIS_PENDENS.value]
    if "NTS" in upper or "NOTICE OF TRUSTEE SALE" in upper:
        return [DistressType.AUCTION.value]
    if "TRUSTEE DEED" in upper or upper == "TD":
        return [DistressType.REO.value]
    if "TAX" in upper:
        return [DistressType.TAX_LIEN.value]

    return [DistressType.PRE_FORECLOSURE.value]


def extract_address_from_legal(legal_desc: str, config: CountyConfig = MARICOPA) -> Optional[Dict[str, str]]:
    """Recover a street address from a free-text legal description.

    Tries ``"123 E MAIN ST, PHOENIX, AZ 85001"``, then the same without
    commas, then a bare ZIP looked up in the county's ZIP table.

    Args:
        legal_desc: Legal description text
        config: County providing the state code and ZIP table

    Returns:
        Optional[Dict[str, str]]: street, city and zip, or None
    """
    if not legal_desc:
        return None

    state = re.escape(config.state)

    full_match = re.match(
        r"^(\d+\s+.+?),\s*([A-Z][a-zA-Z\s]+),\s*" + state + r"\s*(\d{5})?",
        legal_desc, re.IGNORECASE,
    )
    if full_match:
        return {
            "street": full_match.group(1).strip(),
            "city": full_match.group(2).strip(),
            "zip": full_match.group(3) or "",
        }

    spaced_match = re.match(
        r"^(\d+\s+\w+\s+\w+(?:\s+\w+)?)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s+" + state + r"\s*(\d{5})?",
        legal_desc, re.IGNORECASE,
    )
    if spaced_match:
        return {
            "street": spaced_match.group(1).strip(),
            "city": spaced_match.group(2).strip(),
            "zip": spaced_match.group(3) or "",
        }

    zip_match = re.search(r"(\d{5})(?:-\d{4})?", legal_desc)
    if zip_match:
        zip_code = zip_match.group(1)
        before_zip = legal_desc[:zip_match.start()].strip().rstrip(",").strip()
        return {
            "street": before_zip or legal_desc,
            "city": config.zip_city_map.get(zip_code, ""),
            "zip": zip_code,
        }

    return None


def parse_county_address(full_address: str, config: CountyConfig = MARICOPA) -> Dict[str, str]:
    """Split a situs address like ``"123 E Main St, Phoenix, AZ 85001"``."""
    if not full_address:
        return {"street": "", "city": config.default_city, "zip": ""}

    match = re.match(r"^(.+?),\s*(.+?),\s*" + re.escape(config.state) + r"\s*(\d{5})?",
                     full_address, re.IGNORECASE)
    if match:
        return {
            "street": match.group(1).strip(),
            "city": match.group(2).strip(),
            "zip": match.group(3) or "",
        }

    zip_match = re.search(r"(\d{5})(?:-\d{4})?$", full_address.strip())
    if zip_match:
        zip_code = zip_match.group(1)
        street = KNOWN_CITY_SUFFIX.sub("", full_address[:zip_match.start()].strip()).strip()
        return {
            "street": street,
            "city": config.zip_city_map.get(zip_code, config.default_city),
            "zip": zip_code,
        }

    return {"street": full_address.strip(), "city": config.default_city, "zip": ""}


class CountyRecordsScraper(BaseScraper):
    """Municipal-records agent.

    ``search`` takes a county name rather than a city; use ``guess_county``
    to get from one to the other.
    """

    AGENT_NAME = "county-records"

    def __init__(self, today: Optional[Callable[[], date]] = None,
                 lookback_days: Optional[int] = None, **kwargs):
        """Initialize the county records agent.

        Args:
            today: Returns the current date, for deterministic date ranges
            lookback_days: Default search window in days
            **kwargs: BaseScraper options
        """
        kwargs.setdefault("min_delay", settings.scraper.county_min_delay)
        kwargs.setdefault("max_delay", settings.scraper.county_max_delay)
        super().__init__(**kwargs)
        self.today = today or (lambda: utcnow().date())
        self.lookback_days = (
            settings.scraper.county_lookback_days if lookback_days is None else lookback_days
        )

        self.recorder_chain = ExtractionChain(
            [table_rows_strategy(selector) for selector in RESULT_TABLE_SELECTORS]
            + [script_json_strategy(keys=("data", "results", "records"), required_key="address")]
        )
        self.treasurer_chain = ExtractionChain([table_rows_strategy("table tr")])

    def build_search_url(self, config: CountyConfig, doc_type: str,
                         start_date: date, end_date: date) -> str:
        params = urlencode({
            "dT": doc_type,
            "sD": format_recorder_date(start_date),
            "eD": format_recorder_date(end_date),
            "pg": "1",
        })
        return f"{config.recorder_url}/recdocdata/GetRecDataSearch.aspx?{params}"

    async def _search(self, run: AgentRun, county: str, state: str,
                      start_date: Optional[date] = None, end_date: Optional[date] = None,
                      **filters) -> None:
        config = COUNTIES.get(f"{county.strip().lower()}-{state.strip().lower()}")
        if config is None:
            run.add_error(
                f"Only Maricopa County, AZ is currently supported. Got: {county}, {state}",
                code="UnsupportedJurisdiction",
            )
            return

        end_date = end_date or self.today()
        start_date = start_date or end_date - timedelta(days=self.lookback_days)
        headers = {"Referer": f"{config.recorder_url}/"}

        for doc_type in RECORDER_DOC_TYPES:
            url = self.build_search_url(config, doc_type, start_date, end_date)
            try:
                html = await self.fetch_text(url, run=run, headers=headers)
                self.parse_recorder_results(run, html, config, doc_type)
            except Exception as e:
                run.add_error(
                    e,
                    url=f"{config.recorder_url}/recdocdata/",
                    prefix=f'Failed to search {config.name} County for "{doc_type}"',
                )

        try:
            await self.search_tax_liens(run, config)
        except Exception as e:
            run.add_error(e, url=config.treasurer_url,
                          prefix=f"Failed to search {config.name} County tax liens")

    def parse_recorder_results(self, run: AgentRun, html: str,
                               config: CountyConfig, doc_type: str) -> int:
        """Map one recorder results page into ``run``.

        Returns:
            int: Records added
        """
        soup = self.parse_html(html)
        result = self.recorder_chain.extract(soup)
        added = 0

        for item in result.items:
            try:
                if isinstance(item, TableRow):
                    prop = self.map_recorder_row(item.cells, config, doc_type)
                elif isinstance(item, dict):
                    prop = self.map_json_record(item, config, doc_type)
                else:
                    prop = None
            except Exception as e:
                run.add_error(e, prefix=f"Failed to parse {doc_type} row")
                continue
            if prop is not None:
                run.add(prop)
                added += 1

        self.logger.info(f"{config.name} {doc_type}: {added} filings via {result.strategy}")
        return added

    def _apply_address(self, prop: ScrapedProperty, recovered: Optional[Dict[str, str]],
                       grantor: str, fallback_text: str, config: CountyConfig) -> None:
        if recovered and recovered["street"]:
            prop.address = recovered["street"]
            prop.city = recovered["city"] or config.default_city
            prop.zip = recovered["zip"]
            return

        # No street recoverable; keep the filing but mark it
        prop.address = fallback_text or (f"Filing by {grantor}" if grantor else "")
        prop.city = config.default_city
        prop.low_confidence = True

    def map_recorder_row(self, cells: List[str], config: CountyConfig,
                         doc_type: str) -> Optional[ScrapedProperty]:
        """Map a recorder table row.

        Columns: recording number, recording date, document type, grantor,
        grantee, legal description, amount.
        """
        def cell(index: int) -> str:
            return cells[index].strip() if len(cells) > index else ""

        recording_number = cell(0)
        recording_date = cell(1)
        document_type = cell(2)
        grantor = cell(3)
        grantee = cell(4)
        legal_desc = cell(5)
        amount_text = cell(6)

        if not recording_number and not grantor:
            return None

        prop = self.new_property()
        prop.source_id = recording_number or re.sub(
            r"\s+", "-", f"{config.name.lower()}-{recording_date}-{grantor}"
        )
        prop.county = config.name
        prop.state = config.state
        prop.owner_name = grantor or None
        prop.distress_types = map_doc_type_to_distress(document_type or doc_type)

        amount = parse_amount(amount_text)
        if amount:
            prop.loan_balance = amount

        self._apply_address(prop, extract_address_from_legal(legal_desc, config),
                            grantor, legal_desc, config)

        prop.source_url = (
            f"{config.recorder_url}/recdocdata/GetRecDataDetail.aspx?rn={quote(recording_number, safe='')}"
            if recording_number else f"{config.recorder_url}/recdocdata/"
        )
        prop.raw_data = {
            "recording_number": recording_number,
            "recording_date": recording_date,
            "document_type": document_type or doc_type,
            "grantor": grantor,
            "grantee": grantee,
            "legal_description": legal_desc,
            "amount_text": amount_text,
            "county": config.name,
            "state": config.state,
            "source": config.recorder_url.split("//", 1)[-1],
        }
        return prop

    def map_json_record(self, item: Dict[str, Any], config: CountyConfig,
                        doc_type: str) -> ScrapedProperty:
        """Map a filing found in page-embedded JSON."""
        prop = self.new_property()
        prop.source_id = as_text(first_present(item, "recordingNumber", "id", "docNumber"))
        prop.county = config.name
        prop.state = config.state

        grantor = as_text(first_present(item, "grantor", "owner"))
        prop.owner_name = grantor or None
        prop.distress_types = map_doc_type_to_distress(
            as_text(item.get("documentType")) or doc_type
        )

        situs = as_text(first_present(item, "address", "propertyAddress", "situs"))
        recovered = parse_county_address(situs, config) if situs else None
        self._apply_address(prop, recovered, grantor, "", config)

        prop.raw_data = item
        return prop

    async def search_tax_liens(self, run: AgentRun, config: CountyConfig) -> int:
        """Treasurer's delinquent-tax listing.

        Returns:
            int: Records added
        """
        url = f"{config.treasurer_url}/taxlieninfo/ParcelSearch.aspx"
        html = await self.fetch_text(url, run=run)
        result = self.treasurer_chain.extract(self.parse_html(html))

        added = 0
        for row in result.items:
            try:
                prop = self.map_tax_lien_row(row.cells, config)
            except Exception as e:
                run.add_error(e, url=url, prefix="Failed to parse tax lien row")
                continue
            if prop is not None:
                run.add(prop)
                added += 1

        self.scrape_logger.log_page_fetched(url, added)
        return added

    def map_tax_lien_row(self, cells: List[str], config: CountyConfig) -> Optional[ScrapedProperty]:
        parcel = cells[0].strip()
        address = cells[1].strip()
        amount_text = cells[2].strip()

        if not parcel and not address:
            return None

        prop = self.new_property()
        prop.source_id = f"tax-{parcel}"
        prop.county = config.name
        prop.state = config.state
        prop.distress_types = [DistressType.TAX_LIEN.value]
        prop.source_url = f"{config.treasurer_url}/taxlieninfo/ParcelDetail.aspx?pn={quote(parcel, safe='')}"

        parsed = parse_county_address(address, config)
        prop.address = parsed["street"]
        prop.city = parsed["city"] or config.default_city
        prop.zip = parsed["zip"]

        amount = parse_amount(amount_text)
        if amount:
            prop.loan_balance = amount

        prop.raw_data = {
            "parcel_number": parcel,
            "raw_address": address,
            "tax_amount": amount_text,
            "source": config.treasurer_url.split("//", 1)[-1],
        }
        return prop
