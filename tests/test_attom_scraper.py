import asyncio

import httpx
import pytest

from distress_scraper.scrapers.attom_scraper import AttomScraper
from distress_scraper.scrapers.rate_limiter import SlidingWindowRateLimiter

BASE_URL = "https://api.test/attom"

ATTOM_RECORD = {
    "identifier": {"attomId": 987654},
    "address": {"line1": "742 Evergreen Ter", "locality": "Mesa", "countrySubd": "AZ", "postal1": "85201"},
    "location": {"latitude": 33.41, "longitude": -111.83},
    "building": {
        "rooms": {"beds": 4, "bathsFull": 2},
        "size": {"livingSize": 1850},
        "summary": {"yearBuilt": 1998, "propClass": "Single Family Residence"},
    },
    "assessment": {"market": {"mktTtlValue": 310000}},
    "owner": {"owner1": {"fullName": "JANE SMITH"}, "absenteeInd": "O"},
    "mortgage": {"first": {"amount": 205000}},
}


def _scraper(make_client, handler, sleeper, api_key="attom-key", **kwargs):
    return AttomScraper(api_key=api_key, base_url=BASE_URL, client=make_client(handler),
                        sleep=sleeper, **kwargs)


def test_missing_key_reports_one_error_without_requests(make_client, sleeper):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    result = asyncio.run(_scraper(make_client, handler, sleeper, api_key="").search("Mesa", "AZ"))

    assert seen == []
    assert result.properties == []
    assert len(result.errors) == 1
    assert result.errors[0].code == "MissingCredentialsError"
    assert result.errors[0].agent == "attom"


def test_preforeclosure_search_maps_records(make_client, sleeper):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"property": [ATTOM_RECORD]})

    result = asyncio.run(_scraper(make_client, handler, sleeper).search("Mesa", "AZ"))

    request = seen[0]
    assert str(request.url).startswith(f"{BASE_URL}/property/preforeclosure")
    assert request.headers["apikey"] == "attom-key"
    assert request.url.params["address1"] == "Mesa, AZ"
    assert request.url.params["pageSize"] == "50"

    prop = result.properties[0]
    assert prop.source == "attom"
    assert prop.source_id == "987654"
    assert (prop.address, prop.city, prop.state, prop.zip) == ("742 Evergreen Ter", "Mesa", "AZ", "85201")
    assert (prop.latitude, prop.longitude) == (33.41, -111.83)
    assert (prop.bedrooms, prop.bathrooms, prop.sqft, prop.year_built) == (4, 2, 1850, 1998)
    assert prop.property_type == "single family residence"
    assert prop.estimated_value == 310000
    assert prop.owner_name == "JANE SMITH"
    assert prop.owner_occupied is True
    assert prop.loan_balance == 205000
    assert prop.distress_types == ["Pre-Foreclosure"]
    assert result.errors == []


def test_foreclosure_kind_tags_auction(make_client, sleeper):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"property": [ATTOM_RECORD]})

    result = asyncio.run(
        _scraper(make_client, handler, sleeper).search("Mesa", "AZ", kind="foreclosure")
    )
    assert seen[0].url.path.endswith("/property/foreclosure")
    assert result.properties[0].distress_types == ["Auction"]


def test_status_message_without_records_is_one_error(make_client, sleeper):
    def handler(request):
        return httpx.Response(200, json={"status": {"code": 1, "msg": "SuccessWithoutResult"}})

    result = asyncio.run(_scraper(make_client, handler, sleeper).search("Mesa", "AZ"))
    assert result.properties == []
    assert len(result.errors) == 1
    assert "SuccessWithoutResult" in result.errors[0].message


def test_unmappable_record_is_one_error(make_client, sleeper):
    def handler(request):
        return httpx.Response(200, json={"property": [ATTOM_RECORD, "garbage"]})

    result = asyncio.run(_scraper(make_client, handler, sleeper).search("Mesa", "AZ"))
    assert len(result.properties) == 1
    assert len(result.errors) == 1


def test_shared_limiter_spans_agent_instances(make_client, sleeper, fake_clock):
    limiter = SlidingWindowRateLimiter(1, 60.0, clock=fake_clock, sleep=fake_clock.sleep)

    def handler(request):
        return httpx.Response(200, json={"property": []})

    first = _scraper(make_client, handler, sleeper, rate_limiter=limiter)
    second = _scraper(make_client, handler, sleeper, rate_limiter=limiter)

    async def run():
        await first.search("Mesa", "AZ")
        await second.search("Mesa", "AZ", kind="foreclosure")

    asyncio.run(run())
    assert fake_clock.sleeps == [pytest.approx(60.1)]


def test_get_assessment(make_client, sleeper):
    record = {"assessment": {
        "assessed": {"assdTtlValue": 28000},
        "market": {"mktTtlValue": 280000},
        "tax": {"taxAmt": 1900.5},
    }}

    def handler(request):
        assert request.url.path.endswith("/assessment/detail")
        return httpx.Response(200, json={"property": [record]})

    assessment = asyncio.run(_scraper(make_client, handler, sleeper).get_assessment("742 Evergreen Ter, Mesa, AZ"))
    assert assessment["assessed_value"] == 28000
    assert assessment["market_value"] == 280000
    assert assessment["tax_amount"] == 1900.5


def test_lookups_without_key_return_none(make_client, sleeper):
    def handler(request):
        raise AssertionError("no request expected")

    scraper = _scraper(make_client, handler, sleeper, api_key="")
    assert asyncio.run(scraper.get_assessment("1 A St")) is None
    assert asyncio.run(scraper.get_property_details("1 A St")) is None
