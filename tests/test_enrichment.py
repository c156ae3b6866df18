import asyncio

from distress_scraper.etl.enrichment import PropertyEnricher, compute_equity, estimate_arv


class FakeGeocoder:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.queries = []

    async def geocode(self, query):
        self.queries.append(query)
        if self.error:
            raise self.error
        return self.result

    async def aclose(self):
        pass


def _enricher(sleeper, valuation=None, geocoder=None):
    return PropertyEnricher(
        valuation=valuation,
        geocoder=geocoder or FakeGeocoder(),
        sleep=sleeper,
    )


def test_negative_equity_is_preserved(sleeper, make_property):
    prop = make_property(zestimate=150000, loan_balance=200000, latitude=33.4, longitude=-112.0)
    enriched = asyncio.run(_enricher(sleeper).enrich_property(prop))
    assert enriched.equity_estimate == -50000


def test_equity_needs_both_inputs_and_is_not_recomputed(make_property):
    assert compute_equity(make_property(loan_balance=100000)) is None
    assert compute_equity(make_property(estimated_value=300000)) is None
    assert compute_equity(make_property(estimated_value=300000, loan_balance=100000)) == 200000


def test_arv_from_list_price_only(make_property):
    assert estimate_arv(make_property(list_price=100000)) == 130000


def test_arv_prefers_zestimate_over_list_price(make_property):
    assert estimate_arv(make_property(zestimate=200000, list_price=100000)) == 220000
    assert estimate_arv(make_property(estimated_value=200000, list_price=100000)) == 220000
    assert estimate_arv(make_property()) is None


def test_existing_arv_and_equity_are_kept(sleeper, make_property):
    prop = make_property(zestimate=200000, loan_balance=50000, arv_estimate=1, equity_estimate=2,
                         latitude=1.0, longitude=2.0)
    enriched = asyncio.run(_enricher(sleeper).enrich_property(prop))
    assert enriched.arv_estimate == 1
    assert enriched.equity_estimate == 2


def test_valuation_fills_zestimate_and_estimated_value(sleeper, make_property):
    lookups = []

    async def valuation(address):
        lookups.append(address)
        return 175000

    prop = make_property(latitude=1.0, longitude=2.0)
    enriched = asyncio.run(_enricher(sleeper, valuation=valuation).enrich_property(prop))

    assert lookups == ["123 Main St, Phoenix, AZ 85001"]
    assert enriched.zestimate == 175000
    assert enriched.estimated_value == 175000
    assert enriched.arv_estimate == 192500
    assert prop.zestimate is None


def test_valuation_skipped_when_known_or_address_incomplete(sleeper, make_property):
    lookups = []

    async def valuation(address):
        lookups.append(address)
        return 1

    enricher = _enricher(sleeper, valuation=valuation)
    asyncio.run(enricher.enrich_property(make_property(zestimate=100000)))
    asyncio.run(enricher.enrich_property(make_property(city="")))
    assert lookups == []


def test_valuation_failure_is_logged_not_raised(sleeper, make_property):
    async def valuation(address):
        raise RuntimeError("quota exceeded")

    prop = make_property(list_price=100000, latitude=1.0, longitude=2.0)
    enriched = asyncio.run(_enricher(sleeper, valuation=valuation).enrich_property(prop))
    assert enriched.zestimate is None
    assert enriched.arv_estimate == 130000


def test_geocoding_fills_missing_coordinates(sleeper, make_property):
    geocoder = FakeGeocoder(result=(33.45, -112.07))
    enriched = asyncio.run(_enricher(sleeper, geocoder=geocoder).enrich_property(make_property()))
    assert (enriched.latitude, enriched.longitude) == (33.45, -112.07)
    assert geocoder.queries == ["123 Main St, Phoenix, AZ 85001"]


def test_geocoding_skipped_when_coordinates_present(sleeper, make_property):
    geocoder = FakeGeocoder(result=(0.0, 0.0))
    asyncio.run(_enricher(sleeper, geocoder=geocoder).enrich_property(
        make_property(latitude=33.0, longitude=-112.0)
    ))
    assert geocoder.queries == []


def test_geocoding_failure_leaves_coordinates_empty(sleeper, make_property):
    geocoder = FakeGeocoder(error=RuntimeError("timeout"))
    enriched = asyncio.run(_enricher(sleeper, geocoder=geocoder).enrich_property(make_property()))
    assert enriched.latitude is None
    assert enriched.longitude is None


def test_batch_enrichment_is_sequential(sleeper, make_property):
    in_flight = []
    peak = []

    async def valuation(address):
        in_flight.append(address)
        peak.append(len(in_flight))
        await asyncio.sleep(0)
        in_flight.remove(address)
        return 100000

    props = [make_property(address=f"{n} Main St", latitude=1.0, longitude=2.0) for n in range(1, 4)]
    enriched = asyncio.run(_enricher(sleeper, valuation=valuation).enrich_properties(props))

    assert [p.address for p in enriched] == ["1 Main St", "2 Main St", "3 Main St"]
    assert max(peak) == 1
    assert len(sleeper.calls) == 2
    assert all(0.5 <= delay <= 1.0 for delay in sleeper.calls)


def test_batch_substitutes_original_on_failure(sleeper, make_property, monkeypatch):
    enricher = _enricher(sleeper)
    good = make_property(address="1 Good St", list_price=100000, latitude=1.0, longitude=2.0)
    bad = make_property(address="2 Bad St", list_price=100000)
    original = enricher.enrich_property

    async def flaky(prop):
        if prop.address == "2 Bad St":
            raise RuntimeError("unexpected")
        return await original(prop)

    monkeypatch.setattr(enricher, "enrich_property", flaky)
    enriched = asyncio.run(enricher.enrich_properties([good, bad]))

    assert len(enriched) == 2
    assert enriched[0].arv_estimate == 130000
    assert enriched[1] is bad
