import asyncio

import pytest
from sqlalchemy import func, select

from distress_scraper.etl.enrichment import PropertyEnricher
from distress_scraper.etl.load import PropertyLoader
from distress_scraper.etl.orchestrator import (
    ScrapeOrchestrator,
    filter_by_price,
    plan_agent_calls,
)
from distress_scraper.models.property_models import PropertyRecord, ScrapedProperty
from distress_scraper.models.scraper_models import AgentResult, SavedSearch, ScrapeLog, SearchCriteria


class NoGeocoder:
    async def geocode(self, query):
        return None

    async def aclose(self):
        pass


class FakeAgent:
    """Stands in for a source agent; ``respond`` builds the envelope."""

    def __init__(self, name, respond, calls):
        self.name = name
        self.respond = respond
        self.calls = calls
        self.closed = False

    async def search(self, location, state, **filters):
        self.calls.append((self.name, location, state, filters))
        return self.respond(location, state, filters)

    async def aclose(self):
        self.closed = True


class FakeLoader:
    session_factory = None

    def __init__(self, error=None):
        self.error = error
        self.saved = []

    def save_properties(self, properties, errors=None):
        if self.error:
            raise self.error
        self.saved.extend(properties)
        return len(properties)


def _prop(source, address, **fields):
    return ScrapedProperty(source=source, address=address, city="Phoenix", state="AZ", **fields)


def _returns(*props):
    def respond(location, state, filters):
        return AgentResult(agent=props[0].source if props else "fake",
                           properties=[p.model_copy(deep=True) for p in props])
    return respond


def _raises(message):
    def respond(location, state, filters):
        raise RuntimeError(message)
    return respond


def _orchestrator(sleeper, responders, calls, loader=None, attom_configured=False):
    factories = {
        name: (lambda name=name, respond=respond: FakeAgent(name, respond, calls))
        for name, respond in responders.items()
    }
    for name in ("zillow", "foreclosure-sites", "attom", "county-records"):
        factories.setdefault(name, lambda name=name: FakeAgent(name, _returns(), calls))

    return ScrapeOrchestrator(
        agent_factories=factories,
        enricher=PropertyEnricher(geocoder=NoGeocoder(), sleep=sleeper),
        loader=loader or FakeLoader(),
        attom_configured=attom_configured,
        sleep=sleeper,
    )


def _plan(attom_configured=False, **criteria):
    criteria.setdefault("city", "Phoenix")
    criteria.setdefault("state", "AZ")
    return [(c.source, c.location, c.filters)
            for c in plan_agent_calls(SearchCriteria(**criteria), attom_configured)]


def test_plan_without_filters():
    assert _plan() == [
        ("zillow", "Phoenix", {}),
        ("foreclosure-sites", "Phoenix", {}),
        ("county-records", "maricopa", {}),
    ]
    assert _plan(attom_configured=True) == [
        ("zillow", "Phoenix", {}),
        ("foreclosure-sites", "Phoenix", {}),
        ("attom", "Phoenix", {"kind": "preforeclosure"}),
        ("attom", "Phoenix", {"kind": "foreclosure"}),
        ("county-records", "maricopa", {}),
    ]


def test_plan_follows_distress_filter():
    assert _plan(attom_configured=True, distress_types=["REO"]) == [
        ("zillow", "Phoenix", {"distress_type": "REO"}),
        ("foreclosure-sites", "Phoenix", {}),
    ]
    assert _plan(attom_configured=True, distress_types=["Lis Pendens"]) == [
        ("zillow", "Phoenix", {"distress_type": "Lis Pendens"}),
        ("attom", "Phoenix", {"kind": "preforeclosure"}),
        ("county-records", "maricopa", {}),
    ]
    assert [c[0] for c in _plan(attom_configured=True, distress_types=["Pre-Foreclosure", "Auction"])] == [
        "zillow", "zillow", "foreclosure-sites", "attom", "attom", "county-records",
    ]


def test_plan_source_restriction():
    assert [c[0] for c in _plan(source="county-records")] == ["county-records"]
    # asked for by name, ATTOM runs even without a key and reports it
    assert _plan(source="attom") == [
        ("attom", "Phoenix", {"kind": "preforeclosure"}),
        ("attom", "Phoenix", {"kind": "foreclosure"}),
    ]


def test_price_bounds_are_inclusive(make_property):
    props = [
        make_property(address="1 A St", list_price=100000),
        make_property(address="2 B St", list_price=200000),
        make_property(address="3 C St", list_price=300000),
        make_property(address="4 D St", estimated_value=150000),
        make_property(address="5 E St"),
    ]
    kept = filter_by_price(props, 100000, 200000)
    assert [p.address for p in kept] == ["1 A St", "2 B St", "4 D St"]
    assert [p.address for p in filter_by_price(props, None, 100000)] == ["1 A St", "5 E St"]


def test_one_failing_agent_is_one_error(sleeper):
    calls = []
    attom_kinds = {"preforeclosure": "10 Pre St", "foreclosure": "20 Auction Ave"}

    def attom(location, state, filters):
        prop = _prop("attom", attom_kinds[filters["kind"]], list_price=100000)
        return AgentResult(agent="attom", properties=[prop])

    loader = FakeLoader()
    orchestrator = _orchestrator(sleeper, {
        "zillow": _raises("zillow down"),
        "foreclosure-sites": _returns(_prop("foreclosure-sites", "1 Site St", list_price=90000)),
        "attom": attom,
        "county-records": _returns(_prop("county-records", "30 Filing Rd")),
    }, calls, loader=loader, attom_configured=True)

    result = asyncio.run(orchestrator.run_search(SearchCriteria(city="Phoenix", state="AZ")))

    assert len(calls) == 5
    assert len(result.errors) == 1
    assert result.errors[0].agent == "zillow"
    assert result.errors[0].message == "Agent failed entirely: zillow down"
    assert result.total_found == 4
    assert result.total_after_dedup == 4
    assert result.total_enriched == 4
    assert result.total_saved == 4
    assert sorted(r.agent for r in result.agent_results) == [
        "attom", "attom", "county-records", "foreclosure-sites",
    ]


@pytest.mark.parametrize("criteria", [
    {"city": " ", "state": "AZ"},
    {"city": "Phoenix", "state": ""},
])
def test_missing_city_or_state_runs_nothing(sleeper, criteria):
    calls = []
    loader = FakeLoader()
    orchestrator = _orchestrator(sleeper, {}, calls, loader=loader)

    result = asyncio.run(orchestrator.run_search(criteria))

    assert calls == []
    assert loader.saved == []
    assert [e.message for e in result.errors] == ["City and state are required for search"]
    assert result.total_found == 0
    assert result.total_saved == 0


def test_same_address_from_two_agents_is_merged(sleeper):
    calls = []
    loader = FakeLoader()
    orchestrator = _orchestrator(sleeper, {
        "zillow": _returns(_prop("zillow", "123 Main St", list_price=150000, zestimate=200000)),
        "foreclosure-sites": _returns(_prop("foreclosure-sites", "123 MAIN STREET", bedrooms=3,
                                            distress_types=["Auction"])),
    }, calls, loader=loader)

    result = asyncio.run(orchestrator.run_search(SearchCriteria(city="Phoenix", state="AZ")))

    assert result.total_found == 2
    assert result.total_after_dedup == 1
    saved = loader.saved[0]
    assert saved.source == "zillow,foreclosure-sites"
    assert saved.bedrooms == 3
    assert saved.distress_types == ["Auction"]
    assert saved.arv_estimate == 220000


def test_equity_filter_runs_after_enrichment(sleeper):
    calls = []
    loader = FakeLoader()
    orchestrator = _orchestrator(sleeper, {
        "zillow": _returns(
            _prop("zillow", "1 Rich St", estimated_value=300000, loan_balance=200000),
            _prop("zillow", "2 Thin St", estimated_value=200000, loan_balance=180000),
            _prop("zillow", "3 Unknown St", estimated_value=200000),
        ),
    }, calls, loader=loader)

    result = asyncio.run(orchestrator.run_search(
        SearchCriteria(city="Phoenix", state="AZ", min_equity=50000)
    ))

    assert result.total_after_dedup == 3
    assert result.total_enriched == 1
    assert [p.address for p in loader.saved] == ["1 Rich St"]
    assert loader.saved[0].equity_estimate == 100000


def test_camel_case_criteria(sleeper):
    calls = []
    loader = FakeLoader()
    orchestrator = _orchestrator(sleeper, {
        "zillow": _returns(
            _prop("zillow", "1 Low St", list_price=50000),
            _prop("zillow", "2 Mid St", list_price=150000),
        ),
    }, calls, loader=loader)

    result = asyncio.run(orchestrator.run_search({
        "city": "Phoenix",
        "state": "AZ",
        "distressTypes": ["REO"],
        "minPrice": 100000,
        "uiTab": "map",
    }))

    assert ("zillow", "Phoenix", "AZ", {"distress_type": "REO"}) in calls
    assert result.total_enriched == 1
    assert [p.address for p in loader.saved] == ["2 Mid St"]


def test_enrichment_failure_keeps_unenriched_records(sleeper, monkeypatch):
    calls = []
    loader = FakeLoader()
    orchestrator = _orchestrator(sleeper, {
        "zillow": _returns(_prop("zillow", "1 A St", list_price=100000)),
    }, calls, loader=loader)

    async def broken(properties):
        raise RuntimeError("geocoder exploded")

    monkeypatch.setattr(orchestrator.enricher, "enrich_properties", broken)
    result = asyncio.run(orchestrator.run_search(SearchCriteria(city="Phoenix", state="AZ")))

    assert [e.message for e in result.errors] == ["Enrichment failed: geocoder exploded"]
    assert result.total_saved == 1
    assert loader.saved[0].arv_estimate is None


def test_save_failure_is_reported(sleeper):
    calls = []
    orchestrator = _orchestrator(sleeper, {
        "zillow": _returns(_prop("zillow", "1 A St", list_price=100000)),
    }, calls, loader=FakeLoader(error=RuntimeError("db down")))

    result = asyncio.run(orchestrator.run_search(SearchCriteria(city="Phoenix", state="AZ")))

    assert result.total_saved == 0
    assert [e.message for e in result.errors] == ["Failed to save properties: db down"]


def test_run_saved_search_records_the_run(sleeper, session_factory):
    with session_factory() as session:
        saved = SavedSearch(name="Phoenix REO", search_params={
            "city": "Phoenix", "state": "AZ", "distressTypes": ["REO"], "maxPrice": 250000,
        })
        session.add(saved)
        session.commit()
        saved_id = saved.id

    calls = []
    orchestrator = _orchestrator(sleeper, {
        "zillow": _returns(_prop("zillow", "1 Cheap St", list_price=200000)),
        "foreclosure-sites": _returns(_prop("foreclosure-sites", "2 Pricey St", list_price=300000)),
    }, calls, loader=PropertyLoader(session_factory=session_factory))

    result = asyncio.run(orchestrator.run_saved_search(saved_id))

    assert result.total_saved == 1
    assert ("zillow", "Phoenix", "AZ", {"distress_type": "REO"}) in calls

    with session_factory() as session:
        search = session.get(SavedSearch, saved_id)
        assert search.results_count == 1
        assert search.last_run_at is not None

        log = session.scalars(select(ScrapeLog)).one()
        assert log.saved_search_id == saved_id
        assert log.status == "completed"
        assert log.new_properties == 1

        assert session.scalar(select(func.count()).select_from(PropertyRecord)) == 1


def test_run_saved_search_unknown_id(sleeper, session_factory):
    orchestrator = _orchestrator(sleeper, {}, [], loader=PropertyLoader(session_factory=session_factory))
    with pytest.raises(LookupError):
        asyncio.run(orchestrator.run_saved_search(404))
