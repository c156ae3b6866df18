from distress_scraper.etl.deduplication import (
    NULLABLE_MERGE_FIELDS,
    deduplicate_properties,
    merge_properties,
    merge_sources,
)


def test_merge_with_itself_is_identity(make_property):
    prop = make_property(
        list_price=150000,
        bedrooms=3,
        distress_types=["Pre-Foreclosure", "NOD"],
        source="county-records",
        raw_data={"recording_number": "2024-1"},
    )
    assert merge_properties(prop, prop).model_dump() == prop.model_dump()


def test_merge_is_first_non_null_wins_in_either_order(make_property):
    a = make_property(source="zillow", list_price=150000, bedrooms=3, latitude=33.4)
    b = make_property(source="attom", zestimate=180000, sqft=1400, owner_name="JOHN DOE", longitude=-112.0)

    ab = merge_properties(a, b)
    ba = merge_properties(b, a)

    for field in NULLABLE_MERGE_FIELDS:
        assert getattr(ab, field) == getattr(ba, field), field
    assert ab.list_price == 150000
    assert ab.zestimate == 180000
    assert ab.owner_name == "JOHN DOE"
    assert (ab.latitude, ab.longitude) == (33.4, -112.0)


def test_property_type_fills_in_from_either_side(make_property):
    county = make_property(source="county-records")
    zillow = make_property(source="zillow", property_type="condo")

    assert county.property_type is None
    assert merge_properties(county, zillow).property_type == "condo"
    assert merge_properties(zillow, county).property_type == "condo"


def test_merge_never_overwrites_a_known_value(make_property):
    base = make_property(list_price=100000, county="")
    incoming = make_property(list_price=200000, bedrooms=None, county="Maricopa")

    merged = merge_properties(base, incoming)
    assert merged.list_price == 100000
    assert merged.county == "Maricopa"

    # a null on the incoming side never erases
    merged = merge_properties(make_property(bedrooms=4), make_property(bedrooms=None))
    assert merged.bedrooms == 4


def test_merge_unions_tags_and_sources(make_property):
    base = make_property(source="zillow", distress_types=["Pre-Foreclosure"])
    incoming = make_property(source="county-records", distress_types=["Pre-Foreclosure", "NOD"])

    merged = merge_properties(base, incoming)
    assert merged.distress_types == ["Pre-Foreclosure", "NOD"]
    assert merged.source == "zillow,county-records"
    assert merge_properties(merged, incoming).source == "zillow,county-records"


def test_merge_sources_keeps_first_seen_order():
    assert merge_sources("zillow,attom", "attom,county-records") == "zillow,attom,county-records"


def test_equivalent_addresses_merge(make_property):
    first = make_property(address="123 North Main Street, Apt 4B", source="zillow", list_price=99000)
    second = make_property(address="123 N MAIN ST", source="attom", loan_balance=80000)

    result = deduplicate_properties([first, second])
    assert len(result) == 1
    assert result[0].address == "123 North Main Street, Apt 4B"
    assert result[0].list_price == 99000
    assert result[0].loan_balance == 80000
    assert result[0].source == "zillow,attom"


def test_sparse_addresses_never_merge(make_property):
    records = [
        make_property(address=""),
        make_property(address=""),
        make_property(address="12"),
        make_property(address="12"),
    ]
    assert len(deduplicate_properties(records)) == 4


def test_low_confidence_placeholders_never_merge(make_property):
    records = [
        make_property(address="Filing by JOHN DOE", source="county-records", low_confidence=True),
        make_property(address="Filing by JOHN DOE", source="county-records", low_confidence=True),
    ]
    result = deduplicate_properties(records)
    assert len(result) == 2
    assert all(p.low_confidence for p in result)


def test_merged_record_is_low_confidence_only_if_both_are(make_property):
    merged = merge_properties(make_property(low_confidence=True), make_property())
    assert merged.low_confidence is False


def test_dedup_preserves_first_seen_order(make_property):
    a = make_property(address="1 First Ave", source="zillow")
    b = make_property(address="2 Second Ave", source="zillow")
    a_again = make_property(address="1 FIRST AVENUE", source="foreclosure.com")

    result = deduplicate_properties([a, b, a_again])
    assert [p.address for p in result] == ["1 First Ave", "2 Second Ave"]
    assert result[0].source == "zillow,foreclosure.com"


def test_dedup_does_not_mutate_inputs(make_property):
    a = make_property(source="zillow", distress_types=["REO"])
    b = make_property(source="attom", distress_types=["Auction"])
    deduplicate_properties([a, b])
    assert a.source == "zillow"
    assert a.distress_types == ["REO"]
