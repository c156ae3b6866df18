from distress_scraper.etl.transform import (
    as_int,
    as_number,
    build_dedup_key,
    city_slug,
    first_present,
    normalize_address,
    parse_amount,
    parse_price,
)


def test_normalize_address_abbreviates_and_strips_units():
    assert normalize_address("123 North Main Street, Apt 4B") == "123 N MAIN ST"
    assert normalize_address("123 N MAIN ST") == "123 N MAIN ST"


def test_normalize_address_handles_hash_units_and_punctuation():
    assert normalize_address("500 Oak Avenue #12") == "500 OAK AVE"
    assert normalize_address("  77 west  elm   boulevard. ") == "77 W ELM BLVD"
    assert normalize_address("9 Pine Dr Suite 200, ") == "9 PINE DR"


def test_normalize_address_empty():
    assert normalize_address("") == ""
    assert normalize_address(None) == ""


def test_dedup_key_matches_for_equivalent_addresses():
    first = build_dedup_key("123 North Main Street, Apt 4B", "Phoenix", "AZ", "85001")
    second = build_dedup_key("123 N MAIN ST", "phoenix", "az", "85001")
    assert first == second == "123 N MAIN ST, PHOENIX, AZ 85001"


def test_dedup_key_is_none_for_sparse_addresses():
    assert build_dedup_key("", "Phoenix", "AZ", "85001") is None
    assert build_dedup_key("12", "Phoenix", "AZ", "85001") is None
    assert build_dedup_key("Apt 4", "Phoenix", "AZ", "") is None


def test_parse_price():
    assert parse_price("$245,900") == 245900.0
    assert parse_price("") is None
    assert parse_price("N/A") is None
    assert parse_price("$245,900 - $260,000") == 245900.0
    assert parse_price("$199,900+") == 199900.0


def test_parse_amount_treats_zero_as_missing():
    assert parse_amount("$0.00") is None
    assert parse_amount("$3,210.55") == 3210.55


def test_loose_number_helpers():
    assert as_number(True) is None
    assert as_number("5") is None
    assert as_number(2.5) == 2.5
    assert as_int(3.7) == 3
    assert as_int(None) is None


def test_first_present_skips_none():
    assert first_present({"a": None, "b": 0, "c": 2}, "a", "b", "c") == 0
    assert first_present({}, "a", default="x") == "x"


def test_city_slug():
    assert city_slug(" San Tan Valley ") == "san-tan-valley"
