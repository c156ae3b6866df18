from bs4 import BeautifulSoup

from distress_scraper.scrapers.extraction import (
    ExtractionChain,
    ExtractionStrategy,
    css_cards_strategy,
    find_json_array,
    json_ld_strategy,
    script_json_strategy,
    table_rows_strategy,
)


def _soup(html):
    return BeautifulSoup(html, "html.parser")


def test_chain_returns_first_non_empty_strategy():
    chain = ExtractionChain([
        ExtractionStrategy("empty", lambda source: []),
        ExtractionStrategy("second", lambda source: [1, 2]),
        ExtractionStrategy("third", lambda source: [3]),
    ])
    result = chain.extract(None)
    assert result.strategy == "second"
    assert result.items == [1, 2]


def test_chain_skips_raising_and_inapplicable_strategies():
    def boom(source):
        raise ValueError("markup changed")

    chain = ExtractionChain([
        ExtractionStrategy("broken", boom),
        ExtractionStrategy("skipped", lambda source: ["never"], applies=lambda source: False),
        ExtractionStrategy("fallback", lambda source: ["ok"]),
    ])
    assert chain.extract("page").items == ["ok"]


def test_chain_with_no_match():
    result = ExtractionChain([ExtractionStrategy("empty", lambda source: [])]).extract(None)
    assert result.strategy is None
    assert result.items == []


def test_table_rows_strategy_ignores_header_and_short_rows():
    soup = _soup("""
        <table>
          <tr><th>No</th><th>Date</th><th>Type</th></tr>
          <tr><td>1</td><td>03/01/2024</td><td>NOD</td></tr>
          <tr><td>only</td><td>two</td></tr>
        </table>
    """)
    rows = table_rows_strategy("table tr").extract(soup)
    assert len(rows) == 1
    assert rows[0].cells == ["1", "03/01/2024", "NOD"]


def test_find_json_array_handles_nested_arrays():
    text = 'var data = [{"address": "1 A St", "tags": [1, [2, 3]]}, {"address": "2 B St"}]; init();'
    found = find_json_array(text)
    assert [item["address"] for item in found] == ["1 A St", "2 B St"]


def test_find_json_array_bare_array_needs_required_key():
    text = 'render([{"id": 1}]); render([{"address": "9 Elm St"}]);'
    assert find_json_array(text, keys=(), required_key="address") == [{"address": "9 Elm St"}]
    assert find_json_array(text, keys=(), required_key=None) == []


def test_script_json_strategy_skips_external_scripts():
    soup = _soup("""
        <script src="/app.js"></script>
        <script>window.state = {"results": [{"address": "5 Oak Ave", "grantor": "SMITH"}]};</script>
    """)
    assert script_json_strategy().extract(soup) == [{"address": "5 Oak Ave", "grantor": "SMITH"}]


def test_json_ld_strategy_walks_graph_and_item_lists():
    soup = _soup("""
        <script type="application/ld+json">
        {"@context": "https://schema.org", "@graph": [
            {"@type": "WebPage", "name": "Listings"},
            {"@type": "ItemList", "itemListElement": [
                {"@type": "ListItem", "item": {"@type": "RealEstateListing", "name": "77 Birch Ln"}}
            ]}
        ]}
        </script>
        <script type="application/ld+json">[{"@type": ["Product", "House"], "name": "8 Cedar Ct"}]</script>
        <script type="application/ld+json">not json</script>
    """)
    names = [node["name"] for node in json_ld_strategy().extract(soup)]
    assert names == ["77 Birch Ln", "8 Cedar Ct"]


def test_css_cards_strategy():
    soup = _soup('<div class="card">a</div><div class="card">b</div><div>c</div>')
    assert [c.get_text() for c in css_cards_strategy(".card").extract(soup)] == ["a", "b"]
