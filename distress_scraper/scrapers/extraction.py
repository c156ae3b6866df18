"""Ordered extraction strategies for markup that drifts.

Agents describe how to pull records out of a page as a list of strategies
tried in order; the first one that yields anything wins. Each strategy is
a plain object so it can be tested against a fixture on its own.
"""

import json
import logging
import re
from typing import Any, Callable, Generic, List, NamedTuple, Optional, Sequence, TypeVar

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExtractionStrategy(Generic[T]):
    """One ``(predicate, extractor)`` pair."""

    def __init__(self, name: str, extract: Callable[[Any], List[T]],
                 applies: Optional[Callable[[Any], bool]] = None):
        self.name = name
        self._extract = extract
        self._applies = applies

    def applies(self, source: Any) -> bool:
        return self._applies(source) if self._applies else True

    def extract(self, source: Any) -> List[T]:
        return self._extract(source)

    def __repr__(self) -> str:
        return f"ExtractionStrategy({self.name!r})"


class ExtractionResult(NamedTuple):
    strategy: Optional[str]
    items: List[Any]


class ExtractionChain(Generic[T]):
    """Try strategies in order until one returns a non-empty list."""

    def __init__(self, strategies: Sequence[ExtractionStrategy[T]]):
        self.strategies = list(strategies)

    def extract(self, source: Any) -> ExtractionResult:
        """Run the chain.

        A strategy that raises is logged and skipped; markup drift should
        degrade to the next strategy, not abort the page.

        Args:
            source: Parsed document or raw payload handed to every strategy

        Returns:
            ExtractionResult: Winning strategy name (None if none matched) and items
        """
        for strategy in self.strategies:
            if not strategy.applies(source):
                continue
            try:
                items = strategy.extract(source)
            except Exception as e:
                logger.warning(f"Extraction strategy {strategy.name} failed: {e}")
                continue
            if items:
                logger.debug(f"Extraction strategy {strategy.name} matched {len(items)} items")
                return ExtractionResult(strategy.name, list(items))
        return ExtractionResult(None, [])


class TableRow(NamedTuple):
    cells: List[str]
    element: Tag


def table_rows_strategy(selector: str, min_cells: int = 3,
                        name: Optional[str] = None) -> ExtractionStrategy[TableRow]:
    """Rows matched by a CSS selector that carry at least ``min_cells`` cells.

    Header rows (``th`` only) never qualify since only ``td`` cells count.
    """

    def extract(soup: BeautifulSoup) -> List[TableRow]:
        rows = []
        for row in soup.select(selector):
            cells = [td.get_text(" ", strip=True) for td in row.find_all("td")]
            if len(cells) >= min_cells:
                rows.append(TableRow(cells, row))
        return rows

    return ExtractionStrategy(name or selector, extract)


_decoder = json.JSONDecoder()


def _decode_array(text: str, position: int) -> List[Any]:
    try:
        parsed, _ = _decoder.raw_decode(text, position)
    except ValueError:
        return []
    return parsed if isinstance(parsed, list) else []


def find_json_array(text: str, keys: Sequence[str] = ("data", "results", "records"),
                    required_key: Optional[str] = None) -> List[Any]:
    """Find an embedded JSON array in script text.

    Tries arrays assigned to one of ``keys`` first (``var data = [...]`` or
    ``"results": [...]``), then any bare array of objects where at least one
    object carries ``required_key``.

    Args:
        text: Script source
        keys: Variable or property names to look for
        required_key: Key that marks a bare array as a record list

    Returns:
        List[Any]: The first non-empty array found, else an empty list
    """
    for key in keys:
        pattern = re.compile(r'["\']?\b' + re.escape(key) + r'\b["\']?\s*[:=]\s*(?=\[)')
        for match in pattern.finditer(text):
            parsed = _decode_array(text, match.end())
            if parsed:
                return parsed

    if required_key:
        for match in re.finditer(r"\[\s*\{", text):
            parsed = _decode_array(text, match.start())
            if any(isinstance(item, dict) and required_key in item for item in parsed):
                return parsed

    return []


def script_json_strategy(keys: Sequence[str] = ("data", "results", "records"),
                         required_key: Optional[str] = "address",
                         name: str = "script-json") -> ExtractionStrategy[Any]:
    """Scan inline ``<script>`` tags for an embedded JSON record array."""

    def extract(soup: BeautifulSoup) -> List[Any]:
        for script in soup.find_all("script"):
            if script.get("src"):
                continue
            text = script.string or script.get_text()
            if not text:
                continue
            found = find_json_array(text, keys, required_key)
            if found:
                return found
        return []

    return ExtractionStrategy(name, extract)


def json_ld_strategy(types: Sequence[str] = ("Product", "RealEstateListing", "SingleFamilyResidence", "House", "Residence"),
                     name: str = "json-ld") -> ExtractionStrategy[dict]:
    """Structured data blocks (``application/ld+json``) of the given types.

    Top-level arrays, ``@graph`` containers and ``ItemList`` entries are
    walked so listing nodes are found wherever the page nests them.
    """
    wanted = set(types)

    def walk(node: Any):
        if isinstance(node, list):
            for child in node:
                yield from walk(child)
            return
        if not isinstance(node, dict):
            return
        yield node
        for key in ("@graph", "itemListElement"):
            if key in node:
                yield from walk(node[key])
        if isinstance(node.get("item"), dict):
            yield from walk(node["item"])

    def extract(soup: BeautifulSoup) -> List[dict]:
        items: List[dict] = []
        for script in soup.select('script[type="application/ld+json"]'):
            try:
                data = json.loads(script.string or script.get_text() or "")
            except ValueError:
                continue
            for node in walk(data):
                node_type = node.get("@type")
                node_types = node_type if isinstance(node_type, list) else [node_type]
                if wanted.intersection(t for t in node_types if isinstance(t, str)):
                    items.append(node)
        return items

    return ExtractionStrategy(name, extract)


def css_cards_strategy(selector: str, name: Optional[str] = None) -> ExtractionStrategy[Tag]:
    """Elements matched by a card selector."""
    return ExtractionStrategy(name or selector, lambda soup: list(soup.select(selector)))
