"""Address-keyed deduplication and field-level merging of scraped records."""

import logging
import uuid
from typing import Dict, List, Optional

from .transform import build_dedup_key
from ..models.property_models import ScrapedProperty
from ..monitoring.logger import ETLLogger

logger = logging.getLogger(__name__)


# Nullable scalars merged first-non-null-wins
NULLABLE_MERGE_FIELDS = (
    "source_url",
    "latitude",
    "longitude",
    "bedrooms",
    "bathrooms",
    "sqft",
    "lot_size",
    "year_built",
    "list_price",
    "estimated_value",
    "zestimate",
    "arv_estimate",
    "last_sale_price",
    "last_sale_date",
    "loan_balance",
    "equity_estimate",
    "owner_name",
    "property_type",
)

# String fields where the empty string means unknown
TEXT_MERGE_FIELDS = (
    "source_id",
    "zip",
    "county",
)


def _first_present(base, incoming):
    return base if base is not None else incoming


def _first_text(base: str, incoming: str) -> str:
    return base if base else incoming


def merge_sources(base: str, incoming: str) -> str:
    """Comma-joined union of source names, first-seen order."""
    names = [s for s in base.split(",") if s]
    for name in incoming.split(","):
        if name and name not in names:
            names.append(name)
    return ",".join(names)


def merge_properties(base: ScrapedProperty, incoming: ScrapedProperty) -> ScrapedProperty:
    """Merge ``incoming`` into a copy of ``base``.

    A value already known on ``base`` is never replaced, and a null on
    ``incoming`` never erases anything. Distress tags are unioned and
    source names are appended in first-seen order. Merging a record with
    itself returns an equal record.

    Every field of ScrapedProperty is listed here explicitly; a new field
    needs a merge rule before it is carried across duplicates.

    Args:
        base: Record seen first
        incoming: Record with the same dedup key

    Returns:
        ScrapedProperty: Merged record
    """
    merged = base.model_copy(deep=True)

    for field in NULLABLE_MERGE_FIELDS:
        setattr(merged, field, _first_present(getattr(base, field), getattr(incoming, field)))

    for field in TEXT_MERGE_FIELDS:
        setattr(merged, field, _first_text(getattr(base, field), getattr(incoming, field)))

    # address, city, state and scraped_at stay with base
    merged.owner_occupied = base.owner_occupied or incoming.owner_occupied
    merged.distress_types = list(dict.fromkeys(base.distress_types + incoming.distress_types))
    merged.source = merge_sources(base.source, incoming.source)
    merged.low_confidence = base.low_confidence and incoming.low_confidence

    raw_data = dict(incoming.raw_data)
    raw_data.update(base.raw_data)
    merged.raw_data = raw_data

    return merged


def dedup_key(prop: ScrapedProperty) -> Optional[str]:
    """Merge key for a record, None when it must stay unique."""
    if prop.low_confidence:
        return None
    return build_dedup_key(prop.address, prop.city, prop.state, prop.zip)


def deduplicate_properties(properties: List[ScrapedProperty],
                           etl_logger: Optional[ETLLogger] = None) -> List[ScrapedProperty]:
    """Collapse records that share a normalized address.

    Sparse addresses and low-confidence placeholders are never merged;
    each is kept under a unique key. Output follows first-seen order.

    Args:
        properties: Flattened agent output
        etl_logger: Structured logger for the stage result

    Returns:
        List[ScrapedProperty]: Unique records
    """
    unique: Dict[str, ScrapedProperty] = {}
    sparse = 0

    for prop in properties:
        key = dedup_key(prop)
        if key is None:
            sparse += 1
            unique[f"unique-{uuid.uuid4()}"] = prop
            continue

        existing = unique.get(key)
        unique[key] = prop if existing is None else merge_properties(existing, prop)

    if sparse:
        logger.debug(f"Kept {sparse} sparse or low-confidence records without merging")

    result = list(unique.values())
    (etl_logger or ETLLogger("deduplication")).log_deduplication_results(len(properties), len(result))
    return result
