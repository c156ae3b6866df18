"""Property data models for distressed-property scraping."""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Boolean, JSON, BigInteger, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, Field, field_validator


Base = declarative_base()


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class DistressType(str, Enum):
    """Distress categories emitted by the source agents."""
    PRE_FORECLOSURE = "Pre-Foreclosure"
    NOD = "NOD"
    LIS_PENDENS = "Lis Pendens"
    AUCTION = "Auction"
    REO = "REO"
    TAX_LIEN = "Tax Lien"
    BANKRUPTCY = "Bankruptcy"


# Filter groups used when deciding which agents a search needs
FORECLOSURE_TYPES = frozenset({
    DistressType.AUCTION.value, DistressType.PRE_FORECLOSURE.value, DistressType.NOD.value,
})
PRE_FORECLOSURE_TYPES = frozenset({
    DistressType.PRE_FORECLOSURE.value, DistressType.NOD.value, DistressType.LIS_PENDENS.value,
})
REO_TYPES = frozenset({DistressType.REO.value})


class ScrapedProperty(BaseModel):
    """Normalized record produced by every agent.

    This is the intermediate format between the source agents and the
    property store. Characteristics and financials stay ``None`` until a
    source or the enrichment chain provides them; unknown is never encoded
    as a sentinel number.
    """

    # Identity
    source_id: str = ""
    source: str = ""
    source_url: Optional[str] = None

    # Location
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    county: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Characteristics
    property_type: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    sqft: Optional[int] = None
    lot_size: Optional[float] = None
    year_built: Optional[int] = None

    # Financial
    list_price: Optional[float] = None
    estimated_value: Optional[float] = None
    zestimate: Optional[float] = None
    arv_estimate: Optional[float] = None
    last_sale_price: Optional[float] = None
    last_sale_date: Optional[str] = None
    loan_balance: Optional[float] = None
    equity_estimate: Optional[float] = None

    # Ownership / distress
    owner_name: Optional[str] = None
    owner_occupied: bool = False
    distress_types: List[str] = Field(default_factory=list)

    # Placeholder addresses recovered from filings without a street address
    low_confidence: bool = False

    # Provenance
    scraped_at: datetime = Field(default_factory=utcnow)
    raw_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("distress_types")
    @classmethod
    def unique_distress_types(cls, v: List[str]) -> List[str]:
        """Drop repeated tags while keeping first-seen order."""
        return list(dict.fromkeys(tag for tag in v if tag))

    def full_address(self) -> str:
        """Render ``"street, city, state zip"`` for lookups and dedup keys."""
        return f"{self.address}, {self.city}, {self.state} {self.zip}".strip()

    def sources(self) -> List[str]:
        """Contributing agent names in first-seen order."""
        return [s for s in self.source.split(",") if s]


def empty_scraped_property(source: str) -> ScrapedProperty:
    """Create a blank record stamped with its source and the current time."""
    return ScrapedProperty(source=source, scraped_at=utcnow())


class PropertyRecord(Base):
    """Stored property row, unique on its natural address key."""

    __tablename__ = "properties"
    __table_args__ = (
        UniqueConstraint("address", "city", "state", name="uq_properties_address_city_state"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Natural key
    address = Column(String(500), nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(50), nullable=False)

    zip = Column(String(20), nullable=True)
    county = Column(String(100), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    distress_type = Column(String(50), nullable=True)
    distress_types = Column(JSON, nullable=True)
    estimated_price = Column(BigInteger, nullable=True)
    arv = Column(BigInteger, nullable=True)
    zillow_zestimate = Column(BigInteger, nullable=True)

    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Float, nullable=True)
    sqft = Column(Integer, nullable=True)
    lot_size = Column(String(50), nullable=True)
    year_built = Column(Integer, nullable=True)

    owner_name = Column(String(255), nullable=True)
    owner_occupied = Column(Boolean, default=False)
    loan_balance = Column(BigInteger, nullable=True)
    equity_estimate = Column(BigInteger, nullable=True)
    has_equity = Column(Boolean, default=False)
    low_confidence = Column(Boolean, default=False)

    source = Column(String(255), nullable=True)
    source_url = Column(String(1000), nullable=True)
    raw_data = Column(JSON, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
