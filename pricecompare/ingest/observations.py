"""Price observation model and ingestion result types."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from pricecompare.db.models import AVAILABILITY_STATES


class PriceObservation(BaseModel):
    """One (product, retailer, price) sighting from a discovery source."""

    name: str = Field(min_length=1)
    brand: str = ""
    model: Optional[str] = None
    category: Optional[str] = None  # category slug
    description: Optional[str] = None
    image_url: Optional[str] = None
    specifications: dict[str, Any] = Field(default_factory=dict)

    retailer: str = Field(min_length=1)
    country: Optional[str] = None
    price: Decimal
    currency: str = "USD"
    url: Optional[str] = None
    availability: str = "in_stock"

    @field_validator("name", "brand", "retailer")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("price must be greater than 0")
        return v.quantize(Decimal("0.01"))

    @field_validator("currency", "country")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v

    @field_validator("availability")
    @classmethod
    def validate_availability(cls, v: str) -> str:
        normalized = v.strip().lower().replace(" ", "_")
        if normalized not in AVAILABILITY_STATES:
            raise ValueError(
                f"Invalid availability '{v}'. Expected one of: {', '.join(AVAILABILITY_STATES)}"
            )
        return normalized

    @property
    def product_key(self) -> tuple[str, str]:
        return (self.name, self.brand)

    @property
    def retailer_key(self) -> str:
        return self.retailer

    def describe(self) -> str:
        return f"{self.brand} {self.name} @ {self.retailer}".strip()


@dataclass
class IngestFailure:
    """An observation that could not be stored."""

    key: str
    error: str


@dataclass
class IngestResult:
    """Counters for one ingestion batch."""

    observations: int = 0
    products_created: int = 0
    retailers_created: int = 0
    prices_updated: int = 0
    history_archived: int = 0
    failures: list[IngestFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict:
        return {
            "observations": self.observations,
            "products_created": self.products_created,
            "retailers_created": self.retailers_created,
            "prices_updated": self.prices_updated,
            "history_archived": self.history_archived,
            "failed": self.failed,
            "failures": [
                {"key": f.key, "error": f.error} for f in self.failures[:20]
            ],
        }
