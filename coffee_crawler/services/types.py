"""
Data types shared across the crawl pipeline.

ExtractedRecord is the transient product record produced by the extraction
oracles and handed to the product saver. The other types are results and
reports returned by pipeline stages.
"""

import logging
from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

PLACEHOLDER_PRODUCT_NAME = "Unknown"

# Single-valued text fields that oracles sometimes return as arrays
TEXT_FIELDS = ("origin", "region", "process", "producer", "variety", "altitude")


def _join_text(value: Any) -> Optional[str]:
    """Join list values with ", "; pass strings through; blank becomes None."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        parts = [str(item).strip() for item in value if item is not None and str(item).strip()]
        return ", ".join(parts) if parts else None
    text = str(value).strip()
    return text or None


def _parse_price(value: Any) -> Optional[Decimal]:
    """Parse a price from a number or a string such as "£9.95"."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    cleaned = "".join(ch for ch in str(value) if ch.isdigit() or ch == ".")
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        logger.debug(f"Unparseable price value: {value!r}")
        return None


def _parse_notes(value: Any) -> List[str]:
    """Tasting notes as a list; comma strings are split, other scalars wrapped."""
    if value is None or isinstance(value, (bool, dict)):
        return []
    if isinstance(value, str):
        return [note.strip() for note in value.split(",") if note.strip()]
    if isinstance(value, (list, tuple)):
        return [str(note).strip() for note in value if note is not None and str(note).strip()]
    text = str(value).strip()
    return [text] if text else []


def _parse_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1", "in stock", "available"):
            return True
        if lowered in ("false", "no", "0", "out of stock", "sold out"):
            return False
        return None
    return bool(value)


@dataclass
class ExtractedRecord:
    """
    A product record produced by an extraction oracle.

    Every field except product_name may be missing. Records without a
    product name are invalid and are never saved as successful products.
    """

    product_name: Optional[str] = None
    origin: Optional[str] = None
    region: Optional[str] = None
    process: Optional[str] = None
    producer: Optional[str] = None
    variety: Optional[str] = None
    altitude: Optional[str] = None
    tasting_notes: List[str] = field(default_factory=list)
    price: Optional[Decimal] = None
    in_stock: Optional[bool] = None
    raw_description: Optional[str] = None
    product_url: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return bool(self.product_name and self.product_name.strip())

    @property
    def is_placeholder(self) -> bool:
        return self.product_name == PLACEHOLDER_PRODUCT_NAME

    @classmethod
    def placeholder(cls, product_url: Optional[str] = None) -> "ExtractedRecord":
        """Well-formed stand-in returned after all extraction attempts fail."""
        return cls(product_name=PLACEHOLDER_PRODUCT_NAME, product_url=product_url)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedRecord":
        """
        Build a record from an oracle JSON object.

        Accepts "name" as an alias of "product_name" and "url" as an alias
        of "product_url". Array values for single-valued text fields are
        joined with ", ".
        """
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

        text_values = {name: _join_text(data.get(name)) for name in TEXT_FIELDS}

        return cls(
            product_name=_join_text(data.get("product_name") or data.get("name")),
            tasting_notes=_parse_notes(data.get("tasting_notes")),
            price=_parse_price(data.get("price")),
            in_stock=_parse_bool(data.get("in_stock")),
            raw_description=_join_text(data.get("raw_description")),
            product_url=_join_text(data.get("product_url") or data.get("url")),
            **text_values,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price"] = str(self.price) if self.price is not None else None
        return data


@dataclass
class RecordOutcome:
    """Result of persisting one record."""

    status: str  # "done" or "error"
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    created: bool = False
    unchanged: bool = False
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "done"


@dataclass
class FlushReport:
    """Counts for one persistence flush."""

    size: int
    success_count: int = 0
    error_count: int = 0
    unchanged_count: int = 0


@dataclass
class QualityMetrics:
    """Completeness and yield of one bulk extraction pass."""

    total_candidates: int
    empty_count: int
    unique_products: int
    total_urls: int
    empty_percentage: float
    extraction_rate: float


@dataclass
class QualityAssessment:
    """Result of the fallback decision gate."""

    metrics: QualityMetrics
    fallback_required: bool
    reasons: List[str] = field(default_factory=list)


# Estimated cost of one single-page extraction call, in USD
API_COST_PER_EXTRACTION = 0.0015


@dataclass
class CrawlSummary:
    """Summary of an incremental sitemap crawl."""

    brand_name: str
    new_products: int = 0
    updated_products: int = 0
    unchanged_products: int = 0
    deleted_products: int = 0
    failed_products: int = 0
    total_processed: int = 0

    @property
    def api_cost_saved(self) -> float:
        return calculate_cost_saved(self.unchanged_products)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["api_cost_saved"] = self.api_cost_saved
        return data


def calculate_cost_saved(unchanged_count: int) -> float:
    """Extraction spend avoided by skipping unchanged pages."""
    return unchanged_count * API_COST_PER_EXTRACTION


@dataclass
class BrandCrawlResult:
    """Result of a full discovery-bulk-gate-fallback brand crawl."""

    brand_name: str
    status: str
    urls_discovered: int = 0
    urls_filtered: int = 0
    unique_products: int = 0
    fallback_triggered: bool = False
    records_saved: int = 0
    records_unchanged: int = 0
    records_failed: int = 0
    abort_reason: Optional[str] = None
    quality: Optional[QualityMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
