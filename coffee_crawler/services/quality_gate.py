"""
Quality gate for bulk extraction results.

Scores the records returned by the bulk extraction pass and decides whether
the per-page fallback pass should run.

Decision:
    fallback = (empty_percentage > EMPTY_THRESHOLD OR extraction_rate < MIN_RATE)
               AND total_urls < MAX_FALLBACK_URLS

The URL ceiling keeps the expensive per-page pass off very large catalogs;
those accept the bulk results as they are.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from django.conf import settings

from coffee_crawler.services.deduplication import count_unique_products
from coffee_crawler.services.types import (
    ExtractedRecord,
    QualityAssessment,
    QualityMetrics,
)

logger = logging.getLogger(__name__)

# Fields inspected by the mostly-empty check
COMPLETENESS_FIELDS = (
    "product_name",
    "origin",
    "process",
    "variety",
    "tasting_notes",
    "price",
    "raw_description",
)

MOSTLY_EMPTY_MIN_MISSING = 5


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def count_missing_fields(record: Optional[ExtractedRecord]) -> int:
    if record is None:
        return len(COMPLETENESS_FIELDS)
    return sum(1 for name in COMPLETENESS_FIELDS if _is_blank(getattr(record, name)))


def is_mostly_empty(record: Optional[ExtractedRecord]) -> bool:
    """A record is mostly empty when 5 or more of the 7 key fields are missing."""
    return count_missing_fields(record) >= MOSTLY_EMPTY_MIN_MISSING


class QualityGate:
    """
    Fallback decision gate.

    Thresholds default to Django settings and can be overridden per instance.
    """

    DEFAULT_EMPTY_PERCENTAGE_THRESHOLD = 70.0
    DEFAULT_MIN_EXTRACTION_RATE = 50.0
    DEFAULT_MAX_FALLBACK_URLS = 100

    def __init__(
        self,
        empty_percentage_threshold: Optional[float] = None,
        min_extraction_rate: Optional[float] = None,
        max_fallback_urls: Optional[int] = None,
    ):
        self.empty_percentage_threshold = (
            empty_percentage_threshold
            if empty_percentage_threshold is not None
            else getattr(
                settings,
                "QUALITY_GATE_EMPTY_PERCENTAGE_THRESHOLD",
                self.DEFAULT_EMPTY_PERCENTAGE_THRESHOLD,
            )
        )
        self.min_extraction_rate = (
            min_extraction_rate
            if min_extraction_rate is not None
            else getattr(
                settings,
                "QUALITY_GATE_MIN_EXTRACTION_RATE",
                self.DEFAULT_MIN_EXTRACTION_RATE,
            )
        )
        self.max_fallback_urls = (
            max_fallback_urls
            if max_fallback_urls is not None
            else getattr(
                settings,
                "QUALITY_GATE_MAX_FALLBACK_URLS",
                self.DEFAULT_MAX_FALLBACK_URLS,
            )
        )

    def measure(
        self,
        records: Sequence[Optional[ExtractedRecord]],
        total_urls: int,
        unique_products: int,
    ) -> QualityMetrics:
        """
        Compute completeness and yield metrics.

        Args:
            records: Candidate records from the bulk pass (None entries allowed)
            total_urls: Number of filtered URLs the pass was given
            unique_products: Deduplicated base product count

        Returns:
            QualityMetrics
        """
        total = len(records)
        empty = sum(1 for record in records if is_mostly_empty(record))

        empty_percentage = 100.0 * empty / total if total else 100.0

        if unique_products > 0:
            extraction_rate = 100.0 * total / unique_products
        else:
            # Nothing expected; any output is full yield
            extraction_rate = 100.0 if total else 0.0

        return QualityMetrics(
            total_candidates=total,
            empty_count=empty,
            unique_products=unique_products,
            total_urls=total_urls,
            empty_percentage=empty_percentage,
            extraction_rate=extraction_rate,
        )

    def assess(
        self,
        records: Sequence[Optional[ExtractedRecord]],
        urls: Iterable[str],
        unique_products: Optional[int] = None,
    ) -> QualityAssessment:
        """
        Score a bulk pass and decide whether fallback is required.

        Args:
            records: Candidate records from the bulk pass
            urls: Filtered URL list the pass was given
            unique_products: Precomputed base product count (computed from urls if None)

        Returns:
            QualityAssessment with metrics, decision and reasons
        """
        urls = list(urls)
        if unique_products is None:
            unique_products = count_unique_products(urls)

        metrics = self.measure(records, len(urls), unique_products)

        reasons: List[str] = []
        if metrics.empty_percentage > self.empty_percentage_threshold:
            reasons.append(
                f"{metrics.empty_percentage:.1f}% of records mostly empty "
                f"(threshold {self.empty_percentage_threshold:.0f}%)"
            )
        if metrics.extraction_rate < self.min_extraction_rate:
            reasons.append(
                f"extraction rate {metrics.extraction_rate:.1f}% "
                f"below {self.min_extraction_rate:.0f}%"
            )

        within_ceiling = metrics.total_urls < self.max_fallback_urls
        fallback_required = bool(reasons) and within_ceiling

        if reasons and not within_ceiling:
            logger.warning(
                f"Bulk extraction below quality thresholds ({'; '.join(reasons)}) but "
                f"{metrics.total_urls} URLs exceeds fallback ceiling "
                f"{self.max_fallback_urls}; accepting bulk results"
            )

        logger.info(
            f"Quality gate: {metrics.total_candidates} candidates, "
            f"{metrics.empty_percentage:.1f}% empty, "
            f"extraction rate {metrics.extraction_rate:.1f}% "
            f"({metrics.unique_products} unique products, {metrics.total_urls} URLs) "
            f"-> fallback={'yes' if fallback_required else 'no'}"
        )

        return QualityAssessment(
            metrics=metrics,
            fallback_required=fallback_required,
            reasons=reasons,
        )


def get_quality_gate() -> QualityGate:
    """Factory function returning a gate configured from settings."""
    return QualityGate()
