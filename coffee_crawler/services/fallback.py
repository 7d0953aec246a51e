"""
Per-page fallback extraction.

Runs render -> page oracle for each URL in order. The first URL that yields
no text or no valid record aborts the whole run: at this tier a failure is
almost always site-wide (bot blocking, layout change) and would repeat on
every remaining URL.

States: RUNNING -> COMPLETED, or RUNNING -> ABORTED(reason, url).
Records extracted before an abort stay in the writer and are flushed.
"""

import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional

from coffee_crawler.services.chunked_writer import ChunkedWriter
from coffee_crawler.services.types import ExtractedRecord

logger = logging.getLogger(__name__)


class FallbackState(str, Enum):
    RUNNING = "running"
    ABORTED = "aborted"
    COMPLETED = "completed"


class FallbackAbortedError(Exception):
    """Fallback run stopped on its first failed URL."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Fallback aborted at {url}: {reason}")


class FallbackRun:
    """
    One sequential fallback pass over a brand's filtered URLs.

    Args:
        render: url -> visible text ("" on failure)
        extract: (text, url) -> ExtractedRecord or None
        writer: ChunkedWriter receiving successful records
        brand_name: Context for log lines
    """

    def __init__(
        self,
        render: Callable[[str], str],
        extract: Callable[[str, str], Optional[ExtractedRecord]],
        writer: ChunkedWriter,
        brand_name: str = "",
    ):
        self.render = render
        self.extract = extract
        self.writer = writer
        self.brand_name = brand_name

        self.state = FallbackState.RUNNING
        self.abort_reason: Optional[str] = None
        self.abort_url: Optional[str] = None
        self.processed: List[str] = []
        self.records: List[ExtractedRecord] = []

    @property
    def aborted(self) -> bool:
        return self.state == FallbackState.ABORTED

    def _abort(self, url: str, reason: str):
        self.state = FallbackState.ABORTED
        self.abort_url = url
        self.abort_reason = reason
        logger.error(
            f"Fallback extraction aborted for {self.brand_name} at {url}: {reason} "
            f"({len(self.records)} records extracted before abort)"
        )

    def step(self, url: str) -> bool:
        """
        Process one URL.

        Returns:
            True if the run may continue, False once it has aborted
        """
        if self.state != FallbackState.RUNNING:
            raise RuntimeError(f"Cannot step a fallback run in state {self.state.value}")

        text = self.render(url)
        if not text or not text.strip():
            self._abort(url, "render returned no text")
            return False

        record = self.extract(text, url)
        if record is None or not record.is_valid or record.is_placeholder:
            self._abort(url, "extraction returned no valid record")
            return False

        if not record.product_url:
            record.product_url = url

        self.processed.append(url)
        self.records.append(record)
        self.writer.push(record)
        return True

    def run(self, urls: Iterable[str]) -> FallbackState:
        """
        Process URLs sequentially until done or the first failure.

        The writer's remainder is flushed in both terminal states.
        """
        urls = list(urls)
        logger.info(f"Starting fallback extraction for {self.brand_name}: {len(urls)} URLs")

        for index, url in enumerate(urls, start=1):
            logger.info(f"Fallback [{index}/{len(urls)}]: {url}")
            if not self.step(url):
                break
        else:
            self.state = FallbackState.COMPLETED

        self.writer.flush_remainder()

        if self.state == FallbackState.COMPLETED:
            logger.info(
                f"Fallback extraction completed for {self.brand_name}: "
                f"{len(self.records)} records"
            )
        return self.state

    def raise_for_abort(self):
        """Raise FallbackAbortedError if the run aborted."""
        if self.aborted:
            raise FallbackAbortedError(self.abort_url, self.abort_reason)
