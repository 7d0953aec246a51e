"""
Chunked persistence writer.

Buffers extracted records and hands them to a save function in fixed-size
chunks, plus a final partial chunk. Each record in a chunk is saved on its
own, so one failing record does not block the others, and a crash mid-run
loses at most one unflushed chunk.
Records the saver reports as unchanged are counted apart from saves.
"""

import logging
from typing import Callable, List, Optional

from coffee_crawler.services.types import ExtractedRecord, FlushReport, RecordOutcome

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10


class ChunkedWriter:
    """
    Buffer with push / flush-if-threshold / flush-remainder operations.

    Args:
        save_record: Callable persisting one record and returning a RecordOutcome
        chunk_size: Records per flush
        label: Context for log lines (brand name)
    """

    def __init__(
        self,
        save_record: Callable[[ExtractedRecord], RecordOutcome],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        label: str = "",
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.save_record = save_record
        self.chunk_size = chunk_size
        self.label = label

        self._buffer: List[ExtractedRecord] = []
        self.flushes: List[FlushReport] = []

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @property
    def success_count(self) -> int:
        return sum(report.success_count for report in self.flushes)

    @property
    def error_count(self) -> int:
        return sum(report.error_count for report in self.flushes)

    @property
    def unchanged_count(self) -> int:
        return sum(report.unchanged_count for report in self.flushes)

    def push(self, record: ExtractedRecord) -> Optional[FlushReport]:
        """Add a record; flush if the buffer reached the chunk size."""
        self._buffer.append(record)
        return self.flush_if_threshold()

    def flush_if_threshold(self) -> Optional[FlushReport]:
        if len(self._buffer) >= self.chunk_size:
            return self._flush()
        return None

    def flush_remainder(self) -> Optional[FlushReport]:
        """Flush whatever is buffered (the final partial chunk)."""
        if self._buffer:
            return self._flush()
        return None

    def _flush(self) -> FlushReport:
        chunk = self._buffer
        self._buffer = []

        report = FlushReport(size=len(chunk))
        logger.info(f"Saving batch of {len(chunk)} products for brand: {self.label}")

        for record in chunk:
            try:
                outcome = self.save_record(record)
            except Exception as e:
                logger.error(f"Failed to save product {record.product_name}: {e}")
                report.error_count += 1
                continue

            if outcome is not None and outcome.succeeded and outcome.unchanged:
                report.unchanged_count += 1
            elif outcome is not None and outcome.succeeded:
                report.success_count += 1
            else:
                report.error_count += 1

        self.flushes.append(report)
        logger.info(
            f"Batch save completed: {report.success_count} success, "
            f"{report.unchanged_count} unchanged, {report.error_count} errors"
        )
        return report
