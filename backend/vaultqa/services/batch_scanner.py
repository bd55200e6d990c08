"""
Batch Scanner

Runs single-item QA over a whole bank in fixed-size chunks, yielding to the
event loop between chunks so the API stays responsive during a scan of
thousands of items. Progress is reported after every chunk; the BankReport is
built only after the final chunk.
"""

import os
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

from vaultqa.services.item_model import BankReport, ItemReport
from vaultqa.services.item_qa import build_bank_report, run_item_qa
from vaultqa.services.task_runner import SupersedingRunner

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = int(os.getenv("QA_SCAN_CHUNK_SIZE", "150"))


@dataclass(frozen=True)
class ScanProgress:
    processed: int
    total: int


ProgressCallback = Callable[[ScanProgress], Union[None, Awaitable[None]]]


class BatchScanner:
    """
    Chunked, cooperative bank scanner.

    Starting a scan while another is running supersedes it: the earlier
    caller gets None and its partial results never reach last_report.
    """

    def __init__(self, chunk_size: Optional[int] = None):
        self.chunk_size = chunk_size if chunk_size is not None else DEFAULT_CHUNK_SIZE
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        self.last_report: Optional[BankReport] = None
        self._runner = SupersedingRunner("batch scan")

    @property
    def scanning(self) -> bool:
        return self._runner.in_flight

    async def scan(self, items: Iterable[Any], on_progress: Optional[ProgressCallback] = None) -> Optional[BankReport]:
        """Scan items; returns None if a newer scan superseded this one."""
        snapshot = list(items)
        return await self._runner.run(lambda generation: self._scan(snapshot, on_progress, generation))

    async def _scan(self, items: List[Any], on_progress: Optional[ProgressCallback], generation: int) -> BankReport:
        total = len(items)
        reports: List[ItemReport] = []
        logger.info(f"Scan {generation}: {total} items in chunks of {self.chunk_size}")

        for start in range(0, total, self.chunk_size):
            chunk = items[start:start + self.chunk_size]
            reports.extend(run_item_qa(item) for item in chunk)
            logger.debug(f"Scan {generation}: {len(reports)}/{total}")

            if on_progress is not None:
                outcome = on_progress(ScanProgress(processed=len(reports), total=total))
                if inspect.isawaitable(outcome):
                    await outcome

            # Cooperative scheduling point between chunks
            await asyncio.sleep(0)

        report = build_bank_report(reports)
        if self._runner.is_current(generation):
            self.last_report = report
            logger.info(
                f"Scan {generation} complete: {report.passed} pass, {report.warned} warn, "
                f"{report.failed} fail, bank score {report.overall_score:.2f}"
            )
        return report
