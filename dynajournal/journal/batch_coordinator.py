# =============================================================================
# File: dynajournal/journal/batch_coordinator.py
# Description: Concurrent dispatch of a WriteBatch with ordered results
# =============================================================================
# • One asyncio task per atomic group, bounded by max_concurrent_groups
# • Results land in a reorder buffer keyed by submission index
# • Abandoned calls: dispatched groups finish under asyncio.shield, their
#   outcomes are dropped; groups not yet dispatched are skipped
# =============================================================================

import asyncio
import logging
from typing import List, Optional

from dynajournal.journal.group_writer import AtomicGroupWriter
from dynajournal.journal.model import AtomicGroup, Outcome, WriteBatch
from dynajournal.infra.metrics.journal_metrics import journal_records_written, journal_rejections

log = logging.getLogger("dynajournal.journal.batch_coordinator")


class BatchCoordinator:
    """Submits the atomic groups of a WriteBatch and reports outcomes in submission order."""

    def __init__(self, writer: AtomicGroupWriter, max_concurrent_groups: int = 16):
        if max_concurrent_groups < 1:
            raise ValueError("max_concurrent_groups must be at least 1")
        self.writer = writer
        self.max_concurrent_groups = max_concurrent_groups

    async def submit(self, batch: WriteBatch) -> List[List[Outcome]]:
        groups = batch.groups
        if not groups:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrent_groups)
        slots: List[Optional[List[Outcome]]] = [None] * len(groups)
        abandoned = False

        async def dispatch(index: int, group: AtomicGroup) -> None:
            async with semaphore:
                if abandoned:
                    return
                slots[index] = await self.writer.write(group)

        gathered = asyncio.gather(
            *(dispatch(i, g) for i, g in enumerate(groups)),
            return_exceptions=True,
        )
        try:
            errors = await asyncio.shield(gathered)
        except asyncio.CancelledError:
            abandoned = True
            log.warning(
                "Write batch abandoned by caller; in-flight groups will complete "
                "and their outcomes are discarded",
                extra={"correlation_token": batch.correlation_token},
            )
            raise

        # Fatal call failures: first one in submission order wins
        for error in errors:
            if isinstance(error, BaseException):
                raise error

        results: List[List[Outcome]] = list(slots)
        for index, outcomes in enumerate(results):
            self._report(index, outcomes, batch.correlation_token)
        return results

    @staticmethod
    def _report(index: int, outcomes: List[Outcome], correlation_token) -> None:
        rejected = [o for o in outcomes if o.is_rejection]
        journal_records_written.labels(result="success").inc(len(outcomes) - len(rejected))
        if not rejected:
            return

        journal_records_written.labels(result="rejected").inc(len(rejected))
        for outcome in rejected:
            journal_rejections.labels(kind=outcome.cause.kind.value).inc()

        first = rejected[0]
        log.error(
            f"Rejected {len(rejected)} of {len(outcomes)} records in group #{index} "
            f"(stream {first.record.stream_id}, seq {first.record.sequence_nr}): {first.cause}",
            extra={"stream_id": first.record.stream_id, "correlation_token": correlation_token},
        )
