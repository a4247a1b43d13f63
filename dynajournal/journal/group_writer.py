# =============================================================================
# File: dynajournal/journal/group_writer.py
# Description: Writes one atomic group, all-or-nothing from the caller's view
# =============================================================================

import asyncio
import logging
from typing import Dict, List, Sequence, Tuple

from dynajournal.common.exceptions.exceptions import BackendCallError
from dynajournal.config.journal_config import AtomicWriteMode, DynamoDBJournalConfig
from dynajournal.config.reliability_config import ReliabilityConfigs
from dynajournal.infra.reliability.retry import backoff_delay_seconds
from dynajournal.journal.describe import RequestDescriber
from dynajournal.journal.failure_translator import FailureTranslator, first_cause
from dynajournal.journal.item_codec import ItemCodec, KEY, SORT, PUT_IF_ABSENT
from dynajournal.journal.item_size import ItemSizeValidator
from dynajournal.journal.model import AtomicGroup, Outcome, Record, RejectionCause, RejectionKind
from dynajournal.journal.ports.dynamodb_port import DynamoDBPort
from dynajournal.journal.requests import (
    BatchGetItemRequest,
    BatchWriteItemRequest,
    PutItemRequest,
    PutRequest,
    TransactWriteItemsRequest,
)

log = logging.getLogger("dynajournal.journal.group_writer")

ATOMIC_WRITE_REJECTED = "AtomicWrite rejected as a whole"


def _item_key(item: dict) -> Tuple[str, str]:
    return item[KEY]["S"], item[SORT]["N"]


class AtomicGroupWriter:
    """
    Writes one AtomicGroup and returns one Outcome per record, in input order.

    Every member is size-checked before anything is sent. Single records go
    out as one conditional PutItem; larger groups as one TransactWriteItems
    (TRANSACT mode) or as concurrent BatchWriteItem chunks (BATCH mode, where
    the backend confirms items individually). BATCH mode looks the group's
    keys up with BatchGetItem first and rejects records that already exist.
    """

    def __init__(
            self,
            client: DynamoDBPort,
            config: DynamoDBJournalConfig,
            codec: ItemCodec,
            describer: RequestDescriber,
            validator: ItemSizeValidator,
            translator: FailureTranslator,
    ):
        self.client = client
        self.config = config
        self.codec = codec
        self.describer = describer
        self.validator = validator
        self.translator = translator
        self.table_name = config.journal_table
        self._unprocessed_retry = ReliabilityConfigs.unprocessed_items_retry(
            max_attempts=config.unprocessed_retry_attempts,
            initial_delay_ms=config.unprocessed_retry_initial_delay_ms,
        )

    async def write(self, group: AtomicGroup) -> List[Outcome]:
        records = group.records

        # Size validation completes before any write of this group begins
        oversized = first_cause([self.validator.check(r) for r in records])
        if oversized is not None:
            if len(records) == 1:
                return [Outcome.rejection(records[0], oversized)]
            return self._reject_as_whole(records, oversized)

        if len(records) == 1:
            return [await self._put_single(records[0])]

        if self.config.atomic_write_mode == AtomicWriteMode.TRANSACT:
            return await self._write_transaction(records)
        return await self._write_batch(records)

    # =========================================================================
    # Single record
    # =========================================================================

    async def _put_single(self, record: Record) -> Outcome:
        request = PutItemRequest(
            table_name=self.table_name,
            item=self.codec.to_item(record),
            condition_expression=PUT_IF_ABSENT,
        )
        try:
            await self.client.execute(request)
        except BackendCallError as e:
            return Outcome.rejection(record, self.translator.translate(e))
        return Outcome.success(record)

    # =========================================================================
    # TRANSACT mode
    # =========================================================================

    async def _write_transaction(self, records: Sequence[Record]) -> List[Outcome]:
        request = TransactWriteItemsRequest(
            table_name=self.table_name,
            writes=tuple(
                PutRequest(item=self.codec.to_item(r), condition_expression=PUT_IF_ABSENT)
                for r in records
            ),
        )
        if len(records) > self.config.max_transact_items:
            return self._reject_as_whole(records, RejectionCause(
                kind=RejectionKind.BACKEND_REJECTED,
                description=(
                    f"group of {len(records)} records exceeds the "
                    f"TransactWriteItems limit of {self.config.max_transact_items} "
                    f"for {self.describer.describe(request)}"
                ),
            ))

        try:
            await self.client.execute(request)
        except BackendCallError as e:
            underlying = None
            if e.code == "TransactionCanceledException":
                underlying = first_cause(self.translator.translate_cancellation_reasons(e))
            return self._reject_as_whole(records, underlying or self.translator.translate(e))

        return [Outcome.success(r) for r in records]

    # =========================================================================
    # BATCH mode
    # =========================================================================

    async def _write_batch(self, records: Sequence[Record]) -> List[Outcome]:
        # BatchWriteItem puts take no condition: existing keys are looked up first
        outcomes = await self._reject_existing(records)
        remaining = [i for i in range(len(records)) if i not in outcomes]

        size = self.config.max_batch_write_items
        chunks = [remaining[i:i + size] for i in range(0, len(remaining), size)]

        # All chunks resolve before the group's outcomes are emitted
        results = await asyncio.gather(
            *(self._write_chunk([records[i] for i in chunk]) for chunk in chunks)
        )
        for chunk, chunk_outcomes in zip(chunks, results):
            outcomes.update(zip(chunk, chunk_outcomes))
        return [outcomes[i] for i in range(len(records))]

    async def _reject_existing(self, records: Sequence[Record]) -> Dict[int, Outcome]:
        """Rejections for records whose key is already stored, by position in the group."""
        size = self.config.max_batch_get_items
        positions = list(range(len(records)))
        chunks = [positions[i:i + size] for i in range(0, len(positions), size)]

        results = await asyncio.gather(*(self._lookup_chunk(records, chunk) for chunk in chunks))
        rejected: Dict[int, Outcome] = {}
        for chunk_rejected in results:
            rejected.update(chunk_rejected)
        return rejected

    async def _lookup_chunk(self, records: Sequence[Record], positions: List[int]) -> Dict[int, Outcome]:
        pending = {i: self.codec.key(records[i].stream_id, records[i].sequence_nr) for i in positions}
        rejected: Dict[int, Outcome] = {}
        attempts = self.config.unprocessed_retry_attempts

        request = None
        for attempt in range(attempts + 1):
            request = BatchGetItemRequest.for_table(
                self.table_name, list(pending.values()), projection_expression=f"{KEY}, {SORT}"
            )
            try:
                response = await self.client.execute(request)
            except BackendCallError as e:
                cause = self.translator.translate(e)
                for i in pending:
                    rejected[i] = Outcome.rejection(records[i], cause)
                return rejected

            found = {_item_key(item) for item in response.get("Responses", {}).get(self.table_name, [])}
            unprocessed = {
                _item_key(key)
                for key in response.get("UnprocessedKeys", {}).get(self.table_name, {}).get("Keys", [])
            }
            for i in list(pending):
                key = pending[i]
                if _item_key(key) in found:
                    rejected[i] = Outcome.rejection(records[i], RejectionCause(
                        kind=RejectionKind.BACKEND_REJECTED,
                        description=(
                            f"Record [{self.describer.render_key(key)}] already exists "
                            f"for {self.describer.describe(request)}"
                        ),
                    ))
                    del pending[i]
                elif _item_key(key) not in unprocessed:
                    del pending[i]

            if not pending:
                return rejected

            if attempt < attempts:
                await asyncio.sleep(backoff_delay_seconds(self._unprocessed_retry, attempt + 1))

        cause = RejectionCause(
            kind=RejectionKind.THROTTLED,
            description=(
                f"UnprocessedKeys still pending after {attempts + 1} attempts "
                f"for {self.describer.describe(request)}"
            ),
        )
        for i in pending:
            rejected[i] = Outcome.rejection(records[i], cause)
        return rejected

    async def _write_chunk(self, records: Sequence[Record]) -> List[Outcome]:
        items = [self.codec.to_item(r) for r in records]
        outcomes: Dict[int, Outcome] = {}
        pending = dict(enumerate(records))
        attempts = self.config.unprocessed_retry_attempts

        request = None
        for attempt in range(attempts + 1):
            request = BatchWriteItemRequest.for_table(
                self.table_name, [PutRequest(item=items[i]) for i in pending]
            )
            try:
                response = await self.client.execute(request)
            except BackendCallError as e:
                cause = self.translator.translate(e)
                for i in pending:
                    outcomes[i] = Outcome.rejection(records[i], cause)
                pending = {}
                break

            unprocessed = {
                _item_key(entry["PutRequest"]["Item"])
                for entry in response.get("UnprocessedItems", {}).get(self.table_name, [])
                if "PutRequest" in entry
            }
            for i in list(pending):
                if _item_key(items[i]) not in unprocessed:
                    outcomes[i] = Outcome.success(records[i])
                    del pending[i]

            if not pending:
                break

            if attempt < attempts:
                delay = backoff_delay_seconds(self._unprocessed_retry, attempt + 1)
                log.debug(f"{len(pending)} unprocessed items, re-submitting in {delay:.3f}s")
                await asyncio.sleep(delay)

        if pending:
            cause = RejectionCause(
                kind=RejectionKind.THROTTLED,
                description=(
                    f"UnprocessedItems still pending after {attempts + 1} attempts "
                    f"for {self.describer.describe(request)}"
                ),
            )
            for i in pending:
                outcomes[i] = Outcome.rejection(records[i], cause)

        return [outcomes[i] for i in range(len(records))]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _reject_as_whole(records: Sequence[Record], underlying: RejectionCause) -> List[Outcome]:
        cause = RejectionCause(
            kind=RejectionKind.GROUP_REJECTED_AS_WHOLE,
            description=f"{ATOMIC_WRITE_REJECTED}: {underlying}",
            underlying=underlying,
        )
        return [Outcome.rejection(r, cause) for r in records]
