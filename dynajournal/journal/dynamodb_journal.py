# =============================================================================
# File: dynajournal/journal/dynamodb_journal.py
# Description: DynamoDB event journal facade
# =============================================================================
# • start(): configuration dump + table existence check (fatal if missing)
# • write_messages(): atomic groups, per-record outcomes in submission order
# • replay_messages(): ordered replay with terminal success/failure markers
# • read_highest_sequence_nr() / delete_messages_to(): stream bookkeeping,
#   deletions recorded in a per-stream marker so numbers are never reused
# =============================================================================

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Union

from dynajournal.common.exceptions.exceptions import (
    BackendCallError,
    JournalError,
    ReplayError,
    TableMissingError,
)
from dynajournal.config.journal_config import DynamoDBJournalConfig, get_journal_config, validate_config
from dynajournal.config.logging_config import get_logger, log_error_box
from dynajournal.config.reliability_config import ReliabilityConfigs
from dynajournal.infra.dynamodb.client import DynamoDBClient
from dynajournal.infra.reliability.retry import backoff_delay_seconds
from dynajournal.journal.batch_coordinator import BatchCoordinator
from dynajournal.journal.describe import RequestDescriber
from dynajournal.journal.failure_translator import TABLE_MISSING_CODES, FailureTranslator
from dynajournal.journal.group_writer import AtomicGroupWriter
from dynajournal.journal.item_codec import HIGHEST_SEQUENCE_NR, KEY, SORT, ItemCodec
from dynajournal.journal.item_size import ItemSizeValidator
from dynajournal.journal.model import (
    Outcome,
    Record,
    RecoveryFailure,
    RecoverySuccess,
    RejectionKind,
    WriteBatch,
)
from dynajournal.journal.ports.dynamodb_port import DynamoDBPort
from dynajournal.journal.replay_reader import ReplayReader
from dynajournal.journal.requests import (
    AttributeMap,
    BatchWriteItemRequest,
    DeleteRequest,
    DescribeTableRequest,
    GetItemRequest,
    PutItemRequest,
    QueryRequest,
)

log = get_logger("dynajournal.journal")

RecordHandler = Callable[[Record], Any]


class DynamoDBJournal:
    """
    Event journal on a DynamoDB table.

    All components share one backend client handle, passed in explicitly.
    Rejections are returned as Outcomes; only failures outside the rejection
    taxonomy (connectivity, malformed responses, missing table at startup)
    are raised.
    """

    def __init__(
            self,
            config: Optional[DynamoDBJournalConfig] = None,
            client: Optional[DynamoDBPort] = None,
    ):
        self.config = config or get_journal_config()
        validate_config(self.config)

        self.describer = RequestDescriber()
        self.client = client or DynamoDBClient(self.config, self.describer)

        self.table_name = self.config.journal_table
        self.codec = ItemCodec(self.config.key_prefix)
        self.translator = FailureTranslator(self.describer)
        self.validator = ItemSizeValidator(
            codec=self.codec,
            describer=self.describer,
            table_name=self.table_name,
            max_item_size=self.config.max_item_size,
        )
        self.writer = AtomicGroupWriter(
            client=self.client,
            config=self.config,
            codec=self.codec,
            describer=self.describer,
            validator=self.validator,
            translator=self.translator,
        )
        self.coordinator = BatchCoordinator(self.writer, self.config.max_concurrent_groups)
        self.reader = ReplayReader(
            client=self.client,
            codec=self.codec,
            describer=self.describer,
            table_name=self.table_name,
            page_size=self.config.replay_page_size,
        )
        self._delete_retry = ReliabilityConfigs.unprocessed_items_retry(
            max_attempts=self.config.unprocessed_retry_attempts,
            initial_delay_ms=self.config.unprocessed_retry_initial_delay_ms,
        )
        self._started = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> Dict[str, Any]:
        """
        Verify the journal table exists.

        Returns:
            The DescribeTable `Table` description

        Raises:
            TableMissingError: The journal table does not exist (not retried)
            JournalError: The table could not be described
        """
        if self.config.log_config:
            log.info(f"DynamoDB journal configuration: {self.config.describe()}")

        request = DescribeTableRequest(table_name=self.table_name)
        try:
            response = await self.client.execute(request)
        except BackendCallError as e:
            if e.code in TABLE_MISSING_CODES:
                cause = self.translator.translate(e)
                log_error_box(
                    log,
                    f"Journal table '{self.table_name}' does not exist. {cause.description}",
                    RejectionKind.TABLE_MISSING.value,
                )
                raise TableMissingError(self.table_name, str(cause)) from e
            raise JournalError(f"Could not describe journal table '{self.table_name}': {e}") from e

        table = response.get("Table", {})
        self._started = True
        log.info(
            f"DynamoDB journal started (table={self.table_name}, "
            f"status={table.get('TableStatus', 'UNKNOWN')}, mode={self.config.atomic_write_mode.value})"
        )
        return table

    async def close(self) -> None:
        await self.client.close()
        self._started = False
        log.info("DynamoDB journal closed")

    async def __aenter__(self) -> "DynamoDBJournal":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def is_started(self) -> bool:
        return self._started

    # =========================================================================
    # Writes
    # =========================================================================

    async def write_messages(self, batch: WriteBatch) -> List[List[Outcome]]:
        """One outcome list per atomic group, in submission order."""
        return await self.coordinator.submit(batch)

    # =========================================================================
    # Replay
    # =========================================================================

    async def replay_messages(
            self,
            stream_id: str,
            from_seq: int,
            to_seq: int,
            max_records: int,
            on_record: RecordHandler,
    ) -> Union[RecoverySuccess, RecoveryFailure]:
        """
        Replay records in [from_seq, to_seq] to `on_record` (sync or async).

        Returns RecoverySuccess when the range is exhausted or max_records is
        reached, RecoveryFailure when the scan broke off. Records handed to
        `on_record` before a failure stand.
        """
        count = 0
        highest = 0
        try:
            async for record in self.reader.replay(stream_id, from_seq, to_seq, max_records):
                result = on_record(record)
                if inspect.isawaitable(result):
                    await result
                count += 1
                highest = record.sequence_nr
        except ReplayError as e:
            log.warning(
                f"Replay of {stream_id} [{from_seq}, {to_seq}] ended with failure "
                f"after {e.delivered} records",
                extra={"stream_id": stream_id},
            )
            return RecoveryFailure(cause=e, delivered=e.delivered)

        log.debug(f"Replayed {count} records of {stream_id} [{from_seq}, {to_seq}]")
        return RecoverySuccess(count=count, highest_sequence_nr=highest)

    # =========================================================================
    # Stream bookkeeping
    # =========================================================================

    async def read_highest_sequence_nr(self, stream_id: str, from_seq: int = 0) -> int:
        """Highest sequence number ever stored for the stream, deleted records included."""
        request = QueryRequest(
            table_name=self.table_name,
            key_condition_expression=f"{KEY} = :kkey AND {SORT} >= :from",
            expression_attribute_values={
                ":kkey": {"S": self.codec.partition_key(stream_id)},
                ":from": {"N": str(max(from_seq, 0))},
            },
            limit=1,
            scan_index_forward=False,
            projection_expression=f"{KEY}, {SORT}",
        )
        response = await self._execute(request)
        items = response.get("Items", [])
        highest = ItemCodec.sequence_nr_of(items[0]) if items else 0

        return max(highest, await self._read_deleted_marker(stream_id))

    async def delete_messages_to(self, stream_id: str, to_seq: int) -> int:
        """
        Delete the stream's records with sequence_nr <= to_seq.

        The highest deleted sequence number is recorded in the stream's marker
        item before any record is removed.

        Returns:
            Number of records deleted
        """
        if to_seq < 1:
            return 0

        highest_deleted = await self._highest_up_to(stream_id, to_seq)
        if not highest_deleted:
            return 0

        current = await self._read_deleted_marker(stream_id)
        if highest_deleted > current:
            await self._execute(PutItemRequest(
                table_name=self.table_name,
                item=self.codec.marker_item(stream_id, highest_deleted),
            ))

        # One page of keys in memory at a time
        deleted = 0
        size = self.config.max_batch_write_items
        start_key = None
        while True:
            response = await self._execute(self._keys_page(stream_id, to_seq, start_key))
            keys = [{KEY: item[KEY], SORT: item[SORT]} for item in response.get("Items", [])]
            chunks = [keys[i:i + size] for i in range(0, len(keys), size)]
            await asyncio.gather(*(self._delete_chunk(chunk) for chunk in chunks))
            deleted += len(keys)

            start_key = response.get("LastEvaluatedKey")
            if not start_key:
                break

        log.info(
            f"Deleted {deleted} records of {stream_id} up to {to_seq}",
            extra={"stream_id": stream_id, "table": self.table_name},
        )
        return deleted

    async def _read_deleted_marker(self, stream_id: str) -> int:
        response = await self._execute(GetItemRequest(
            table_name=self.table_name,
            key=self.codec.marker_key(stream_id),
        ))
        item = response.get("Item")
        if not item or HIGHEST_SEQUENCE_NR not in item:
            return 0
        return int(item[HIGHEST_SEQUENCE_NR]["N"])

    def _keys_page(
            self,
            stream_id: str,
            to_seq: int,
            start_key: Optional[AttributeMap] = None,
            limit: Optional[int] = None,
            ascending: bool = True,
    ) -> QueryRequest:
        return QueryRequest(
            table_name=self.table_name,
            key_condition_expression=f"{KEY} = :kkey AND {SORT} BETWEEN :from AND :to",
            expression_attribute_values={
                ":kkey": {"S": self.codec.partition_key(stream_id)},
                ":from": {"N": "1"},
                ":to": {"N": str(to_seq)},
            },
            limit=limit or self.config.replay_page_size,
            exclusive_start_key=start_key,
            scan_index_forward=ascending,
            projection_expression=f"{KEY}, {SORT}",
        )

    async def _highest_up_to(self, stream_id: str, to_seq: int) -> int:
        response = await self._execute(self._keys_page(stream_id, to_seq, limit=1, ascending=False))
        items = response.get("Items", [])
        return ItemCodec.sequence_nr_of(items[0]) if items else 0

    async def _delete_chunk(self, keys: List[AttributeMap]) -> None:
        pending = list(keys)
        attempts = self.config.unprocessed_retry_attempts
        for attempt in range(attempts + 1):
            request = BatchWriteItemRequest.for_table(
                self.table_name, [DeleteRequest(key=k) for k in pending]
            )
            response = await self._execute(request)
            pending = [
                entry["DeleteRequest"]["Key"]
                for entry in response.get("UnprocessedItems", {}).get(self.table_name, [])
                if "DeleteRequest" in entry
            ]
            if not pending:
                return
            if attempt < attempts:
                await asyncio.sleep(backoff_delay_seconds(self._delete_retry, attempt + 1))

        raise JournalError(
            f"{len(pending)} deletes still unprocessed after {attempts + 1} attempts "
            f"for {self.describer.describe(request)}"
        )

    async def _execute(self, request) -> Dict[str, Any]:
        """Bookkeeping calls have no rejection outcome: backend errors are fatal here."""
        try:
            return await self.client.execute(request)
        except BackendCallError as e:
            raise JournalError(str(self.translator.translate(e))) from e
