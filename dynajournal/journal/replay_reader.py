# =============================================================================
# File: dynajournal/journal/replay_reader.py
# Description: Ordered, paginated replay of one stream
# =============================================================================

import logging
from typing import AsyncIterator, Optional

from dynajournal.common.exceptions.exceptions import BackendCallError, JournalError, ReplayError
from dynajournal.journal.describe import RequestDescriber
from dynajournal.journal.item_codec import ItemCodec, KEY, SORT
from dynajournal.journal.model import Record
from dynajournal.journal.ports.dynamodb_port import DynamoDBPort
from dynajournal.journal.requests import AttributeMap, QueryRequest
from dynajournal.infra.metrics.journal_metrics import journal_replay_pages, journal_replayed_records

log = logging.getLogger("dynajournal.journal.replay_reader")

RANGE_CONDITION = f"{KEY} = :kkey AND {SORT} BETWEEN :from AND :to"


class ReplayReader:
    """
    Streams a stream's records back in ascending sequence order.

    Pages are fetched strictly one after another, each continuing from the
    previous page's LastEvaluatedKey. The generator is not restartable: a
    fresh call re-scans from `from_seq`.
    """

    def __init__(
            self,
            client: DynamoDBPort,
            codec: ItemCodec,
            describer: RequestDescriber,
            table_name: str,
            page_size: int = 100,
    ):
        self.client = client
        self.codec = codec
        self.describer = describer
        self.table_name = table_name
        self.page_size = page_size

    def query_page(
            self,
            stream_id: str,
            from_seq: int,
            to_seq: int,
            limit: int,
            start_key: Optional[AttributeMap] = None,
    ) -> QueryRequest:
        return QueryRequest(
            table_name=self.table_name,
            key_condition_expression=RANGE_CONDITION,
            expression_attribute_values={
                ":kkey": {"S": self.codec.partition_key(stream_id)},
                ":from": {"N": str(from_seq)},
                ":to": {"N": str(to_seq)},
            },
            limit=limit,
            exclusive_start_key=start_key,
            consistent_read=True,
        )

    async def replay(
            self,
            stream_id: str,
            from_seq: int,
            to_seq: int,
            max_records: int,
    ) -> AsyncIterator[Record]:
        """
        Yield records with from_seq <= sequence_nr <= to_seq, at most max_records.

        Raises:
            ReplayError: a page could not be fetched or decoded; `delivered`
                tells how many records were already yielded
        """
        from_seq = max(from_seq, 1)
        if max_records <= 0 or from_seq > to_seq:
            return

        delivered = 0
        start_key: Optional[AttributeMap] = None

        while delivered < max_records:
            request = self.query_page(
                stream_id, from_seq, to_seq,
                limit=min(self.page_size, max_records - delivered),
                start_key=start_key,
            )
            try:
                response = await self.client.execute(request)
            except (BackendCallError, JournalError) as e:
                log.error(
                    f"Replay of {stream_id} failed after {delivered} records: {e}",
                    extra={"stream_id": stream_id, "table": self.table_name},
                )
                raise ReplayError(
                    f"Replay failed after {delivered} records for "
                    f"{self.describer.describe(request)}: {e}",
                    delivered=delivered,
                ) from e

            journal_replay_pages.inc()
            for item in response.get("Items", []):
                try:
                    record = self.codec.from_item(item)
                except ValueError as e:
                    raise ReplayError(
                        f"Undecodable item in {self.describer.describe(request)}: {e}",
                        delivered=delivered,
                    ) from e

                yield record
                delivered += 1
                journal_replayed_records.inc()
                if delivered >= max_records:
                    return

            start_key = response.get("LastEvaluatedKey")
            if not start_key:
                return
