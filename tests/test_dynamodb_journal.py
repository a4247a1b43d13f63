# =============================================================================
# File: tests/test_dynamodb_journal.py
# Description: Journal facade - end-to-end failure reporting, lifecycle,
#              replay markers and stream bookkeeping
# =============================================================================

import logging

import pytest

from dynajournal.common.exceptions.exceptions import JournalError, ReplayError, TableMissingError
from dynajournal.config.journal_config import create_testing_config
from dynajournal.journal.dynamodb_journal import DynamoDBJournal
from dynajournal.journal.model import (
    AtomicGroup,
    Record,
    RecoveryFailure,
    RecoverySuccess,
    RejectionKind,
    WriteBatch,
)
from tests.conftest import TABLE
from tests.fakes.fake_dynamodb_adapter import FakeDynamoDBAdapter

OVERSIZED = 400_001


def event(seq: int, size: int = 32) -> Record:
    return Record(stream_id="persistence-1", sequence_nr=seq, payload=b"e" * size, manifest="Evt")


class TestFailureReporting:

    @pytest.mark.asyncio
    async def test_rejected_writes_never_replay(self, journal):
        a, b, c, d, e, f = event(1), event(2, OVERSIZED), event(3), event(4), event(5, OVERSIZED), event(6)
        batch = WriteBatch([
            AtomicGroup.of(a),
            AtomicGroup.of(b),
            AtomicGroup.of(c),
            AtomicGroup.of(d, e),
            AtomicGroup.of(f),
        ])

        results = await journal.write_messages(batch)

        outcomes = [o for group in results for o in group]
        assert [o.record for o in outcomes] == [a, b, c, d, e, f]
        assert outcomes[0].is_success
        assert outcomes[1].cause.kind == RejectionKind.OVERSIZED_ITEM
        assert outcomes[2].is_success
        assert outcomes[3].cause.kind == RejectionKind.GROUP_REJECTED_AS_WHOLE
        assert outcomes[4].cause.kind == RejectionKind.GROUP_REJECTED_AS_WHOLE
        assert outcomes[5].is_success
        assert "AtomicWrite rejected as a whole" in outcomes[3].cause.description
        assert "MaxItemSize exceeded" in outcomes[1].cause.description

        replayed = []
        marker = await journal.replay_messages("persistence-1", 1, 10, 100, replayed.append)

        assert replayed == [a, c, f]
        assert marker == RecoverySuccess(count=3, highest_sequence_nr=6)

    @pytest.mark.asyncio
    async def test_replay_yields_exactly_successful_records(self, journal):
        groups = [AtomicGroup.of(event(i), event(i + 1)) for i in range(1, 20, 2)]
        groups[3] = AtomicGroup.of(event(7), event(8, OVERSIZED))
        results = await journal.write_messages(WriteBatch(groups))
        succeeded = [o.record for group in results for o in group if o.is_success]

        replayed = []
        await journal.replay_messages("persistence-1", 1, 100, 1000, replayed.append)

        assert replayed == succeeded
        assert [r.sequence_nr for r in replayed] == [1, 2, 3, 4, 5, 6] + list(range(9, 21))


class TestStartup:

    @pytest.mark.asyncio
    async def test_missing_table_is_fatal_and_logged(self, caplog):
        fake = FakeDynamoDBAdapter(tables=[])
        journal = DynamoDBJournal(create_testing_config(), client=fake)

        with caplog.at_level(logging.ERROR, logger="dynajournal.journal"):
            with pytest.raises(TableMissingError) as exc_info:
                await journal.start()

        assert exc_info.value.table == "journal-test"
        assert "TableMissing" in str(exc_info.value)
        assert fake.get_call_count("DescribeTable") == 1
        errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
        assert any("journal-test" in m and "TableMissing" in m for m in errors)
        assert not journal.is_started

        fake.create_table("journal-test")
        await journal.start()
        assert journal.is_started

    @pytest.mark.asyncio
    async def test_other_describe_errors_are_journal_errors(self, fake_dynamodb):
        fake_dynamodb.configure_failure("DescribeTable", "AccessDeniedException", "not authorized")
        journal = DynamoDBJournal(create_testing_config(), client=fake_dynamodb)

        with pytest.raises(JournalError, match="not authorized"):
            await journal.start()

    @pytest.mark.asyncio
    async def test_log_config_dumps_masked_configuration(self, fake_dynamodb, caplog):
        config = create_testing_config(
            log_config=True,
            aws_access_key_id="AKIDEXAMPLE",
            aws_secret_access_key="very-secret",
        )
        journal = DynamoDBJournal(config, client=fake_dynamodb)

        with caplog.at_level(logging.INFO, logger="dynajournal.journal"):
            table = await journal.start()

        assert table["TableStatus"] == "ACTIVE"
        assert journal.is_started
        text = "\n".join(r.getMessage() for r in caplog.records)
        assert "journal_table:journal-test" in text
        assert "atomic_write_mode:transact" in text
        assert "very-secret" not in text
        assert "AKIDEXAMPLE" not in text

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self, fake_dynamodb):
        async with DynamoDBJournal(create_testing_config(), client=fake_dynamodb) as journal:
            assert journal.is_started
        assert fake_dynamodb.closed


class TestReplayMarkers:

    @pytest.mark.asyncio
    async def test_failure_marker_after_partial_delivery(self, fake_dynamodb):
        journal = DynamoDBJournal(create_testing_config(replay_page_size=2), client=fake_dynamodb)
        await journal.write_messages(WriteBatch([AtomicGroup.of(event(i)) for i in range(1, 6)]))
        fake_dynamodb.configure_fatal("Query", "connection lost", times=1, after=1)

        replayed = []
        marker = await journal.replay_messages("persistence-1", 1, 10, 10, replayed.append)

        assert [r.sequence_nr for r in replayed] == [1, 2]
        assert isinstance(marker, RecoveryFailure)
        assert marker.delivered == 2
        assert isinstance(marker.cause, ReplayError)

    @pytest.mark.asyncio
    async def test_async_handler_and_max(self, journal):
        await journal.write_messages(WriteBatch([AtomicGroup.of(event(i)) for i in range(1, 6)]))
        seen = []

        async def handler(record):
            seen.append(record.sequence_nr)

        marker = await journal.replay_messages("persistence-1", 2, 10, 3, handler)

        assert seen == [2, 3, 4]
        assert marker == RecoverySuccess(count=3, highest_sequence_nr=4)

    @pytest.mark.asyncio
    async def test_empty_replay(self, journal):
        marker = await journal.replay_messages("persistence-1", 1, 10, 10, lambda r: None)
        assert marker == RecoverySuccess(count=0, highest_sequence_nr=0)

    @pytest.mark.asyncio
    async def test_zero_range_succeeds_without_query(self, journal, fake_dynamodb):
        await journal.write_messages(WriteBatch([AtomicGroup.of(event(1))]))

        marker = await journal.replay_messages("persistence-1", 0, 0, 10, lambda r: None)

        assert marker == RecoverySuccess(count=0, highest_sequence_nr=0)
        assert not fake_dynamodb.was_called("Query")


class TestStreamBookkeeping:

    @pytest.mark.asyncio
    async def test_highest_sequence_nr(self, journal, fake_dynamodb):
        assert await journal.read_highest_sequence_nr("persistence-1") == 0

        await journal.write_messages(WriteBatch([AtomicGroup.of(event(1), event(2), event(3))]))

        assert await journal.read_highest_sequence_nr("persistence-1") == 3
        query = fake_dynamodb.get_calls("Query")[-1].request
        assert query.limit == 1
        assert query.scan_index_forward is False

    @pytest.mark.asyncio
    async def test_delete_keeps_highest_sequence_nr(self, journal, fake_dynamodb):
        await journal.write_messages(WriteBatch([AtomicGroup.of(event(i)) for i in range(1, 31)]))

        deleted = await journal.delete_messages_to("persistence-1", 30)

        assert deleted == 30
        assert fake_dynamodb.stored_sequence_nrs(TABLE, "P-persistence-1") == []
        marker = fake_dynamodb.get_stored(TABLE, "S-persistence-1", 0)
        assert marker["hsn"] == {"N": "30"}
        assert await journal.read_highest_sequence_nr("persistence-1") == 30
        sizes = sorted(len(c.request.request_items[0][1]) for c in fake_dynamodb.get_calls("BatchWriteItem"))
        assert sizes == [5, 25]

    @pytest.mark.asyncio
    async def test_delete_works_page_by_page(self, fake_dynamodb):
        journal = DynamoDBJournal(create_testing_config(replay_page_size=4), client=fake_dynamodb)
        await journal.write_messages(WriteBatch([AtomicGroup.of(event(i)) for i in range(1, 11)]))
        fake_dynamodb.clear_calls()

        assert await journal.delete_messages_to("persistence-1", 10) == 10

        calls = [c.method for c in fake_dynamodb.get_all_calls()]
        assert calls.count("PutItem") == 1
        assert calls.index("PutItem") < calls.index("BatchWriteItem")
        assert calls == ["Query", "GetItem", "PutItem",
                         "Query", "BatchWriteItem", "Query", "BatchWriteItem", "Query", "BatchWriteItem"]
        sizes = [len(c.request.request_items[0][1]) for c in fake_dynamodb.get_calls("BatchWriteItem")]
        assert sizes == [4, 4, 2]
        assert fake_dynamodb.get_stored(TABLE, "S-persistence-1", 0)["hsn"] == {"N": "10"}
        assert fake_dynamodb.stored_sequence_nrs(TABLE, "P-persistence-1") == []

    @pytest.mark.asyncio
    async def test_partial_delete_then_replay(self, journal):
        await journal.write_messages(WriteBatch([AtomicGroup.of(event(i)) for i in range(1, 6)]))

        assert await journal.delete_messages_to("persistence-1", 3) == 3

        replayed = []
        await journal.replay_messages("persistence-1", 1, 10, 10, replayed.append)
        assert [r.sequence_nr for r in replayed] == [4, 5]
        assert await journal.read_highest_sequence_nr("persistence-1") == 5

    @pytest.mark.asyncio
    async def test_delete_retries_unprocessed_items(self, journal, fake_dynamodb):
        await journal.write_messages(WriteBatch([AtomicGroup.of(event(i)) for i in range(1, 5)]))
        fake_dynamodb.configure_unprocessed(calls=2, count=1)

        assert await journal.delete_messages_to("persistence-1", 10) == 4

        assert fake_dynamodb.stored_sequence_nrs(TABLE, "P-persistence-1") == []
        assert fake_dynamodb.get_call_count("BatchWriteItem") == 3

    @pytest.mark.asyncio
    async def test_delete_of_nothing_is_a_no_op(self, journal, fake_dynamodb):
        assert await journal.delete_messages_to("persistence-1", 0) == 0
        assert await journal.delete_messages_to("persistence-1", 10) == 0
        assert not fake_dynamodb.was_called("PutItem")

    @pytest.mark.asyncio
    async def test_bookkeeping_errors_are_fatal(self, journal, fake_dynamodb):
        fake_dynamodb.configure_failure("GetItem", "ResourceNotFoundException", "Requested resource not found")

        with pytest.raises(JournalError, match="TableMissing"):
            await journal.read_highest_sequence_nr("persistence-1")
