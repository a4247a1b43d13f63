# =============================================================================
# File: tests/test_group_writer.py
# Description: AtomicGroupWriter - single puts, transactions, batch mode
# =============================================================================

import pytest

from dynajournal.common.exceptions.exceptions import JournalError
from dynajournal.config.journal_config import AtomicWriteMode, create_testing_config
from dynajournal.journal.dynamodb_journal import DynamoDBJournal
from dynajournal.journal.item_codec import PUT_IF_ABSENT
from dynajournal.journal.model import AtomicGroup, Record, RejectionKind
from tests.conftest import TABLE

OVERSIZED = 400_001


def stored(fake, stream="order-1"):
    return fake.stored_sequence_nrs(TABLE, f"P-{stream}")


class TestValidation:

    @pytest.mark.asyncio
    async def test_single_oversized_record_is_oversized_item(self, journal, fake_dynamodb, make_record):
        record = make_record(1, size=OVERSIZED)

        outcomes = await journal.writer.write(AtomicGroup.of(record))

        assert len(outcomes) == 1
        assert outcomes[0].cause.kind == RejectionKind.OVERSIZED_ITEM
        assert "MaxItemSize exceeded" in outcomes[0].cause.description
        assert fake_dynamodb.get_all_calls() == []

    @pytest.mark.asyncio
    async def test_oversized_member_rejects_whole_group(self, journal, fake_dynamodb, make_record):
        group = AtomicGroup.of(make_record(1), make_record(2, size=OVERSIZED), make_record(3))

        outcomes = await journal.writer.write(group)

        assert [o.record.sequence_nr for o in outcomes] == [1, 2, 3]
        assert all(o.cause.kind == RejectionKind.GROUP_REJECTED_AS_WHOLE for o in outcomes)
        cause = outcomes[0].cause
        assert cause.description.startswith("AtomicWrite rejected as a whole: OversizedItem: MaxItemSize exceeded")
        assert cause.underlying.kind == RejectionKind.OVERSIZED_ITEM
        assert "num=2" in cause.description
        assert fake_dynamodb.get_all_calls() == []
        assert stored(fake_dynamodb) == []


class TestSingleRecord:

    @pytest.mark.asyncio
    async def test_single_record_is_conditional_put(self, journal, fake_dynamodb, make_record):
        outcomes = await journal.writer.write(AtomicGroup.of(make_record(1)))

        assert outcomes[0].is_success
        call = fake_dynamodb.get_calls("PutItem")[0]
        assert call.request.condition_expression == PUT_IF_ABSENT
        assert stored(fake_dynamodb) == [1]

    @pytest.mark.asyncio
    async def test_existing_sequence_nr_is_backend_rejected(self, journal, fake_dynamodb, make_record):
        await journal.writer.write(AtomicGroup.of(make_record(1)))

        outcomes = await journal.writer.write(AtomicGroup.of(make_record(1, size=99)))

        cause = outcomes[0].cause
        assert cause.kind == RejectionKind.BACKEND_REJECTED
        assert "ConditionalCheckFailedException: The conditional request failed" in cause.description
        assert len(fake_dynamodb.get_stored(TABLE, "P-order-1", 1)["pay"]["B"]) == 16

    @pytest.mark.asyncio
    async def test_throttled_put_is_retryable_rejection(self, journal, fake_dynamodb, make_record):
        fake_dynamodb.configure_failure("PutItem", "ProvisionedThroughputExceededException", "Rate exceeded", times=1)

        outcomes = await journal.writer.write(AtomicGroup.of(make_record(1)))

        assert outcomes[0].cause.kind == RejectionKind.THROTTLED
        assert outcomes[0].cause.retryable

    @pytest.mark.asyncio
    async def test_connectivity_loss_is_raised(self, journal, fake_dynamodb, make_record):
        fake_dynamodb.configure_fatal("PutItem", "connection reset")

        with pytest.raises(JournalError, match="connection reset"):
            await journal.writer.write(AtomicGroup.of(make_record(1)))


class TestTransactMode:

    @pytest.mark.asyncio
    async def test_group_is_one_transaction(self, journal, fake_dynamodb, make_record):
        group = AtomicGroup.of(*(make_record(i) for i in range(1, 5)))

        outcomes = await journal.writer.write(group)

        assert all(o.is_success for o in outcomes)
        assert fake_dynamodb.get_call_count("TransactWriteItems") == 1
        assert not fake_dynamodb.was_called("PutItem")
        assert stored(fake_dynamodb) == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_cancelled_transaction_rejects_every_member(self, journal, fake_dynamodb, make_record):
        await journal.writer.write(AtomicGroup.of(make_record(2)))

        outcomes = await journal.writer.write(AtomicGroup.of(make_record(1), make_record(2), make_record(3)))

        assert all(o.cause.kind == RejectionKind.GROUP_REJECTED_AS_WHOLE for o in outcomes)
        underlying = outcomes[0].cause.underlying
        assert underlying.kind == RejectionKind.BACKEND_REJECTED
        assert "ConditionalCheckFailed" in underlying.description
        assert "TransactWriteItems(table=journal-test" in underlying.description
        # Nothing of the group was applied
        assert stored(fake_dynamodb) == [2]

    @pytest.mark.asyncio
    async def test_throttled_transaction_stays_retryable(self, journal, fake_dynamodb, make_record):
        fake_dynamodb.configure_failure("TransactWriteItems", "ThrottlingException", "slow down", times=1)

        outcomes = await journal.writer.write(AtomicGroup.of(make_record(1), make_record(2)))

        assert all(o.cause.kind == RejectionKind.GROUP_REJECTED_AS_WHOLE for o in outcomes)
        assert outcomes[0].cause.retryable

    @pytest.mark.asyncio
    async def test_group_over_transaction_limit_is_rejected_before_dispatch(self, fake_dynamodb, make_record):
        config = create_testing_config(max_transact_items=3)
        journal = DynamoDBJournal(config, client=fake_dynamodb)

        outcomes = await journal.writer.write(AtomicGroup.of(*(make_record(i) for i in range(1, 5))))

        assert all(o.cause.kind == RejectionKind.GROUP_REJECTED_AS_WHOLE for o in outcomes)
        assert "TransactWriteItems limit of 3" in outcomes[0].cause.description
        assert "for TransactWriteItems(table=journal-test" in outcomes[0].cause.description
        assert fake_dynamodb.get_all_calls() == []


class TestBatchMode:

    @pytest.fixture
    def batch_journal(self, fake_dynamodb):
        config = create_testing_config(
            atomic_write_mode=AtomicWriteMode.BATCH,
            unprocessed_retry_attempts=3,
        )
        return DynamoDBJournal(config, client=fake_dynamodb)

    @pytest.mark.asyncio
    async def test_large_group_is_chunked(self, batch_journal, fake_dynamodb, make_record):
        group = AtomicGroup.of(*(make_record(i) for i in range(1, 31)))

        outcomes = await batch_journal.writer.write(group)

        assert [o.record.sequence_nr for o in outcomes] == list(range(1, 31))
        assert all(o.is_success for o in outcomes)
        sizes = sorted(
            len(c.request.request_items[0][1]) for c in fake_dynamodb.get_calls("BatchWriteItem")
        )
        assert sizes == [5, 25]
        assert stored(fake_dynamodb) == list(range(1, 31))

    @pytest.mark.asyncio
    async def test_unprocessed_items_are_resubmitted(self, batch_journal, fake_dynamodb, make_record):
        fake_dynamodb.configure_unprocessed(calls=1, count=2)

        outcomes = await batch_journal.writer.write(AtomicGroup.of(*(make_record(i) for i in range(1, 6))))

        assert all(o.is_success for o in outcomes)
        calls = fake_dynamodb.get_calls("BatchWriteItem")
        assert len(calls) == 2
        assert len(calls[1].request.request_items[0][1]) == 2
        assert stored(fake_dynamodb) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_persistently_unprocessed_items_are_throttled(self, batch_journal, fake_dynamodb, make_record):
        fake_dynamodb.configure_unprocessed(calls=100, count=2)

        outcomes = await batch_journal.writer.write(AtomicGroup.of(*(make_record(i) for i in range(1, 6))))

        assert [o.is_success for o in outcomes[:3]] == [True, True, True]
        # every retry leaves its last two writes unprocessed again
        assert all(o.cause.kind == RejectionKind.THROTTLED for o in outcomes[3:])
        assert "UnprocessedItems still pending after 4 attempts" in outcomes[3].cause.description
        assert fake_dynamodb.get_call_count("BatchWriteItem") == 4

    @pytest.mark.asyncio
    async def test_chunk_error_is_translated_for_its_records(self, batch_journal, fake_dynamodb, make_record):
        fake_dynamodb.configure_failure("BatchWriteItem", "RequestLimitExceeded", "account limit", times=1)

        outcomes = await batch_journal.writer.write(AtomicGroup.of(make_record(1), make_record(2)))

        assert all(o.cause.kind == RejectionKind.THROTTLED for o in outcomes)
        assert "BatchWriteItem(table=journal-test: put[par=P-order-1,num=1], put[par=P-order-1,num=2])" \
            in outcomes[0].cause.description

    @pytest.mark.asyncio
    async def test_existing_record_is_rejected_not_overwritten(self, batch_journal, fake_dynamodb, make_record):
        await batch_journal.writer.write(AtomicGroup.of(Record("order-1", 1, b"original")))

        outcomes = await batch_journal.writer.write(
            AtomicGroup.of(Record("order-1", 1, b"clobbered"), make_record(2))
        )

        assert outcomes[0].cause.kind == RejectionKind.BACKEND_REJECTED
        assert not outcomes[0].cause.retryable
        assert "Record [par=P-order-1,num=1] already exists" in outcomes[0].cause.description
        assert "BatchGetItem(table=journal-test: get[par=P-order-1,num=1], get[par=P-order-1,num=2])" \
            in outcomes[0].cause.description
        assert outcomes[1].is_success
        assert fake_dynamodb.get_stored(TABLE, "P-order-1", 1)["pay"] == {"B": b"original"}
        writes = fake_dynamodb.get_calls("BatchWriteItem")
        assert [len(c.request.request_items[0][1]) for c in writes] == [1]

    @pytest.mark.asyncio
    async def test_existence_lookups_are_chunked(self, fake_dynamodb, make_record):
        config = create_testing_config(atomic_write_mode=AtomicWriteMode.BATCH, max_batch_get_items=4)
        journal = DynamoDBJournal(config, client=fake_dynamodb)

        outcomes = await journal.writer.write(AtomicGroup.of(*(make_record(i) for i in range(1, 11))))

        assert all(o.is_success for o in outcomes)
        sizes = sorted(len(c.request.request_items[0][1]) for c in fake_dynamodb.get_calls("BatchGetItem"))
        assert sizes == [2, 4, 4]
        assert stored(fake_dynamodb) == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_failed_lookup_writes_nothing(self, batch_journal, fake_dynamodb, make_record):
        fake_dynamodb.configure_failure("BatchGetItem", "RequestLimitExceeded", "account limit", times=1)

        outcomes = await batch_journal.writer.write(AtomicGroup.of(make_record(1), make_record(2)))

        assert all(o.cause.kind == RejectionKind.THROTTLED for o in outcomes)
        assert "BatchGetItem(table=journal-test" in outcomes[0].cause.description
        assert not fake_dynamodb.was_called("BatchWriteItem")
        assert stored(fake_dynamodb) == []
