# =============================================================================
# File: tests/conftest.py
# Description: Shared fixtures - in-memory backend, test config, journal
# =============================================================================

import pytest

from dynajournal.config.journal_config import create_testing_config
from dynajournal.journal.dynamodb_journal import DynamoDBJournal
from dynajournal.journal.model import Record
from tests.fakes.fake_dynamodb_adapter import FakeDynamoDBAdapter

TABLE = "journal-test"


@pytest.fixture
def journal_config():
    return create_testing_config(unprocessed_retry_attempts=3)


@pytest.fixture
def fake_dynamodb():
    return FakeDynamoDBAdapter(tables=[TABLE])


@pytest.fixture
def journal(journal_config, fake_dynamodb):
    return DynamoDBJournal(journal_config, client=fake_dynamodb)


@pytest.fixture
def make_record():
    def _make(seq: int, stream: str = "order-1", size: int = 16, manifest: str = "OrderPlaced") -> Record:
        return Record(stream_id=stream, sequence_nr=seq, payload=b"x" * size, manifest=manifest)
    return _make
