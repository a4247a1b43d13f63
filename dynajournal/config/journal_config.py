# =============================================================================
# File: dynajournal/config/journal_config.py
# Description: Configuration for the DynamoDB journal with Pydantic v2
# =============================================================================

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import SettingsConfigDict

from dynajournal.common.base.base_config import BaseConfig, BASE_CONFIG_DICT

# DynamoDB service limits
DYNAMODB_MAX_BATCH_WRITE_ITEMS = 25
DYNAMODB_MAX_BATCH_GET_ITEMS = 100
DYNAMODB_MAX_TRANSACT_ITEMS = 100
DEFAULT_MAX_ITEM_SIZE = 400000


class AtomicWriteMode(str, Enum):
    """How multi-record atomic groups are submitted"""
    TRANSACT = "transact"  # TransactWriteItems, all-or-nothing at the backend
    BATCH = "batch"  # BatchWriteItem chunks, per-item confirmation only


# noinspection PyMethodParameters
class DynamoDBJournalConfig(BaseConfig):
    """
    Configuration for the DynamoDB journal.

    This configuration controls:
    - Endpoint, region and credentials
    - Table layout (table name, key prefix)
    - Backend limits used by pre-flight validation and batching
    - Write/replay tuning
    - Diagnostic logging flags
    """

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix="DYNAMODB_JOURNAL_",
    )

    # =========================================================================
    # Connection Settings
    # =========================================================================

    endpoint: Optional[str] = Field(
        default=None,
        description="DynamoDB endpoint URL (None = AWS default for region)"
    )

    region: str = Field(
        default="us-east-1",
        description="AWS region"
    )

    aws_access_key_id: Optional[SecretStr] = Field(
        default=None,
        description="AWS access key id (None = default credential chain)"
    )

    aws_secret_access_key: Optional[SecretStr] = Field(
        default=None,
        description="AWS secret access key"
    )

    connect_timeout: float = Field(default=5.0, description="Connection timeout (seconds)")
    read_timeout: float = Field(default=30.0, description="Read timeout (seconds)")
    max_pool_connections: int = Field(default=50, description="Max HTTP connection pool size")

    # =========================================================================
    # Table Layout
    # =========================================================================

    journal_table: str = Field(
        default="journal",
        description="Journal table name"
    )

    key_prefix: str = Field(
        default="",
        description="Prefix for partition keys (allows several journals per table)"
    )

    # =========================================================================
    # Backend Limits
    # =========================================================================

    max_item_size: int = Field(
        default=DEFAULT_MAX_ITEM_SIZE,
        description="Maximum serialized item size in bytes"
    )

    max_batch_write_items: int = Field(
        default=DYNAMODB_MAX_BATCH_WRITE_ITEMS,
        description="Items per BatchWriteItem call"
    )

    max_batch_get_items: int = Field(
        default=DYNAMODB_MAX_BATCH_GET_ITEMS,
        description="Keys per BatchGetItem call"
    )

    max_transact_items: int = Field(
        default=DYNAMODB_MAX_TRANSACT_ITEMS,
        description="Items per TransactWriteItems call"
    )

    # =========================================================================
    # Write / Replay Tuning
    # =========================================================================

    atomic_write_mode: AtomicWriteMode = Field(
        default=AtomicWriteMode.TRANSACT,
        description="How multi-record groups are written"
    )

    max_concurrent_groups: int = Field(
        default=16,
        description="Atomic groups dispatched concurrently per batch"
    )

    replay_page_size: int = Field(
        default=100,
        description="Items requested per Query page during replay"
    )

    unprocessed_retry_attempts: int = Field(
        default=5,
        description="Re-submissions of BatchWriteItem UnprocessedItems"
    )

    unprocessed_retry_initial_delay_ms: int = Field(
        default=50,
        description="Initial backoff before re-submitting unprocessed items"
    )

    # =========================================================================
    # Diagnostics
    # =========================================================================

    log_config: bool = Field(
        default=False,
        description="Log effective configuration at startup"
    )

    log_calls: bool = Field(
        default=False,
        description="Log every outbound backend call description (DEBUG)"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("journal_table")
    def validate_journal_table(cls, v):
        """DynamoDB table names are 3-255 characters"""
        if not (3 <= len(v) <= 255):
            raise ValueError("journal_table must be between 3 and 255 characters")
        return v

    @field_validator("max_item_size")
    def validate_max_item_size(cls, v):
        if v < 1:
            raise ValueError("max_item_size must be positive")
        return v

    @field_validator("max_batch_write_items")
    def validate_max_batch_write_items(cls, v):
        if not (1 <= v <= DYNAMODB_MAX_BATCH_WRITE_ITEMS):
            raise ValueError(f"max_batch_write_items must be between 1 and {DYNAMODB_MAX_BATCH_WRITE_ITEMS}")
        return v

    @field_validator("max_batch_get_items")
    def validate_max_batch_get_items(cls, v):
        if not (1 <= v <= DYNAMODB_MAX_BATCH_GET_ITEMS):
            raise ValueError(f"max_batch_get_items must be between 1 and {DYNAMODB_MAX_BATCH_GET_ITEMS}")
        return v

    @field_validator("max_transact_items")
    def validate_max_transact_items(cls, v):
        if not (1 <= v <= DYNAMODB_MAX_TRANSACT_ITEMS):
            raise ValueError(f"max_transact_items must be between 1 and {DYNAMODB_MAX_TRANSACT_ITEMS}")
        return v

    @field_validator("max_concurrent_groups", "replay_page_size")
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def get_client_kwargs(self) -> dict:
        """Keyword arguments for aioboto3 Session.client('dynamodb', ...)"""
        kwargs = {"region_name": self.region}
        if self.endpoint:
            kwargs["endpoint_url"] = self.endpoint
        if self.aws_access_key_id and self.aws_secret_access_key:
            kwargs["aws_access_key_id"] = self.aws_access_key_id.get_secret_value()
            kwargs["aws_secret_access_key"] = self.aws_secret_access_key.get_secret_value()
        return kwargs


# =============================================================================
# Validation Functions
# =============================================================================

def validate_config(config: DynamoDBJournalConfig) -> None:
    """
    Validate journal configuration for cross-field issues.

    Raises:
        ValueError: If configuration is invalid
    """
    if bool(config.aws_access_key_id) != bool(config.aws_secret_access_key):
        raise ValueError("aws_access_key_id and aws_secret_access_key must be set together")

    if config.unprocessed_retry_attempts < 0:
        raise ValueError("unprocessed_retry_attempts cannot be negative")

    if config.unprocessed_retry_initial_delay_ms < 0:
        raise ValueError("unprocessed_retry_initial_delay_ms cannot be negative")


# =============================================================================
# Factory Functions
# =============================================================================

@lru_cache(maxsize=1)
def get_journal_config() -> DynamoDBJournalConfig:
    """Get journal configuration singleton (cached)."""
    return DynamoDBJournalConfig()


def reset_journal_config() -> None:
    """Reset config singleton (for testing)."""
    get_journal_config.cache_clear()


def create_testing_config(**overrides) -> DynamoDBJournalConfig:
    """Create testing-optimized configuration (local endpoint, no backoff waits)"""
    values = dict(
        endpoint="http://localhost:8000",
        journal_table="journal-test",
        unprocessed_retry_initial_delay_ms=0,
    )
    values.update(overrides)
    return DynamoDBJournalConfig(**values)
