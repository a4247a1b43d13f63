# =============================================================================
# File: dynajournal/journal/model.py
# Description: Journal data model - records, atomic groups, batches, outcomes
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Record:
    """One persisted event. (stream_id, sequence_nr) is unique and immutable once written."""
    stream_id: str
    sequence_nr: int
    payload: bytes
    manifest: str = ""
    writer_uuid: str = ""

    def __post_init__(self):
        if not self.stream_id:
            raise ValueError("stream_id must not be empty")
        if self.sequence_nr < 1:
            raise ValueError(f"sequence_nr must be >= 1, got {self.sequence_nr}")


@dataclass(frozen=True)
class AtomicGroup:
    """Ordered, non-empty list of records written all-or-nothing."""
    records: Tuple[Record, ...]

    def __init__(self, records: Sequence[Record]):
        records = tuple(records)
        if not records:
            raise ValueError("AtomicGroup must contain at least one record")
        object.__setattr__(self, "records", records)

    @classmethod
    def of(cls, *records: Record) -> AtomicGroup:
        return cls(records)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)


@dataclass(frozen=True)
class WriteBatch:
    """Atomic groups submitted in one call, with an opaque correlation token."""
    groups: Tuple[AtomicGroup, ...]
    correlation_token: Any = None

    def __init__(self, groups: Sequence[AtomicGroup], correlation_token: Any = None):
        object.__setattr__(self, "groups", tuple(groups))
        object.__setattr__(self, "correlation_token", correlation_token)

    def __len__(self) -> int:
        return len(self.groups)


class RejectionKind(str, Enum):
    """Typed reason for a rejected record"""
    OVERSIZED_ITEM = "OversizedItem"
    GROUP_REJECTED_AS_WHOLE = "GroupRejectedAsWhole"
    BACKEND_REJECTED = "BackendRejected"
    TABLE_MISSING = "TableMissing"
    THROTTLED = "Throttled"

    @property
    def retryable(self) -> bool:
        """Whether the caller may resubmit the same records unchanged"""
        return self is RejectionKind.THROTTLED


@dataclass(frozen=True)
class RejectionCause:
    kind: RejectionKind
    description: str
    # Cause of the member / call that sank a whole group
    underlying: Optional[RejectionCause] = None

    @property
    def retryable(self) -> bool:
        if self.underlying is not None:
            return self.underlying.retryable
        return self.kind.retryable

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.description}"


@dataclass(frozen=True)
class Outcome:
    """Per-record result: success when `cause` is None, rejection otherwise."""
    record: Record
    cause: Optional[RejectionCause] = field(default=None)

    @classmethod
    def success(cls, record: Record) -> Outcome:
        return cls(record=record)

    @classmethod
    def rejection(cls, record: Record, cause: RejectionCause) -> Outcome:
        return cls(record=record, cause=cause)

    @property
    def is_success(self) -> bool:
        return self.cause is None

    @property
    def is_rejection(self) -> bool:
        return self.cause is not None


# =============================================================================
# Replay terminal markers
# =============================================================================

@dataclass(frozen=True)
class RecoverySuccess:
    """Replay finished: natural exhaustion or `max` reached."""
    count: int
    highest_sequence_nr: int


@dataclass(frozen=True)
class RecoveryFailure:
    """Replay aborted by a backend error after `delivered` records."""
    cause: Exception
    delivered: int
