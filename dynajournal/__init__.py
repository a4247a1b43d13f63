# =============================================================================
# dynajournal - DynamoDB event journal
# =============================================================================
"""
DynamoDB-backed event journal: atomic group writes with structured
per-record rejections, and ordered replay of stream history.

Version is loaded from installed package metadata.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version


def _get_version() -> str:
    try:
        return version("dynajournal")
    except PackageNotFoundError:
        # Running from a source checkout
        return "0.0.0-dev"


__version__: str = _get_version()

from dynajournal.journal.dynamodb_journal import DynamoDBJournal  # noqa: E402
from dynajournal.journal.model import (  # noqa: E402
    AtomicGroup,
    Outcome,
    Record,
    RecoveryFailure,
    RecoverySuccess,
    RejectionCause,
    RejectionKind,
    WriteBatch,
)

# =============================================================================
# EXPORTS
# =============================================================================
__all__ = [
    "__version__",
    "DynamoDBJournal",
    "AtomicGroup",
    "Outcome",
    "Record",
    "RecoveryFailure",
    "RecoverySuccess",
    "RejectionCause",
    "RejectionKind",
    "WriteBatch",
]
