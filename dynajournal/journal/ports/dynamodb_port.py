# =============================================================================
# File: dynajournal/journal/ports/dynamodb_port.py
# Description: Port interface for the journal's key-value backend
# Pattern: Hexagonal Architecture / Ports & Adapters
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable

from dynajournal.journal.requests import BackendRequest


@runtime_checkable
class DynamoDBPort(Protocol):
    """
    Port: Journal Backend

    Defined by: Journal core
    Implemented by: DynamoDBClient (dynajournal/infra/dynamodb/client.py)

    A stateless, shareable handle on the remote store. Every journal
    component receives it explicitly; nothing reaches for a global client.
    """

    async def execute(self, request: BackendRequest) -> Dict[str, Any]:
        """
        Execute one backend request.

        Args:
            request: Any request kind from dynajournal.journal.requests

        Returns:
            The backend's raw response (e.g. `Items`/`LastEvaluatedKey` for
            Query, `UnprocessedItems` for BatchWriteItem, `Table` for
            DescribeTable).

        Raises:
            BackendCallError: The backend answered with an error code
                (missing table, validation, throttling, cancelled transaction...)
            JournalError: The call could not complete (connectivity loss,
                open circuit breaker, malformed response)
        """
        ...

    async def close(self) -> None:
        """Release connections held by the adapter."""
        ...
