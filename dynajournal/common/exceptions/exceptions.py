# dynajournal/common/exceptions/exceptions.py
# =============================================================================
# Custom exceptions for the DynamoDB journal
# =============================================================================

from typing import Any, Dict, Optional


class JournalException(Exception):
    """Base exception for the journal"""
    pass


class BackendCallError(JournalException):
    """
    Raised when the backend answers a call with an error code.

    Carries the backend's code and message verbatim, plus the request that
    failed so the error can be described without re-deriving it.
    """

    def __init__(
            self,
            code: str,
            message: str,
            request: Any = None,
            response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.request = request
        self.response = response or {}

    @classmethod
    def from_client_error(cls, error: Exception, request: Any = None) -> "BackendCallError":
        """Build from a botocore ClientError"""
        response = getattr(error, "response", None) or {}
        err = response.get("Error", {})
        return cls(
            code=err.get("Code", "Unknown"),
            message=err.get("Message", str(error)),
            request=request,
            response=response,
        )

    @property
    def cancellation_reasons(self) -> list:
        """Per-item reasons of a cancelled TransactWriteItems call"""
        return list(self.response.get("CancellationReasons", []))


class JournalError(JournalException):
    """Raised when a journal call fails outright (outside the rejection taxonomy)"""
    pass


class TableMissingError(JournalError):
    """Raised at startup when the journal table does not exist"""

    def __init__(self, table: str, description: str):
        super().__init__(description)
        self.table = table
        self.description = description


class ReplayError(JournalError):
    """Raised when a replay scan fails after delivering part of the stream"""

    def __init__(self, message: str, delivered: int = 0):
        super().__init__(message)
        self.delivered = delivered
