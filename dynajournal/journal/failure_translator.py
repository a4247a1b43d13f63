# =============================================================================
# File: dynajournal/journal/failure_translator.py
# Description: Backend error codes -> journal rejection taxonomy
# =============================================================================

import logging
from typing import Any, List, Optional

from dynajournal.common.exceptions.exceptions import BackendCallError
from dynajournal.journal.describe import RequestDescriber
from dynajournal.journal.item_size import MAX_ITEM_SIZE_EXCEEDED
from dynajournal.journal.model import RejectionCause, RejectionKind

log = logging.getLogger("dynajournal.journal.failure_translator")

TABLE_MISSING_CODES = frozenset({"ResourceNotFoundException"})

THROTTLING_CODES = frozenset({
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "ThrottlingError",  # TransactWriteItems cancellation reason
})

_ITEM_SIZE_MARKERS = ("item size", "maximum allowed size", "item collection size")


def is_item_size_violation(code: str, message: str) -> bool:
    if code not in ("ValidationException", "ValidationError"):
        return False
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _ITEM_SIZE_MARKERS)


class FailureTranslator:
    """Maps backend error conditions to typed rejection causes."""

    def __init__(self, describer: RequestDescriber):
        self.describer = describer

    def translate(self, error: BackendCallError) -> RejectionCause:
        return self.translate_code(error.code, error.message, self._describe(error.request))

    def translate_code(self, code: str, message: str, request_description: str = "") -> RejectionCause:
        suffix = f" for {request_description}" if request_description else ""

        if code in TABLE_MISSING_CODES:
            kind = RejectionKind.TABLE_MISSING
            description = f"Journal table missing ({code}: {message}){suffix}"
        elif is_item_size_violation(code, message):
            kind = RejectionKind.OVERSIZED_ITEM
            description = f"{MAX_ITEM_SIZE_EXCEEDED} (backend: {message}){suffix}"
        elif code in THROTTLING_CODES:
            kind = RejectionKind.THROTTLED
            description = f"Throttled by backend ({code}: {message}){suffix}"
        else:
            kind = RejectionKind.BACKEND_REJECTED
            description = f"{code}: {message}{suffix}"

        return RejectionCause(kind=kind, description=description)

    def translate_cancellation_reasons(self, error: BackendCallError) -> List[Optional[RejectionCause]]:
        """
        Per-item causes of a cancelled TransactWriteItems call, aligned with
        the submitted writes. Items the backend did not object to map to None.
        """
        description = self._describe(error.request)
        causes: List[Optional[RejectionCause]] = []
        for reason in error.cancellation_reasons:
            code = reason.get("Code", "None")
            if code in ("None", None):
                causes.append(None)
            else:
                causes.append(self.translate_code(code, reason.get("Message", ""), description))
        return causes

    def _describe(self, request: Any) -> str:
        if request is None:
            return ""
        try:
            return self.describer.describe(request)
        except TypeError as e:
            log.debug(f"Request not describable: {e}")
            return type(request).__name__


def first_cause(causes: List[Optional[RejectionCause]]) -> Optional[RejectionCause]:
    return next((c for c in causes if c is not None), None)

