# =============================================================================
# File: dynajournal/journal/item_size.py
# Description: Pre-flight item size accounting
# =============================================================================

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from dynajournal.journal.describe import RequestDescriber
from dynajournal.journal.item_codec import ItemCodec
from dynajournal.journal.model import Outcome, Record, RejectionCause, RejectionKind
from dynajournal.journal.requests import AttributeMap, PutItemRequest

MAX_ITEM_SIZE_EXCEEDED = "MaxItemSize exceeded"

# Fixed overhead of list/map containers
_CONTAINER_OVERHEAD = 3


def number_size(raw: str) -> int:
    """DynamoDB number size: ~1 byte per two significant digits, plus 1."""
    try:
        digits = Decimal(raw).normalize().as_tuple().digits
    except InvalidOperation:
        return len(raw)
    significant = len(digits) if any(digits) else 1
    return int(math.ceil(significant / 2)) + 1


def value_size(value: Dict[str, Any]) -> int:
    """Size in bytes of one attribute value."""
    (type_tag, raw), = value.items()

    if type_tag == "S":
        return len(raw.encode("utf-8"))
    if type_tag == "N":
        return number_size(raw)
    if type_tag == "B":
        return len(raw)
    if type_tag in ("BOOL", "NULL"):
        return 1
    if type_tag == "SS":
        return sum(len(s.encode("utf-8")) for s in raw)
    if type_tag == "NS":
        return sum(number_size(n) for n in raw)
    if type_tag == "BS":
        return sum(len(b) for b in raw)
    if type_tag == "L":
        return _CONTAINER_OVERHEAD + sum(1 + value_size(v) for v in raw)
    if type_tag == "M":
        return _CONTAINER_OVERHEAD + sum(
            len(k.encode("utf-8")) + 1 + value_size(v) for k, v in raw.items()
        )
    raise ValueError(f"Unsupported attribute type {type_tag!r}")


def item_size(item: AttributeMap) -> int:
    """Size in bytes of a full item: attribute names plus values."""
    return sum(len(name.encode("utf-8")) + value_size(value) for name, value in item.items())


class ItemSizeValidator:
    """Classifies records against the backend's maximum single-item size before dispatch."""

    def __init__(
            self,
            codec: ItemCodec,
            describer: RequestDescriber,
            table_name: str,
            max_item_size: int,
    ):
        self.codec = codec
        self.describer = describer
        self.table_name = table_name
        self.max_item_size = max_item_size

    def size_of(self, record: Record) -> int:
        return item_size(self.codec.to_item(record))

    def check(self, record: Record) -> Optional[RejectionCause]:
        """Rejection cause if the record is over the limit, None otherwise."""
        item = self.codec.to_item(record)
        size = item_size(item)
        if size <= self.max_item_size:
            return None

        request = PutItemRequest(table_name=self.table_name, item=item)
        return RejectionCause(
            kind=RejectionKind.OVERSIZED_ITEM,
            description=(
                f"{MAX_ITEM_SIZE_EXCEEDED} (item size {size} > {self.max_item_size} bytes) "
                f"for {self.describer.describe(request)}"
            ),
        )

    def validate(self, record: Record) -> Outcome:
        """Outcome.success (pass-through) or Rejection{OversizedItem}."""
        cause = self.check(record)
        if cause is None:
            return Outcome.success(record)
        return Outcome.rejection(record, cause)
