# =============================================================================
# File: dynajournal/journal/describe.py
# Description: Human-readable summaries of backend requests
# =============================================================================
# Used to build rejection descriptions and log lines only; never consulted
# for control flow. Output is deterministic for a given request.
#
#   PutItem(table=journal, item=[par=P-order-1,num=3])
#   BatchWriteItem(table=journal: put[par=TheKey,num=42], del[par=The2Key,num=43])
#   Query(table=journal, values=[:kkey=P-order-1,:from=1,:to=10])
# =============================================================================

from typing import Any, Callable, Dict, Iterable

from dynajournal.journal.item_codec import KEY, SORT
from dynajournal.journal.requests import (
    AttributeMap,
    BackendRequest,
    BatchGetItemRequest,
    BatchWriteItemRequest,
    DeleteItemRequest,
    DeleteRequest,
    DescribeTableRequest,
    GetItemRequest,
    PutItemRequest,
    PutRequest,
    QueryRequest,
    TransactWriteItemsRequest,
)


def render_value(value: Dict[str, Any]) -> str:
    """Render one attribute value as a literal."""
    if not isinstance(value, dict) or len(value) != 1:
        return repr(value)

    (type_tag, raw), = value.items()
    if type_tag in ("S", "N"):
        return str(raw)
    if type_tag == "B":
        return f"<{len(raw)} bytes>"
    if type_tag == "BOOL":
        return "true" if raw else "false"
    if type_tag == "NULL":
        return "null"
    if type_tag in ("SS", "NS"):
        return "{" + ",".join(str(v) for v in raw) + "}"
    if type_tag == "BS":
        return "{" + ",".join(f"<{len(v)} bytes>" for v in raw) + "}"
    if type_tag == "L":
        return "[" + ",".join(render_value(v) for v in raw) + "]"
    if type_tag == "M":
        return "{" + ",".join(f"{k}={render_value(v)}" for k, v in raw.items()) + "}"
    return repr(raw)


class RequestDescriber:
    """
    Describes backend requests for error messages and logs.

    One formatting case per request kind; an unknown kind raises TypeError
    so new request types cannot slip through undescribed.
    """

    def __init__(self, key_attributes: Iterable[str] = (KEY, SORT)):
        self.key_attributes = tuple(key_attributes)
        self._formatters: Dict[type, Callable[[Any], str]] = {
            GetItemRequest: self._get_item,
            PutItemRequest: self._put_item,
            DeleteItemRequest: self._delete_item,
            QueryRequest: self._query,
            BatchWriteItemRequest: self._batch_write,
            BatchGetItemRequest: self._batch_get,
            TransactWriteItemsRequest: self._transact_write,
            DescribeTableRequest: self._describe_table,
        }

    def describe(self, request: BackendRequest) -> str:
        formatter = self._formatters.get(type(request))
        if formatter is None:
            raise TypeError(f"Cannot describe request of type {type(request).__name__}")
        return formatter(request)

    # =========================================================================
    # Item-level
    # =========================================================================

    def render_key(self, attributes: AttributeMap) -> str:
        """Key attributes only, in key-schema order: `par=TheKey,num=42`"""
        parts = [
            f"{name}={render_value(attributes[name])}"
            for name in self.key_attributes
            if name in attributes
        ]
        return ",".join(parts)

    def _get_item(self, request: GetItemRequest) -> str:
        return f"GetItem(table={request.table_name}, key=[{self.render_key(request.key)}])"

    def _put_item(self, request: PutItemRequest) -> str:
        return f"PutItem(table={request.table_name}, item=[{self.render_key(request.item)}])"

    def _delete_item(self, request: DeleteItemRequest) -> str:
        return f"DeleteItem(table={request.table_name}, key=[{self.render_key(request.key)}])"

    def _query(self, request: QueryRequest) -> str:
        values = ",".join(
            f"{name}={render_value(value)}"
            for name, value in request.expression_attribute_values.items()
        )
        desc = f"Query(table={request.table_name}, values=[{values}]"
        if request.exclusive_start_key:
            desc += f", from=[{self.render_key(request.exclusive_start_key)}]"
        return desc + ")"

    def _describe_table(self, request: DescribeTableRequest) -> str:
        return f"DescribeTable(table={request.table_name})"

    # =========================================================================
    # Batch
    # =========================================================================

    def _write_token(self, write) -> str:
        if isinstance(write, PutRequest):
            return f"put[{self.render_key(write.item)}]"
        if isinstance(write, DeleteRequest):
            return f"del[{self.render_key(write.key)}]"
        raise TypeError(f"Cannot describe write of type {type(write).__name__}")

    def _batch_write(self, request: BatchWriteItemRequest) -> str:
        tables = "; ".join(
            f"table={table_name}: " + ", ".join(self._write_token(w) for w in writes)
            for table_name, writes in request.request_items
        )
        return f"BatchWriteItem({tables})"

    def _batch_get(self, request: BatchGetItemRequest) -> str:
        tables = "; ".join(
            f"table={table_name}: " + ", ".join(f"get[{self.render_key(k)}]" for k in keys)
            for table_name, keys in request.request_items
        )
        return f"BatchGetItem({tables})"

    def _transact_write(self, request: TransactWriteItemsRequest) -> str:
        tokens = ", ".join(self._write_token(w) for w in request.writes)
        return f"TransactWriteItems(table={request.table_name}: {tokens})"
