# =============================================================================
# File: dynajournal/journal/requests.py
# Description: Backend request kinds issued by the journal
# =============================================================================
# Each request is an immutable value that knows its DynamoDB operation name,
# the aioboto3 client method implementing it, and the keyword arguments that
# method takes. Items and keys are kept in the native attribute-value format
# ({"par": {"S": "..."}, "num": {"N": "42"}}).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

AttributeMap = Dict[str, Dict[str, Any]]


@dataclass(frozen=True)
class GetItemRequest:
    operation: ClassVar[str] = "GetItem"
    method: ClassVar[str] = "get_item"

    table_name: str
    key: AttributeMap
    consistent_read: bool = True

    def to_kwargs(self) -> Dict[str, Any]:
        return {"TableName": self.table_name, "Key": self.key, "ConsistentRead": self.consistent_read}


@dataclass(frozen=True)
class PutItemRequest:
    operation: ClassVar[str] = "PutItem"
    method: ClassVar[str] = "put_item"

    table_name: str
    item: AttributeMap
    condition_expression: Optional[str] = None

    def to_kwargs(self) -> Dict[str, Any]:
        kwargs = {"TableName": self.table_name, "Item": self.item}
        if self.condition_expression:
            kwargs["ConditionExpression"] = self.condition_expression
        return kwargs


@dataclass(frozen=True)
class DeleteItemRequest:
    operation: ClassVar[str] = "DeleteItem"
    method: ClassVar[str] = "delete_item"

    table_name: str
    key: AttributeMap

    def to_kwargs(self) -> Dict[str, Any]:
        return {"TableName": self.table_name, "Key": self.key}


@dataclass(frozen=True)
class QueryRequest:
    operation: ClassVar[str] = "Query"
    method: ClassVar[str] = "query"

    table_name: str
    key_condition_expression: str
    expression_attribute_values: AttributeMap
    limit: Optional[int] = None
    exclusive_start_key: Optional[AttributeMap] = None
    scan_index_forward: bool = True
    consistent_read: bool = True
    projection_expression: Optional[str] = None

    def to_kwargs(self) -> Dict[str, Any]:
        kwargs = {
            "TableName": self.table_name,
            "KeyConditionExpression": self.key_condition_expression,
            "ExpressionAttributeValues": self.expression_attribute_values,
            "ScanIndexForward": self.scan_index_forward,
            "ConsistentRead": self.consistent_read,
        }
        if self.limit is not None:
            kwargs["Limit"] = self.limit
        if self.exclusive_start_key:
            kwargs["ExclusiveStartKey"] = self.exclusive_start_key
        if self.projection_expression:
            kwargs["ProjectionExpression"] = self.projection_expression
        return kwargs


@dataclass(frozen=True)
class PutRequest:
    """Put entry of a BatchWriteItem / TransactWriteItems call"""
    item: AttributeMap
    condition_expression: Optional[str] = None


@dataclass(frozen=True)
class DeleteRequest:
    """Delete entry of a BatchWriteItem / TransactWriteItems call"""
    key: AttributeMap


WriteRequest = Union[PutRequest, DeleteRequest]


@dataclass(frozen=True)
class BatchWriteItemRequest:
    operation: ClassVar[str] = "BatchWriteItem"
    method: ClassVar[str] = "batch_write_item"

    # table name -> write requests, in submission order
    request_items: Tuple[Tuple[str, Tuple[WriteRequest, ...]], ...]

    @classmethod
    def for_table(cls, table_name: str, writes: List[WriteRequest]) -> BatchWriteItemRequest:
        return cls(request_items=((table_name, tuple(writes)),))

    def to_kwargs(self) -> Dict[str, Any]:
        items = {}
        for table_name, writes in self.request_items:
            entries = []
            for write in writes:
                if isinstance(write, PutRequest):
                    entries.append({"PutRequest": {"Item": write.item}})
                else:
                    entries.append({"DeleteRequest": {"Key": write.key}})
            items[table_name] = entries
        return {"RequestItems": items}


@dataclass(frozen=True)
class BatchGetItemRequest:
    operation: ClassVar[str] = "BatchGetItem"
    method: ClassVar[str] = "batch_get_item"

    # table name -> keys, in submission order
    request_items: Tuple[Tuple[str, Tuple[AttributeMap, ...]], ...]
    consistent_read: bool = True
    projection_expression: Optional[str] = None

    @classmethod
    def for_table(
            cls,
            table_name: str,
            keys: List[AttributeMap],
            projection_expression: Optional[str] = None,
    ) -> BatchGetItemRequest:
        return cls(request_items=((table_name, tuple(keys)),), projection_expression=projection_expression)

    def to_kwargs(self) -> Dict[str, Any]:
        items = {}
        for table_name, keys in self.request_items:
            entry = {"Keys": list(keys), "ConsistentRead": self.consistent_read}
            if self.projection_expression:
                entry["ProjectionExpression"] = self.projection_expression
            items[table_name] = entry
        return {"RequestItems": items}


@dataclass(frozen=True)
class TransactWriteItemsRequest:
    operation: ClassVar[str] = "TransactWriteItems"
    method: ClassVar[str] = "transact_write_items"

    table_name: str
    writes: Tuple[WriteRequest, ...]
    client_request_token: Optional[str] = None

    def to_kwargs(self) -> Dict[str, Any]:
        entries = []
        for write in self.writes:
            if isinstance(write, PutRequest):
                put = {"TableName": self.table_name, "Item": write.item}
                if write.condition_expression:
                    put["ConditionExpression"] = write.condition_expression
                entries.append({"Put": put})
            else:
                entries.append({"Delete": {"TableName": self.table_name, "Key": write.key}})
        kwargs = {"TransactItems": entries}
        if self.client_request_token:
            kwargs["ClientRequestToken"] = self.client_request_token
        return kwargs


@dataclass(frozen=True)
class DescribeTableRequest:
    operation: ClassVar[str] = "DescribeTable"
    method: ClassVar[str] = "describe_table"

    table_name: str

    def to_kwargs(self) -> Dict[str, Any]:
        return {"TableName": self.table_name}


BackendRequest = Union[
    GetItemRequest,
    PutItemRequest,
    DeleteItemRequest,
    QueryRequest,
    BatchWriteItemRequest,
    BatchGetItemRequest,
    TransactWriteItemsRequest,
    DescribeTableRequest,
]
