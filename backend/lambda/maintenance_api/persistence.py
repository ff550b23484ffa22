"""persistence.py — Whole-document load/save of customer trees over DynamoDB.

One item per ``customer_id`` per table. Writes are read-merge-write round
trips: by default the last writer wins; with ``ConcurrencyPolicy.OPTIMISTIC_TOKEN``
each save bumps ``sync_version`` and is conditioned on the version it loaded.
"""
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Union

from botocore.exceptions import BotoCoreError, ClientError

from aws_clients import _get_ddb
from config import PARTITION_KEY, ConcurrencyPolicy, StoreConfig, logger
from document_tree import DocumentTree, SchemaKind
from errors import ConcurrencyConflictError, NotFoundError, StoreError
from serialization import _deserialize, _emit_structured_observability, _serialize

__all__ = [
    "DocumentStore",
]


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


class DocumentStore:
    def __init__(self, config: StoreConfig, client: Any = None) -> None:
        self.config = config
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = _get_ddb()
        return self._client

    def table_name(self, kind: Union[SchemaKind, str]) -> str:
        return self.config.table_for(SchemaKind(kind).value)

    def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            return getattr(self.client, operation)(**kwargs)
        except ClientError as exc:
            code = _error_code(exc)
            message = exc.response.get("Error", {}).get("Message") or str(exc)
            logger.error("[ERROR] DynamoDB %s on %s failed: %s %s", operation, kwargs.get("TableName"), code, message)
            raise StoreError(message, operation=operation, table=kwargs.get("TableName"), aws_code=code) from exc
        except BotoCoreError as exc:
            logger.error("[ERROR] DynamoDB %s on %s failed: %s", operation, kwargs.get("TableName"), exc)
            raise StoreError(str(exc), operation=operation, table=kwargs.get("TableName")) from exc

    # -- tables ---------------------------------------------------------------

    def table_exists(self, table_name: str) -> bool:
        try:
            self.client.describe_table(TableName=table_name)
        except ClientError as exc:
            if _error_code(exc) == "ResourceNotFoundException":
                return False
            raise StoreError(str(exc), operation="describe_table", table=table_name) from exc
        except BotoCoreError as exc:
            raise StoreError(str(exc), operation="describe_table", table=table_name) from exc
        return True

    def ensure_table(self, kind: Union[SchemaKind, str]) -> bool:
        """Create the kind's table when it does not exist yet. Returns True if it was created."""
        table_name = self.table_name(kind)
        if self.table_exists(table_name):
            return False
        logger.info("[INFO] Table '%s' not found. Creating it...", table_name)
        self._call(
            "create_table",
            TableName=table_name,
            KeySchema=[{"AttributeName": PARTITION_KEY, "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": PARTITION_KEY, "AttributeType": "S"}],
            ProvisionedThroughput={
                "ReadCapacityUnits": self.config.read_capacity,
                "WriteCapacityUnits": self.config.write_capacity,
            },
        )
        return True

    # -- documents ------------------------------------------------------------

    def load(self, customer_id: str, kind: Union[SchemaKind, str]) -> Optional[DocumentTree]:
        kind = SchemaKind(kind)
        resp = self._call(
            "get_item",
            TableName=self.table_name(kind),
            Key={PARTITION_KEY: _serialize(str(customer_id))},
            ConsistentRead=True,
        )
        raw = resp.get("Item")
        if not raw:
            return None
        return DocumentTree.from_item(_deserialize(raw), kind)

    def require(self, customer_id: str, kind: Union[SchemaKind, str], message: Optional[str] = None) -> DocumentTree:
        tree = self.load(customer_id, kind)
        if tree is None:
            raise NotFoundError(message or f"Customer '{customer_id}' not found.", customer_id=customer_id)
        return tree

    def load_or_new(self, customer_id: str, kind: Union[SchemaKind, str]) -> DocumentTree:
        kind = SchemaKind(kind)
        return self.load(customer_id, kind) or DocumentTree(customer_id=str(customer_id), kind=kind)

    def save(self, tree: DocumentTree) -> DocumentTree:
        table_name = self.table_name(tree.kind)
        item = tree.to_item()
        kwargs: Dict[str, Any] = {}
        expected = tree.version
        if self.config.concurrency_policy is ConcurrencyPolicy.OPTIMISTIC_TOKEN:
            item["sync_version"] = (expected or 0) + 1
            if expected is None:
                kwargs["ConditionExpression"] = "attribute_not_exists(#pk)"
                kwargs["ExpressionAttributeNames"] = {"#pk": PARTITION_KEY}
            else:
                kwargs["ConditionExpression"] = "#v = :expected"
                kwargs["ExpressionAttributeNames"] = {"#v": "sync_version"}
                kwargs["ExpressionAttributeValues"] = {":expected": _serialize(expected)}

        started = time.time()
        try:
            self.client.put_item(TableName=table_name, Item={k: _serialize(v) for k, v in item.items()}, **kwargs)
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                _emit_structured_observability(
                    component="maintenance_api",
                    event="document_save_conflict",
                    customer_id=tree.customer_id,
                    table=table_name,
                    error_code="CONFLICT",
                )
                raise ConcurrencyConflictError(
                    "Document was modified by another request. Reload and retry.",
                    customer_id=tree.customer_id,
                    expected_version=expected,
                ) from exc
            raise StoreError(str(exc), operation="put_item", table=table_name, aws_code=_error_code(exc)) from exc
        except BotoCoreError as exc:
            raise StoreError(str(exc), operation="put_item", table=table_name) from exc

        if "sync_version" in item:
            tree.version = int(item["sync_version"])
        _emit_structured_observability(
            component="maintenance_api",
            event="document_saved",
            customer_id=tree.customer_id,
            table=table_name,
            latency_ms=int((time.time() - started) * 1000),
            extra={"kind": tree.kind.value, "nodes": len(tree.nodes), "policy": self.config.concurrency_policy.value},
        )
        return tree

    def query(self, customer_id: str, kind: Union[SchemaKind, str]) -> List[DocumentTree]:
        kind = SchemaKind(kind)
        kwargs: Dict[str, Any] = {
            "TableName": self.table_name(kind),
            "KeyConditionExpression": "#pk = :pk",
            "ExpressionAttributeNames": {"#pk": PARTITION_KEY},
            "ExpressionAttributeValues": {":pk": _serialize(str(customer_id))},
        }
        trees: List[DocumentTree] = []
        while True:
            resp = self._call("query", **kwargs)
            trees.extend(DocumentTree.from_item(_deserialize(raw), kind) for raw in resp.get("Items") or [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return trees
            kwargs["ExclusiveStartKey"] = last_key

    def scan(self, table_name: str) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {"TableName": table_name}
        items: List[Dict[str, Any]] = []
        while True:
            resp = self._call("scan", **kwargs)
            items.extend(_deserialize(raw) for raw in resp.get("Items") or [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key
