"""test_persistence.py — DocumentStore against an in-memory DynamoDB client.

Covers table bootstrap, whole-document load/save, numeric round-trips, both
concurrency policies and error wrapping. No AWS credentials needed.

Run: python3 -m pytest test_persistence.py -v
"""

from __future__ import annotations

import copy
import os
import sys
import unittest
from unittest.mock import patch

from botocore.exceptions import ClientError, EndpointConnectionError

sys.path.insert(0, os.path.dirname(__file__))

from config import ConcurrencyPolicy, StoreConfig  # noqa: E402
from document_tree import DocumentTree, SchemaKind  # noqa: E402
from errors import ConcurrencyConflictError, DuplicateKeyError, NotFoundError, StoreError  # noqa: E402
from merge_engine import merge_switchgear_configs  # noqa: E402
from persistence import DocumentStore  # noqa: E402


def _client_error(code, operation, message="boom"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class _FakeDdb:
    """Just enough of the low-level DynamoDB client for DocumentStore."""

    def __init__(self, tables=(), page_size=None):
        self.tables = {name: {} for name in tables}
        self.page_size = page_size
        self.calls = []

    def _table(self, name, operation):
        if name not in self.tables:
            raise _client_error("ResourceNotFoundException", operation, f"Requested resource not found: {name}")
        return self.tables[name]

    def describe_table(self, TableName):
        self.calls.append("describe_table")
        self._table(TableName, "DescribeTable")
        return {"Table": {"TableName": TableName, "TableStatus": "ACTIVE"}}

    def create_table(self, TableName, **kwargs):
        self.calls.append("create_table")
        self.tables[TableName] = {}
        self.created = kwargs
        return {"TableDescription": {"TableName": TableName}}

    def get_item(self, TableName, Key, ConsistentRead=False):
        self.calls.append("get_item")
        table = self._table(TableName, "GetItem")
        item = table.get(Key["customer_id"]["S"])
        return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(self, TableName, Item, ConditionExpression=None, ExpressionAttributeNames=None, ExpressionAttributeValues=None):
        self.calls.append("put_item")
        table = self._table(TableName, "PutItem")
        key = Item["customer_id"]["S"]
        current = table.get(key)
        if ConditionExpression == "attribute_not_exists(#pk)" and current is not None:
            raise _client_error("ConditionalCheckFailedException", "PutItem")
        if ConditionExpression == "#v = :expected":
            if current is None or current.get("sync_version") != ExpressionAttributeValues[":expected"]:
                raise _client_error("ConditionalCheckFailedException", "PutItem")
        table[key] = copy.deepcopy(Item)
        return {}

    def _page(self, items, kwargs):
        start = int(kwargs.get("ExclusiveStartKey", {}).get("offset", {}).get("N", "0"))
        size = self.page_size or len(items) or 1
        page = items[start:start + size]
        resp = {"Items": copy.deepcopy(page)}
        if start + size < len(items):
            resp["LastEvaluatedKey"] = {"offset": {"N": str(start + size)}}
        return resp

    def query(self, TableName, **kwargs):
        self.calls.append("query")
        table = self._table(TableName, "Query")
        wanted = kwargs["ExpressionAttributeValues"][":pk"]
        return self._page([item for item in table.values() if item["customer_id"] == wanted], kwargs)

    def scan(self, TableName, **kwargs):
        self.calls.append("scan")
        return self._page(list(self._table(TableName, "Scan").values()), kwargs)


def _store(policy=ConcurrencyPolicy.LAST_WRITER_WINS, **fake_kwargs):
    config = StoreConfig(concurrency_policy=policy)
    fake = _FakeDdb(tables=config.table_names.values(), **fake_kwargs)
    return DocumentStore(config, client=fake), fake


class TableBootstrapTests(unittest.TestCase):
    def test_missing_table_is_created_once(self):
        config = StoreConfig()
        fake = _FakeDdb()
        store = DocumentStore(config, client=fake)
        self.assertTrue(store.ensure_table(SchemaKind.CONFIG))
        self.assertFalse(store.ensure_table("config"))
        self.assertIn("switchgearConfig_Store", fake.tables)
        self.assertEqual(fake.created["KeySchema"], [{"AttributeName": "customer_id", "KeyType": "HASH"}])
        self.assertEqual(fake.created["ProvisionedThroughput"]["ReadCapacityUnits"], config.read_capacity)

    def test_describe_failure_is_store_error(self):
        store, fake = _store()
        with patch.object(fake, "describe_table", side_effect=_client_error("AccessDeniedException", "DescribeTable")):
            with self.assertRaises(StoreError):
                store.table_exists("anything")


class LoadSaveTests(unittest.TestCase):
    def test_load_missing_customer(self):
        store, _ = _store()
        self.assertIsNone(store.load("C1", SchemaKind.MAPPING))
        with self.assertRaises(NotFoundError):
            store.require("C1", SchemaKind.MAPPING)
        tree = store.load_or_new("C1", "mapping")
        self.assertEqual((tree.customer_id, tree.nodes), ("C1", []))

    def test_numbers_round_trip(self):
        store, _ = _store()
        tree = DocumentTree(
            "C1",
            SchemaKind.CONFIG,
            [{"id": 1, "name": "Main", "ratio": 0.75, "live": True, "configuredCBs": []}],
            {"name": "Plant"},
        )
        store.save(tree)
        loaded = store.load("C1", SchemaKind.CONFIG)
        node = loaded.nodes[0]
        self.assertEqual(node["id"], 1)
        self.assertIsInstance(node["id"], int)
        self.assertEqual(node["ratio"], 0.75)
        self.assertIs(node["live"], True)
        self.assertEqual(loaded.attributes, {"name": "Plant"})
        self.assertIsNone(loaded.version)

    def test_last_writer_wins_overwrites_without_condition(self):
        store, _ = _store()
        first = store.load_or_new("C1", SchemaKind.PREVENTIVE)
        second = store.load_or_new("C1", SchemaKind.PREVENTIVE)
        first.nodes = [{"id": "1", "mainTask": "A"}]
        second.nodes = [{"id": "2", "mainTask": "B"}]
        store.save(first)
        store.save(second)
        self.assertEqual(store.load("C1", SchemaKind.PREVENTIVE).nodes, [{"id": "2", "mainTask": "B"}])

    def test_rejected_merge_leaves_stored_document_unchanged(self):
        store, _ = _store()
        tree = DocumentTree("C1", SchemaKind.CONFIG, [{"id": "SG1", "configuredCBs": [{"id": 1, "name": "A"}]}])
        store.save(tree)
        with self.assertRaises(DuplicateKeyError):
            merged = merge_switchgear_configs(
                store.load("C1", SchemaKind.CONFIG),
                [{"id": "SG1", "configuredCBs": [{"id": 2, "name": "A"}]}],
            )
            store.save(merged)
        self.assertEqual(store.load("C1", SchemaKind.CONFIG).nodes, tree.nodes)

    def test_put_failure_is_store_error(self):
        store, fake = _store()
        with patch.object(fake, "put_item", side_effect=EndpointConnectionError(endpoint_url="http://localhost:8000")):
            with self.assertRaises(StoreError):
                store.save(DocumentTree("C1", SchemaKind.CONFIG))

    def test_get_failure_carries_aws_code(self):
        store, fake = _store()
        with patch.object(fake, "get_item", side_effect=_client_error("ProvisionedThroughputExceededException", "GetItem")):
            with self.assertRaises(StoreError) as ctx:
                store.load("C1", SchemaKind.CONFIG)
        self.assertEqual(ctx.exception.details["aws_code"], "ProvisionedThroughputExceededException")


class OptimisticTokenTests(unittest.TestCase):
    def test_versions_advance_on_each_save(self):
        store, _ = _store(ConcurrencyPolicy.OPTIMISTIC_TOKEN)
        tree = store.load_or_new("C1", SchemaKind.MAPPING)
        store.save(tree)
        self.assertEqual(tree.version, 1)
        loaded = store.load("C1", SchemaKind.MAPPING)
        self.assertEqual(loaded.version, 1)
        store.save(loaded)
        self.assertEqual(store.load("C1", SchemaKind.MAPPING).version, 2)

    def test_stale_writer_gets_conflict(self):
        store, _ = _store(ConcurrencyPolicy.OPTIMISTIC_TOKEN)
        store.save(store.load_or_new("C1", SchemaKind.MAPPING))
        first = store.load("C1", SchemaKind.MAPPING)
        second = store.load("C1", SchemaKind.MAPPING)
        first.nodes = [{"switchgearId": "SG1", "cbs": []}]
        store.save(first)
        second.nodes = [{"switchgearId": "SG2", "cbs": []}]
        with self.assertRaises(ConcurrencyConflictError) as ctx:
            store.save(second)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(store.load("C1", SchemaKind.MAPPING).nodes, first.nodes)

    def test_concurrent_first_writes_conflict(self):
        store, _ = _store(ConcurrencyPolicy.OPTIMISTIC_TOKEN)
        first = store.load_or_new("C1", SchemaKind.CALENDAR)
        second = store.load_or_new("C1", SchemaKind.CALENDAR)
        store.save(first)
        with self.assertRaises(ConcurrencyConflictError):
            store.save(second)


class QueryScanTests(unittest.TestCase):
    def test_query_and_scan_follow_pagination(self):
        store, fake = _store(page_size=1)
        for customer in ("C1", "C2", "C3"):
            store.save(DocumentTree(customer, SchemaKind.CONFIG, [{"id": customer}]))
        items = store.scan("switchgearConfig_Store")
        self.assertEqual(sorted(i["customer_id"] for i in items), ["C1", "C2", "C3"])
        self.assertEqual(fake.calls.count("scan"), 3)
        trees = store.query("C2", SchemaKind.CONFIG)
        self.assertEqual([t.customer_id for t in trees], ["C2"])


class StoreConfigTests(unittest.TestCase):
    def test_from_env_reads_table_names_and_policy(self):
        env = {"MAPPING_TABLE": "mapping_dev", "CONCURRENCY_POLICY": "Optimistic_Token"}
        with patch.dict(os.environ, env):
            config = StoreConfig.from_env()
        self.assertEqual(config.table_for("mapping"), "mapping_dev")
        self.assertEqual(config.table_for("calendar"), "calander_Tasks_Update")
        self.assertIs(config.concurrency_policy, ConcurrencyPolicy.OPTIMISTIC_TOKEN)

    def test_unknown_policy_falls_back(self):
        self.assertIs(ConcurrencyPolicy.parse("bogus"), ConcurrencyPolicy.LAST_WRITER_WINS)


if __name__ == "__main__":
    unittest.main()
