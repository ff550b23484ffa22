import datetime as dt
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(__file__))

from document_tree import (  # noqa: E402
    SCHEMAS,
    DocumentTree,
    SchemaKind,
    Switchgear,
    find_all,
    find_by_path,
    format_iso,
    format_us,
    is_true,
    normalize_key,
    to_date,
    to_triple,
)
from errors import MalformedDataError, NotFoundError, ValidationError  # noqa: E402


def _mapping_nodes():
    return [
        {
            "switchgearId": "SG1",
            "switchgearName": "Main Board",
            "cbs": [
                {
                    "taskId": "T1",
                    "cbname": "A",
                    "tasks": [{"mainTask": "Inspect", "subTasks": [{"name": "Visual"}, {"name": "Thermal"}]}],
                },
                {"taskId": "T2", "cbname": "B", "tasks": []},
            ],
        },
        {"switchgearId": "SG2", "switchgearName": "Aux", "cbs": [{"taskId": "T3", "cbname": "C", "tasks": []}]},
    ]


class NormalizeKeyTests(unittest.TestCase):
    def test_numeric_and_string_ids_compare_equal(self):
        self.assertEqual(normalize_key(1), "1")
        self.assertEqual(normalize_key(1.0), "1")
        self.assertEqual(normalize_key(" 1 "), "1")

    def test_unkeyable_values(self):
        self.assertIsNone(normalize_key(None))
        self.assertIsNone(normalize_key(""))
        self.assertIsNone(normalize_key({"a": 1}))

    def test_is_true_accepts_string_flags(self):
        self.assertTrue(is_true(True))
        self.assertTrue(is_true("TRUE"))
        self.assertFalse(is_true("false"))
        self.assertFalse(is_true(1))
        self.assertFalse(is_true(None))


class TraversalTests(unittest.TestCase):
    levels = SCHEMAS[SchemaKind.MAPPING].levels

    def test_find_by_path_walks_each_level(self):
        subtask = find_by_path(_mapping_nodes(), self.levels, ["SG1", "T1", "Inspect", "Thermal"])
        self.assertEqual(subtask, {"name": "Thermal"})

    def test_find_by_path_names_missing_level(self):
        with self.assertRaises(NotFoundError) as ctx:
            find_by_path(_mapping_nodes(), self.levels, ["SG1", "T9"])
        self.assertEqual(ctx.exception.details["level"], "circuit breaker")
        self.assertIn("T9", ctx.exception.message)

    def test_find_all_treats_none_as_wildcard(self):
        cbs = list(find_all(_mapping_nodes(), self.levels, [None, None]))
        self.assertEqual([cb["taskId"] for cb in cbs], ["T1", "T2", "T3"])

    def test_child_collection_must_be_a_list(self):
        nodes = [{"switchgearId": "SG1", "cbs": {"taskId": "T1"}}]
        with self.assertRaises(MalformedDataError):
            find_by_path(nodes, self.levels, ["SG1", "T1"])

    def test_config_switchgear_falls_back_to_name(self):
        nodes = [{"name": "Board", "configuredCBs": [{"id": 1, "name": "A"}]}]
        levels = SCHEMAS[SchemaKind.CONFIG].levels
        self.assertEqual(find_by_path(nodes, levels, ["Board", "1"])["name"], "A")


class SwitchgearVariantTests(unittest.TestCase):
    def test_adapters_read_each_table_shape(self):
        config = Switchgear.from_node(SchemaKind.CONFIG, {"id": "SG1", "name": "Main", "configuredCBs": [{"id": 1}]})
        mapping = Switchgear.from_node(SchemaKind.MAPPING, {"switchgearId": "SG1", "switchgearName": "Main", "cbs": []})
        calendar = Switchgear.from_node(SchemaKind.CALENDAR, {"switchgearID": "SG1", "cbs": []})

        self.assertEqual(config.cbs, [{"id": 1}])
        self.assertTrue(mapping.matches("SG1"))
        self.assertTrue(calendar.matches("SG1"))
        self.assertIsNone(calendar.name)

    def test_preventive_documents_have_no_switchgears(self):
        with self.assertRaises(ValueError):
            Switchgear.from_node(SchemaKind.PREVENTIVE, {"id": "1"})


class DocumentTreeTests(unittest.TestCase):
    def test_from_item_keeps_passthrough_attributes(self):
        tree = DocumentTree.from_item(
            {"customer_id": "C1", "name": "Plant", "configswitchgears": [], "sync_version": 4},
            SchemaKind.CONFIG,
        )
        self.assertEqual(tree.attributes, {"name": "Plant"})
        self.assertEqual(tree.version, 4)
        self.assertEqual(tree.to_item()["sync_version"], 4)

    def test_from_item_rejects_non_list_root(self):
        with self.assertRaises(MalformedDataError):
            DocumentTree.from_item({"customer_id": "C1", "tasks": "oops"}, SchemaKind.PREVENTIVE)

    def test_copy_is_independent(self):
        tree = DocumentTree("C1", SchemaKind.MAPPING, _mapping_nodes())
        clone = tree.copy()
        clone.find("SG1")["switchgearName"] = "Renamed"
        self.assertEqual(tree.find("SG1")["switchgearName"], "Main Board")


class DateTests(unittest.TestCase):
    def test_triple_and_iso_forms(self):
        self.assertEqual(to_date({"year": 2024, "month": 1, "day": 5}), dt.date(2024, 1, 5))
        self.assertEqual(to_date("2024-01-05T10:00:00Z"), dt.date(2024, 1, 5))
        self.assertEqual(format_iso({"year": 2024, "month": 1, "day": 5}), "2024-01-05")
        self.assertEqual(format_us({"year": 2024, "month": 1, "day": 5}), "01-05-2024")

    def test_invalid_stored_date_is_malformed_data(self):
        with self.assertRaises(MalformedDataError):
            to_date({"year": 2024, "month": 13, "day": 1})

    def test_invalid_request_date_is_validation_error(self):
        self.assertEqual(to_triple("2024-02-29"), {"year": 2024, "month": 2, "day": 29})
        with self.assertRaises(ValidationError):
            to_triple("not-a-date")


if __name__ == "__main__":
    unittest.main()
