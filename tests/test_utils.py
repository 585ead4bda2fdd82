import unittest
from types import MappingProxyType

from ocsf_schema_engine.exceptions import SchemaException
from ocsf_schema_engine.scoping import find_scoped, to_extension_scoped_name
from ocsf_schema_engine.utils import (
    category_scoped_class_uid,
    class_category_uid,
    class_uid_scoped_type_uid,
    deep_merge,
    extension_scoped_category_uid,
    freeze,
    is_hidden_class,
    is_hidden_object,
    merge_profiles,
    requirement_to_rank,
    thaw,
)


class TestUtils(unittest.TestCase):
    def test_deep_merge(self):
        dest = {"a": 1, "b": {"c": 2, "d": 3}, "l": [1]}
        deep_merge(dest, {"b": {"c": 20, "e": 5}, "l": [2], "f": None})
        self.assertEqual(
            {"a": 1, "b": {"c": 20, "d": 3, "e": 5}, "l": [2], "f": None}, dest
        )

    def test_merge_profiles(self):
        self.assertEqual(["a", "b", "c"], merge_profiles(["a", "b"], None, ["b", "c"]))
        self.assertEqual([], merge_profiles(None, []))

    def test_merge_profiles_associative(self):
        x, y, z = ["a", "b"], ["c", "a"], ["d", "b", "e"]
        self.assertEqual(
            merge_profiles(merge_profiles(x, y), z),
            merge_profiles(x, merge_profiles(y, z)),
        )

    def test_uids(self):
        self.assertEqual(203, extension_scoped_category_uid(2, 3))
        self.assertEqual(3, class_category_uid(None, 3))
        self.assertEqual(203, class_category_uid(2, 3))
        self.assertEqual(201, class_category_uid(2, 201))
        self.assertEqual(3002, category_scoped_class_uid(3, 2))
        self.assertEqual(300201, class_uid_scoped_type_uid(3002, 1))

    def test_hidden(self):
        self.assertFalse(is_hidden_class("base_event", {}))
        self.assertTrue(is_hidden_class("network", {"caption": "Network"}))
        self.assertFalse(is_hidden_class("authentication", {"uid": 2}))
        self.assertTrue(is_hidden_object("_entity"))
        self.assertTrue(is_hidden_object("corp/_entity"))
        self.assertFalse(is_hidden_object("corp/user"))

    def test_requirement_to_rank(self):
        self.assertGreater(
            requirement_to_rank("required"), requirement_to_rank("recommended")
        )
        self.assertEqual(0, requirement_to_rank(None))
        with self.assertRaises(SchemaException):
            requirement_to_rank("sometimes")

    def test_freeze_thaw(self):
        value = {"a": [1, {"b": 2}], "c": "d"}
        frozen = freeze(value)
        self.assertIsInstance(frozen, MappingProxyType)
        self.assertEqual((1, {"b": 2}), frozen["a"])
        with self.assertRaises(TypeError):
            frozen["c"] = "e"
        self.assertEqual(value, thaw(frozen))


class TestScoping(unittest.TestCase):
    def test_to_extension_scoped_name(self):
        self.assertEqual("corp/user", to_extension_scoped_name("user", "corp"))
        self.assertEqual("user", to_extension_scoped_name("user", None))

    def test_find_scoped(self):
        items = {"user": {}, "corp/user": {}, "corp/badge": {}, "other/thing": {}}
        self.assertEqual("corp/user", find_scoped(items, "user", "corp"))
        self.assertEqual("user", find_scoped(items, "user", "acme"))
        self.assertEqual("user", find_scoped(items, "user"))
        self.assertEqual("other/thing", find_scoped(items, "other/thing", "corp"))
        self.assertIsNone(find_scoped(items, "badge"))
        self.assertIsNone(find_scoped(items, None, "corp"))


if __name__ == "__main__":
    unittest.main()
