import unittest
from copy import deepcopy

from ocsf_schema_engine.diagnostics import Diagnostics
from ocsf_schema_engine.exceptions import GraphIntegrityError
from ocsf_schema_engine.inheritance import InheritanceResolver


def resolver(items) -> InheritanceResolver:
    return InheritanceResolver(items, "class", Diagnostics())


CLASSES = {
    "base_event": {
        "name": "base_event",
        "caption": "Base Event",
        "profiles": ["host", "cloud"],
        "attributes": {
            "severity_id": {"requirement": "optional", "caption": "Severity"},
            "time": {"requirement": "required"},
            "raw_data": {"requirement": "optional"},
        },
        "observables": {"actor.user.name": 20},
    },
    "iam": {
        "name": "iam",
        "extends": "base_event",
        "caption": "IAM",
        "profiles": ["cloud", "user"],
        "attributes": {
            "severity_id": {"requirement": "required"},
            "user": {"requirement": "required"},
            "raw_data": None,
        },
        "observables": {"user.uid": 21},
    },
    "authentication": {
        "name": "authentication",
        "extends": "iam",
        "caption": "Authentication",
        "uid": 2,
        "profiles": ["datetime"],
        "attributes": {"auth_type": {"requirement": "recommended"}},
    },
}


class TestInheritance(unittest.TestCase):
    def test_completeness_and_provenance(self):
        resolved = resolver(deepcopy(CLASSES)).resolve_all()
        attributes = resolved["authentication"]["attributes"]
        self.assertEqual({"severity_id", "time", "user", "auth_type"}, set(attributes))
        self.assertEqual("base_event", attributes["severity_id"]["_source"])
        self.assertEqual("base_event", attributes["time"]["_source"])
        self.assertEqual("iam", attributes["user"]["_source"])
        self.assertEqual("authentication", attributes["auth_type"]["_source"])

    def test_child_overrides_field_by_field(self):
        resolved = resolver(deepcopy(CLASSES)).resolve_all()
        severity_id = resolved["authentication"]["attributes"]["severity_id"]
        self.assertEqual("required", severity_id["requirement"])
        self.assertEqual("Severity", severity_id["caption"])
        self.assertEqual("Authentication", resolved["authentication"]["caption"])
        self.assertEqual(2, resolved["authentication"]["uid"])

    def test_null_deletes_inherited_attribute(self):
        resolved = resolver(deepcopy(CLASSES)).resolve_all()
        self.assertNotIn("raw_data", resolved["iam"]["attributes"])
        self.assertNotIn("raw_data", resolved["authentication"]["attributes"])
        self.assertIn("raw_data", resolved["base_event"]["attributes"])

    def test_profiles_concatenate_in_order(self):
        resolved = resolver(deepcopy(CLASSES)).resolve_all()
        self.assertEqual(
            ["host", "cloud", "user", "datetime"],
            resolved["authentication"]["profiles"],
        )

    def test_observables_merge(self):
        resolved = resolver(deepcopy(CLASSES)).resolve_all()
        self.assertEqual(
            {"actor.user.name": 20, "user.uid": 21},
            resolved["authentication"]["observables"],
        )

    def test_object_observable_inherited(self):
        objects = {
            "endpoint": {"name": "endpoint", "observable": 20, "attributes": {}},
            "device": {"name": "device", "extends": "endpoint", "attributes": {}},
            "laptop": {
                "name": "laptop",
                "extends": "device",
                "observable": 21,
                "attributes": {},
            },
        }
        resolved = InheritanceResolver(objects, "object", Diagnostics()).resolve_all()
        self.assertNotIn("observable_inherited?", resolved["endpoint"])
        self.assertTrue(resolved["device"]["observable_inherited?"])
        self.assertEqual(20, resolved["device"]["observable"])
        self.assertFalse(resolved["laptop"]["observable_inherited?"])
        self.assertEqual(21, resolved["laptop"]["observable"])

    def test_unresolved_input_is_not_modified(self):
        items = deepcopy(CLASSES)
        resolver(items).resolve_all()
        self.assertEqual(CLASSES, items)

    def test_resolving_twice_changes_nothing(self):
        once = resolver(deepcopy(CLASSES)).resolve_all()
        twice = resolver(deepcopy(once)).resolve_all()
        self.assertEqual(once, twice)

    def test_resolving_parent_first_gives_same_result(self):
        whole = resolver(deepcopy(CLASSES)).resolve_all()
        items = deepcopy(CLASSES)
        items["iam"] = resolver(deepcopy(CLASSES)).resolve("iam")
        stepwise = resolver(items).resolve_all()
        self.assertEqual(whole["authentication"], stepwise["authentication"])

    def test_missing_parent(self):
        items = deepcopy(CLASSES)
        items["orphan"] = {
            "name": "orphan",
            "extends": "nope",
            "attributes": {"message": {"requirement": "optional"}},
        }
        items["orphan_child"] = {
            "name": "orphan_child",
            "extends": "orphan",
            "attributes": {},
        }
        r = resolver(items)
        with self.assertLogs("ocsf_schema_engine", level="WARNING") as logs:
            resolved = r.resolve_all()
        self.assertEqual(1, len(logs.records))
        self.assertIn('"nope"', logs.output[0])
        self.assertEqual(1, r.diagnostics.error_count)
        self.assertEqual(
            {"message": {"requirement": "optional", "_source": "orphan"}},
            resolved["orphan"]["attributes"],
        )
        self.assertEqual(
            resolved["orphan"]["attributes"], resolved["orphan_child"]["attributes"]
        )

    def test_cycle(self):
        items = {
            "a": {"name": "a", "extends": "b", "attributes": {}},
            "b": {"name": "b", "extends": "a", "attributes": {}},
        }
        with self.assertRaisesRegex(GraphIntegrityError, "Cyclic"):
            resolver(items).resolve_all()

    def test_extension_item_not_inherited_keys(self):
        items = {
            "corp/base": {
                "name": "base",
                "extension": "corp",
                "extension_id": 9,
                "_origin": "/corp/events/base.json",
                "attributes": {},
            },
            "child": {"name": "child", "extends": "corp/base", "attributes": {}},
        }
        child = resolver(items).resolve("child")
        self.assertNotIn("extension", child)
        self.assertNotIn("_origin", child)


class TestFindParent(unittest.TestCase):
    def setUp(self):
        self.items = {
            "base_event": {"name": "base_event"},
            "bar": {"name": "bar"},
            "corp/bar": {"name": "bar", "extension": "corp"},
            "other/bar": {"name": "bar", "extension": "other"},
            "corp/base_event": {
                "name": "base_event",
                "extension": "corp",
                "extends": "base_event",
            },
        }
        self.resolver = resolver(self.items)

    def find(self, key, extends, extension="corp"):
        item = {"extends": extends, "extension": extension}
        return self.resolver.find_parent(key, item)

    def test_same_extension_first(self):
        self.assertEqual("corp/bar", self.find("corp/foo", "bar"))

    def test_qualified(self):
        self.assertEqual("other/bar", self.find("corp/foo", "other/bar"))
        self.assertIsNone(self.find("corp/foo", "missing/bar"))

    def test_base_schema(self):
        self.assertEqual("bar", self.find("acme/foo", "bar", "acme"))
        self.assertEqual("bar", self.find("foo", "bar", None))

    def test_does_not_find_itself(self):
        self.assertEqual(
            "base_event",
            self.resolver.find_parent(
                "corp/base_event", self.items["corp/base_event"]
            ),
        )

    def test_no_extends(self):
        self.assertIsNone(self.resolver.find_parent("bar", self.items["bar"]))


if __name__ == "__main__":
    unittest.main()
