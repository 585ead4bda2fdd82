import tempfile
import unittest
from pathlib import Path

from ocsf_schema_engine.cache import FragmentCache
from ocsf_schema_engine.exceptions import ParseError
from ocsf_schema_engine.jsonish import (
    FragmentLoader,
    apply_annotations,
    json_type_from_value,
    read_json_object_file,
)
from tests.schema_fixtures import write_json, write_text


class TestJsonish(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_json_type_from_value(self):
        self.assertEqual("true", json_type_from_value(True))
        self.assertEqual("number (int)", json_type_from_value(1))
        self.assertEqual("array", json_type_from_value([]))
        self.assertEqual("null", json_type_from_value(None))

    def test_read_object(self):
        path = write_json(self.root / "a.json", {"name": "a"})
        self.assertEqual({"name": "a"}, read_json_object_file(path))

    def test_read_malformed(self):
        path = write_text(self.root / "bad.json", '{"name": ')
        with self.assertRaises(ParseError) as ctx:
            read_json_object_file(path)
        self.assertIn("bad.json", str(ctx.exception))

    def test_read_non_object(self):
        path = write_json(self.root / "list.json", [1, 2])
        with self.assertRaisesRegex(ParseError, "array"):
            read_json_object_file(path)

    def test_read_missing(self):
        with self.assertRaises(FileNotFoundError):
            read_json_object_file(self.root / "missing.json")

    def test_annotations_fill_missing(self):
        fragment = {
            "annotations": {"group": "primary", "requirement": "optional"},
            "attributes": {
                "a": {"requirement": "required"},
                "b": {},
            },
        }
        apply_annotations(fragment)
        self.assertNotIn("annotations", fragment)
        self.assertEqual(
            {"requirement": "required", "group": "primary"},
            fragment["attributes"]["a"],
        )
        self.assertEqual(
            {"group": "primary", "requirement": "optional"},
            fragment["attributes"]["b"],
        )

    def test_loader_caches(self):
        path = write_json(self.root / "a.json", {"name": "a"})
        cache = FragmentCache()
        cache.init()
        loader = FragmentLoader(cache)
        first = loader.read(path)
        second = loader.read(self.root / "." / "a.json")
        self.assertIs(first, second)
        self.assertEqual(1, len(cache))

    def test_loader_does_not_cache_failures(self):
        path = write_text(self.root / "bad.json", "nope")
        cache = FragmentCache()
        cache.init()
        with self.assertRaises(ParseError):
            FragmentLoader(cache).read(path)
        self.assertEqual(0, len(cache))


if __name__ == "__main__":
    unittest.main()
