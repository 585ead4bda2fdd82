import tempfile
import threading
import unittest
from pathlib import Path

from ocsf_schema_engine.exceptions import ParseError, SchemaException
from ocsf_schema_engine.repository import SchemaRepository
from tests.schema_fixtures import DICTIONARY, make_schema, write_json, write_text


class TestSchemaRepository(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.schema_path = make_schema(Path(self._tmp.name) / "schema")
        self.repository = SchemaRepository(self.schema_path)

    def tearDown(self):
        self._tmp.cleanup()

    def break_dictionary(self):
        write_text(self.schema_path / "dictionary.json", '{"attributes": ')

    def test_query_before_load(self):
        self.assertFalse(self.repository.is_loaded)
        with self.assertRaises(SchemaException):
            self.repository.get_class("authentication")

    def test_load(self):
        graph = self.repository.load()
        self.assertTrue(self.repository.is_loaded)
        self.assertIs(graph, self.repository.graph)
        self.assertEqual("1.0.0", self.repository.version())
        self.assertEqual(3002, self.repository.get_class("authentication").uid)
        self.assertIs(
            self.repository.get_class("authentication"),
            self.repository.find_class(3002),
        )
        self.assertEqual("base_event", self.repository.base_event().name)
        self.assertIn("user", self.repository.objects())
        self.assertIn("iam", self.repository.categories())
        self.assertIn("host", self.repository.profiles())
        self.assertIn("string_t", self.repository.data_types())
        self.assertEqual({}, dict(self.repository.extensions()))
        self.assertEqual(1, len(self.repository.referenced_by("user")))
        self.assertIn("authentication", self.repository.category_classes("iam"))
        self.assertIsNotNone(self.repository.get_profile("host"))
        self.assertEqual(self.repository.graph.to_json(), self.repository.to_json())

    def test_failed_first_load(self):
        self.break_dictionary()
        with self.assertLogs("ocsf_schema_engine", level="ERROR"):
            with self.assertRaises(ParseError):
                self.repository.load()
        self.assertFalse(self.repository.is_loaded)

        write_json(self.schema_path / "dictionary.json", DICTIONARY)
        self.repository.reload()
        self.assertTrue(self.repository.is_loaded)

    def test_failed_reload_keeps_graph(self):
        old = self.repository.load()
        self.break_dictionary()
        with self.assertLogs("ocsf_schema_engine", level="ERROR") as logs:
            with self.assertRaises(ParseError):
                self.repository.reload()
        self.assertIs(old, self.repository.graph)
        self.assertIn("keeping schema version 1.0.0", logs.output[-1])

        write_json(self.schema_path / "dictionary.json", DICTIONARY)
        write_json(self.schema_path / "version.json", {"version": "1.1.0"})
        new = self.repository.reload()
        self.assertIsNot(old, new)
        self.assertEqual("1.1.0", self.repository.version())
        # the old graph is unchanged
        self.assertEqual("1.0.0", old.version)

    def test_reload_other_path(self):
        self.repository.load()
        other = make_schema(Path(self._tmp.name) / "other", version="2.0.0")
        self.repository.reload(schema_path=other)
        self.assertEqual("2.0.0", self.repository.version())
        self.assertEqual(other, self.repository.schema_path)

    def test_readers_during_reload(self):
        self.repository.load()
        errors = []
        done = threading.Event()

        def reader():
            while not done.is_set():
                graph = self.repository.graph
                if graph.get_class("authentication") is None:
                    errors.append("missing class")

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        try:
            for _ in range(3):
                self.repository.reload()
        finally:
            done.set()
            for t in threads:
                t.join()
        self.assertEqual([], errors)


if __name__ == "__main__":
    unittest.main()
