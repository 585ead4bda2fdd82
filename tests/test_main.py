import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from ocsf_schema_engine.__main__ import main
from tests.schema_fixtures import make_extension, make_schema, write_json


class TestMain(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.schema_path = make_schema(self.root / "schema")

    def tearDown(self):
        self._tmp.cleanup()

    def run_main(self, argv, env=None) -> dict:
        out = io.StringIO()
        with (
            mock.patch("sys.argv", ["ocsf-schema-engine"] + argv),
            mock.patch.dict(os.environ, env or {}),
            redirect_stdout(out),
        ):
            main()
        return json.loads(out.getvalue())

    def test_compile_to_stdout(self):
        schema = self.run_main([str(self.schema_path), "--log-level", "ERROR"])
        self.assertEqual("1.0.0", schema["version"])
        self.assertIn("authentication", schema["classes"])

    def test_schema_dir_environment(self):
        schema = self.run_main(
            ["--log-level", "ERROR"], env={"SCHEMA_DIR": str(self.schema_path)}
        )
        self.assertIn("base_event", schema["classes"])

    def test_extension_environment(self):
        ext = make_extension(self.root / "corp", "corp", 9)
        write_json(
            ext / "objects" / "badge.json",
            {"name": "badge", "caption": "Badge", "attributes": {}},
        )
        schema = self.run_main(
            [str(self.schema_path), "--log-level", "ERROR"],
            env={"SCHEMA_EXTENSION": str(ext)},
        )
        self.assertIn("corp/badge", schema["objects"])
        self.assertIn("corp", schema["extensions"])

    def test_bad_workers(self):
        with self.assertRaises(SystemExit):
            self.run_main([str(self.schema_path), "--workers", "0"])


if __name__ == "__main__":
    unittest.main()
