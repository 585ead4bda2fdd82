import unittest

from ocsf_schema_engine.diagnostics import Diagnostics
from ocsf_schema_engine.exceptions import UnresolvedReferenceError


class TestDiagnostics(unittest.TestCase):
    def test_counts(self):
        diagnostics = Diagnostics()
        with self.assertLogs("ocsf_schema_engine.diagnostics", level="WARNING") as logs:
            diagnostics.warning('Class "%s" has no category', "foo")
            diagnostics.error("bad uid")
            diagnostics.unresolved_reference(UnresolvedReferenceError("no parent"))
        self.assertEqual(1, diagnostics.warning_count)
        self.assertEqual(2, diagnostics.error_count)
        self.assertEqual(1, len(diagnostics.unresolved))
        self.assertEqual(
            [
                'WARNING:ocsf_schema_engine.diagnostics:Class "foo" has no category',
                "ERROR:ocsf_schema_engine.diagnostics:bad uid",
                "ERROR:ocsf_schema_engine.diagnostics:no parent",
            ],
            logs.output,
        )

    def test_summary(self):
        diagnostics = Diagnostics()
        with self.assertLogs("ocsf_schema_engine.diagnostics", level="INFO") as logs:
            diagnostics.log_summary()
        self.assertIn("successfully", logs.output[0])

        diagnostics.warning("something")
        with self.assertLogs("ocsf_schema_engine.diagnostics", level="INFO") as logs:
            diagnostics.log_summary()
        self.assertIn("1 warning(s)", logs.output[0])


if __name__ == "__main__":
    unittest.main()
