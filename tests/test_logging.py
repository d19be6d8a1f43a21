import io
import json
import logging
import unittest

from thinklab.daemon.utils.logging_config import JSONFormatter, StructuredLogger


class StructuredLoggerTests(unittest.TestCase):
    def setUp(self):
        self.stream = io.StringIO()
        self.handler = logging.StreamHandler(self.stream)
        self.handler.setFormatter(JSONFormatter())
        self.target = logging.getLogger("thinklab.tests.logging")
        self.target.addHandler(self.handler)
        self.target.setLevel(logging.DEBUG)

    def tearDown(self):
        self.target.removeHandler(self.handler)

    def _lines(self):
        return [json.loads(line) for line in self.stream.getvalue().splitlines()]

    def test_context_fields_are_merged(self):
        StructuredLogger("thinklab.tests.logging").info("Credits reserved", account_id="a1", cost=5)

        entry = self._lines()[0]
        self.assertEqual(entry["message"], "Credits reserved")
        self.assertEqual(entry["level"], "INFO")
        self.assertEqual(entry["logger"], "thinklab.tests.logging")
        self.assertEqual(entry["account_id"], "a1")
        self.assertEqual(entry["cost"], 5)

    def test_bound_context(self):
        log = StructuredLogger("tests.logging").bind(record_id="r1")
        log.critical("Reconciliation required", attempts=3)

        entry = self._lines()[0]
        self.assertEqual(entry["record_id"], "r1")
        self.assertEqual(entry["attempts"], 3)
        self.assertEqual(entry["level"], "CRITICAL")

    def test_sensitive_fields_are_redacted(self):
        StructuredLogger("tests.logging").warning("Provider call", api_key="sk-live-123", model="gpt-4o")

        entry = self._lines()[0]
        self.assertEqual(entry["api_key"], "***")
        self.assertEqual(entry["model"], "gpt-4o")

    def test_exception_includes_traceback(self):
        try:
            raise RuntimeError("db down")
        except RuntimeError:
            StructuredLogger("tests.logging").exception("Sweep failed")

        entry = self._lines()[0]
        self.assertIn("RuntimeError: db down", entry["exc_info"])


if __name__ == "__main__":
    unittest.main()
