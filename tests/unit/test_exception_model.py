import unittest

from vsearch_exception_model.exception import (
    InvalidFieldSpecException, UnsupportedMetricException, MalformedQueryException, TimeoutException,
    OperationCancelledException, VectorDimensionMismatchException, StorageFailureException
)


class TestExceptionModel(unittest.TestCase):

    def test_message_without_context(self):
        e = InvalidFieldSpecException("bad field")
        self.assertEqual("bad field", str(e))
        self.assertEqual("bad field", e.message)

    def test_context_rendered_in_str(self):
        e = VectorDimensionMismatchException("mismatch", provided_dim=3, expected_dim=4, index_name="idx")
        self.assertEqual("mismatch (provided_dim=3, expected_dim=4, index_name=idx)", str(e))

    def test_unsupported_metric_is_invalid_field_spec(self):
        e = UnsupportedMetricException("nope", "HAMMING", ["COSINE", "IP", "L2"], index_name="idx", field_name="v")
        self.assertIsInstance(e, InvalidFieldSpecException)
        self.assertEqual("idx", e.index_name)
        self.assertIn("metric=HAMMING", str(e))

    def test_malformed_query_carries_position_and_reason(self):
        e = MalformedQueryException("syntax", position=7, reason="expected '}'", query="@t:{a")
        self.assertEqual(7, e.position)
        self.assertEqual("expected '}'", e.reason)
        self.assertEqual("@t:{a", e.query)

    def test_timeout_is_cancellation(self):
        e = TimeoutException("slow", operation="search", timeout_seconds=0.5)
        self.assertIsInstance(e, OperationCancelledException)
        self.assertIn("timeout_seconds=0.5", str(e))

    def test_storage_failure_keeps_cause(self):
        cause = IOError("disk")
        e = StorageFailureException("write failed", record_id="k", cause=cause)
        self.assertIs(cause, e.cause)


if __name__ == '__main__':
    unittest.main()
