import time
import unittest

from vsearch_db.core.cancellation import CancellationToken, NEVER_CANCELLED, resolve_token
from vsearch_exception_model.exception import OperationCancelledException, TimeoutException


class TestCancellationToken(unittest.TestCase):

    def test_check_passes_until_cancelled(self):
        token = CancellationToken(operation="scan")
        token.check()
        token.cancel()
        self.assertTrue(token.cancelled)
        with self.assertRaises(OperationCancelledException) as ctx:
            token.check()
        self.assertEqual("scan", ctx.exception.operation)

    def test_deadline_raises_timeout(self):
        token = CancellationToken(timeout_seconds=0.01)
        time.sleep(0.03)
        self.assertTrue(token.expired)
        with self.assertRaises(TimeoutException):
            token.check()

    def test_never_cancelled(self):
        NEVER_CANCELLED.check()
        with self.assertRaises(RuntimeError):
            NEVER_CANCELLED.cancel()

    def test_resolve_token(self):
        token = CancellationToken()
        self.assertIs(token, resolve_token(token, 5))
        self.assertIs(NEVER_CANCELLED, resolve_token(None))
        fresh = resolve_token(None, 10, "search")
        self.assertIsNot(NEVER_CANCELLED, fresh)
        self.assertEqual("search", fresh.operation)


if __name__ == '__main__':
    unittest.main()
