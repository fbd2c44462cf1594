"""Tests for the bounded retry primitive."""

import unittest

from maintained_apps.retry import retry_call


class TestRetryCall(unittest.TestCase):
    def setUp(self):
        self.waits = []

    def _sleep(self, seconds):
        self.waits.append(seconds)

    def test_first_success_no_wait(self):
        result = retry_call(lambda: "ok", attempts=3, delay=5, sleep=self._sleep)
        self.assertEqual(result, "ok")
        self.assertEqual(self.waits, [])

    def test_backoff_between_attempts(self):
        results = iter(["", "", "data"])
        result = retry_call(lambda: next(results), attempts=3, delay=2, backoff=2, sleep=self._sleep)
        self.assertEqual(result, "data")
        self.assertEqual(self.waits, [2, 4])

    def test_exhausted_returns_last_result(self):
        calls = []

        def func():
            calls.append(1)
            return {}

        result = retry_call(func, attempts=3, delay=1, sleep=self._sleep)
        self.assertEqual(result, {})
        self.assertEqual(len(calls), 3)
        self.assertEqual(len(self.waits), 2)

    def test_retry_on_exception_then_success(self):
        outcomes = iter([RuntimeError("flaky"), "fine"])

        def func():
            item = next(outcomes)
            if isinstance(item, Exception):
                raise item
            return item

        self.assertEqual(retry_call(func, attempts=2, delay=0, retry_on=(RuntimeError,), sleep=self._sleep), "fine")

    def test_exception_on_last_attempt_is_raised(self):
        def func():
            raise RuntimeError("still broken")

        with self.assertRaises(RuntimeError):
            retry_call(func, attempts=2, delay=0, retry_on=(RuntimeError,), sleep=self._sleep)

    def test_unlisted_exception_propagates_immediately(self):
        calls = []

        def func():
            calls.append(1)
            raise KeyError("x")

        with self.assertRaises(KeyError):
            retry_call(func, attempts=3, delay=0, retry_on=(RuntimeError,), sleep=self._sleep)
        self.assertEqual(len(calls), 1)

    def test_custom_accept_and_on_retry(self):
        seen = []
        values = iter([1, 2, 3])
        result = retry_call(
            lambda: next(values),
            attempts=3,
            delay=1,
            accept=lambda v: v >= 3,
            sleep=self._sleep,
            on_retry=lambda n, w: seen.append(n),
        )
        self.assertEqual(result, 3)
        self.assertEqual(seen, [2, 3])

    def test_on_retry_sees_growing_waits(self):
        seen = []
        results = iter([None, None, None, "late"])
        result = retry_call(
            lambda: next(results),
            attempts=4,
            delay=1,
            backoff=3,
            sleep=self._sleep,
            on_retry=lambda n, w: seen.append((n, w)),
        )
        self.assertEqual(result, "late")
        self.assertEqual(seen, [(2, 1), (3, 3), (4, 9)])
        self.assertEqual(self.waits, [1, 3, 9])

    def test_attempts_must_be_positive(self):
        with self.assertRaises(ValueError):
            retry_call(lambda: 1, attempts=0, delay=0)


if __name__ == "__main__":
    unittest.main()
