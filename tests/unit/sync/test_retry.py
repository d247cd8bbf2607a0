"""Tests for bounded read-path retry."""

import asyncio

import pytest

from storesync.core.errors import AuthError, NetworkError
from storesync.sync.retry import backoff_delay, with_retry


def test_backoff_doubles_until_cap():
    delays = [backoff_delay(n, base=1.0, cap=5.0) for n in range(1, 6)]
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


class Flaky:
    """Fails with the given errors, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def test_network_errors_are_retried():
    operation = Flaky(NetworkError("timeout"), NetworkError("timeout"))

    result = asyncio.run(
        with_retry(operation, "Fetch", attempts=3, base=0, cap=0)
    )

    assert result == "ok"
    assert operation.calls == 3


def test_gives_up_after_attempts():
    operation = Flaky(*(NetworkError("timeout") for _ in range(5)))

    with pytest.raises(NetworkError):
        asyncio.run(with_retry(operation, "Fetch", attempts=2, base=0, cap=0))
    assert operation.calls == 2


def test_other_errors_are_not_retried():
    operation = Flaky(AuthError("denied"))

    with pytest.raises(AuthError):
        asyncio.run(with_retry(operation, "Fetch", attempts=3, base=0, cap=0))
    assert operation.calls == 1
