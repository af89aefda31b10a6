from __future__ import annotations

import pytest

from kubepool.core.exceptions import InstanceLockedError, ProviderError
from kubepool.infra.http import HttpError
from kubepool.retry import TRANSIENT, any_of, on_server_error, on_status_code, retry

pytestmark = [pytest.mark.unit]


def flaky(failures: list[Exception], result: str = "ok"):
    calls = {"n": 0}

    async def fn() -> str:
        calls["n"] += 1
        if failures:
            raise failures.pop(0)
        return result

    return fn, calls


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        fn, calls = flaky([ProviderError(503, "busy"), ProviderError(502, "gateway")])
        wrapped = retry(on=ProviderError, max_attempts=3, base_delay=0.0, jitter=False)(fn)
        assert await wrapped() == "ok"
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        fn, calls = flaky([InstanceLockedError(423, "locked") for _ in range(5)])
        wrapped = retry(on=InstanceLockedError, max_attempts=2, base_delay=0.0, backoff=False)(fn)
        with pytest.raises(InstanceLockedError):
            await wrapped()
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_non_matching_error_is_not_retried(self):
        fn, calls = flaky([ProviderError(400, "bad request")])
        wrapped = retry(on=on_status_code(423), max_attempts=5, base_delay=0.0)(fn)
        with pytest.raises(ProviderError):
            await wrapped()
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_tuple_of_types(self):
        fn, calls = flaky([ValueError("x"), KeyError("y")])
        wrapped = retry(on=(ValueError, KeyError), max_attempts=3, base_delay=0.0)(fn)
        assert await wrapped() == "ok"
        assert calls["n"] == 3


class TestPredicates:
    def test_on_status_code(self):
        pred = on_status_code(429, 423)
        assert pred(HttpError(status=429, body=""))
        assert pred(ProviderError(423, "locked"))
        assert not pred(ProviderError(404, "missing"))
        assert not pred(ValueError())

    def test_on_server_error(self):
        pred = on_server_error()
        assert pred(ProviderError(500, ""))
        assert pred(HttpError(status=0, body="connection reset"))
        assert not pred(ProviderError(404, ""))

    def test_any_of(self):
        pred = any_of(on_status_code(429), on_server_error())
        assert pred(ProviderError(429, ""))
        assert pred(ProviderError(503, ""))
        assert not pred(ProviderError(401, ""))

    def test_transient_excludes_locked(self):
        assert TRANSIENT(ProviderError(429, "slow down"))
        assert TRANSIENT(HttpError(status=0, body="connection reset"))
        assert not TRANSIENT(InstanceLockedError(423, "locked"))
