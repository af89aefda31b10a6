from __future__ import annotations

import pytest

from kubepool.core.exceptions import KubepoolError, TerminalStateError, WaitTimeoutError
from kubepool.wait import wait_for_ready

pytestmark = [pytest.mark.unit]


def statuses(*values: str | None):
    remaining = list(values)

    async def probe() -> str | None:
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return probe


class TestWaitForReady:
    @pytest.mark.asyncio
    async def test_polls_until_ready(self):
        probe = statuses(None, "installing", "running")
        assert await wait_for_ready(probe, lambda s: s == "running", interval=0.0) == "running"

    @pytest.mark.asyncio
    async def test_terminal_state(self):
        probe = statuses("installing", "error")
        with pytest.raises(TerminalStateError) as exc_info:
            await wait_for_ready(
                probe,
                lambda s: s == "running",
                is_terminal=lambda s: s == "error",
                interval=0.0,
                description="instance 1001 reinstall",
            )
        assert exc_info.value.state == "error"
        assert str(exc_info.value) == "instance 1001 reinstall reached terminal state: error"

    @pytest.mark.asyncio
    async def test_zero_timeout_probes_once(self):
        calls = {"n": 0}

        async def probe() -> str:
            calls["n"] += 1
            return "stopped"

        with pytest.raises(WaitTimeoutError, match="Timeout waiting for etcd of cluster c1"):
            await wait_for_ready(probe, lambda s: s == "running", timeout=0.0, description="etcd of cluster c1")
        assert calls["n"] == 1

    def test_errors_are_kubepool_errors(self):
        assert isinstance(WaitTimeoutError("x", 1.0), KubepoolError)
        assert isinstance(TerminalStateError("x", "error"), KubepoolError)
