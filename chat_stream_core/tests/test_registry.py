import asyncio

import pytest

from chat_stream_core.domain.exceptions import ValidationError
from chat_stream_core.runtime.registry import AbortHandle, RequestRegistry


class RecordingHandle:
    def __init__(self):
        self.reasons = []

    def cancel(self, reason):
        self.reasons.append(reason)


@pytest.mark.asyncio
async def test_cancel_is_at_most_once():
    registry = RequestRegistry(idle_timeout=5)
    handle = RecordingHandle()
    registry.register("r1", handle)
    assert registry.cancel("r1") is True
    assert registry.cancel("r1") is False
    assert handle.reasons == ["cancelled"]
    assert registry.active_count == 0


@pytest.mark.asyncio
async def test_complete_removes_without_cancelling():
    registry = RequestRegistry(idle_timeout=5)
    handle = RecordingHandle()
    registry.register("r1", handle)
    assert registry.complete("r1") is True
    assert registry.cancel("r1") is False
    assert handle.reasons == []


@pytest.mark.asyncio
async def test_cancel_all_counts_and_clears():
    registry = RequestRegistry(idle_timeout=5)
    handles = [RecordingHandle() for _ in range(3)]
    for i, h in enumerate(handles):
        registry.register(f"r{i}", h)
    assert sorted(registry.active_ids()) == ["r0", "r1", "r2"]
    assert registry.cancel_all() == 3
    assert registry.cancel_all() == 0
    assert all(h.reasons == ["cancelled"] for h in handles)


@pytest.mark.asyncio
async def test_idle_timeout_cancels_with_timeout_reason():
    registry = RequestRegistry(idle_timeout=0.02)
    handle = RecordingHandle()
    registry.register("r1", handle)
    await asyncio.sleep(0.1)
    assert handle.reasons == ["timeout"]
    assert "r1" not in registry
    assert registry.cancel("r1") is False


@pytest.mark.asyncio
async def test_completed_request_never_times_out():
    registry = RequestRegistry(idle_timeout=0.02)
    handle = RecordingHandle()
    registry.register("r1", handle)
    registry.complete("r1")
    await asyncio.sleep(0.06)
    assert handle.reasons == []


@pytest.mark.asyncio
async def test_per_request_timeout_overrides_default():
    registry = RequestRegistry(idle_timeout=10)
    handle = RecordingHandle()
    registry.register("r1", handle, timeout=0.01)
    await asyncio.sleep(0.05)
    assert handle.reasons == ["timeout"]


@pytest.mark.asyncio
async def test_duplicate_registration_rejected():
    registry = RequestRegistry()
    registry.register("r1", RecordingHandle())
    with pytest.raises(ValidationError):
        registry.register("r1", RecordingHandle())
    registry.cancel_all()


def test_request_ids_are_unique():
    registry = RequestRegistry()
    ids = {registry.new_request_id("auxiliary") for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("auxiliary-request-") for i in ids)


@pytest.mark.asyncio
async def test_abort_handle_keeps_first_reason_and_cancels_task():
    task = asyncio.create_task(asyncio.sleep(10))
    abort = AbortHandle()
    abort.bind(task)
    abort.cancel("timeout")
    abort.cancel("cancelled")
    assert abort.reason == "timeout"
    with pytest.raises(asyncio.CancelledError):
        await task
