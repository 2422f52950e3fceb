import asyncio
import json
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest


def encode_frames(*payloads) -> bytes:
    """把若干 dict 编码为 SSE 帧。"""

    return b"".join(
        f"data: {json.dumps(p, ensure_ascii=False)}\n\n".encode("utf-8") for p in payloads
    )


class FakeResponse:
    def __init__(self, chunks=(), status_code=200, reason_phrase="OK", *, hang=False, delay=0.0):
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        self._chunks = list(chunks)
        self._hang = hang
        self._delay = delay
        self.read_started = False

    async def aiter_bytes(self):
        self.read_started = True
        for chunk in self._chunks:
            if self._delay:
                await asyncio.sleep(self._delay)
            yield chunk
        if self._hang:
            await asyncio.Event().wait()


class FakeTransport:
    name = "fake"

    def __init__(self, *responses, error=None):
        self._responses = list(responses)
        self.error = error
        self.requests = []
        self.opened_at = []
        self.closed = 0

    def _next_response(self):
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]

    @asynccontextmanager
    async def open_stream(self, request):
        self.requests.append(request)
        self.opened_at.append(asyncio.get_running_loop().time())
        if self.error is not None:
            raise self.error
        try:
            yield self._next_response()
        finally:
            self.closed += 1


@pytest.fixture
def fakes():
    return SimpleNamespace(
        sse=encode_frames,
        response=FakeResponse,
        transport=FakeTransport,
    )
