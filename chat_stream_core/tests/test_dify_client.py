import httpx
import pytest

from chat_stream_core.domain.exceptions import TransportError, ValidationError
from chat_stream_core.domain.models import StreamRequest, Turn
from chat_stream_core.providers.dify_client import DifyTransport
from chat_stream_core.providers.registry import TransportTarget
from chat_stream_core.runtime.orchestrator import ChannelOrchestrator, OrchestratorConfig


class SettingsStub:
    http_timeout = 1.0


TARGET = TransportTarget(name="main", api_base="https://dify.example.com/v1", api_key="app-1234567890", user="u1")


def install_client(monkeypatch, response=None, error=None):
    captured = {}

    class StreamContext:
        async def __aenter__(self):
            if error is not None:
                raise error
            return response

        async def __aexit__(self, *args):
            return False

    class Client:
        def __init__(self, *a, **kw):
            captured["client_kwargs"] = kw

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        def post(self, *a, **kw):
            raise AssertionError("post should not be called in stream test")

        def stream(self, method, url, json=None, headers=None, **_):
            captured.update(method=method, url=url, payload=json, headers=headers)
            return StreamContext()

    monkeypatch.setattr("httpx.AsyncClient", Client)
    return captured


@pytest.mark.asyncio
async def test_open_stream_request_shape(monkeypatch, fakes):
    response = fakes.response([])
    captured = install_client(monkeypatch, response=response)
    transport = DifyTransport(TARGET, SettingsStub())
    req = StreamRequest(query="hi", user="u1", conversation_id="c-9", inputs={"k": "v"})

    async with transport.open_stream(req) as resp:
        assert resp is response

    assert captured["method"] == "POST"
    assert captured["url"] == "https://dify.example.com/v1/chat-messages"
    assert captured["headers"]["Authorization"] == "Bearer app-1234567890"
    assert captured["payload"] == {
        "query": "hi",
        "inputs": {"k": "v"},
        "files": [],
        "user": "u1",
        "response_mode": "streaming",
        "conversation_id": "c-9",
    }
    assert captured["client_kwargs"]["trust_env"] is False


@pytest.mark.asyncio
async def test_conversation_id_omitted_when_absent(monkeypatch, fakes):
    captured = install_client(monkeypatch, response=fakes.response([]))
    async with DifyTransport(TARGET, SettingsStub()).open_stream(StreamRequest(query="hi", user="u1")):
        pass
    assert "conversation_id" not in captured["payload"]


@pytest.mark.asyncio
async def test_missing_api_key(monkeypatch):
    install_client(monkeypatch)
    target = TransportTarget(name="auxiliary", api_base="https://x/v1", api_key=None, user="u")
    with pytest.raises(ValidationError) as exc_info:
        async with DifyTransport(target, SettingsStub()).open_stream(StreamRequest(query="hi", user="u")):
            pass
    assert exc_info.value.code == "MISSING_API_KEY"


@pytest.mark.asyncio
async def test_connect_error_becomes_transport_error(monkeypatch):
    install_client(monkeypatch, error=httpx.ConnectError("connection refused"))
    with pytest.raises(TransportError) as exc_info:
        async with DifyTransport(TARGET, SettingsStub()).open_stream(StreamRequest(query="hi", user="u1")):
            pass
    assert exc_info.value.code == "NETWORK_ERROR"
    assert "connection refused" in exc_info.value.message


@pytest.mark.asyncio
async def test_orchestrated_stream_through_dify_transport(monkeypatch, fakes):
    stream = fakes.sse(
        {"event": "message", "answer": "Hi", "message_id": "m1"},
        {"event": "message", "answer": "Hi there", "message_id": "m1"},
        {"event": "message_end", "message_id": "m1"},
    )
    # 故意在帧中间切块
    response = fakes.response([stream[:17], stream[17:40], stream[40:]])
    install_client(monkeypatch, response=response)
    orch = ChannelOrchestrator(DifyTransport(TARGET, SettingsStub()), config=OrchestratorConfig(idle_timeout=2.0))

    handles = await orch.submit(Turn(primary_content="hello"))
    result = await orch.wait(handles.primary)
    assert result.status == "success"
    assert result.text == "Hi there"
    assert result.message_id == "m1"


@pytest.mark.asyncio
async def test_missing_key_surfaces_as_channel_error(monkeypatch):
    install_client(monkeypatch)
    target = TransportTarget(name="main", api_base="https://x/v1", api_key=None, user="u")
    orch = ChannelOrchestrator(DifyTransport(target, SettingsStub()), config=OrchestratorConfig(idle_timeout=2.0))
    handles = await orch.submit(Turn(primary_content="hello"))
    result = await orch.wait(handles.primary)
    assert result.status == "error"
    assert result.error_code == "MISSING_API_KEY"
