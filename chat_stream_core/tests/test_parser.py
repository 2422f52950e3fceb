import logging

import pytest

from chat_stream_core.domain.exceptions import ValidationError
from chat_stream_core.domain.models import EventKind
from chat_stream_core.streaming.parser import MISSING_TERMINAL_REASON, EventFrameParser


def test_multiple_frames_in_one_chunk(fakes):
    parser = EventFrameParser()
    chunk = fakes.sse(
        {"event": "message", "answer": "Hi", "conversation_id": "c1", "message_id": "m1"},
        {"event": "ping"},
        {"event": "message_end", "message_id": "m1"},
    )
    events = parser.feed(chunk)
    assert [e.kind for e in events] == [EventKind.DELTA, EventKind.PING, EventKind.END]
    assert events[0].answer == "Hi"
    assert events[0].conversation_id == "c1"
    assert events[0].message_id == "m1"
    assert parser.close() == []


def test_frames_split_across_chunks_byte_by_byte(fakes):
    data = fakes.sse(
        {"event": "message", "answer": "你好"},
        {"event": "message", "answer": "你好，世界"},
        {"event": "workflow_finished"},
    )
    whole = EventFrameParser().feed(data)

    parser = EventFrameParser()
    events = []
    for i in range(len(data)):
        events.extend(parser.feed(data[i : i + 1]))
    events.extend(parser.close())

    assert [(e.kind, e.answer) for e in events] == [(e.kind, e.answer) for e in whole]
    assert events[1].answer == "你好，世界"
    assert events[-1].kind is EventKind.WORKFLOW_END


def test_malformed_frame_is_skipped(fakes, caplog):
    parser = EventFrameParser()
    chunk = b"data: {not json\n\n" + b"data: [1, 2]\n\n" + fakes.sse({"event": "message", "answer": "ok"})
    with caplog.at_level(logging.WARNING, logger="chat_stream_core"):
        events = parser.feed(chunk)
    assert [e.answer for e in events] == ["ok"]
    assert parser.skipped == 2
    assert "Skipping malformed frame" in caplog.text


def test_frame_without_event_field_counts_as_malformed():
    parser = EventFrameParser()
    assert parser.feed(b'data: {"answer": "x"}\n\n') == []
    assert parser.skipped == 1


def test_unknown_event_is_ignored_without_error():
    parser = EventFrameParser()
    assert parser.feed(b'data: {"event": "workflow_started"}\n\n') == []
    assert parser.skipped == 0


def test_close_without_terminal_emits_implicit_error(fakes):
    parser = EventFrameParser()
    parser.feed(fakes.sse({"event": "message", "answer": "partial"}))
    events = parser.close()
    assert len(events) == 1
    assert events[0].kind is EventKind.ERROR
    assert events[0].implicit
    assert events[0].error == MISSING_TERMINAL_REASON


def test_close_after_terminal_adds_nothing(fakes):
    parser = EventFrameParser()
    parser.feed(fakes.sse({"event": "error", "message": "upstream down"}))
    assert parser.saw_terminal
    assert parser.close() == []


def test_crlf_comments_and_multiline_data():
    parser = EventFrameParser()
    chunk = (
        b": keep-alive\r\n\r\n"
        b'event: message\r\ndata: {"event": "message",\r\ndata: "answer": "a"}\r\n\r\n'
    )
    events = parser.feed(chunk)
    assert len(events) == 1
    assert events[0].answer == "a"


def test_trailing_frame_parsed_on_close():
    parser = EventFrameParser()
    assert parser.feed(b'data: {"event": "message_end"}') == []
    events = parser.close()
    assert [e.kind for e in events] == [EventKind.END]
    assert not events[0].implicit


def test_error_event_carries_message(fakes):
    events = EventFrameParser().feed(fakes.sse({"event": "error", "message": "upstream down", "code": "bad"}))
    assert events[0].kind is EventKind.ERROR
    assert events[0].error == "upstream down"


def test_feed_after_close_rejected():
    parser = EventFrameParser()
    parser.close()
    with pytest.raises(ValidationError):
        parser.feed(b"data: {}\n\n")


@pytest.mark.asyncio
async def test_iter_events_appends_implicit_terminal(fakes):
    async def chunks():
        yield fakes.sse({"event": "message", "answer": "a"})[:10]
        yield fakes.sse({"event": "message", "answer": "a"})[10:]

    parser = EventFrameParser()
    kinds = [e.kind async for e in parser.iter_events(chunks())]
    assert kinds == [EventKind.DELTA, EventKind.ERROR]
