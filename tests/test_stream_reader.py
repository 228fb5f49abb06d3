import asyncio

import httpx
import pytest

from review_stream.core.stream_reader import SSEStreamReader
from review_stream.errors import StreamInterruptedError


async def _chunks(*parts, error=None):
    for part in parts:
        yield part
    if error is not None:
        raise error


async def _collect(reader, chunks, is_current=None):
    return [m async for m in reader.messages(chunks, is_current)]


def test_message_split_across_chunks():
    reader = SSEStreamReader()

    assert reader.feed(b'data: {"a"') == []
    assert reader.feed(b':1}\n\ndata: x') == ['data: {"a":1}']
    assert reader.finish() == "data: x"


def test_multibyte_character_split_across_chunks():
    encoded = "data: é\n\n".encode("utf-8")
    split = encoded.index(b"\xc3") + 1
    reader = SSEStreamReader()

    assert reader.feed(encoded[:split]) == []
    assert reader.feed(encoded[split:]) == ["data: é"]


def test_crlf_delimiters():
    reader = SSEStreamReader()
    assert reader.feed(b"data: 1\r\n\r\ndata: 2\r\n\r\n") == ["data: 1", "data: 2"]


def test_blank_messages_are_dropped():
    reader = SSEStreamReader()
    assert reader.feed(b"\n\n\n\ndata: 1\n\n") == ["data: 1"]
    assert reader.finish() is None


def test_messages_yields_trailing_fragment():
    messages = asyncio.run(_collect(SSEStreamReader(), _chunks(b"data: 1\n\nda", b"ta: 2")))
    assert messages == ["data: 1", "data: 2"]


def test_read_error_raises_stream_interrupted():
    received = []

    async def run():
        reader = SSEStreamReader()
        async for message in reader.messages(_chunks(b"data: 1\n\n", error=httpx.ReadError("boom"))):
            received.append(message)

    with pytest.raises(StreamInterruptedError, match="boom"):
        asyncio.run(run())
    assert received == ["data: 1"]


def test_stale_run_stops_reading():
    state = {"current": True}

    async def chunks():
        yield b"data: 1\n\n"
        state["current"] = False
        yield b"data: 2\n\n"

    messages = asyncio.run(_collect(SSEStreamReader(), chunks(), lambda: state["current"]))
    assert messages == ["data: 1"]
