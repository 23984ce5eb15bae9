from __future__ import annotations

import json

import pytest

from ctxrag.errors import StreamDecodeWarning, StreamTerminatedError
from ctxrag.services.stream import StreamDecoder, decode_stream, extract_content

FRAMES = [
    {"message": {"role": "assistant", "content": "Hel"}, "done": False},
    {"message": {"role": "assistant", "content": "lo, "}, "done": False},
    {"message": {"role": "assistant", "content": "wörld ✓"}, "done": False},
    {"message": {"role": "assistant", "content": ""}, "done": True},
]
PAYLOAD = b"".join(b"data: " + json.dumps(frame, ensure_ascii=False).encode("utf-8") + b"\n" for frame in FRAMES)
EXPECTED = ["Hel", "lo, ", "wörld ✓"]


def _decode(fragments: list[bytes], on_warning=None) -> list[str]:
    decoder = StreamDecoder(on_warning)
    deltas: list[str] = []
    for fragment in fragments:
        deltas.extend(decoder.feed(fragment))
    deltas.extend(decoder.close())
    return deltas


def test_every_split_point_yields_same_deltas() -> None:
    for cut in range(len(PAYLOAD) + 1):
        assert _decode([PAYLOAD[:cut], PAYLOAD[cut:]]) == EXPECTED


def test_byte_by_byte_feeding_yields_same_deltas() -> None:
    assert _decode([PAYLOAD[i : i + 1] for i in range(len(PAYLOAD))]) == EXPECTED


def test_plain_ndjson_frames_are_accepted() -> None:
    body = b'{"message":{"content":"a"}}\n{"message":{"content":"b"}}\n{"done":true}\n'
    assert _decode([body]) == ["a", "b"]


def test_malformed_frames_are_skipped_with_warning() -> None:
    warnings: list[StreamDecodeWarning] = []
    body = (
        b'data: {"message":{"content":"one"}}\n'
        b"data: {not json\n"
        b'data: {"unexpected": 1}\n'
        b": keep-alive comment\n"
        b"event: message\n"
        b"\n"
        b'data: {"message":{"content":"two"}}\n'
    )

    assert _decode([body], warnings.append) == ["one", "two"]
    assert [warning.reason for warning in warnings] == ["frame is not valid JSON", "frame has no content field"]


def test_done_sentinel_ends_stream_and_ignores_rest() -> None:
    decoder = StreamDecoder()
    deltas = decoder.feed(b'data: {"choices":[{"delta":{"content":"hi"}}]}\ndata: [DONE]\ndata: {"response":"late"}\n')

    assert deltas == ["hi"]
    assert decoder.finished
    assert decoder.feed(b'{"response":"later"}\n') == []


def test_final_frame_without_newline_is_flushed_on_close() -> None:
    assert _decode([b'{"response":"tail"}']) == ["tail"]


def test_error_frame_terminates_stream() -> None:
    decoder = StreamDecoder()
    assert decoder.feed(b'data: {"error":"model crashed"}\n') == []
    assert decoder.finished
    assert "model crashed" in str(decoder.error)
    with pytest.raises(StreamTerminatedError):
        decoder.close()


def test_deltas_before_error_frame_in_same_fragment_are_kept() -> None:
    decoder = StreamDecoder()

    deltas = decoder.feed(b'{"message":{"content":"Hel"}}\n{"message":{"content":"lo"}}\n{"error":"oom"}\n')

    assert deltas == ["Hel", "lo"]
    with pytest.raises(StreamTerminatedError):
        decoder.feed(b'{"message":{"content":"late"}}\n')


def test_unterminated_error_frame_raises_on_close() -> None:
    decoder = StreamDecoder()

    assert decoder.feed(b'{"response":"a"}\n{"error":"gone"}') == ["a"]
    with pytest.raises(StreamTerminatedError):
        decoder.close()


@pytest.mark.asyncio
async def test_decode_stream_yields_deltas_before_raising_error() -> None:
    async def source():
        yield b'{"message":{"content":"Hel"}}\n{"error":"oom"}\n'

    deltas: list[str] = []
    with pytest.raises(StreamTerminatedError):
        async for delta in decode_stream(source()):
            deltas.append(delta)

    assert deltas == ["Hel"]


def test_extract_content_variants() -> None:
    assert extract_content({"message": {"content": "a"}}) == "a"
    assert extract_content({"response": "b"}) == "b"
    assert extract_content({"choices": [{"delta": {"content": "c"}}]}) == "c"
    assert extract_content({"choices": []}) is None


@pytest.mark.asyncio
async def test_decode_stream_is_lazy_and_closes_source() -> None:
    closed = False

    async def source():
        nonlocal closed
        try:
            yield PAYLOAD[:10]
            yield PAYLOAD[10:]
        finally:
            closed = True

    deltas = [delta async for delta in decode_stream(source())]

    assert deltas == EXPECTED
    assert closed


@pytest.mark.asyncio
async def test_closing_decode_stream_early_closes_source() -> None:
    closed = False

    async def source():
        nonlocal closed
        try:
            for frame in FRAMES:
                yield (json.dumps(frame) + "\n").encode("utf-8")
        finally:
            closed = True

    stream = decode_stream(source())
    assert await stream.__anext__() == "Hel"
    await stream.aclose()

    assert closed
