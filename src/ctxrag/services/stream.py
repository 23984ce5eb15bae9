"""Incremental decoding of streamed model responses.

Model providers stream one JSON object per line, optionally prefixed with
``data:`` (server-sent events). Network reads never line up with those
lines, so the decoder buffers the trailing partial line between reads and
only parses complete ones.
"""

from __future__ import annotations

import json
from typing import AsyncIterable, AsyncIterator, Callable, Mapping

from ctxrag.errors import StreamDecodeWarning, StreamTerminatedError
from ctxrag.metrics.observability import PipelineMetrics, get_logger

WarningCallback = Callable[[StreamDecodeWarning], None]

DONE_SENTINEL = "[DONE]"
_IGNORED_FIELDS = ("event:", "id:", "retry:")

_logger = get_logger("stream")


def _log_warning(warning: StreamDecodeWarning) -> None:
    _logger.warning("stream.decode_warning", reason=warning.reason, frame=warning.frame[:200])


def extract_content(frame: Mapping[str, object]) -> str | None:
    """Return the incremental text carried by one frame, if any."""

    message = frame.get("message")
    if isinstance(message, Mapping) and isinstance(message.get("content"), str):
        return message["content"]
    if isinstance(frame.get("response"), str):
        return frame["response"]
    choices = frame.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        delta = choices[0].get("delta")
        if isinstance(delta, Mapping) and isinstance(delta.get("content"), str):
            return delta["content"]
    return None


class StreamDecoder:
    """Turns arbitrarily fragmented bytes into ordered text deltas.

    One decoder serves one response; once the end marker is seen further
    input is ignored.
    """

    def __init__(self, on_warning: WarningCallback | None = None) -> None:
        self._buffer = bytearray()
        self._finished = False
        self._error: StreamTerminatedError | None = None
        self._on_warning = on_warning or _log_warning

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def error(self) -> StreamTerminatedError | None:
        """The error frame that ended the stream, once seen."""

        return self._error

    def feed(self, data: bytes) -> list[str]:
        """Return the deltas completed by ``data``.

        Deltas decoded before an error frame are returned first; the error is
        raised by the next call to ``feed`` or ``close``.
        """

        if self._error is not None:
            raise self._error
        if self._finished:
            return []
        self._buffer.extend(data)
        deltas: list[str] = []
        while not self._finished:
            newline = self._buffer.find(b"\n")
            if newline == -1:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            delta = self._decode_line(line)
            if delta:
                deltas.append(delta)
        return deltas

    def close(self) -> list[str]:
        """Flush a final frame that was not newline-terminated."""

        if self._error is not None:
            raise self._error
        if self._finished:
            return []
        line = bytes(self._buffer)
        self._buffer.clear()
        delta = self._decode_line(line) if line.strip() else None
        self._finished = True
        if self._error is not None:
            raise self._error
        return [delta] if delta else []

    def _warn(self, frame: str, reason: str) -> None:
        PipelineMetrics.stream_decode_warnings.inc()
        self._on_warning(StreamDecodeWarning(frame, reason))

    def _decode_line(self, raw: bytes) -> str | None:
        try:
            line = raw.decode("utf-8").strip()
        except UnicodeDecodeError:
            self._warn(raw.decode("utf-8", errors="replace"), "frame is not valid UTF-8")
            return None
        if not line or line.startswith(":") or line.startswith(_IGNORED_FIELDS):
            return None
        payload = line[len("data:") :].strip() if line.startswith("data:") else line
        if payload == DONE_SENTINEL:
            self._finished = True
            return None
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError:
            self._warn(payload, "frame is not valid JSON")
            return None
        if not isinstance(frame, dict):
            self._warn(payload, "frame is not a JSON object")
            return None
        if frame.get("error"):
            self._finished = True
            self._error = StreamTerminatedError(f"model reported an error: {frame['error']}")
            return None
        content = extract_content(frame)
        if frame.get("done") is True:
            self._finished = True
        elif content is None:
            self._warn(payload, "frame has no content field")
        return content or None


async def decode_stream(
    chunks: AsyncIterable[bytes],
    on_warning: WarningCallback | None = None,
) -> AsyncIterator[str]:
    """Yield text deltas from ``chunks`` as soon as each frame is complete."""

    decoder = StreamDecoder(on_warning)
    try:
        async for data in chunks:
            for delta in decoder.feed(data):
                yield delta
            if decoder.error is not None:
                raise decoder.error
            if decoder.finished:
                return
        for delta in decoder.close():
            yield delta
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
