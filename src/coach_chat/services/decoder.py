"""Server-sent-event decoder for streamed chat completions.

Turns arbitrarily chunked bytes into ``Delta``/``Done``/``Malformed`` events.
Lines are ``data: <json>`` frames; the assistant text lives at
``choices[0].delta.content`` and the stream ends with ``data: [DONE]`` or
when the transport closes.

A ``data:`` line that is newline-terminated but not valid JSON is assumed to
be a payload truncated by a chunk boundary: it is held back, line extraction
pauses until the next chunk, and the held text is retried joined with the
following line. This is a heuristic, so it is capped by
``max_rebuffer_attempts``; a line that still does not parse is emitted as
``Malformed`` and dropped. Malformed frames are never fatal.
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional, Union

import structlog

logger = structlog.get_logger()

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
DEFAULT_MAX_REBUFFER_ATTEMPTS = 8


@dataclass(frozen=True)
class Delta:
    text: str


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class Malformed:
    raw_line: str


StreamEvent = Union[Delta, Done, Malformed]


def extract_delta_text(payload: Any) -> Optional[str]:
    """Return ``choices[0].delta.content`` if it is a non-empty string."""
    try:
        content = payload["choices"][0]["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(content, str) and content:
        return content
    return None


class StreamDecoder:
    """Incremental SSE line decoder. One instance per stream; not restartable."""

    def __init__(
        self,
        encoding: str = "utf-8",
        max_rebuffer_attempts: int = DEFAULT_MAX_REBUFFER_ATTEMPTS,
    ) -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._held: Optional[str] = None
        self._held_line: Optional[str] = None
        self._attempts = 0
        self.max_rebuffer_attempts = max_rebuffer_attempts
        self.done = False

    @property
    def buffered(self) -> str:
        """Text received but not yet consumed as a complete line."""
        return self._buffer

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        """Decode one chunk and return the events it completes."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        return self._drain(final=False)

    def finish(self) -> List[StreamEvent]:
        """Flush at end of stream: process a trailing unterminated line and
        give up on any held payload."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer and not self._buffer.endswith("\n"):
            self._buffer += "\n"
        events = self._drain(final=True)
        if self._held is not None:
            events.append(self._drop_held())
        self.done = True
        return events

    def _drain(self, final: bool) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            if line.endswith("\r"):
                line = line[:-1]

            if self._held is not None:
                proceed = self._continue_held(line, events)
            else:
                proceed = self._handle_line(line, events)
            if not proceed and not final:
                # Truncated payload: wait for the next chunk before going on.
                break
        return events

    def _handle_line(self, line: str, events: List[StreamEvent]) -> bool:
        """Process one complete line. Returns False if the line was held back."""
        if not line.strip() or line.startswith(":"):
            return True
        if not line.startswith(DATA_PREFIX):
            return True

        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            self.done = True
            self._buffer = ""
            events.append(Done())
            return True

        try:
            payload = json.loads(data)
        except ValueError:
            self._held = data
            self._held_line = line
            self._attempts = 1
            logger.debug("stream_line_rebuffered", length=len(line))
            return False

        self._emit(payload, events)
        return True

    def _continue_held(self, line: str, events: List[StreamEvent]) -> bool:
        """Try to complete the held payload with ``line``.

        Returns False only when a new payload was held back, so extraction
        should pause again.
        """
        candidate = self._held + line
        try:
            payload = json.loads(candidate)
        except ValueError:
            pass
        else:
            self._clear_held()
            self._emit(payload, events)
            return True

        if line.startswith(DATA_PREFIX) or line.startswith(":") or not line.strip():
            # The next frame started cleanly, so the held text was never a
            # truncated payload. Give it up and process the line on its own.
            events.append(self._drop_held())
            return self._handle_line(line, events)

        self._held = candidate
        self._held_line = (self._held_line or "") + line
        self._attempts += 1
        if self._attempts >= self.max_rebuffer_attempts:
            events.append(self._drop_held())
        return True

    def _emit(self, payload: Any, events: List[StreamEvent]) -> None:
        text = extract_delta_text(payload)
        if text is not None:
            events.append(Delta(text))

    def _drop_held(self) -> Malformed:
        raw = self._held_line or ""
        logger.warning("stream_malformed_line", length=len(raw), attempts=self._attempts)
        self._clear_held()
        return Malformed(raw)

    def _clear_held(self) -> None:
        self._held = None
        self._held_line = None
        self._attempts = 0


async def decode_stream(
    chunks: AsyncIterator[bytes],
    encoding: str = "utf-8",
    max_rebuffer_attempts: int = DEFAULT_MAX_REBUFFER_ATTEMPTS,
) -> AsyncIterator[StreamEvent]:
    """Decode an async byte source into stream events.

    Stops right after ``Done``; the byte source is closed whenever decoding
    ends, including when the consumer stops iterating early. Failures from the
    byte source propagate to the caller.
    """
    decoder = StreamDecoder(encoding, max_rebuffer_attempts)
    try:
        async for chunk in chunks:
            for event in decoder.feed(chunk):
                yield event
            if decoder.done:
                return
        for event in decoder.finish():
            yield event
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
