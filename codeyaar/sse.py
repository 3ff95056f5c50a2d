"""
Stream decoder — incremental parser for the upstream's SSE body.

Bytes go in as they arrive off the socket, in whatever sizes the network
chooses. The decoder keeps a text buffer, cuts it at newlines, and hands
back one SSEFrame per complete line. A trailing partial line (and a
partial UTF-8 sequence) stays buffered until more bytes arrive, so the
reconstructed output never depends on where the chunk boundaries fell.

Per line:
  - blank lines and comments (leading ':') carry no content
  - lines without the `data:` marker carry no content
  - `data: [DONE]` ends decoding; anything after it is ignored
  - `data: {...}` is JSON; choices[0].delta.content is the increment

A complete line whose JSON does not parse, or parses to something other
than a completion chunk, is skipped. finish() runs a
best-effort pass over whatever is still buffered when the body ends.

The uncertainty scan runs once, over the assembled output, after the
stream is over.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterable

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass
class SSEFrame:
    """One line of the stream, with whatever it contributed."""
    raw: str
    delta: str = ""
    done: bool = False


def parse_line(line: str) -> SSEFrame:
    """Decode a single complete line (no trailing newline)."""
    if line.endswith("\r"):
        line = line[:-1]
    if not line.strip() or line.startswith(":"):
        return SSEFrame(raw=line)
    if not line.startswith(DATA_PREFIX):
        return SSEFrame(raw=line)

    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return SSEFrame(raw=line, done=True)

    chunk = json.loads(payload)  # caller handles ValueError
    return SSEFrame(raw=line, delta=_delta_content(chunk))


def _delta_content(chunk) -> str:
    """choices[0].delta.content, or ValueError if the chunk is the wrong shape."""
    if not isinstance(chunk, dict):
        raise ValueError(f"expected a JSON object, got {type(chunk).__name__}")
    choices = chunk.get("choices")
    if not choices:
        return ""  # usage-only or keep-alive chunk
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise ValueError("choices is not a list of objects")
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        raise ValueError("delta is not an object")
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def detect_uncertainty(text: str, phrases: Iterable[str]) -> bool:
    """True if any phrase occurs in text, ignoring case."""
    lowered = text.lower()
    return any(phrase.lower() in lowered for phrase in phrases)


class StreamDecoder:
    """
    Buffer + cursor state machine over the upstream body.

    States: reading -> done (sentinel seen) | finished (finish() called).
    """

    def __init__(self, uncertainty_phrases: Iterable[str] = ()):
        self.uncertainty_phrases = tuple(uncertainty_phrases)
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._parts: list[str] = []
        self._warning: bool | None = None
        self.done = False
        self.finished = False
        self.malformed = 0

    @property
    def output(self) -> str:
        return "".join(self._parts)

    def _accept(self, line: str) -> SSEFrame | None:
        try:
            frame = parse_line(line)
        except ValueError as e:
            self.malformed += 1
            logger.debug("Skipping malformed SSE frame (%d chars): %s", len(line), e)
            return SSEFrame(raw=line.rstrip("\r"))
        if frame.delta:
            self._parts.append(frame.delta)
        if frame.done:
            self.done = True
        return frame

    def feed(self, chunk: bytes | str) -> list[SSEFrame]:
        """Consume one network read; return the frames it completed."""
        if self.done or self.finished:
            return []
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer += chunk

        frames = []
        cursor = 0
        while not self.done:
            newline = self._buffer.find("\n", cursor)
            if newline == -1:
                break
            line = self._buffer[cursor:newline]
            cursor = newline + 1
            frame = self._accept(line)
            if frame is not None:
                frames.append(frame)
        self._buffer = "" if self.done else self._buffer[cursor:]
        return frames

    def finish(self) -> list[SSEFrame]:
        """End of body: flush the UTF-8 decoder and parse what is left."""
        if self.finished:
            return []
        self.finished = True
        if self.done:
            return []

        self._buffer += self._utf8.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        frames = []
        for line in rest.split("\n"):
            if not line:
                continue
            frame = self._accept(line)
            if frame is not None:
                frames.append(frame)
            if self.done:
                break
        return frames

    @property
    def has_warning(self) -> bool:
        """Uncertainty scan over the full output. Computed once, after the stream ends."""
        if self._warning is None:
            if not (self.done or self.finished):
                return False
            self._warning = detect_uncertainty(self.output, self.uncertainty_phrases)
        return self._warning


async def iter_deltas(chunks: AsyncIterator[bytes], decoder: StreamDecoder) -> AsyncIterator[str]:
    """Yield content increments as soon as their line completes."""
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            if frame.delta:
                yield frame.delta
        if decoder.done:
            break
    for frame in decoder.finish():
        if frame.delta:
            yield frame.delta
