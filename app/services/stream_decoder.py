"""Incremental decoder for server-sent-event chat-completion streams.

A streamed completion arrives as newline-delimited ``data: <payload>`` frames,
where each payload is a JSON chunk carrying ``choices[0].delta.content`` and the
final payload is the literal ``[DONE]``. Network reads do not respect frame or
UTF-8 boundaries, so the decoder keeps both an undecoded-bytes tail (inside the
incremental UTF-8 decoder) and an incomplete-line tail between reads.
"""

import codecs
import json
import logging
from typing import Any

from app.models.generation_models import StreamChunk

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def extract_delta_content(payload: Any) -> str | None:
    """Return ``choices[0].delta.content`` from a parsed chunk, or None when it is absent or empty."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class StreamDecoder:
    """Turns raw response bytes into content deltas and a single completion marker.

    Feed it every read in order; after the ``[DONE]`` frame it ignores further input.
    """

    def __init__(self) -> None:
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._done = False
        self.frames_seen = 0

    @property
    def done(self) -> bool:
        return self._done

    def feed(self, data: bytes) -> list[StreamChunk]:
        if self._done:
            return []
        self._pending += self._text_decoder.decode(data)
        *lines, self._pending = self._pending.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> list[StreamChunk]:
        """Decode whatever is left once the body is exhausted (a final frame without a trailing newline)."""
        if self._done:
            return []
        remainder = self._pending + self._text_decoder.decode(b"", final=True)
        self._pending = ""
        return self._decode_lines([remainder]) if remainder else []

    def _decode_lines(self, lines: list[str]) -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            self.frames_seen += 1
            payload = line[len(DATA_PREFIX) :]

            if payload.strip() == DONE_SENTINEL:
                chunks.append(StreamChunk(type="complete"))
                self._done = True
                break

            try:
                parsed = json.loads(payload)
            except json.JSONDecodeError:
                logger.debug("Dropping unparseable stream frame (%d chars)", len(payload))
                continue

            content = extract_delta_content(parsed)
            if content is not None:
                chunks.append(StreamChunk(type="content", data=content))
        return chunks

