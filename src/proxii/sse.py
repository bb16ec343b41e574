"""Server-Sent Events framing for chat-completion streams.

:func:`iter_lines` turns the raw response bytes into complete text
lines and :func:`decode_line` turns one line into a JSON chunk.  Only
the subset of SSE the gateway actually sends is handled: ``data: ``
payload lines, ``:`` keep-alive comments and the ``[DONE]`` sentinel.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


async def iter_lines(source: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield complete UTF-8 lines from a chunked byte source.

    A line split across reads is held until its newline arrives, and a
    multibyte character split across reads is held by the incremental
    decoder.  Whatever is left when the source ends is flushed as a
    final line.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for raw in source:
        buffer += decoder.decode(raw)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line
    buffer += decoder.decode(b"", final=True)
    if buffer:
        yield buffer


def decode_line(line: str) -> dict[str, Any] | None:
    """Decode one SSE line into a chunk payload.

    Returns ``None`` for blank lines, comments, non-data lines, the
    ``[DONE]`` sentinel and payloads that are not a JSON object.  Never
    raises: a bad chunk must not cost the rest of the response.
    """
    trimmed = line.strip()
    if not trimmed or trimmed.startswith(":"):
        return None
    if not trimmed.startswith(DATA_PREFIX):
        return None

    data = trimmed[len(DATA_PREFIX):]
    if data == DONE_SENTINEL:
        return None

    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse SSE chunk {data!r}: {e}")
        return None

    if not isinstance(payload, dict):
        logger.warning(f"Ignoring non-object SSE chunk: {data!r}")
        return None
    return payload


async def iter_payloads(source: AsyncIterable[bytes]) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded chunk payloads from a raw byte source."""
    async for line in iter_lines(source):
        payload = decode_line(line)
        if payload is not None:
            yield payload
