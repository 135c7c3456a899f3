"""
Progress stream wire format: Server-Sent Events subset
═══════════════════════════════════════════════════════

Frame
─────
  data: {"type":"progress","stage":"calling_ai","current":1,...}\\n
  \\n

  - one ``data:`` line per line of payload, then a blank line
  - lines starting with ``:`` are comments (connection banner, keepalive)
  - ``event:``/``id:``/``retry:`` fields are never emitted and are ignored

Parser contract (SSEParser)
───────────────────────────
  - feed() accepts arbitrarily split byte (or str) chunks; UTF-8 sequences
    split across chunks are reassembled
  - frames are delimited by "\\n\\n"; only ``data:`` lines count
  - after the prefix, leading whitespace is stripped; the rest of the line is
    kept verbatim
  - whitespace-only data lines are ignored; a frame with no data yields nothing
  - the data lines of one frame are joined with "\\n"
  - close() flushes a final frame that was not followed by a delimiter
"""

from __future__ import annotations

import codecs

from pydantic import BaseModel

FRAME_DELIMITER = "\n\n"
_DATA_PREFIX = "data:"


def encode_event(event: BaseModel | str) -> str:
    """Render one event (a pydantic model or a ready JSON string) as a frame."""
    payload = event if isinstance(event, str) else event.model_dump_json()
    lines = payload.split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"


def comment_frame(text: str = "") -> str:
    """An SSE comment; clients ignore it, proxies see traffic."""
    return f": {text}\n\n" if text else ":\n\n"


def keepalive_frame() -> str:
    return comment_frame("ping")


def _frame_messages(frame: str) -> list[str]:
    data_lines = []
    for line in frame.split("\n"):
        if not line.startswith(_DATA_PREFIX):
            continue
        value = line[len(_DATA_PREFIX):].lstrip()
        if value:
            data_lines.append(value)
    if not data_lines:
        return []
    return ["\n".join(data_lines)]


class SSEParser:
    """
    Incremental parser for one stream.

    Usage::

        parser = SSEParser()
        async for chunk in response.aiter_bytes():
            for message in parser.feed(chunk):
                handle(message)
        for message in parser.close():
            handle(message)
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._closed = False

    def feed(self, chunk: bytes | str) -> list[str]:
        if self._closed:
            raise RuntimeError("parser is closed")
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        messages: list[str] = []
        while True:
            cut = self._buffer.find(FRAME_DELIMITER)
            if cut == -1:
                break
            frame, self._buffer = self._buffer[:cut], self._buffer[cut + len(FRAME_DELIMITER):]
            messages.extend(_frame_messages(frame))
        return messages

    def close(self) -> list[str]:
        """Flush whatever is buffered as the final frame."""
        if self._closed:
            return []
        self._closed = True
        self._buffer += self._decoder.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        return _frame_messages(remaining)
