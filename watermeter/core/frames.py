"""Bracket-delimited frame decoder for the device serial stream."""
from __future__ import annotations

import codecs
import logging
from typing import Iterator, Optional, Union

START_MARKER = "["
END_MARKER = "]"

LOGGER = logging.getLogger("watermeter.frames")


class FrameDecoder:
    """Accumulate serial chunks and cut them into ``[...]`` frame payloads.

    The transport gives no message boundaries, so chunks may hold a partial
    frame, several frames, or garbage left over from a reconnect.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""
        self._utf8.reset()

    def feed(self, chunk: Union[str, bytes, bytearray]) -> Iterator[str]:
        """Append ``chunk`` and return the payloads that are now complete."""

        if isinstance(chunk, (bytes, bytearray)):
            # A multi-byte character may be split across chunks.
            chunk = self._utf8.decode(bytes(chunk))
        self._buffer += chunk
        return self.frames()

    def frames(self) -> Iterator[str]:
        while True:
            payload = self._next_payload()
            if payload is None:
                return
            yield payload

    def _next_payload(self) -> Optional[str]:
        data = self._buffer.replace("\r", "").replace("\n", "")

        start = data.find(START_MARKER)
        if data and start < 0:
            LOGGER.debug("Incomplete message erased: %r", data)
            data = ""
        elif start > 0:
            LOGGER.debug("Incomplete message erased: %r", data[:start])
            data = data[start:]

        payload: Optional[str] = None
        if data.startswith(START_MARKER):
            end = data.find(END_MARKER)
            if end >= 0:
                # A start marker inside the frame means the previous frame was cut off.
                start = data.rfind(START_MARKER, 0, end)
                if start > 0:
                    LOGGER.debug("Truncated frame erased: %r", data[:start])
                payload = data[start + 1:end]
                data = data[end + 1:]

        self._buffer = data
        return payload


__all__ = ["FrameDecoder", "START_MARKER", "END_MARKER"]
