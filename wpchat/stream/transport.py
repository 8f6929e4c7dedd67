"""
Transport Decoder

Turns a raw byte stream into complete SSE ``data:`` records.

Chunks may split a record anywhere, including inside a multi-byte UTF-8
sequence, so bytes are buffered and only complete lines (terminated by a
newline) are decoded. A trailing partial record is held across calls and
discarded when the stream ends.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator

from wpchat.stream.cancellation import CancellationController
from wpchat.stream.logging_utils import log_record

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"


class TransportError(Exception):
    """Network failure, non-2xx response or missing body on the stream request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SSEDecoder:
    """Incremental line splitter for SSE byte streams."""

    def __init__(self, max_line_bytes: int = 1024 * 1024) -> None:
        self._buffer = bytearray()
        self._max_line_bytes = max_line_bytes
        self._discarding = False  # inside an over-long line

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Consume one chunk and return the records it completed, in order."""
        if not chunk:
            return []

        self._buffer.extend(chunk)
        records: list[str] = []

        while True:
            newline = self._buffer.find(b"\n")
            if newline == -1:
                break
            raw_line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]

            if self._discarding:
                # tail end of a line that already blew the size limit
                self._discarding = False
                continue

            record = self._decode_line(raw_line)
            if record is not None:
                records.append(record)

        if len(self._buffer) > self._max_line_bytes:
            logger.warning("Dropping SSE line longer than %d bytes", self._max_line_bytes)
            self._buffer.clear()
            self._discarding = True

        return records

    def close(self) -> None:
        """End of stream: a record that never completed is dropped."""
        if self._buffer:
            logger.debug("Discarding %d bytes of incomplete record at end of stream", len(self._buffer))
        self._buffer.clear()
        self._discarding = False

    def _decode_line(self, raw_line: bytes) -> str | None:
        try:
            line = raw_line.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning("Skipping SSE line with invalid UTF-8: %s", e)
            return None

        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            # blank separators, ":" comments and other SSE fields
            return None
        log_record(line)
        return line


def payload(record: str) -> str:
    """Strip the ``data:`` marker from a record."""
    if record.startswith(DATA_PREFIX):
        record = record[len(DATA_PREFIX) :]
    return record.strip()


async def iter_records(
    chunks: AsyncIterator[bytes],
    controller: CancellationController,
    decoder: SSEDecoder | None = None,
) -> AsyncGenerator[str]:
    """Yield records from an async byte stream until it ends or is cancelled."""
    decoder = decoder if decoder is not None else SSEDecoder()
    try:
        while not controller.cancelled:
            try:
                chunk = await anext(chunks)
            except StopAsyncIteration:
                break
            if controller.cancelled:
                break
            for record in decoder.feed(chunk):
                if controller.cancelled:
                    return
                yield record
    finally:
        decoder.close()
