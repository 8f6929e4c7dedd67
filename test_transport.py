#!/usr/bin/env python3
"""Tests for SSE line reassembly and the cancellable record iterator."""

from __future__ import annotations

import asyncio

from wpchat.stream.cancellation import CancellationController
from wpchat.stream.transport import SSEDecoder, iter_records, payload


def test_record_split_across_chunks():
    decoder = SSEDecoder()
    assert decoder.feed(b'data: {"type":"tok') == []
    assert decoder.pending_bytes > 0
    assert decoder.feed(b'en","content":"hi"}\n\n') == ['data: {"type":"token","content":"hi"}']
    assert decoder.pending_bytes == 0


def test_multiple_records_in_one_chunk():
    decoder = SSEDecoder()
    records = decoder.feed(b"data: one\n\ndata: two\n\ndata: thr")
    assert records == ["data: one", "data: two"]
    assert decoder.feed(b"ee\n\n") == ["data: three"]


def test_multibyte_character_split_between_chunks():
    encoded = 'data: {"type":"token","content":"café ☕"}\n\n'.encode()
    split_at = encoded.index("☕".encode()) + 1  # inside the 3-byte sequence
    decoder = SSEDecoder()
    assert decoder.feed(encoded[:split_at]) == []
    records = decoder.feed(encoded[split_at:])
    assert records == ['data: {"type":"token","content":"café ☕"}']


def test_partial_record_discarded_at_close():
    decoder = SSEDecoder()
    decoder.feed(b"data: complete\n\ndata: never-finish")
    decoder.close()
    assert decoder.pending_bytes == 0
    assert decoder.feed(b"\n") == []


def test_non_data_lines_are_ignored():
    decoder = SSEDecoder()
    records = decoder.feed(b": keep-alive\r\nevent: message\r\ndata: payload\r\n\r\n")
    assert records == ["data: payload"]


def test_invalid_utf8_line_skipped():
    decoder = SSEDecoder()
    records = decoder.feed(b"data: \xff\xfe\n\ndata: ok\n\n")
    assert records == ["data: ok"]


def test_overlong_line_dropped_and_stream_recovers():
    decoder = SSEDecoder(max_line_bytes=16)
    assert decoder.feed(b"data: " + b"x" * 32) == []
    assert decoder.feed(b"still the same line\ndata: short\n") == ["data: short"]


def test_payload_strips_marker():
    assert payload('data: {"a": 1}') == '{"a": 1}'
    assert payload("data:[DONE]") == "[DONE]"


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


def test_iter_records_yields_in_order():
    async def run():
        controller = CancellationController()
        return [r async for r in iter_records(_chunks(b"data: a\n\nda", b"ta: b\n\n"), controller)]

    assert asyncio.run(run()) == ["data: a", "data: b"]


def test_iter_records_stops_once_cancelled():
    async def run():
        controller = CancellationController()
        seen = []
        async for record in iter_records(_chunks(b"data: a\n\ndata: b\n\n", b"data: c\n\n"), controller):
            seen.append(record)
            controller.cancel()
        return seen

    # the rest of the chunk and the late chunk are never processed
    assert asyncio.run(run()) == ["data: a"]


def test_iter_records_does_not_pull_after_cancel():
    pulled = []

    async def source():
        for part in (b"data: a\n\n", b"data: b\n\n"):
            pulled.append(part)
            yield part

    async def run():
        controller = CancellationController()
        controller.cancel()
        return [r async for r in iter_records(source(), controller)]

    assert asyncio.run(run()) == []
    assert pulled == []


if __name__ == "__main__":
    test_record_split_across_chunks()
    test_multiple_records_in_one_chunk()
    test_multibyte_character_split_between_chunks()
    test_partial_record_discarded_at_close()
    test_non_data_lines_are_ignored()
    test_invalid_utf8_line_skipped()
    test_overlong_line_dropped_and_stream_recovers()
    test_payload_strips_marker()
    test_iter_records_yields_in_order()
    test_iter_records_stops_once_cancelled()
    test_iter_records_does_not_pull_after_cancel()
    print("✅ transport tests passed")
