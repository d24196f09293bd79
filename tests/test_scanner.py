"""Tests for scanner -- plain stream reading and the free block iterator."""

import io

import pytest

from analyzer import Algorithm, FrequencyContext
from errors import FPError, InvalidArgument, IOFailure, OutOfRange
from scanner import (
    BLOCK_UNINIT,
    FreeBlockIterator,
    measure_free_blocks,
    measure_stream,
    scan_file,
    scan_overview,
    scan_stream,
)
from tests.helpers import FakeAdapter


class Pipe:
    """Minimal non-seekable binary stream."""

    def __init__(self, data: bytes):
        self._buf = io.BytesIO(data)

    def read(self, n=-1):
        return self._buf.read(n)

    def seekable(self):
        return False


class BrokenStream(Pipe):
    def read(self, n=-1):
        raise OSError(5, "Input/output error")


def _drain(iterator, buffer):
    blocks = []
    while True:
        try:
            blocks.append(iterator.next_block(buffer))
        except OutOfRange:
            return blocks


# ---------------------------------------------------------------------------
# scan_stream / measure_stream
# ---------------------------------------------------------------------------

class TestScanStream:

    def test_reads_respect_page_and_block(self):
        chunks = list(scan_stream(io.BytesIO(b"x" * 1000), block_size=150, page_size=100))
        sizes = [len(data) for _, data, _ in chunks]
        assert max(sizes) <= 100
        complete = [end for end, _, done in chunks if done]
        assert complete == [150, 300, 450, 600, 750, 900]

    def test_whole_stream_never_completes_a_block(self):
        chunks = list(scan_stream(io.BytesIO(b"y" * 300), page_size=128))
        assert [end for end, _, _ in chunks] == [128, 256, 300]
        assert not any(done for _, _, done in chunks)

    def test_blocks(self):
        units = list(measure_stream(io.BytesIO(bytes(10000)), [Algorithm.SHANNON], block_size=4096))
        assert [u for u, _, _ in units] == [4096, 8192]
        assert all(ctx.symbol_count == 4096 for _, ctx, _ in units)

    def test_whole_stream(self):
        units = list(measure_stream(io.BytesIO(bytes(range(256)) * 40), [Algorithm.SHANNON]))
        assert len(units) == 1
        unit, ctx, request = units[0]
        assert unit is None
        assert ctx.symbol_count == 10240
        assert request.results[0].value == pytest.approx(8.0)

    def test_skip_seekable(self):
        units = list(measure_stream(io.BytesIO(bytes(10000)), [Algorithm.SHANNON],
                                    block_size=4096, skip_offset=100))
        assert [u for u, _, _ in units] == [4196, 8292]

    def test_skip_pipe(self):
        units = list(measure_stream(Pipe(b"abcdefghijklmnop"), [Algorithm.BFD], skip_offset=10))
        _, ctx, request = units[0]
        assert ctx.symbol_count == 6
        assert request.results[0].table[ord("a")] == 0
        assert request.results[0].table[ord("k")] == 1

    def test_limit_with_blocks(self):
        units = list(measure_stream(io.BytesIO(bytes(10000)), [Algorithm.SHANNON],
                                    block_size=4096, size_limit=5000))
        assert [u for u, _, _ in units] == [4096]

    def test_limit_whole_stream(self):
        units = list(measure_stream(io.BytesIO(bytes(10000)), [Algorithm.SHANNON], size_limit=5000))
        assert units[0][1].symbol_count == 5000

    def test_empty_stream_reports_fp_error(self):
        (unit, ctx, request), = measure_stream(io.BytesIO(b""), [Algorithm.SHANNON, Algorithm.CHISQ])
        assert ctx.symbol_count == 0
        assert all(isinstance(e, FPError) for e in request.errors)

    def test_windows_do_not_share_tables(self):
        data = b"\x00" * 64 + b"\xff" * 64
        units = list(measure_stream(io.BytesIO(data), [Algorithm.BFD], block_size=64))
        first, second = units[0][2].results[0].table, units[1][2].results[0].table
        assert first[0] == 64 and first[255] == 0
        assert second[0] == 0 and second[255] == 64

    def test_read_error(self):
        with pytest.raises(IOFailure):
            list(scan_stream(BrokenStream(b"")))

    def test_missing_file(self, tmp_path):
        with pytest.raises(IOFailure):
            list(scan_file(str(tmp_path / "nope.bin")))

    def test_scan_file(self, write_file):
        path = write_file("data.bin", bytes(512))
        ends = [end for end, _, done in scan_file(path, block_size=256) if done]
        assert ends == [256, 512]


# ---------------------------------------------------------------------------
# FreeBlockIterator
# ---------------------------------------------------------------------------

class TestFreeBlockIterator:

    def test_skips_used_blocks_and_uninit_group(self, layout_adapter):
        it = FreeBlockIterator(layout_adapter)
        assert _drain(it, bytearray(16)) == [3, 4, 5, 6, 7]
        assert it.exhausted

    def test_exhausted_is_terminal(self, layout_adapter):
        it = FreeBlockIterator(layout_adapter)
        buffer = bytearray(16)
        _drain(it, buffer)
        for _ in range(3):
            with pytest.raises(OutOfRange):
                it.next_block(buffer)

    def test_reads_content_into_buffer(self, layout_adapter):
        pairs = list(FreeBlockIterator(layout_adapter))
        assert [b for b, _ in pairs] == [3, 4, 5, 6, 7]
        assert all(data == bytes([b]) * 16 for b, data in pairs)

    def test_flags_fetched_once_per_group(self, layout_adapter):
        list(FreeBlockIterator(layout_adapter))
        assert layout_adapter.flag_queries == [0, 1]

    def test_device_capacity_stops_scan(self):
        fs = FakeAdapter(groups=2, clusters=8, capacity=5)
        it = FreeBlockIterator(fs)
        assert _drain(it, bytearray(16)) == [0, 1, 2, 3, 4]
        assert max(fs.reads) < 5

    def test_capacity_override(self):
        fs = FakeAdapter(groups=2, clusters=8, capacity=16)
        assert [b for b, _ in FreeBlockIterator(fs, max_blocks=10)] == list(range(10))

    def test_flags_ignored_without_checksums(self):
        fs = FakeAdapter(used={0, 1, 2}, flags={1: BLOCK_UNINIT}, checksums=False)
        blocks = [b for b, _ in FreeBlockIterator(fs)]
        assert blocks == [3, 4, 5, 6, 7] + list(range(8, 16))
        assert fs.flag_queries == []

    def test_other_flags_do_not_skip(self):
        fs = FakeAdapter(flags={0: 0x0001, 1: 0x0004})
        assert [b for b, _ in FreeBlockIterator(fs)] == list(range(16))

    def test_ascending_and_unique(self):
        used = {0, 5, 6, 7, 17, 31, 32, 33, 40, 63}
        fs = FakeAdapter(groups=4, clusters=16, capacity=64, used=used, flags={2: BLOCK_UNINIT})
        blocks = [b for b, _ in FreeBlockIterator(fs)]
        expected = sorted(set(range(64)) - used - set(range(32, 48)))
        assert blocks == expected
        assert len(blocks) == len(set(blocks))

    def test_fully_used_group_moves_on(self):
        fs = FakeAdapter(used=set(range(8)))
        assert [b for b, _ in FreeBlockIterator(fs)] == list(range(8, 16))

    def test_buffer_size_mismatch(self, layout_adapter):
        it = FreeBlockIterator(layout_adapter)
        with pytest.raises(InvalidArgument):
            it.next_block(bytearray(15))
        assert (it.group_index, it.next_offset, it.group_flags) == (0, 0, None)
        assert layout_adapter.reads == []
        assert it.next_block(bytearray(16)) == 3

    def test_read_failure_retries_same_block(self):
        fs = FakeAdapter(used={0, 1, 2}, fail_reads={4: 1})
        it = FreeBlockIterator(fs)
        buffer = bytearray(16)
        assert it.next_block(buffer) == 3
        with pytest.raises(IOFailure):
            it.next_block(buffer)
        assert not it.exhausted
        assert it.next_block(buffer) == 4
        assert it.next_block(buffer) == 5
        assert fs.reads == [3, 4, 4, 5]

    def test_read_failure_after_group_change(self):
        fs = FakeAdapter(used=set(range(8)), fail_reads={8: 1})
        it = FreeBlockIterator(fs)
        buffer = bytearray(16)
        with pytest.raises(IOFailure):
            it.next_block(buffer)
        assert it.next_block(buffer) == 8

    def test_iteration_propagates_io_failure(self):
        fs = FakeAdapter(fail_reads={2: 1})
        with pytest.raises(IOFailure):
            list(FreeBlockIterator(fs))

    def test_no_groups(self):
        fs = FakeAdapter(groups=0)
        with pytest.raises(OutOfRange):
            FreeBlockIterator(fs).next_block(bytearray(16))


def test_measure_free_blocks(layout_adapter):
    results = list(measure_free_blocks(layout_adapter, [Algorithm.SHANNON, Algorithm.CHISQ]))
    assert [b for b, _ in results] == [3, 4, 5, 6, 7]
    for _, request in results:
        assert request.results[0].value == 0.0
        assert request.results[1].value == pytest.approx(255 * 16)


# ---------------------------------------------------------------------------
# scan_overview
# ---------------------------------------------------------------------------

class TestScanOverview:

    def test_distribution_includes_trailing_partial_block(self, write_file):
        path = write_file("odd.bin", bytes(range(256)) * 39 + bytes(16))
        done, blocks, total = list(scan_overview(path, 4096))[-1]
        assert done == 10000
        assert [b["offset"] for b in blocks] == [0, 4096]
        assert total.symbol_count == 10000
        assert sum(total.table) == 10000
        assert total.table[0] == 39 + 16

    def test_file_shorter_than_a_block(self, write_file):
        path = write_file("short.bin", b"\xff" * 1000)
        (done, blocks, total), = scan_overview(path, 4096)
        assert done == 1000
        assert blocks == []
        assert total.symbol_count == 1000
        assert total.table[255] == 1000

    def test_per_block_metrics(self, write_file):
        path = write_file("zu.bin", bytes(256) + bytes(range(256)))
        _, blocks, _ = list(scan_overview(path, 256))[-1]
        assert [b["entropy"] for b in blocks] == [0.0, pytest.approx(8.0)]
        assert blocks[1]["chisq"] == pytest.approx(0.0)

    def test_limit(self, write_file):
        path = write_file("big.bin", bytes(10000))
        _, blocks, total = list(scan_overview(path, 4096, size_limit=5000))[-1]
        assert len(blocks) == 1
        assert total.symbol_count == 5000

    def test_empty_file(self, write_file):
        path = write_file("empty.bin", b"")
        assert list(scan_overview(path, 4096)) == [(0, [], FrequencyContext())]
