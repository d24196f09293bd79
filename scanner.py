"""
scanner.py - Byte sources for the statistical engine.

Two sources are supported:
  - Plain files, block devices and stdin, read one page at a time with an
    optional skip offset, size limit and fixed measurement block size
  - The unused blocks of a block-group filesystem (ext2/3/4), walked by
    FreeBlockIterator through a FilesystemAdapter

All reads are read-only; this module never writes to any target.
"""

import logging
import mmap
import os
from typing import BinaryIO, Dict, Iterable, Iterator, List, Optional, Protocol, Tuple

from analyzer import Algorithm, BatchRequest, FrequencyContext, analyze_region, batch_calculate
from errors import EntropyError, InvalidArgument, IOFailure, OutOfRange

logger = logging.getLogger(__name__)


PAGE_SIZE = mmap.PAGESIZE  # bytes per read() in plain-file mode
BLOCK_UNINIT = 0x0002      # group flag: block bitmap never initialized


# ── Plain file / device / stdin scanner ─────────────────────────────────────

def _skip(fh: BinaryIO, skip_offset: int) -> None:
    if fh.seekable():
        fh.seek(skip_offset, os.SEEK_CUR)
        return
    # Pipes cannot seek: read and discard
    left = skip_offset
    while left:
        chunk = fh.read(min(left, PAGE_SIZE))
        if not chunk:
            break
        left -= len(chunk)


def scan_stream(
    fh: BinaryIO,
    block_size: int = 0,
    size_limit: int = 0,
    skip_offset: int = 0,
    page_size: int = PAGE_SIZE,
) -> Iterator[Tuple[int, bytes, bool]]:
    """
    Yield (end_offset, data, block_complete) tuples read from fh.

    Reads are at most page_size bytes and never cross a block_size
    boundary. block_complete is True when data finishes a block; it is
    always False when block_size is 0 (the whole stream is one window).
    Offsets count from the start of the stream, skip_offset included.
    A size_limit of 0 means unlimited.
    """
    offset = 0
    if skip_offset:
        try:
            _skip(fh, skip_offset)
        except OSError as e:
            raise IOFailure(f"cannot seek to {skip_offset}: {e}") from e
        offset = skip_offset

    total = 0
    remaining = 0
    while True:
        if size_limit and total >= size_limit:
            break
        # Start of a fresh block
        if block_size and not remaining:
            remaining = block_size
        read_size = min(page_size, remaining) if block_size else page_size
        if size_limit:
            read_size = min(read_size, size_limit - total)

        try:
            data = fh.read(read_size)
        except OSError as e:
            raise IOFailure(f"read failed at offset {offset}: {e}") from e
        if not data:
            break

        offset += len(data)
        total += len(data)
        if block_size:
            remaining -= len(data)
        yield offset, data, bool(block_size) and remaining == 0

    if block_size and remaining and remaining != block_size:
        logger.debug("ignoring trailing partial block of %d bytes at offset %d",
                     block_size - remaining, offset)


def scan_file(path: str, block_size: int = 0, size_limit: int = 0,
              skip_offset: int = 0) -> Iterator[Tuple[int, bytes, bool]]:
    """Like scan_stream(), opening path for reading first."""
    try:
        fh = open(path, "rb")
    except OSError as e:
        raise IOFailure(f"cannot open {path}: {e}") from e
    with fh:
        yield from scan_stream(fh, block_size, size_limit, skip_offset)


def measure_stream(
    fh: BinaryIO,
    algorithms: Iterable,
    block_size: int = 0,
    size_limit: int = 0,
    skip_offset: int = 0,
) -> Iterator[Tuple[Optional[int], FrequencyContext, BatchRequest]]:
    """
    Scan fh once and compute every requested metric per measurement window.

    With a block_size, yields (end_offset, ctx, request) for each complete
    block; otherwise yields a single (None, ctx, request) for the stream.
    Each window gets its own context, so BFD results stay valid after the
    generator moves on.
    """
    algorithms = list(algorithms)
    ctx = FrequencyContext()
    for offset, data, block_complete in scan_stream(fh, block_size, size_limit, skip_offset):
        ctx.update(data)
        if block_complete:
            yield offset, ctx, batch_calculate(ctx, BatchRequest(algorithms))
            ctx = FrequencyContext()
    if not block_size:
        yield None, ctx, batch_calculate(ctx, BatchRequest(algorithms))


def scan_overview(path: str, block_size: int, size_limit: int = 0
                  ) -> Iterator[Tuple[int, List[Dict], FrequencyContext]]:
    """
    Per-block entropy and chi-square plus a distribution over everything read.

    Yields (bytes_done, blocks, total) after each complete block and once
    more when the file ends. blocks holds one dict per complete block
    (offset, entropy, chisq); total counts every byte read, including a
    trailing partial block.
    """
    algorithms = [Algorithm.SHANNON, Algorithm.CHISQ]
    blocks = []
    total = FrequencyContext()
    ctx = FrequencyContext()
    done = 0
    for done, data, block_complete in scan_file(path, block_size, size_limit):
        total.update(data)
        ctx.update(data)
        if block_complete:
            request = batch_calculate(ctx, BatchRequest(algorithms))
            blocks.append({
                "offset": done - ctx.symbol_count,
                "entropy": request.result_for(Algorithm.SHANNON).value,
                "chisq": request.result_for(Algorithm.CHISQ).value,
            })
            ctx = FrequencyContext()
            yield done, blocks, total
    yield done, blocks, total


# ── Unallocated block scanner (block-group filesystems) ─────────────────────

class FilesystemAdapter(Protocol):
    """Metadata and raw-block primitives FreeBlockIterator relies on."""

    @property
    def group_count(self) -> int: ...

    @property
    def clusters_per_group(self) -> int: ...

    @property
    def block_size(self) -> int: ...

    @property
    def has_group_checksums(self) -> bool: ...

    def group_flags(self, group: int) -> int: ...

    def device_block_capacity(self) -> int: ...

    def is_block_used(self, block: int) -> bool: ...

    def read_block(self, block: int, buffer) -> None: ...


class FreeBlockIterator:
    """
    Forward-only walk over the unallocated blocks of a filesystem.

    Groups are visited in increasing order and blocks in increasing order
    within a group, so no block index is produced twice. Once exhausted
    (all groups consumed, or the device capacity reached) every further
    call raises OutOfRange; the iterator cannot be restarted.

    Groups flagged BLOCK_UNINIT are skipped entirely and none of their
    blocks are reported. This is a policy, not a guarantee: the flag is
    only available with group checksums, its absence does not mean the
    group was ever written, and its presence does not mean the blocks
    are zero-filled (e.g. a reformatted, previously used device).

    Blocks are addressed as group * clusters_per_group + offset. When the
    filesystem's first data block is 1 (1 KiB blocks) this is one block
    ahead of the on-disk group boundaries: the last block of each group
    is never visited, and the first block of the following iteration
    group belongs to the previous on-disk group. If that on-disk group is
    uninitialized the adapter reports the block as free, so it is yielded
    even though its group is otherwise skipped.
    """

    def __init__(self, fs: FilesystemAdapter, max_blocks: Optional[int] = None):
        self.fs = fs
        self.group_index = 0
        self.offset = 0           # in-group cluster offset being examined
        self.next_offset = 0      # where the next call resumes
        self.group_flags = None   # None until fetched for the current group
        self.max_blocks = fs.device_block_capacity() if max_blocks is None else max_blocks
        self.exhausted = False

    def _next_group(self) -> None:
        self.group_index += 1
        self.offset = 0
        self.next_offset = 0
        self.group_flags = None

    def _exhaust(self, reason: str) -> OutOfRange:
        self.exhausted = True
        logger.debug("free block scan finished: %s", reason)
        return OutOfRange(reason)

    def _call(self, what: str, func, *args):
        try:
            return func(*args)
        except EntropyError:
            raise
        except OSError as e:
            raise IOFailure(f"{what} failed: {e}") from e

    def next_block(self, buffer) -> int:
        """
        Read the next unallocated block into buffer and return its index.

        buffer must be writable and exactly block_size bytes long.

        Raises:
            InvalidArgument  buffer size differs from the block size
            OutOfRange       no more free blocks (terminal)
            IOFailure        metadata or block read failed; the same block
                             is retried by the next call
        """
        fs = self.fs
        if len(buffer) != fs.block_size:
            raise InvalidArgument(
                f"buffer is {len(buffer)} bytes, filesystem block size is {fs.block_size}"
            )
        if self.exhausted:
            raise OutOfRange("free block iterator is exhausted")

        clusters = fs.clusters_per_group
        self.offset = self.next_offset
        while True:
            if self.group_index >= fs.group_count:
                raise self._exhaust("all block groups consumed")

            if self.group_flags is None:
                if fs.has_group_checksums:
                    self.group_flags = self._call("group flags", fs.group_flags, self.group_index)
                else:
                    self.group_flags = 0

            if self.group_flags & BLOCK_UNINIT:
                logger.debug("skipping uninitialized block group %d", self.group_index)
                self._next_group()
                continue

            block = None
            while self.offset < clusters:
                candidate = self.group_index * clusters + self.offset
                if candidate >= self.max_blocks:
                    raise self._exhaust(f"block {candidate} is beyond device capacity {self.max_blocks}")
                if not self._call("bitmap test", fs.is_block_used, candidate):
                    block = candidate
                    break
                self.offset += 1

            if block is None:
                self._next_group()
                continue

            self._call(f"read of block {block}", fs.read_block, block, buffer)
            self.next_offset = self.offset + 1
            return block

    def __iter__(self) -> Iterator[Tuple[int, bytes]]:
        """Yield (block_index, data) for every remaining free block."""
        buffer = bytearray(self.fs.block_size)
        while True:
            try:
                block = self.next_block(buffer)
            except OutOfRange:
                return
            yield block, bytes(buffer)


def measure_free_blocks(fs: FilesystemAdapter, algorithms: Iterable,
                        max_blocks: Optional[int] = None) -> Iterator[Tuple[int, BatchRequest]]:
    """Yield (block_index, request) with every metric computed per free block."""
    algorithms = list(algorithms)
    for block, data in FreeBlockIterator(fs, max_blocks):
        yield block, analyze_region(data, algorithms)
