"""
extfs.py - Read-only ext2/3/4 metadata adapter for FreeBlockIterator.

Parses just enough of the on-disk format to answer the questions the free
block scanner asks: group layout, group flags, block allocation bitmaps and
raw block reads. Nothing is ever written back.

On-disk references (all little-endian):
  superblock          1024 bytes at byte offset 1024
  group descriptors   block following the superblock's block
  block bitmap        one block per group, bit i -> block i of the group
"""

import logging
import os
import struct
from dataclasses import dataclass
from typing import Dict, List, NamedTuple

from errors import IOFailure
from scanner import BLOCK_UNINIT

logger = logging.getLogger(__name__)


SUPERBLOCK_OFFSET = 1024
SUPERBLOCK_SIZE = 1024
EXT_MAGIC = 0xEF53

INCOMPAT_META_BG = 0x0010
INCOMPAT_64BIT = 0x0080
RO_COMPAT_GDT_CSUM = 0x0010
RO_COMPAT_BIGALLOC = 0x0200
RO_COMPAT_METADATA_CSUM = 0x0400

DESC_SIZE = 32
DESC_SIZE_64BIT = 64


# ── On-disk structures ──────────────────────────────────────────────────────

@dataclass
class Superblock:
    blocks_count: int
    first_data_block: int
    log_block_size: int
    log_cluster_size: int
    blocks_per_group: int
    clusters_per_group: int
    magic: int
    feature_compat: int
    feature_incompat: int
    feature_ro_compat: int
    desc_size: int

    @classmethod
    def parse(cls, raw: bytes) -> "Superblock":
        if len(raw) < SUPERBLOCK_SIZE:
            raise IOFailure("short read on superblock")
        (blocks_lo,) = struct.unpack_from("<I", raw, 0x04)
        first_data_block, log_block, log_cluster, bpg, cpg = struct.unpack_from("<5I", raw, 0x14)
        (magic,) = struct.unpack_from("<H", raw, 0x38)
        compat, incompat, ro_compat = struct.unpack_from("<3I", raw, 0x5C)
        (desc_size,) = struct.unpack_from("<H", raw, 0xFE)
        (blocks_hi,) = struct.unpack_from("<I", raw, 0x150)

        blocks = blocks_lo
        if incompat & INCOMPAT_64BIT:
            blocks |= blocks_hi << 32
        return cls(
            blocks_count=blocks,
            first_data_block=first_data_block,
            log_block_size=log_block,
            log_cluster_size=log_cluster,
            blocks_per_group=bpg,
            clusters_per_group=cpg,
            magic=magic,
            feature_compat=compat,
            feature_incompat=incompat,
            feature_ro_compat=ro_compat,
            desc_size=desc_size,
        )

    @property
    def block_size(self) -> int:
        return 1024 << self.log_block_size

    @property
    def descriptor_size(self) -> int:
        if self.feature_incompat & INCOMPAT_64BIT:
            return self.desc_size or DESC_SIZE_64BIT
        return DESC_SIZE

    @property
    def group_count(self) -> int:
        span = self.blocks_count - self.first_data_block
        return -(-span // self.blocks_per_group)

    @property
    def has_group_checksums(self) -> bool:
        return bool(self.feature_ro_compat & (RO_COMPAT_GDT_CSUM | RO_COMPAT_METADATA_CSUM))


class GroupDescriptor(NamedTuple):
    block_bitmap: int
    flags: int


def parse_descriptors(raw: bytes, count: int, desc_size: int) -> List[GroupDescriptor]:
    descriptors = []
    for g in range(count):
        base = g * desc_size
        (bitmap_lo,) = struct.unpack_from("<I", raw, base)
        (flags,) = struct.unpack_from("<H", raw, base + 0x12)
        bitmap = bitmap_lo
        if desc_size >= DESC_SIZE_64BIT:
            (bitmap_hi,) = struct.unpack_from("<I", raw, base + 0x20)
            bitmap |= bitmap_hi << 32
        descriptors.append(GroupDescriptor(bitmap, flags))
    return descriptors


def device_block_capacity(path: str, block_size: int) -> int:
    """Number of whole blocks of block_size the file or device at path holds."""
    try:
        with open(path, "rb") as fh:
            size = fh.seek(0, os.SEEK_END)
    except OSError as e:
        raise IOFailure(f"cannot determine size of {path}: {e}") from e
    return size // block_size


# ── Filesystem handle ───────────────────────────────────────────────────────

class ExtFilesystem:
    """
    An open ext2/3/4 image or device, satisfying scanner.FilesystemAdapter.

    Use ExtFilesystem.open(path) as a context manager so the underlying
    file is always closed.
    """

    def __init__(self, path: str, fh, superblock: Superblock, descriptors: List[GroupDescriptor]):
        self.path = path
        self._fh = fh
        self.superblock = superblock
        self.descriptors = descriptors
        self._bitmaps: Dict[int, bytes] = {}

    @classmethod
    def open(cls, path: str) -> "ExtFilesystem":
        try:
            fh = open(path, "rb")
        except OSError as e:
            raise IOFailure(f"cannot open {path}: {e}") from e
        try:
            fh.seek(SUPERBLOCK_OFFSET)
            sb = Superblock.parse(fh.read(SUPERBLOCK_SIZE))
            if sb.magic != EXT_MAGIC:
                raise IOFailure(f"{path}: not an ext2/3/4 filesystem (magic 0x{sb.magic:04X})")
            if sb.feature_ro_compat & RO_COMPAT_BIGALLOC:
                raise IOFailure(f"{path}: bigalloc filesystems are not supported")
            if sb.feature_incompat & INCOMPAT_META_BG:
                raise IOFailure(f"{path}: meta_bg group descriptor layout is not supported")
            if not sb.blocks_per_group:
                raise IOFailure(f"{path}: corrupt superblock (0 blocks per group)")

            count = sb.group_count
            fh.seek((sb.first_data_block + 1) * sb.block_size)
            raw = fh.read(count * sb.descriptor_size)
            if len(raw) < count * sb.descriptor_size:
                raise IOFailure(f"{path}: short read on group descriptor table")
            descriptors = parse_descriptors(raw, count, sb.descriptor_size)
        except OSError as e:
            fh.close()
            raise IOFailure(f"cannot read filesystem metadata of {path}: {e}") from e
        except IOFailure:
            fh.close()
            raise

        logger.debug("%s: %d blocks of %d bytes, %d groups of %d, checksums=%s",
                     path, sb.blocks_count, sb.block_size, count,
                     sb.blocks_per_group, sb.has_group_checksums)
        return cls(path, fh, sb, descriptors)

    def close(self) -> None:
        self._bitmaps.clear()
        self._fh.close()

    def __enter__(self) -> "ExtFilesystem":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── FilesystemAdapter ────────────────────────────────────────────────

    @property
    def group_count(self) -> int:
        return len(self.descriptors)

    @property
    def clusters_per_group(self) -> int:
        # Without bigalloc one cluster is one block
        return self.superblock.blocks_per_group

    @property
    def block_size(self) -> int:
        return self.superblock.block_size

    @property
    def has_group_checksums(self) -> bool:
        return self.superblock.has_group_checksums

    def group_flags(self, group: int) -> int:
        return self.descriptors[group].flags

    def device_block_capacity(self) -> int:
        return device_block_capacity(self.path, self.block_size)

    def _bitmap(self, group: int) -> bytes:
        bitmap = self._bitmaps.get(group)
        if bitmap is None:
            location = self.descriptors[group].block_bitmap
            self._fh.seek(location * self.block_size)
            bitmap = self._fh.read(self.block_size)
            if len(bitmap) != self.block_size:
                raise IOFailure(f"short read on block bitmap of group {group} (block {location})")
            self._bitmaps[group] = bitmap
        return bitmap

    def is_block_used(self, block: int) -> bool:
        sb = self.superblock
        if block < sb.first_data_block or block >= sb.blocks_count:
            return True
        group, bit = divmod(block - sb.first_data_block, sb.blocks_per_group)
        # An uninitialized group has no bitmap on disk
        if self.has_group_checksums and self.group_flags(group) & BLOCK_UNINIT:
            return False
        bitmap = self._bitmap(group)
        return bool(bitmap[bit >> 3] & (1 << (bit & 7)))

    def read_block(self, block: int, buffer) -> None:
        try:
            self._fh.seek(block * self.block_size)
            n = self._fh.readinto(buffer)
        except OSError as e:
            raise IOFailure(f"cannot read block {block}: {e}") from e
        if n != self.block_size:
            raise IOFailure(f"short read on block {block} ({n} of {self.block_size} bytes)")
