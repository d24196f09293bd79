"""Tests for extfs -- the ext2/3/4 metadata adapter, against synthetic images."""

import struct

import pytest

from errors import IOFailure
from extfs import (
    DESC_SIZE_64BIT,
    RO_COMPAT_BIGALLOC,
    ExtFilesystem,
    GroupDescriptor,
    Superblock,
    device_block_capacity,
    parse_descriptors,
)
from generate_samples import gen_ext_image
from scanner import BLOCK_UNINIT, FreeBlockIterator


def test_geometry(ext_image):
    with ExtFilesystem.open(ext_image) as fs:
        assert fs.group_count == 2
        assert fs.block_size == 4096
        assert fs.clusters_per_group == 32
        assert fs.has_group_checksums
        assert fs.group_flags(0) == 0
        assert fs.group_flags(1) == BLOCK_UNINIT
        assert fs.device_block_capacity() == 64


def test_bitmap(ext_image):
    with ExtFilesystem.open(ext_image) as fs:
        assert [fs.is_block_used(b) for b in range(8)] == [True] * 4 + [False, True, True, False]
        assert fs.is_block_used(64)
        # uninitialized group has no bitmap to consult
        assert not fs.is_block_used(40)


def test_free_blocks(ext_image):
    with ExtFilesystem.open(ext_image) as fs:
        pairs = list(FreeBlockIterator(fs))
    assert [b for b, _ in pairs] == [4] + list(range(7, 32))
    assert dict(pairs)[7] == bytes(range(256)) * 16
    assert dict(pairs)[4] == bytes(4096)


def test_free_blocks_without_checksums(write_file):
    path = write_file("plain.img", gen_ext_image(groups=2, blocks_per_group=32, uninit={1}, checksums=False))
    with ExtFilesystem.open(path) as fs:
        assert not fs.has_group_checksums
        blocks = [b for b, _ in FreeBlockIterator(fs)]
    assert blocks == list(range(4, 64))


def test_free_blocks_one_kib(write_file):
    # Block numbering runs one ahead of the on-disk groups when the first
    # data block is 1: block 32 is the last block of uninitialized group 1.
    path = write_file("small.img", gen_ext_image(groups=3, blocks_per_group=16,
                                                  block_size=1024, uninit={1}))
    with ExtFilesystem.open(path) as fs:
        assert fs.superblock.first_data_block == 1
        assert not fs.is_block_used(32)
        blocks = [b for b, _ in FreeBlockIterator(fs)]
    assert blocks == list(range(6, 16)) + list(range(32, 48))


def test_truncated_device(write_file):
    image = gen_ext_image(groups=2, blocks_per_group=32, used={5, 6})
    path = write_file("short.img", image[:5 * 4096])
    assert device_block_capacity(path, 4096) == 5
    with ExtFilesystem.open(path) as fs:
        assert [b for b, _ in FreeBlockIterator(fs)] == [4]


def test_read_block_short_read(write_file):
    image = gen_ext_image(groups=2, blocks_per_group=32)
    path = write_file("short.img", image[:10 * 4096])
    with ExtFilesystem.open(path) as fs:
        with pytest.raises(IOFailure):
            fs.read_block(20, bytearray(4096))


def test_closes_file(ext_image):
    with ExtFilesystem.open(ext_image) as fs:
        pass
    assert fs._fh.closed


def test_not_ext(write_file):
    path = write_file("junk.bin", bytes(8192))
    with pytest.raises(IOFailure, match="not an ext"):
        ExtFilesystem.open(path)


def test_missing(tmp_path):
    with pytest.raises(IOFailure):
        ExtFilesystem.open(str(tmp_path / "missing.img"))
    with pytest.raises(IOFailure):
        device_block_capacity(str(tmp_path / "missing.img"), 4096)


def test_bigalloc_rejected(write_file):
    image = bytearray(gen_ext_image())
    struct.pack_into("<I", image, 1024 + 0x64, RO_COMPAT_BIGALLOC)
    path = write_file("bigalloc.img", bytes(image))
    with pytest.raises(IOFailure, match="bigalloc"):
        ExtFilesystem.open(path)


def test_short_superblock():
    with pytest.raises(IOFailure):
        Superblock.parse(bytes(100))


def test_superblock_fields():
    image = gen_ext_image(groups=3, blocks_per_group=16, block_size=1024)
    sb = Superblock.parse(image[1024:2048])
    assert sb.block_size == 1024
    assert sb.first_data_block == 1
    assert sb.blocks_count == 49
    assert sb.group_count == 3
    assert sb.descriptor_size == 32


def test_64bit_descriptors():
    raw = bytearray(DESC_SIZE_64BIT * 2)
    struct.pack_into("<I", raw, 0, 5)
    struct.pack_into("<H", raw, 0x12, BLOCK_UNINIT)
    struct.pack_into("<I", raw, 0x20, 1)
    struct.pack_into("<I", raw, DESC_SIZE_64BIT, 9)
    assert parse_descriptors(bytes(raw), 2, DESC_SIZE_64BIT) == [
        GroupDescriptor((1 << 32) | 5, BLOCK_UNINIT),
        GroupDescriptor(9, 0),
    ]
