"""Shared pytest fixtures for the entropy detector tests."""

import pytest

from generate_samples import gen_ext_image
from scanner import BLOCK_UNINIT
from tests.helpers import FakeAdapter


@pytest.fixture
def layout_adapter():
    """2 groups of 8, capacity 16, blocks 0-2 used, group 1 uninitialized."""
    return FakeAdapter(used={0, 1, 2}, flags={1: BLOCK_UNINIT})


@pytest.fixture
def write_file(tmp_path):
    """Write bytes to a file under tmp_path and return its path as str."""
    def _write(name, data):
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)
    return _write


@pytest.fixture
def ext_image(write_file):
    """
    ext image: 2 groups x 32 blocks of 4096 bytes. Blocks 0-3 are metadata,
    5 and 6 are used, block 7 holds uniformly distributed bytes, group 1
    is BLOCK_UNINIT.
    """
    data = gen_ext_image(
        groups=2,
        blocks_per_group=32,
        used={5, 6},
        uninit={1},
        fill={7: bytes(range(256)) * 16},
    )
    return write_file("fs.img", data)
