"""Test helpers: Hypothesis strategies and an in-memory filesystem adapter."""

from hypothesis import strategies as st

# Arbitrary byte buffers, including empty ones
buffer_strategy = st.binary(min_size=0, max_size=4096)

# Chunk sizes used to split a buffer into several updates
chunk_size_strategy = st.integers(min_value=1, max_value=512)


class FakeAdapter:
    """In-memory FilesystemAdapter with a configurable group layout."""

    def __init__(self, groups=2, clusters=8, block_size=16, capacity=16, used=(),
                 flags=None, checksums=True, fail_reads=None):
        self._groups = groups
        self._clusters = clusters
        self._block_size = block_size
        self.capacity = capacity
        self.used = set(used)
        self.flags = dict(flags or {})
        self.checksums = checksums
        self.fail_reads = dict(fail_reads or {})   # block -> remaining failures
        self.reads = []
        self.flag_queries = []

    @property
    def group_count(self):
        return self._groups

    @property
    def clusters_per_group(self):
        return self._clusters

    @property
    def block_size(self):
        return self._block_size

    @property
    def has_group_checksums(self):
        return self.checksums

    def group_flags(self, group):
        self.flag_queries.append(group)
        return self.flags.get(group, 0)

    def device_block_capacity(self):
        return self.capacity

    def is_block_used(self, block):
        return block in self.used

    def read_block(self, block, buffer):
        self.reads.append(block)
        if self.fail_reads.get(block):
            self.fail_reads[block] -= 1
            raise OSError(5, "Input/output error")
        buffer[:] = bytes([block % 256]) * self._block_size
