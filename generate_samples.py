"""
generate_samples.py

Generates sample inputs with known statistical properties so the detector
can be checked against ground truth without a real drive.

Produces files in the samples/ directory (or the directory given as the
first argument):
  zero_fill.bin      - Entirely 0x00                  (entropy 0, huge chi²)
  uniform_cycle.bin  - bytes 0x00..0xFF repeated      (entropy 8, chi² 0)
  random_fill.bin    - Cryptographically random bytes (entropy ~8)
  text.bin           - English-like ASCII text         (entropy ~4)
  compressed.bin     - zlib-compressed text            (entropy ~7.9)
  mixed.bin          - Text with a random region hidden at 256 KB
  ext_hidden.img     - Tiny ext filesystem with random data in free blocks
"""

import os
import random
import struct
import sys
import zlib

OUTDIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "samples")
SIZE = 1 * 1024 * 1024   # 1 MB per sample (small for fast demos)
HIDDEN_OFFSET = 256 * 1024
HIDDEN_SIZE = 64 * 1024

WORDS = (
    "the quick brown fox jumps over lazy dog block group bitmap entropy "
    "disk sector cluster random cipher plain text data file system inode"
).split()


def write_file(outdir: str, name: str, data: bytes):
    path = os.path.join(outdir, name)
    with open(path, "wb") as fh:
        fh.write(data)
    kb = len(data) // 1024
    print(f"  [+] {name:<30} {kb:>6} KB")


def gen_zero(size=SIZE) -> bytes:
    return b"\x00" * size


def gen_uniform_cycle(size=SIZE) -> bytes:
    """Every byte value equally often: maximal entropy, zero chi-square."""
    unit = bytes(range(256))
    return (unit * (size // len(unit) + 1))[:size]


def gen_random(size=SIZE) -> bytes:
    return os.urandom(size)


def gen_text(size=SIZE, seed=42) -> bytes:
    rng = random.Random(seed)
    out = bytearray()
    while len(out) < size:
        out += (" ".join(rng.choice(WORDS) for _ in range(12)) + ".\n").encode("ascii")
    return bytes(out[:size])


def gen_compressed(size=SIZE) -> bytes:
    return zlib.compress(gen_text(size * 4, seed=7), 9)[:size]


def gen_mixed(size=SIZE) -> bytes:
    """Text with a random (encrypted-looking) region embedded in it."""
    data = bytearray(gen_text(size))
    data[HIDDEN_OFFSET:HIDDEN_OFFSET + HIDDEN_SIZE] = gen_random(HIDDEN_SIZE)
    return bytes(data)


# ── Minimal ext filesystem image ──────────────────────────────────────────────

def gen_ext_image(groups=2, blocks_per_group=32, block_size=4096, used=(),
                  uninit=(), checksums=True, fill=None) -> bytes:
    """
    Build a bare ext2-style image: superblock, one group descriptor table
    block, and one block bitmap per group, nothing else.

    Layout: the superblock sits at byte 1024 (block 0, or block 1 with
    1 KiB blocks, which is then the first data block), the group
    descriptors in the next block, then one bitmap block per group. Those
    metadata blocks plus every block in `used` are marked allocated.
    Groups listed in `uninit` get the BLOCK_UNINIT flag (only honoured
    when checksums is True). `fill` maps block numbers to content.
    """
    if groups + 2 > blocks_per_group:
        raise ValueError("metadata does not fit in the first group")
    first_data_block = 1 if block_size == 1024 else 0
    gdt_block = first_data_block + 1
    blocks = first_data_block + groups * blocks_per_group
    image = bytearray(blocks * block_size)

    sb = bytearray(1024)
    log_block = block_size.bit_length() - 11
    struct.pack_into("<I", sb, 0x04, blocks)
    struct.pack_into("<5I", sb, 0x14, first_data_block, log_block, log_block,
                     blocks_per_group, blocks_per_group)
    struct.pack_into("<H", sb, 0x38, 0xEF53)
    struct.pack_into("<I", sb, 0x64, 0x0010 if checksums else 0)
    image[1024:2048] = sb

    bitmaps = [gdt_block + 1 + g for g in range(groups)]
    for g in range(groups):
        desc = gdt_block * block_size + g * 32
        struct.pack_into("<I", image, desc, bitmaps[g])
        struct.pack_into("<H", image, desc + 0x12, 0x0002 if g in uninit else 0)

    for block in list(range(first_data_block, gdt_block + 1)) + bitmaps + list(used):
        g, bit = divmod(block - first_data_block, blocks_per_group)
        image[bitmaps[g] * block_size + (bit >> 3)] |= 1 << (bit & 7)

    for block, data in (fill or {}).items():
        data = data[:block_size].ljust(block_size, b"\x00")
        image[block * block_size:(block + 1) * block_size] = data
    return bytes(image)


def gen_ext_hidden() -> bytes:
    """4 groups of 64 blocks; random data left behind in free blocks 40-47."""
    used = range(4, 20)
    fill = {b: gen_text(4096, seed=b) for b in used}
    fill.update({b: gen_random(4096) for b in range(40, 48)})
    return gen_ext_image(groups=4, blocks_per_group=64, used=used, uninit={2}, fill=fill)


def main():
    outdir = sys.argv[1] if len(sys.argv) > 1 else OUTDIR
    os.makedirs(outdir, exist_ok=True)
    print(f"\n  Generating samples in: {os.path.abspath(outdir)}\n")

    samples = [
        ("zero_fill.bin",      gen_zero()),
        ("uniform_cycle.bin",  gen_uniform_cycle()),
        ("random_fill.bin",    gen_random()),
        ("text.bin",           gen_text()),
        ("compressed.bin",     gen_compressed()),
        ("mixed.bin",          gen_mixed()),
        ("ext_hidden.img",     gen_ext_hidden()),
    ]

    for name, data in samples:
        write_file(outdir, name, data)

    print(f"\n  Done! {len(samples)} sample files created.\n")
    print("  Run the detector against any of these, e.g.:")
    print("    entropy-detector -b 4096 --min-entropy 7.5 samples/mixed.bin")
    print("    entropy-detector --free-blocks samples/ext_hidden.img\n")


if __name__ == "__main__":
    main()
