"""
utils.py - Utility helpers for the entropy detector.
"""

import argparse
import time


def format_size(n: int) -> str:
    """Human-readable byte size."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if n < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} PB"


def parse_number(text: str) -> int:
    """
    argparse type for sizes and offsets: decimal, or 0x/0o/0b prefixed.
    Negative values are rejected.
    """
    try:
        value = int(text, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {text!r}")
    return value


def elapsed(start: float) -> float:
    """Return seconds since start."""
    return time.time() - start
