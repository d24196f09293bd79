"""
errors.py - Exception types shared by the engine, scanners and the CLI.
"""


class EntropyError(Exception):
    """Base class for every error raised by this package."""
    pass


class InvalidArgument(EntropyError, ValueError):
    """Malformed option value, bad bin size, or buffer/block-size mismatch."""
    pass


class OutOfRange(EntropyError):
    """Iterator exhausted, or block address beyond the device capacity."""
    pass


class IOFailure(EntropyError):
    """Open/seek/read failure on a file, image or device."""
    pass


class FPError(EntropyError, ArithmeticError):
    """Non-finite statistical result, usually from an empty measurement window."""
    pass


class UnknownAlgorithm(EntropyError, ValueError):
    pass


class OutOfMemory(EntropyError, MemoryError):
    """Raised when a batch request cannot be allocated."""
    pass
