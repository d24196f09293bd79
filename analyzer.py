"""
analyzer.py - Statistical engine for randomness metrics over byte streams.

Bytes are folded into a running 256-entry frequency table (FrequencyContext).
Metrics are computed from the table alone, so a buffer is scanned exactly
once no matter how many metrics are requested for it:

  Shannon entropy   0.0 (one repeated byte) .. 8.0 (uniform bytes)
  Chi-square        goodness-of-fit against a uniform byte distribution
  BFD               the raw byte frequency distribution itself
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Iterator, List, Optional, Sequence, Union

from errors import EntropyError, FPError, InvalidArgument, OutOfMemory, UnknownAlgorithm


SYMBOLS = 256              # 8-bit alphabet
MAX_BATCH = 255            # entries per BatchRequest
MAX_BIN_SIZE = 128


class Algorithm(IntEnum):
    SHANNON = 0
    CHISQ = 1
    BFD = 2


# Metric names as they appear on the command line
METRIC_NAMES = {
    "entropy": Algorithm.SHANNON,
    "chisq":   Algorithm.CHISQ,
    "bfd":     Algorithm.BFD,
}


def parse_metric(name: str) -> Algorithm:
    """Map a command-line metric name to its Algorithm."""
    try:
        return METRIC_NAMES[name]
    except KeyError:
        raise InvalidArgument(f"invalid metric: {name!r} (choose from {', '.join(METRIC_NAMES)})") from None


def metric_name(algorithm: Algorithm) -> str:
    for name, algo in METRIC_NAMES.items():
        if algo == algorithm:
            return name
    raise UnknownAlgorithm(f"unknown algorithm: {algorithm!r}")


# ── Frequency context ───────────────────────────────────────────────────────

@dataclass
class FrequencyContext:
    """
    Per-byte occurrence counts for one measurement window.

    sum(table) == symbol_count holds after every update. Reset between
    independent windows (e.g. one window per fixed-size block).
    """
    table: List[int] = field(default_factory=lambda: [0] * SYMBOLS)
    symbol_count: int = 0

    def update(self, buffer) -> None:
        update(self, buffer)

    def reset(self) -> None:
        # Zero in place so borrowed DistributionResults see the reset
        for i in range(SYMBOLS):
            self.table[i] = 0
        self.symbol_count = 0


def update(ctx: FrequencyContext, buffer) -> None:
    """
    Fold every byte of buffer into ctx. Any bytes-like object is accepted
    and chunks may be of any size; a zero-length buffer is a no-op.
    """
    if not isinstance(buffer, (bytes, bytearray)):
        buffer = bytes(memoryview(buffer).cast("B"))
    if not buffer:
        return
    table = ctx.table
    for value, count in Counter(buffer).items():
        table[value] += count
    ctx.symbol_count += len(buffer)


# ── Results ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScalarResult:
    """Floating-point metric value (Shannon, chi-square)."""
    value: float

    def __float__(self) -> float:
        return self.value


@dataclass(frozen=True)
class DistributionResult:
    """
    Byte frequency distribution.

    `table` is borrowed: it is the owning context's own list, not a copy.
    It is only meaningful until the next update() or reset() of that
    context. Copy it (list(result.table)) to keep a snapshot.
    """
    table: Sequence[int]


AlgorithmResult = Union[ScalarResult, DistributionResult]


# ── Algorithms ──────────────────────────────────────────────────────────────

def _checked(value: float, name: str) -> ScalarResult:
    if not math.isfinite(value):
        raise FPError(f"{name} calculation produced a non-finite value ({value})")
    return ScalarResult(value)


def _shannon(ctx: FrequencyContext) -> AlgorithmResult:
    n = ctx.symbol_count
    if n == 0:
        raise FPError("shannon entropy of an empty window is undefined")
    entropy = 0.0
    for count in ctx.table:
        # Symbols that never occurred contribute nothing
        if not count:
            continue
        p = count / n
        entropy -= p * math.log2(p)
    return _checked(entropy, "shannon entropy")


def _chisq(ctx: FrequencyContext) -> AlgorithmResult:
    """
    X^2 = SUM((O_i - E)^2 / E) with E = N / 256 for every symbol, which
    under a uniform expectation simplifies to SUM(O_i^2) / E - N.
    This is not a test against an arbitrary reference distribution.
    """
    n = ctx.symbol_count
    if n == 0:
        raise FPError("chi-square of an empty window is undefined")
    expected = n / SYMBOLS
    try:
        value = sum(count * count for count in ctx.table) / expected - n
    except (OverflowError, ZeroDivisionError) as exc:
        raise FPError(f"chi-square calculation failed: {exc}") from exc
    return _checked(value, "chi-square")


def _bfd(ctx: FrequencyContext) -> AlgorithmResult:
    return DistributionResult(ctx.table)


_ALGORITHMS = {
    Algorithm.SHANNON: _shannon,
    Algorithm.CHISQ:   _chisq,
    Algorithm.BFD:     _bfd,
}


def calculate(ctx: FrequencyContext, algorithm) -> AlgorithmResult:
    """
    Compute one metric over the frequencies accumulated in ctx.

    Raises:
        UnknownAlgorithm  algorithm is not an Algorithm value
        FPError           empty window or non-finite arithmetic
    """
    # Algorithm() would accept 1.0 and True as CHISQ
    if isinstance(algorithm, bool) or not isinstance(algorithm, int):
        raise UnknownAlgorithm(f"unknown algorithm: {algorithm!r}")
    try:
        algorithm = Algorithm(algorithm)
    except (ValueError, TypeError):
        raise UnknownAlgorithm(f"unknown algorithm: {algorithm!r}") from None
    return _ALGORITHMS[algorithm](ctx)


# ── Batches ─────────────────────────────────────────────────────────────────

@dataclass
class BatchEntry:
    algorithm: object
    result: Optional[AlgorithmResult] = None
    error: Optional[EntropyError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None


class BatchRequest:
    """
    Ordered set of metrics to compute over one context.

    Entries are built once into a single list; each one is computed and
    fails independently of the others.
    """

    def __init__(self, algorithms: Iterable):
        algorithms = list(algorithms)
        if not 0 < len(algorithms) <= MAX_BATCH:
            raise InvalidArgument(
                f"batch request needs 1..{MAX_BATCH} algorithms, got {len(algorithms)}"
            )
        try:
            self.entries = [BatchEntry(algo) for algo in algorithms]
        except MemoryError as exc:
            raise OutOfMemory("cannot allocate batch request") from exc

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[BatchEntry]:
        return iter(self.entries)

    def __getitem__(self, index: int) -> BatchEntry:
        return self.entries[index]

    @property
    def algorithms(self) -> list:
        return [e.algorithm for e in self.entries]

    @property
    def results(self) -> List[Optional[AlgorithmResult]]:
        return [e.result for e in self.entries]

    @property
    def errors(self) -> List[Optional[EntropyError]]:
        return [e.error for e in self.entries]

    def result_for(self, algorithm: Algorithm) -> Optional[AlgorithmResult]:
        """First successful result for algorithm, or None."""
        for entry in self.entries:
            if entry.algorithm == algorithm and entry.ok:
                return entry.result
        return None

    def first_error(self) -> Optional[EntropyError]:
        for entry in self.entries:
            if entry.error is not None:
                return entry.error
        return None


def batch_calculate(ctx: FrequencyContext, request: BatchRequest) -> BatchRequest:
    """
    Run calculate() for every entry of request against the same context.
    A failing entry records its error and does not stop its siblings.
    """
    for entry in request.entries:
        entry.result = None
        entry.error = None
        try:
            entry.result = calculate(ctx, entry.algorithm)
        except EntropyError as exc:
            entry.error = exc
    return request


def analyze_region(data: bytes, algorithms: Iterable = (Algorithm.SHANNON, Algorithm.CHISQ)) -> BatchRequest:
    """Measure a single self-contained region: one scan, several metrics."""
    ctx = FrequencyContext()
    ctx.update(data)
    return batch_calculate(ctx, BatchRequest(algorithms))


# ── Display transforms ──────────────────────────────────────────────────────

def valid_bin_size(bin_size) -> bool:
    return (
        isinstance(bin_size, int)
        and 1 <= bin_size <= MAX_BIN_SIZE
        and bin_size & (bin_size - 1) == 0
    )


def bin_frequencies(table: Sequence[int], bin_size: int = 1) -> List[int]:
    """
    Sum adjacent byte values of a frequency table into bins of bin_size.

    bin_size must be a power of two in [1, 128]; anything else is rejected
    before any binning happens.
    """
    if not valid_bin_size(bin_size):
        raise InvalidArgument(f"bin size must be a power of two in [1, {MAX_BIN_SIZE}], got {bin_size!r}")
    if bin_size == 1:
        return list(table)
    return [sum(table[i:i + bin_size]) for i in range(0, SYMBOLS, bin_size)]
