#!/usr/bin/env python3
"""
detector.py - Entropy Detector: randomness metrics for files and free blocks

Measures Shannon entropy, chi-square against a uniform byte distribution, or
the byte frequency distribution of plain files, block devices, stdin, or the
unused blocks of an ext2/3/4 filesystem, to flag hidden, encrypted or
otherwise anomalous data.

Usage:
    entropy-detector [options] [target ...]

Examples:
    entropy-detector suspicious.bin
    entropy-detector -b 4096 -m entropy -m chisq disk.img
    entropy-detector -b 0x1000 --min-entropy 7.5 /dev/sdb1
    entropy-detector -m bfd --bin-size 16 firmware.bin
    cat blob | entropy-detector -m chisq
    entropy-detector --free-blocks --min-entropy 7.9 /dev/sdb1
"""

import argparse
import contextlib
import logging
import sys
import time
from typing import Dict, List, Optional, Sequence

from analyzer import (
    METRIC_NAMES,
    Algorithm,
    BatchRequest,
    parse_metric,
    valid_bin_size,
)
from errors import EntropyError, InvalidArgument, IOFailure
from extfs import ExtFilesystem
from reporter import error, format_line, format_values, print_banner, print_summary, summary_row, warn
from scanner import measure_free_blocks, measure_stream
from utils import elapsed, parse_number


DEFAULT_METRIC = "entropy"
STDIN = "-"


# ── Option parsing ────────────────────────────────────────────────────────────

def _metric(text: str) -> Algorithm:
    try:
        return parse_metric(text)
    except InvalidArgument as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _bin_size(text: str) -> int:
    value = parse_number(text)
    if not valid_bin_size(value):
        raise argparse.ArgumentTypeError(f"bin size must be a power of two in [1, 128]: {text!r}")
    return value


def _threshold(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid threshold: {text!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="entropy-detector",
        description="Entropy Detector – randomness metrics for files and unused filesystem blocks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Metrics: entropy (default), chisq, bfd

Examples:
  entropy-detector -b 4096 -m entropy -m chisq disk.img
  entropy-detector -m bfd --bin-size 16 firmware.bin
  entropy-detector --free-blocks --min-entropy 7.9 /dev/sdb1
        """,
    )
    parser.add_argument("targets", nargs="*", metavar="target",
                        help="Files or devices to scan ('-' or none reads stdin)")
    parser.add_argument("-b", "--block-size", type=parse_number, default=0,
                        help="Report one result per block of this many bytes (plain files)")
    parser.add_argument("-l", "--limit", type=parse_number, default=0,
                        help="Stop after this many bytes (plain files, 0 = unlimited)")
    parser.add_argument("-s", "--skip", type=parse_number, default=0,
                        help="Skip this many bytes before scanning (plain files)")
    parser.add_argument("-m", "--metric", type=_metric, action="append",
                        help=f"Metric to report, repeatable: {', '.join(METRIC_NAMES)} "
                             f"(default: {DEFAULT_METRIC})")
    parser.add_argument("--bin-size", type=_bin_size, default=1,
                        help="Sum bfd counts over bins of this many byte values "
                             "(power of two, 1-128)")
    parser.add_argument("--min-entropy", type=_threshold, default=None,
                        help="Only report units with at least this Shannon entropy")
    parser.add_argument("--max-chisq", type=_threshold, default=None,
                        help="Only report units with at most this chi-square value")
    parser.add_argument("--free-blocks", action="store_true",
                        help="Targets are ext2/3/4 filesystems; scan their unused blocks")
    parser.add_argument("--summary", action="store_true",
                        help="Print a banner and a summary table on stderr")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Print debug diagnostics on stderr")
    return parser


# ── Filtering and output ──────────────────────────────────────────────────────

def passes_filters(request: BatchRequest, min_entropy: Optional[float], max_chisq: Optional[float]) -> bool:
    """True if the unit meets every configured threshold."""
    if min_entropy is not None:
        entropy = request.result_for(Algorithm.SHANNON)
        if entropy is None or entropy.value < min_entropy:
            return False
    if max_chisq is not None:
        chisq = request.result_for(Algorithm.CHISQ)
        if chisq is None or chisq.value > max_chisq:
            return False
    return True


def requested_algorithms(metrics: Sequence[Algorithm], args) -> List[Algorithm]:
    """Displayed metrics plus whatever the filters need, each computed once."""
    algorithms = list(metrics)
    if args.min_entropy is not None:
        algorithms.append(Algorithm.SHANNON)
    if args.max_chisq is not None:
        algorithms.append(Algorithm.CHISQ)
    return list(dict.fromkeys(algorithms))


def report(source: str, unit: Optional[int], size: int, request: BatchRequest,
           metrics: Sequence[Algorithm], args, rows: List[Dict]) -> None:
    err = request.first_error()
    if err is not None:
        where = source if unit is None else f"{source} at {unit}"
        raise type(err)(f"{where}: {err}") from err
    if not passes_filters(request, args.min_entropy, args.max_chisq):
        return
    print(format_line(unit, format_values(request, metrics, args.bin_size)))
    rows.append(summary_row(source, unit, size, request))


# ── Scan modes ────────────────────────────────────────────────────────────────

def scan_plain(target: str, metrics: Sequence[Algorithm], args, rows: List[Dict]) -> None:
    """Scan a file, device or stdin page by page."""
    if target == STDIN:
        source, opener = "<stdin>", contextlib.nullcontext(sys.stdin.buffer)
    else:
        source = target
        try:
            opener = open(target, "rb")
        except OSError as e:
            raise IOFailure(f"cannot open {target}: {e}") from e

    algorithms = requested_algorithms(metrics, args)
    with opener as fh:
        for unit, ctx, request in measure_stream(fh, algorithms, args.block_size, args.limit, args.skip):
            report(source, unit, ctx.symbol_count, request, metrics, args, rows)


def scan_free_blocks(target: str, metrics: Sequence[Algorithm], args, rows: List[Dict]) -> None:
    """Scan every unused block of an ext2/3/4 filesystem."""
    algorithms = requested_algorithms(metrics, args)
    with ExtFilesystem.open(target) as fs:
        logging.getLogger(__name__).debug("%s: %d groups, block size %d",
                                          target, fs.group_count, fs.block_size)
        for block, request in measure_free_blocks(fs, algorithms):
            report(target, block, fs.block_size, request, metrics, args, rows)


# ── Entry point ───────────────────────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    metrics = list(dict.fromkeys(args.metric or [parse_metric(DEFAULT_METRIC)]))
    targets = args.targets or [STDIN]

    if args.free_blocks:
        if args.block_size or args.limit or args.skip:
            parser.error("--block-size, --limit and --skip only apply to plain files")
        if STDIN in targets:
            parser.error("--free-blocks needs a device or image path, not stdin")
    if args.bin_size != 1 and Algorithm.BFD not in metrics:
        warn("--bin-size only affects the bfd metric")

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr,
                            format="%(name)s: %(message)s")

    if args.summary:
        print_banner()

    start = time.time()
    rows: List[Dict] = []
    scan = scan_free_blocks if args.free_blocks else scan_plain
    try:
        for target in targets:
            scan(target, metrics, args, rows)
            sys.stdout.flush()
    except EntropyError as e:
        error(str(e))
        return 1
    except KeyboardInterrupt:
        return 130

    if args.summary:
        print_summary(rows, targets, elapsed(start),
                      unit_label="Block" if args.free_blocks else "Offset")
    return 0


if __name__ == "__main__":
    sys.exit(main())
