"""
reporter.py - Output formatting for the entropy detector.

Outputs:
  - Result lines on stdout: "<offset_or_block>, <metric values...>"
  - Colorized diagnostics on stderr (via colorama)
  - Optional summary table on stderr (via tabulate)
"""

import sys
from typing import Dict, Iterable, List, Optional, Sequence

from colorama import Fore, Style, just_fix_windows_console
from tabulate import tabulate

from analyzer import Algorithm, BatchRequest, DistributionResult, bin_frequencies, metric_name
from utils import format_size

just_fix_windows_console()


# ── Color helpers ────────────────────────────────────────────────────────────

HIGH_ENTROPY = 7.5   # bits/byte; encrypted, compressed or random data
LOW_ENTROPY = 1.0    # bits/byte; zeroed or sparse data


def _entropy_color(entropy: Optional[float]) -> str:
    if entropy is None:
        return Fore.WHITE
    if entropy >= HIGH_ENTROPY:
        return Fore.RED
    if entropy <= LOW_ENTROPY:
        return Fore.CYAN
    return Fore.WHITE


def warn(message: str) -> None:
    print(f"{Fore.YELLOW}[!] {message}{Style.RESET_ALL}", file=sys.stderr)


def error(message: str) -> None:
    print(f"{Fore.RED}[!] {message}{Style.RESET_ALL}", file=sys.stderr)


# ── Result lines ─────────────────────────────────────────────────────────────

def format_values(request: BatchRequest, metrics: Sequence[Algorithm], bin_size: int = 1) -> List[str]:
    """
    Render the results of the displayed metrics, in order.
    Scalars use six decimals; a distribution expands to its (binned) counts.
    The caller must have checked that every displayed entry succeeded.
    """
    values = []
    for algorithm in metrics:
        result = request.result_for(algorithm)
        if isinstance(result, DistributionResult):
            values.extend(str(count) for count in bin_frequencies(result.table, bin_size))
        else:
            values.append(f"{result.value:f}")
    return values


def format_line(unit: Optional[int], values: Iterable[str]) -> str:
    """Comma-separated result line; unit is omitted for whole-stream results."""
    fields = list(values)
    if unit is not None:
        fields.insert(0, str(unit))
    return ", ".join(fields)


# ── Console summary ──────────────────────────────────────────────────────────

BANNER = r"""
  _____       _                           ____       _            _
 | ____|_ __ | |_ _ __ ___  _ __  _   _  |  _ \  ___| |_ ___  ___| |_ ___  _ __
 |  _| | '_ \| __| '__/ _ \| '_ \| | | | | | | |/ _ \ __/ _ \/ __| __/ _ \| '__|
 | |___| | | | |_| | | (_) | |_) | |_| | | |_| |  __/ ||  __/ (__| || (_) | |
 |_____|_| |_|\__|_|  \___/| .__/ \__, | |____/ \___|\__\___|\___|\__\___/|_|
                           |_|    |___/
        Byte-stream randomness metrics  |  files and unused filesystem blocks
"""


def print_banner():
    print(Fore.GREEN + Style.BRIGHT + BANNER + Style.RESET_ALL, file=sys.stderr)


def summary_row(source: str, unit: Optional[int], size: int, request: BatchRequest) -> Dict:
    """Collect the scalar metrics of one reported unit for print_summary()."""
    entropy = request.result_for(Algorithm.SHANNON)
    chisq = request.result_for(Algorithm.CHISQ)
    return {
        "source": source,
        "unit": unit,
        "size": size,
        "entropy": entropy.value if entropy is not None else None,
        "chisq": chisq.value if chisq is not None else None,
    }


def print_summary(rows: List[Dict], targets: Sequence[str], elapsed: float, unit_label: str = "Offset"):
    """Print a summary table of the reported units to stderr."""
    high = [r for r in rows if r["entropy"] is not None and r["entropy"] >= HIGH_ENTROPY]
    out = sys.stderr

    print(f"\n{'─'*70}", file=out)
    print(Fore.GREEN + Style.BRIGHT + "  SCAN COMPLETE" + Style.RESET_ALL, file=out)
    print(f"{'─'*70}", file=out)
    print(f"  Targets       : {', '.join(targets)}", file=out)
    print(f"  Units         : {len(rows)}", file=out)
    print(f"  Bytes         : {format_size(sum(r['size'] for r in rows))}", file=out)
    print(f"  High entropy  : {len(high)}  (>= {HIGH_ENTROPY} bits/byte)", file=out)
    print(f"  Elapsed       : {elapsed:.2f}s", file=out)
    print(f"{'─'*70}\n", file=out)

    if not rows:
        print("  No units to display.", file=out)
        return

    table = []
    for r in rows:
        color = _entropy_color(r["entropy"])
        ent = "-" if r["entropy"] is None else f"{color}{r['entropy']:.4f}{Style.RESET_ALL}"
        chi = "-" if r["chisq"] is None else f"{r['chisq']:.2f}"
        unit = "-" if r["unit"] is None else str(r["unit"])
        table.append([r["source"], unit, f"{r['size']:,}", ent, chi])

    headers = ["Source", unit_label, "Bytes", metric_name(Algorithm.SHANNON), metric_name(Algorithm.CHISQ)]
    print(tabulate(table, headers=headers, tablefmt="rounded_outline"), file=out)
    print(file=out)
