# src/mgp/commands/convert.py
from __future__ import annotations

import sys
from pathlib import Path

from mgp.formats.bed import tbl_to_bed
from mgp.formats.krona import otu_to_krona
from mgp.utils.logger import get_logger, log_success

LOG = get_logger("convert")


def setup_parser(subparsers, parent) -> None:
    p = subparsers.add_parser(
        "convert", parents=[parent],
        help="Text conversions used as pipeline jobs (tbl2bed, otu2krona).",
    )
    sub = p.add_subparsers(dest="conversion", required=True)

    b = sub.add_parser("tbl2bed", help="Combine cmsearch --tblout tables of one sample into BED6.")
    b.add_argument("--sample", type=str, required=True)
    b.add_argument("--out", type=Path, required=True)
    b.add_argument("tables", type=Path, nargs="+")
    b.set_defaults(func=run_tbl2bed)

    k = sub.add_parser("otu2krona", help="MAPseq -otucounts table -> Krona text report.")
    k.add_argument("otu", type=Path)
    k.add_argument("out", type=Path)
    k.set_defaults(func=run_otu2krona)


def run_tbl2bed(args) -> None:
    LOG.info("Sample: %s", args.sample)
    LOG.info("Output: %s", args.out)
    report = tbl_to_bed(args.tables, args.out, args.sample)
    for err in report.errors:
        print(f"ERROR: {err}", file=sys.stderr)
    LOG.info("Files processed: %d", report.files)
    LOG.info("Successful conversions: %d", report.converted)
    if not report.ok:
        print(f"ERROR: No valid conversions for {args.sample}", file=sys.stderr)
        sys.exit(1)
    log_success(LOG, "Output created: %s (%d entries)", args.out, report.entries)


def run_otu2krona(args) -> None:
    if not args.otu.is_file() or args.otu.stat().st_size == 0:
        print(f"ERROR: {args.otu} is missing or empty.", file=sys.stderr)
        sys.exit(1)
    try:
        n = otu_to_krona(args.otu, args.out)
    except ValueError as e:
        print(f"ERROR: {args.otu.name}: {e}", file=sys.stderr)
        sys.exit(1)
    log_success(LOG, "Processed: %s (%d taxa)", args.otu.stem, n)
