# src/mgp/formats/krona.py
from __future__ import annotations

import re
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from mgp.utils.logger import get_logger

LOG = get_logger("formats.krona")

HEADER = "percentage\tclade_reads\ttaxon_reads\trank\ttaxon"

_RANK_PREFIX = re.compile(r"([a-z]__|_)")


def clean_taxon(raw: str) -> str:
    """``sk__Bacteria;p__Firmicutes;`` -> ``Bacteria; Firmicutes``."""
    taxon = _RANK_PREFIX.sub(" ", raw)
    taxon = taxon.replace(";", "; ")
    if taxon.endswith("; "):
        taxon = taxon[:-2]
    return taxon


def read_otu_counts(lines: Iterable[str]) -> Tuple[Dict[str, float], int]:
    """Sum counts per cleaned taxon (column 3 = taxon, column 4 = count). Returns (counts, skipped rows)."""
    counts: Dict[str, float] = defaultdict(float)
    skipped = 0
    for line in lines:
        if not line.strip() or line.startswith("#"):
            continue
        fields = line.split()
        if len(fields) < 4:
            skipped += 1
            continue
        try:
            count = float(fields[3])
        except ValueError:
            skipped += 1
            continue
        counts[clean_taxon(fields[2])] += count
    return dict(counts), skipped


def report_rows(counts: Dict[str, float]) -> List[str]:
    total = sum(counts.values())
    if total <= 0:
        raise ValueError("No valid taxa found (total count is 0)")
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [
        f"{n / total * 100:.2f}\t{int(n)}\t{int(n)}\t-\t{taxon}"
        for taxon, n in ordered
    ]


def otu_to_krona(otu: Path, out: Path) -> int:
    """Write a Krona text report for one MAPseq OTU table; returns the number of taxa."""
    with otu.open("r", encoding="utf-8", errors="replace") as fh:
        counts, skipped = read_otu_counts(fh)
    if skipped:
        LOG.warning("%s: skipped %d malformed row(s)", otu.name, skipped)
    rows = report_rows(counts)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text("\n".join([HEADER, *rows]) + "\n", encoding="utf-8")
    return len(rows)
