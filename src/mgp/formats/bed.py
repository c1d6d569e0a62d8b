# src/mgp/formats/bed.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Tuple

from mgp.utils.logger import get_logger

LOG = get_logger("formats.bed")

# Infernal --tblout columns (1-based): 1 target, 3 query (model), 8 seq from, 9 seq to
_MIN_COLUMNS = 9


@dataclass(frozen=True)
class BedRecord:
    chrom: str
    start: int
    end: int
    name: str
    score: str = "0"
    strand: str = "+"

    def line(self) -> str:
        return f"{self.chrom}\t{self.start}\t{self.end}\t{self.name}\t{self.score}\t{self.strand}"


@dataclass
class ConversionReport:
    files: int = 0
    converted: int = 0
    entries: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.converted > 0


def hit_to_bed(fields: Sequence[str], sample: str, file_num: int) -> BedRecord:
    """
    One cmsearch hit -> BED6.

    Hits on the minus strand have seq_from > seq_to; BED wants start < end
    and a 0-based start either way.
    """
    if len(fields) < _MIN_COLUMNS:
        raise ValueError(f"insufficient columns ({len(fields)} < {_MIN_COLUMNS})")
    seq_from, seq_to = int(fields[7]), int(fields[8])
    name = f"{fields[2]}_{sample}_{file_num}"
    if seq_from > seq_to:
        return BedRecord(fields[0], seq_to - 1, seq_from, name, "0", "-")
    return BedRecord(fields[0], seq_from - 1, seq_to, name, "0", "+")


def read_tblout(path: Path, sample: str, file_num: int) -> Tuple[List[BedRecord], List[str]]:
    """Records and per-line errors for one table; good lines are kept even when others fail."""
    records: List[BedRecord] = []
    errors: List[str] = []
    with path.open("r", encoding="utf-8", errors="replace") as fh:
        for lineno, line in enumerate(fh, 1):
            if not line.strip() or line.startswith("#"):
                continue
            try:
                records.append(hit_to_bed(line.split(), sample, file_num))
            except ValueError as e:
                errors.append(f"{path.name} line {lineno}: {e}")
    return records, errors


def tbl_to_bed(tables: Sequence[Path], out: Path, sample: str) -> ConversionReport:
    """
    Combine a sample's cmsearch tables into one BED file.

    Tables are numbered from 1 in the order given. A table with any bad
    line does not count as converted; when none converts the output is
    removed.
    """
    report = ConversionReport()
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as fh:
        for file_num, table in enumerate(tables, 1):
            report.files += 1
            LOG.info(" - File %d: %s", file_num, table.name)
            try:
                records, errors = read_tblout(table, sample, file_num)
            except OSError as e:
                errors, records = [f"{table.name}: {e}"], []
            for rec in records:
                fh.write(rec.line() + "\n")
            report.entries += len(records)
            if errors:
                report.errors.extend(errors)
                LOG.error("   - FAILED: %d bad line(s) in %s", len(errors), table.name)
            else:
                report.converted += 1
                LOG.info("   - Converted successfully (%d entries)", len(records))

    if not report.ok:
        out.unlink()
    return report
