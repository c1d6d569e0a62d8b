# src/mgp/tools/commands.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Sequence, Tuple

Argv = Tuple[str, ...]


# ---------------------------
# Read QC, trimming & merging
# ---------------------------

def fastqc(inputs: Sequence[Path], out_dir: Path, *, threads: int = 2) -> Argv:
    return (
        "fastqc", *[str(p) for p in inputs],
        "-o", str(out_dir),
        "-t", str(threads),
        "--noextract",
        "--quiet",
    )


def multiqc(report_dir: Path) -> Argv:
    return ("multiqc", str(report_dir), "-o", str(report_dir), "--quiet")


def trimmomatic_pe(
    *,
    r1: Path,
    r2: Path,
    paired_r1: Path,
    unpaired_r1: Path,
    paired_r2: Path,
    unpaired_r2: Path,
    adapter_file: Path,
    leading: int,
    trailing: int,
    sliding_window: str,
    min_length: int,
    threads: int,
) -> Argv:
    return (
        "trimmomatic", "PE",
        "-threads", str(threads),
        "-phred33",
        str(r1), str(r2),
        str(paired_r1), str(unpaired_r1),
        str(paired_r2), str(unpaired_r2),
        f"ILLUMINACLIP:{adapter_file}:2:30:10:2:keepBothReads",
        f"LEADING:{leading}",
        f"TRAILING:{trailing}",
        f"SLIDINGWINDOW:{sliding_window}",
        f"MINLEN:{min_length}",
    )


def seqprep(
    *,
    r1: Path,
    r2: Path,
    merged: Path,
    unmerged_r1: Path,
    unmerged_r2: Path,
    threads: int,
    min_overlap: int,
    quality_threshold: int,
    mismatch_fraction: float,
    min_overlap_fraction: int,
    error_rate: float,
) -> Argv:
    # SeqPrep gzips its outputs itself
    return (
        "SeqPrep",
        "-f", str(r1),
        "-r", str(r2),
        "-1", str(unmerged_r1),
        "-2", str(unmerged_r2),
        "-s", str(merged),
        "-t", str(threads),
        "-m", str(min_overlap),
        "-q", str(quality_threshold),
        "-n", str(mismatch_fraction),
        "-o", str(min_overlap_fraction),
        "-e", str(error_rate),
    )


def flash(
    *,
    r1: Path,
    r2: Path,
    sample: str,
    out_dir: Path,
    min_overlap: int,
    max_overlap: int,
    mismatch_ratio: float,
    threads: int,
    allow_outies: bool = True,
) -> Argv:
    cmd = [
        "flash", str(r1), str(r2),
        "-o", sample,
        "-d", str(out_dir),
        "-m", str(min_overlap),
        "-M", str(max_overlap),
        "-x", str(mismatch_ratio),
        "-t", str(threads),
        "-z",
        "--quiet",
    ]
    if allow_outies:
        cmd.append("-O")
    return tuple(cmd)


def flash_outputs(out_dir: Path, sample: str) -> Tuple[Path, Path, Path]:
    """(merged, not-combined R1, not-combined R2) as written by ``flash -z``."""
    return (
        out_dir / f"{sample}.extendedFrags.fastq.gz",
        out_dir / f"{sample}.notCombined_1.fastq.gz",
        out_dir / f"{sample}.notCombined_2.fastq.gz",
    )


# ---------------------------
# Conversion & ncRNA search
# ---------------------------

def seqkit_fq2fa(fastq: Path, *, threads: int) -> Argv:
    """FASTA goes to stdout; the job step redirects it."""
    return ("seqkit", "fq2fa", "--threads", str(threads), str(fastq))


def cmsearch(
    *,
    cm: Path,
    fasta: Path,
    tblout: Path,
    cpu: int,
    threshold_method: str = "EVALUE",
    evalue: float = 10,
    min_score: float = 15,
) -> Argv:
    cmd = ["cmsearch", "--cpu", str(cpu), "--tblout", str(tblout), "--noali"]
    if threshold_method == "SCORE":
        cmd += ["-T", str(min_score)]
    else:
        cmd += ["-E", str(evalue)]
    cmd += [str(cm), str(fasta)]
    return tuple(cmd)


def bedtools_maskfasta(*, fasta: Path, bed: Path, out: Path, mask_char: str = "X") -> Argv:
    return (
        "bedtools", "maskfasta",
        "-fi", str(fasta),
        "-bed", str(bed),
        "-fo", str(out),
        "-mc", mask_char,
    )


def bedtools_getfasta(*, fasta: Path, bed: Path, out: Path) -> Argv:
    return (
        "bedtools", "getfasta",
        "-fi", str(fasta),
        "-bed", str(bed),
        "-fo", str(out),
        "-name",
    )


# ---------------------------
# Taxonomy & visualisation
# ---------------------------

def mapseq(*, fasta: Path, db: Path, taxonomy: Path, threads: Optional[int] = None) -> Argv:
    cmd = ["mapseq"]
    if threads:
        cmd += ["-nthreads", str(threads)]
    cmd += [str(fasta), str(db), str(taxonomy)]
    return tuple(cmd)


def mapseq_otucounts(mapseq_file: Path) -> Argv:
    return ("mapseq", "-otucounts", str(mapseq_file))


def kt_import_text(report: Path, html: Path) -> Argv:
    return ("ktImportText", str(report), "-o", str(html))


# ---------------------------
# Gene prediction
# ---------------------------

def fraggenescan(
    *,
    fgs_dir: Path,
    genome: Path,
    out_prefix: Path,
    train_set: str,
    threads: int,
    complete: bool = True,
) -> Argv:
    return (
        "perl", str(fgs_dir / "run_FragGeneScan.pl"),
        f"-genome={genome}",
        f"-out={out_prefix}",
        f"-complete={1 if complete else 0}",
        f"-train={train_set}",
        f"-thread={threads}",
    )


# ---------------------------
# In-package conversions
# ---------------------------

def mgp_convert(kind: str, *args: str) -> Argv:
    """Run one of ``mgp convert``'s subcommands with the current interpreter."""
    return (sys.executable, "-m", "mgp", "convert", kind, *args)
