# src/mgp/stages/preprocess.py
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from mgp.config.schema import SeqPrepSettings, TrimMergeSettings
from mgp.engine.errors import ConfigError
from mgp.engine.validate import MinRecords
from mgp.plan.types import CommandStep, JobDescriptor, StageContext, StageDef, StageSummary
from mgp.tools import commands as tools
from mgp.utils.logger import get_logger, log_success, log_warning
from mgp.utils.runner import run_command
from mgp.utils.samples import PAIRED_FASTQ, SampleInput

LOG = get_logger("stages.preprocess")

HeadSettings = Union[SeqPrepSettings, TrimMergeSettings]

_GB = 1024 ** 3


def merged_name(sample: str) -> str:
    return f"{sample}_merged.fq.gz"


def free_space_gb(path: Path) -> float:
    existing = path
    while not existing.exists() and existing != existing.parent:
        existing = existing.parent
    return shutil.disk_usage(existing).free / _GB


def _preflight(settings: HeadSettings):
    def check(ctx: StageContext) -> None:
        adapter = settings.trimmomatic.adapter_file
        if not adapter.is_file():
            raise ConfigError(f"adapter file not found: {adapter}")
        free = free_space_gb(ctx.output_dir)
        if free < settings.min_disk_space_gb:
            raise ConfigError(
                f"insufficient disk space in {ctx.output_dir}: "
                f"{free:.1f} GB free, {settings.min_disk_space_gb:g} GB required"
            )
        LOG.info("Disk space OK: %.1f GB free", free)
    return check


def _fastqc(files: Sequence[Path], ctx: StageContext, label: str) -> CommandStep:
    return CommandStep(tools.fastqc(files, ctx.output_dir / "fastqc"), optional=True, label=f"fastqc {label}")


def _trim_steps(
    sample: SampleInput, settings: HeadSettings, work: Path, ctx: StageContext
) -> Tuple[List[CommandStep], Path, Path]:
    r1, r2 = sample.inputs[0], sample.inputs[1]
    key = sample.key
    paired_r1, paired_r2 = work / f"{key}_1_trimmed.fq.gz", work / f"{key}_2_trimmed.fq.gz"
    t = settings.trimmomatic
    steps: List[CommandStep] = []
    if settings.run_fastqc:
        (ctx.output_dir / "fastqc").mkdir(parents=True, exist_ok=True)
        steps.append(_fastqc([r1, r2], ctx, "raw"))
    steps.append(CommandStep(tools.trimmomatic_pe(
        r1=r1, r2=r2,
        paired_r1=paired_r1, unpaired_r1=work / f"{key}_1_unpaired.fq.gz",
        paired_r2=paired_r2, unpaired_r2=work / f"{key}_2_unpaired.fq.gz",
        adapter_file=t.adapter_file,
        leading=t.leading,
        trailing=t.trailing,
        sliding_window=t.sliding_window,
        min_length=t.min_length,
        threads=settings.threads,
    )))
    if settings.run_fastqc:
        steps.append(_fastqc([paired_r1, paired_r2], ctx, "trimmed"))
    return steps, paired_r1, paired_r2


def _merged_job(
    sample: SampleInput,
    ctx: StageContext,
    steps: List[CommandStep],
    staged: Tuple[Path, Path, Path],
) -> JobDescriptor:
    key = sample.key
    final = ctx.output_dir / merged_name(key)
    merged, un1, un2 = staged
    return JobDescriptor(
        sample=key,
        inputs=sample.inputs,
        steps=tuple(steps),
        outputs=(final,),
        log_path=ctx.job_log(key),
        work_dir=ctx.work_dir(key),
        promote=(
            (merged, final),
            (un1, ctx.output_dir / f"{key}_unmerged_R1.fq.gz"),
            (un2, ctx.output_dir / f"{key}_unmerged_R2.fq.gz"),
        ),
        rules=(MinRecords("fastq"),),
    )


def multiqc_report(enabled: bool):
    """Finalize hook: one MultiQC report over the stage output; failures only warn."""
    def finalize(ctx: StageContext, summary: StageSummary) -> None:
        if not enabled or ctx.dry_run:
            return
        if shutil.which("multiqc") is None:
            log_warning(LOG, "multiqc not found on PATH; skipping QC report")
            return
        try:
            run_command(tools.multiqc(ctx.output_dir), log_file=ctx.log_dir / "multiqc.log")
        except (subprocess.CalledProcessError, OSError) as e:
            log_warning(LOG, "MultiQC failed (%s); see %s", e, ctx.log_dir / "multiqc.log")
            return
        log_success(LOG, "MultiQC report written to %s", ctx.output_dir)
    return finalize


# ---------------------------
# SeqPrep-first
# ---------------------------

def seqprep_stage(settings: SeqPrepSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        work = ctx.work_dir(sample.key)
        steps, t1, t2 = _trim_steps(sample, settings, work, ctx)
        staged = (
            work / merged_name(sample.key),
            work / f"{sample.key}_unmerged_R1.fq.gz",
            work / f"{sample.key}_unmerged_R2.fq.gz",
        )
        steps.append(CommandStep(tools.seqprep(
            r1=t1, r2=t2,
            merged=staged[0], unmerged_r1=staged[1], unmerged_r2=staged[2],
            threads=settings.threads,
            min_overlap=settings.min_overlap,
            quality_threshold=settings.quality_threshold,
            mismatch_fraction=settings.mismatch_fraction,
            min_overlap_fraction=settings.min_overlap_fraction,
            error_rate=settings.error_rate,
        )))
        if settings.run_fastqc:
            steps.append(_fastqc([staged[0]], ctx, "merged"))
        return [_merged_job(sample, ctx, steps, staged)]

    requires = ["trimmomatic", "SeqPrep"] + (["fastqc"] if settings.run_fastqc else [])
    return StageDef(
        name="seqprep",
        title="Read trimming and merging (Trimmomatic + SeqPrep)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=PAIRED_FASTQ,
        build=build,
        requires=tuple(requires),
        preflight=_preflight(settings),
        max_parallel=settings.max_parallel,
        finalize=multiqc_report(settings.run_multiqc),
    )


# ---------------------------
# Trim-then-FLASH
# ---------------------------

def trim_merge_stage(settings: TrimMergeSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        work = ctx.work_dir(sample.key)
        steps, t1, t2 = _trim_steps(sample, settings, work, ctx)
        steps.append(CommandStep(tools.flash(
            r1=t1, r2=t2,
            sample=sample.key,
            out_dir=work,
            min_overlap=settings.min_overlap,
            max_overlap=settings.max_overlap,
            mismatch_ratio=settings.mismatch_ratio,
            threads=settings.threads,
            allow_outies=settings.allow_outies,
        )))
        staged = tools.flash_outputs(work, sample.key)
        if settings.run_fastqc:
            steps.append(_fastqc([staged[0]], ctx, "merged"))
        return [_merged_job(sample, ctx, steps, staged)]

    requires = ["trimmomatic", "flash"] + (["fastqc"] if settings.run_fastqc else [])
    return StageDef(
        name="trim_merge",
        title="Read trimming, QC and merging (Trimmomatic + FLASH)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=PAIRED_FASTQ,
        build=build,
        requires=tuple(requires),
        preflight=_preflight(settings),
        max_parallel=settings.max_parallel,
        finalize=multiqc_report(settings.run_multiqc),
    )
