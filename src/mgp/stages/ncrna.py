# src/mgp/stages/ncrna.py
from __future__ import annotations

import shutil
from pathlib import Path
from typing import List, Sequence

from mgp.config.schema import CmsearchSettings, MaskSettings, NoncodingSettings, Tbl2BedSettings
from mgp.engine.errors import ConfigError
from mgp.engine.validate import MinRecords
from mgp.plan.types import CommandStep, JobDescriptor, StageContext, StageDef, StageSummary
from mgp.tools import commands as tools
from mgp.utils.logger import get_logger
from mgp.utils.samples import DiscoveryRule, SampleInput

LOG = get_logger("stages.ncrna")

FASTA_RULE = DiscoveryRule(patterns=("*.fa",), strip=r"\.fa$")
PRIMARY_DIR_RULE = DiscoveryRule(patterns=("*_primary",), strip=r"_primary$", kind="dir", dir_member="*.tbl")


def primary_dir(output_dir: Path, sample: str) -> Path:
    return output_dir / f"{sample}_primary"


def combined_bed_rule(fasta_dir: Path) -> DiscoveryRule:
    """``<sample>_primary/<sample>_combined.bed`` plus the sample's FASTA as a companion."""
    return DiscoveryRule(
        patterns=("*_primary/*_combined.bed",),
        strip=r"_combined\.bed$",
        companions=(str(fasta_dir / "{sample}.fa"),),
    )


def covariance_models(cm_dir: Path) -> List[Path]:
    return sorted(cm_dir.glob("*.cm"))


# ---------------------------
# cmsearch (sample x CM model)
# ---------------------------

def _cm_preflight(settings: CmsearchSettings):
    def check(ctx: StageContext) -> None:
        if not settings.cm_dir.is_dir():
            raise ConfigError(f"CM directory not found: {settings.cm_dir}")
        models = covariance_models(settings.cm_dir)
        if not models:
            raise ConfigError(f"no covariance models (*.cm) in {settings.cm_dir}")
        LOG.info("Found %d covariance model(s): %s", len(models), ", ".join(m.stem for m in models))
        if settings.threshold_method == "SCORE":
            LOG.info("Threshold: bit score >= %g", settings.min_score)
        else:
            LOG.info("Threshold: E-value <= %g", settings.evalue)
    return check


def _backup_tables(ctx: StageContext, summary: StageSummary) -> None:
    if ctx.dry_run:
        return
    copied = 0
    for primary in sorted(ctx.output_dir.glob("*_primary")):
        sample = primary.name[: -len("_primary")]
        backup = ctx.output_dir / f"{sample}_backup"
        for tbl in sorted(primary.glob("*.tbl")):
            backup.mkdir(parents=True, exist_ok=True)
            shutil.copy2(tbl, backup / tbl.name)
            copied += 1
    LOG.info("Backup copies: %d table(s) under %s/*_backup/", copied, ctx.output_dir)


def cmsearch_stage(settings: CmsearchSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        jobs = []
        for cm in covariance_models(settings.cm_dir):
            work = ctx.work_dir(sample.key, cm.stem)
            name = f"{sample.key}_{cm.stem}.tbl"
            step = CommandStep(tools.cmsearch(
                cm=cm,
                fasta=sample.primary,
                tblout=work / name,
                cpu=settings.threads,
                threshold_method=settings.threshold_method,
                evalue=settings.evalue,
                min_score=settings.min_score,
            ), discard_stdout=True)
            final = primary_dir(ctx.output_dir, sample.key) / name
            jobs.append(JobDescriptor(
                sample=sample.key,
                task=cm.stem,
                inputs=(sample.primary, cm),
                steps=(step,),
                outputs=(final,),
                log_path=ctx.job_log(f"{sample.key}:{cm.stem}"),
                work_dir=work,
                promote=((work / name, final),),
                rules=(MinRecords("table"),),
            ))
        return jobs

    return StageDef(
        name="cmsearch",
        title="Non-coding RNA search (Infernal cmsearch)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=FASTA_RULE,
        build=build,
        requires=("cmsearch",),
        preflight=_cm_preflight(settings),
        max_parallel=settings.max_parallel,
        task_parallel=settings.models_parallel,
        finalize=_backup_tables if settings.create_backup else None,
    )


# ---------------------------
# cmsearch tables -> BED
# ---------------------------

def combined_bed(primary: Path, sample: str) -> Path:
    return primary / f"{sample}_combined.bed"


def tbl2bed_stage(settings: Tbl2BedSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        primary = sample.primary
        tables = sorted(primary.glob("*.tbl"))
        out = combined_bed(primary, sample.key)
        argv = tools.mgp_convert("tbl2bed", "--sample", sample.key, "--out", str(out),
                                 *[str(t) for t in tables])
        return [JobDescriptor(
            sample=sample.key,
            inputs=tuple(tables),
            steps=(CommandStep(argv, label="tbl2bed"),),
            outputs=(out,),
            log_path=ctx.job_log(sample.key),
        )]

    return StageDef(
        name="tbl2bed",
        title="cmsearch tables to BED",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=PRIMARY_DIR_RULE,
        build=build,
        max_parallel=settings.max_parallel,
        log_dir=output_dir / "logs" / "tbl2bed",
    )


# ---------------------------
# bedtools: mask hits / extract hits
# ---------------------------

def mask_stage(settings: MaskSettings, *, input_dir: Path, output_dir: Path, fasta_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        bed, fasta = sample.inputs[0], sample.inputs[1]
        out = ctx.output_dir / f"{sample.key}_masked.fa"
        step = CommandStep(tools.bedtools_maskfasta(fasta=fasta, bed=bed, out=out, mask_char=settings.mask_char))
        return [JobDescriptor(
            sample=sample.key,
            inputs=sample.inputs,
            steps=(step,),
            outputs=(out,),
            log_path=ctx.job_log(sample.key),
            rules=(MinRecords("fasta"),),
        )]

    return StageDef(
        name="mask",
        title="Mask ncRNA hits (bedtools maskfasta)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=combined_bed_rule(fasta_dir),
        build=build,
        requires=("bedtools",),
        max_parallel=settings.max_parallel,
    )


def noncoding_stage(settings: NoncodingSettings, *, input_dir: Path, output_dir: Path, fasta_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        bed, fasta = sample.inputs[0], sample.inputs[1]
        out = ctx.output_dir / f"{sample.key}_noncoding.fa"
        step = CommandStep(tools.bedtools_getfasta(fasta=fasta, bed=bed, out=out))
        return [JobDescriptor(
            sample=sample.key,
            inputs=sample.inputs,
            steps=(step,),
            outputs=(out,),
            log_path=ctx.job_log(sample.key),
            rules=(MinRecords("fasta"),),
        )]

    return StageDef(
        name="noncoding",
        title="Extract ncRNA sequences (bedtools getfasta)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=combined_bed_rule(fasta_dir),
        build=build,
        requires=("bedtools",),
        max_parallel=settings.max_parallel,
    )
