# src/mgp/stages/taxonomy.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, Sequence, Tuple

from mgp.config.schema import KrakenSettings, KronaSettings, MapseqSettings
from mgp.engine.errors import ConfigError
from mgp.engine.validate import HeaderSniff, MinRecords
from mgp.plan.types import CommandStep, JobDescriptor, StageContext, StageDef
from mgp.tools import commands as tools
from mgp.utils.logger import get_logger
from mgp.utils.samples import DiscoveryRule, SampleInput

LOG = get_logger("stages.taxonomy")


def reference_sets(settings: MapseqSettings) -> Dict[str, Tuple[Path, Path]]:
    """db label -> (database FASTA, taxonomy file), ordered SSU then LSU."""
    return {
        "ssu": (settings.ref_dir / settings.ssu_db, settings.ref_dir / settings.ssu_tax),
        "lsu": (settings.ref_dir / settings.lsu_db, settings.ref_dir / settings.lsu_tax),
    }


# ---------------------------
# MAPseq (sample x SSU/LSU)
# ---------------------------

def _mapseq_preflight(settings: MapseqSettings):
    def check(ctx: StageContext) -> None:
        missing = [
            str(p)
            for db, tax in reference_sets(settings).values()
            for p in (db, tax)
            if not p.is_file()
        ]
        if missing:
            raise ConfigError("MAPseq reference file(s) not found: " + ", ".join(missing))
    return check


def mapseq_stage(settings: MapseqSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        jobs = []
        for label, (db, tax) in reference_sets(settings).items():
            hits = ctx.output_dir / f"{sample.key}_{label}.mapseq"
            otu = ctx.output_dir / f"{sample.key}_{label}.otu"
            steps = (
                CommandStep(tools.mapseq(fasta=sample.primary, db=db, taxonomy=tax,
                                         threads=settings.threads), stdout=hits),
                CommandStep(tools.mapseq_otucounts(hits), stdout=otu, label="mapseq -otucounts"),
            )
            jobs.append(JobDescriptor(
                sample=sample.key,
                task=label,
                inputs=(sample.primary, db, tax),
                steps=steps,
                outputs=(hits, otu),
                log_path=ctx.job_log(f"{sample.key}:{label}"),
                rules=(MinRecords("table", output_index=1),),
            ))
        return jobs

    return StageDef(
        name="mapseq",
        title="Taxonomic classification (MAPseq SSU/LSU)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=DiscoveryRule(patterns=("*_noncoding.fa",), strip=r"_noncoding\.fa$"),
        build=build,
        requires=("mapseq",),
        preflight=_mapseq_preflight(settings),
        max_parallel=settings.max_parallel,
        task_parallel=settings.db_parallel,
    )


# ---------------------------
# OTU counts -> Krona text
# ---------------------------

def kraken_stage(settings: KrakenSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        out = ctx.output_dir / f"{sample.key}_kraken.txt"
        argv = tools.mgp_convert("otu2krona", str(sample.primary), str(out))
        return [JobDescriptor(
            sample=sample.key,
            inputs=sample.inputs,
            steps=(CommandStep(argv, label="otu2krona"),),
            outputs=(out,),
            log_path=ctx.job_log(sample.key),
            rules=(MinRecords("table", minimum=2),),   # header + at least one taxon
        )]

    return StageDef(
        name="kraken",
        title="OTU tables to Krona text reports",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=DiscoveryRule(patterns=("*.otu",), strip=r"\.otu$"),
        build=build,
        max_parallel=settings.max_parallel,
    )


def krona_stage(settings: KronaSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        html = ctx.output_dir / f"{sample.key}_krona.html"
        return [JobDescriptor(
            sample=sample.key,
            inputs=sample.inputs,
            steps=(CommandStep(tools.kt_import_text(sample.primary, html)),),
            outputs=(html,),
            log_path=ctx.job_log(sample.key),
            rules=(HeaderSniff("<"),),
        )]

    return StageDef(
        name="krona",
        title="Krona charts (ktImportText)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=DiscoveryRule(patterns=("*_kraken.txt",), strip=r"_kraken\.txt$"),
        build=build,
        requires=("ktImportText",),
        max_parallel=settings.max_parallel,
    )
