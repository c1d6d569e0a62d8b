# src/mgp/stages/fasta.py
from __future__ import annotations

from pathlib import Path
from typing import Sequence

from mgp.config.schema import Fq2FaSettings
from mgp.engine.validate import MinRecords, RecordCountMatch
from mgp.plan.types import CommandStep, JobDescriptor, StageContext, StageDef
from mgp.tools import commands as tools
from mgp.utils.samples import DiscoveryRule, SampleInput

# <sample>_merged.fq.gz / <sample>_trimmed_merged.fastq -> <sample>
MERGED_FASTQ_SUFFIX = r"(_(merged|trimmed))*\.(fastq|fq)(\.gz)?$"


def fasta_name(sample: str) -> str:
    return f"{sample}.fa"


def fq2fa_stage(settings: Fq2FaSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    rules = (RecordCountMatch("fastq", "fasta"),) if settings.validate_conversion else (MinRecords("fasta"),)

    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        staged = ctx.work_dir(sample.key) / fasta_name(sample.key)
        final = ctx.output_dir / fasta_name(sample.key)
        step = CommandStep(tools.seqkit_fq2fa(sample.primary, threads=settings.threads), stdout=staged)
        return [JobDescriptor(
            sample=sample.key,
            inputs=sample.inputs,
            steps=(step,),
            outputs=(final,),
            log_path=ctx.job_log(sample.key),
            work_dir=ctx.work_dir(sample.key),
            promote=((staged, final),),
            rules=rules,
        )]

    return StageDef(
        name="fq2fa",
        title="FASTQ to FASTA conversion (seqkit)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=DiscoveryRule(patterns=(settings.input_pattern,), strip=MERGED_FASTQ_SUFFIX),
        build=build,
        requires=("seqkit",),
        max_parallel=settings.max_parallel,
    )
