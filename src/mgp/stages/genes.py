# src/mgp/stages/genes.py
from __future__ import annotations

from pathlib import Path
from typing import Sequence

from mgp.config.schema import FragGeneScanSettings
from mgp.engine.errors import ConfigError
from mgp.engine.validate import MinRecords, count_records
from mgp.plan.types import CommandStep, JobDescriptor, StageContext, StageDef, StageSummary
from mgp.tools import commands as tools
from mgp.utils.logger import get_logger, log_warning
from mgp.utils.samples import DiscoveryRule, SampleInput

LOG = get_logger("stages.genes")

COMBINED_PROTEINS = "combined_predictions.faa"
COMBINED_GENES = "combined_genes.ffn"


def train_set(settings: FragGeneScanSettings) -> str:
    """Configured training set, or the fallback when it is not installed."""
    if (settings.fgs_dir / "train" / settings.train_set).is_file():
        return settings.train_set
    return settings.fallback_train_set


def _preflight(settings: FragGeneScanSettings):
    def check(ctx: StageContext) -> None:
        script = settings.fgs_dir / "run_FragGeneScan.pl"
        if not script.is_file():
            raise ConfigError(f"run_FragGeneScan.pl not found in {settings.fgs_dir}")
        chosen = train_set(settings)
        if not (settings.fgs_dir / "train" / chosen).is_file():
            raise ConfigError(
                f"training set {settings.train_set!r} (fallback {settings.fallback_train_set!r}) "
                f"not found in {settings.fgs_dir / 'train'}"
            )
        if chosen != settings.train_set:
            log_warning(LOG, "Training set %r not found; falling back to %r", settings.train_set, chosen)
        LOG.info("Training set: %s, %d thread(s) per sample", chosen, settings.threads_per_sample)
    return check


def combine_predictions(ctx: StageContext, summary: StageSummary) -> None:
    """Concatenate per-sample .faa/.ffn into combined files and log the totals."""
    if ctx.dry_run:
        return
    for suffix, combined_name, what in ((".faa", COMBINED_PROTEINS, "proteins"),
                                        (".ffn", COMBINED_GENES, "genes")):
        combined = ctx.output_dir / combined_name
        parts = sorted(p for p in ctx.output_dir.glob(f"*{suffix}") if p.name != combined_name)
        with combined.open("w", encoding="utf-8") as out:
            for part in parts:
                with part.open("r", encoding="utf-8", errors="replace") as fh:
                    for line in fh:
                        out.write(line)
        LOG.info("Total %s: %d (%s)", what, count_records(combined, "fasta"), combined)


def fraggenescan_stage(settings: FragGeneScanSettings, *, input_dir: Path, output_dir: Path) -> StageDef:
    def build(sample: SampleInput, ctx: StageContext) -> Sequence[JobDescriptor]:
        prefix = ctx.output_dir / sample.key
        step = CommandStep(tools.fraggenescan(
            fgs_dir=settings.fgs_dir,
            genome=sample.primary,
            out_prefix=prefix,
            train_set=train_set(settings),
            threads=settings.threads_per_sample,
            complete=settings.complete,
        ))
        return [JobDescriptor(
            sample=sample.key,
            inputs=sample.inputs,
            steps=(step,),
            outputs=(prefix.with_name(f"{sample.key}.faa"), prefix.with_name(f"{sample.key}.ffn")),
            log_path=ctx.job_log(sample.key),
            rules=(MinRecords("fasta"),),
        )]

    return StageDef(
        name="fraggenescan",
        title="Gene prediction (FragGeneScan)",
        input_dir=input_dir,
        output_dir=output_dir,
        discovery=DiscoveryRule(patterns=("*_masked.fa",), strip=r"_masked\.fa$"),
        build=build,
        requires=("perl",),
        preflight=_preflight(settings),
        max_parallel=settings.max_parallel,
        finalize=combine_predictions,
    )
