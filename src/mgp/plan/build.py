# src/mgp/plan/build.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from mgp.config.schema import PipelineConfig
from mgp.engine.errors import ConfigError
from mgp.plan.types import PipelinePlan, StageDef
from mgp.stages.fasta import fq2fa_stage
from mgp.stages.genes import fraggenescan_stage
from mgp.stages.ncrna import cmsearch_stage, mask_stage, noncoding_stage, tbl2bed_stage
from mgp.stages.preprocess import seqprep_stage, trim_merge_stage
from mgp.stages.taxonomy import kraken_stage, krona_stage, mapseq_stage

# variant -> (menu number, title, head stage)
VARIANTS: Dict[str, Tuple[str, str, str]] = {
    "seqprep": ("1", "SeqPrep-first pipeline", "seqprep"),
    "flash": ("2", "Trim-then-FLASH pipeline", "trim_merge"),
}

COMMON_STAGES: Tuple[str, ...] = (
    "fq2fa", "cmsearch", "tbl2bed", "mask", "noncoding",
    "mapseq", "kraken", "krona", "fraggenescan",
)

# stage -> stage whose output directory it reads by default
UPSTREAM: Dict[str, str] = {
    "cmsearch": "fq2fa",
    "tbl2bed": "cmsearch",
    "mask": "tbl2bed",
    "noncoding": "tbl2bed",
    "mapseq": "noncoding",
    "kraken": "mapseq",
    "krona": "kraken",
    "fraggenescan": "mask",
}


def resolve_variant(choice: str) -> str:
    """Accept a menu number or a variant name."""
    choice = (choice or "").strip().lower()
    for name, (number, _title, _head) in VARIANTS.items():
        if choice in (name, number):
            return name
    raise ConfigError(f"invalid pipeline variant: {choice!r} (expected 1, 2, seqprep or flash)")


def stage_names(variant: str) -> List[str]:
    return [VARIANTS[variant][2], *COMMON_STAGES]


def _abs(p: Path) -> Path:
    return p.expanduser().resolve()


def _resolve_settings(config: PipelineConfig) -> PipelineConfig:
    """Every configured path made absolute against the current directory (jobs run in their own cwd)."""
    c = config
    return c.model_copy(update={
        "seqprep": c.seqprep.model_copy(update={
            "trimmomatic": c.seqprep.trimmomatic.model_copy(
                update={"adapter_file": _abs(c.seqprep.trimmomatic.adapter_file)})}),
        "trim_merge": c.trim_merge.model_copy(update={
            "trimmomatic": c.trim_merge.trimmomatic.model_copy(
                update={"adapter_file": _abs(c.trim_merge.trimmomatic.adapter_file)})}),
        "cmsearch": c.cmsearch.model_copy(update={"cm_dir": _abs(c.cmsearch.cm_dir)}),
        "mapseq": c.mapseq.model_copy(update={"ref_dir": _abs(c.mapseq.ref_dir)}),
        "fraggenescan": c.fraggenescan.model_copy(update={"fgs_dir": _abs(c.fraggenescan.fgs_dir)}),
    })


def build_plan(config: PipelineConfig, variant: str) -> PipelinePlan:
    """
    Turn the config into the ordered StageDefs of one variant.

    Unset input dirs are wired to the upstream stage's output dir; an
    explicit input_dir in the config always wins.
    """
    variant = resolve_variant(variant)
    cfg = _resolve_settings(config)
    head = VARIANTS[variant][2]

    outputs: Dict[str, Path] = {}
    stages: List[StageDef] = []

    def dirs(name: str, upstream: Optional[str]) -> Tuple[Path, Path]:
        settings = cfg.stage_settings(name)
        if settings.input_dir is not None:
            input_dir = _abs(settings.input_dir)
        elif upstream is not None:
            input_dir = outputs[upstream]
        else:
            raise ConfigError(f"{name}: input_dir is not set")
        output_dir = _abs(settings.output_dir) if settings.output_dir is not None else input_dir
        outputs[name] = output_dir
        return input_dir, output_dir

    if head == "seqprep":
        i, o = dirs("seqprep", None)
        stages.append(seqprep_stage(cfg.seqprep, input_dir=i, output_dir=o))
    else:
        i, o = dirs("trim_merge", None)
        stages.append(trim_merge_stage(cfg.trim_merge, input_dir=i, output_dir=o))

    i, o = dirs("fq2fa", head)
    stages.append(fq2fa_stage(cfg.fq2fa, input_dir=i, output_dir=o))
    i, o = dirs("cmsearch", UPSTREAM["cmsearch"])
    stages.append(cmsearch_stage(cfg.cmsearch, input_dir=i, output_dir=o))
    i, o = dirs("tbl2bed", UPSTREAM["tbl2bed"])
    stages.append(tbl2bed_stage(cfg.tbl2bed, input_dir=i, output_dir=o))

    fasta_dir = outputs["fq2fa"]
    i, o = dirs("mask", UPSTREAM["mask"])
    mask_fasta = _abs(cfg.mask.fasta_dir) if cfg.mask.fasta_dir else fasta_dir
    stages.append(mask_stage(cfg.mask, input_dir=i, output_dir=o, fasta_dir=mask_fasta))
    i, o = dirs("noncoding", UPSTREAM["noncoding"])
    nc_fasta = _abs(cfg.noncoding.fasta_dir) if cfg.noncoding.fasta_dir else fasta_dir
    stages.append(noncoding_stage(cfg.noncoding, input_dir=i, output_dir=o, fasta_dir=nc_fasta))

    i, o = dirs("mapseq", UPSTREAM["mapseq"])
    stages.append(mapseq_stage(cfg.mapseq, input_dir=i, output_dir=o))
    i, o = dirs("kraken", UPSTREAM["kraken"])
    stages.append(kraken_stage(cfg.kraken, input_dir=i, output_dir=o))
    i, o = dirs("krona", UPSTREAM["krona"])
    stages.append(krona_stage(cfg.krona, input_dir=i, output_dir=o))
    i, o = dirs("fraggenescan", UPSTREAM["fraggenescan"])
    stages.append(fraggenescan_stage(cfg.fraggenescan, input_dir=i, output_dir=o))

    _number, title, _head = VARIANTS[variant]
    return PipelinePlan(variant=variant, title=title, stages=tuple(stages))


def select_stages(
    plan: PipelinePlan,
    *,
    from_stage: Optional[str] = None,
    stop_after: Optional[str] = None,
) -> PipelinePlan:
    """Slice a plan to ``from_stage .. stop_after`` (inclusive)."""
    names = plan.names()
    for flag, value in (("--from-stage", from_stage), ("--stop-after", stop_after)):
        if value is not None and value not in names:
            raise ConfigError(f"{flag}: unknown stage {value!r} for {plan.variant} (stages: {', '.join(names)})")
    start = names.index(from_stage) if from_stage else 0
    end = names.index(stop_after) + 1 if stop_after else len(names)
    if start >= end:
        raise ConfigError(f"--from-stage {from_stage} comes after --stop-after {stop_after}")
    return PipelinePlan(variant=plan.variant, title=plan.title, stages=plan.stages[start:end])


def plan_for_stage(config: PipelineConfig, name: str, variant: Optional[str] = None) -> Tuple[PipelinePlan, StageDef]:
    """The plan a single stage belongs to; without a variant, the first variant that has it."""
    candidates = [resolve_variant(variant)] if variant else list(VARIANTS)
    for v in candidates:
        if name in stage_names(v):
            plan = build_plan(config, v)
            return plan, plan.get(name)
    raise ConfigError(f"unknown stage {name!r}" + (f" for variant {variant}" if variant else ""))
