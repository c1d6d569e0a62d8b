# src/mgp/config/schema.py
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _cpus() -> int:
    return os.cpu_count() or 1


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class GeneralSettings(_Section):
    log_dir: Path = Path("pipeline_logs")
    temp_root: Optional[Path] = None          # default: <system tmp>/mgp_<pid>
    cleanup_temp: bool = True
    job_timeout: Optional[float] = Field(default=None, gt=0)
    resume: bool = False
    abort_on_partial: bool = False
    classifier: Literal["keyword", "exit_code"] = "keyword"
    error_keywords: List[str] = Field(default_factory=lambda: ["error", "failed", "exception"])
    isolate_stages: bool = False

    @field_validator("error_keywords")
    @classmethod
    def _non_empty_keywords(cls, v: List[str]) -> List[str]:
        v = [k.strip() for k in v if k and k.strip()]
        if not v:
            raise ValueError("error_keywords must contain at least one keyword")
        return v


class StageSettings(_Section):
    input_dir: Optional[Path] = None           # default: the upstream stage output dir
    output_dir: Path = Path(".")
    max_parallel: int = Field(default=2, ge=1)
    threads: int = Field(default=1, ge=1)


class TrimmomaticParams(_Section):
    adapter_file: Path = Path("TruSeq3-PE.fa")
    leading: int = 3
    trailing: int = 3
    sliding_window: str = "4:20"
    min_length: int = 50

    @field_validator("sliding_window")
    @classmethod
    def _window(cls, v: str) -> str:
        size, sep, qual = v.partition(":")
        if not (sep and size.isdigit() and qual.isdigit()):
            raise ValueError("sliding_window must look like '<size>:<quality>', e.g. 4:20")
        return v


class _HeadStage(StageSettings):
    input_dir: Optional[Path] = Path(".")
    threads: int = Field(default=10, ge=1)
    run_fastqc: bool = False
    run_multiqc: bool = True
    min_disk_space_gb: float = Field(default=50, ge=0)
    trimmomatic: TrimmomaticParams = Field(default_factory=TrimmomaticParams)


class SeqPrepSettings(_HeadStage):
    output_dir: Path = Path("seqprep_results")
    min_overlap: int = 10
    quality_threshold: int = 0
    mismatch_fraction: float = 1.0
    min_overlap_fraction: int = 100
    error_rate: float = 0.9


class TrimMergeSettings(_HeadStage):
    output_dir: Path = Path("results_trim_merge_qc")
    run_fastqc: bool = True
    min_overlap: int = 10
    max_overlap: int = 300
    mismatch_ratio: float = Field(default=0.20, ge=0, le=1)
    allow_outies: bool = True


class Fq2FaSettings(StageSettings):
    output_dir: Path = Path("fasta_converted")
    input_pattern: str = "*merged.fq.gz"
    max_parallel: int = Field(default=4, ge=1)
    threads: int = Field(default=4, ge=1)
    validate_conversion: bool = True


class CmsearchSettings(StageSettings):
    output_dir: Path = Path("cmsearch_results")
    cm_dir: Path = Path("ribosome")
    threads: int = Field(default=8, ge=1)
    max_parallel: int = Field(default=2, ge=1)
    models_parallel: int = Field(default=1, ge=1)
    threshold_method: Literal["EVALUE", "SCORE"] = "EVALUE"
    evalue: float = 10
    min_score: float = 15
    create_backup: bool = False

    @field_validator("threshold_method", mode="before")
    @classmethod
    def _upper(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v


class Tbl2BedSettings(StageSettings):
    output_dir: Optional[Path] = None         # writes into the cmsearch <sample>_primary dirs
    max_parallel: int = Field(default=4, ge=1)


class MaskSettings(StageSettings):
    fasta_dir: Optional[Path] = None
    output_dir: Path = Path("masked_results")
    max_parallel: int = Field(default=8, ge=1)
    mask_char: str = Field(default="X", min_length=1, max_length=1)


class NoncodingSettings(StageSettings):
    fasta_dir: Optional[Path] = None
    output_dir: Path = Path("noncoding_sequences/samples")
    max_parallel: int = Field(default=8, ge=1)


class MapseqSettings(StageSettings):
    output_dir: Path = Path("mapseq_results")
    ref_dir: Path = Path("ref-dbs")
    ssu_db: Path = Path("silva_ssu-20200130/SSU.fasta")
    ssu_tax: Path = Path("silva_ssu-20200130/slv_ssu_filtered2.txt")
    lsu_db: Path = Path("silva_lsu-20200130/LSU.fasta")
    lsu_tax: Path = Path("silva_lsu-20200130/slv_lsu_filtered2.txt")
    threads: int = Field(default=8, ge=1)
    max_parallel: int = Field(default=2, ge=1)
    db_parallel: int = Field(default=2, ge=1)


class KrakenSettings(StageSettings):
    output_dir: Path = Path("kraken_reports")
    max_parallel: int = Field(default_factory=_cpus, ge=1)


class KronaSettings(StageSettings):
    output_dir: Path = Path("krona_results")
    max_parallel: int = Field(default_factory=_cpus, ge=1)


class FragGeneScanSettings(StageSettings):
    output_dir: Path = Path("fraggenescan_results")
    fgs_dir: Path = Path("FragGeneScan-master")
    train_set: str = "illumina_10"
    fallback_train_set: str = "complete"
    complete: bool = True
    max_parallel: int = Field(default=4, ge=1)

    @property
    def threads_per_sample(self) -> int:
        return max(1, _cpus() // self.max_parallel)


class PipelineConfig(_Section):
    general: GeneralSettings = Field(default_factory=GeneralSettings)
    seqprep: SeqPrepSettings = Field(default_factory=SeqPrepSettings)
    trim_merge: TrimMergeSettings = Field(default_factory=TrimMergeSettings)
    fq2fa: Fq2FaSettings = Field(default_factory=Fq2FaSettings)
    cmsearch: CmsearchSettings = Field(default_factory=CmsearchSettings)
    tbl2bed: Tbl2BedSettings = Field(default_factory=Tbl2BedSettings)
    mask: MaskSettings = Field(default_factory=MaskSettings)
    noncoding: NoncodingSettings = Field(default_factory=NoncodingSettings)
    mapseq: MapseqSettings = Field(default_factory=MapseqSettings)
    kraken: KrakenSettings = Field(default_factory=KrakenSettings)
    krona: KronaSettings = Field(default_factory=KronaSettings)
    fraggenescan: FragGeneScanSettings = Field(default_factory=FragGeneScanSettings)

    def stage_settings(self, name: str) -> StageSettings:
        section = getattr(self, name, None)
        if not isinstance(section, StageSettings):
            raise KeyError(name)
        return section
