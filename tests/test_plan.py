"""Tests for plan building, stage selection and tool command lines."""

from pathlib import Path

import pytest

from mgp.config.schema import PipelineConfig
from mgp.engine.errors import ConfigError
from mgp.plan.build import build_plan, plan_for_stage, resolve_variant, select_stages, stage_names
from mgp.tools import commands as tools

COMMON = ["fq2fa", "cmsearch", "tbl2bed", "mask", "noncoding", "mapseq", "kraken", "krona", "fraggenescan"]


@pytest.fixture
def cfg(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return PipelineConfig()


class TestVariants:
    """Test variant names and menu numbers."""

    @pytest.mark.parametrize("choice, name", [("1", "seqprep"), ("2", "flash"), (" FLASH ", "flash")])
    def test_resolve(self, choice, name):
        """Test menu numbers and names resolve."""
        assert resolve_variant(choice) == name

    @pytest.mark.parametrize("choice", ["3", "", "qiime"])
    def test_invalid(self, choice):
        """Test anything else is a config error."""
        with pytest.raises(ConfigError):
            resolve_variant(choice)

    def test_stage_order(self, cfg):
        """Test both variants share every stage after the head."""
        assert build_plan(cfg, "1").names() == ["seqprep", *COMMON]
        assert build_plan(cfg, "flash").names() == ["trim_merge", *COMMON]
        assert stage_names("flash") == ["trim_merge", *COMMON]


class TestWiring:
    """Test directories flow from stage to stage."""

    def test_defaults(self, cfg, tmp_path):
        """Test unset input dirs read the upstream output."""
        plan = build_plan(cfg, "seqprep")
        root = tmp_path.resolve()
        assert plan.get("seqprep").input_dir == root
        assert plan.get("fq2fa").input_dir == root / "seqprep_results"
        assert plan.get("cmsearch").input_dir == root / "fasta_converted"
        assert plan.get("tbl2bed").input_dir == root / "cmsearch_results"
        assert plan.get("tbl2bed").output_dir == root / "cmsearch_results"
        assert plan.get("tbl2bed").logs == root / "cmsearch_results" / "logs" / "tbl2bed"
        assert plan.get("mask").input_dir == root / "cmsearch_results"
        assert plan.get("mapseq").input_dir == root / "noncoding_sequences" / "samples"
        assert plan.get("kraken").input_dir == root / "mapseq_results"
        assert plan.get("krona").input_dir == root / "kraken_reports"
        assert plan.get("fraggenescan").input_dir == root / "masked_results"

    def test_flash_head(self, cfg, tmp_path):
        """Test fq2fa follows the FLASH head stage."""
        plan = build_plan(cfg, "flash")
        assert plan.get("fq2fa").input_dir == tmp_path.resolve() / "results_trim_merge_qc"

    def test_explicit_input_wins(self, tmp_path, monkeypatch):
        """Test a configured input_dir overrides the wiring."""
        monkeypatch.chdir(tmp_path)
        cfg = PipelineConfig.model_validate({"mapseq": {"input_dir": "/data/nc"}})
        assert build_plan(cfg, "1").get("mapseq").input_dir == Path("/data/nc").resolve()

    def test_mask_fasta_companion(self, cfg, tmp_path):
        """Test mask discovery expects the fq2fa FASTA beside each BED."""
        mask = build_plan(cfg, "1").get("mask")
        assert mask.discovery.companions == (str(tmp_path.resolve() / "fasta_converted" / "{sample}.fa"),)

    def test_nested_concurrency(self, cfg):
        """Test cmsearch and mapseq carry their per-sample task limits."""
        plan = build_plan(PipelineConfig.model_validate({"cmsearch": {"models_parallel": 3}}), "1")
        assert plan.get("cmsearch").task_parallel == 3
        assert plan.get("mapseq").task_parallel == cfg.mapseq.db_parallel


class TestSelect:
    """Test --from-stage / --stop-after slicing."""

    def test_slice(self, cfg):
        """Test an inclusive range."""
        plan = select_stages(build_plan(cfg, "1"), from_stage="mask", stop_after="mapseq")
        assert plan.names() == ["mask", "noncoding", "mapseq"]

    def test_unknown(self, cfg):
        """Test an unknown stage name is rejected."""
        with pytest.raises(ConfigError, match="unknown stage"):
            select_stages(build_plan(cfg, "1"), from_stage="trim_merge")

    def test_reversed(self, cfg):
        """Test start after stop is rejected."""
        with pytest.raises(ConfigError):
            select_stages(build_plan(cfg, "1"), from_stage="krona", stop_after="fq2fa")

    def test_plan_for_stage(self, cfg):
        """Test a stage is found in the first variant that has it."""
        plan, stage = plan_for_stage(cfg, "trim_merge")
        assert plan.variant == "flash" and stage.name == "trim_merge"
        _plan, stage = plan_for_stage(cfg, "mapseq", "2")
        assert stage.name == "mapseq"
        with pytest.raises(ConfigError):
            plan_for_stage(cfg, "seqprep", "flash")


class TestCommands:
    """Test argv builders for the external tools."""

    def test_cmsearch_threshold(self):
        """Test E-value vs bit-score cutoffs."""
        kw = dict(cm=Path("m.cm"), fasta=Path("a.fa"), tblout=Path("a.tbl"), cpu=8)
        assert "-E" in tools.cmsearch(**kw)
        argv = tools.cmsearch(**kw, threshold_method="SCORE", min_score=20)
        assert argv[argv.index("-T") + 1] == "20"
        assert argv[-2:] == ("m.cm", "a.fa")

    def test_flash_outies(self):
        """Test -O is only passed when outies are allowed."""
        kw = dict(r1=Path("a_1.fq"), r2=Path("a_2.fq"), sample="a", out_dir=Path("w"),
                  min_overlap=10, max_overlap=300, mismatch_ratio=0.2, threads=4)
        assert tools.flash(**kw)[-1] == "-O"
        assert "-O" not in tools.flash(**kw, allow_outies=False)

    def test_trimmomatic_steps(self):
        """Test the trimming steps carry the configured values."""
        argv = tools.trimmomatic_pe(
            r1=Path("a_R1.fq.gz"), r2=Path("a_R2.fq.gz"),
            paired_r1=Path("p1"), unpaired_r1=Path("u1"), paired_r2=Path("p2"), unpaired_r2=Path("u2"),
            adapter_file=Path("/ref/TruSeq3-PE.fa"), leading=3, trailing=3,
            sliding_window="4:20", min_length=50, threads=10,
        )
        assert argv[:2] == ("trimmomatic", "PE")
        assert "ILLUMINACLIP:/ref/TruSeq3-PE.fa:2:30:10:2:keepBothReads" in argv
        assert argv[-3:] == ("TRAILING:3", "SLIDINGWINDOW:4:20", "MINLEN:50")

    def test_fraggenescan(self):
        """Test the FragGeneScan perl wrapper arguments."""
        argv = tools.fraggenescan(fgs_dir=Path("/fgs"), genome=Path("a.fa"), out_prefix=Path("out/a"),
                                  train_set="complete", threads=2, complete=False)
        assert argv[:2] == ("perl", "/fgs/run_FragGeneScan.pl")
        assert "-complete=0" in argv and "-train=complete" in argv and "-thread=2" in argv

    def test_mapseq(self):
        """Test MAPseq argument order."""
        assert tools.mapseq(fasta=Path("a.fa"), db=Path("SSU.fasta"), taxonomy=Path("t.txt")) == (
            "mapseq", "a.fa", "SSU.fasta", "t.txt")
        assert tools.mapseq_otucounts(Path("a.mapseq")) == ("mapseq", "-otucounts", "a.mapseq")
