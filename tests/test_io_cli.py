"""Tests for table I/O and the command-line interface."""

import pandas as pd
import pytest
from typer.testing import CliRunner

from deseq_engine import CountMatrixError, DESeqConfigurationError
from deseq_engine.cli import app
from deseq_engine.io import read_config, read_counts, read_design, write_results

pytestmark = pytest.mark.filterwarnings("ignore::deseq_engine.exceptions.DispersionFitWarning")

runner = CliRunner()


@pytest.fixture
def input_files(tmp_path, simulated):
    counts_df, design = simulated
    counts_path = tmp_path / "counts.csv"
    counts_df.rename_axis("gene_id").to_csv(counts_path)

    sheet_path = tmp_path / "samples.tsv"
    sheet = pd.DataFrame({"sample": list(design.samples),
                          "condition": [design.labels[s] for s in design.samples]})
    sheet.to_csv(sheet_path, sep="\t", index=False)
    return counts_path, sheet_path


class TestIO:

    def test_read_counts(self, input_files, simulated):
        counts_path, _ = input_files
        df = read_counts(counts_path)
        pd.testing.assert_frame_equal(df, simulated[0], check_names=False)

    def test_read_counts_drops_annotation(self, tmp_path):
        path = tmp_path / "counts.csv"
        pd.DataFrame({"gene": ["g1", "g2"], "length": [1000, 2000], "chrom": ["1", "X"],
                      "a": [1, 2], "b": [3, 4]}).to_csv(path, index=False)
        with pytest.raises(CountMatrixError, match="chrom"):
            read_counts(path)
        df = read_counts(path, drop_columns=["length", "chrom"])
        assert list(df.columns) == ["a", "b"]
        assert list(df.index) == ["g1", "g2"]

    def test_read_design(self, input_files):
        _, sheet_path = input_files
        design = read_design(sheet_path, reference="ctrl")
        assert design.levels == ("ctrl", "trt")
        with pytest.raises(DESeqConfigurationError):
            read_design(sheet_path)

    def test_read_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("significance_threshold: 0.1\nindependent_filtering: false\ntransform: regularized-log\n")
        config = read_config(path)
        assert config.significance_threshold == 0.1
        assert config.independent_filtering is False
        assert config.transform.value == "regularized-log"

    def test_write_results_marks_missing(self, tmp_path):
        df = pd.DataFrame({"padj": [0.01, float("nan")]}, index=pd.Index(["g1", "g2"], name="gene_id"))
        path = write_results(df, tmp_path / "out" / "res.csv")
        assert path.read_text().splitlines()[2] == "g2,NA"


class TestCLI:

    def test_run_writes_outputs(self, tmp_path, input_files):
        counts_path, sheet_path = input_files
        out = tmp_path / "results.csv"
        vst_out = tmp_path / "vst.csv"
        pca_out = tmp_path / "pca.csv"

        result = runner.invoke(app, [
            "run", str(counts_path), str(sheet_path),
            "--reference", "ctrl",
            "--output", str(out),
            "--transformed", str(vst_out),
            "--pca", str(pca_out),
        ])

        assert result.exit_code == 0, result.output
        res = pd.read_csv(out, index_col=0)
        assert len(res) == 200
        assert "padj" in res.columns
        assert pd.read_csv(vst_out, index_col=0).shape == (200, 6)
        assert list(pd.read_csv(pca_out, index_col=0).columns) == ["PC1", "PC2", "group"]
        assert (tmp_path / "pca_variance.csv").exists()

    def test_bad_reference_exits_with_error(self, tmp_path, input_files):
        counts_path, sheet_path = input_files
        result = runner.invoke(app, [
            "run", str(counts_path), str(sheet_path),
            "--reference", "placebo",
            "--output", str(tmp_path / "results.csv"),
        ])
        assert result.exit_code == 1
        assert not (tmp_path / "results.csv").exists()

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "deseq-engine" in result.output
