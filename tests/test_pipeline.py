"""End-to-end tests for run_deseq."""

import numpy as np
import pandas as pd
import pytest

from deseq_engine import (
    CountModel,
    DEConfig,
    DesignError,
    GeneStatus,
    SizeFactorError,
    run_deseq,
)

pytestmark = pytest.mark.filterwarnings("ignore::deseq_engine.exceptions.DispersionFitWarning")


@pytest.fixture
def analysis(simulated_model):
    return run_deseq(simulated_model)


class TestRunDeseq:

    def test_result_table_layout(self, analysis, simulated_model):
        res = analysis.results
        assert res.index.name == "gene_id"
        assert list(res.index) == list(simulated_model.gene_ids)
        assert list(res.columns) == ["baseMean", "log2FoldChange", "lfcSE", "stat",
                                     "pvalue", "padj", "dispersion", "status"]
        assert set(res["status"]) <= {s.value for s in GeneStatus}
        assert analysis.contrast == ("trt", "ctrl")

    def test_pvalue_invariants(self, analysis):
        res = analysis.results
        both = res["pvalue"].notna() & res["padj"].notna()
        assert ((res["pvalue"].dropna() >= 0) & (res["pvalue"].dropna() <= 1)).all()
        assert ((res["padj"].dropna() >= 0) & (res["padj"].dropna() <= 1)).all()
        assert (res.loc[both, "padj"] >= res.loc[both, "pvalue"]).all()

    def test_filtered_genes_are_marked(self, analysis):
        res = analysis.results
        filtered = res["status"] == "filtered"
        assert res.loc[filtered, "padj"].isna().all()
        assert res.loc[filtered, "pvalue"].notna().all()
        if analysis.filter_result is not None and filtered.any():
            assert (res.loc[filtered, "baseMean"] < analysis.filter_result.threshold).all()

    def test_recovers_differential_genes(self, analysis):
        res = analysis.results
        de = res.iloc[:20]
        hits = (de["padj"] < 0.1) & (de["log2FoldChange"] > 0)
        assert hits.sum() >= 12
        null = res.iloc[20:]
        assert (null["padj"] < 0.05).sum() <= 10

    def test_deterministic(self, simulated_model):
        first = run_deseq(simulated_model).results
        second = run_deseq(simulated_model).results
        pd.testing.assert_frame_equal(first, second)

    def test_n_jobs_independent(self, simulated_large):
        counts_df, design = simulated_large
        model = CountModel.from_dataframe(counts_df, design)
        serial = run_deseq(model, DEConfig(n_jobs=1)).results
        parallel = run_deseq(model, DEConfig(n_jobs=2)).results
        pd.testing.assert_frame_equal(serial, parallel)

    def test_filtering_off_tests_at_least_as_many_genes(self, simulated_model):
        on = run_deseq(simulated_model, DEConfig(independent_filtering=True))
        off = run_deseq(simulated_model, DEConfig(independent_filtering=False))
        assert on.results["padj"].notna().sum() <= off.results["padj"].notna().sum()
        assert off.filter_result is None
        assert not (off.results["status"] == "filtered").any()

    def test_constant_genes_have_no_fold_change(self, four_sample_design):
        levels = [5, 20, 50, 100, 400, 1000, 3000, 8, 12, 60, 250]
        counts_df = pd.DataFrame([[c] * 4 for c in levels],
                                 index=[f"g{i}" for i in range(len(levels))],
                                 columns=["a", "b", "c", "d"])
        model = CountModel.from_dataframe(counts_df, four_sample_design)
        res = run_deseq(model).results
        np.testing.assert_allclose(res["log2FoldChange"], 0.0, atol=1e-4)

    def test_all_zero_gene_row_is_kept(self, simulated):
        counts_df, design = simulated
        counts_df = counts_df.copy()
        counts_df.iloc[5] = 0
        res = run_deseq(CountModel.from_dataframe(counts_df, design)).results
        row = res.iloc[5]
        assert row["status"] == "all_zero"
        assert row["baseMean"] == 0
        assert np.isnan(row["pvalue"]) and np.isnan(row["padj"])

    @pytest.mark.parametrize("row", [[0, 0, 0, 500, 480, 520], [3, 0, 0, 500, 0, 450]])
    def test_zero_reference_counts_are_tested(self, simulated, row):
        counts_df, design = simulated
        counts_df = counts_df.copy()
        counts_df.iloc[7] = row
        res = run_deseq(CountModel.from_dataframe(counts_df, design)).results
        gene = res.iloc[7]
        assert gene["status"] != "not_converged"
        assert gene["log2FoldChange"] > 3
        assert np.isfinite(gene["lfcSE"]) and np.isfinite(gene["pvalue"])

    def test_shrunken_fold_changes(self, simulated_model):
        res = run_deseq(simulated_model, DEConfig(shrink_lfc=True)).results
        assert "log2FoldChangeShrunk" in res.columns
        ok = res["log2FoldChange"].notna()
        assert (res.loc[ok, "log2FoldChangeShrunk"].abs()
                <= res.loc[ok, "log2FoldChange"].abs() + 1e-12).all()

    def test_lfc_threshold_reduces_discoveries(self, simulated_model):
        plain = run_deseq(simulated_model).summary()
        strict = run_deseq(simulated_model, DEConfig(lfc_threshold=1.0)).summary()
        assert strict["significant"] <= plain["significant"]

    def test_blind_dispersions_for_testing(self, simulated_model):
        blind = run_deseq(simulated_model, DEConfig(blind_trend=True))
        aware = run_deseq(simulated_model)
        assert blind.dispersions.df == simulated_model.shape[1] - 1
        assert aware.dispersions.df == simulated_model.shape[1] - 2

    def test_user_size_factors(self, simulated_model):
        sf = pd.Series(1.0, index=list(simulated_model.sample_names))
        analysis = run_deseq(simulated_model, size_factors=sf)
        np.testing.assert_array_equal(analysis.size_factors.values, 1.0)

    def test_bad_size_factors(self, simulated_model):
        with pytest.raises(SizeFactorError):
            run_deseq(simulated_model, size_factors=[1.0, 1.0])
        with pytest.raises(SizeFactorError):
            run_deseq(simulated_model, size_factors=[1.0, 0.0, 1.0, 1.0, 1.0, 1.0])

    def test_unknown_control_genes(self, simulated_model):
        with pytest.raises(SizeFactorError):
            run_deseq(simulated_model, control_genes=["no_such_gene"])

    def test_unknown_level(self, simulated_model):
        with pytest.raises(DesignError):
            run_deseq(simulated_model, level="placebo")
        with pytest.raises(DesignError):
            run_deseq(simulated_model, level="ctrl")

    def test_summary(self, analysis):
        stats = analysis.summary()
        assert stats["total_genes"] == len(analysis.results)
        assert stats["upregulated"] + stats["downregulated"] == stats["significant"]
        assert stats["genes_tested"] == int(analysis.results["padj"].notna().sum())

    def test_transform_and_pca_from_analysis(self, analysis, simulated_model):
        vst_df = analysis.transform()
        assert vst_df.shape == simulated_model.shape
        pca = analysis.pca(kind="pseudo-log2")
        assert list(pca.coordinates["group"]) == list(simulated_model.condition_labels())
