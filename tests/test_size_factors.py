"""Tests for median-of-ratios size factors."""

import numpy as np
import pandas as pd
import pytest

from deseq_engine import CountModel, Design, SizeFactorError, estimate_size_factors
from deseq_engine.size_factors import estimate_size_factors_for_matrix
from deseq_engine.utils import fpm, normalize_counts


class TestMedianOfRatios:

    def test_scale_invariance(self, simulated):
        counts_df, _ = simulated
        counts = counts_df.values + 1
        scale = np.array([1.0, 2.0, 0.5, 3.0, 1.0, 1.5])

        sf = estimate_size_factors(counts)
        sf_scaled = estimate_size_factors(counts * scale)

        ratio = (sf_scaled / sf) / scale
        np.testing.assert_allclose(ratio, ratio[0], rtol=1e-10)

    def test_doubled_depth_sample(self):
        rng = np.random.default_rng(3)
        base = rng.integers(10, 1000, size=50)
        counts = np.tile(base[:, None], (1, 4)).astype(float)
        counts[:, 2] *= 2

        sf = estimate_size_factors(counts)
        assert sf[2] / sf[0] == pytest.approx(2.0)
        np.testing.assert_allclose(sf[[0, 1, 3]], sf[0])
        np.testing.assert_allclose(np.exp(np.mean(np.log(sf))), 1.0)

        norm = normalize_counts(counts, sf)
        np.testing.assert_allclose(norm, norm[:, [0]].repeat(4, axis=1))

    def test_genes_with_a_zero_are_ignored(self):
        counts = np.array([[10, 20], [0, 500], [30, 60]], dtype=float)
        sf = estimate_size_factors(counts)
        assert sf[1] / sf[0] == pytest.approx(2.0)

    def test_every_gene_has_a_zero(self):
        counts = np.array([[0, 5, 3], [4, 0, 2], [1, 1, 0]])
        with pytest.raises(SizeFactorError):
            estimate_size_factors(counts)

    def test_poscounts_handles_sparse_matrix(self):
        counts = np.array([[0, 5, 3], [4, 0, 2], [1, 1, 0]])
        sf = estimate_size_factors(counts, type="poscounts")
        assert np.all(sf > 0)
        assert np.exp(np.mean(np.log(sf))) == pytest.approx(1.0)

    def test_control_genes(self):
        counts = np.array([[100, 100, 10, 10], [50, 50, 50, 50]], dtype=float)
        sf = estimate_size_factors_for_matrix(counts, control_genes=[1])
        np.testing.assert_allclose(sf, 1.0)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            estimate_size_factors(np.ones((3, 2)), type="upperquartile")

    def test_count_model_returns_series(self, simulated_model):
        sf = estimate_size_factors(simulated_model)
        assert isinstance(sf, pd.Series)
        assert sf.name == "sizeFactor"
        assert list(sf.index) == list(simulated_model.sample_names)


class TestFpm:

    def test_library_size_scaling(self):
        counts = np.array([[10, 30], [90, 70]])
        out = fpm(counts)
        np.testing.assert_allclose(out.sum(axis=0), 1e6)
        np.testing.assert_allclose(out[:, 0], [1e5, 9e5])

    def test_robust_fpm_uses_size_factors(self):
        counts = pd.DataFrame([[10, 20], [30, 60]], index=["g1", "g2"], columns=["a", "b"])
        out = fpm(counts, size_factors=[1.0, 2.0])
        assert list(out.index) == ["g1", "g2"]
        np.testing.assert_allclose(out["a"], out["b"])
        np.testing.assert_allclose(out.sum(axis=0), 1e6)
