"""Tests for the PCA projection."""

import numpy as np
import pandas as pd
import pytest

from deseq_engine import PCADegenerateWarning, plot_pca_data


def _grouped_matrix(seed=0):
    rng = np.random.default_rng(seed)
    data = rng.normal(8, 0.2, size=(300, 6))
    data[:50, 3:] += 3
    return pd.DataFrame(data, index=[f"g{i}" for i in range(300)],
                        columns=["a1", "a2", "a3", "b1", "b2", "b3"])


class TestPCA:

    def test_explained_variance_descending(self):
        res = plot_pca_data(_grouped_matrix(), n_components=4)
        ev = res.explained_variance.values
        assert list(res.explained_variance.index) == ["PC1", "PC2", "PC3", "PC4"]
        assert np.all(np.diff(ev) <= 0)
        assert ev.sum() <= 1 + 1e-12
        assert not res.degenerate

    def test_groups_separate_on_first_component(self):
        groups = {"a1": "A", "a2": "A", "a3": "A", "b1": "B", "b2": "B", "b3": "B"}
        res = plot_pca_data(_grouped_matrix(), groups=groups)
        coords = res.coordinates
        assert list(coords.columns) == ["PC1", "PC2", "group"]
        pc1 = coords["PC1"]
        a, b = pc1[coords["group"] == "A"], pc1[coords["group"] == "B"]
        assert (a.max() < b.min()) or (b.max() < a.min())
        assert res.explained_variance["PC1"] > 0.5

    def test_n_top_limits_genes(self):
        res = plot_pca_data(_grouped_matrix(), n_top=50)
        assert len(res.genes_used) == 50
        assert set(res.genes_used) == {f"g{i}" for i in range(50)}

    def test_coordinates_are_u_times_s(self):
        data = _grouped_matrix().values
        res = plot_pca_data(data, n_top=300, n_components=6)
        centred = data - data.mean(axis=1, keepdims=True)
        total = np.sum(centred ** 2)
        np.testing.assert_allclose((res.coordinates.values ** 2).sum(axis=0) / total,
                                   res.explained_variance.values, atol=1e-10)

    def test_scaled(self):
        res = plot_pca_data(_grouped_matrix(), scale=True)
        assert np.all(np.isfinite(res.coordinates[["PC1", "PC2"]].values))

    def test_constant_input_is_degenerate(self):
        flat = np.full((20, 4), 5.0)
        with pytest.warns(PCADegenerateWarning):
            res = plot_pca_data(flat)
        assert res.degenerate
        np.testing.assert_array_equal(res.coordinates.values, 0.0)
        np.testing.assert_array_equal(res.explained_variance.values, 0.0)
