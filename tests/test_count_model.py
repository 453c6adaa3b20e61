"""Tests for Design and CountModel validation."""

import numpy as np
import pandas as pd
import pytest

from deseq_engine import (
    CountMatrixError,
    CountModel,
    DESeqConfigurationError,
    Design,
    DesignError,
)
from deseq_engine.design import check_full_rank


def _counts(values=None, genes=("g1", "g2", "g3"), samples=("a", "b", "c", "d")):
    if values is None:
        values = [[5, 6, 7, 8], [0, 1, 0, 2], [100, 90, 80, 70]]
    return pd.DataFrame(values, index=list(genes), columns=list(samples))


class TestDesign:

    def test_reference_is_first_level(self):
        design = Design({"a": "trt", "b": "ctrl", "c": "trt", "d": "other"}, reference="ctrl")
        assert design.levels == ("ctrl", "trt", "other")
        assert design.level_index("ctrl") == design.reference_index == 0

    def test_reference_must_be_observed(self):
        with pytest.raises(DesignError, match="not among the observed labels"):
            Design({"a": "ctrl", "b": "trt"}, reference="untreated")

    def test_needs_two_levels(self):
        with pytest.raises(DesignError):
            Design({"a": "ctrl", "b": "ctrl"}, reference="ctrl")

    def test_missing_label(self):
        with pytest.raises(DesignError):
            Design({"a": "ctrl", "b": None, "c": "trt"}, reference="ctrl")

    def test_unknown_level(self, four_sample_design):
        with pytest.raises(DesignError):
            four_sample_design.level_index("nope")

    def test_from_coldata(self):
        coldata = pd.DataFrame({"dex": ["untrt", "trt", "untrt", "trt"]},
                               index=["a", "b", "c", "d"])
        design = Design.from_coldata(coldata, "dex", reference="untrt")
        assert design.factor_name == "dex"
        assert design.labels["b"] == "trt"

    def test_check_full_rank(self):
        X = np.column_stack([np.ones(4), [0.0, 0.0, 1.0, 1.0]])
        assert check_full_rank(X)
        assert not check_full_rank(np.column_stack([X, X[:, 1]]))

    def test_errors_are_value_errors(self):
        assert issubclass(DesignError, DESeqConfigurationError)
        assert issubclass(DesignError, ValueError)


class TestCountModel:

    def test_basic_construction(self, four_sample_design):
        model = CountModel.from_dataframe(_counts(), four_sample_design)
        assert model.shape == (3, 4)
        assert model.gene_ids == ("g1", "g2", "g3")
        assert model.design_columns == ("Intercept", "condition[T.trt]")
        np.testing.assert_array_equal(model.design_matrix[:, 1], [0, 0, 1, 1])

    def test_counts_are_read_only(self, four_sample_design):
        model = CountModel.from_dataframe(_counts(), four_sample_design)
        with pytest.raises(ValueError):
            model.counts[0, 0] = 1

    def test_duplicate_gene_ids(self, four_sample_design):
        df = _counts(genes=("g1", "g1", "g3"))
        with pytest.raises(CountMatrixError, match="g1"):
            CountModel.from_dataframe(df, four_sample_design)

    def test_duplicate_sample_names(self):
        design = Design({"a": "ctrl", "b": "trt"}, reference="ctrl")
        with pytest.raises(CountMatrixError, match="Duplicate sample"):
            CountModel([[1, 2, 3]], ["g1"], ["a", "b", "a"], design)

    def test_negative_counts(self, four_sample_design):
        df = _counts([[5, -1, 7, 8], [0, 1, 0, 2], [1, 2, 3, 4]])
        with pytest.raises(CountMatrixError, match="non-negative"):
            CountModel.from_dataframe(df, four_sample_design)

    def test_non_integer_counts(self, four_sample_design):
        df = _counts([[5.5, 1, 7, 8], [0, 1, 0, 2], [1, 2, 3, 4]])
        with pytest.raises(CountMatrixError, match="integers"):
            CountModel.from_dataframe(df, four_sample_design)

    def test_missing_counts(self, four_sample_design):
        df = _counts([[5, np.nan, 7, 8], [0, 1, 0, 2], [1, 2, 3, 4]])
        with pytest.raises(CountMatrixError):
            CountModel.from_dataframe(df, four_sample_design)

    def test_all_zero_matrix(self, four_sample_design):
        df = _counts(np.zeros((3, 4), dtype=int))
        with pytest.raises(CountMatrixError, match="all zero"):
            CountModel.from_dataframe(df, four_sample_design)

    def test_sample_missing_from_design(self):
        design = Design({"a": "ctrl", "b": "ctrl", "c": "trt"}, reference="ctrl")
        with pytest.raises(DesignError, match="not in design"):
            CountModel.from_dataframe(_counts(), design)

    def test_sample_missing_from_matrix(self):
        design = Design({"a": "ctrl", "b": "ctrl", "c": "trt", "d": "trt", "e": "trt"},
                        reference="ctrl")
        with pytest.raises(DesignError, match="not in count matrix"):
            CountModel.from_dataframe(_counts(), design)

    def test_column_order_follows_matrix(self):
        design = Design({"d": "trt", "c": "trt", "b": "ctrl", "a": "ctrl"}, reference="ctrl")
        model = CountModel.from_dataframe(_counts(), design)
        np.testing.assert_array_equal(model.condition_labels(), ["ctrl", "ctrl", "trt", "trt"])
