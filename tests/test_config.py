"""Tests for DEConfig validation."""

import dataclasses

import pytest

from deseq_engine import DEConfig, DESeqConfigurationError, TransformKind, TrendFitType


class TestDEConfig:

    def test_defaults(self):
        config = DEConfig()
        assert config.significance_threshold == 0.05
        assert config.independent_filtering is True
        assert config.transform is TransformKind.VST
        assert config.fit_type is TrendFitType.PARAMETRIC

    def test_blind_defaults_depend_on_use(self):
        config = DEConfig()
        assert config.blind_for_transform() is True
        assert config.blind_for_testing() is False

        forced = DEConfig(blind_trend=False)
        assert forced.blind_for_transform() is False
        assert forced.blind_for_testing() is False

    def test_strings_are_coerced_to_enums(self):
        config = DEConfig(transform="regularized-log", fit_type="local")
        assert config.transform is TransformKind.RLOG
        assert config.fit_type is TrendFitType.LOCAL

    @pytest.mark.parametrize("options", [
        {"significance_threshold": 0.0},
        {"significance_threshold": 1.5},
        {"transform": "log10"},
        {"fit_type": "spline"},
        {"min_disp": 0},
        {"n_jobs": 0},
        {"lfc_threshold": -1},
        {"alt_hypothesis": "twoSided"},
        {"pca_n_top": 0},
    ])
    def test_invalid_values(self, options):
        with pytest.raises(DESeqConfigurationError):
            DEConfig(**options)

    def test_frozen(self):
        config = DEConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.n_jobs = 4

    def test_from_mapping(self):
        config = DEConfig.from_mapping({"significance_threshold": 0.1, "transform": "vst"})
        assert config.significance_threshold == 0.1

    def test_from_mapping_rejects_unknown_keys(self):
        with pytest.raises(DESeqConfigurationError, match="alpha"):
            DEConfig.from_mapping({"alpha": 0.1})
