"""
Configuration for the differential expression pipeline.

All recognized options live on a single ``DEConfig`` dataclass. Values are
validated once in ``__post_init__``; an invalid option raises
DESeqConfigurationError instead of surfacing halfway through a run.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Mapping, Optional

from .exceptions import DESeqConfigurationError


class TransformKind(str, Enum):
    """Transformations available for visualization and clustering."""

    PSEUDO_LOG2 = "pseudo-log2"
    RLOG = "regularized-log"
    VST = "vst"


class TrendFitType(str, Enum):
    """Shape of the fitted mean-dispersion trend."""

    PARAMETRIC = "parametric"
    LOCAL = "local"
    MEAN = "mean"


ALT_HYPOTHESES = ("greaterAbs", "lessAbs", "greater", "less")


@dataclass(frozen=True)
class DEConfig:
    """Options for a differential expression run.

    Attributes:
        significance_threshold: FDR cutoff used by independent filtering and
            for reporting.
        independent_filtering: Exclude low-mean genes from the BH adjustment
            when doing so increases the number of rejections.
        blind_trend: Re-estimate the dispersion trend ignoring condition
            labels. None means "depends on use": blind for transforms,
            design-aware for testing.
        transform: Which transformation ``transform()`` applies by default.
        fit_type: Shape of the dispersion trend. A parametric fit that fails
            falls back to the local fit.
        min_disp: Lower bound for every dispersion estimate.
        outlier_sd: Genes whose log gene-wise dispersion lies more than this
            many residual SDs above the trend keep their gene-wise value.
        min_genes_for_trend: Below this many usable genes the trend is
            replaced by the median gene-wise dispersion.
        max_iter, tol: IRLS iteration limit and relative deviance tolerance.
        n_cutoffs: Number of mean-count quantiles tried by independent filtering.
        n_jobs: joblib workers for per-gene fits (1 = in process).
        lfc_threshold, alt_hypothesis: Test |LFC| against a threshold instead
            of zero (DESeq2's ``lfcThreshold``/``altHypothesis``).
        shrink_lfc: Add a normal-prior shrunken log2 fold change column.
        pca_n_top, pca_n_components, pca_scale: PCA gene selection, number of
            components and per-gene scaling.
    """

    significance_threshold: float = 0.05
    independent_filtering: bool = True
    blind_trend: Optional[bool] = None
    transform: TransformKind = TransformKind.VST
    fit_type: TrendFitType = TrendFitType.PARAMETRIC
    min_disp: float = 1e-8
    outlier_sd: float = 2.0
    min_genes_for_trend: int = 10
    max_iter: int = 100
    tol: float = 1e-8
    n_cutoffs: int = 50
    n_jobs: int = 1
    lfc_threshold: float = 0.0
    alt_hypothesis: str = "greaterAbs"
    shrink_lfc: bool = False
    pca_n_top: int = 500
    pca_n_components: int = 2
    pca_scale: bool = False

    def __post_init__(self):
        """Validate configuration."""
        # frozen dataclass: coerce enum strings through object.__setattr__
        try:
            object.__setattr__(self, "transform", TransformKind(self.transform))
            object.__setattr__(self, "fit_type", TrendFitType(self.fit_type))
        except ValueError as e:
            raise DESeqConfigurationError(str(e)) from e

        if not 0.0 < self.significance_threshold < 1.0:
            raise DESeqConfigurationError(
                f"significance_threshold must be in (0, 1), got {self.significance_threshold}")
        if self.min_disp <= 0:
            raise DESeqConfigurationError(f"min_disp must be positive, got {self.min_disp}")
        if self.outlier_sd <= 0:
            raise DESeqConfigurationError(f"outlier_sd must be positive, got {self.outlier_sd}")
        if self.min_genes_for_trend < 1:
            raise DESeqConfigurationError("min_genes_for_trend must be at least 1")
        if self.max_iter < 1 or self.tol <= 0:
            raise DESeqConfigurationError("max_iter must be >= 1 and tol > 0")
        if self.n_cutoffs < 1:
            raise DESeqConfigurationError("n_cutoffs must be at least 1")
        if self.n_jobs == 0:
            raise DESeqConfigurationError("n_jobs must be non-zero (use -1 for all cores)")
        if self.lfc_threshold < 0:
            raise DESeqConfigurationError("lfc_threshold must be non-negative")
        if self.alt_hypothesis not in ALT_HYPOTHESES:
            raise DESeqConfigurationError(
                f"alt_hypothesis must be one of {ALT_HYPOTHESES}, got {self.alt_hypothesis!r}")
        if self.pca_n_top < 1 or self.pca_n_components < 1:
            raise DESeqConfigurationError("pca_n_top and pca_n_components must be positive")

    def blind_for_transform(self):
        return True if self.blind_trend is None else self.blind_trend

    def blind_for_testing(self):
        return False if self.blind_trend is None else self.blind_trend

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "DEConfig":
        """Build a config from a plain dict, e.g. a parsed YAML or JSON file."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise DESeqConfigurationError(f"Unknown configuration option(s): {', '.join(unknown)}")
        return cls(**dict(options))
