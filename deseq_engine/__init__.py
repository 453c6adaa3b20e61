"""
DESeq2-like differential expression analysis for RNA-seq data in Python.

This package implements the core DESeq2 methodology for count data: median-of-
ratios normalization, negative binomial dispersion estimation with empirical
Bayes shrinkage, per-gene GLM Wald tests, independent filtering with
Benjamini-Hochberg adjustment, and variance stabilizing transformations.

Main Classes:
    CountModel : Validated count matrix with its sample design
    Design : Condition labels with a reference level
    DEConfig : Options for a run

Main Functions:
    run_deseq : Run the full pipeline on a CountModel
    transform : vst / rlog / pseudo-log2 transformation
    plot_pca_data : PCA coordinates of transformed data

References:
    Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
    and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

__version__ = "0.2.0"

# Configuration and errors
from .config import DEConfig, TransformKind, TrendFitType
from .exceptions import (
    DESeqError,
    DESeqConfigurationError,
    CountMatrixError,
    DesignError,
    SizeFactorError,
    DESeqWarning,
    DispersionFitWarning,
    PCADegenerateWarning,
)

# Data model
from .design import Design, create_design_matrix, intercept_only_design
from .deseq_dataset import CountModel

# Core pipeline
from .deseq import DESeqAnalysis, run_deseq

# Size factors
from .size_factors import estimate_size_factors

# Dispersions
from .dispersion import DispersionEstimate, estimate_dispersions
from .dispersion_trend import DispersionTrend, fit_dispersion_trend

# Statistical tests
from .nbinom_wald import nb_glm_wald
from .independent_filtering import benjamini_hochberg, independent_filtering, FilterResult

# LFC shrinkage
from .lfc_shrinkage import normal_shrinkage

# Transformations
from .transformations import vst, rlog, normTransform, transform
from .pca import PCAResult, plot_pca_data

# Results
from .results import GeneStatus, results, lfc_threshold_pvalue, summary

# Utilities
from .utils import fpm, normalize_counts

__all__ = [
    # Config
    'DEConfig',
    'TransformKind',
    'TrendFitType',

    # Errors
    'DESeqError',
    'DESeqConfigurationError',
    'CountMatrixError',
    'DesignError',
    'SizeFactorError',
    'DESeqWarning',
    'DispersionFitWarning',
    'PCADegenerateWarning',

    # Core
    'Design',
    'CountModel',
    'DESeqAnalysis',
    'run_deseq',
    'create_design_matrix',
    'intercept_only_design',

    # Size factors
    'estimate_size_factors',

    # Dispersions
    'DispersionEstimate',
    'DispersionTrend',
    'estimate_dispersions',
    'fit_dispersion_trend',

    # Tests
    'nb_glm_wald',
    'benjamini_hochberg',
    'independent_filtering',
    'FilterResult',

    # LFC shrinkage
    'normal_shrinkage',

    # Transformations
    'vst',
    'rlog',
    'normTransform',
    'transform',
    'PCAResult',
    'plot_pca_data',

    # Results
    'GeneStatus',
    'results',
    'lfc_threshold_pvalue',
    'summary',

    # Utilities
    'fpm',
    'normalize_counts',
]
