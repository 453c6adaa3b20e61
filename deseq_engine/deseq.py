"""
The DESeq2-like pipeline: size factors, dispersions, Wald test, adjustment.

``run_deseq`` validates its inputs up front, then runs the stages in order.
Each stage is a pure function of the CountModel and the DEConfig, so a
DESeqAnalysis can always be recomputed from scratch.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from .config import DEConfig
from .deseq_dataset import CountModel
from .design import intercept_only_design
from .dispersion import DispersionEstimate, estimate_dispersions
from .exceptions import DesignError, SizeFactorError
from .independent_filtering import FilterResult
from .nbinom_wald import nb_glm_wald
from .pca import plot_pca_data
from .results import results, summary
from .size_factors import estimate_size_factors
from .transformations import transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class DESeqAnalysis:
    """
    Everything ``run_deseq`` computed for one CountModel.

    Attributes
    ----------
    model : CountModel
    config : DEConfig
    size_factors : pd.Series
        One factor per sample.
    dispersions : DispersionEstimate
    results : pd.DataFrame
        One row per gene, indexed by gene id (see ``results.results``).
    filter_result : FilterResult or None
        None when independent filtering is off.
    contrast : tuple of str
        (tested level, reference level).
    """

    model: CountModel
    config: DEConfig
    size_factors: pd.Series
    dispersions: DispersionEstimate
    results: pd.DataFrame
    filter_result: Optional[FilterResult]
    contrast: tuple

    def summary(self, lfc_cutoff=0.0):
        return summary(self.results, alpha=self.config.significance_threshold,
                       lfc_cutoff=lfc_cutoff)

    def transform(self, kind=None, blind=None):
        """Transformed counts; a design-aware transform reuses the fitted dispersions."""
        return transform(self.model, self.size_factors, kind=kind, blind=blind,
                         dispersions=self.dispersions, config=self.config)

    def pca(self, kind=None, blind=None):
        transformed = self.transform(kind=kind, blind=blind)
        return plot_pca_data(
            transformed,
            n_top=self.config.pca_n_top,
            n_components=self.config.pca_n_components,
            scale=self.config.pca_scale,
            groups=dict(self.model.design.labels),
        )


def _check_size_factors(size_factors, sample_names):
    if isinstance(size_factors, pd.Series):
        missing = [s for s in sample_names if s not in size_factors.index]
        if missing:
            raise SizeFactorError(f"No size factor for samples {missing}")
        sf = size_factors.loc[list(sample_names)].to_numpy(dtype=float)
    else:
        sf = np.asarray(size_factors, dtype=float)
    if sf.shape != (len(sample_names),):
        raise SizeFactorError(
            f"Expected {len(sample_names)} size factors, got shape {sf.shape}")
    if not np.all(np.isfinite(sf) & (sf > 0)):
        raise SizeFactorError("Size factors must be positive and finite")
    return pd.Series(sf, index=list(sample_names), name="sizeFactor")


def run_deseq(model, config=None, size_factors=None, control_genes=None, level=None):
    """
    Run the full differential expression pipeline.

    Parameters
    ----------
    model : CountModel
        Validated counts and design.
    config : DEConfig, optional
        Defaults to ``DEConfig()``.
    size_factors : array-like or pd.Series, optional
        Use these instead of estimating them.
    control_genes : sequence, optional
        Gene ids (or a boolean mask array) whose median ratio defines
        the size factors, e.g. known housekeeping genes.
    level : str, optional
        Level tested against the reference. Defaults to the last level.

    Returns
    -------
    DESeqAnalysis

    Raises
    ------
    DESeqConfigurationError
        Any violated precondition (bad design, no usable size factors,
        no residual degrees of freedom).

    Examples
    --------
    >>> design = Design({"a": "ctrl", "b": "ctrl", "c": "trt", "d": "trt"}, "ctrl")
    >>> analysis = run_deseq(CountModel.from_dataframe(counts_df, design))
    >>> analysis.results.sort_values("padj").head()
    """
    if not isinstance(model, CountModel):
        raise TypeError("model must be a CountModel")
    config = config or DEConfig()
    design = model.design
    test_level = design.levels[-1] if level is None else str(level)
    coef_index = design.level_index(test_level)
    if coef_index == design.reference_index:
        raise DesignError(f"Cannot test the reference level {test_level!r} against itself")

    G, S = model.shape
    logger.info("Running DE analysis: %d genes, %d samples, %s vs %s",
                G, S, test_level, design.reference)

    # 1) size factors
    if size_factors is not None:
        sf = _check_size_factors(size_factors, model.sample_names)
    else:
        if control_genes is not None and not isinstance(control_genes, np.ndarray):
            positions = {g: i for i, g in enumerate(model.gene_ids)}
            unknown = [g for g in control_genes if str(g) not in positions]
            if unknown:
                raise SizeFactorError(f"Control genes not in the count matrix: {unknown[:10]}")
            control_genes = [positions[str(g)] for g in control_genes]
        sf = estimate_size_factors(model, control_genes=control_genes)

    # 2) dispersions (barrier: all gene-wise estimates before trend and shrinkage)
    X = model.design_matrix
    disp_design = intercept_only_design(S)[0] if config.blind_for_testing() else X
    dispersions = estimate_dispersions(model.counts, sf.values, disp_design, config)

    # 3) Wald test
    all_zero = ~np.any(model.counts > 0, axis=1)
    wald = nb_glm_wald(
        model.counts, sf.values, dispersions.shrunk, X,
        coef_index=coef_index, max_iter=config.max_iter, tol=config.tol, n_jobs=config.n_jobs,
    )

    # 4) adjustment and result table (barrier: all p-values known)
    result_df, filter_result = results(wald, dispersions, model.gene_ids, config, all_zero)
    summary(result_df, alpha=config.significance_threshold)

    return DESeqAnalysis(
        model=model,
        config=config,
        size_factors=sf,
        dispersions=dispersions,
        results=result_df,
        filter_result=filter_result,
        contrast=(test_level, design.reference),
    )
