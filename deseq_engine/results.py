"""
Result table assembly for DESeq2-like analysis.

Joins per-gene Wald statistics with adjusted p-values and a per-gene status
marker, optionally re-tests against a log2 fold change threshold, and
summarizes the table.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

import logging
from enum import Enum

import numpy as np
import pandas as pd
from scipy.stats import norm

from .independent_filtering import adjust_pvalues

logger = logging.getLogger(__name__)


class GeneStatus(str, Enum):
    """Why a gene's row looks the way it does."""

    OK = "ok"
    ALL_ZERO = "all_zero"
    NOT_CONVERGED = "not_converged"
    FILTERED = "filtered"
    DISPERSION_OUTLIER = "dispersion_outlier"


def lfc_threshold_pvalue(log2_fc, lfc_se, threshold, alt_hypothesis="greaterAbs"):
    """
    Wald statistics and p-values for testing against an LFC threshold.

    Parameters
    ----------
    log2_fc : np.ndarray
        Log2 fold change estimates.
    lfc_se : np.ndarray
        Standard errors of log2 fold changes.
    threshold : float
        Log2 fold change threshold (non-negative).
    alt_hypothesis : str
        'greaterAbs' (|LFC| > T), 'lessAbs' (|LFC| < T),
        'greater' (LFC > T) or 'less' (LFC < -T).

    Returns
    -------
    stat : np.ndarray
    pvalue : np.ndarray
        NaN wherever the estimate or its SE is missing.
    """
    lfc = np.asarray(log2_fc, dtype=float)
    se = np.asarray(lfc_se, dtype=float)
    T = float(threshold)

    with np.errstate(divide="ignore", invalid="ignore"):
        if alt_hypothesis == "greaterAbs":
            stat = np.sign(lfc) * np.maximum((np.abs(lfc) - T) / se, 0)
            pvalue = np.minimum(1.0, 2 * norm.sf((np.abs(lfc) - T) / se))
        elif alt_hypothesis == "lessAbs":
            above = norm.cdf((lfc - T) / se)
            below = norm.sf((lfc + T) / se)
            pvalue = np.maximum(above, below)
            stat = np.where(above >= below, (lfc - T) / se, (lfc + T) / se)
        elif alt_hypothesis == "greater":
            stat = (lfc - T) / se
            pvalue = norm.sf(stat)
        elif alt_hypothesis == "less":
            stat = (lfc + T) / se
            pvalue = norm.cdf(stat)
        else:
            raise ValueError(f"Unknown alt_hypothesis: {alt_hypothesis}")

    missing = ~(np.isfinite(lfc) & np.isfinite(se))
    stat = np.where(missing, np.nan, stat)
    pvalue = np.where(missing, np.nan, pvalue)
    return stat, pvalue


def gene_status(all_zero, converged, passed_filter, is_outlier):
    """Status per gene; earlier markers take precedence."""
    status = np.full(all_zero.shape, GeneStatus.OK.value, dtype=object)
    status[is_outlier] = GeneStatus.DISPERSION_OUTLIER.value
    status[~passed_filter] = GeneStatus.FILTERED.value
    status[~converged] = GeneStatus.NOT_CONVERGED.value
    status[all_zero] = GeneStatus.ALL_ZERO.value
    return status


def results(wald, dispersions, gene_ids, config, all_zero):
    """
    Build the result table from Wald statistics and dispersions.

    Parameters
    ----------
    wald : dict
        Output of ``nb_glm_wald``.
    dispersions : DispersionEstimate
    gene_ids : sequence of str
    config : DEConfig
    all_zero : np.ndarray of bool
        Genes with no positive count.

    Returns
    -------
    result_df : pd.DataFrame
        Columns baseMean, log2FoldChange, lfcSE, stat, pvalue, padj,
        dispersion, status (+ log2FoldChangeShrunk with ``shrink_lfc``).
    filter_result : FilterResult or None
    """
    base_mean = dispersions.base_mean
    log2_fc = np.asarray(wald["log2FoldChange"], dtype=float)
    lfc_se = np.asarray(wald["lfcSE"], dtype=float)
    stat = np.asarray(wald["stat"], dtype=float)
    pvalue = np.asarray(wald["pvalue"], dtype=float)
    converged = np.asarray(wald["converged"], dtype=bool) | all_zero

    if config.lfc_threshold > 0 or config.alt_hypothesis != "greaterAbs":
        stat, pvalue = lfc_threshold_pvalue(
            log2_fc, lfc_se, config.lfc_threshold, config.alt_hypothesis)

    # barrier: every p-value is known before the adjustment
    padj, passed, filter_result = adjust_pvalues(
        base_mean, pvalue,
        alpha=config.significance_threshold,
        filtering=config.independent_filtering,
        n_cutoffs=config.n_cutoffs,
    )

    result_df = pd.DataFrame({
        "baseMean": base_mean,
        "log2FoldChange": log2_fc,
        "lfcSE": lfc_se,
        "stat": stat,
        "pvalue": pvalue,
        "padj": padj,
    }, index=pd.Index(list(gene_ids), name="gene_id"))

    if config.shrink_lfc:
        from .lfc_shrinkage import normal_shrinkage
        result_df["log2FoldChangeShrunk"] = normal_shrinkage(log2_fc, lfc_se)

    result_df["dispersion"] = dispersions.shrunk
    result_df["status"] = gene_status(all_zero, converged, passed, dispersions.is_outlier)
    return result_df, filter_result


def summary(result_df, alpha=0.05, lfc_cutoff=0.0):
    """
    Summary of differential expression results.

    Parameters
    ----------
    result_df : pd.DataFrame
        Results DataFrame from ``results``.
    alpha : float, default 0.05
        FDR threshold for significance.
    lfc_cutoff : float, default 0.0
        Optional LFC cutoff for reporting.

    Returns
    -------
    dict
        Summary statistics.
    """
    padj = result_df["padj"].values
    lfc = result_df["log2FoldChange"].values

    valid = np.isfinite(padj)
    significant = valid & (padj < alpha)

    up = significant & (lfc > lfc_cutoff)
    down = significant & (lfc < -lfc_cutoff)

    counts = result_df["status"].value_counts() if "status" in result_df else pd.Series(dtype=int)

    summary_dict = {
        "total_genes": int(len(result_df)),
        "genes_tested": int(valid.sum()),
        "significant": int(significant.sum()),
        "upregulated": int(up.sum()),
        "downregulated": int(down.sum()),
        "dispersion_outliers": int(counts.get(GeneStatus.DISPERSION_OUTLIER.value, 0)),
        "filtered": int(counts.get(GeneStatus.FILTERED.value, 0)),
        "not_converged": int(counts.get(GeneStatus.NOT_CONVERGED.value, 0)),
        "all_zero": int(counts.get(GeneStatus.ALL_ZERO.value, 0)),
        "alpha": alpha,
        "lfc_cutoff": lfc_cutoff,
    }

    logger.info(
        "Results: %d genes, %d tested, %d significant (padj < %s): %d up, %d down; "
        "%d filtered, %d outliers, %d not converged, %d all zero",
        summary_dict["total_genes"], summary_dict["genes_tested"],
        summary_dict["significant"], alpha, summary_dict["upregulated"],
        summary_dict["downregulated"], summary_dict["filtered"],
        summary_dict["dispersion_outliers"], summary_dict["not_converged"],
        summary_dict["all_zero"],
    )
    return summary_dict
