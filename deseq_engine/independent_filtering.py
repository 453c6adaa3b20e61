"""
Multiple testing correction with independent filtering.

Benjamini-Hochberg adjustment, optionally preceded by independent filtering
on mean normalized counts: the cutoff that maximizes the number of
rejections at the target FDR is chosen, and genes below it are not tested.

References:
    - Benjamini Y, Hochberg Y (1995). Controlling the false discovery rate:
      a practical and powerful approach to multiple testing. JRSS B 57:289-300
    - Bourgon R, Gentleman R, Huber W (2010). Independent filtering
      increases detection power for high-throughput experiments.
      PNAS 107(21):9546-9551
"""

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


def benjamini_hochberg(pvals):
    """
    Benjamini-Hochberg FDR correction.

    NaN p-values are left as NaN and do not count towards the number of
    tests.

    Parameters
    ----------
    pvals : array-like

    Returns
    -------
    padj : np.ndarray
    """
    pvals = np.asarray(pvals, dtype=float)
    padj = np.full(pvals.shape, np.nan)
    finite = np.isfinite(pvals)
    m = int(finite.sum())
    if m == 0:
        return padj

    p = pvals[finite]
    order = np.argsort(p, kind="mergesort")
    ranked_p = p[order]

    # compute adjusted p-values
    adj = ranked_p * m / np.arange(1, m + 1)
    # enforce monotone non-decreasing when going backwards
    adj_rev = np.minimum.accumulate(adj[::-1])[::-1]

    out = np.empty(m)
    out[order] = np.clip(adj_rev, 0, 1)
    padj[finite] = out
    return padj


@dataclass(frozen=True, eq=False)
class FilterResult:
    """
    Outcome of independent filtering.

    Attributes
    ----------
    padj : np.ndarray
        Adjusted p-values; NaN for untested and filtered genes.
    passed : np.ndarray of bool
        Genes at or above the chosen cutoff.
    threshold : float
        Chosen cutoff on mean normalized counts.
    theta : np.ndarray
        Quantiles that were tried.
    cutoffs : np.ndarray
        baseMean cutoffs corresponding to ``theta``.
    num_rejections : np.ndarray
        Rejections at ``alpha`` for each cutoff.
    """

    padj: np.ndarray
    passed: np.ndarray
    threshold: float
    theta: np.ndarray
    cutoffs: np.ndarray
    num_rejections: np.ndarray
    alpha_used: float = 0.05

    @property
    def n_filtered(self):
        return int((~self.passed).sum())

    @property
    def n_significant(self):
        return int(np.sum(self.padj[np.isfinite(self.padj)] < self.alpha_used))


def find_optimal_threshold(base_means, pvalues, alpha=0.05, n_cutoffs=50, upper_quantile=0.95):
    """
    Search mean-count cutoffs for the one that maximizes discoveries.

    Cutoffs are quantiles of ``base_means`` over ``n_cutoffs`` evenly spaced
    probabilities from the fraction of zero-mean genes to ``upper_quantile``.
    For each cutoff, genes with baseMean >= cutoff are BH-adjusted and the
    rejections at ``alpha`` counted. The first (lowest) cutoff reaching the
    maximum wins.

    Returns
    -------
    threshold : float
    theta : np.ndarray
    cutoffs : np.ndarray
    num_rejections : np.ndarray
    """
    base_means = np.asarray(base_means, dtype=float)
    pvalues = np.asarray(pvalues, dtype=float)

    lower_quantile = float(np.mean(base_means == 0))
    if lower_quantile >= upper_quantile:
        lower_quantile = 0.0
    theta = np.linspace(lower_quantile, upper_quantile, n_cutoffs)
    cutoffs = np.quantile(base_means, theta)

    num_rejections = np.zeros(n_cutoffs, dtype=int)
    for i, cutoff in enumerate(cutoffs):
        mask = base_means >= cutoff
        padj = benjamini_hochberg(np.where(mask, pvalues, np.nan))
        num_rejections[i] = int(np.sum(padj[np.isfinite(padj)] < alpha))

    # np.argmax returns the first maximum: ties go to the lower cutoff
    best = int(np.argmax(num_rejections))
    return float(cutoffs[best]), theta, cutoffs, num_rejections


def independent_filtering(base_means, pvalues, alpha=0.05, n_cutoffs=50, theta=None):
    """
    Perform independent filtering followed by BH adjustment.

    Parameters
    ----------
    base_means : np.ndarray
        Mean normalized counts per gene (filter criterion).
    pvalues : np.ndarray
        Raw p-values per gene (NaN = not testable).
    alpha : float, default 0.05
        FDR threshold for significance.
    n_cutoffs : int, default 50
        Number of quantile cutoffs to try.
    theta : float, optional
        Fixed baseMean cutoff; skips the search.

    Returns
    -------
    FilterResult

    Notes
    -----
    The filter criterion must be independent of the test statistic
    under the null hypothesis. Mean expression level satisfies this
    requirement because it's determined before differential expression
    testing.
    """
    base_means = np.asarray(base_means, dtype=float)
    pvalues = np.asarray(pvalues, dtype=float)

    if theta is not None:
        threshold = float(theta)
        thetas = np.array([np.nan])
        cutoffs = np.array([threshold])
        mask = base_means >= threshold
        padj = benjamini_hochberg(np.where(mask, pvalues, np.nan))
        num_rej = np.array([int(np.sum(padj[np.isfinite(padj)] < alpha))])
    else:
        threshold, thetas, cutoffs, num_rej = find_optimal_threshold(
            base_means, pvalues, alpha=alpha, n_cutoffs=n_cutoffs)

    passed = base_means >= threshold
    padj = benjamini_hochberg(np.where(passed, pvalues, np.nan))

    logger.info("Independent filtering: baseMean cutoff %.4g removes %d genes",
                threshold, int((~passed).sum()))

    return FilterResult(
        padj=padj,
        passed=passed,
        threshold=threshold,
        theta=thetas,
        cutoffs=cutoffs,
        num_rejections=num_rej,
        alpha_used=alpha,
    )


def adjust_pvalues(base_means, pvalues, alpha=0.05, filtering=True, n_cutoffs=50):
    """
    Adjusted p-values and the filter pass mask for the result table.

    With ``filtering=False`` this is plain BH over every finite p-value and
    all genes pass.
    """
    if filtering:
        res = independent_filtering(base_means, pvalues, alpha=alpha, n_cutoffs=n_cutoffs)
        return res.padj, res.passed, res

    padj = benjamini_hochberg(pvalues)
    return padj, np.ones(np.shape(pvalues), dtype=bool), None
