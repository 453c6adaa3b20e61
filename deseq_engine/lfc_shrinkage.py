"""
Log fold change shrinkage with a zero-centred Normal prior.

Noisy fold changes of low-count genes are pulled toward zero in proportion
to their standard error, which makes the fold changes comparable for ranking.
The Wald statistic and p-values are not changed.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

import logging

import numpy as np

from .utils import match_upper_quantile_for_variance

logger = logging.getLogger(__name__)


def estimate_lfc_prior_variance(log2_fc_mle, upper_quantile=0.05):
    """
    Prior variance matched to the upper quantile of |MLE log2 fold changes|.

    Falls back to 1.0 when fewer than 10 fold changes are available.
    """
    lfc = np.asarray(log2_fc_mle, dtype=float)
    valid = np.isfinite(lfc)
    if valid.sum() < 10:
        return 1.0
    prior_var = match_upper_quantile_for_variance(lfc[valid], upper_quantile=upper_quantile)
    return max(prior_var, 1e-6)


def normal_shrinkage(log2_fc_mle, se_log2, prior_mean=0.0, prior_var=None):
    """
    Normal prior shrinkage (original DESeq2 method).

    Parameters
    ----------
    log2_fc_mle : np.ndarray
        Maximum likelihood estimates of log2 fold changes.
    se_log2 : np.ndarray
        Standard errors of the log2 fold change estimates.
    prior_mean : float, default 0.0
        Mean of the Normal prior.
    prior_var : float, optional
        Variance of the Normal prior. If None, estimated from data.

    Returns
    -------
    np.ndarray
        Shrunken log2 fold change estimates (NaN where the MLE is NaN).

    Notes
    -----
    The shrinkage formula for Normal prior with Normal likelihood:

        beta_shrunk = (prior_var * beta_mle + sigma^2 * prior_mean) /
                      (prior_var + sigma^2)

    When prior_mean = 0, this simplifies to:
        beta_shrunk = beta_mle * (prior_var / (prior_var + sigma^2))
    """
    lfc = np.asarray(log2_fc_mle, dtype=float)
    se = np.asarray(se_log2, dtype=float)

    if prior_var is None:
        prior_var = estimate_lfc_prior_variance(lfc)
    logger.info("Normal LFC shrinkage with prior variance %.4f", prior_var)

    with np.errstate(divide="ignore", invalid="ignore"):
        shrink_weight = prior_var / (prior_var + se ** 2)

    lfc_shrunk = shrink_weight * lfc + (1 - shrink_weight) * prior_mean

    return np.where(np.isfinite(lfc) & np.isfinite(se), lfc_shrunk, np.nan)
