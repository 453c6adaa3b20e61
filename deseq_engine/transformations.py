"""
Variance stabilizing transformations for RNA-seq count data.

This module implements three transformations commonly used to prepare
count data for downstream analysis like PCA, clustering, and visualization:
- normTransform / pseudo-log2 (log2 of normalized counts + 1)
- rlog (Regularized Log Transformation)
- VST (Variance Stabilizing Transformation)

rlog and VST depend on the fitted mean-dispersion trend. With ``blind=True``
the trend is re-estimated with an intercept-only design so that condition
labels cannot leak into the transformed values.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
    - Anders S, Huber W (2010). Differential expression analysis for sequence
      count data. Genome Biology 11:R106
"""

import logging

import numpy as np
import pandas as pd
from scipy.interpolate import CubicSpline
from scipy.special import gammaln

from .config import DEConfig, TransformKind, TrendFitType
from .design import intercept_only_design
from .dispersion import estimate_dispersions
from .size_factors import estimate_size_factors
from .utils import match_upper_quantile_for_variance

logger = logging.getLogger(__name__)

LN2 = np.log(2.0)


def normTransform(counts, size_factors, pseudocount=1.0):
    """
    Simple log2 transformation of normalized counts.

    This is the simplest variance-stabilizing approach:
    log2(normalized_counts + pseudocount)

    Notes
    -----
    This is the fastest transformation but provides less effective
    variance stabilization than VST or rlog, especially for genes
    with low counts.
    """
    counts = np.asarray(counts, dtype=float)
    size_factors = np.asarray(size_factors, dtype=float)
    return np.log2(counts / size_factors + pseudocount)


def _local_vst(norm_counts, size_factors, trend_fn, base_means):
    """Numerically integrated VST for a non-parametric trend, scaled to log2."""
    max_count = max(float(norm_counts.max()), 1.0)
    xg = np.sinh(np.linspace(0.0, np.arcsinh(max_count), 1000))[1:]
    xim = np.mean(1.0 / size_factors)
    integrand = 1.0 / np.sqrt(xim * xg + trend_fn(xg) * xg ** 2)

    mid = (xg[1:] + xg[:-1]) / 2
    cum = np.cumsum(np.diff(xg) * (integrand[1:] + integrand[:-1]) / 2)
    splf = CubicSpline(np.arcsinh(mid), cum, extrapolate=True)

    expressed = base_means[base_means > 0]
    h1, h2 = np.quantile(expressed, [0.95, 0.999])
    if not h2 > h1:
        h1, h2 = expressed.min(), expressed.max()
    if not h2 > h1:
        logger.warning("VST scaling degenerate (all genes share one mean); returning unscaled integral")
        return splf(np.arcsinh(norm_counts))

    eta = (np.log2(h2) - np.log2(h1)) / (splf(np.arcsinh(h2)) - splf(np.arcsinh(h1)))
    xi = np.log2(h1) - eta * splf(np.arcsinh(h1))
    return eta * splf(np.arcsinh(norm_counts)) + xi


def vst(counts, size_factors, trend_fn, base_means=None):
    """
    Variance Stabilizing Transformation.

    Transforms count data to approximately homoskedastic values,
    stabilizing variance across the range of mean expression.

    For a parametric trend dispersion = a/mean + b the closed form is

        log2((1 + a + 2bq + 2 sqrt(bq(1 + a + bq))) / (4b))

    for a constant dispersion alpha

        (2 asinh(sqrt(alpha q)) - log(alpha) - log(4)) / log(2)

    and for a local trend the integral of 1/sqrt(var(q)) is computed
    numerically and rescaled to match log2 at high counts.

    Parameters
    ----------
    counts : np.ndarray
        Raw count matrix (genes x samples).
    size_factors : np.ndarray
        Size factors for each sample.
    trend_fn : DispersionTrend
        Fitted mean-dispersion trend.
    base_means : np.ndarray, optional
        Mean normalized counts, needed for the local trend scaling.

    Returns
    -------
    np.ndarray
        VST transformed values with same shape as input.
    """
    counts = np.asarray(counts, dtype=float)
    size_factors = np.asarray(size_factors, dtype=float)
    q = counts / size_factors

    if trend_fn.kind is TrendFitType.PARAMETRIC:
        a, b = trend_fn.coefficients
        return np.log((1 + a + 2 * b * q + 2 * np.sqrt(b * q * (1 + a + b * q))) / (4 * b)) / LN2
    if trend_fn.kind is TrendFitType.MEAN:
        alpha = trend_fn.constant
        return (2 * np.arcsinh(np.sqrt(alpha * q)) - np.log(alpha) - np.log(4)) / LN2
    if trend_fn.kind is TrendFitType.LOCAL:
        if base_means is None:
            base_means = q.mean(axis=1)
        return _local_vst(q, size_factors, trend_fn, np.asarray(base_means, dtype=float))
    raise ValueError(f"Unknown trend kind: {trend_fn.kind}")


def _nb_loglik_rows(y, mu, alpha):
    r = 1.0 / alpha
    return np.sum(gammaln(y + r) - gammaln(r) - gammaln(y + 1.0)
                  + r * np.log(r / (r + mu)) + y * np.log(mu / (r + mu)), axis=1)


def rlog(counts, size_factors, trend_fn, max_iter=100, tol=1e-8, min_mu=0.5):
    """
    Regularized Log Transformation.

    Each gene is fitted with an intercept plus one coefficient per sample,
    dispersion fixed at the trend value for the gene's mean, and a
    zero-centred Normal prior on the sample coefficients. The prior variance
    is matched to the upper quantile of observed log2 fold changes from the
    gene means, weighted by 1 / (1/mean + dispersion), so low-count genes
    are shrunk harder toward their mean.

    Parameters
    ----------
    counts : np.ndarray
        Raw count matrix (genes x samples).
    size_factors : np.ndarray
        Size factors for each sample.
    trend_fn : DispersionTrend
        Fitted mean-dispersion trend.

    Returns
    -------
    np.ndarray
        rlog values (log2 scale); all-zero genes are 0.
    """
    counts = np.asarray(counts, dtype=float)
    sf = np.asarray(size_factors, dtype=float)
    S = counts.shape[1]

    norm_counts = counts / sf
    base_means = norm_counts.mean(axis=1)
    expressed = base_means > 0
    transformed = np.zeros_like(counts)
    if not expressed.any():
        return transformed

    y = counts[expressed]
    bm = base_means[expressed]
    disp = trend_fn(bm)

    # prior variance of the per-sample log2 fold changes
    lfc = np.log2(norm_counts[expressed] + 0.5) - np.log2(bm + 0.5)[:, None]
    weights = np.repeat(1.0 / (1.0 / bm + disp), S)
    prior_var = max(match_upper_quantile_for_variance(lfc.ravel(), weights), 1e-6)
    logger.info("rlog beta prior variance %.4f", prior_var)

    # intercept + one column per sample; ridge on natural-log scale
    X = np.hstack([np.ones((S, 1)), np.eye(S)])
    ridge = np.diag(np.r_[1e-6, np.full(S, 1.0 / prior_var / LN2 ** 2)])

    beta = np.zeros((y.shape[0], S + 1))
    beta[:, 0] = np.log(bm)
    mu = np.maximum(sf * np.exp(beta @ X.T), min_mu)
    alpha = disp[:, None]
    dev = -2.0 * _nb_loglik_rows(y, mu, alpha)
    converged = np.zeros(y.shape[0], dtype=bool)

    for iteration in range(max_iter):
        w = mu / (1.0 + alpha * mu)
        z = np.log(mu / sf) + (y - mu) / mu
        A = np.einsum("sp,gs,sq->gpq", X, w, X) + ridge
        rhs = np.einsum("sp,gs->gp", X, w * z)
        beta = np.linalg.solve(A, rhs[..., None])[..., 0]
        mu = np.maximum(sf * np.exp(beta @ X.T), min_mu)
        dev_new = -2.0 * _nb_loglik_rows(y, mu, alpha)
        converged |= np.abs(dev_new - dev) / (np.abs(dev_new) + 0.1) < tol
        dev = dev_new
        if converged.all():
            break
    else:
        logger.warning("rlog: %d genes did not converge", int((~converged).sum()))

    transformed[expressed] = (beta @ X.T) / LN2
    return transformed


def transform(model, size_factors=None, kind=None, blind=None, dispersions=None, config=None):
    """
    Transform a CountModel for visualization or clustering.

    Parameters
    ----------
    model : CountModel
    size_factors : array-like, optional
        Estimated from the model when omitted.
    kind : TransformKind or str, optional
        Defaults to ``config.transform``.
    blind : bool, optional
        Re-estimate the dispersion trend ignoring condition labels. Defaults
        to ``config.blind_for_transform()`` (True unless configured).
    dispersions : DispersionEstimate, optional
        Design-aware dispersions to reuse when ``blind=False``.
    config : DEConfig, optional

    Returns
    -------
    pd.DataFrame
        Transformed values with the model's gene and sample labels.
    """
    config = config or DEConfig()
    kind = TransformKind(kind if kind is not None else config.transform)
    blind = config.blind_for_transform() if blind is None else blind

    if size_factors is None:
        size_factors = estimate_size_factors(model)
    sf = np.asarray(size_factors, dtype=float)
    counts = model.counts

    if kind is TransformKind.PSEUDO_LOG2:
        values = normTransform(counts, sf)
    else:
        if blind or dispersions is None:
            X = intercept_only_design(counts.shape[1])[0] if blind else model.design_matrix
            logger.info("Estimating %s dispersion trend for %s", "blind" if blind else "design-aware",
                        kind.value)
            dispersions = estimate_dispersions(counts, sf, X, config)

        if kind is TransformKind.VST:
            values = vst(counts, sf, dispersions.trend_fn, dispersions.base_mean)
        elif kind is TransformKind.RLOG:
            values = rlog(counts, sf, dispersions.trend_fn, max_iter=config.max_iter, tol=config.tol)
        else:
            raise ValueError(f"Unknown transform: {kind}")

    return pd.DataFrame(values, index=list(model.gene_ids), columns=list(model.sample_names))
