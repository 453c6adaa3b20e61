"""
Mean-dispersion trend fitting for DESeq2-like analysis.

Three trend shapes are supported, selected by TrendFitType:

- parametric: dispersion = a / mean + b, fitted by a Gamma-family GLM with
  identity link (as DESeq2's ``parametricDispersionFit``)
- local: LOWESS of log dispersion on log mean, forced to be non-increasing
- mean: a single constant

A parametric fit that fails falls back to the local fit; too few usable
genes fall back to a constant median dispersion.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
    - Cleveland WS (1979). Robust Locally Weighted Regression and Smoothing
      Scatterplots. JASA 74:829-836
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import statsmodels.api as sm
from scipy.stats import trim_mean
from statsmodels.nonparametric.smoothers_lowess import lowess
from statsmodels.tools.sm_exceptions import DomainWarning

from .config import TrendFitType
from .exceptions import DispersionFitWarning

logger = logging.getLogger(__name__)


class TrendFitFailed(Exception):
    """Raised internally when the parametric fit does not converge."""


@dataclass(frozen=True, eq=False)
class DispersionTrend:
    """
    Fitted dispersion as a function of mean normalized count.

    Exactly one group of fields is meaningful, depending on ``kind``:
    ``coefficients`` (a, b) for parametric, ``knots`` for local and
    ``constant`` for mean.
    """

    kind: TrendFitType
    coefficients: Optional[Tuple[float, float]] = None
    knots: Optional[Tuple[np.ndarray, np.ndarray]] = None
    constant: Optional[float] = None
    min_disp: float = 1e-8

    def __call__(self, means):
        means = np.asarray(means, dtype=float)
        if self.kind is TrendFitType.PARAMETRIC:
            a, b = self.coefficients
            val = a / np.maximum(means, 1e-8) + b
        elif self.kind is TrendFitType.LOCAL:
            x_smooth, y_smooth = self.knots
            log_means = np.log10(np.maximum(means, 1e-8))
            val = 10 ** np.interp(log_means, x_smooth, y_smooth,
                                  left=y_smooth[0], right=y_smooth[-1])
        elif self.kind is TrendFitType.MEAN:
            val = np.full_like(means, self.constant, dtype=float)
        else:
            raise ValueError(f"Unknown trend kind: {self.kind}")
        return np.maximum(val, self.min_disp)

    def describe(self):
        if self.kind is TrendFitType.PARAMETRIC:
            return "parametric: a={:.4g}, b={:.4g}".format(*self.coefficients)
        if self.kind is TrendFitType.LOCAL:
            return f"local: {len(self.knots[0])} knots"
        return f"constant: {self.constant:.4g}"


def _usable_for_fit(base_means, disp_gw, min_disp):
    return (np.isfinite(disp_gw) & np.isfinite(base_means)
            & (base_means > 0) & (disp_gw >= 100 * min_disp))


def fit_parametric_dispersion_trend(base_means, disp_gw, min_disp=1e-8, max_iter=10):
    """
    Fit dispersion = a / mean + b with a Gamma GLM (identity link).

    Genes whose dispersion / fit ratio falls outside (1e-4, 15) are dropped
    before each refit. Raises TrendFitFailed if a coefficient is not
    positive, the GLM fails, or the coefficients do not settle within
    ``max_iter`` rounds.
    """
    use = _usable_for_fit(base_means, disp_gw, min_disp)
    means = base_means[use]
    disps = disp_gw[use]
    X = np.column_stack([np.ones_like(means), 1.0 / means])

    # (b, a) in design column order: intercept first, then 1/mean
    coefs = np.array([0.1, 1.0])
    family = sm.families.Gamma(link=sm.families.links.Identity())

    for iteration in range(max_iter):
        fitted = coefs[0] + coefs[1] / means
        resid = disps / fitted
        good = (resid > 1e-4) & (resid < 15)
        if good.sum() < 3:
            raise TrendFitFailed("fewer than 3 genes left after residual filtering")

        old_coefs = coefs
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", DomainWarning)
                warnings.simplefilter("ignore", RuntimeWarning)
                res = sm.GLM(disps[good], X[good], family=family).fit(start_params=coefs)
        except (ValueError, np.linalg.LinAlgError, FloatingPointError) as e:
            raise TrendFitFailed(f"Gamma GLM failed: {e}") from e

        coefs = np.asarray(res.params, dtype=float)
        if not np.all(np.isfinite(coefs)) or not np.all(coefs > 0):
            raise TrendFitFailed(f"non-positive trend coefficients {coefs}")
        if np.sum(np.log(coefs / old_coefs) ** 2) < 1e-6 and res.converged:
            break
    else:
        raise TrendFitFailed(f"no convergence after {max_iter} iterations")

    b, a = coefs
    logger.info("Trend Coefficients: a=%.4f, b=%.4f", a, b)
    return DispersionTrend(TrendFitType.PARAMETRIC, coefficients=(float(a), float(b)),
                           min_disp=min_disp)


def fit_local_dispersion_trend(base_means, disp_gw, min_disp=1e-8, frac=0.2, it=3):
    """
    Fit dispersion trend using local regression (LOWESS).

    LOWESS fitting is performed on log-log scale for better behavior
    across the wide range of mean expression values. The smoothed curve is
    made non-increasing in the mean before interpolation.
    """
    use = _usable_for_fit(base_means, disp_gw, min_disp)

    x = np.log10(base_means[use])
    y = np.log10(disp_gw[use])

    order = np.argsort(x, kind="mergesort")
    x_sorted = x[order]
    y_sorted = y[order]

    delta = 0.01 * (x_sorted[-1] - x_sorted[0])
    smoothed = lowess(y_sorted, x_sorted, frac=frac, it=it, delta=delta, return_sorted=True)
    x_smooth = smoothed[:, 0]
    y_smooth = np.minimum.accumulate(smoothed[:, 1])

    if not np.all(np.isfinite(y_smooth)):
        raise TrendFitFailed("local fit produced non-finite values")

    return DispersionTrend(TrendFitType.LOCAL, knots=(x_smooth, y_smooth), min_disp=min_disp)


def fit_mean_dispersion(base_means, disp_gw, min_disp=1e-8):
    """
    Fit a constant dispersion across all genes (trimmed mean of usable genes).

    Useful for small datasets where there isn't enough information to
    estimate a mean-dispersion relationship.
    """
    use = _usable_for_fit(base_means, disp_gw, min_disp)
    constant = float(trim_mean(disp_gw[use], proportiontocut=0.001))
    return DispersionTrend(TrendFitType.MEAN, constant=constant, min_disp=min_disp)


def median_dispersion_trend(base_means, disp_gw, min_disp=1e-8):
    """Constant trend at the median gene-wise dispersion of expressed genes."""
    valid = np.isfinite(disp_gw) & (base_means > 0)
    constant = float(np.median(disp_gw[valid])) if valid.any() else float(min_disp)
    return DispersionTrend(TrendFitType.MEAN, constant=max(constant, min_disp), min_disp=min_disp)


def fit_dispersion_trend(base_means, disp_gw, fit_type=TrendFitType.PARAMETRIC,
                         min_disp=1e-8, min_genes=10):
    """
    Fit dispersion trend using the specified method.

    Parameters
    ----------
    base_means : np.ndarray
        Mean normalized counts per gene.
    disp_gw : np.ndarray
        Gene-wise dispersion estimates (NaN for all-zero genes).
    fit_type : TrendFitType or str
        Requested trend shape.
    min_disp : float
        Lower bound on the returned trend.
    min_genes : int
        Minimum number of usable genes; below it the median gene-wise
        dispersion is used as a constant trend.

    Returns
    -------
    DispersionTrend
    """
    fit_type = TrendFitType(fit_type)
    base_means = np.asarray(base_means, dtype=float)
    disp_gw = np.asarray(disp_gw, dtype=float)

    n_usable = int(_usable_for_fit(base_means, disp_gw, min_disp).sum())
    logger.info("Fitting dispersion trend (%s) on %d genes...", fit_type.value, n_usable)

    if n_usable < min_genes:
        trend = median_dispersion_trend(base_means, disp_gw, min_disp)
        msg = (f"only {n_usable} genes usable for the dispersion trend (minimum {min_genes}); "
               f"using the median gene-wise dispersion {trend.constant:.4g} for all genes")
        logger.warning(msg)
        warnings.warn(msg, DispersionFitWarning, stacklevel=2)
        return trend

    if fit_type is TrendFitType.PARAMETRIC:
        try:
            return fit_parametric_dispersion_trend(base_means, disp_gw, min_disp)
        except TrendFitFailed as e:
            msg = f"parametric dispersion fit failed ({e}); using local regression instead"
            logger.warning(msg)
            warnings.warn(msg, DispersionFitWarning, stacklevel=2)
            fit_type = TrendFitType.LOCAL

    if fit_type is TrendFitType.LOCAL:
        try:
            return fit_local_dispersion_trend(base_means, disp_gw, min_disp)
        except TrendFitFailed as e:
            trend = median_dispersion_trend(base_means, disp_gw, min_disp)
            msg = f"local dispersion fit failed ({e}); using constant {trend.constant:.4g}"
            logger.warning(msg)
            warnings.warn(msg, DispersionFitWarning, stacklevel=2)
            return trend

    if fit_type is TrendFitType.MEAN:
        return fit_mean_dispersion(base_means, disp_gw, min_disp)

    raise ValueError(f"Unknown fit_type: {fit_type}")
