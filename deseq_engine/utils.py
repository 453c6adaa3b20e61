"""
Utility functions for DESeq2-like analysis.

This module provides helper functions for count normalization and the
robust variance matching shared by the shrinkage estimators.

References:
    - Anders S, Huber W (2010). Differential expression analysis for sequence
      count data. Genome Biology 11:R106
"""

import numpy as np
import pandas as pd
from scipy.stats import norm


def _unwrap(counts):
    if isinstance(counts, pd.DataFrame):
        return counts.values, counts.index, counts.columns
    return counts, None, None


def normalize_counts(counts, size_factors):
    """
    Normalize counts by size factors.

    This is the standard DESeq2 normalization method using
    median-of-ratios size factors.

    Parameters
    ----------
    counts : np.ndarray or pd.DataFrame
        Raw count matrix (genes x samples).
    size_factors : array-like
        Size factors for each sample.

    Returns
    -------
    np.ndarray or pd.DataFrame
        Normalized counts with same shape as input.

    Examples
    --------
    >>> import numpy as np
    >>> from deseq_engine.size_factors import estimate_size_factors
    >>> counts = np.array([[100, 200], [50, 100], [25, 50]])
    >>> sf = estimate_size_factors(counts)
    >>> norm_counts = normalize_counts(counts, sf)
    """
    values, index, columns = _unwrap(counts)
    values = np.asarray(values, dtype=float)
    size_factors = np.asarray(size_factors, dtype=float)

    normalized = values / size_factors

    if index is not None:
        return pd.DataFrame(normalized, index=index, columns=columns)
    return normalized


def fpm(counts, size_factors=None):
    """
    Fragments Per Million (FPM), also known as CPM.

    Without size factors this is plain library-size scaling; with size
    factors the counts are normalized first and then rescaled to a common
    total of one million (DESeq2's robust fpm).
    """
    values, index, columns = _unwrap(counts)
    values = np.asarray(values, dtype=float)

    if size_factors is None:
        lib_sizes = values.sum(axis=0)
        normalized = values / lib_sizes * 1e6
    else:
        normalized = values / np.asarray(size_factors, dtype=float)
        normalized = normalized / normalized.sum(axis=0) * 1e6

    if index is not None:
        return pd.DataFrame(normalized, index=index, columns=columns)
    return normalized


def weighted_quantile(x, weights, q):
    """
    Smallest value of ``x`` whose normalized cumulative weight reaches ``q``.
    """
    x = np.asarray(x, dtype=float)
    weights = np.asarray(weights, dtype=float)
    order = np.argsort(x, kind="mergesort")
    cum = np.cumsum(weights[order])
    cum = cum / cum[-1]
    idx = min(int(np.searchsorted(cum, q, side="left")), len(x) - 1)
    return x[order][idx]


def match_upper_quantile_for_variance(x, weights=None, upper_quantile=0.05):
    """
    Variance of a zero-centred Normal whose upper quantile matches ``|x|``.

    The (weighted) 1 - ``upper_quantile`` quantile of |x| is equated with the
    two-sided Normal quantile, which ignores the bulk of near-zero values
    and the extreme tail alike.
    """
    x = np.asarray(x, dtype=float)
    if weights is None:
        q = np.quantile(np.abs(x), 1 - upper_quantile)
    else:
        q = weighted_quantile(np.abs(x), weights, 1 - upper_quantile)
    sd = q / norm.ppf(1 - upper_quantile / 2)
    return float(sd ** 2)
