import logging

import numpy as np
import pandas as pd

from .exceptions import SizeFactorError

logger = logging.getLogger(__name__)


def estimate_size_factors_for_matrix(
    counts,
    loc_func=np.median,
    control_genes=None,
    type="ratio"
):
    """
    Median-of-ratios size factors (DESeq2::estimateSizeFactorsForMatrix).

    Parameters
    ----------
    counts : np.ndarray
        2D (genes x samples) raw counts.
    loc_func : function
        Location function, default median.
    control_genes : list or ndarray or None
        Optional subset (indices or boolean mask) to compute size factors.
    type : {"ratio", "poscounts"}
        "ratio" discards every gene with a zero count; "poscounts" takes the
        geometric mean over the positive counts only.

    Returns
    -------
    np.ndarray of size factors (length = num samples)

    Raises
    ------
    SizeFactorError
        If no gene has a positive geometric mean.
    """

    counts = np.asarray(counts, dtype=float)
    G, S = counts.shape

    # ---- Determine geometric means per gene ----
    if type == "ratio":
        with np.errstate(divide="ignore", invalid="ignore"):
            log_geomeans = np.mean(np.log(counts), axis=1)

    elif type == "poscounts":
        lc = np.log(counts, where=(counts > 0), out=np.zeros_like(counts))
        n_pos = np.maximum((counts > 0).sum(axis=1), 1)
        log_geomeans = lc.sum(axis=1) / n_pos
        log_geomeans[counts.sum(axis=1) == 0] = -np.inf

    else:
        raise ValueError(f"Unknown size factor type: {type!r}")

    # ---- Apply control genes (optional) ----
    if control_genes is not None:
        log_geomeans = log_geomeans[control_genes]
        counts = counts[control_genes, :]

    usable = np.isfinite(log_geomeans)
    if not usable.any():
        raise SizeFactorError(
            "every gene contains at least one zero; cannot compute size factors "
            "(try type='poscounts')")

    logger.debug("Size factors from %d of %d genes", usable.sum(), G)

    # ---- Compute per-sample size factors ----
    size_factors = np.zeros(S)

    for j in range(S):
        c = counts[:, j]
        mask = usable & (c > 0)
        if not mask.any():
            raise SizeFactorError(f"sample {j} has no positive counts among usable genes")

        # per-sample median of log ratios
        vals = np.log(c[mask]) - log_geomeans[mask]
        size_factors[j] = np.exp(loc_func(vals))

    if type == "poscounts":
        # poscounts factors are not centred by construction
        size_factors = size_factors / np.exp(np.mean(np.log(size_factors)))

    return size_factors


def estimate_size_factors(counts, type="ratio", loc_func=np.median, control_genes=None):
    """
    Size factors for a CountModel (as a Series) or a raw matrix (as an array).
    """
    from .deseq_dataset import CountModel

    if isinstance(counts, CountModel):
        sf = estimate_size_factors_for_matrix(
            counts.counts, loc_func=loc_func, control_genes=control_genes, type=type)
        logger.info("Estimated size factors for %d samples (range %.3f - %.3f)",
                    len(sf), sf.min(), sf.max())
        return pd.Series(sf, index=list(counts.sample_names), name="sizeFactor")

    return estimate_size_factors_for_matrix(
        counts,
        loc_func=loc_func,
        control_genes=control_genes,
        type=type
    )
