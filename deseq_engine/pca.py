"""
Principal component projection of transformed expression data.

The numbers behind DESeq2's ``plotPCA(returnData=TRUE)``: sample coordinates
on the leading components of the most variable genes, and the fraction of
variance each component explains. Rendering is left to the caller.
"""

import logging
import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .exceptions import PCADegenerateWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PCAResult:
    """
    Attributes
    ----------
    coordinates : pd.DataFrame
        Samples x components ("PC1", "PC2", ...), plus a ``group`` column
        when groups were supplied.
    explained_variance : pd.Series
        Fraction of total variance per component, descending.
    genes_used : tuple of str
        The top-variance genes the projection was computed from.
    degenerate : bool
        True when the input had no variance to decompose.
    """

    coordinates: pd.DataFrame
    explained_variance: pd.Series
    genes_used: tuple
    degenerate: bool = False


def plot_pca_data(transformed, n_top=500, n_components=2, scale=False, groups=None):
    """
    PCA of the top-variance genes of a transformed matrix.

    Parameters
    ----------
    transformed : pd.DataFrame or np.ndarray
        Transformed expression data (genes x samples), e.g. from ``vst``.
    n_top : int, default 500
        Number of most variable genes to use.
    n_components : int, default 2
        Number of components to report (capped at the number of samples).
    scale : bool, default False
        Scale each gene to unit variance after centring.
    groups : mapping or sequence, optional
        Per-sample label added as a ``group`` column.

    Returns
    -------
    PCAResult
    """
    if isinstance(transformed, pd.DataFrame):
        data = transformed.values.astype(float)
        sample_names = [str(s) for s in transformed.columns]
        gene_ids = [str(g) for g in transformed.index]
    else:
        data = np.asarray(transformed, dtype=float)
        sample_names = [f"sample{j + 1}" for j in range(data.shape[1])]
        gene_ids = [f"gene{i + 1}" for i in range(data.shape[0])]

    G, S = data.shape
    k = min(n_components, S)

    # Select top variable genes (stable sort keeps input order on ties)
    var_genes = np.var(data, axis=1)
    top_idx = np.sort(np.argsort(-var_genes, kind="mergesort")[:min(n_top, G)])
    data_subset = data[top_idx, :]

    # Center the data
    data_centered = data_subset - data_subset.mean(axis=1, keepdims=True)
    if scale:
        sd = data_centered.std(axis=1, ddof=1, keepdims=True) if S > 1 else np.ones((len(top_idx), 1))
        with np.errstate(divide="ignore", invalid="ignore"):
            data_centered = np.where(sd > 0, data_centered / sd, 0.0)

    columns = [f"PC{i + 1}" for i in range(k)]
    degenerate = False
    total = float(np.sum(data_centered ** 2))
    if total <= np.finfo(float).eps * max(data_centered.size, 1):
        degenerate = True
    else:
        try:
            U, S_vals, Vt = np.linalg.svd(data_centered.T, full_matrices=False)
        except np.linalg.LinAlgError:
            degenerate = True

    if degenerate:
        msg = "PCA input has no variance across samples; components are all zero"
        logger.warning(msg)
        warnings.warn(msg, PCADegenerateWarning, stacklevel=2)
        coords = np.zeros((S, k))
        var_exp = np.zeros(k)
    else:
        coords = U[:, :k] * S_vals[:k]
        var_exp = (S_vals ** 2) / np.sum(S_vals ** 2)
        var_exp = np.r_[var_exp, np.zeros(max(k - len(var_exp), 0))][:k]
        coords = np.hstack([coords, np.zeros((S, k - coords.shape[1]))])
        logger.info("PCA on %d genes: %s", len(top_idx),
                    ", ".join(f"{c} {v:.1%}" for c, v in zip(columns, var_exp)))

    coordinates = pd.DataFrame(coords, index=sample_names, columns=columns)
    if groups is not None:
        if hasattr(groups, "keys"):
            coordinates["group"] = [groups[s] for s in sample_names]
        else:
            coordinates["group"] = list(groups)

    return PCAResult(
        coordinates=coordinates,
        explained_variance=pd.Series(var_exp, index=columns, name="explained_variance"),
        genes_used=tuple(gene_ids[i] for i in top_idx),
        degenerate=degenerate,
    )
