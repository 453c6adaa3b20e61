"""
CountModel container holding the count matrix and its sample design.

The container is validated once at construction and never mutated: the count
array is stored read-only and gene/sample identifiers as tuples. Everything
computed downstream (size factors, dispersions, test results, transforms) is a
pure function of a CountModel and a DEConfig.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

import numpy as np
import pandas as pd

from .design import Design, check_full_rank, create_design_matrix
from .exceptions import CountMatrixError, DesignError


def _duplicates(values):
    seen, dups = set(), []
    for v in values:
        if v in seen and v not in dups:
            dups.append(v)
        seen.add(v)
    return dups


class CountModel:
    """
    Immutable gene x sample count matrix plus design.

    Parameters
    ----------
    counts : array-like
        Raw count matrix (genes x samples) of non-negative integers.
    gene_ids : sequence of str
        Unique gene identifiers, one per row.
    sample_names : sequence of str
        Unique sample names, one per column.
    design : Design
        Condition assignment; its samples must be exactly ``sample_names``.

    Raises
    ------
    CountMatrixError
        Duplicate identifiers, wrong shape, negative, non-integer or missing
        values, or an all-zero matrix.
    DesignError
        Samples in the design that are absent from the matrix or vice versa.

    Examples
    --------
    >>> design = Design({"a": "ctrl", "b": "ctrl", "c": "trt", "d": "trt"}, "ctrl")
    >>> model = CountModel.from_dataframe(counts_df, design)
    >>> model.shape
    (2, 4)
    """

    def __init__(self, counts, gene_ids, sample_names, design):
        gene_ids = tuple(str(g) for g in gene_ids)
        sample_names = tuple(str(s) for s in sample_names)

        raw = np.asarray(counts)
        if raw.ndim != 2:
            raise CountMatrixError(f"Count matrix must be 2-dimensional, got {raw.ndim} dimensions")
        G, S = raw.shape
        if len(gene_ids) != G:
            raise CountMatrixError(f"Got {len(gene_ids)} gene ids for {G} rows")
        if len(sample_names) != S:
            raise CountMatrixError(f"Got {len(sample_names)} sample names for {S} columns")

        dup_genes = _duplicates(gene_ids)
        if dup_genes:
            raise CountMatrixError(f"Duplicate gene identifiers: {dup_genes[:10]}")
        dup_samples = _duplicates(sample_names)
        if dup_samples:
            raise CountMatrixError(f"Duplicate sample names: {dup_samples}")

        try:
            values = raw.astype(float)
        except (TypeError, ValueError) as e:
            raise CountMatrixError(f"Counts must be numeric: {e}") from e
        if not np.all(np.isfinite(values)):
            bad = [gene_ids[i] for i in np.where(~np.isfinite(values).all(axis=1))[0][:10]]
            raise CountMatrixError(f"Counts contain missing or infinite values (genes {bad})")
        if np.any(values < 0):
            bad = [gene_ids[i] for i in np.where((values < 0).any(axis=1))[0][:10]]
            raise CountMatrixError(f"Counts must be non-negative (genes {bad})")
        if np.any(values != np.round(values)):
            bad = [gene_ids[i] for i in np.where((values != np.round(values)).any(axis=1))[0][:10]]
            raise CountMatrixError(f"Counts must be integers (genes {bad})")
        if G == 0 or not np.any(values > 0):
            raise CountMatrixError("Count matrix is empty or all zero")

        if not isinstance(design, Design):
            raise TypeError("design must be a Design")
        missing_in_matrix = [s for s in design.samples if s not in set(sample_names)]
        missing_in_design = [s for s in sample_names if s not in design.labels]
        if missing_in_matrix:
            raise DesignError(f"Samples in design but not in count matrix: {missing_in_matrix}")
        if missing_in_design:
            raise DesignError(f"Samples in count matrix but not in design: {missing_in_design}")

        values.setflags(write=False)
        self._counts = values
        self._gene_ids = gene_ids
        self._sample_names = sample_names
        self._design = design
        self._coldata = design.coldata(sample_names)
        X, columns = create_design_matrix(self._coldata, design.factor_name)
        if not check_full_rank(X):
            raise DesignError(f"Design matrix with columns {columns} is not full rank")
        X.setflags(write=False)
        self._design_matrix = X
        self._design_columns = tuple(columns)

    @classmethod
    def from_dataframe(cls, counts_df, design):
        """Build from a DataFrame indexed by gene id with one column per sample."""
        if not isinstance(counts_df, pd.DataFrame):
            raise TypeError("counts_df must be a pandas DataFrame")
        return cls(counts_df.values, counts_df.index, counts_df.columns, design)

    @property
    def counts(self):
        """Read-only raw count array (genes x samples)."""
        return self._counts

    @property
    def gene_ids(self):
        return self._gene_ids

    @property
    def sample_names(self):
        return self._sample_names

    @property
    def design(self):
        return self._design

    @property
    def coldata(self):
        return self._coldata.copy()

    @property
    def design_matrix(self):
        """Treatment-coded design matrix (samples x parameters), read-only."""
        return self._design_matrix

    @property
    def design_columns(self):
        return self._design_columns

    @property
    def shape(self):
        return self._counts.shape

    def condition_labels(self):
        """Condition label per sample, in column order."""
        return np.array([self._design.labels[s] for s in self._sample_names])

    def to_dataframe(self, values=None):
        """Wrap ``values`` (default: raw counts) with gene and sample labels."""
        data = self._counts if values is None else values
        return pd.DataFrame(np.array(data), index=list(self._gene_ids),
                            columns=list(self._sample_names))

    def __repr__(self):
        G, S = self._counts.shape
        return f"CountModel with {G} genes and {S} samples ({self._design!r})"
