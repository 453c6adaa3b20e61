"""
Sample design for a single-factor differential expression analysis.

A Design maps every sample to one condition label and names the reference
(baseline) level. The level order is fixed when the Design is built, with the
reference first, so treatment coding of the design matrix never depends on
label sort order.

References:
    - Wilkinson GN, Rogers CE (1973). Symbolic description of factorial
      models for analysis of variance. Applied Statistics 22:392-399
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

from types import MappingProxyType

import numpy as np
import pandas as pd
from patsy import dmatrix

from .exceptions import DesignError


class Design:
    """
    Immutable condition assignment with a designated reference level.

    Parameters
    ----------
    sample_to_label : Mapping[str, str]
        Condition label for every sample.
    reference : str
        Baseline level. Must be one of the observed labels.
    factor_name : str, default "condition"
        Name of the factor, used for design matrix column names.

    Attributes
    ----------
    levels : tuple of str
        Observed levels, reference first, the remaining levels in order of
        first appearance.
    reference_index : int
        Always 0.

    Examples
    --------
    >>> design = Design({"s1": "untrt", "s2": "untrt", "s3": "trt", "s4": "trt"},
    ...                 reference="untrt")
    >>> design.levels
    ('untrt', 'trt')
    """

    reference_index = 0

    def __init__(self, sample_to_label, reference, factor_name="condition"):
        labels = {}
        for sample, label in dict(sample_to_label).items():
            if label is None or (isinstance(label, float) and np.isnan(label)):
                raise DesignError(f"Sample {sample!r} has no condition label")
            labels[str(sample)] = str(label)

        if not labels:
            raise DesignError("Design must contain at least one sample")

        reference = str(reference)
        observed = list(dict.fromkeys(labels.values()))
        if reference not in observed:
            raise DesignError(
                f"Reference level {reference!r} is not among the observed labels {observed}")
        if len(observed) < 2:
            raise DesignError(
                f"Design needs at least two condition levels, found only {observed}")

        self._labels = MappingProxyType(labels)
        self._reference = reference
        self._levels = tuple([reference] + [lvl for lvl in observed if lvl != reference])
        self._factor_name = factor_name

    @classmethod
    def from_coldata(cls, coldata, condition_column, reference):
        """Build a Design from a sample sheet indexed by sample name."""
        if not isinstance(coldata, pd.DataFrame):
            raise TypeError("coldata must be a pandas DataFrame")
        if condition_column not in coldata.columns:
            raise DesignError(f"Column {condition_column!r} not found in sample sheet")
        if coldata.index.has_duplicates:
            dups = sorted(coldata.index[coldata.index.duplicated()].astype(str).unique())
            raise DesignError(f"Duplicate sample names in sample sheet: {dups}")
        return cls(coldata[condition_column].to_dict(), reference,
                   factor_name=condition_column)

    @property
    def samples(self):
        return tuple(self._labels)

    @property
    def labels(self):
        return self._labels

    @property
    def reference(self):
        return self._reference

    @property
    def levels(self):
        return self._levels

    @property
    def factor_name(self):
        return self._factor_name

    def level_index(self, level):
        """Position of ``level`` in ``levels``; raises DesignError if unknown."""
        try:
            return self._levels.index(str(level))
        except ValueError:
            raise DesignError(f"Unknown condition level {level!r}; levels are {self._levels}") from None

    def coldata(self, sample_order):
        """Sample table in ``sample_order`` with an ordered categorical factor."""
        values = [self._labels[s] for s in sample_order]
        factor = pd.Categorical(values, categories=list(self._levels), ordered=False)
        return pd.DataFrame({self._factor_name: factor}, index=list(sample_order))

    def __eq__(self, other):
        if not isinstance(other, Design):
            return NotImplemented
        return (dict(self._labels) == dict(other._labels)
                and self._reference == other._reference
                and self._factor_name == other._factor_name)

    def __hash__(self):
        return hash((tuple(sorted(self._labels.items())), self._reference, self._factor_name))

    def __repr__(self):
        return (f"Design({len(self._labels)} samples, {self._factor_name}: "
                f"{' | '.join(self._levels)}, reference={self._reference!r})")


def create_design_matrix(coldata, factor_name="condition"):
    """
    Create a treatment-coded design matrix from sample metadata.

    Uses patsy with the category order of ``coldata[factor_name]``, so the
    first category is the reference and is absorbed into the intercept.

    Parameters
    ----------
    coldata : pd.DataFrame
        Sample metadata; ``factor_name`` must be a pandas Categorical.
    factor_name : str
        Column holding the condition factor.

    Returns
    -------
    np.ndarray
        Design matrix (samples x parameters).
    list
        Column names, e.g. ``['Intercept', 'condition[T.trt]']``.
    """
    if not isinstance(coldata, pd.DataFrame):
        raise TypeError("coldata must be a pandas DataFrame")

    design_info = dmatrix(f"~ Q('{factor_name}')", data=coldata, return_type="dataframe")
    column_names = [c.replace(f"Q('{factor_name}')", factor_name) for c in design_info.columns]

    return np.asarray(design_info.values, dtype=float), column_names


def intercept_only_design(n_samples):
    """Design matrix for blind dispersion estimation (all samples one group)."""
    return np.ones((n_samples, 1), dtype=float), ["Intercept"]


def check_full_rank(X):
    """
    Check if a design matrix is full rank.

    A full-rank design matrix is required for unique parameter
    estimation in GLMs.
    """
    X = np.asarray(X, dtype=float)
    rank = np.linalg.matrix_rank(X)
    return rank == min(X.shape)
