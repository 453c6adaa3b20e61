"""
Exceptions and warnings raised by the differential expression engine.

Fatal preconditions (bad counts, inconsistent design) raise subclasses of
DESeqConfigurationError before any statistics are computed. Numerical
fallbacks that still produce a usable answer are reported as warnings.
"""


class DESeqError(Exception):
    """Base class for all errors raised by deseq_engine."""


class DESeqConfigurationError(DESeqError, ValueError):
    """An input or configuration precondition is violated."""


class CountMatrixError(DESeqConfigurationError):
    """The count matrix is malformed (duplicates, negative or non-integer values, all zero)."""


class DesignError(DESeqConfigurationError):
    """The sample design does not match the count matrix or cannot be fitted."""


class SizeFactorError(DESeqConfigurationError):
    """Size factors cannot be estimated from the count matrix."""


class DESeqWarning(UserWarning):
    """Base class for non-fatal numerical fallbacks."""


class DispersionFitWarning(DESeqWarning):
    """The dispersion trend fell back to a simpler form."""


class PCADegenerateWarning(DESeqWarning):
    """The PCA input has (near) zero variance; components are not informative."""
