"""
Reading count tables and sample sheets, writing result tables.

The statistics modules never touch the filesystem; everything that does
lives here and in the CLI.
"""

import logging
from pathlib import Path

import pandas as pd
import yaml

from .config import DEConfig
from .design import Design
from .exceptions import CountMatrixError, DESeqConfigurationError

logger = logging.getLogger(__name__)


def _separator(path):
    return "\t" if Path(path).suffix.lower() in (".tsv", ".txt", ".tab") else ","


def read_counts(path, gene_column=None, drop_columns=None):
    """
    Read a gene x sample count table.

    Parameters
    ----------
    path : str or Path
        CSV (or TSV for .tsv/.txt/.tab) with one row per gene.
    gene_column : str, optional
        Column holding gene ids. Defaults to the first column.
    drop_columns : sequence of str, optional
        Non-count columns to discard (e.g. gene length, coordinates).

    Returns
    -------
    pd.DataFrame
        Integer counts indexed by gene id.
    """
    df = pd.read_csv(path, sep=_separator(path))
    gene_column = gene_column or df.columns[0]
    if gene_column not in df.columns:
        raise CountMatrixError(f"Gene id column {gene_column!r} not found in {path}")
    df = df.set_index(gene_column)
    df.index = df.index.astype(str)
    if drop_columns:
        df = df.drop(columns=list(drop_columns))

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise CountMatrixError(f"Non-numeric columns in count table {path}: {non_numeric}")

    df.columns = [str(c) for c in df.columns]
    logger.info("Read %d genes x %d samples from %s", df.shape[0], df.shape[1], path)
    return df


def read_design(path, condition_column="condition", reference=None, sample_column=None):
    """
    Read a sample sheet and build a Design.

    Parameters
    ----------
    path : str or Path
        CSV/TSV with one row per sample.
    condition_column : str, default "condition"
    reference : str
        Baseline level; required.
    sample_column : str, optional
        Column holding sample names. Defaults to the first column.
    """
    if reference is None:
        raise DESeqConfigurationError("A reference level is required")
    coldata = pd.read_csv(path, sep=_separator(path), dtype=str)
    sample_column = sample_column or coldata.columns[0]
    coldata = coldata.set_index(sample_column)
    return Design.from_coldata(coldata, condition_column, reference)


def read_config(path):
    """Load a DEConfig from a YAML (or JSON) mapping of option names to values."""
    with open(path) as f:
        options = yaml.safe_load(f) or {}
    if not isinstance(options, dict):
        raise DESeqConfigurationError(f"Configuration file {path} must contain a mapping")
    return DEConfig.from_mapping(options)


def write_results(result_df, path, float_format="%.6g"):
    """Write a result (or transformed) table; padj 'not tested' is written as NA."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    result_df.to_csv(path, sep=_separator(path), na_rep="NA", float_format=float_format)
    logger.info("Wrote %d rows to %s", len(result_df), path)
    return path
