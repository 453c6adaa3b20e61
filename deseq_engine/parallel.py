"""
Map per-gene work over a joblib worker pool.

Genes are split into contiguous chunks, each chunk is processed by a pure
function, and the chunk results are concatenated back in gene order. Output
therefore does not depend on the number of workers.
"""

import logging

import numpy as np
from joblib import Parallel, delayed

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500


def gene_chunks(n_genes, chunk_size=DEFAULT_CHUNK_SIZE):
    """Contiguous ``slice`` objects covering ``range(n_genes)``."""
    return [slice(start, min(start + chunk_size, n_genes))
            for start in range(0, n_genes, chunk_size)]


def map_gene_chunks(func, n_genes, n_jobs=1, chunk_size=DEFAULT_CHUNK_SIZE, **shared):
    """
    Apply ``func(chunk, **shared)`` to every gene chunk and stack the results.

    Parameters
    ----------
    func : callable
        Called as ``func(chunk_slice, **shared)``; must return a tuple of
        arrays whose first axis runs over the genes of the chunk.
    n_genes : int
        Number of genes (rows) to cover.
    n_jobs : int
        joblib worker count. 1 runs in the calling process.
    **shared
        Read-only inputs passed to every call.

    Returns
    -------
    tuple of np.ndarray
        Per-output concatenation across chunks, in gene order.
    """
    chunks = gene_chunks(n_genes, chunk_size)
    logger.debug("Dispatching %d genes in %d chunks to %s worker(s)",
                 n_genes, len(chunks), n_jobs)

    parts = Parallel(n_jobs=n_jobs)(delayed(func)(chunk, **shared) for chunk in chunks)

    # barrier: every chunk has finished before anything is stacked
    return tuple(np.concatenate(arrays) for arrays in zip(*parts))
