"""Shared fixtures: small deterministic count matrices."""

import numpy as np
import pandas as pd
import pytest

from deseq_engine import CountModel, Design


def simulate_counts(n_genes=200, n_per_group=3, n_de=20, fold=4.0, seed=7):
    """
    Negative binomial counts for a two-group design.

    The first ``n_de`` genes are up-regulated ``fold``-times in group "trt"
    and are drawn from the upper half of the mean range.
    """
    rng = np.random.default_rng(seed)
    n_samples = 2 * n_per_group
    means = np.exp(rng.uniform(np.log(5), np.log(2000), size=n_genes))
    means[:n_de] = np.exp(rng.uniform(np.log(200), np.log(2000), size=n_de))
    disp = 0.05 + 1.0 / means
    size_factors = np.linspace(0.7, 1.4, n_samples)

    is_trt = np.repeat([False, True], n_per_group)
    mu = means[:, None] * size_factors[None, :]
    mu[:n_de, is_trt] *= fold

    r = 1.0 / disp[:, None]
    counts = rng.negative_binomial(r, r / (r + mu))

    genes = [f"GENE{i:04d}" for i in range(n_genes)]
    samples = [f"S{j + 1}" for j in range(n_samples)]
    labels = ["ctrl"] * n_per_group + ["trt"] * n_per_group
    counts_df = pd.DataFrame(counts, index=genes, columns=samples)
    design = Design(dict(zip(samples, labels)), reference="ctrl")
    return counts_df, design


@pytest.fixture
def simulated():
    return simulate_counts()


@pytest.fixture
def simulated_model(simulated):
    counts_df, design = simulated
    return CountModel.from_dataframe(counts_df, design)


@pytest.fixture
def two_gene_model():
    """Gene A differs tenfold between conditions, gene B is flat."""
    counts_df = pd.DataFrame(
        [[100, 100, 10, 10], [50, 50, 50, 50]],
        index=["A", "B"],
        columns=["s1", "s2", "s3", "s4"],
    )
    design = Design({"s1": "cond1", "s2": "cond1", "s3": "cond2", "s4": "cond2"},
                    reference="cond1")
    return CountModel.from_dataframe(counts_df, design)


@pytest.fixture
def four_sample_design():
    return Design({"a": "ctrl", "b": "ctrl", "c": "trt", "d": "trt"}, reference="ctrl")


@pytest.fixture
def simulated_large():
    """Enough genes to span more than one worker chunk."""
    return simulate_counts(n_genes=600, seed=5)
