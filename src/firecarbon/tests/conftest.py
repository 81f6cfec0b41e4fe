import numpy as np
import pandas as pd
import pytest

from firecarbon.config import SamplerConfig
from firecarbon.data import synthetic_observations, synthetic_replicates
from firecarbon.io.artifacts import ArtifactStore


@pytest.fixture
def total_carbon_data():
    return synthetic_observations(n_per_cell=2, seed=1)


@pytest.fixture
def replicate_data():
    return synthetic_replicates(n_samples_per_cell=1, max_replicates=3, seed=2)


@pytest.fixture
def short_sampler():
    """A sampler configuration small enough for unit tests."""
    return SamplerConfig(
        num_warmup=30,
        num_samples=40,
        thinning=2,
        seed=7,
        progress_bar=False,
    )


@pytest.fixture
def artifact_store(tmp_path):
    return ArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def synthetic_samples():
    """A posterior sample matrix with known indicator patterns."""
    included = np.array([1, 1, 1, 0, 0, 0, 0, 0, 0, 0])
    return pd.DataFrame(
        {
            "p": np.linspace(0.1, 0.9, 10),
            "sigma": np.full(10, 0.5),
            "beta[(Intercept)]": np.linspace(1.0, 2.0, 10),
            "ind[(Intercept)]": np.ones(10),
            "beta[a]": np.where(included == 1, [0.5, 0.6, 0.7] + [0.0] * 7, 0.0),
            "ind[a]": included.astype(float),
            "beta[b]": np.zeros(10),
            "ind[b]": np.zeros(10),
        }
    )
