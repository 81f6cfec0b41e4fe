"""
NumPyro models for stochastic-search variable selection (SSVS).

Both models share the regression layer:

    p         ~ Beta(1, 1)
    sigma     ~ Uniform(0, 10)
    sigma_ind ~ Uniform(0, 10)
    beta_raw  ~ Normal(0, sigma_ind)          one per design term
    delta     ~ Bernoulli(p)                  one per design term
    ind       = effective_inclusion(delta, C)
    beta      = beta_raw * ind
    mu        = X @ beta

- ssvs_model: ``y ~ Normal(mu, sigma)``, one response per row of ``X``
- replicate_ssvs_model: adds a latent true value per sample,
  ``ytrue ~ Normal(mu, sigma)``, observed through heavy-tailed digest
  replicates ``y ~ StudentT(nu, ytrue[sample], sd_digest)`` with
  ``nu = 1 + Exponential(rate=1/29)``. Regression and latent truth are
  sampled jointly.
"""

import jax.numpy as jnp
import numpyro
import numpyro.distributions as dist
from beartype import beartype
from beartype.typing import Dict, Optional, Tuple
from jaxtyping import Array, Float, Int

from firecarbon.models.design import effective_inclusion

__all__ = [
    "NU_RATE",
    "SIGMA_UPPER",
    "replicate_ssvs_model",
    "ssvs_model",
    "ssvs_regression",
]

SIGMA_UPPER = 10.0
NU_RATE = 1.0 / 29.0


def ssvs_regression(
    X: Float[Array, "row term"],
    constraints: Float[Array, "term term"],
) -> Tuple[Float[Array, "row"], Float[Array, ""]]:
    """Sample the SSVS regression layer and return ``(mu, sigma)``."""
    n_rows, n_terms = X.shape

    p = numpyro.sample("p", dist.Beta(1.0, 1.0))
    sigma = numpyro.sample("sigma", dist.Uniform(0.0, SIGMA_UPPER))
    sigma_ind = numpyro.sample("sigma_ind", dist.Uniform(0.0, SIGMA_UPPER))

    with numpyro.plate("terms", n_terms):
        beta_raw = numpyro.sample("beta_raw", dist.Normal(0.0, sigma_ind))
        delta = numpyro.sample("delta", dist.Bernoulli(p))

    ind = numpyro.deterministic("ind", effective_inclusion(delta, constraints))
    beta = numpyro.deterministic("beta", beta_raw * ind)
    mu = numpyro.deterministic("mu", X @ beta)
    return mu, sigma


@beartype
def ssvs_model(
    X: Float[Array, "row term"],
    constraints: Float[Array, "term term"],
    y: Optional[Float[Array, "row"]] = None,
) -> Dict[str, Float[Array, "..."]]:
    """SSVS regression with one log-response per observation.

    Args:
        X: Design matrix
        constraints: Constraint matrix of the design terms
        y: Observed responses; ``None`` samples from the prior predictive

    Returns:
        The linear predictor and residual scale
    """
    mu, sigma = ssvs_regression(X, constraints)
    with numpyro.plate("observations", X.shape[0]):
        numpyro.sample("y", dist.Normal(mu, sigma), obs=y)
    return {"mu": mu, "sigma": sigma}


@beartype
def replicate_ssvs_model(
    X: Float[Array, "sample term"],
    constraints: Float[Array, "term term"],
    sample_index: Int[Array, "replicate"],
    y: Optional[Float[Array, "replicate"]] = None,
) -> Dict[str, Float[Array, "..."]]:
    """SSVS regression on latent per-sample true values.

    Each row of ``X`` describes one sample. Replicate ``r`` measures sample
    ``sample_index[r]``; samples may have different replicate counts.

    Args:
        X: Design matrix, one row per sample
        constraints: Constraint matrix of the design terms
        sample_index: Row of ``X`` measured by each replicate
        y: Observed replicate log-responses

    Returns:
        The latent true values, the linear predictor and the scales
    """
    mu, sigma = ssvs_regression(X, constraints)

    with numpyro.plate("samples", X.shape[0]):
        ytrue = numpyro.sample("ytrue", dist.Normal(mu, sigma))

    nu_excess = numpyro.sample("nu_excess", dist.Exponential(NU_RATE))
    nu = numpyro.deterministic("nu", 1.0 + nu_excess)
    sd_digest = numpyro.sample("sd_digest", dist.Uniform(0.0, SIGMA_UPPER))

    with numpyro.plate("replicates", sample_index.shape[0]):
        numpyro.sample(
            "y",
            dist.StudentT(nu, jnp.take(ytrue, sample_index), sd_digest),
            obs=y,
        )
    return {"ytrue": ytrue, "mu": mu, "sigma": sigma, "nu": nu, "sd_digest": sd_digest}
