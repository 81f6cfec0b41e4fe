"""
Posterior prediction for the SSVS models.

This module contains:

- prediction_grid: cross product of observed factor levels, with numeric
  covariates set to their group means
- coefficient_draws: coefficient columns of a posterior sample matrix in
  design term order
- posterior_predict: predictive draws for every prediction case and
  every retained iteration
"""

import itertools

import jax
import jax.numpy as jnp
import numpy as np
import pandas as pd
from beartype import beartype
from beartype.typing import Dict, List, Optional, Sequence

from firecarbon.errors import ConfigurationError
from firecarbon.logging import configure_logging

__all__ = [
    "coefficient_draws",
    "posterior_predict",
    "prediction_grid",
]

logger = configure_logging(__name__)


@beartype
def prediction_grid(
    data: pd.DataFrame,
    factors: Sequence[str],
    levels: Optional[Dict[str, Sequence[str]]] = None,
    covariates: Sequence[str] = (),
) -> pd.DataFrame:
    """
    Enumerate prediction cases.

    Each case is one combination of the observed levels of ``factors``. For
    numeric ``covariates`` the case carries the mean over observations with
    the same factor levels, or the overall mean when that combination was not
    observed.

    Args:
        data: Observations the model was fitted to.
        factors: Categorical covariates to cross.
        levels: Optional level order per factor; unobserved levels are
            skipped.
        covariates: Numeric covariates to average.

    Returns:
        One row per prediction case, factors varying slowest first.

    Examples:
        >>> df = pd.DataFrame({
        ...     "depth": ["a", "a", "b"], "severity": ["x", "y", "x"],
        ...     "c": [1.0, 3.0, 5.0],
        ... })
        >>> prediction_grid(df, ["depth", "severity"], covariates=["c"])["c"].tolist()
        [1.0, 3.0, 5.0, 3.0]
    """
    levels = levels or {}
    missing = [c for c in [*factors, *covariates] if c not in data.columns]
    if missing:
        raise ConfigurationError(f"prediction grid columns missing from data: {missing}")

    factor_levels: List[List[str]] = []
    for factor in factors:
        observed = data[factor].dropna().astype(str)
        if factor in levels:
            order = [str(v) for v in levels[factor] if str(v) in set(observed)]
        else:
            order = list(dict.fromkeys(sorted(observed)))
        factor_levels.append(order)

    grid = pd.DataFrame(list(itertools.product(*factor_levels)), columns=list(factors))

    if covariates:
        keyed = data.assign(**{f: data[f].astype(str) for f in factors})
        group_means = keyed.groupby(list(factors))[list(covariates)].mean().reset_index()
        grid = grid.merge(group_means, on=list(factors), how="left")
        for covariate in covariates:
            grid[covariate] = grid[covariate].fillna(data[covariate].mean())

    return grid


@beartype
def coefficient_draws(
    samples: pd.DataFrame,
    term_names: Sequence[str],
) -> np.ndarray:
    """
    Effective coefficient draws in term order.

    Returns:
        Array of shape ``(n_draws, n_terms)``.

    Raises:
        ConfigurationError: If a term has no ``beta[<term>]`` column.
    """
    columns = [f"beta[{name}]" for name in term_names]
    missing = [c for c in columns if c not in samples.columns]
    if missing:
        raise ConfigurationError(
            f"posterior samples lack coefficient columns {missing}"
        )
    return samples[columns].to_numpy(dtype=np.float32)


@beartype
def posterior_predict(
    samples: pd.DataFrame,
    X_predict: pd.DataFrame,
    key: jax.Array,
    case_labels: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Posterior predictive draws for every prediction case.

    For draw ``d`` and case ``c`` the linear predictor is
    ``X_predict[c] @ beta[d]`` and the prediction is a normal draw with the
    residual scale ``sigma[d]`` of the same iteration.

    Args:
        samples: Posterior sample matrix with ``beta[<term>]`` and ``sigma``.
        X_predict: Prediction design matrix; its columns name the terms.
        key: JAX random key; the same key reproduces the same draws.
        case_labels: Row labels of the result, defaults to ``X_predict.index``.

    Returns:
        Predicted responses, rows = cases, columns = posterior draws.
    """
    if "sigma" not in samples.columns:
        raise ConfigurationError("posterior samples lack a 'sigma' column")

    beta = jnp.asarray(coefficient_draws(samples, list(X_predict.columns)))
    sigma = jnp.asarray(samples["sigma"].to_numpy(dtype=np.float32))
    X = jnp.asarray(X_predict.to_numpy(dtype=np.float32))

    # (cases, draws): column d uses beta[d] and sigma[d]
    mu = X @ beta.T
    noise = jax.random.normal(key, shape=mu.shape, dtype=mu.dtype)
    predictions = np.asarray(mu + noise * sigma[None, :])

    logger.debug(
        f"Generated {predictions.shape[1]} predictive draws for "
        f"{predictions.shape[0]} cases"
    )
    return pd.DataFrame(
        predictions,
        index=list(case_labels) if case_labels is not None else X_predict.index,
        columns=samples.index,
    )
