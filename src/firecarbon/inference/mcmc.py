"""
MCMC utilities for the SSVS models.

This module contains:

- create_mcmc: NUTS for the continuous block inside a discrete Gibbs sampler
- run_ssvs: burn-in, sampling, thinning and optional chunking of one chain
- samples_to_frame: flatten NumPyro samples into a posterior sample matrix
- sampler_diagnostics: acceptance, effective sample size, degenerate indicators
"""

import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np
import pandas as pd
from beartype import beartype
from numpyro.diagnostics import effective_sample_size
from numpyro.infer import MCMC, NUTS, DiscreteHMCGibbs

from firecarbon.config import SamplerConfig
from firecarbon.errors import ConvergenceWarning
from firecarbon.logging import configure_logging

__all__ = [
    "SamplerResult",
    "create_mcmc",
    "run_ssvs",
    "sampler_diagnostics",
    "samples_to_frame",
]

logger = configure_logging(__name__)

ACCEPT_PROB_FIELD = "hmc_state.accept_prob"
DIVERGING_FIELD = "hmc_state.diverging"

# sites whose last axis is indexed by design term
TERM_SITES = ("beta", "ind", "delta")


@dataclass(frozen=True)
class SamplerResult:
    """Immutable container for the output of one sampler run.

    Attributes:
        samples: Posterior sample matrix, one row per retained iteration
        diagnostics: Acceptance rate, effective sample sizes and flags
        interrupted: Whether sampling stopped early and ``samples`` is partial
    """

    samples: pd.DataFrame
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    interrupted: bool = False


@beartype
def create_mcmc(
    model: Callable,
    config: SamplerConfig,
    num_samples: Optional[int] = None,
    target_accept_prob: float = 0.8,
) -> MCMC:
    """Create an MCMC object for a model with Bernoulli inclusion sites.

    Args:
        model: NumPyro model function
        config: Sampler configuration
        num_samples: Post burn-in iterations per ``run`` call; defaults to
            ``config.num_samples``
        target_accept_prob: NUTS step size adaptation target

    Returns:
        MCMC object
    """
    kernel = DiscreteHMCGibbs(
        NUTS(model, target_accept_prob=target_accept_prob),
    )
    return MCMC(
        kernel,
        num_warmup=config.num_warmup,
        num_samples=num_samples or config.num_samples,
        num_chains=config.num_chains,
        thinning=config.thinning,
        progress_bar=config.progress_bar,
    )


def _label(site: str, labels: Optional[Sequence[str]], i: int) -> str:
    return f"{site}[{labels[i] if labels is not None else i}]"


@beartype
def samples_to_frame(
    samples: Dict[str, Any],
    term_names: Sequence[str],
    row_labels: Optional[Sequence[str]] = None,
    sample_ids: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Flatten NumPyro samples into a posterior sample matrix.

    Scalars keep their site name. Vector sites become one column per element:
    ``beta[<term>]``, ``ind[<term>]`` and ``delta[<term>]`` per design term,
    ``mu[<row>]`` per design row and ``ytrue[<sample>]`` per sample.
    ``beta_raw`` and ``nu_excess`` are dropped; ``beta`` and ``nu`` carry them.

    Args:
        samples: Site name to array with a leading iteration axis.
        term_names: Design term names.
        row_labels: Labels of the design rows, defaults to positions.
        sample_ids: Labels of latent-truth samples.

    Returns:
        DataFrame with one row per retained iteration.
    """
    columns: Dict[str, np.ndarray] = {}
    for site, values in samples.items():
        if site in ("beta_raw", "nu_excess"):
            continue
        values = np.asarray(values)
        if values.ndim == 1:
            columns[site] = values
            continue
        if site in TERM_SITES:
            labels = term_names
        elif site == "ytrue":
            labels = sample_ids
        else:
            labels = row_labels
        values = values.reshape(values.shape[0], -1)
        for i in range(values.shape[1]):
            columns[_label(site, labels, i)] = values[:, i]

    ordered = [name for name in ("p", "sigma", "sigma_ind", "nu", "sd_digest") if name in columns]
    ordered += [c for c in columns if c not in ordered]
    return pd.DataFrame({name: columns[name] for name in ordered})


@beartype
def sampler_diagnostics(
    samples: pd.DataFrame,
    extra_fields: Optional[Dict[str, Any]] = None,
    min_accept: float = 0.1,
    max_accept: float = 0.995,
    min_ess: float = 100.0,
) -> Dict[str, Any]:
    """
    Summarize sampler health and warn about degenerate behaviour.

    Emits ``ConvergenceWarning`` for extreme NUTS acceptance rates, low
    effective sample sizes of ``p`` and ``sigma``, divergent transitions and
    inclusion indicators that never or always switch on. Nothing here aborts
    the run.

    Args:
        samples: Posterior sample matrix.
        extra_fields: Per-iteration fields collected by ``MCMC``.
        min_accept: Lowest acceptable mean acceptance probability.
        max_accept: Highest acceptable mean acceptance probability.
        min_ess: Lowest acceptable effective sample size.

    Returns:
        Dictionary of diagnostic results.
    """
    diagnostics: Dict[str, Any] = {"num_retained": len(samples)}
    problems: List[str] = []
    extra_fields = extra_fields or {}

    accept_prob = extra_fields.get(ACCEPT_PROB_FIELD)
    if accept_prob is not None and np.size(accept_prob) > 0:
        mean_accept = float(np.mean(accept_prob))
        diagnostics["accept_prob"] = mean_accept
        if not min_accept <= mean_accept <= max_accept:
            problems.append(f"mean NUTS acceptance probability {mean_accept:.3f}")

    diverging = extra_fields.get(DIVERGING_FIELD)
    if diverging is not None:
        num_divergent = int(np.sum(diverging))
        diagnostics["num_divergent"] = num_divergent
        if num_divergent > 0:
            problems.append(f"{num_divergent} divergent transitions")

    if len(samples) > 3:
        ess = {}
        for name in ("p", "sigma"):
            if name in samples:
                ess[name] = float(
                    effective_sample_size(samples[name].to_numpy()[None, :])
                )
        diagnostics["ess"] = ess
        low = {k: round(v, 1) for k, v in ess.items() if v < min_ess}
        if low:
            problems.append(f"low effective sample size {low}")

    indicator_columns = [c for c in samples.columns if c.startswith("ind[")]
    rates = samples[indicator_columns].mean(axis=0)
    never = rates.index[rates == 0.0].tolist()
    always = rates.index[rates == 1.0].tolist()
    diagnostics["never_included"] = never
    diagnostics["always_included"] = always
    if never:
        problems.append(f"indicators never included: {never}")
    if always:
        problems.append(f"indicators always included: {always}")

    for problem in problems:
        logger.warning(f"Sampler diagnostic: {problem}")
        warnings.warn(problem, ConvergenceWarning, stacklevel=2)

    diagnostics["problems"] = problems
    return diagnostics


def _concatenate(chunks: List[Dict[str, jnp.ndarray]]) -> Dict[str, np.ndarray]:
    if not chunks:
        return {}
    return {
        site: np.concatenate([np.asarray(chunk[site]) for chunk in chunks], axis=0)
        for site in chunks[0]
    }


@beartype
def run_ssvs(
    model: Callable,
    model_kwargs: Dict[str, Any],
    config: SamplerConfig,
    term_names: Sequence[str],
    key: Optional[jax.Array] = None,
    row_labels: Optional[Sequence[str]] = None,
    sample_ids: Optional[Sequence[str]] = None,
) -> SamplerResult:
    """Run a single SSVS chain.

    The chain runs ``config.num_warmup`` burn-in iterations, then
    ``config.num_samples`` iterations of which every ``config.thinning``-th
    is retained. With ``config.chunk_size`` set, the post burn-in phase runs
    in chunks, each continuing from the last state of the previous one; on
    ``KeyboardInterrupt`` the completed chunks are returned as a partial
    result. Results depend only on ``key`` and the iteration plan.

    Args:
        model: NumPyro model function
        model_kwargs: Keyword arguments of the model
        config: Sampler configuration
        term_names: Design term names, used to label term columns
        key: JAX random key (created from ``config.seed`` if None)
        row_labels: Labels of the design rows
        sample_ids: Labels of latent-truth samples

    Returns:
        The posterior sample matrix with diagnostics
    """
    if key is None:
        key = jax.random.PRNGKey(config.seed)

    chunk_size = config.chunk_size or config.num_samples
    num_chunks = config.num_samples // chunk_size
    mcmc = create_mcmc(model, config, num_samples=chunk_size)
    extra_fields = (ACCEPT_PROB_FIELD, DIVERGING_FIELD)

    logger.info(
        f"Running SSVS sampler: {config.num_warmup} burn-in, "
        f"{config.num_samples} iterations, thinning {config.thinning}, "
        f"{num_chunks} chunk(s), {len(term_names)} terms"
    )

    sample_chunks: List[Dict[str, jnp.ndarray]] = []
    field_chunks: List[Dict[str, jnp.ndarray]] = []
    interrupted = False
    try:
        if config.num_warmup > 0:
            mcmc.warmup(key, extra_fields=extra_fields, **model_kwargs)
            key = mcmc.post_warmup_state.rng_key
        for chunk in range(num_chunks):
            mcmc.run(key, extra_fields=extra_fields, **model_kwargs)
            sample_chunks.append(mcmc.get_samples())
            field_chunks.append(mcmc.get_extra_fields())
            mcmc.post_warmup_state = mcmc.last_state
            key = mcmc.post_warmup_state.rng_key
            logger.debug(f"completed chunk {chunk + 1}/{num_chunks}")
    except KeyboardInterrupt:
        if not sample_chunks:
            raise
        interrupted = True
        logger.warning(
            f"Sampling interrupted after {len(sample_chunks)}/{num_chunks} "
            "chunks; keeping the completed samples"
        )

    samples = samples_to_frame(
        _concatenate(sample_chunks),
        term_names=term_names,
        row_labels=row_labels,
        sample_ids=sample_ids,
    )
    diagnostics = sampler_diagnostics(samples, _concatenate(field_chunks))
    logger.info(f"Retained {len(samples)} posterior samples")
    return SamplerResult(
        samples=samples,
        diagnostics=diagnostics,
        interrupted=interrupted,
    )
