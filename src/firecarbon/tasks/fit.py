from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jax.numpy as jnp
import numpy as np
import pandas as pd
from beartype import beartype

from firecarbon.analysis.summary import (
    summarize_inclusion,
    write_variable_importance,
)
from firecarbon.config import AnalysisConfig, ModelSpec, SamplerConfig
from firecarbon.data import (
    load_observations,
    log_response,
    replicate_layout,
    sample_table,
)
from firecarbon.errors import ConfigurationError, DataLoadError
from firecarbon.inference.mcmc import SamplerResult, run_ssvs
from firecarbon.inference.posterior import posterior_predict, prediction_grid
from firecarbon.io.artifacts import (
    PARTIAL_SUFFIX,
    POSTERIOR_PREDICTIONS,
    POSTERIOR_SAMPLES,
    ArtifactStore,
    timestamp_version,
)
from firecarbon.logging import configure_logging
from firecarbon.models.design import (
    DesignMatrix,
    build_design_matrix,
    design_for_new_data,
)
from firecarbon.models.ssvs import replicate_ssvs_model, ssvs_model
from firecarbon.random_state import make_key, split_key

__all__ = ["FitResult", "fit_model", "prepare_model_inputs", "run_analysis"]

logger = configure_logging(__name__)


@dataclass
class FitResult:
    """Outputs of fitting one model variant.

    Attributes:
        variant: Model variant name
        design: Design and constraint matrices of the fitted data
        samples: Posterior sample matrix
        predictions: Predictive draws, rows = prediction cases
        prediction_cases: Covariates of each prediction case
        summary: Variable importance table
        version: Artifact version the samples were saved or loaded under
        paths: Files written, keyed by kind
        diagnostics: Sampler diagnostics; empty when samples were loaded
        interrupted: Whether the sampler stopped early
    """

    variant: str
    design: DesignMatrix
    samples: pd.DataFrame
    predictions: pd.DataFrame
    prediction_cases: pd.DataFrame
    summary: pd.DataFrame
    version: str
    paths: Dict[str, Path] = field(default_factory=dict)
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    interrupted: bool = False


def _replicate_response(values: pd.Series, log: bool) -> np.ndarray:
    # blank digest cells arrive as NaN, None or ""; they stay NaN so that
    # replicate_layout drops them
    values = values.mask(values.astype(str).str.strip() == "")
    try:
        values = pd.to_numeric(values).to_numpy(dtype=float)
    except (TypeError, ValueError) as e:
        raise DataLoadError(f"non-numeric replicate values in {values.name!r}") from e
    present = ~np.isnan(values)
    response = np.full(values.shape, np.nan)
    response[present] = log_response(values[present]) if log else values[present]
    return response


@beartype
def prepare_model_inputs(
    data: pd.DataFrame,
    spec: ModelSpec,
) -> Tuple[DesignMatrix, Dict[str, Any], pd.DataFrame, Optional[List[str]]]:
    """
    Build the design and model arguments for one variant.

    For the replicate variant ``data`` has one row per digest replicate; the
    design is built on one row per sample and each replicate is linked to its
    sample through ``sample_index``.

    Returns:
        The design, the model keyword arguments, the table the design was
        built from, and the latent-truth sample ids (``None`` without
        replicates).
    """
    if spec.response not in data.columns:
        raise ConfigurationError(
            f"response column {spec.response!r} not in data for {spec.variant}"
        )

    if not spec.has_replicates:
        response = (
            log_response(data[spec.response])
            if spec.log_response
            else data[spec.response].to_numpy(dtype=float)
        )
        design = build_design_matrix(data, spec.formula, levels=spec.levels)
        model_kwargs = {
            "X": jnp.asarray(design.X.to_numpy(dtype=np.float32)),
            "constraints": jnp.asarray(design.constraints, dtype=jnp.float32),
            "y": jnp.asarray(response, dtype=jnp.float32),
        }
        return design, model_kwargs, data, None

    if spec.sample_id not in data.columns:
        raise ConfigurationError(
            f"sample id column {spec.sample_id!r} not in data for {spec.variant}"
        )
    layout = replicate_layout(
        data.assign(_value=_replicate_response(data[spec.response], spec.log_response)),
        sample_id=spec.sample_id,
        value="_value",
    )
    covariate_columns = list(
        dict.fromkeys(
            [*spec.factors, *spec.covariates, *spec.levels.keys()]
        )
    )
    samples_data = sample_table(
        data,
        sample_id=spec.sample_id,
        columns=[c for c in covariate_columns if c in data.columns],
        sample_ids=layout.sample_ids,
    )
    design = build_design_matrix(samples_data, spec.formula, levels=spec.levels)
    model_kwargs = {
        "X": jnp.asarray(design.X.to_numpy(dtype=np.float32)),
        "constraints": jnp.asarray(design.constraints, dtype=jnp.float32),
        "sample_index": jnp.asarray(layout.sample_index),
        "y": jnp.asarray(layout.values, dtype=jnp.float32),
    }
    logger.info(
        f"{spec.variant}: {layout.n_samples} samples, "
        f"{len(layout.values)} replicates"
    )
    return design, model_kwargs, samples_data, layout.sample_ids


def _case_labels(cases: pd.DataFrame, factors: List[str]) -> List[str]:
    return [":".join(str(v) for v in row) for row in cases[factors].itertuples(index=False)]


@beartype
def fit_model(
    data: pd.DataFrame,
    spec: ModelSpec,
    sampler: SamplerConfig,
    store: ArtifactStore,
    recompute: bool = True,
    version: Optional[str] = None,
) -> FitResult:
    """
    Fit or reload one model variant and derive its reports.

    With ``recompute`` the sampler runs and its sample matrix is saved under
    a new version (``version`` if given, otherwise a timestamp). Without it,
    the saved sample matrix of ``version`` is loaded. Without a version the
    latest complete run is used; partial runs are only loaded by name.
    Predictions are saved under the same version and the variable importance
    table is written to ``<variant>_variable_importance_<version>.csv``.

    Args:
        data: Observations (one row per replicate for the replicate variant).
        spec: Model variant.
        sampler: Sampler configuration; its seed also drives predictions.
        store: Artifact store.
        recompute: Run the sampler instead of loading saved samples.
        version: Artifact version to write or read.

    Returns:
        The fitted samples, predictions and summary.

    Raises:
        DataLoadError: If samples are to be loaded but no complete run exists.
    """
    design, model_kwargs, design_data, sample_ids = prepare_model_inputs(data, spec)
    sample_key, predict_key = split_key(make_key(sampler.seed))
    model = replicate_ssvs_model if spec.has_replicates else ssvs_model

    paths: Dict[str, Path] = {}
    diagnostics: Dict[str, Any] = {}
    interrupted = False
    if recompute:
        logger.info(f"Fitting {spec.variant} with formula {spec.formula!r}")
        result: SamplerResult = run_ssvs(
            model,
            model_kwargs,
            sampler,
            term_names=design.term_names,
            key=sample_key,
            row_labels=(
                sample_ids
                if sample_ids is not None
                else [str(i) for i in design.X.index]
            ),
            sample_ids=sample_ids,
        )
        samples = result.samples
        diagnostics = result.diagnostics
        interrupted = result.interrupted
        version = version or timestamp_version()
        if interrupted:
            version = f"{version}{PARTIAL_SUFFIX}"
        paths[POSTERIOR_SAMPLES] = store.save(
            spec.variant, POSTERIOR_SAMPLES, samples, version=version
        )
    else:
        if version is None:
            # raises DataLoadError when no complete run was saved yet
            version = store.latest_version(spec.variant, POSTERIOR_SAMPLES)
            logger.info(f"Loading cached samples of {spec.variant} ({version})")
        elif version.endswith(PARTIAL_SUFFIX):
            logger.warning(
                f"Loading samples of an interrupted run of {spec.variant} ({version})"
            )
        samples = store.load(spec.variant, POSTERIOR_SAMPLES, version=version)

    cases = prediction_grid(
        design_data,
        spec.factors,
        levels=spec.levels,
        covariates=spec.covariates,
    )
    X_predict = design_for_new_data(design, cases)
    predictions = posterior_predict(
        samples,
        X_predict,
        key=predict_key,
        case_labels=_case_labels(cases, spec.factors),
    )
    paths[POSTERIOR_PREDICTIONS] = store.save(
        spec.variant,
        POSTERIOR_PREDICTIONS,
        {"cases": cases, "predictions": predictions},
        version=version,
    )

    summary = summarize_inclusion(samples)
    paths["variable_importance"] = write_variable_importance(
        summary,
        store.directory / f"{spec.variant}_variable_importance_{version}.csv",
    )

    return FitResult(
        variant=spec.variant,
        design=design,
        samples=samples,
        predictions=predictions,
        prediction_cases=cases,
        summary=summary,
        version=version,
        paths=paths,
        diagnostics=diagnostics,
        interrupted=interrupted,
    )


@beartype
def run_analysis(
    config: AnalysisConfig,
    data: Optional[Dict[str, pd.DataFrame]] = None,
) -> Dict[str, FitResult]:
    """
    Fit every configured model variant.

    Args:
        config: Analysis configuration.
        data: Observation tables per variant; variants not given here are
            read from ``config.data_paths``.

    Returns:
        Fit results keyed by variant.
    """
    data = data or {}
    store = ArtifactStore(config.output_dir)
    results: Dict[str, FitResult] = {}
    for spec in config.models:
        if spec.variant in data:
            observations = data[spec.variant]
        elif spec.variant in config.data_paths:
            observations = load_observations(config.data_paths[spec.variant])
        else:
            raise ConfigurationError(
                f"no observation table configured for {spec.variant}"
            )
        results[spec.variant] = fit_model(
            observations,
            spec,
            config.sampler,
            store,
            recompute=config.recompute,
            version=config.version,
        )
    return results

