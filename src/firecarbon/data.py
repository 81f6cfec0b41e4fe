"""
Observation tables for the soil carbon models.

- load_observations: read an observation table from CSV, Parquet or Excel
- log_response: natural log of percent carbon
- replicate_layout: flatten ragged digest replicates per sample
- sample_table: one row of covariates per sample
- synthetic_observations / synthetic_replicates: simulated data sets
"""

from dataclasses import dataclass
from os import PathLike
from pathlib import Path

import numpy as np
import pandas as pd
from beartype import beartype
from beartype.typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from firecarbon.config import DEFAULT_LEVELS
from firecarbon.errors import DataLoadError
from firecarbon.logging import configure_logging

__all__ = [
    "ReplicateLayout",
    "load_observations",
    "log_response",
    "replicate_layout",
    "sample_table",
    "synthetic_observations",
    "synthetic_replicates",
]

logger = configure_logging(__name__)


@dataclass(frozen=True)
class ReplicateLayout:
    """Flattened ragged replicates.

    Attributes:
        values: Replicate values, grouped by sample
        sample_index: Position in ``sample_ids`` of each replicate's sample
        sample_ids: Samples in order of first appearance
    """

    values: np.ndarray
    sample_index: np.ndarray
    sample_ids: List[str]

    @property
    def n_samples(self) -> int:
        return len(self.sample_ids)

    def counts(self) -> Dict[str, int]:
        counts = np.bincount(self.sample_index, minlength=self.n_samples)
        return dict(zip(self.sample_ids, counts.tolist()))


@beartype
def load_observations(path: PathLike | str) -> pd.DataFrame:
    """
    Read an observation table.

    Raises:
        DataLoadError: If the file does not exist or has an unknown suffix.
    """
    path = Path(path)
    if not path.is_file():
        raise DataLoadError(f"observation table not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        data = pd.read_csv(path)
    elif suffix == ".parquet":
        data = pd.read_parquet(path)
    elif suffix in (".xlsx", ".xlsm"):
        data = pd.read_excel(path, engine="openpyxl")
    else:
        raise DataLoadError(f"unsupported observation table format: {path}")

    logger.info(f"Loaded {len(data)} observations from {path}")
    return data


@beartype
def log_response(values: Union[pd.Series, np.ndarray, Sequence[float]]) -> np.ndarray:
    """
    Natural log of percent-carbon values.

    Raises:
        DataLoadError: If a value is not strictly positive.
    """
    values = np.asarray(values, dtype=float)
    bad = ~(values > 0)
    if bad.any():
        raise DataLoadError(
            f"{int(bad.sum())} response values are not strictly positive and "
            "cannot be log-transformed"
        )
    return np.log(values)


@beartype
def replicate_layout(
    replicates: Union[Mapping[str, Any], pd.DataFrame],
    sample_id: str = "sample_id",
    value: str = "value",
) -> ReplicateLayout:
    """
    Flatten replicate measurements that may differ in count per sample.

    Args:
        replicates: Either a mapping ``sample_id -> replicate values`` or a
            long table with one row per replicate.
        sample_id: Sample column of a long table.
        value: Value column of a long table.

    Returns:
        The flattened layout. Missing (``None``/``NaN``) replicates are
        dropped.

    Raises:
        DataLoadError: If a sample has no valid replicate.

    Examples:
        >>> layout = replicate_layout({"K1": [0.1, None, 0.3], "K2": [0.2]})
        >>> layout.sample_index.tolist()
        [0, 0, 1]
    """
    if isinstance(replicates, pd.DataFrame):
        missing = [c for c in (sample_id, value) if c not in replicates.columns]
        if missing:
            raise DataLoadError(f"replicate table lacks columns {missing}")
        grouped: Dict[str, List[Optional[float]]] = {}
        for sid, v in zip(replicates[sample_id].astype(str), replicates[value]):
            grouped.setdefault(sid, []).append(v)
        replicates = grouped

    values: List[float] = []
    index: List[int] = []
    sample_ids: List[str] = []
    for i, (sid, sample_values) in enumerate(replicates.items()):
        kept = [
            float(v) for v in sample_values if v is not None and not np.isnan(v)
        ]
        if not kept:
            raise DataLoadError(f"sample {sid!r} has no valid replicate values")
        sample_ids.append(str(sid))
        values.extend(kept)
        index.extend([i] * len(kept))

    return ReplicateLayout(
        values=np.asarray(values, dtype=float),
        sample_index=np.asarray(index, dtype=np.int32),
        sample_ids=sample_ids,
    )


@beartype
def sample_table(
    data: pd.DataFrame,
    sample_id: str,
    columns: Sequence[str],
    sample_ids: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    One row of covariates per sample.

    Raises:
        DataLoadError: If a covariate varies between replicates of a sample.
    """
    data = data.assign(**{sample_id: data[sample_id].astype(str)})
    varying = data.groupby(sample_id)[list(columns)].nunique(dropna=False)
    inconsistent = varying.columns[(varying > 1).any()].tolist()
    if inconsistent:
        raise DataLoadError(
            f"covariates {inconsistent} differ between replicates of a sample"
        )
    table = data.groupby(sample_id, sort=False)[list(columns)].first()
    if sample_ids is not None:
        table = table.loc[list(sample_ids)]
    return table.reset_index()


def _simulated_effects(data: pd.DataFrame) -> np.ndarray:
    depth = (data["depth"] == DEFAULT_LEVELS["depth"][1]).to_numpy(dtype=float)
    severity_rank = (
        data["severity"]
        .map({level: i for i, level in enumerate(DEFAULT_LEVELS["severity"])})
        .to_numpy(dtype=float)
    )
    rough = (data["microsite"] == "rough").to_numpy(dtype=float)
    return (
        1.2
        - 0.6 * depth
        - 0.15 * severity_rank
        + 0.1 * depth * severity_rank
        + 0.05 * rough
    )


@beartype
def synthetic_observations(
    n_per_cell: int = 3,
    seed: int = 0,
    noise: float = 0.2,
) -> pd.DataFrame:
    """
    Simulated total-carbon observations on the full factorial design.

    Returns:
        Columns ``depth``, ``microsite``, ``severity`` and
        ``percent_carbon``.
    """
    rng = np.random.default_rng(seed)
    grid = pd.MultiIndex.from_product(
        [DEFAULT_LEVELS["depth"], DEFAULT_LEVELS["microsite"], DEFAULT_LEVELS["severity"]],
        names=["depth", "microsite", "severity"],
    ).to_frame(index=False)
    data = grid.loc[grid.index.repeat(n_per_cell)].reset_index(drop=True)
    log_carbon = _simulated_effects(data) + rng.normal(0.0, noise, len(data))
    return data.assign(percent_carbon=np.exp(log_carbon))


@beartype
def synthetic_replicates(
    n_samples_per_cell: int = 1,
    max_replicates: int = 3,
    seed: int = 0,
    noise: float = 0.1,
) -> pd.DataFrame:
    """
    Simulated recalcitrant-carbon digest replicates.

    Samples get between one and ``max_replicates`` replicates, so the result
    is ragged.

    Returns:
        One row per replicate with ``sample_id``, ``depth``, ``microsite``,
        ``severity``, ``baseline_total_carbon`` and ``percent_carbon``.
    """
    rng = np.random.default_rng(seed)
    samples = synthetic_observations(n_per_cell=n_samples_per_cell, seed=seed)
    samples = samples.rename(columns={"percent_carbon": "baseline_total_carbon"})
    samples.insert(0, "sample_id", [f"S{i + 1:03d}" for i in range(len(samples))])

    true_log = (
        np.log(samples["baseline_total_carbon"].to_numpy()) - 0.7
        + rng.normal(0.0, 0.1, len(samples))
    )
    n_reps = rng.integers(1, max_replicates + 1, len(samples))
    rows = samples.loc[samples.index.repeat(n_reps)].reset_index(drop=True)
    replicate_log = np.repeat(true_log, n_reps) + noise * rng.standard_t(
        4.0, len(rows)
    )
    return rows.assign(percent_carbon=np.exp(replicate_log))
