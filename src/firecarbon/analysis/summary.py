"""
Variable importance summaries of SSVS posterior samples.

For every design term the summary reports how often the term was included
and what its coefficient looked like when it was.
"""

import re
from os import PathLike
from pathlib import Path

import numpy as np
import pandas as pd
from beartype import beartype
from beartype.typing import Dict, List

from firecarbon.errors import ConfigurationError
from firecarbon.logging import configure_logging

__all__ = [
    "SUMMARY_COLUMNS",
    "paired_columns",
    "summarize_inclusion",
    "write_variable_importance",
]

logger = configure_logging(__name__)

SUMMARY_COLUMNS = [
    "Variable",
    "PercentInclusion",
    "MeanIncluded",
    "MeanOverall",
    "Lower",
    "Upper",
    "NonZero",
]

_INDICATOR = re.compile(r"^ind\[(?P<term>.+)\]$")


@beartype
def paired_columns(samples: pd.DataFrame) -> Dict[str, str]:
    """
    Map each inclusion indicator column to its coefficient column.

    ``ind[<term>]`` pairs with ``beta[<term>]``.

    Raises:
        ConfigurationError: If an indicator has no coefficient column, or the
            sample matrix has no indicator columns at all.
    """
    pairs: Dict[str, str] = {}
    unmatched: List[str] = []
    for column in samples.columns:
        match = _INDICATOR.match(str(column))
        if match is None:
            continue
        coefficient = f"beta[{match.group('term')}]"
        if coefficient in samples.columns:
            pairs[column] = coefficient
        else:
            unmatched.append(column)

    if unmatched:
        raise ConfigurationError(
            f"inclusion indicator columns without a coefficient column: {unmatched}"
        )
    if not pairs:
        raise ConfigurationError("posterior samples contain no ind[...] columns")
    return pairs


@beartype
def summarize_inclusion(samples: pd.DataFrame) -> pd.DataFrame:
    """
    Inclusion frequency and coefficient summaries per design term.

    Columns:

    - ``PercentInclusion``: 100 times the fraction of iterations with the
      indicator switched on
    - ``MeanIncluded``: mean coefficient over included iterations, 0 if never
      included
    - ``MeanOverall``: mean coefficient over all iterations, excluded draws
      counting as 0
    - ``Lower``/``Upper``: 2.5 and 97.5 percentiles over included iterations,
      0 if never included
    - ``NonZero``: whether ``[Lower, Upper]`` excludes zero

    Args:
        samples: Posterior sample matrix with paired ``ind[...]`` and
            ``beta[...]`` columns.

    Returns:
        One row per term, sorted by decreasing ``PercentInclusion``.

    Examples:
        >>> samples = pd.DataFrame({
        ...     "beta[a]": [0.0, 1.0, 3.0, 0.0],
        ...     "ind[a]": [0, 1, 1, 0],
        ... })
        >>> summarize_inclusion(samples).loc[0, ["PercentInclusion", "MeanIncluded"]].tolist()
        [50.0, 2.0]
    """
    rows = []
    for indicator_column, coefficient_column in paired_columns(samples).items():
        included = samples[indicator_column].to_numpy() == 1
        beta = samples[coefficient_column].to_numpy(dtype=float)
        n = len(included)

        percent = 100.0 * included.sum() / n if n else 0.0
        overall = float(np.where(included, beta, 0.0).mean()) if n else 0.0
        if included.any():
            kept = beta[included]
            mean_included = float(kept.mean())
            lower, upper = np.percentile(kept, [2.5, 97.5])
        else:
            mean_included, lower, upper = 0.0, 0.0, 0.0

        rows.append(
            {
                "Variable": indicator_column[len("ind[") : -1],
                "PercentInclusion": float(percent),
                "MeanIncluded": mean_included,
                "MeanOverall": overall,
                "Lower": float(lower),
                "Upper": float(upper),
                "NonZero": bool(lower * upper > 0),
            }
        )

    summary = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
    return summary.sort_values(
        "PercentInclusion", ascending=False, kind="stable"
    ).reset_index(drop=True)


@beartype
def write_variable_importance(
    summary: pd.DataFrame,
    path: PathLike | str,
) -> Path:
    """Write a summary table as CSV without the row index."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    summary.to_csv(path, index=False, columns=SUMMARY_COLUMNS)
    logger.info(f"Wrote variable importance table to {path}")
    return path
