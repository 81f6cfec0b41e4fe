"""
Inference for the SSVS models.

- mcmc: single-chain sampling with burn-in, thinning and chunking
- posterior: prediction grids and posterior predictive draws
"""

from firecarbon.inference.mcmc import SamplerResult, run_ssvs
from firecarbon.inference.posterior import (
    coefficient_draws,
    posterior_predict,
    prediction_grid,
)

__all__ = [
    "SamplerResult",
    "coefficient_draws",
    "posterior_predict",
    "prediction_grid",
    "run_ssvs",
]
