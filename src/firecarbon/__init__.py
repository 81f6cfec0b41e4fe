"""
firecarbon

Bayesian stochastic-search variable selection for soil carbon response to
fire severity, micro-site and depth, with a latent-truth layer for replicate
digest measurements.
"""

from importlib import metadata

import firecarbon.analysis
import firecarbon.inference
import firecarbon.io
import firecarbon.logging
import firecarbon.models
import firecarbon.tasks

try:
    __version__ = metadata.version(__package__)
except metadata.PackageNotFoundError:
    __version__ = "unknown"

del metadata

__all__ = [
    "analysis",
    "inference",
    "io",
    "logging",
    "models",
    "tasks",
]
