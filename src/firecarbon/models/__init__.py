"""firecarbon models.

Design matrices with hierarchical inclusion constraints and the NumPyro
SSVS models that consume them.
"""

from firecarbon.models.design import (
    DesignMatrix,
    DesignTerm,
    build_constraint_matrix,
    build_design_matrix,
    design_for_new_data,
    effective_inclusion,
    parse_formula,
)
from firecarbon.models.ssvs import replicate_ssvs_model, ssvs_model

__all__ = [
    "DesignMatrix",
    "DesignTerm",
    "build_constraint_matrix",
    "build_design_matrix",
    "design_for_new_data",
    "effective_inclusion",
    "parse_formula",
    "replicate_ssvs_model",
    "ssvs_model",
]
