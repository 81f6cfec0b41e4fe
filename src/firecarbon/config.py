"""
Configuration containers for firecarbon analyses.

This module contains:

- SamplerConfig: MCMC run parameters (burn-in, iterations, thinning, seed)
- ModelSpec: formula and data layout of one model variant
- AnalysisConfig: input paths, output location, caching and model list
- default_model_specs: the total-carbon and recalcitrant-carbon models
- load_config: read an AnalysisConfig from a YAML file
"""

from dataclasses import asdict, dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from beartype import beartype
from omegaconf import DictConfig, OmegaConf

from firecarbon.errors import ConfigurationError

__all__ = [
    "AnalysisConfig",
    "ModelSpec",
    "SamplerConfig",
    "TOTAL_CARBON",
    "RECALCITRANT_CARBON",
    "default_model_specs",
    "load_config",
]

TOTAL_CARBON = "total_carbon"
RECALCITRANT_CARBON = "recalcitrant_carbon"

DEFAULT_LEVELS: Dict[str, List[str]] = {
    "depth": ["0-5cm", "5-15cm"],
    "microsite": ["open", "rough", "smooth"],
    "severity": ["LL", "LH", "HL", "HH"],
}


@dataclass(frozen=True)
class SamplerConfig:
    """Immutable container for MCMC run parameters.

    Attributes:
        num_warmup: Burn-in iterations, discarded
        num_samples: Post burn-in iterations, before thinning
        thinning: Keep every ``thinning``-th post burn-in iteration
        num_chains: Number of chains; only a single chain is supported
        seed: Seed of the explicit random key threaded through the run
        chunk_size: Post burn-in iterations per chunk; ``None`` runs in one go
        progress_bar: Whether NumPyro shows its progress bar
    """

    num_warmup: int = 50_000
    num_samples: int = 100_000
    thinning: int = 10
    num_chains: int = 1
    seed: int = 0
    chunk_size: Optional[int] = None
    progress_bar: bool = True

    def __post_init__(self):
        self.validate()

    def replace(self, **kwargs) -> "SamplerConfig":
        """Create a new SamplerConfig with updated values."""
        return type(self)(**{**asdict(self), **kwargs})

    @property
    def num_retained(self) -> int:
        return self.num_samples // self.thinning

    def validate(self) -> None:
        if self.num_warmup < 0:
            raise ConfigurationError(
                f"num_warmup must be non-negative, got {self.num_warmup}"
            )
        if self.num_samples < 1 or self.thinning < 1:
            raise ConfigurationError(
                "num_samples and thinning must be positive, got "
                f"num_samples={self.num_samples}, thinning={self.thinning}"
            )
        if self.num_samples % self.thinning != 0:
            raise ConfigurationError(
                f"num_samples ({self.num_samples}) must be a multiple of "
                f"thinning ({self.thinning})"
            )
        if self.num_chains != 1:
            raise ConfigurationError(
                f"only single-chain sampling is supported, got {self.num_chains}"
            )
        if self.chunk_size is not None:
            if (
                self.chunk_size < 1
                or self.chunk_size % self.thinning != 0
                or self.num_samples % self.chunk_size != 0
            ):
                raise ConfigurationError(
                    f"chunk_size ({self.chunk_size}) must be a positive "
                    f"multiple of thinning ({self.thinning}) that divides "
                    f"num_samples ({self.num_samples})"
                )


@dataclass
class ModelSpec:
    """
    Formula and data layout for one model variant.

    Attributes:
        variant: Name of the model variant, used to namespace artifacts
        formula: R-style one-sided model formula
        response: Column holding the percent-carbon response
        factors: Categorical covariates used to build the prediction grid
        levels: Level order per factor; the first level is the reference
        covariates: Numeric covariates averaged per prediction case
        sample_id: Column grouping digest replicates; ``None`` means one
            observation per row and no latent-truth layer
        log_response: Whether to natural-log transform the response
    """

    variant: str
    formula: str
    response: str
    factors: List[str] = field(default_factory=list)
    levels: Dict[str, List[str]] = field(default_factory=dict)
    covariates: List[str] = field(default_factory=list)
    sample_id: Optional[str] = None
    log_response: bool = True

    @property
    def has_replicates(self) -> bool:
        return self.sample_id is not None

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "ModelSpec":
        return cls(
            variant=config_dict["variant"],
            formula=config_dict["formula"],
            response=config_dict["response"],
            factors=list(config_dict.get("factors", [])),
            levels={
                k: list(v) for k, v in config_dict.get("levels", {}).items()
            },
            covariates=list(config_dict.get("covariates", [])),
            sample_id=config_dict.get("sample_id"),
            log_response=config_dict.get("log_response", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@beartype
def default_model_specs() -> List[ModelSpec]:
    """
    Model specifications for the fire severity soil carbon analysis.

    Both variants include all two-way interactions among depth, micro-site and
    severity. The recalcitrant-carbon variant averages digest replicates
    through the latent-truth layer and adjusts for baseline total carbon.
    """
    factors = ["depth", "microsite", "severity"]
    return [
        ModelSpec(
            variant=TOTAL_CARBON,
            formula="~ (depth + microsite + severity)^2",
            response="percent_carbon",
            factors=factors,
            levels=dict(DEFAULT_LEVELS),
        ),
        ModelSpec(
            variant=RECALCITRANT_CARBON,
            formula=(
                "~ (depth + microsite + severity)^2 + baseline_total_carbon"
            ),
            response="percent_carbon",
            factors=factors,
            levels=dict(DEFAULT_LEVELS),
            covariates=["baseline_total_carbon"],
            sample_id="sample_id",
        ),
    ]


@dataclass
class AnalysisConfig:
    """
    Configuration for a complete analysis run.

    Attributes:
        data_paths: Observation table per model variant
        output_dir: Directory holding artifacts and CSV exports
        recompute: Run the sampler even if a saved artifact exists
        version: Artifact version to load when not recomputing; ``None``
            selects the most recent one
        sampler: MCMC run parameters shared by all models
        models: Model variants to fit
    """

    data_paths: Dict[str, str] = field(default_factory=dict)
    output_dir: str = "results"
    recompute: bool = False
    version: Optional[str] = None
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    models: List[ModelSpec] = field(default_factory=default_model_specs)

    @classmethod
    def from_dict(
        cls, config_dict: Union[Dict[str, Any], DictConfig]
    ) -> "AnalysisConfig":
        if isinstance(config_dict, DictConfig):
            config_dict = OmegaConf.to_container(config_dict, resolve=True)

        models = config_dict.get("models")
        return cls(
            data_paths=dict(config_dict.get("data_paths", {})),
            output_dir=config_dict.get("output_dir", "results"),
            recompute=config_dict.get("recompute", False),
            version=config_dict.get("version"),
            sampler=SamplerConfig(**config_dict.get("sampler", {})),
            models=(
                [ModelSpec.from_dict(m) for m in models]
                if models is not None
                else default_model_specs()
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def model(self, variant: str) -> ModelSpec:
        for spec in self.models:
            if spec.variant == variant:
                return spec
        raise ConfigurationError(
            f"no model variant named {variant!r}; configured variants: "
            f"{[spec.variant for spec in self.models]}"
        )


@beartype
def load_config(
    path: PathLike | str,
    overrides: Tuple[str, ...] = (),
) -> AnalysisConfig:
    """
    Load an AnalysisConfig from YAML.

    Args:
        path: YAML file path.
        overrides: Dotted ``key=value`` overrides, e.g. ``sampler.seed=3``.

    Returns:
        The parsed configuration.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"configuration file not found: {path}")

    config = OmegaConf.load(path)
    if overrides:
        config = OmegaConf.merge(config, OmegaConf.from_dotlist(list(overrides)))
    return AnalysisConfig.from_dict(config)
