"""Latent-factor models, the attribute-to-feature mapping, and checkpointing."""

from .attribute_mapping import (  # noqa: F401
    UNKNOWN_SCORE,
    AttributeToFeatureMapping,
    MappingConfig,
    MappingFit,
    MappingMode,
    select_best_columns,
)
from .latent_factor import FactorModelConfig, LatentFactorModel  # noqa: F401
from .persistence import checkpoint_path, load_model, save_model  # noqa: F401
