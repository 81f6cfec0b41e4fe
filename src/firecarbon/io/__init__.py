from firecarbon.io.artifacts import (
    POSTERIOR_PREDICTIONS,
    POSTERIOR_SAMPLES,
    ArtifactStore,
)
from firecarbon.io.compressedpickle import CompressedPickle
from firecarbon.io.spreadsheet import load_digest_data

__all__ = [
    "ArtifactStore",
    "CompressedPickle",
    "POSTERIOR_PREDICTIONS",
    "POSTERIOR_SAMPLES",
    "load_digest_data",
]
