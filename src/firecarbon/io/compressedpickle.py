import os
from os import PathLike
from pathlib import Path

import dill as pickle
import jax
import numpy as np
from beartype import beartype
from beartype.typing import Any
from zstandard import (
    ZstdCompressionParameters,
    ZstdCompressor,
    ZstdDecompressor,
)

from firecarbon.errors import DataLoadError
from firecarbon.io.hash import hash_file
from firecarbon.logging import configure_logging

__all__ = ["CompressedPickle"]

logger = configure_logging(__name__)


@beartype
def get_compression_threads() -> int:
    """Leave one CPU free for the interpreter when compressing."""
    cpu_count = os.cpu_count() or 1
    return max(cpu_count - 1, 1)


def _to_host(obj: Any) -> Any:
    """Replace device arrays by numpy arrays so pickles load without jax."""
    if isinstance(obj, jax.Array):
        return np.asarray(obj)
    if isinstance(obj, dict):
        return {k: _to_host(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(_to_host(v) for v in obj)
    return obj


class CompressedPickle:
    """
    Read and write zstandard-compressed dill pickles.

    Posterior sample matrices are the main payload; they are written once per
    sampler run and reloaded by later reporting sessions.

    Examples:
    >>> import pandas as pd
    >>> tmp = getfixture("tmp_path")
    >>> path = tmp / "samples.pkl.zst"
    >>> samples = pd.DataFrame({"p": [0.2, 0.4], "sigma": [1.0, 1.1]})
    >>> _ = CompressedPickle.save(path, samples)
    >>> CompressedPickle.load(path).equals(samples)
    True
    """

    @staticmethod
    def save(
        file_path: PathLike | str,
        obj: Any,
        compression_level: int = 3,
    ) -> Path:
        """
        Save an object to a zstandard-compressed pickle file.

        Args:
            file_path: Destination path; parent directories are created.
            obj: Object to save. JAX arrays are converted to numpy first.
            compression_level: zstandard compression level.

        Returns:
            The path written.
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        compression_params = ZstdCompressionParameters.from_level(
            compression_level,
            threads=get_compression_threads(),
        )

        with file_path.open("wb") as f:
            compression_context = ZstdCompressor(
                compression_params=compression_params
            )
            with compression_context.stream_writer(f) as compressor:
                pickle.dump(_to_host(obj), compressor)

        _log_hash(file_path=file_path, mode="saved")
        return file_path

    @staticmethod
    def load(file_path: PathLike | str) -> Any:
        """
        Load an object from a zstandard-compressed pickle file.

        Raises:
            DataLoadError: If the file does not exist.
        """
        file_path = Path(file_path)
        if not file_path.is_file():
            raise DataLoadError(f"no such artifact: {file_path}")

        with file_path.open("rb") as f:
            decompression_context = ZstdDecompressor()
            with decompression_context.stream_reader(f) as decompressor:
                obj = pickle.load(decompressor)

        _log_hash(file_path=file_path, mode="loaded")
        return obj


@beartype
def _log_hash(file_path: str | Path, mode: str = "loaded or saved") -> str:
    file_hash = hash_file(file_path=file_path)
    logger.info(
        f"\nSuccessfully {mode} file: {file_path}\n"
        f"SHA-256 hash: {file_hash}\n"
    )
    return file_hash
