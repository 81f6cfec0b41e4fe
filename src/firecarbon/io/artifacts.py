"""
Versioned storage of sampler outputs.

Artifacts are named ``<variant>_<kind>_<version>.pkl.zst`` where ``version``
is a creation timestamp (``YYYYmmdd-HHMMSS``) unless the caller supplies one.
Loading takes an explicit version; ``latest`` picks the most recently
modified complete artifact as a convenience for interactive reporting
sessions. Interrupted runs are saved under ``<version>-partial`` and are only
returned by ``latest`` when asked for.
"""

import re
from datetime import datetime
from os import PathLike
from pathlib import Path

from beartype import beartype
from beartype.typing import Any, List, Optional

from firecarbon.errors import ConfigurationError, DataLoadError
from firecarbon.io.compressedpickle import CompressedPickle
from firecarbon.logging import configure_logging

__all__ = [
    "ArtifactStore",
    "PARTIAL_SUFFIX",
    "POSTERIOR_PREDICTIONS",
    "POSTERIOR_SAMPLES",
    "timestamp_version",
]

logger = configure_logging(__name__)

POSTERIOR_SAMPLES = "posterior_samples"
POSTERIOR_PREDICTIONS = "posterior_predictions"
PARTIAL_SUFFIX = "-partial"

SUFFIX = ".pkl.zst"
_NAME_PART = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@beartype
def timestamp_version(now: Optional[datetime] = None) -> str:
    """Version string for an artifact created at ``now``."""
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


class ArtifactStore:
    """
    Directory of posterior sample and prediction artifacts.

    Each model variant (e.g. ``total_carbon``) has its own namespace per
    artifact kind, so the latest recalcitrant-carbon predictions never shadow
    the total-carbon ones.

    Examples:
    >>> tmp = getfixture("tmp_path")
    >>> store = ArtifactStore(tmp)
    >>> path = store.save("total_carbon", POSTERIOR_SAMPLES, {"p": 1}, version="v1")
    >>> path.name
    'total_carbon_posterior_samples_v1.pkl.zst'
    >>> store.load("total_carbon", POSTERIOR_SAMPLES)
    {'p': 1}
    """

    def __init__(self, directory: PathLike | str):
        self.directory = Path(directory)

    def __repr__(self) -> str:
        return f"ArtifactStore({str(self.directory)!r})"

    @staticmethod
    def _check_part(part: str, what: str) -> None:
        if not _NAME_PART.match(part):
            raise ConfigurationError(f"invalid artifact {what}: {part!r}")

    def path_for(self, variant: str, kind: str, version: str) -> Path:
        for part, what in ((variant, "variant"), (kind, "kind"), (version, "version")):
            self._check_part(part, what)
        return self.directory / f"{variant}_{kind}_{version}{SUFFIX}"

    def pattern(self, variant: str, kind: str) -> str:
        return f"{variant}_{kind}_*{SUFFIX}"

    def versions(self, variant: str, kind: str) -> List[str]:
        """Available versions, oldest first by modification time."""
        prefix = f"{variant}_{kind}_"
        paths = sorted(
            self.directory.glob(self.pattern(variant, kind)),
            key=lambda p: (p.stat().st_mtime, p.name),
        )
        return [p.name[len(prefix) : -len(SUFFIX)] for p in paths]

    def latest_version(
        self,
        variant: str,
        kind: str,
        include_partial: bool = False,
    ) -> str:
        """
        Most recently modified version of ``kind`` for ``variant``.

        Versions ending in ``PARTIAL_SUFFIX`` come from interrupted runs and
        are skipped unless ``include_partial`` is set.

        Raises:
            DataLoadError: If no artifact matches.
        """
        versions = self.versions(variant, kind)
        candidates = (
            versions
            if include_partial
            else [v for v in versions if not v.endswith(PARTIAL_SUFFIX)]
        )
        if not candidates:
            skipped = (
                f" ({len(versions)} partial artifacts skipped)" if versions else ""
            )
            raise DataLoadError(
                f"no artifact matching {self.pattern(variant, kind)!r} "
                f"in {self.directory}{skipped}"
            )
        return candidates[-1]

    def latest(
        self,
        variant: str,
        kind: str,
        include_partial: bool = False,
    ) -> Path:
        """Path of ``latest_version``."""
        return self.path_for(
            variant,
            kind,
            self.latest_version(variant, kind, include_partial=include_partial),
        )

    def save(
        self,
        variant: str,
        kind: str,
        obj: Any,
        version: Optional[str] = None,
    ) -> Path:
        path = self.path_for(variant, kind, version or timestamp_version())
        logger.info(f"Saving {kind} for {variant} to {path}")
        return CompressedPickle.save(path, obj)

    def load(
        self,
        variant: str,
        kind: str,
        version: Optional[str] = None,
    ) -> Any:
        """
        Load an artifact.

        Args:
            variant: Model variant namespace.
            kind: Artifact kind, e.g. ``POSTERIOR_SAMPLES``.
            version: Explicit version; ``None`` loads the latest complete
                one.

        Raises:
            DataLoadError: If the requested artifact does not exist.
        """
        if version is None:
            path = self.latest(variant, kind)
        else:
            path = self.path_for(variant, kind, version)
            if not path.is_file():
                raise DataLoadError(
                    f"no artifact {path.name!r} in {self.directory}"
                )
        return CompressedPickle.load(path)
