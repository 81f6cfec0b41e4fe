import os
from datetime import datetime

import pytest

from firecarbon.errors import ConfigurationError, DataLoadError
from firecarbon.io.artifacts import (
    PARTIAL_SUFFIX,
    POSTERIOR_PREDICTIONS,
    POSTERIOR_SAMPLES,
    ArtifactStore,
    timestamp_version,
)


def _set_mtime(path, seconds):
    os.utime(path, (seconds, seconds))


def test_timestamp_version():
    assert timestamp_version(datetime(2024, 3, 5, 14, 7, 9)) == "20240305-140709"


def test_path_for(artifact_store):
    path = artifact_store.path_for("total_carbon", POSTERIOR_SAMPLES, "v1")
    assert path == artifact_store.directory / "total_carbon_posterior_samples_v1.pkl.zst"


@pytest.mark.parametrize(
    "variant, version",
    [("total carbon", "v1"), ("total_carbon", "../v1"), ("", "v1"), ("total_carbon", "")],
)
def test_path_for_rejects_invalid_names(artifact_store, variant, version):
    with pytest.raises(ConfigurationError):
        artifact_store.path_for(variant, POSTERIOR_SAMPLES, version)


def test_save_and_load_explicit_version(artifact_store, synthetic_samples):
    artifact_store.save("total_carbon", POSTERIOR_SAMPLES, synthetic_samples, version="v1")
    loaded = artifact_store.load("total_carbon", POSTERIOR_SAMPLES, version="v1")
    assert loaded.equals(synthetic_samples)


def test_save_without_version_uses_timestamp(artifact_store):
    path = artifact_store.save("total_carbon", POSTERIOR_SAMPLES, {"p": 0.5})
    version = artifact_store.versions("total_carbon", POSTERIOR_SAMPLES)[0]
    assert path.name.endswith(f"_{version}.pkl.zst")
    assert len(version) == len("20240305-140709")


def test_versions_ordered_by_modification_time(artifact_store):
    old = artifact_store.save("total_carbon", POSTERIOR_SAMPLES, 1, version="b")
    new = artifact_store.save("total_carbon", POSTERIOR_SAMPLES, 2, version="a")
    _set_mtime(old, 1_000_000)
    _set_mtime(new, 2_000_000)

    assert artifact_store.versions("total_carbon", POSTERIOR_SAMPLES) == ["b", "a"]
    assert artifact_store.latest("total_carbon", POSTERIOR_SAMPLES) == new
    assert artifact_store.load("total_carbon", POSTERIOR_SAMPLES) == 2


def test_variants_and_kinds_are_separate_namespaces(artifact_store):
    """Test that the latest artifact of one variant never shadows another."""
    total = artifact_store.save("total_carbon", POSTERIOR_PREDICTIONS, "total", version="v1")
    recalcitrant = artifact_store.save(
        "recalcitrant_carbon", POSTERIOR_PREDICTIONS, "recalcitrant", version="v1"
    )
    samples = artifact_store.save("total_carbon", POSTERIOR_SAMPLES, "samples", version="v2")
    _set_mtime(total, 1_000_000)
    _set_mtime(recalcitrant, 2_000_000)
    _set_mtime(samples, 3_000_000)

    assert artifact_store.load("total_carbon", POSTERIOR_PREDICTIONS) == "total"
    assert artifact_store.load("recalcitrant_carbon", POSTERIOR_PREDICTIONS) == "recalcitrant"
    assert artifact_store.versions("total_carbon", POSTERIOR_PREDICTIONS) == ["v1"]


def test_latest_without_artifacts(artifact_store):
    with pytest.raises(DataLoadError, match="total_carbon_posterior_samples"):
        artifact_store.latest("total_carbon", POSTERIOR_SAMPLES)


def test_load_missing_version(artifact_store):
    artifact_store.save("total_carbon", POSTERIOR_SAMPLES, 1, version="v1")
    with pytest.raises(DataLoadError, match="v2"):
        artifact_store.load("total_carbon", POSTERIOR_SAMPLES, version="v2")


def test_latest_skips_partial_runs(artifact_store):
    """Test that an interrupted run never shadows the last complete one."""
    complete = artifact_store.save("total_carbon", POSTERIOR_SAMPLES, "complete", version="v1")
    partial = artifact_store.save(
        "total_carbon", POSTERIOR_SAMPLES, "partial", version=f"v2{PARTIAL_SUFFIX}"
    )
    _set_mtime(complete, 1_000_000)
    _set_mtime(partial, 2_000_000)

    assert artifact_store.versions("total_carbon", POSTERIOR_SAMPLES) == ["v1", "v2-partial"]
    assert artifact_store.latest_version("total_carbon", POSTERIOR_SAMPLES) == "v1"
    assert artifact_store.latest("total_carbon", POSTERIOR_SAMPLES) == complete
    assert artifact_store.load("total_carbon", POSTERIOR_SAMPLES) == "complete"
    assert artifact_store.latest(
        "total_carbon", POSTERIOR_SAMPLES, include_partial=True
    ) == partial
    assert artifact_store.load(
        "total_carbon", POSTERIOR_SAMPLES, version="v2-partial"
    ) == "partial"


def test_latest_with_only_partial_runs(artifact_store):
    artifact_store.save("total_carbon", POSTERIOR_SAMPLES, 1, version="v1-partial")

    with pytest.raises(DataLoadError, match="1 partial artifacts skipped"):
        artifact_store.latest("total_carbon", POSTERIOR_SAMPLES)
    with pytest.raises(DataLoadError, match="partial artifacts skipped"):
        artifact_store.load("total_carbon", POSTERIOR_SAMPLES)
    assert artifact_store.latest_version(
        "total_carbon", POSTERIOR_SAMPLES, include_partial=True
    ) == "v1-partial"
