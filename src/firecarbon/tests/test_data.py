"""Tests for `firecarbon.data` module."""

import numpy as np
import pandas as pd
import pytest

from firecarbon.config import DEFAULT_LEVELS
from firecarbon.data import (
    load_observations,
    log_response,
    replicate_layout,
    sample_table,
    synthetic_observations,
    synthetic_replicates,
)
from firecarbon.errors import DataLoadError


def test_load_observations_csv(tmp_path, total_carbon_data):
    path = tmp_path / "total.csv"
    total_carbon_data.to_csv(path, index=False)

    loaded = load_observations(path)
    assert list(loaded.columns) == list(total_carbon_data.columns)
    np.testing.assert_allclose(
        loaded["percent_carbon"], total_carbon_data["percent_carbon"]
    )


def test_load_observations_excel(tmp_path, total_carbon_data):
    path = tmp_path / "total.xlsx"
    total_carbon_data.to_excel(path, index=False, engine="openpyxl")
    loaded = load_observations(path)
    assert len(loaded) == len(total_carbon_data)


@pytest.mark.parametrize("name", ["missing.csv", "table.json"])
def test_load_observations_errors(tmp_path, name):
    (tmp_path / "table.json").write_text("{}")
    with pytest.raises(DataLoadError):
        load_observations(tmp_path / name)


def test_log_response():
    np.testing.assert_allclose(log_response([1.0, np.e]), [0.0, 1.0])
    with pytest.raises(DataLoadError, match="2 response values"):
        log_response(pd.Series([1.0, 0.0, -2.0]))


def test_replicate_layout_from_mapping():
    """Test ragged replicates with a missing value."""
    layout = replicate_layout({"K1": [0.1, None, 0.3], "K2": [0.2], "K3": [0.4, np.nan]})

    assert layout.sample_ids == ["K1", "K2", "K3"]
    assert layout.sample_index.tolist() == [0, 0, 1, 2]
    np.testing.assert_allclose(layout.values, [0.1, 0.3, 0.2, 0.4])
    assert layout.counts() == {"K1": 2, "K2": 1, "K3": 1}
    assert layout.n_samples == 3


def test_replicate_layout_from_long_table():
    table = pd.DataFrame(
        {"sample_id": ["B", "A", "B", "A", "A"], "value": [1.0, 2.0, 3.0, 4.0, 5.0]}
    )
    layout = replicate_layout(table)

    assert layout.sample_ids == ["B", "A"]
    assert layout.sample_index.tolist() == [0, 0, 1, 1, 1]
    np.testing.assert_allclose(layout.values, [1.0, 3.0, 2.0, 4.0, 5.0])


def test_replicate_layout_sample_without_values():
    with pytest.raises(DataLoadError, match="K2"):
        replicate_layout({"K1": [0.1], "K2": [None, np.nan]})


def test_replicate_layout_missing_columns():
    with pytest.raises(DataLoadError, match="value"):
        replicate_layout(pd.DataFrame({"sample_id": ["A"]}))


def test_sample_table(replicate_data):
    ids = replicate_data["sample_id"].drop_duplicates().tolist()[::-1]
    table = sample_table(
        replicate_data, "sample_id", ["depth", "severity"], sample_ids=ids
    )
    assert table["sample_id"].tolist() == ids
    assert list(table.columns) == ["sample_id", "depth", "severity"]


def test_sample_table_inconsistent_covariate():
    data = pd.DataFrame({"sample_id": ["A", "A"], "depth": ["0-5cm", "5-15cm"]})
    with pytest.raises(DataLoadError, match="depth"):
        sample_table(data, "sample_id", ["depth"])


def test_synthetic_observations():
    data = synthetic_observations(n_per_cell=2, seed=0)
    assert len(data) == 2 * 2 * 3 * 4
    assert set(data["severity"]) == set(DEFAULT_LEVELS["severity"])
    assert (data["percent_carbon"] > 0).all()
    pd.testing.assert_frame_equal(data, synthetic_observations(n_per_cell=2, seed=0))


def test_synthetic_replicates():
    data = synthetic_replicates(n_samples_per_cell=1, max_replicates=3, seed=0)
    counts = data.groupby("sample_id").size()

    assert len(counts) == 24
    assert counts.between(1, 3).all()
    assert data.groupby("sample_id")["baseline_total_carbon"].nunique().eq(1).all()
