import numpy as np
import pandas as pd
import pytest

from bird_richness.dataset_extract import (
    build_modeling_table,
    compute_richness,
    covariates_per_comb,
    load_observations,
    normalize_column_names,
    select_features,
)
from conftest import make_observations


def test_normalize_column_names():
    df = pd.DataFrame(columns=["Tree cover", "start-year", "Annual precipitation, mm", " area "])
    out = normalize_column_names(df)
    assert list(out.columns) == ["Tree_cover", "start_year", "Annual_precipitation__mm", "area"]


def test_load_observations_drops_id_and_normalizes(tmp_path):
    path = tmp_path / "obs.csv"
    pd.DataFrame({
        "ID": [1, 2, 3],
        "comb_ID": ["a", "a", "b"],
        "species": ["s1", "s2", "s1"],
        "tree cover": [0.1, 0.1, 0.5],
        "time-span": [3, 3, 7],
    }).to_csv(path, index=False)

    df = load_observations(path)
    assert "ID" not in df.columns
    assert list(df.columns) == ["comb_ID", "species", "tree_cover", "time_span"]


def test_load_observations_requires_comb_id(tmp_path):
    path = tmp_path / "obs.csv"
    pd.DataFrame({"species": ["s1"], "area": [1.0]}).to_csv(path, index=False)
    with pytest.raises(KeyError, match="comb_ID"):
        load_observations(path)


def test_load_observations_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_observations(tmp_path / "nope.csv")


@pytest.mark.parametrize("seed", range(5))
def test_richness_equals_row_count(seed):
    obs = make_observations(n_combs=25, seed=seed, predictors=["a", "b"])
    richness = compute_richness(obs).set_index("comb_ID")["richness"]
    expected = obs["comb_ID"].value_counts()
    assert richness.sort_index().tolist() == expected.sort_index().tolist()


def test_modeling_table_one_row_per_comb(observations):
    table = build_modeling_table(observations)
    assert len(table) == observations["comb_ID"].nunique()
    assert not table["comb_ID"].duplicated().any()
    assert "species" not in table.columns

    first = table.iloc[0]
    rows = observations[observations["comb_ID"] == first["comb_ID"]]
    assert first["richness"] == len(rows)
    assert first["area"] == rows["area"].iloc[0]


def test_divergent_covariates_are_reported():
    obs = pd.DataFrame({
        "comb_ID": ["a", "a", "b"],
        "species": ["s1", "s2", "s1"],
        "area": [1.0, 2.0, 3.0],
    })
    with pytest.raises(ValueError, match="not constant.*a"):
        covariates_per_comb(obs)


def test_select_features_missing_column(observations):
    table = build_modeling_table(observations).drop(columns=["ndvi", "elevation"])
    with pytest.raises(KeyError, match="ndvi"):
        select_features(table)


def test_select_features_fills_zero():
    table = pd.DataFrame({
        "comb_ID": ["a", "b"],
        "x1": [1.0, np.nan],
        "x2": ["3", "bad"],
        "other": [9, 9],
        "richness": [4, 2],
    })
    out = select_features(table, predictors=["x1", "x2"])
    assert list(out.columns) == ["x1", "x2", "richness"]
    assert out["x1"].tolist() == [1.0, 0.0]
    assert out["x2"].tolist() == [3.0, 0.0]
    assert not out.isna().any().any()
