import re

import numpy as np
import pandas as pd

from .config import (
    COL_COMB_ID,
    COL_RESPONSE,
    COL_SPECIES,
    DROP_COLUMNS,
    INPUT_SEP,
    PREDICTORS,
)


def normalize_column_names(df):
    """Replace spaces, hyphens and commas in column names with underscores."""
    df = df.copy()
    df.columns = [re.sub(r"[ ,\-]", "_", str(col).strip()) for col in df.columns]
    return df


def load_observations(path, sep=INPUT_SEP, drop_columns=DROP_COLUMNS):
    """
    Read the raw observation table, one row per species per site/time combination.
    The export's row identifier is dropped and column names are normalised.
    """
    df = pd.read_csv(path, sep=sep)
    df = df.drop(columns=drop_columns, errors="ignore")
    df = normalize_column_names(df)

    for col in (COL_COMB_ID, COL_SPECIES):
        if col not in df.columns:
            raise KeyError(f"Input file {path} has no '{col}' column")
    return df


def compute_richness(df, id_col=COL_COMB_ID, response=COL_RESPONSE):
    # every row is one species seen at that combination
    return df.groupby(id_col).size().rename(response).reset_index()


def covariates_per_comb(df, id_col=COL_COMB_ID, species_col=COL_SPECIES):
    """
    One covariate row per combination. Covariates are expected to be constant
    within a combination, any combination where they diverge is reported.
    """
    covariates = df.drop(columns=[species_col]).drop_duplicates()

    duplicated = covariates[id_col].duplicated(keep=False)
    if duplicated.any():
        bad_ids = covariates.loc[duplicated, id_col].unique().tolist()
        shown = ", ".join(map(str, bad_ids[:10]))
        more = f" (+{len(bad_ids) - 10} more)" if len(bad_ids) > 10 else ""
        raise ValueError(
            f"Covariates are not constant within {len(bad_ids)} {id_col} value(s): {shown}{more}"
        )
    return covariates.reset_index(drop=True)


def build_modeling_table(df, id_col=COL_COMB_ID, species_col=COL_SPECIES,
                         response=COL_RESPONSE):
    """Join richness onto the per-combination covariates, one row per comb_ID."""
    richness = compute_richness(df, id_col=id_col, response=response)
    covariates = covariates_per_comb(df, id_col=id_col, species_col=species_col)

    joined = richness.merge(covariates, on=id_col, how="left").drop_duplicates()
    return joined.sort_values(id_col).reset_index(drop=True)


def select_features(table, predictors=PREDICTORS, response=COL_RESPONSE):
    """
    Narrow the modeling table to the named predictors and the response.
    Missing values are filled with zero.
    """
    missing = [col for col in list(predictors) + [response] if col not in table.columns]
    if missing:
        raise KeyError(f"Missing column(s) in modeling table: {missing}")

    selected = table[list(predictors) + [response]].copy()
    for col in predictors:
        selected[col] = pd.to_numeric(selected[col], errors="coerce")
    selected = selected.replace([np.inf, -np.inf], np.nan)

    n_missing = int(selected.isna().sum().sum())
    if n_missing:
        print(f"  Filling {n_missing} missing value(s) with 0")
    return selected.fillna(0)
