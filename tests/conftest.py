import numpy as np
import pandas as pd
import pytest

from bird_richness import config

SYNTH_PREDICTORS = ["x1", "x2", "x3", "x4", "x5"]


def make_observations(n_combs=30, seed=0, predictors=config.PREDICTORS):
    """Raw rows: 1-8 species rows per comb_ID, covariates constant within a comb_ID."""
    rng = np.random.default_rng(seed)
    rows = []
    for comb in range(n_combs):
        covariates = {name: rng.normal() for name in predictors}
        n_species = int(rng.integers(1, 9))
        for sp in rng.choice(200, size=n_species, replace=False):
            rows.append({"comb_ID": f"c{comb:03d}", "species": f"sp{sp}", **covariates})
    return pd.DataFrame(rows)


@pytest.fixture
def observations():
    return make_observations()


@pytest.fixture
def linear_table():
    """100 rows, 5 predictors, richness driven by x1 and x2 only."""
    rng = np.random.default_rng(42)
    df = pd.DataFrame(rng.uniform(0, 1, size=(100, 5)), columns=SYNTH_PREDICTORS)
    df["richness"] = 5 * df["x1"] + 3 * df["x2"] + rng.normal(0, 0.2, size=100)
    return df
