import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import PowerTransformer, StandardScaler

from .config import COL_RESPONSE, CV_FOLDS, PREDICTORS, SEED, TRAIN_PROP


def split_train_test(table, train_prop=TRAIN_PROP, seed=SEED):
    """Partition the modeling table into train/test; same seed, same membership."""
    train_df, test_df = train_test_split(
        table,
        train_size=train_prop,
        random_state=seed,
        shuffle=True,
    )
    return train_df, test_df


def make_folds(n_rows, n_folds=CV_FOLDS, seed=SEED):
    """
    Fold assignment over training rows (positional indices).
    Returns a list of (train_idx, val_idx), each row validated exactly once.
    """
    kf = KFold(n_splits=n_folds, shuffle=True, random_state=seed)
    return list(kf.split(np.arange(n_rows)))


def build_preprocessor():
    # Yeo-Johnson first, then z-scores, both fit on training rows only
    return Pipeline([
        ("power", PowerTransformer(method="yeo-johnson", standardize=False)),
        ("scale", StandardScaler()),
    ])


def split_xy(df, predictors=PREDICTORS, response=COL_RESPONSE):
    return df[list(predictors)], df[response]


def drop_incomplete_rows(X, y, label="data"):
    """
    Drop rows with any missing or non-finite predictor (or response) value.
    Returns (X, y, n_dropped); the count is printed, never hidden.
    """
    X_arr = np.asarray(X, dtype=float)
    y_arr = np.asarray(y, dtype=float)
    keep = np.isfinite(X_arr).all(axis=1) & np.isfinite(y_arr)
    n_dropped = int((~keep).sum())

    if n_dropped:
        print(f"  ⚠ Dropped {n_dropped}/{len(keep)} incomplete row(s) from {label}")

    if isinstance(X, pd.DataFrame):
        X = X.loc[keep]
    else:
        X = X_arr[keep]
    if isinstance(y, pd.Series):
        y = y.loc[keep]
    else:
        y = y_arr[keep]
    return X, y, n_dropped


def transform_with_fitted(model, X, y, label="data"):
    """
    Apply the fitted preprocessing steps of `model` (everything before the
    estimator) unchanged, then drop rows the transform left incomplete.
    """
    X_t = model[:-1].transform(X)
    X_t = pd.DataFrame(X_t, columns=list(X.columns), index=X.index)
    return drop_incomplete_rows(X_t, y, label=label)
