"""
Bird Species Richness Random Forest Pipeline
============================================

Predicts species richness per site/time combination (comb_ID) from
environmental covariates (climate, land cover, time, geography).

Stages:
- Load raw observations, normalise column names
- Richness per comb_ID joined to the deduplicated covariates
- Fixed predictor set, missing values filled with 0
- 3/4 train / 1/4 test split, k-fold CV on the training rows
- Yeo-Johnson + standardisation fit inside every fold (no leakage)
- Grid search over max_features x n_estimators x min_samples_split
  scored with RMSE, R2 and MAE, best grid point by lowest mean RMSE
- Final refit on the whole training set, single evaluation on the test set
- Impurity importance bar chart and correlation plot of the top predictors

Run with: python -m bird_richness.train_rf_model
"""

import os
import warnings

import joblib
from joblib.externals.loky import get_reusable_executor
import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score
from sklearn.model_selection import GridSearchCV, ParameterGrid
from sklearn.pipeline import Pipeline
from tqdm_joblib import tqdm_joblib

from . import config
from .dataset_extract import build_modeling_table, load_observations, select_features
from .preprocessing import (
    build_preprocessor,
    drop_incomplete_rows,
    make_folds,
    split_train_test,
    split_xy,
    transform_with_fitted,
)
from .report import (
    correlation_matrix,
    feature_importance,
    plot_correlation,
    plot_feature_importance,
)

HYPERPARAMS = ["max_features", "n_estimators", "min_samples_split"]
LOWER_IS_BETTER = {"rmse": True, "mae": True, "r2": False}


class CompleteRowsForest(RandomForestRegressor):
    """
    Random forest that drops training rows left non-finite by the preceding
    transforms, so the row drop also happens inside every CV fold.
    The count of the last fit is kept in `n_dropped_`.
    """

    def fit(self, X, y, sample_weight=None):
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        keep = np.isfinite(X).all(axis=1) & np.isfinite(y)
        self.n_dropped_ = int((~keep).sum())
        if sample_weight is not None:
            sample_weight = np.asarray(sample_weight)[keep]
        return super().fit(X[keep], y[keep], sample_weight=sample_weight)


def build_model_pipeline(seed=config.SEED, n_jobs=1):
    """Preprocessing steps followed by the forest, fit as one unit."""
    steps = build_preprocessor().steps + [
        ("rf", CompleteRowsForest(random_state=seed, n_jobs=n_jobs)),
    ]
    return Pipeline(steps)


def regression_metrics(y_true, y_pred):
    return {
        "rmse": float(np.sqrt(mean_squared_error(y_true, y_pred))),
        "r2": float(r2_score(y_true, y_pred)),
        "mae": float(mean_absolute_error(y_true, y_pred)),
    }


def summarize_search(cv_results, n_folds, metrics=config.METRICS):
    """
    Turn GridSearchCV.cv_results_ into one row per grid point: the hyperparameters,
    every fold score, and mean/std per metric. Scores of negated scorers are
    flipped back so that rmse and mae are positive errors.

    A grid point with any failed fold is flagged in `failed` and keeps NaN means.
    """
    rows = []
    for i, params in enumerate(cv_results["params"]):
        row = {name.split("__")[-1]: value for name, value in params.items()}
        for metric, scorer in metrics.items():
            sign = -1.0 if scorer.startswith("neg_") else 1.0
            fold_scores = np.array(
                [sign * cv_results[f"split{k}_test_{metric}"][i] for k in range(n_folds)],
                dtype=float,
            )
            for k, score in enumerate(fold_scores):
                row[f"{metric}_fold{k}"] = score
            row[f"mean_{metric}"] = fold_scores.mean()
            row[f"std_{metric}"] = fold_scores.std()
        row["n_folds"] = int(np.isfinite(
            [row[f"rmse_fold{k}"] for k in range(n_folds)]
        ).sum())
        row["failed"] = row["n_folds"] < n_folds
        rows.append(row)
    return pd.DataFrame(rows)


def run_grid_search(train_df, param_grid=config.PARAM_GRID, n_folds=config.CV_FOLDS,
                    seed=config.SEED, n_jobs=config.N_JOBS,
                    predictors=config.PREDICTORS, response=config.COL_RESPONSE,
                    metrics=config.METRICS):
    """
    Cross-validated grid search. Every (grid point, fold) fit is an independent
    job on a joblib worker pool of `n_jobs` workers; failed fits score NaN and
    do not abort the search. The pool is shut down before returning.

    Returns (results, number of incomplete training rows dropped before the search).
    """
    X, y = split_xy(train_df, predictors, response)
    X, y, n_dropped = drop_incomplete_rows(X, y, label="training set")
    folds = make_folds(len(X), n_folds=n_folds, seed=seed)

    n_candidates = len(ParameterGrid(param_grid))
    print(f"  Grid points: {n_candidates}, folds: {n_folds} -> {n_candidates * n_folds} fits")

    search = GridSearchCV(
        estimator=build_model_pipeline(seed=seed, n_jobs=1),
        param_grid=param_grid,
        scoring=metrics,
        cv=folds,
        refit=False,
        error_score=np.nan,
        n_jobs=n_jobs,
    )

    # worker pool lives only for this call
    try:
        with joblib.parallel_config(backend="loky", n_jobs=n_jobs):
            with tqdm_joblib(total=n_candidates * n_folds, desc="CV fits", unit="fit"):
                search.fit(X, y)
    finally:
        if n_jobs != 1:
            get_reusable_executor().shutdown(wait=True)

    results = summarize_search(search.cv_results_, n_folds, metrics=metrics)
    n_failed = int(results["failed"].sum())
    if n_failed:
        print(f"  ⚠ {n_failed}/{len(results)} grid point(s) failed to fit and are excluded")
    return results, n_dropped


def select_best(results, metric=config.SELECTION_METRIC):
    """
    Hyperparameters of the best non-failed grid point by mean `metric`.
    Ties go to the first grid point in grid order (stable sort).
    """
    candidates = results[~results["failed"].astype(bool)]
    candidates = candidates[np.isfinite(candidates[f"mean_{metric}"])]
    if candidates.empty:
        raise ValueError("No grid point was fit successfully, nothing to select")

    ordered = candidates.sort_values(
        f"mean_{metric}", ascending=LOWER_IS_BETTER[metric], kind="mergesort"
    )
    best = ordered.iloc[0]
    return {name: best[name].item() if hasattr(best[name], "item") else best[name]
            for name in HYPERPARAMS}


def fit_final(train_df, best_params, seed=config.SEED, n_jobs=config.N_JOBS,
              predictors=config.PREDICTORS, response=config.COL_RESPONSE):
    """
    Refit preprocessing and forest on the whole training partition.
    Returns (fitted pipeline, number of training rows dropped).
    """
    X, y = split_xy(train_df, predictors, response)

    model = build_model_pipeline(seed=seed, n_jobs=n_jobs)
    model.set_params(**{f"rf__{name}": value for name, value in best_params.items()})

    # preprocessing first, so incomplete rows after the transform can be dropped
    model[:-1].fit(X)
    X_t, y_t, n_dropped = transform_with_fitted(model, X, y, label="training set")
    model[-1].fit(X_t.to_numpy(), y_t.to_numpy())
    return model, n_dropped


def evaluate_on_test(model, test_df, predictors=config.PREDICTORS,
                     response=config.COL_RESPONSE):
    """Score the fitted pipeline once on the held-out partition."""
    X, y = split_xy(test_df, predictors, response)
    X_t, y_t, n_dropped = transform_with_fitted(model, X, y, label="test set")

    preds = model[-1].predict(X_t.to_numpy())
    predictions = pd.DataFrame({"observed": y_t, "predicted": preds}, index=y_t.index)
    return regression_metrics(y_t, preds), n_dropped, predictions


def baseline_metrics(train_df, predictions, response=config.COL_RESPONSE):
    # mean-only model: predict the training mean everywhere
    mean_pred = np.full(len(predictions), train_df[response].mean())
    return regression_metrics(predictions["observed"], mean_pred)


def save_session(session, path):
    joblib.dump(session, path)
    return path


def load_session(path):
    if not os.path.exists(path):
        raise FileNotFoundError(f"Session snapshot not found: {path}")
    return joblib.load(path)


def main(input_file=None, output_dir=None):
    input_file = input_file or config.INPUT_FILE
    output_dir = output_dir or config.OUTPUT_DIR
    # FitFailedWarning per failed fold; failures are counted instead
    warnings.filterwarnings("ignore")
    os.makedirs(output_dir, exist_ok=True)

    print("=" * 80)
    print("Bird Species Richness Random Forest Pipeline")
    print("=" * 80)

    # ========================================================================
    # 1. DATA LOADING
    # ========================================================================
    print(f"\n[1] Loading observations from {input_file}")
    print("-" * 80)
    observations = load_observations(input_file)
    print(f"✓ Observation rows: {len(observations)}")
    print(f"✓ Site/time combinations: {observations[config.COL_COMB_ID].nunique()}")

    # ========================================================================
    # 2. RICHNESS + COVARIATES
    # ========================================================================
    print("\n[2] Building modeling table (richness per comb_ID)")
    print("-" * 80)
    table = build_modeling_table(observations)
    modeling_df = select_features(table)
    print(f"✓ Modeling table: {modeling_df.shape}")
    print(f"✓ Richness range: {modeling_df[config.COL_RESPONSE].min()}"
          f" - {modeling_df[config.COL_RESPONSE].max()}")

    # ========================================================================
    # 3. SPLIT
    # ========================================================================
    print(f"\n[3] Train/test split ({config.TRAIN_PROP:.2f} train, seed={config.SEED})")
    print("-" * 80)
    train_df, test_df = split_train_test(modeling_df, train_prop=config.TRAIN_PROP, seed=config.SEED)
    print(f"✓ Training set: {len(train_df)} rows")
    print(f"✓ Test set: {len(test_df)} rows")

    # ========================================================================
    # 4. HYPERPARAMETER SEARCH
    # ========================================================================
    print(f"\n[4] Grid search with {config.CV_FOLDS}-fold CV")
    print("-" * 80)
    for param, values in config.PARAM_GRID.items():
        print(f"  {param.replace('rf__', '')}: {values}")

    results, n_dropped_search = run_grid_search(
        train_df,
        param_grid=config.PARAM_GRID,
        n_folds=config.CV_FOLDS,
        seed=config.SEED,
        n_jobs=config.N_JOBS,
    )
    results_path = os.path.join(output_dir, config.SEARCH_RESULTS_FILENAME)
    results.to_csv(results_path, index=False)
    print(f"✓ Saved search results to '{results_path}'")

    best_params = select_best(results, metric=config.SELECTION_METRIC)
    print(f"✓ Best parameters (lowest mean RMSE): {best_params}")

    summary_cols = HYPERPARAMS + ["mean_rmse", "mean_r2", "mean_mae"]
    print("\nTop 10 grid points:")
    print(results[~results["failed"]]
          .sort_values("mean_rmse", kind="mergesort")[summary_cols]
          .head(10).to_string(index=False))

    # ========================================================================
    # 5. FINAL MODEL
    # ========================================================================
    print("\n[5] Final fit on the full training set, evaluation on the test set")
    print("-" * 80)
    model, n_dropped_train = fit_final(train_df, best_params, seed=config.SEED, n_jobs=config.N_JOBS)
    test_metrics, n_dropped_test, predictions = evaluate_on_test(model, test_df)
    base_metrics = baseline_metrics(train_df, predictions)

    metrics_df = pd.DataFrame([
        {"model": "random_forest", **test_metrics},
        {"model": "mean_baseline", **base_metrics},
    ])
    metrics_path = os.path.join(output_dir, config.TEST_METRICS_FILENAME)
    metrics_df.to_csv(metrics_path, index=False)
    print(metrics_df.to_string(index=False))
    print(f"✓ Saved test metrics to '{metrics_path}'")

    # ========================================================================
    # 6. IMPORTANCE & CORRELATION
    # ========================================================================
    print(f"\n[6] Feature importance and correlation of the top {config.TOP_N}")
    print("-" * 80)
    importance = feature_importance(model, config.PREDICTORS)
    importance_path = os.path.join(output_dir, config.IMPORTANCE_TABLE_FILENAME)
    importance.to_csv(importance_path, index=False)
    print(f"✓ Saved importance table to '{importance_path}'")

    plot_path = plot_feature_importance(
        importance, os.path.join(output_dir, config.IMPORTANCE_PLOT_FILENAME), top_n=config.TOP_N
    )
    print(f"✓ Saved importance plot to '{plot_path}'")

    top_features = importance["feature"].head(config.TOP_N).tolist()
    corr = correlation_matrix(modeling_df, top_features)
    corr_path = plot_correlation(
        corr, os.path.join(output_dir, config.CORRELATION_PLOT_FILENAME)
    )
    print(f"✓ Saved correlation plot to '{corr_path}'")

    # ========================================================================
    # 7. SESSION SNAPSHOT
    # ========================================================================
    session = {
        "model": model,
        "predictors": list(config.PREDICTORS),
        "response": config.COL_RESPONSE,
        "engine": config.MODEL_ENGINE,
        "mode": config.MODEL_MODE,
        "best_params": best_params,
        "search_results": results,
        "test_metrics": test_metrics,
        "baseline_metrics": base_metrics,
        "importance": importance,
        "dropped_rows": {
            "search": n_dropped_search,
            "train": n_dropped_train,
            "test": n_dropped_test,
        },
        "seed": config.SEED,
        "cv_folds": config.CV_FOLDS,
    }
    session_path = save_session(session, os.path.join(output_dir, config.SESSION_FILENAME))
    print(f"✓ Saved session snapshot to '{session_path}'")

    print("\n" + "=" * 80)
    print("PIPELINE COMPLETE - SUMMARY")
    print("=" * 80)
    print(f"  Combinations modelled: {len(modeling_df)}")
    print(f"  Best parameters: {best_params}")
    print(f"  Test RMSE: {test_metrics['rmse']:.4f} (baseline {base_metrics['rmse']:.4f})")
    print(f"  Test R2: {test_metrics['r2']:.4f}")
    print(f"  Test MAE: {test_metrics['mae']:.4f}")
    print(f"  Rows dropped after preprocessing: search={n_dropped_search}, train={n_dropped_train}, test={n_dropped_test}")
    print(f"  Top 5 predictors: {top_features[:5]}")


if __name__ == "__main__":
    main()
