# bird_richness/config.py
import os

# ============================================================================
# INPUT / OUTPUT
# ============================================================================
INPUT_FILE = os.environ.get("RICHNESS_INPUT_FILE", "bird_observations.csv")
INPUT_SEP = ","
OUTPUT_DIR = os.environ.get("RICHNESS_OUTPUT_DIR", ".")

# Row identifier written by the export, carries no information
DROP_COLUMNS = ["ID", "Unnamed: 0"]

# Column Definitions (after name normalisation)
COL_COMB_ID = "comb_ID"
COL_SPECIES = "species"
COL_RESPONSE = "richness"

# 23 covariates used as predictors, selected by name
PREDICTORS = [
    # climate
    "mean_annual_temperature",
    "temperature_seasonality",
    "max_temperature_warmest_month",
    "min_temperature_coldest_month",
    "annual_precipitation",
    "precipitation_seasonality",
    # land cover fractions
    "tree_cover",
    "shrub_cover",
    "grassland_cover",
    "cropland_cover",
    "built_up_cover",
    "wetland_cover",
    "water_cover",
    "bare_cover",
    # time
    "start_year",
    "time_span",
    # geography
    "area",
    "latitude",
    "longitude",
    "elevation",
    "habitat_heterogeneity",
    "ndvi",
    "protected",
]

# ============================================================================
# MODEL
# ============================================================================
MODEL_ENGINE = "sklearn.ensemble.RandomForestRegressor"
MODEL_MODE = "regression"

# Set seed using random number generator once, saved for reuse every time
SEED = int(os.environ.get("GLOBAL_SEED", 399786328))

TRAIN_PROP = 3 / 4
CV_FOLDS = 10
N_JOBS = -1

# feature-subset size per split, tree count, minimum samples to split a node
PARAM_GRID = {
    "rf__max_features": [5, 7, 10, 15, 20, 25, 30],
    "rf__n_estimators": [500, 1000, 1500, 2000, 2500, 3000],
    "rf__min_samples_split": [2, 5],
}

# name -> sklearn scorer; rmse and mae scorers are negated by sklearn
METRICS = {
    "rmse": "neg_root_mean_squared_error",
    "r2": "r2",
    "mae": "neg_mean_absolute_error",
}
SELECTION_METRIC = "rmse"

# ============================================================================
# REPORTING
# ============================================================================
TOP_N = 15
FIGSIZE = (8, 6)
CORR_FIGSIZE = (10, 8)
DPI = 150

# Artifacts
SESSION_FILENAME = "richness_session.joblib"
IMPORTANCE_PLOT_FILENAME = "feature_importance.png"
CORRELATION_PLOT_FILENAME = "top_feature_correlation.png"
SEARCH_RESULTS_FILENAME = "grid_search_results.csv"
TEST_METRICS_FILENAME = "test_metrics.csv"
IMPORTANCE_TABLE_FILENAME = "feature_importance.csv"
