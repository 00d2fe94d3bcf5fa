import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")  # Use non-GUI backend, plots are only written to disk
import matplotlib.colors as mcolors
import matplotlib.pyplot as plt
import seaborn as sns

from .config import CORR_FIGSIZE, DPI, FIGSIZE, TOP_N


def feature_importance(model, predictors):
    """
    Impurity-based importance of every predictor, ranked descending.
    `model` is the fitted pipeline (forest as last step) or a bare forest.
    """
    forest = model[-1] if hasattr(model, "steps") else model
    scores = forest.feature_importances_
    if len(scores) != len(predictors):
        raise ValueError(
            f"Model has {len(scores)} importance scores but {len(predictors)} predictors were given"
        )

    importance = pd.DataFrame({"feature": list(predictors), "importance": scores})
    importance = importance.sort_values("importance", ascending=False, kind="mergesort")
    importance["rank"] = np.arange(1, len(importance) + 1)
    return importance.reset_index(drop=True)


def plot_feature_importance(importance, output_path, top_n=TOP_N, figsize=FIGSIZE, dpi=DPI):
    """Horizontal bar chart of the top_n predictors, coloured by score."""
    top = importance.head(top_n)

    cmap = plt.get_cmap("viridis")
    norm = mcolors.Normalize(vmin=0, vmax=top["importance"].max())
    colors = [cmap(norm(v)) for v in top["importance"]]

    fig, ax = plt.subplots(figsize=figsize)
    sns.barplot(data=top, x="importance", y="feature", hue="feature",
                palette=colors, legend=False, ax=ax)
    ax.set_xlabel("Impurity importance")
    ax.set_ylabel("")
    ax.set_title(f"Top {len(top)} predictors of species richness")

    sm_scalar = plt.cm.ScalarMappable(cmap=cmap, norm=norm)
    sm_scalar.set_array([])
    cbar = fig.colorbar(sm_scalar, ax=ax, fraction=0.046, pad=0.04)
    cbar.outline.set_visible(False)

    # no bbox_inches='tight', the image keeps figsize * dpi pixels
    fig.tight_layout()
    fig.savefig(output_path, dpi=dpi)
    plt.close(fig)
    return output_path


def correlation_matrix(df, features):
    """Pearson correlation among `features` of the untransformed modeling table."""
    corr = df[list(features)].corr(method="pearson")

    values = corr.to_numpy(copy=True)
    values = (values + values.T) / 2
    np.fill_diagonal(values, 1.0)
    return pd.DataFrame(values, index=corr.index, columns=corr.columns)


def plot_correlation(corr, output_path, figsize=CORR_FIGSIZE, dpi=DPI):
    fig, ax = plt.subplots(figsize=figsize)
    mask = np.triu(np.ones(corr.shape, dtype=bool), k=1)
    sns.heatmap(corr, mask=mask, annot=True, fmt=".2f", cmap="RdBu_r",
                vmin=-1, vmax=1, square=True, annot_kws={"size": 7},
                cbar_kws={"label": "Pearson r"}, ax=ax)
    ax.set_title("Correlation among top predictors")

    fig.tight_layout()
    fig.savefig(output_path, dpi=dpi)
    plt.close(fig)
    return output_path
