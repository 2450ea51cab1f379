"""
PCA Outlier Filter

Projects scaled abundances onto their principal components and removes
samples whose first component score exceeds a fixed threshold. Analytes
with missing values are excluded before fitting; nothing is imputed.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from ..exceptions import MissingValueError

logger = logging.getLogger(__name__)


@dataclass
class OutlierFilterResult:
    retained: pd.Index
    removed: pd.Index
    scores_before: pd.DataFrame
    scores: pd.DataFrame
    explained_variance_ratio: np.ndarray
    analytes_used: List[str] = field(default_factory=list)
    threshold: float = 15.0


def scale_features(abundance: pd.DataFrame) -> pd.DataFrame:
    """Z-score every analyte column; missing cells stay missing."""
    scaler = StandardScaler()
    values = scaler.fit_transform(abundance.astype(float).values)
    return pd.DataFrame(values, index=abundance.index, columns=abundance.columns)


def complete_analytes(scaled: pd.DataFrame) -> pd.DataFrame:
    """Drop analytes that have any missing value."""
    complete = scaled.columns[scaled.notna().all(axis=0)]
    n_dropped = scaled.shape[1] - len(complete)
    if n_dropped:
        logger.info(f"Excluding {n_dropped} analyte(s) with missing values from PCA")
    if len(complete) == 0:
        raise MissingValueError("Every analyte has at least one missing value; PCA cannot be fitted")
    return scaled[complete]


def pca_scores(data: pd.DataFrame, n_components: int = 5):
    """Fit PCA and return (scores frame, fitted PCA)."""
    n_components = max(1, min(n_components, data.shape[0], data.shape[1]))
    pca = PCA(n_components=n_components, svd_solver="full")
    scores = pca.fit_transform(data.values)
    columns = [f"PC{i + 1}" for i in range(scores.shape[1])]
    return pd.DataFrame(scores, index=data.index, columns=columns), pca


def filter_pca_outliers(scaled: pd.DataFrame, threshold: float = 15.0,
                        n_components: int = 5, two_sided: bool = False) -> OutlierFilterResult:
    """
    Remove samples whose PC1 score exceeds ``threshold``.

    Args:
        scaled: Samples x analytes, already scaled
        threshold: PC1 score limit
        n_components: Components to keep for visualisation
        two_sided: Compare |PC1| rather than PC1; the sign of a component is arbitrary

    Returns:
        OutlierFilterResult with scores recomputed on the retained samples
    """
    if threshold <= 0:
        raise ValueError(f"threshold must be positive, got {threshold}")

    data = complete_analytes(scaled)
    scores_before, _ = pca_scores(data, n_components)

    pc1 = scores_before["PC1"]
    outlying = pc1.abs() > threshold if two_sided else pc1 > threshold
    removed = scores_before.index[outlying.values]
    retained = scores_before.index[~outlying.values]
    logger.info(f"PCA outlier filter (threshold={threshold}): removed {len(removed)} of "
                f"{len(scores_before)} samples")
    if len(removed):
        logger.info(f"Removed samples: {removed.tolist()}")

    if len(retained) == 0:
        raise ValueError(f"All samples exceed the PC1 threshold {threshold}")

    scores_after, pca_after = pca_scores(data.loc[retained], n_components)
    return OutlierFilterResult(
        retained=retained,
        removed=removed,
        scores_before=scores_before,
        scores=scores_after,
        explained_variance_ratio=pca_after.explained_variance_ratio_,
        analytes_used=data.columns.tolist(),
        threshold=threshold,
    )


def plot_pca_scores(scores: pd.DataFrame, hue: Optional[pd.Series] = None,
                    threshold: Optional[float] = None, two_sided: bool = False,
                    explained_variance_ratio: Optional[np.ndarray] = None,
                    title: str = "PCA scores", output_path: Optional[str] = None):
    """Scatter PC1 against PC2, optionally coloured and with threshold lines."""
    fig, ax = plt.subplots(figsize=(7, 6))
    plot_df = scores.copy()
    if "PC2" not in plot_df.columns:
        plot_df["PC2"] = 0.0
    if hue is not None:
        plot_df["group"] = hue.reindex(plot_df.index).astype(str).values
        sns.scatterplot(data=plot_df, x="PC1", y="PC2", hue="group", ax=ax, s=30, alpha=0.8)
    else:
        sns.scatterplot(data=plot_df, x="PC1", y="PC2", ax=ax, s=30, alpha=0.8)

    if threshold is not None:
        ax.axvline(threshold, color="red", linestyle="--", linewidth=1)
        if two_sided:
            ax.axvline(-threshold, color="red", linestyle="--", linewidth=1)

    if explained_variance_ratio is not None and len(explained_variance_ratio) >= 2:
        ax.set_xlabel(f"PC1 ({explained_variance_ratio[0]:.1%})")
        ax.set_ylabel(f"PC2 ({explained_variance_ratio[1]:.1%})")
    ax.set_title(title)
    fig.tight_layout()

    if output_path is not None:
        fig.savefig(output_path, dpi=300)
    plt.close(fig)
