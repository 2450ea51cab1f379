"""
Hierarchical Clustering Explorer

Agglomerative (scipy linkage) and divisive (DIANA-style) clustering over
scaled abundances. Both report a coefficient in [0, 1] summarising how
strong the cluster structure is and cut the tree at a fixed number of
groups. Cluster ids are diagnostic only; nothing downstream consumes them.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import seaborn as sns
import matplotlib.pyplot as plt
import plotly.express as px
from scipy.cluster.hierarchy import linkage, dendrogram, fcluster
from scipy.spatial.distance import pdist, squareform

from ..exceptions import MissingValueError

logger = logging.getLogger(__name__)

LINKAGE_METHODS = ("average", "single", "complete", "ward")


@dataclass
class ClusterResult:
    labels: pd.Series
    coefficient: float
    method: str
    linkage: Optional[np.ndarray] = None

    @property
    def sizes(self) -> pd.Series:
        return self.labels.value_counts().sort_index()


def _check_input(X: pd.DataFrame, k: Optional[int] = None):
    if X.isna().any().any():
        raise MissingValueError("Clustering input contains missing values")
    if k is not None and not 1 <= k <= len(X):
        raise ValueError(f"k must be between 1 and the number of samples ({len(X)}), got {k}")


def agglomerative_coefficient(linkage_matrix: np.ndarray) -> float:
    """
    Agglomerative coefficient of a scipy linkage matrix.

    For each observation, the height at which it is first merged is divided
    by the height of the final merge; the coefficient is the mean of one
    minus that ratio.
    """
    Z = np.asarray(linkage_matrix)
    n = Z.shape[0] + 1
    final_height = Z[-1, 2]
    if final_height <= 0:
        return 0.0

    first_merge = np.empty(n)
    for left, right, height, _ in Z:
        for node in (int(left), int(right)):
            if node < n:
                first_merge[node] = height
    return float(np.mean(1.0 - first_merge / final_height))


def compare_linkage_methods(X: pd.DataFrame,
                            methods: Sequence[str] = LINKAGE_METHODS) -> pd.Series:
    """Agglomerative coefficient for each linkage method, highest first."""
    _check_input(X)
    scores = {}
    for method in methods:
        Z = linkage(X.values, method=method, metric="euclidean")
        scores[method] = agglomerative_coefficient(Z)
        logger.info(f"Agglomerative coefficient ({method}): {scores[method]:.4f}")
    return pd.Series(scores, name="agglomerative_coefficient").sort_values(ascending=False)


def agglomerative_clustering(X: pd.DataFrame, k: int, method: str = "ward") -> ClusterResult:
    """Build the linkage tree with ``method`` and cut it into ``k`` groups."""
    _check_input(X, k)
    Z = linkage(X.values, method=method, metric="euclidean")
    labels = fcluster(Z, t=k, criterion="maxclust")
    result = ClusterResult(
        labels=pd.Series(labels.astype(int), index=X.index, name=f"agnes_{method}"),
        coefficient=agglomerative_coefficient(Z),
        method=method,
        linkage=Z,
    )
    logger.info(f"Agglomerative ({method}) clustering into {k} groups: "
                f"sizes {result.sizes.to_dict()}, coefficient {result.coefficient:.4f}")
    return result


def _split_cluster(D: np.ndarray, members: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split one cluster into a splinter group and the remainder."""
    sub = D[np.ix_(members, members)]
    m = len(members)
    in_splinter = np.zeros(m, dtype=bool)
    in_splinter[int(np.argmax(sub.sum(axis=1) / (m - 1)))] = True

    while (~in_splinter).sum() > 1:
        rest = ~in_splinter
        to_rest = sub[:, rest].sum(axis=1) / (rest.sum() - 1)
        to_splinter = sub[:, in_splinter].mean(axis=1)
        gain = np.where(rest, to_rest - to_splinter, -np.inf)
        best = int(np.argmax(gain))
        if gain[best] <= 0:
            break
        in_splinter[best] = True

    return members[in_splinter], members[~in_splinter]


def _labels_from_clusters(clusters, n: int) -> np.ndarray:
    labels = np.zeros(n, dtype=int)
    for cid, members in enumerate(sorted(clusters, key=lambda c: int(c.min())), start=1):
        labels[members] = cid
    return labels


def divisive_clustering(X: pd.DataFrame, k: int) -> ClusterResult:
    """
    Top-down divisive clustering (DIANA) on Euclidean distances.

    At every step the cluster with the largest diameter is split: the object
    with the largest mean dissimilarity seeds a splinter group, which then
    absorbs every object closer on average to it than to the rest. The tree
    is grown to singletons so the divisive coefficient can be computed;
    labels are taken after ``k - 1`` splits.
    """
    _check_input(X, k)
    D = squareform(pdist(X.values, metric="euclidean"))
    n = len(D)
    overall_diameter = D.max() if n > 1 else 0.0

    clusters = [np.arange(n)]
    last_diameter = np.zeros(n)
    labels = _labels_from_clusters(clusters, n) if k == 1 else None
    n_splits = 0

    while True:
        diameters = [D[np.ix_(c, c)].max() if len(c) > 1 else -1.0 for c in clusters]
        target = int(np.argmax(diameters))
        if diameters[target] < 0:
            break
        diameter = diameters[target]
        splinter, remainder = _split_cluster(D, clusters.pop(target))
        for piece in (splinter, remainder):
            if len(piece) == 1:
                last_diameter[piece[0]] = diameter
            clusters.append(piece)
        n_splits += 1
        if n_splits == k - 1:
            labels = _labels_from_clusters(clusters, n)

    if overall_diameter > 0:
        coefficient = float(np.mean(1.0 - last_diameter / overall_diameter))
    else:
        coefficient = 0.0

    result = ClusterResult(
        labels=pd.Series(labels, index=X.index, name="diana"),
        coefficient=coefficient,
        method="diana",
    )
    logger.info(f"Divisive clustering into {k} groups: sizes {result.sizes.to_dict()}, "
                f"coefficient {coefficient:.4f}")
    return result


def plot_clusters_on_pca(scores: pd.DataFrame, labels: pd.Series, title: str,
                         output_path: Optional[str] = None):
    """Colour samples in PC1/PC2 space by cluster id."""
    plot_df = scores.loc[labels.index].copy()
    if "PC2" not in plot_df.columns:
        plot_df["PC2"] = 0.0
    plot_df["cluster"] = labels.astype(str).values

    fig, ax = plt.subplots(figsize=(7, 6))
    sns.scatterplot(data=plot_df, x="PC1", y="PC2", hue="cluster", palette="tab10",
                    ax=ax, s=30, alpha=0.85)
    ax.set_title(title)
    ax.legend(title="Cluster", loc="best")
    fig.tight_layout()

    if output_path is not None:
        fig.savefig(output_path, dpi=300)
    plt.close(fig)


def plot_dendrogram(linkage_matrix: np.ndarray, labels: Optional[Sequence[str]] = None,
                    k: Optional[int] = None, title: str = "Dendrogram",
                    output_path: Optional[str] = None):
    fig, ax = plt.subplots(figsize=(12, 6))
    color_threshold = None
    if k is not None and k > 1:
        # colour branches below the height that yields k clusters
        color_threshold = linkage_matrix[-(k - 1), 2]
    dendrogram(linkage_matrix, labels=list(labels) if labels is not None else None,
               color_threshold=color_threshold, leaf_rotation=90, ax=ax)
    ax.set_title(title)
    ax.set_ylabel("Height")
    fig.tight_layout()

    if output_path is not None:
        fig.savefig(output_path, dpi=300)
    plt.close(fig)


def save_interactive_cluster_plot(scores: pd.DataFrame, labels: pd.Series,
                                  metadata: Optional[pd.DataFrame] = None,
                                  output_path: str = "clusters.html",
                                  title: str = "Clusters in PCA space"):
    """Write an HTML scatter of PC1/PC2 coloured by cluster, metadata on hover."""
    plot_df = scores.loc[labels.index, ["PC1"] + (["PC2"] if "PC2" in scores.columns else [])].copy()
    plot_df["cluster"] = labels.astype(str).values
    hover = []
    if metadata is not None:
        extra = metadata.loc[labels.index]
        for col in extra.columns:
            plot_df[col] = extra[col].values
            hover.append(col)
    plot_df = plot_df.reset_index()

    fig = px.scatter(plot_df, x="PC1", y="PC2" if "PC2" in plot_df.columns else None,
                     color="cluster", hover_name=plot_df.columns[0],
                     hover_data=hover, title=title)
    fig.write_html(str(output_path))
