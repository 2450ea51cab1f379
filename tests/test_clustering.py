import numpy as np
import pandas as pd
import pytest
from scipy.cluster.hierarchy import linkage

from metabopheno.core.clustering import (
    agglomerative_coefficient, compare_linkage_methods, agglomerative_clustering,
    divisive_clustering, plot_clusters_on_pca, plot_dendrogram,
    save_interactive_cluster_plot,
)
from metabopheno.exceptions import MissingValueError


@pytest.fixture
def blobs():
    rng = np.random.default_rng(3)
    a = rng.normal(0, 0.3, size=(15, 4))
    b = rng.normal(6, 0.3, size=(15, 4))
    index = [f"a{i}" for i in range(15)] + [f"b{i}" for i in range(15)]
    return pd.DataFrame(np.vstack([a, b]), index=index, columns=list("wxyz"))


@pytest.fixture
def three_points():
    return pd.DataFrame({"x": [0.0, 1.0, 10.0]}, index=["p0", "p1", "p2"])


def test_agglomerative_coefficient_by_hand(three_points):
    Z = linkage(three_points.values, method="single")
    # first merges at 1, 1, 9; final merge at 9
    assert agglomerative_coefficient(Z) == pytest.approx(16 / 27)


def test_linkage_coefficients_are_bounded_and_sorted(blobs):
    scores = compare_linkage_methods(blobs)
    assert set(scores.index) == {"average", "single", "complete", "ward"}
    assert ((scores >= 0) & (scores <= 1)).all()
    assert list(scores.values) == sorted(scores.values, reverse=True)
    assert scores["average"] > 0.8


def test_agglomerative_clustering_separates_blobs(blobs):
    result = agglomerative_clustering(blobs, k=2, method="ward")
    assert result.labels.nunique() == 2
    assert result.labels[:15].nunique() == 1
    assert result.labels[15:].nunique() == 1
    assert result.labels.iloc[0] != result.labels.iloc[-1]
    assert 0 <= result.coefficient <= 1


def test_divisive_coefficient_by_hand(three_points):
    result = divisive_clustering(three_points, k=2)
    # p2 splits off at diameter 10, p0/p1 at diameter 1
    assert result.coefficient == pytest.approx(0.6)
    assert result.labels["p0"] == result.labels["p1"]
    assert result.labels["p2"] != result.labels["p0"]


@pytest.mark.parametrize("k", [1, 2, 3, 5])
def test_divisive_clustering_returns_k_clusters(blobs, k):
    result = divisive_clustering(blobs, k=k)
    assert result.labels.nunique() == k
    assert sorted(result.labels.unique()) == list(range(1, k + 1))
    assert 0 <= result.coefficient <= 1
    assert result.method == "diana"


def test_divisive_clustering_separates_blobs(blobs):
    labels = divisive_clustering(blobs, k=2).labels
    assert labels[:15].nunique() == 1
    assert labels[15:].nunique() == 1
    assert labels.iloc[0] != labels.iloc[-1]


@pytest.mark.parametrize("k", [0, 31])
def test_invalid_k(blobs, k):
    with pytest.raises(ValueError):
        agglomerative_clustering(blobs, k=k)
    with pytest.raises(ValueError):
        divisive_clustering(blobs, k=k)


def test_missing_values_rejected(blobs):
    data = blobs.copy()
    data.iloc[0, 0] = np.nan
    with pytest.raises(MissingValueError):
        divisive_clustering(data, k=2)


def test_plots_write_files(tmp_path, blobs):
    result = agglomerative_clustering(blobs, k=2)
    scores = pd.DataFrame({"PC1": blobs["w"], "PC2": blobs["x"]})

    plot_clusters_on_pca(scores, result.labels, title="clusters",
                         output_path=str(tmp_path / "clusters.png"))
    plot_dendrogram(result.linkage, labels=blobs.index.tolist(), k=2,
                    output_path=str(tmp_path / "dendrogram.png"))
    save_interactive_cluster_plot(scores, result.labels,
                                  output_path=str(tmp_path / "clusters.html"))

    for name in ("clusters.png", "dendrogram.png", "clusters.html"):
        assert (tmp_path / name).exists()
