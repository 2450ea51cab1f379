import numpy as np
import pandas as pd
import pytest

from metabopheno.core.outlier_filter import (
    scale_features, complete_analytes, filter_pca_outliers, plot_pca_scores,
)
from metabopheno.exceptions import MissingValueError


@pytest.fixture
def scaled_with_outlier():
    rng = np.random.default_rng(7)
    data = pd.DataFrame(rng.normal(0, 1, size=(60, 30)),
                        index=[f"S{i:03d}" for i in range(60)],
                        columns=[f"m{j}" for j in range(30)])
    data.loc["S000"] += 10.0
    return scale_features(data)


def test_scale_features_keeps_labels_and_missing():
    df = pd.DataFrame({"a": [1.0, 2.0, np.nan, 4.0], "b": [2.0, 2.5, 3.0, 10.0]},
                      index=list("wxyz"))
    scaled = scale_features(df)
    assert scaled.shape == df.shape
    assert list(scaled.index) == list("wxyz")
    assert np.isnan(scaled.loc["y", "a"])
    assert abs(scaled["b"].mean()) < 1e-12


def test_injected_outlier_is_removed(scaled_with_outlier):
    result = filter_pca_outliers(scaled_with_outlier, threshold=15.0, two_sided=True)

    assert list(result.removed) == ["S000"]
    assert len(result.retained) == 59
    assert "S000" not in result.scores.index
    assert (result.scores_before.loc["S000", "PC1"] ** 2) > 15.0 ** 2
    assert result.explained_variance_ratio[0] >= result.explained_variance_ratio[1]


def test_default_filter_only_removes_high_pc1(scaled_with_outlier):
    two_sided = filter_pca_outliers(scaled_with_outlier, threshold=15.0, two_sided=True)
    pc1 = two_sided.scores_before["PC1"]
    threshold = abs(pc1["S000"]) / 2

    result = filter_pca_outliers(scaled_with_outlier, threshold=threshold)

    assert set(result.removed) == set(pc1.index[pc1 > threshold])
    assert ("S000" in result.removed) == (pc1["S000"] > 0)
    assert not set(result.removed) & set(pc1.index[pc1 < -threshold])


def test_filter_is_deterministic(scaled_with_outlier):
    first = filter_pca_outliers(scaled_with_outlier, threshold=15.0, two_sided=True)
    second = filter_pca_outliers(scaled_with_outlier, threshold=15.0, two_sided=True)
    assert first.removed.equals(second.removed)
    assert np.allclose(first.scores.values, second.scores.values)


def test_nothing_removed_without_outliers(scaled_with_outlier):
    clean = scaled_with_outlier.drop(index="S000")
    result = filter_pca_outliers(scale_features(clean), threshold=15.0)
    assert len(result.removed) == 0
    assert result.retained.equals(clean.index)


def test_analytes_with_missing_values_are_excluded(scaled_with_outlier):
    data = scaled_with_outlier.copy()
    data.iloc[5, 0] = np.nan
    result = filter_pca_outliers(data, threshold=15.0)
    assert "m0" not in result.analytes_used
    assert len(result.analytes_used) == 29


def test_all_analytes_missing():
    data = pd.DataFrame({"a": [1.0, np.nan], "b": [np.nan, 2.0]})
    with pytest.raises(MissingValueError):
        complete_analytes(data)


def test_invalid_threshold(scaled_with_outlier):
    with pytest.raises(ValueError):
        filter_pca_outliers(scaled_with_outlier, threshold=0)


def test_every_sample_removed_raises(scaled_with_outlier):
    with pytest.raises(ValueError, match="All samples"):
        filter_pca_outliers(scaled_with_outlier, threshold=1e-9, two_sided=True)


def test_plot_pca_scores_writes_file(tmp_path, scaled_with_outlier):
    result = filter_pca_outliers(scaled_with_outlier, threshold=15.0)
    out = tmp_path / "pca.png"
    plot_pca_scores(result.scores_before, threshold=15.0, output_path=str(out))
    assert out.exists()
