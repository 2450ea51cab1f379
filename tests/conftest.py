"""Shared synthetic cohort fixtures for the metabopheno tests."""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from metabopheno.pipeline.auto_pipeline import PipelineConfig


BATCH_SHIFT = {"site_A": 0.0, "site_B": 1.0, "site_C": -0.6}


def make_cohort(n_samples: int = 72, n_analytes: int = 20, seed: int = 0):
    """Abundance (original scale) and metadata with a batch shift and an obesity signal."""
    rng = np.random.default_rng(seed)
    ids = [f"S{i:03d}" for i in range(n_samples)]

    batch = np.array(list(BATCH_SHIFT) * (n_samples // len(BATCH_SHIFT) + 1))[:n_samples]
    karyotype = np.where(np.arange(n_samples) % 2 == 0, "T21", "D21")
    # 40% normal, 20% overweight, 40% obese
    bmi_class = np.resize(["normal", "obese", "overweight", "normal", "obese"], n_samples)
    bmi = np.select(
        [bmi_class == "normal", bmi_class == "obese"],
        [rng.uniform(18, 24.5, n_samples), rng.uniform(31, 40, n_samples)],
        default=rng.uniform(26, 29, n_samples),
    ).round(1)

    log_data = rng.normal(10, 0.5, size=(n_samples, n_analytes))
    log_data += np.array([BATCH_SHIFT[b] for b in batch])[:, None]
    log_data[bmi_class == "obese", :4] += 1.5

    analytes = [f"metabolite_{j:02d}" for j in range(n_analytes)]
    abundance = pd.DataFrame(np.exp2(log_data), index=ids, columns=analytes)
    abundance.index.name = "sample_id"
    metadata = pd.DataFrame(
        {"Karyotype": karyotype, "Sample_source": batch, "BMI": bmi},
        index=ids,
    )
    metadata.index.name = "sample_id"
    return abundance, metadata


@pytest.fixture
def cohort():
    return make_cohort()


@pytest.fixture
def abundance(cohort):
    return cohort[0]


@pytest.fixture
def metadata(cohort):
    return cohort[1]


@pytest.fixture
def small_config():
    """Pipeline settings small enough for a fast end-to-end run."""
    return PipelineConfig(
        lambda_grid=[1.0, 0.3, 0.1, 0.03, 0.01],
        n_trees=50,
        cv_repeats=1,
        cv_folds=3,
        l1_ratio_grid=[0.0, 1.0],
        grid_search_lambdas=[0.5, 0.05],
        max_iter=2000,
    )


@pytest.fixture
def separable():
    """Two-class feature matrix where the first two features carry the signal."""
    rng = np.random.default_rng(1)
    n = 48
    y = pd.Series(np.where(np.arange(n) % 2 == 0, "obese", "normal"),
                  index=[f"S{i:03d}" for i in range(n)])
    X = pd.DataFrame(rng.normal(0, 1, size=(n, 6)), index=y.index,
                     columns=[f"m{j}" for j in range(6)])
    X.loc[y == "obese", ["m0", "m1"]] += 2.5
    return X, y
