import numpy as np
import pandas as pd
import pytest

from metabopheno.core.batch_corrector import (
    log2_transform, sum_coded_design, remove_batch_effect,
)
from metabopheno.exceptions import MissingValueError


@pytest.fixture
def log_abundance(abundance):
    return log2_transform(abundance)


def test_log2_transform_rejects_non_positive():
    df = pd.DataFrame({"m1": [1.0, 0.0, 4.0]})
    with pytest.raises(ValueError, match="not positive"):
        log2_transform(df)
    assert log2_transform(df, pseudocount=1.0)["m1"].tolist() == [1.0, 0.0, np.log2(5.0)]


def test_sum_coded_design():
    batch = pd.Series(["a", "b", "c", "a"])
    design = sum_coded_design(batch)
    assert list(design.columns) == ["const", "batch[a]", "batch[b]"]
    # reference level c is coded -1 on every contrast
    assert design.loc[2, ["batch[a]", "batch[b]"]].tolist() == [-1.0, -1.0]
    assert design.loc[0, ["batch[a]", "batch[b]"]].tolist() == [1.0, 0.0]


def test_batch_means_are_equalised(log_abundance, metadata):
    batch = metadata["Sample_source"]
    result = remove_batch_effect(log_abundance, batch, exponentiate=False)

    before = log_abundance.groupby(batch).mean()
    after = result.corrected.groupby(batch).mean()
    assert not np.allclose(before.loc["site_A"], before.loc["site_B"])
    assert np.allclose(after.loc["site_A"], after.loc["site_B"])
    assert np.allclose(after.loc["site_A"], after.loc["site_C"])
    # grand mean of the batch means is kept
    assert np.allclose(before.mean(), after.mean())


def test_correction_is_idempotent(log_abundance, metadata):
    batch = metadata["Sample_source"]
    once = remove_batch_effect(log_abundance, batch, exponentiate=False).corrected
    twice = remove_batch_effect(once, batch, exponentiate=False).corrected
    assert np.allclose(once.values, twice.values)


def test_exponentiate_returns_original_scale(log_abundance, metadata):
    batch = metadata["Sample_source"]
    log_scale = remove_batch_effect(log_abundance, batch, exponentiate=False)
    original = remove_batch_effect(log_abundance, batch, exponentiate=True)
    assert not original.log_scale
    assert np.allclose(np.log2(original.corrected.values), log_scale.corrected.values)


def test_sparse_analyte_is_flagged_and_passed_through(log_abundance, metadata):
    batch = metadata["Sample_source"]
    data = log_abundance.copy()
    site_c = batch.index[batch == "site_C"]
    data.loc[site_c[1:], "metabolite_05"] = np.nan

    result = remove_batch_effect(data, batch, exponentiate=False)

    assert result.flagged_analytes == ["metabolite_05"]
    pd.testing.assert_series_equal(result.corrected["metabolite_05"], data["metabolite_05"])
    # missing cells elsewhere are not introduced
    assert result.corrected.drop(columns="metabolite_05").notna().all().all()


def test_missing_values_stay_missing(log_abundance, metadata):
    data = log_abundance.copy()
    data.iloc[3, 2] = np.nan
    result = remove_batch_effect(data, metadata["Sample_source"], exponentiate=False)
    assert np.isnan(result.corrected.iloc[3, 2])
    assert result.corrected.isna().sum().sum() == 1


def test_missing_batch_label_raises(log_abundance, metadata):
    batch = metadata["Sample_source"].copy()
    batch.iloc[0] = None
    with pytest.raises(MissingValueError):
        remove_batch_effect(log_abundance, batch)


def test_single_batch_returns_input(log_abundance):
    batch = pd.Series("site_A", index=log_abundance.index)
    result = remove_batch_effect(log_abundance, batch, exponentiate=False)
    pd.testing.assert_frame_equal(result.corrected, log_abundance)
    assert result.batch_levels == ["site_A"]
