"""
Batch Effect Correction Module

Removes the mean shift attributable to sample-processing batch from
log2-transformed abundances. For every analyte an ordinary least-squares
model with a sum-to-zero coded batch term is fitted (statsmodels OLS) and
the fitted batch component is subtracted, so corrected values keep the
grand mean of the batch means.
"""

import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np
import pandas as pd
import statsmodels.api as sm

from ..exceptions import MissingValueError

logger = logging.getLogger(__name__)


@dataclass
class BatchCorrectionResult:
    """Corrected matrix plus the analytes that were passed through untouched."""

    corrected: pd.DataFrame
    flagged_analytes: List[str] = field(default_factory=list)
    batch_levels: List[str] = field(default_factory=list)
    log_scale: bool = False


def log2_transform(abundance: pd.DataFrame, pseudocount: float = 0.0) -> pd.DataFrame:
    """
    Apply log2(x + pseudocount) to every cell.

    Args:
        abundance: Samples x analytes on the original scale
        pseudocount: Offset added before the log

    Returns:
        Log2-scaled copy of the matrix
    """
    shifted = abundance.astype(float) + pseudocount
    bad = (shifted <= 0) & shifted.notna()
    n_bad = int(bad.values.sum())
    if n_bad:
        cols = bad.any(axis=0)
        raise ValueError(
            f"{n_bad} abundance value(s) are not positive after adding pseudocount={pseudocount}; "
            f"affected analytes: {list(cols[cols].index[:10])}"
        )
    return np.log2(shifted)


def sum_coded_design(batch: pd.Series) -> pd.DataFrame:
    """Intercept plus sum-to-zero contrasts for a categorical batch label."""
    levels = sorted(batch.astype(str).unique())
    labels = batch.astype(str)
    design = pd.DataFrame({"const": 1.0}, index=batch.index)
    reference = levels[-1]
    for level in levels[:-1]:
        col = (labels == level).astype(float) - (labels == reference).astype(float)
        design[f"batch[{level}]"] = col
    return design


def remove_batch_effect(log_abundance: pd.DataFrame, batch: pd.Series,
                        exponentiate: bool = True,
                        min_batch_observations: int = 2) -> BatchCorrectionResult:
    """
    Remove the batch effect analyte by analyte.

    Args:
        log_abundance: Samples x analytes, log2 scale
        batch: Batch label per sample, indexed like ``log_abundance``
        exponentiate: Return values on the original scale (2 ** x)
        min_batch_observations: Analytes with fewer observed values than
            this in any batch are not corrected and are reported instead

    Returns:
        BatchCorrectionResult
    """
    batch = batch.reindex(log_abundance.index)
    if batch.isna().any():
        missing = batch.index[batch.isna()].tolist()
        raise MissingValueError(f"Batch label missing for {len(missing)} sample(s): {missing[:10]}")

    labels = batch.astype(str)
    levels = sorted(labels.unique())
    corrected = log_abundance.astype(float).copy()

    if len(levels) < 2:
        logger.warning(f"Only one batch level ({levels}); nothing to correct")
        out = np.exp2(corrected) if exponentiate else corrected
        return BatchCorrectionResult(corrected=out, batch_levels=levels, log_scale=not exponentiate)

    observed = log_abundance.notna().groupby(labels).sum()
    flagged = observed.columns[(observed < min_batch_observations).any(axis=0)].tolist()
    if flagged:
        logger.warning(
            f"{len(flagged)} analyte(s) have fewer than {min_batch_observations} observations "
            f"in at least one batch and are passed through uncorrected: {flagged[:10]}"
        )

    design = sum_coded_design(labels)
    batch_terms = [c for c in design.columns if c != "const"]
    flagged_set = set(flagged)

    for analyte in log_abundance.columns:
        if analyte in flagged_set:
            continue
        y = log_abundance[analyte].astype(float)
        fit = sm.OLS(y, design, missing="drop").fit()
        component = design[batch_terms].values @ fit.params[batch_terms].values
        corrected[analyte] = y - component

    logger.info(f"Batch correction over {len(levels)} levels applied to "
                f"{len(log_abundance.columns) - len(flagged)} analytes")

    out = np.exp2(corrected) if exponentiate else corrected
    return BatchCorrectionResult(corrected=out, flagged_analytes=flagged,
                                 batch_levels=levels, log_scale=not exponentiate)
