"""
BMI label derivation and train/test partitioning.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .data_loader import SampleTable
from ..exceptions import DegenerateClassError, EmptyPartitionError

logger = logging.getLogger(__name__)

NORMAL = "normal"
OVERWEIGHT = "overweight"
OBESE = "obese"


@dataclass
class LabelResult:
    table: SampleTable
    labels: pd.Series
    class_counts: Dict[str, int]
    n_missing: int = 0
    n_overweight: int = 0


@dataclass(frozen=True)
class TrainTestPartition:
    train: pd.Index
    test: pd.Index

    def __post_init__(self):
        overlap = self.train.intersection(self.test)
        if len(overlap):
            raise ValueError(f"Train and test partitions overlap: {overlap.tolist()[:10]}")

    def class_counts(self, labels: pd.Series) -> pd.DataFrame:
        """Per-class sample counts in each partition."""
        counts = pd.DataFrame({
            "train": labels.loc[self.train].value_counts(),
            "test": labels.loc[self.test].value_counts(),
        })
        return counts.fillna(0).astype(int)


def classify_bmi(bmi: pd.Series, normal_max: float = 25.0, obese_min: float = 30.0) -> pd.Series:
    """
    Map BMI to "normal" (<= normal_max), "obese" (>= obese_min) or "overweight".

    Missing BMI stays missing.
    """
    if normal_max >= obese_min:
        raise ValueError(f"normal_max ({normal_max}) must be below obese_min ({obese_min})")

    values = pd.to_numeric(bmi, errors="coerce")
    labels = pd.Series(np.nan, index=bmi.index, dtype=object, name="label")
    labels[values <= normal_max] = NORMAL
    labels[values >= obese_min] = OBESE
    labels[(values > normal_max) & (values < obese_min)] = OVERWEIGHT
    return labels


def derive_labels(table: SampleTable, bmi_column: str,
                  normal_max: float = 25.0, obese_min: float = 30.0) -> LabelResult:
    """
    Attach a normal/obese label to every sample with a usable BMI.

    Samples with missing BMI and overweight samples are dropped and counted.
    Raises DegenerateClassError if either class ends up empty.
    """
    with_bmi, n_missing = table.drop_missing(bmi_column)
    labels = classify_bmi(with_bmi.metadata[bmi_column], normal_max, obese_min)

    unparseable = labels.isna()
    if unparseable.any():
        logger.warning(f"Excluding {int(unparseable.sum())} sample(s) with non-numeric '{bmi_column}'")
        n_missing += int(unparseable.sum())

    overweight = labels == OVERWEIGHT
    n_overweight = int(overweight.sum())
    keep = labels.index[~overweight & ~unparseable]
    labels = labels.loc[keep]

    counts = {NORMAL: int((labels == NORMAL).sum()), OBESE: int((labels == OBESE).sum())}
    logger.info(f"BMI labels: {counts} (excluded {n_overweight} overweight, {n_missing} missing BMI)")

    empty = [cls for cls, n in counts.items() if n == 0]
    if empty:
        raise DegenerateClassError(
            f"No samples in class(es) {empty} after BMI labelling; classification is meaningless",
            counts=counts,
        )

    return LabelResult(table=with_bmi.subset(keep), labels=labels, class_counts=counts,
                       n_missing=n_missing, n_overweight=n_overweight)


def split_train_test(keys: Sequence, train_fraction: float = 0.75,
                     rng: Optional[np.random.Generator] = None) -> TrainTestPartition:
    """
    Assign each sample to train with probability ``train_fraction``.

    Draws are independent per sample, so class balance across the split is
    not guaranteed; inspect ``TrainTestPartition.class_counts``.
    """
    if not 0 < train_fraction < 1:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")
    if rng is None:
        rng = np.random.default_rng()

    keys = pd.Index(keys)
    in_train = rng.random(len(keys)) < train_fraction
    partition = TrainTestPartition(train=keys[in_train], test=keys[~in_train])

    if len(partition.train) == 0 or len(partition.test) == 0:
        raise EmptyPartitionError(
            f"Split of {len(keys)} samples at train_fraction={train_fraction} produced "
            f"{len(partition.train)} train / {len(partition.test)} test samples"
        )
    logger.info(f"Train/test split: {len(partition.train)} train, {len(partition.test)} test")
    return partition
