"""
Model Evaluation Module

Accuracy, precision and recall against a designated positive class, with
undefined metrics reported as such rather than coerced to zero, and a
repeated k-fold grid search over elastic-net mixing and regularization
strength.
"""

import logging
from dataclasses import dataclass, asdict
from itertools import product
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.base import clone
from sklearn.model_selection import RepeatedStratifiedKFold, cross_val_score
from tqdm import tqdm

from .model_trainer import PenalizedLogisticClassifier
from ..exceptions import UndefinedMetricError

logger = logging.getLogger(__name__)

UNDEFINED = "NA"


@dataclass(frozen=True)
class PerformanceReport:
    """Confusion counts and derived metrics for one model.

    ``precision`` and ``recall`` are None when their denominator is zero.
    """

    model: str
    positive_class: str
    n: int
    tp: int
    tn: int
    fp: int
    fn: int
    accuracy: float
    precision: Optional[float]
    recall: Optional[float]

    @property
    def precision_defined(self) -> bool:
        return self.precision is not None

    @property
    def recall_defined(self) -> bool:
        return self.recall is not None

    def to_dict(self) -> Dict:
        row = asdict(self)
        for metric in ("precision", "recall"):
            if row[metric] is None:
                row[metric] = UNDEFINED
        return row


def _ratio(numerator: int, denominator: int, metric: str, model: str, strict: bool) -> Optional[float]:
    if denominator == 0:
        if strict:
            raise UndefinedMetricError(metric, f"{metric} is undefined for '{model or 'model'}': "
                                               f"no {'predicted' if metric == 'precision' else 'actual'} positives")
        logger.warning(f"{metric} undefined for '{model or 'model'}' (0/0); reported as {UNDEFINED}")
        return None
    return numerator / denominator


def report_perf_metrics(predicted: Sequence, actual: Sequence, positive_class: str,
                        model_name: str = "", strict: bool = False) -> PerformanceReport:
    """
    Compare predicted and actual labels.

    Args:
        predicted: Predicted label per sample
        actual: True label per sample
        positive_class: Label counted as positive
        model_name: Name recorded in the report
        strict: Raise UndefinedMetricError instead of returning None for
            precision/recall with a zero denominator

    Returns:
        PerformanceReport
    """
    pred = np.asarray(predicted, dtype=object).astype(str)
    true = np.asarray(actual, dtype=object).astype(str)
    if pred.shape != true.shape:
        raise ValueError(f"predicted ({len(pred)}) and actual ({len(true)}) lengths differ")
    if pred.size == 0:
        raise ValueError("Cannot evaluate an empty prediction set")

    positive = str(positive_class)
    tp = int(np.sum((pred == positive) & (true == positive)))
    fp = int(np.sum((pred == positive) & (true != positive)))
    fn = int(np.sum((pred != positive) & (true == positive)))
    tn = int(np.sum((pred != positive) & (true != positive)))
    n = int(pred.size)

    return PerformanceReport(
        model=model_name,
        positive_class=positive,
        n=n, tp=tp, tn=tn, fp=fp, fn=fn,
        accuracy=(tp + tn) / n,
        precision=_ratio(tp, tp + fp, "precision", model_name, strict),
        recall=_ratio(tp, tp + fn, "recall", model_name, strict),
    )


def evaluate_models(models: Dict, X_test: pd.DataFrame, y_test: pd.Series,
                    positive_class: str) -> pd.DataFrame:
    """Predict with every fitted model and tabulate its PerformanceReport."""
    rows = []
    for name, model in models.items():
        report = report_perf_metrics(model.predict(X_test), y_test, positive_class, model_name=name)
        rows.append(report.to_dict())

    summary = pd.DataFrame(rows).set_index("model")

    logger.info("=" * 60)
    logger.info("MODEL PERFORMANCE SUMMARY (held-out test set)")
    logger.info("=" * 60)
    logger.info(f"{'Model':<15}{'ACCURACY':<12}{'PRECISION':<12}{'RECALL':<12}")
    for name, row in summary.iterrows():
        cells = [f"{row[m]:<12.4f}" if row[m] != UNDEFINED else f"{UNDEFINED:<12}"
                 for m in ("accuracy", "precision", "recall")]
        logger.info(f"{name:<15}" + "".join(cells))
    logger.info("=" * 60)
    return summary


def grid_search_cv(X: pd.DataFrame, y: pd.Series, l1_ratios: Sequence[float],
                   lambdas: Sequence[float], n_folds: int = 5, n_repeats: int = 3,
                   positive_class: str = "obese", random_state: int = 42,
                   max_iter: int = 5000, show_progress: bool = True) -> pd.DataFrame:
    """
    Mean cross-validated accuracy for every (l1_ratio, lambda) pair.

    The repeated stratified folds are generated once and shared by all grid
    points, so each pair's score does not depend on the order in which the
    grid is evaluated.

    Returns:
        DataFrame with columns l1_ratio, lambda, mean_accuracy, std_accuracy
    """
    if len(l1_ratios) == 0 or len(lambdas) == 0:
        raise ValueError("l1_ratios and lambdas must be non-empty")

    cv = RepeatedStratifiedKFold(n_splits=n_folds, n_repeats=n_repeats, random_state=random_state)
    y_arr = np.asarray(y).astype(str)
    splits = list(cv.split(np.zeros(len(y_arr)), y_arr))

    base = PenalizedLogisticClassifier(positive_class=positive_class, max_iter=max_iter,
                                       random_state=random_state)
    grid = list(product(l1_ratios, lambdas))
    rows = []
    for l1_ratio, lam in tqdm(grid, desc="Grid search", disable=not show_progress):
        estimator = clone(base).set_params(l1_ratio=float(l1_ratio), reg_lambda=float(lam))
        scores = cross_val_score(estimator, X, y_arr, cv=splits, scoring="accuracy",
                                 error_score="raise")
        rows.append({
            "l1_ratio": float(l1_ratio),
            "lambda": float(lam),
            "mean_accuracy": float(np.mean(scores)),
            "std_accuracy": float(np.std(scores)),
        })

    results = pd.DataFrame(rows).sort_values(["l1_ratio", "lambda"]).reset_index(drop=True)
    best = results.loc[results["mean_accuracy"].idxmax()]
    logger.info(f"Grid search best: l1_ratio={best['l1_ratio']}, lambda={best['lambda']:.4g}, "
                f"mean accuracy={best['mean_accuracy']:.4f} "
                f"({n_repeats}x{n_folds}-fold, {len(grid)} grid points)")
    return results


def plot_grid_search_heatmap(results: pd.DataFrame, title: str = "Cross-validated accuracy",
                             output_path: Optional[str] = None):
    """Heat map of mean accuracy, mixing (rows) by regularization strength (columns)."""
    table = results.pivot(index="l1_ratio", columns="lambda", values="mean_accuracy")
    table = table.sort_index(ascending=True)
    table.columns = [f"{c:.3g}" for c in table.columns]

    fig, ax = plt.subplots(figsize=(max(6, 0.6 * table.shape[1] + 2), max(4, 0.5 * table.shape[0] + 2)))
    sns.heatmap(table, annot=table.shape[1] <= 12, fmt=".3f", cmap="viridis",
                cbar_kws={"label": "Mean accuracy"}, ax=ax)
    ax.set_xlabel("Lambda")
    ax.set_ylabel("Mixing (l1_ratio)")
    ax.set_title(title)
    fig.tight_layout()

    if output_path is not None:
        fig.savefig(output_path, dpi=300)
    plt.close(fig)
