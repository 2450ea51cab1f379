#!/usr/bin/env python3
"""
Obesity Phenotype Classifier Training

This module fits the classifier bank used to predict the BMI-derived
obesity label from metabolite abundances.

Features:
- Penalized logistic regression over one elastic-net family
  (ridge: l1_ratio=0, lasso: l1_ratio=1, elastic net: in between)
- Explicit regularization selection policy (lambda_1se, lambda_min, path_end)
  with k-fold cross-validation on AUC
- Random forest with a fixed seed and feature-importance ranking
- Regularization path and importance plots

Regularization strength is expressed glmnet-style as ``lambda``, the weight
on the penalty of the mean log-loss; it maps to scikit-learn's inverse
strength as ``C = 1 / (n_train * lambda)``.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.ensemble import RandomForestClassifier
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import get_scorer
from sklearn.model_selection import StratifiedKFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from ..exceptions import DegenerateClassError

logger = logging.getLogger(__name__)

LAMBDA_SELECTION_POLICIES = ("lambda_1se", "lambda_min", "path_end")


def default_lambda_grid(n_lambdas: int = 30, lambda_max: float = 1.0,
                        ratio: float = 1e-3) -> np.ndarray:
    """Log-spaced, decreasing regularization path."""
    return np.logspace(np.log10(lambda_max), np.log10(lambda_max * ratio), n_lambdas)


@dataclass
class ModelTrainingConfig:
    """Configuration class for the classifier bank."""

    # Response
    positive_class: str = "obese"

    # Penalized logistic regression
    elastic_net_l1_ratio: float = 0.5
    lambdas: List[float] = field(default_factory=lambda: default_lambda_grid().tolist())
    lambda_selection: str = "lambda_1se"
    lambda_selection_overrides: Dict[str, str] = field(default_factory=dict)
    n_folds: int = 5
    cv_scoring: str = "roc_auc"
    max_iter: int = 5000
    tol: float = 1e-4

    # Random forest
    n_estimators: int = 500
    rf_seed: int = 42

    # Shared
    random_state: int = 42
    models_to_train: List[str] = field(
        default_factory=lambda: ["ridge", "lasso", "elastic_net", "random_forest"]
    )

    def selection_for(self, model_name: str) -> str:
        policy = self.lambda_selection_overrides.get(model_name, self.lambda_selection)
        if policy not in LAMBDA_SELECTION_POLICIES:
            raise ValueError(f"Unknown lambda selection policy '{policy}'. "
                             f"Options: {LAMBDA_SELECTION_POLICIES}")
        return policy


def _take_rows(X, idx):
    return X.iloc[idx] if isinstance(X, (pd.DataFrame, pd.Series)) else np.asarray(X)[idx]


def encode_binary(y: pd.Series, positive_class: str) -> Tuple[np.ndarray, np.ndarray]:
    """Return (0/1 array, classes_ as [negative, positive])."""
    y = pd.Series(np.asarray(y)).astype(str)
    observed = sorted(y.unique())
    counts = y.value_counts().to_dict()
    if positive_class not in observed or len(observed) != 2:
        raise DegenerateClassError(
            f"Training labels must contain '{positive_class}' and exactly one other class; "
            f"got {counts}",
            counts=counts,
        )
    negative = [c for c in observed if c != positive_class][0]
    return (y.values == positive_class).astype(int), np.array([negative, positive_class], dtype=object)


class PenalizedLogisticClassifier(ClassifierMixin, BaseEstimator):
    """
    Elastic-net penalized logistic regression on standardized features.

    Parameters
    ----------
    l1_ratio : float
        Mixing between L2 (0) and L1 (1) penalty.
    reg_lambda : float, optional
        Fixed regularization strength. When None it is chosen from
        ``lambdas`` according to ``lambda_selection``.
    lambdas : sequence of float, optional
        Regularization path; ``default_lambda_grid()`` when None.
    lambda_selection : str
        ``lambda_1se`` (largest lambda within one standard error of the best
        CV score), ``lambda_min`` (best CV score) or ``path_end`` (smallest
        lambda on the path, no CV).
    n_folds : int
        Folds for the internal stratified cross-validation.
    scoring : str
        scikit-learn scorer name used during cross-validation.
    positive_class : str
        Label treated as the positive class.
    """

    def __init__(self, l1_ratio: float = 0.5, reg_lambda: Optional[float] = None,
                 lambdas: Optional[Sequence[float]] = None,
                 lambda_selection: str = "lambda_1se", n_folds: int = 5,
                 scoring: str = "roc_auc", positive_class: str = "obese",
                 max_iter: int = 5000, tol: float = 1e-4, random_state: int = 42):
        self.l1_ratio = l1_ratio
        self.reg_lambda = reg_lambda
        self.lambdas = lambdas
        self.lambda_selection = lambda_selection
        self.n_folds = n_folds
        self.scoring = scoring
        self.positive_class = positive_class
        self.max_iter = max_iter
        self.tol = tol
        self.random_state = random_state

    def _make_estimator(self, reg_lambda: float, n_samples: int) -> Pipeline:
        return Pipeline([
            ("scaler", StandardScaler()),
            ("logreg", LogisticRegression(
                penalty="elasticnet",
                solver="saga",
                l1_ratio=self.l1_ratio,
                C=1.0 / (n_samples * reg_lambda),
                max_iter=self.max_iter,
                tol=self.tol,
                random_state=self.random_state,
            )),
        ])

    def _fit_estimator(self, X, y_bin: np.ndarray, reg_lambda: float) -> Pipeline:
        estimator = self._make_estimator(reg_lambda, len(y_bin))
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            # newer scikit-learn deprecates the penalty argument in favour of l1_ratio
            warnings.filterwarnings("ignore", message=".*penalty.*", category=FutureWarning)
            estimator.fit(X, y_bin)
        return estimator

    def _lambda_path(self) -> np.ndarray:
        lambdas = default_lambda_grid() if self.lambdas is None else np.asarray(self.lambdas, dtype=float)
        if lambdas.size == 0 or np.any(lambdas <= 0):
            raise ValueError("lambdas must be a non-empty sequence of positive values")
        return np.sort(lambdas)[::-1]

    def _cross_validate_path(self, X, y_bin: np.ndarray, lambdas: np.ndarray) -> pd.DataFrame:
        minority = int(min(y_bin.sum(), len(y_bin) - y_bin.sum()))
        n_folds = min(self.n_folds, minority)
        if n_folds < 2:
            raise DegenerateClassError(
                f"Cannot cross-validate: minority class has {minority} sample(s)",
                counts={"positive": int(y_bin.sum()), "negative": int(len(y_bin) - y_bin.sum())},
            )
        if n_folds < self.n_folds:
            logger.warning(f"Reducing CV folds from {self.n_folds} to {n_folds} (minority class size)")

        scorer = get_scorer(self.scoring)
        cv = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=self.random_state)
        fold_scores = np.zeros((n_folds, len(lambdas)))

        for fold, (train_idx, val_idx) in enumerate(cv.split(np.zeros(len(y_bin)), y_bin)):
            X_train, X_val = _take_rows(X, train_idx), _take_rows(X, val_idx)
            for j, lam in enumerate(lambdas):
                estimator = self._fit_estimator(X_train, y_bin[train_idx], lam)
                fold_scores[fold, j] = scorer(estimator, X_val, y_bin[val_idx])

        return pd.DataFrame({
            "lambda": lambdas,
            "mean_score": fold_scores.mean(axis=0),
            "std_score": fold_scores.std(axis=0, ddof=1),
            "se_score": fold_scores.std(axis=0, ddof=1) / np.sqrt(n_folds),
        })

    @staticmethod
    def select_lambda(cv_results: pd.DataFrame, policy: str) -> float:
        """Pick a lambda from cross-validation results."""
        best = int(cv_results["mean_score"].values.argmax())
        if policy == "lambda_min":
            return float(cv_results["lambda"].iloc[best])
        if policy == "lambda_1se":
            cutoff = cv_results["mean_score"].iloc[best] - cv_results["se_score"].iloc[best]
            within = cv_results[cv_results["mean_score"] >= cutoff]
            return float(within["lambda"].max())
        raise ValueError(f"Policy '{policy}' does not use cross-validation results")

    def fit(self, X, y):
        y_bin, self.classes_ = encode_binary(y, self.positive_class)
        if isinstance(X, pd.DataFrame):
            self.feature_names_in_ = np.asarray(X.columns, dtype=object)
        self.cv_results_ = None

        if self.reg_lambda is not None:
            if self.reg_lambda <= 0:
                raise ValueError(f"reg_lambda must be positive, got {self.reg_lambda}")
            self.selected_lambda_ = float(self.reg_lambda)
        elif self.lambda_selection == "path_end":
            self.selected_lambda_ = float(self._lambda_path()[-1])
        elif self.lambda_selection in LAMBDA_SELECTION_POLICIES:
            self.cv_results_ = self._cross_validate_path(X, y_bin, self._lambda_path())
            self.selected_lambda_ = self.select_lambda(self.cv_results_, self.lambda_selection)
        else:
            raise ValueError(f"Unknown lambda selection policy '{self.lambda_selection}'")

        self.estimator_ = self._fit_estimator(X, y_bin, self.selected_lambda_)
        logreg = self.estimator_.named_steps["logreg"]
        names = getattr(self, "feature_names_in_", np.arange(logreg.coef_.shape[1]))
        self.coef_ = pd.Series(logreg.coef_.ravel(), index=names, name="coefficient")
        self.intercept_ = float(logreg.intercept_[0])
        return self

    def predict_proba(self, X) -> np.ndarray:
        return self.estimator_.predict_proba(X)

    def predict(self, X) -> np.ndarray:
        positive = self.predict_proba(X)[:, 1] >= 0.5
        return np.where(positive, self.classes_[1], self.classes_[0])

    @property
    def n_nonzero_(self) -> int:
        return int((self.coef_ != 0).sum())


class RandomForestModel(ClassifierMixin, BaseEstimator):
    """Random forest with a fixed seed; exposes a feature-importance ranking."""

    def __init__(self, n_estimators: int = 500, random_state: int = 42,
                 positive_class: str = "obese"):
        self.n_estimators = n_estimators
        self.random_state = random_state
        self.positive_class = positive_class

    def fit(self, X, y):
        encode_binary(y, self.positive_class)
        if isinstance(X, pd.DataFrame):
            self.feature_names_in_ = np.asarray(X.columns, dtype=object)
        self.estimator_ = RandomForestClassifier(
            n_estimators=self.n_estimators,
            random_state=self.random_state,
            n_jobs=1,
        )
        self.estimator_.fit(X, np.asarray(y).astype(str))
        self.classes_ = self.estimator_.classes_
        return self

    def predict(self, X) -> np.ndarray:
        return self.estimator_.predict(X)

    def predict_proba(self, X) -> np.ndarray:
        return self.estimator_.predict_proba(X)

    def feature_importance(self) -> pd.Series:
        """Mean decrease in impurity, highest first; ties ordered by feature name."""
        names = getattr(self, "feature_names_in_",
                        np.arange(len(self.estimator_.feature_importances_)))
        importance = pd.Series(self.estimator_.feature_importances_, index=names, name="importance")
        return importance.sort_index().sort_values(ascending=False, kind="mergesort")


class ClassifierBank:
    """Ridge, lasso, elastic net and random forest behind one fit/predict interface."""

    L1_RATIOS = {"ridge": 0.0, "lasso": 1.0}

    def __init__(self, config: ModelTrainingConfig):
        self.config = config
        self.models = self._initialize_models()

    def _initialize_models(self) -> Dict[str, Any]:
        models = {}
        for name in self.config.models_to_train:
            if name in ("ridge", "lasso", "elastic_net"):
                l1_ratio = self.L1_RATIOS.get(name, self.config.elastic_net_l1_ratio)
                models[name] = PenalizedLogisticClassifier(
                    l1_ratio=l1_ratio,
                    lambdas=list(self.config.lambdas),
                    lambda_selection=self.config.selection_for(name),
                    n_folds=self.config.n_folds,
                    scoring=self.config.cv_scoring,
                    positive_class=self.config.positive_class,
                    max_iter=self.config.max_iter,
                    tol=self.config.tol,
                    random_state=self.config.random_state,
                )
            elif name == "random_forest":
                models[name] = RandomForestModel(
                    n_estimators=self.config.n_estimators,
                    random_state=self.config.rf_seed,
                    positive_class=self.config.positive_class,
                )
            else:
                raise ValueError(f"Unknown model: {name}")
        return models

    def fit_all(self, X: pd.DataFrame, y: pd.Series) -> "ClassifierBank":
        encode_binary(y, self.config.positive_class)
        for name, model in self.models.items():
            logger.info(f"Training {name} on {len(X)} samples x {X.shape[1]} features...")
            model.fit(X, y)
            if isinstance(model, PenalizedLogisticClassifier):
                logger.info(f"  {name}: lambda={model.selected_lambda_:.4g} "
                            f"({model.lambda_selection if model.reg_lambda is None else 'fixed'}), "
                            f"{model.n_nonzero_} non-zero coefficients")
        return self

    def predict_all(self, X: pd.DataFrame) -> Dict[str, np.ndarray]:
        return {name: model.predict(X) for name, model in self.models.items()}

    def selected_lambdas(self) -> Dict[str, float]:
        return {name: model.selected_lambda_ for name, model in self.models.items()
                if isinstance(model, PenalizedLogisticClassifier)}

    def feature_importance(self) -> Optional[pd.Series]:
        model = self.models.get("random_forest")
        return model.feature_importance() if model is not None else None


def regularization_path(X: pd.DataFrame, y: pd.Series, l1_ratio: float,
                        lambdas: Optional[Sequence[float]] = None,
                        positive_class: str = "obese", max_iter: int = 5000,
                        random_state: int = 42) -> pd.DataFrame:
    """Coefficients (standardized scale) along a decreasing lambda path."""
    path = np.sort(np.asarray(lambdas if lambdas is not None else default_lambda_grid(), dtype=float))[::-1]
    rows = {}
    for lam in path:
        model = PenalizedLogisticClassifier(l1_ratio=l1_ratio, reg_lambda=lam,
                                            positive_class=positive_class,
                                            max_iter=max_iter, random_state=random_state)
        rows[lam] = model.fit(X, y).coef_
    coefs = pd.DataFrame(rows).T
    coefs.index.name = "lambda"
    return coefs


def plot_regularization_path(path: pd.DataFrame, title: str,
                             selected_lambda: Optional[float] = None,
                             output_path: Optional[str] = None):
    fig, ax = plt.subplots(figsize=(8, 6))
    log_lambda = np.log(path.index.values.astype(float))
    for feature in path.columns:
        ax.plot(log_lambda, path[feature].values, linewidth=1.0, alpha=0.8)
    if selected_lambda is not None:
        ax.axvline(np.log(selected_lambda), color="grey", linestyle="--", linewidth=1.5)
    ax.axhline(0.0, color="black", linewidth=0.5)
    ax.set_xlabel("log(Lambda)")
    ax.set_ylabel("Coefficient")
    ax.set_title(title)
    fig.tight_layout()

    if output_path is not None:
        fig.savefig(output_path, dpi=300)
    plt.close(fig)


def plot_feature_importance(importance: pd.Series, top_n: int = 20,
                            title: str = "Random forest feature importance",
                            output_path: Optional[str] = None):
    top = importance.head(top_n)
    fig, ax = plt.subplots(figsize=(8, max(4, 0.3 * len(top))))
    sns.barplot(x=top.values, y=[str(i) for i in top.index], color="steelblue", ax=ax)
    ax.set_xlabel("Mean decrease in impurity")
    ax.set_ylabel("")
    ax.set_title(title)
    fig.tight_layout()

    if output_path is not None:
        fig.savefig(output_path, dpi=300)
    plt.close(fig)
