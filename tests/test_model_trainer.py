import warnings

import numpy as np
import pandas as pd
import pytest

from metabopheno.core.model_trainer import (
    ModelTrainingConfig, PenalizedLogisticClassifier, RandomForestModel, ClassifierBank,
    default_lambda_grid, encode_binary, regularization_path,
    plot_regularization_path, plot_feature_importance,
)
from metabopheno.exceptions import DegenerateClassError

LAMBDAS = [1.0, 0.1, 0.01]


def test_default_lambda_grid_is_decreasing():
    grid = default_lambda_grid(n_lambdas=10, lambda_max=2.0, ratio=0.01)
    assert len(grid) == 10
    assert grid[0] == pytest.approx(2.0)
    assert grid[-1] == pytest.approx(0.02)
    assert np.all(np.diff(grid) < 0)


def test_encode_binary():
    y_bin, classes = encode_binary(pd.Series(["obese", "normal", "obese"]), "obese")
    assert y_bin.tolist() == [1, 0, 1]
    assert classes.tolist() == ["normal", "obese"]


def test_single_class_training_labels():
    X = pd.DataFrame({"m0": [1.0, 2.0, 3.0]})
    y = pd.Series(["normal"] * 3)
    with pytest.raises(DegenerateClassError):
        PenalizedLogisticClassifier(reg_lambda=0.1).fit(X, y)
    with pytest.raises(DegenerateClassError):
        RandomForestModel(n_estimators=10).fit(X, y)


def test_select_lambda_policies():
    cv_results = pd.DataFrame({
        "lambda": [1.0, 0.1, 0.01],
        "mean_score": [0.88, 0.90, 0.85],
        "se_score": [0.02, 0.03, 0.02],
    })
    assert PenalizedLogisticClassifier.select_lambda(cv_results, "lambda_min") == 0.1
    # 0.88 is within one standard error of the best (0.90 - 0.03)
    assert PenalizedLogisticClassifier.select_lambda(cv_results, "lambda_1se") == 1.0


def test_path_end_uses_smallest_lambda_without_cv(separable):
    X, y = separable
    model = PenalizedLogisticClassifier(l1_ratio=0.5, lambdas=LAMBDAS, lambda_selection="path_end")
    model.fit(X, y)
    assert model.selected_lambda_ == pytest.approx(0.01)
    assert model.cv_results_ is None


def test_cross_validated_lambda_selection(separable):
    X, y = separable
    model = PenalizedLogisticClassifier(l1_ratio=1.0, lambdas=LAMBDAS, n_folds=3)
    model.fit(X, y)

    assert model.selected_lambda_ in LAMBDAS
    assert list(model.cv_results_.columns) == ["lambda", "mean_score", "std_score", "se_score"]
    lambda_min = model.select_lambda(model.cv_results_, "lambda_min")
    assert model.selected_lambda_ >= lambda_min


def test_predictions_use_original_labels(separable):
    X, y = separable
    model = PenalizedLogisticClassifier(l1_ratio=0.0, reg_lambda=0.01).fit(X, y)
    predicted = model.predict(X)
    assert set(predicted) <= {"normal", "obese"}
    assert (predicted == y.values).mean() > 0.8
    assert list(model.coef_.index) == list(X.columns)


def test_strong_lasso_penalty_zeroes_coefficients(separable):
    X, y = separable
    model = PenalizedLogisticClassifier(l1_ratio=1.0, reg_lambda=10.0).fit(X, y)
    assert model.n_nonzero_ == 0


def test_elastic_net_fit_emits_no_penalty_deprecation(separable):
    X, y = separable
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        PenalizedLogisticClassifier(l1_ratio=0.5, reg_lambda=0.1).fit(X, y)
    assert not [w for w in caught
                if issubclass(w.category, FutureWarning) and "penalty" in str(w.message)]


def test_random_forest_is_reproducible(separable):
    X, y = separable
    first = RandomForestModel(n_estimators=50, random_state=7).fit(X, y)
    second = RandomForestModel(n_estimators=50, random_state=7).fit(X, y)

    assert np.array_equal(first.predict(X), second.predict(X))
    pd.testing.assert_series_equal(first.feature_importance(), second.feature_importance())


def test_random_forest_importance_ranking(separable):
    X, y = separable
    importance = RandomForestModel(n_estimators=100, random_state=0).fit(X, y).feature_importance()
    assert list(importance.values) == sorted(importance.values, reverse=True)
    assert set(importance.index[:2]) == {"m0", "m1"}


def test_classifier_bank_fits_all_models(separable):
    X, y = separable
    config = ModelTrainingConfig(lambdas=LAMBDAS, n_folds=3, n_estimators=30)
    bank = ClassifierBank(config).fit_all(X, y)

    predictions = bank.predict_all(X)
    assert set(predictions) == {"ridge", "lasso", "elastic_net", "random_forest"}
    assert all(len(p) == len(X) for p in predictions.values())
    assert bank.models["ridge"].l1_ratio == 0.0
    assert bank.models["lasso"].l1_ratio == 1.0
    assert bank.models["elastic_net"].l1_ratio == 0.5
    assert set(bank.selected_lambdas()) == {"ridge", "lasso", "elastic_net"}
    assert bank.feature_importance() is not None


def test_classifier_bank_rejects_unknown_settings():
    with pytest.raises(ValueError):
        ClassifierBank(ModelTrainingConfig(models_to_train=["xgboost"]))
    with pytest.raises(ValueError):
        ClassifierBank(ModelTrainingConfig(lambda_selection="aic"))


def test_per_model_selection_override():
    config = ModelTrainingConfig(lambda_selection_overrides={"lasso": "path_end"})
    bank = ClassifierBank(config)
    assert bank.models["lasso"].lambda_selection == "path_end"
    assert bank.models["ridge"].lambda_selection == "lambda_1se"


def test_regularization_path_and_plots(tmp_path, separable):
    X, y = separable
    path = regularization_path(X, y, l1_ratio=1.0, lambdas=[0.01, 1.0, 0.1])
    assert path.shape == (3, X.shape[1])
    assert list(path.index) == [1.0, 0.1, 0.01]
    assert (path.loc[1.0] == 0).all()

    plot_regularization_path(path, title="lasso", selected_lambda=0.1,
                             output_path=str(tmp_path / "path.png"))
    importance = RandomForestModel(n_estimators=20).fit(X, y).feature_importance()
    plot_feature_importance(importance, output_path=str(tmp_path / "importance.png"))
    assert (tmp_path / "path.png").exists()
    assert (tmp_path / "importance.png").exists()
