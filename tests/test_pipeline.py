import json

import numpy as np
import pandas as pd
import pytest

from metabopheno import cli
from metabopheno.pipeline.auto_pipeline import MetaboPhenoPipeline, PipelineConfig
from metabopheno.utils.paths import MetaboPhenoPathManager, get_output_dir
from metabopheno.exceptions import DegenerateClassError

MODELS = ["ridge", "lasso", "elastic_net", "random_forest"]


def test_config_from_dict_round_trip(small_config):
    config = PipelineConfig.from_dict(small_config.to_dict())
    assert config == small_config


def test_config_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="imputation"):
        PipelineConfig.from_dict({"imputation": "knn"})


def test_path_manager(tmp_path):
    paths = MetaboPhenoPathManager(tmp_path / "out")
    assert paths.table_path("a.csv").parent.exists()
    assert paths.log_file.name == "metabopheno_pipeline.log"
    assert get_output_dir("figures", tmp_path / "out").endswith("figures")
    with pytest.raises(ValueError):
        get_output_dir("models", tmp_path / "out")


def test_full_pipeline(tmp_path, abundance, metadata, small_config):
    pipeline = MetaboPhenoPipeline(output_dir=str(tmp_path / "run"), config=small_config,
                                   verbose=False)

    results = pipeline.run_full_pipeline(abundance, metadata)

    assert results["aligned_data"].n_samples == len(abundance)
    assert results["batch_correction"].flagged_analytes == []

    partition = results["partition"]
    labelled = set(results["labels"].labels.index)
    assert len(partition.train.intersection(partition.test)) == 0
    assert set(partition.train) | set(partition.test) == labelled

    performance = results["performance"]
    assert list(performance.index) == MODELS
    assert performance["accuracy"].astype(float).between(0, 1).all()

    grid = results["grid_search"]
    assert len(grid) == 4

    for name in ("performance_report.csv", "grid_search_results.csv", "feature_importance.csv",
                 "linkage_coefficients.csv", "cluster_assignments.csv"):
        assert (pipeline.paths.tables_dir / name).exists()
    for name in ("pca_after_outlier_removal.png", "dendrogram_agglomerative.png",
                 "clusters_agglomerative.html", "grid_search_heatmap.png",
                 "regularization_path_lasso.png"):
        assert (pipeline.paths.figures_dir / name).exists()

    assignments = pd.read_csv(pipeline.paths.tables_dir / "cluster_assignments.csv", index_col=0)
    assert assignments["divisive"].nunique() == small_config.n_clusters

    assert pipeline.get_best_model()["name"] in MODELS
    assert len(pipeline.get_top_features(5)) == 5
    report = pipeline.save_summary_report()
    assert "Best Model" in report.read_text()


def test_split_follows_injected_generator(tmp_path, abundance, metadata, small_config):
    def partition_with(seed):
        pipeline = MetaboPhenoPipeline(output_dir=str(tmp_path / str(seed)), config=small_config,
                                       rng=np.random.default_rng(seed), verbose=False)
        table = pipeline.run_data_loading(abundance, metadata)
        return pipeline.run_label_derivation(table)[1]

    assert partition_with(5).train.equals(partition_with(5).train)
    assert not partition_with(5).train.equals(partition_with(6).train)


def test_pipeline_without_obese_samples(tmp_path, abundance, metadata, small_config):
    metadata = metadata.assign(BMI=22.0)
    small_config.make_plots = False
    pipeline = MetaboPhenoPipeline(output_dir=str(tmp_path), config=small_config, verbose=False)
    with pytest.raises(DegenerateClassError):
        pipeline.run_full_pipeline(abundance, metadata)


def test_cli_runs_from_files(tmp_path, abundance, metadata, small_config):
    abundance.to_csv(tmp_path / "abundance.csv")
    metadata.to_csv(tmp_path / "metadata.csv")
    small_config.make_plots = False
    small_config.run_grid_search = False
    with open(tmp_path / "config.json", "w") as f:
        json.dump(small_config.to_dict(), f)

    cli.main([
        "--abundance", str(tmp_path / "abundance.csv"),
        "--metadata", str(tmp_path / "metadata.csv"),
        "--config", str(tmp_path / "config.json"),
        "--output", str(tmp_path / "cli_out"),
    ])

    performance = pd.read_csv(tmp_path / "cli_out" / "tables" / "performance_report.csv",
                              index_col="model")
    assert list(performance.index) == MODELS
    assert (tmp_path / "cli_out" / "pipeline_summary.txt").exists()


def test_cli_missing_input_exits(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--abundance", str(tmp_path / "nope.csv"),
                  "--metadata", str(tmp_path / "nope.csv")])
    assert excinfo.value.code == 1


class _Captured(Exception):
    pass


@pytest.fixture
def captured_config(monkeypatch):
    """Record the config handed to the pipeline and stop before running it."""
    seen = {}

    def fake_pipeline(output_dir, config, verbose):
        seen["config"] = config
        raise _Captured

    monkeypatch.setattr(cli, "MetaboPhenoPipeline", fake_pipeline)
    return seen


def _cli_args(tmp_path, abundance, metadata, *extra):
    abundance.to_csv(tmp_path / "abundance.csv")
    metadata.to_csv(tmp_path / "metadata.csv")
    with open(tmp_path / "config.json", "w") as f:
        json.dump({"make_plots": False, "cv_folds": 3, "random_state": 11}, f)
    return ["--abundance", str(tmp_path / "abundance.csv"),
            "--metadata", str(tmp_path / "metadata.csv"),
            "--config", str(tmp_path / "config.json"), *extra]


def test_cli_flags_override_config_file(tmp_path, abundance, metadata, captured_config):
    argv = _cli_args(tmp_path, abundance, metadata,
                     "--outlier-threshold", "12", "--random-state", "7", "--two-sided")
    with pytest.raises(_Captured):
        cli.main(argv)

    config = captured_config["config"]
    assert config.outlier_threshold == 12.0
    assert config.random_state == 7
    assert config.outlier_two_sided is True
    assert config.cv_folds == 3
    assert config.make_plots is False


def test_cli_defaults_do_not_override_config_file(tmp_path, abundance, metadata, captured_config):
    with pytest.raises(_Captured):
        cli.main(_cli_args(tmp_path, abundance, metadata))

    config = captured_config["config"]
    assert config.random_state == 11
    assert config.cv_folds == 3
    assert config.outlier_threshold == 15.0
    assert config.outlier_two_sided is False
