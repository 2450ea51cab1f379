"""
MetaboPhenoPipeline: Main pipeline class for the obesity phenotype analysis.

This module provides a unified interface for the entire workflow, from
loading the abundance and metadata tables to evaluating the classifiers.
"""

import logging
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from ..core.data_loader import SampleTable, align_tables, load_datasets
from ..core.batch_corrector import log2_transform, remove_batch_effect
from ..core.outlier_filter import (
    scale_features, complete_analytes, filter_pca_outliers, plot_pca_scores,
)
from ..core.clustering import (
    LINKAGE_METHODS, compare_linkage_methods, agglomerative_clustering,
    divisive_clustering, plot_clusters_on_pca, plot_dendrogram,
    save_interactive_cluster_plot,
)
from ..core.label_deriver import derive_labels, split_train_test
from ..core.model_trainer import (
    ModelTrainingConfig, ClassifierBank, PenalizedLogisticClassifier, default_lambda_grid,
    regularization_path, plot_regularization_path, plot_feature_importance,
)
from ..core.evaluator import evaluate_models, grid_search_cv, plot_grid_search_heatmap
from ..exceptions import DegenerateClassError, MissingValueError
from ..utils.paths import MetaboPhenoPathManager


@dataclass
class PipelineConfig:
    """Every tunable parameter of the analysis, with the reference-run defaults."""

    # Input columns
    id_column: Optional[str] = None
    group_column: str = "Karyotype"
    batch_column: str = "Sample_source"
    bmi_column: str = "BMI"

    # Batch correction
    log_pseudocount: float = 0.0
    min_batch_observations: int = 2

    # Outlier filter
    outlier_threshold: float = 15.0
    outlier_two_sided: bool = False
    n_pca_components: int = 5

    # Clustering
    n_clusters: int = 3
    linkage_methods: List[str] = field(default_factory=lambda: list(LINKAGE_METHODS))
    agglomerative_method: str = "ward"

    # Labels and split
    normal_bmi_max: float = 25.0
    obese_bmi_min: float = 30.0
    train_fraction: float = 0.75
    positive_class: str = "obese"

    # Classifiers
    n_trees: int = 500
    rf_seed: int = 42
    cv_folds: int = 5
    elastic_net_l1_ratio: float = 0.5
    lambda_grid: Optional[List[float]] = None
    lambda_selection: str = "lambda_1se"
    lambda_selection_overrides: Dict[str, str] = field(default_factory=dict)
    max_iter: int = 5000

    # Grid search
    run_grid_search: bool = True
    cv_repeats: int = 3
    l1_ratio_grid: List[float] = field(default_factory=lambda: [0.0, 0.25, 0.5, 0.75, 1.0])
    grid_search_lambdas: List[float] = field(
        default_factory=lambda: default_lambda_grid(n_lambdas=10).tolist()
    )

    # Misc
    random_state: int = 42
    make_plots: bool = True

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "PipelineConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ValueError(f"Unknown configuration key(s): {unknown}")
        return cls(**params)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def model_training_config(self) -> ModelTrainingConfig:
        return ModelTrainingConfig(
            positive_class=self.positive_class,
            elastic_net_l1_ratio=self.elastic_net_l1_ratio,
            lambdas=list(self.lambda_grid) if self.lambda_grid is not None
            else default_lambda_grid().tolist(),
            lambda_selection=self.lambda_selection,
            lambda_selection_overrides=dict(self.lambda_selection_overrides),
            n_folds=self.cv_folds,
            max_iter=self.max_iter,
            n_estimators=self.n_trees,
            rf_seed=self.rf_seed,
            random_state=self.random_state,
        )


class MetaboPhenoPipeline:
    """
    Main pipeline class for the metabolomics obesity phenotype analysis.

    This class orchestrates the entire workflow:
    1. Data loading and alignment
    2. Batch effect correction
    3. PCA outlier removal
    4. Hierarchical clustering (diagnostic only)
    5. BMI label derivation and train/test split
    6. Classifier training
    7. Evaluation and grid search

    Every stage receives a SampleTable and returns a new one; nothing is
    modified in place.

    Parameters
    ----------
    output_dir : str, optional
        Directory to save all outputs. Default is 'metabopheno_outputs'
    config : PipelineConfig, optional
        Analysis parameters. Defaults reproduce the reference run
    rng : numpy.random.Generator, optional
        Source of randomness for the train/test split. Seeded from
        ``config.random_state`` when None
    verbose : bool, optional
        Whether to print detailed progress information. Default is True
    """

    def __init__(
        self,
        output_dir: str = "metabopheno_outputs",
        config: Optional[PipelineConfig] = None,
        rng: Optional[np.random.Generator] = None,
        verbose: bool = True
    ):
        self.config = config or PipelineConfig()
        self.paths = MetaboPhenoPathManager(output_dir)
        self.output_dir = self.paths.base_dir
        self.rng = rng if rng is not None else np.random.default_rng(self.config.random_state)
        self.verbose = verbose

        self.classifier_bank = None
        self.results = {}

        self._setup_logging()

    def _setup_logging(self):
        """Setup logging configuration."""
        logging.basicConfig(
            level=logging.INFO if self.verbose else logging.WARNING,
            format='%(asctime)s - %(levelname)s - %(message)s',
            handlers=[
                logging.FileHandler(self.paths.log_file),
                logging.StreamHandler() if self.verbose else logging.NullHandler()
            ]
        )
        self.logger = logging.getLogger(__name__)

    def _figure(self, filename: str) -> Optional[str]:
        return str(self.paths.figure_path(filename)) if self.config.make_plots else None

    def run_full_pipeline(
        self,
        abundance: Union[str, Path, pd.DataFrame],
        metadata: Union[str, Path, pd.DataFrame],
    ) -> Dict[str, Any]:
        """
        Run the complete analysis.

        Parameters
        ----------
        abundance : str, Path or pd.DataFrame
            Abundance table (samples x analytes) or its file path
        metadata : str, Path or pd.DataFrame
            Clinical metadata table or its file path

        Returns
        -------
        dict
            Dictionary containing all pipeline results
        """
        self.logger.info("Starting metabopheno pipeline...")

        self.logger.info("Step 1: Loading and aligning data...")
        table = self.run_data_loading(abundance, metadata)

        self.logger.info("Step 2: Batch effect correction...")
        corrected, batch_result = self.run_batch_correction(table)

        self.logger.info("Step 3: PCA outlier removal...")
        cleaned, outlier_result = self.run_outlier_filtering(corrected)

        self.logger.info("Step 4: Hierarchical clustering...")
        clustering_results = self.run_clustering(cleaned, outlier_result.scores)

        self.logger.info("Step 5: Deriving BMI labels and splitting...")
        label_result, partition = self.run_label_derivation(cleaned)

        self.logger.info("Step 6: Training classifiers...")
        X, y = self.build_feature_matrix(label_result.table, label_result.labels)
        X_train, y_train = X.loc[partition.train], y.loc[partition.train]
        X_test, y_test = X.loc[partition.test], y.loc[partition.test]
        bank = self.run_model_training(X_train, y_train)

        self.logger.info("Step 7: Evaluating classifiers...")
        performance, grid_results = self.run_evaluation(bank, X_train, y_train, X_test, y_test)

        final_results = {
            'aligned_data': table,
            'corrected_data': corrected,
            'batch_correction': batch_result,
            'cleaned_data': cleaned,
            'outlier_filter': outlier_result,
            'clustering': clustering_results,
            'labels': label_result,
            'partition': partition,
            'classifier_bank': bank,
            'performance': performance,
            'grid_search': grid_results,
            'feature_importance': bank.feature_importance(),
            'pipeline_config': self.config.to_dict(),
        }

        self.results.update(final_results)
        self.logger.info("metabopheno pipeline completed successfully!")
        return self.results

    def run_data_loading(self, abundance, metadata) -> SampleTable:
        """Read (if needed) and align the two input tables."""
        if isinstance(abundance, (str, Path)) and isinstance(metadata, (str, Path)):
            return load_datasets(abundance, metadata, self.config.group_column,
                                 id_column=self.config.id_column)

        abundance = self._as_indexed(abundance)
        metadata = self._as_indexed(metadata)
        return align_tables(abundance, metadata, self.config.group_column)

    def _as_indexed(self, df: pd.DataFrame) -> pd.DataFrame:
        if isinstance(df, (str, Path)):
            raise TypeError("Pass both inputs as file paths or both as DataFrames")
        id_column = self.config.id_column
        if id_column is not None and id_column in df.columns:
            df = df.set_index(id_column)
        df = df.copy()
        df.index = df.index.astype(str)
        return df

    def run_batch_correction(self, table: SampleTable):
        """Log2-transform, remove the batch effect, return values on the original scale."""
        table, n_missing = table.drop_missing(self.config.batch_column)
        log_abundance = log2_transform(table.abundance, self.config.log_pseudocount)
        result = remove_batch_effect(
            log_abundance,
            table.metadata[self.config.batch_column],
            exponentiate=True,
            min_batch_observations=self.config.min_batch_observations,
        )
        self.results['n_missing_batch'] = n_missing
        return table.with_abundance(result.corrected), result

    def _scaled_log(self, table: SampleTable) -> pd.DataFrame:
        return scale_features(log2_transform(table.abundance, self.config.log_pseudocount))

    def run_outlier_filtering(self, table: SampleTable):
        """Drop samples beyond the PC1 threshold and recompute the projection."""
        scaled = self._scaled_log(table)
        result = filter_pca_outliers(
            scaled,
            threshold=self.config.outlier_threshold,
            n_components=self.config.n_pca_components,
            two_sided=self.config.outlier_two_sided,
        )
        cleaned = table.subset(result.retained)

        if self.config.make_plots:
            group = table.metadata[self.config.group_column]
            plot_pca_scores(result.scores_before, hue=group, threshold=self.config.outlier_threshold,
                            two_sided=self.config.outlier_two_sided,
                            title="PCA before outlier removal",
                            output_path=self._figure("pca_before_outlier_removal.png"))
            plot_pca_scores(result.scores, hue=group,
                            explained_variance_ratio=result.explained_variance_ratio,
                            title="PCA after outlier removal",
                            output_path=self._figure("pca_after_outlier_removal.png"))
        return cleaned, result

    def run_clustering(self, table: SampleTable, scores: pd.DataFrame) -> Dict[str, Any]:
        """Agglomerative and divisive clustering, diagnostic only."""
        X = complete_analytes(self._scaled_log(table))
        k = self.config.n_clusters

        linkage_scores = compare_linkage_methods(X, self.config.linkage_methods)
        agnes = agglomerative_clustering(X, k, method=self.config.agglomerative_method)
        diana = divisive_clustering(X, k)

        assignments = pd.DataFrame({'agglomerative': agnes.labels, 'divisive': diana.labels})
        linkage_scores.to_csv(self.paths.table_path("linkage_coefficients.csv"), header=True)
        assignments.to_csv(self.paths.table_path("cluster_assignments.csv"))

        if self.config.make_plots:
            plot_clusters_on_pca(scores, agnes.labels,
                                 title=f"Agglomerative ({agnes.method}), k={k}",
                                 output_path=self._figure("clusters_agglomerative.png"))
            plot_clusters_on_pca(scores, diana.labels, title=f"Divisive, k={k}",
                                 output_path=self._figure("clusters_divisive.png"))
            plot_dendrogram(agnes.linkage, labels=X.index.tolist(), k=k,
                            title=f"Agglomerative clustering ({agnes.method})",
                            output_path=self._figure("dendrogram_agglomerative.png"))
            save_interactive_cluster_plot(
                scores, agnes.labels,
                metadata=table.metadata[[self.config.group_column]],
                output_path=self._figure("clusters_agglomerative.html"),
            )

        return {
            'linkage_coefficients': linkage_scores,
            'agglomerative': agnes,
            'divisive': diana,
            'assignments': assignments,
        }

    def run_label_derivation(self, table: SampleTable):
        """BMI labels, then an independent per-sample train/test draw."""
        label_result = derive_labels(table, self.config.bmi_column,
                                     normal_max=self.config.normal_bmi_max,
                                     obese_min=self.config.obese_bmi_min)
        partition = split_train_test(label_result.labels.index, self.config.train_fraction, self.rng)

        counts = partition.class_counts(label_result.labels)
        self.logger.info(f"Class counts per partition:\n{counts.to_string()}")
        if (counts["train"] == 0).any():
            raise DegenerateClassError(
                f"Training partition lacks a class: {counts['train'].to_dict()}",
                counts=counts["train"].to_dict(),
            )
        if (counts["test"] == 0).any():
            self.logger.warning(f"Test partition lacks a class: {counts['test'].to_dict()}; "
                                f"some metrics will be undefined")
        self.results['partition_counts'] = counts
        return label_result, partition

    def build_feature_matrix(self, table: SampleTable, labels: pd.Series):
        """Log2 abundances of labelled samples, analytes with missing values excluded."""
        log_abundance = log2_transform(table.abundance, self.config.log_pseudocount)
        complete = log_abundance.columns[log_abundance.notna().all(axis=0)]
        n_dropped = log_abundance.shape[1] - len(complete)
        if n_dropped:
            self.logger.warning(f"Excluding {n_dropped} analyte(s) with missing values from modelling")
        if len(complete) == 0:
            raise MissingValueError("No analyte is complete across the labelled samples")
        X = log_abundance[complete]
        return X.loc[labels.index], labels

    def run_model_training(self, X_train: pd.DataFrame, y_train: pd.Series) -> ClassifierBank:
        """Fit ridge, lasso, elastic net and random forest."""
        model_config = self.config.model_training_config()
        self.classifier_bank = ClassifierBank(model_config).fit_all(X_train, y_train)

        if self.config.make_plots:
            for name, model in self.classifier_bank.models.items():
                if not isinstance(model, PenalizedLogisticClassifier):
                    continue
                path = regularization_path(X_train, y_train, model.l1_ratio,
                                           lambdas=model_config.lambdas,
                                           positive_class=self.config.positive_class,
                                           max_iter=self.config.max_iter,
                                           random_state=self.config.random_state)
                plot_regularization_path(path, title=f"{name} regularization path",
                                         selected_lambda=model.selected_lambda_,
                                         output_path=self._figure(f"regularization_path_{name}.png"))

        importance = self.classifier_bank.feature_importance()
        if importance is not None:
            importance.to_csv(self.paths.table_path("feature_importance.csv"), header=True)
            if self.config.make_plots:
                plot_feature_importance(importance, output_path=self._figure("feature_importance.png"))
        return self.classifier_bank

    def run_evaluation(self, bank: ClassifierBank, X_train: pd.DataFrame, y_train: pd.Series,
                       X_test: pd.DataFrame, y_test: pd.Series):
        """Held-out metrics for every model plus the mixing x lambda grid search."""
        performance = evaluate_models(bank.models, X_test, y_test, self.config.positive_class)
        performance.to_csv(self.paths.table_path("performance_report.csv"))

        grid_results = None
        if self.config.run_grid_search:
            grid_results = grid_search_cv(
                X_train, y_train,
                l1_ratios=self.config.l1_ratio_grid,
                lambdas=self.config.grid_search_lambdas,
                n_folds=self.config.cv_folds,
                n_repeats=self.config.cv_repeats,
                positive_class=self.config.positive_class,
                random_state=self.config.random_state,
                max_iter=self.config.max_iter,
                show_progress=self.verbose,
            )
            grid_results.to_csv(self.paths.table_path("grid_search_results.csv"), index=False)
            if self.config.make_plots:
                plot_grid_search_heatmap(grid_results, output_path=self._figure("grid_search_heatmap.png"))
        return performance, grid_results

    def get_best_model(self) -> Optional[Dict[str, Any]]:
        """Get the model with the highest held-out accuracy."""
        if 'performance' not in self.results:
            return None
        performance = self.results['performance']
        best_name = performance['accuracy'].astype(float).idxmax()
        return {
            'name': best_name,
            'score': float(performance.loc[best_name, 'accuracy']),
            'model': self.results['classifier_bank'].models[best_name],
        }

    def get_top_features(self, n_features: int = 10) -> Optional[List[str]]:
        """Get the top N analytes by random forest importance."""
        importance = self.results.get('feature_importance')
        if importance is None:
            return None
        return [str(f) for f in importance.index[:n_features]]

    def save_summary_report(self, filename: str = "pipeline_summary.txt"):
        """Save a summary report of the pipeline results."""
        report_path = self.output_dir / filename

        with open(report_path, 'w') as f:
            f.write("metabopheno Pipeline Summary Report\n")
            f.write("=" * 40 + "\n\n")

            if 'aligned_data' in self.results:
                f.write(f"Aligned samples: {self.results['aligned_data'].n_samples}\n")

            if 'batch_correction' in self.results:
                flagged = self.results['batch_correction'].flagged_analytes
                f.write(f"Analytes passed through batch correction uncorrected: {len(flagged)}\n")

            if 'outlier_filter' in self.results:
                removed = self.results['outlier_filter'].removed
                f.write(f"PCA outliers removed: {len(removed)} {list(removed)}\n")

            if 'labels' in self.results:
                labels = self.results['labels']
                f.write(f"Class counts: {labels.class_counts} "
                        f"(overweight excluded: {labels.n_overweight}, "
                        f"missing BMI: {labels.n_missing})\n")

            if 'partition_counts' in self.results:
                f.write(f"\nPartition class counts:\n{self.results['partition_counts'].to_string()}\n")

            if 'classifier_bank' in self.results:
                f.write("\nSelected lambda per penalized model:\n")
                for name, lam in self.results['classifier_bank'].selected_lambdas().items():
                    f.write(f"  {name}: {lam:.4g}\n")

            if 'performance' in self.results:
                f.write(f"\nPerformance (positive class '{self.config.positive_class}'):\n")
                f.write(self.results['performance'][['accuracy', 'precision', 'recall']].to_string())
                f.write("\n")

            best_model = self.get_best_model()
            if best_model:
                f.write(f"\nBest Model: {best_model['name']}\n")
                f.write(f"Best Accuracy: {best_model['score']:.4f}\n")

            top_features = self.get_top_features()
            if top_features:
                f.write("\nTop 10 Features:\n")
                for i, feature in enumerate(top_features, 1):
                    f.write(f"{i}. {feature}\n")

        self.logger.info(f"Summary report saved to {report_path}")
        return report_path
