"""Step-by-step usage example for metabopheno package.

This example runs the analysis stages one at a time instead of through
MetaboPhenoPipeline, which gives finer control over each step.
"""

from pathlib import Path

import numpy as np

from metabopheno.core.data_loader import align_tables
from metabopheno.core.batch_corrector import log2_transform, remove_batch_effect
from metabopheno.core.outlier_filter import (
    scale_features, complete_analytes, filter_pca_outliers, plot_pca_scores,
)
from metabopheno.core.clustering import (
    compare_linkage_methods, agglomerative_clustering, divisive_clustering, plot_dendrogram,
)
from metabopheno.core.label_deriver import derive_labels, split_train_test
from metabopheno.core.model_trainer import ModelTrainingConfig, ClassifierBank
from metabopheno.core.evaluator import evaluate_models, grid_search_cv, plot_grid_search_heatmap

from basic_usage import create_sample_data


def main():
    """Run step-by-step metabopheno analysis."""
    print("metabopheno Step-by-Step Analysis")
    print("=" * 40)

    output_dir = Path("metabopheno_stepwise_example")
    output_dir.mkdir(exist_ok=True)
    rng = np.random.default_rng(42)

    abundance, metadata = create_sample_data()

    # Step 1: Loading and alignment
    print("\nStep 1: Aligning tables")
    table = align_tables(abundance, metadata, group_column="Karyotype")
    print(f"Aligned samples: {table.n_samples}")

    # Step 2: Batch correction
    print("\nStep 2: Batch correction")
    table, _ = table.drop_missing("Sample_source")
    correction = remove_batch_effect(log2_transform(table.abundance),
                                     table.metadata["Sample_source"])
    corrected = table.with_abundance(correction.corrected)
    print(f"Flagged analytes: {len(correction.flagged_analytes)}")

    # Step 3: Outlier removal
    print("\nStep 3: PCA outlier removal")
    scaled = scale_features(log2_transform(corrected.abundance))
    outliers = filter_pca_outliers(scaled, threshold=15.0)
    cleaned = corrected.subset(outliers.retained)
    print(f"Removed: {outliers.removed.tolist()}")
    plot_pca_scores(outliers.scores, hue=cleaned.metadata["Karyotype"],
                    explained_variance_ratio=outliers.explained_variance_ratio,
                    output_path=str(output_dir / "pca_scores.png"))

    # Step 4: Clustering diagnostics
    print("\nStep 4: Clustering")
    X_scaled = complete_analytes(scale_features(log2_transform(cleaned.abundance)))
    print(compare_linkage_methods(X_scaled).to_string())
    agnes = agglomerative_clustering(X_scaled, k=3, method="ward")
    diana = divisive_clustering(X_scaled, k=3)
    print(f"Agglomerative sizes: {agnes.sizes.to_dict()}, divisive sizes: {diana.sizes.to_dict()}")
    plot_dendrogram(agnes.linkage, k=3, output_path=str(output_dir / "dendrogram.png"))

    # Step 5: Labels and split
    print("\nStep 5: BMI labels")
    labelled = derive_labels(cleaned, "BMI")
    partition = split_train_test(labelled.labels.index, train_fraction=0.75, rng=rng)
    print(partition.class_counts(labelled.labels).to_string())

    X = log2_transform(labelled.table.abundance)
    y = labelled.labels
    X_train, y_train = X.loc[partition.train], y.loc[partition.train]
    X_test, y_test = X.loc[partition.test], y.loc[partition.test]

    # Step 6: Classifier training
    print("\nStep 6: Training classifiers")
    bank = ClassifierBank(ModelTrainingConfig(lambda_selection="lambda_1se")).fit_all(X_train, y_train)
    print(f"Selected lambdas: {bank.selected_lambdas()}")

    # Step 7: Evaluation
    print("\nStep 7: Evaluation")
    performance = evaluate_models(bank.models, X_test, y_test, positive_class="obese")
    print(performance[["accuracy", "precision", "recall"]].to_string())

    grid = grid_search_cv(X_train, y_train, l1_ratios=[0.0, 0.5, 1.0],
                          lambdas=[1.0, 0.1, 0.01], n_repeats=2)
    plot_grid_search_heatmap(grid, output_path=str(output_dir / "grid_search_heatmap.png"))

    print(f"\nStep-by-step analysis complete! Results in '{output_dir}'.")


if __name__ == "__main__":
    main()
