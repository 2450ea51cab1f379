"""
Basic usage example for metabopheno package.

This example demonstrates how to run the complete obesity phenotype
analysis on a synthetic cohort.
"""

import pandas as pd
import numpy as np
from metabopheno import MetaboPhenoPipeline, PipelineConfig


def create_sample_data(seed: int = 42):
    """Create a synthetic cohort: abundance table and clinical metadata."""
    rng = np.random.default_rng(seed)

    n_samples = 200
    n_features = 80

    sample_ids = [f"S{i:04d}" for i in range(n_samples)]
    feature_names = [f"metabolite_{i:03d}" for i in range(n_features)]

    # Clinical metadata
    karyotype = rng.choice(["T21", "D21"], size=n_samples, p=[0.6, 0.4])
    batch = rng.choice(["site_A", "site_B", "site_C"], size=n_samples)
    bmi = np.round(rng.normal(27, 5, n_samples), 1)
    bmi[rng.random(n_samples) < 0.03] = np.nan

    # Log-normal abundances with a multiplicative batch shift
    log_data = rng.normal(10, 1, size=(n_samples, n_features))
    batch_shift = {"site_A": 0.0, "site_B": 0.8, "site_C": -0.5}
    log_data += np.array([batch_shift[b] for b in batch])[:, None]

    # A handful of metabolites track obesity
    obese = np.nan_to_num(bmi) >= 30
    log_data[obese, :8] += 0.7

    abundance = pd.DataFrame(np.exp2(log_data), index=sample_ids, columns=feature_names)
    abundance.index.name = "sample_id"
    metadata = pd.DataFrame(
        {"Karyotype": karyotype, "Sample_source": batch, "BMI": bmi},
        index=sample_ids,
    )
    metadata.index.name = "sample_id"
    return abundance, metadata


def main():
    """Run the basic metabopheno pipeline example."""
    print("metabopheno Basic Usage Example")
    print("=" * 40)

    # Step 1: Create or load sample data
    print("\nCreating synthetic cohort...")
    abundance, metadata = create_sample_data()
    print(f"Abundance shape: {abundance.shape}")
    print(f"Batch distribution: {metadata['Sample_source'].value_counts().to_dict()}")

    # Step 2: Configure pipeline parameters
    config = PipelineConfig(
        group_column="Karyotype",
        batch_column="Sample_source",
        bmi_column="BMI",
        outlier_threshold=15.0,
        n_clusters=3,
        n_trees=500,
        cv_repeats=3,
        random_state=42,
    )

    # Step 3: Initialize metabopheno pipeline
    print("\nInitializing metabopheno pipeline...")
    pipeline = MetaboPhenoPipeline(
        output_dir="metabopheno_basic_example",
        config=config,
        verbose=True
    )

    # Step 4: Run the complete pipeline
    print("\nRunning complete metabopheno pipeline...")
    results = pipeline.run_full_pipeline(abundance, metadata)

    # Step 5: Analyze results
    print("\nPipeline Results:")
    print("-" * 20)
    print(f"Aligned samples: {results['aligned_data'].n_samples}")
    print(f"Outliers removed: {len(results['outlier_filter'].removed)}")
    print(f"Class counts: {results['labels'].class_counts}")
    print(f"Linkage coefficients:\n{results['clustering']['linkage_coefficients'].to_string()}")

    print("\nModel Performance (held-out):")
    print(results['performance'][['accuracy', 'precision', 'recall']].to_string())

    best_model = pipeline.get_best_model()
    if best_model:
        print(f"\nBest Model: {best_model['name']} (Accuracy: {best_model['score']:.4f})")

    top_features = pipeline.get_top_features(n_features=10)
    if top_features:
        print("\nTop 10 Metabolites:")
        for i, feature in enumerate(top_features, 1):
            print(f"  {i}. {feature}")

    # Generate summary report
    print("\nGenerating summary report...")
    pipeline.save_summary_report("basic_example_summary.txt")

    print("\nAnalysis complete! Check 'metabopheno_basic_example' directory for detailed results.")

    return results


if __name__ == "__main__":
    results = main()
