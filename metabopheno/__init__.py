"""
metabopheno: Metabolomic Signatures of Obesity Phenotype

A Python package that asks whether plasma metabolite abundances predict a
BMI-derived obesity label in a cohort collected across several batches.

Main Components:
- Data loading and sample alignment
- Batch effect correction and PCA outlier removal
- Agglomerative and divisive clustering diagnostics
- Penalized logistic regression and random forest classifiers
- Held-out evaluation and elastic-net grid search
"""

__version__ = "0.1.0"
__author__ = "Junrong Li"


# Import main classes and functions for easy access
from .core.data_loader import SampleTable, load_datasets
from .core.batch_corrector import remove_batch_effect
from .core.outlier_filter import filter_pca_outliers
from .core.clustering import agglomerative_clustering, divisive_clustering
from .core.label_deriver import derive_labels, split_train_test
from .core.model_trainer import ClassifierBank, ModelTrainingConfig
from .core.evaluator import report_perf_metrics, grid_search_cv
from .pipeline.auto_pipeline import MetaboPhenoPipeline, PipelineConfig
from .exceptions import MetaboPhenoError

# Main API exports
__all__ = [
    'SampleTable',
    'load_datasets',
    'remove_batch_effect',
    'filter_pca_outliers',
    'agglomerative_clustering',
    'divisive_clustering',
    'derive_labels',
    'split_train_test',
    'ClassifierBank',
    'ModelTrainingConfig',
    'report_perf_metrics',
    'grid_search_cv',
    'MetaboPhenoPipeline',
    'PipelineConfig',
    'MetaboPhenoError',
]

# Package metadata
PACKAGE_INFO = {
    'name': 'metabopheno',
    'version': __version__,
    'description': 'Metabolomic signatures of a BMI-derived obesity phenotype',
    'author': __author__,
    'license': 'MIT',
}
