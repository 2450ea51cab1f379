"""
Core modules for metabopheno package.

This module contains the analysis stages: loading, batch correction,
outlier filtering, clustering, label derivation, classification and
evaluation.
"""

from .data_loader import SampleTable, read_table, align_tables, load_datasets
from .batch_corrector import BatchCorrectionResult, log2_transform, remove_batch_effect
from .outlier_filter import OutlierFilterResult, scale_features, filter_pca_outliers
from .clustering import (
    ClusterResult, agglomerative_coefficient, compare_linkage_methods,
    agglomerative_clustering, divisive_clustering
)
from .label_deriver import LabelResult, TrainTestPartition, derive_labels, split_train_test
from .model_trainer import (
    ModelTrainingConfig, PenalizedLogisticClassifier, RandomForestModel,
    ClassifierBank, regularization_path
)
from .evaluator import PerformanceReport, report_perf_metrics, evaluate_models, grid_search_cv

__all__ = [
    'SampleTable',
    'read_table',
    'align_tables',
    'load_datasets',
    'BatchCorrectionResult',
    'log2_transform',
    'remove_batch_effect',
    'OutlierFilterResult',
    'scale_features',
    'filter_pca_outliers',
    'ClusterResult',
    'agglomerative_coefficient',
    'compare_linkage_methods',
    'agglomerative_clustering',
    'divisive_clustering',
    'LabelResult',
    'TrainTestPartition',
    'derive_labels',
    'split_train_test',
    'ModelTrainingConfig',
    'PenalizedLogisticClassifier',
    'RandomForestModel',
    'ClassifierBank',
    'regularization_path',
    'PerformanceReport',
    'report_perf_metrics',
    'evaluate_models',
    'grid_search_cv',
]
