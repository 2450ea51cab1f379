"""
Pipeline module for metabopheno.

Contains the MetaboPhenoPipeline class that runs the analysis from the
input tables to the performance report.
"""

from .auto_pipeline import MetaboPhenoPipeline, PipelineConfig

__all__ = ['MetaboPhenoPipeline', 'PipelineConfig']
