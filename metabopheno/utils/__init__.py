"""
Utility functions for metabopheno package.
"""

from .paths import MetaboPhenoPathManager, get_output_dir

__all__ = [
    'MetaboPhenoPathManager',
    'get_output_dir',
]
