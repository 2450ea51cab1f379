"""
Path configuration and management utilities for metabopheno.

This module provides centralized path management to ensure consistent
output directory structure across all pipeline stages.
"""

from pathlib import Path
from typing import Optional, Union


class MetaboPhenoPathManager:
    """
    Centralized path management for metabopheno outputs.

    Tables (performance report, grid search, cluster assignments) go to
    ``tables/``, rendered charts to ``figures/``.
    """

    def __init__(self, base_output_dir: Union[str, Path] = "metabopheno_outputs"):
        """
        Initialize path manager.

        Parameters
        ----------
        base_output_dir : str or Path
            Base directory for all metabopheno outputs
        """
        self.base_dir = Path(base_output_dir).resolve()
        self._ensure_base_dir()

    def _ensure_base_dir(self):
        """Create base directory if it doesn't exist."""
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def tables_dir(self) -> Path:
        return self.base_dir / "tables"

    @property
    def figures_dir(self) -> Path:
        return self.base_dir / "figures"

    @property
    def log_file(self) -> Path:
        return self.base_dir / "metabopheno_pipeline.log"

    def ensure_dir(self, directory: Union[str, Path]) -> Path:
        """
        Ensure directory exists and return Path object.

        Parameters
        ----------
        directory : str or Path
            Directory path to create

        Returns
        -------
        Path
            Path object for the directory
        """
        dir_path = Path(directory)
        dir_path.mkdir(parents=True, exist_ok=True)
        return dir_path

    def table_path(self, filename: str) -> Path:
        return self.ensure_dir(self.tables_dir) / filename

    def figure_path(self, filename: str) -> Path:
        return self.ensure_dir(self.figures_dir) / filename

    def create_all_dirs(self):
        """Create all standard output directories."""
        for directory in (self.tables_dir, self.figures_dir):
            self.ensure_dir(directory)


def get_output_dir(component: str, base_dir: Optional[Union[str, Path]] = None) -> str:
    """
    Get output directory for a specific component.

    Parameters
    ----------
    component : str
        Component name ('tables' or 'figures')
    base_dir : str or Path, optional
        Base directory. Defaults to ``metabopheno_outputs`` in the working directory.

    Returns
    -------
    str
        Output directory path as string
    """
    path_manager = MetaboPhenoPathManager(base_dir if base_dir is not None else "metabopheno_outputs")

    component_map = {
        'tables': path_manager.tables_dir,
        'figures': path_manager.figures_dir,
    }

    if component not in component_map:
        raise ValueError(f"Unknown component: {component}. "
                        f"Available components: {list(component_map.keys())}")

    output_dir = component_map[component]
    path_manager.ensure_dir(output_dir)
    return str(output_dir)
