"""
Command Line Interface for metabopheno.

This module provides a command-line interface for running the obesity
phenotype analysis without writing Python code.
"""

import argparse
import sys
import json
import operator
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .pipeline.auto_pipeline import MetaboPhenoPipeline, PipelineConfig
from .core.model_trainer import LAMBDA_SELECTION_POLICIES
from .exceptions import MetaboPhenoError
from . import __version__

console = Console()


def create_parser():
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        description="metabopheno: Metabolomic signatures of obesity phenotype",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  metabopheno --abundance metabolites.csv --metadata clinical.csv --output results/

  # With custom parameters
  metabopheno --abundance metabolites.csv --metadata clinical.csv --output results/ \\
              --batch-column Sample_source --outlier-threshold 12 --lambda-selection lambda_min

  # Using configuration file
  metabopheno --abundance metabolites.csv --metadata clinical.csv --config config.json
        """
    )

    # Version
    parser.add_argument(
        '--version',
        action='version',
        version=f'metabopheno {__version__}'
    )

    # Required arguments
    parser.add_argument(
        '--abundance',
        type=str,
        required=True,
        help='Path to the abundance table (samples x analytes)'
    )

    parser.add_argument(
        '--metadata',
        type=str,
        required=True,
        help='Path to the clinical metadata table'
    )

    # Optional arguments
    parser.add_argument(
        '--output',
        type=str,
        default='metabopheno_results',
        help='Output directory for results (default: metabopheno_results)'
    )

    parser.add_argument(
        '--config',
        type=str,
        help='Path to JSON configuration file with pipeline parameters'
    )

    parser.add_argument(
        '--random-state',
        type=int,
        default=42,
        help='Random state for reproducibility (default: 42)'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    # Input columns
    columns_group = parser.add_argument_group('Input Column Options')
    columns_group.add_argument(
        '--id-column',
        type=str,
        default=None,
        help='Sample identifier column shared by both tables (default: first column)'
    )

    columns_group.add_argument(
        '--group-column',
        type=str,
        default='Karyotype',
        help='Metadata column used to order samples (default: Karyotype)'
    )

    columns_group.add_argument(
        '--batch-column',
        type=str,
        default='Sample_source',
        help='Metadata column holding the batch label (default: Sample_source)'
    )

    columns_group.add_argument(
        '--bmi-column',
        type=str,
        default='BMI',
        help='Metadata column holding body-mass index (default: BMI)'
    )

    # Preprocessing
    preprocessing_group = parser.add_argument_group('Preprocessing Options')
    preprocessing_group.add_argument(
        '--outlier-threshold',
        type=float,
        default=15.0,
        help='PC1 score beyond which a sample is removed (default: 15)'
    )

    preprocessing_group.add_argument(
        '--two-sided',
        action='store_true',
        help='Also remove samples with PC1 below minus the threshold'
    )

    preprocessing_group.add_argument(
        '--n-clusters',
        type=int,
        default=3,
        help='Number of clusters for the clustering diagnostics (default: 3)'
    )

    # Labels
    label_group = parser.add_argument_group('Label Options')
    label_group.add_argument(
        '--normal-bmi-max',
        type=float,
        default=25.0,
        help='Highest BMI labelled normal (default: 25)'
    )

    label_group.add_argument(
        '--obese-bmi-min',
        type=float,
        default=30.0,
        help='Lowest BMI labelled obese (default: 30)'
    )

    label_group.add_argument(
        '--train-fraction',
        type=float,
        default=0.75,
        help='Per-sample probability of training assignment (default: 0.75)'
    )

    # Model training parameters
    model_group = parser.add_argument_group('Model Training Options')
    model_group.add_argument(
        '--n-trees',
        type=int,
        default=500,
        help='Number of random forest trees (default: 500)'
    )

    model_group.add_argument(
        '--cv-folds',
        type=int,
        default=5,
        help='Number of cross-validation folds (default: 5)'
    )

    model_group.add_argument(
        '--cv-repeats',
        type=int,
        default=3,
        help='Repeats of the k-fold grid search (default: 3)'
    )

    model_group.add_argument(
        '--l1-ratio',
        type=float,
        default=0.5,
        help='Elastic-net mixing parameter (default: 0.5)'
    )

    model_group.add_argument(
        '--lambda-selection',
        choices=list(LAMBDA_SELECTION_POLICIES),
        default='lambda_1se',
        help='Regularization selection policy (default: lambda_1se)'
    )

    model_group.add_argument(
        '--no-grid-search',
        action='store_true',
        help='Skip the elastic-net grid search'
    )

    # Analysis options
    analysis_group = parser.add_argument_group('Analysis Options')
    analysis_group.add_argument(
        '--no-plots',
        action='store_true',
        help='Do not render figures'
    )

    analysis_group.add_argument(
        '--top-features',
        type=int,
        default=10,
        help='Number of top features to display (default: 10)'
    )

    return parser


def load_config(config_path):
    """Load configuration from JSON file."""
    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
        return config
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error loading configuration file: {e}[/red]")
        sys.exit(1)


def validate_inputs(args):
    """Validate input arguments."""
    for label, path in (('Abundance', args.abundance), ('Metadata', args.metadata)):
        if not Path(path).exists():
            console.print(f"[red]Error: {label} file '{path}' not found.[/red]")
            sys.exit(1)

    if args.outlier_threshold <= 0:
        console.print("[red]Error: outlier-threshold must be positive.[/red]")
        sys.exit(1)

    if not 0 < args.train_fraction < 1:
        console.print("[red]Error: train-fraction must be between 0 and 1.[/red]")
        sys.exit(1)

    if args.normal_bmi_max >= args.obese_bmi_min:
        console.print("[red]Error: normal-bmi-max must be below obese-bmi-min.[/red]")
        sys.exit(1)

    if not 0 <= args.l1_ratio <= 1:
        console.print("[red]Error: l1-ratio must be between 0 and 1.[/red]")
        sys.exit(1)

    if args.cv_folds < 2:
        console.print("[red]Error: cv-folds must be at least 2.[/red]")
        sys.exit(1)

    if args.n_clusters < 1:
        console.print("[red]Error: n-clusters must be at least 1.[/red]")
        sys.exit(1)


# argparse dest -> (PipelineConfig field, value conversion)
CONFIG_FLAGS = {
    'id_column': ('id_column', None),
    'group_column': ('group_column', None),
    'batch_column': ('batch_column', None),
    'bmi_column': ('bmi_column', None),
    'outlier_threshold': ('outlier_threshold', None),
    'two_sided': ('outlier_two_sided', None),
    'n_clusters': ('n_clusters', None),
    'normal_bmi_max': ('normal_bmi_max', None),
    'obese_bmi_min': ('obese_bmi_min', None),
    'train_fraction': ('train_fraction', None),
    'n_trees': ('n_trees', None),
    'cv_folds': ('cv_folds', None),
    'cv_repeats': ('cv_repeats', None),
    'l1_ratio': ('elastic_net_l1_ratio', None),
    'lambda_selection': ('lambda_selection', None),
    'no_grid_search': ('run_grid_search', operator.not_),
    'random_state': ('random_state', None),
    'no_plots': ('make_plots', operator.not_),
}


def config_overrides(args) -> dict:
    """Map the pipeline flags present on ``args`` to PipelineConfig fields."""
    overrides = {}
    for dest, (field_name, convert) in CONFIG_FLAGS.items():
        if hasattr(args, dest):
            value = getattr(args, dest)
            overrides[field_name] = convert(value) if convert else value
    return overrides


_UNSET = object()


def explicit_arguments(argv=None):
    """Parse again keeping only the pipeline flags the user actually passed."""
    # argparse skips defaults for attributes already on the namespace
    namespace = argparse.Namespace(**dict.fromkeys(CONFIG_FLAGS, _UNSET))
    args = create_parser().parse_args(argv, namespace=namespace)
    for dest in CONFIG_FLAGS:
        if getattr(args, dest) is _UNSET:
            delattr(args, dest)
    return args


def build_pipeline_config(args, config_file=None, argv=None) -> PipelineConfig:
    """
    Build pipeline configuration from command line arguments.

    With ``config_file`` the JSON values are the base and only the flags
    given explicitly on the command line override them.
    """
    if config_file is None:
        return PipelineConfig(**config_overrides(args))

    params = load_config(config_file)
    params.update(config_overrides(explicit_arguments(argv)))
    return PipelineConfig.from_dict(params)


def performance_table(performance) -> Table:
    """Render the held-out performance report."""
    table = Table(title="Model Performance (held-out test set)")
    table.add_column("Model", style="bold")
    for metric in ("accuracy", "precision", "recall"):
        table.add_column(metric.capitalize(), justify="right")
    for name, row in performance.iterrows():
        cells = [f"{row[m]:.4f}" if isinstance(row[m], float) else str(row[m])
                 for m in ("accuracy", "precision", "recall")]
        table.add_row(str(name), *cells)
    return table


def main(argv=None):
    """Main CLI function."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Validate inputs
    validate_inputs(args)

    # Load configuration if provided; explicit flags take precedence
    try:
        config = build_pipeline_config(args, config_file=args.config, argv=argv)
    except (TypeError, ValueError) as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        sys.exit(1)

    # Print startup information
    console.print(f"[bold]metabopheno v{__version__}[/bold]")
    console.print("=" * 50)
    console.print(f"Abundance file: {args.abundance}")
    console.print(f"Metadata file: {args.metadata}")
    console.print(f"Output directory: {args.output}")
    console.print(f"Random state: {config.random_state}")

    pipeline = MetaboPhenoPipeline(
        output_dir=args.output,
        config=config,
        verbose=args.verbose
    )

    # Run pipeline
    try:
        console.print("\nRunning metabopheno pipeline...")
        results = pipeline.run_full_pipeline(args.abundance, args.metadata)
    except (MetaboPhenoError, ValueError, FileNotFoundError) as e:
        console.print(f"\n[red]Error during pipeline execution: {e}[/red]")
        if args.verbose:
            console.print_exception()
        sys.exit(1)

    # Display results
    console.print(f"\nAligned samples: {results['aligned_data'].n_samples}")
    console.print(f"Outliers removed: {len(results['outlier_filter'].removed)}")
    console.print(f"Class counts: {results['labels'].class_counts}")
    console.print(performance_table(results['performance']))

    best_model = pipeline.get_best_model()
    if best_model:
        console.print(f"\nBest Model: {best_model['name']} (Accuracy: {best_model['score']:.4f})")

    top_features = pipeline.get_top_features(n_features=args.top_features)
    if top_features:
        console.print(f"\nTop {args.top_features} analytes by random forest importance:")
        for i, feature in enumerate(top_features, 1):
            console.print(f"  {i}. {feature}")

    pipeline.save_summary_report()

    console.print("\n[green]Analysis completed successfully![/green]")
    console.print(f"Results saved in: {pipeline.output_dir}")


if __name__ == "__main__":
    main()
