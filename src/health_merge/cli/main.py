"""
Command-line interface for Health Merge.

Provides commands for merging multi-source observations and reporting source agreement.
"""

from pathlib import Path

import typer

from health_merge.domain.merge import ResolutionPolicy
from health_merge.infrastructure.parsers.csv_parser import ObservationCSVParser
from health_merge.services.correlation import CorrelationEngine
from health_merge.services.orchestrator import MergedView, MergeOrchestrator
from health_merge.services.output import OutputService
from health_merge.utils.exceptions import HealthMergeError
from health_merge.utils.logging_config import get_logger, setup_logging
from health_merge.utils.parameters import ParameterLoader

app = typer.Typer(help="Health Merge - Multi-source variable merging and agreement analysis")

logger = get_logger(__name__)


def init_config(config_path: str = "config/config.yaml") -> ParameterLoader:
    """
    Initialize configuration and logging.

    Args:
        config_path: Path to configuration file.

    Returns:
        Parameter loader instance.
    """
    param_loader = ParameterLoader(config_path)
    setup_logging(param_loader.get_logging_config(), "health_merge")
    return param_loader


def run_merge(
    param_loader: ParameterLoader,
    group_slug: str,
    input_file: Path,
    policy: ResolutionPolicy | None,
) -> MergedView:
    """Parse the input file and build the merged view for one configured group."""
    group_config = param_loader.get_merge_group(group_slug)

    parser = ObservationCSVParser(param_loader.get_csv_config())
    raw_series = parser.parse(input_file)

    orchestrator = MergeOrchestrator()
    return orchestrator.build_merged_view(
        group_config.to_merge_group(),
        group_config.mappings,
        raw_series,
        policy=policy,
        preference=param_loader.get_preference(group_slug),
    )


@app.command()
def merge(
    group: str = typer.Option(..., help="Merge group slug, e.g. body_weight"),
    input_file: Path = typer.Option(..., "--input", help="Observation CSV (source, date, value)"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
    policy: ResolutionPolicy | None = typer.Option(
        None, help="Override resolution policy (priority_pick or fuse)"
    ),
    output_format: str | None = typer.Option(None, help="Output format: csv, parquet, or both"),
) -> None:
    """
    Build the merged series and correlation report for a merge group.

    Writes the merged series and the correlation report to the configured
    output directory.
    """
    try:
        param_loader = init_config(config_path)
        output_config = param_loader.get_output_config()

        if output_format:
            if output_format == "both":
                output_config.formats = ["csv", "parquet"]
            else:
                output_config.formats = [output_format]

        logger.info(f"Starting merge for '{group}'")

        view = run_merge(param_loader, group, input_file, policy)

        output_service = OutputService(output_config)
        output_service.write_merged_series(view.merged_series)
        output_service.write_correlation_report(group, view.correlations)

        alerts = [p for p in view.merged_series if p.disagreement_alert]
        typer.echo(f"Merged {len(view.merged_series)} dates for {group}")
        typer.echo(f"Found {len(alerts)} dates with source disagreement above threshold")
        typer.echo(f"Output written to {output_config.dir}/")

    except HealthMergeError as e:
        logger.error(f"Merge failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def correlate(
    group: str = typer.Option(..., help="Merge group slug, e.g. body_weight"),
    input_file: Path = typer.Option(..., "--input", help="Observation CSV (source, date, value)"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Print source agreement statistics for a merge group.
    """
    try:
        param_loader = init_config(config_path)

        view = run_merge(param_loader, group, input_file, None)

        if not view.correlations:
            typer.echo(f"No source pairs to correlate for {group}")
            return

        for result in view.correlations:
            typer.echo(f"\n{result.source_a} vs {result.source_b} (n={result.n}):")
            typer.echo(f"  {CorrelationEngine.interpret(result)}")
            if result.icc is not None:
                typer.echo(f"  ICC: {result.icc:.3f}")
            if result.ccc is not None:
                typer.echo(f"  CCC: {result.ccc:.3f}")
            if result.mae is not None:
                typer.echo(f"  MAE: {result.mae:.3f}  RMSE: {result.rmse:.3f}")
                typer.echo(f"  Mean bias: {result.mean_bias:+.3f}")

    except HealthMergeError as e:
        logger.error(f"Correlation failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def groups(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    List configured merge groups and their source mappings.
    """
    try:
        param_loader = init_config(config_path)

        for group_config in param_loader.get_merge_groups():
            typer.echo(f"{group_config.slug}: {group_config.name} [{group_config.canonical_unit}]")
            for mapping in group_config.active_mappings():
                typer.echo(
                    f"  {mapping.source_priority}. {mapping.data_source} "
                    f"({mapping.source_unit}, x{mapping.conversion_factor:g}"
                    f" {mapping.conversion_offset:+g})"
                )

    except HealthMergeError as e:
        logger.error(f"Listing groups failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
