"""CLI application using Typer for the umbrella review pipeline."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config.settings import settings
from ..core.models import AnalysisReport
from ..io.export import save_report
from ..io.loader import load_studies
from ..io.paths import create_output_dir, outcome_dir
from ..io.validation import validate_study_table
from ..meta.analyzer import MetaAnalyzer
from ..meta.effects import derive_effects
from ..meta.exceptions import DataLoadError
from ..meta.forest_plot import create_forest_plot, create_funnel_plot
from ..utils.logging import get_logger

app = typer.Typer(
    name="urp",
    help="Umbrella Review Pipeline - pool odds ratios across studies",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


def _fmt(value: Optional[float], digits: int = 3) -> str:
    return "undefined" if value is None else f"{value:.{digits}f}"


def _load(path: Path):
    try:
        return load_studies(path)
    except DataLoadError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)


def _print_effects(report: AnalysisReport) -> None:
    table = Table(title="Derived effect sizes")
    table.add_column("Study")
    table.add_column("OR [95% CI]")
    table.add_column("log OR", justify="right")
    table.add_column("SE", justify="right")
    table.add_column("Weight %", justify="right")
    weights = report.pooled.weights if report.pooled is not None else []
    for i, es in enumerate(report.effects):
        table.add_row(
            es.study_id,
            f"{es.odds_ratio:.2f} [{es.ci_lower:.2f}, {es.ci_upper:.2f}]",
            f"{es.log_effect:.3f}",
            f"{es.standard_error:.3f}",
            _fmt(weights[i] if weights else None, 1),
        )
    console.print(table)
    if report.excluded:
        excluded = Table(title="Excluded records")
        excluded.add_column("Study")
        excluded.add_column("Reason")
        excluded.add_column("Detail")
        for ex in report.excluded:
            excluded.add_row(ex.study_id, ex.reason.value, ex.detail)
        console.print(excluded)


def _print_pooled(report: AnalysisReport) -> None:
    title = f"Pooled result ({report.outcome})" if report.outcome else "Pooled result"
    if report.insufficient_data:
        console.print(f"[yellow]{title}: insufficient data, no valid studies to pool[/yellow]")
        return
    pooled = report.pooled
    table = Table(title=title, show_header=False)
    table.add_row("Studies (k)", str(pooled.k))
    table.add_row("Model", f"{pooled.method} effects ({pooled.tau2_method})")
    table.add_row(
        "Pooled OR [95% CI]",
        f"{pooled.pooled_odds_ratio:.3f} "
        f"[{pooled.confidence_interval.lower:.3f}, {pooled.confidence_interval.upper:.3f}]",
    )
    table.add_row("p-value", f"{pooled.p_value:.4f}")
    table.add_row("tau²", _fmt(pooled.tau2, 4))
    table.add_row("I²", "undefined" if pooled.i_squared is None else f"{pooled.i_squared:.1f}%")
    if pooled.q is not None:
        table.add_row("Q (df)", f"{pooled.q:.3f} ({pooled.q_df}), p = {pooled.q_pvalue:.4f}")
    if pooled.prediction_interval is not None:
        table.add_row(
            "95% prediction interval",
            f"[{pooled.prediction_interval.lower:.3f}, {pooled.prediction_interval.upper:.3f}]",
        )
    else:
        table.add_row("95% prediction interval", "undefined (needs k ≥ 3)")
    console.print(table)
    if pooled.heterogeneity_interpretation:
        console.print(f"Heterogeneity: {pooled.heterogeneity_interpretation}")


@app.command()
def analyze(
    studies: Path = typer.Argument(..., help="CSV/TSV/Excel/parquet table with one row per study", exists=True),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (default: timestamped)"),
    method: str = typer.Option(settings.pooling_method, "--method", help="Pooling method: 'random' or 'fixed'"),
    tau2_method: str = typer.Option(settings.tau2_method, "--tau2-method", help="tau² estimator: 'DL' or 'REML'"),
    by_outcome: bool = typer.Option(False, "--by-outcome", help="Pool each outcome separately"),
    plots: bool = typer.Option(True, "--plots/--no-plots", help="Save forest and funnel plots"),
) -> None:
    """
    Derive effect sizes and pool them with a random-effects model.

    Examples:
        urp analyze studies.csv
        urp analyze studies.csv --tau2-method REML --by-outcome -o results/
    """
    console.print("[bold blue]Running meta-analysis[/bold blue]")
    records = _load(studies)
    try:
        analyzer = MetaAnalyzer(method=method, tau2_method=tau2_method)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)
    if by_outcome:
        reports = analyzer.run_by_outcome(records)
    else:
        reports = {"all": analyzer.run(records)}
    if output_dir is None:
        output_dir = create_output_dir("analysis")
    else:
        output_dir.mkdir(parents=True, exist_ok=True)
    for name, report in reports.items():
        out = outcome_dir(output_dir, name) if by_outcome else output_dir
        console.print()
        _print_effects(report)
        _print_pooled(report)
        save_report(report, out)
        if plots and not report.insufficient_data:
            title = f"Forest plot ({name})" if by_outcome else "Forest plot"
            create_forest_plot(analyzer.generate_forest_plot_data(report), out / "forest_plot.png", title=title)
            create_funnel_plot(report.effects, report.pooled, out / "funnel_plot.png")
            bias = analyzer.publication_bias_test(report.effects)
            if "error" not in bias:
                console.print(f"Egger's test: intercept {bias['intercept']:.3f}, p = {bias['p_value']:.4f} ({bias['interpretation']})")
    console.print(f"\n[green]✓ Results saved to {output_dir}[/green]")


@app.command()
def derive(
    studies: Path = typer.Argument(..., help="CSV/TSV/Excel/parquet table with one row per study", exists=True),
) -> None:
    """Show log odds ratios and standard errors without pooling."""
    records = _load(studies)
    effects, excluded = derive_effects(records)
    _print_effects(AnalysisReport(effects=effects, excluded=excluded))
    console.print(f"[green]{len(effects)} valid[/green], [yellow]{len(excluded)} excluded[/yellow]")


@app.command()
def validate(
    studies: Path = typer.Argument(..., help="CSV/TSV/Excel/parquet table with one row per study", exists=True),
    strict: bool = typer.Option(False, "--strict", help="Treat warnings as errors"),
) -> None:
    """
    Validate a study table before pooling.

    Examples:
        urp validate studies.csv
        urp validate studies.csv --strict
    """
    passed = validate_study_table(studies, strict=strict)
    if passed:
        console.print("\n[bold green]✓ Validation passed![/bold green]")
        raise typer.Exit(0)
    else:
        console.print("\n[bold red]✗ Validation failed![/bold red]")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from .. import __version__
    console.print(f"Umbrella Review Pipeline v{__version__}")


if __name__ == "__main__":
    app()
