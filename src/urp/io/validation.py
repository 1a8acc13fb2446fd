"""Data validation utilities for study tables.

This module provides a `StudyValidator` class for checking a study table
before it is pooled, along with a helper function `validate_study_table`
that loads a file and runs every check. Validation covers records the
effect size deriver would exclude, duplicate study identifiers, point
estimates lying outside their own confidence interval and missing sample
sizes. Results are presented via rich console messages and aggregated
into a summary report.
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..core.models import StudyRecord
from ..meta.effects import derive_effect
from ..meta.exceptions import DataLoadError, InvalidRecordError
from ..utils.logging import get_logger
from .loader import load_studies


console = Console()
logger = get_logger(__name__)


class StudyValidator:
    """
    Validate a study table ahead of meta-analysis.

    Validators accumulate errors, warnings, and info messages and can
    summarise results after performing checks. If `strict` is enabled,
    warnings are treated as errors when determining overall success.
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.info: List[str] = []

    def validate_effects(self, records: List[StudyRecord]) -> bool:
        """Check that records can yield a log effect and standard error."""
        console.print("\n[cyan]Validating effect sizes...[/cyan]")
        table = Table(title="Excluded records", show_lines=False)
        table.add_column("Study")
        table.add_column("Reason")
        table.add_column("Detail")
        valid = 0
        for record in records:
            try:
                derive_effect(record)
                valid += 1
            except InvalidRecordError as exc:
                table.add_row(exc.study_id, exc.reason.value, exc.detail)
                self.warnings.append(f"{exc.study_id} will be excluded: {exc.reason.value}")
        if valid == 0:
            self.errors.append("No record yields a valid effect size; nothing to pool")
        if valid == len(records):
            console.print(f"[green]✓ All {len(records)} records valid[/green]")
            return True
        console.print(table)
        console.print(f"[yellow]⚠ {len(records) - valid} of {len(records)} records will be excluded[/yellow]")
        return valid > 0 and not self.strict

    def check_duplicates(self, records: List[StudyRecord]) -> bool:
        """Look for repeated study identifiers."""
        console.print("\n[cyan]Checking for duplicate studies...[/cyan]")
        counts = Counter(r.study_id for r in records)
        duplicates = {sid: n for sid, n in counts.items() if n > 1}
        for sid, n in duplicates.items():
            self.warnings.append(f"Study '{sid}' appears {n} times")
        if duplicates:
            console.print(f"[yellow]⚠ {len(duplicates)} duplicated study identifiers[/yellow]")
            return not self.strict
        console.print("[green]✓ No duplicate studies[/green]")
        return True

    def check_point_estimates(self, records: List[StudyRecord]) -> bool:
        """Check that each odds ratio lies within its confidence interval."""
        console.print("\n[cyan]Checking point estimates...[/cyan]")
        outside = 0
        for r in records:
            if None in (r.odds_ratio, r.ci_lower, r.ci_upper):
                continue
            if not r.ci_lower <= r.odds_ratio <= r.ci_upper:
                outside += 1
                self.warnings.append(
                    f"{r.study_id}: OR {r.odds_ratio} outside [{r.ci_lower}, {r.ci_upper}]"
                )
        if outside:
            console.print(f"[yellow]⚠ {outside} odds ratios outside their interval[/yellow]")
            return not self.strict
        console.print("[green]✓ Point estimates within intervals[/green]")
        return True

    def check_sample_sizes(self, records: List[StudyRecord]) -> bool:
        """Report studies without a sample size (informational only)."""
        missing = sum(1 for r in records if r.sample_size is None)
        if missing:
            self.info.append(f"{missing} studies without sample size")
        console.print(f"  Missing sample size: {missing}")
        return True

    def generate_report(self) -> bool:
        """Print a summary report and return True if validation passes."""
        console.print("\n" + "=" * 60)
        console.print("[bold]Validation Report[/bold]")
        console.print("=" * 60)
        if self.errors:
            console.print(f"\n[bold red]Errors ({len(self.errors)}):[/bold red]")
            for e in self.errors:
                console.print(f"  [red]✗ {e}[/red]")
        if self.warnings:
            console.print(f"\n[bold yellow]Warnings ({len(self.warnings)}):[/bold yellow]")
            for w in self.warnings[:20]:
                console.print(f"  [yellow]⚠ {w}[/yellow]")
            if len(self.warnings) > 20:
                console.print(f"  [dim]... and {len(self.warnings) - 20} more warnings[/dim]")
        for i in self.info:
            console.print(f"  [dim]{i}[/dim]")
        if not self.errors and not self.warnings:
            console.print("\n[bold green]✓ All validations passed![/bold green]")
        console.print(f"\n[bold]Summary:[/bold]")
        console.print(f"  Errors: {len(self.errors)}")
        console.print(f"  Warnings: {len(self.warnings)}")
        return len(self.errors) == 0 and (not self.strict or len(self.warnings) == 0)


def validate_study_table(path: Path, strict: bool = False) -> bool:
    """Load a study table and run all validations.

    Args:
        path: CSV, TSV, Excel or parquet file with one row per study.
        strict: Treat warnings as errors when determining pass/fail.

    Returns:
        True if all validations pass; False otherwise.
    """
    console.print(Panel(f"Validating: {path}", title="Data Validation", border_style="cyan"))
    try:
        records = load_studies(path)
    except DataLoadError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        return False
    console.print(f"[green]Loaded {len(records)} studies[/green]")
    validator = StudyValidator(strict=strict)
    results = [
        validator.validate_effects(records),
        validator.check_duplicates(records),
        validator.check_point_estimates(records),
        validator.check_sample_sizes(records),
    ]
    passed = validator.generate_report()
    return passed and all(results)
