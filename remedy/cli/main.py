"""
Remedy CLI - Command-line interface for repairing failed UI tests.
"""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from remedy import __version__
from remedy.core.errors import RemedyError

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _confidence_cell(confidence: float) -> str:
    color = "green" if confidence > 0.7 else "yellow" if confidence > 0.4 else "red"
    return f"[{color}]{confidence:.0%}[/{color}]"


def _fail(error: RemedyError) -> None:
    console.print(Panel.fit(
        f"[bold red]❌ {type(error).__name__}[/bold red]\n{error}",
        border_style="red",
    ))
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="remedy")
def cli():
    """🩹 Remedy - Self-Healing UI Test Repair

    Diagnose failed browser test steps and compile repaired routes.
    """
    pass


@cli.command()
@click.argument('url')
@click.argument('goal')
@click.option('--result-file', default=None, help='Result JSON to repair (default: newest result_*.json)')
@click.option('--route-file', default=None, help='Route JSON that produced the result')
@click.option('--results-dir', default='./test-results', help='Directory holding routes and results')
@click.option('--enable-ai', is_flag=True, help='Ask a language model for fixes')
@click.option('--auto-execute', is_flag=True, envvar='AUTO_EXECUTE_FIXES',
              help='Re-run the repaired route and learn from the outcome')
@click.option('--ai-model', default=None, help='Specific model name (e.g. gpt-4, claude-3-opus)')
@click.option('--ai-provider', default='auto', type=click.Choice(['auto', 'openai', 'anthropic']),
              help='Language model provider')
@click.option('--ai-timeout', default=30.0, type=float, help='Seconds before an AI call is abandoned')
@click.option('--patterns-file', default=None, help='Learned pattern store (default: <results-dir>/.failure-patterns.json)')
@click.option('--headless/--headed', default=True, help='Run browser in headless mode')
@click.option('--report-dir', default='./remedy_reports', help='Report output directory')
@click.option('--verbose', '-v', is_flag=True, help='Log every probe and decision')
def repair(url, goal, result_file, route_file, results_dir, enable_ai, auto_execute, ai_model,
           ai_provider, ai_timeout, patterns_file, headless, report_dir, verbose):
    """
    Repair the failed steps of a recorded route.

    \b
    Examples:

        remedy repair "https://example.com/contact" "Submit the contact form"

        remedy repair "https://example.com/contact" "Submit" --result-file test-results/result_12.json

        remedy repair "https://example.com/signup" "Sign up" --enable-ai --auto-execute
    """
    _configure_logging(verbose)

    console.print(Panel.fit(
        f"[bold blue]🩹 Remedy[/bold blue]\n"
        f"[dim]Self-Healing UI Test Repair[/dim]",
        border_style="blue"
    ))

    console.print(f"\n[bold]Target:[/bold] {url}")
    console.print(f"[bold]Goal:[/bold] {goal}")
    console.print(f"[bold]AI Analysis:[/bold] {'✅ Enabled' if enable_ai else '❌ Disabled'}")
    console.print(f"[bold]Auto Execute:[/bold] {'✅ Enabled' if auto_execute else '❌ Disabled'}")
    console.print()

    from remedy import RepairEngine

    try:
        with RepairEngine(
            url=url,
            goal=goal,
            results_dir=results_dir,
            result_file=result_file,
            route_file=route_file,
            enable_ai=enable_ai,
            auto_execute=auto_execute,
            headless=headless,
            ai_model=ai_model,
            ai_provider=ai_provider,
            ai_timeout=ai_timeout,
            patterns_file=patterns_file,
            report_dir=report_dir,
        ) as engine:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task("Diagnosing failures...", total=None)
                report = engine.run()
    except RemedyError as e:
        _fail(e)
        return

    for route_id in report.skipped_routes:
        console.print(f"[green]✅ {route_id}: no failed steps[/green]")

    for outcome in report.outcomes:
        summary = outcome.repaired.fix_summary
        console.print(f"\n[bold]{outcome.route.route_id}[/bold] → [cyan]{outcome.repaired.route_id}[/cyan]")
        if outcome.ai_fallback:
            console.print("[yellow]⚠️ AI analysis unavailable; used local ranking[/yellow]")

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Step", style="dim", width=6)
        table.add_column("Error", style="yellow")
        table.add_column("Fix", style="green")
        table.add_column("Target", max_width=40)
        table.add_column("Confidence", justify="right")

        errors = {f.index: f.kind.value for f in outcome.failures}
        for fix in outcome.repaired.applied_fixes:
            target = outcome.repaired.steps[fix.step_index].target
            table.add_row(
                str(fix.step_index),
                errors.get(fix.step_index, fix.error_kind.value),
                fix.kind.value if fix.source != "fallback" else "[red]unresolved[/red]",
                target[:40] + "..." if len(target) > 40 else target,
                _confidence_cell(fix.confidence),
            )
        console.print(table)

        if summary:
            console.print(
                f"[dim]{summary.fixed_steps} fixed · {summary.skipped_steps} skipped · "
                f"{summary.alternative_selectors} alternative selectors · "
                f"{summary.simple_fixes} simple fixes · {summary.unresolved_steps} unresolved[/dim]"
            )
        console.print(f"[dim]Saved: {outcome.path}[/dim]")

        if outcome.rerun is not None:
            if outcome.rerun.failed_count == 0:
                console.print("[bold green]✅ Repaired route passed on re-run[/bold green]")
            else:
                console.print(f"[bold red]❌ Re-run still has {outcome.rerun.failed_count} failed step(s)[/bold red]")

    if report.confirmed_fixes:
        console.print(f"\n[dim]Learned from {report.confirmed_fixes} fix outcome(s)[/dim]")
    console.print(f"\n[dim]Duration: {report.duration_seconds:.2f}s[/dim]")
    if report.report_path:
        console.print(f"[dim]Report: {report.report_path}[/dim]")


@cli.command()
@click.argument('repaired_route', type=click.Path())
@click.argument('result_file', type=click.Path())
@click.option('--patterns-file', default='./test-results/.failure-patterns.json', help='Learned pattern store')
def confirm(repaired_route, result_file, patterns_file):
    """
    Record how the fixes of a repaired route did in a later run.

    Example:

        remedy confirm test-results/fixed_route_12.json test-results/result_fixed_route_12.json
    """
    from remedy.core.engine import record_fix_outcomes
    from remedy.core.route_io import load_results, load_route
    from remedy.layers.memory import JsonPatternStore

    try:
        route = load_route(repaired_route)
        results = load_results(result_file)
    except RemedyError as e:
        _fail(e)
        return

    if not route.is_fixed_route:
        console.print(f"[yellow]⚠️ {route.route_id} is not a repaired route; nothing to confirm[/yellow]")
        return

    store = JsonPatternStore(patterns_file)
    recorded = sum(record_fix_outcomes(store, route, result) for result in results)
    console.print(f"[green]Recorded {recorded} fix outcome(s) in {patterns_file}[/green]")


@cli.command()
@click.option('--patterns-file', default='./test-results/.failure-patterns.json', help='Learned pattern store')
def patterns(patterns_file):
    """
    List learned repair patterns.

    Example:

        remedy patterns --patterns-file test-results/.failure-patterns.json
    """
    from remedy.layers.memory import JsonPatternStore

    entries = JsonPatternStore(patterns_file).patterns()
    if not entries:
        console.print("[dim]No learned patterns yet.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Action", style="green")
    table.add_column("Target", style="yellow", max_width=40)
    table.add_column("Error", style="blue")
    table.add_column("Attempts", justify="right")
    table.add_column("Successes", justify="right")
    table.add_column("Last Updated", style="dim")

    for entry in entries.values():
        attempts = entry.get("attempts", [])
        successes = sum(1 for a in attempts if a.get("success"))
        table.add_row(
            str(entry.get("action", "?")),
            str(entry.get("target", "?")),
            str(entry.get("errorType", "?")),
            str(len(attempts)),
            f"[green]{successes}[/green]" if successes else "0",
            str(entry.get("lastUpdated", "")),
        )
    console.print(table)


@cli.command()
def doctor():
    """
    Check system health and dependencies.

    Verifies that the browser stack is installed and which optional
    language-model backends are available.
    """
    import os

    console.print(Panel.fit(
        f"[bold cyan]🩺 Remedy Doctor[/bold cyan]\n"
        f"[dim]System Health Check[/dim]",
        border_style="cyan"
    ))
    console.print()

    dependencies = [
        ("selenium", "Core - WebDriver", True),
        ("click", "CLI", True),
        ("rich", "CLI - Console output", True),
        ("openai", "Intelligence - OpenAI backend", False),
        ("anthropic", "Intelligence - Anthropic backend", False),
    ]

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Package", style="blue")
    table.add_column("Role", style="dim")
    table.add_column("Status", justify="center")

    all_good = True

    for package, role, required in dependencies:
        try:
            __import__(package)
            status = "[green]✅ Installed[/green]"
        except ImportError:
            status = "[red]❌ Missing[/red]" if required else "[yellow]⚠️ Missing[/yellow]"
            all_good = all_good and not required

        table.add_row(package, role, status)

    for key in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
        status = "[green]✅ Set[/green]" if os.environ.get(key) else "[dim]Not set[/dim]"
        table.add_row(key, "AI credentials", status)

    console.print(table)
    console.print()

    if all_good:
        console.print("[bold green]✅ Core dependencies installed! Remedy is ready.[/bold green]")
    else:
        console.print("[red]❌ Core dependencies are missing.[/red]")
        console.print("[dim]Install with: pip install remedy[/dim]")
        sys.exit(1)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
