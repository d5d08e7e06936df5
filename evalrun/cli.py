import asyncio
import json
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path

import click
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from evalrun.config import settings
from evalrun.core.database import create_engine, create_session_factory, init_db
from evalrun.core.exceptions import EvalRunError, NotFoundError, RunFailedError
from evalrun.core.logging import configure_logging
from evalrun.schemas.evals import ClassificationReport, Run, RunRecord
from evalrun.services.client import EvalsClient
from evalrun.services.definitions import DEFAULT_CRITERION, build_completions_run, build_label_eval
from evalrun.services.inspection import build_report, failed_records
from evalrun.services.items import items_from_csv, validate_items, write_items
from evalrun.services.ledger import LedgerService
from evalrun.services.poller import wait_for_run
from evalrun.services.workflow import run_label_eval

console = Console()
cli_app = typer.Typer(name="evalrun", help="Grade a fine-tuned model's labels with a hosted evals API")


class Operation(str, Enum):
    eq = "eq"
    ne = "ne"
    like = "like"
    ilike = "ilike"


def _run_async(coro):
    """Run async code from sync CLI context; evalrun errors become exit code 1."""
    try:
        return asyncio.run(coro)
    except RunFailedError as e:
        console.print(f"[bold red]Run failed:[/bold red] {escape(e.error_message or 'no error message')}")
        if e.error_code:
            console.print(f"  [dim]code: {e.error_code}[/dim]")
        raise typer.Exit(code=1)
    except EvalRunError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(e.message)}")
        for line in e.details.get("errors", []):
            console.print(f"  {escape(line)}")
        raise typer.Exit(code=1)


def _make_client() -> EvalsClient:
    return EvalsClient.from_settings(settings)


@asynccontextmanager
async def _open_ledger():
    """Ledger on EVALS_DB_URL; the engine is disposed before the event loop closes."""
    engine = create_engine(settings.evals_db_url)
    try:
        await init_db(engine)
        yield LedgerService(create_session_factory(engine))
    finally:
        await engine.dispose()


async def _sync_ledger(ledger: LedgerService, run: Run) -> None:
    """Refresh a run this tool started. Runs started elsewhere are left out of the ledger."""
    try:
        await ledger.update_run(run)
    except NotFoundError:
        pass


def _status_style(status: str) -> str:
    return {
        "completed": "green",
        "failed": "red",
        "canceled": "yellow",
        "in_progress": "cyan",
    }.get(status, "white")


def _print_run(run: Run) -> None:
    counts = run.result_counts
    console.print(f"  Run:    {run.id}")
    console.print(f"  Eval:   {run.eval_id}")
    console.print(f"  Status: [{_status_style(run.status)}]{run.status}[/{_status_style(run.status)}]")
    console.print(
        f"  Counts: total={counts.total} passed={counts.passed} "
        f"failed={counts.failed} errored={counts.errored}"
    )
    for criterion in run.per_testing_criteria_results:
        console.print(f"    {criterion.testing_criteria}: {criterion.passed} passed, {criterion.failed} failed")
    if run.report_url:
        console.print(f"  Report: {run.report_url}")
    if run.status == "failed" and run.error:
        console.print(f"  [red]Error: {escape(run.error.message or '')}[/red]")


def _print_failures(records: list[RunRecord], limit: int) -> None:
    if not records:
        console.print("[green]No failing records.[/green]")
        return

    table = Table(title=f"Failing records ({len(records)})")
    table.add_column("Record", style="cyan")
    table.add_column("Input")
    table.add_column("Expected", style="green")
    table.add_column("Got", style="red")

    for record in records[:limit]:
        item = record.datasource_item
        table.add_row(
            record.id,
            escape(str(item.get("input", ""))[:80]),
            escape(str(item.get("label", ""))),
            escape(record.output_text or "—"),
        )
    console.print(table)
    if len(records) > limit:
        console.print(f"[dim]... {len(records) - limit} more[/dim]")


def _print_report(report: ClassificationReport, limit: int) -> None:
    console.print(f"\n[bold]Run {report.run_id}[/bold] ({report.status})")
    console.print(
        f"  {report.check_name}: {report.passed}/{report.total} passed  "
        f"accuracy={report.accuracy:.2%} (95% CI {report.ci_lower:.2%}–{report.ci_upper:.2%})  "
        f"macro-F1={report.macro_f1:.3f}"
    )
    if report.report_url:
        console.print(f"  [dim]{report.report_url}[/dim]")

    if report.labels:
        table = Table(title="Per-label metrics")
        table.add_column("Label", style="cyan")
        table.add_column("Precision", justify="right")
        table.add_column("Recall", justify="right")
        table.add_column("F1", justify="right")
        table.add_column("Support", justify="right")
        for m in report.labels:
            table.add_row(escape(m.label), f"{m.precision:.3f}", f"{m.recall:.3f}", f"{m.f1:.3f}", str(m.support))
        console.print(table)

    if report.confusion:
        predicted = sorted({p for row in report.confusion.values() for p in row})
        table = Table(title="Confusion (rows = expected, columns = predicted)")
        table.add_column("", style="cyan")
        for label in predicted:
            table.add_column(escape(label), justify="right")
        for expected, row in report.confusion.items():
            table.add_row(escape(expected), *[str(row.get(p, 0)) for p in predicted])
        console.print(table)

    if report.failures:
        table = Table(title=f"Misclassified ({len(report.failures)})")
        table.add_column("Record", style="cyan")
        table.add_column("Input")
        table.add_column("Expected", style="green")
        table.add_column("Got", style="red")
        for f in report.failures[:limit]:
            table.add_row(f.record_id, escape((f.input or "")[:80]), escape(f.expected or "—"), escape(f.predicted or "—"))
        console.print(table)


@cli_app.callback()
def _configure(
    log_level: str = typer.Option(settings.evals_log_level, "--log-level", help="debug, info, warning, error"),
    log_format: str = typer.Option(settings.evals_log_format, "--log-format", help="'console' or 'json'"),
):
    configure_logging(log_level, log_format)


# ── Test data ─────────────────────────────────────────────────────────────────


@cli_app.command("validate")
def validate(path: Path = typer.Argument(help="JSONL test data file")):
    """Check a JSONL test data file before uploading it."""
    result = validate_items(path)

    for error in result.errors:
        console.print(f"[red]✗ {escape(error)}[/red]")
    for warning in result.warnings:
        console.print(f"[yellow]! {escape(warning)}[/yellow]")

    console.print(f"  Items:  {result.record_count}")
    console.print(f"  Labels: {', '.join(result.labels) if result.labels else '—'}")

    if not result.valid:
        raise typer.Exit(code=1)
    console.print("[bold green]Test data is valid.[/bold green]")


@cli_app.command("convert-csv")
def convert_csv(
    source: Path = typer.Argument(help="CSV file with a header row"),
    output: Path = typer.Argument(help="Destination JSONL file"),
    input_column: str = typer.Option("input", "--input-column", help="Column holding the prompt"),
    label_column: str = typer.Option("label", "--label-column", help="Column holding the reference label"),
):
    """Convert a labeled CSV into evals-ready JSONL."""
    try:
        items = items_from_csv(source, input_column=input_column, label_column=label_column)
    except EvalRunError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(e.message)}")
        for line in e.details.get("errors", []):
            console.print(f"  {escape(line)}")
        raise typer.Exit(code=1)

    write_items(items, output)
    console.print(f"[green]Wrote {len(items)} items to {output}[/green]")


# ── Eval definitions & files ──────────────────────────────────────────────────


@cli_app.command("create-eval")
def create_eval(
    name: str = typer.Argument(help="Eval name"),
    criterion: str = typer.Option(DEFAULT_CRITERION, "--criterion", help="Name of the label check"),
    operation: Operation = typer.Option(Operation.eq, "--operation", help="String check comparison"),
):
    """Register a label-matching eval definition."""
    async def _create():
        async with _make_client() as client:
            return await client.create(build_label_eval(name, criterion_name=criterion, operation=operation.value))

    created = _run_async(_create())
    console.print(f"[bold green]Eval created:[/bold green] {created.id}")
    console.print(f"  Name:     {created.name}")
    console.print(f"  Criteria: {', '.join(created.criterion_names) or '—'}")


@cli_app.command("upload")
def upload(path: Path = typer.Argument(help="JSONL test data file")):
    """Upload a test data file for use in eval runs."""
    result = validate_items(path)
    if not result.valid:
        for error in result.errors:
            console.print(f"[red]✗ {escape(error)}[/red]")
        raise typer.Exit(code=1)

    async def _upload():
        async with _make_client() as client:
            return await client.upload_file(path)

    uploaded = _run_async(_upload())
    console.print(f"[bold green]File uploaded:[/bold green] {uploaded.id} ({result.record_count} items)")


# ── Runs ──────────────────────────────────────────────────────────────────────


@cli_app.command("start-run")
def start_run(
    eval_id: str = typer.Argument(help="Eval ID"),
    file_id: str = typer.Argument(help="Uploaded test data file ID"),
    model: str = typer.Option(..., "--model", help="Model (e.g. a fine-tuned model ID) to evaluate"),
    name: str = typer.Option(None, "--name", help="Run name"),
    system_prompt: str = typer.Option(None, "--system-prompt", help="Instruction sent before each input"),
    temperature: float = typer.Option(0.0, "--temperature"),
):
    """Start an eval run without waiting for it."""
    async def _start():
        async with _make_client() as client:
            payload = build_completions_run(
                name or model,
                model=model,
                file_id=file_id,
                system_prompt=system_prompt,
                temperature=temperature,
            )
            run = await client.create_run(eval_id, payload)
        async with _open_ledger() as ledger:
            await ledger.record_run(run, model=model, file_id=file_id)
        return run

    run = _run_async(_start())
    console.print("[bold green]Run started.[/bold green]")
    _print_run(run)


@cli_app.command("status")
def status(
    eval_id: str = typer.Argument(help="Eval ID"),
    run_id: str = typer.Argument(help="Run ID"),
):
    """Show a run's current status and result counts."""
    async def _status():
        async with _make_client() as client:
            run = await client.get_run(eval_id, run_id)
        async with _open_ledger() as ledger:
            await _sync_ledger(ledger, run)
        return run

    run = _run_async(_status())
    _print_run(run)
    if run.status == "failed":
        raise typer.Exit(code=1)


@cli_app.command("wait")
def wait(
    eval_id: str = typer.Argument(help="Eval ID"),
    run_id: str = typer.Argument(help="Run ID"),
    interval: float = typer.Option(
        settings.evals_poll_interval, "--interval", click_type=click.FloatRange(min=0, min_open=True), help="Seconds between checks"
    ),
    timeout: float = typer.Option(
        settings.evals_poll_timeout, "--timeout", click_type=click.FloatRange(min=0, min_open=True), help="Give up after this many seconds"
    ),
):
    """Poll a run until it completes, fails or is canceled."""
    async def _wait():
        async with _open_ledger() as ledger, _make_client() as client:

            async def _show(run: Run) -> None:
                await _sync_ledger(ledger, run)
                counts = run.result_counts
                console.print(
                    f"[{_status_style(run.status)}]{run.status}[/{_status_style(run.status)}] "
                    f"{counts.passed + counts.failed + counts.errored}/{counts.total or '?'} graded"
                )

            return await wait_for_run(client, eval_id, run_id, interval=interval, timeout=timeout, on_update=_show)

    run = _run_async(_wait())
    _print_run(run)


@cli_app.command("cancel")
def cancel(
    eval_id: str = typer.Argument(help="Eval ID"),
    run_id: str = typer.Argument(help="Run ID"),
):
    """Cancel a queued or in-progress run."""
    async def _cancel():
        async with _make_client() as client:
            run = await client.cancel_run(eval_id, run_id)
        async with _open_ledger() as ledger:
            await _sync_ledger(ledger, run)
        return run

    run = _run_async(_cancel())
    console.print(f"[yellow]Run {run.id} is now {run.status}.[/yellow]")


@cli_app.command("failures")
def failures(
    eval_id: str = typer.Argument(help="Eval ID"),
    run_id: str = typer.Argument(help="Run ID"),
    check: str = typer.Option(DEFAULT_CRITERION, "--check", help="Testing criterion to filter on"),
    limit: int = typer.Option(20, "--limit", help="Maximum rows to show"),
):
    """List records where the named check did not pass."""
    async def _failures():
        async with _make_client() as client:
            records = await client.get_run_records(eval_id, run_id)
        return failed_records(records, check)

    _print_failures(_run_async(_failures()), limit)


@cli_app.command("report")
def report(
    eval_id: str = typer.Argument(help="Eval ID"),
    run_id: str = typer.Argument(help="Run ID"),
    check: str = typer.Option(DEFAULT_CRITERION, "--check", help="Testing criterion to score on"),
    limit: int = typer.Option(20, "--limit", help="Maximum misclassified rows to show"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """Accuracy, per-label metrics and confusion matrix for a finished run."""
    async def _report():
        async with _make_client() as client:
            run = await client.get_run(eval_id, run_id)
            records = await client.get_run_records(eval_id, run_id)
        return build_report(run, records, check)

    result = _run_async(_report())
    if as_json:
        typer.echo(json.dumps(result.model_dump(), indent=2))
        return
    _print_report(result, limit)


@cli_app.command("run")
def run(
    path: Path = typer.Argument(help="JSONL test data file"),
    model: str = typer.Option(..., "--model", help="Model (e.g. a fine-tuned model ID) to evaluate"),
    eval_name: str = typer.Option(None, "--eval-name", help="Name for a new eval definition"),
    eval_id: str = typer.Option(None, "--eval-id", help="Reuse an existing eval definition"),
    check: str = typer.Option(DEFAULT_CRITERION, "--check", help="Name of the label check"),
    system_prompt: str = typer.Option(None, "--system-prompt", help="Instruction sent before each input"),
    interval: float = typer.Option(
        settings.evals_poll_interval, "--interval", click_type=click.FloatRange(min=0, min_open=True), help="Seconds between checks"
    ),
    timeout: float = typer.Option(
        settings.evals_poll_timeout, "--timeout", click_type=click.FloatRange(min=0, min_open=True), help="Give up after this many seconds"
    ),
    limit: int = typer.Option(20, "--limit", help="Maximum misclassified rows to show"),
):
    """Define, upload, run, wait and report in one go."""
    def _show(current: Run) -> None:
        console.print(f"[{_status_style(current.status)}]{current.status}[/{_status_style(current.status)}]")

    async def _workflow():
        async with _open_ledger() as ledger, _make_client() as client:
            return await run_label_eval(
                client,
                items_path=path,
                model=model,
                eval_name=eval_name or path.stem,
                eval_id=eval_id,
                check_name=check,
                system_prompt=system_prompt,
                ledger=ledger,
                interval=interval,
                timeout=timeout,
                on_update=_show,
            )

    result = _run_async(_workflow())
    console.print(f"[bold green]Run completed:[/bold green] eval={result.definition.id} run={result.run.id}")
    _print_report(result.report, limit)


# ── Ledger ────────────────────────────────────────────────────────────────────


@cli_app.command("history")
def history(
    eval_id: str = typer.Option(None, "--eval-id", help="Only runs of this eval"),
    status: str = typer.Option(None, "--status", help="Only runs with this status"),
):
    """List runs recorded by this tool."""
    async def _list():
        async with _open_ledger() as ledger:
            return await ledger.list_runs(eval_id=eval_id, status=status)

    result = _run_async(_list())

    if not result.runs:
        console.print("[dim]No runs recorded.[/dim]")
        return

    table = Table(title="Eval Runs")
    table.add_column("Run", style="cyan")
    table.add_column("Eval")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Passed", justify="right")
    table.add_column("Created")

    for entry in result.runs:
        table.add_row(
            entry.id,
            entry.eval_name or entry.eval_id,
            entry.model or "—",
            entry.status,
            f"{entry.passed}/{entry.total}",
            entry.created_at[:16],
        )
    console.print(table)


@cli_app.command("compare")
def compare(run_ids: list[str] = typer.Argument(help="Two or more completed run IDs")):
    """Compare pass rates of completed runs of the same eval."""
    async def _compare():
        async with _open_ledger() as ledger:
            return await ledger.compare_runs(run_ids)

    result = _run_async(_compare())

    table = Table(title=f"Eval {result.eval_id}")
    table.add_column("Run", style="cyan")
    table.add_column("Passed", justify="right")
    table.add_column("Pass rate", justify="right", style="green")
    for entry in result.runs:
        table.add_row(entry.label, f"{entry.passed}/{entry.total}", f"{entry.pass_rate:.2%}")
    console.print(table)


def main():
    cli_app()


if __name__ == "__main__":
    main()
