"""End-to-end label eval: define → upload → run → wait → inspect."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from evalrun.core.exceptions import InvalidTestItemError
from evalrun.schemas.evals import ClassificationReport, Eval, FileObject, ItemValidation, Run
from evalrun.services.client import EvalsClient
from evalrun.services.definitions import DEFAULT_CRITERION, build_completions_run, build_label_eval
from evalrun.services.inspection import build_report
from evalrun.services.items import validate_items
from evalrun.services.ledger import LedgerService
from evalrun.services.poller import RunCallback, check_run_outcome, wait_for_run

logger = structlog.get_logger()


@dataclass
class WorkflowResult:
    definition: Eval
    file: FileObject
    run: Run
    validation: ItemValidation
    report: ClassificationReport | None = None
    warnings: list[str] = field(default_factory=list)


async def run_label_eval(
    client: EvalsClient,
    *,
    items_path: str | Path,
    model: str,
    eval_name: str,
    eval_id: str | None = None,
    run_name: str | None = None,
    check_name: str = DEFAULT_CRITERION,
    system_prompt: str | None = None,
    temperature: float | None = 0.0,
    ledger: LedgerService | None = None,
    interval: float = 5.0,
    timeout: float | None = 3600.0,
    on_update: RunCallback | None = None,
) -> WorkflowResult:
    """Grade ``model`` on a labeled JSONL file and return the run report.

    When ``eval_id`` is given the existing definition is reused, which is how
    successive fine-tunes are compared against the same eval.
    """
    validation = validate_items(items_path)
    if not validation.valid:
        raise InvalidTestItemError(f"Test data file {items_path} is invalid.", errors=validation.errors)
    for warning in validation.warnings:
        logger.warning("items_warning", path=str(items_path), warning=warning)

    if eval_id:
        definition = await client.get_eval(eval_id)
    else:
        definition = await client.create(build_label_eval(eval_name, criterion_name=check_name))

    uploaded = await client.upload_file(items_path)

    run_payload = build_completions_run(
        run_name or f"{model} on {Path(items_path).name}",
        model=model,
        file_id=uploaded.id,
        system_prompt=system_prompt,
        temperature=temperature,
    )
    run = await client.create_run(definition.id, run_payload)

    if ledger is not None:
        await ledger.record_run(run, eval_name=definition.name, model=model, file_id=uploaded.id)

    async def _on_update(current: Run) -> None:
        if ledger is not None:
            await ledger.update_run(current)
        if on_update is not None:
            result = on_update(current)
            if asyncio.iscoroutine(result):
                await result

    # Ledger sees the terminal status before a failure is raised
    run = await wait_for_run(
        client,
        definition.id,
        run.id,
        interval=interval,
        timeout=timeout,
        on_update=_on_update,
        raise_on_failure=False,
    )
    check_run_outcome(run)

    records = await client.get_run_records(definition.id, run.id)
    report = build_report(run, records, check_name)
    logger.info(
        "label_eval_completed",
        eval_id=definition.id,
        run_id=run.id,
        accuracy=report.accuracy,
        failed=report.failed,
    )

    return WorkflowResult(
        definition=definition,
        file=uploaded,
        run=run,
        validation=validation,
        report=report,
        warnings=validation.warnings,
    )
