"""Local run ledger: eval runs recorded in SQLite for history and comparison."""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from evalrun.core.database import EvalRunRecord
from evalrun.core.exceptions import EvalRunError, NotFoundError
from evalrun.schemas.evals import (
    LedgerEntry,
    LedgerList,
    Run,
    RunComparison,
    RunComparisonEntry,
)


def _row_to_entry(row: EvalRunRecord) -> LedgerEntry:
    """Convert an EvalRunRecord ORM row to a LedgerEntry schema."""
    return LedgerEntry(
        id=row.id,
        eval_id=row.eval_id,
        eval_name=row.eval_name,
        name=row.name,
        model=row.model,
        status=row.status,
        file_id=row.file_id,
        total=row.total,
        passed=row.passed,
        failed=row.failed,
        errored=row.errored,
        report_url=row.report_url,
        error=row.error,
        created_at=row.created_at.isoformat() + "Z" if row.created_at else "",
        completed_at=row.completed_at.isoformat() + "Z" if row.completed_at else None,
    )


def _apply_run(row: EvalRunRecord, run: Run) -> None:
    row.status = run.status
    row.total = run.result_counts.total
    row.passed = run.result_counts.passed
    row.failed = run.result_counts.failed
    row.errored = run.result_counts.errored
    row.report_url = run.report_url
    if run.model:
        row.model = run.model
    if run.error and run.error.message:
        row.error = run.error.message[:2000]
    if run.is_terminal and row.completed_at is None:
        row.completed_at = datetime.now(timezone.utc)


class LedgerService:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def record_run(
        self,
        run: Run,
        *,
        eval_name: str | None = None,
        model: str | None = None,
        file_id: str | None = None,
    ) -> LedgerEntry:
        """Insert a newly created run, or refresh it if already recorded."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(EvalRunRecord).where(EvalRunRecord.id == run.id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = EvalRunRecord(
                    id=run.id,
                    eval_id=run.eval_id,
                    eval_name=eval_name,
                    name=run.name,
                    model=model or run.model,
                    file_id=file_id,
                )
                session.add(row)
            _apply_run(row, run)
            await session.commit()
            await session.refresh(row)
            return _row_to_entry(row)

    async def update_run(self, run: Run) -> LedgerEntry:
        """Sync status and counts from the latest API view of the run."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(EvalRunRecord).where(EvalRunRecord.id == run.id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Run '{run.id}' is not in the ledger.")
            _apply_run(row, run)
            await session.commit()
            await session.refresh(row)
            return _row_to_entry(row)

    async def get_run(self, run_id: str) -> LedgerEntry:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EvalRunRecord).where(EvalRunRecord.id == run_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Run '{run_id}' is not in the ledger.")
            return _row_to_entry(row)

    async def list_runs(
        self,
        eval_id: str | None = None,
        status: str | None = None,
    ) -> LedgerList:
        """List recorded runs with optional filters, newest first."""
        async with self._session_factory() as session:
            stmt = select(EvalRunRecord).order_by(
                EvalRunRecord.created_at.desc(), EvalRunRecord.id.desc()
            )
            if eval_id:
                stmt = stmt.where(EvalRunRecord.eval_id == eval_id)
            if status:
                stmt = stmt.where(EvalRunRecord.status == status)
            result = await session.execute(stmt)
            rows = list(result.scalars().all())
            return LedgerList(
                runs=[_row_to_entry(r) for r in rows],
                total=len(rows),
            )

    async def delete_run(self, run_id: str) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EvalRunRecord).where(EvalRunRecord.id == run_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Run '{run_id}' is not in the ledger.")
            await session.delete(row)
            await session.commit()

    async def compare_runs(self, run_ids: list[str]) -> RunComparison:
        """Compare 2+ completed runs of the same eval by pass rate."""
        if len(run_ids) < 2:
            raise EvalRunError(
                code="invalid_request",
                message="At least 2 run IDs are required for comparison.",
                status=400,
            )

        async with self._session_factory() as session:
            result = await session.execute(
                select(EvalRunRecord).where(EvalRunRecord.id.in_(run_ids))
            )
            rows = {r.id: r for r in result.scalars().all()}

        missing = [rid for rid in run_ids if rid not in rows]
        if missing:
            raise NotFoundError(f"Runs not in the ledger: {', '.join(missing)}")

        ordered = [rows[rid] for rid in run_ids]

        non_completed = [r.id for r in ordered if r.status != "completed"]
        if non_completed:
            raise EvalRunError(
                code="invalid_request",
                message=f"All runs must be completed. Not completed: {', '.join(non_completed)}",
                status=400,
            )

        evals = {r.eval_id for r in ordered}
        if len(evals) > 1:
            raise EvalRunError(
                code="invalid_request",
                message=f"All runs must belong to the same eval. Found: {', '.join(sorted(evals))}",
                status=400,
            )

        entries = []
        for row in ordered:
            graded = row.passed + row.failed
            label = row.name or row.id
            if row.model:
                label = f"{label} ({row.model})"
            entries.append(RunComparisonEntry(
                run_id=row.id,
                model=row.model,
                label=label,
                total=row.total,
                passed=row.passed,
                pass_rate=round(row.passed / graded, 4) if graded else 0.0,
            ))

        return RunComparison(eval_id=ordered[0].eval_id, runs=entries)
