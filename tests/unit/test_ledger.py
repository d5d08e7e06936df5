"""Unit tests for the local run ledger."""

import pytest

from evalrun.core.database import create_engine, create_session_factory, init_db
from evalrun.core.exceptions import EvalRunError, NotFoundError
from evalrun.schemas.evals import Run
from evalrun.services.ledger import LedgerService


def _run(run_id="evalrun_1", eval_id="eval_1", status="queued", passed=0, failed=0, **extra) -> Run:
    return Run.model_validate({
        "id": run_id,
        "eval_id": eval_id,
        "name": extra.pop("name", "baseline"),
        "status": status,
        "model": extra.pop("model", "ft:sentiment-v1"),
        "result_counts": {"total": passed + failed, "passed": passed, "failed": failed},
        **extra,
    })


async def test_record_run(ledger: LedgerService):
    entry = await ledger.record_run(_run(), eval_name="sentiment", file_id="file-1")
    assert entry.id == "evalrun_1"
    assert entry.status == "queued"
    assert entry.eval_name == "sentiment"
    assert entry.file_id == "file-1"
    assert entry.created_at.endswith("Z")
    assert entry.completed_at is None


async def test_record_run_is_upsert(ledger: LedgerService):
    await ledger.record_run(_run(), eval_name="sentiment")
    entry = await ledger.record_run(_run(status="in_progress"))
    assert entry.status == "in_progress"
    assert entry.eval_name == "sentiment"

    listed = await ledger.list_runs()
    assert listed.total == 1


async def test_update_run_to_completed(ledger: LedgerService):
    await ledger.record_run(_run())
    entry = await ledger.update_run(
        _run(status="completed", passed=4, failed=1, report_url="https://evals.example.test/r")
    )
    assert entry.status == "completed"
    assert entry.passed == 4
    assert entry.total == 5
    assert entry.report_url == "https://evals.example.test/r"
    assert entry.completed_at is not None


async def test_update_run_keeps_failure_message(ledger: LedgerService):
    await ledger.record_run(_run())
    entry = await ledger.update_run(
        _run(status="failed", error={"code": "model_not_found", "message": "no such model"})
    )
    assert entry.status == "failed"
    assert entry.error == "no such model"


async def test_update_unknown_run(ledger: LedgerService):
    with pytest.raises(NotFoundError):
        await ledger.update_run(_run(run_id="evalrun_missing"))


async def test_get_and_delete(ledger: LedgerService):
    await ledger.record_run(_run())
    assert (await ledger.get_run("evalrun_1")).id == "evalrun_1"

    await ledger.delete_run("evalrun_1")
    with pytest.raises(NotFoundError):
        await ledger.get_run("evalrun_1")
    with pytest.raises(NotFoundError):
        await ledger.delete_run("evalrun_1")


async def test_list_filters(ledger: LedgerService):
    await ledger.record_run(_run(run_id="a", eval_id="eval_1", status="completed"))
    await ledger.record_run(_run(run_id="b", eval_id="eval_1", status="failed"))
    await ledger.record_run(_run(run_id="c", eval_id="eval_2", status="completed"))

    assert (await ledger.list_runs()).total == 3
    assert {r.id for r in (await ledger.list_runs(eval_id="eval_1")).runs} == {"a", "b"}
    assert {r.id for r in (await ledger.list_runs(status="completed")).runs} == {"a", "c"}
    assert [r.id for r in (await ledger.list_runs(eval_id="eval_2", status="failed")).runs] == []


class TestCompareRuns:
    async def test_compare(self, ledger: LedgerService):
        await ledger.record_run(_run(run_id="a", status="completed", passed=3, failed=2, name="v1", model="ft:v1"))
        await ledger.record_run(_run(run_id="b", status="completed", passed=4, failed=1, name="v2", model="ft:v2"))

        comparison = await ledger.compare_runs(["b", "a"])
        assert comparison.eval_id == "eval_1"
        assert [e.run_id for e in comparison.runs] == ["b", "a"]
        assert comparison.runs[0].pass_rate == 0.8
        assert comparison.runs[1].pass_rate == 0.6
        assert comparison.runs[0].label == "v2 (ft:v2)"

    async def test_needs_two(self, ledger: LedgerService):
        with pytest.raises(EvalRunError) as exc_info:
            await ledger.compare_runs(["a"])
        assert exc_info.value.code == "invalid_request"

    async def test_missing(self, ledger: LedgerService):
        await ledger.record_run(_run(run_id="a", status="completed"))
        with pytest.raises(NotFoundError):
            await ledger.compare_runs(["a", "zzz"])

    async def test_not_completed(self, ledger: LedgerService):
        await ledger.record_run(_run(run_id="a", status="completed"))
        await ledger.record_run(_run(run_id="b", status="in_progress"))
        with pytest.raises(EvalRunError, match="Not completed: b"):
            await ledger.compare_runs(["a", "b"])

    async def test_different_evals(self, ledger: LedgerService):
        await ledger.record_run(_run(run_id="a", eval_id="eval_1", status="completed"))
        await ledger.record_run(_run(run_id="b", eval_id="eval_2", status="completed"))
        with pytest.raises(EvalRunError, match="same eval"):
            await ledger.compare_runs(["a", "b"])


async def test_init_db_creates_sqlite_directory(tmp_path):
    db_path = tmp_path / "nested" / "runs.db"
    engine = create_engine(f"sqlite+aiosqlite:///{db_path}")
    try:
        await init_db(engine)
        ledger = LedgerService(create_session_factory(engine))
        await ledger.record_run(_run())
        assert (await ledger.list_runs()).total == 1
    finally:
        await engine.dispose()
    assert db_path.exists()


def test_async_engine_has_greenlet():
    import greenlet

    assert greenlet.__version__
