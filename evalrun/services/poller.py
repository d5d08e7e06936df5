"""Wait for an eval run to reach a terminal status."""

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

from evalrun.core.exceptions import PollTimeoutError, RunCanceledError, RunFailedError
from evalrun.schemas.evals import Run
from evalrun.services.client import EvalsClient

logger = structlog.get_logger()

RunCallback = Callable[[Run], Awaitable[None] | None]


def _snapshot(run: Run) -> tuple:
    counts = run.result_counts
    return (run.status, counts.total, counts.passed, counts.failed, counts.errored)


def check_run_outcome(run: Run) -> Run:
    """Raise for a failed or canceled run; return it unchanged otherwise."""
    if run.status == "failed":
        error = run.error
        raise RunFailedError(
            run.id,
            error_code=error.code if error else None,
            error_message=error.message if error else None,
        )
    if run.status == "canceled":
        raise RunCanceledError(run.id)
    return run


async def wait_for_run(
    client: EvalsClient,
    eval_id: str,
    run_id: str,
    *,
    interval: float = 5.0,
    timeout: float | None = 3600.0,
    on_update: RunCallback | None = None,
    raise_on_failure: bool = True,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Run:
    """Poll ``get_run`` every ``interval`` seconds until the run is terminal.

    ``on_update`` is called (and awaited, if it returns an awaitable) on the
    first observation and whenever status or result counts change. The last
    sleep is shortened so the final check lands on the deadline. A
    ``timeout`` of ``None`` waits indefinitely.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    deadline = clock() + timeout if timeout is not None else None
    last: tuple | None = None

    while True:
        run = await client.get_run(eval_id, run_id)

        current = _snapshot(run)
        if current != last:
            last = current
            logger.info(
                "run_status",
                eval_id=eval_id,
                run_id=run_id,
                status=run.status,
                total=run.result_counts.total,
                passed=run.result_counts.passed,
                failed=run.result_counts.failed,
            )
            if on_update is not None:
                result = on_update(run)
                if asyncio.iscoroutine(result):
                    await result

        if run.is_terminal:
            break

        delay = interval
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise PollTimeoutError(run_id, timeout, last_status=run.status)
            delay = min(interval, remaining)

        await sleep(delay)

    if run.status == "failed":
        logger.warning(
            "run_failed",
            eval_id=eval_id,
            run_id=run_id,
            error=run.error.message if run.error else None,
        )
    if raise_on_failure:
        check_run_outcome(run)
    return run
