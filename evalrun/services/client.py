from pathlib import Path

import httpx
import structlog

from evalrun.core.exceptions import BackendUnavailableError, raise_for_response
from evalrun.schemas.evals import (
    Eval,
    EvalCreate,
    EvalList,
    FileObject,
    RecordPage,
    Run,
    RunCreate,
    RunList,
    RunRecord,
)

logger = structlog.get_logger()


class EvalsClient:
    """Thin async client for a hosted, OpenAI-compatible evals API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        api_prefix: str = "/v1",
        http_client: httpx.AsyncClient | None = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
        page_size: int = 100,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.page_size = page_size
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=connect_timeout, read=read_timeout, write=30.0, pool=5.0)
        )

    @classmethod
    def from_settings(cls, settings) -> "EvalsClient":
        return cls(
            base_url=settings.evals_base_url,
            api_key=settings.evals_api_key,
            api_prefix=settings.evals_api_prefix,
            connect_timeout=settings.evals_http_connect_timeout,
            read_timeout=settings.evals_http_read_timeout,
            page_size=settings.evals_page_size,
        )

    async def __aenter__(self) -> "EvalsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}{path}"

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = self._url(path)
        logger.debug("evals_api_request", method=method, url=url)
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.ConnectError as e:
            raise BackendUnavailableError(f"Cannot connect to evals API at {self.base_url}: {e}")
        except httpx.TimeoutException:
            raise BackendUnavailableError(f"Evals API request timed out: {method} {path}")

        raise_for_response(response)
        if not response.content:
            return {}
        return response.json()

    # ── Eval definitions ─────────────────────────────────────────────────────

    async def create(self, definition: EvalCreate) -> Eval:
        """Register an eval definition."""
        data = await self._request("POST", "/evals", json=definition.model_dump(exclude_none=True))
        created = Eval.model_validate(data)
        logger.info("eval_created", eval_id=created.id, name=created.name)
        return created

    async def get_eval(self, eval_id: str) -> Eval:
        data = await self._request("GET", f"/evals/{eval_id}")
        return Eval.model_validate(data)

    async def list_evals(self, limit: int = 20) -> list[Eval]:
        data = await self._request("GET", "/evals", params={"limit": limit})
        return EvalList.model_validate(data).data

    async def delete_eval(self, eval_id: str) -> None:
        await self._request("DELETE", f"/evals/{eval_id}")
        logger.info("eval_deleted", eval_id=eval_id)

    # ── Files ────────────────────────────────────────────────────────────────

    async def upload_file(self, path: str | Path, purpose: str = "evals") -> FileObject:
        """Upload a JSONL test data file."""
        path = Path(path)
        content = path.read_bytes()
        data = await self._request(
            "POST",
            "/files",
            data={"purpose": purpose},
            files={"file": (path.name, content, "application/jsonl")},
        )
        uploaded = FileObject.model_validate(data)
        logger.info("file_uploaded", file_id=uploaded.id, filename=uploaded.filename, bytes=uploaded.bytes)
        return uploaded

    # ── Runs ─────────────────────────────────────────────────────────────────

    async def create_run(self, eval_id: str, run: RunCreate) -> Run:
        """Start a run of the eval against the run's data source."""
        data = await self._request(
            "POST",
            f"/evals/{eval_id}/runs",
            json=run.model_dump(exclude_none=True),
        )
        created = Run.model_validate(data)
        logger.info(
            "run_created",
            eval_id=eval_id,
            run_id=created.id,
            model=run.data_source.model,
            status=created.status,
        )
        return created

    async def get_run(self, eval_id: str, run_id: str) -> Run:
        data = await self._request("GET", f"/evals/{eval_id}/runs/{run_id}")
        return Run.model_validate(data)

    async def list_runs(self, eval_id: str, limit: int = 20) -> list[Run]:
        data = await self._request("GET", f"/evals/{eval_id}/runs", params={"limit": limit})
        return RunList.model_validate(data).data

    async def cancel_run(self, eval_id: str, run_id: str) -> Run:
        data = await self._request("POST", f"/evals/{eval_id}/runs/{run_id}")
        run = Run.model_validate(data)
        logger.info("run_cancel_requested", eval_id=eval_id, run_id=run_id, status=run.status)
        return run

    async def get_run_records(
        self,
        eval_id: str,
        run_id: str,
        status: str | None = None,
    ) -> list[RunRecord]:
        """Fetch every output item for a run, following pagination.

        ``status`` is passed through to the API (``"pass"`` or ``"fail"``).
        """
        records: list[RunRecord] = []
        after: str | None = None

        while True:
            params: dict = {"limit": self.page_size}
            if status:
                params["status"] = status
            if after:
                params["after"] = after

            data = await self._request(
                "GET",
                f"/evals/{eval_id}/runs/{run_id}/output_items",
                params=params,
            )
            page = RecordPage.model_validate(data)
            records.extend(page.data)

            if not page.has_more or not page.data:
                break
            after = page.last_id or page.data[-1].id

        logger.debug("run_records_fetched", eval_id=eval_id, run_id=run_id, count=len(records))
        return records

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
