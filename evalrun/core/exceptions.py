import httpx


class EvalRunError(Exception):
    """Base exception for evalrun errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status: int = 500,
        details: dict | None = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        result = {
            "error": {
                "code": self.code,
                "message": self.message,
                "status": self.status,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


class AuthenticationError(EvalRunError):
    def __init__(self, message: str = "Invalid or missing API key.", details: dict | None = None):
        super().__init__(code="authentication_required", message=message, status=401, details=details)


class NotFoundError(EvalRunError):
    def __init__(self, message: str = "Resource not found.", details: dict | None = None):
        super().__init__(code="not_found", message=message, status=404, details=details)


class ApiError(EvalRunError):
    def __init__(self, message: str, status: int = 500, details: dict | None = None):
        super().__init__(code="api_error", message=message, status=status, details=details)


class BackendUnavailableError(EvalRunError):
    def __init__(self, message: str = "Evals API is unavailable.", details: dict | None = None):
        super().__init__(
            code="backend_unavailable",
            message=message,
            status=503,
            details=details or {"suggestion": "Check EVALS_BASE_URL and network access, then try again."},
        )


class InvalidTestItemError(EvalRunError):
    def __init__(self, message: str = "Test data file is invalid.", errors: list[str] | None = None):
        super().__init__(
            code="invalid_test_item",
            message=message,
            status=400,
            details={"errors": errors} if errors else None,
        )


class RunFailedError(EvalRunError):
    def __init__(self, run_id: str, error_code: str | None = None, error_message: str | None = None):
        self.run_id = run_id
        self.error_code = error_code
        self.error_message = error_message
        message = f"Eval run '{run_id}' failed"
        if error_message:
            message += f": {error_message}"
        super().__init__(
            code="run_failed",
            message=message,
            status=422,
            details={"run_id": run_id, "error_code": error_code} if error_code else {"run_id": run_id},
        )


class RunCanceledError(EvalRunError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(code="run_canceled", message=f"Eval run '{run_id}' was canceled.", status=409)


class PollTimeoutError(EvalRunError):
    def __init__(self, run_id: str, timeout: float, last_status: str | None = None):
        self.run_id = run_id
        self.last_status = last_status
        super().__init__(
            code="poll_timeout",
            message=f"Eval run '{run_id}' did not finish within {timeout:g}s (last status: {last_status}).",
            status=504,
            details={"run_id": run_id, "last_status": last_status},
        )


def _vendor_message(response: httpx.Response) -> str | None:
    """Pull ``error.message`` out of a vendor error body, if there is one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message")
        if isinstance(error, str):
            return error
        detail = body.get("detail")
        if isinstance(detail, str):
            return detail
    return None


def raise_for_response(response: httpx.Response) -> None:
    """Map a non-2xx evals API response onto the exception hierarchy."""
    if response.is_success:
        return

    vendor_message = _vendor_message(response)
    try:
        details = {"url": str(response.request.url)}
    except RuntimeError:
        # Response was built without a request (tests, replayed payloads)
        details = None

    if response.status_code == 401:
        raise AuthenticationError(vendor_message or "Invalid or missing API key.", details=details)
    if response.status_code == 404:
        raise NotFoundError(vendor_message or "Resource not found.", details=details)
    raise ApiError(
        vendor_message or f"Evals API returned error: {response.status_code}",
        status=response.status_code,
        details=details,
    )
