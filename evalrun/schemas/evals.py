from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

RunStatus = Literal["queued", "in_progress", "completed", "failed", "canceled"]

TERMINAL_STATUSES = frozenset({"completed", "failed", "canceled"})


class _VendorModel(BaseModel):
    """Base for resources owned by the hosted API; unknown fields are dropped."""

    model_config = ConfigDict(extra="ignore")


# ── Eval definitions ─────────────────────────────────────────────────────────


class StringCheckGrader(BaseModel):
    type: Literal["string_check"] = "string_check"
    name: str
    input: str
    reference: str
    operation: Literal["eq", "ne", "like", "ilike"] = "eq"


class DataSourceConfig(BaseModel):
    type: Literal["custom"] = "custom"
    item_schema: dict[str, Any]
    include_sample_schema: bool = True


class EvalCreate(BaseModel):
    name: str
    data_source_config: DataSourceConfig
    testing_criteria: list[StringCheckGrader] = Field(..., min_length=1)
    metadata: dict[str, str] | None = None


class Eval(_VendorModel):
    id: str
    name: str
    data_source_config: dict[str, Any] = {}
    testing_criteria: list[dict[str, Any]] = []
    metadata: dict[str, str] | None = None
    created_at: int | None = None

    @property
    def criterion_names(self) -> list[str]:
        return [c["name"] for c in self.testing_criteria if "name" in c]


class EvalList(_VendorModel):
    data: list[Eval] = []
    has_more: bool = False


# ── Files ────────────────────────────────────────────────────────────────────


class FileObject(_VendorModel):
    id: str
    filename: str
    bytes: int = 0
    purpose: str = "evals"
    created_at: int | None = None


# ── Runs ─────────────────────────────────────────────────────────────────────


class FileIdSource(BaseModel):
    type: Literal["file_id"] = "file_id"
    id: str


class InputMessage(BaseModel):
    role: Literal["system", "user", "assistant", "developer"]
    content: str


class TemplateMessages(BaseModel):
    type: Literal["template"] = "template"
    template: list[InputMessage]


class SamplingParams(BaseModel):
    temperature: float | None = None
    max_completion_tokens: int | None = None
    top_p: float | None = None
    seed: int | None = None


class CompletionsDataSource(BaseModel):
    type: Literal["completions"] = "completions"
    model: str
    input_messages: TemplateMessages
    source: FileIdSource
    sampling_params: SamplingParams | None = None


class RunCreate(BaseModel):
    name: str
    data_source: CompletionsDataSource
    metadata: dict[str, str] | None = None


class RunError(_VendorModel):
    code: str | None = None
    message: str | None = None


class ResultCounts(_VendorModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    errored: int = 0


class CriterionResult(_VendorModel):
    testing_criteria: str
    passed: int = 0
    failed: int = 0


class Run(_VendorModel):
    id: str
    eval_id: str
    name: str | None = None
    status: RunStatus
    model: str | None = None
    result_counts: ResultCounts = ResultCounts()
    per_testing_criteria_results: list[CriterionResult] = []
    report_url: str | None = None
    error: RunError | None = None
    created_at: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def pass_rate(self) -> float | None:
        graded = self.result_counts.passed + self.result_counts.failed
        if graded == 0:
            return None
        return self.result_counts.passed / graded


class RunList(_VendorModel):
    data: list[Run] = []
    has_more: bool = False


# ── Run records (output items) ───────────────────────────────────────────────


class GraderResult(_VendorModel):
    name: str
    passed: bool
    score: float | None = None


class RunRecord(_VendorModel):
    id: str
    run_id: str | None = None
    status: str = "pass"
    datasource_item: dict[str, Any] = {}
    sample: dict[str, Any] | None = None
    results: list[GraderResult] = []

    @property
    def output_text(self) -> str | None:
        """Text of the last message the model produced for this item."""
        if not self.sample:
            return None
        output = self.sample.get("output") or []
        for message in reversed(output):
            content = message.get("content")
            if isinstance(content, str):
                return content
        return None

    def result_for(self, name: str) -> GraderResult | None:
        for result in self.results:
            if result.name == name:
                return result
        return None

    def passed(self, name: str) -> bool:
        result = self.result_for(name)
        return result is not None and result.passed


class RecordPage(_VendorModel):
    data: list[RunRecord] = []
    has_more: bool = False
    last_id: str | None = None


# ── Test data ────────────────────────────────────────────────────────────────


class LabeledItem(BaseModel):
    input: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)

    def to_wire(self) -> dict:
        return {"item": self.model_dump()}


class ItemValidation(BaseModel):
    valid: bool
    errors: list[str] = []
    warnings: list[str] = []
    record_count: int = 0
    labels: list[str] = []


# ── Reports ──────────────────────────────────────────────────────────────────


class LabelMetrics(BaseModel):
    label: str
    precision: float
    recall: float
    f1: float
    support: int


class Misclassification(BaseModel):
    record_id: str
    input: str | None = None
    expected: str | None = None
    predicted: str | None = None


class ClassificationReport(BaseModel):
    run_id: str
    eval_id: str
    status: str
    check_name: str
    total: int = 0
    passed: int = 0
    failed: int = 0
    accuracy: float = 0.0
    ci_lower: float = 0.0
    ci_upper: float = 0.0
    macro_f1: float = 0.0
    labels: list[LabelMetrics] = []
    confusion: dict[str, dict[str, int]] = {}
    failures: list[Misclassification] = []
    criteria: dict[str, dict[str, int]] = {}
    report_url: str | None = None


# ── Ledger ───────────────────────────────────────────────────────────────────


class LedgerEntry(BaseModel):
    id: str
    eval_id: str
    eval_name: str | None = None
    name: str | None = None
    model: str | None = None
    status: str
    file_id: str | None = None
    total: int = 0
    passed: int = 0
    failed: int = 0
    errored: int = 0
    report_url: str | None = None
    error: str | None = None
    created_at: str
    completed_at: str | None = None


class LedgerList(BaseModel):
    runs: list[LedgerEntry]
    total: int


class RunComparisonEntry(BaseModel):
    run_id: str
    model: str | None = None
    label: str
    total: int
    passed: int
    pass_rate: float


class RunComparison(BaseModel):
    eval_id: str
    runs: list[RunComparisonEntry]
