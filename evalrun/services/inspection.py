"""Inspect run records: filter failures and build classification reports."""

from evalrun.schemas.evals import (
    ClassificationReport,
    Misclassification,
    Run,
    RunRecord,
)
from evalrun.services.scoring import (
    LabelPair,
    bootstrap_ci,
    confusion_matrix,
    label_metrics,
    macro_f1,
)


def failed_records(records: list[RunRecord], check_name: str) -> list[RunRecord]:
    """Records where the named check did not pass. A missing result counts as a failure."""
    return [r for r in records if not r.passed(check_name)]


def criterion_summary(records: list[RunRecord]) -> dict[str, dict[str, int]]:
    """Pass/fail counts per testing criterion, in first-seen order."""
    summary: dict[str, dict[str, int]] = {}
    for record in records:
        for result in record.results:
            counts = summary.setdefault(result.name, {"passed": 0, "failed": 0})
            counts["passed" if result.passed else "failed"] += 1
    return summary


def prediction_pairs(records: list[RunRecord], label_field: str = "label") -> list[LabelPair]:
    """``(expected, predicted)`` for every record that carries a reference label."""
    pairs: list[LabelPair] = []
    for record in records:
        expected = record.datasource_item.get(label_field)
        if expected is None:
            continue
        pairs.append((str(expected), record.output_text))
    return pairs


def _misclassification(record: RunRecord, label_field: str) -> Misclassification:
    item = record.datasource_item
    expected = item.get(label_field)
    return Misclassification(
        record_id=record.id,
        input=str(item["input"]) if "input" in item else None,
        expected=str(expected) if expected is not None else None,
        predicted=record.output_text,
    )


def build_report(
    run: Run,
    records: list[RunRecord],
    check_name: str,
    label_field: str = "label",
) -> ClassificationReport:
    """Summarize a finished run: grader pass rate plus locally computed label metrics."""
    failures = failed_records(records, check_name)
    passed = len(records) - len(failures)

    scores = [1.0 if r.passed(check_name) else 0.0 for r in records]
    mean, ci_lower, ci_upper = bootstrap_ci(scores)

    pairs = prediction_pairs(records, label_field)
    per_label = label_metrics(pairs)

    return ClassificationReport(
        run_id=run.id,
        eval_id=run.eval_id,
        status=run.status,
        check_name=check_name,
        total=len(records),
        passed=passed,
        failed=len(failures),
        accuracy=round(mean, 4),
        ci_lower=round(ci_lower, 4),
        ci_upper=round(ci_upper, 4),
        macro_f1=round(macro_f1(per_label), 4),
        labels=per_label,
        confusion=confusion_matrix(pairs),
        failures=[_misclassification(r, label_field) for r in failures],
        criteria=criterion_summary(records),
        report_url=run.report_url,
    )
