"""Unit tests for record filtering and report building."""

from evalrun.schemas.evals import Run, RunRecord
from evalrun.services.inspection import (
    build_report,
    criterion_summary,
    failed_records,
    prediction_pairs,
)


def _record(record_id, text, label, output, passed, extra=None):
    results = [{"name": "match_label", "passed": passed, "score": 1.0 if passed else 0.0}]
    if extra is not None:
        results.append({"name": "non_empty", "passed": extra})
    return RunRecord.model_validate({
        "id": record_id,
        "status": "pass" if passed else "fail",
        "datasource_item": {"input": text, "label": label},
        "sample": {"output": [{"role": "assistant", "content": output}]} if output is not None else None,
        "results": results,
    })


RECORDS = [
    _record("r1", "loved it", "positive", "positive", True, extra=True),
    _record("r2", "hated it", "negative", "positive", False, extra=True),
    _record("r3", "meh", "negative", None, False, extra=False),
    _record("r4", "superb", "positive", "positive", True, extra=True),
]

RUN = Run.model_validate({
    "id": "evalrun_1",
    "eval_id": "eval_1",
    "status": "completed",
    "result_counts": {"total": 4, "passed": 2, "failed": 2},
    "report_url": "https://evals.example.test/eval_1/evalrun_1",
})


def test_failed_records_by_check():
    assert [r.id for r in failed_records(RECORDS, "match_label")] == ["r2", "r3"]
    assert [r.id for r in failed_records(RECORDS, "non_empty")] == ["r3"]


def test_missing_check_counts_as_failure():
    assert len(failed_records(RECORDS, "no_such_check")) == len(RECORDS)


def test_criterion_summary():
    assert criterion_summary(RECORDS) == {
        "match_label": {"passed": 2, "failed": 2},
        "non_empty": {"passed": 3, "failed": 1},
    }


def test_prediction_pairs_skips_unlabeled():
    records = RECORDS + [RunRecord(id="r5", datasource_item={"input": "x"})]
    assert prediction_pairs(records) == [
        ("positive", "positive"),
        ("negative", "positive"),
        ("negative", None),
        ("positive", "positive"),
    ]


def test_build_report():
    report = build_report(RUN, RECORDS, "match_label")

    assert report.run_id == "evalrun_1"
    assert report.total == 4
    assert report.passed == 2
    assert report.failed == 2
    assert report.accuracy == 0.5
    assert report.ci_lower <= 0.5 <= report.ci_upper
    assert report.report_url == RUN.report_url
    assert report.confusion["negative"] == {"positive": 1, "<none>": 1}
    assert [f.record_id for f in report.failures] == ["r2", "r3"]
    assert report.failures[0].expected == "negative"
    assert report.failures[0].predicted == "positive"
    assert report.failures[1].predicted is None
    assert report.criteria["non_empty"] == {"passed": 3, "failed": 1}


def test_build_report_empty():
    report = build_report(RUN, [], "match_label")
    assert report.total == 0
    assert report.accuracy == 0.0
    assert report.labels == []
