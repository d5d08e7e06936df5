"""Classification metrics over (expected, predicted) label pairs."""

import random
import re
from collections import Counter, defaultdict

from evalrun.schemas.evals import LabelMetrics

LabelPair = tuple[str, str | None]

NO_PREDICTION = "<none>"


def normalize_label(text: str | None) -> str:
    """Normalize a label for comparison: strip, lowercase, collapse whitespace."""
    if text is None:
        return NO_PREDICTION
    text = re.sub(r"\s+", " ", text.strip().lower())
    return text or NO_PREDICTION


def _normalized(pairs: list[LabelPair]) -> list[tuple[str, str]]:
    return [(normalize_label(exp), normalize_label(pred)) for exp, pred in pairs]


# ── Metrics ───────────────────────────────────────────────────────────────────


def accuracy(pairs: list[LabelPair]) -> float:
    """Fraction of pairs whose normalized labels match."""
    if not pairs:
        return 0.0
    hits = sum(1 for exp, pred in _normalized(pairs) if exp == pred)
    return hits / len(pairs)


def confusion_matrix(pairs: list[LabelPair]) -> dict[str, dict[str, int]]:
    """Counts keyed ``[expected][predicted]`` over normalized labels."""
    matrix: dict[str, dict[str, int]] = defaultdict(dict)
    for exp, pred in _normalized(pairs):
        matrix[exp][pred] = matrix[exp].get(pred, 0) + 1
    return {exp: dict(row) for exp, row in sorted(matrix.items())}


def label_metrics(pairs: list[LabelPair]) -> list[LabelMetrics]:
    """Per-label precision, recall, F1 and support (support = expected count)."""
    normalized = _normalized(pairs)
    support = Counter(exp for exp, _ in normalized)
    predicted = Counter(pred for _, pred in normalized)
    true_pos = Counter(exp for exp, pred in normalized if exp == pred)

    results = []
    for label in sorted(support):
        tp = true_pos[label]
        precision = tp / predicted[label] if predicted[label] else 0.0
        recall = tp / support[label] if support[label] else 0.0
        f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
        results.append(LabelMetrics(
            label=label,
            precision=round(precision, 4),
            recall=round(recall, 4),
            f1=round(f1, 4),
            support=support[label],
        ))
    return results


def macro_f1(metrics: list[LabelMetrics]) -> float:
    """Unweighted mean F1 across labels."""
    if not metrics:
        return 0.0
    return sum(m.f1 for m in metrics) / len(metrics)


# ── Confidence Intervals ──────────────────────────────────────────────────────


def bootstrap_ci(
    scores: list[float],
    n_resamples: int = 1000,
    confidence: float = 0.95,
) -> tuple[float, float, float]:
    """Bootstrap confidence interval.

    Returns (mean, ci_lower, ci_upper).
    """
    if not scores:
        return 0.0, 0.0, 0.0

    n = len(scores)
    if n == 1:
        return scores[0], scores[0], scores[0]

    rng = random.Random(42)  # deterministic for reproducibility
    means = []
    for _ in range(n_resamples):
        sample = rng.choices(scores, k=n)
        means.append(sum(sample) / len(sample))

    means.sort()
    alpha = (1 - confidence) / 2
    lo_idx = int(alpha * n_resamples)
    hi_idx = int((1 - alpha) * n_resamples) - 1

    mean = sum(scores) / n
    return mean, means[lo_idx], means[hi_idx]
