"""Test-data preparation: load, validate, convert and write labeled JSONL items."""

import csv
import json
from collections import Counter
from pathlib import Path

import structlog
from pydantic import ValidationError

from evalrun.core.exceptions import InvalidTestItemError
from evalrun.schemas.evals import ItemValidation, LabeledItem

logger = structlog.get_logger()

MAX_REPORTED_ERRORS = 3


def _parse_line(line: str) -> LabeledItem:
    """Parse one JSONL line, accepting both ``{"item": {...}}`` and bare records."""
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    if "item" in data and isinstance(data["item"], dict):
        data = data["item"]
    return LabeledItem(input=data.get("input", ""), label=data.get("label", ""))


def _describe(exc: Exception) -> str:
    if isinstance(exc, UnicodeDecodeError):
        return "not valid UTF-8"
    if isinstance(exc, json.JSONDecodeError):
        return "invalid JSON"
    if isinstance(exc, ValidationError):
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        return f"missing or empty field(s): {', '.join(fields)}"
    return str(exc)


def _scan(path: Path) -> tuple[list[LabeledItem], list[str]]:
    items: list[LabeledItem] = []
    errors: list[str] = []
    line_errors = 0

    # Lines are decoded one at a time; undecodable bytes are a line error
    with open(path, "rb") as f:
        for i, raw in enumerate(f, 1):
            if not raw.strip():
                continue
            try:
                items.append(_parse_line(raw.decode("utf-8").strip()))
            except (ValueError, ValidationError) as e:
                line_errors += 1
                if line_errors <= MAX_REPORTED_ERRORS:
                    errors.append(f"Line {i}: {_describe(e)}")

    if line_errors > MAX_REPORTED_ERRORS:
        errors.append(f"... and {line_errors - MAX_REPORTED_ERRORS} more errors")
    return items, errors


def load_items(path: str | Path) -> list[LabeledItem]:
    """Load labeled items from a JSONL file, raising on any bad line."""
    path = Path(path)
    if not path.exists():
        raise InvalidTestItemError(f"Test data file not found: {path}")

    items, errors = _scan(path)
    if errors:
        raise InvalidTestItemError(f"Test data file {path} has invalid lines.", errors=errors)
    if not items:
        raise InvalidTestItemError(f"Test data file {path} contains no items.")
    return items


def validate_items(path: str | Path) -> ItemValidation:
    """Check a JSONL test file without raising; report errors and warnings."""
    path = Path(path)
    errors: list[str] = []
    warnings: list[str] = []

    if not path.exists():
        return ItemValidation(valid=False, errors=[f"File not found: {path}"])
    if path.stat().st_size == 0:
        return ItemValidation(valid=False, errors=["File is empty"])

    items, errors = _scan(path)
    if not items and not errors:
        errors.append("File contains no items")

    labels = Counter(item.label for item in items)
    if len(labels) == 1:
        warnings.append(f"Only one label present ('{next(iter(labels))}')")

    inputs = Counter(item.input for item in items)
    duplicates = sum(1 for count in inputs.values() if count > 1)
    if duplicates:
        warnings.append(f"{duplicates} input(s) appear more than once")

    return ItemValidation(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        record_count=len(items),
        labels=sorted(labels),
    )


def items_from_csv(
    path: str | Path,
    input_column: str = "input",
    label_column: str = "label",
) -> list[LabeledItem]:
    """Read labeled items from a CSV file with a header row."""
    path = Path(path)
    if not path.exists():
        raise InvalidTestItemError(f"CSV file not found: {path}")

    items: list[LabeledItem] = []
    errors: list[str] = []
    row_errors = 0
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f)
            if reader.fieldnames is None:
                raise InvalidTestItemError("CSV file has no header row")
            missing = [c for c in (input_column, label_column) if c not in reader.fieldnames]
            if missing:
                raise InvalidTestItemError(f"CSV is missing column(s): {', '.join(missing)}")

            # Header is row 1
            for row_num, row in enumerate(reader, 2):
                try:
                    items.append(
                        LabeledItem(
                            input=(row.get(input_column) or "").strip(),
                            label=(row.get(label_column) or "").strip(),
                        )
                    )
                except ValidationError as e:
                    row_errors += 1
                    if row_errors <= MAX_REPORTED_ERRORS:
                        errors.append(f"Row {row_num}: {_describe(e)}")
    except UnicodeDecodeError:
        raise InvalidTestItemError(f"CSV file {path} is not valid UTF-8.")

    if row_errors > MAX_REPORTED_ERRORS:
        errors.append(f"... and {row_errors - MAX_REPORTED_ERRORS} more errors")
    if errors:
        raise InvalidTestItemError(f"CSV file {path} has invalid rows.", errors=errors)
    return items


def write_items(items: list[LabeledItem], path: str | Path) -> Path:
    """Write items as ``{"item": {...}}`` JSONL, the form the evals API ingests."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for item in items:
            f.write(json.dumps(item.to_wire(), ensure_ascii=False) + "\n")
    logger.info("items_written", path=str(path), count=len(items))
    return path
