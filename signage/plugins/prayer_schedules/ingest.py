"""
Bulk prayer time upload: parse a CSV time table and replace a label's rows with it.

The CSV must carry exactly these columns, in any order:
    label, month, day, fajr, sunrise, dhuhr, asr, maghrib, isha
Time values are passed through untouched; the display layer interprets them.
"""
import csv
import io
import logging
from collections import namedtuple
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from signage.core.errors import EmptyBatchError, InsertError, ValidationError
from signage.core.db import utc_now
from signage.plugins.prayer_schedules.models import PRAYER_FIELDS
from signage.plugins.prayer_schedules.service import delete_rows, hold_label, insert_rows

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("label", "month", "day") + PRAYER_FIELDS
# Storage-layer limit on rows per insert
MAX_BATCH_SIZE = 100

ParsedSchedule = namedtuple("ParsedSchedule", ["label", "records", "skipped", "headers"])
IngestResult = namedtuple("IngestResult", ["label", "records_inserted", "skipped_rows"])


def _read_rows(text: str) -> List[Tuple[int, List[str]]]:
    """CSV rows with their 1-based line numbers. Empty lines are dropped; rows of empty cells are kept."""
    rows = []
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    for row in reader:
        if len(row) <= 1 and not "".join(row).strip():
            continue
        rows.append((reader.line_num, row))
    return rows


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def parse_schedule_csv(text: str) -> ParsedSchedule:
    """Validate the header and collect usable records in input order.

    Rows missing label, month or day (or with a non-integer month/day) are skipped with a warning.
    The label of the first usable row names the whole batch.
    """
    rows = _read_rows(text)
    if not rows:
        raise ValidationError("CSV file is empty or invalid", details={"found": []})

    _, header_row = rows[0]
    headers = [h.strip().lower() for h in header_row]
    missing = [column for column in REQUIRED_COLUMNS if column not in headers]
    if missing:
        raise ValidationError(
            f"CSV must have columns: {', '.join(REQUIRED_COLUMNS)}",
            details={"missing": missing, "found": headers},
        )
    extra = [h for h in headers if h not in REQUIRED_COLUMNS]
    if extra:
        logger.warning(f"Ignoring unexpected CSV columns: {extra}")

    index = {column: headers.index(column) for column in REQUIRED_COLUMNS}

    label = None
    by_date: Dict[Tuple[int, int], Dict[str, Any]] = {}
    skipped = 0
    mixed_labels = set()

    for line_num, values in rows[1:]:
        cells = {
            column: values[i].strip() if i < len(values) else ""
            for column, i in index.items()
        }
        if not cells["label"] or not cells["month"] or not cells["day"]:
            logger.warning(f"Skipping row {line_num}: missing label, month or day")
            skipped += 1
            continue
        month = _parse_int(cells["month"])
        day = _parse_int(cells["day"])
        if month is None or day is None:
            logger.warning(f"Skipping row {line_num}: month/day not integers ({cells['month']!r}, {cells['day']!r})")
            skipped += 1
            continue

        if label is None:
            label = cells["label"]
        elif cells["label"] != label:
            mixed_labels.add(cells["label"])

        key = (month, day)
        if key in by_date:
            logger.warning(f"Row {line_num}: duplicate date {month}/{day}, keeping the later row")
            del by_date[key]
        by_date[key] = {
            "label": label,
            "month": month,
            "day": day,
            **{field: cells[field] for field in PRAYER_FIELDS},
        }

    if mixed_labels:
        logger.warning(f"CSV rows carry other labels {sorted(mixed_labels)}; storing all rows under '{label}'")

    return ParsedSchedule(label, list(by_date.values()), skipped, headers)


def _compensate(label: str) -> bool:
    """Delete rows committed by a failed ingestion. Returns False if that fails too."""
    try:
        delete_rows(label)
    except SQLAlchemyError as e:
        logger.error(f"Could not remove partially inserted rows for '{label}': {e}")
        return False
    logger.info(f"Removed partially inserted rows for '{label}'")
    return True


def ingest_schedule(text: str, batch_size: int = MAX_BATCH_SIZE, compensate: bool = False) -> IngestResult:
    """Replace the batch label's rows with the parsed CSV.

    Holds the label (see hold_label) from the delete through the last batch, so two
    uploads of one label never interleave, even from different processes.
    A failing insert batch raises InsertError; batches already committed stay
    unless compensate is set, in which case they are deleted again.
    """
    parsed = parse_schedule_csv(text)
    records = parsed.records
    if not records:
        raise EmptyBatchError(
            "No valid records found in CSV",
            details={"skippedRows": parsed.skipped},
        )

    label = parsed.label
    batch_size = max(1, min(int(batch_size), MAX_BATCH_SIZE))
    created_at = utc_now()

    with hold_label(label):
        try:
            removed = delete_rows(label)
            logger.info(f"Replacing schedule '{label}': removed {removed} existing rows")
        except SQLAlchemyError as e:
            # Nothing to delete on a first upload; the inserts below still decide success
            logger.warning(f"Error deleting existing rows for '{label}': {e}")

        inserted = 0
        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            try:
                insert_rows(batch, created_at=created_at)
            except SQLAlchemyError as e:
                logger.error(f"Error inserting batch at row {start} for '{label}': {e}")
                if compensate and inserted and _compensate(label):
                    inserted = 0
                raise InsertError(label, inserted, len(records), e) from e
            inserted += len(batch)

    logger.info(f"Uploaded '{label}' with {inserted} prayer times ({parsed.skipped} rows skipped)")
    return IngestResult(label, inserted, parsed.skipped)
