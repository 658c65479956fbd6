import multiprocessing
import threading
import time
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from signage.core.db import close_db, init_db, session_scope, utc_now
from signage.core.errors import EmptyBatchError, InsertError, TransientIOError, ValidationError
from signage.plugins.prayer_schedules import ingest
from signage.plugins.prayer_schedules.ingest import ingest_schedule, parse_schedule_csv
from signage.plugins.prayer_schedules.models import PrayerTimeRow, ScheduleLease
from signage.plugins.prayer_schedules.service import count_rows, hold_label, resolve_prayer_times

from conftest import schedule_csv


def _rows(label):
    with session_scope() as session:
        return list(
            session.execute(
                select(PrayerTimeRow).where(PrayerTimeRow.label == label).order_by(PrayerTimeRow.day)
            ).scalars()
        )


def test_missing_columns_are_reported_with_found_headers():
    text = "label,month,day,fajr,dhuhr\nMain,1,1,05:00,12:00\n"
    with pytest.raises(ValidationError) as exc_info:
        parse_schedule_csv(text)
    details = exc_info.value.details
    assert details["missing"] == ["sunrise", "asr", "maghrib", "isha"]
    assert details["found"] == ["label", "month", "day", "fajr", "dhuhr"]


def test_header_order_and_case_do_not_matter():
    text = (
        "ISHA, Maghrib ,asr,dhuhr,sunrise,fajr,day,month,label\n"
        "19:30,18:05,15:40,12:15,06:30,05:10,15,3,Main\n"
    )
    parsed = parse_schedule_csv(text)
    assert parsed.label == "Main"
    assert parsed.records == [{
        "label": "Main", "month": 3, "day": 15,
        "fajr": "05:10", "sunrise": "06:30", "dhuhr": "12:15",
        "asr": "15:40", "maghrib": "18:05", "isha": "19:30",
    }]


def test_row_missing_day_is_skipped_not_fatal(db):
    text = schedule_csv("Main", [1, 2, 3, 4]) + "Main,3,,05:10,06:30,12:15,15:40,18:05,19:30\n"
    result = ingest_schedule(text)
    assert result.records_inserted == 4
    assert result.skipped_rows == 1
    assert count_rows("Main") == 4


def test_row_of_empty_cells_counts_as_skipped():
    text = schedule_csv("Main", [1, 2]) + ",,,,,,,,\n\n"
    parsed = parse_schedule_csv(text)
    assert len(parsed.records) == 2
    assert parsed.skipped == 1


def test_non_integer_month_is_skipped():
    text = schedule_csv("Main", [1]) + "Main,March,2,05:10,06:30,12:15,15:40,18:05,19:30\n"
    parsed = parse_schedule_csv(text)
    assert len(parsed.records) == 1
    assert parsed.skipped == 1


def test_short_row_yields_empty_times():
    text = "label,month,day,fajr,sunrise,dhuhr,asr,maghrib,isha\nMain,1,2,05:00\n"
    record = parse_schedule_csv(text).records[0]
    assert record["fajr"] == "05:00"
    assert record["isha"] == ""


def test_label_comes_from_first_row_and_mixed_labels_collapse():
    text = (
        "label,month,day,fajr,sunrise,dhuhr,asr,maghrib,isha\n"
        "North,1,1,05:00,06:00,12:00,15:00,18:00,19:00\n"
        "South,1,2,05:01,06:01,12:01,15:01,18:01,19:01\n"
    )
    parsed = parse_schedule_csv(text)
    assert parsed.label == "North"
    assert {r["label"] for r in parsed.records} == {"North"}


def test_duplicate_date_keeps_later_row():
    text = (
        "label,month,day,fajr,sunrise,dhuhr,asr,maghrib,isha\n"
        "Main,1,1,05:00,06:00,12:00,15:00,18:00,19:00\n"
        "Main,1,1,05:30,06:00,12:00,15:00,18:00,19:00\n"
    )
    records = parse_schedule_csv(text).records
    assert len(records) == 1
    assert records[0]["fajr"] == "05:30"


def test_times_are_passed_through_verbatim():
    text = (
        "label,month,day,fajr,sunrise,dhuhr,asr,maghrib,isha\n"
        "Main,1,1,5:00 AM,sunrise?,12.15,,18:00:30,late\n"
    )
    record = parse_schedule_csv(text).records[0]
    assert record["fajr"] == "5:00 AM"
    assert record["sunrise"] == "sunrise?"
    assert record["asr"] == ""


def test_empty_batch_raises(db):
    text = "label,month,day,fajr,sunrise,dhuhr,asr,maghrib,isha\n,1,1,05:00,,,,,\n"
    with pytest.raises(EmptyBatchError):
        ingest_schedule(text)


def test_header_only_file_is_empty_batch(db):
    with pytest.raises(EmptyBatchError):
        ingest_schedule("label,month,day,fajr,sunrise,dhuhr,asr,maghrib,isha\n")


def test_reupload_replaces_whole_label(db):
    ingest_schedule(schedule_csv("Main", [1, 2, 3, 4, 5], fajr="05:00"))
    ingest_schedule(schedule_csv("Other", [1, 2], fajr="04:00"))
    ingest_schedule(schedule_csv("Main", [10, 11, 12], fajr="05:45"))

    rows = _rows("Main")
    assert [r.day for r in rows] == [10, 11, 12]
    assert all(r.fajr == "05:45" for r in rows)
    assert resolve_prayer_times("Main", 3, 1) is None
    assert count_rows("Other") == 2


def test_inserts_in_batches_of_at_most_100(db, monkeypatch):
    batches = []
    real_insert = ingest.insert_rows

    def recording_insert(records, created_at=None):
        batches.append(len(records))
        real_insert(records, created_at=created_at)

    monkeypatch.setattr(ingest, "insert_rows", recording_insert)
    text = schedule_csv("Year", range(1, 29), month=1)
    for month in range(2, 10):
        text += "".join(schedule_csv("Year", range(1, 29), month=month).splitlines(True)[1:])

    result = ingest_schedule(text, batch_size=500)
    assert result.records_inserted == 9 * 28
    assert batches == [100, 100, 52]
    assert count_rows("Year") == 252


def _failing_on_call(monkeypatch, failing_call):
    calls = {"n": 0}
    real_insert = ingest.insert_rows

    def flaky_insert(records, created_at=None):
        calls["n"] += 1
        if calls["n"] == failing_call:
            raise OperationalError("INSERT INTO prayer_times", {}, Exception("database is full"))
        real_insert(records, created_at=created_at)

    monkeypatch.setattr(ingest, "insert_rows", flaky_insert)


def test_partial_batch_failure_reports_committed_rows(db, monkeypatch):
    _failing_on_call(monkeypatch, failing_call=2)
    text = schedule_csv("Main", range(1, 26))

    with pytest.raises(InsertError) as exc_info:
        ingest_schedule(text, batch_size=10)

    error = exc_info.value
    assert error.records_committed == 10
    assert error.records_requested == 25
    assert error.details["recordsInserted"] == 10
    assert count_rows("Main") == 10


def test_partial_batch_failure_with_compensation_leaves_nothing(db, monkeypatch):
    _failing_on_call(monkeypatch, failing_call=3)
    with pytest.raises(InsertError) as exc_info:
        ingest_schedule(schedule_csv("Main", range(1, 26)), batch_size=10, compensate=True)
    assert exc_info.value.records_committed == 0
    assert count_rows("Main") == 0


def test_delete_failure_before_insert_is_not_fatal(db, monkeypatch):
    def broken_delete(label):
        raise OperationalError("DELETE FROM prayer_times", {}, Exception("locked"))

    monkeypatch.setattr(ingest, "delete_rows", broken_delete)
    result = ingest_schedule(schedule_csv("Fresh", [1, 2]))
    assert result.records_inserted == 2


def test_concurrent_uploads_of_one_label_do_not_interleave(db):
    big = schedule_csv("Main", range(1, 29), month=1, fajr="A")
    for month in range(2, 6):
        big += "".join(schedule_csv("Main", range(1, 29), month=month, fajr="A").splitlines(True)[1:])
    small = schedule_csv("Main", range(1, 21), month=2, fajr="B")
    texts = [big, small]

    errors = []

    def run(text):
        try:
            ingest_schedule(text, batch_size=10)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=(t,)) for t in texts]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    rows = _rows("Main")
    fajr_values = {r.fajr for r in rows}
    assert len(fajr_values) == 1
    assert len(rows) == (140 if fajr_values == {"A"} else 20)


def _leases():
    with session_scope() as session:
        return list(session.execute(select(ScheduleLease)).scalars())


def test_lease_is_released_after_upload(db):
    ingest_schedule(schedule_csv("Main", [1, 2]))
    assert _leases() == []


def test_label_held_by_another_writer_times_out(db):
    with session_scope() as session:
        session.add(ScheduleLease(label="Main", owner="other-host:1:abc", acquired_at=utc_now()))
    with pytest.raises(TransientIOError):
        with hold_label("Main", wait=0.2):
            pass
    # Other labels are not affected
    with hold_label("Other", wait=0.2):
        pass


def test_stale_lease_is_taken_over(db):
    with session_scope() as session:
        session.add(ScheduleLease(label="Main", owner="crashed:1:abc", acquired_at=utc_now() - timedelta(hours=1)))
    result = ingest_schedule(schedule_csv("Main", [1, 2, 3]))
    assert result.records_inserted == 3
    assert _leases() == []


def _upload_in_child(db_url, text):
    init_db(db_url=db_url)
    try:
        ingest_schedule(text, batch_size=2)
    finally:
        close_db()


def test_uploads_from_two_processes_do_not_interleave(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path / 'shared.db'}"
    close_db()
    # Create the tables once so the workers only race on the data
    init_db(db_url=db_url)
    close_db()

    real_insert = ingest.insert_rows

    def slow_insert(records, created_at=None):
        time.sleep(0.2)
        real_insert(records, created_at=created_at)

    monkeypatch.setattr(ingest, "insert_rows", slow_insert)

    context = multiprocessing.get_context("fork")
    workers = [
        context.Process(target=_upload_in_child, args=(db_url, schedule_csv("Main", [1, 2, 3, 4])))
        for _ in range(2)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=60)
    assert [worker.exitcode for worker in workers] == [0, 0]

    init_db(db_url=db_url)
    try:
        assert count_rows("Main") == 4
        assert _leases() == []
    finally:
        close_db()
