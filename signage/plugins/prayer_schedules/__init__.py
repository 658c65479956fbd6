from .ingest import ingest_schedule, parse_schedule_csv
from .service import delete_schedule, list_schedule_summaries, resolve_prayer_times

__all__ = [
    "ingest_schedule",
    "parse_schedule_csv",
    "delete_schedule",
    "list_schedule_summaries",
    "resolve_prayer_times",
]
