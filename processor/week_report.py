"""CSV listing of the streams scheduled in a calendar range."""
import csv
import io
import logging
from dataclasses import dataclass
from typing import List, Optional

from processor.body_codec import decode_body, is_youtube_url
from processor.exceptions import BodyFormatError, MergeConflictError
from processor.models import SUBJECT_SEPARATOR, CalendarEvent, format_timestamp

logger = logging.getLogger(__name__)


@dataclass
class ReportRow:
    time: str
    name: str
    title: str
    url: Optional[str]


def build_rows(events: List[CalendarEvent]) -> List[ReportRow]:
    """One row per event: start time, channel name, title and watch URL."""
    rows = []
    for event in sorted(events, key=lambda item: item.start):
        name, _, title = event.subject.partition(SUBJECT_SEPARATOR)
        url = None
        try:
            body = decode_body(event.body)
            url = next((ref for ref in body.references if is_youtube_url(ref)), None)
        except (BodyFormatError, MergeConflictError) as e:
            logger.debug(f"No structured body in '{event.subject}': {e}")
        rows.append(ReportRow(
            time=format_timestamp(event.start),
            name=name.strip(),
            title=title.strip(),
            url=url
        ))
    return rows


def render_csv(rows: List[ReportRow]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator='\r\n')
    for row in rows:
        writer.writerow([row.time, row.name, row.title, row.url or ''])
    return output.getvalue()


def write_report(events: List[CalendarEvent], path: str) -> int:
    """
    Write the CSV report for ``events`` to ``path``.

    Returns:
        Number of rows written
    """
    rows = build_rows(events)
    with open(path, 'w', encoding='utf-8', newline='') as f:
        f.write(render_csv(rows))
    logger.info(f"Wrote {len(rows)} rows to {path}")
    return len(rows)
