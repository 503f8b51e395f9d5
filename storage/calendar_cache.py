"""Delta-synced local snapshot of an Outlook calendar."""
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from processor.models import CalendarEvent, format_timestamp, parse_timestamp
from sources.graph_client import event_from_graph

logger = logging.getLogger(__name__)


@dataclass
class CalendarSlice:
    """Fixed time range of the calendar with its delta link."""
    start: datetime
    end: datetime
    delta_link: str

    def to_dict(self) -> Dict[str, str]:
        return {
            'start': format_timestamp(self.start),
            'end': format_timestamp(self.end),
            'delta_link': self.delta_link,
        }


class CalendarSnapshot:
    """
    Calendar events kept up to date with Graph delta queries.

    Time is divided into slices of ``slice_days`` aligned to the Unix epoch.
    The first time a slice is needed, a full delta query fills it; later
    runs only fetch the changes since its stored delta link.
    """

    def __init__(self, path: str, calendar_id: str, slice_days: int = 30):
        self.path = path
        self.calendar_id = calendar_id
        self.slice_duration = timedelta(days=slice_days)
        self.slices: List[CalendarSlice] = []
        self.events: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def open(cls, path: str, calendar_id: str, slice_days: int = 30) -> 'CalendarSnapshot':
        """Load a snapshot file, or start an empty one for this calendar."""
        snapshot = cls(path, calendar_id, slice_days)
        if not os.path.exists(path):
            return snapshot

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if data.get('calendar_id') != calendar_id:
            logger.warning(f"Snapshot {path} belongs to another calendar, starting over")
            return snapshot
        if int(data.get('slice_seconds', 0)) != int(snapshot.slice_duration.total_seconds()):
            logger.warning(f"Snapshot {path} uses another slice size, starting over")
            return snapshot

        snapshot.slices = [
            CalendarSlice(
                start=parse_timestamp(item['start']),
                end=parse_timestamp(item['end']),
                delta_link=item['delta_link']
            )
            for item in data.get('slices', [])
        ]
        snapshot.events = data.get('events', {})
        logger.info(f"Loaded {len(snapshot.events)} events in {len(snapshot.slices)} slices from {path}")
        return snapshot

    def save(self) -> None:
        data = {
            'calendar_id': self.calendar_id,
            'slice_seconds': int(self.slice_duration.total_seconds()),
            'slices': [item.to_dict() for item in self.slices],
            'events': self.events,
        }
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=4, sort_keys=True, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    def slice_starts(self, start: datetime, end: datetime) -> List[datetime]:
        """Aligned slice boundaries covering ``[start, end)``."""
        epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
        size = self.slice_duration
        first = epoch + ((start - epoch) // size) * size
        starts = []
        current = first
        while current < end:
            starts.append(current)
            current += size
        return starts

    async def refresh(self, client, start: datetime, end: datetime) -> None:
        """
        Bring every slice overlapping ``[start, end)`` up to date and save.

        Args:
            client: GraphCalendarClient
            start: Start of the range of interest
            end: End of the range of interest
        """
        known = {item.start: item for item in self.slices}

        for slice_start in self.slice_starts(start, end):
            existing = known.get(slice_start)
            if existing is not None:
                logger.info(f"Updating calendar slice from {format_timestamp(existing.start)}")
                existing.delta_link = await client.get_delta(existing.delta_link, self.events)
                continue

            slice_end = slice_start + self.slice_duration
            logger.info(
                f"Getting calendar slice from {format_timestamp(slice_start)} "
                f"to {format_timestamp(slice_end)}"
            )
            delta_link = await client.get_delta_initial(self.calendar_id, slice_start, slice_end, self.events)
            self.slices.append(CalendarSlice(start=slice_start, end=slice_end, delta_link=delta_link))

        self.slices.sort(key=lambda item: item.start)
        self.save()

    def get_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        """Events overlapping ``[start, end)``."""
        events = []
        for item in self.events.values():
            try:
                event = event_from_graph(item)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping incomplete cached event {item.get('id')}: {e}")
                continue
            if event.start < end and event.end > start:
                events.append(event)
        events.sort(key=lambda event: (event.start, event.event_id))
        return events
