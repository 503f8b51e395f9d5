"""Data models for video records, calendar events and sync actions."""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

BROADCAST_NONE = 'none'
BROADCAST_LIVE = 'live'
BROADCAST_UPCOMING = 'upcoming'

EVENT_SINGLE = 'singleInstance'
EVENT_OCCURRENCE = 'occurrence'
EVENT_EXCEPTION = 'exception'
EVENT_SERIES_MASTER = 'seriesMaster'

ACTION_CREATE = 'create'
ACTION_UPDATE = 'update'
ACTION_DELETE = 'delete'

SUBJECT_SEPARATOR = ' - '

_FRACTION = re.compile(r'(\.\d{6})\d+')


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Naive values are taken as UTC, which is how Graph returns times when
    asked for the UTC time zone. Fractional seconds beyond microseconds
    are dropped.

    Args:
        value: Timestamp string or None

    Returns:
        Aware datetime in UTC, or None for empty input
    """
    if not value:
        return None
    text = _FRACTION.sub(r'\1', value.strip())
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SSZ``."""
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def subject_prefix(subject: str) -> str:
    """Return the channel name part of a ``"{name} - {title}"`` subject."""
    return subject.split(SUBJECT_SEPARATOR, 1)[0].strip()


@dataclass
class ChannelConfig:
    """Tracked YouTube channel."""
    channel_id: str
    nickname: str
    aliases: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class VideoRecord:
    """Snapshot of one YouTube video with live streaming details."""
    video_id: str
    channel_id: str
    title: str
    broadcast_status: str = BROADCAST_NONE
    published_at: Optional[datetime] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> 'VideoRecord':
        """Build a record from a YouTube ``videos`` resource."""
        snippet = item.get('snippet') or {}
        details = item.get('liveStreamingDetails') or {}
        return cls(
            video_id=item['id'],
            channel_id=snippet.get('channelId', ''),
            title=snippet.get('title', ''),
            broadcast_status=snippet.get('liveBroadcastContent') or BROADCAST_NONE,
            published_at=parse_timestamp(snippet.get('publishedAt')),
            scheduled_start=parse_timestamp(details.get('scheduledStartTime')),
            scheduled_end=parse_timestamp(details.get('scheduledEndTime')),
            actual_start=parse_timestamp(details.get('actualStartTime')),
            actual_end=parse_timestamp(details.get('actualEndTime'))
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VideoRecord':
        """Build a record from its cached dictionary form."""
        return cls(
            video_id=data['video_id'],
            channel_id=data['channel_id'],
            title=data['title'],
            broadcast_status=data.get('broadcast_status') or BROADCAST_NONE,
            published_at=parse_timestamp(data.get('published_at')),
            scheduled_start=parse_timestamp(data.get('scheduled_start')),
            scheduled_end=parse_timestamp(data.get('scheduled_end')),
            actual_start=parse_timestamp(data.get('actual_start')),
            actual_end=parse_timestamp(data.get('actual_end'))
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary, omitting empty times."""
        data: Dict[str, Any] = {
            'video_id': self.video_id,
            'channel_id': self.channel_id,
            'title': self.title,
            'broadcast_status': self.broadcast_status,
        }
        for name in ('published_at', 'scheduled_start', 'scheduled_end',
                     'actual_start', 'actual_end'):
            value = getattr(self, name)
            if value is not None:
                data[name] = format_timestamp(value)
        return data

    @property
    def watch_url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"


@dataclass
class CalendarEvent:
    """Outlook calendar event as seen by the reconciler."""
    event_id: str
    subject: str
    start: datetime
    end: datetime
    body: str = ''
    event_type: str = EVENT_SINGLE

    @property
    def is_occurrence(self) -> bool:
        return self.event_type == EVENT_OCCURRENCE

    @property
    def is_recurring_instance(self) -> bool:
        """True for instances that cannot be patched independently."""
        return self.event_type in (EVENT_OCCURRENCE, EVENT_EXCEPTION)


@dataclass
class EventBody:
    """Structured block stored in the body of a calendar event."""
    original_title: Optional[str] = None
    references: List[str] = field(default_factory=list)
    youtube_id: Optional[str] = None
    participants: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Calendar:
    """Outlook calendar reference."""
    calendar_id: str
    name: str


@dataclass
class Action:
    """Side-effecting calendar operation proposed by the reconciler."""
    kind: str
    subject: str
    event_id: Optional[str] = None
    calendar_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    group: Optional[str] = None

    def describe(self) -> str:
        if self.kind == ACTION_CREATE:
            return f"create '{self.subject}'"
        return f"{self.kind} '{self.subject}' ({self.event_id})"


@dataclass
class SyncResult:
    """Result of applying an action list."""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    errors: List[str] = field(default_factory=list)
