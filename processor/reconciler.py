"""Reconciliation of YouTube videos against Outlook calendar events."""
import dataclasses
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from processor.body_codec import decode_body, encode_body, merge_bodies
from processor.exceptions import BodyFormatError, MergeConflictError
from processor.models import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    BROADCAST_LIVE,
    SUBJECT_SEPARATOR,
    Action,
    CalendarEvent,
    ChannelConfig,
    EventBody,
    VideoRecord,
    subject_prefix,
)

logger = logging.getLogger(__name__)

_LENTICULAR_BRACKETS = re.compile(r'【.*?】')
_SQUARE_BRACKETS = re.compile(r'\[.*?\]')


def clean_title(title: str) -> str:
    """
    Strip bracketed annotations such as ``[LIVE]`` or ``【歌枠】`` from a title.

    Falls back to the stripped original when nothing else is left.
    """
    cleaned = _LENTICULAR_BRACKETS.sub('', title)
    cleaned = _SQUARE_BRACKETS.sub('', cleaned)
    cleaned = ' '.join(cleaned.split())
    return cleaned or title.strip()


def format_graph_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S')


@dataclass
class NormalizedVideo:
    """Video with effective times and display subject resolved."""
    video: VideoRecord
    channel: ChannelConfig
    start: datetime
    end: datetime
    title: str

    @property
    def subject(self) -> str:
        return f"{self.channel.nickname}{SUBJECT_SEPARATOR}{self.title}"


@dataclass
class IndexedEvent:
    """Calendar event together with its parsed body."""
    event: CalendarEvent
    body: EventBody


@dataclass
class ReconcilePlan:
    """Actions computed by one reconciliation pass."""
    actions: List[Action] = field(default_factory=list)
    unchanged: int = 0
    discarded: int = 0


class Reconciler:
    """Computes the calendar actions that make the calendar mirror the videos."""

    MATCH_WINDOW = timedelta(minutes=15)
    DEFAULT_DURATION = timedelta(hours=1)
    REMINDER_MINUTES = 5

    def __init__(
        self,
        channels: List[ChannelConfig],
        calendar_id: str,
        now: Optional[datetime] = None
    ):
        """
        Initialize the reconciler.

        Args:
            channels: Tracked channels with nicknames and aliases
            calendar_id: Calendar that new events are created in
            now: Reference time for live streams without an end time
        """
        self.channels = {channel.channel_id: channel for channel in channels}
        self.calendar_id = calendar_id
        self.now = (now or datetime.now(timezone.utc)).replace(microsecond=0)

    def reconcile(self, videos: Iterable[VideoRecord], events: Iterable[CalendarEvent]) -> ReconcilePlan:
        """
        Compute the actions for one pass.

        The caller's events are not modified. Renames and duplicate deletes
        come first in the action list, followed by per-video actions.

        Args:
            videos: Current video records
            events: Snapshot of the calendar in fetch order

        Returns:
            ReconcilePlan with the ordered action list

        Raises:
            MergeConflictError: If a stored body disagrees with the new one
                on the shape of a field
        """
        plan = ReconcilePlan()
        working = [dataclasses.replace(event) for event in events]

        renames = self.rename_aliases(working)
        survivors, deletes = self.sweep_duplicates(working)
        deleted_ids = {action.event_id for action in deletes}
        plan.actions.extend(a for a in renames if a.event_id not in deleted_ids)
        plan.actions.extend(deletes)

        indexed = self.index_events(survivors)
        by_video_id: Dict[str, IndexedEvent] = {}
        for item in indexed:
            video_id = item.body.youtube_id
            if not video_id:
                continue
            if video_id in by_video_id:
                logger.warning(
                    f"Events {by_video_id[video_id].event.event_id} and "
                    f"{item.event.event_id} both reference video {video_id}"
                )
                continue
            by_video_id[video_id] = item

        latest = {video.video_id: video for video in videos}
        normalized: List[NormalizedVideo] = []
        for video in latest.values():
            item = self.normalize(video)
            if item is None:
                plan.discarded += 1
            else:
                normalized.append(item)

        # Id matches are resolved for every video before any window match
        matches: Dict[str, Optional[IndexedEvent]] = {}
        claimed: Set[str] = set()
        for video in normalized:
            hit = by_video_id.get(video.video.video_id)
            if hit is not None:
                matches[video.video.video_id] = hit
                claimed.add(hit.event.event_id)

        for video in normalized:
            if video.video.video_id in matches:
                continue
            match = self.match_by_window(video, indexed, claimed, set(latest))
            if match is not None:
                claimed.add(match.event.event_id)
            matches[video.video.video_id] = match

        for video in normalized:
            actions = self.decide(video, matches[video.video.video_id])
            if not actions:
                plan.unchanged += 1
            plan.actions.extend(actions)

        logger.info(
            f"Reconciled {len(latest)} videos against {len(working)} events: "
            f"{len(plan.actions)} actions, {plan.unchanged} unchanged, "
            f"{plan.discarded} discarded"
        )
        return plan

    def normalize(self, video: VideoRecord) -> Optional[NormalizedVideo]:
        """
        Resolve effective start, end and title of a video.

        Returns:
            NormalizedVideo, or None if the video has no start time or its
            channel is not tracked
        """
        channel = self.channels.get(video.channel_id)
        if channel is None:
            logger.warning(f"Video {video.video_id} belongs to untracked channel {video.channel_id}")
            return None

        start = video.actual_start or video.scheduled_start
        if start is None:
            logger.info(f"Discarding video {video.video_id} without a start time")
            return None

        end = video.actual_end or video.scheduled_end
        if end is None:
            end = self.now if video.broadcast_status == BROADCAST_LIVE else start + self.DEFAULT_DURATION
        if end <= start:
            end = start + self.DEFAULT_DURATION

        return NormalizedVideo(
            video=video,
            channel=channel,
            start=start,
            end=end,
            title=clean_title(video.title)
        )

    def rename_aliases(self, events: List[CalendarEvent]) -> List[Action]:
        """
        Rewrite subjects that still use a channel's old name.

        Subjects are changed in place so later matching sees the current
        nickname.

        Returns:
            Subject-only update actions
        """
        aliases: Dict[str, str] = {}
        for channel in self.channels.values():
            for alias in channel.aliases:
                if alias != channel.nickname:
                    aliases[alias] = channel.nickname

        actions = []
        for event in events:
            nickname = aliases.get(subject_prefix(event.subject))
            if nickname is None:
                continue

            _, separator, rest = event.subject.partition(SUBJECT_SEPARATOR)
            new_subject = f"{nickname}{separator}{rest}"
            logger.info(f"Renaming '{event.subject}' to '{new_subject}'")
            actions.append(Action(
                kind=ACTION_UPDATE,
                subject=new_subject,
                event_id=event.event_id,
                payload={'subject': new_subject},
                group=event.event_id
            ))
            event.subject = new_subject
        return actions

    def sweep_duplicates(self, events: List[CalendarEvent]) -> Tuple[List[CalendarEvent], List[Action]]:
        """
        Collapse events sharing the same subject and start time.

        The first event in fetch order survives. Occurrences of a series are
        never deleted here.

        Returns:
            Tuple of (surviving events, delete actions)
        """
        seen: Dict[Tuple[str, datetime], CalendarEvent] = {}
        survivors = []
        actions = []
        for event in events:
            if event.is_occurrence:
                survivors.append(event)
                continue

            key = (event.subject, event.start)
            if key in seen:
                logger.info(f"Deleting duplicate '{event.subject}' ({event.event_id})")
                actions.append(Action(
                    kind=ACTION_DELETE,
                    subject=event.subject,
                    event_id=event.event_id,
                    group=event.event_id
                ))
                continue

            seen[key] = event
            survivors.append(event)
        return survivors, actions

    def index_events(self, events: List[CalendarEvent]) -> List[IndexedEvent]:
        """Parse event bodies, leaving out events whose body is malformed."""
        indexed = []
        for event in events:
            try:
                body = decode_body(event.body)
            except (BodyFormatError, MergeConflictError) as e:
                logger.warning(f"Skipping event '{event.subject}' ({event.event_id}) with malformed body: {e}")
                continue
            indexed.append(IndexedEvent(event=event, body=body))
        return indexed

    def match_by_window(
        self,
        video: NormalizedVideo,
        indexed: List[IndexedEvent],
        claimed: Set[str],
        run_video_ids: Set[str]
    ) -> Optional[IndexedEvent]:
        """
        Find an event for a video that no event references by id.

        The first event of the same channel starting within the match window
        is taken. Events already matched, and events storing the id of
        another video in this run, are skipped.
        """
        for item in indexed:
            event = item.event
            if event.event_id in claimed:
                continue
            stored_id = item.body.youtube_id
            if stored_id and stored_id != video.video.video_id and stored_id in run_video_ids:
                continue
            if subject_prefix(event.subject) != video.channel.nickname:
                continue
            if abs(event.start - video.start) <= self.MATCH_WINDOW:
                return item
        return None

    def build_body(self, video: NormalizedVideo) -> EventBody:
        return EventBody(
            original_title=video.video.title,
            references=[video.video.watch_url],
            youtube_id=video.video.video_id
        )

    def build_payload(self, video: NormalizedVideo, subject: str, body_text: str) -> Dict:
        """Graph event resource for a video."""
        return {
            'subject': subject,
            'start': {'dateTime': format_graph_time(video.start), 'timeZone': 'UTC'},
            'end': {'dateTime': format_graph_time(video.end), 'timeZone': 'UTC'},
            'body': {'contentType': 'text', 'content': body_text},
            'recurrence': None,
            'isReminderOn': True,
            'reminderMinutesBeforeStart': self.REMINDER_MINUTES,
        }

    def _resolve_subject(self, video: NormalizedVideo, existing: IndexedEvent) -> str:
        # Keep subjects the user edited by hand
        stored_title = existing.body.original_title
        if not stored_title or not existing.event.subject:
            return video.subject
        generated = f"{video.channel.nickname}{SUBJECT_SEPARATOR}{clean_title(stored_title)}"
        if existing.event.subject != generated:
            return existing.event.subject
        return video.subject

    def decide(self, video: NormalizedVideo, existing: Optional[IndexedEvent]) -> List[Action]:
        """
        Choose the actions that bring one event in line with one video.

        Returns:
            Empty list when nothing changed, one create or update, or a
            delete followed by a create for recurring instances
        """
        target = self.build_body(video)

        if existing is None:
            logger.info(f"Creating '{video.subject}'")
            return [Action(
                kind=ACTION_CREATE,
                subject=video.subject,
                calendar_id=self.calendar_id,
                payload=self.build_payload(video, video.subject, encode_body(target))
            )]

        event = existing.event
        body_text = encode_body(merge_bodies(existing.body, target))
        subject = self._resolve_subject(video, existing)

        if (subject == event.subject and
                video.start == event.start and
                video.end == event.end and
                body_text.strip() == event.body.strip()):
            return []

        payload = self.build_payload(video, subject, body_text)
        if event.is_recurring_instance:
            logger.info(f"Replacing {event.event_type} '{event.subject}' with '{subject}'")
            return [
                Action(kind=ACTION_DELETE, subject=event.subject, event_id=event.event_id,
                       group=event.event_id),
                Action(kind=ACTION_CREATE, subject=subject, calendar_id=self.calendar_id,
                       payload=payload, group=event.event_id),
            ]

        logger.info(f"Updating '{subject}'")
        return [Action(
            kind=ACTION_UPDATE,
            subject=subject,
            event_id=event.event_id,
            payload=payload,
            group=event.event_id
        )]
