"""One reconciliation pass from YouTube to an Outlook calendar."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from app_config import AppConfig
from dispatch.async_dispatcher import AsyncDispatcher
from processor.action_executor import ActionExecutor
from processor.models import CalendarEvent, SyncResult, VideoRecord
from processor.reconciler import Reconciler
from sources.graph_client import GraphCalendarClient
from sources.oauth import RefreshTokenProvider, StaticTokenProvider
from sources.youtube_client import YouTubeClient
from storage.calendar_cache import CalendarSnapshot
from storage.dynamodb_manager import DynamoDBManager
from storage.video_cache import (
    VideoCache,
    compute_watermarks,
    merge_records,
    pending_video_ids,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Summary of one sync run."""
    videos_fetched: int = 0
    videos_tracked: int = 0
    events_fetched: int = 0
    actions_planned: int = 0
    videos_discarded: int = 0
    result: SyncResult = field(default_factory=SyncResult)

    def statistics(self) -> Dict[str, int]:
        return {
            'videos_fetched': self.videos_fetched,
            'videos_tracked': self.videos_tracked,
            'videos_discarded': self.videos_discarded,
            'events_fetched': self.events_fetched,
            'actions_planned': self.actions_planned,
            'events_created': self.result.created,
            'events_updated': self.result.updated,
            'events_deleted': self.result.deleted,
            'events_unchanged': self.result.unchanged,
        }


def build_token_provider(config: AppConfig):
    if config.microsoft_access_token:
        return StaticTokenProvider(config.microsoft_access_token)
    return RefreshTokenProvider(
        client_id=config.microsoft_client_id,
        store_path=config.microsoft_token_path,
        client_secret=config.microsoft_client_secret
    )


def build_video_cache(config: AppConfig):
    if config.video_cache_table:
        return DynamoDBManager(config.video_cache_table)
    return VideoCache(config.video_cache_path)


def view_window(videos: List[VideoRecord], margin: timedelta) -> Optional[Tuple[datetime, datetime]]:
    """Calendar range covering every video start, widened by ``margin``."""
    starts = [
        video.actual_start or video.scheduled_start
        for video in videos
        if video.actual_start or video.scheduled_start
    ]
    if not starts:
        return None
    return min(starts) - margin, max(starts) + margin


class SyncJob:
    """Fetches videos and events, reconciles them and applies the result."""

    VIEW_MARGIN = timedelta(days=1)

    def __init__(
        self,
        config: AppConfig,
        dispatcher: AsyncDispatcher,
        youtube_client: YouTubeClient,
        calendar_client: GraphCalendarClient,
        video_cache,
        now: Optional[datetime] = None
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.youtube_client = youtube_client
        self.calendar_client = calendar_client
        self.video_cache = video_cache
        self.now = now

    @classmethod
    def from_config(cls, config: AppConfig) -> 'SyncJob':
        """Wire the collaborators described by ``config``."""
        dispatcher = AsyncDispatcher(config.concurrency)
        youtube_client = YouTubeClient(
            api_key=config.google_api_key,
            dispatcher=dispatcher,
            retry_limit=config.retry_limit,
            proxy=config.google_api_proxy,
            headers=config.google_api_headers
        )
        calendar_client = GraphCalendarClient(
            token_provider=build_token_provider(config),
            dispatcher=dispatcher,
            retry_limit=config.retry_limit,
            proxy=config.microsoft_api_proxy
        )
        return cls(config, dispatcher, youtube_client, calendar_client, build_video_cache(config))

    async def fetch_videos(self) -> Tuple[int, List[VideoRecord]]:
        """
        Refresh the video cache from YouTube.

        Searches run incrementally from each channel's watermark. Cached
        videos that are still live or upcoming are re-fetched so schedule
        changes are picked up.

        Returns:
            Tuple of (number of records fetched, tracked records)
        """
        cached = self.video_cache.load()
        ignored = set(self.config.ignore_video_ids)
        fetched = 0

        if self.config.offline:
            logger.info("Offline mode, using cached videos only")
            records = cached
        else:
            watermarks = compute_watermarks(cached.values())
            ids = await self.youtube_client.search_channels(self.config.channels, watermarks)
            pending = pending_video_ids(cached.values())
            ids = ids + pending + list(self.config.extra_video_ids)
            ids = [video_id for video_id in dict.fromkeys(ids) if video_id not in ignored]

            fresh = await self.youtube_client.fetch_videos(ids)
            fetched = len(fresh)
            records = merge_records(cached, fresh)

            returned = {record.video_id for record in fresh}
            vanished = [video_id for video_id in pending if video_id not in returned and video_id not in ignored]
            for video_id in vanished:
                logger.info(f"Video {video_id} is no longer available, dropping it from the cache")
                records.pop(video_id, None)

            stale = [video_id for video_id in records if video_id in ignored]
            for video_id in stale:
                records.pop(video_id)
            self.video_cache.save(records)
            if stale or vanished:
                self.video_cache.delete(stale + vanished)

        tracked_channels = {channel.channel_id for channel in self.config.channels}
        videos = [
            record for video_id, record in sorted(records.items())
            if video_id not in ignored and record.channel_id in tracked_channels
        ]
        return fetched, videos

    async def fetch_events(self, calendar_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        if self.config.calendar_cache_path:
            snapshot = CalendarSnapshot.open(self.config.calendar_cache_path, calendar_id)
            await snapshot.refresh(self.calendar_client, start, end)
            return snapshot.get_events(start, end)
        return await self.calendar_client.get_calendar_view(calendar_id, start, end)

    async def run(self) -> SyncReport:
        """
        Run one reconciliation pass.

        Raises:
            CalendarNotFoundError: If the configured calendar does not exist
            MergeConflictError: If stored event data has an unexpected shape
            RemoteRequestError: If a request exhausted its retry budget
        """
        report = SyncReport()
        report.videos_fetched, videos = await self.fetch_videos()
        report.videos_tracked = len(videos)

        window = view_window(videos, self.VIEW_MARGIN)
        if window is None:
            logger.info("No videos with a start time, nothing to sync")
            return report

        calendar_id = await self.calendar_client.find_calendar(self.config.outlook_calendar_name)
        events = await self.fetch_events(calendar_id, *window)
        report.events_fetched = len(events)

        reconciler = Reconciler(self.config.channels, calendar_id, now=self.now or datetime.now(timezone.utc))
        plan = reconciler.reconcile(videos, events)
        report.actions_planned = len(plan.actions)
        report.videos_discarded = plan.discarded

        executor = ActionExecutor(self.calendar_client, self.dispatcher, dry_run=self.config.dry_run)
        report.result = await executor.execute(plan.actions)
        report.result.unchanged = plan.unchanged

        logger.info(f"Dispatcher summary: {self.dispatcher.summary()}")
        return report
