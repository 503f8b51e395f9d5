"""Unit tests for SyncJob."""
from datetime import datetime, timedelta, timezone

import pytest

from app_config import build_config
from dispatch.async_dispatcher import AsyncDispatcher
from processor.body_codec import encode_body
from processor.models import CalendarEvent, EventBody, VideoRecord
from storage.video_cache import VideoCache
from sync_job import SyncJob, view_window

NOW = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
START = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)


def make_video(video_id, status='upcoming', start=START, channel_id='UC1'):
    return VideoRecord(
        video_id=video_id,
        channel_id=channel_id,
        title=f"[LIVE] Stream {video_id}",
        broadcast_status=status,
        published_at=NOW - timedelta(days=1),
        scheduled_start=start
    )


class FakeYouTubeClient:
    def __init__(self, search_ids=None, videos=None):
        self.search_ids = search_ids or []
        self.videos = {video.video_id: video for video in videos or []}
        self.searched = []
        self.requested = []

    async def search_channels(self, channels, watermarks=None):
        self.searched.append(watermarks)
        return list(self.search_ids)

    async def fetch_videos(self, ids):
        self.requested.append(list(ids))
        return [self.videos[video_id] for video_id in ids if video_id in self.videos]


class FakeCalendarClient:
    def __init__(self, events=None):
        self.events = events or []
        self.created = []
        self.updated = []
        self.deleted = []
        self.view = None

    async def find_calendar(self, name):
        return 'cal-1'

    async def get_calendar_view(self, calendar_id, start, end):
        self.view = (start, end)
        return list(self.events)

    async def create_event(self, calendar_id, payload):
        self.created.append(payload)
        return {'id': f"new-{len(self.created)}"}

    async def update_event(self, event_id, payload):
        self.updated.append((event_id, payload))
        return {'id': event_id}

    async def delete_event(self, event_id):
        self.deleted.append(event_id)


@pytest.fixture
def config(tmp_path):
    return build_config({
        'youtube_channels': [{'id': 'UC1', 'nickname': 'Foo'}],
        'outlook_calendar_name': 'YouTube',
        'google_api_key': 'key',
        'microsoft_access_token': 'token',
        'video_cache_path': str(tmp_path / 'youtube.json'),
    }, environ={})


def make_job(config, youtube, calendar):
    return SyncJob(config, AsyncDispatcher(), youtube, calendar,
                   VideoCache(config.video_cache_path), now=NOW)


class TestSyncJob:
    """Test cases for a full sync pass."""

    @pytest.mark.asyncio
    async def test_new_video_creates_event(self, config):
        """Test a newly found stream becomes a calendar event and is cached."""
        youtube = FakeYouTubeClient(search_ids=['abc'], videos=[make_video('abc')])
        calendar = FakeCalendarClient()

        report = await make_job(config, youtube, calendar).run()

        assert [payload['subject'] for payload in calendar.created] == ['Foo - Stream abc']
        assert report.statistics()['events_created'] == 1
        assert report.statistics()['videos_fetched'] == 1
        assert calendar.view == (START - timedelta(days=1), START + timedelta(days=1))
        assert list(VideoCache(config.video_cache_path).load()) == ['abc']

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, config):
        """Test an event already in sync produces no requests."""
        video = make_video('abc')
        body = EventBody(
            original_title=video.title,
            references=[video.watch_url],
            youtube_id='abc'
        )
        event = CalendarEvent(event_id='ev-1', subject='Foo - Stream abc', start=START,
                              end=START + timedelta(hours=1), body=encode_body(body))
        youtube = FakeYouTubeClient(search_ids=['abc'], videos=[video])
        calendar = FakeCalendarClient(events=[event])

        report = await make_job(config, youtube, calendar).run()

        assert calendar.created == calendar.updated == calendar.deleted == []
        assert report.statistics()['events_unchanged'] == 1

    @pytest.mark.asyncio
    async def test_cached_upcoming_videos_are_refreshed(self, config):
        """Test pending videos are re-fetched and search starts at the watermark."""
        VideoCache(config.video_cache_path).save({'old': make_video('old')})
        youtube = FakeYouTubeClient(videos=[make_video('old', status='live')])

        await make_job(config, youtube, FakeCalendarClient()).run()

        assert youtube.requested == [['old']]
        assert youtube.searched == [{'UC1': NOW - timedelta(days=1)}]
        assert VideoCache(config.video_cache_path).load()['old'].broadcast_status == 'live'

    @pytest.mark.asyncio
    async def test_vanished_video_is_dropped(self, config):
        VideoCache(config.video_cache_path).save({'gone': make_video('gone')})
        calendar = FakeCalendarClient()

        report = await make_job(config, FakeYouTubeClient(), calendar).run()

        assert VideoCache(config.video_cache_path).load() == {}
        assert report.videos_tracked == 0
        assert calendar.view is None

    @pytest.mark.asyncio
    async def test_extra_and_ignored_ids(self, config):
        """Test extra ids are fetched and ignored ids never reach the calendar."""
        config.extra_video_ids = ['extra']
        config.ignore_video_ids = ['skip']
        youtube = FakeYouTubeClient(
            search_ids=['skip', 'abc'],
            videos=[make_video('abc'), make_video('extra', start=START + timedelta(hours=3))]
        )
        calendar = FakeCalendarClient()

        await make_job(config, youtube, calendar).run()

        assert youtube.requested == [['abc', 'extra']]
        assert sorted(payload['subject'] for payload in calendar.created) == [
            'Foo - Stream abc', 'Foo - Stream extra',
        ]

    @pytest.mark.asyncio
    async def test_offline_uses_cache_only(self, config):
        config.offline = True
        VideoCache(config.video_cache_path).save({'abc': make_video('abc')})
        youtube = FakeYouTubeClient()
        calendar = FakeCalendarClient()

        await make_job(config, youtube, calendar).run()

        assert youtube.searched == []
        assert len(calendar.created) == 1

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, config):
        config.dry_run = True
        youtube = FakeYouTubeClient(search_ids=['abc'], videos=[make_video('abc')])
        calendar = FakeCalendarClient()

        report = await make_job(config, youtube, calendar).run()

        assert calendar.created == []
        assert report.actions_planned == 1


def test_view_window_without_start_times():
    video = VideoRecord(video_id='a', channel_id='UC1', title='t', broadcast_status='none')

    assert view_window([video], timedelta(days=1)) is None
