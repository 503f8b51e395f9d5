"""Unit tests for YouTubeClient."""
from datetime import datetime, timezone

import pytest
import responses
from responses import matchers

from dispatch.async_dispatcher import AsyncDispatcher
from processor.exceptions import RemoteRequestError
from processor.models import ChannelConfig
from sources.youtube_client import YouTubeClient

SEARCH_URL = "https://content.googleapis.com/youtube/v3/search"
VIDEOS_URL = "https://content.googleapis.com/youtube/v3/videos"


def video_item(video_id, **details):
    return {
        'id': video_id,
        'snippet': {
            'publishedAt': '2023-12-30T08:00:00Z',
            'channelId': 'UC1',
            'title': f"[LIVE] {video_id}",
            'liveBroadcastContent': 'upcoming',
        },
        'liveStreamingDetails': details or {'scheduledStartTime': '2024-01-01T10:00:00Z'},
    }


@pytest.fixture
def client():
    youtube = YouTubeClient(api_key='test-key', dispatcher=AsyncDispatcher(concurrency=2))
    youtube.http.retry_delay = 0
    return youtube


class TestYouTubeClient:
    """Test cases for YouTubeClient."""

    @pytest.mark.asyncio
    async def test_search_all_follows_page_tokens(self, client):
        """Test that every page of a search is collected."""
        with responses.RequestsMock() as rsps:
            rsps.add(
                responses.GET, SEARCH_URL,
                json={'items': [{'id': {'videoId': 'a'}}, {'id': {'videoId': 'b'}}],
                      'nextPageToken': 'page-2'},
                match=[matchers.query_param_matcher({
                    'channelId': 'UC1', 'eventType': 'upcoming', 'key': 'test-key',
                }, strict_match=False)]
            )
            rsps.add(
                responses.GET, SEARCH_URL,
                json={'items': [{'id': {'videoId': 'c'}}]},
                match=[matchers.query_param_matcher({'pageToken': 'page-2'}, strict_match=False)]
            )

            ids = await client.search_all('UC1', 'upcoming')

        assert ids == ['a', 'b', 'c']

    @pytest.mark.asyncio
    async def test_search_sends_published_after(self, client):
        with responses.RequestsMock() as rsps:
            rsps.add(
                responses.GET, SEARCH_URL,
                json={'items': []},
                match=[matchers.query_param_matcher({
                    'publishedAfter': '2024-01-01T00:00:00Z',
                    'type': 'video',
                    'order': 'date',
                    'maxResults': '50',
                }, strict_match=False)]
            )

            await client.search('UC1', 'live', datetime(2024, 1, 1, tzinfo=timezone.utc))

    @pytest.mark.asyncio
    async def test_quota_exceeded_is_retried(self, client):
        """Test that quota errors are treated as transient."""
        quota_error = {'error': {'code': 403, 'message': 'Quota exceeded',
                                 'errors': [{'reason': 'quotaExceeded'}]}}
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, VIDEOS_URL, json=quota_error, status=403)
            rsps.add(responses.GET, VIDEOS_URL, json={'items': [video_item('a')]})

            result = await client.videos_by_ids(['a'])

            assert len(rsps.calls) == 2
        assert result['items'][0]['id'] == 'a'

    @pytest.mark.asyncio
    async def test_permanent_error_is_raised(self, client):
        error = {'error': {'code': 400, 'message': 'Bad request',
                           'errors': [{'reason': 'invalidChannelId'}]}}
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, SEARCH_URL, json=error, status=400)

            with pytest.raises(RemoteRequestError) as excinfo:
                await client.search('bad', 'live')

            assert len(rsps.calls) == 1
        assert excinfo.value.status == 400
        assert excinfo.value.reason == 'invalidChannelId'
        assert 'Bad request' in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_videos_by_ids_limit(self, client):
        with pytest.raises(ValueError):
            await client.videos_by_ids([str(i) for i in range(51)])

    @pytest.mark.asyncio
    async def test_fetch_videos_chunks_requests(self, client):
        """Test that ids are requested in chunks of 50."""
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, VIDEOS_URL, json={'items': [video_item('v0')]})
            rsps.add(responses.GET, VIDEOS_URL, json={'items': [video_item('v50')]})

            records = await client.fetch_videos([f"v{i}" for i in range(60)])

            assert len(rsps.calls) == 2
        assert sorted(record.video_id for record in records) == ['v0', 'v50']

    @pytest.mark.asyncio
    async def test_fetch_videos_parses_records(self, client):
        item = video_item(
            'abc',
            actualStartTime='2024-01-01T10:02:00Z',
            scheduledStartTime='2024-01-01T10:00:00Z'
        )
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, VIDEOS_URL, json={'items': [item]})

            records = await client.fetch_videos(['abc'])

        record = records[0]
        assert record.channel_id == 'UC1'
        assert record.title == '[LIVE] abc'
        assert record.broadcast_status == 'upcoming'
        assert record.actual_start == datetime(2024, 1, 1, 10, 2, tzinfo=timezone.utc)
        assert record.scheduled_end is None

    @pytest.mark.asyncio
    async def test_search_channels_covers_event_types(self, client):
        """Test each channel is searched for completed, live and upcoming."""
        with responses.RequestsMock() as rsps:
            for event_type, video_id in (('completed', 'a'), ('live', 'b'), ('upcoming', 'a')):
                rsps.add(
                    responses.GET, SEARCH_URL,
                    json={'items': [{'id': {'videoId': video_id}}]},
                    match=[matchers.query_param_matcher({'eventType': event_type}, strict_match=False)]
                )

            ids = await client.search_channels([ChannelConfig(channel_id='UC1', nickname='Foo')])

        assert ids == ['a', 'b']
