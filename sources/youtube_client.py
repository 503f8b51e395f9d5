"""YouTube Data API v3 client for live stream schedules."""
import logging
import secrets
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from dispatch.async_dispatcher import AsyncDispatcher
from processor.models import ChannelConfig, VideoRecord, format_timestamp
from sources.http_client import JsonHttpClient

logger = logging.getLogger(__name__)


class YouTubeClient:
    """Client for the ``search`` and ``videos`` endpoints."""

    BASE_URL = "https://content.googleapis.com/youtube/v3"
    EVENT_TYPES = ('completed', 'live', 'upcoming')
    MAX_IDS_PER_REQUEST = 50
    QUOTA_RETRY_DELAY = 2.0

    def __init__(
        self,
        api_key: str,
        dispatcher: AsyncDispatcher,
        timeout: int = 10,
        retry_limit: Optional[int] = 10,
        proxy: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        """
        Initialize the YouTube client.

        Args:
            api_key: Google API key with YouTube Data API v3 access
            dispatcher: Dispatcher admitting each request
            timeout: HTTP request timeout in seconds (default: 10)
            retry_limit: Attempts per request, None to retry forever
            proxy: Optional HTTP(S) proxy URL
            headers: Extra headers, e.g. a referer for restricted keys
        """
        self.api_key = api_key
        self.http = JsonHttpClient(
            self.BASE_URL,
            dispatcher,
            timeout=timeout,
            retry_limit=retry_limit,
            retry_delay=self.QUOTA_RETRY_DELAY,
            proxy=proxy,
            headers=headers
        )

    async def _get(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        query = {'key': self.api_key, 'quotaUser': secrets.token_hex(20)}
        for key, value in params.items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                query[key] = ','.join(value)
            else:
                query[key] = str(value)
        return await self.http.request('GET', endpoint, params=query) or {}

    async def search(
        self,
        channel_id: str,
        event_type: str,
        published_after: Optional[datetime] = None,
        page_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Fetch one page of a channel's videos of the given event type."""
        return await self._get('search', {
            'part': 'id',
            'channelId': channel_id,
            'type': 'video',
            'eventType': event_type,
            'order': 'date',
            'maxResults': self.MAX_IDS_PER_REQUEST,
            'publishedAfter': format_timestamp(published_after) if published_after else None,
            'pageToken': page_token,
        })

    async def search_all(
        self,
        channel_id: str,
        event_type: str,
        published_after: Optional[datetime] = None
    ) -> List[str]:
        """
        Collect every video id of a search, following ``nextPageToken``.

        Args:
            channel_id: YouTube channel id
            event_type: One of ``completed``, ``live`` or ``upcoming``
            published_after: Only return videos published after this time

        Returns:
            Video ids in the order returned by the API
        """
        ids: List[str] = []
        page_token = None
        while True:
            result = await self.search(channel_id, event_type, published_after, page_token)
            for item in result.get('items', []):
                video_id = (item.get('id') or {}).get('videoId')
                if video_id:
                    ids.append(video_id)
            page_token = result.get('nextPageToken')
            if not page_token:
                return ids

    async def videos_by_ids(self, ids: List[str]) -> Dict[str, Any]:
        """Fetch snippet and live streaming details for up to 50 videos."""
        if len(ids) > self.MAX_IDS_PER_REQUEST:
            raise ValueError(
                f"at most {self.MAX_IDS_PER_REQUEST} ids per request, got {len(ids)}"
            )
        return await self._get('videos', {
            'part': ['snippet', 'liveStreamingDetails'],
            'id': ids,
        })

    async def fetch_videos(self, ids: Iterable[str]) -> List[VideoRecord]:
        """
        Fetch video records for any number of ids in chunks of 50.

        Returns:
            Records in the order of the requested ids; unknown ids are skipped
        """
        unique = list(dict.fromkeys(ids))
        chunks = [
            unique[i:i + self.MAX_IDS_PER_REQUEST]
            for i in range(0, len(unique), self.MAX_IDS_PER_REQUEST)
        ]
        responses = await self.http.dispatcher.gather(
            self.videos_by_ids(chunk) for chunk in chunks
        )

        records = []
        for response in responses:
            for item in response.get('items', []):
                try:
                    records.append(VideoRecord.from_api(item))
                except (KeyError, ValueError) as e:
                    logger.warning(f"Skipping malformed video resource: {e}")
        logger.info(f"Fetched details for {len(records)} of {len(unique)} videos")
        return records

    async def search_channels(
        self,
        channels: List[ChannelConfig],
        watermarks: Optional[Dict[str, datetime]] = None
    ) -> List[str]:
        """
        Search every channel for completed, live and upcoming videos.

        Args:
            channels: Channels to search
            watermarks: Per channel id, only videos published after this time

        Returns:
            Deduplicated video ids
        """
        watermarks = watermarks or {}
        searches = [
            (channel, event_type)
            for channel in channels
            for event_type in self.EVENT_TYPES
        ]
        results = await self.http.dispatcher.gather(
            self.search_all(channel.channel_id, event_type, watermarks.get(channel.channel_id))
            for channel, event_type in searches
        )

        ids: List[str] = []
        for (channel, event_type), found in zip(searches, results):
            logger.info(f"Found {len(found)} {event_type} videos for {channel.nickname}")
            ids.extend(found)
        return list(dict.fromkeys(ids))
