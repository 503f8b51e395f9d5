"""Local JSON cache of fetched video records."""
import json
import logging
import os
from datetime import datetime
from typing import Dict, Iterable, List

from processor.models import BROADCAST_LIVE, BROADCAST_UPCOMING, VideoRecord

logger = logging.getLogger(__name__)


def merge_records(cached: Dict[str, VideoRecord], fresh: Iterable[VideoRecord]) -> Dict[str, VideoRecord]:
    """Return the cache with freshly fetched records superseding old ones."""
    merged = dict(cached)
    for record in fresh:
        merged[record.video_id] = record
    return merged


def compute_watermarks(records: Iterable[VideoRecord]) -> Dict[str, datetime]:
    """
    Latest ``published_at`` per channel.

    Returns:
        Mapping of channel id to the publish time of its newest cached video
    """
    watermarks: Dict[str, datetime] = {}
    for record in records:
        if record.published_at is None:
            continue
        current = watermarks.get(record.channel_id)
        if current is None or record.published_at > current:
            watermarks[record.channel_id] = record.published_at
    return watermarks


def pending_video_ids(records: Iterable[VideoRecord]) -> List[str]:
    """Ids of cached videos that are still live or upcoming."""
    return [
        record.video_id for record in records
        if record.broadcast_status in (BROADCAST_LIVE, BROADCAST_UPCOMING)
    ]


class VideoCache:
    """Video records stored as a JSON array in a local file."""

    def __init__(self, path: str):
        """
        Initialize the cache.

        Args:
            path: Path of the JSON file
        """
        self.path = path

    def load(self) -> Dict[str, VideoRecord]:
        """
        Read cached records.

        Returns:
            Mapping of video id to record; empty if the file does not exist
        """
        if not os.path.exists(self.path):
            logger.info(f"No video cache at {self.path}")
            return {}

        with open(self.path, 'r', encoding='utf-8') as f:
            items = json.load(f)

        records = {}
        for item in items:
            try:
                record = VideoRecord.from_dict(item)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed cached video: {e}")
                continue
            records[record.video_id] = record
        logger.info(f"Loaded {len(records)} videos from {self.path}")
        return records

    def save(self, records: Dict[str, VideoRecord]) -> int:
        """
        Write every record, sorted by video id.

        Returns:
            Number of records written
        """
        items = [records[video_id].to_dict() for video_id in sorted(records)]
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(items, f, indent=4, ensure_ascii=False)
        os.replace(tmp_path, self.path)

        logger.info(f"Saved {len(items)} videos to {self.path}")
        return len(items)

    def delete(self, video_ids: List[str]) -> int:
        """Remove videos from the cache file."""
        records = self.load()
        removed = [video_id for video_id in video_ids if records.pop(video_id, None)]
        if removed:
            self.save(records)
        return len(removed)
