"""Unit tests for the local video cache."""
import json
from datetime import datetime, timezone

import pytest

from processor.models import VideoRecord
from storage.video_cache import (
    VideoCache,
    compute_watermarks,
    merge_records,
    pending_video_ids,
)


def make_record(video_id, channel_id='UC1', status='none', published_day=1):
    return VideoRecord(
        video_id=video_id,
        channel_id=channel_id,
        title=f"Stream {video_id}",
        broadcast_status=status,
        published_at=datetime(2024, 1, published_day, tzinfo=timezone.utc),
        scheduled_start=datetime(2024, 1, published_day, 20, 0, tzinfo=timezone.utc)
    )


@pytest.fixture
def cache(tmp_path):
    return VideoCache(str(tmp_path / 'youtube.json'))


class TestVideoCache:
    """Test cases for the JSON file cache."""

    def test_load_missing_file(self, cache):
        assert cache.load() == {}

    def test_save_and_load(self, cache):
        records = {'b': make_record('b'), 'a': make_record('a', status='upcoming')}

        assert cache.save(records) == 2
        assert cache.load() == records

    def test_save_sorts_by_video_id(self, cache):
        """Test the file lists records in video id order."""
        cache.save({'b': make_record('b'), 'a': make_record('a')})

        with open(cache.path, encoding='utf-8') as f:
            items = json.load(f)
        assert [item['video_id'] for item in items] == ['a', 'b']

    def test_load_skips_malformed_entries(self, cache):
        with open(cache.path, 'w', encoding='utf-8') as f:
            json.dump([{'video_id': 'broken'}, make_record('a').to_dict()], f)

        assert list(cache.load()) == ['a']

    def test_delete(self, cache):
        cache.save({'a': make_record('a'), 'b': make_record('b')})

        assert cache.delete(['a', 'missing']) == 1
        assert list(cache.load()) == ['b']


class TestHelpers:
    """Test cases for cache bookkeeping helpers."""

    def test_merge_records_prefers_fresh(self):
        cached = {'a': make_record('a', status='upcoming'), 'b': make_record('b')}
        fresh = [make_record('a', status='live')]

        merged = merge_records(cached, fresh)

        assert merged['a'].broadcast_status == 'live'
        assert merged['b'] is cached['b']

    def test_compute_watermarks(self):
        """Test the newest publish time is tracked per channel."""
        records = [
            make_record('a', 'UC1', published_day=3),
            make_record('b', 'UC1', published_day=5),
            make_record('c', 'UC2', published_day=2),
        ]

        assert compute_watermarks(records) == {
            'UC1': datetime(2024, 1, 5, tzinfo=timezone.utc),
            'UC2': datetime(2024, 1, 2, tzinfo=timezone.utc),
        }

    def test_pending_video_ids(self):
        """Test that live and upcoming videos are refreshed."""
        records = [
            make_record('a', status='none'),
            make_record('b', status='live'),
            make_record('c', status='upcoming'),
        ]

        assert pending_video_ids(records) == ['b', 'c']
