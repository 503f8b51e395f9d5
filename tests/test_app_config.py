"""Unit tests for configuration loading."""
import json

import pytest

from app_config import build_config, load_config
from processor.exceptions import ConfigError


@pytest.fixture
def config_data():
    return {
        'youtube_channels': [
            {'id': 'UC1', 'nickname': 'Foo', 'aliases': ['Old Foo']},
            {'id': 'UC2', 'nickname': 'Bar'},
        ],
        'outlook_calendar_name': 'YouTube',
        'google_api_key': 'key',
        'microsoft_access_token': 'token',
    }


class TestBuildConfig:
    """Test cases for build_config."""

    def test_valid_config(self, config_data):
        config = build_config(config_data, environ={})

        assert [channel.nickname for channel in config.channels] == ['Foo', 'Bar']
        assert config.channels[0].aliases == ['Old Foo']
        assert config.outlook_calendar_name == 'YouTube'
        assert config.concurrency == 10
        assert config.retry_limit == 10
        assert config.video_cache_path == 'youtube.json'
        assert config.dry_run is False

    def test_environment_overrides(self, config_data):
        """Test environment variables take precedence over the file."""
        config = build_config(config_data, environ={
            'GOOGLE_API_KEY': 'env-key',
            'CONCURRENCY': '4',
            'DRY_RUN': 'true',
            'VIDEO_CACHE_TABLE': 'videos',
        })

        assert config.google_api_key == 'env-key'
        assert config.concurrency == 4
        assert config.dry_run is True
        assert config.video_cache_table == 'videos'

    def test_invalid_environment_value(self, config_data):
        with pytest.raises(ConfigError, match='CONCURRENCY'):
            build_config(config_data, environ={'CONCURRENCY': 'many'})

    def test_non_positive_retry_limit_is_unbounded(self, config_data):
        config_data['retry_limit'] = 0

        assert build_config(config_data, environ={}).retry_limit is None

    @pytest.mark.parametrize('mutate', [
        lambda data: data.pop('outlook_calendar_name'),
        lambda data: data.pop('google_api_key'),
        lambda data: data.pop('microsoft_access_token'),
        lambda data: data.update(youtube_channels=[]),
        lambda data: data.update(youtube_channels=[{'id': 'UC1'}]),
        lambda data: data.update(youtube_channels=[{'id': 'UC1', 'nickname': 'A'},
                                                   {'id': 'UC1', 'nickname': 'B'}]),
        lambda data: data.update(concurrency=0),
    ])
    def test_invalid_config(self, config_data, mutate):
        """Test that missing or malformed settings are rejected."""
        mutate(config_data)

        with pytest.raises(ConfigError):
            build_config(config_data, environ={})

    def test_offline_needs_no_google_key(self, config_data):
        config_data.pop('google_api_key')
        config_data['offline'] = True

        assert build_config(config_data, environ={}).offline is True

    def test_overrides_applied_before_validation(self, config_data):
        """Test overrides win over file and environment and are validated."""
        config_data.pop('google_api_key')

        config = build_config(config_data, environ={'OFFLINE': 'false'}, overrides={'offline': True})

        assert config.offline is True

    def test_refresh_token_settings_replace_access_token(self, config_data):
        config_data.pop('microsoft_access_token')
        config_data['microsoft_token_path'] = 'token.json'
        config_data['microsoft_client_id'] = 'client'

        config = build_config(config_data, environ={})

        assert config.microsoft_token_path == 'token.json'


class TestLoadConfig:
    """Test cases for load_config."""

    def test_load_from_config_path(self, tmp_path, config_data):
        path = tmp_path / 'settings.json'
        path.write_text(json.dumps(config_data), encoding='utf-8')

        config = load_config(environ={'CONFIG_PATH': str(path)})

        assert config.outlook_calendar_name == 'YouTube'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match='not found'):
            load_config(str(tmp_path / 'missing.json'), environ={})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('{not json', encoding='utf-8')

        with pytest.raises(ConfigError, match='not valid JSON'):
            load_config(str(path), environ={})
