"""Configuration for the YouTube to Outlook sync job."""
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from processor.exceptions import ConfigError
from processor.models import ChannelConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.json'

# Environment variable -> (config field, type)
ENV_OVERRIDES = {
    'GOOGLE_API_KEY': ('google_api_key', str),
    'GOOGLE_API_PROXY': ('google_api_proxy', str),
    'MICROSOFT_API_PROXY': ('microsoft_api_proxy', str),
    'OUTLOOK_CALENDAR_NAME': ('outlook_calendar_name', str),
    'MICROSOFT_ACCESS_TOKEN': ('microsoft_access_token', str),
    'MICROSOFT_TOKEN_PATH': ('microsoft_token_path', str),
    'MICROSOFT_CLIENT_ID': ('microsoft_client_id', str),
    'MICROSOFT_CLIENT_SECRET': ('microsoft_client_secret', str),
    'VIDEO_CACHE_PATH': ('video_cache_path', str),
    'VIDEO_CACHE_TABLE': ('video_cache_table', str),
    'CALENDAR_CACHE_PATH': ('calendar_cache_path', str),
    'CONCURRENCY': ('concurrency', int),
    'RETRY_LIMIT': ('retry_limit', int),
    'DRY_RUN': ('dry_run', bool),
    'OFFLINE': ('offline', bool),
}


@dataclass
class AppConfig:
    """Settings for one sync run."""
    channels: List[ChannelConfig]
    outlook_calendar_name: str
    google_api_key: Optional[str] = None
    google_api_headers: Dict[str, str] = field(default_factory=dict)
    google_api_proxy: Optional[str] = None
    microsoft_api_proxy: Optional[str] = None
    microsoft_access_token: Optional[str] = None
    microsoft_token_path: Optional[str] = None
    microsoft_client_id: Optional[str] = None
    microsoft_client_secret: Optional[str] = None
    extra_video_ids: List[str] = field(default_factory=list)
    ignore_video_ids: List[str] = field(default_factory=list)
    video_cache_path: str = 'youtube.json'
    video_cache_table: Optional[str] = None
    calendar_cache_path: Optional[str] = None
    concurrency: int = 10
    retry_limit: Optional[int] = 10
    dry_run: bool = False
    offline: bool = False


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_channels(raw: Any) -> List[ChannelConfig]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError('youtube_channels must be a non-empty list')

    channels = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"youtube_channels[{index}] must be an object")
        channel_id = item.get('id')
        nickname = item.get('nickname')
        if not channel_id or not nickname:
            raise ConfigError(f"youtube_channels[{index}] requires 'id' and 'nickname'")
        aliases = item.get('aliases') or []
        if not isinstance(aliases, list):
            raise ConfigError(f"youtube_channels[{index}].aliases must be a list")
        channels.append(ChannelConfig(channel_id=channel_id, nickname=nickname, aliases=list(aliases)))

    ids = [channel.channel_id for channel in channels]
    if len(set(ids)) != len(ids):
        raise ConfigError('youtube_channels contains duplicate channel ids')
    return channels


def build_config(
    data: Mapping[str, Any],
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None
) -> AppConfig:
    """
    Build and validate the configuration.

    Args:
        data: Parsed configuration file
        environ: Environment variables overriding scalar settings
        overrides: Settings taking precedence over file and environment,
            e.g. command line flags

    Returns:
        AppConfig

    Raises:
        ConfigError: If a required field is missing or malformed
    """
    values = dict(data)
    environ = environ if environ is not None else os.environ

    for variable, (name, kind) in ENV_OVERRIDES.items():
        raw = environ.get(variable)
        if raw is None or raw == '':
            continue
        try:
            if kind is bool:
                values[name] = _parse_bool(raw)
            else:
                values[name] = kind(raw)
        except ValueError as e:
            raise ConfigError(f"invalid value for {variable}: {raw}") from e

    values.update(overrides or {})

    calendar_name = values.get('outlook_calendar_name')
    if not calendar_name:
        raise ConfigError('outlook_calendar_name is required')

    retry_limit = values.get('retry_limit', 10)
    if retry_limit is not None and retry_limit <= 0:
        # 0 or a negative limit means retry forever
        retry_limit = None

    config = AppConfig(
        channels=_parse_channels(values.get('youtube_channels')),
        outlook_calendar_name=calendar_name,
        google_api_key=values.get('google_api_key'),
        google_api_headers=dict(values.get('google_api_headers') or {}),
        google_api_proxy=values.get('google_api_proxy'),
        microsoft_api_proxy=values.get('microsoft_api_proxy'),
        microsoft_access_token=values.get('microsoft_access_token'),
        microsoft_token_path=values.get('microsoft_token_path'),
        microsoft_client_id=values.get('microsoft_client_id'),
        microsoft_client_secret=values.get('microsoft_client_secret'),
        extra_video_ids=list(values.get('extra_video_ids') or []),
        ignore_video_ids=list(values.get('ignore_video_ids') or []),
        video_cache_path=values.get('video_cache_path') or 'youtube.json',
        video_cache_table=values.get('video_cache_table'),
        calendar_cache_path=values.get('calendar_cache_path'),
        concurrency=int(values.get('concurrency', 10)),
        retry_limit=retry_limit,
        dry_run=bool(values.get('dry_run', False)),
        offline=bool(values.get('offline', False))
    )

    if config.concurrency < 1:
        raise ConfigError('concurrency must be at least 1')
    if not config.offline and not config.google_api_key:
        raise ConfigError('google_api_key is required unless running offline')
    if not config.microsoft_access_token and not (config.microsoft_token_path and config.microsoft_client_id):
        raise ConfigError(
            'microsoft_access_token, or microsoft_token_path with microsoft_client_id, is required'
        )
    return config


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None
) -> AppConfig:
    """
    Load configuration from a JSON file with environment overrides.

    Args:
        path: Config file path; defaults to ``CONFIG_PATH`` or config.json
        environ: Environment mapping (default: os.environ)
        overrides: Settings applied before validation, see build_config

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    environ = environ if environ is not None else os.environ
    path = path or environ.get('CONFIG_PATH') or DEFAULT_CONFIG_PATH

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except ValueError as e:
        raise ConfigError(f"config file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")

    logger.info(f"Loaded configuration from {path}")
    return build_config(data, environ, overrides)
