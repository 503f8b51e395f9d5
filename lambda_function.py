"""AWS Lambda handler for the YouTube to Outlook calendar sync."""
import asyncio
import json
import logging
import os
import time
from typing import Any, Dict

from app_config import load_config
from sync_job import SyncJob


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _error_response(message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    return {
        'statusCode': 500,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(time.time() - start_time, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the calendar sync.

    Args:
        event: EventBridge event payload; ``dry_run`` may be set to true
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={'config_path': os.environ.get('CONFIG_PATH', 'config.json')}
    )

    try:
        config = load_config()
        if (event or {}).get('dry_run'):
            config.dry_run = True
    except Exception as e:
        logger.error(
            f"Invalid configuration: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response('Invalid configuration', e, start_time)

    try:
        job = SyncJob.from_config(config)
        logger.info("Synchronizing YouTube schedules with Outlook calendar")
        report = asyncio.run(job.run())
    except Exception as e:
        # Actions applied before the failure are kept
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(time.time() - start_time, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _error_response('Sync failed', e, start_time)

    duration = time.time() - start_time
    statistics = report.statistics()
    logger.info(
        "Lambda execution completed successfully",
        extra={'duration_seconds': round(duration, 2), **statistics}
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Sync completed successfully',
            'statistics': {**statistics, 'duration_seconds': round(duration, 2)},
            'errors': report.result.errors
        })
    }
