"""Command line entry point for running the sync outside Lambda."""
import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from typing import List, Optional

from app_config import load_config
from lambda_function import setup_logging
from processor.exceptions import SyncError
from processor.models import parse_timestamp
from processor.week_report import write_report
from sync_job import SyncJob

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='yt-outlook-sync',
        description='Mirror YouTube live stream schedules into an Outlook calendar.'
    )
    parser.add_argument('--config', help='Path to the JSON config file (default: $CONFIG_PATH or config.json)')
    parser.add_argument('--log-level', default='INFO', help='DEBUG, INFO, WARNING or ERROR')
    subparsers = parser.add_subparsers(dest='command', required=True)

    sync = subparsers.add_parser('sync', help='Run one reconciliation pass')
    sync.add_argument('--dry-run', action='store_true', help='Log actions without applying them')
    sync.add_argument('--offline', action='store_true', help='Use cached videos instead of calling YouTube')

    report = subparsers.add_parser('week-report', help='Export scheduled streams as CSV')
    report.add_argument('--start', required=True, help='ISO 8601 start of the range')
    report.add_argument('--end', help='ISO 8601 end of the range (default: start + 7 days)')
    report.add_argument('--output', default='week.csv', help='CSV file to write (default: week.csv)')
    return parser


async def _week_report(job: SyncJob, start: str, end: Optional[str], output: str) -> int:
    range_start = parse_timestamp(start)
    range_end = parse_timestamp(end) if end else range_start + timedelta(days=7)
    calendar_id = await job.calendar_client.find_calendar(job.config.outlook_calendar_name)
    events = await job.calendar_client.get_calendar_view(calendar_id, range_start, range_end)
    return write_report(events, output)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        overrides = {}
        if args.command == 'sync':
            if args.dry_run:
                overrides['dry_run'] = True
            if args.offline:
                overrides['offline'] = True
        config = load_config(args.config, overrides=overrides)
        if args.command == 'sync':
            job = SyncJob.from_config(config)
            report = asyncio.run(job.run())
            logger.info(f"Sync finished: {report.statistics()}")
        else:
            job = SyncJob.from_config(config)
            asyncio.run(_week_report(job, args.start, args.end, args.output))
    except (SyncError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
