"""DynamoDB-backed video cache for Lambda deployments."""
import logging
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import VideoRecord

logger = logging.getLogger(__name__)


class DynamoDBManager:
    """Stores video records in a DynamoDB table keyed by ``video_id``."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def load(self) -> Dict[str, VideoRecord]:
        """
        Retrieve all cached videos using a Scan operation.

        Returns:
            Dictionary mapping video_id to VideoRecord objects
        """
        logger.info("Scanning DynamoDB table for cached videos")
        try:
            response = self.table.scan()
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

        records = {}
        for item in items:
            record = self._item_to_record(item)
            if record:
                records[record.video_id] = record

        logger.info(f"Retrieved {len(records)} videos from DynamoDB")
        return records

    def save(self, records: Dict[str, VideoRecord]) -> int:
        """
        Write every record in batches of 25 items.

        Returns:
            Count of written records

        Raises:
            ClientError: If a batch cannot be written
        """
        if not records:
            return 0

        values = [records[video_id] for video_id in sorted(records)]
        logger.info(f"Writing {len(values)} videos to DynamoDB")
        written = 0

        for i in range(0, len(values), self.BATCH_SIZE):
            batch = values[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for record in batch:
                        writer.put_item(Item=record.to_dict())
                        written += 1
            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                raise

        logger.info(f"Successfully wrote {written} videos")
        return written

    def delete(self, video_ids: List[str]) -> int:
        """Remove videos from the cache, e.g. ids that are now ignored."""
        if not video_ids:
            return 0

        deleted = 0
        for i in range(0, len(video_ids), self.BATCH_SIZE):
            batch = video_ids[i:i + self.BATCH_SIZE]
            with self.table.batch_writer() as writer:
                for video_id in batch:
                    writer.delete_item(Key={'video_id': video_id})
                    deleted += 1

        logger.info(f"Deleted {deleted} videos from DynamoDB")
        return deleted

    def _item_to_record(self, item: dict) -> Optional[VideoRecord]:
        """
        Convert a DynamoDB item to a VideoRecord.

        Returns:
            VideoRecord, or None if the item is malformed
        """
        try:
            return VideoRecord.from_dict(item)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to convert item to VideoRecord: {e}")
            return None
