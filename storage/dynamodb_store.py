"""DynamoDB-backed store for economic calendar events."""
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import List

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from processor.errors import StoreError
from processor.models import EconomicEvent, NaturalKey, WriteResult

logger = logging.getLogger(__name__)


def generate_event_key(key: NaturalKey) -> str:
    """
    Generate the partition key for an event from its natural key.

    Args:
        key: (timestamp, title, currency) of the event

    Returns:
        SHA256 hex digest of the UTC timestamp, title and currency
    """
    timestamp = key.timestamp.astimezone(timezone.utc).isoformat()
    composite = f"{timestamp}|{key.title}|{key.currency.value}"
    return hashlib.sha256(composite.encode('utf-8')).hexdigest()


class DynamoDBEventStore:
    """Event store on a DynamoDB table keyed by natural-key hash."""

    TTL_DAYS = 90

    def __init__(self, table_name: str, timeout: int = 10, name: str = 'dynamodb'):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            timeout: Connect and read timeout in seconds for each call
            name: Destination name used in logs and tallies
        """
        self.table_name = table_name
        self.name = name
        config = Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={'max_attempts': 1}
        )
        self.dynamodb = boto3.resource('dynamodb', config=config)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBEventStore for table: {table_name}")

    def get_in_range(self, start: datetime, end: datetime) -> List[EconomicEvent]:
        """
        Retrieve events with a timestamp between start and end using Scan.

        Args:
            start: Inclusive lower bound
            end: Inclusive upper bound

        Returns:
            List of EconomicEvent objects

        Raises:
            StoreError: If the scan fails
        """
        logger.info(f"Scanning DynamoDB table {self.table_name} for events in range")
        condition = Attr('timestamp').between(_utc_iso(start), _utc_iso(end))

        try:
            response = self.table.scan(FilterExpression=condition)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=condition,
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise StoreError(f"Failed to scan {self.table_name}: {e}") from e

        events = []
        for item in items:
            event = self._item_to_event(item)
            if event:
                events.append(event)

        logger.info(f"Retrieved {len(events)} events from DynamoDB")
        return events

    def add_or_update(self, event: EconomicEvent) -> WriteResult:
        """
        Put one event, replacing any item with the same natural key.

        Args:
            event: Event to store

        Returns:
            WriteResult; client errors are reported, not raised
        """
        try:
            self.table.put_item(Item=self._event_to_item(event))
        except (ClientError, BotoCoreError) as e:
            return WriteResult(False, str(e))
        return WriteResult(True)

    def _item_to_event(self, item: dict) -> EconomicEvent:
        """
        Convert DynamoDB item to EconomicEvent object.

        Returns:
            EconomicEvent object or None if conversion fails
        """
        try:
            return EconomicEvent.from_dict(item)
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to EconomicEvent: {e}")
            return None

    def _event_to_item(self, event: EconomicEvent) -> dict:
        """Convert EconomicEvent object to DynamoDB item, dropping empty optional fields."""
        item = {
            'event_key': generate_event_key(event.key),
            'event_id': event.event_id,
            'timestamp': _utc_iso(event.timestamp),
            'currency': event.currency.value,
            'title': event.title,
            'ttl': self._calculate_ttl(event.timestamp)
        }

        optional = {
            'level': event.level.value if event.level else None,
            'actual': event.actual,
            'forecast': event.forecast,
            'previous': event.previous,
            'explanation': event.explanation,
        }
        item.update({name: value for name, value in optional.items() if value is not None})
        return item

    def _calculate_ttl(self, timestamp: datetime) -> int:
        """Unix time TTL_DAYS after the event."""
        return int((timestamp + timedelta(days=self.TTL_DAYS)).timestamp())


def _utc_iso(timestamp: datetime) -> str:
    # Stored in UTC so string comparison in filters follows time order
    return timestamp.astimezone(timezone.utc).isoformat()
