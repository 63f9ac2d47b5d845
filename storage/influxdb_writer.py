"""InfluxDB writer for economic calendar events."""
import logging
from typing import Optional

import requests

from processor.models import EconomicEvent, WriteResult

logger = logging.getLogger(__name__)


def _escape_tag(value: str) -> str:
    return (
        value.replace('\\', '\\\\')
        .replace(',', '\\,')
        .replace('=', '\\=')
        .replace(' ', '\\ ')
        .replace('\n', '\\n')
    )


def _escape_field(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


class InfluxDBWriter:
    """
    Writes events as points through the InfluxDB 1.x HTTP write API.

    Points are tagged with currency and title and stamped with the event
    time, so rewriting an event with the same natural key replaces its
    fields instead of adding a point.
    """

    WRITE_ENDPOINT = "/write"

    def __init__(
        self,
        host: str,
        db_name: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        measurement: str = 'fxevents',
        timeout: int = 10,
        name: str = 'influxdb'
    ):
        """
        Initialize the writer.

        Args:
            host: InfluxDB host, with or without scheme (http:// assumed)
            db_name: Target database
            user: Database user
            password: Database password
            measurement: Measurement the points are written to
            timeout: Per-write timeout in seconds (default: 10)
            name: Destination name used in logs and tallies
        """
        if '://' not in host:
            host = f"http://{host}"
        self.host = host.rstrip('/')
        self.db_name = db_name
        self.user = user
        self.measurement = measurement
        self.timeout = timeout
        self.name = name
        self.session = requests.Session()
        if user:
            self.session.auth = (user, password or '')
        logger.info(f"Setup InfluxDB on {self.host}/{db_name} with user {user}")

    def to_line(self, event: EconomicEvent) -> str:
        """
        Format an event as a line-protocol point.

        Args:
            event: Event to format

        Returns:
            Line protocol string with second precision timestamp
        """
        tags = (
            f"currency={_escape_tag(event.currency.value)},"
            f"title={_escape_tag(event.title)}"
        )
        values = {
            'event_id': event.event_id,
            'level': event.level.value if event.level else None,
            'actual': event.actual,
            'forecast': event.forecast,
            'previous': event.previous,
            'explanation': event.explanation,
        }
        fields = ','.join(
            f'{name}="{_escape_field(value)}"'
            for name, value in values.items() if value is not None
        )
        return (
            f"{_escape_tag(self.measurement)},{tags} {fields} "
            f"{int(event.timestamp.timestamp())}"
        )

    def add_or_update(self, event: EconomicEvent) -> WriteResult:
        """
        Write one event point.

        Args:
            event: Event to write

        Returns:
            WriteResult; failures and timeouts are reported, not raised
        """
        try:
            response = self.session.post(
                f"{self.host}{self.WRITE_ENDPOINT}",
                params={'db': self.db_name, 'precision': 's'},
                data=self.to_line(event).encode('utf-8'),
                timeout=self.timeout
            )
        except requests.Timeout:
            return WriteResult(False, f"Timed out after {self.timeout} seconds")
        except requests.RequestException as e:
            return WriteResult(False, str(e))

        if response.status_code != 204:
            return WriteResult(
                False, f"HTTP {response.status_code}: {response.text[:200]}"
            )
        return WriteResult(True)
