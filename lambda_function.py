"""AWS Lambda handler for the DailyFX economic calendar sync."""
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from processor.models import RunOutcome
from processor.sync_pipeline import CalendarSyncPipeline
from scraper.dailyfx_calendar import DailyFXCalendarScraper
from scraper.page_parser import DailyFXPageParser
from storage.dynamodb_store import DynamoDBEventStore
from storage.influxdb_writer import InfluxDBWriter
from storage.monitoring_backend import MonitoringBackendClient


STATUS_CODES = {
    RunOutcome.SUCCESS: 200,
    RunOutcome.PARTIAL: 207,
    RunOutcome.FAILED: 500,
}

# Attributes every LogRecord carries; anything else came in through extra=
RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord('', logging.INFO, '', 0, '', (), None).__dict__
) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """JSON formatter that also emits the fields passed through extra=."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in RECORD_ATTRIBUTES and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


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


@dataclass
class BackendEndpoint:
    """One monitoring backend environment."""
    name: str
    address: Optional[str] = None
    app_uri: Optional[str] = None


@dataclass
class SyncSettings:
    """Resolved configuration for one sync run."""
    calendar_url: str = DailyFXCalendarScraper.BASE_URL
    calendar_path: str = DailyFXCalendarScraper.CALENDAR_PATH
    backend_store: str = 'monitoring'
    backends: List[BackendEndpoint] = field(
        default_factory=lambda: [BackendEndpoint('backend')]
    )
    client_id: Optional[str] = None
    app_key: Optional[str] = None
    authority_url: Optional[str] = None
    table_name: str = 'dailyfx-events'
    db_host: Optional[str] = None
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    write_timeout_seconds: int = 10


def load_settings(environ: Optional[Dict[str, str]] = None) -> SyncSettings:
    """
    Read configuration from environment variables.

    BACKEND_ENVIRONMENTS (e.g. "dev,qa,prod") lists the monitoring backends
    to sync, each addressed by BACKEND_ADDRESS_<ENV> and BACKEND_APP_URI_<ENV>.
    Without it a single backend is read from BACKEND_ADDRESS and
    BACKEND_APP_URI.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        SyncSettings
    """
    env = os.environ if environ is None else environ
    defaults = SyncSettings()
    return SyncSettings(
        calendar_url=env.get('CALENDAR_URL', defaults.calendar_url),
        calendar_path=env.get('CALENDAR_PATH', defaults.calendar_path),
        backend_store=env.get('BACKEND_STORE', defaults.backend_store).lower(),
        backends=load_backend_endpoints(env),
        client_id=env.get('CLIENT_ID'),
        app_key=env.get('APP_KEY'),
        authority_url=env.get('AUTHORITY_URL'),
        table_name=env.get('TABLE_NAME', defaults.table_name),
        db_host=env.get('DB_HOST'),
        db_name=env.get('DB_NAME'),
        db_user=env.get('DB_USER'),
        db_password=env.get('DB_PASSWORD'),
        log_level=env.get('LOG_LEVEL', defaults.log_level),
        timeout_seconds=int(env.get('TIMEOUT_SECONDS', defaults.timeout_seconds)),
        write_timeout_seconds=int(
            env.get('WRITE_TIMEOUT_SECONDS', defaults.write_timeout_seconds)
        )
    )


def load_backend_endpoints(env: Dict[str, str]) -> List[BackendEndpoint]:
    environments = [
        name.strip().lower()
        for name in env.get('BACKEND_ENVIRONMENTS', '').split(',')
        if name.strip()
    ]
    if not environments:
        return [BackendEndpoint(
            name='backend',
            address=env.get('BACKEND_ADDRESS'),
            app_uri=env.get('BACKEND_APP_URI')
        )]

    return [
        BackendEndpoint(
            name=f'backend-{environment}',
            address=env.get(f'BACKEND_ADDRESS_{environment.upper()}'),
            app_uri=env.get(f'BACKEND_APP_URI_{environment.upper()}')
        )
        for environment in environments
    ]


def build_pipeline(settings: SyncSettings) -> CalendarSyncPipeline:
    """
    Instantiate the pipeline and its collaborators from settings.

    Raises:
        ValueError: If the backend store is unknown or missing its address
    """
    logger = logging.getLogger(__name__)

    scraper = DailyFXCalendarScraper(
        base_url=settings.calendar_url,
        calendar_path=settings.calendar_path,
        timeout=settings.timeout_seconds
    )

    if settings.backend_store == 'monitoring':
        backends = []
        for endpoint in settings.backends:
            if not endpoint.address:
                raise ValueError(f"No backend address configured for {endpoint.name}")
            backends.append(MonitoringBackendClient(
                backend_address=endpoint.address,
                backend_app_uri=endpoint.app_uri,
                client_id=settings.client_id,
                app_key=settings.app_key,
                authority_url=settings.authority_url,
                timeout=settings.write_timeout_seconds,
                name=endpoint.name
            ))
    elif settings.backend_store == 'dynamodb':
        backends = [DynamoDBEventStore(
            table_name=settings.table_name,
            timeout=settings.write_timeout_seconds
        )]
    else:
        raise ValueError(f"Unknown backend store: {settings.backend_store}")

    destinations = []
    if settings.db_host:
        destinations.append(InfluxDBWriter(
            host=settings.db_host,
            db_name=settings.db_name,
            user=settings.db_user,
            password=settings.db_password,
            timeout=settings.write_timeout_seconds
        ))
    else:
        logger.info("DB_HOST not set, InfluxDB writes disabled")

    return CalendarSyncPipeline(
        scraper=scraper,
        parser=DailyFXPageParser(),
        backends=backends,
        destinations=destinations
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the calendar sync.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    settings = load_settings()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'calendar_url': settings.calendar_url,
            'backend_store': settings.backend_store,
            'timeout_seconds': settings.timeout_seconds
        }
    )

    try:
        pipeline = build_pipeline(settings)
        sync_result = pipeline.run()
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Sync failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    duration = time.time() - start_time
    statistics = sync_result.to_summary()
    statistics['duration_seconds'] = round(duration, 2)

    if sync_result.outcome is RunOutcome.SUCCESS:
        message = 'Sync completed successfully'
        logger.info("Lambda execution completed successfully", extra=statistics)
    elif sync_result.outcome is RunOutcome.PARTIAL:
        message = 'Sync completed with write failures'
        logger.error("Lambda execution completed with write failures", extra=statistics)
    else:
        message = 'Sync failed'
        logger.error("Lambda execution failed", extra=statistics)

    return {
        'statusCode': STATUS_CODES[sync_result.outcome],
        'body': json.dumps({
            'message': message,
            'statistics': statistics,
            'errors': sync_result.errors
        })
    }


if __name__ == '__main__':
    print(json.dumps(lambda_handler({}, None), indent=2))
