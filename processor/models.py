"""Data models for economic calendar events."""
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse


class Currency(Enum):
    """Currency codes published on the economic calendar."""
    AUD = 'AUD'
    BRL = 'BRL'
    CAD = 'CAD'
    CHF = 'CHF'
    CNY = 'CNY'
    CZK = 'CZK'
    DKK = 'DKK'
    EUR = 'EUR'
    GBP = 'GBP'
    HKD = 'HKD'
    HUF = 'HUF'
    INR = 'INR'
    JPY = 'JPY'
    KRW = 'KRW'
    MXN = 'MXN'
    NOK = 'NOK'
    NZD = 'NZD'
    PLN = 'PLN'
    RUB = 'RUB'
    SEK = 'SEK'
    SGD = 'SGD'
    TRY = 'TRY'
    USD = 'USD'
    ZAR = 'ZAR'

    @classmethod
    def from_str(cls, value: str) -> 'Currency':
        """
        Map a raw category string to a Currency.

        Args:
            value: Raw value such as "usd" or " EUR "

        Returns:
            Matching Currency

        Raises:
            ValueError: If the value is not a known currency code
        """
        code = (value or '').strip().upper()
        try:
            return _CURRENCY_LOOKUP[code]
        except KeyError:
            raise ValueError(f"Unknown currency: {value!r}") from None


class EventLevel(Enum):
    """Importance tier of a calendar event."""
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'

    @classmethod
    def from_str(cls, value: str) -> 'EventLevel':
        """Map a raw importance string to an EventLevel, raising ValueError if unknown."""
        raw = (value or '').strip().lower()
        try:
            return _LEVEL_LOOKUP[raw]
        except KeyError:
            raise ValueError(f"Unknown importance level: {value!r}") from None


_CURRENCY_LOOKUP: Dict[str, Currency] = {c.value: c for c in Currency}

_LEVEL_LOOKUP: Dict[str, EventLevel] = {
    'low': EventLevel.LOW,
    'medium': EventLevel.MEDIUM,
    'med': EventLevel.MEDIUM,
    'high': EventLevel.HIGH,
}


@dataclass(frozen=True)
class NaturalKey:
    """Identity of an event across scrapes: (timestamp, title, currency)."""
    timestamp: datetime
    title: str
    currency: Currency


@dataclass(frozen=True, eq=False)
class EconomicEvent:
    """
    One economic calendar entry.

    Equality and hashing follow the natural key, so two records parsed on
    different runs compare equal even though their event_id differs. Use
    processor.reconciler.events_differ to compare content.
    """
    event_id: str
    timestamp: datetime
    currency: Currency
    title: str
    level: Optional[EventLevel] = None
    actual: Optional[str] = None
    forecast: Optional[str] = None
    previous: Optional[str] = None
    explanation: Optional[str] = None

    @property
    def key(self) -> NaturalKey:
        return NaturalKey(self.timestamp, self.title, self.currency)

    def same_key(self, other: 'EconomicEvent') -> bool:
        return (
            self.timestamp == other.timestamp and
            self.title == other.title and
            self.currency == other.currency
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EconomicEvent):
            return NotImplemented
        return self.same_key(other)

    def __hash__(self) -> int:
        return hash(self.key)

    def __lt__(self, other: 'EconomicEvent') -> bool:
        if not isinstance(other, EconomicEvent):
            return NotImplemented
        return self.timestamp < other.timestamp

    def describe(self) -> str:
        """Short identity string used in log lines."""
        stamp = self.timestamp.strftime('%d/%m/%y %H:%M:%S %z')
        return f"{stamp} - {self.currency.value} - {self.title}"

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the JSON shape exchanged with the stores.

        Returns:
            Dictionary with ISO 8601 timestamp and enum values as strings
        """
        return {
            'event_id': self.event_id,
            'timestamp': self.timestamp.isoformat(),
            'currency': self.currency.value,
            'level': self.level.value if self.level else None,
            'title': self.title,
            'actual': self.actual,
            'forecast': self.forecast,
            'previous': self.previous,
            'explanation': self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EconomicEvent':
        """
        Build an event from its JSON shape.

        Args:
            data: Dictionary as produced by to_dict

        Returns:
            EconomicEvent

        Raises:
            KeyError: If a mandatory field is missing
            ValueError: If the timestamp or an enum value is invalid
        """
        timestamp = isoparse(data['timestamp'])
        if timestamp.tzinfo is None:
            raise ValueError(f"Timestamp without offset: {data['timestamp']!r}")

        level = data.get('level')
        return cls(
            event_id=data.get('event_id') or '',
            timestamp=timestamp,
            currency=Currency.from_str(data['currency']),
            title=data['title'],
            level=EventLevel.from_str(level) if level else None,
            actual=data.get('actual'),
            forecast=data.get('forecast'),
            previous=data.get('previous'),
            explanation=data.get('explanation'),
        )


@dataclass
class WriteResult:
    """Result of a single write to a destination store."""
    success: bool
    message: str = ''


@dataclass
class ReconcileResult:
    """Classification of a scraped batch against the persisted one."""
    to_add: List[EconomicEvent] = field(default_factory=list)
    to_check: List[EconomicEvent] = field(default_factory=list)
    to_update: List[EconomicEvent] = field(default_factory=list)
    unchanged: List[EconomicEvent] = field(default_factory=list)

    @property
    def to_write(self) -> List[EconomicEvent]:
        """Records that need an upsert, new ones first."""
        return self.to_add + self.to_update

    def counts(self) -> Dict[str, int]:
        return {
            'added': len(self.to_add),
            'updated': len(self.to_update),
            'unchanged': len(self.unchanged),
        }


class DestinationTally:
    """Running success/failure counters for one destination store."""

    def __init__(self, name: str):
        self.name = name
        self.success = 0
        self.failed = 0
        self._lock = threading.Lock()

    def record_success(self) -> int:
        with self._lock:
            self.success += 1
            return self.success

    def record_failure(self) -> int:
        with self._lock:
            self.failed += 1
            return self.failed

    def to_dict(self) -> Dict[str, int]:
        return {'success': self.success, 'failed': self.failed}

    def __repr__(self) -> str:
        return (
            f"DestinationTally(name={self.name!r}, success={self.success}, "
            f"failed={self.failed})"
        )


class RunState(Enum):
    """Stage reached by a sync run."""
    IDLE = 'idle'
    FETCHING = 'fetching'
    PARSING = 'parsing'
    RECONCILING = 'reconciling'
    WRITING = 'writing'
    DONE = 'done'


class RunOutcome(Enum):
    """Final outcome of a sync run."""
    SUCCESS = 'success'
    PARTIAL = 'partial'
    FAILED = 'failed'


@dataclass
class SyncResult:
    """
    Result of sync operation.

    The events_* counters are totals over every reconciled backend; plans
    holds the same counts per backend.
    """
    outcome: RunOutcome
    state: RunState
    events_parsed: int = 0
    events_added: int = 0
    events_updated: int = 0
    events_unchanged: int = 0
    plans: Dict[str, Dict[str, int]] = field(default_factory=dict)
    destinations: Dict[str, DestinationTally] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome is RunOutcome.SUCCESS

    def to_summary(self) -> Dict[str, Any]:
        """Statistics dictionary for the handler response body."""
        return {
            'outcome': self.outcome.value,
            'state': self.state.value,
            'events_parsed': self.events_parsed,
            'events_added': self.events_added,
            'events_updated': self.events_updated,
            'events_unchanged': self.events_unchanged,
            'plans': self.plans,
            'destinations': {
                name: tally.to_dict() for name, tally in self.destinations.items()
            },
        }
