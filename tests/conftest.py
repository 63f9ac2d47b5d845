"""Shared fixtures for the calendar sync tests."""
import uuid
from datetime import datetime, timezone

import pytest

from processor.models import Currency, EconomicEvent, EventLevel


CALENDAR_HTML = """
<html>
    <body>
        <table class="calendar">
            <tr class="event" data-category="USD" data-importance="high" data-id="ev101">
                <td id="date101">2024-01-10 08:30:00</td>
                <td id="title101"><div class="flag-icon">US</div>Non-Farm Payrolls</td>
                <td class="spacer"></td>
                <td>200K</td>
                <td>180K</td>
                <td>175K</td>
            </tr>
            <tr id="daily101">
                <td colspan="6">
                    <div class="gsstx">Payrolls beat expectations. <a href="/news/nfp">Read more</a></div>
                </td>
            </tr>
            <tr class="event" data-category="EUR" data-importance="medium" data-id="ev102">
                <td id="date102">2024-02-01T12:00:00+01:00</td>
                <td id="title102"><div class="flag-icon">EU</div>CPI</td>
                <td class="spacer"></td>
                <td>  </td>
                <td>2.1%</td>
                <td></td>
            </tr>
        </table>
    </body>
</html>
"""


def make_event(
    timestamp: datetime = datetime(2024, 1, 10, 8, 30, tzinfo=timezone.utc),
    title: str = 'Non-Farm Payrolls',
    currency: Currency = Currency.USD,
    level: EventLevel = EventLevel.HIGH,
    actual: str = '200K',
    forecast: str = '180K',
    previous: str = '175K',
    explanation: str = None,
    event_id: str = None
) -> EconomicEvent:
    """Build an EconomicEvent with NFP defaults and a fresh id."""
    return EconomicEvent(
        event_id=event_id or str(uuid.uuid4()),
        timestamp=timestamp,
        currency=currency,
        title=title,
        level=level,
        actual=actual,
        forecast=forecast,
        previous=previous,
        explanation=explanation
    )


@pytest.fixture
def calendar_html():
    """Calendar page with an NFP row (with explanation) and a CPI row."""
    return CALENDAR_HTML


@pytest.fixture
def nfp_event():
    return make_event()


@pytest.fixture
def cpi_event():
    return make_event(
        timestamp=datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc),
        title='CPI',
        currency=Currency.EUR,
        level=EventLevel.MEDIUM,
        actual='2.9%',
        forecast='2.8%',
        previous='2.4%'
    )
