"""Parser turning the DailyFX calendar markup into EconomicEvent records."""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from processor.errors import CandidateParseError, ParseError
from processor.models import Currency, EconomicEvent, EventLevel

logger = logging.getLogger(__name__)


def clean_text(node) -> Optional[str]:
    """
    Return the normalized text of a node, or None when it is blank.

    Args:
        node: BeautifulSoup element or None

    Returns:
        Text with whitespace collapsed, None if missing or empty
    """
    if node is None:
        return None
    cleaned = ' '.join(node.get_text(' ').split())
    return cleaned or None


class DailyFXPageParser:
    """Parser for the DailyFX economic calendar page layout."""

    EVENT_SELECTOR = '.event'
    CATEGORY_ATTR = 'data-category'
    IMPORTANCE_ATTR = 'data-importance'
    ROW_ID_ATTR = 'data-id'
    ROW_ID_PREFIX = 'ev'
    DATE_PREFIX = 'date'
    TITLE_PREFIX = 'title'
    DETAIL_PREFIX = 'daily'
    DETAIL_TEXT_CLASS = 'gsstx'

    def parse(self, html_content: str) -> List[EconomicEvent]:
        """
        Parse events from calendar HTML.

        Each event container is processed on its own; a container that
        fails is logged and skipped.

        Args:
            html_content: Full markup of the calendar page

        Returns:
            List of EconomicEvent objects in page order (empty if the page
            has no event containers)

        Raises:
            ParseError: If the markup cannot be parsed at all
        """
        if not isinstance(html_content, str):
            raise ParseError(
                f"Expected page markup as text, got {type(html_content).__name__}"
            )

        try:
            soup = BeautifulSoup(html_content, 'html.parser')
        except Exception as e:
            raise ParseError(f"Failed to parse calendar markup: {e}") from e

        logger.info("Parsing events from the calendar page")
        events = []
        skipped = 0

        for element in soup.select(self.EVENT_SELECTOR):
            try:
                events.append(self._parse_event_element(soup, element))
            except Exception as e:
                skipped += 1
                logger.warning(f"Failed to parse event element: {e}")
                continue

        logger.info(f"Parsed {len(events)} events ({skipped} skipped)")
        return events

    def _parse_event_element(self, soup: BeautifulSoup, element) -> EconomicEvent:
        """
        Parse a single event container.

        Args:
            soup: Whole document, used to look up the detail block
            element: Element carrying the event class

        Returns:
            EconomicEvent

        Raises:
            CandidateParseError: If a mandatory node or attribute is missing
                or a value cannot be mapped
        """
        row_id = (element.get(self.ROW_ID_ATTR) or '').replace(self.ROW_ID_PREFIX, '')

        raw_currency = element.get(self.CATEGORY_ATTR)
        if raw_currency is None:
            raise CandidateParseError(row_id, f"missing {self.CATEGORY_ATTR}")
        raw_level = element.get(self.IMPORTANCE_ATTR)
        if raw_level is None:
            raise CandidateParseError(row_id, f"missing {self.IMPORTANCE_ATTR}")

        try:
            currency = Currency.from_str(raw_currency)
            level = EventLevel.from_str(raw_level)
        except ValueError as e:
            raise CandidateParseError(row_id, str(e)) from e

        date_elem = element.find(id=f"{self.DATE_PREFIX}{row_id}")
        if date_elem is None:
            raise CandidateParseError(row_id, "missing timestamp node")
        timestamp = self._parse_timestamp(row_id, date_elem.get_text())

        title_elem = element.find(id=f"{self.TITLE_PREFIX}{row_id}")
        if title_elem is None:
            raise CandidateParseError(row_id, "missing title node")
        decoration = title_elem.find('div')
        if decoration is not None:
            decoration.decompose()
        title = clean_text(title_elem)
        if not title:
            raise CandidateParseError(row_id, "empty title")

        actual, forecast, previous = self._parse_value_cells(title_elem)

        return EconomicEvent(
            event_id=str(uuid.uuid4()),
            timestamp=timestamp,
            currency=currency,
            title=title,
            level=level,
            actual=actual,
            forecast=forecast,
            previous=previous,
            explanation=self._parse_explanation(soup, row_id)
        )

    def _parse_timestamp(self, row_id: str, text: str) -> datetime:
        """Parse the timestamp cell, assuming UTC when no offset is given."""
        text = (text or '').strip()
        if not text:
            raise CandidateParseError(row_id, "empty timestamp")
        try:
            timestamp = date_parser.parse(text)
        except (ValueError, OverflowError) as e:
            raise CandidateParseError(row_id, f"invalid timestamp {text!r}") from e

        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return timestamp

    def _parse_value_cells(self, title_elem) -> tuple:
        """
        Read actual, forecast and previous from the cells after the title.

        The first sibling after the title is not a value cell and is skipped.

        Args:
            title_elem: Title cell of the event row

        Returns:
            Tuple of (actual, forecast, previous), None for blank cells
        """
        cell = title_elem.find_next_sibling()
        values = []
        for _ in range(3):
            cell = cell.find_next_sibling() if cell is not None else None
            values.append(clean_text(cell))
        return tuple(values)

    def _parse_explanation(self, soup: BeautifulSoup, row_id: str) -> Optional[str]:
        detail_elem = soup.find(id=f"{self.DETAIL_PREFIX}{row_id}")
        if detail_elem is None:
            return None

        text_elem = detail_elem.find(class_=self.DETAIL_TEXT_CLASS)
        if text_elem is None:
            return None

        link = text_elem.find('a')
        if link is not None:
            link.decompose()
        return clean_text(text_elem)
