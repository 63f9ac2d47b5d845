"""Page loader for the DailyFX economic calendar."""
import logging
import time
from typing import List

import requests

from processor.errors import FetchError
from processor.models import EconomicEvent
from scraper.page_parser import DailyFXPageParser

logger = logging.getLogger(__name__)


class DailyFXCalendarScraper:
    """Loader for the DailyFX economic calendar page."""

    BASE_URL = "https://www.dailyfx.com"
    CALENDAR_PATH = "/calendar"

    def __init__(
        self,
        base_url: str = BASE_URL,
        calendar_path: str = CALENDAR_PATH,
        timeout: int = 30,
        max_retries: int = 3
    ):
        """
        Initialize the calendar scraper.

        Args:
            base_url: Site root (default: https://www.dailyfx.com)
            calendar_path: Path of the calendar page (default: /calendar)
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per fetch on transport or server errors
        """
        self.base_url = base_url.rstrip('/')
        self.calendar_path = '/' + calendar_path.lstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.calendar_path}"

    def fetch_events(self, parser: DailyFXPageParser = None) -> List[EconomicEvent]:
        """
        Load the calendar page and parse its events.

        Args:
            parser: Page parser to use (default: DailyFXPageParser)

        Returns:
            List of EconomicEvent objects

        Raises:
            FetchError: If the page cannot be loaded
            ParseError: If the page cannot be parsed
        """
        parser = parser or DailyFXPageParser()
        return parser.parse(self.fetch_page())

    def fetch_page(self) -> str:
        """
        Fetch the calendar HTML with retry logic.

        Transport errors and 5xx responses are retried with exponential
        backoff. Any other non-200 status fails straight away.

        Returns:
            HTML content as string

        Raises:
            FetchError: If the page cannot be loaded or the body is empty
        """
        base_delay = 1  # seconds
        logger.info(f"Loading calendar from {self.url}")

        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Fetching calendar HTML (attempt {attempt + 1}/{self.max_retries})"
                )
                response = requests.get(self.url, timeout=self.timeout)
                if response.status_code >= 500:
                    response.raise_for_status()

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                    continue

                logger.error(
                    f"All {self.max_retries} retry attempts failed. Last error: {e}"
                )
                status_code = e.response.status_code if e.response is not None else None
                raise FetchError(
                    f"Failed to load calendar page: {e}", status_code=status_code
                ) from e

            if response.status_code != 200:
                raise FetchError(
                    f"Failed to load calendar page (response {response.status_code})",
                    status_code=response.status_code
                )
            if not response.text or not response.text.strip():
                raise FetchError(
                    "Calendar page returned an empty body",
                    status_code=response.status_code
                )

            logger.info("Successfully loaded the page")
            return response.text
