"""REST client for the monitoring backend that stores FX events."""
import logging
import time
from datetime import datetime
from typing import List, Optional

import requests

from processor.errors import StoreError
from processor.models import EconomicEvent, WriteResult

logger = logging.getLogger(__name__)


class MonitoringBackendClient:
    """Client for the FX events endpoints of the monitoring backend."""

    EVENTS_ENDPOINT = "/api/fxevents"
    TOKEN_ENDPOINT = "/oauth2/token"
    TOKEN_EXPIRY_MARGIN = 60  # seconds

    def __init__(
        self,
        backend_address: str,
        backend_app_uri: Optional[str] = None,
        client_id: Optional[str] = None,
        app_key: Optional[str] = None,
        authority_url: Optional[str] = None,
        timeout: int = 10,
        name: str = 'backend'
    ):
        """
        Initialize the backend client.

        Args:
            backend_address: Root URL of the monitoring backend
            backend_app_uri: Resource identifier the access token is requested for
            client_id: Client id used for the client-credentials grant
            app_key: Client secret used for the client-credentials grant
            authority_url: Token authority; requests are unauthenticated without it
            timeout: Per-request timeout in seconds (default: 10)
            name: Destination name used in logs and tallies
        """
        self.backend_address = backend_address.rstrip('/')
        self.backend_app_uri = backend_app_uri
        self.client_id = client_id
        self.app_key = app_key
        self.authority_url = authority_url.rstrip('/') if authority_url else None
        self.timeout = timeout
        self.name = name
        self.session = requests.Session()
        self._token = None
        self._token_expires_at = 0.0
        logger.info(f"Initialized MonitoringBackendClient for {self.backend_address}")

    def get_in_range(self, start: datetime, end: datetime) -> List[EconomicEvent]:
        """
        Retrieve stored events whose timestamp falls between start and end.

        Args:
            start: Inclusive lower bound
            end: Inclusive upper bound

        Returns:
            List of EconomicEvent objects

        Raises:
            StoreError: If the request fails or the response is not valid
        """
        try:
            response = self.session.get(
                f"{self.backend_address}{self.EVENTS_ENDPOINT}",
                params={'start': start.isoformat(), 'end': end.isoformat()},
                headers=self._auth_headers(),
                timeout=self.timeout
            )
            response.raise_for_status()
            items = response.json() or []
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error loading events from backend: {e}")
            raise StoreError(f"Failed to load events from backend: {e}") from e

        events = []
        for item in items:
            try:
                events.append(EconomicEvent.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to convert backend item to EconomicEvent: {e}")
        logger.info(f"Retrieved {len(events)} events from backend")
        return events

    def add_or_update(self, event: EconomicEvent) -> WriteResult:
        """
        Upsert one event.

        Args:
            event: Event to store

        Returns:
            WriteResult; failures and timeouts are reported, not raised
        """
        try:
            response = self.session.post(
                f"{self.backend_address}{self.EVENTS_ENDPOINT}",
                json=event.to_dict(),
                headers=self._auth_headers(),
                timeout=self.timeout
            )
        except requests.Timeout:
            return WriteResult(False, f"Timed out after {self.timeout} seconds")
        except (requests.RequestException, StoreError) as e:
            return WriteResult(False, str(e))

        if not response.ok:
            return WriteResult(
                False, f"HTTP {response.status_code}: {response.text[:200]}"
            )

        message = ''
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            if body.get('success') is False:
                return WriteResult(False, body.get('message') or 'Rejected by backend')
            message = body.get('message') or ''
        return WriteResult(True, message)

    def _auth_headers(self) -> dict:
        if not self.authority_url:
            return {}
        return {'Authorization': f"Bearer {self._get_token()}"}

    def _get_token(self) -> str:
        """
        Return a cached access token, requesting a new one when expired.

        Raises:
            StoreError: If the token request fails
        """
        if self._token and time.time() < self._token_expires_at:
            return self._token

        try:
            response = self.session.post(
                f"{self.authority_url}{self.TOKEN_ENDPOINT}",
                data={
                    'grant_type': 'client_credentials',
                    'client_id': self.client_id,
                    'client_secret': self.app_key,
                    'resource': self.backend_app_uri,
                },
                timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
            token = payload['access_token']
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.error(f"Failed to acquire backend access token: {e}")
            raise StoreError(f"Failed to acquire backend access token: {e}") from e

        expires_in = int(payload.get('expires_in', 3600))
        self._token = token
        self._token_expires_at = time.time() + max(0, expires_in - self.TOKEN_EXPIRY_MARGIN)
        return token
