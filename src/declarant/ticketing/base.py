from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import requests
from dateutil.relativedelta import relativedelta

from declarant.errors import ProviderResponseError
from declarant.models.canonical import EventSerieWrapper

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUS_CODES = {401, 403}


class TicketingSystemClient(ABC):
    # Providers filter on last modification, not on event dates, so the window is widened.
    LOOKBACK_MONTHS = 13
    LOOKAHEAD_MONTHS = 12

    def test_connection(self) -> bool:
        try:
            self.check_credentials()
        except ProviderResponseError as exc:
            if exc.status_code in AUTH_FAILURE_STATUS_CODES:
                logger.info("ticketing credentials rejected by %s", type(self).__name__)
                return False
            raise
        except requests.ConnectionError:
            logger.warning("ticketing provider unreachable from %s", type(self).__name__)
            return False
        return True

    @abstractmethod
    def check_credentials(self) -> None:
        """Issue the smallest authenticated request the provider allows."""

    @abstractmethod
    def get_events_series(self, from_date: datetime, to_date: datetime | None = None) -> list[EventSerieWrapper]:
        """Fetch every serie touched since from_date, fully hydrated."""

    def fetch_window(
        self, from_date: datetime, to_date: datetime | None = None, now: datetime | None = None
    ) -> tuple[datetime, datetime]:
        now = now or datetime.now(timezone.utc)
        oldest = now - relativedelta(months=self.LOOKBACK_MONTHS)
        latest = to_date or now + relativedelta(months=self.LOOKAHEAD_MONTHS)
        return min(ensure_aware(from_date), oldest), latest


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
