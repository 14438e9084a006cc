from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import requests
from dateutil import tz
from pydantic import BaseModel, ConfigDict, Field

from declarant.errors import ProviderDataError
from declarant.models.canonical import (
    EventSerieWrapper,
    LiteEvent,
    LiteEventSalesRecord,
    LiteEventSerie,
    LiteTicketCategory,
)
from declarant.ticketing.base import TicketingSystemClient
from declarant.ticketing.http import JsonHttpClient


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SupersoniksPrice(_Schema):
    amount: Decimal
    quantity: int = Field(ge=0)
    revenue: Decimal
    title: str = Field(min_length=1)


class SupersoniksTax(_Schema):
    rate: Decimal = Field(ge=0)


class SupersoniksSettings(_Schema):
    tax: SupersoniksTax
    duration: int | None = Field(default=None, ge=0)
    time_zone: str = "Europe/Paris"


class SupersoniksMultisession(_Schema):
    multisession_id: int = Field(ge=0)
    title: str = Field(min_length=1)


class SupersoniksEdito(_Schema):
    title: str = Field(min_length=1)


class SupersoniksSession(_Schema):
    id: int = Field(ge=0)
    start_date: int = Field(gt=0)
    # 0 means unknown
    end_date: int = Field(default=0, ge=0)
    time_zone: str = "Europe/Paris"
    multisession: SupersoniksMultisession | None = None
    settings: SupersoniksSettings
    edito: SupersoniksEdito
    entity_type: str = Field(min_length=1)


class SupersoniksStatement(_Schema):
    session: SupersoniksSession
    externals_prices: list[SupersoniksPrice] = Field(default_factory=list)
    internals_prices: list[SupersoniksPrice] = Field(default_factory=list)


class SupersoniksStatements(_Schema):
    success: bool
    total: int = Field(ge=0)
    data: list[SupersoniksStatement] = Field(default_factory=list)


@dataclass
class _SerieGroup:
    name: str
    statements: list[SupersoniksStatement] = field(default_factory=list)


class SupersoniksClient(TicketingSystemClient):
    """Each organization runs its own instance, the access key is its domain."""

    STATEMENTS_PATH = "/closing-statements"

    def __init__(self, access_key: str, secret_key: str, session: requests.Session | None = None) -> None:
        self.http = JsonHttpClient(
            f"https://{access_key}/api/v2/",
            session=session,
            headers={"Authorization": f"Bearer {secret_key}"},
        )
        self.public_identifier = slugify(access_key)

    def unique_id(self, value: str) -> str:
        return f"{self.public_identifier}_{value}"

    def _statements(self, from_date: datetime, to_date: datetime) -> list[SupersoniksStatement]:
        payload = self.http.get_json(
            self.STATEMENTS_PATH,
            params={
                # Not every organization closes its statements.
                "bypass_closed": "true",
                "from": int(from_date.timestamp()),
                "to": int(to_date.timestamp()),
            },
        )
        statements = SupersoniksStatements.model_validate(payload)
        if not statements.success:
            raise ProviderDataError("Supersoniks", "the statements response is flagged as unsuccessful")
        return statements.data

    def check_credentials(self) -> None:
        future = datetime.now(timezone.utc) + timedelta(days=730)
        self._statements(future, future)

    def get_events_series(self, from_date: datetime, to_date: datetime | None = None) -> list[EventSerieWrapper]:
        # Statements are filtered on session dates, not on modification dates.
        window_start, window_end = self.fetch_window(from_date, to_date)

        groups: dict[str, _SerieGroup] = {}
        for statement in self._statements(window_start, window_end):
            session = statement.session
            if session.multisession is not None:
                serie_id = str(session.multisession.multisession_id)
                serie_name = session.multisession.title
            else:
                serie_id = f"session_{session.id}"
                serie_name = session.edito.title
            groups.setdefault(serie_id, _SerieGroup(name=serie_name)).statements.append(statement)

        wrappers: list[EventSerieWrapper] = []
        for serie_id, group in groups.items():
            wrapper = self._build_wrapper(serie_id, group)
            if wrapper is not None:
                wrappers.append(wrapper)
        return wrappers

    def _build_wrapper(self, serie_id: str, group: _SerieGroup) -> EventSerieWrapper | None:
        events: list[LiteEvent] = []
        lines: list[tuple[str, str, str, Decimal, int]] = []
        tax_rate: Decimal | None = None

        for statement in group.statements:
            session = statement.session
            if session.entity_type != "event":
                continue

            event_id = self.unique_id(str(session.id))
            start_at, end_at = self._session_bounds(session)
            events.append(LiteEvent(internal_ticketing_system_id=event_id, start_at=start_at, end_at=end_at))

            rate = session.settings.tax.rate
            tax_rate = rate if tax_rate is None else max(tax_rate, rate)

            lines.extend((event_id, *price) for price in self._merged_prices(statement))

        if not events:
            return None

        # A title sold at several amounts anywhere in the serie gets one category per amount.
        amounts_by_slug: dict[str, list[Decimal]] = {}
        for _, slug, _, amount, _ in lines:
            amounts = amounts_by_slug.setdefault(slug, [])
            if amount not in amounts:
                amounts.append(amount)

        categories: dict[str, LiteTicketCategory] = {}
        sales: list[LiteEventSalesRecord] = []
        for event_id, slug, title, amount, quantity in lines:
            category_id = f"fallback_{serie_id}_{slug}"
            amounts = amounts_by_slug[slug]
            if len(amounts) > 1:
                category_id = f"{category_id}_{amount}"
                title = f"{title} (n°{amounts.index(amount) + 1})"
            category_id = self.unique_id(category_id)
            categories.setdefault(
                category_id,
                LiteTicketCategory(internal_ticketing_system_id=category_id, name=title, description=None, price=amount),
            )
            sales.append(
                LiteEventSalesRecord(
                    internal_event_ticketing_system_id=event_id,
                    internal_ticket_category_ticketing_system_id=category_id,
                    total=quantity,
                )
            )

        return EventSerieWrapper(
            serie=LiteEventSerie(
                internal_ticketing_system_id=self.unique_id(serie_id),
                name=group.name,
                start_at=min(event.start_at for event in events),
                end_at=max(event.end_at for event in events),
                tax_rate=tax_rate if tax_rate is not None else Decimal("0"),
            ),
            events=events,
            ticket_categories=list(categories.values()),
            sales=sales,
        )

    @staticmethod
    def _session_bounds(session: SupersoniksSession) -> tuple[datetime, datetime]:
        zone = tz.gettz(session.time_zone) or tz.gettz("Europe/Paris")
        start_at = datetime.fromtimestamp(session.start_date, tz=timezone.utc)
        if session.end_date:
            return start_at, datetime.fromtimestamp(session.end_date, tz=timezone.utc)
        if session.settings.duration is not None:
            return start_at, start_at + timedelta(minutes=session.settings.duration)
        # Unknown end, assume the night ends at 5am local time.
        local_next_day = start_at.astimezone(zone) + timedelta(days=1)
        end_at = local_next_day.replace(hour=5, minute=0, second=0, microsecond=0)
        return start_at, end_at.astimezone(timezone.utc)

    @staticmethod
    def _merged_prices(statement: SupersoniksStatement) -> list[tuple[str, str, Decimal, int]]:
        """Sum the statement lines by (title slug, amount), keeping the first title seen."""
        # Refund lines come with negative amounts.
        merged: dict[tuple[str, Decimal], list[Any]] = {}
        for price in [*statement.internals_prices, *statement.externals_prices]:
            if price.amount < 0:
                continue
            title = price.title.strip()
            key = (slugify(title), price.amount)
            if key in merged:
                merged[key][1] += price.quantity
            else:
                merged[key] = [title, price.quantity]
        return [(slug, title, amount, quantity) for (slug, amount), (title, quantity) in merged.items()]
