from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Any

import requests
from dateutil import parser as date_parser
from dateutil import tz
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from declarant.errors import ProviderDataError, ProviderMissingRightsError, ProviderResponseError, ProviderThrottledError
from declarant.models.canonical import (
    EventSerieWrapper,
    LiteEvent,
    LiteEventSalesRecord,
    LiteEventSerie,
    LiteTicketCategory,
)
from declarant.ticketing.base import TicketingSystemClient, ensure_aware
from declarant.ticketing.http import JsonHttpClient

logger = logging.getLogger(__name__)

BILLETWEB_TIMEZONE = tz.gettz("Europe/Paris")
NULL_DATE = "0000-00-00 00:00:00"
FIREWALL_MARKERS = ("cdn-cgi/challenge-platform", '"error": "rate_limiting"')


def _paris_datetime(value: Any) -> datetime | None:
    if value is None or value == "" or value == NULL_DATE:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = date_parser.parse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=BILLETWEB_TIMEZONE)
    return parsed


def _coerce_flag(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() not in ("", "0", "false")
    return value


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore")


class BilletwebSession(_Schema):
    id: str = Field(min_length=1)
    start: datetime
    end: datetime

    @field_validator("start", "end", mode="before")
    @classmethod
    def _localize(cls, value: Any) -> Any:
        return _paris_datetime(value)


class BilletwebEvent(_Schema):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    start: datetime | None = None
    end: datetime | None = None
    multiple: bool
    tax_rate: Decimal

    @field_validator("start", "end", mode="before")
    @classmethod
    def _localize(cls, value: Any) -> Any:
        return _paris_datetime(value)

    @field_validator("multiple", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> Any:
        return _coerce_flag(value)


class BilletwebTicket(_Schema):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    description: str | None = None
    tax: Decimal | None = None
    commission: Decimal = Field(default=Decimal("0"), ge=0)

    @field_validator("description", "tax", mode="before")
    @classmethod
    def _empty_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("commission", mode="before")
    @classmethod
    def _disabled_commission(cls, value: Any) -> Any:
        # false means no commission
        if value is False or value is None:
            return Decimal("0")
        return value


class BilletwebEventAttendee(_Schema):
    ticket_id: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    disabled: bool = False
    order_session: str = Field(min_length=1)

    @field_validator("disabled", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> Any:
        return _coerce_flag(value)


class BilletwebAttendee(BilletwebEventAttendee):
    event: str = Field(min_length=1)


_ATTENDEES = TypeAdapter(list[BilletwebAttendee])
_EVENT_ATTENDEES = TypeAdapter(list[BilletwebEventAttendee])
_EVENTS = TypeAdapter(list[BilletwebEvent])
_SESSIONS = TypeAdapter(list[BilletwebSession])
_TICKETS = TypeAdapter(list[BilletwebTicket])


class BilletwebClient(TicketingSystemClient):
    BASE_URL = "https://www.billetweb.fr/api"

    def __init__(self, access_key: str, secret_key: str, session: requests.Session | None = None) -> None:
        self.http = JsonHttpClient(
            self.BASE_URL,
            session=session,
            params={"user": access_key, "key": secret_key, "version": "1"},
        )

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            payload = self.http.get_json(path, params=params)
        except ProviderResponseError as exc:
            if any(marker in str(exc.payload) for marker in FIREWALL_MARKERS):
                raise ProviderThrottledError("Billetweb") from exc
            raise
        if isinstance(payload, dict) and payload.get("error") == "unauthorized":
            if "limited rights to specific events" in str(payload.get("description", "")):
                raise ProviderMissingRightsError("Billetweb")
            raise ProviderResponseError(401, payload)
        return payload

    def check_credentials(self) -> None:
        now = datetime.now(tz=BILLETWEB_TIMEZONE)
        _ATTENDEES.validate_python(self._get("/attendees", {"last_update": str(int(now.timestamp()))}))

    def get_events_series(self, from_date: datetime, to_date: datetime | None = None) -> list[EventSerieWrapper]:
        params = {"last_update": str(int(ensure_aware(from_date).timestamp()))}
        if to_date is not None:
            params["to"] = str(int(ensure_aware(to_date).timestamp()))
        modified = _ATTENDEES.validate_python(self._get("/attendees", params))

        # Keep the provider order while deduplicating.
        event_ids = list(dict.fromkeys(attendee.event for attendee in modified))
        if not event_ids:
            return []

        events = {event.id: event for event in _EVENTS.validate_python(self._get("/events", {"past": "1"}))}
        wrappers: list[EventSerieWrapper] = []
        for event_id in event_ids:
            event = events.get(event_id)
            if event is None:
                raise ProviderDataError("Billetweb", f"event {event_id} has attendees but is not listed")
            wrapper = self._build_wrapper(event)
            if wrapper is not None:
                wrappers.append(wrapper)
        return wrappers

    def _build_wrapper(self, event: BilletwebEvent) -> EventSerieWrapper | None:
        if event.start is None or event.end is None:
            logger.warning("skipping billetweb event %s without dates", event.id)
            return None
        sessions = _SESSIONS.validate_python(self._get(f"/event/{event.id}/dates", {"past": "1"}))

        fallback_session_id = f"fallback_{event.id}_0"
        if event.multiple:
            lite_events = [
                LiteEvent(internal_ticketing_system_id=item.id, start_at=item.start, end_at=item.end)
                for item in sessions
            ]
        else:
            if sessions:
                raise ProviderDataError("Billetweb", f"event {event.id} is not multiple but has sessions")
            lite_events = [
                LiteEvent(internal_ticketing_system_id=fallback_session_id, start_at=event.start, end_at=event.end)
            ]
        known_sessions = {item.internal_ticketing_system_id for item in lite_events}

        tickets = _TICKETS.validate_python(self._get(f"/event/{event.id}/tickets"))
        categories = [
            LiteTicketCategory(
                internal_ticketing_system_id=ticket.id,
                name=ticket.name,
                description=ticket.description,
                price=max(ticket.price - ticket.commission, Decimal("0")),
            )
            for ticket in tickets
        ]
        known_categories = {category.internal_ticketing_system_id for category in categories}

        attendees = _EVENT_ATTENDEES.validate_python(self._get(f"/event/{event.id}/attendees"))
        totals: Counter[tuple[str, str]] = Counter()
        for attendee in attendees:
            # Refunded tickets are flagged as disabled.
            if attendee.disabled:
                continue
            session_id = fallback_session_id if attendee.order_session == "0" else attendee.order_session
            if session_id not in known_sessions:
                raise ProviderDataError("Billetweb", f"attendee of event {event.id} references unknown session {session_id}")
            if attendee.ticket_id not in known_categories:
                raise ProviderDataError("Billetweb", f"attendee of event {event.id} references unknown ticket {attendee.ticket_id}")
            totals[(session_id, attendee.ticket_id)] += 1

        return EventSerieWrapper(
            serie=LiteEventSerie(
                internal_ticketing_system_id=event.id,
                name=event.name,
                start_at=event.start,
                end_at=event.end,
                tax_rate=event.tax_rate / 100,
            ),
            ticket_categories=categories,
            events=lite_events,
            sales=[
                LiteEventSalesRecord(
                    internal_event_ticketing_system_id=session_id,
                    internal_ticket_category_ticketing_system_id=ticket_id,
                    total=total,
                )
                for (session_id, ticket_id), total in totals.items()
            ],
        )

