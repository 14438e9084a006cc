from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generic, Literal, TypeVar

import requests
from pydantic import BaseModel, ConfigDict, Field, field_validator

from declarant.errors import ProviderDataError
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

# Large enough to never paginate, checked against hydra:totalItems.
ITEMS_PER_PAGE = 100_000_000

EVENT_DATE_ID = re.compile(r"/v1/event_dates/(\d+)")
TICKET_PRICE_ID = re.compile(r"/v1/ticket_prices/(\d+)")
TICKETING_ID = re.compile(r"/v1/ticketings/(\d+)")

T = TypeVar("T")


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class MapadoCollection(_Schema, Generic[T]):
    total_items: int = Field(alias="hydra:totalItems", ge=0)
    members: list[T] = Field(alias="hydra:member")


class MapadoRecentTicketEventDate(_Schema):
    ticketing: str = Field(min_length=1)


class MapadoRecentTicket(_Schema):
    event_date: MapadoRecentTicketEventDate = Field(alias="eventDate")
    updated_at: datetime = Field(alias="updatedAt")


class MapadoTicket(_Schema):
    status: Literal["payed", "refunded", "booked", "cancelled"]
    ticket_price: str | None = Field(alias="ticketPrice", default=None)
    event_date: str = Field(alias="eventDate", min_length=1)
    is_valid: bool = Field(alias="isValid")
    imported: bool


class MapadoTicketing(_Schema):
    id: str = Field(alias="@id", min_length=1)
    type: Literal["dated_events", "undated_event", "offer"]
    title: str = Field(min_length=1)
    currency: Literal["EUR"]
    event_date_list: list[str] = Field(alias="eventDateList")


class MapadoTax(_Schema):
    rate: Decimal = Field(ge=0)


class MapadoTicketPrice(_Schema):
    id: int = Field(ge=0)
    name: str | None = None
    description: str | None = None
    currency: Literal["EUR"]
    # cents
    facial_value: int = Field(alias="facialValue", ge=0)
    tax: MapadoTax

    @field_validator("name", "description", mode="before")
    @classmethod
    def _empty_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class MapadoEventDate(_Schema):
    id: str = Field(alias="@id", min_length=1)
    start_date: datetime | None = Field(alias="startDate", default=None)
    end_date: datetime | None = Field(alias="endDate", default=None)
    start_of_event_day: datetime | None = Field(alias="startOfEventDay", default=None)
    end_of_event_day: datetime | None = Field(alias="endOfEventDay", default=None)
    ticket_price_list: list[MapadoTicketPrice] = Field(alias="ticketPriceList", default_factory=list)


def _extract_id(pattern: re.Pattern[str], value: str) -> str:
    match = pattern.search(value)
    if match is None:
        raise ProviderDataError("Mapado", f"unexpected identifier {value!r}")
    return match.group(1)


class MapadoClient(TicketingSystemClient):
    BASE_URL = "https://ticketing.mapado.net/"

    def __init__(self, secret_key: str, session: requests.Session | None = None) -> None:
        self.http = JsonHttpClient(
            self.BASE_URL,
            session=session,
            headers={"Authorization": f"Bearer {secret_key}"},
        )

    def _collection(self, path: str, member: type[T], params: dict[str, Any]) -> list[T]:
        payload = self.http.get_json(path, params=params)
        collection = MapadoCollection[member].model_validate(payload)  # type: ignore[valid-type]
        if collection.total_items > ITEMS_PER_PAGE:
            raise ProviderDataError("Mapado", "collection is larger than a single page")
        return collection.members

    def check_credentials(self) -> None:
        self._collection(
            "/v1/tickets",
            MapadoRecentTicket,
            {
                "user": "me",
                "updatedSince": datetime.now(timezone.utc).isoformat(),
                "itemsPerPage": 1,
                "fields": "eventDate{ticketing},updatedAt",
            },
        )

    def get_events_series(self, from_date: datetime, to_date: datetime | None = None) -> list[EventSerieWrapper]:
        recent = self._collection(
            "/v1/tickets",
            MapadoRecentTicket,
            {
                "user": "me",
                "updatedSince": ensure_aware(from_date).isoformat(),
                "itemsPerPage": ITEMS_PER_PAGE,
                "fields": "eventDate{ticketing},updatedAt",
            },
        )
        if to_date is not None:
            recent = [ticket for ticket in recent if ticket.updated_at < ensure_aware(to_date)]

        ticketing_ids = list(dict.fromkeys(ticket.event_date.ticketing for ticket in recent))
        if not ticketing_ids:
            return []

        ticketings = self._collection(
            "/v1/ticketings",
            MapadoTicketing,
            {
                "@id": ",".join(ticketing_ids),
                "itemsPerPage": ITEMS_PER_PAGE,
                "fields": "type,title,eventDateList,currency",
            },
        )

        wrappers: list[EventSerieWrapper] = []
        for ticketing in ticketings:
            if ticketing.type != "dated_events":
                continue
            if not ticketing.event_date_list:
                logger.warning("skipping mapado ticketing %s without dates", ticketing.id)
                continue
            wrappers.append(self._build_wrapper(ticketing))
        return wrappers

    def _build_wrapper(self, ticketing: MapadoTicketing) -> EventSerieWrapper:
        event_dates = self._collection(
            "/v1/event_dates",
            MapadoEventDate,
            {
                "@id": ",".join(ticketing.event_date_list),
                "itemsPerPage": ITEMS_PER_PAGE,
                "fields": (
                    "@id,startDate,endDate,startOfEventDay,endOfEventDay,"
                    "ticketPriceList{id,type,name,description,currency,facialValue,tax{rate,countryCode},valueIncvat}"
                ),
            },
        )

        events: list[LiteEvent] = []
        categories: list[LiteTicketCategory] = []
        # Ticket prices are duplicated per date, identical ones collapse on the first id.
        main_category_ids: dict[str, str] = {}
        tax_rate: Decimal | None = None

        for event_date in event_dates:
            start_at = event_date.start_date or event_date.start_of_event_day
            end_at = event_date.end_date or event_date.end_of_event_day
            if start_at is None or end_at is None:
                raise ProviderDataError("Mapado", f"event date {event_date.id} has no bounds")
            events.append(
                LiteEvent(
                    internal_ticketing_system_id=_extract_id(EVENT_DATE_ID, event_date.id),
                    start_at=start_at,
                    end_at=end_at,
                )
            )

            for ticket_price in sorted(event_date.ticket_price_list, key=lambda item: item.id):
                if ticket_price.name is None:
                    raise ProviderDataError("Mapado", f"ticket price {ticket_price.id} has no name")
                category = LiteTicketCategory(
                    internal_ticketing_system_id=str(ticket_price.id),
                    name=ticket_price.name,
                    description=ticket_price.description,
                    price=Decimal(ticket_price.facial_value) / 100,
                )
                similar = next(
                    (
                        known
                        for known in categories
                        if (known.name, known.description, known.price) == (category.name, category.description, category.price)
                    ),
                    None,
                )
                if similar is None:
                    categories.append(category)
                elif similar.internal_ticketing_system_id != category.internal_ticketing_system_id:
                    current = main_category_ids.setdefault(category.internal_ticketing_system_id, similar.internal_ticketing_system_id)
                    if current != similar.internal_ticketing_system_id:
                        raise ProviderDataError("Mapado", f"ticket price {ticket_price.id} maps to two categories")

                # Mixed rates within a serie keep the highest one.
                tax_rate = ticket_price.tax.rate if tax_rate is None else max(tax_rate, ticket_price.tax.rate)

        tickets = self._collection(
            "/v1/tickets",
            MapadoTicket,
            {
                "user": "me",
                "ticketing": ticketing.id,
                "itemsPerPage": ITEMS_PER_PAGE,
                "fields": "status,ticketPrice,eventDate,isValid,imported",
            },
        )

        known_events = {event.internal_ticketing_system_id for event in events}
        known_categories = {category.internal_ticketing_system_id for category in categories}
        totals: Counter[tuple[str, str]] = Counter()
        for ticket in tickets:
            if ticket.status != "payed":
                continue
            if ticket.ticket_price is None:
                if ticket.imported:
                    continue
                raise ProviderDataError("Mapado", "a sold ticket has no price and was not imported")
            price_id = _extract_id(TICKET_PRICE_ID, ticket.ticket_price)
            category_id = main_category_ids.get(price_id, price_id)
            event_id = _extract_id(EVENT_DATE_ID, ticket.event_date)
            if category_id not in known_categories:
                raise ProviderDataError("Mapado", f"sold ticket references unknown price {price_id}")
            if event_id not in known_events:
                raise ProviderDataError("Mapado", f"sold ticket references unknown date {event_id}")
            totals[(event_id, category_id)] += 1

        return EventSerieWrapper(
            serie=LiteEventSerie(
                internal_ticketing_system_id=_extract_id(TICKETING_ID, ticketing.id),
                name=ticketing.title,
                start_at=min(event.start_at for event in events),
                end_at=max(event.end_at for event in events),
                tax_rate=tax_rate if tax_rate is not None else Decimal("0"),
            ),
            events=events,
            ticket_categories=categories,
            sales=[
                LiteEventSalesRecord(
                    internal_event_ticketing_system_id=event_id,
                    internal_ticket_category_ticketing_system_id=category_id,
                    total=total,
                )
                for (event_id, category_id), total in totals.items()
            ],
        )
