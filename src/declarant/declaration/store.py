"""Declaration inputs prefilled from synchronized ticketing data.

Events get their ticketing revenue and ticket counts from the stored sales,
manual corrections on those sales included.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any

from declarant.db.repositories import (
    EventCategoryTicketsRepository,
    EventRepository,
    EventSerieRepository,
    TicketCategoryRepository,
    row_datetime,
    row_decimal,
)
from declarant.declaration.format import effective_value, get_ticketing_revenue_from_sales
from declarant.errors import EventSerieNotFoundError
from declarant.models.declaration import Audience, DeclarationEvent, DeclarationEventSerie, EventCategorySales


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else row_decimal(value)


def event_serie_from_row(row: dict[str, Any]) -> DeclarationEventSerie:
    return DeclarationEventSerie(
        id=row["id"],
        name=row["name"],
        producer_official_id=row.get("producer_official_id"),
        producer_name=row.get("producer_name"),
        place_capacity=row.get("place_capacity"),
        audience=Audience(row.get("audience") or Audience.ALL.value),
        ticketing_revenue_tax_rate=row_decimal(row["ticketing_revenue_tax_rate"]),
    )


class DeclarationInputsLoader:
    def __init__(
        self,
        event_series: EventSerieRepository | None = None,
        events: EventRepository | None = None,
        ticket_categories: TicketCategoryRepository | None = None,
        event_category_tickets: EventCategoryTicketsRepository | None = None,
    ) -> None:
        self.event_series = event_series or EventSerieRepository()
        self.events = events or EventRepository()
        self.ticket_categories = ticket_categories or TicketCategoryRepository()
        self.event_category_tickets = event_category_tickets or EventCategoryTicketsRepository()

    def load(self, event_serie_id: str) -> tuple[DeclarationEventSerie, list[DeclarationEvent]]:
        serie_row = self.event_series.get(event_serie_id)
        if serie_row is None:
            raise EventSerieNotFoundError(event_serie_id)
        event_serie = event_serie_from_row(serie_row)

        event_rows = sorted(self.events.list_for_series([event_serie_id]), key=lambda row: row_datetime(row["start_at"]))
        prices = {row["id"]: row_decimal(row["price"]) for row in self.ticket_categories.list_for_series([event_serie_id])}
        sales_by_event: dict[str, list[EventCategorySales]] = defaultdict(list)
        for row in self.event_category_tickets.list_for_events(row["id"] for row in event_rows):
            sales_by_event[row["event_id"]].append(
                EventCategorySales(
                    total=row["total"],
                    total_override=row.get("total_override"),
                    price=prices[row["category_id"]],
                    price_override=_optional_decimal(row.get("price_override")),
                )
            )

        events = []
        for row in event_rows:
            tax_rate_override = _optional_decimal(row.get("ticketing_revenue_tax_rate_override"))
            figures = get_ticketing_revenue_from_sales(
                sales_by_event[row["id"]],
                effective_value(tax_rate_override, event_serie.ticketing_revenue_tax_rate),
            )
            audience_override = row.get("audience_override")
            events.append(
                DeclarationEvent(
                    id=row["id"],
                    start_at=row_datetime(row["start_at"]),
                    end_at=row_datetime(row["end_at"]),
                    ticketing_revenue_including_taxes=figures.ticketing_revenue_including_taxes,
                    ticketing_revenue_excluding_taxes=figures.ticketing_revenue_excluding_taxes,
                    free_tickets=figures.free_tickets,
                    paid_tickets=figures.paid_tickets,
                    place_capacity_override=row.get("place_capacity_override"),
                    audience_override=Audience(audience_override) if audience_override else None,
                    ticketing_revenue_tax_rate_override=tax_rate_override,
                )
            )
        return event_serie, events
