"""Per-event views of a declaration and the aggregates shown to organizers.

Events may override the place, capacity, audience and ticketing tax rate of
their serie. Flattening resolves each of those to one value so the builders
never look at the serie again.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Protocol, Sequence, TypeVar

from declarant.declaration.amounts import (
    get_excluding_taxes_amount_from_including_taxes_amount,
    get_tax_amount_from_including_and_excluding_taxes_amounts,
    truncate_amount,
)
from declarant.models.declaration import (
    DeclarationEvent,
    DeclarationEventSerie,
    EventCategorySales,
    FlattenSacdEvent,
    FlattenSacemEvent,
    KeyFigures,
    SacemKeyFigures,
)

T = TypeVar("T")


class _TicketingFigures(Protocol):
    ticketing_revenue_including_taxes: Decimal
    ticketing_revenue_excluding_taxes: Decimal
    free_tickets: int
    paid_tickets: int


def effective_value(override: T | None, default: T) -> T:
    """Return ``override`` unless it is ``None``; zero and empty values still win."""
    return default if override is None else override


def get_flatten_events_for_sacd_declaration(
    event_serie: DeclarationEventSerie, events: Sequence[DeclarationEvent]
) -> list[FlattenSacdEvent]:
    return [
        FlattenSacdEvent(
            id=event.id,
            start_at=event.start_at,
            end_at=event.end_at,
            ticketing_revenue_including_taxes=event.ticketing_revenue_including_taxes,
            ticketing_revenue_excluding_taxes=event.ticketing_revenue_excluding_taxes,
            ticketing_revenue_tax_rate=effective_value(
                event.ticketing_revenue_tax_rate_override, event_serie.ticketing_revenue_tax_rate
            ),
            free_tickets=event.free_tickets,
            paid_tickets=event.paid_tickets,
            place=effective_value(event.place_override, event_serie.place),
            place_capacity=effective_value(event.place_capacity_override, event_serie.place_capacity),
            audience=effective_value(event.audience_override, event_serie.audience),
        )
        for event in events
    ]


def get_flatten_events_for_sacem_declaration(
    event_serie: DeclarationEventSerie, events: Sequence[DeclarationEvent]
) -> list[FlattenSacemEvent]:
    return [
        FlattenSacemEvent(
            start_at=event.start_at,
            ticketing_revenue_including_taxes=event.ticketing_revenue_including_taxes,
            ticketing_revenue_excluding_taxes=event.ticketing_revenue_excluding_taxes,
            consumptions_revenue_including_taxes=event.consumptions_revenue_including_taxes,
            consumptions_revenue_excluding_taxes=event.consumptions_revenue_excluding_taxes,
            consumptions_revenue_tax_rate=event.consumptions_revenue_tax_rate,
            catering_revenue_including_taxes=event.catering_revenue_including_taxes,
            catering_revenue_excluding_taxes=event.catering_revenue_excluding_taxes,
            catering_revenue_tax_rate=event.catering_revenue_tax_rate,
            program_sales_revenue_including_taxes=event.program_sales_revenue_including_taxes,
            program_sales_revenue_excluding_taxes=event.program_sales_revenue_excluding_taxes,
            program_sales_revenue_tax_rate=event.program_sales_revenue_tax_rate,
            other_revenue_including_taxes=event.other_revenue_including_taxes,
            other_revenue_excluding_taxes=event.other_revenue_excluding_taxes,
            other_revenue_tax_rate=event.other_revenue_tax_rate,
            free_tickets=event.free_tickets,
            paid_tickets=event.paid_tickets,
            place=effective_value(event.place_override, event_serie.place),
            place_capacity=effective_value(event.place_capacity_override, event_serie.place_capacity),
            audience=effective_value(event.audience_override, event_serie.audience),
        )
        for event in events
    ]


def get_events_key_figures(events: Iterable[_TicketingFigures]) -> KeyFigures:
    figures = KeyFigures()
    for event in events:
        figures.ticketing_revenue_including_taxes += event.ticketing_revenue_including_taxes
        figures.ticketing_revenue_excluding_taxes += event.ticketing_revenue_excluding_taxes
        figures.free_tickets += event.free_tickets
        figures.paid_tickets += event.paid_tickets

    # Derived from the sums, events may not share a tax rate
    figures.ticketing_revenue_taxes = get_tax_amount_from_including_and_excluding_taxes_amounts(
        figures.ticketing_revenue_including_taxes, figures.ticketing_revenue_excluding_taxes
    )
    return figures


def get_sacem_events_key_figures(events: Iterable[FlattenSacemEvent]) -> SacemKeyFigures:
    figures = SacemKeyFigures()
    for event in events:
        figures.non_ticketing_revenue_including_taxes += (
            event.consumptions_revenue_including_taxes
            + event.catering_revenue_including_taxes
            + event.program_sales_revenue_including_taxes
            + event.other_revenue_including_taxes
        )
        figures.non_ticketing_revenue_excluding_taxes += (
            event.consumptions_revenue_excluding_taxes
            + event.catering_revenue_excluding_taxes
            + event.program_sales_revenue_excluding_taxes
            + event.other_revenue_excluding_taxes
        )

    figures.non_ticketing_revenue_taxes = get_tax_amount_from_including_and_excluding_taxes_amounts(
        figures.non_ticketing_revenue_including_taxes, figures.non_ticketing_revenue_excluding_taxes
    )
    return figures


def get_ticketing_revenue_from_sales(sales: Iterable[EventCategorySales], tax_rate: Decimal) -> KeyFigures:
    """Prefill an event's ticketing figures from its synchronized sales.

    Manual corrections take precedence over the synchronized values. A
    category sold at price zero counts as free tickets.
    """
    including_taxes = Decimal("0")
    free_tickets = 0
    paid_tickets = 0
    for line in sales:
        total = effective_value(line.total_override, line.total)
        price = effective_value(line.price_override, line.price)
        if price == 0:
            free_tickets += total
        else:
            paid_tickets += total
        including_taxes += total * price

    excluding_taxes = truncate_amount(
        get_excluding_taxes_amount_from_including_taxes_amount(including_taxes, tax_rate)
    )
    return KeyFigures(
        ticketing_revenue_including_taxes=including_taxes,
        ticketing_revenue_excluding_taxes=excluding_taxes,
        ticketing_revenue_taxes=including_taxes - excluding_taxes,
        free_tickets=free_tickets,
        paid_tickets=paid_tickets,
    )
