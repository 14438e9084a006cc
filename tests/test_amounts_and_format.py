from datetime import datetime, timezone
from decimal import Decimal

from declarant.declaration.amounts import (
    CURRENT_TAX_RATES,
    get_excluding_taxes_amount_from_including_taxes_amount,
    truncate_amount,
)
from declarant.declaration.format import (
    effective_value,
    get_events_key_figures,
    get_flatten_events_for_sacd_declaration,
    get_flatten_events_for_sacem_declaration,
    get_sacem_events_key_figures,
    get_ticketing_revenue_from_sales,
)
from declarant.models.declaration import (
    Address,
    Audience,
    DeclarationEvent,
    DeclarationEventSerie,
    EventCategorySales,
    Place,
)


SERIE_PLACE = Place(name="Théâtre des Lilas", address=Address(street="1 rue des Lilas", city="Lyon", postal_code="69001"))
OTHER_PLACE = Place(name="Salle des fêtes", address=Address(street="2 place du Marché", city="Bron", postal_code="69500"))


def _serie() -> DeclarationEventSerie:
    return DeclarationEventSerie(
        id="serie-1",
        name="Un coucou au soleil",
        place=SERIE_PLACE,
        place_capacity=200,
        audience=Audience.ALL,
        ticketing_revenue_tax_rate=Decimal("0.055"),
    )


def _event(event_id: str, including: str = "0", excluding: str = "0", **overrides) -> DeclarationEvent:
    return DeclarationEvent(
        id=event_id,
        start_at=datetime(2025, 1, 1, 19, 0, tzinfo=timezone.utc),
        end_at=datetime(2025, 1, 1, 21, 0, tzinfo=timezone.utc),
        ticketing_revenue_including_taxes=Decimal(including),
        ticketing_revenue_excluding_taxes=Decimal(excluding),
        **overrides,
    )


def test_tax_helpers() -> None:
    assert Decimal("0.055") in CURRENT_TAX_RATES
    excluding = get_excluding_taxes_amount_from_including_taxes_amount(Decimal("105.5"), Decimal("0.055"))
    assert truncate_amount(excluding) == Decimal("100.00")
    assert truncate_amount(Decimal("0.125")) == Decimal("0.13")


def test_effective_value_prefers_override_even_when_falsy() -> None:
    assert effective_value(None, 10) == 10
    assert effective_value(0, 10) == 0


def test_flatten_uses_serie_values_without_overrides() -> None:
    flatten = get_flatten_events_for_sacd_declaration(_serie(), [_event("e1")])

    assert flatten[0].place == SERIE_PLACE
    assert flatten[0].place_capacity == 200
    assert flatten[0].audience == Audience.ALL
    assert flatten[0].ticketing_revenue_tax_rate == Decimal("0.055")


def test_flatten_applies_event_overrides() -> None:
    event = _event(
        "e1",
        place_override=OTHER_PLACE,
        place_capacity_override=80,
        audience_override=Audience.YOUNG,
        ticketing_revenue_tax_rate_override=Decimal("0.021"),
    )

    sacd = get_flatten_events_for_sacd_declaration(_serie(), [event])
    sacem = get_flatten_events_for_sacem_declaration(_serie(), [event])

    assert sacd[0].place == OTHER_PLACE
    assert sacd[0].place_capacity == 80
    assert sacd[0].audience == Audience.YOUNG
    assert sacd[0].ticketing_revenue_tax_rate == Decimal("0.021")
    assert sacem[0].place == OTHER_PLACE
    assert sacem[0].audience == Audience.YOUNG


def test_no_events_gives_empty_flatten_and_zero_figures() -> None:
    assert get_flatten_events_for_sacd_declaration(_serie(), []) == []
    assert get_flatten_events_for_sacem_declaration(_serie(), []) == []

    figures = get_events_key_figures([])
    sacem_figures = get_sacem_events_key_figures([])

    assert figures.ticketing_revenue_including_taxes == 0
    assert figures.ticketing_revenue_excluding_taxes == 0
    assert figures.ticketing_revenue_taxes == 0
    assert figures.free_tickets == 0
    assert figures.paid_tickets == 0
    assert sacem_figures.non_ticketing_revenue_taxes == 0


def test_key_figures_derive_taxes_from_sums() -> None:
    events = get_flatten_events_for_sacd_declaration(
        _serie(),
        [
            _event("e1", "100", "94.79", free_tickets=2, paid_tickets=8),
            _event("e2", "50", "47.39", free_tickets=1, paid_tickets=4),
        ],
    )

    figures = get_events_key_figures(events)

    assert figures.ticketing_revenue_including_taxes == Decimal("150")
    assert figures.ticketing_revenue_excluding_taxes == Decimal("142.18")
    assert figures.ticketing_revenue_taxes == Decimal("7.82")
    assert figures.free_tickets == 3
    assert figures.paid_tickets == 12


def test_sacem_key_figures_sum_non_ticketing_revenues() -> None:
    event = _event(
        "e1",
        consumptions_revenue_including_taxes=Decimal("110"),
        consumptions_revenue_excluding_taxes=Decimal("100"),
        catering_revenue_including_taxes=Decimal("20"),
        catering_revenue_excluding_taxes=Decimal("18"),
        program_sales_revenue_including_taxes=Decimal("5"),
        program_sales_revenue_excluding_taxes=Decimal("5"),
        other_revenue_including_taxes=Decimal("12"),
        other_revenue_excluding_taxes=Decimal("10"),
    )

    figures = get_sacem_events_key_figures(get_flatten_events_for_sacem_declaration(_serie(), [event]))

    assert figures.non_ticketing_revenue_including_taxes == Decimal("147")
    assert figures.non_ticketing_revenue_excluding_taxes == Decimal("133")
    assert figures.non_ticketing_revenue_taxes == Decimal("14")


def test_ticketing_revenue_from_sales_applies_corrections() -> None:
    sales = [
        EventCategorySales(total=10, price=Decimal("12")),
        EventCategorySales(total=4, total_override=5, price=Decimal("6")),
        EventCategorySales(total=3, price=Decimal("8"), price_override=Decimal("0")),
    ]

    figures = get_ticketing_revenue_from_sales(sales, Decimal("0.055"))

    assert figures.ticketing_revenue_including_taxes == Decimal("150")
    assert figures.ticketing_revenue_excluding_taxes == Decimal("142.18")
    assert figures.ticketing_revenue_taxes == Decimal("7.82")
    assert figures.paid_tickets == 15
    assert figures.free_tickets == 3
