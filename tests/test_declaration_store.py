from datetime import datetime, timezone
from decimal import Decimal

import pytest

from declarant.db import (
    EventCategoryTicketsRepository,
    EventRepository,
    EventSerieRepository,
    TicketCategoryRepository,
    TicketingSystemRepository,
    reset_memory_backend,
)
from declarant.declaration.store import DeclarationInputsLoader
from declarant.errors import EventSerieNotFoundError
from declarant.models.declaration import Audience
from declarant.ticketing.mock import MockTicketingSystemClient
from declarant.ticketing.synchronize import OrganizationLocks, TicketingSynchronizer


NOW = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _memory_backend(monkeypatch) -> None:
    monkeypatch.setenv("DECLARANT_STORAGE_BACKEND", "memory")
    reset_memory_backend()
    TicketingSystemRepository().insert({"organization_id": "org-1", "name": "MAPADO"})
    TicketingSynchronizer(
        client_factory=lambda ticketing_system, user_id: MockTicketingSystemClient(),
        clock=lambda: NOW,
        locks=OrganizationLocks(),
    ).synchronize_organization("org-1")


def _serie_id(internal_id: str) -> str:
    return next(row["id"] for row in EventSerieRepository().list_all() if row["internal_ticketing_system_id"] == internal_id)


def _category_id(internal_id: str) -> str:
    return next(row["id"] for row in TicketCategoryRepository().list_all() if row["internal_ticketing_system_id"] == internal_id)


def test_events_are_prefilled_from_synchronized_sales() -> None:
    event_serie, events = DeclarationInputsLoader().load(_serie_id("s1"))

    assert event_serie.name == "Mon premier coucou"
    assert event_serie.ticketing_revenue_tax_rate == Decimal("0.055")
    [event] = events
    assert event.ticketing_revenue_including_taxes == Decimal("294")
    assert event.ticketing_revenue_excluding_taxes == Decimal("278.67")
    assert event.paid_tickets == 36
    assert event.free_tickets == 0


def test_sales_corrections_and_event_overrides_are_applied() -> None:
    child_sales = next(
        row for row in EventCategoryTicketsRepository().list_all() if row["category_id"] == _category_id("t1-2")
    )
    EventCategoryTicketsRepository().update(child_sales["id"], {"price_override": 0.0})
    event_row = next(row for row in EventRepository().list_all() if row["internal_ticketing_system_id"] == "e1-1")
    EventRepository().update(
        event_row["id"], {"ticketing_revenue_tax_rate_override": 0.2, "audience_override": "YOUNG"}
    )

    _, [event] = DeclarationInputsLoader().load(_serie_id("s1"))

    assert event.ticketing_revenue_including_taxes == Decimal("156")
    assert event.ticketing_revenue_excluding_taxes == Decimal("130.00")
    assert event.free_tickets == 23
    assert event.paid_tickets == 13
    assert event.ticketing_revenue_tax_rate_override == Decimal("0.2")
    assert event.audience_override == Audience.YOUNG


def test_events_are_ordered_by_start() -> None:
    _, events = DeclarationInputsLoader().load(_serie_id("s2"))

    assert [event.start_at for event in events] == sorted(event.start_at for event in events)
    assert len(events) == 2


def test_unknown_serie_is_reported() -> None:
    with pytest.raises(EventSerieNotFoundError):
        DeclarationInputsLoader().load("missing")
