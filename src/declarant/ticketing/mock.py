from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from declarant.models.canonical import (
    EventSerieWrapper,
    LiteEvent,
    LiteEventSalesRecord,
    LiteEventSerie,
    LiteTicketCategory,
)
from declarant.ticketing.base import TicketingSystemClient

DEFAULT_TAX_RATE = Decimal("0.055")
_PURCHASE_NOTICE = "Suite à votre achat, vous recevrez par email votre place"


def _at(year: int, month: int, day: int, hour: int = 19) -> datetime:
    return datetime(year, month, day, hour, 0, tzinfo=timezone.utc)


def _sales(records: list[tuple[str, str, int]]) -> list[LiteEventSalesRecord]:
    return [
        LiteEventSalesRecord(
            internal_event_ticketing_system_id=event_id,
            internal_ticket_category_ticketing_system_id=category_id,
            total=total,
        )
        for event_id, category_id, total in records
    ]


class MockTicketingSystemClient(TicketingSystemClient):
    """Fixed data for non-production environments, always the same so diffs stay empty."""

    def check_credentials(self) -> None:
        return None

    def get_events_series(self, from_date: datetime, to_date: datetime | None = None) -> list[EventSerieWrapper]:
        return [
            EventSerieWrapper(
                serie=LiteEventSerie(
                    internal_ticketing_system_id="s1",
                    name="Mon premier coucou",
                    start_at=_at(2024, 12, 18),
                    end_at=_at(2024, 12, 30, 21),
                    tax_rate=DEFAULT_TAX_RATE,
                ),
                events=[
                    LiteEvent(internal_ticketing_system_id="e1-1", start_at=_at(2024, 12, 18), end_at=_at(2024, 12, 18, 21)),
                ],
                ticket_categories=[
                    LiteTicketCategory(
                        internal_ticketing_system_id="t1-1",
                        name="Place adulte",
                        description=_PURCHASE_NOTICE,
                        price=Decimal("12"),
                    ),
                    LiteTicketCategory(
                        internal_ticketing_system_id="t1-2",
                        name="Place enfant",
                        description=_PURCHASE_NOTICE,
                        price=Decimal("6"),
                    ),
                ],
                sales=_sales([("e1-1", "t1-1", 13), ("e1-1", "t1-2", 23)]),
            ),
            EventSerieWrapper(
                serie=LiteEventSerie(
                    internal_ticketing_system_id="s2",
                    name="Un coucou au soleil",
                    start_at=_at(2025, 1, 1),
                    end_at=_at(2025, 1, 20, 21),
                    tax_rate=DEFAULT_TAX_RATE,
                ),
                events=[
                    LiteEvent(internal_ticketing_system_id="e2-1", start_at=_at(2025, 1, 1), end_at=_at(2025, 1, 1, 21)),
                    LiteEvent(internal_ticketing_system_id="e2-2", start_at=_at(2025, 1, 20), end_at=_at(2025, 1, 20, 21)),
                ],
                ticket_categories=[
                    LiteTicketCategory(
                        internal_ticketing_system_id="t2-1",
                        name="Place adulte",
                        description=_PURCHASE_NOTICE,
                        price=Decimal("20"),
                    ),
                    LiteTicketCategory(
                        internal_ticketing_system_id="t2-2",
                        name="Place enfant",
                        description=_PURCHASE_NOTICE,
                        price=Decimal("5"),
                    ),
                    LiteTicketCategory(
                        internal_ticketing_system_id="t2-3",
                        name="Adhérent",
                        description="Tarif réservé aux adhérents de la saison 2024/2025",
                        price=Decimal("12"),
                    ),
                ],
                sales=_sales(
                    [
                        ("e2-1", "t2-1", 40),
                        ("e2-1", "t2-2", 5),
                        ("e2-2", "t2-1", 30),
                        ("e2-2", "t2-3", 5),
                        ("e2-2", "t2-2", 3),
                    ]
                ),
            ),
        ]
