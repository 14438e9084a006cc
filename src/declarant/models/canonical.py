from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from declarant.errors import UnsupportedTicketingSystemError


class TicketingSystemName(str, Enum):
    BILLETWEB = "BILLETWEB"
    HELLOASSO = "HELLOASSO"
    MAPADO = "MAPADO"
    SUPERSONIKS = "SUPERSONIKS"
    MANUAL = "MANUAL"


def parse_ticketing_system_name(raw: str) -> TicketingSystemName:
    try:
        return TicketingSystemName(raw)
    except ValueError as exc:
        raise UnsupportedTicketingSystemError(raw) from exc


class LiteEventSerie(BaseModel):
    internal_ticketing_system_id: str
    name: str
    start_at: datetime
    end_at: datetime
    tax_rate: Decimal = Field(ge=0)


class LiteEvent(BaseModel):
    internal_ticketing_system_id: str
    start_at: datetime
    end_at: datetime


class LiteTicketCategory(BaseModel):
    internal_ticketing_system_id: str
    name: str
    description: str | None = None
    price: Decimal = Field(ge=0)


class LiteEventSalesRecord(BaseModel):
    internal_event_ticketing_system_id: str
    internal_ticket_category_ticketing_system_id: str
    total: int = Field(ge=0)


class EventSerieWrapper(BaseModel):
    """One serie with everything a provider returned for it in a pull window."""

    serie: LiteEventSerie
    ticket_categories: list[LiteTicketCategory] = Field(default_factory=list)
    events: list[LiteEvent] = Field(default_factory=list)
    sales: list[LiteEventSalesRecord] = Field(default_factory=list)


class TicketingSystem(BaseModel):
    """A ticketing connection configured by an organization."""

    id: str
    organization_id: str
    name: TicketingSystemName
    api_access_key: str | None = None
    api_secret_key: str | None = None
    last_synchronization_at: datetime | None = None
    force_next_synchronization_from: datetime | None = None
    last_processing_error: str | None = None
    last_processing_error_at: datetime | None = None
