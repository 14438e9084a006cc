from __future__ import annotations

from declarant.config import is_production, mock_disabled_user_ids
from declarant.errors import MissingCredentialsError, UnsupportedTicketingSystemError
from declarant.models.canonical import TicketingSystem, TicketingSystemName
from declarant.ticketing.base import TicketingSystemClient
from declarant.ticketing.billetweb import BilletwebClient
from declarant.ticketing.helloasso import HelloAssoClient
from declarant.ticketing.mapado import MapadoClient
from declarant.ticketing.mock import MockTicketingSystemClient
from declarant.ticketing.supersoniks import SupersoniksClient


def _require(ticketing_system: TicketingSystem, field_name: str) -> str:
    value = getattr(ticketing_system, field_name)
    if not value:
        raise MissingCredentialsError(ticketing_system.name.value, field_name)
    return value


def get_ticketing_system_client(ticketing_system: TicketingSystem, user_id: str | None = None) -> TicketingSystemClient:
    if not is_production() and user_id not in mock_disabled_user_ids():
        return MockTicketingSystemClient()

    name = ticketing_system.name
    if name == TicketingSystemName.BILLETWEB:
        return BilletwebClient(_require(ticketing_system, "api_access_key"), _require(ticketing_system, "api_secret_key"))
    if name == TicketingSystemName.HELLOASSO:
        return HelloAssoClient(_require(ticketing_system, "api_access_key"), _require(ticketing_system, "api_secret_key"))
    if name == TicketingSystemName.MAPADO:
        return MapadoClient(_require(ticketing_system, "api_secret_key"))
    if name == TicketingSystemName.SUPERSONIKS:
        return SupersoniksClient(_require(ticketing_system, "api_access_key"), _require(ticketing_system, "api_secret_key"))
    raise UnsupportedTicketingSystemError(str(getattr(name, "value", name)))
