from .base import TicketingSystemClient
from .billetweb import BilletwebClient
from .factory import get_ticketing_system_client
from .helloasso import HelloAssoClient
from .mapado import MapadoClient
from .mock import MockTicketingSystemClient
from .supersoniks import SupersoniksClient

__all__ = [
    "BilletwebClient",
    "HelloAssoClient",
    "MapadoClient",
    "MockTicketingSystemClient",
    "SupersoniksClient",
    "TicketingSystemClient",
    "get_ticketing_system_client",
]
