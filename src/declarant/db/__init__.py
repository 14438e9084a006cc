from .repositories import (
    EventCategoryTicketsRepository,
    EventRepository,
    EventSerieDeclarationRepository,
    EventSerieRepository,
    SacdAgencyRepository,
    SacemAgencyRepository,
    StorageBackend,
    TicketCategoryRepository,
    TicketingSystemRepository,
    get_storage_backend,
    reset_memory_backend,
)

__all__ = [
    "EventCategoryTicketsRepository",
    "EventRepository",
    "EventSerieDeclarationRepository",
    "EventSerieRepository",
    "SacdAgencyRepository",
    "SacemAgencyRepository",
    "StorageBackend",
    "TicketCategoryRepository",
    "TicketingSystemRepository",
    "get_storage_backend",
    "reset_memory_backend",
]
