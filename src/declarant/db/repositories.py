from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import uuid4

from declarant.db.supabase_client import get_client


class StorageBackend(str, Enum):
    MEMORY = "memory"
    SUPABASE = "supabase"


def get_storage_backend() -> StorageBackend:
    raw = os.getenv("DECLARANT_STORAGE_BACKEND", StorageBackend.MEMORY.value).strip().lower()
    if raw == StorageBackend.SUPABASE.value:
        return StorageBackend.SUPABASE
    return StorageBackend.MEMORY


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# Amounts are stored as floats and timestamps as ISO strings, naive ones being UTC.
def row_decimal(value: Any) -> Decimal:
    return Decimal(str(value))


def row_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class _MemoryState:
    # table name -> row id -> row
    tables: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)

    def table(self, name: str) -> dict[str, dict[str, Any]]:
        return self.tables.setdefault(name, {})

    def reset(self) -> None:
        self.tables.clear()


_MEMORY_STATE = _MemoryState()


class _BaseRepository:
    TABLE = ""

    def __init__(self) -> None:
        self.backend = get_storage_backend()
        self.client = get_client() if self.backend == StorageBackend.SUPABASE else None

    def _rows(self) -> dict[str, dict[str, Any]]:
        return _MEMORY_STATE.table(self.TABLE)

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        if "id" not in row:
            row = {**row, "id": str(uuid4())}
        if self.backend == StorageBackend.MEMORY:
            self._rows()[row["id"]] = dict(row)
            return row
        response = self.client.table(self.TABLE).insert(row).execute()
        return (response.data or [row])[0]

    def insert_many(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not rows:
            return []
        rows = [row if "id" in row else {**row, "id": str(uuid4())} for row in rows]
        if self.backend == StorageBackend.MEMORY:
            for row in rows:
                self._rows()[row["id"]] = dict(row)
            return rows
        response = self.client.table(self.TABLE).insert(rows).execute()
        return response.data or rows

    def update(self, row_id: str, values: dict[str, Any]) -> None:
        if self.backend == StorageBackend.MEMORY:
            self._rows()[row_id].update(values)
            return
        self.client.table(self.TABLE).update(values).eq("id", row_id).execute()

    def delete_many(self, row_ids: Iterable[str]) -> None:
        ids = list(row_ids)
        if not ids:
            return
        if self.backend == StorageBackend.MEMORY:
            rows = self._rows()
            for row_id in ids:
                rows.pop(row_id, None)
            return
        self.client.table(self.TABLE).delete().in_("id", ids).execute()

    def get(self, row_id: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            row = self._rows().get(row_id)
            return dict(row) if row else None
        response = self.client.table(self.TABLE).select("*").eq("id", row_id).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None

    def list_all(self) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            return [dict(row) for row in self._rows().values()]
        response = self.client.table(self.TABLE).select("*").execute()
        return response.data or []

    def list_where_in(self, column: str, values: Iterable[Any]) -> list[dict[str, Any]]:
        wanted = list(values)
        if not wanted:
            return []
        if self.backend == StorageBackend.MEMORY:
            lookup = set(wanted)
            return [dict(row) for row in self._rows().values() if row.get(column) in lookup]
        response = self.client.table(self.TABLE).select("*").in_(column, wanted).execute()
        return response.data or []


class TicketingSystemRepository(_BaseRepository):
    TABLE = "ticketing_systems"

    def list_for_organization(self, organization_id: str) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            return [
                dict(row)
                for row in self._rows().values()
                if row["organization_id"] == organization_id and not row.get("deleted_at")
            ]
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("organization_id", organization_id)
            .is_("deleted_at", "null")
            .execute()
        )
        return response.data or []

    def record_success(self, ticketing_system_id: str, synchronized_at: datetime) -> None:
        self.update(
            ticketing_system_id,
            {
                "last_synchronization_at": synchronized_at.isoformat(),
                "force_next_synchronization_from": None,
                "last_processing_error": None,
                "last_processing_error_at": None,
                "updated_at": _now_iso(),
            },
        )

    def record_error(self, ticketing_system_id: str, message: str) -> None:
        self.update(
            ticketing_system_id,
            {
                "last_processing_error": message,
                "last_processing_error_at": _now_iso(),
                "updated_at": _now_iso(),
            },
        )


class EventSerieRepository(_BaseRepository):
    """Series belong to an organization and a provider, not to one connection.

    A provider removed then connected again finds its series back.
    """

    TABLE = "event_series"

    def list_for_provider(
        self, organization_id: str, ticketing_system_name: str, internal_ids: Iterable[str]
    ) -> list[dict[str, Any]]:
        wanted = list(internal_ids)
        if not wanted:
            return []
        if self.backend == StorageBackend.MEMORY:
            lookup = set(wanted)
            return [
                dict(row)
                for row in self._rows().values()
                if row["organization_id"] == organization_id
                and row["ticketing_system_name"] == ticketing_system_name
                and row["internal_ticketing_system_id"] in lookup
            ]
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("organization_id", organization_id)
            .eq("ticketing_system_name", ticketing_system_name)
            .in_("internal_ticketing_system_id", wanted)
            .execute()
        )
        return response.data or []


class EventRepository(_BaseRepository):
    TABLE = "events"

    def list_for_series(self, event_serie_ids: Iterable[str]) -> list[dict[str, Any]]:
        return self.list_where_in("event_serie_id", event_serie_ids)


class TicketCategoryRepository(_BaseRepository):
    TABLE = "ticket_categories"

    def list_for_series(self, event_serie_ids: Iterable[str]) -> list[dict[str, Any]]:
        return self.list_where_in("event_serie_id", event_serie_ids)


class EventCategoryTicketsRepository(_BaseRepository):
    TABLE = "event_category_tickets"

    def list_for_events(self, event_ids: Iterable[str]) -> list[dict[str, Any]]:
        return self.list_where_in("event_id", event_ids)


class EventSerieDeclarationRepository(_BaseRepository):
    TABLE = "event_serie_declarations"

    def event_serie_ids_with_declaration(self, event_serie_ids: Iterable[str]) -> set[str]:
        return {row["event_serie_id"] for row in self.list_where_in("event_serie_id", event_serie_ids)}


class AgencyRepository(_BaseRepository):
    """Agencies keyed by email with one list of postal code matchers."""

    CODES_COLUMN = ""

    def list_lite(self) -> dict[str, list[str]]:
        return {row["email"]: sorted(row[self.CODES_COLUMN]) for row in self.list_all()}

    def create_many(self, agencies: list[tuple[str, list[str]]]) -> None:
        self.insert_many([{"email": email, self.CODES_COLUMN: codes} for email, codes in agencies])

    def update_codes(self, email: str, codes: list[str]) -> None:
        if self.backend == StorageBackend.MEMORY:
            for row in self._rows().values():
                if row["email"] == email:
                    row[self.CODES_COLUMN] = list(codes)
            return
        self.client.table(self.TABLE).update({self.CODES_COLUMN: codes}).eq("email", email).execute()

    def delete_by_emails(self, emails: list[str]) -> None:
        if not emails:
            return
        if self.backend == StorageBackend.MEMORY:
            self.delete_many([row_id for row_id, row in self._rows().items() if row["email"] in set(emails)])
            return
        self.client.table(self.TABLE).delete().in_("email", emails).execute()


class SacdAgencyRepository(AgencyRepository):
    TABLE = "sacd_agencies"
    CODES_COLUMN = "matching_french_postal_codes_prefixes"


class SacemAgencyRepository(AgencyRepository):
    TABLE = "sacem_agencies"
    CODES_COLUMN = "matching_french_postal_codes"


def reset_memory_backend() -> None:
    _MEMORY_STATE.reset()
