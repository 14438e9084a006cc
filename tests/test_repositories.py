from datetime import datetime, timezone
from typing import Any

import pytest

from declarant.db import SacdAgencyRepository, TicketingSystemRepository, reset_memory_backend
from declarant.db import repositories


class FakeResponse:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    def __init__(self, client: "FakeSupabaseClient", table: str) -> None:
        self.client = client
        self.calls: list[tuple[Any, ...]] = [("table", table)]

    def __getattr__(self, name: str):
        def record(*args: Any) -> "FakeQuery":
            self.calls.append((name, *args))
            return self

        return record

    def execute(self) -> FakeResponse:
        self.client.executed.append(self.calls)
        return FakeResponse(self.client.data)


class FakeSupabaseClient:
    def __init__(self, data: list[dict[str, Any]] | None = None) -> None:
        self.data = data or []
        self.executed: list[list[tuple[Any, ...]]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


@pytest.fixture()
def memory_backend(monkeypatch) -> None:
    monkeypatch.setenv("DECLARANT_STORAGE_BACKEND", "memory")
    reset_memory_backend()


@pytest.fixture()
def supabase_client(monkeypatch) -> FakeSupabaseClient:
    client = FakeSupabaseClient([{"id": "ts-1", "organization_id": "org-1", "name": "MAPADO"}])
    monkeypatch.setenv("DECLARANT_STORAGE_BACKEND", "supabase")
    monkeypatch.setattr(repositories, "get_client", lambda: client)
    return client


def test_deleted_ticketing_systems_are_not_listed(memory_backend) -> None:
    repository = TicketingSystemRepository()
    repository.insert({"id": "ts-1", "organization_id": "org-1", "name": "MAPADO"})
    repository.insert({"id": "ts-2", "organization_id": "org-1", "name": "BILLETWEB", "deleted_at": "2025-01-01"})
    repository.insert({"id": "ts-3", "organization_id": "org-2", "name": "MAPADO"})

    assert [row["id"] for row in repository.list_for_organization("org-1")] == ["ts-1"]


def test_record_success_clears_processing_error(memory_backend) -> None:
    repository = TicketingSystemRepository()
    repository.insert({"id": "ts-1", "organization_id": "org-1", "name": "MAPADO"})
    repository.record_error("ts-1", "boom")
    repository.record_success("ts-1", datetime(2025, 2, 1, tzinfo=timezone.utc))

    row = repository.get("ts-1")
    assert row["last_processing_error"] is None
    assert row["last_processing_error_at"] is None
    assert row["last_synchronization_at"] == "2025-02-01T00:00:00+00:00"


def test_agency_repository_works_by_email(memory_backend) -> None:
    repository = SacdAgencyRepository()
    repository.create_many([("paris@sacd.fr", ["75", "92"]), ("lyon@sacd.fr", ["69"])])
    repository.update_codes("lyon@sacd.fr", ["01", "69"])
    repository.delete_by_emails(["paris@sacd.fr"])

    assert repository.list_lite() == {"lyon@sacd.fr": ["01", "69"]}


def test_supabase_listing_filters_deleted_rows(supabase_client: FakeSupabaseClient) -> None:
    rows = TicketingSystemRepository().list_for_organization("org-1")

    assert rows == supabase_client.data
    assert supabase_client.executed == [
        [
            ("table", "ticketing_systems"),
            ("select", "*"),
            ("eq", "organization_id", "org-1"),
            ("is_", "deleted_at", "null"),
        ]
    ]


def test_supabase_agency_deletion_uses_emails(supabase_client: FakeSupabaseClient) -> None:
    SacdAgencyRepository().delete_by_emails(["paris@sacd.fr"])

    assert supabase_client.executed == [
        [("table", "sacd_agencies"), ("delete",), ("in_", "email", ["paris@sacd.fr"])]
    ]


def test_supabase_requires_settings(monkeypatch) -> None:
    from declarant.db import supabase_client

    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)
    supabase_client.get_client.cache_clear()

    with pytest.raises(RuntimeError, match="SUPABASE_URL"):
        supabase_client.get_client()
