from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from declarant.api import app
from declarant.db import EventSerieRepository, TicketingSystemRepository, reset_memory_backend


@pytest.fixture(autouse=True)
def _memory_backend(monkeypatch) -> None:
    monkeypatch.setenv("DECLARANT_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("APP_MODE", "dev")
    reset_memory_backend()


def _serie() -> dict:
    return {
        "id": "serie-1",
        "name": "Un coucou au soleil",
        "place_capacity": 120,
        "ticketing_revenue_tax_rate": "0.055",
    }


def _events() -> list[dict]:
    return [
        {
            "id": "e1",
            "start_at": "2025-01-01T19:00:00Z",
            "end_at": "2025-01-01T21:00:00Z",
            "ticketing_revenue_including_taxes": "100",
            "ticketing_revenue_excluding_taxes": "94.79",
            "paid_tickets": 10,
            "catering_revenue_including_taxes": "22",
            "catering_revenue_excluding_taxes": "20",
        },
        {
            "id": "e2",
            "start_at": "2025-01-02T19:00:00Z",
            "end_at": "2025-01-02T21:00:00Z",
            "ticketing_revenue_including_taxes": "50",
            "ticketing_revenue_excluding_taxes": "47.39",
            "free_tickets": 2,
            "paid_tickets": 5,
        },
    ]


def test_health() -> None:
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_synchronize_organization_with_mock_data() -> None:
    TicketingSystemRepository().insert({"organization_id": "org-1", "name": "MAPADO", "api_secret_key": "secret"})
    client = TestClient(app)

    first = client.post("/api/organizations/org-1/synchronize")
    second = client.post("/api/organizations/org-1/synchronize")

    assert first.status_code == 200
    assert first.json()[0]["series"] == {"added": 2, "updated": 0}
    assert second.json()[0]["total_writes"] == 0


def test_synchronize_without_ticketing_system_is_a_client_error() -> None:
    response = TestClient(app).post("/api/organizations/org-unknown/synchronize")

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "NO_VALID_TICKETING_SYSTEM"


def test_agency_synchronization(monkeypatch, tmp_path: Path) -> None:
    path = tmp_path / "sacem.csv"
    path.write_text("CP,Mail\n69001,dl.lyon@sacem.fr\n", encoding="utf-8")
    monkeypatch.setenv("DECLARANT_SACEM_AGENCIES_CSV", str(path))
    client = TestClient(app)

    assert client.post("/api/agencies/sacem/synchronize").json() == {"added": 1, "removed": 0, "updated": 0}
    assert client.post("/api/agencies/sacem/synchronize").json() == {"added": 0, "removed": 0, "updated": 0}
    assert client.post("/api/agencies/unknown/synchronize").status_code == 404


def test_invalid_agency_file_is_unprocessable(monkeypatch, tmp_path: Path) -> None:
    path = tmp_path / "sacd.csv"
    path.write_text("Département,mail\n75,not-an-email\n", encoding="utf-8")
    monkeypatch.setenv("DECLARANT_SACD_AGENCIES_CSV", str(path))

    response = TestClient(app).post("/api/agencies/sacd/synchronize")

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "AGENCY_CSV_VALIDATION"


def test_key_figures() -> None:
    response = TestClient(app).post("/api/declarations/key-figures", json={"event_serie": _serie(), "events": _events()})

    assert response.status_code == 200
    payload = response.json()
    assert payload["key_figures"]["ticketing_revenue_including_taxes"] == "150"
    assert payload["key_figures"]["ticketing_revenue_taxes"] == "7.82"
    assert payload["key_figures"]["paid_tickets"] == 15
    assert payload["sacem_key_figures"]["non_ticketing_revenue_taxes"] == "2"
    assert [event["place_capacity"] for event in payload["sacd_events"]] == [120, 120]


def test_key_figures_without_events() -> None:
    response = TestClient(app).post("/api/declarations/key-figures", json={"event_serie": _serie()})

    assert response.json()["key_figures"]["ticketing_revenue_including_taxes"] == "0"
    assert response.json()["sacd_events"] == []


def _sacd_organization(name: str) -> dict:
    return {
        "name": name,
        "email": "contact@coucou.fr",
        "official_headquarters_id": "12345678900011",
        "european_vat_id": "FR12345678901",
        "headquarters_address": {"street": "10 rue de la Paix", "city": "Lyon", "postal_code": "69001"},
        "phone": {"calling_code": "+33", "country_code": "FR", "number": "612345678"},
    }


def test_sacd_declaration_xml() -> None:
    payload = {
        "event_serie": _serie(),
        "events": _events(),
        "organization": {
            "id": "org-1",
            "name": "Compagnie du Coucou",
            "sacd_id": "123456",
            "headquarters_address": {"street": "10 rue de la Paix", "city": "Lyon", "postal_code": "69001"},
        },
        "declaration": {
            "client_id": "client-1",
            "official_headquarters_id": "12345678900011",
            "production_operation_id": "OP1",
            "production_type": "PROFESSIONAL",
            "place_name": "Salle des fêtes",
            "place_postal_code": "69001",
            "place_city": "Lyon",
            "audience": "ALL",
            "place_capacity": 120,
            "organizer": _sacd_organization("Compagnie du Coucou"),
            "producer": _sacd_organization("Les Producteurs"),
            "rights_fees_manager": _sacd_organization("Compagnie du Coucou"),
            "declaration_place": "Lyon",
        },
        "submitted_at": "2025-02-01T10:00:00Z",
    }

    response = TestClient(app).post("/api/declarations/sacd/xml", json=payload)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert response.text.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert response.text.count("<Representation>") == 2
    assert "<Nombre>2</Nombre>" in response.text


def test_declaration_inputs_come_from_synchronized_sales() -> None:
    TicketingSystemRepository().insert({"organization_id": "org-1", "name": "MAPADO", "api_secret_key": "secret"})
    client = TestClient(app)
    client.post("/api/organizations/org-1/synchronize")
    serie_id = next(
        row["id"] for row in EventSerieRepository().list_all() if row["internal_ticketing_system_id"] == "s2"
    )

    response = client.get(f"/api/event-series/{serie_id}/declaration-inputs")

    assert response.status_code == 200
    payload = response.json()
    assert payload["event_serie"]["name"] == "Un coucou au soleil"
    assert len(payload["events"]) == 2
    assert payload["key_figures"]["paid_tickets"] == 83
    assert Decimal(payload["key_figures"]["ticketing_revenue_including_taxes"]) == Decimal("1500")


def test_declaration_inputs_of_unknown_serie() -> None:
    response = TestClient(app).get("/api/event-series/missing/declaration-inputs")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "EVENT_SERIE_NOT_FOUND"
