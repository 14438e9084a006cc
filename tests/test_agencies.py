from pathlib import Path

import pytest

from declarant.agencies.sacd import read_local_sacd_agencies, sync_sacd_agencies
from declarant.agencies.sacem import sync_sacem_agencies
from declarant.db import SacdAgencyRepository, SacemAgencyRepository, reset_memory_backend
from declarant.errors import AgencyCsvValidationError


SACD_CSV = """Département,Délégation,mail
01,Auvergne-Rhône-Alpes, Delegation.ARA@sacd.fr
69,Auvergne-Rhône-Alpes,delegation.ara@sacd.fr

2A/2B,Provence-Alpes-Côte d'Azur,delegation.paca@sacd.fr
Monaco,Provence-Alpes-Côte d'Azur,delegation.paca@sacd.fr
13,Provence-Alpes-Côte d'Azur,delegation.paca@sacd.fr
75,Île-de-France,delegation.idf@sacd.fr
"""


@pytest.fixture(autouse=True)
def _memory_backend(monkeypatch) -> None:
    monkeypatch.setenv("DECLARANT_STORAGE_BACKEND", "memory")
    reset_memory_backend()


def _write(tmp_path: Path, content: str, name: str = "agencies.csv") -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def test_sacd_rows_are_normalized_and_grouped(tmp_path: Path) -> None:
    agencies = read_local_sacd_agencies(_write(tmp_path, SACD_CSV))

    assert agencies == {
        "delegation.ara@sacd.fr": ["01", "69"],
        "delegation.paca@sacd.fr": ["13", "20", "980"],
        "delegation.idf@sacd.fr": ["75"],
    }


def test_sacd_import_twice_gives_empty_second_diff(tmp_path: Path) -> None:
    path = _write(tmp_path, SACD_CSV)

    first = sync_sacd_agencies(path)
    second = sync_sacd_agencies(path)

    assert len(first.added) == 3
    assert second.added == [] and second.removed == [] and second.updated == []
    assert SacdAgencyRepository().list_lite()["delegation.paca@sacd.fr"] == ["13", "20", "980"]


def test_sacd_removing_single_row_agency_removes_it(tmp_path: Path) -> None:
    sync_sacd_agencies(_write(tmp_path, SACD_CSV))
    without_idf = "\n".join(line for line in SACD_CSV.splitlines() if "idf" not in line) + "\n"
    without_ara_69 = "\n".join(line for line in without_idf.splitlines() if not line.startswith("69,")) + "\n"

    diff = sync_sacd_agencies(_write(tmp_path, without_ara_69, "next.csv"))

    assert [email for email, _ in diff.removed] == ["delegation.idf@sacd.fr"]
    assert diff.updated == [("delegation.ara@sacd.fr", ["01"])]
    assert "delegation.idf@sacd.fr" not in SacdAgencyRepository().list_lite()


def test_sacd_invalid_row_aborts_before_any_write(tmp_path: Path) -> None:
    content = SACD_CSV + "1,Nowhere,not-an-email\n"

    with pytest.raises(AgencyCsvValidationError) as excinfo:
        sync_sacd_agencies(_write(tmp_path, content))

    assert excinfo.value.line == 9
    assert SacdAgencyRepository().list_lite() == {}


def test_sacem_import_groups_postal_codes(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "CP,Ville,Mail\n69002,Lyon,dl.lyon@sacem.fr\n69001 ,Lyon,DL.Lyon@sacem.fr\n75001,Paris,dl.paris@sacem.fr\n",
    )

    first = sync_sacem_agencies(path)
    second = sync_sacem_agencies(path)

    assert first.added == [
        ("dl.lyon@sacem.fr", ["69001", "69002"]),
        ("dl.paris@sacem.fr", ["75001"]),
    ]
    assert second.added == [] and second.removed == [] and second.updated == []
    assert SacemAgencyRepository().list_lite() == {
        "dl.lyon@sacem.fr": ["69001", "69002"],
        "dl.paris@sacem.fr": ["75001"],
    }


def test_sacem_rejects_too_long_postal_code(tmp_path: Path) -> None:
    path = _write(tmp_path, "CP,Mail\n690010,dl.lyon@sacem.fr\n")

    with pytest.raises(AgencyCsvValidationError):
        sync_sacem_agencies(path)


def test_both_importers_report_rejected_rows_alike(tmp_path: Path) -> None:
    sacd_path = _write(tmp_path, "Département,Délégation,mail\n123456,Nowhere,a@sacd.fr\n", "sacd.csv")
    sacem_path = _write(tmp_path, "CP,Mail\n690010,dl.lyon@sacem.fr\n", "sacem.csv")

    with pytest.raises(AgencyCsvValidationError) as sacd_error:
        sync_sacd_agencies(sacd_path)
    with pytest.raises(AgencyCsvValidationError) as sacem_error:
        sync_sacem_agencies(sacem_path)

    assert sacd_error.value.message == f"{sacd_path} line 2: Département: String should have at most 5 characters"
    assert sacem_error.value.message == f"{sacem_path} line 2: CP: String should have at most 5 characters"
