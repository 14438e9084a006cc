"""SACEM agency directory import, one row per (agency, postal code) pair."""

from __future__ import annotations

import csv
import logging
from collections import defaultdict
from pathlib import Path

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

from declarant.config import sacem_agencies_csv_path
from declarant.db import SacemAgencyRepository
from declarant.diff.comparison import (
    SortedDiffResult,
    format_diff_result_log,
    get_diff,
    sort_diff_with_keys,
)
from declarant.errors import AgencyCsvValidationError

logger = logging.getLogger(__name__)


class CsvSacemAgency(BaseModel):
    model_config = ConfigDict(extra="ignore")

    postal_code: str = Field(alias="CP", min_length=2, max_length=5)
    mail: EmailStr = Field(alias="Mail")

    @field_validator("postal_code", mode="before")
    @classmethod
    def _strip_postal_code(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("mail", mode="before")
    @classmethod
    def _normalize_mail(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


def read_local_sacem_agencies(csv_path: Path) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = defaultdict(list)
    with csv_path.open(encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle, delimiter=",")
        for record in reader:
            try:
                agency = CsvSacemAgency.model_validate(record)
            except ValidationError as exc:
                raise AgencyCsvValidationError.from_validation_error(str(csv_path), reader.line_num, exc) from exc
            grouped[agency.mail].append(agency.postal_code)
    return {email: sorted(codes) for email, codes in grouped.items()}


def sync_sacem_agencies(
    csv_path: Path | None = None,
    repository: SacemAgencyRepository | None = None,
) -> SortedDiffResult[str, list[str]]:
    path = csv_path or sacem_agencies_csv_path()
    repo = repository or SacemAgencyRepository()
    logger.info("starting the synchronization of sacem agencies from %s", path)

    diff = get_diff(repo.list_lite(), read_local_sacem_agencies(path))
    sorted_diff = sort_diff_with_keys(diff)
    logger.info("synchronizing sacem agencies (%s)", format_diff_result_log(diff))

    if sorted_diff.added:
        repo.create_many(sorted_diff.added)
    for email, codes in sorted_diff.updated:
        repo.update_codes(email, codes)
    if sorted_diff.removed:
        repo.delete_by_emails([email for email, _ in sorted_diff.removed])
    return sorted_diff
