"""SACD agency directory import.

The SACD export has one row per (agency, department) pair. Rows are grouped by
agency email and the department prefixes sorted so the stored lists compare
equal regardless of file order.
"""

from __future__ import annotations

import csv
import logging
from collections import defaultdict
from pathlib import Path

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

from declarant.config import sacd_agencies_csv_path
from declarant.db import SacdAgencyRepository
from declarant.diff.comparison import (
    SortedDiffResult,
    format_diff_result_log,
    get_diff,
    sort_diff_with_keys,
)
from declarant.errors import AgencyCsvValidationError

logger = logging.getLogger(__name__)

# The export is not limited to postal code prefixes
_DEPARTMENT_ALIASES = {
    "monaco": "980",
    "2a/2b": "20",
}


class CsvSacdAgency(BaseModel):
    model_config = ConfigDict(extra="ignore")

    department: str = Field(alias="Département", min_length=2, max_length=5)
    mail: EmailStr

    @field_validator("department", mode="before")
    @classmethod
    def _normalize_department(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        safe_value = value.strip().lower()
        return _DEPARTMENT_ALIASES.get(safe_value, safe_value)

    @field_validator("mail", mode="before")
    @classmethod
    def _normalize_mail(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        return value.strip().lower()


def read_local_sacd_agencies(csv_path: Path) -> dict[str, list[str]]:
    """Parse the whole file into email -> sorted prefixes, failing on the first bad row."""
    grouped: dict[str, list[str]] = defaultdict(list)
    with csv_path.open(encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle, delimiter=",")
        for record in reader:
            try:
                agency = CsvSacdAgency.model_validate(record)
            except ValidationError as exc:
                raise AgencyCsvValidationError.from_validation_error(str(csv_path), reader.line_num, exc) from exc
            grouped[agency.mail].append(agency.department)
    return {email: sorted(prefixes) for email, prefixes in grouped.items()}


def sync_sacd_agencies(
    csv_path: Path | None = None,
    repository: SacdAgencyRepository | None = None,
) -> SortedDiffResult[str, list[str]]:
    path = csv_path or sacd_agencies_csv_path()
    repo = repository or SacdAgencyRepository()
    logger.info("starting the synchronization of sacd agencies from %s", path)

    local_agencies = read_local_sacd_agencies(path)
    existing_agencies = repo.list_lite()

    diff = get_diff(existing_agencies, local_agencies)
    sorted_diff = sort_diff_with_keys(diff)
    logger.info("synchronizing sacd agencies (%s)", format_diff_result_log(diff))

    if sorted_diff.added:
        repo.create_many(sorted_diff.added)
    for email, prefixes in sorted_diff.updated:
        repo.update_codes(email, prefixes)
    if sorted_diff.removed:
        repo.delete_by_emails([email for email, _ in sorted_diff.removed])
    return sorted_diff
