"""Error codes shared by the ticketing, agency and declaration modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pydantic import ValidationError


class ErrorCode(Enum):
    UNSUPPORTED_TICKETING_SYSTEM = "UNSUPPORTED_TICKETING_SYSTEM"
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    NO_VALID_TICKETING_SYSTEM = "NO_VALID_TICKETING_SYSTEM"
    SYNCHRONIZATION_ONGOING = "SYNCHRONIZATION_ONGOING"
    PROVIDER_RESPONSE = "PROVIDER_RESPONSE"
    PROVIDER_THROTTLED = "PROVIDER_THROTTLED"
    PROVIDER_MISSING_RIGHTS = "PROVIDER_MISSING_RIGHTS"
    PROVIDER_DATA = "PROVIDER_DATA"
    AGENCY_CSV_VALIDATION = "AGENCY_CSV_VALIDATION"
    SACD_RESPONSE = "SACD_RESPONSE"
    EVENT_SERIE_NOT_FOUND = "EVENT_SERIE_NOT_FOUND"


@dataclass(eq=False)
class DeclarantError(Exception):
    """Base error with a stable code and a user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class UnsupportedTicketingSystemError(DeclarantError):
    def __init__(self, name: str) -> None:
        super().__init__(
            code=ErrorCode.UNSUPPORTED_TICKETING_SYSTEM,
            message=f"Ticketing system {name!r} cannot be synchronized",
        )
        self.name = name


class MissingCredentialsError(DeclarantError):
    def __init__(self, name: str, field_name: str) -> None:
        super().__init__(
            code=ErrorCode.MISSING_CREDENTIALS,
            message=f"Ticketing system {name} requires {field_name}",
        )
        self.name = name
        self.field_name = field_name


class NoValidTicketingSystemError(DeclarantError):
    def __init__(self, organization_id: str) -> None:
        super().__init__(
            code=ErrorCode.NO_VALID_TICKETING_SYSTEM,
            message="No ticketing system is configured for this organization",
        )
        self.organization_id = organization_id


class SynchronizationOngoingError(DeclarantError):
    def __init__(self, organization_id: str) -> None:
        super().__init__(
            code=ErrorCode.SYNCHRONIZATION_ONGOING,
            message="Another ticketing synchronization is running for this organization",
        )
        self.organization_id = organization_id


class ProviderResponseError(DeclarantError):
    """Non-2xx answer from a remote system, payload kept as received."""

    def __init__(self, status_code: int, payload: Any) -> None:
        super().__init__(
            code=ErrorCode.PROVIDER_RESPONSE,
            message=f"Remote system answered {status_code}: {payload}",
        )
        self.status_code = status_code
        self.payload = payload


class ProviderThrottledError(DeclarantError):
    def __init__(self, provider: str) -> None:
        super().__init__(
            code=ErrorCode.PROVIDER_THROTTLED,
            message=f"{provider} rejected the request because of rate limiting, retry later",
        )
        self.provider = provider


class ProviderMissingRightsError(DeclarantError):
    def __init__(self, provider: str) -> None:
        super().__init__(
            code=ErrorCode.PROVIDER_MISSING_RIGHTS,
            message=f"The {provider} credentials are limited to specific events, full access is required",
        )
        self.provider = provider


class ProviderDataError(DeclarantError):
    def __init__(self, provider: str, detail: str) -> None:
        super().__init__(code=ErrorCode.PROVIDER_DATA, message=f"{provider}: {detail}")
        self.provider = provider


class AgencyCsvValidationError(DeclarantError):
    def __init__(self, path: str, line: int, detail: str) -> None:
        super().__init__(
            code=ErrorCode.AGENCY_CSV_VALIDATION,
            message=f"{path} line {line}: {detail}",
        )
        self.path = path
        self.line = line

    @classmethod
    def from_validation_error(cls, path: str, line: int, exc: ValidationError) -> AgencyCsvValidationError:
        detail = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        return cls(path, line, detail)


class SacdResponseError(DeclarantError):
    def __init__(self, detail: str) -> None:
        super().__init__(code=ErrorCode.SACD_RESPONSE, message=detail)


class EventSerieNotFoundError(DeclarantError):
    def __init__(self, event_serie_id: str) -> None:
        super().__init__(
            code=ErrorCode.EVENT_SERIE_NOT_FOUND,
            message=f"Event serie {event_serie_id} does not exist",
        )
        self.event_serie_id = event_serie_id
