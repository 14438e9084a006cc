from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from declarant.declaration.amounts import CURRENT_TAX_RATES


class Audience(str, Enum):
    ALL = "ALL"
    YOUNG = "YOUNG"
    SCHOOL = "SCHOOL"


class Address(BaseModel):
    street: str
    city: str
    postal_code: str
    country_code: str = "FR"
    subdivision: str | None = None


class Phone(BaseModel):
    calling_code: str
    country_code: str
    number: str


class Place(BaseModel):
    name: str
    address: Address


class DeclarationOrganization(BaseModel):
    id: str
    name: str
    official_id: str | None = None
    official_headquarters_id: str | None = None
    sacem_id: str | None = None
    sacd_id: str | None = None
    headquarters_address: Address


class DeclarationEventSerie(BaseModel):
    id: str
    name: str
    producer_official_id: str | None = None
    producer_name: str | None = None
    place: Place | None = None
    place_capacity: int | None = Field(default=None, ge=0)
    audience: Audience = Audience.ALL
    ticketing_revenue_tax_rate: Decimal = Field(ge=0)
    expenses_including_taxes: Decimal = Decimal("0")
    expenses_excluding_taxes: Decimal = Decimal("0")
    introduction_fees_expenses_including_taxes: Decimal = Decimal("0")
    introduction_fees_expenses_excluding_taxes: Decimal = Decimal("0")


class DeclarationEvent(BaseModel):
    id: str
    start_at: datetime
    end_at: datetime
    ticketing_revenue_including_taxes: Decimal = Decimal("0")
    ticketing_revenue_excluding_taxes: Decimal = Decimal("0")
    consumptions_revenue_including_taxes: Decimal = Decimal("0")
    consumptions_revenue_excluding_taxes: Decimal = Decimal("0")
    consumptions_revenue_tax_rate: Decimal | None = None
    catering_revenue_including_taxes: Decimal = Decimal("0")
    catering_revenue_excluding_taxes: Decimal = Decimal("0")
    catering_revenue_tax_rate: Decimal | None = None
    program_sales_revenue_including_taxes: Decimal = Decimal("0")
    program_sales_revenue_excluding_taxes: Decimal = Decimal("0")
    program_sales_revenue_tax_rate: Decimal | None = None
    other_revenue_including_taxes: Decimal = Decimal("0")
    other_revenue_excluding_taxes: Decimal = Decimal("0")
    other_revenue_tax_rate: Decimal | None = None
    free_tickets: int = Field(default=0, ge=0)
    paid_tickets: int = Field(default=0, ge=0)
    place_override: Place | None = None
    place_capacity_override: int | None = Field(default=None, ge=0)
    audience_override: Audience | None = None
    ticketing_revenue_tax_rate_override: Decimal | None = None


class FlattenSacdEvent(BaseModel):
    id: str
    start_at: datetime
    end_at: datetime
    ticketing_revenue_including_taxes: Decimal
    ticketing_revenue_excluding_taxes: Decimal
    ticketing_revenue_tax_rate: Decimal
    free_tickets: int
    paid_tickets: int
    place: Place | None
    place_capacity: int | None
    audience: Audience


class FlattenSacemEvent(BaseModel):
    start_at: datetime
    ticketing_revenue_including_taxes: Decimal
    ticketing_revenue_excluding_taxes: Decimal
    consumptions_revenue_including_taxes: Decimal
    consumptions_revenue_excluding_taxes: Decimal
    consumptions_revenue_tax_rate: Decimal | None
    catering_revenue_including_taxes: Decimal
    catering_revenue_excluding_taxes: Decimal
    catering_revenue_tax_rate: Decimal | None
    program_sales_revenue_including_taxes: Decimal
    program_sales_revenue_excluding_taxes: Decimal
    program_sales_revenue_tax_rate: Decimal | None
    other_revenue_including_taxes: Decimal
    other_revenue_excluding_taxes: Decimal
    other_revenue_tax_rate: Decimal | None
    free_tickets: int
    paid_tickets: int
    place: Place | None
    place_capacity: int | None
    audience: Audience


class EventCategorySales(BaseModel):
    """Stored tickets of one category for one event, with the manual corrections."""

    total: int = Field(ge=0)
    total_override: int | None = Field(default=None, ge=0)
    price: Decimal = Field(ge=0)
    price_override: Decimal | None = Field(default=None, ge=0)


class KeyFigures(BaseModel):
    ticketing_revenue_including_taxes: Decimal = Decimal("0")
    ticketing_revenue_excluding_taxes: Decimal = Decimal("0")
    ticketing_revenue_taxes: Decimal = Decimal("0")
    free_tickets: int = 0
    paid_tickets: int = 0


class SacemKeyFigures(BaseModel):
    non_ticketing_revenue_including_taxes: Decimal = Decimal("0")
    non_ticketing_revenue_excluding_taxes: Decimal = Decimal("0")
    non_ticketing_revenue_taxes: Decimal = Decimal("0")


class SacdProductionType(str, Enum):
    AMATEUR = "AMATEUR"
    PROFESSIONAL = "PROFESSIONAL"


class SacdAudience(str, Enum):
    ALL = "ALL"
    YOUNG = "YOUNG"
    SCHOOL = "SCHOOL"
    READING = "READING"


class SacdAccountingCategory(str, Enum):
    GLOBAL = "GLOBAL"
    SALE_OF_RIGHTS = "SALE_OF_RIGHTS"
    INTRODUCTION_FEES = "INTRODUCTION_FEES"
    COPRODUCTION_CONTRIBUTION = "COPRODUCTION_CONTRIBUTION"
    REVENUE_GUARANTEE = "REVENUE_GUARANTEE"
    OTHER = "OTHER"


class SacdAccountingEntry(BaseModel):
    category: SacdAccountingCategory
    category_precision: str | None = Field(default=None, max_length=300)
    tax_rate: Decimal | None = Field(default=None, ge=0)
    including_taxes_amount: Decimal = Field(ge=0)

    @field_validator("tax_rate")
    @classmethod
    def _current_tax_rate(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and value not in CURRENT_TAX_RATES:
            raise ValueError(f"{value} is not an applicable tax rate")
        return value

    @model_validator(mode="after")
    def _precision_only_for_other(self) -> "SacdAccountingEntry":
        if self.category != SacdAccountingCategory.OTHER and self.category_precision is not None:
            raise ValueError("a known category cannot carry a custom label")
        return self


class SacdPerformedWork(BaseModel):
    category: str
    name: str
    contributors: list[str] = Field(default_factory=list)
    duration_seconds: int = Field(ge=1)


class SacdDeclarationOrganization(BaseModel):
    name: str
    email: EmailStr
    official_headquarters_id: str
    european_vat_id: str = Field(max_length=13)
    headquarters_address: Address
    phone: Phone


class SacdDeclaration(BaseModel):
    client_id: str
    official_headquarters_id: str
    production_operation_id: str = Field(max_length=6)
    production_type: SacdProductionType
    place_name: str
    place_postal_code: str
    place_city: str
    audience: SacdAudience
    place_capacity: int = Field(ge=0)
    accounting_entries: list[SacdAccountingEntry] = Field(default_factory=list)
    organizer: SacdDeclarationOrganization
    producer: SacdDeclarationOrganization
    rights_fees_manager: SacdDeclarationOrganization
    performed_works: list[SacdPerformedWork] = Field(default_factory=list)
    declaration_place: str
    average_ticket_price: Decimal | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _unique_entry_labels(self) -> "SacdDeclaration":
        known = [entry.category for entry in self.accounting_entries if entry.category != SacdAccountingCategory.OTHER]
        custom = [
            entry.category_precision
            for entry in self.accounting_entries
            if entry.category == SacdAccountingCategory.OTHER
        ]
        if len(set(known)) != len(known) or len(set(custom)) != len(custom):
            raise ValueError("accounting entry categories must be unique")
        return self


class SacdRepresentationStatusValue(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    KO = "KO"


class SacdRepresentationStatus(BaseModel):
    line: int
    status: SacdRepresentationStatusValue
    field: str | None = None
    message: str | None = None


class SacdAcknowledgement(BaseModel):
    reference: str
    count: int
    date: str | None = None
    representations: list[SacdRepresentationStatus]
