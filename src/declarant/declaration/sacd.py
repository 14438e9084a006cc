"""SACD declaration transport.

The XML document is built from already flattened events and a submission
timestamp given by the caller, so the same inputs always give the same bytes.
"""

from __future__ import annotations

import hashlib
import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence

import requests
from dateutil import tz
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from declarant.config import sacd_api_base_url
from declarant.declaration.amounts import (
    get_excluding_taxes_amount_from_including_taxes_amount,
    get_tax_amount_from_including_and_excluding_taxes_amounts,
    truncate_amount,
)
from declarant.errors import SacdResponseError
from declarant.models.declaration import (
    DeclarationEventSerie,
    DeclarationOrganization,
    FlattenSacdEvent,
    SacdAccountingCategory,
    SacdAccountingEntry,
    SacdAcknowledgement,
    SacdAudience,
    SacdDeclaration,
    SacdDeclarationOrganization,
    SacdPerformedWork,
    SacdProductionType,
    SacdRepresentationStatus,
)
from declarant.ticketing.base import ensure_aware
from declarant.ticketing.http import JsonHttpClient

logger = logging.getLogger(__name__)

PARIS = tz.gettz("Europe/Paris")
XML_PROLOG = '<?xml version="1.0" encoding="UTF-8"?>\n'
DECLARATION_SYSTEM = "ASSISTANT_DECLARATION"
DECLARATION_VERSION = "1"
CURRENCY = "EUR"
FINAL_STATUS = "DEF"

_PRODUCTION_TYPES = {
    SacdProductionType.AMATEUR: "AMA",
    SacdProductionType.PROFESSIONAL: "PRO",
}

_AUDIENCES = {
    SacdAudience.ALL: "TOUT",
    SacdAudience.YOUNG: "JEUNE",
    SacdAudience.SCHOOL: "SCOLAIRE",
    SacdAudience.READING: "LECTURE",
}

# element name of each known accounting category inside Exploitation
_EXPLOITATION_FIELDS = [
    (SacdAccountingCategory.SALE_OF_RIGHTS, "MontantCession"),
    (SacdAccountingCategory.INTRODUCTION_FEES, "MontantFrais"),
    (SacdAccountingCategory.COPRODUCTION_CONTRIBUTION, "MontantApportsCoproduction"),
    (SacdAccountingCategory.REVENUE_GUARANTEE, "MontantGarantieRecettes"),
    (SacdAccountingCategory.GLOBAL, "MontantDepenses"),
]


def format_date(value: datetime) -> str:
    # naive values are UTC, as everywhere else in the package
    return ensure_aware(value).astimezone(PARIS).strftime("%Y/%m/%d")


def format_time(value: datetime) -> str:
    return ensure_aware(value).astimezone(PARIS).strftime("%H:%M")


def format_duration(seconds: int) -> str:
    hours, rest = divmod(seconds, 3600)
    return f"{hours:02d}:{rest // 60:02d}:{rest % 60:02d}"


def format_amount(value: Decimal) -> str:
    return f"{truncate_amount(value):.2f}"


def format_tax_rate(rate: Decimal) -> str:
    # 0.055 is sent as 5.5
    return format((rate * 100).normalize(), "f")


def split_amount(amount: Decimal, parts: int) -> list[Decimal]:
    """Spread a serie level amount over its representations, the last one takes the rounding rest."""
    if parts <= 0:
        return []
    share = truncate_amount(amount / parts)
    return [share] * (parts - 1) + [truncate_amount(amount) - share * (parts - 1)]


def _entry_excluding_taxes(entry: SacdAccountingEntry) -> Decimal:
    if entry.tax_rate is None:
        return entry.including_taxes_amount
    return get_excluding_taxes_amount_from_including_taxes_amount(entry.including_taxes_amount, entry.tax_rate)


def _sub(parent: ET.Element, tag: str, text: Any | None) -> ET.Element | None:
    if text is None:
        return None
    element = ET.SubElement(parent, tag)
    element.text = str(text)
    return element


def _append_organization(parent: ET.Element, tag: str, organization: SacdDeclarationOrganization) -> None:
    block = ET.SubElement(parent, tag)
    _sub(block, "Nom", organization.name)
    _sub(block, "Siret", organization.official_headquarters_id)
    _sub(block, "TvaIntracommunautaire", organization.european_vat_id)
    _sub(block, "Email", organization.email)
    address = organization.headquarters_address
    _sub(block, "Adresse", address.street)
    _sub(block, "CodePostal", address.postal_code)
    _sub(block, "Ville", address.city)
    _sub(block, "Region", address.subdivision)
    _sub(block, "Pays", address.country_code)
    _sub(block, "Telephone", f"{organization.phone.calling_code}{organization.phone.number}")


def _append_work(parent: ET.Element, work: SacdPerformedWork) -> None:
    block = ET.SubElement(parent, "Oeuvre")
    _sub(block, "Categorie", work.category)
    _sub(block, "Titre", work.name)
    if work.contributors:
        authors = ET.SubElement(block, "Auteurs")
        for contributor in work.contributors:
            _sub(authors, "Auteur", contributor)
    _sub(block, "Duree", format_duration(work.duration_seconds))


def _exploitation_shares(declaration: SacdDeclaration, parts: int) -> dict[str, list[Decimal]]:
    entries = {entry.category: entry for entry in declaration.accounting_entries}
    shares: dict[str, list[Decimal]] = {}
    for category, tag in _EXPLOITATION_FIELDS:
        entry = entries.get(category)
        if entry is not None:
            shares[tag] = split_amount(_entry_excluding_taxes(entry), parts)
    others = [entry for entry in declaration.accounting_entries if entry.category == SacdAccountingCategory.OTHER]
    if others:
        shares["MontantAutres"] = split_amount(sum((_entry_excluding_taxes(entry) for entry in others), Decimal("0")), parts)
    return shares


def prepare_declaration_parameter(
    organization: DeclarationOrganization,
    event_serie: DeclarationEventSerie,
    events: Sequence[FlattenSacdEvent],
    declaration: SacdDeclaration,
    submitted_at: datetime,
) -> str:
    """Serialize a declaration with one Representation per event, ordered by start date."""
    sorted_events = sorted(events, key=lambda event: ensure_aware(event.start_at))
    shares = _exploitation_shares(declaration, len(sorted_events))
    sale_of_rights = next(
        (entry for entry in declaration.accounting_entries if entry.category == SacdAccountingCategory.SALE_OF_RIGHTS),
        None,
    )

    root = ET.Element("Declaration")
    header = ET.SubElement(root, "Header")
    _sub(header, "Reference", declaration.client_id)
    _sub(header, "Declarant", organization.sacd_id)
    _sub(header, "Siret", declaration.official_headquarters_id)
    _sub(header, "Systeme", DECLARATION_SYSTEM)
    _sub(header, "Version", DECLARATION_VERSION)
    _sub(header, "Date", format_date(submitted_at))
    _sub(header, "LieuDeclaration", declaration.declaration_place)
    _sub(header, "Nombre", len(sorted_events))

    representations = ET.SubElement(root, "Representations")
    for index, event in enumerate(sorted_events):
        representation = ET.SubElement(representations, "Representation")
        _sub(representation, "Reference", event.id)
        _sub(representation, "Devise", CURRENCY)
        _sub(representation, "Statut", FINAL_STATUS)
        _sub(representation, "Version", DECLARATION_VERSION)
        _sub(representation, "Titre", event_serie.name)
        _sub(representation, "DateDebut", format_date(event.start_at))
        _sub(representation, "DateFin", format_date(event.end_at))
        _sub(representation, "Horaire", format_time(event.start_at))
        _sub(representation, "Nombre", 1)

        box_office = ET.SubElement(representation, "Billetterie")
        _sub(box_office, "MontantBillets", format_amount(event.ticketing_revenue_excluding_taxes))
        _sub(box_office, "TauxTvaBillets", format_tax_rate(event.ticketing_revenue_tax_rate))
        _sub(
            box_office,
            "MontantTvaBillets",
            format_amount(
                get_tax_amount_from_including_and_excluding_taxes_amounts(
                    event.ticketing_revenue_including_taxes, event.ticketing_revenue_excluding_taxes
                )
            ),
        )
        _sub(box_office, "NombreBilletsPayants", event.paid_tickets)
        _sub(box_office, "NombreBilletsExoneres", event.free_tickets)

        exploitation = ET.SubElement(representation, "Exploitation")
        _sub(exploitation, "Nature", _PRODUCTION_TYPES[declaration.production_type])
        _sub(exploitation, "ReferenceExploitation", declaration.production_operation_id)
        for _, tag in _EXPLOITATION_FIELDS:
            if tag in shares:
                _sub(exploitation, tag, format_amount(shares[tag][index]))
            if tag == "MontantCession" and sale_of_rights is not None and sale_of_rights.tax_rate is not None:
                _sub(exploitation, "TauxTvaCession", format_tax_rate(sale_of_rights.tax_rate))
        if "MontantAutres" in shares:
            _sub(exploitation, "MontantAutres", format_amount(shares["MontantAutres"][index]))

        venue = ET.SubElement(representation, "Salle")
        if event.place is not None:
            _sub(venue, "Nom", event.place.name)
            _sub(venue, "CodePostal", event.place.address.postal_code)
            _sub(venue, "Ville", event.place.address.city)
        else:
            _sub(venue, "Nom", declaration.place_name)
            _sub(venue, "CodePostal", declaration.place_postal_code)
            _sub(venue, "Ville", declaration.place_city)
        _sub(venue, "Jauge", event.place_capacity if event.place_capacity is not None else declaration.place_capacity)
        if declaration.average_ticket_price is not None:
            _sub(venue, "PrixMoyen", format_amount(declaration.average_ticket_price))
        # Reading is a declaration level nature, other audiences may vary per event
        audience = (
            SacdAudience.READING if declaration.audience == SacdAudience.READING else SacdAudience(event.audience.value)
        )
        _sub(venue, "Public", _AUDIENCES[audience])

        _append_organization(representation, "Diffuseur", declaration.organizer)
        _append_organization(representation, "Producteur", declaration.producer)
        _append_organization(representation, "GestionnaireDroits", declaration.rights_fees_manager)
        if declaration.performed_works:
            works = ET.SubElement(representation, "Oeuvres")
            for work in declaration.performed_works:
                _append_work(works, work)

    ET.indent(root, space="  ")
    return XML_PROLOG + ET.tostring(root, encoding="unicode") + "\n"


class _AcknowledgementHeader(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reference: str = Field(min_length=1)
    count: int = Field(ge=0)
    date: str | None = None


def _text(element: ET.Element, tag: str) -> str | None:
    child = element.find(tag)
    if child is None or child.text is None or not child.text.strip():
        return None
    return child.text.strip()


def parse_declaration_response(xml: str) -> SacdAcknowledgement:
    """Decode the acknowledgement, accepting a single Representation outside of its list."""
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as exc:
        raise SacdResponseError(f"malformed acknowledgement: {exc}") from exc

    header = root.find("Header")
    if header is None:
        raise SacdResponseError("acknowledgement has no Header")

    nodes = root.findall("Representations/Representation") or root.findall("Representation")
    try:
        parsed_header = _AcknowledgementHeader(
            reference=_text(header, "Reference") or "",
            count=_text(header, "Nombre") or -1,
            date=_text(header, "Date"),
        )
        representations = [
            SacdRepresentationStatus(
                line=_text(node, "Ligne"),
                status=_text(node, "Statut"),
                field=_text(node, "Champ"),
                message=_text(node, "Message"),
            )
            for node in nodes
        ]
    except ValidationError as exc:
        raise SacdResponseError(f"invalid acknowledgement: {exc}") from exc

    if len(representations) != parsed_header.count:
        raise SacdResponseError(
            f"acknowledgement announces {parsed_header.count} representations but lists {len(representations)}"
        )
    return SacdAcknowledgement(
        reference=parsed_header.reference,
        count=parsed_header.count,
        date=parsed_header.date,
        representations=representations,
    )


class SacdLoginResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    auth_token: str = Field(alias="AuthToken", min_length=1)


class SacdClient:
    """Session against the SACD broker, authenticated as a declaration provider."""

    COMMON_POST_HEADERS = {
        "Content-Type": "application/x-www-form-urlencoded",
        # Any browser agent is accepted but one is required
        "User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.3"
        ),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "fr-FR,fr;q=0.9,en-US;q=0.8,en;q=0.7",
    }

    def __init__(
        self,
        consumer_key: str,
        secret_key: str,
        provider_name: str,
        provider_reffile: str,
        provider_password: str,
        session: requests.Session | None = None,
        base_url: str | None = None,
    ) -> None:
        self.consumer_key = consumer_key
        self.secret_key = secret_key
        self.provider_reffile = provider_reffile
        self.md5_password = hashlib.md5(provider_password.encode("utf-8")).hexdigest()
        self.common_body_params = {
            "parameters[Application]": provider_name,
            "parameters[LoginRefFile]": provider_reffile,
            "parameters[Language]": "FR",
        }
        self.auth_token: str | None = None
        self.http = JsonHttpClient(base_url or sacd_api_base_url(), session=session)

    def _access_token(self) -> str:
        return hashlib.md5(f"{self.secret_key}{self.auth_token}".encode("utf-8")).hexdigest()

    def _query(self) -> dict[str, str]:
        if not self.auth_token:
            raise SacdResponseError("not logged in, call login() first")
        return {"key": self.consumer_key, "token": self._access_token()}

    def login(self) -> None:
        payload = self.http.post_json(
            "/ticketing/auto-access.json",
            headers=self.COMMON_POST_HEADERS,
            data={
                "login[login]": self.provider_reffile,
                "login[password]": self.md5_password,
                "login[consumer_key]": self.consumer_key,
            },
        )
        try:
            self.auth_token = SacdLoginResponse.model_validate(payload).auth_token
        except ValidationError as exc:
            raise SacdResponseError(f"unexpected login response: {payload}") from exc
        logger.info("logged in to the sacd broker as %s", self.provider_reffile)

    def logout(self) -> None:
        if not self.auth_token:
            return
        self.http.request("GET", "/ticketing/logout", params=self._query())
        self.auth_token = None

    def test(self) -> None:
        payload = self.http.post_json(
            "/ticketing/broker/HelloWorldWS",
            params=self._query(),
            headers=self.COMMON_POST_HEADERS,
            data=dict(self.common_body_params),
        )
        if not isinstance(payload, dict) or payload.get("Result") != "Hello World!":
            raise SacdResponseError(f"unexpected test response: {payload}")

    def declare(
        self,
        organization: DeclarationOrganization,
        event_serie: DeclarationEventSerie,
        events: Sequence[FlattenSacdEvent],
        declaration: SacdDeclaration,
        submitted_at: datetime,
    ) -> SacdAcknowledgement:
        if not events:
            raise ValueError("a declaration needs at least one representation")
        query = self._query()
        document = prepare_declaration_parameter(organization, event_serie, events, declaration, submitted_at)
        response = self.http.request(
            "POST",
            "/ticketing/broker/DeclarationWS",
            params=query,
            headers=self.COMMON_POST_HEADERS,
            data={**self.common_body_params, "parameters[xml]": document},
        )
        acknowledgement = parse_declaration_response(response.text)
        logger.info(
            "sacd declaration %s transmitted for serie %s (%s representations)",
            acknowledgement.reference,
            event_serie.id,
            acknowledgement.count,
        )
        return acknowledgement
