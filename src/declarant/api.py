from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from declarant.agencies.sacd import sync_sacd_agencies
from declarant.agencies.sacem import sync_sacem_agencies
from declarant.config import cors_origins
from declarant.declaration.format import (
    get_events_key_figures,
    get_flatten_events_for_sacd_declaration,
    get_flatten_events_for_sacem_declaration,
    get_sacem_events_key_figures,
)
from declarant.declaration.sacd import prepare_declaration_parameter
from declarant.declaration.store import DeclarationInputsLoader
from declarant.diff.comparison import get_diff_counts
from declarant.errors import DeclarantError, ErrorCode
from declarant.models.declaration import (
    DeclarationEvent,
    DeclarationEventSerie,
    DeclarationOrganization,
    SacdDeclaration,
)
from declarant.ticketing.synchronize import TicketingSynchronizer

app = FastAPI(title="Declarant API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_CODE = {
    ErrorCode.UNSUPPORTED_TICKETING_SYSTEM: 400,
    ErrorCode.MISSING_CREDENTIALS: 400,
    ErrorCode.NO_VALID_TICKETING_SYSTEM: 400,
    ErrorCode.SYNCHRONIZATION_ONGOING: 409,
    ErrorCode.PROVIDER_RESPONSE: 502,
    ErrorCode.PROVIDER_THROTTLED: 503,
    ErrorCode.PROVIDER_MISSING_RIGHTS: 502,
    ErrorCode.PROVIDER_DATA: 502,
    ErrorCode.AGENCY_CSV_VALIDATION: 422,
    ErrorCode.SACD_RESPONSE: 502,
    ErrorCode.EVENT_SERIE_NOT_FOUND: 404,
}

_AGENCY_IMPORTERS = {
    "sacd": sync_sacd_agencies,
    "sacem": sync_sacem_agencies,
}


def _http_error(exc: DeclarantError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(exc.code, 500),
        detail={"code": exc.code.value, "message": exc.message},
    )


def build_synchronizer() -> TicketingSynchronizer:
    return TicketingSynchronizer()


class SynchronizeRequest(BaseModel):
    user_id: str | None = None


class DeclarationInput(BaseModel):
    event_serie: DeclarationEventSerie
    events: list[DeclarationEvent] = Field(default_factory=list)


class SacdXmlRequest(DeclarationInput):
    organization: DeclarationOrganization
    declaration: SacdDeclaration
    submitted_at: datetime


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/organizations/{organization_id}/synchronize")
def synchronize_organization(organization_id: str, payload: SynchronizeRequest | None = None) -> list[dict[str, Any]]:
    user_id = payload.user_id if payload else None
    try:
        results = build_synchronizer().synchronize_organization(organization_id, user_id)
    except DeclarantError as exc:
        raise _http_error(exc) from exc
    return [{**asdict(result), "total_writes": result.total_writes} for result in results]


@app.post("/api/agencies/{society}/synchronize")
def synchronize_agencies(society: str) -> dict[str, int]:
    importer = _AGENCY_IMPORTERS.get(society)
    if importer is None:
        raise HTTPException(status_code=404, detail=f"unknown collecting society {society!r}")
    try:
        return get_diff_counts(importer())
    except DeclarantError as exc:
        raise _http_error(exc) from exc


def _key_figures(event_serie: DeclarationEventSerie, events: list[DeclarationEvent]) -> dict[str, Any]:
    sacd_events = get_flatten_events_for_sacd_declaration(event_serie, events)
    sacem_events = get_flatten_events_for_sacem_declaration(event_serie, events)
    return {
        "key_figures": get_events_key_figures(sacd_events).model_dump(mode="json"),
        "sacem_key_figures": get_sacem_events_key_figures(sacem_events).model_dump(mode="json"),
        "sacd_events": [event.model_dump(mode="json") for event in sacd_events],
    }


@app.post("/api/declarations/key-figures")
def declaration_key_figures(payload: DeclarationInput) -> dict[str, Any]:
    return _key_figures(payload.event_serie, payload.events)


@app.get("/api/event-series/{event_serie_id}/declaration-inputs")
def event_serie_declaration_inputs(event_serie_id: str) -> dict[str, Any]:
    try:
        event_serie, events = DeclarationInputsLoader().load(event_serie_id)
    except DeclarantError as exc:
        raise _http_error(exc) from exc
    return {
        "event_serie": event_serie.model_dump(mode="json"),
        "events": [event.model_dump(mode="json") for event in events],
        **_key_figures(event_serie, events),
    }


@app.post("/api/declarations/sacd/xml")
def sacd_declaration_xml(payload: SacdXmlRequest) -> Response:
    events = get_flatten_events_for_sacd_declaration(payload.event_serie, payload.events)
    document = prepare_declaration_parameter(
        payload.organization, payload.event_serie, events, payload.declaration, payload.submitted_at
    )
    return Response(content=document, media_type="application/xml")
