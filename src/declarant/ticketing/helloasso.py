from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterator

import requests
from dateutil import tz
from pydantic import BaseModel, ConfigDict, Field

from declarant.config import helloasso_api_base_url
from declarant.errors import ProviderDataError, ProviderResponseError
from declarant.models.canonical import (
    EventSerieWrapper,
    LiteEvent,
    LiteEventSalesRecord,
    LiteEventSerie,
    LiteTicketCategory,
)
from declarant.ticketing.base import TicketingSystemClient, ensure_aware
from declarant.ticketing.http import JsonHttpClient, build_retrying_session

PAGE_SIZE = 100
PAY_WHAT_YOU_WANT = "Pwyw"
THROTTLE_RETRIES = 3
# OAuth errors the token endpoint answers with a 400 for unknown or revoked credentials
REJECTED_CREDENTIALS_ERRORS = ("invalid_client", "invalid_grant")


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class HelloAssoToken(_Schema):
    access_token: str = Field(min_length=1)


class HelloAssoOrganization(_Schema):
    organization_slug: str = Field(alias="organizationSlug", min_length=1)


class HelloAssoPagination(_Schema):
    page_size: int = Field(alias="pageSize")
    total_pages: int = Field(alias="totalPages", default=1)
    continuation_token: str | None = Field(alias="continuationToken", default=None)


class HelloAssoOrder(_Schema):
    form_slug: str = Field(alias="formSlug", min_length=1)


class HelloAssoTier(_Schema):
    id: int
    label: str | None = None
    # cents, null for pay what you want
    price: int | None = None
    vat_rate: Decimal = Field(alias="vatRate", default=Decimal("0"))
    tier_type: str = Field(alias="tierType")


class HelloAssoForm(_Schema):
    form_slug: str = Field(alias="formSlug", min_length=1)
    title: str = Field(min_length=1)
    currency: str
    start_date: datetime = Field(alias="startDate")
    end_date: datetime | None = Field(alias="endDate", default=None)
    tiers: list[HelloAssoTier] = Field(default_factory=list)


class HelloAssoItem(_Schema):
    tier_id: int | None = Field(alias="tierId", default=None)
    name: str | None = None
    # cents
    amount: int = Field(ge=0)
    price_category: str | None = Field(alias="priceCategory", default=None)


class HelloAssoClient(TicketingSystemClient):
    def __init__(
        self,
        access_key: str,
        secret_key: str,
        session: requests.Session | None = None,
        base_url: str | None = None,
    ) -> None:
        self.base_url = (base_url or helloasso_api_base_url()).rstrip("/")
        self.access_key = access_key
        self.secret_key = secret_key
        self.http = JsonHttpClient(
            f"{self.base_url}/v5",
            session=session or build_retrying_session(),
            throttle_retries=THROTTLE_RETRIES,
        )

    def login(self) -> str:
        """Exchange the client credentials and return the single organization slug."""
        try:
            payload = self.http.post_json(
                f"{self.base_url}/oauth2/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.access_key,
                    "client_secret": self.secret_key,
                },
            )
        except ProviderResponseError as exc:
            error = exc.payload.get("error") if isinstance(exc.payload, dict) else None
            if exc.status_code == 400 and error in REJECTED_CREDENTIALS_ERRORS:
                raise ProviderResponseError(401, exc.payload) from exc
            raise
        token = HelloAssoToken.model_validate(payload)
        self.http.headers["Authorization"] = f"Bearer {token.access_token}"
        organizations = [
            HelloAssoOrganization.model_validate(item) for item in self.http.get_json("/users/me/organizations")
        ]
        if len(organizations) != 1:
            raise ProviderDataError("HelloAsso", "the credentials must be bound to exactly one organization")
        return organizations[0].organization_slug

    def _paginate(self, path: str, params: dict[str, Any]) -> Iterator[dict[str, Any]]:
        cursor: str | None = None
        while True:
            query = {**params, "pageSize": PAGE_SIZE, "withCount": "true"}
            if cursor:
                query["continuationToken"] = cursor
            payload = self.http.get_json(path, params=query)
            pagination = HelloAssoPagination.model_validate(payload.get("pagination") or {})
            if pagination.page_size != PAGE_SIZE:
                raise ProviderDataError("HelloAsso", "unexpected pagination in response")
            yield from payload.get("data") or []
            token = pagination.continuation_token
            if not token or pagination.total_pages == 1 or token == cursor:
                return
            cursor = token

    def check_credentials(self) -> None:
        organization_slug = self.login()
        future = (datetime.now(timezone.utc) + timedelta(days=730)).isoformat()
        self.http.get_json(
            f"/organizations/{organization_slug}/orders",
            params={"from": future, "to": future, "pageSize": 1},
        )

    def get_events_series(self, from_date: datetime, to_date: datetime | None = None) -> list[EventSerieWrapper]:
        organization_slug = self.login()
        params: dict[str, Any] = {"formTypes": "Event", "from": ensure_aware(from_date).isoformat(), "sortOrder": "Desc"}
        if to_date is not None:
            params["to"] = ensure_aware(to_date).isoformat()

        orders = [HelloAssoOrder.model_validate(item) for item in self._paginate(f"/organizations/{organization_slug}/orders", params)]
        form_slugs = list(dict.fromkeys(order.form_slug for order in orders))
        return [self._build_wrapper(organization_slug, form_slug) for form_slug in form_slugs]

    def _build_wrapper(self, organization_slug: str, form_slug: str) -> EventSerieWrapper:
        form_path = f"/organizations/{organization_slug}/forms/Event/{form_slug}"
        form = HelloAssoForm.model_validate(self.http.get_json(f"{form_path}/public"))
        if form.currency != "EUR":
            raise ProviderDataError("HelloAsso", f"form {form_slug} is not in euros")

        start_at = ensure_aware(form.start_date)
        if form.end_date is not None:
            end_at = ensure_aware(form.end_date)
        else:
            local_next_day = start_at.astimezone(tz.gettz("Europe/Paris")) + timedelta(days=1)
            end_at = local_next_day.replace(hour=5, minute=0, second=0, microsecond=0)

        categories: dict[str, LiteTicketCategory] = {}
        dynamic_tier_ids: list[int] = []
        tax_rate: Decimal | None = None
        for tier in form.tiers:
            if tier.tier_type != "Registration":
                continue
            # 5.50 stands for 5.5%
            rate = tier.vat_rate / 100
            tax_rate = rate if tax_rate is None else max(tax_rate, rate)
            if tier.price is None:
                dynamic_tier_ids.append(tier.id)
                continue
            categories[str(tier.id)] = LiteTicketCategory(
                internal_ticketing_system_id=str(tier.id),
                name=tier.label or f"Tarif n°{tier.id}",
                description=None,
                price=Decimal(tier.price) / 100,
            )
        dynamic_tier_ids.sort()

        items = self._paginate(
            f"{form_path}/items",
            {
                "tierTypes": "Registration",
                "itemStates": ["Processed", "Registered"],
                "sortField": "UpdateDate",
                "sortOrder": "Desc",
            },
        )
        totals: Counter[str] = Counter()
        for raw_item in items:
            item = HelloAssoItem.model_validate(raw_item)
            if item.tier_id is None:
                raise ProviderDataError("HelloAsso", f"an item of form {form_slug} is not bound to a tier")
            if item.price_category == PAY_WHAT_YOU_WANT:
                if item.tier_id not in dynamic_tier_ids:
                    raise ProviderDataError("HelloAsso", f"pay what you want item references unknown tier {item.tier_id}")
                category_id = f"{item.tier_id}_{item.amount}"
                if category_id not in categories:
                    position = dynamic_tier_ids.index(item.tier_id) + 1
                    categories[category_id] = LiteTicketCategory(
                        internal_ticketing_system_id=category_id,
                        name=f"{item.name or 'Tarif libre'} (n°{position})",
                        description=None,
                        price=Decimal(item.amount) / 100,
                    )
            else:
                category_id = str(item.tier_id)
                if category_id not in categories:
                    raise ProviderDataError("HelloAsso", f"sold item references unknown tier {item.tier_id}")
            totals[category_id] += 1

        if tax_rate is None:
            raise ProviderDataError("HelloAsso", f"form {form_slug} has no registration tier")

        return EventSerieWrapper(
            serie=LiteEventSerie(
                internal_ticketing_system_id=form.form_slug,
                name=form.title,
                start_at=start_at,
                end_at=end_at,
                tax_rate=tax_rate,
            ),
            events=[LiteEvent(internal_ticketing_system_id=form.form_slug, start_at=start_at, end_at=end_at)],
            ticket_categories=list(categories.values()),
            sales=[
                LiteEventSalesRecord(
                    internal_event_ticketing_system_id=form.form_slug,
                    internal_ticket_category_ticketing_system_id=category_id,
                    total=total,
                )
                for category_id, total in totals.items()
            ],
        )
