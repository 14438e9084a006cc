"""Pull ticketing data for an organization and apply the minimal set of writes.

Every diff key starts with the organization id and the provider name. Provider
ids are only unique within one provider account, and a provider connected again
after a removal must find the series it created before.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable

from dateutil.relativedelta import relativedelta

from declarant.db.repositories import (
    EventCategoryTicketsRepository,
    EventRepository,
    EventSerieDeclarationRepository,
    EventSerieRepository,
    TicketCategoryRepository,
    TicketingSystemRepository,
    row_datetime,
    row_decimal,
)
from declarant.diff.comparison import format_diff_result_log, get_diff, sort_diff_with_keys
from declarant.errors import NoValidTicketingSystemError, ProviderDataError, SynchronizationOngoingError
from declarant.models.canonical import (
    EventSerieWrapper,
    LiteEvent,
    LiteEventSerie,
    LiteTicketCategory,
    TicketingSystem,
    TicketingSystemName,
    parse_ticketing_system_name,
)
from declarant.ticketing.base import TicketingSystemClient, ensure_aware
from declarant.ticketing.factory import get_ticketing_system_client

logger = logging.getLogger(__name__)

OLDEST_ALLOWED_MONTHS = 13

# (organization id, provider name, serie id, ...)
SerieKey = tuple[str, str, str]
EventKey = tuple[str, str, str, str]
CategoryKey = tuple[str, str, str, str]
SalesKey = tuple[str, str, str, str, str]

ClientFactory = Callable[[TicketingSystem, str | None], TicketingSystemClient]


def ticketing_system_from_row(row: dict[str, Any]) -> TicketingSystem:
    return TicketingSystem(
        id=row["id"],
        organization_id=row["organization_id"],
        name=parse_ticketing_system_name(row["name"]),
        api_access_key=row.get("api_access_key"),
        api_secret_key=row.get("api_secret_key"),
        last_synchronization_at=row_datetime(row.get("last_synchronization_at")),
        force_next_synchronization_from=row_datetime(row.get("force_next_synchronization_from")),
        last_processing_error=row.get("last_processing_error"),
        last_processing_error_at=row_datetime(row.get("last_processing_error_at")),
    )


@dataclass
class SynchronizationResult:
    ticketing_system_id: str
    series: dict[str, int] = field(default_factory=dict)
    ticket_categories: dict[str, int] = field(default_factory=dict)
    events: dict[str, int] = field(default_factory=dict)
    sales: dict[str, int] = field(default_factory=dict)
    skipped_series: list[str] = field(default_factory=list)

    @property
    def total_writes(self) -> int:
        return sum(
            sum(counts.values()) for counts in (self.series, self.ticket_categories, self.events, self.sales)
        )


class OrganizationLocks:
    """Non-blocking per-organization guard, a busy organization is rejected."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._running: set[str] = set()

    def try_acquire(self, organization_id: str) -> bool:
        with self._guard:
            if organization_id in self._running:
                return False
            self._running.add(organization_id)
            return True

    def release(self, organization_id: str) -> None:
        with self._guard:
            self._running.discard(organization_id)

    def is_running(self, organization_id: str) -> bool:
        with self._guard:
            return organization_id in self._running


_ORGANIZATION_LOCKS = OrganizationLocks()


def synchronization_starting_date(ticketing_system: TicketingSystem, now: datetime) -> datetime:
    last = ticketing_system.last_synchronization_at
    forced = ticketing_system.force_next_synchronization_from
    if last is not None and forced is not None:
        return min(last, forced)
    return forced or last or now - relativedelta(months=OLDEST_ALLOWED_MONTHS)


@dataclass
class _StoredState:
    series: dict[SerieKey, LiteEventSerie] = field(default_factory=dict)
    events: dict[EventKey, LiteEvent] = field(default_factory=dict)
    categories: dict[CategoryKey, LiteTicketCategory] = field(default_factory=dict)
    sales: dict[SalesKey, int] = field(default_factory=dict)
    serie_ids: dict[SerieKey, str] = field(default_factory=dict)
    event_ids: dict[EventKey, str] = field(default_factory=dict)
    category_ids: dict[CategoryKey, str] = field(default_factory=dict)
    sales_ids: dict[SalesKey, str] = field(default_factory=dict)
    manual_events: set[EventKey] = field(default_factory=set)


@dataclass
class _RemoteState:
    series: dict[SerieKey, LiteEventSerie] = field(default_factory=dict)
    events: dict[EventKey, LiteEvent] = field(default_factory=dict)
    categories: dict[CategoryKey, LiteTicketCategory] = field(default_factory=dict)
    sales: dict[SalesKey, int] = field(default_factory=dict)


class TicketingSynchronizer:
    def __init__(
        self,
        ticketing_systems: TicketingSystemRepository | None = None,
        event_series: EventSerieRepository | None = None,
        events: EventRepository | None = None,
        ticket_categories: TicketCategoryRepository | None = None,
        event_category_tickets: EventCategoryTicketsRepository | None = None,
        declarations: EventSerieDeclarationRepository | None = None,
        client_factory: ClientFactory = get_ticketing_system_client,
        clock: Callable[[], datetime] | None = None,
        locks: OrganizationLocks | None = None,
    ) -> None:
        self.ticketing_systems = ticketing_systems or TicketingSystemRepository()
        self.event_series = event_series or EventSerieRepository()
        self.events = events or EventRepository()
        self.ticket_categories = ticket_categories or TicketCategoryRepository()
        self.event_category_tickets = event_category_tickets or EventCategoryTicketsRepository()
        self.declarations = declarations or EventSerieDeclarationRepository()
        self.client_factory = client_factory
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.locks = locks or _ORGANIZATION_LOCKS

    def synchronize_organization(self, organization_id: str, user_id: str | None = None) -> list[SynchronizationResult]:
        ticketing_systems = [
            ticketing_system_from_row(row) for row in self.ticketing_systems.list_for_organization(organization_id)
        ]
        ticketing_systems = [item for item in ticketing_systems if item.name != TicketingSystemName.MANUAL]
        if not ticketing_systems:
            raise NoValidTicketingSystemError(organization_id)

        if not self.locks.try_acquire(organization_id):
            raise SynchronizationOngoingError(organization_id)
        try:
            started_at = self.clock()
            return [self._synchronize_system(item, user_id, started_at) for item in ticketing_systems]
        finally:
            self.locks.release(organization_id)

    def _synchronize_system(
        self, ticketing_system: TicketingSystem, user_id: str | None, started_at: datetime
    ) -> SynchronizationResult:
        from_date = synchronization_starting_date(ticketing_system, started_at)
        logger.info(
            "synchronizing ticketing system %s (%s) from %s",
            ticketing_system.id,
            ticketing_system.name.value,
            from_date.isoformat(),
        )
        try:
            client = self.client_factory(ticketing_system, user_id)
            wrappers = client.get_events_series(from_date)
            result = self._apply(ticketing_system, wrappers)
        except Exception as exc:
            logger.exception("synchronization of ticketing system %s failed", ticketing_system.id)
            self.ticketing_systems.record_error(ticketing_system.id, str(exc))
            raise
        self.ticketing_systems.record_success(ticketing_system.id, started_at)
        logger.info("ticketing system %s synchronized with %d writes", ticketing_system.id, result.total_writes)
        return result

    def _load_stored(self, scope: tuple[str, str], wrappers: list[EventSerieWrapper]) -> tuple[_StoredState, set[str]]:
        stored = _StoredState()
        serie_rows = self.event_series.list_for_provider(
            *scope, [wrapper.serie.internal_ticketing_system_id for wrapper in wrappers]
        )
        declared = self.declarations.event_serie_ids_with_declaration([row["id"] for row in serie_rows])
        skipped = {row["internal_ticketing_system_id"] for row in serie_rows if row["id"] in declared}

        serie_iid_by_db_id: dict[str, str] = {}
        for row in serie_rows:
            iid = row["internal_ticketing_system_id"]
            if iid in skipped:
                continue
            key = (*scope, iid)
            serie_iid_by_db_id[row["id"]] = iid
            stored.serie_ids[key] = row["id"]
            stored.series[key] = LiteEventSerie(
                internal_ticketing_system_id=iid,
                name=row["name"],
                start_at=row_datetime(row["start_at"]),
                end_at=row_datetime(row["end_at"]),
                tax_rate=row_decimal(row["ticketing_revenue_tax_rate"]),
            )

        event_key_by_db_id: dict[str, EventKey] = {}
        for row in self.events.list_for_series(serie_iid_by_db_id):
            key = (*scope, serie_iid_by_db_id[row["event_serie_id"]], row["internal_ticketing_system_id"])
            event_key_by_db_id[row["id"]] = key
            stored.event_ids[key] = row["id"]
            stored.events[key] = LiteEvent(
                internal_ticketing_system_id=row["internal_ticketing_system_id"],
                start_at=row_datetime(row["start_at"]),
                end_at=row_datetime(row["end_at"]),
            )
            if row.get("last_manual_ticketing_data_update_at"):
                stored.manual_events.add(key)

        category_key_by_db_id: dict[str, CategoryKey] = {}
        for row in self.ticket_categories.list_for_series(serie_iid_by_db_id):
            key = (*scope, serie_iid_by_db_id[row["event_serie_id"]], row["internal_ticketing_system_id"])
            category_key_by_db_id[row["id"]] = key
            stored.category_ids[key] = row["id"]
            stored.categories[key] = LiteTicketCategory(
                internal_ticketing_system_id=row["internal_ticketing_system_id"],
                name=row["name"],
                description=row.get("description"),
                price=row_decimal(row["price"]),
            )

        for row in self.event_category_tickets.list_for_events(event_key_by_db_id):
            event_key = event_key_by_db_id[row["event_id"]]
            category_key = category_key_by_db_id[row["category_id"]]
            key = (*event_key, category_key[3])
            stored.sales_ids[key] = row["id"]
            stored.sales[key] = int(row["total"])

        return stored, skipped

    @staticmethod
    def _build_remote(scope: tuple[str, str], wrappers: list[EventSerieWrapper], skipped: set[str]) -> _RemoteState:
        remote = _RemoteState()
        for wrapper in wrappers:
            serie_iid = wrapper.serie.internal_ticketing_system_id
            if serie_iid in skipped:
                continue
            remote.series[(*scope, serie_iid)] = wrapper.serie.model_copy(
                update={"start_at": ensure_aware(wrapper.serie.start_at), "end_at": ensure_aware(wrapper.serie.end_at)}
            )
            for event in wrapper.events:
                remote.events[(*scope, serie_iid, event.internal_ticketing_system_id)] = event.model_copy(
                    update={"start_at": ensure_aware(event.start_at), "end_at": ensure_aware(event.end_at)}
                )
            for category in wrapper.ticket_categories:
                remote.categories[(*scope, serie_iid, category.internal_ticketing_system_id)] = category
            for sales in wrapper.sales:
                event_key = (*scope, serie_iid, sales.internal_event_ticketing_system_id)
                category_key = (*scope, serie_iid, sales.internal_ticket_category_ticketing_system_id)
                if event_key not in remote.events or category_key not in remote.categories:
                    raise ProviderDataError(
                        "ticketing", f"sales of serie {serie_iid} reference an unknown event or ticket category"
                    )
                remote.sales[(*event_key, category_key[3])] = sales.total
        return remote

    def _apply(self, ticketing_system: TicketingSystem, wrappers: list[EventSerieWrapper]) -> SynchronizationResult:
        result = SynchronizationResult(ticketing_system_id=ticketing_system.id)
        scope = (ticketing_system.organization_id, ticketing_system.name.value)
        stored, skipped = self._load_stored(scope, wrappers)
        remote = self._build_remote(scope, wrappers, skipped)
        result.skipped_series = sorted(skipped)
        if skipped:
            logger.info("skipping %d series already declared", len(skipped))

        serie_ids = dict(stored.serie_ids)
        category_ids = dict(stored.category_ids)
        event_ids = dict(stored.event_ids)

        # Series are never removed, a serie missing from a pull is just not modified.
        series_diff = sort_diff_with_keys(get_diff(stored.series, remote.series))
        logger.info("series diff: %s", format_diff_result_log(series_diff))
        for key, serie in series_diff.added:
            row = self.event_series.insert(
                {
                    "organization_id": ticketing_system.organization_id,
                    "ticketing_system_name": ticketing_system.name.value,
                    "ticketing_system_id": ticketing_system.id,
                    "internal_ticketing_system_id": serie.internal_ticketing_system_id,
                    "name": serie.name,
                    "start_at": serie.start_at.isoformat(),
                    "end_at": serie.end_at.isoformat(),
                    "ticketing_revenue_tax_rate": float(serie.tax_rate),
                }
            )
            serie_ids[key] = row["id"]
        for key, serie in series_diff.updated:
            self.event_series.update(
                serie_ids[key],
                {
                    "name": serie.name,
                    "start_at": serie.start_at.isoformat(),
                    "end_at": serie.end_at.isoformat(),
                    "ticketing_revenue_tax_rate": float(serie.tax_rate),
                },
            )
        result.series = {"added": len(series_diff.added), "updated": len(series_diff.updated)}

        categories_diff = sort_diff_with_keys(get_diff(stored.categories, remote.categories))
        logger.info("ticket categories diff: %s", format_diff_result_log(categories_diff))
        for key, category in categories_diff.added:
            row = self.ticket_categories.insert(
                {
                    "event_serie_id": serie_ids[key[:3]],
                    "internal_ticketing_system_id": category.internal_ticketing_system_id,
                    "name": category.name,
                    "description": category.description,
                    "price": float(category.price),
                }
            )
            category_ids[key] = row["id"]
        for key, category in categories_diff.updated:
            self.ticket_categories.update(
                category_ids[key],
                {"name": category.name, "description": category.description, "price": float(category.price)},
            )

        events_diff = sort_diff_with_keys(get_diff(stored.events, remote.events))
        logger.info("events diff: %s", format_diff_result_log(events_diff))
        for key, event in events_diff.added:
            row = self.events.insert(
                {
                    "event_serie_id": serie_ids[key[:3]],
                    "internal_ticketing_system_id": event.internal_ticketing_system_id,
                    "start_at": event.start_at.isoformat(),
                    "end_at": event.end_at.isoformat(),
                    "last_manual_ticketing_data_update_at": None,
                }
            )
            event_ids[key] = row["id"]
        # Manually edited ticketing data wins over the provider for events still present.
        locked_events = {key for key in stored.manual_events if key in remote.events}
        updated_events = [(key, event) for key, event in events_diff.updated if key not in locked_events]
        for key, event in updated_events:
            self.events.update(
                event_ids[key],
                {"start_at": event.start_at.isoformat(), "end_at": event.end_at.isoformat()},
            )

        sales_diff = sort_diff_with_keys(get_diff(stored.sales, remote.sales))
        logger.info("sales diff: %s", format_diff_result_log(sales_diff))
        added_sales = [(key, total) for key, total in sales_diff.added if key[:4] not in locked_events]
        updated_sales = [(key, total) for key, total in sales_diff.updated if key[:4] not in locked_events]
        removed_sales = [(key, total) for key, total in sales_diff.removed if key[:4] not in locked_events]
        self.event_category_tickets.insert_many(
            [
                {
                    "event_id": event_ids[key[:4]],
                    "category_id": category_ids[(*key[:3], key[4])],
                    "total": total,
                    "total_override": None,
                    "price_override": None,
                }
                for key, total in added_sales
            ]
        )
        for key, total in updated_sales:
            self.event_category_tickets.update(stored.sales_ids[key], {"total": total})

        self.event_category_tickets.delete_many(stored.sales_ids[key] for key, _ in removed_sales)
        self.events.delete_many(stored.event_ids[key] for key, _ in events_diff.removed)
        # Sales kept on locked events still point to their categories.
        referenced = {(*key[:3], key[4]) for key in stored.sales if key[:4] in locked_events}
        removed_categories = [key for key, _ in categories_diff.removed if key not in referenced]
        self.ticket_categories.delete_many(stored.category_ids[key] for key in removed_categories)

        result.ticket_categories = {
            "added": len(categories_diff.added),
            "updated": len(categories_diff.updated),
            "removed": len(removed_categories),
        }
        result.events = {
            "added": len(events_diff.added),
            "updated": len(updated_events),
            "removed": len(events_diff.removed),
        }
        result.sales = {"added": len(added_sales), "updated": len(updated_sales), "removed": len(removed_sales)}
        return result
