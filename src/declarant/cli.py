"""Command line entry point for maintenance jobs."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from declarant.agencies.sacd import sync_sacd_agencies
from declarant.agencies.sacem import sync_sacem_agencies
from declarant.config import log_level
from declarant.declaration.format import (
    get_events_key_figures,
    get_flatten_events_for_sacem_declaration,
    get_sacem_events_key_figures,
)
from declarant.diff.comparison import format_diff_result_log
from declarant.errors import DeclarantError
from declarant.models.declaration import DeclarationEvent, DeclarationEventSerie
from declarant.ticketing.synchronize import TicketingSynchronizer

logger = logging.getLogger("declarant.cli")


def _sync_sacd_agencies(args: argparse.Namespace) -> int:
    diff = sync_sacd_agencies(args.csv)
    print(f"sacd agencies synchronized ({format_diff_result_log(diff)})")
    return 0


def _sync_sacem_agencies(args: argparse.Namespace) -> int:
    diff = sync_sacem_agencies(args.csv)
    print(f"sacem agencies synchronized ({format_diff_result_log(diff)})")
    return 0


def _synchronize(args: argparse.Namespace) -> int:
    results = TicketingSynchronizer().synchronize_organization(args.organization_id, args.user_id)
    for result in results:
        print(f"{result.ticketing_system_id}: {result.total_writes} write(s)")
    return 0


def _declaration_stats(args: argparse.Namespace) -> int:
    payload = json.loads(args.input.read_text(encoding="utf-8"))
    event_serie = DeclarationEventSerie.model_validate(payload["event_serie"])
    events = [DeclarationEvent.model_validate(item) for item in payload.get("events", [])]
    sacem_events = get_flatten_events_for_sacem_declaration(event_serie, events)
    stats = {
        "event_serie": event_serie.name,
        "events": len(events),
        "key_figures": get_events_key_figures(sacem_events).model_dump(mode="json"),
        "sacem_key_figures": get_sacem_events_key_figures(sacem_events).model_dump(mode="json"),
    }
    print(json.dumps(stats, indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="declarant", description="Ticketing synchronization and declarations")
    subparsers = parser.add_subparsers(dest="command", required=True)

    parser_sacd = subparsers.add_parser("sync-sacd-agencies", help="Import the SACD agency directory")
    parser_sacd.add_argument("--csv", type=Path, help="CSV export to import instead of the configured one")
    parser_sacd.set_defaults(handler=_sync_sacd_agencies)

    parser_sacem = subparsers.add_parser("sync-sacem-agencies", help="Import the SACEM agency directory")
    parser_sacem.add_argument("--csv", type=Path, help="CSV export to import instead of the configured one")
    parser_sacem.set_defaults(handler=_sync_sacem_agencies)

    parser_sync = subparsers.add_parser("synchronize", help="Synchronize the ticketing systems of an organization")
    parser_sync.add_argument("organization_id")
    parser_sync.add_argument("--user-id", help="User triggering the run, used to opt out of mock data")
    parser_sync.set_defaults(handler=_synchronize)

    parser_stats = subparsers.add_parser("declaration-stats", help="Print key figures of a declaration")
    parser_stats.add_argument("input", type=Path, help="JSON file with event_serie and events")
    parser_stats.set_defaults(handler=_declaration_stats)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return args.handler(args)
    except DeclarantError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
