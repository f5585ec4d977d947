"""Management utilities for the factoid database and legacy response migration."""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..client import DataClient
from ..config import get_settings
from ..errors import NotFoundError, PandoraError, ResponseExistsError
from ..models import Factoid


def _open_client(db_path: Optional[Path]) -> DataClient:
    settings = get_settings()
    client = DataClient.from_settings(settings)
    if db_path is not None:
        client.path = db_path
    return client.open()


def _factoid_dict(factoid: Factoid) -> Dict[str, Any]:
    return {
        "id": factoid.id,
        "trigger": factoid.trigger,
        "protected": factoid.protected,
        "date_created": factoid.date_created,
        "date_edited": factoid.date_edited,
        "responses": {key: factoid.responses[key].response for key in sorted(factoid.responses)},
    }


def _resolve(client: DataClient, ref: str) -> Optional[Factoid]:
    if ref.isdigit():
        factoid = client.factoids.get_by_id(int(ref))
        if factoid is not None:
            return factoid
    return client.factoids.get_by_trigger(ref)


def cmd_list(args: argparse.Namespace) -> None:
    with _open_client(args.db) as client:
        factoids = client.factoids.range(args.from_id, args.count)
    if args.json:
        print(json.dumps([_factoid_dict(item) for item in factoids], default=str, indent=2))
        return
    if not factoids:
        print("No factoids found.")
        return
    for factoid in factoids:
        print(f"{factoid.id:>6}  {factoid.trigger}  ({len(factoid.responses)} responses)")


def cmd_show(args: argparse.Namespace) -> None:
    with _open_client(args.db) as client:
        factoid = _resolve(client, args.ref)
    if factoid is None:
        raise SystemExit(f"No factoid matches {args.ref!r}.")
    if args.json:
        print(json.dumps(_factoid_dict(factoid), default=str, indent=2))
        return
    lines: List[str] = [f"Factoid {factoid.id}: {factoid.trigger}"]
    if factoid.protected:
        lines.append("  (protected)")
    lines.append(f"  Created: {factoid.date_created}")
    lines.append(f"  Edited:  {factoid.date_edited}")
    for key in sorted(factoid.responses):
        lines.append(f"  [{key}] {factoid.responses[key].response}")
    print("\n".join(lines))


def cmd_teach(args: argparse.Namespace) -> None:
    with _open_client(args.db) as client:
        try:
            factoid = client.service().teach(args.trigger, args.response)
        except ResponseExistsError as exc:
            raise SystemExit(str(exc)) from exc
    print(f'Factoid {factoid.id} "{factoid.trigger}" now has {len(factoid.responses)} responses.')


def cmd_delete(args: argparse.Namespace) -> None:
    with _open_client(args.db) as client:
        try:
            removed = client.factoids.delete(args.id)
        except NotFoundError as exc:
            raise SystemExit(str(exc)) from exc
    print(f'Deleted factoid {removed.id} "{removed.trigger}".')


def cmd_migrate(args: argparse.Namespace) -> None:
    with _open_client(args.db) as client:
        summary = client.factoids.migrate_legacy(dry_run=args.dry_run)

    if args.json or args.dry_run:
        print(json.dumps(summary, indent=2))
        return
    print(
        f"Legacy response migration: scanned {summary['scanned']} factoids, "
        f"migrated {summary['migrated']}."
    )


def _stats(client: DataClient) -> Dict[str, Any]:
    total_responses = 0
    busiest: Optional[Factoid] = None
    for factoid in client.factoids.iter_all():
        total_responses += len(factoid.responses)
        if busiest is None or len(factoid.responses) > len(busiest.responses):
            busiest = factoid
    pending = client.factoids.migrate_legacy(dry_run=True)["pending"]
    return {
        "factoids": client.factoids.count(),
        "responses": total_responses,
        "legacy_pending": pending,
        "busiest": None
        if busiest is None
        else {"id": busiest.id, "trigger": busiest.trigger, "responses": len(busiest.responses)},
    }


def cmd_stats(args: argparse.Namespace) -> None:
    with _open_client(args.db) as client:
        stats = _stats(client)
    if args.json:
        print(json.dumps(stats, indent=2))
        return
    lines = [
        f"Factoids: {stats['factoids']}",
        f"Responses: {stats['responses']}",
        f"Pending legacy migration: {stats['legacy_pending']}",
    ]
    if stats["busiest"]:
        busiest = stats["busiest"]
        lines.append(f"Most responses: {busiest['trigger']} ({busiest['responses']})")
    print("\n".join(lines))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and maintain the factoid database.")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the factoid database (default: database.path from settings).",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING).")

    subparsers = parser.add_subparsers(dest="command", required=True)

    listing = subparsers.add_parser("list", help="List factoids in id order.")
    listing.add_argument("--from-id", type=int, default=0, help="First id to list (default: 0).")
    listing.add_argument("--count", type=int, default=50, help="How many to list (max 100).")
    listing.add_argument("--json", action="store_true", help="Output JSON for automation.")
    listing.set_defaults(func=cmd_list)

    show = subparsers.add_parser("show", help="Show one factoid by id or trigger.")
    show.add_argument("ref", help="Factoid id or trigger text.")
    show.add_argument("--json", action="store_true", help="Output JSON for automation.")
    show.set_defaults(func=cmd_show)

    teach = subparsers.add_parser("teach", help="Add a response to a trigger.")
    teach.add_argument("trigger")
    teach.add_argument("response")
    teach.set_defaults(func=cmd_teach)

    delete = subparsers.add_parser("delete", help="Delete a factoid and its index entry.")
    delete.add_argument("id", type=int)
    delete.set_defaults(func=cmd_delete)

    migrate = subparsers.add_parser(
        "migrate",
        help="Rewrite factoids still carrying list-shaped responses.",
    )
    migrate.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be migrated without writing (implies JSON output).",
    )
    migrate.add_argument("--json", action="store_true", help="Emit JSON output.")
    migrate.set_defaults(func=cmd_migrate)

    stats = subparsers.add_parser("stats", help="Summarise the database.")
    stats.add_argument("--json", action="store_true", help="Emit JSON output.")
    stats.set_defaults(func=cmd_stats)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    try:
        args.func(args)
    except PandoraError as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
