"""Command-line entry point.

Thin layer over ``ProjectService``: parses arguments, defaults the target
directory to the current one, prints results, and maps failures to exit
code 1.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from compose_updater import __version__
from compose_updater.config import get_settings
from compose_updater.constants import APP_NAME, DEFAULT_LOG_LINES
from compose_updater.errors import ComposeUpdaterError
from compose_updater.logging import get_logger, setup_logging
from compose_updater.models import UpdateResult
from compose_updater.schedule import describe
from compose_updater.service import ProjectService

log = get_logger("compose_updater.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Scheduled pull/recreate/health-check/rollback for Docker Compose projects",
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="command")

    add = sub.add_parser("add", help="Register a project for auto-updates")
    add.add_argument("directory", nargs="?", default=".")
    add.add_argument("legacy_interval", nargs="?", help=argparse.SUPPRESS)
    group = add.add_mutually_exclusive_group()
    group.add_argument("--interval", help="Every N hours (1-23, default: 12)")
    group.add_argument("--at", help="Time of day: HH:MM, HH.MM, or hh:mm AM/PM")
    group.add_argument("--cron", help="Custom cron expression")
    add.add_argument("--days", help="Weekdays to run on, with --at (e.g. Mon,Fri)")

    for name, help_text in (
        ("remove", "Unregister a project"),
        ("enable", "Enable auto-updates for a project"),
        ("disable", "Disable auto-updates for a project"),
        ("update", "Pull latest images and recreate containers now"),
        ("status", "Show container status"),
        ("check", "Pull images and report available updates"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("directory", nargs="?", default=".")

    sub.add_parser("rm", help=argparse.SUPPRESS).add_argument("directory", nargs="?", default=".")

    single = sub.add_parser("update-single", help="Non-interactive update (used by cron)")
    single.add_argument("directory")

    sub.add_parser("update-all", help="Update all enabled projects")
    sub.add_parser("list", help="List registered projects")
    sub.add_parser("ls", help=argparse.SUPPRESS)
    sub.add_parser("resync", help="Rebuild managed cron entries from the registry")

    logs = sub.add_parser("logs", help="Show update logs")
    logs.add_argument("directory", nargs="?", default=".")
    logs.add_argument("lines", nargs="?", type=int, default=DEFAULT_LOG_LINES)

    config = sub.add_parser("config", help="Get or set global configuration")
    config.add_argument("key", nargs="?")
    config.add_argument("value", nargs="?")

    sub.add_parser("version", help="Show version")
    return parser


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _cmd_add(service: ProjectService, args: argparse.Namespace) -> int:
    interval = args.interval
    if interval is None and args.at is None and args.cron is None:
        interval = args.legacy_interval
    record = await service.add(
        args.directory, interval=interval, at=args.at, days=args.days, cron=args.cron
    )
    print(f"Registered {record.path}")
    print(f"  Name:     {record.name}")
    print(f"  Schedule: {describe(record.schedule)} ({record.schedule})")
    return 0


async def _cmd_list(service: ProjectService, _args: argparse.Namespace) -> int:
    records = service.list()
    if not records:
        print("No projects registered")
        return 0

    print(f"{'DIRECTORY':<40} {'NAME':<15} {'SCHEDULE':<15} {'STATUS':<10}")
    for record in records:
        path = record.path if len(record.path) <= 38 else "..." + record.path[-35:]
        label = describe(record.schedule)
        print(f"{path:<40} {record.name:<15} {label:<15} {record.status.value:<10}")
    print(f"\nActive cron jobs: {await service.managed_schedule_count()}")
    return 0


async def _cmd_status(service: ProjectService, args: argparse.Namespace) -> int:
    report = await service.status(args.directory)
    print(f"Project: {report.name}\n{report.path}\n")
    print(f"{'SERVICE':<20} {'STATE':<10} {'HEALTH':<10} IMAGE")
    for svc in report.services:
        print(f"{svc.service:<20} {svc.state:<10} {svc.health or '-':<10} {svc.image}")
    print()
    if report.record is None:
        print("Auto-update: not registered")
    else:
        print(f"Auto-update: {report.record.status.value} ({describe(report.record.schedule)})")
    if report.lock is not None and report.lock.held:
        print(f"Update in progress (pid {report.lock.pid}, since {report.lock.acquired_at})")
    return 0


async def _cmd_check(service: ProjectService, args: argparse.Namespace) -> int:
    checks = await service.check(args.directory)
    print(f"{'SERVICE':<20} {'IMAGE':<30} STATUS")
    found = 0
    for check in checks:
        if not check.running:
            label = "Not Running"
        elif check.update_available is None:
            label = "Unknown"
        elif check.update_available:
            label = "Update Available"
            found += 1
        else:
            label = "Up to date"
        image = check.image if len(check.image) <= 28 else "..." + check.image[-25:]
        print(f"{check.service:<20} {image:<30} {label}")
    print(f"\nFound {found} update(s)." if found else "\nAll services are up to date.")
    return 0


def _report(result: UpdateResult) -> int:
    if result.ok:
        print(f"Update completed successfully for {result.project}")
        return 0
    print(f"Update failed for {result.project}: {result.error}", file=sys.stderr)
    return 1


async def _cmd_update(service: ProjectService, args: argparse.Namespace) -> int:
    return _report(await service.update(args.directory))


async def _cmd_update_single(service: ProjectService, args: argparse.Namespace) -> int:
    result = await service.update_single(args.directory)
    print(json.dumps(result.to_dict()))
    return 0 if result.ok else 1


async def _cmd_update_all(service: ProjectService, _args: argparse.Namespace) -> int:
    results = await service.update_all()
    if not results:
        print("No enabled projects registered")
        return 0
    failed = [r for r in results if not r.ok]
    print(f"Updated: {len(results) - len(failed)} projects")
    for result in failed:
        print(f"Failed: {result.project} ({result.error})", file=sys.stderr)
    return 1 if failed else 0


async def _cmd_remove(service: ProjectService, args: argparse.Namespace) -> int:
    await service.remove(args.directory)
    print(f"Project removed: {Path(args.directory).resolve()}")
    return 0


async def _cmd_enable(service: ProjectService, args: argparse.Namespace) -> int:
    await service.enable(args.directory)
    print(f"Auto-update enabled for: {Path(args.directory).resolve()}")
    return 0


async def _cmd_disable(service: ProjectService, args: argparse.Namespace) -> int:
    await service.disable(args.directory)
    print(f"Auto-update disabled for: {Path(args.directory).resolve()}")
    return 0


async def _cmd_resync(service: ProjectService, _args: argparse.Namespace) -> int:
    count = await service.resync()
    print(f"Cron jobs updated: {count}")
    return 0


async def _cmd_logs(service: ProjectService, args: argparse.Namespace) -> int:
    path, lines = service.logs(args.directory, args.lines)
    if not lines:
        print(f"No logs found at {path}")
        return 0
    print("\n".join(lines))
    return 0


async def _cmd_config(service: ProjectService, args: argparse.Namespace) -> int:
    if args.key is None:
        items = service.config_items()
        if not items:
            print("No configuration set.")
        for key, value in items:
            print(f"{key}={value}")
        return 0
    if args.value is None:
        value = service.config_get(args.key)
        if value is None:
            return 1
        print(value)
        return 0
    service.config_set(args.key, args.value)
    print(f"Set {args.key}={args.value}")
    return 0


_HANDLERS = {
    "add": _cmd_add,
    "remove": _cmd_remove,
    "rm": _cmd_remove,
    "list": _cmd_list,
    "ls": _cmd_list,
    "enable": _cmd_enable,
    "disable": _cmd_disable,
    "update": _cmd_update,
    "update-single": _cmd_update_single,
    "update-all": _cmd_update_all,
    "status": _cmd_status,
    "check": _cmd_check,
    "logs": _cmd_logs,
    "config": _cmd_config,
    "resync": _cmd_resync,
}


async def run(args: argparse.Namespace, service: ProjectService) -> int:
    handler = _HANDLERS[args.command]
    try:
        return await handler(service, args)
    except ComposeUpdaterError as exc:
        log.error("command_failed", command=args.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "version":
        print(f"{APP_NAME} version {__version__}")
        return 0

    setup_logging()
    service = ProjectService.from_settings(get_settings())
    return asyncio.run(run(args, service))
