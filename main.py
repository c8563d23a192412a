"""Command-line entry point for swarm maintenance mode."""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Any, Callable

from config import ConfigController
from core.errors import MaintenanceError
from core.logging import enable_file_logging, log_error, log_warning, logger, set_level
from core.models import Category
from maintenance.controller import MaintenanceController, StatusReport

HELP_TEXT = """
Swarm Maintenance Commands
==========================

These commands help you safely reboot a single-node Docker Swarm
by scaling down services before reboot and restoring them after.

Commands:
  enter          Enter maintenance mode (snapshot + scale down)
  exit           Exit maintenance mode (restore services)
  safe-reboot    Full safe reboot workflow
  status         Show current maintenance status
  help           Show this help

Options:
  --force            Overwrite existing snapshot (enter, safe-reboot)
  --dry-run          Show what would be done (enter only)
  --keep-snapshot    Don't archive snapshot after restore (exit only)
  -y, --yes          Auto-confirm reboot (safe-reboot only)

Typical Workflow:
  1. swarmkeep safe-reboot     # Enter maintenance + reboot
  2. (system reboots)
  3. swarmkeep exit            # Restore services

Or manually:
  1. swarmkeep enter
  2. reboot
  3. swarmkeep exit
"""


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(
        prog="swarmkeep",
        description="Safely take a single-node Docker Swarm offline for maintenance.",
    )
    parser.add_argument("--config-dir", type=Path, help="Directory holding default.yaml.")
    parser.add_argument("--log-level", type=str, help="Override the configured log level.")
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Run diagnostics probes and exit.",
    )
    subparsers = parser.add_subparsers(dest="command")

    enter = subparsers.add_parser("enter", help="Snapshot services and scale them down.")
    enter.add_argument("--force", action="store_true", help="Overwrite an existing snapshot.")
    enter.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes.",
    )

    exit_parser = subparsers.add_parser("exit", help="Restore services from the snapshot.")
    exit_parser.add_argument(
        "--keep-snapshot",
        action="store_true",
        help="Don't archive the snapshot after restore.",
    )

    subparsers.add_parser("status", help="Show the current maintenance status.")

    reboot = subparsers.add_parser("safe-reboot", help="Enter maintenance mode and reboot.")
    reboot.add_argument("--force", action="store_true", help="Overwrite an existing snapshot.")
    reboot.add_argument("-y", "--yes", action="store_true", help="Reboot without asking.")

    subparsers.add_parser("help", help="Show maintenance workflow help.")
    return parser.parse_args(argv)


def format_status(report: StatusReport) -> str:
    """Return a human-friendly maintenance status report."""

    lines = ["Swarm Maintenance Status", "-" * 60]
    lines.append(f"Swarm Status: Active ({report.node_count} node(s))")
    lines.append(f"Swarm Type: {'Single-node' if report.single_node else 'Multi-node'}")
    lines.append(f"Node Availability: {report.node_availability}")
    lines.append("")
    if report.active and report.metadata is not None:
        metadata = report.metadata
        counts = metadata.category_counts
        lines.append("Maintenance Mode: ACTIVE")
        lines.append("Snapshot Info:")
        lines.append(f"  Created: {metadata.created_at}")
        lines.append(f"  Hostname: {metadata.hostname}")
        lines.append(f"  Total Services: {metadata.total_services}")
        lines.append(f"  Application Services: {counts.get(Category.APP.value, 0)}")
        lines.append(f"  Database Services: {counts.get(Category.DATABASE.value, 0)}")
        lines.append(f"  Ingress Services: {counts.get(Category.INGRESS.value, 0)}")
        lines.append(f"  One-shot Services: {counts.get(Category.ONESHOT.value, 0)}")
        lines.append(f"  Node Count: {metadata.node_count}")
        lines.append("")
        lines.append("To restore services: swarmkeep exit")
    else:
        lines.append("Maintenance Mode: Not active")
        lines.append("")
        lines.append("To enter maintenance mode: swarmkeep enter")
        lines.append("To perform safe reboot:    swarmkeep safe-reboot")
    lines.append(f"Archived snapshots: {report.archive_count}")
    if report.replicas:
        lines.append("")
        lines.append("Current Service Status:")
        for name, (current, desired) in sorted(report.replicas.items()):
            lines.append(f"  {name:<30} {current}/{desired}")
    lines.append("-" * 60)
    return "\n".join(lines)


def build_controller(config: dict[str, Any]) -> MaintenanceController:
    return MaintenanceController.build(config["maintenance"])


def _run_enter(controller: MaintenanceController, args: argparse.Namespace) -> int:
    result = controller.enter(force=args.force, dry_run=args.dry_run)
    return 0 if result.ok else 1


def _run_exit(controller: MaintenanceController, args: argparse.Namespace) -> int:
    result = controller.exit(keep_snapshot=args.keep_snapshot)
    if result.unmanaged:
        log_warning(f"Not managed by the snapshot: {', '.join(result.unmanaged)}")
    return 0 if result.ok else 1


def _run_status(controller: MaintenanceController, args: argparse.Namespace) -> int:
    print(format_status(controller.status()))
    return 0


def _run_safe_reboot(controller: MaintenanceController, args: argparse.Namespace) -> int:
    result = controller.safe_reboot(force=args.force, auto_confirm=args.yes)
    return 0 if result.enter.ok else 1


COMMANDS: dict[str, Callable[[MaintenanceController, argparse.Namespace], int]] = {
    "enter": _run_enter,
    "exit": _run_exit,
    "status": _run_status,
    "safe-reboot": _run_safe_reboot,
}


def run_diagnostics_command() -> int:
    from diagnostics.run import run_live
    from diagnostics.runner import format_results, has_failures

    results = run_live()
    print(format_results(results))
    return 1 if has_failures(results) else 0


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]

    args = parse_args(argv)
    config = ConfigController.get_instance(args.config_dir).get_config()
    set_level(args.log_level or config.get("logging_level", "INFO"))

    if args.diagnostics:
        return run_diagnostics_command()

    if args.command in (None, "help"):
        print(HELP_TEXT)
        return 0

    if config.get("file_logging_enabled", True) and args.command != "status":
        log_path = Path(config["log_file"])
        try:
            enable_file_logging(log_path)
        except OSError as exc:
            logger.warning("File logging to %s unavailable: %s", log_path, exc)

    try:
        controller = build_controller(config)
        return COMMANDS[args.command](controller, args)
    except MaintenanceError as exc:
        log_error(f"Error: {exc}")
        return exc.exit_code
    except KeyboardInterrupt:
        logger.info("Program terminated by user")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
