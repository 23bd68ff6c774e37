"""Command-line interface for the SSH tunnel manager."""

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .common.exceptions import NotFound, TunnelManagerError
from .common.logging import get_logger, setup_logging
from .config import DEFAULT_CONFIG_FILE, ensure_layout, load_config
from .manager import TunnelManager
from .models import CatalogEntry, TunnelStatus

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1

console = Console()
err_console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ssh-tunnel-manager",
        description="Manage SSH port-forwarding tunnels to catalog applications.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ssh-tunnel-manager create app1      # open a tunnel on a random local port
  ssh-tunnel-manager list             # show tunnels and whether they are alive
  ssh-tunnel-manager delete 12345     # stop the tunnel with that PID
  ssh-tunnel-manager cleanup          # forget tunnels whose process died
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_FILE,
        help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (the audit log always records INFO)",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    create = sub.add_parser(
        "create", help="Create a new SSH tunnel (auto-assigns local port)"
    )
    create.add_argument("app", help="Application name from the catalog")

    sub.add_parser("list", help="List all tracked tunnels")

    delete = sub.add_parser("delete", help="Delete a specific tunnel by PID")
    delete.add_argument("pid", type=int, help="PID of the tunnel process")

    delete_app = sub.add_parser(
        "delete-app", help="Delete all tunnels for an application"
    )
    delete_app.add_argument("app", help="Application name")

    sub.add_parser("cleanup", help="Clean up dead tunnels")
    sub.add_parser("apps", help="List available applications")

    return parser


def _apps_table(entries: list[CatalogEntry]) -> Table:
    table = Table(title="Available applications")
    table.add_column("APP")
    table.add_column("REMOTE HOST")
    table.add_column("PORT", justify="right")
    for entry in entries:
        table.add_row(entry.name, entry.remote_host, str(entry.remote_port))
    return table


def cmd_create(manager: TunnelManager, args: argparse.Namespace) -> int:
    tunnel = manager.create_tunnel(args.app)
    console.print(
        f"Success! Access {tunnel.app_name} via localhost:{tunnel.local_port} "
        f"(remote: {tunnel.remote_host}:{tunnel.remote_port}, PID: {tunnel.pid})"
    )
    console.print(f"local_port={tunnel.local_port} pid={tunnel.pid}", highlight=False)
    return EXIT_OK


def cmd_list(manager: TunnelManager, args: argparse.Namespace) -> int:
    table = Table(title="Active SSH Tunnels")
    for column in ("APP", "LOCAL", "REMOTE HOST", "REMOTE PORT", "PID", "STATUS"):
        table.add_column(column)

    for state in manager.list_tunnels():
        tunnel = state.tunnel
        style = "green" if state.status == TunnelStatus.RUNNING else "red"
        table.add_row(
            tunnel.app_name,
            str(tunnel.local_port),
            tunnel.remote_host,
            str(tunnel.remote_port),
            str(tunnel.pid),
            f"[{style}]{state.status.value}[/{style}]",
        )

    console.print(table)
    return EXIT_OK


def cmd_delete(manager: TunnelManager, args: argparse.Namespace) -> int:
    tunnel = manager.delete_tunnel(args.pid)
    console.print(f"Terminated tunnel for {tunnel.app_name} (PID: {tunnel.pid})")
    return EXIT_OK


def cmd_delete_app(manager: TunnelManager, args: argparse.Namespace) -> int:
    removed = manager.delete_app_tunnels(args.app)
    console.print(f"Deleted {len(removed)} tunnel(s) for {args.app}")
    return EXIT_OK


def cmd_cleanup(manager: TunnelManager, args: argparse.Namespace) -> int:
    for tunnel in manager.cleanup():
        console.print(f"Cleaned up dead tunnel: {tunnel.app_name} (PID: {tunnel.pid})")
    return EXIT_OK


def cmd_apps(manager: TunnelManager, args: argparse.Namespace) -> int:
    console.print(_apps_table(manager.list_apps()))
    return EXIT_OK


COMMANDS = {
    "create": cmd_create,
    "list": cmd_list,
    "delete": cmd_delete,
    "delete-app": cmd_delete_app,
    "cleanup": cmd_cleanup,
    "apps": cmd_apps,
}


def run(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run one command and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level)
    try:
        config = load_config(args.config)
        wrote_config = ensure_layout(config, args.config)
    except TunnelManagerError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        return e.exit_code

    setup_logging(level=args.log_level, log_file=str(config.log_file))
    if wrote_config:
        logger.info("Wrote default configuration", path=str(args.config))
    manager = TunnelManager.from_config(config)

    if args.command is None:
        parser.print_usage(sys.stderr)
        err_console.print(_apps_table(manager.list_apps()))
        return EXIT_USAGE

    try:
        return COMMANDS[args.command](manager, args)
    except NotFound as e:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(str(e))}")
        return e.exit_code
    except TunnelManagerError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        return e.exit_code


def main() -> None:
    sys.exit(run())
