"""Proving Grounds CLI — main application entry point.

Usage:
    grounds list
    grounds start 3 --user alice
    grounds stop 3
    grounds status
    grounds accounts 3
    grounds vpn --user alice
    grounds contracts
    grounds board
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.table import Table

from grounds.adapters.scanner import DEFAULT_DEPTH, ContractScanner
from grounds.adapters.vpn import VpnConfigClient
from grounds.engine.catalog import CatalogLoader
from grounds.engine.config import GroundsConfig
from grounds.engine.control_plane import (
    ControlPlaneClient,
    HttpControlPlaneClient,
    SimulatedControlPlaneClient,
)
from grounds.engine.controller import LifecycleController
from grounds.engine.errors import (
    CatalogUnavailable,
    ChainRpcError,
    ControlPlaneError,
    GroundsError,
    PersistenceError,
)
from grounds.engine.models import EnvironmentDefinition, Outcome, SessionStatus
from grounds.engine.reconciler import LabBoard
from grounds.engine.yaml_config import load_yaml_config
from grounds.shared.formatters.lab_view import (
    build_table,
    contracts_table,
    outcome_line,
    summary_line,
)
from grounds.shared.services.session_store import FileSessionStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOOP = 3

_FAILURES = (Outcome.PROVISION_FAILED, Outcome.DEPROVISION_FAILED)

# Handlers installed by _configure_logging, replaced on the next call.
_installed_handlers: list[logging.Handler] = []


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="grounds",
        description="Proving Grounds — start and manage practice environments",
    )
    parser.add_argument(
        "--config", default=None,
        help="YAML config file (GROUNDS_* env vars still override it)",
    )
    parser.add_argument("--catalog", default=None, help="Environment catalog (JSON or YAML)")
    parser.add_argument("--store", default=None, help="Shared session store file")
    parser.add_argument(
        "--control-plane", default=None,
        help="Control plane base URL (default: simulated backend)",
    )
    parser.add_argument("--user", default=None, help="Subject identifier for new sessions")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="Show every environment and its state")
    sub.add_parser("status", help="Show active sessions only")
    start = sub.add_parser("start", help="Start an environment")
    start.add_argument("environment_id", type=int)
    stop = sub.add_parser("stop", help="Stop a running environment")
    stop.add_argument("environment_id", type=int)
    accounts = sub.add_parser("accounts", help="List funded accounts of a running box")
    accounts.add_argument("environment_id", type=int)
    vpn = sub.add_parser("vpn", help="Download a VPN profile for --user")
    vpn.add_argument("--output-dir", default=".", help="Where to save the .ovpn file")
    contracts = sub.add_parser(
        "contracts", help="List contracts deployed on the first running box",
    )
    contracts.add_argument(
        "--rpc-url", default=None,
        help="Scan this JSON-RPC endpoint instead of the first running box",
    )
    contracts.add_argument(
        "--depth", type=int, default=DEFAULT_DEPTH,
        help="How many blocks back from the latest to scan (default: %(default)s)",
    )
    sub.add_parser("board", help="Open the live terminal board")
    return parser


def _load_config(args: argparse.Namespace) -> GroundsConfig:
    """defaults < YAML < GROUNDS_* env < CLI flags."""
    base = load_yaml_config(args.config) if args.config else GroundsConfig()
    config = GroundsConfig.from_env(base)
    if args.catalog is not None:
        config.catalog_path = args.catalog
    if args.store is not None:
        config.store_path = args.store
    if args.control_plane is not None:
        config.control_plane_url = args.control_plane or None
    if args.user is not None:
        config.user = args.user
    return config


def _configure_logging(config: GroundsConfig, verbose: bool) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else getattr(
        logging, config.log_level.upper(), logging.INFO
    ))
    while _installed_handlers:
        root.removeHandler(_installed_handlers.pop())

    formatter = logging.Formatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s", datefmt="%H:%M:%S",
    )
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    # Keep stdout tables readable unless asked for detail.
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.addHandler(stream_handler)
    _installed_handlers.append(stream_handler)

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        _installed_handlers.append(file_handler)


def build_client(config: GroundsConfig) -> ControlPlaneClient:
    if config.control_plane_url:
        return HttpControlPlaneClient(
            config.control_plane_url, timeout_seconds=config.request_timeout_seconds
        )
    logger.info("No control plane configured, using the simulated backend")
    return SimulatedControlPlaneClient(delay_seconds=config.simulated_delay_seconds)


def _name_for(catalog: list[EnvironmentDefinition], environment_id: int) -> str | None:
    for definition in catalog:
        if definition.id == environment_id:
            return definition.name
    return None


# ── Commands ──


def _cmd_list(console: Console, board: LabBoard, active_only: bool) -> int:
    views = board.views
    if active_only:
        views = [v for v in views if v.status != SessionStatus.STOPPED]
        if not views:
            console.print("[dim]No active environments.[/dim]")
            return EXIT_OK
    console.print(build_table(views))
    console.print(summary_line(board.summary), style="dim")
    return EXIT_OK


async def _run_transition(
    console: Console,
    config: GroundsConfig,
    controller: LifecycleController,
    catalog: list[EnvironmentDefinition],
    command: str,
    environment_id: int,
) -> int:
    name = _name_for(catalog, environment_id)
    if name is None:
        console.print(f"[red]Unknown environment {environment_id}[/red]")
        return EXIT_FAILED
    try:
        if command == "start":
            console.print(f"Starting {name}...", style="blue")
            result = await controller.start(environment_id, owner=config.user)
        else:
            console.print(f"Stopping {name}...", style="yellow")
            result = await controller.stop(environment_id)
    finally:
        await controller.client.close()

    console.print(outcome_line(result, name))
    if result.ok:
        return EXIT_OK
    return EXIT_FAILED if result.outcome in _FAILURES else EXIT_NOOP


async def _cmd_accounts(
    console: Console, controller: LifecycleController, environment_id: int,
) -> int:
    session = controller.store.get(environment_id)
    if session is None or session.status != SessionStatus.RUNNING:
        console.print(f"[yellow]Environment {environment_id} is not running[/yellow]")
        return EXIT_NOOP
    assert session.container_identity is not None
    try:
        accounts = await controller.client.list_accounts(session.container_identity)
    finally:
        await controller.client.close()

    table = Table(
        title=f"Accounts — {session.container_identity}", title_justify="left",
    )
    table.add_column("#", justify="right")
    table.add_column("Account Address", no_wrap=True)
    table.add_column("Private Key", no_wrap=True)
    for index, account in enumerate(accounts):
        table.add_row(str(index), account.account, account.private_key)
    console.print(table)
    if not accounts:
        console.print("[dim]No accounts found[/dim]")
    return EXIT_OK


async def _cmd_vpn(console: Console, config: GroundsConfig, output_dir: str) -> int:
    if not config.user:
        console.print("[red]Pass --user (or set GROUNDS_USER) to generate a VPN profile[/red]")
        return EXIT_FAILED
    if not config.control_plane_url:
        console.print("[red]VPN profiles need a control plane URL[/red]")
        return EXIT_FAILED
    client = VpnConfigClient(config.control_plane_url, config.request_timeout_seconds)
    path = await client.download(config.user, output_dir)
    console.print(f"[green]Download completed:[/green] {path}")
    return EXIT_OK


async def _cmd_contracts(
    console: Console,
    config: GroundsConfig,
    rpc_url: str | None,
    depth: int,
    catalog: list[EnvironmentDefinition] | None = None,
    store: FileSessionStore | None = None,
) -> int:
    scanner = ContractScanner(rpc_url, timeout_seconds=config.request_timeout_seconds)
    board = None
    if rpc_url is None and catalog is not None and store is not None:
        board = LabBoard(catalog, store, on_change=scanner.track)
    try:
        if scanner.rpc_url is None:
            console.print("[yellow]No RPC connection. Start a box to view contracts.[/yellow]")
            return EXIT_NOOP
        console.print(f"Connected to: {scanner.rpc_url}", style="dim")
        deployments = await scanner.scan(depth)
    finally:
        await scanner.close()
        if board is not None:
            board.close()

    console.print(contracts_table(deployments, scanner.rpc_url))
    if not deployments:
        console.print(f"[dim]No contract deployments in the last {depth} blocks[/dim]")
    return EXIT_OK


def _cmd_board(
    config: GroundsConfig,
    controller: LifecycleController,
    catalog: list[EnvironmentDefinition],
) -> int:
    from grounds.tui.app import GroundsApp

    # GroundsApp closes the control plane client when it unmounts.
    app = GroundsApp(
        controller,
        catalog,
        owner=config.user,
        backend=config.control_plane_url or "simulated",
        poll_interval=config.poll_interval_seconds,
    )
    app.run()
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    console = Console()

    try:
        config = _load_config(args)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Cannot load config:[/red] {exc}")
        return EXIT_FAILED
    _configure_logging(config, args.verbose)

    # Each command builds only what it reads: vpn needs neither store nor
    # catalog, accounts needs no catalog.
    try:
        if args.command == "vpn":
            return asyncio.run(_cmd_vpn(console, config, args.output_dir))
        if args.command == "contracts" and args.rpc_url:
            return asyncio.run(_cmd_contracts(console, config, args.rpc_url, args.depth))

        store = FileSessionStore(config.store_path)
        if args.command == "accounts":
            controller = LifecycleController(store, build_client(config), config)
            return asyncio.run(_cmd_accounts(console, controller, args.environment_id))

        catalog = CatalogLoader(config.catalog_path).load()
        if args.command in ("list", "status"):
            board = LabBoard(catalog, store)
            try:
                return _cmd_list(console, board, active_only=args.command == "status")
            finally:
                board.close()
        if args.command == "contracts":
            return asyncio.run(_cmd_contracts(
                console, config, None, args.depth, catalog=catalog, store=store,
            ))

        controller = LifecycleController(store, build_client(config), config)
        if args.command in ("start", "stop"):
            return asyncio.run(_run_transition(
                console, config, controller, catalog, args.command, args.environment_id,
            ))
        if args.command == "board":
            return _cmd_board(config, controller, catalog)
    except CatalogUnavailable as exc:
        console.print(f"[red]Failed to load boxes:[/red] {exc.reason}")
        return EXIT_FAILED
    except PersistenceError as exc:
        console.print(f"[red]Session store error:[/red] {exc}")
        return EXIT_FAILED
    except ChainRpcError as exc:
        console.print(f"[red]Failed to fetch contracts:[/red] {exc}")
        return EXIT_FAILED
    except ControlPlaneError as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_FAILED
    except GroundsError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return EXIT_FAILED
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        return EXIT_FAILED

    parser.error(f"unknown command {args.command}")
    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
