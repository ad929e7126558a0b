#!/usr/bin/env python3
"""
Command line entry point for node-updater.

    node-updater run [--namespace NS ...]
    node-updater plan NAMESPACE NAME
    node-updater reconcile NAMESPACE NAME
"""

import argparse
import logging
from typing import Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler

from .client import NodeUpdaterClient
from .errors import ConfigurationError, NodeUpdaterError
from .reconciler import Outcome, plan_reconcile
from .utils.config import load_config
from .utils.display import display_campaign_header, display_plan, display_world

logger = logging.getLogger(__name__)
console = Console()

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_FAILURE = 2


def configure_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Install the rich log handler; ``verbose`` forces DEBUG over the configured level."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="node-updater",
        description="Zero-outage node image upgrades for AKS agent pools.",
    )
    parser.add_argument(
        "--config",
        help="Path to a YAML file with a 'node_updater' section. Missing keys come from the environment.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the operator.")
    run_parser.add_argument(
        "--namespace",
        action="append",
        default=[],
        help="Only watch SafeEvict resources in this namespace. Can be provided multiple times.",
    )
    run_parser.add_argument(
        "--liveness",
        help="Serve a liveness endpoint, e.g. http://0.0.0.0:8080/healthz",
    )

    for command, help_text in (
        ("plan", "Show what the next reconcile pass would do, without changing anything."),
        ("reconcile", "Run a single reconcile pass."),
    ):
        command_parser = subparsers.add_parser(command, help=help_text)
        command_parser.add_argument("namespace", help="Namespace of the SafeEvict resource.")
        command_parser.add_argument("name", help="Name of the SafeEvict resource.")

    return parser.parse_args(argv)


def _plan(client: NodeUpdaterClient, namespace: str, name: str) -> int:
    engine = client.engine
    campaign = engine.load_campaign(namespace, name)
    world = engine.observe(campaign)
    plan = plan_reconcile(world)

    display_campaign_header(namespace, name, console)
    display_world(world, console)
    display_plan(plan, console)
    return EXIT_OK


def _reconcile(client: NodeUpdaterClient, namespace: str, name: str) -> int:
    engine = client.engine
    campaign = engine.load_campaign(namespace, name)
    outcome = engine.run_pass(campaign)
    delay = engine.delay_for(outcome)
    if outcome is Outcome.ERROR:
        console.print(f"[red]Reconcile failed, retry in {delay}s[/red]")
        return EXIT_FAILURE
    console.print(f"[green]Reconcile completed ({outcome.value}), next pass in {delay}s[/green]")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_arguments(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_CONFIG
    configure_logging(verbose=args.verbose, level=config.log_level)

    if args.command == "run":
        from . import operator

        operator.run(args.config, args.namespace, args.liveness)
        return EXIT_OK

    client = NodeUpdaterClient(config)
    try:
        if args.command == "plan":
            return _plan(client, args.namespace, args.name)
        return _reconcile(client, args.namespace, args.name)
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_CONFIG
    except NodeUpdaterError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
