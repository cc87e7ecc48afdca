#!/usr/bin/env python3
"""
cli.py - lnsim command line

Manages persisted networks without a UI.

Usage:
    lnsim list
    lnsim create demo --lightning 3 --tap 1
    lnsim compose 1
    lnsim remove-node 1 carol
    lnsim auto-mine 1 30
    lnsim --config lnsim.yaml --verbose list
"""

import argparse
import asyncio
import sys
from pathlib import Path

from lnsim.config.settings import LnsimConfig, load_config
from lnsim.errors import LnsimError
from lnsim.harness.launcher import Launcher
from lnsim.log import configure_logging
from lnsim.network.models import AutoMineMode


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='lnsim',
        description="Manage simulated Bitcoin/Lightning/Taproot-Assets networks.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to YAML config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List networks")

    create = sub.add_parser("create", help="Create a network")
    create.add_argument("name")
    create.add_argument("--lightning", type=int, default=2)
    create.add_argument("--bitcoin", type=int, default=1)
    create.add_argument("--tap", type=int, default=0)
    create.add_argument("--implementation", default="LND", help="Lightning implementation")

    compose = sub.add_parser("compose", help="Write a network's docker-compose.yml")
    compose.add_argument("network_id", type=int)

    remove = sub.add_parser("remove-node", help="Remove a node from a network")
    remove.add_argument("network_id", type=int)
    remove.add_argument("node")

    auto_mine = sub.add_parser("auto-mine", help="Set a network's auto-mine interval")
    auto_mine.add_argument("network_id", type=int)
    auto_mine.add_argument(
        "seconds", type=int,
        help=f"One of {', '.join(str(int(m)) for m in AutoMineMode)} (0 = off)"
    )

    return parser.parse_args(argv)


def _print_network(network):
    print(f"{network.id:>3}  {network.name}  [{network.status.value}]"
          f"  auto-mine: {int(network.auto_mine_mode)}s")
    for node in network.all_nodes():
        extra = ""
        if getattr(node, 'backend_name', ''):
            extra = f" -> {node.backend_name}"
        print(f"       {node.kind.value:<9} {node.name:<12} {node.implementation} v{node.version}{extra}")


async def _run(args, config: LnsimConfig) -> int:
    async with Launcher(config) as launcher:
        store = launcher.store

        if args.command == "list":
            if not store.networks:
                print("No networks")
            for network in sorted(store.networks.values(), key=lambda n: n.id):
                _print_network(network)
            return 0

        if args.command == "create":
            network = await launcher.create_network(
                args.name,
                lightning=args.lightning,
                bitcoin=args.bitcoin,
                tap=args.tap,
                lightning_implementation=args.implementation,
            )
            _print_network(network)
            return 0

        network = store.get_network(args.network_id)

        if args.command == "compose":
            await launcher.runtime.save_compose_file(network)
            print(f"Wrote {Path(network.path) / 'docker-compose.yml'}")
            return 0

        if args.command == "remove-node":
            node = network.find_node(args.node)
            if node is None:
                print(f"ERROR: Node {args.node} not found in {network.name}", file=sys.stderr)
                return 1
            await launcher.orchestrator.remove_node(network, node)
            print(f"Removed {node.name}")
            return 0

        if args.command == "auto-mine":
            await launcher.orchestrator.set_auto_mine_mode(network, AutoMineMode(args.seconds))
            print(f"Auto-mine for {network.name}: {args.seconds}s")
            return 0

    return 1


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        0 on success, 1 on failure
    """
    args = parse_args(argv)

    try:
        config = load_config(args.config) if args.config else LnsimConfig()
        configure_logging("DEBUG" if args.verbose else config.logging.level)
        return asyncio.run(_run(args, config))

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 1

    except (KeyError, ValueError, LnsimError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
