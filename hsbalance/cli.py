"""
hsbalance command line interface

Usage: hsbalance [-flags] backonion1 [backonion2 [...]]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import structlog

from hsbalance.config import (
    REPLICA_COUNT,
    BalancerConfig,
    Config,
    ControlConfig,
    parse_replica_list,
    parse_replica_mask,
)
from hsbalance.control import ControlConnection
from hsbalance.crypto import load_front_key
from hsbalance.errors import BalancerError, ConfigError
from hsbalance.orchestrator import Balancer
from hsbalance.store import DescriptorStore

logger = structlog.get_logger(__name__)


def setup_logging(debug: bool = False) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=logging.DEBUG if debug else logging.INFO,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hsbalance",
        description="Publish load-balanced descriptors for a front onion service",
        usage="%(prog)s [-flags] backonion1 [backonion2 [...]]",
    )
    parser.add_argument("backends", nargs="+", metavar="backonion", help="Backend onion identities")
    parser.add_argument("--debug", action="store_true", help="Show what's happening")
    parser.add_argument(
        "--distinct-descs", action="store_true", help="Force distinct descriptors mode"
    )
    parser.add_argument(
        "--control-addr", default=None, help="Tor control address (default: default://)"
    )
    parser.add_argument("--control-passwd", default=None, help="Tor control auth password")
    replicas = parser.add_mutually_exclusive_group()
    replicas.add_argument(
        "--replica-mask", default=None, help="Per-replica publish bits, e.g. 11"
    )
    replicas.add_argument("--replicas", default=None, help="Replica indices to publish, e.g. 0,1")
    parser.add_argument("--keyfile", required=True, help="Path to the fronting keyfile")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for backend descriptors (0 waits forever)",
    )
    parser.add_argument("--output-dir", default=None, help="Also write descriptors to this directory")
    parser.add_argument(
        "--max-intropoints", type=int, default=None, help="Introduction points per descriptor"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """
    Turn parsed arguments into a validated :class:`Config`.

    Command-line values win over environment overrides.

    Raises:
        ConfigError: If the resulting configuration is invalid.
    """
    config = Config(control=ControlConfig(), balancer=BalancerConfig())
    config.apply_environment()

    if args.control_addr is not None:
        config.control.address = args.control_addr
    if args.control_passwd is not None:
        config.control.password = args.control_passwd
    if args.timeout is not None:
        config.balancer.collect_timeout = args.timeout or None
    if args.max_intropoints is not None:
        config.balancer.max_intro_points = args.max_intropoints

    config.balancer.distinct_descriptors = args.distinct_descs
    config.balancer.output_dir = args.output_dir
    if args.replica_mask is not None:
        config.balancer.replicas = parse_replica_mask(args.replica_mask, REPLICA_COUNT)
    elif args.replicas is not None:
        config.balancer.replicas = parse_replica_list(args.replicas, REPLICA_COUNT)

    errors = config.validate()
    if errors:
        raise ConfigError("; ".join(errors))
    return config


async def run(args: argparse.Namespace) -> int:
    config = config_from_args(args)
    front_key = load_front_key(args.keyfile)

    store = None
    if config.balancer.output_dir:
        store = DescriptorStore(config.balancer.output_dir)

    conn = await ControlConnection.open(config.control.address, timeout=config.control.connect_timeout)
    async with conn:
        await conn.authenticate(config.control.password)
        balancer = Balancer(
            conn,
            front_key,
            front_key,
            front_key.identity,
            config=config.balancer,
            store=store,
        )
        result = await balancer.run(args.backends)

    logger.info(
        "Published descriptors",
        onion=f"{result.front_identity}.onion",
        replicas=[d.replica for d in result.descriptors],
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)
    try:
        return asyncio.run(run(args))
    except (BalancerError, ValueError) as e:
        logger.error("Balancing failed", error=str(e), kind=type(e).__name__)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
