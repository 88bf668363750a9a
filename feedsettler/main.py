#!/usr/bin/env python3
"""Feed Settler.

Settles oracle data feeds once their outcome is known: finds eligible feeds,
resolves their values off-chain, writes them on-chain through a separate
settler service and records the terminal status in the feed store.

Two services make up a deployment:
    settler   Holds the signing key and submits on-chain updates
    api       Orchestrator triggers (single feed, cron sweep, match watcher)

Run with --help for configuration options.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

import httpx
import uvicorn
from eth_account import Account
from web3 import Web3

from .src.ChainSettler import ChainSettler
from .src.ConsensusGateway import DEFAULT_GATEWAY_URL, ConsensusGateway
from .src.ContractUtility import NETWORKS, ContractUtility
from .src.FeedStore import FeedStore
from .src.FeedStoreMemory import FeedStoreMemory
from .src.FeedStorePostgrest import FeedStorePostgrest
from .src.KeyProvider import EnvKeyProvider, KeyProvider
from .src.KeyProviderAppd import AppdKeyProvider
from .src.MatchStatusPoller import MatchStatusPoller, PandaScoreClient
from .src.OrchestratorService import create_orchestrator_app
from .src.RetryPolicy import RetryPolicy
from .src.SettlementOrchestrator import SettlementOrchestrator
from .src.SettlerClient import SettlerClient
from .src.SettlerService import create_settler_app
from .src.ValueResolver import DEFAULT_SIMULATOR_URL, ValueResolver

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_list(value: str | None) -> list[str]:
    """Parse a comma-separated list, dropping empty items.

    :param value: Comma-separated string (e.g., "https://a,https://b").
    :returns: List of stripped items.
    """
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def configured(value: str | None) -> str:
    return "configured" if value else "MISSING"


# ---------------------------------------------------------------------------
# Argument groups shared by subcommands
# ---------------------------------------------------------------------------


def _common_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "--retry-attempts",
        dest="retry_attempts",
        type=int,
        help="Rounds over each endpoint list (default: 3)",
        default=int(os.environ.get("RETRY_ATTEMPTS") or "3"),
    )
    parser.add_argument(
        "--retry-base-delay",
        dest="retry_base_delay",
        type=float,
        help="Seconds to wait after the first failed round, doubling after (default: 2.0)",
        default=float(os.environ.get("RETRY_BASE_DELAY") or "2.0"),
    )
    return parser


def _store_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--store",
        choices=["postgrest", "memory"],
        help="Feed store backend (default: postgrest)",
        default=os.environ.get("STORE") or "postgrest",
    )
    parser.add_argument(
        "--supabase-url",
        dest="supabase_url",
        type=str,
        help="Supabase project URL",
        default=os.environ.get("SUPABASE_URL"),
    )
    parser.add_argument(
        "--feeds-file",
        dest="feeds_file",
        type=str,
        help="JSON file with feed records to load into the memory store",
        default=os.environ.get("FEEDS_FILE"),
    )
    return parser


def _orchestrator_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--simulator-urls",
        dest="simulator_urls",
        type=str,
        help=f"Comma-separated simulator base URLs (default: {DEFAULT_SIMULATOR_URL})",
        default=os.environ.get("SIMULATOR_URLS") or DEFAULT_SIMULATOR_URL,
    )
    parser.add_argument(
        "--settler-urls",
        dest="settler_urls",
        type=str,
        help="Comma-separated settler service URLs (empty: settle off-chain only)",
        default=os.environ.get("SETTLER_URLS"),
    )
    parser.add_argument(
        "--max-workers",
        dest="max_workers",
        type=int,
        help="Feeds settled concurrently in a sweep (default: 4)",
        default=int(os.environ.get("MAX_WORKERS") or "4"),
    )
    parser.add_argument(
        "--claim-ttl",
        dest="claim_ttl",
        type=float,
        help="Settlement lease length in seconds (default: 300, 0 to disable)",
        default=float(os.environ.get("CLAIM_TTL") or "300"),
    )
    parser.add_argument(
        "--sweep-deadline",
        dest="sweep_deadline",
        type=float,
        help="Seconds a sweep may run before unfinished feeds are cancelled (default: none)",
        default=float(os.environ.get("SWEEP_DEADLINE") or "0"),
    )
    return parser


def _settler_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--network",
        type=str,
        help=f"Network to connect to ({', '.join(NETWORKS)})",
        default=os.environ.get("NETWORK") or "arbitrum-sepolia",
    )
    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="RPC URL (overrides the network default)",
        default=os.environ.get("RPC_URL"),
    )
    parser.add_argument(
        "--chain-id",
        dest="chain_id",
        type=int,
        help="Chain id used for oracle updates (default: 421614)",
        default=int(os.environ.get("CHAIN_ID") or "421614"),
    )
    parser.add_argument(
        "--gateway-urls",
        dest="gateway_urls",
        type=str,
        help=f"Comma-separated consensus gateway URLs (default: {DEFAULT_GATEWAY_URL})",
        default=os.environ.get("GATEWAY_URLS") or DEFAULT_GATEWAY_URL,
    )
    parser.add_argument(
        "--key-source",
        dest="key_source",
        choices=["env", "appd"],
        help="Where the signing key comes from (default: env)",
        default=os.environ.get("KEY_SOURCE") or "env",
    )
    parser.add_argument(
        "--appd-url",
        dest="appd_url",
        type=str,
        help="appd URL or socket path (default: /run/rofl-appd.sock)",
        default=os.environ.get("APPD_URL") or "",
    )
    parser.add_argument(
        "--confirm-timeout",
        dest="confirm_timeout",
        type=float,
        help="Seconds to wait for transaction confirmation (default: 60)",
        default=float(os.environ.get("CONFIRM_TIMEOUT") or "60"),
    )
    return parser


def _server_parser(default_port: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--host", type=str, default=os.environ.get("HOST") or "0.0.0.0")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT") or default_port))
    return parser


# ---------------------------------------------------------------------------
# Component construction
# ---------------------------------------------------------------------------


def build_retry_policy(args: argparse.Namespace) -> RetryPolicy:
    return RetryPolicy(max_attempts=args.retry_attempts, base_delay=args.retry_base_delay)


def build_store(args: argparse.Namespace, client: httpx.AsyncClient) -> FeedStore:
    """Create the configured feed store.

    :raises ValueError: If the store is misconfigured.
    """
    if args.store == "memory":
        records = []
        if args.feeds_file:
            with open(args.feeds_file, "r") as file:
                records = json.load(file)
        return FeedStoreMemory(records)
    return FeedStorePostgrest(
        client, args.supabase_url or "", os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or ""
    )


def build_orchestrator(
    args: argparse.Namespace, client: httpx.AsyncClient
) -> SettlementOrchestrator:
    policy = build_retry_policy(args)
    settler_urls = parse_list(args.settler_urls)
    settler = None
    if settler_urls:
        settler = SettlerClient(
            client,
            settler_urls,
            api_key=os.environ.get("SETTLER_API_KEY"),
            retry_policy=policy,
        )
    return SettlementOrchestrator(
        store=build_store(args, client),
        resolver=ValueResolver(client),
        settler=settler,
        retry_policy=policy.with_endpoints(parse_list(args.simulator_urls)),
        max_workers=args.max_workers,
        claim_ttl=args.claim_ttl,
        sweep_deadline=args.sweep_deadline or None,
    )


def build_poller(
    store: FeedStore, client: httpx.AsyncClient
) -> MatchStatusPoller | None:
    api_key = os.environ.get("PANDASCORE_API_KEY")
    if not api_key:
        return None
    return MatchStatusPoller(store, PandaScoreClient(client, api_key))


def build_key_provider(args: argparse.Namespace) -> KeyProvider:
    if args.key_source == "appd":
        return AppdKeyProvider(url=args.appd_url)
    return EnvKeyProvider()


def log_orchestrator_config(args: argparse.Namespace, title: str) -> None:
    logger.info("=" * 60)
    logger.info(title)
    logger.info("=" * 60)
    logger.info(f"Store:             {args.store}")
    if args.store == "postgrest":
        logger.info(f"Supabase URL:      {args.supabase_url or 'MISSING'}")
        logger.info(f"Service Key:       {configured(os.environ.get('SUPABASE_SERVICE_ROLE_KEY'))}")
    logger.info(f"Simulators:        {', '.join(parse_list(args.simulator_urls))}")
    logger.info(f"Settlers:          {args.settler_urls or 'none (off-chain only)'}")
    logger.info(f"Settler API Key:   {configured(os.environ.get('SETTLER_API_KEY'))}")
    logger.info(f"PandaScore Key:    {configured(os.environ.get('PANDASCORE_API_KEY'))}")
    logger.info(f"Max Workers:       {args.max_workers}")
    logger.info(f"Claim TTL:         {args.claim_ttl}s" if args.claim_ttl else "Claim TTL:         disabled")
    logger.info(f"Sweep Deadline:    {args.sweep_deadline}s" if args.sweep_deadline else "Sweep Deadline:    none")
    logger.info(f"Retry:             {args.retry_attempts} rounds, {args.retry_base_delay}s base delay")
    logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_settler(args: argparse.Namespace) -> None:
    """Serve the chain settler."""
    logger.info("=" * 60)
    logger.info("Feed Settler - Chain Settler Service")
    logger.info("=" * 60)
    logger.info(f"Network:           {args.network}")
    logger.info(f"RPC URL:           {args.rpc_url or 'network default'}")
    logger.info(f"Chain ID:          {args.chain_id}")
    logger.info(f"Gateways:          {', '.join(parse_list(args.gateway_urls))}")
    logger.info(f"Key Source:        {args.key_source}")
    if args.key_source == "env":
        logger.info(f"Settler Key:       {configured(os.environ.get('SETTLER_PRIVATE_KEY'))}")
    logger.info(f"API Key:           {'configured' if os.environ.get('SETTLER_API_KEY') else 'not required'}")
    logger.info("=" * 60)

    client = httpx.AsyncClient()
    gateway = ConsensusGateway(
        client,
        chain_id=args.chain_id,
        retry_policy=build_retry_policy(args).with_endpoints(parse_list(args.gateway_urls)),
    )
    settler = ChainSettler(
        key_provider=build_key_provider(args),
        gateway=gateway,
        w3=ContractUtility(args.network, args.rpc_url).w3,
        confirm_timeout=args.confirm_timeout,
    )
    app = create_settler_app(
        settler, api_key=os.environ.get("SETTLER_API_KEY"), closers=[client.aclose]
    )
    uvicorn.run(app, host=args.host, port=args.port)


def cmd_api(args: argparse.Namespace) -> None:
    """Serve the orchestrator triggers."""
    log_orchestrator_config(args, "Feed Settler - Orchestrator Service")
    client = httpx.AsyncClient()
    orchestrator = build_orchestrator(args, client)
    app = create_orchestrator_app(
        orchestrator,
        poller=build_poller(orchestrator.store, client),
        closers=[orchestrator.store.close, client.aclose],
    )
    uvicorn.run(app, host=args.host, port=args.port)


async def run_sweep(args: argparse.Namespace) -> None:
    async with httpx.AsyncClient() as client:
        orchestrator = build_orchestrator(args, client)
        try:
            if args.once:
                summary = await orchestrator.run_sweep()
                print(json.dumps(summary.to_dict(), indent=2))
            else:
                await orchestrator.run(args.interval)
        finally:
            await orchestrator.store.close()


async def run_settle(args: argparse.Namespace) -> bool:
    async with httpx.AsyncClient() as client:
        orchestrator = build_orchestrator(args, client)
        try:
            result = await orchestrator.settle_feed(args.feed_id)
        finally:
            await orchestrator.store.close()
    print(json.dumps(result.to_dict(), indent=2))
    return result.success


async def run_watch_matches(args: argparse.Namespace) -> None:
    async with httpx.AsyncClient() as client:
        store = build_store(args, client)
        poller = build_poller(store, client)
        if poller is None:
            raise ValueError("PANDASCORE_API_KEY not configured")
        try:
            counts = await poller.poll()
        finally:
            await store.close()
    print(json.dumps({"success": True, **counts}, indent=2))


def cmd_generate_key(args: argparse.Namespace) -> None:
    """Print a fresh settler account."""
    account = Account.create()
    print(f"Address:     {account.address}")
    print(f"Private key: {Web3.to_hex(account.key)}")
    print()
    print("Set SETTLER_PRIVATE_KEY on the settler service and fund the address.")


def main() -> None:
    """Main entry point for the Feed Settler CLI."""
    common = _common_parser()
    store = _store_parser()
    orchestrator = _orchestrator_parser()

    parser = argparse.ArgumentParser(
        description="Feed Settler: settlement reconciliation for oracle data feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve the chain settler (holds the signing key)
  SETTLER_PRIVATE_KEY=0x... python -m feedsettler.main settler --port 3000

  # Serve the orchestrator, settling on-chain through the settler
  python -m feedsettler.main api --settler-urls http://settler:3000

  # One sweep, printing the summary
  python -m feedsettler.main sweep --once

  # Settle a single feed regardless of its resolution time
  python -m feedsettler.main settle 3f2c...

Environment variables (CLI args take precedence):
  SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, STORE, SIMULATOR_URLS,
  SETTLER_URLS, SETTLER_API_KEY, SETTLER_PRIVATE_KEY, KEY_SOURCE, APPD_URL,
  RPC_URL, NETWORK, CHAIN_ID, GATEWAY_URLS, MAX_WORKERS, CLAIM_TTL,
  SWEEP_DEADLINE, SWEEP_INTERVAL, RETRY_ATTEMPTS, RETRY_BASE_DELAY,
  PANDASCORE_API_KEY, HOST, PORT
""",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "settler",
        parents=[common, _settler_parser(), _server_parser("3000")],
        help="Serve the chain settler",
    )
    subparsers.add_parser(
        "api",
        parents=[common, store, orchestrator, _server_parser("8000")],
        help="Serve the orchestrator triggers",
    )

    sweep = subparsers.add_parser(
        "sweep", parents=[common, store, orchestrator], help="Settle every eligible feed"
    )
    sweep.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    sweep.add_argument(
        "--interval",
        type=float,
        help="Seconds between sweeps (default: 60)",
        default=float(os.environ.get("SWEEP_INTERVAL") or "60"),
    )

    settle = subparsers.add_parser(
        "settle", parents=[common, store, orchestrator], help="Settle one feed now"
    )
    settle.add_argument("feed_id", help="Feed identifier")

    subparsers.add_parser(
        "watch-matches", parents=[common, store], help="Refresh esports match status once"
    )
    subparsers.add_parser("generate-key", parents=[common], help="Create a settler account")

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if args.retry_attempts < 1:
        parser.error("--retry-attempts must be at least 1")

    if getattr(args, "max_workers", 1) < 1:
        parser.error("--max-workers must be at least 1")

    if getattr(args, "claim_ttl", 0) < 0:
        parser.error("--claim-ttl must not be negative")

    if getattr(args, "interval", 1) <= 0:
        parser.error("--interval must be positive")

    if getattr(args, "store", None) == "postgrest" and not args.supabase_url:
        parser.error("SUPABASE_URL (or --supabase-url) is required for the postgrest store")

    if args.command in ("sweep", "settle"):
        log_orchestrator_config(args, "Feed Settler - Settlement Orchestrator")

    try:
        if args.command == "settler":
            cmd_settler(args)
        elif args.command == "api":
            cmd_api(args)
        elif args.command == "sweep":
            asyncio.run(run_sweep(args))
        elif args.command == "settle":
            if not asyncio.run(run_settle(args)):
                sys.exit(1)
        elif args.command == "watch-matches":
            asyncio.run(run_watch_matches(args))
        elif args.command == "generate-key":
            cmd_generate_key(args)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
