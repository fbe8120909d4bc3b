"""
Swap Copy Trading Bot
=====================

Watch leader wallets and replicate their router swaps for every follower,
scaled to a fixed fraction (default 10%) of the original trade.

Usage:
    swapmirror --help
    swapmirror run                         # Start monitoring (dry run)
    swapmirror run --live                  # Start with live execution
    swapmirror provision FOLLOWER          # Create a follower wallet
    swapmirror follow FOLLOWER LEADER      # Copy a leader
    swapmirror unfollow FOLLOWER LEADER    # Stop copying a leader
    swapmirror list FOLLOWER               # Show copied leaders
    swapmirror status                      # Show configuration and network

Environment Variables (via .env file):
    SWAPMIRROR_MASTER_SECRET - Unlocks follower keys (required)
    RPC_URL / RPC_URLS       - Node endpoints
    TELEGRAM_BOT_TOKEN       - Follower notifications (optional)
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from rich.table import Table

from .bot import CopyTradingBot
from .config import ReplicatorConfig
from .errors import ReplicatorError
from .logger import console, setup_logging

logger = logging.getLogger(__name__)


def _make_bot(args, live_mode: bool = False) -> CopyTradingBot:
    config = ReplicatorConfig.from_env()
    if getattr(args, "workers", None) is not None:
        config.workers = args.workers
    if getattr(args, "copy_bps", None) is not None:
        config.copy_bps = args.copy_bps
    return CopyTradingBot(config, live_mode=live_mode)


def cmd_run(args) -> None:
    """Start monitoring command"""
    bot = _make_bot(args, live_mode=args.live)
    try:
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


def cmd_provision(args) -> None:
    bot = _make_bot(args)
    record = asyncio.run(bot.provision(args.follower))
    console.print(f"Wallet for [bold]{record.follower_id}[/bold]: {record.wallet_address}")


def cmd_follow(args) -> None:
    bot = _make_bot(args)
    added = asyncio.run(bot.follow(args.follower, args.leader))
    console.print("Now copying" if added else "Already copying", args.leader)


def cmd_unfollow(args) -> None:
    bot = _make_bot(args)
    removed = asyncio.run(bot.unfollow(args.follower, args.leader))
    console.print("Stopped copying" if removed else "Was not copying", args.leader)


def cmd_list(args) -> None:
    bot = _make_bot(args)
    leaders = asyncio.run(bot.copied_addresses(args.follower))
    if not leaders:
        console.print("You are not currently copying any addresses.")
        return
    console.print("You are currently copying trades from:")
    for leader in sorted(leaders):
        console.print(f"  {leader}")


def cmd_status(args) -> None:
    """Show status command"""
    config = ReplicatorConfig.from_env()

    table = Table(title="Swap Copy Trading Status")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("RPC URLs", ", ".join(config.rpc_urls))
    table.add_row("Router", config.router_address)
    table.add_row("Copy fraction", f"{config.copy_bps / 100:.2f}%")
    table.add_row("Output protection", config.output_protection)
    table.add_row("Workers", str(config.workers))
    table.add_row("Database", config.db_path)
    table.add_row("Master secret", "set" if config.master_secret else "NOT SET")
    table.add_row("Telegram", "enabled" if config.telegram_bot_token else "disabled")
    console.print(table)

    problems = config.validate()
    for problem in problems:
        console.print(f"[bold red]✗[/bold red] {problem}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swapmirror",
        description="Swap Copy Trading Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--log-level", help="Console log level (default: LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Start monitoring and copy trading")
    run_parser.add_argument(
        "--live", "-l",
        action="store_true",
        help="Enable live trading (default is dry run)",
    )
    run_parser.add_argument("--workers", "-w", type=int, help="Concurrent replication workers")
    run_parser.add_argument("--copy-bps", "-c", type=int, help="Copy fraction in basis points")
    run_parser.set_defaults(func=cmd_run)

    provision_parser = subparsers.add_parser("provision", help="Create a follower wallet")
    provision_parser.add_argument("follower")
    provision_parser.set_defaults(func=cmd_provision)

    follow_parser = subparsers.add_parser("follow", help="Copy trades from a leader")
    follow_parser.add_argument("follower")
    follow_parser.add_argument("leader")
    follow_parser.set_defaults(func=cmd_follow)

    unfollow_parser = subparsers.add_parser("unfollow", help="Stop copying a leader")
    unfollow_parser.add_argument("follower")
    unfollow_parser.add_argument("leader")
    unfollow_parser.set_defaults(func=cmd_unfollow)

    list_parser = subparsers.add_parser("list", help="List copied leaders")
    list_parser.add_argument("follower")
    list_parser.set_defaults(func=cmd_list)

    status_parser = subparsers.add_parser("status", help="Show configuration")
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv=None) -> int:
    """Main entry point"""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.log_level)
    try:
        args.func(args)
    except (ReplicatorError, ValueError, ConnectionError) as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
