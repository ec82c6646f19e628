import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import discord

from .bot import CaptureBot
from .config import CaptureBotConfig, ConfigError
from . import reports

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    # discord.py is chatty at INFO about gateway internals
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)


def run_bot(config: CaptureBotConfig) -> int:
    bot = CaptureBot(config)
    try:
        asyncio.run(bot.start())
    except discord.LoginFailure as e:
        logger.error(f"Failed to start bot: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down")
    return 0


def print_code_blocks(rows) -> None:
    print(f"Messages with code blocks: {len(rows)}")
    for row in rows:
        thread = f" / {row['thread_title']}" if row.get("thread_title") else ""
        print(f"\n[{row['created_at']}] #{row['channel_name']}{thread} ({row['message_id']})")
        print(row["content"])


def print_most_reacted(rows) -> None:
    print(f"Reacted messages: {len(rows)}")
    for row in rows:
        preview = (row["content"] or "").replace("\n", " ")[:80]
        print(f"  #{row['channel_name']} {row['message_id']} "
              f"total={row['total_reactions']} [{row['reaction_list']}] {preview}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="capture-bot", description="Discord message capture bot")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Start the bot (default)")
    subparsers.add_parser("init-db", help="Drop and recreate the capture tables")
    subparsers.add_parser("code-blocks", help="List captured messages containing code blocks")
    most_reacted = subparsers.add_parser("most-reacted", help="List recently reacted messages by channel")
    most_reacted.add_argument("--hours", type=int, default=24, help="Look-back window in hours")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "run"

    try:
        config = CaptureBotConfig.from_env()
    except ConfigError as e:
        logging.basicConfig(format=LOG_FORMAT)
        logger.error(str(e))
        return 2

    configure_logging(config.log_level)

    if command == "run":
        return run_bot(config)

    engine = reports.create_report_engine(config.database_url, config.database_service_key)
    try:
        if command == "init-db":
            count = reports.apply_schema(engine)
            print(f"✓ Applied {count} statements from {reports.DDL_PATH}")
        elif command == "code-blocks":
            print_code_blocks(reports.find_code_block_messages(engine))
        elif command == "most-reacted":
            print_most_reacted(reports.most_reacted_messages(engine, hours=args.hours))
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
