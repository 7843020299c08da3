"""Entry point for rssnotify: python -m rssnotify"""

import argparse
import asyncio
import logging
import uuid

from langchain_core.messages import HumanMessage

from rssnotify.agent import create_agent
from rssnotify.config import Settings
from rssnotify.database import Database
from rssnotify.registry import seed_default_feeds
from rssnotify.scheduler import Scheduler, build_schedule, run_cycle
from rssnotify.senders import ConsoleSender, TelegramSender
from rssnotify.tools import set_context

logger = logging.getLogger("rssnotify")

LOG_FORMAT = "%(asctime)s [%(name)s] %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rssnotify",
        description="Send new journal articles to subscribers at fixed times.",
    )
    parser.add_argument("--debug", action="store_true",
                        help="print messages to the console instead of sending them")
    parser.add_argument("--once", action="store_true",
                        help="run a single cycle and exit")
    parser.add_argument("--interactive", type=int, metavar="CHAT_ID",
                        help="open a command chat acting as this subscriber")
    parser.add_argument("--db-path", help="SQLite database path")
    parser.add_argument("--update-times", help='hours to run at, e.g. "9-17" or "8,12,17"')
    parser.add_argument("--cron", help="cron expression, replaces --update-times")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """Override environment settings with command-line flags."""
    if args.db_path:
        settings.db_path = args.db_path
    if args.update_times:
        settings.update_times = args.update_times
    if args.cron:
        settings.cron = args.cron
    if args.log_level:
        settings.log_level = args.log_level.upper()
    return settings


def setup_logging(settings: Settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.log_path:
        handlers.append(logging.FileHandler(settings.log_path))
    logging.basicConfig(
        level=settings.log_level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        handlers=handlers,
    )
    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("langchain").setLevel(logging.WARNING)


def make_sender(settings: Settings, debug: bool):
    if debug:
        return ConsoleSender()
    if not settings.bot_token:
        raise SystemExit("TELEGRAM_BOT_TOKEN is not set; use --debug to print to the console")
    return TelegramSender(settings.bot_token)


def new_thread_id(chat_id: int) -> str:
    return f"chat-{chat_id}-{uuid.uuid4().hex[:8]}"


def ask(agent, chat_id: int, text: str, config: dict) -> str:
    """Send one message through the agent and return its reply.

    A checkpoint holding a tool call without its result cannot be resumed,
    so the chat moves on to a new thread.
    """
    try:
        response = agent.invoke({"messages": [HumanMessage(content=text)]}, config)
    except Exception as e:
        thread_id = config["configurable"]["thread_id"]
        if "tool_use" in str(e) and "tool_result" in str(e):
            config["configurable"]["thread_id"] = new_thread_id(chat_id)
            logger.warning("Dropped unreadable chat history %s", thread_id)
            return "The previous conversation could not be restored. Please repeat your request."
        logger.exception("Command failed in thread %s", thread_id)
        return f"Something went wrong: {e}"
    return response["messages"][-1].content


async def chat_loop(agent, chat_id: int) -> None:
    """Read commands from stdin until EOF and print the agent's replies."""
    config = {"configurable": {"thread_id": new_thread_id(chat_id)}}
    print(f"Editing the collections of subscriber {chat_id}. Ctrl+D ends the chat.\n")

    while True:
        try:
            text = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        if text.strip():
            reply = await asyncio.to_thread(ask, agent, chat_id, text.strip(), config)
            print(f"\n{reply}\n")


async def run(settings: Settings, args: argparse.Namespace) -> None:
    """Initialize the store and sender, then run once or on schedule."""
    sender = make_sender(settings, args.debug)
    logger.info("Using database %s", settings.db_path)
    db = Database(settings.db_path)
    db.connect()
    seed_default_feeds(db)

    try:
        if args.once:
            await run_cycle(db, sender, settings.freshness)
            return

        schedule = build_schedule(settings.update_times, settings.cron)
        scheduler = Scheduler(db, sender, schedule, freshness=settings.freshness)
        scheduler_task = asyncio.create_task(scheduler.run_forever())

        if args.interactive is None:
            await scheduler_task
            return

        set_context(db, args.interactive)
        agent = create_agent(settings.checkpoint_path, model_name=settings.agent_model)
        try:
            await chat_loop(agent, args.interactive)
        finally:
            scheduler_task.cancel()
            try:
                await scheduler_task
            except asyncio.CancelledError:
                pass
    finally:
        await sender.aclose()
        db.close()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = apply_args(Settings.from_env(), args)
    setup_logging(settings)
    try:
        asyncio.run(run(settings, args))
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    main()
