"""
Overlay Plans — Entry Point.

Single entry point: `python main.py` starts the Telegram bot and the
real-time WebSocket channel on one event loop, sharing one time slot store
and one change hub.
"""

import asyncio
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from src.bot.telegram_bot import build_app
from src.config import settings
from src.core.chat_service import ChatService
from src.core.directory import Directory
from src.core.notifier import ChangeHub
from src.core.session import SqliteSessionStore
from src.core.timeslot_service import TimeslotService
from src.data.db import ProjectDB, SessionDB, TimeSlotDB, UserDB
from src.realtime.server import create_app, serve_app

logger = logging.getLogger(__name__)


async def run() -> None:
    user_db = UserDB(settings.DATABASE_PATH)
    project_db = ProjectDB(settings.DATABASE_PATH)
    slot_db = TimeSlotDB(settings.DATABASE_PATH)
    session_db = SessionDB(settings.DATABASE_PATH)

    hub = ChangeHub()
    directory = Directory(user_db, project_db, default_language=settings.DEFAULT_LANGUAGE)
    timeslots = TimeslotService(slot_db, user_db, project_db, notifier=hub)
    chat = ChatService(
        timeslots, directory, SqliteSessionStore(session_db),
        threshold=settings.RECONCILE_CONFIDENCE_THRESHOLD,
    )

    bot = build_app(chat, directory)
    realtime = create_app(timeslots, directory, hub)

    logger.info("Starting Overlay Plans...")
    async with bot:
        await bot.start()
        await bot.updater.start_polling()
        try:
            await serve_app(realtime, settings.REALTIME_HOST, settings.REALTIME_PORT)
        finally:
            await bot.updater.stop()
            await bot.stop()


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
