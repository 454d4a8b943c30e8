# run_scheduler.py
import asyncio
import logging

from aiogram import Bot

from competition_engine.config import Settings
from competition_engine.db.database import DataBase
from competition_engine.engine import CompetitionEngine
from competition_engine.services.broadcast import LocalMemoryBroadcaster
from competition_engine.services.notifications import notifier

logger = logging.getLogger(__name__)


async def main() -> None:
    settings = Settings()
    logging.basicConfig(level=settings.log_level)

    bot = None
    if settings.bot_token:
        # plain text: messages embed user-provided names
        bot = Bot(settings.bot_token)
        notifier.bind_bot(bot)
    else:
        logger.info("BOT_TOKEN is not set; notifications are stored but not delivered.")

    database = DataBase()
    await database.create_all()
    engine = CompetitionEngine(database, broadcaster=LocalMemoryBroadcaster())

    logger.info("Round scheduler started (every %ss)", settings.scheduler_interval_seconds)
    try:
        while True:
            try:
                await engine.scheduler.process_due_rounds()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(settings.scheduler_interval_seconds)
    finally:
        if bot is not None:
            await bot.session.close()
        await database.dispose()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
