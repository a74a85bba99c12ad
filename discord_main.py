import asyncio
import logging
import os

import discord
from dotenv import load_dotenv

from application.configuration import EnvironmentConfigurationProvider
from application.notifications import BufferedNotifier
from application.session import Session
from infrastructure.db.backend_postgres import connect_postgres_backend
from infrastructure.db.local_storage_sqlite import SqliteLocalStorage
from interfaces.discord.handlers import create_discord_bot


load_dotenv()

DISCORD_TOKEN = os.environ.get("DISCORD_TOKEN")
DB_PATH = os.environ.get("DB_PATH", "tradekaro.db")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


async def run() -> None:
    notifier = BufferedNotifier()
    session = Session(
        configuration=EnvironmentConfigurationProvider(),
        local_storage=SqliteLocalStorage(DB_PATH),
        remote_factory=connect_postgres_backend,
        notifier=notifier,
    )

    async with session:
        bot = create_discord_bot(session, notifier)
        async with bot:
            await bot.start(DISCORD_TOKEN)


def main() -> None:
    if not DISCORD_TOKEN:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    discord.utils.setup_logging(level=logging.getLevelName(LOG_LEVEL.upper()))
    asyncio.run(run())


if __name__ == "__main__":
    main()
