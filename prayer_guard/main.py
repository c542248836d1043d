import asyncio
import logging

from .bot import create_bot, create_dispatcher
from .config import settings
from .db.models import Base
from .db.session import engine
from .db.store import ModerationStore, SqlContentRepository
from .handlers.admin import parse_admin_chat_ids
from .handlers.notifications import AdminNotifier
from .moderation.orchestrator import build_orchestrator
from .web.webhook import create_app, start_webhook_server

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

TASK_SWEEP_INTERVAL = 60  # seconds
NOTIFICATION_DRAIN_SECONDS = 10


async def sweep_stale_tasks(orchestrator) -> None:
    while True:
        await asyncio.sleep(TASK_SWEEP_INTERVAL)
        orchestrator.expire_stale_tasks()


async def main() -> None:
    logger.info("Creating database tables (if not exist)...")
    Base.metadata.create_all(bind=engine)

    if not settings.hive_api_key:
        logger.warning("HIVE_API_KEY is not set; every classification will fail open")

    bot = create_bot() if settings.telegram_bot_token else None
    notifier = AdminNotifier(bot, parse_admin_chat_ids(settings.admin_chat_ids)) if bot else None

    orchestrator = build_orchestrator(
        settings,
        ModerationStore(),
        SqlContentRepository(),
        notifier=notifier,
    )

    runner = await start_webhook_server(
        create_app(orchestrator, secret=settings.webhook_secret),
        settings.webhook_host,
        settings.webhook_port,
    )
    sweeper = asyncio.create_task(sweep_stale_tasks(orchestrator))

    try:
        if bot is not None:
            dp = create_dispatcher(orchestrator)
            logger.info("Starting moderation admin bot polling...")
            await dp.start_polling(bot)
        else:
            logger.info("TELEGRAM_BOT_TOKEN not set, running webhook server only")
            await asyncio.Event().wait()
    finally:
        sweeper.cancel()
        await runner.cleanup()
        await orchestrator.wait_for_notifications(timeout=NOTIFICATION_DRAIN_SECONDS)


if __name__ == "__main__":
    asyncio.run(main())
