from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from .config import settings
from .handlers import admin


def create_bot() -> Bot:
    return Bot(
        token=settings.telegram_bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )


def create_dispatcher(orchestrator) -> Dispatcher:
    dp = Dispatcher()
    # Handlers receive it as the ``orchestrator`` keyword argument.
    dp["orchestrator"] = orchestrator
    dp.include_router(admin.router)
    return dp
