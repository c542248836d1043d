import logging
import html
from typing import Optional

from aiogram import Bot
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from prayer_guard.handlers.admin import APPROVE_PREFIX, REJECT_PREFIX
from prayer_guard.moderation.schemas import ModerationResponse

logger = logging.getLogger(__name__)

# Telegram limit for callback_data
MAX_CALLBACK_DATA = 64


def format_decision_card(response: ModerationResponse) -> str:
    lines: list[str] = []
    lines.append("🚨 <b>Content held by moderation</b>")
    lines.append("")
    lines.append(f"🆔 Content: <code>{html.escape(response.content_id)}</code>")
    lines.append(f"📦 Modality: <b>{response.modality}</b>")
    lines.append(f"🏷 Status: <b>{response.status}</b>")
    if response.task_id:
        lines.append(f"🎬 Task: <code>{html.escape(response.task_id)}</code>")

    result = response.result
    if result is not None:
        lines.append(f"🤖 Model: <code>{html.escape(result.model_version)}</code>")
        if result.flags:
            lines.append("")
            lines.append("Flags:")
            for flag in result.flags:
                lines.append(f"• {flag.category} — {flag.severity} ({flag.score:.2f})")
        if result.transcription:
            text = result.transcription
            if len(text) > 300:
                text = text[:297] + "..."
            lines.append("")
            lines.append(f"💬 Transcription:\n<code>{html.escape(text)}</code>")

    return "\n".join(lines)


def review_keyboard(content_id: str) -> Optional[InlineKeyboardMarkup]:
    if len(APPROVE_PREFIX + content_id) > MAX_CALLBACK_DATA:
        return None
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="✅ Approve", callback_data=f"{APPROVE_PREFIX}{content_id}"),
                InlineKeyboardButton(text="🚫 Keep hidden", callback_data=f"{REJECT_PREFIX}{content_id}"),
            ]
        ]
    )


class AdminNotifier:
    """Sends a review card for every rejected or held item to the admin chats."""

    def __init__(self, bot: Bot, chat_ids: list[int]):
        self.bot = bot
        self.chat_ids = chat_ids

    async def notify(self, response: ModerationResponse) -> None:
        if not self.chat_ids:
            logger.info("No admin chats configured for content_id=%s", response.content_id)
            return

        body = format_decision_card(response)
        reply_markup = review_keyboard(response.content_id)

        for chat_id in self.chat_ids:
            try:
                await self.bot.send_message(
                    chat_id,
                    body,
                    reply_markup=reply_markup,
                    parse_mode="HTML",
                )
            except Exception as exc:
                logger.error(
                    "Failed to send review card to admin chat %s: %s",
                    chat_id,
                    exc,
                )
