import logging
import html
from typing import List, Optional

from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import Message, CallbackQuery

from prayer_guard.config import settings
from prayer_guard.moderation.orchestrator import ModerationOrchestrator
from prayer_guard.moderation.schemas import CATEGORIES, ModerationStats, PolicyConfig

logger = logging.getLogger(__name__)

router = Router(name="admin")

APPROVE_PREFIX = "mod_ok:"
REJECT_PREFIX = "mod_no:"
DECISION_MARKER = "\n\n👮 Reviewer decision:"
SWITCHABLE_FIELDS = ("strict_mode", "auto_reject")


def parse_admin_chat_ids(raw: Optional[str]) -> List[int]:
    """Comma separated chat ids from ADMIN_CHAT_IDS; bad entries are skipped."""
    if not raw:
        return []
    ids: List[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            logger.warning("Invalid admin_chat_ids entry in .env: %r", part)
    return ids


def is_admin_chat(chat_id: int) -> bool:
    return chat_id in parse_admin_chat_ids(settings.admin_chat_ids)


def parse_switch(value: str) -> Optional[bool]:
    value = value.strip().lower()
    if value in ("on", "true", "yes", "1"):
        return True
    if value in ("off", "false", "no", "0"):
        return False
    return None


def _argument(message: Message) -> str:
    parts = (message.text or "").split(maxsplit=1)
    return parts[1].strip() if len(parts) == 2 else ""


def format_stats(stats: ModerationStats, days: int) -> str:
    lines: list[str] = []
    lines.append(f"📊 <b>Moderation over the last {days} day(s)</b>")
    lines.append("")
    lines.append(f"Total decisions: <b>{stats.total}</b>")
    lines.append(f"Approved: <b>{stats.approved}</b>")
    lines.append(f"Rejected: <b>{stats.rejected}</b>")
    lines.append(f"Approval rate: <b>{stats.approval_rate:.2f}%</b>")
    lines.append(f"Avg processing time: <b>{stats.avg_processing_time_ms:.0f} ms</b>")

    if stats.by_modality:
        lines.append("")
        lines.append("By modality:")
        for modality, count in sorted(stats.by_modality.items()):
            lines.append(f"• {html.escape(modality)}: <b>{count}</b>")

    if stats.by_category:
        lines.append("")
        lines.append("Flags by category:")
        for category, count in sorted(stats.by_category.items(), key=lambda kv: kv[1], reverse=True):
            lines.append(f"• {html.escape(category)}: <b>{count}</b>")

    return "\n".join(lines)


def format_config(policy: PolicyConfig) -> str:
    lines: list[str] = []
    lines.append("⚙️ <b>Moderation config</b>")
    lines.append(f"Enabled: <b>{'yes' if policy.enabled else 'no'}</b>")
    lines.append(f"Strict mode (hold on provider outage): <b>{'on' if policy.strict_mode else 'off'}</b>")
    lines.append(f"Auto reject: <b>{'on' if policy.auto_reject else 'off'}</b>")
    lines.append("")
    lines.append("Thresholds:")
    for category in CATEGORIES:
        lines.append(f"• {category}: <b>{policy.thresholds[category]:.2f}</b>")
    return "\n".join(lines)


@router.message(Command("help"))
async def cmd_help(message: Message):
    """
    Help for the moderation admin commands.
    """
    if not is_admin_chat(message.chat.id):
        return

    text = (
        "ℹ️ <b>Prayer moderation admin</b>\n\n"
        "• <code>/mod_stats [days]</code> — decision statistics (default 30 days).\n"
        "• <code>/mod_config</code> — current policy and thresholds.\n"
        "• <code>/mod_enable</code> / <code>/mod_disable</code> — global kill-switch.\n"
        "• <code>/mod_set strict_mode|auto_reject on|off</code> — policy switches.\n"
        "• <code>/mod_threshold &lt;category&gt; &lt;0..1&gt;</code> — change one threshold.\n"
        "• <code>/mod_task &lt;task_id&gt;</code> — status of a video moderation task.\n"
        "• <code>/mod_recent [N]</code> — latest rejected or held content (max 50).\n\n"
        "Review cards carry <b>✅ Approve</b> and <b>🚫 Keep hidden</b> buttons; "
        "every decision is added to the audit log."
    )
    await message.answer(text, parse_mode="HTML")


@router.message(Command("mod_stats"))
async def cmd_mod_stats(message: Message, orchestrator: ModerationOrchestrator):
    if not is_admin_chat(message.chat.id):
        return

    days = 30
    arg = _argument(message)
    if arg:
        try:
            days = max(1, min(365, int(arg)))
        except ValueError:
            pass

    stats = orchestrator.get_moderation_stats(days)
    await message.answer(format_stats(stats, days), parse_mode="HTML")


@router.message(Command("mod_config"))
async def cmd_mod_config(message: Message, orchestrator: ModerationOrchestrator):
    if not is_admin_chat(message.chat.id):
        return
    await message.answer(format_config(orchestrator.policy.get()), parse_mode="HTML")


async def _apply_update(message: Message, orchestrator: ModerationOrchestrator, updates: dict) -> None:
    updated_by = f"tg:{message.from_user.id}" if message.from_user else None
    outcome = orchestrator.update_moderation_config(updates, updated_by=updated_by)
    if not outcome.success:
        await message.answer(f"❌ {html.escape(outcome.error or 'Update failed')}")
        return
    await message.answer(format_config(orchestrator.policy.get()), parse_mode="HTML")


@router.message(Command("mod_enable"))
async def cmd_mod_enable(message: Message, orchestrator: ModerationOrchestrator):
    if not is_admin_chat(message.chat.id):
        return
    await _apply_update(message, orchestrator, {"enabled": True})


@router.message(Command("mod_disable"))
async def cmd_mod_disable(message: Message, orchestrator: ModerationOrchestrator):
    if not is_admin_chat(message.chat.id):
        return
    await _apply_update(message, orchestrator, {"enabled": False})


@router.message(Command("mod_set"))
async def cmd_mod_set(message: Message, orchestrator: ModerationOrchestrator):
    if not is_admin_chat(message.chat.id):
        return

    parts = _argument(message).split()
    if len(parts) != 2 or parts[0] not in SWITCHABLE_FIELDS:
        await message.answer("Usage: /mod_set strict_mode|auto_reject on|off")
        return

    value = parse_switch(parts[1])
    if value is None:
        await message.answer("The value must be on or off.")
        return

    await _apply_update(message, orchestrator, {parts[0]: value})


@router.message(Command("mod_threshold"))
async def cmd_mod_threshold(message: Message, orchestrator: ModerationOrchestrator):
    if not is_admin_chat(message.chat.id):
        return

    parts = _argument(message).split()
    if len(parts) != 2 or parts[0] not in CATEGORIES:
        await message.answer(
            "Usage: /mod_threshold &lt;category&gt; &lt;0..1&gt;\n"
            f"Categories: {', '.join(CATEGORIES)}",
            parse_mode="HTML",
        )
        return

    try:
        value = float(parts[1])
    except ValueError:
        await message.answer("The threshold must be a number between 0 and 1.")
        return

    await _apply_update(message, orchestrator, {"thresholds": {parts[0]: value}})


@router.message(Command("mod_task"))
async def cmd_mod_task(message: Message, orchestrator: ModerationOrchestrator):
    if not is_admin_chat(message.chat.id):
        return

    task_id = _argument(message)
    if not task_id:
        await message.answer("Usage: /mod_task &lt;task_id&gt;", parse_mode="HTML")
        return

    status = await orchestrator.check_video_status(task_id)
    lines = [f"🎬 Task <code>{html.escape(task_id)}</code>: <b>{status.status}</b>"]
    if status.result is not None:
        verdict = "approved" if status.result.approved else "rejected"
        lines.append(f"Verdict: <b>{verdict}</b>")
        for flag in status.result.flags:
            lines.append(f"• {flag.category} ({flag.severity}, {flag.score:.2f})")
    if status.error:
        lines.append(f"Error: {html.escape(status.error)}")
    await message.answer("\n".join(lines), parse_mode="HTML")


@router.message(Command("mod_recent"))
async def cmd_mod_recent(message: Message, orchestrator: ModerationOrchestrator):
    if not is_admin_chat(message.chat.id):
        return

    limit = 10
    arg = _argument(message)
    if arg:
        try:
            limit = max(1, min(50, int(arg)))
        except ValueError:
            pass

    entries = orchestrator.recent_rejections(limit)
    if not entries:
        await message.answer("Nothing has been rejected or held yet.")
        return

    lines: list[str] = []
    lines.append(f"🕒 Last {len(entries)} rejected or held item(s):")
    for entry in entries:
        ts = entry.created_at.strftime("%Y-%m-%d %H:%M") if entry.created_at else "—"
        categories = ", ".join(f.category for f in entry.flags) or "no flags"
        lines.append(
            f"• [{ts}] {entry.modality}/{html.escape(entry.content_kind)} "
            f"<code>{html.escape(entry.content_id)}</code> — {entry.status} ({categories})"
        )
    await message.answer("\n".join(lines), parse_mode="HTML")


async def _review(callback: CallbackQuery, orchestrator: ModerationOrchestrator, approve: bool) -> None:
    if callback.message is None or not is_admin_chat(callback.message.chat.id):
        await callback.answer("This chat cannot review content.", show_alert=True)
        return

    prefix = APPROVE_PREFIX if approve else REJECT_PREFIX
    content_id = (callback.data or "")[len(prefix):]
    if not content_id:
        await callback.answer("Malformed callback data.", show_alert=True)
        return

    reviewer = f"tg:{callback.from_user.id}"
    if not orchestrator.review_decision(content_id, approve, reviewer):
        await callback.answer("Content not found, nothing changed.", show_alert=True)
        return

    try:
        old_text = callback.message.html_text or ""
        base_text = old_text.split(DECISION_MARKER, 1)[0]
        verdict = "APPROVED" if approve else "KEPT HIDDEN"
        await callback.message.edit_text(base_text + f"{DECISION_MARKER} <b>{verdict}</b>", parse_mode="HTML")
    except Exception as exc:
        logger.warning("Failed to edit review card text: %s", exc)

    await callback.answer("Approved." if approve else "Kept hidden.")


@router.callback_query(F.data.startswith(APPROVE_PREFIX))
async def cb_approve(callback: CallbackQuery, orchestrator: ModerationOrchestrator):
    await _review(callback, orchestrator, approve=True)


@router.callback_query(F.data.startswith(REJECT_PREFIX))
async def cb_reject(callback: CallbackQuery, orchestrator: ModerationOrchestrator):
    await _review(callback, orchestrator, approve=False)
