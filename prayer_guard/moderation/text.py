"""
Text moderation for prayers, responses, chat messages and profiles.

Short input is approved without a provider call; provider outages fail open
unless the policy is in strict mode.
"""
import asyncio
import logging
import re
from typing import Optional, Sequence

from .decisions import (
    PRE_FILTER_MODEL_VERSION,
    decision_status,
    error_fallback_result,
    fallback_status,
    pick_message,
    record_decision,
)
from .errors import ProviderError
from .schemas import (
    DEFAULT_POLICY,
    ModerationResult,
    PolicyConfig,
    TextContent,
    TextModerationOutput,
)

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 3
DEFAULT_BATCH_SIZE = 10

TEXT_MESSAGES: dict[str, str] = {
    "hate_speech": "Your prayer contains language that may be hurtful to others. Please share it with kindness.",
    "harassment": "Your words may feel hurtful to someone. Please rephrase them with compassion.",
    "violence": "Your prayer contains content that isn't appropriate for this space. Please revise it.",
    "self_harm": (
        "We care about you. If you're struggling, please reach out to someone you trust "
        "or a local crisis line. You are not alone."
    ),
    "sexual_content": "Your prayer contains content that isn't appropriate for this space. Please revise it.",
    "spam": "This looks like promotional content. Please share genuine prayer requests.",
    "profanity": "Please use respectful language in this sacred space.",
    "illegal_activity": "Your prayer mentions things that aren't allowed here. Please revise it.",
}
DEFAULT_TEXT_MESSAGE = "Your prayer could not be posted. Please review our community guidelines."
HELD_TEXT_MESSAGE = "Thank you for sharing. Your prayer will appear once it has been reviewed, usually within a few minutes."

# Local, zero-cost hints for instant feedback while typing.
_SUSPICIOUS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"\b(fuck|shit|bitch|bastard|cunt|asshole)\b",
        r"\bkill\s+(yourself|urself)\b",
        r"\bkys\b",
        r"\b(buy|cheap|discount|promo)\b.{0,40}\b(now|today|here)\b",
        r"\b(crypto|usdt|bitcoin|forex)\b.{0,40}\b(profit|invest|earn)\w*",
        r"(.)\1{9,}",
    ]
]
_LINK = re.compile(r"https?://", re.IGNORECASE)
MAX_LINKS = 3


def looks_suspicious(text: str) -> bool:
    """Cheap heuristic; the provider decision still applies."""
    if not text:
        return False
    letters = [c for c in text if c.isalpha()]
    if len(letters) >= 20 and sum(c.isupper() for c in letters) / len(letters) > 0.8:
        return True
    if len(_LINK.findall(text)) >= MAX_LINKS:
        return True
    return any(p.search(text) for p in _SUSPICIOUS_PATTERNS)


class TextModerator:
    def __init__(self, client, store=None, batch_size: int = DEFAULT_BATCH_SIZE):
        self.client = client
        self.store = store
        self.batch_size = batch_size

    async def moderate(
        self,
        text: str,
        content_id: str,
        content_kind: str = "prayer",
        user_id: Optional[str] = None,
        policy: Optional[PolicyConfig] = None,
    ) -> TextModerationOutput:
        policy = policy or DEFAULT_POLICY

        if len(text.strip()) < MIN_TEXT_LENGTH:
            return TextModerationOutput(
                status="approved",
                result=ModerationResult(model_version=PRE_FILTER_MODEL_VERSION),
            )

        try:
            result = await self.client.classify_text(text, thresholds=policy.thresholds)
        except ProviderError as exc:
            logger.warning(
                "Text classification unavailable for content_id=%s, falling back: %s",
                content_id,
                exc,
            )
            status = fallback_status(policy)
            result = error_fallback_result()
            record_decision(
                self.store,
                content_id=content_id,
                content_kind=content_kind,
                modality="text",
                status=status,
                result=result,
                user_id=user_id,
            )
            return TextModerationOutput(
                status=status,
                result=result,
                message=HELD_TEXT_MESSAGE if status == "pending" else None,
            )

        status = decision_status(result, policy)
        logger.info(
            "Text moderated: content_id=%s kind=%s status=%s flags=%s",
            content_id,
            content_kind,
            status,
            [f.category for f in result.flags],
        )
        record_decision(
            self.store,
            content_id=content_id,
            content_kind=content_kind,
            modality="text",
            status=status,
            result=result,
            user_id=user_id,
        )

        return TextModerationOutput(
            status=status,
            result=result,
            message=None if result.approved else pick_message(result.flags, TEXT_MESSAGES, DEFAULT_TEXT_MESSAGE),
        )

    async def moderate_batch(
        self,
        items: Sequence[TextContent],
        policy: Optional[PolicyConfig] = None,
    ) -> dict[str, TextModerationOutput]:
        """Moderate many texts, at most ``batch_size`` provider calls in flight."""
        semaphore = asyncio.Semaphore(self.batch_size)

        async def run(item: TextContent) -> tuple[str, TextModerationOutput]:
            async with semaphore:
                output = await self.moderate(
                    item.text,
                    item.content_id,
                    item.content_kind,
                    item.user_id,
                    policy,
                )
            return item.content_id, output

        pairs = await asyncio.gather(*(run(item) for item in items))
        return dict(pairs)
