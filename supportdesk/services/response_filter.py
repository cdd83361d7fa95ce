"""Customer-facing text hygiene and escalation phrase detection."""

import re
from typing import Iterable, Optional

from supportdesk.logging_config import LoggerAdapter, get_logger

logger = get_logger("response_filter")

EMPTY_REPLY_FALLBACK = "I'd be happy to help you with that! How can I assist you today?"

_ERROR_PATTERNS = (
    re.compile(r"\b(error|exception|failed):\s*", re.IGNORECASE),
    re.compile(r"\b(api|system|internal|server|http|openai|connection|network|database|sql|timeout) error\b", re.IGNORECASE),
    re.compile(r"\berror (occurred|message|code)\b", re.IGNORECASE),
    re.compile(r"\bstatus code\s*\d{3}\b", re.IGNORECASE),
    re.compile(r"\bopenai api\b", re.IGNORECASE),
    re.compile(r"\brate limit\b", re.IGNORECASE),
    re.compile(r"\b(stack trace|traceback)\b", re.IGNORECASE),
    re.compile(r"\bat\s+[\w.]+\.\w+\s*\(", re.IGNORECASE),
    re.compile(r"\d{4}-\d{2}-\d{2}t\d{2}:\d{2}:\d{2}", re.IGNORECASE),
)

# Retrieval machinery the customer should never hear about.
_MACHINERY_PATTERNS = (
    re.compile(r"\b(no )?files? (were )?uploaded\b", re.IGNORECASE),
    re.compile(r"\buploaded files\b", re.IGNORECASE),
    re.compile(r"\bno files\b", re.IGNORECASE),
    re.compile(r"\bfile[_ ]search\b", re.IGNORECASE),
    re.compile(r"\bsearch (did not return|returned|did not find|found nothing|found no|results|query)\b", re.IGNORECASE),
    re.compile(r"\bno (relevant )?information (was )?found\b", re.IGNORECASE),
    re.compile(r"\bno relevant information\b", re.IGNORECASE),
    re.compile(r"\binformation (was )?not found\b", re.IGNORECASE),
    re.compile(r"\bknowledge base\b", re.IGNORECASE),
    re.compile(r"\bvector store\b", re.IGNORECASE),
    re.compile(r"\b(in|from|according to|found in) the (uploaded )?files\b", re.IGNORECASE),
)

_ERROR_STARTERS = ("error", "failed", "exception", "unexpected")

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")

CUSTOMER_TRIGGER_PHRASES = {
    "customer_requests_human": [
        "speak to a human", "talk to a human", "real person", "human agent",
        "talk to someone", "speak to someone", "real agent", "live agent",
        "customer service", "support agent", "talk to support", "speak to support",
        "need a human", "want a human", "get me a human", "transfer me",
    ],
    "billing_questions": [
        "billing", "payment", "refund", "charge", "invoice", "subscription",
        "cancel my", "charged me", "money back", "pricing", "cost", "price",
        "credit card", "debit card", "transaction",
    ],
    "negative_sentiment": [
        "frustrated", "angry", "upset", "terrible", "awful", "horrible",
        "worst", "hate", "useless", "waste of time", "ridiculous", "unacceptable",
        "disappointed", "disgusted", "furious",
    ],
}

AI_ESCALATION_PHRASES = ("escalate", "human agent", "transfer you", "connect you with", "let me get someone")


def _is_leaky(sentence: str) -> bool:
    if any(pattern.search(sentence) for pattern in _ERROR_PATTERNS):
        return True
    if any(pattern.search(sentence) for pattern in _MACHINERY_PATTERNS):
        return True
    return sentence.strip().lower().startswith(_ERROR_STARTERS)


def sanitize_ai_response(text: str, log: LoggerAdapter | None = None) -> str:
    """Drop sentences that leak errors or retrieval internals.

    Falls back to a generic offer of help when nothing usable is left.
    """
    log = log or LoggerAdapter(logger, {})
    if not text or not text.strip():
        log.info("Empty AI reply, using fallback")
        return EMPTY_REPLY_FALLBACK

    kept = []
    dropped = []
    for sentence in _SENTENCE_SPLIT.split(text.strip()):
        if not sentence.strip():
            continue
        (dropped if _is_leaky(sentence) else kept).append(sentence.strip())

    if dropped:
        log.debug("Sanitized AI reply", context={"raw": text, "dropped": dropped})

    cleaned = " ".join(kept).strip()
    return cleaned or EMPTY_REPLY_FALLBACK


def match_customer_trigger(message: str, triggers: Optional[Iterable[str]]) -> Optional[str]:
    """Return the matched phrase when a tenant handoff trigger fires on the customer's message."""
    lowered = (message or "").lower()
    if not lowered:
        return None
    for trigger in triggers or []:
        for phrase in CUSTOMER_TRIGGER_PHRASES.get(trigger, [trigger]):
            if phrase and phrase.lower() in lowered:
                return phrase
    return None


def ai_requests_escalation(reply: str) -> bool:
    lowered = (reply or "").lower()
    return any(phrase in lowered for phrase in AI_ESCALATION_PHRASES)
