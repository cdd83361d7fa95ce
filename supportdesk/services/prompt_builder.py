"""Instruction text for the support assistant, built from tenant AI settings."""

from typing import Iterable

PERSONALITY_PROMPTS = {
    "professional": (
        "You are a professional support assistant. Be polite, clear and business-appropriate. "
        'Example: "Thank you for reaching out. I can help you with that."'
    ),
    "friendly": (
        "You are a friendly support assistant. Be warm, approachable and upbeat. "
        'Example: "Hi there! Happy to help, let\'s sort this out together."'
    ),
    "casual": (
        "You are a relaxed support assistant. Keep it informal and simple. "
        'Example: "No worries, here\'s how that works."'
    ),
    "technical": (
        "You are a technical support assistant. Be precise and detail-oriented, and focus on solving the problem. "
        'Example: "To narrow this down, could you share the exact steps you took?"'
    ),
}

LENGTH_PROMPTS = {
    "brief": "Keep replies short: one or two sentences for simple questions, never more than four.",
    "medium": "Keep replies balanced: a few sentences for simple questions, one or two short paragraphs for complex ones.",
    "detailed": "Give complete replies: explain steps fully, add context and examples where they help.",
}

TOKEN_LIMITS = {
    "brief": 200,
    "medium": 500,
    "detailed": 1500,
}

ESCALATION_TOOL_NAME = "escalate_to_human"

ESCALATION_TOOL = {
    "type": "function",
    "name": ESCALATION_TOOL_NAME,
    "description": "Hand the conversation to human support staff.",
    "parameters": {
        "type": "object",
        "properties": {
            "reason": {"type": "string", "description": "Short reason for the handoff"},
        },
        "required": ["reason"],
    },
}

_ESCALATION_GUIDELINES = """## Handing off to support staff

Call the escalate_to_human tool when:
- the customer asks for a person, an agent or human support in any wording
- you cannot answer confidently from the company context
- the customer is frustrated or upset
- the request involves refunds, cancellations, billing disputes or account changes
- the topic is legal, security-sensitive or needs staff judgement

Before calling the tool, write one short friendly sentence telling the customer you are connecting them.
Do not ask why they want a person."""

_RESPONSE_RULES = """## Reply rules

Never show error messages, error codes or technical details to the customer.
Never mention files, searches, a knowledge base or any internal tooling.
If you do not know something, say so instead of guessing."""


def get_token_limit(response_length: str) -> int:
    return TOKEN_LIMITS.get(response_length, TOKEN_LIMITS["medium"])


def build_instructions(
    personality: str,
    response_length: str,
    system_prompt: str | None,
    company_context: str | None,
    handoff_triggers: Iterable[str] = (),
) -> str:
    """Persona first, then tenant instructions, then tenant knowledge, then handoff and reply rules."""
    sections = [
        PERSONALITY_PROMPTS.get(personality, PERSONALITY_PROMPTS["professional"]),
        "## Response length\n\n" + LENGTH_PROMPTS.get(response_length, LENGTH_PROMPTS["medium"]),
        "## Custom instructions\n\n" + (system_prompt or "No custom instructions provided."),
        "## Company context\n\n" + (company_context or "No company context provided."),
    ]

    guidelines = _ESCALATION_GUIDELINES
    triggers = [trigger for trigger in handoff_triggers if trigger]
    if triggers:
        guidelines += "\n\nAlso escalate for these company-specific triggers:\n" + "\n".join(
            f"- {trigger}" for trigger in triggers
        )
    sections.append(guidelines)
    sections.append(_RESPONSE_RULES)
    return "\n\n".join(sections)
