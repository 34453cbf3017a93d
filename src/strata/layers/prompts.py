"""Prompt builders for layer synthesis."""

from __future__ import annotations

from strata.llm.backends import Message
from strata.types import Turn
from strata.utils import clip, format_timestamp

PROFILE_PREFIX = "[User profile] "
NO_PROFILE = "(none yet)"

_EMOTIONAL_SYSTEM = """You analyse the emotional state in a conversation.
Describe, briefly:
1. the user's current mood and emotional state;
2. emotion keywords (for example happy, anxious, curious, confused);
3. the user's attitude towards the assistant.
Keep it under 200 words."""

_RATIONAL_SYSTEM = """You maintain a user profile. Merge the existing profile with the new
conversation and output the complete, updated profile.

Rules:
1. Combine what the existing profile says with anything new in the conversation.
2. Cover interests, areas of expertise, communication style, recurring needs and personality.
3. Stay objective and concise.
4. If the conversation adds nothing new, return the existing profile unchanged.
5. Output the full profile, not a diff.
6. Keep it under 500 words."""


def role_label(role: str) -> str:
    role = (role or "").strip().lower()
    if role == "user":
        return "User"
    if role in {"assistant", "ai", "model"}:
        return "Assistant"
    return role.title() or "Unknown"


def emotional_messages(turns: list[Turn], snippet_chars: int = 200) -> list[Message]:
    transcript = "\n".join(f"{role_label(t.role)}: {clip(t.content, snippet_chars)}" for t in turns)
    return [
        Message(role="system", content=_EMOTIONAL_SYSTEM),
        Message(role="user", content=transcript),
    ]


def rational_messages(existing_profile: str, turns: list[Turn], snippet_chars: int = 300) -> list[Message]:
    transcript = "\n".join(f"{role_label(t.role)}: {clip(t.content, snippet_chars)}" for t in turns)
    body = (
        f"Existing profile:\n{existing_profile.strip() or NO_PROFILE}\n\n"
        f"New conversation:\n{transcript}"
    )
    return [
        Message(role="system", content=_RATIONAL_SYSTEM),
        Message(role="user", content=body),
    ]


def format_transcript(turns: list[Turn]) -> str:
    """``[timestamp] Role: content`` lines, one per turn."""
    return "\n".join(
        f"[{format_timestamp(t.created_at)}] {role_label(t.role)}: {t.content.strip()}"
        for t in turns
        if t.content.strip()
    )
