"""Locally synthesized replies for when the backend cannot be reached."""

from __future__ import annotations

import random


def generate_fallback_reply(text: str, rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    excerpt = text[:30] + ("..." if len(text) > 30 else "")
    follow_up = "Let me consider that question." if "?" in text else "I appreciate you sharing that."
    replies = (
        f'I\'ve been thinking about what you said: "{excerpt}"',
        f"That's an interesting point. {follow_up}",
        "Hmm, when you mention that, it reminds me of our earlier conversation patterns.",
        "I'm processing your words. There's something meaningful in what you're exploring.",
        "That resonates with me in an interesting way. Tell me more about what you mean.",
    )
    return rng.choice(replies)
