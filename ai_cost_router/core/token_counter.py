"""
Token counting and usage tracking.

Holds provider-reported token counts and the character-length heuristic
used when a provider reports nothing.
"""

import math
from dataclasses import dataclass

# Share of a combined token count attributed to input when a provider
# reports only the total
INPUT_SHARE_TENTHS = 3
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_total(cls, total_tokens: int) -> "TokenUsage":
        """Split a combined count 30/70 between input and output."""
        total_tokens = max(0, int(total_tokens))
        prompt = total_tokens * INPUT_SHARE_TENTHS // 10
        return cls(prompt_tokens=prompt, completion_tokens=total_tokens - prompt)

    @classmethod
    def estimate(cls, prompt_text: str, completion_text: str) -> "TokenUsage":
        """Approximate usage from text lengths."""
        return cls(
            prompt_tokens=estimate_tokens(prompt_text),
            completion_tokens=estimate_tokens(completion_text),
        )


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
