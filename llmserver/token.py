"""Rough token estimates from character counts."""

from __future__ import annotations

import math
from collections.abc import Iterable

from llmserver.messages import Message

AVG_CHARS_PER_TOKEN = 4.0


def _estimate(char_count: int) -> int:
    return int(max(math.ceil(char_count / AVG_CHARS_PER_TOKEN), 1))


def estimate_text_tokens(text: str) -> int:
    """Estimate the tokens in a text; never less than one."""
    return _estimate(len(text))


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    """Estimate the tokens across all message contents; never less than one."""
    return _estimate(sum(len(message.text()) for message in messages))