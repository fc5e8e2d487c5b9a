# scribe/usage/entity/account.py
"""
Usage accounting models.

All budgets are tracked in words. Trial allowances are advertised in
tokens and converted once, at the boundary, with TOKENS_PER_WORD.
"""

import math
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

CHARS_PER_TOKEN = 4
TOKENS_PER_WORD = 4 / 3


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN) if text else 0


def tokens_to_words(tokens: int) -> int:
    # integer form of floor(tokens / TOKENS_PER_WORD)
    return tokens * 3 // 4


def words_to_tokens(words: int) -> int:
    return -(-words * 4 // 3)


class Plan(str, Enum):
    TRIAL = "trial"
    BASIC = "basic"
    PREMIUM = "premium"


class UsageKind(str, Enum):
    AI_MESSAGE = "ai_message"
    PLAN_WORDS = "plan_words"
    HUMANIZER_WORDS = "humanizer_words"


class PlanLimits(BaseModel):
    """None means the plan does not cap that dimension."""

    daily_messages: Optional[int] = None
    plan_words: int = 0
    humanizer_words: int = 0


class UsageAccount(BaseModel):
    account_id: str
    plan: Plan = Plan.TRIAL
    period_start: date = Field(default_factory=date.today)
    ai_messages_used: int = 0
    humanizer_words_used: int = 0
    plan_words_used: int = 0
    daily_messages: int = 0
    daily_date: date = Field(default_factory=date.today)
    version: int = 0

    def used(self, kind: UsageKind) -> int:
        if kind is UsageKind.AI_MESSAGE:
            return self.daily_messages
        if kind is UsageKind.HUMANIZER_WORDS:
            return self.humanizer_words_used
        return self.plan_words_used
