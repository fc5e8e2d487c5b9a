# scribe/usage/service/ledger.py
import asyncio
from contextlib import asynccontextmanager
from datetime import date
from typing import Callable, Dict, Mapping, Optional

from scribe.core.config import settings
from scribe.core.errors import QuotaExceededError
from scribe.core.logger import get_logger
from scribe.usage.entity.account import (
    Plan,
    PlanLimits,
    UsageAccount,
    UsageKind,
    tokens_to_words,
    words_to_tokens,
)
from scribe.usage.repository.usage_store import UsageStore

logger = get_logger("UsageLedger")


def default_plan_limits() -> Dict[Plan, PlanLimits]:
    return {
        Plan.TRIAL: PlanLimits(
            daily_messages=None,
            plan_words=tokens_to_words(settings.TRIAL_TOKEN_LIMIT),
            humanizer_words=0,
        ),
        Plan.BASIC: PlanLimits(
            daily_messages=settings.BASIC_DAILY_MESSAGES,
            plan_words=settings.BASIC_PLAN_WORDS,
            humanizer_words=0,
        ),
        Plan.PREMIUM: PlanLimits(
            daily_messages=settings.PREMIUM_DAILY_MESSAGES,
            plan_words=settings.PREMIUM_PLAN_WORDS,
            humanizer_words=settings.PREMIUM_HUMANIZER_WORDS,
        ),
    }


class _AccountLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class UsageLedger:
    """
    Transactional usage accounting.

    Every read-modify-write on an account runs under that account's
    asyncio.Lock and the store's own lock, so two requests from the same
    user cannot lose each other's debits. Different accounts never
    contend.
    """

    def __init__(
        self,
        store: UsageStore,
        limits: Optional[Dict[Plan, PlanLimits]] = None,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.limits = limits or default_plan_limits()
        self._today = today
        self._locks: Dict[str, _AccountLock] = {}

    @asynccontextmanager
    async def _lock(self, account_id: str):
        """Per-account lock, dropped once nobody holds or awaits it."""
        entry = self._locks.get(account_id)
        if entry is None:
            entry = self._locks[account_id] = _AccountLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[account_id]

    def limit_for(self, account: UsageAccount, kind: UsageKind) -> Optional[int]:
        plan_limits = self.limits[account.plan]
        if kind is UsageKind.AI_MESSAGE:
            return plan_limits.daily_messages
        if kind is UsageKind.HUMANIZER_WORDS:
            return plan_limits.humanizer_words
        return plan_limits.plan_words

    def remaining(self, account: UsageAccount, kind: UsageKind) -> Optional[int]:
        limit = self.limit_for(account, kind)
        if limit is None:
            return None
        return max(0, limit - account.used(kind))

    def _roll_day(self, account: UsageAccount) -> UsageAccount:
        today = self._today()
        if account.daily_date != today:
            return account.model_copy(update={"daily_messages": 0, "daily_date": today})
        return account

    async def _load(self, account_id: str) -> UsageAccount:
        data = await self.store.get(account_id)
        if data is None:
            account = UsageAccount(account_id=account_id, period_start=self._today(), daily_date=self._today())
        else:
            account = UsageAccount.model_validate(data)
        return self._roll_day(account)

    async def get_account(self, account_id: str) -> UsageAccount:
        return await self._load(account_id)

    def block_reason(self, account: UsageAccount, kind: UsageKind, amount: int) -> Optional[str]:
        """Why ``amount`` of ``kind`` cannot be consumed, or None if it can."""
        if amount < 0:
            return "Usage amounts cannot be negative."
        limit = self.limit_for(account, kind)
        if limit is None:
            return None
        used = account.used(kind)
        if used + amount <= limit:
            return None

        if kind is UsageKind.AI_MESSAGE:
            return f"Daily AI message limit reached ({used} / {limit}). Your limit resets tomorrow."
        if kind is UsageKind.HUMANIZER_WORDS:
            if limit == 0:
                return "The humanizer is not available on your current plan. Upgrade to Premium to use it."
            return f"Humanizer limit reached ({used} / {limit} words). Upgrade or wait for your next billing period."
        if account.plan is Plan.TRIAL:
            return (
                f"Your free trial has ended ({words_to_tokens(used)} / {settings.TRIAL_TOKEN_LIMIT} tokens used). "
                "Subscribe to keep writing with ScribeAI."
            )
        return f"Your plan word budget is exhausted ({used} / {limit} words). Upgrade or wait for your next billing period."

    async def can_consume(self, account_id: str, kind: UsageKind, amount: int) -> bool:
        account = await self._load(account_id)
        return self.block_reason(account, kind, amount) is None

    async def preflight(self, account_id: str, charges: Mapping[UsageKind, int]) -> UsageAccount:
        """Raise QuotaExceededError if any of ``charges`` would overdraw."""
        account = await self._load(account_id)
        for kind, amount in charges.items():
            reason = self.block_reason(account, kind, amount)
            if reason:
                logger.info(f"preflight rejected account={account_id} kind={kind.value} amount={amount}")
                raise QuotaExceededError(reason, context={"kind": kind.value, "amount": amount})
        return account

    async def debit(self, account_id: str, kind: UsageKind, amount: int) -> UsageAccount:
        return await self.charge(account_id, {kind: amount})

    async def charge(self, account_id: str, charges: Mapping[UsageKind, int], clamp: bool = False) -> UsageAccount:
        """
        Apply all ``charges`` atomically or none of them.

        With ``clamp`` each charge is capped at what remains instead of
        being rejected; used for settling a completion whose output size
        was unknown at preflight.
        """
        async with self._lock(account_id):
            async with self.store.lock(account_id):
                account = await self._load(account_id)
                applied: Dict[UsageKind, int] = {}
                for kind, amount in charges.items():
                    reason = self.block_reason(account, kind, amount)
                    if reason is None:
                        applied[kind] = amount
                    elif clamp and amount >= 0:
                        applied[kind] = self.remaining(account, kind) or 0
                        logger.warning(
                            f"clamped debit account={account_id} kind={kind.value} requested={amount} applied={applied[kind]}"
                        )
                    else:
                        raise QuotaExceededError(reason, context={"kind": kind.value, "amount": amount})

                updated = self._apply(account, applied)
                await self.store.set(account_id, updated.model_dump(mode="json"))
                logger.debug(f"debited account={account_id} {({k.value: v for k, v in applied.items()})}")
                return updated

    @staticmethod
    def _apply(account: UsageAccount, applied: Mapping[UsageKind, int]) -> UsageAccount:
        update = {"version": account.version + 1}
        messages = applied.get(UsageKind.AI_MESSAGE, 0)
        if messages:
            update["daily_messages"] = account.daily_messages + messages
            update["ai_messages_used"] = account.ai_messages_used + messages
        if applied.get(UsageKind.PLAN_WORDS):
            update["plan_words_used"] = account.plan_words_used + applied[UsageKind.PLAN_WORDS]
        if applied.get(UsageKind.HUMANIZER_WORDS):
            update["humanizer_words_used"] = account.humanizer_words_used + applied[UsageKind.HUMANIZER_WORDS]
        return account.model_copy(update=update)

    async def set_plan(self, account_id: str, plan: Plan, period_start: Optional[date] = None) -> UsageAccount:
        """Plan change or period rollover, driven by billing. Resets period counters."""
        async with self._lock(account_id):
            async with self.store.lock(account_id):
                account = await self._load(account_id)
                updated = account.model_copy(
                    update={
                        "plan": plan,
                        "period_start": period_start or self._today(),
                        "ai_messages_used": 0,
                        "humanizer_words_used": 0,
                        "plan_words_used": 0,
                        "version": account.version + 1,
                    }
                )
                await self.store.set(account_id, updated.model_dump(mode="json"))
                logger.info(f"account={account_id} plan={plan.value} period_start={updated.period_start}")
                return updated

    def summary(self, account: UsageAccount) -> dict:
        return {
            "accountId": account.account_id,
            "plan": account.plan.value,
            "periodStart": account.period_start.isoformat(),
            "used": {
                "dailyMessages": account.daily_messages,
                "aiMessages": account.ai_messages_used,
                "planWords": account.plan_words_used,
                "humanizerWords": account.humanizer_words_used,
            },
            "limits": {kind.value: self.limit_for(account, kind) for kind in UsageKind},
            "remaining": {kind.value: self.remaining(account, kind) for kind in UsageKind},
        }
