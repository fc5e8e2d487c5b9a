# scribe/usage/api/route.py
from fastapi import APIRouter, Depends

from scribe.core.dto import BaseResponse
from scribe.core.logger import get_logger
from scribe.usage.api.dependencies import get_account_id, get_usage_ledger
from scribe.usage.api.dto import SetPlanDTO
from scribe.usage.service.ledger import UsageLedger

usage_router = APIRouter(prefix="/usage", tags=["Usage"])
logger = get_logger("UsageRouter")


@usage_router.get("", response_model=BaseResponse)
async def get_usage(account_id: str = Depends(get_account_id), ledger: UsageLedger = Depends(get_usage_ledger)):
    """Counters, limits and remaining allowance for the calling account."""
    account = await ledger.get_account(account_id)
    return BaseResponse(status=True, message="Usage fetched successfully", data=ledger.summary(account))


@usage_router.put("/plan", response_model=BaseResponse)
async def set_plan(body: SetPlanDTO, ledger: UsageLedger = Depends(get_usage_ledger)):
    """Plan change or period rollover, called by billing. Resets period counters."""
    account = await ledger.set_plan(body.account_id, body.plan, body.period_start)
    logger.info(f"plan updated account={body.account_id} plan={body.plan.value}")
    return BaseResponse(status=True, message="Plan updated successfully", data=ledger.summary(account))
