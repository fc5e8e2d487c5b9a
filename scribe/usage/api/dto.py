from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from scribe.usage.entity.account import Plan


class SetPlanDTO(BaseModel):
    """DTO for plan assignment from billing"""

    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(alias="accountId", min_length=1)
    plan: Plan
    period_start: Optional[date] = Field(None, alias="periodStart")
