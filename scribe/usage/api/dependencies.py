from fastapi import Header, HTTPException, Request, status

from scribe.usage.service.ledger import UsageLedger


async def get_account_id(x_account_id: str | None = Header(default=None, alias="X-Account-Id")) -> str:
    """
    Caller identity. Authentication happens upstream of this service;
    the gateway forwards the resolved account id in ``X-Account-Id``.
    """
    if not x_account_id or not x_account_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Account-Id header")
    return x_account_id.strip()


def get_usage_ledger(request: Request) -> UsageLedger:
    """Get the usage ledger from app state."""
    if not hasattr(request.app.state, "usage_ledger"):
        raise RuntimeError("Usage ledger not initialized. Ensure main.py lifespan wires app.state.*")
    return request.app.state.usage_ledger
