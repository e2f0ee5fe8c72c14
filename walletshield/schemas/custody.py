from datetime import datetime
from pydantic import BaseModel
from typing import Optional

class CustodyActionInput(BaseModel):
    reason: Optional[str] = None

class HeldTransferResponse(BaseModel):
    id: int
    user_id: int
    counterparty_id: Optional[int] = None
    amount: float
    status: str
    money_status: Optional[str] = None
    held_until: Optional[datetime] = None
    resolution_action: Optional[str] = None
    resolution_reason: Optional[str] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    verdict_id: Optional[int] = None

    class Config:
        from_attributes = True
