from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

class TransactionRequest(BaseModel):
    user_id: int
    amount: float
    type: str = "transfer_sent"
    counterparty_id: Optional[int] = None
    ip_address: Optional[str] = None

class SendMoneyInput(BaseModel):
    recipient_id: int
    amount: float = Field(gt=0, allow_inf_nan=False)
    description: Optional[str] = None
    # Note: ip_address is extracted from request headers

class TransactionResponse(BaseModel):
    id: int
    type: str
    amount: float
    status: str
    description: Optional[str] = None
    counterparty_id: Optional[int] = None
    money_status: Optional[str] = None
    held_until: Optional[datetime] = None
    resolution_action: Optional[str] = None
    verdict_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True

class TransferOutcomeResponse(BaseModel):
    success: bool
    transaction_id: int
    verdict_id: Optional[int] = None
    new_balance: float
    money_status: str
    blocked: bool
    review: bool
    can_appeal: bool
    held_until: Optional[datetime] = None
    message: str
    fraud_insights: Dict[str, Any]
    rules_triggered: List[str]
