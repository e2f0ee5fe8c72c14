import json
from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any

class FraudCheckInput(BaseModel):
    amount: float = Field(gt=0, allow_inf_nan=False)
    type: str = "transfer_sent"
    counterparty_id: Optional[int] = None

class VerdictResponse(BaseModel):
    id: Optional[int] = None
    user_id: int
    amount: float
    transaction_type: str
    counterparty_id: Optional[int] = None
    counterparty_name: Optional[str] = None
    ip_address: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    location_changed: Optional[bool] = None
    location_suspicious: Optional[bool] = None
    distance_km: Optional[float] = None
    rules_triggered: List[Any] = []
    rule_based_score: Optional[int] = None
    ai_risk_score: Optional[int] = None
    ai_confidence: Optional[int] = None
    ai_reasoning: Optional[str] = None
    ai_red_flags: List[str] = []
    risk_score: int
    risk_level: str
    action_taken: str
    detection_method: str
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    ground_truth: Optional[str] = None
    verified_at: Optional[datetime] = None
    auto_approved: Optional[bool] = None
    revocation_reason: Optional[str] = None

    @field_validator("rules_triggered", "ai_red_flags", mode="before")
    @classmethod
    def parse_json_list(cls, value):
        # Stored as JSON text
        if value is None:
            return []
        if isinstance(value, str):
            return json.loads(value)
        return value

    class Config:
        from_attributes = True

class VerifyInput(BaseModel):
    ground_truth: str

class RevokeInput(BaseModel):
    new_ground_truth: str
    reason: str

class AutoApprovalResponse(BaseModel):
    success: bool
    count: int
    verdict_ids: List[int]
    released_transfer_ids: List[int]
    failed_verdict_ids: List[int]
