from datetime import datetime
from pydantic import BaseModel
from typing import Optional

class AppealInput(BaseModel):
    verdict_id: int
    reason: str

class AppealResolveInput(BaseModel):
    status: str  # approved, rejected
    admin_notes: Optional[str] = None

class AppealResponse(BaseModel):
    id: int
    verdict_id: int
    user_id: int
    reason: str
    status: str
    admin_notes: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None

    class Config:
        from_attributes = True
