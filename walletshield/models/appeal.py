from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from walletshield.database import Base
from walletshield.models.constant import utcnow

class Appeal(Base):
    __tablename__ = "fraud_appeals"

    id = Column(Integer, primary_key=True, index=True)
    verdict_id = Column(Integer, ForeignKey("fraud_verdicts.id"), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    status = Column(String(10), nullable=False, default="pending")  # pending, approved, rejected
    admin_notes = Column(Text)

    created_at = Column(DateTime, default=utcnow)
    resolved_at = Column(DateTime)
    resolved_by = Column(Integer, ForeignKey("users.user_id"), nullable=True)

    verdict = relationship("Verdict", back_populates="appeal")
