# models/verdict.py
from sqlalchemy import Column, Integer, String, Text, Boolean, Float, DateTime, ForeignKey, DECIMAL
from sqlalchemy.orm import relationship
from walletshield.database import Base
from walletshield.models.constant import utcnow

class Verdict(Base):
    """One row per fraud check. Scores are immutable; ground truth is appended later."""

    __tablename__ = "fraud_verdicts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False, index=True)

    # Transaction snapshot
    amount = Column(DECIMAL(12, 2), nullable=False)
    transaction_type = Column(String(30), nullable=False)
    counterparty_id = Column(Integer, nullable=True)
    counterparty_name = Column(String(100))

    # Location snapshot
    ip_address = Column(String(45))
    country = Column(String(50))
    city = Column(String(50))
    latitude = Column(Float)
    longitude = Column(Float)
    location_changed = Column(Boolean, default=False)
    location_suspicious = Column(Boolean, default=False)
    distance_km = Column(Float)

    # Rule engine
    rules_triggered = Column(Text)  # JSON list of {id, name, severity, weight}
    rule_based_score = Column(Integer, default=0)

    # AI assessor
    ai_risk_score = Column(Integer)
    ai_confidence = Column(Integer)
    ai_reasoning = Column(Text)
    ai_red_flags = Column(Text)  # JSON list of strings
    ai_response_time = Column(Integer)  # milliseconds
    ai_error = Column(String(20))

    # Final outcome
    risk_score = Column(Integer, nullable=False, default=0)
    risk_level = Column(String(10), nullable=False)
    action_taken = Column(String(10), nullable=False)
    detection_method = Column(String(20), nullable=False)
    execution_time_ms = Column(Integer)
    error_message = Column(Text)

    created_at = Column(DateTime, default=utcnow, index=True)

    # Ground truth annotation
    ground_truth = Column(String(12))  # fraud, legitimate
    verified_at = Column(DateTime)
    verified_by = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    auto_approved = Column(Boolean, default=False)
    is_true_positive = Column(Boolean, default=False)
    is_false_positive = Column(Boolean, default=False)
    is_true_negative = Column(Boolean, default=False)
    is_false_negative = Column(Boolean, default=False)
    revocation_reason = Column(Text)
    revoked_at = Column(DateTime)
    revoked_by = Column(Integer, ForeignKey("users.user_id"), nullable=True)

    user = relationship("User", back_populates="verdicts", foreign_keys=[user_id])
    appeal = relationship("Appeal", back_populates="verdict", uselist=False)
