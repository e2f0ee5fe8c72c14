# models/user.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, DECIMAL
from sqlalchemy.orm import relationship
from walletshield.models.constant import utcnow
from walletshield.database import Base

class User(Base):
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(40), unique=True, index=True, nullable=False)
    full_name = Column(String(100))
    wallet_balance = Column(DECIMAL(12, 2), nullable=False, default=0)
    is_admin = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)

    transactions = relationship(
        "WalletTransaction",
        back_populates="user",
        foreign_keys="WalletTransaction.user_id",
    )
    verdicts = relationship("Verdict", back_populates="user", foreign_keys="Verdict.user_id")
