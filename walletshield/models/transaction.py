# models/transaction.py
from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Text, DECIMAL
from sqlalchemy.orm import relationship
from walletshield.models.constant import utcnow
from walletshield.database import Base

class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False, index=True)

    # Core transaction fields
    type = Column(String(30), nullable=False)  # transfer_sent, transfer_received, deposit, system_confiscation
    amount = Column(DECIMAL(12, 2), nullable=False)
    status = Column(String(20), default="completed")  # completed, pending, cancelled
    description = Column(String(255))

    # Counterparty: recipient for transfer_sent, sender for transfer_received
    counterparty_id = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    linked_transaction_id = Column(Integer, ForeignKey("wallet_transactions.id"), nullable=True)  # sender row for transfer_received

    # Where the request came from
    ip_address = Column(String(45))
    country = Column(String(50))
    city = Column(String(50))
    latitude = Column(Float)
    longitude = Column(Float)

    # Custody fields (only meaningful on the sender's transfer_sent row)
    money_status = Column(String(20))  # completed, held, returned, confiscated
    held_until = Column(DateTime)
    resolution_action = Column(String(20))  # approve, reject, confiscate
    resolution_reason = Column(Text)
    resolved_by = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    resolved_at = Column(DateTime)
    verdict_id = Column(Integer, ForeignKey("fraud_verdicts.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User", back_populates="transactions", foreign_keys=[user_id])
    counterparty = relationship("User", foreign_keys=[counterparty_id])
    verdict = relationship("Verdict", foreign_keys=[verdict_id])
