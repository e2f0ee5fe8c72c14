from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from walletshield.database import Base

class RateLimitCounter(Base):
    """Fixed-window request counter shared by every worker process."""

    __tablename__ = "rate_limit_counters"
    __table_args__ = (UniqueConstraint("key", "window", name="uq_rate_limit_key_window"),)

    id = Column(Integer, primary_key=True)
    key = Column(String(50), nullable=False)
    window = Column(String(10), nullable=False)  # minute, day
    window_start = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)
