import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError

from walletshield.config import settings
from walletshield.models.constant import utcnow
from walletshield.models.rate_limit import RateLimitCounter

logger = logging.getLogger(__name__)


def window_start(window: str, now: datetime) -> datetime:
    if window == "minute":
        return now.replace(second=0, microsecond=0)
    if window == "day":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    raise ValueError(f"Unknown rate limit window: {window}")


class RateLimiter:
    """
    Fixed-window counters kept in the shared database so every worker sees
    the same budget. A call is admitted only if every window has room, and
    all windows are incremented in one transaction.
    """

    def __init__(self, session_factory: Callable, key: str = "ai",
                 per_minute: Optional[int] = None, per_day: Optional[int] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.key = key
        self.limits = {
            "minute": settings.AI_RATE_LIMIT_PER_MINUTE if per_minute is None else per_minute,
            "day": settings.AI_RATE_LIMIT_PER_DAY if per_day is None else per_day,
        }
        self.clock = clock

    def _ensure_rows(self, db, now):
        for window in self.limits:
            exists = db.query(RateLimitCounter.id).filter(
                RateLimitCounter.key == self.key, RateLimitCounter.window == window
            ).first()
            if exists:
                continue
            try:
                db.add(RateLimitCounter(key=self.key, window=window,
                                        window_start=window_start(window, now), count=0))
                db.commit()
            except IntegrityError:
                # Another worker created it first
                db.rollback()

    def try_acquire(self) -> bool:
        now = self.clock()
        db = self.session_factory()
        try:
            self._ensure_rows(db, now)
            for window, limit in self.limits.items():
                start = window_start(window, now)
                base = db.query(RateLimitCounter).filter(
                    RateLimitCounter.key == self.key, RateLimitCounter.window == window
                )
                base.filter(RateLimitCounter.window_start < start).update(
                    {RateLimitCounter.window_start: start, RateLimitCounter.count: 0},
                    synchronize_session=False,
                )
                updated = base.filter(
                    RateLimitCounter.window_start == start,
                    RateLimitCounter.count < limit,
                ).update({RateLimitCounter.count: RateLimitCounter.count + 1}, synchronize_session=False)
                if updated == 0:
                    db.rollback()
                    logger.warning(f"Rate limit reached for '{self.key}' ({limit}/{window})")
                    return False
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def status(self) -> Dict:
        now = self.clock()
        db = self.session_factory()
        try:
            result = {}
            for window, limit in self.limits.items():
                row = db.query(RateLimitCounter).filter(
                    RateLimitCounter.key == self.key, RateLimitCounter.window == window
                ).first()
                used = row.count if row is not None and row.window_start == window_start(window, now) else 0
                result[window] = {"limit": limit, "used": used, "remaining": max(limit - used, 0)}
            return result
        finally:
            db.close()
