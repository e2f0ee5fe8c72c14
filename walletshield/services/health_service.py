"""
Risk health regeneration.

A user's health score is a time-decayed average of their past verdict
scores: old incidents fade with an exponential half-life, so good behaviour
gradually restores a clean profile. The score is advisory only and is never
fed back into fusion.
"""
import logging
import math
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy import or_

from walletshield.config import settings
from walletshield.models.constant import GroundTruth, utcnow
from walletshield.models.verdict import Verdict

logger = logging.getLogger(__name__)

TREND_PERIODS = (7, 30, 90, 180)


@dataclass
class HealthConfig:
    half_life_days: float
    lookback_days: int
    min_weight: float
    recency_multiplier: float
    recency_count: int
    min_verdicts: int
    new_user_cap: float
    exclude_legitimate: bool = True

    @classmethod
    def from_settings(cls):
        return cls(
            half_life_days=settings.HEALTH_HALF_LIFE_DAYS,
            lookback_days=settings.HEALTH_LOOKBACK_DAYS,
            min_weight=settings.HEALTH_MIN_WEIGHT,
            recency_multiplier=settings.HEALTH_RECENCY_MULTIPLIER,
            recency_count=settings.HEALTH_RECENCY_COUNT,
            min_verdicts=settings.HEALTH_MIN_VERDICTS,
            new_user_cap=settings.HEALTH_NEW_USER_CAP,
        )


def calculate_decay_weight(age_days: float, config: HealthConfig) -> float:
    return max(math.exp(-age_days / config.half_life_days), config.min_weight)


def _scored_verdicts(db, user_id: int, since, exclude_legitimate: bool = True):
    query = db.query(Verdict.risk_score, Verdict.created_at).filter(
        Verdict.user_id == user_id,
        Verdict.created_at > since,
    )
    if exclude_legitimate:
        # Verdicts confirmed legitimate were false alarms and do not hurt health
        query = query.filter(or_(Verdict.ground_truth.is_(None),
                                 Verdict.ground_truth != GroundTruth.LEGITIMATE.value))
    return query.order_by(Verdict.created_at.desc()).all()


def calculate_time_weighted_health_score(db, user_id: int, config: Optional[HealthConfig] = None, now=None) -> Dict:
    config = config or HealthConfig.from_settings()
    now = now or utcnow()
    rows = _scored_verdicts(db, user_id, now - timedelta(days=config.lookback_days), config.exclude_legitimate)

    if not rows:
        return {
            "health_score": 0,
            "transaction_count": 0,
            "method": "none",
            "message": "No transaction history",
        }

    scores = np.array([row.risk_score or 0 for row in rows], dtype=float)
    simple_average = float(np.mean(scores))

    if len(rows) < config.min_verdicts:
        return {
            "health_score": round(min(simple_average, config.new_user_cap), 2),
            "transaction_count": len(rows),
            "simple_average": round(simple_average, 2),
            "method": "new_user_protection",
            "message": f"Score capped at {config.new_user_cap:g} until {config.min_verdicts} transactions",
        }

    ages = np.array([(now - row.created_at).total_seconds() / 86400 for row in rows])
    weights = np.maximum(np.exp(-ages / config.half_life_days), config.min_weight)
    # rows are newest first
    weights[:config.recency_count] *= config.recency_multiplier
    health_score = float(np.average(scores, weights=weights))

    newest, oldest = rows[0].created_at, rows[-1].created_at
    return {
        "health_score": round(health_score, 2),
        "transaction_count": len(rows),
        "simple_average": round(simple_average, 2),
        "improvement": round(simple_average - health_score, 2),
        "date_range": {
            "oldest": oldest.isoformat(),
            "newest": newest.isoformat(),
            "span_days": round((newest - oldest).total_seconds() / 86400),
        },
        "method": "time_weighted_decay",
        "config": asdict(config),
    }


def get_health_recovery_estimate(db, user_id: int, target_score: Optional[float] = None,
                                 config: Optional[HealthConfig] = None, now=None) -> Dict:
    config = config or HealthConfig.from_settings()
    target_score = settings.HEALTH_RECOVERY_TARGET if target_score is None else target_score
    current = calculate_time_weighted_health_score(db, user_id, config, now)["health_score"]

    if current <= target_score:
        return {
            "current_score": current,
            "target_score": target_score,
            "already_healthy": True,
            "estimated_days": 0,
            "estimated_weeks": 0,
            "message": "Health score is already at or below the target",
        }

    decay_rate = math.log(2) / config.half_life_days
    days = math.log(current / target_score) / decay_rate
    return {
        "current_score": current,
        "target_score": target_score,
        "already_healthy": False,
        "estimated_days": math.ceil(days),
        "estimated_weeks": math.ceil(days / 7),
        "message": f"Continue good behavior for approximately {math.ceil(days)} days",
    }


def is_health_improving(trend: List[Dict]) -> bool:
    """Improving when the shortest window scores lower than the longest."""
    scores = [period["average_score"] for period in trend if period["transaction_count"] > 0]
    if len(scores) < 2:
        return False
    return scores[0] < scores[-1]


def get_health_score_trend(db, user_id: int, now=None) -> Dict:
    now = now or utcnow()
    trend = []
    for days in TREND_PERIODS:
        rows = _scored_verdicts(db, user_id, now - timedelta(days=days))
        average = float(np.mean([row.risk_score or 0 for row in rows])) if rows else 0.0
        trend.append({
            "period_days": days,
            "average_score": round(average, 2),
            "transaction_count": len(rows),
        })
    return {"trend": trend, "improving": is_health_improving(trend)}
