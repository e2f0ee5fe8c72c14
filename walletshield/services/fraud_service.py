# services/fraud_service.py
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy import case, func

from walletshield.config import settings
from walletshield.models.constant import (
    Action, AIErrorType, DetectionMethod, RiskLevel, utcnow,
)
from walletshield.models.user import User
from walletshield.models.verdict import Verdict
from walletshield.schemas.transaction import TransactionRequest
from walletshield.services.ai_service import AIAssessment, AIError, get_ai_assessor
from walletshield.services.geolocation_service import check_location_change
from walletshield.services.rule_engine import INITIATED_TYPES, evaluate_rules, load_rule_context
from walletshield.services.score_fusion import (
    analyze_agreement, determine_action, fuse, get_risk_level, MIN_USABLE_CONFIDENCE,
)

logger = logging.getLogger(__name__)

# Process-wide pool so a slow AI call never holds up rule evaluation
_ai_executor = ThreadPoolExecutor(max_workers=settings.AI_MAX_WORKERS, thread_name_prefix="ai-assessor")


def build_ai_inputs(user, context, request: TransactionRequest, counterparty_name=None, location=None):
    """Account profile and recent history sent to the AI assessor."""
    initiated = [row for row in context.history if row["type"] in INITIATED_TYPES]
    last_30_days = [row["amount"] for row in initiated
                    if row["created_at"] > context.now - timedelta(days=30)]
    transactions_24h = sum(1 for row in initiated if row["created_at"] > context.now - timedelta(days=1))
    account_age_days = 0
    if user.created_at is not None:
        account_age_days = max((context.now - user.created_at).days, 0)

    profile = {
        "account_age_days": account_age_days,
        "wallet_balance": context.wallet_balance,
        "average_amount": sum(last_30_days) / len(last_30_days) if last_30_days else 0.0,
        "transactions_24h": transactions_24h,
        "total_transactions": len(initiated),
    }
    transaction = {
        "type": request.type,
        "amount": float(request.amount),
        "counterparty_name": counterparty_name,
        "city": (location or {}).get("city"),
        "country": (location or {}).get("country"),
    }
    recent = [
        {"created_at": row["created_at"].isoformat(), "type": row["type"],
         "amount": row["amount"], "status": row["status"]}
        for row in context.history[:settings.AI_HISTORY_SIZE]
    ]
    return transaction, profile, recent


def _await_ai(future) -> object:
    try:
        return future.result(timeout=settings.AI_TIMEOUT_SECONDS)
    except FuturesTimeout:
        future.cancel()
        logger.warning(f"AI assessment timed out after {settings.AI_TIMEOUT_SECONDS}s, continuing with rules only")
        return AIError(error_type=AIErrorType.API_ERROR, message="AI assessment timed out")
    except Exception as e:
        logger.error(f"AI assessment failed: {e}")
        return AIError(error_type=AIErrorType.API_ERROR, message=str(e))


def analyze_fraud_risk(db, transaction, user_context: Optional[Dict] = None,
                       assessor=None, now=None) -> Verdict:
    """
    Score one transaction and persist the verdict.

    A malformed transaction raises pydantic.ValidationError before any
    scoring starts. Past that point it never raises: any internal failure
    produces an ALLOW verdict with detection_method "error" so a detection
    outage never blocks the wallet.
    """
    start = time.monotonic()
    request = transaction if isinstance(transaction, TransactionRequest) else TransactionRequest(**transaction)
    user_context = user_context or {}
    try:
        return _run_pipeline(db, request, user_context, assessor or get_ai_assessor(), now or utcnow(), start)
    except Exception as e:
        logger.exception(f"Fraud check failed for user {request.user_id}: {e}")
        db.rollback()
        return _record_error_verdict(db, request, str(e), start)


def _run_pipeline(db, request: TransactionRequest, user_context: Dict, assessor, now, start) -> Verdict:
    user = db.query(User).filter(User.user_id == request.user_id).first()
    if user is None:
        raise LookupError(f"User {request.user_id} not found")

    counterparty_name = user_context.get("counterparty_name")
    if request.counterparty_id and counterparty_name is None:
        counterparty = db.query(User).filter(User.user_id == request.counterparty_id).first()
        counterparty_name = counterparty.full_name if counterparty else None

    context = load_rule_context(db, user, now=now)
    if "wallet_balance" in user_context:
        context.wallet_balance = float(user_context["wallet_balance"])

    location = user_context.get("location")
    ai_transaction, profile, recent = build_ai_inputs(user, context, request, counterparty_name, location)
    ai_future = _ai_executor.submit(assessor.assess, ai_transaction, profile, recent)

    # Geo and rules run while the AI call is in flight
    geo = check_location_change(db, user.user_id, request.ip_address, location=location, now=now)
    context.geo = geo
    txn = {
        "user_id": user.user_id,
        "amount": float(request.amount),
        "type": request.type,
        "counterparty_id": request.counterparty_id,
    }
    rule_result = evaluate_rules(txn, context)

    ai_result = _await_ai(ai_future)
    ai_usable = isinstance(ai_result, AIAssessment)
    ai_score = ai_result.risk_score if ai_usable else None
    ai_confidence = ai_result.confidence if ai_usable else None

    final_score = fuse(rule_result["score"], ai_score, ai_confidence, ai_unavailable=not ai_usable)
    action = determine_action(final_score)
    risk_level = get_risk_level(final_score)
    hybrid = ai_usable and ai_confidence >= MIN_USABLE_CONFIDENCE

    logger.info("=== Fraud Detection Scores ===")
    logger.info(f"Rule-based Score: {rule_result['score']}")
    logger.info(f"Rules Triggered: {[r['rule_id'] for r in rule_result['rules_triggered']]}")
    if ai_usable:
        logger.info(f"AI Score: {ai_score} (confidence {ai_confidence})")
    else:
        logger.warning(f"AI unavailable ({ai_result.error_type.value}): {ai_result.message}")
    logger.info(f"Final Score: {final_score} -> {action.value} ({risk_level.value})")
    logger.info("=============================")

    verdict = Verdict(
        user_id=user.user_id,
        amount=request.amount,
        transaction_type=request.type,
        counterparty_id=request.counterparty_id,
        counterparty_name=counterparty_name,
        ip_address=request.ip_address,
        country=geo.get("country"),
        city=geo.get("city"),
        latitude=geo.get("latitude"),
        longitude=geo.get("longitude"),
        location_changed=geo["location_changed"],
        location_suspicious=geo["suspicious"],
        distance_km=geo["distance"],
        rules_triggered=json.dumps(rule_result["rules_triggered"]),
        rule_based_score=rule_result["score"],
        ai_risk_score=ai_score,
        ai_confidence=ai_confidence,
        ai_reasoning=ai_result.reasoning if ai_usable else None,
        ai_red_flags=json.dumps(ai_result.red_flags) if ai_usable else None,
        ai_response_time=ai_result.response_time_ms,
        ai_error=None if ai_usable else ai_result.error_type.value,
        risk_score=final_score,
        risk_level=risk_level.value,
        action_taken=action.value,
        detection_method=(DetectionMethod.HYBRID if hybrid else DetectionMethod.RULES_ONLY).value,
        execution_time_ms=int((time.monotonic() - start) * 1000),
        created_at=now,
    )
    db.add(verdict)
    db.commit()
    db.refresh(verdict)

    if final_score >= 60:
        logger.warning(f"High-risk transaction for user {user.user_id}: verdict {verdict.id}, score {final_score}, {action.value}")
    return verdict


def _record_error_verdict(db, request: TransactionRequest, message: str, start) -> Verdict:
    verdict = Verdict(
        user_id=request.user_id,
        amount=request.amount,
        transaction_type=request.type,
        counterparty_id=request.counterparty_id,
        ip_address=request.ip_address,
        rules_triggered="[]",
        rule_based_score=0,
        risk_score=0,
        risk_level=RiskLevel.UNKNOWN.value,
        action_taken=Action.ALLOW.value,
        detection_method=DetectionMethod.ERROR.value,
        error_message=message,
        execution_time_ms=int((time.monotonic() - start) * 1000),
        created_at=utcnow(),
    )
    try:
        db.add(verdict)
        db.commit()
        db.refresh(verdict)
    except Exception as e:
        logger.error(f"Could not persist error verdict: {e}")
        db.rollback()
    return verdict


def verdict_insights(verdict: Verdict) -> Dict:
    """Caller-facing summary of a verdict."""
    rules = json.loads(verdict.rules_triggered or "[]")
    insights = {
        "verdict_id": verdict.id,
        "risk_score": verdict.risk_score,
        "risk_level": verdict.risk_level,
        "action": verdict.action_taken,
        "detection_method": verdict.detection_method,
        "rule_based_score": verdict.rule_based_score,
        "rules_triggered": [r["rule_id"] for r in rules],
        "ai_risk_score": verdict.ai_risk_score,
        "ai_confidence": verdict.ai_confidence,
        "ai_reasoning": verdict.ai_reasoning,
        "ai_red_flags": json.loads(verdict.ai_red_flags) if verdict.ai_red_flags else [],
        "location_suspicious": bool(verdict.location_suspicious),
    }
    if verdict.ai_risk_score is not None and verdict.ai_confidence is not None:
        insights["agreement"] = analyze_agreement(verdict.rule_based_score, verdict.ai_risk_score, verdict.ai_confidence)
    return insights


def get_user_fraud_stats(db, user_id: int) -> Dict:
    row = db.query(
        func.count(Verdict.id),
        func.avg(Verdict.risk_score),
        func.max(Verdict.risk_score),
        func.sum(case((Verdict.action_taken == Action.BLOCK.value, 1), else_=0)),
        func.sum(case((Verdict.action_taken == Action.REVIEW.value, 1), else_=0)),
        func.sum(case((Verdict.risk_level == RiskLevel.CRITICAL.value, 1), else_=0)),
        func.sum(case((Verdict.risk_level == RiskLevel.HIGH.value, 1), else_=0)),
    ).filter(Verdict.user_id == user_id).one()
    total, average, maximum, blocked, review, critical, high = row
    return {
        "total_checks": total or 0,
        "avg_risk_score": round(float(average), 2) if average is not None else 0.0,
        "max_risk_score": maximum or 0,
        "blocked_count": blocked or 0,
        "review_count": review or 0,
        "critical_count": critical or 0,
        "high_count": high or 0,
    }


def get_system_metrics(db, hours: int = 24) -> Dict:
    since = utcnow() - timedelta(hours=hours)
    verdicts = db.query(Verdict).filter(Verdict.created_at > since).all()

    actions = {action.value: 0 for action in Action}
    levels = {}
    rule_counts = {}
    scores = []
    for verdict in verdicts:
        actions[verdict.action_taken] = actions.get(verdict.action_taken, 0) + 1
        levels[verdict.risk_level] = levels.get(verdict.risk_level, 0) + 1
        scores.append(verdict.risk_score or 0)
        for rule in json.loads(verdict.rules_triggered or "[]"):
            rule_counts[rule["rule_id"]] = rule_counts.get(rule["rule_id"], 0) + 1

    total = len(verdicts)
    flagged = actions[Action.BLOCK.value] + actions[Action.REVIEW.value]
    top_rules = sorted(rule_counts.items(), key=lambda item: item[1], reverse=True)[:10]
    return {
        "period_hours": hours,
        "total_checks": total,
        "avg_risk_score": round(sum(scores) / total, 2) if total else 0.0,
        "total_blocked": actions[Action.BLOCK.value],
        "total_review": actions[Action.REVIEW.value],
        "total_challenged": actions[Action.CHALLENGE.value],
        "total_allowed": actions[Action.ALLOW.value],
        "risk_distribution": levels,
        "top_rules": [{"rule_id": rule_id, "count": count} for rule_id, count in top_rules],
        "detection_rate": round(flagged / total * 100, 2) if total else 0.0,
    }


def get_recent_high_risk(db, limit: int = 20):
    return (
        db.query(Verdict)
        .filter(Verdict.risk_score >= 60)
        .order_by(Verdict.created_at.desc())
        .limit(limit)
        .all()
    )
