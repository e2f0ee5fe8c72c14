from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from walletshield.database import get_db
from walletshield.exceptions import WalletShieldError
from walletshield.models.user import User
from walletshield.routers.auth import get_current_user, require_admin, to_http_error
from walletshield.schemas.appeal import AppealInput, AppealResolveInput, AppealResponse
from walletshield.schemas.transaction import TransactionRequest
from walletshield.schemas.verdict import (
    AutoApprovalResponse, FraudCheckInput, RevokeInput, VerdictResponse, VerifyInput,
)
from walletshield.services import ground_truth_service, health_service, metrics_service
from walletshield.services.fraud_service import analyze_fraud_risk, get_system_metrics, get_user_fraud_stats
from walletshield.services.geolocation_service import get_client_ip, get_user_location_history

router = APIRouter(prefix="/fraud", tags=["Fraud Detection"])
logger = logging.getLogger(__name__)

# --- Fraud check ---------------------------------------------------------------

@router.post("/check", response_model=VerdictResponse)
def check_transaction(
    payload: FraudCheckInput,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Score a transaction without moving money"""
    transaction = TransactionRequest(
        user_id=current_user.user_id,
        amount=payload.amount,
        type=payload.type,
        counterparty_id=payload.counterparty_id,
        ip_address=get_client_ip(request),
    )
    return analyze_fraud_risk(db, transaction)

# --- Ground truth ----------------------------------------------------------------

@router.get("/verdicts/unverified", response_model=List[VerdictResponse])
def unverified_verdicts(limit: int = 50, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return ground_truth_service.get_unverified_verdicts(db, limit)

@router.get("/verdicts/verified", response_model=List[VerdictResponse])
def verified_verdicts(limit: int = 50, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return ground_truth_service.get_verified_verdicts(db, limit)

@router.post("/verify/{verdict_id}", response_model=VerdictResponse)
def verify_verdict(verdict_id: int, payload: VerifyInput,
                   db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        return ground_truth_service.verify_ground_truth(db, verdict_id, payload.ground_truth, admin.user_id)
    except WalletShieldError as e:
        raise to_http_error(e)

@router.post("/verify/{verdict_id}/revoke", response_model=VerdictResponse)
def revoke_verdict(verdict_id: int, payload: RevokeInput,
                   db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        return ground_truth_service.revoke_ground_truth(
            db, verdict_id, payload.new_ground_truth, payload.reason, admin.user_id
        )
    except WalletShieldError as e:
        raise to_http_error(e)

@router.post("/auto-approve", response_model=AutoApprovalResponse)
def auto_approve(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    logger.info(f"Auto-approval sweep triggered by admin {admin.user_id}")
    return ground_truth_service.auto_approve_pending_reviews(db)

# --- Appeals ----------------------------------------------------------------------

@router.post("/appeals", response_model=AppealResponse)
def create_appeal(payload: AppealInput, db: Session = Depends(get_db),
                  current_user: User = Depends(get_current_user)):
    try:
        return ground_truth_service.submit_appeal(db, payload.verdict_id, current_user.user_id, payload.reason)
    except WalletShieldError as e:
        raise to_http_error(e)

@router.get("/appeals/pending", response_model=List[AppealResponse])
def pending_appeals(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return ground_truth_service.get_pending_appeals(db)

@router.post("/appeals/{appeal_id}/resolve", response_model=AppealResponse)
def resolve_appeal(appeal_id: int, payload: AppealResolveInput,
                   db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        return ground_truth_service.resolve_appeal(db, appeal_id, payload.status, admin.user_id, payload.admin_notes)
    except WalletShieldError as e:
        raise to_http_error(e)

# --- Academic metrics -------------------------------------------------------------

@router.get("/metrics")
def academic_metrics(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return metrics_service.get_academic_metrics(db)

@router.get("/metrics/history")
def metrics_history(period: str = "day", db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    if period not in ("day", "week"):
        raise HTTPException(status_code=400, detail="period must be 'day' or 'week'")
    return metrics_service.get_metrics_history(db, period)

@router.get("/metrics/thresholds")
def threshold_analysis(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return metrics_service.get_threshold_analysis(db)

@router.get("/metrics/errors")
def error_analysis(limit: int = 20, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return metrics_service.get_error_analysis(db, limit)

@router.get("/metrics/export")
def export_metrics(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return Response(
        content=metrics_service.export_dataset(db),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=fraud_detection_dataset.csv"},
    )

# --- Stats ------------------------------------------------------------------------

@router.get("/stats/me")
def my_stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_user_fraud_stats(db, current_user.user_id)

@router.get("/stats/system")
def system_stats(hours: int = 24, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return get_system_metrics(db, hours)

@router.get("/locations/me")
def my_locations(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_user_location_history(db, current_user.user_id)

# --- Health -----------------------------------------------------------------------

@router.get("/health/me")
def my_health(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return health_service.calculate_time_weighted_health_score(db, current_user.user_id)

@router.get("/health/me/recovery")
def my_recovery(target: Optional[float] = None, db: Session = Depends(get_db),
                current_user: User = Depends(get_current_user)):
    return health_service.get_health_recovery_estimate(db, current_user.user_id, target)

@router.get("/health/me/trend")
def my_trend(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return health_service.get_health_score_trend(db, current_user.user_id)

@router.get("/health/{user_id}")
def user_health(user_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    if not db.query(User).filter(User.user_id == user_id).first():
        raise HTTPException(status_code=404, detail="User not found")
    return health_service.calculate_time_weighted_health_score(db, user_id)
