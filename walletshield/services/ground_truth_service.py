import logging
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from walletshield.config import settings
from walletshield.exceptions import AppealError, GroundTruthError, NotFoundError, ValidationError
from walletshield.models.appeal import Appeal
from walletshield.models.constant import (
    Action, AppealStatus, ConfusionClass, GroundTruth, POSITIVE_ACTIONS, ResolutionAction, utcnow,
)
from walletshield.models.verdict import Verdict
from walletshield.services.custody_service import find_held_transfer_for_verdict, resolve_transfer

logger = logging.getLogger(__name__)


def _parse_label(label) -> GroundTruth:
    try:
        return GroundTruth(label)
    except ValueError:
        raise ValidationError(f"Ground truth must be 'fraud' or 'legitimate', got '{label}'")


def classify_confusion(action: str, label: str) -> ConfusionClass:
    """BLOCK/REVIEW count as a fraud prediction, ALLOW/CHALLENGE as legitimate."""
    predicted_fraud = action in POSITIVE_ACTIONS
    actual_fraud = _parse_label(label) == GroundTruth.FRAUD
    if predicted_fraud and actual_fraud:
        return ConfusionClass.TP
    if predicted_fraud:
        return ConfusionClass.FP
    if actual_fraud:
        return ConfusionClass.FN
    return ConfusionClass.TN


def _apply_label(verdict: Verdict, label: GroundTruth):
    confusion = classify_confusion(verdict.action_taken, label.value)
    verdict.ground_truth = label.value
    verdict.is_true_positive = confusion == ConfusionClass.TP
    verdict.is_false_positive = confusion == ConfusionClass.FP
    verdict.is_true_negative = confusion == ConfusionClass.TN
    verdict.is_false_negative = confusion == ConfusionClass.FN
    return confusion


def get_verdict(db, verdict_id: int) -> Verdict:
    verdict = db.query(Verdict).filter(Verdict.id == verdict_id).first()
    if verdict is None:
        raise NotFoundError(f"Verdict {verdict_id} not found")
    return verdict


def verify_ground_truth(db, verdict_id: int, label: str, reviewer_id: int, now=None) -> Verdict:
    """Label a verdict once. Corrections go through revoke_ground_truth."""
    label = _parse_label(label)
    verdict = get_verdict(db, verdict_id)
    if verdict.ground_truth is not None:
        raise GroundTruthError(f"Verdict {verdict_id} is already labeled '{verdict.ground_truth}'; revoke it to change")

    confusion = _apply_label(verdict, label)
    verdict.verified_at = now or utcnow()
    verdict.verified_by = reviewer_id
    verdict.auto_approved = False
    db.commit()
    db.refresh(verdict)
    logger.info(f"Verdict {verdict_id} labeled {label.value} by user {reviewer_id} ({confusion.value})")
    return verdict


def revoke_ground_truth(db, verdict_id: int, new_label: str, reason: str, admin_id: int,
                        now=None, commit: bool = True) -> Verdict:
    """Replace an existing label; the confusion flags are recomputed from the new one."""
    label = _parse_label(new_label)
    if not reason or not reason.strip():
        raise ValidationError("A revocation reason is required")
    verdict = get_verdict(db, verdict_id)
    if verdict.ground_truth is None:
        raise GroundTruthError(f"Verdict {verdict_id} has no label to revoke")

    previous = verdict.ground_truth
    now = now or utcnow()
    confusion = _apply_label(verdict, label)
    verdict.revocation_reason = reason
    verdict.revoked_at = now
    verdict.revoked_by = admin_id
    verdict.verified_at = now
    verdict.verified_by = admin_id
    verdict.auto_approved = False
    if commit:
        db.commit()
        db.refresh(verdict)
    else:
        db.flush()
    logger.info(f"Verdict {verdict_id} relabeled {previous} -> {label.value} by user {admin_id} ({confusion.value})")
    return verdict


def auto_approve_pending_reviews(db, now=None) -> Dict:
    """
    Label stale REVIEW verdicts legitimate and release their held money.
    BLOCK verdicts are never touched; eligible risk levels come from settings.
    """
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.AUTO_APPROVE_AFTER_HOURS)
    candidates = (
        db.query(Verdict)
        .filter(
            Verdict.ground_truth.is_(None),
            Verdict.action_taken == Action.REVIEW.value,
            Verdict.risk_level.in_(settings.auto_approve_levels),
            Verdict.created_at <= cutoff,
        )
        .order_by(Verdict.created_at)
        .all()
    )

    approved, released, failed = [], [], []
    for verdict in candidates:
        try:
            _apply_label(verdict, GroundTruth.LEGITIMATE)
            verdict.verified_at = now
            verdict.verified_by = None
            verdict.auto_approved = True
            held = find_held_transfer_for_verdict(db, verdict.id)
            if held is not None:
                resolve_transfer(db, held.id, ResolutionAction.APPROVE.value, None,
                                 reason="Auto-approved after review timeout", now=now, commit=False)
                released.append(held.id)
            db.commit()
            approved.append(verdict.id)
        except Exception as e:
            db.rollback()
            logger.error(f"Auto-approval failed for verdict {verdict.id}: {e}")
            failed.append(verdict.id)

    logger.info(f"Auto-approved {len(approved)} verdicts, released {len(released)} transfers")
    return {
        "success": not failed,
        "count": len(approved),
        "verdict_ids": approved,
        "released_transfer_ids": released,
        "failed_verdict_ids": failed,
    }


def get_unverified_verdicts(db, limit: int = 50) -> List[Verdict]:
    return (
        db.query(Verdict)
        .filter(Verdict.ground_truth.is_(None))
        .order_by(Verdict.created_at.desc())
        .limit(limit)
        .all()
    )


def get_verified_verdicts(db, limit: int = 50) -> List[Verdict]:
    return (
        db.query(Verdict)
        .filter(Verdict.ground_truth.isnot(None))
        .order_by(Verdict.verified_at.desc())
        .limit(limit)
        .all()
    )


# --- Appeals ----------------------------------------------------------------

def submit_appeal(db, verdict_id: int, actor_id: int, reason: str, now=None) -> Appeal:
    if not reason or not reason.strip():
        raise ValidationError("An appeal reason is required")
    verdict = get_verdict(db, verdict_id)
    if verdict.user_id != actor_id:
        raise AppealError("You can only appeal your own transactions")
    if verdict.ground_truth is None or verdict.verified_by is None:
        raise AppealError("This transaction has not been reviewed yet")
    if verdict.ground_truth != GroundTruth.FRAUD.value:
        raise AppealError("Only transactions marked as fraud can be appealed")
    if db.query(Appeal.id).filter(Appeal.verdict_id == verdict_id).first():
        raise AppealError("An appeal already exists for this transaction")

    appeal = Appeal(
        verdict_id=verdict_id,
        user_id=actor_id,
        reason=reason.strip(),
        status=AppealStatus.PENDING.value,
        created_at=now or utcnow(),
    )
    db.add(appeal)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AppealError("An appeal already exists for this transaction")
    db.refresh(appeal)
    logger.info(f"Appeal {appeal.id} submitted by user {actor_id} for verdict {verdict_id}")
    return appeal


def resolve_appeal(db, appeal_id: int, status: str, resolver_id: int,
                   notes: Optional[str] = None, now=None) -> Appeal:
    """
    Approving relabels the verdict legitimate and releases any held money in
    the same transaction. Rejecting keeps the fraud label and leaves the money
    held for an explicit return or confiscation.
    """
    try:
        status = AppealStatus(status)
    except ValueError:
        raise ValidationError("Appeal status must be 'approved' or 'rejected'")
    if status == AppealStatus.PENDING:
        raise ValidationError("Appeal status must be 'approved' or 'rejected'")

    appeal = db.query(Appeal).filter(Appeal.id == appeal_id).first()
    if appeal is None:
        raise NotFoundError(f"Appeal {appeal_id} not found")
    if appeal.status != AppealStatus.PENDING.value:
        raise AppealError(f"Appeal {appeal_id} has already been {appeal.status}")

    now = now or utcnow()
    try:
        if status == AppealStatus.APPROVED:
            revoke_ground_truth(db, appeal.verdict_id, GroundTruth.LEGITIMATE.value,
                                f"Appeal {appeal_id} approved" + (f": {notes}" if notes else ""),
                                resolver_id, now=now, commit=False)
            held = find_held_transfer_for_verdict(db, appeal.verdict_id)
            if held is not None:
                resolve_transfer(db, held.id, ResolutionAction.APPROVE.value, resolver_id,
                                 reason=f"Appeal {appeal_id} approved", now=now, commit=False)

        appeal.status = status.value
        appeal.admin_notes = notes
        appeal.resolved_at = now
        appeal.resolved_by = resolver_id
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(appeal)
    logger.info(f"Appeal {appeal_id} {status.value} by user {resolver_id}")
    return appeal


def get_pending_appeals(db) -> List[Appeal]:
    return (
        db.query(Appeal)
        .filter(Appeal.status == AppealStatus.PENDING.value)
        .order_by(Appeal.created_at)
        .all()
    )
