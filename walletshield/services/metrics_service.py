"""Confusion-matrix evaluation of the detector against verified ground truth."""
import csv
import io
import logging
import math
from typing import Dict, List

from sqlalchemy import case, func

from walletshield.models.constant import Action, GroundTruth
from walletshield.models.verdict import Verdict

logger = logging.getLogger(__name__)

THRESHOLDS = (20, 30, 40, 50, 60, 70, 80, 90)

EXPORT_COLUMNS = [
    "id", "user_id", "amount", "transaction_type", "rule_based_score", "ai_risk_score", "ai_confidence",
    "risk_score", "action_taken", "ground_truth", "is_true_positive", "is_false_positive",
    "is_true_negative", "is_false_negative", "created_at", "verified_at",
]


def safe_divide(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _flag_sum(column):
    return func.sum(case((column.is_(True), 1), else_=0))


def get_confusion_matrix(db) -> Dict[str, int]:
    tp, fp, tn, fn = db.query(
        _flag_sum(Verdict.is_true_positive),
        _flag_sum(Verdict.is_false_positive),
        _flag_sum(Verdict.is_true_negative),
        _flag_sum(Verdict.is_false_negative),
    ).filter(Verdict.ground_truth.isnot(None)).one()
    return {"tp": tp or 0, "fp": fp or 0, "tn": tn or 0, "fn": fn or 0}


def calculate_metrics(matrix: Dict[str, int]) -> Dict[str, float]:
    """Raw ratios in [0, 1]. Every ratio with a zero denominator is 0."""
    tp, fp, tn, fn = matrix["tp"], matrix["fp"], matrix["tn"], matrix["fn"]
    total = tp + fp + tn + fn
    precision = safe_divide(tp, tp + fp)
    recall = safe_divide(tp, tp + fn)
    mcc_denominator = math.sqrt((tp + fp) * (tp + fn) * (tn + fp) * (tn + fn))
    return {
        "precision": precision,
        "recall": recall,
        "specificity": safe_divide(tn, tn + fp),
        "accuracy": safe_divide(tp + tn, total),
        "f1_score": safe_divide(2 * precision * recall, precision + recall),
        "false_positive_rate": safe_divide(fp, fp + tn),
        "false_negative_rate": safe_divide(fn, fn + tp),
        "negative_predictive_value": safe_divide(tn, tn + fn),
        "mcc": safe_divide(tp * tn - fp * fn, mcc_denominator),
    }


def get_statistics(db) -> Dict:
    total = db.query(func.count(Verdict.id)).scalar() or 0
    verified = db.query(func.count(Verdict.id)).filter(Verdict.ground_truth.isnot(None)).scalar() or 0
    actual_fraud = db.query(func.count(Verdict.id)).filter(
        Verdict.ground_truth == GroundTruth.FRAUD.value).scalar() or 0
    avg_confidence, avg_score = db.query(
        func.avg(Verdict.ai_confidence), func.avg(Verdict.risk_score)
    ).filter(Verdict.ground_truth.isnot(None)).one()
    return {
        "total_transactions": total,
        "verified_transactions": verified,
        "unverified_transactions": total - verified,
        "actual_fraud": actual_fraud,
        "actual_legitimate": verified - actual_fraud,
        "avg_ai_confidence": round(float(avg_confidence), 2) if avg_confidence is not None else 0.0,
        "avg_risk_score": round(float(avg_score), 2) if avg_score is not None else 0.0,
        "verification_rate": round(safe_divide(verified, total) * 100, 2),
    }


def get_action_distribution(db) -> Dict[str, int]:
    rows = (
        db.query(Verdict.action_taken, func.count(Verdict.id))
        .filter(Verdict.ground_truth.isnot(None))
        .group_by(Verdict.action_taken)
        .all()
    )
    distribution = {action.value: 0 for action in Action}
    distribution.update({action: count for action, count in rows})
    return distribution


def get_academic_metrics(db) -> Dict:
    matrix = get_confusion_matrix(db)
    raw = calculate_metrics(matrix)
    return {
        "confusion_matrix": {
            "true_positives": matrix["tp"],
            "false_positives": matrix["fp"],
            "true_negatives": matrix["tn"],
            "false_negatives": matrix["fn"],
        },
        "metrics": {name: round(value * 100, 2) for name, value in raw.items() if name != "mcc"},
        "mcc": round(raw["mcc"], 4),
        "raw_metrics": {name: round(value, 4) for name, value in raw.items()},
        "statistics": get_statistics(db),
        "action_distribution": get_action_distribution(db),
    }


def _period_key(verified_at, period: str) -> str:
    if period == "week":
        year, week, _ = verified_at.isocalendar()
        return f"{year}-W{week:02d}"
    return verified_at.strftime("%Y-%m-%d")


def get_metrics_history(db, period: str = "day") -> List[Dict]:
    """Confusion counts and accuracy per day or ISO week of verification."""
    if period not in ("day", "week"):
        period = "day"
    verdicts = (
        db.query(Verdict)
        .filter(Verdict.ground_truth.isnot(None), Verdict.verified_at.isnot(None))
        .order_by(Verdict.verified_at)
        .all()
    )
    buckets = {}
    for verdict in verdicts:
        key = _period_key(verdict.verified_at, period)
        bucket = buckets.setdefault(key, {"period": key, "tp": 0, "fp": 0, "tn": 0, "fn": 0})
        bucket["tp"] += int(bool(verdict.is_true_positive))
        bucket["fp"] += int(bool(verdict.is_false_positive))
        bucket["tn"] += int(bool(verdict.is_true_negative))
        bucket["fn"] += int(bool(verdict.is_false_negative))

    history = []
    for bucket in buckets.values():
        raw = calculate_metrics(bucket)
        history.append({
            **bucket,
            "total": bucket["tp"] + bucket["fp"] + bucket["tn"] + bucket["fn"],
            "precision": round(raw["precision"] * 100, 2),
            "recall": round(raw["recall"] * 100, 2),
            "accuracy": round(raw["accuracy"] * 100, 2),
            "f1_score": round(raw["f1_score"] * 100, 2),
        })
    return history


def _error_case(verdict: Verdict) -> Dict:
    return {
        "id": verdict.id,
        "user_id": verdict.user_id,
        "amount": float(verdict.amount),
        "risk_score": verdict.risk_score,
        "rule_based_score": verdict.rule_based_score,
        "ai_risk_score": verdict.ai_risk_score,
        "ai_confidence": verdict.ai_confidence,
        "action_taken": verdict.action_taken,
        "ground_truth": verdict.ground_truth,
        "ai_reasoning": verdict.ai_reasoning,
        "created_at": verdict.created_at,
    }


def get_error_analysis(db, limit: int = 20) -> Dict:
    false_positives = (
        db.query(Verdict)
        .filter(Verdict.is_false_positive.is_(True))
        .order_by(Verdict.risk_score.desc())
        .limit(limit)
        .all()
    )
    false_negatives = (
        db.query(Verdict)
        .filter(Verdict.is_false_negative.is_(True))
        .order_by(Verdict.created_at.desc())
        .limit(limit)
        .all()
    )
    return {
        "false_positives": [_error_case(v) for v in false_positives],
        "false_negatives": [_error_case(v) for v in false_negatives],
    }


def get_threshold_analysis(db) -> List[Dict]:
    """
    What the confusion matrix would have been had scores at or above each
    threshold been treated as fraud. Plots as ROC points.
    """
    labeled = (
        db.query(Verdict.risk_score, Verdict.ground_truth)
        .filter(Verdict.ground_truth.isnot(None))
        .all()
    )
    analysis = []
    for threshold in THRESHOLDS:
        matrix = {"tp": 0, "fp": 0, "tn": 0, "fn": 0}
        for score, label in labeled:
            predicted = (score or 0) >= threshold
            actual = label == GroundTruth.FRAUD.value
            key = ("tp" if actual else "fp") if predicted else ("fn" if actual else "tn")
            matrix[key] += 1
        raw = calculate_metrics(matrix)
        analysis.append({
            "threshold": threshold,
            **matrix,
            "precision": round(raw["precision"] * 100, 2),
            "recall": round(raw["recall"] * 100, 2),
            "f1_score": round(raw["f1_score"] * 100, 2),
            "true_positive_rate": round(raw["recall"], 4),
            "false_positive_rate": round(raw["false_positive_rate"], 4),
        })
    return analysis


def export_dataset(db) -> str:
    """CSV of every labeled verdict, newest first, confusion flags as 0/1."""
    verdicts = (
        db.query(Verdict)
        .filter(Verdict.ground_truth.isnot(None))
        .order_by(Verdict.created_at.desc(), Verdict.id.desc())
        .all()
    )
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    for v in verdicts:
        writer.writerow([
            v.id, v.user_id, f"{float(v.amount):.2f}", v.transaction_type, v.rule_based_score,
            "" if v.ai_risk_score is None else v.ai_risk_score,
            "" if v.ai_confidence is None else v.ai_confidence,
            v.risk_score, v.action_taken, v.ground_truth,
            int(bool(v.is_true_positive)), int(bool(v.is_false_positive)),
            int(bool(v.is_true_negative)), int(bool(v.is_false_negative)),
            v.created_at.isoformat() if v.created_at else "",
            v.verified_at.isoformat() if v.verified_at else "",
        ])
    logger.info(f"Exported {len(verdicts)} labeled verdicts")
    return output.getvalue()
