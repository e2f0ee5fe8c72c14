from datetime import datetime, timezone
from enum import Enum


def utcnow():
    """Naive UTC timestamp; all stored datetimes use this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Action(str, Enum):
    ALLOW = "ALLOW"
    CHALLENGE = "CHALLENGE"
    REVIEW = "REVIEW"
    BLOCK = "BLOCK"


class RiskLevel(str, Enum):
    MINIMAL = "MINIMAL"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"


class GroundTruth(str, Enum):
    FRAUD = "fraud"
    LEGITIMATE = "legitimate"


class ConfusionClass(str, Enum):
    TP = "TP"
    FP = "FP"
    TN = "TN"
    FN = "FN"


class MoneyStatus(str, Enum):
    COMPLETED = "completed"
    HELD = "held"
    RETURNED = "returned"
    CONFISCATED = "confiscated"


class ResolutionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CONFISCATE = "confiscate"


class AppealStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TransactionType(str, Enum):
    TRANSFER_SENT = "transfer_sent"
    TRANSFER_RECEIVED = "transfer_received"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    SYSTEM_CONFISCATION = "system_confiscation"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class DetectionMethod(str, Enum):
    RULES_ONLY = "rules_only"
    HYBRID = "hybrid"
    ERROR = "error"


class AIErrorType(str, Enum):
    RATE_LIMITED = "RATE_LIMITED"
    DISABLED = "DISABLED"
    API_ERROR = "API_ERROR"


# Action bucket that counts as a positive (fraud) prediction.
POSITIVE_ACTIONS = (Action.BLOCK.value, Action.REVIEW.value)
