"""Deterministic rule layer of the fraud pipeline.

Every rule is a small predicate over the incoming transaction and a
pre-loaded ``RuleContext``. A rule that fires contributes its fixed weight;
the score is the capped sum. The only I/O is ``load_rule_context``, which
reads the actor's recent ledger once before any rule runs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import func

from walletshield.config import settings
from walletshield.models.constant import TransactionType, TransactionStatus, utcnow

logger = logging.getLogger(__name__)

MAX_RULE_SCORE = 100
HISTORY_DAYS = 90

ROUND_AMOUNTS = (1000, 5000, 10000, 20000, 50000, 100000)
# Types the actor initiates; received transfers and seizures are not the actor's activity
INITIATED_TYPES = (
    TransactionType.TRANSFER_SENT.value,
    TransactionType.DEPOSIT.value,
    TransactionType.WITHDRAWAL.value,
)


@dataclass
class RuleContext:
    now: datetime
    account_created_at: Optional[datetime]
    wallet_balance: float
    history: List[Dict] = field(default_factory=list)  # newest first
    last_activity_at: Optional[datetime] = None
    geo: Optional[Dict] = None


@dataclass(frozen=True)
class Rule:
    rule_id: str
    name: str
    category: str
    severity: str
    weight: int
    check: Callable[[Dict, RuleContext], Optional[str]]


def _initiated(ctx: RuleContext, seconds: Optional[float] = None) -> List[Dict]:
    rows = [row for row in ctx.history if row["type"] in INITIATED_TYPES]
    if seconds is None:
        return rows
    since = ctx.now - timedelta(seconds=seconds)
    return [row for row in rows if row["created_at"] > since]


def _sent(ctx: RuleContext, seconds: float) -> List[Dict]:
    since = ctx.now - timedelta(seconds=seconds)
    return [row for row in ctx.history
            if row["type"] == TransactionType.TRANSFER_SENT.value and row["created_at"] > since]


MINUTE = 60
HOUR = 60 * 60
DAY = 24 * HOUR


# --- Velocity ---------------------------------------------------------------

def high_frequency(txn, ctx):
    count = len(_initiated(ctx, MINUTE)) + 1
    if count >= 5:
        return f"{count} transactions in last minute"


def rapid_sequential(txn, ctx):
    previous = _initiated(ctx)
    if previous:
        gap = (ctx.now - previous[0]["created_at"]).total_seconds()
        if gap < 5:
            return f"Transaction {gap:.1f}s after previous"


def excessive_daily(txn, ctx):
    count = len(_initiated(ctx, DAY)) + 1
    if count >= 20:
        return f"{count} transactions in last 24 hours"


def velocity_spike(txn, ctx):
    last_hour = len(_initiated(ctx, HOUR)) + 1
    hourly_average = (len(_initiated(ctx, DAY)) + 1) / 24.0
    if last_hour >= 3 and last_hour > hourly_average * 5:
        return f"Current hour: {last_hour} txns vs avg {hourly_average:.1f}"


# --- Amount -----------------------------------------------------------------

def large_single(txn, ctx):
    if txn["amount"] > 50000:
        return f"Transaction amount {txn['amount']:.2f} exceeds threshold"


def structuring(txn, ctx):
    if 9000 <= txn["amount"] < 10000:
        return f"Transaction {txn['amount']:.2f} just below 10,000 reporting threshold"


def round_number(txn, ctx):
    if txn["amount"] in ROUND_AMOUNTS:
        return f"Transaction is exactly {txn['amount']:.2f}"


def micro_deposit(txn, ctx):
    if txn["amount"] < 1 and txn["type"] == TransactionType.DEPOSIT.value:
        return f"Very small deposit {txn['amount']:.2f} (card testing)"


def repetitive_amount(txn, ctx):
    count = sum(1 for row in _initiated(ctx, DAY) if row["amount"] == txn["amount"])
    if count >= 3:
        return f"Same amount {txn['amount']:.2f} used {count} times in 24h"


def amount_deviation(txn, ctx):
    amounts = [row["amount"] for row in _initiated(ctx, 30 * DAY)]
    if amounts:
        average = sum(amounts) / len(amounts)
        if average > 0 and txn["amount"] > average * 10:
            return f"{txn['amount']:.2f} is {txn['amount'] / average:.1f}x user's average"


def daily_limit(txn, ctx):
    completed = sum(row["amount"] for row in _initiated(ctx, DAY)
                    if row["status"] == TransactionStatus.COMPLETED.value)
    total = completed + txn["amount"]
    if total > 100000:
        return f"Daily total {total:.2f} exceeds 100,000 limit"


def unusual_decimals(txn, ctx):
    cents = int(round(txn["amount"] * 100)) % 100
    if txn["amount"] > 1000 and cents not in (0, 25, 50, 75):
        return f"Amount {txn['amount']:.2f} has unusual decimal precision"


# --- Behavioral -------------------------------------------------------------

def new_account_high_value(txn, ctx):
    if ctx.account_created_at is None:
        return None
    age = ctx.now - ctx.account_created_at
    if age < timedelta(days=7) and not _initiated(ctx) and txn["amount"] > 5000:
        return f"Account {age.total_seconds() / 3600:.1f}h old making first transaction of {txn['amount']:.2f}"


def dormant_reactivation(txn, ctx):
    if ctx.last_activity_at is not None:
        days = (ctx.now - ctx.last_activity_at).total_seconds() / DAY
        if days > 30:
            return f"Account inactive for {days:.0f} days"


def unusual_hour(txn, ctx):
    if 2 <= ctx.now.hour < 6:
        return f"Transaction at {ctx.now:%H:%M} (unusual hours)"


def circular_transfer(txn, ctx):
    counterparty = txn.get("counterparty_id")
    if not counterparty:
        return None
    since = ctx.now - timedelta(seconds=HOUR)
    received = [row for row in ctx.history
                if row["type"] == TransactionType.TRANSFER_RECEIVED.value
                and row["counterparty_id"] == counterparty and row["created_at"] > since]
    if received:
        return "Detected potential circular money movement"


def multiple_recipients(txn, ctx):
    recipients = {row["counterparty_id"] for row in _sent(ctx, HOUR) if row["counterparty_id"]}
    if txn.get("counterparty_id"):
        recipients.add(txn["counterparty_id"])
    if len(recipients) >= 5:
        return f"Sent money to {len(recipients)} different recipients in 1 hour"


def withdrawal_after_deposit(txn, ctx):
    if txn["type"] != TransactionType.TRANSFER_SENT.value:
        return None
    deposits = [row for row in _initiated(ctx, 30 * MINUTE)
                if row["type"] == TransactionType.DEPOSIT.value
                and row["status"] == TransactionStatus.COMPLETED.value]
    if deposits and abs(deposits[0]["amount"] - txn["amount"]) < 100:
        return f"Sending {txn['amount']:.2f} shortly after depositing {deposits[0]['amount']:.2f}"


def weekend_activity(txn, ctx):
    if ctx.now.weekday() >= 5:
        count = len(_initiated(ctx, DAY)) + 1
        if count >= 10:
            return f"{count} transactions on weekend (unusual)"


def repetitive_recipient(txn, ctx):
    counterparty = txn.get("counterparty_id")
    if not counterparty:
        return None
    count = sum(1 for row in _sent(ctx, DAY) if row["counterparty_id"] == counterparty) + 1
    if count >= 5:
        return f"{count} transactions to same recipient in 24h"


def balance_draining(txn, ctx):
    if ctx.wallet_balance > 0 and txn["amount"] > ctx.wallet_balance * 0.95:
        return f"Attempting to move {txn['amount'] / ctx.wallet_balance * 100:.0f}% of balance"


# --- Geo --------------------------------------------------------------------

def impossible_travel(txn, ctx):
    if ctx.geo and ctx.geo.get("suspicious"):
        return ctx.geo.get("message") or "Impossible travel detected"


RULES = [
    Rule("VEL-001", "High Frequency Transactions", "velocity", "HIGH", 25, high_frequency),
    Rule("VEL-002", "Rapid Sequential Transactions", "velocity", "MEDIUM", 20, rapid_sequential),
    Rule("VEL-003", "Excessive Daily Transactions", "velocity", "MEDIUM", 15, excessive_daily),
    Rule("VEL-004", "Transaction Velocity Spike", "velocity", "HIGH", 20, velocity_spike),
    Rule("AMT-001", "Large Single Transaction", "amount", "HIGH", 30, large_single),
    Rule("AMT-002", "Structuring Pattern (Just Below Threshold)", "amount", "HIGH", 20, structuring),
    Rule("AMT-003", "Exact Round Number Transaction", "amount", "MEDIUM", 10, round_number),
    Rule("AMT-004", "Micro-Transaction Testing", "amount", "MEDIUM", 15, micro_deposit),
    Rule("AMT-005", "Repetitive Amount Pattern", "amount", "MEDIUM", 15, repetitive_amount),
    Rule("AMT-006", "Amount Deviation from User Pattern", "amount", "MEDIUM", 20, amount_deviation),
    Rule("AMT-007", "Daily Transaction Limit Exceeded", "amount", "HIGH", 25, daily_limit),
    Rule("AMT-008", "Unusual Decimal Precision", "amount", "LOW", 5, unusual_decimals),
    Rule("BEH-001", "New Account High-Value Transaction", "behavioral", "HIGH", 30, new_account_high_value),
    Rule("BEH-003", "Dormant Account Reactivation", "behavioral", "MEDIUM", 15, dormant_reactivation),
    Rule("BEH-004", "Unusual Transaction Time", "behavioral", "LOW", 10, unusual_hour),
    Rule("BEH-005", "Circular Transfer Pattern", "behavioral", "HIGH", 25, circular_transfer),
    Rule("BEH-006", "Multiple Recipients Pattern", "behavioral", "HIGH", 20, multiple_recipients),
    Rule("BEH-007", "Rapid Withdrawal After Deposit", "behavioral", "MEDIUM", 15, withdrawal_after_deposit),
    Rule("BEH-008", "High Weekend Activity", "behavioral", "LOW", 8, weekend_activity),
    Rule("BEH-009", "Repetitive Recipient Pattern", "behavioral", "MEDIUM", 12, repetitive_recipient),
    Rule("BEH-010", "Account Balance Draining", "behavioral", "MEDIUM", 15, balance_draining),
    Rule("GEO-001", "Impossible Travel", "geo", "HIGH", 25, impossible_travel),
]


def active_rules() -> List[Rule]:
    if settings.GEO_VELOCITY_RULE_ENABLED:
        return list(RULES)
    return [rule for rule in RULES if rule.category != "geo"]


def load_rule_context(db, user, now=None, geo=None) -> RuleContext:
    """Read the actor's ledger for the last 90 days in one query."""
    from walletshield.models.transaction import WalletTransaction

    now = now or utcnow()
    rows = (
        db.query(WalletTransaction)
        .filter(
            WalletTransaction.user_id == user.user_id,
            WalletTransaction.created_at > now - timedelta(days=HISTORY_DAYS),
            WalletTransaction.created_at <= now,
        )
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .all()
    )
    history = [
        {
            "type": row.type,
            "amount": float(row.amount),
            "status": row.status,
            "counterparty_id": row.counterparty_id,
            "created_at": row.created_at,
        }
        for row in rows
    ]
    last_activity_at = (
        db.query(func.max(WalletTransaction.created_at))
        .filter(
            WalletTransaction.user_id == user.user_id,
            WalletTransaction.type.in_(INITIATED_TYPES),
            WalletTransaction.created_at <= now,
        )
        .scalar()
    )
    return RuleContext(
        now=now,
        account_created_at=user.created_at,
        wallet_balance=float(user.wallet_balance or 0),
        history=history,
        last_activity_at=last_activity_at,
        geo=geo,
    )


def evaluate_rules(transaction: Dict, context: RuleContext, rules: Optional[List[Rule]] = None) -> Dict:
    """
    Run every rule against the transaction. A rule that raises is logged and
    treated as not fired.
    """
    rules = rules if rules is not None else active_rules()
    triggered = []
    for rule in rules:
        try:
            description = rule.check(transaction, context)
        except Exception as e:
            logger.error(f"Rule {rule.rule_id} failed and was skipped: {e}")
            continue
        if description:
            triggered.append({
                "rule_id": rule.rule_id,
                "name": rule.name,
                "category": rule.category,
                "severity": rule.severity,
                "weight": rule.weight,
                "description": description,
            })

    score = min(sum(rule["weight"] for rule in triggered), MAX_RULE_SCORE)
    logger.info(f"Rule engine: score={score}, triggered={[r['rule_id'] for r in triggered]}")
    return {
        "score": score,
        "rules_triggered": triggered,
        "breakdown": get_rule_breakdown(triggered),
        "summary": get_risk_summary(score),
    }


def get_rule_breakdown(triggered: List[Dict]) -> Dict:
    breakdown = {category: {"count": 0, "score": 0, "rules": []}
                 for category in ("velocity", "amount", "behavioral", "geo")}
    for rule in triggered:
        bucket = breakdown[rule["category"]]
        bucket["count"] += 1
        bucket["score"] += rule["weight"]
        bucket["rules"].append(rule["rule_id"])
    return breakdown


def get_risk_summary(score: float) -> str:
    if score >= 80:
        return "Critical risk - multiple strong fraud indicators"
    if score >= 60:
        return "High risk - transaction requires manual review"
    if score >= 40:
        return "Medium risk - additional verification recommended"
    if score >= 20:
        return "Low risk - minor anomalies detected"
    return "Minimal risk - no significant fraud indicators"
