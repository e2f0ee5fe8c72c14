"""Funds custody for wallet transfers.

A transfer either settles immediately or is held on the sender's debit until
someone resolves it. Every money movement goes through ``TRANSITIONS``; each
transition runs in one database transaction, guarded by conditional updates
so a concurrent resolver or an overdrawn balance aborts the whole unit.
"""
import logging
from collections import namedtuple
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from walletshield.config import settings
from walletshield.exceptions import (
    CustodyStateError, InsufficientFundsError, NotFoundError, ValidationError,
)
from walletshield.models.constant import (
    Action, MoneyStatus, ResolutionAction, TransactionStatus, TransactionType, utcnow,
)
from walletshield.models.transaction import WalletTransaction
from walletshield.models.user import User
from walletshield.schemas.transaction import TransactionRequest

logger = logging.getLogger(__name__)

# credit: which party receives the amount ("recipient", "sender" or None)
Transition = namedtuple("Transition", ["target", "credit", "sender_status", "recipient_status"])

SETTLE = "settle"
HOLD = "hold"

TRANSITIONS = {
    (None, SETTLE): Transition(MoneyStatus.COMPLETED.value, "recipient",
                               TransactionStatus.COMPLETED.value, TransactionStatus.COMPLETED.value),
    (None, HOLD): Transition(MoneyStatus.HELD.value, None,
                             TransactionStatus.PENDING.value, TransactionStatus.PENDING.value),
    (MoneyStatus.HELD.value, ResolutionAction.APPROVE.value): Transition(
        MoneyStatus.COMPLETED.value, "recipient",
        TransactionStatus.COMPLETED.value, TransactionStatus.COMPLETED.value),
    (MoneyStatus.HELD.value, ResolutionAction.REJECT.value): Transition(
        MoneyStatus.RETURNED.value, "sender",
        TransactionStatus.CANCELLED.value, TransactionStatus.CANCELLED.value),
    (MoneyStatus.HELD.value, ResolutionAction.CONFISCATE.value): Transition(
        MoneyStatus.CONFISCATED.value, None,
        TransactionStatus.CANCELLED.value, TransactionStatus.CANCELLED.value),
}


def hold_hours(action: str) -> Optional[int]:
    """Hours a transfer is held for the given action, None when it settles."""
    if action == Action.BLOCK.value:
        return settings.BLOCK_HOLD_HOURS
    if action == Action.REVIEW.value:
        return settings.REVIEW_HOLD_HOURS
    return None


def validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number")
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be positive")
    if value != value.quantize(Decimal("0.01")):
        raise ValidationError("Amount cannot have more than 2 decimal places")
    if value > Decimal(str(settings.MAX_TRANSFER_AMOUNT)):
        raise ValidationError(f"Amount exceeds the maximum of {settings.MAX_TRANSFER_AMOUNT:.2f}")
    return value.quantize(Decimal("0.01"))


def _debit(db, user_id: int, amount: Decimal):
    updated = (
        db.query(User)
        .filter(User.user_id == user_id, User.wallet_balance >= amount)
        .update({User.wallet_balance: User.wallet_balance - amount}, synchronize_session=False)
    )
    if updated == 0:
        raise InsufficientFundsError("Insufficient balance")


def _credit(db, user_id: int, amount: Decimal):
    updated = (
        db.query(User)
        .filter(User.user_id == user_id)
        .update({User.wallet_balance: User.wallet_balance + amount}, synchronize_session=False)
    )
    if updated == 0:
        raise NotFoundError(f"User {user_id} not found")


def open_transfer(db, sender_id: int, recipient_id: int, amount, verdict=None,
                  description: Optional[str] = None, now=None):
    """
    Debit the sender and either credit the recipient or hold the money,
    according to the verdict's action. Returns (sent_row, received_row).
    """
    now = now or utcnow()
    amount = validate_amount(amount)
    action = verdict.action_taken if verdict is not None else Action.ALLOW.value
    hours = hold_hours(action)
    transition = TRANSITIONS[(None, HOLD if hours else SETTLE)]

    try:
        _debit(db, sender_id, amount)
        if transition.credit == "recipient":
            _credit(db, recipient_id, amount)

        sent = WalletTransaction(
            user_id=sender_id,
            type=TransactionType.TRANSFER_SENT.value,
            amount=amount,
            status=transition.sender_status,
            description=description,
            counterparty_id=recipient_id,
            money_status=transition.target,
            held_until=now + timedelta(hours=hours) if hours else None,
            verdict_id=verdict.id if verdict is not None else None,
            ip_address=verdict.ip_address if verdict is not None else None,
            country=verdict.country if verdict is not None else None,
            city=verdict.city if verdict is not None else None,
            latitude=verdict.latitude if verdict is not None else None,
            longitude=verdict.longitude if verdict is not None else None,
            created_at=now,
        )
        db.add(sent)
        db.flush()

        received = WalletTransaction(
            user_id=recipient_id,
            type=TransactionType.TRANSFER_RECEIVED.value,
            amount=amount,
            status=transition.recipient_status,
            description=description,
            counterparty_id=sender_id,
            linked_transaction_id=sent.id,
            created_at=now,
        )
        db.add(received)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(sent)
    db.refresh(received)
    if transition.target == MoneyStatus.HELD.value:
        logger.warning(f"Transfer {sent.id} of {amount} from user {sender_id} held until {sent.held_until} ({action})")
    else:
        logger.info(f"Transfer {sent.id} of {amount} from user {sender_id} to user {recipient_id} completed")
    return sent, received


def get_held_transfer(db, transfer_id: int) -> WalletTransaction:
    sent = (
        db.query(WalletTransaction)
        .filter(WalletTransaction.id == transfer_id,
                WalletTransaction.type == TransactionType.TRANSFER_SENT.value)
        .first()
    )
    if sent is None:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return sent


def resolve_transfer(db, transfer_id: int, resolution: str, resolver_id: int,
                     reason: Optional[str] = None, now=None, commit: bool = True) -> WalletTransaction:
    """
    Move a held transfer to its final state. Raises CustodyStateError unless the
    transfer is currently held; the check is repeated inside the update so two
    concurrent resolvers cannot both succeed.
    """
    now = now or utcnow()
    sent = get_held_transfer(db, transfer_id)
    transition = TRANSITIONS.get((sent.money_status, resolution))
    if transition is None:
        raise CustodyStateError(f"Transfer {transfer_id} is {sent.money_status}, not held")

    amount = sent.amount
    sender_id = sent.user_id
    recipient_id = sent.counterparty_id
    try:
        updated = (
            db.query(WalletTransaction)
            .filter(WalletTransaction.id == transfer_id,
                    WalletTransaction.money_status == MoneyStatus.HELD.value)
            .update({
                WalletTransaction.money_status: transition.target,
                WalletTransaction.status: transition.sender_status,
                WalletTransaction.resolution_action: resolution,
                WalletTransaction.resolution_reason: reason,
                WalletTransaction.resolved_by: resolver_id,
                WalletTransaction.resolved_at: now,
            }, synchronize_session=False)
        )
        if updated == 0:
            raise CustodyStateError(f"Transfer {transfer_id} was already resolved")

        if transition.credit == "recipient":
            _credit(db, recipient_id, amount)
        elif transition.credit == "sender":
            _credit(db, sender_id, amount)

        db.query(WalletTransaction).filter(
            WalletTransaction.linked_transaction_id == transfer_id,
            WalletTransaction.type == TransactionType.TRANSFER_RECEIVED.value,
        ).update({WalletTransaction.status: transition.recipient_status}, synchronize_session=False)

        if transition.target == MoneyStatus.CONFISCATED.value:
            db.add(WalletTransaction(
                user_id=resolver_id,
                type=TransactionType.SYSTEM_CONFISCATION.value,
                amount=amount,
                status=TransactionStatus.COMPLETED.value,
                description=f"Confiscated from transfer {transfer_id}" + (f": {reason}" if reason else ""),
                counterparty_id=sender_id,
                linked_transaction_id=transfer_id,
                created_at=now,
            ))

        if commit:
            db.commit()
        else:
            db.flush()
    except Exception:
        db.rollback()
        raise

    db.refresh(sent)
    logger.info(f"Transfer {transfer_id} {resolution} by user {resolver_id}: held -> {transition.target}")
    return sent


def release_money(db, transfer_id: int, resolver_id: int, reason: Optional[str] = None, now=None):
    return resolve_transfer(db, transfer_id, ResolutionAction.APPROVE.value, resolver_id, reason, now)


def return_money(db, transfer_id: int, resolver_id: int, reason: Optional[str] = None, now=None):
    return resolve_transfer(db, transfer_id, ResolutionAction.REJECT.value, resolver_id, reason, now)


def confiscate_money(db, transfer_id: int, resolver_id: int, reason: Optional[str] = None, now=None):
    return resolve_transfer(db, transfer_id, ResolutionAction.CONFISCATE.value, resolver_id, reason, now)


def find_held_transfer_for_verdict(db, verdict_id: int) -> Optional[WalletTransaction]:
    return (
        db.query(WalletTransaction)
        .filter(WalletTransaction.verdict_id == verdict_id,
                WalletTransaction.type == TransactionType.TRANSFER_SENT.value,
                WalletTransaction.money_status == MoneyStatus.HELD.value)
        .first()
    )


def send_money(db, sender_id: int, recipient_id: int, amount, description: Optional[str] = None,
               ip_address: Optional[str] = None, location: Optional[Dict] = None,
               assessor=None, now=None) -> Dict:
    """
    Full wallet transfer: validate, run the fraud check, then open custody
    according to the verdict.
    """
    from walletshield.services.fraud_service import analyze_fraud_risk, verdict_insights

    amount = validate_amount(amount)
    if sender_id == recipient_id:
        raise ValidationError("Cannot send money to yourself")

    sender = db.query(User).filter(User.user_id == sender_id).first()
    if sender is None:
        raise NotFoundError("Sender not found")
    recipient = db.query(User).filter(User.user_id == recipient_id).first()
    if recipient is None:
        raise NotFoundError("Recipient not found")
    if Decimal(str(sender.wallet_balance or 0)) < amount:
        raise InsufficientFundsError("Insufficient balance")

    user_context = {"counterparty_name": recipient.full_name}
    if location is not None:
        user_context["location"] = location
    verdict = analyze_fraud_risk(
        db,
        TransactionRequest(user_id=sender_id, amount=float(amount), type=TransactionType.TRANSFER_SENT.value,
                           counterparty_id=recipient_id, ip_address=ip_address),
        user_context=user_context,
        assessor=assessor,
        now=now,
    )

    sent, _ = open_transfer(db, sender_id, recipient_id, amount, verdict=verdict,
                            description=description, now=now)
    db.refresh(sender)

    held = sent.money_status == MoneyStatus.HELD.value
    blocked = verdict.action_taken == Action.BLOCK.value
    review = verdict.action_taken == Action.REVIEW.value
    if blocked:
        message = "Transfer blocked for suspected fraud. Funds are held pending investigation."
    elif review:
        message = "Transfer is under review. Funds are held until a reviewer approves it."
    elif verdict.action_taken == Action.CHALLENGE.value:
        message = "Transfer completed. Additional verification is recommended."
    else:
        message = "Transfer completed successfully"

    insights = verdict_insights(verdict)
    return {
        "success": True,
        "transaction_id": sent.id,
        "verdict_id": verdict.id,
        "new_balance": float(sender.wallet_balance),
        "money_status": sent.money_status,
        "blocked": blocked,
        "review": review,
        "can_appeal": held,
        "held_until": sent.held_until,
        "message": message,
        "fraud_insights": insights,
        "rules_triggered": insights["rules_triggered"],
    }
