from datetime import timedelta
from decimal import Decimal

import pytest

from walletshield.exceptions import (
    CustodyStateError, InsufficientFundsError, NotFoundError, ValidationError,
)
from walletshield.models.transaction import WalletTransaction
from walletshield.services.custody_service import (
    confiscate_money, find_held_transfer_for_verdict, open_transfer, release_money,
    return_money, send_money, validate_amount,
)
from tests.support import NOON


def balance(db, user):
    db.refresh(user)
    return Decimal(str(user.wallet_balance))


def received_row(db, sent):
    return db.query(WalletTransaction).filter(WalletTransaction.linked_transaction_id == sent.id,
                                              WalletTransaction.type == "transfer_received").one()


@pytest.fixture
def parties(make_user):
    sender = make_user(balance=1000)
    recipient = make_user(balance=0)
    admin = make_user(balance=0, is_admin=True)
    return sender, recipient, admin


class TestValidateAmount:
    @pytest.mark.parametrize("amount", [0, -5, "abc", 10.001, 2000000])
    def test_rejects(self, amount):
        with pytest.raises(ValidationError):
            validate_amount(amount)

    def test_normalises_to_cents(self):
        assert validate_amount(12.5) == Decimal("12.50")
        assert validate_amount("99.99") == Decimal("99.99")


class TestOpenTransfer:
    def test_allow_settles_immediately(self, db, parties):
        sender, recipient, _ = parties
        sent, received = open_transfer(db, sender.user_id, recipient.user_id, 250, now=NOON)

        assert sent.money_status == "completed"
        assert sent.status == "completed" and received.status == "completed"
        assert received.linked_transaction_id == sent.id
        assert balance(db, sender) == Decimal("750")
        assert balance(db, recipient) == Decimal("250")

    def test_review_holds_for_72_hours(self, db, parties, make_verdict):
        sender, recipient, _ = parties
        verdict = make_verdict(sender, action="REVIEW", score=70)
        sent, received = open_transfer(db, sender.user_id, recipient.user_id, 400, verdict=verdict, now=NOON)

        assert sent.money_status == "held"
        assert sent.held_until == NOON + timedelta(hours=72)
        assert sent.status == "pending" and received.status == "pending"
        assert sent.verdict_id == verdict.id
        assert balance(db, sender) == Decimal("600")
        assert balance(db, recipient) == Decimal("0")
        assert find_held_transfer_for_verdict(db, verdict.id).id == sent.id

    def test_block_holds_for_a_week(self, db, parties, make_verdict):
        sender, recipient, _ = parties
        verdict = make_verdict(sender, action="BLOCK", score=90)
        sent, _ = open_transfer(db, sender.user_id, recipient.user_id, 100, verdict=verdict, now=NOON)
        assert sent.held_until == NOON + timedelta(hours=168)

    def test_challenge_settles(self, db, parties, make_verdict):
        sender, recipient, _ = parties
        verdict = make_verdict(sender, action="CHALLENGE", score=45)
        sent, _ = open_transfer(db, sender.user_id, recipient.user_id, 100, verdict=verdict, now=NOON)
        assert sent.money_status == "completed"
        assert balance(db, recipient) == Decimal("100")

    def test_insufficient_funds_changes_nothing(self, db, parties):
        sender, recipient, _ = parties
        with pytest.raises(InsufficientFundsError):
            open_transfer(db, sender.user_id, recipient.user_id, 1000.01, now=NOON)

        assert balance(db, sender) == Decimal("1000")
        assert balance(db, recipient) == Decimal("0")
        assert db.query(WalletTransaction).count() == 0


class TestResolution:
    @pytest.fixture
    def held(self, db, parties, make_verdict):
        sender, recipient, admin = parties
        verdict = make_verdict(sender, action="REVIEW", score=70)
        sent, _ = open_transfer(db, sender.user_id, recipient.user_id, 400, verdict=verdict, now=NOON)
        return sent

    def test_release_credits_recipient(self, db, parties, held):
        sender, recipient, admin = parties
        resolved = release_money(db, held.id, admin.user_id, "Verified by phone", now=NOON + timedelta(hours=1))

        assert resolved.money_status == "completed"
        assert resolved.resolution_action == "approve"
        assert resolved.resolved_by == admin.user_id
        assert resolved.resolution_reason == "Verified by phone"
        assert received_row(db, held).status == "completed"
        assert balance(db, recipient) == Decimal("400")
        assert balance(db, sender) == Decimal("600")

    def test_return_refunds_sender(self, db, parties, held):
        sender, recipient, admin = parties
        resolved = return_money(db, held.id, admin.user_id, now=NOON + timedelta(hours=1))

        assert resolved.money_status == "returned"
        assert resolved.status == "cancelled"
        assert received_row(db, held).status == "cancelled"
        assert balance(db, sender) == Decimal("1000")
        assert balance(db, recipient) == Decimal("0")

    def test_confiscate_credits_nobody(self, db, parties, held):
        sender, recipient, admin = parties
        resolved = confiscate_money(db, held.id, admin.user_id, "Mule account", now=NOON + timedelta(hours=1))

        assert resolved.money_status == "confiscated"
        assert balance(db, sender) == Decimal("600")
        assert balance(db, recipient) == Decimal("0")
        seizure = db.query(WalletTransaction).filter(WalletTransaction.type == "system_confiscation").one()
        assert seizure.user_id == admin.user_id
        assert seizure.linked_transaction_id == held.id
        assert Decimal(str(seizure.amount)) == Decimal("400")

    def test_resolution_happens_once(self, db, parties, held):
        _, recipient, admin = parties
        release_money(db, held.id, admin.user_id)
        with pytest.raises(CustodyStateError):
            release_money(db, held.id, admin.user_id)
        with pytest.raises(CustodyStateError):
            confiscate_money(db, held.id, admin.user_id)
        assert balance(db, recipient) == Decimal("400")

    def test_settled_transfer_cannot_be_resolved(self, db, parties):
        sender, recipient, admin = parties
        sent, _ = open_transfer(db, sender.user_id, recipient.user_id, 10, now=NOON)
        with pytest.raises(CustodyStateError):
            return_money(db, sent.id, admin.user_id)

    def test_unknown_transfer(self, db, parties):
        _, _, admin = parties
        with pytest.raises(NotFoundError):
            release_money(db, 999, admin.user_id)

    def test_money_is_conserved(self, db, parties, make_verdict):
        sender, recipient, admin = parties
        outcomes = []
        for action, resolve in (("REVIEW", release_money), ("BLOCK", return_money), ("BLOCK", confiscate_money)):
            verdict = make_verdict(sender, action=action, score=85)
            sent, _ = open_transfer(db, sender.user_id, recipient.user_id, 100, verdict=verdict, now=NOON)
            outcomes.append(resolve(db, sent.id, admin.user_id))

        seized = sum(Decimal(str(row.amount)) for row in
                     db.query(WalletTransaction).filter(WalletTransaction.type == "system_confiscation"))
        total = balance(db, sender) + balance(db, recipient) + balance(db, admin) + seized
        assert total == Decimal("1000")


class TestSendMoney:
    def test_quiet_transfer_completes(self, db, parties, fake_assessor):
        sender, recipient, _ = parties
        result = send_money(db, sender.user_id, recipient.user_id, 100, ip_address="10.0.0.5",
                            assessor=fake_assessor, now=NOON)

        assert result["success"] is True
        assert result["money_status"] == "completed"
        assert result["blocked"] is False and result["can_appeal"] is False
        assert result["new_balance"] == 900.0
        assert result["fraud_insights"]["action"] == "ALLOW"
        assert balance(db, recipient) == Decimal("100")

    def test_structuring_from_new_account_is_held_for_review(self, db, make_user, confident_assessor):
        sender = make_user(balance=20000, created_at=NOON - timedelta(days=2))
        recipient = make_user(balance=0)
        result = send_money(db, sender.user_id, recipient.user_id, 9800, ip_address="10.0.0.5",
                            assessor=confident_assessor, now=NOON)

        assert set(result["rules_triggered"]) == {"AMT-002", "BEH-001"}
        assert result["fraud_insights"]["rule_based_score"] == 50
        assert result["fraud_insights"]["risk_score"] == 71
        assert result["review"] is True and result["blocked"] is False
        assert result["money_status"] == "held"
        assert result["can_appeal"] is True
        assert result["held_until"] == NOON + timedelta(hours=72)
        assert result["new_balance"] == 10200.0
        assert balance(db, recipient) == Decimal("0")

    def test_validation_happens_before_scoring(self, db, parties, fake_assessor):
        sender, recipient, _ = parties
        with pytest.raises(ValidationError):
            send_money(db, sender.user_id, sender.user_id, 10, assessor=fake_assessor, now=NOON)
        with pytest.raises(InsufficientFundsError):
            send_money(db, sender.user_id, recipient.user_id, 5000, assessor=fake_assessor, now=NOON)
        with pytest.raises(NotFoundError):
            send_money(db, sender.user_id, 999, 10, assessor=fake_assessor, now=NOON)
        assert fake_assessor.calls == []
