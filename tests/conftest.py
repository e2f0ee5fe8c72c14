import os

# Configure before any walletshield module reads settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AI_ENABLED"] = "false"
os.environ["GROQ_API_KEY"] = ""

from datetime import timedelta
from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from walletshield.database import Base
from walletshield.models import user as user_model, transaction as transaction_model, verdict as verdict_model, appeal as appeal_model, rate_limit as rate_limit_model  # noqa: F401
from walletshield.models.user import User
from walletshield.models.verdict import Verdict
from walletshield.services.ai_service import AIAssessment
from walletshield.services.score_fusion import get_risk_level
from tests.support import NOON, FakeAssessor


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_assessor():
    return FakeAssessor()


@pytest.fixture
def confident_assessor():
    return FakeAssessor(AIAssessment(risk_score=75, confidence=85, reasoning="Near-threshold amount from a new account",
                                     red_flags=["structuring"]))


@pytest.fixture
def make_user(db):
    ids = count(1)

    def _make_user(balance=1000, created_at=None, is_admin=False, full_name=None):
        n = next(ids)
        user = User(
            account_id=f"ACC{n:05d}",
            full_name=full_name or f"User {n}",
            wallet_balance=Decimal(str(balance)),
            is_admin=is_admin,
            created_at=created_at or NOON - timedelta(days=365),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_verdict(db):
    def _make_verdict(user, action="ALLOW", score=10, created_at=None, amount=100, **fields):
        verdict = Verdict(
            user_id=user.user_id,
            amount=amount,
            transaction_type="transfer_sent",
            rules_triggered=fields.pop("rules_triggered", "[]"),
            rule_based_score=score,
            risk_score=score,
            risk_level=fields.pop("risk_level", get_risk_level(score).value),
            action_taken=action,
            detection_method="rules_only",
            created_at=created_at or NOON,
            **fields,
        )
        db.add(verdict)
        db.commit()
        db.refresh(verdict)
        return verdict

    return _make_verdict
