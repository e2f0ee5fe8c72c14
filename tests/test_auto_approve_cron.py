from datetime import timedelta

from scripts import auto_approve_cron
from walletshield.config import settings
from walletshield.models.constant import utcnow
from walletshield.models.verdict import Verdict


def test_job_labels_stale_reviews(db, session_factory, make_user, make_verdict, monkeypatch):
    monkeypatch.setattr(auto_approve_cron, "SessionLocal", session_factory)
    monkeypatch.setattr(settings, "AUTO_APPROVE_RISK_LEVELS", "HIGH")
    verdict = make_verdict(make_user(), action="REVIEW", score=62, created_at=utcnow() - timedelta(hours=30))

    assert auto_approve_cron.main() == 0
    db.expire_all()
    assert db.query(Verdict).filter(Verdict.id == verdict.id).one().ground_truth == "legitimate"


def test_job_with_nothing_to_do(session_factory, monkeypatch):
    monkeypatch.setattr(auto_approve_cron, "SessionLocal", session_factory)
    assert auto_approve_cron.main() == 0
