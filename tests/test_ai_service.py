import json
from types import SimpleNamespace

import pytest

from walletshield.models.constant import AIErrorType
from walletshield.services.ai_service import AIAssessment, AIError, GroqRiskAssessor, build_prompt
from walletshield.services.rate_limiter import RateLimiter

TRANSACTION = {"type": "transfer_sent", "amount": 9800.0, "counterparty_name": "Bob", "city": "Local", "country": "Local"}
PROFILE = {"account_age_days": 2, "wallet_balance": 20000.0, "average_amount": 0.0,
           "transactions_24h": 0, "total_transactions": 0}
RECENT = [{"created_at": "2026-03-11T11:00:00", "type": "deposit", "amount": 20000.0, "status": "completed"}]


def fake_client(content=None, error=None):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return client, calls


@pytest.fixture
def limiter(session_factory):
    return RateLimiter(session_factory, key="groq", per_minute=100, per_day=1000)


def assessor_with(client, limiter):
    assessor = GroqRiskAssessor(api_key="test-key", model="test-model", rate_limiter=limiter, enabled=True)
    assessor._client = client
    return assessor


class TestPrompt:
    def test_includes_transaction_and_history(self):
        prompt = build_prompt(TRANSACTION, PROFILE, RECENT)
        assert "9800.00" in prompt
        assert "Bob" in prompt
        assert "deposit 20000.00" in prompt
        assert '"riskScore"' in prompt

    def test_empty_history(self):
        assert "- none" in build_prompt(TRANSACTION, PROFILE, [])


class TestGroqRiskAssessor:
    def test_disabled_without_key(self, limiter):
        result = GroqRiskAssessor(api_key="", rate_limiter=limiter, enabled=True).assess(TRANSACTION, PROFILE, RECENT)
        assert isinstance(result, AIError)
        assert result.error_type == AIErrorType.DISABLED

    def test_disabled_by_setting(self, limiter):
        result = GroqRiskAssessor(api_key="k", rate_limiter=limiter, enabled=False).assess(TRANSACTION, PROFILE, RECENT)
        assert result.error_type == AIErrorType.DISABLED

    def test_rate_limited_call_never_reaches_the_api(self, session_factory):
        client, calls = fake_client(content="{}")
        exhausted = RateLimiter(session_factory, key="groq", per_minute=0, per_day=1000)
        result = assessor_with(client, exhausted).assess(TRANSACTION, PROFILE, RECENT)
        assert result.error_type == AIErrorType.RATE_LIMITED
        assert calls == []

    def test_parses_assessment(self, limiter):
        payload = {"riskScore": 72, "confidence": 88, "action": "REVIEW", "reasoning": "new account",
                   "redFlags": ["structuring"], "recommendedChecks": ["call sender"]}
        client, calls = fake_client(content=json.dumps(payload))
        result = assessor_with(client, limiter).assess(TRANSACTION, PROFILE, RECENT)

        assert isinstance(result, AIAssessment)
        assert (result.risk_score, result.confidence) == (72, 88)
        assert result.red_flags == ["structuring"]
        assert calls[0]["model"] == "test-model"
        assert calls[0]["response_format"] == {"type": "json_object"}

    @pytest.mark.parametrize("content", [
        "not json",
        json.dumps({"riskScore": 150, "confidence": 50}),
        json.dumps({"confidence": 50}),
    ])
    def test_unusable_response(self, limiter, content):
        client, _ = fake_client(content=content)
        result = assessor_with(client, limiter).assess(TRANSACTION, PROFILE, RECENT)
        assert result.error_type == AIErrorType.API_ERROR

    def test_api_failure(self, limiter):
        client, _ = fake_client(error=RuntimeError("connection reset"))
        result = assessor_with(client, limiter).assess(TRANSACTION, PROFILE, RECENT)
        assert result.error_type == AIErrorType.API_ERROR
        assert "connection reset" in result.message
