import json
import logging
import time
from typing import Dict, List, Optional, Union

from groq import Groq
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from walletshield.config import settings
from walletshield.database import SessionLocal
from walletshield.models.constant import AIErrorType
from walletshield.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class AIAssessment(BaseModel):
    risk_score: int = Field(alias="riskScore", ge=0, le=100)
    confidence: int = Field(ge=0, le=100)
    action: Optional[str] = None
    reasoning: str = ""
    red_flags: List[str] = Field(default_factory=list, alias="redFlags")
    recommended_checks: List[str] = Field(default_factory=list, alias="recommendedChecks")
    response_time_ms: int = 0

    class Config:
        populate_by_name = True


class AIError(BaseModel):
    error_type: AIErrorType
    message: str
    response_time_ms: int = 0


AIResult = Union[AIAssessment, AIError]


def build_prompt(transaction: Dict, profile: Dict, recent_transactions: List[Dict]) -> str:
    history_lines = "\n".join(
        f"- {t['created_at']}: {t['type']} {t['amount']:.2f} ({t['status']})" for t in recent_transactions
    ) or "- none"
    return f"""
You are a fraud analyst for a peer-to-peer payment wallet. Assess the risk of the transaction below.

Transaction:
- Type: {transaction['type']}
- Amount: {transaction['amount']:.2f}
- Recipient: {transaction.get('counterparty_name') or 'n/a'}
- Location: {transaction.get('city') or 'Unknown'}, {transaction.get('country') or 'Unknown'}

Account profile:
- Account age (days): {profile['account_age_days']}
- Wallet balance: {profile['wallet_balance']:.2f}
- Average transaction amount: {profile['average_amount']:.2f}
- Transactions in last 24h: {profile['transactions_24h']}
- Total transactions: {profile['total_transactions']}

Last {len(recent_transactions)} transactions:
{history_lines}

Respond with ONLY a JSON object in this format:
{{
    "riskScore": 0-100,
    "confidence": 0-100,
    "action": "ALLOW" | "CHALLENGE" | "REVIEW" | "BLOCK",
    "reasoning": "brief explanation",
    "redFlags": ["..."],
    "recommendedChecks": ["..."]
}}
"""


class GroqRiskAssessor:
    """
    External risk opinion from a Groq-hosted LLM, behind the shared rate limiter.
    Never raises: every failure comes back as an AIError.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 rate_limiter: Optional[RateLimiter] = None, enabled: Optional[bool] = None):
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.model = model or settings.AI_MODEL
        self.enabled = settings.AI_ENABLED if enabled is None else enabled
        self.rate_limiter = rate_limiter or RateLimiter(SessionLocal, key="groq")
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = Groq(api_key=self.api_key, max_retries=0, timeout=settings.AI_TIMEOUT_SECONDS)
        return self._client

    def assess(self, transaction: Dict, profile: Dict, recent_transactions: List[Dict]) -> AIResult:
        if not self.enabled or not self.api_key:
            return AIError(error_type=AIErrorType.DISABLED, message="AI assessment is disabled")

        if not self.rate_limiter.try_acquire():
            return AIError(error_type=AIErrorType.RATE_LIMITED, message="AI rate limit exceeded")

        start = time.monotonic()
        try:
            chat_completion = self.client.chat.completions.create(
                messages=[{"role": "user", "content": build_prompt(transaction, profile, recent_transactions)}],
                model=self.model,
                temperature=0.1,  # Low temperature for consistent scoring
                max_tokens=500,
                response_format={"type": "json_object"},
            )
            response_text = chat_completion.choices[0].message.content.strip()
            elapsed = int((time.monotonic() - start) * 1000)

            assessment = AIAssessment.model_validate(json.loads(response_text))
            assessment.response_time_ms = elapsed
            logger.info(f"AI assessment: score={assessment.risk_score}, confidence={assessment.confidence}, {elapsed}ms")
            return assessment
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(f"Unusable AI response: {e}")
            return AIError(error_type=AIErrorType.API_ERROR, message=f"Invalid AI response: {e}",
                           response_time_ms=int((time.monotonic() - start) * 1000))
        except Exception as e:
            logger.error(f"AI API error: {e}")
            return AIError(error_type=AIErrorType.API_ERROR, message=str(e),
                           response_time_ms=int((time.monotonic() - start) * 1000))


_assessor = None


def get_ai_assessor() -> GroqRiskAssessor:
    global _assessor
    if _assessor is None:
        _assessor = GroqRiskAssessor()
    return _assessor
