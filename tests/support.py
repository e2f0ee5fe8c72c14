"""Shared constants and doubles for the test suite."""
from datetime import datetime

from walletshield.models.constant import AIErrorType
from walletshield.services.ai_service import AIError

# A Wednesday at noon: outside the unusual-hours window and not a weekend
NOON = datetime(2026, 3, 11, 12, 0, 0)


class FakeAssessor:
    """Stands in for the Groq assessor; returns whatever `result` is set to."""

    def __init__(self, result=None):
        self.result = result or AIError(error_type=AIErrorType.DISABLED, message="disabled in tests")
        self.calls = []

    def assess(self, transaction, profile, recent_transactions):
        self.calls.append((transaction, profile, recent_transactions))
        return self.result
