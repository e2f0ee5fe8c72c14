"""Combine the rule score with the AI score into one verdict score and action."""
import math
import logging
from typing import Dict, Optional

from walletshield.config import settings
from walletshield.models.constant import Action, RiskLevel

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


class FusionStrategy:
    name = "base"

    def combine(self, rule_score: float, ai_score: float, ai_confidence: float) -> float:
        raise NotImplementedError


class ConfidenceWeighted(FusionStrategy):
    name = "confidence"

    def combine(self, rule_score, ai_score, ai_confidence):
        weight = ai_confidence / 100.0
        return rule_score * (1 - weight) + ai_score * weight


class WeightedAverage(FusionStrategy):
    name = "average"

    def __init__(self, rule_weight: float = 0.5):
        self.rule_weight = rule_weight

    def combine(self, rule_score, ai_score, ai_confidence):
        return rule_score * self.rule_weight + ai_score * (1 - self.rule_weight)


class Maximum(FusionStrategy):
    """Conservative: the riskier opinion wins."""

    name = "max"

    def combine(self, rule_score, ai_score, ai_confidence):
        return max(rule_score, ai_score)


class Minimum(FusionStrategy):
    """Permissive: the safer opinion wins."""

    name = "min"

    def combine(self, rule_score, ai_score, ai_confidence):
        return min(rule_score, ai_score)


class Consensus(FusionStrategy):
    """When the two layers disagree by more than the threshold, force manual review."""

    name = "consensus"
    DISAGREEMENT_SCORE = 60

    def __init__(self, threshold: Optional[float] = None):
        self.threshold = settings.CONSENSUS_THRESHOLD if threshold is None else threshold

    def combine(self, rule_score, ai_score, ai_confidence):
        if abs(rule_score - ai_score) > self.threshold:
            return self.DISAGREEMENT_SCORE
        return (rule_score + ai_score) / 2


class Adaptive(FusionStrategy):
    """Trust the AI in proportion to how confident it claims to be."""

    name = "adaptive"

    def combine(self, rule_score, ai_score, ai_confidence):
        if ai_confidence >= 80:
            return ConfidenceWeighted().combine(rule_score, ai_score, ai_confidence)
        if ai_confidence >= 50:
            return WeightedAverage(0.5).combine(rule_score, ai_score, ai_confidence)
        return WeightedAverage(0.7).combine(rule_score, ai_score, ai_confidence)


STRATEGIES = {
    "adaptive": Adaptive,
    "confidence": ConfidenceWeighted,
    "average": WeightedAverage,
    "max": Maximum,
    "min": Minimum,
    "consensus": Consensus,
}

MIN_USABLE_CONFIDENCE = 20


def get_strategy(mode: Optional[str] = None) -> FusionStrategy:
    mode = (mode or settings.FUSION_MODE).lower()
    if mode not in STRATEGIES:
        logger.warning(f"Unknown fusion mode '{mode}', falling back to adaptive")
        mode = "adaptive"
    return STRATEGIES[mode]()


def fuse(rule_score: float, ai_score: Optional[float] = None, ai_confidence: Optional[float] = None,
         ai_unavailable: bool = False, mode: Optional[str] = None) -> int:
    """
    Final score in [0, 100]. Rules alone decide when the AI is unavailable or
    its confidence is below 20, whatever the fusion mode.
    """
    if ai_unavailable or ai_score is None or ai_confidence is None or ai_confidence < MIN_USABLE_CONFIDENCE:
        return clamp_score(rule_score)
    return clamp_score(get_strategy(mode).combine(rule_score, ai_score, ai_confidence))


def determine_action(score: float) -> Action:
    if score >= 80:
        return Action.BLOCK
    if score >= 60:
        return Action.REVIEW
    if score >= 40:
        return Action.CHALLENGE
    return Action.ALLOW


def get_risk_level(score: float) -> RiskLevel:
    if score >= 80:
        return RiskLevel.CRITICAL
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 40:
        return RiskLevel.MEDIUM
    if score >= 20:
        return RiskLevel.LOW
    return RiskLevel.MINIMAL


def get_confidence_level(confidence: float) -> str:
    if confidence >= 80:
        return "HIGH"
    if confidence >= 50:
        return "MEDIUM"
    return "LOW"


def analyze_agreement(rule_score: float, ai_score: float, ai_confidence: float) -> Dict:
    difference = abs(rule_score - ai_score)
    if difference <= 10:
        agreement = "STRONG"
    elif difference <= 30:
        agreement = "MODERATE"
    elif difference <= 50:
        agreement = "WEAK"
    else:
        agreement = "DISAGREE"

    rule_action = determine_action(rule_score)
    ai_action = determine_action(ai_score)
    return {
        "score_difference": difference,
        "agreement_level": agreement,
        "rule_action": rule_action.value,
        "ai_action": ai_action.value,
        "actions_agree": rule_action == ai_action,
        "ai_confidence_level": get_confidence_level(ai_confidence),
    }
