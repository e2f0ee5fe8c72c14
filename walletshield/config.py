from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Database Configuration
    DATABASE_URL: str = "sqlite:///./walletshield.db"

    # Application Settings
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # AI Risk Assessor (Groq)
    GROQ_API_KEY: str = ""
    AI_ENABLED: bool = True
    AI_MODEL: str = "llama-3.3-70b-versatile"
    AI_TIMEOUT_SECONDS: float = 8.0
    AI_MAX_WORKERS: int = 4
    AI_RATE_LIMIT_PER_MINUTE: int = 15
    AI_RATE_LIMIT_PER_DAY: int = 1500
    AI_HISTORY_SIZE: int = 10  # recent transactions sent with each assessment

    # Score fusion: adaptive, confidence, average, max, min, consensus
    FUSION_MODE: str = "adaptive"
    CONSENSUS_THRESHOLD: float = 30

    # Funds custody
    REVIEW_HOLD_HOURS: int = 72
    BLOCK_HOLD_HOURS: int = 168
    MAX_TRANSFER_AMOUNT: float = 1000000

    # Ground truth auto-approval
    AUTO_APPROVE_AFTER_HOURS: int = 24
    AUTO_APPROVE_RISK_LEVELS: str = "MINIMAL,LOW,MEDIUM"

    # IP geolocation
    IP_LOOKUP_URL: str = "https://ipapi.co/{ip}/json/"
    IP_LOOKUP_TIMEOUT: int = 5
    LOCATION_HISTORY_LIMIT: int = 10

    # Geo-velocity thresholds
    LOCATION_CHANGE_KM: float = 50
    IMPOSSIBLE_SPEED_KMH: float = 800
    LONG_JUMP_KM: float = 500
    GEO_VELOCITY_RULE_ENABLED: bool = True

    # Health regeneration
    HEALTH_HALF_LIFE_DAYS: float = 60
    HEALTH_LOOKBACK_DAYS: int = 180
    HEALTH_MIN_WEIGHT: float = 0.05
    HEALTH_RECENCY_MULTIPLIER: float = 1.5
    HEALTH_RECENCY_COUNT: int = 10
    HEALTH_MIN_VERDICTS: int = 5
    HEALTH_NEW_USER_CAP: float = 30
    HEALTH_RECOVERY_TARGET: float = 20

    model_config = {
        "extra": "allow",
        "env_file": ".env"
    }

    @property
    def auto_approve_levels(self) -> List[str]:
        return [level.strip().upper() for level in self.AUTO_APPROVE_RISK_LEVELS.split(",") if level.strip()]

settings = Settings()
