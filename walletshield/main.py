import logging

from fastapi import FastAPI
from walletshield.config import settings
from walletshield.database import Base, engine
from walletshield.routers import custody, fraud, transaction
# Import models to ensure tables are created
from walletshield.models import user as user_model, transaction as transaction_model, verdict as verdict_model, appeal as appeal_model, rate_limit as rate_limit_model

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="WalletShield Fraud Detection API")

Base.metadata.create_all(bind=engine)

app.include_router(transaction.router)
app.include_router(fraud.router)
app.include_router(custody.router)

@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT}

logger.info(f"WalletShield started ({settings.ENVIRONMENT}), fusion mode: {settings.FUSION_MODE}")
