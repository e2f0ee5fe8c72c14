"""
Auto-approval job.

Labels REVIEW verdicts that have sat unreviewed past AUTO_APPROVE_AFTER_HOURS
as legitimate and releases their held money. Run hourly from cron:

    0 * * * * cd /path/to/walletshield && python -m scripts.auto_approve_cron
"""
import logging
import sys

from walletshield.config import settings
from walletshield.database import SessionLocal
# Import models so relationships resolve
from walletshield.models import user, transaction, verdict, appeal, rate_limit  # noqa: F401
from walletshield.services.ground_truth_service import auto_approve_pending_reviews

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def main() -> int:
    logger.info("Auto-approval job started")
    db = SessionLocal()
    try:
        result = auto_approve_pending_reviews(db)
    except Exception:
        logger.exception("Fatal error during auto-approval")
        return 1
    finally:
        db.close()

    logger.info(f"Verdicts approved: {result['count']}")
    if result["verdict_ids"]:
        logger.info(f"Approved IDs: {', '.join(str(i) for i in result['verdict_ids'])}")
    if not result["success"]:
        logger.error(f"Failed verdict IDs: {result['failed_verdict_ids']}")
        return 1
    logger.info("Auto-approval job completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
