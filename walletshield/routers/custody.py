from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
import logging

from walletshield.database import get_db
from walletshield.exceptions import WalletShieldError
from walletshield.models.user import User
from walletshield.routers.auth import require_admin, to_http_error
from walletshield.schemas.custody import CustodyActionInput, HeldTransferResponse
from walletshield.services.custody_service import confiscate_money, release_money, return_money

router = APIRouter(prefix="/custody", tags=["Custody"])
logger = logging.getLogger(__name__)

def _resolve(operation, transfer_id: int, payload: Optional[CustodyActionInput], db: Session, admin: User):
    reason = payload.reason if payload else None
    try:
        return operation(db, transfer_id, admin.user_id, reason)
    except WalletShieldError as e:
        logger.warning(f"Custody action on transfer {transfer_id} rejected: {e.message}")
        raise to_http_error(e)

@router.post("/{transfer_id}/release", response_model=HeldTransferResponse)
def release(transfer_id: int, payload: Optional[CustodyActionInput] = None,
            db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    """Approve a held transfer and credit the recipient"""
    return _resolve(release_money, transfer_id, payload, db, admin)

@router.post("/{transfer_id}/return", response_model=HeldTransferResponse)
def return_to_sender(transfer_id: int, payload: Optional[CustodyActionInput] = None,
                     db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    """Reject a held transfer and refund the sender"""
    return _resolve(return_money, transfer_id, payload, db, admin)

@router.post("/{transfer_id}/confiscate", response_model=HeldTransferResponse)
def confiscate(transfer_id: int, payload: Optional[CustodyActionInput] = None,
               db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    """Confirmed fraud: neither party is credited"""
    return _resolve(confiscate_money, transfer_id, payload, db, admin)
