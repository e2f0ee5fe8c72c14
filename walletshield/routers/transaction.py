# routers/transaction.py
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import List

from walletshield.database import get_db
from walletshield.exceptions import WalletShieldError
from walletshield.models.transaction import WalletTransaction
from walletshield.models.user import User
from walletshield.routers.auth import get_current_user, to_http_error
from walletshield.schemas.transaction import SendMoneyInput, TransactionResponse, TransferOutcomeResponse
from walletshield.services.custody_service import send_money
from walletshield.services.geolocation_service import get_client_ip

router = APIRouter(prefix="/wallet", tags=["Wallet"])

@router.post("/send", response_model=TransferOutcomeResponse)
def send(
    payload: SendMoneyInput,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Send money to another wallet; the fraud verdict decides whether it settles or is held"""
    try:
        return send_money(
            db,
            sender_id=current_user.user_id,
            recipient_id=payload.recipient_id,
            amount=payload.amount,
            description=payload.description,
            ip_address=get_client_ip(request),
        )
    except WalletShieldError as e:
        raise to_http_error(e)

@router.get("/transactions", response_model=List[TransactionResponse])
def list_transactions(
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if limit < 1 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    return (
        db.query(WalletTransaction)
        .filter(WalletTransaction.user_id == current_user.user_id)
        .order_by(desc(WalletTransaction.created_at), desc(WalletTransaction.id))
        .limit(limit)
        .all()
    )
