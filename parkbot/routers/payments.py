# parkbot/routers/payments.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from parkbot.database import get_db
from parkbot.schemas.payment import PaymentRecordOut
from parkbot.services.payment_ledger import PaymentLedger
from typing import Optional

router = APIRouter()

@router.get("/payments", response_model=list[PaymentRecordOut], summary="Payment ledger — filterable")
def get_payments(
    status: Optional[str] = None,
    needs_review: Optional[bool] = None,
    limit: int = 50,
    db: Session = Depends(get_db)
):
    """Ledger rows. `needs_review=true` lists verified payments waiting for a manual refund."""
    return PaymentLedger(db).list(status=status, needs_review=needs_review, limit=limit)
