from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from photovault.api.deps import get_credit_service
from photovault.db.session import get_db
from photovault.models.account import Account
from photovault.schemas.accounts import CreditsOut, LedgerEntryOut, UsageRecordOut
from photovault.services.auth.jwt import get_current_account
from photovault.services.credits.service import CreditService
from photovault.services.usage.service import UsageRecorder

router = APIRouter(prefix="/account", tags=["account"])


@router.get("/credits", response_model=CreditsOut)
def get_credits(
    account: Account = Depends(get_current_account),
    credits: CreditService = Depends(get_credit_service),
):
    return {"credits": credits.get_balance(account.id)}


@router.get("/transactions", response_model=list[LedgerEntryOut])
def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    account: Account = Depends(get_current_account),
    credits: CreditService = Depends(get_credit_service),
):
    return credits.list_entries(account.id, limit=limit)


@router.get("/usage", response_model=list[UsageRecordOut])
def list_usage(
    limit: int = Query(50, ge=1, le=200),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    return UsageRecorder(db).list_for_account(account.id, limit=limit)
