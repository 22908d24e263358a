"""Append-only wallet ledger repository."""

import uuid
from enum import Enum

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..schema import WalletTransactionRow
from ..utils import utc_now


class TransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class WalletTransaction(BaseModel):
    id: str
    account_id: str
    ride_id: str | None
    amount: int
    type: TransactionType
    description: str
    timestamp: str


class WalletRepository:
    """Ledger rows are only ever inserted, never updated."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        account_id: str,
        amount: int,
        type: TransactionType,
        description: str,
        ride_id: str | None = None,
    ) -> str:
        entry_id = f"txn_{uuid.uuid4().hex[:12]}"
        self.session.add(
            WalletTransactionRow(
                id=entry_id,
                account_id=account_id,
                ride_id=ride_id,
                amount=amount,
                type=type.value,
                description=description,
                created_at=utc_now(),
            )
        )
        self.session.flush()
        return entry_id

    def list_for(self, account_id: str) -> list[WalletTransaction]:
        stmt = (
            select(WalletTransactionRow)
            .where(WalletTransactionRow.account_id == account_id)
            .order_by(WalletTransactionRow.created_at.desc())
        )
        return [
            WalletTransaction(
                id=row.id,
                account_id=row.account_id,
                ride_id=row.ride_id,
                amount=row.amount,
                type=TransactionType(row.type),
                description=row.description,
                timestamp=row.created_at.isoformat(),
            )
            for row in self.session.execute(stmt).scalars().all()
        ]
