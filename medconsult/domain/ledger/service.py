"""
Ledger Service
Wallet credits and debits. Every call runs inside the caller's unit of work so
ledger entries commit or roll back together with the appointment and slot
writes of the same operation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.orm import Session

from ...config import PLATFORM_ACCOUNT_ID
from ...constants import LedgerCategory
from ...database import UnitOfWork
from ...errors import BadRequestError, LedgerError
from ...models import Wallet, WalletTransaction
from ..notifications.service import NotificationSink, notify_quietly

logger = logging.getLogger(__name__)


class LedgerService(ABC):
    """Call contract of the wallet ledger"""

    @abstractmethod
    def credit(
        self,
        uow: UnitOfWork,
        account_id: str,
        amount: float,
        memo: str,
        appointment_id: Optional[int] = None,
        category: str = LedgerCategory.CONSULTATION_FEE.value,
    ) -> None:
        ...

    @abstractmethod
    def debit(
        self,
        uow: UnitOfWork,
        account_id: str,
        amount: float,
        memo: str,
        appointment_id: Optional[int] = None,
        category: str = LedgerCategory.REVERSAL.value,
    ) -> None:
        """Must raise LedgerError rather than take a balance below zero"""

    @abstractmethod
    def balance(self, db: Session, account_id: str) -> float:
        ...


class WalletRepository:
    """Repository for wallet database operations"""

    @staticmethod
    def get_wallet(db: Session, account_id: str) -> Optional[Wallet]:
        return db.query(Wallet).filter(Wallet.account_id == account_id).first()

    @staticmethod
    def get_or_create_wallet(db: Session, account_id: str) -> Wallet:
        wallet = WalletRepository.get_wallet(db, account_id)
        if not wallet:
            wallet = Wallet(account_id=account_id, balance=0)
            db.add(wallet)
            db.flush()
        return wallet

    @staticmethod
    def add_transaction(db: Session, **data) -> WalletTransaction:
        transaction = WalletTransaction(**data)
        db.add(transaction)
        db.flush()
        return transaction

    @staticmethod
    def get_transactions(db: Session, account_id: str, appointment_id: Optional[int] = None) -> list[WalletTransaction]:
        query = db.query(WalletTransaction).filter(WalletTransaction.account_id == account_id)
        if appointment_id is not None:
            query = query.filter(WalletTransaction.appointment_id == appointment_id)
        return query.order_by(WalletTransaction.id.asc()).all()


class WalletLedger(LedgerService):
    """SQL wallet implementation of the ledger contract"""

    def __init__(self, notifications: Optional[NotificationSink] = None):
        self.notifications = notifications
        self.repo = WalletRepository()

    def credit(self, uow, account_id, amount, memo, appointment_id=None, category=LedgerCategory.CONSULTATION_FEE.value):
        amount = self._validate_amount(amount)
        if amount == 0:
            return

        wallet = self.repo.get_or_create_wallet(uow.db, str(account_id))
        wallet.balance = round((wallet.balance or 0) + amount, 2)
        self.repo.add_transaction(
            uow.db,
            account_id=str(account_id),
            appointment_id=appointment_id,
            amount=amount,
            category=category,
            memo=memo,
        )
        logger.info(f"💰 Credited {amount:.2f} to {account_id} ({category})")

        title = "Refund Received" if category == LedgerCategory.REFUND.value else "Wallet Credited"
        self._queue_notification(
            uow, account_id, title, f"₹{amount:.2f} has been added to your wallet. {memo}", "success", appointment_id
        )

    def debit(self, uow, account_id, amount, memo, appointment_id=None, category=LedgerCategory.REVERSAL.value):
        amount = self._validate_amount(amount)
        if amount == 0:
            return

        wallet = self.repo.get_or_create_wallet(uow.db, str(account_id))
        if round(wallet.balance or 0, 2) < amount:
            logger.warning(
                f"⚠️ Debit of {amount:.2f} refused for {account_id}: balance {wallet.balance or 0:.2f}"
            )
            raise LedgerError(f"Insufficient wallet balance for account {account_id}")

        wallet.balance = round(wallet.balance - amount, 2)
        self.repo.add_transaction(
            uow.db,
            account_id=str(account_id),
            appointment_id=appointment_id,
            amount=-amount,
            category=category,
            memo=memo,
        )
        logger.info(f"💸 Debited {amount:.2f} from {account_id} ({category})")

        self._queue_notification(
            uow, account_id, "Wallet Debited", f"₹{amount:.2f} has been deducted from your wallet. {memo}", "warning", appointment_id
        )

    def balance(self, db, account_id) -> float:
        wallet = self.repo.get_wallet(db, str(account_id))
        return wallet.balance if wallet else 0.0

    @staticmethod
    def _validate_amount(amount) -> float:
        amount = round(float(amount), 2)
        if amount < 0:
            raise BadRequestError("Ledger amounts must not be negative")
        return amount

    def _queue_notification(self, uow, account_id, title, message, severity, appointment_id):
        if not self.notifications or str(account_id) == PLATFORM_ACCOUNT_ID:
            return
        uow.after_commit(
            notify_quietly, self.notifications, account_id, title, message, severity, appointment_id
        )
