"""
Account service: users, balances, top-ups and the audit trail.

Balance changes still go through the BalanceLedger; this service
only looks up accounts and wires the ledger to the SQL stores.
"""

import json
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from gull_ledger.errors import NotFoundError, ValidationError
from gull_ledger.logging_setup import get_logger
from gull_ledger.models.audit_log import AuditLog
from gull_ledger.models.user_account import UserAccount
from gull_ledger.schemas.account import (
    ActingContext,
    BalanceResponse,
    UserCreate,
)
from gull_ledger.services.balance_service import BalanceLedger
from gull_ledger.stores.sql import SqlBalanceStore

logger = get_logger(__name__)


class AccountService:

    def __init__(self, db: Session):
        self.db = db

    def create_user(self, request: UserCreate) -> UserAccount:
        """Create a user. The opening balance is recorded as a top-up."""
        existing = self.db.execute(
            select(UserAccount).where(
                (UserAccount.username == request.username)
                | (UserAccount.email == request.email)
            )
        ).scalar_one_or_none()
        if existing:
            raise ValidationError(
                f"User '{request.username}' or email '{request.email}' already exists"
            )

        user = UserAccount(
            username=request.username,
            email=request.email,
            is_admin=request.is_admin,
            balance=request.balance,
            total_spent=Decimal("0"),
        )
        self.db.add(user)
        self.db.flush()
        logger.info("Created user %s (%s)", user.id, user.username)
        return user

    def get_user(self, user_id: int) -> UserAccount:
        user = self.db.get(UserAccount, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def list_users(self) -> list[UserAccount]:
        return list(
            self.db.execute(select(UserAccount).order_by(UserAccount.id)).scalars().all()
        )

    def balance_ledger(self, user_id: int) -> BalanceLedger:
        """Ledger for a user's balance; admins are unlimited."""
        user = self.get_user(user_id)
        return BalanceLedger(SqlBalanceStore(self.db), user.id, unlimited=user.is_admin)

    def get_balance(self, user_id: int) -> BalanceResponse:
        user = self.get_user(user_id)
        return BalanceResponse(
            user_id=user.id, balance=user.balance, total_spent=user.total_spent
        )

    def validate_context(self, context: ActingContext) -> None:
        """The acting admin, when present, must exist and be an admin."""
        self.get_user(context.user_id)
        if context.is_impersonating:
            admin = self.get_user(context.admin_user_id)
            if not admin.is_admin:
                raise ValidationError(
                    f"User {admin.id} is not an admin and cannot act for others"
                )

    def top_up(self, user_id: int, amount: Decimal, admin_user_id: int | None = None) -> BalanceResponse:
        """Credit a user's balance. Only admins may top up other users."""
        if admin_user_id is not None and admin_user_id != user_id:
            admin = self.get_user(admin_user_id)
            if not admin.is_admin:
                raise ValidationError("Only an admin can top up another user")

        self.balance_ledger(user_id).top_up(amount)
        self.record_audit(
            "BALANCE_TOPPED_UP",
            actor_user_id=admin_user_id,
            subject_user_id=user_id,
            details={"amount": str(amount)},
        )
        return self.get_balance(user_id)

    def record_audit(
        self,
        event_type: str,
        *,
        actor_user_id: int | None,
        subject_user_id: int | None,
        details: dict | str,
    ) -> AuditLog:
        """Append an audit record. The caller commits."""
        if not isinstance(details, str):
            details = json.dumps(details, sort_keys=True)
        log = AuditLog(
            event_type=event_type,
            actor_user_id=actor_user_id,
            subject_user_id=subject_user_id,
            details=details,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def audit_sink(self, context: ActingContext):
        """Callable the TransactionService uses to log impersonated changes."""
        def sink(event_type: str, details: str) -> None:
            self.record_audit(
                event_type,
                actor_user_id=context.admin_user_id,
                subject_user_id=context.user_id,
                details=details,
            )
        return sink
