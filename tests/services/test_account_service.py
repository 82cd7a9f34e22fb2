"""
Tests for the AccountService and amount limit configuration.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from gull_ledger.errors import NotFoundError, ValidationError
from gull_ledger.models.audit_log import AuditLog
from gull_ledger.models.enums import AmountSide, Category
from gull_ledger.schemas.account import ActingContext, AmountLimitUpdate, UserCreate
from gull_ledger.services.account_service import AccountService
from gull_ledger.services.amount_limits import AmountLimitMap, get_limit, set_limit


def create(service, username, balance="0", is_admin=False):
    return service.create_user(UserCreate(
        username=username,
        email=f"{username}@example.com",
        balance=Decimal(balance),
        is_admin=is_admin,
    ))


class TestUsers:

    def test_create_user(self, db_session):
        service = AccountService(db_session)
        user = create(service, "ali", "500")
        db_session.commit()

        assert user.id is not None
        assert user.balance == Decimal("500")
        assert user.total_spent == Decimal("0")
        assert user.external_id is not None

    def test_duplicate_username_rejected(self, db_session):
        service = AccountService(db_session)
        create(service, "ali")
        db_session.commit()
        with pytest.raises(ValueError, match="already exists"):
            create(service, "ali")

    def test_unknown_user(self, db_session):
        with pytest.raises(NotFoundError):
            AccountService(db_session).get_user(42)

    def test_admin_ledger_is_unlimited(self, db_session):
        service = AccountService(db_session)
        admin = create(service, "boss", is_admin=True)
        user = create(service, "ali")
        assert service.balance_ledger(admin.id).unlimited is True
        assert service.balance_ledger(user.id).unlimited is False


class TestTopUp:

    def test_top_up_by_admin_is_audited(self, db_session):
        service = AccountService(db_session)
        admin = create(service, "boss", is_admin=True)
        user = create(service, "ali", "100")

        balance = service.top_up(user.id, Decimal("250"), admin_user_id=admin.id)
        db_session.commit()

        assert balance.balance == Decimal("350")
        assert balance.total_spent == Decimal("0")
        log = db_session.execute(select(AuditLog)).scalar_one()
        assert log.event_type == "BALANCE_TOPPED_UP"
        assert log.actor_user_id == admin.id

    def test_non_admin_cannot_top_up_others(self, db_session):
        service = AccountService(db_session)
        other = create(service, "sam")
        user = create(service, "ali")
        with pytest.raises(ValidationError):
            service.top_up(user.id, Decimal("10"), admin_user_id=other.id)


class TestActingContext:

    def test_impersonation_needs_admin(self, db_session):
        service = AccountService(db_session)
        other = create(service, "sam")
        user = create(service, "ali")
        with pytest.raises(ValidationError):
            service.validate_context(ActingContext(user_id=user.id, admin_user_id=other.id))

    def test_admin_may_impersonate(self, db_session):
        service = AccountService(db_session)
        admin = create(service, "boss", is_admin=True)
        user = create(service, "ali")
        context = ActingContext(user_id=user.id, admin_user_id=admin.id)
        service.validate_context(context)
        assert context.is_impersonating


class TestAmountLimits:

    def test_missing_limit_is_unlimited(self, db_session):
        limit = get_limit(db_session, Category.RING)
        assert limit.first_limit is None
        assert limit.second_limit is None

    def test_set_and_load_limits(self, db_session):
        set_limit(db_session, Category.AKRA, AmountLimitUpdate(
            first_limit=Decimal("500"), second_limit=None,
        ))
        db_session.commit()

        limits = AmountLimitMap.from_db(db_session)
        assert limits.cap(Category.AKRA, AmountSide.FIRST) == Decimal("500")
        assert limits.cap(Category.AKRA, AmountSide.SECOND) is None
        assert limits.cap(Category.OPEN, AmountSide.FIRST) is None

    def test_set_limit_replaces(self, db_session):
        set_limit(db_session, Category.AKRA, AmountLimitUpdate(first_limit=Decimal("500")))
        set_limit(db_session, Category.AKRA, AmountLimitUpdate(first_limit=Decimal("800")))
        db_session.commit()
        assert get_limit(db_session, Category.AKRA).first_limit == Decimal("800")
