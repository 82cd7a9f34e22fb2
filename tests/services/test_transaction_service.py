"""
Tests for the TransactionService.

Most tests run against the in-memory stores so failures can be
injected per number. TestSqlStores repeats the important paths on
the SQLAlchemy stores.
"""

import sqlite3
from decimal import Decimal

import pytest
from sqlalchemy import event, select

from gull_ledger.errors import (
    ConstraintViolationError,
    InsufficientBalanceError,
    LimitExceededError,
    NotFoundError,
    PersistenceError,
    TransientStoreError,
    ValidationError,
)
from gull_ledger.models.audit_log import AuditLog
from gull_ledger.models.enums import BatchStatus, Category
from gull_ledger.schemas.account import ActingContext, UserCreate
from gull_ledger.schemas.entry import EntryDraft, EntryUpdate
from gull_ledger.services.account_service import AccountService
from gull_ledger.services.amount_limits import AmountLimitMap
from gull_ledger.services.balance_service import BalanceLedger
from gull_ledger.services.transaction_service import TransactionService
from gull_ledger.stores.base import PendingWriteCache
from gull_ledger.stores.memory import InMemoryBalanceStore, InMemoryLedgerStore
from gull_ledger.stores.sql import SessionPendingWrites, SqlLedgerStore


# --- Helpers ---

def make_service(
    balance="1000",
    *,
    unlimited=False,
    tracks_spent=False,
    limits=None,
    pending=None,
):
    balances = InMemoryBalanceStore({1: Decimal(balance)})
    store = InMemoryLedgerStore(tracks_spent=tracks_spent, balances=balances)
    service = TransactionService(
        store,
        BalanceLedger(balances, 1, unlimited=unlimited),
        ActingContext(user_id=1),
        limits=limits,
        pending=pending,
    )
    return service, store, balances


def draft(number, first="0", second="0", category=Category.AKRA):
    return EntryDraft(
        number=number,
        category=category,
        first=Decimal(first),
        second=Decimal(second),
    )


def count_balance_writes(balances):
    calls = []
    balances.subscribe(lambda uid, bal: calls.append(bal))
    return calls


# --- Batches ---

class TestCommitBatch:

    def test_batch_commits_and_charges_once(self):
        service, store, balances = make_service()
        writes = count_balance_writes(balances)

        result = service.commit_batch([draft("12", "100", "50"), draft("34", "200")])

        assert result.status == BatchStatus.COMMITTED
        assert result.success_count == 2
        assert result.balance_change == Decimal("-350")
        assert balances.get_balance(1) == Decimal("650")
        assert len(writes) == 1
        assert len(store.list_entries("user-scope")) == 2

    def test_numbers_are_normalized(self):
        service, _, _ = make_service()
        result = service.commit_batch([draft("7", "10")])
        assert result.entries[0].number == "07"

    def test_total_spent_counted_once_when_store_tracks_it(self):
        service, _, balances = make_service(tracks_spent=True)
        service.commit_batch([draft("12", "100", "50")])
        assert balances.get_total_spent(1) == Decimal("150")

    def test_total_spent_counted_by_ledger_otherwise(self):
        service, _, balances = make_service(tracks_spent=False)
        service.commit_batch([draft("12", "100", "50")])
        assert balances.get_total_spent(1) == Decimal("150")

    def test_insufficient_balance_rejects_whole_batch(self):
        service, store, balances = make_service("100")

        with pytest.raises(InsufficientBalanceError) as exc:
            service.commit_batch([draft("12", "200"), draft("34", "100")])

        assert exc.value.required == Decimal("300")
        assert exc.value.available == Decimal("100")
        assert exc.value.shortfall == Decimal("200")
        assert balances.get_balance(1) == Decimal("100")
        assert store.list_entries("user-scope") == []

    def test_unlimited_balance_goes_negative(self):
        service, _, balances = make_service("0", unlimited=True)
        service.commit_batch([draft("12", "300")])
        assert balances.get_balance(1) == Decimal("-300")

    def test_invalid_draft_rejects_batch(self):
        service, store, balances = make_service()
        result = service.commit_batch([draft("12", "-5"), draft("150", "10")])

        assert result.status == BatchStatus.REJECTED
        assert len(result.errors) == 2
        assert balances.get_balance(1) == Decimal("1000")
        assert store.list_entries("user-scope") == []

    def test_zero_amount_draft_rejected(self):
        service, _, _ = make_service()
        result = service.commit_batch([draft("12")])
        assert result.status == BatchStatus.REJECTED
        assert "no amount" in result.errors[0]


class TestPartialFailure:

    def test_failed_share_is_refunded(self):
        service, store, balances = make_service()
        store.fail_on("34")
        writes = count_balance_writes(balances)

        result = service.commit_batch([draft("12", "100", "50"), draft("34", "200")])

        assert result.status == BatchStatus.PARTIAL
        assert result.success_count == 1
        assert result.failed_count == 1
        assert balances.get_balance(1) == Decimal("850")
        assert len(writes) == 2
        assert "34" in result.errors[0]

    def test_all_failed_restores_balance(self):
        service, store, balances = make_service()
        store.fail_on("12")
        store.fail_on("34")

        with pytest.raises(PersistenceError) as exc:
            service.commit_batch([draft("12", "100"), draft("34", "200")])

        assert exc.value.all_failed is True
        assert len(exc.value.failures) == 2
        assert balances.get_balance(1) == Decimal("1000")
        assert balances.get_total_spent(1) == Decimal("0")

    def test_conservation_after_partial_batch(self):
        service, store, balances = make_service()
        store.fail_on("56")
        service.commit_batch([draft("12", "100"), draft("34", "40", "60"), draft("56", "70")])

        persisted = sum(e.stake for e in store.list_entries("user-scope"))
        assert balances.get_balance(1) == Decimal("1000") - persisted

    def test_transient_failure_without_cache_is_a_failure(self):
        service, store, balances = make_service()
        store.fail_on("34", TransientStoreError)
        result = service.commit_batch([draft("12", "100"), draft("34", "200")])
        assert result.status == BatchStatus.PARTIAL
        assert balances.get_balance(1) == Decimal("900")


class TestPendingWrites:

    def test_transient_failure_is_queued_then_reconciled(self):
        pending = PendingWriteCache()
        service, store, balances = make_service(pending=pending)
        store.fail_on("34", TransientStoreError, times=1)

        result = service.commit_batch([draft("12", "100"), draft("34", "200")])

        assert result.status == BatchStatus.COMMITTED
        assert result.queued_count == 1
        assert result.success_count == 2
        assert balances.get_balance(1) == Decimal("700")
        assert len(store.list_entries("user-scope")) == 1
        assert len(pending) == 1
        assert pending.pending_for()[0].queued_at.tzinfo is not None

        report = service.reconcile()

        assert len(report.written) == 1
        assert report.still_pending == 0
        assert len(store.list_entries("user-scope")) == 2
        assert balances.get_balance(1) == Decimal("700")

    def test_still_unavailable_stays_queued(self):
        pending = PendingWriteCache()
        service, store, _ = make_service(pending=pending)
        store.fail_on("34", TransientStoreError)
        service.commit_batch([draft("12", "100"), draft("34", "200")])

        report = service.reconcile()

        assert report.still_pending == 1
        assert len(pending) == 1

    def test_permanent_failure_on_reconcile_is_refunded(self):
        pending = PendingWriteCache()
        service, store, balances = make_service(pending=pending)
        store.fail_on("34", TransientStoreError, times=1)
        service.commit_batch([draft("12", "100"), draft("34", "200")])

        store.fail_on("34", ConstraintViolationError)
        report = service.reconcile()

        assert len(report.dropped) == 1
        assert balances.get_balance(1) == Decimal("900")
        assert len(pending) == 0


class TestLimits:

    def test_limit_exceeded_names_number_and_side(self):
        limits = AmountLimitMap({Category.AKRA: (Decimal("500"), None)})
        service, store, balances = make_service(limits=limits)
        service.commit_batch([draft("23", "450")])

        with pytest.raises(LimitExceededError) as exc:
            service.commit_batch([draft("23", "100")])

        error = exc.value
        assert error.number == "23"
        assert error.side == "First"
        assert error.cap == Decimal("500")
        assert error.current == Decimal("450")
        assert error.excess == Decimal("50")
        assert balances.get_balance(1) == Decimal("550")
        assert len(store.list_entries("user-scope")) == 1

    def test_amounts_within_batch_are_summed(self):
        limits = AmountLimitMap({Category.AKRA: (None, Decimal("100"))})
        service, _, _ = make_service(limits=limits)
        with pytest.raises(LimitExceededError) as exc:
            service.commit_batch([draft("23", second="60"), draft("23", second="60")])
        assert exc.value.side == "Second"

    def test_up_to_the_cap_is_allowed(self):
        limits = AmountLimitMap({Category.AKRA: (Decimal("500"), None)})
        service, _, _ = make_service(limits=limits)
        result = service.commit_batch([draft("23", "500")])
        assert result.status == BatchStatus.COMMITTED

    def test_other_categories_unlimited(self):
        limits = AmountLimitMap({Category.AKRA: (Decimal("1"), Decimal("1"))})
        service, _, _ = make_service(limits=limits)
        result = service.commit_batch([draft("123", "500", category=Category.RING)])
        assert result.status == BatchStatus.COMMITTED

    def test_bulk_draft_checked_per_number(self):
        limits = AmountLimitMap({Category.AKRA: (Decimal("500"), None)})
        store = InMemoryLedgerStore()
        existing = [store.create_entry(ActingContext(user_id=1), draft("02", "450"))]
        with pytest.raises(LimitExceededError) as exc:
            limits.check([draft("01 02", "100")], existing)
        assert exc.value.number == "02"
        assert exc.value.current == Decimal("450")

    def test_editing_legacy_bulk_row_respects_cap(self):
        limits = AmountLimitMap({Category.AKRA: (Decimal("500"), None)})
        service, store, balances = make_service(limits=limits)
        store.create_entry(ActingContext(user_id=1), draft("02", "400"))
        bulk = store.create_entry(ActingContext(user_id=1), draft("01 02", "50"))

        with pytest.raises(LimitExceededError) as exc:
            service.edit_entry(bulk.id, EntryUpdate(first=Decimal("150")))

        assert exc.value.number == "02"
        assert store.get_entry(bulk.id).first == Decimal("50")
        assert balances.get_balance(1) == Decimal("1000")

        service.edit_entry(bulk.id, EntryUpdate(first=Decimal("100")))
        assert store.get_entry(bulk.id).first == Decimal("100")


class TestSubmitText:

    def test_submit_text_commits_parsed_entries(self):
        service, _, balances = make_service()
        result = service.submit_text("12 34 first 100", Category.AKRA)
        assert result.status == BatchStatus.COMMITTED
        assert result.success_count == 2
        assert balances.get_balance(1) == Decimal("800")

    def test_unparseable_text_rejected_without_charge(self):
        service, _, balances = make_service()
        result = service.submit_text("hello there")
        assert result.status == BatchStatus.REJECTED
        assert result.errors
        assert balances.get_balance(1) == Decimal("1000")

    def test_parse_errors_returned_with_result(self):
        service, _, _ = make_service()
        result = service.submit_text("12 12345 first 10")
        assert result.success_count == 1
        assert "5 digits" in result.errors[0]

    def test_notes_are_kept(self):
        service, _, _ = make_service()
        result = service.submit_text("12 first 10", notes="from chat")
        assert result.entries[0].notes == "from chat"


class TestEditAndDelete:

    def test_edit_charges_the_difference(self):
        service, _, balances = make_service()
        entry = service.commit_batch([draft("12", "100")]).entries[0]

        updated = service.edit_entry(entry.id, EntryUpdate(first=Decimal("300")))

        assert updated.first == Decimal("300")
        assert balances.get_balance(1) == Decimal("700")

    def test_edit_lower_stake_credits(self):
        service, _, balances = make_service()
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        service.edit_entry(entry.id, EntryUpdate(first=Decimal("40")))
        assert balances.get_balance(1) == Decimal("960")

    def test_edit_insufficient_balance(self):
        service, _, balances = make_service("100")
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        with pytest.raises(InsufficientBalanceError):
            service.edit_entry(entry.id, EntryUpdate(first=Decimal("150")))
        assert balances.get_balance(1) == Decimal("0")

    def test_edit_limit_uses_existing_minus_original(self):
        limits = AmountLimitMap({Category.AKRA: (Decimal("500"), None)})
        service, _, _ = make_service(limits=limits)
        entry = service.commit_batch([draft("23", "450")]).entries[0]
        updated = service.edit_entry(entry.id, EntryUpdate(first=Decimal("500")))
        assert updated.first == Decimal("500")

    def test_edit_store_failure_compensates(self):
        service, store, balances = make_service()
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        store.fail_on("12")
        with pytest.raises(PersistenceError):
            service.edit_entry(entry.id, EntryUpdate(first=Decimal("300")))
        assert balances.get_balance(1) == Decimal("900")

    def test_edit_normalizes_new_number(self):
        service, _, _ = make_service()
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        updated = service.edit_entry(entry.id, EntryUpdate(number="5"))
        assert updated.number == "05"

    def test_edit_invalid_number(self):
        service, _, _ = make_service()
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        with pytest.raises(ValidationError):
            service.edit_entry(entry.id, EntryUpdate(number="500"))

    def test_delete_refunds_stake(self):
        service, store, balances = make_service()
        entry = service.commit_batch([draft("12", "100", "50")]).entries[0]

        deleted = service.delete_entry(entry.id)

        assert deleted.id == entry.id
        assert balances.get_balance(1) == Decimal("1000")
        assert store.list_entries("user-scope") == []

    def test_delete_failure_takes_refund_back(self):
        service, store, balances = make_service()
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        store.fail_on("12")
        with pytest.raises(PersistenceError):
            service.delete_entry(entry.id)
        assert balances.get_balance(1) == Decimal("900")

    def test_delete_unknown_entry(self):
        service, _, _ = make_service()
        with pytest.raises(NotFoundError):
            service.delete_entry(99)

    def test_other_users_entries_hidden(self):
        service, store, _ = make_service()
        other = store.create_entry(ActingContext(user_id=2), draft("12", "1"))
        with pytest.raises(NotFoundError):
            service.get_entry(other.id)


class TestBulkDelete:

    def test_bulk_delete_refunds_once(self):
        service, store, balances = make_service()
        entries = service.commit_batch([draft("12", "100"), draft("34", "200")]).entries
        writes = count_balance_writes(balances)

        result = service.bulk_delete([e.id for e in entries])

        assert result.status == BatchStatus.COMMITTED
        assert result.success_count == 2
        assert result.balance_change == Decimal("300")
        assert balances.get_balance(1) == Decimal("1000")
        assert len(writes) == 1

    def test_failed_deletes_recharged(self):
        service, store, balances = make_service()
        entries = service.commit_batch([draft("12", "100"), draft("34", "200")]).entries
        store.fail_on("34")

        result = service.bulk_delete([e.id for e in entries])

        assert result.status == BatchStatus.PARTIAL
        assert balances.get_balance(1) == Decimal("800")

    def test_unknown_ids_reported(self):
        service, _, _ = make_service()
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        result = service.bulk_delete([entry.id, 99])
        assert result.status == BatchStatus.PARTIAL
        assert "99" in result.errors[0]

    def test_strict_unknown_ids_change_nothing(self):
        service, store, balances = make_service()
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        with pytest.raises(NotFoundError):
            service.bulk_delete([entry.id, 99], strict=True)
        assert balances.get_balance(1) == Decimal("900")
        assert len(store.list_entries("user-scope")) == 1


# --- SQL stores ---

def sql_service(db_session, user, context=None, limits=None, pending=None):
    accounts = AccountService(db_session)
    context = context or ActingContext(user_id=user.id)
    return TransactionService(
        SqlLedgerStore(db_session),
        accounts.balance_ledger(user.id),
        context,
        limits=limits,
        pending=SessionPendingWrites(db_session, pending) if pending is not None else None,
        audit=accounts.audit_sink(context),
    )


def make_user(db_session, username="ali", balance="1000", is_admin=False):
    user = AccountService(db_session).create_user(UserCreate(
        username=username,
        email=f"{username}@example.com",
        balance=Decimal(balance),
        is_admin=is_admin,
    ))
    db_session.commit()
    return user


class TestSqlStores:

    def test_batch_updates_balance_and_spent(self, db_session):
        user = make_user(db_session)
        service = sql_service(db_session, user)

        result = service.commit_batch([draft("12", "100", "50"), draft("7", "25")])
        db_session.commit()

        assert result.status == BatchStatus.COMMITTED
        db_session.refresh(user)
        assert user.balance == Decimal("825")
        assert user.total_spent == Decimal("175")
        assert {e.number for e in service.list_entries()} == {"12", "07"}

    def test_delete_restores_spent(self, db_session):
        user = make_user(db_session)
        service = sql_service(db_session, user)
        entry = service.commit_batch([draft("12", "100")]).entries[0]
        db_session.commit()

        service.delete_entry(entry.id)
        db_session.commit()

        db_session.refresh(user)
        assert user.balance == Decimal("1000")
        assert user.total_spent == Decimal("0")

    def test_edit_adjusts_spent_by_difference(self, db_session):
        user = make_user(db_session)
        service = sql_service(db_session, user)
        entry = service.commit_batch([draft("12", "100")]).entries[0]

        service.edit_entry(entry.id, EntryUpdate(second=Decimal("50")))
        db_session.commit()

        db_session.refresh(user)
        assert user.balance == Decimal("850")
        assert user.total_spent == Decimal("150")

    def test_limits_loaded_from_database(self, db_session):
        from gull_ledger.schemas.account import AmountLimitUpdate
        from gull_ledger.services.amount_limits import set_limit

        user = make_user(db_session)
        set_limit(db_session, Category.AKRA, AmountLimitUpdate(first_limit=Decimal("500")))
        db_session.commit()

        service = sql_service(db_session, user, limits=AmountLimitMap.from_db(db_session))
        service.commit_batch([draft("23", "450")])
        with pytest.raises(LimitExceededError, match="23"):
            service.commit_batch([draft("23", "100")])

    def test_impersonation_attributed_and_audited(self, db_session):
        user = make_user(db_session)
        admin = make_user(db_session, "boss", "0", is_admin=True)
        context = ActingContext(user_id=user.id, admin_user_id=admin.id)
        service = sql_service(db_session, user, context=context)

        result = service.commit_batch([draft("12", "100")])
        db_session.commit()

        assert result.entries[0].admin_user_id == admin.id
        assert result.entries[0].user_id == user.id
        db_session.refresh(user)
        assert user.balance == Decimal("900")

        logs = db_session.execute(select(AuditLog)).scalars().all()
        assert [log.event_type for log in logs] == ["ENTRIES_ADDED"]
        assert logs[0].actor_user_id == admin.id
        assert logs[0].subject_user_id == user.id

    def test_own_actions_not_audited(self, db_session):
        user = make_user(db_session)
        sql_service(db_session, user).commit_batch([draft("12", "100")])
        db_session.commit()
        assert db_session.execute(select(AuditLog)).scalars().all() == []


@pytest.fixture
def fail_entry_inserts(db_session):
    """
    Make INSERTs into entries raise a driver OperationalError.

    skip lets that many inserts through first; times is how many fail.
    """
    engine = db_session.get_bind()
    installed = []

    def install(skip=0, times=1):
        state = {"skip": skip, "times": times}

        def fail_insert(conn, cursor, statement, parameters, context, executemany):
            if not statement.startswith("INSERT INTO entries"):
                return
            if state["skip"]:
                state["skip"] -= 1
            elif state["times"]:
                state["times"] -= 1
                raise sqlite3.OperationalError("database is locked")

        event.listen(engine, "before_cursor_execute", fail_insert)
        installed.append(fail_insert)

    yield install
    for fn in installed:
        event.remove(engine, "before_cursor_execute", fn)


class TestSqlWriteFailures:

    def test_transient_insert_queued_and_charged_once(self, db_session, fail_entry_inserts):
        user = make_user(db_session)
        cache = PendingWriteCache()
        service = sql_service(db_session, user, pending=cache)
        fail_entry_inserts()

        result = service.commit_batch([draft("12", "100")])
        db_session.commit()

        assert result.status == BatchStatus.COMMITTED
        assert result.queued_count == 1
        assert len(cache) == 1
        db_session.refresh(user)
        assert user.balance == Decimal("900")

        report = sql_service(db_session, user, pending=cache).reconcile()
        db_session.commit()

        assert len(report.written) == 1
        assert len(cache) == 0
        db_session.refresh(user)
        assert user.balance == Decimal("900")
        assert user.total_spent == Decimal("100")
        assert [e.number for e in service.list_entries()] == ["12"]

    def test_failed_insert_does_not_lose_earlier_writes(self, db_session, fail_entry_inserts):
        user = make_user(db_session)
        service = sql_service(db_session, user)
        fail_entry_inserts(skip=1)

        result = service.commit_batch(
            [draft("12", "100"), draft("34", "100"), draft("56", "100")]
        )
        db_session.commit()

        assert result.status == BatchStatus.PARTIAL
        assert result.success_count == 2
        db_session.refresh(user)
        assert user.balance == Decimal("800")
        assert user.total_spent == Decimal("200")
        assert {e.number for e in service.list_entries()} == {"12", "56"}

    def test_rolled_back_request_drops_queued_write(self, db_session, fail_entry_inserts):
        user = make_user(db_session)
        cache = PendingWriteCache()
        service = sql_service(db_session, user, pending=cache)
        fail_entry_inserts()

        service.commit_batch([draft("12", "100")])
        db_session.rollback()

        assert len(cache) == 0
        db_session.refresh(user)
        assert user.balance == Decimal("1000")
        assert service.reconcile().written == []
