"""
test_ledger.py - balance mutation, entry recording and the transactional boundary
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm.exc import StaleDataError

from profitra import crud, ledger, models
from profitra.core import errors
from profitra.schemas import OpenAccount
from tests.helpers import START, balance, fund


def _open(database) -> int:
    return database.run(lambda db: crud.open_account(db, OpenAccount())).id


class TestApplyBalanceChange:

    def test_credit_and_debit_return_snapshots(self, database):
        account_id = _open(database)

        def _move(db):
            acc = ledger.lock_account(db, account_id)
            first = ledger.apply_balance_change(db, acc, Decimal("100"))
            second = ledger.apply_balance_change(db, acc, Decimal("-40"))
            return first, second

        first, second = database.run(_move)
        assert first == (Decimal("0"), Decimal("100"))
        assert second == (Decimal("100"), Decimal("60"))

    def test_overdraw_fails_and_leaves_balance(self, database):
        account_id = _open(database)
        database.run(lambda db: ledger.apply_balance_change(db, ledger.lock_account(db, account_id), Decimal("30")))

        with pytest.raises(errors.InsufficientFunds):
            database.run(lambda db: ledger.apply_balance_change(db, ledger.lock_account(db, account_id), Decimal("-30.00000001")))

        with database.transaction() as db:
            assert crud.get_account(db, account_id).balance == Decimal("30")

    def test_draining_to_exactly_zero_is_allowed(self, database):
        account_id = _open(database)

        def _drain(db):
            acc = ledger.lock_account(db, account_id)
            ledger.apply_balance_change(db, acc, Decimal("5"))
            return ledger.apply_balance_change(db, acc, Decimal("-5"))

        assert database.run(_drain) == (Decimal("5"), Decimal("0"))

    def test_unknown_account(self, database):
        with pytest.raises(errors.NotFound):
            database.run(lambda db: ledger.lock_account(db, 999))

    def test_error_rolls_back_the_whole_unit(self, database):
        account_id = _open(database)

        def _half_done(db):
            acc = ledger.lock_account(db, account_id)
            ledger.apply_balance_change(db, acc, Decimal("50"))
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            database.run(_half_done)

        with database.transaction() as db:
            assert crud.get_account(db, account_id).balance == Decimal("0")


class TestRecordEntry:

    def test_pending_entry_snapshots_current_balance(self, database):
        account_id = _open(database)

        def _record(db):
            acc = ledger.lock_account(db, account_id)
            ledger.apply_balance_change(db, acc, Decimal("10"))
            return ledger.record_entry(
                db,
                account=acc,
                kind=models.KIND_DEPOSIT,
                amount=Decimal("5"),
                status=models.ENTRY_PENDING,
                description="pending",
                now=START,
            )

        entry = database.run(_record)
        assert entry.balance_before == Decimal("10")
        assert entry.balance_after == Decimal("10")

    def test_completed_entry_must_match_direction(self, database):
        account_id = _open(database)

        def _bad(db):
            acc = ledger.lock_account(db, account_id)
            return ledger.record_entry(
                db,
                account=acc,
                kind=models.KIND_WITHDRAWAL,
                amount=Decimal("5"),
                status=models.ENTRY_COMPLETED,
                description="wrong way round",
                balance_before=Decimal("0"),
                balance_after=Decimal("5"),
                now=START,
            )

        with pytest.raises(errors.ValidationError):
            database.run(_bad)

    def test_unknown_kind_rejected(self, database):
        account_id = _open(database)
        with pytest.raises(errors.ValidationError):
            database.run(lambda db: ledger.record_entry(
                db,
                account=ledger.lock_account(db, account_id),
                kind="reinvestment",
                amount=Decimal("1"),
                status=models.ENTRY_PENDING,
                description="x",
                now=START,
            ))


class TestSettleEntry:

    def test_settles_exactly_once(self, engine, account):
        req = engine.submit_deposit(account.id, Decimal("20"), "BTC")

        def _settle(db):
            return ledger.settle_entry(
                db,
                reference_type=models.REF_DEPOSIT,
                reference_id=req.id,
                kind=models.KIND_DEPOSIT,
                status=models.ENTRY_FAILED,
                now=START,
            )

        entry = engine.database.run(_settle)
        assert entry.status == models.ENTRY_FAILED

        with pytest.raises(errors.AlreadyProcessed):
            engine.database.run(_settle)


class TestListEntries:

    def test_filters_and_pagination(self, engine, account, admin, clock):
        for amount in (10, 20, 30):
            fund(engine, account.id, amount, admin.id)
            clock.advance(minutes=1)
        engine.submit_withdrawal(account.id, Decimal("15"), "USDT", "wallet-1")

        page = engine.list_ledger_entries(account.id, {}, {"page": 1, "limit": 2})
        assert page.total == 4
        assert page.pages == 2
        assert len(page.items) == 2
        # newest first
        assert page.items[0].kind == models.KIND_WITHDRAWAL

        deposits = engine.list_ledger_entries(account.id, {"kind": "deposit", "status": "completed"}, None)
        assert deposits.total == 3
        assert [e.amount for e in deposits.items] == [Decimal("30"), Decimal("20"), Decimal("10")]

        early = engine.list_ledger_entries(account.id, {"created_to": START + timedelta(seconds=30)}, None)
        assert early.total == 1

    def test_other_accounts_are_not_listed(self, engine, account, admin):
        fund(engine, admin.id, 5, admin.id)
        assert engine.list_ledger_entries(account.id, {}, {}).total == 0
        assert engine.list_ledger_entries(None, {}, {}).total == 1

    def test_bad_filter_is_a_validation_error(self, engine, account):
        with pytest.raises(errors.ValidationError):
            engine.list_ledger_entries(account.id, {"kind": "bonus"}, {})
        with pytest.raises(errors.ValidationError):
            engine.list_ledger_entries(account.id, {}, {"limit": 0})


class TestOptimisticLocking:

    def test_stale_balance_write_is_detected(self, file_database):
        account_id = _open(file_database)

        with pytest.raises(StaleDataError):
            with file_database.transaction() as slow:
                stale = slow.query(models.Account).filter(models.Account.id == account_id).one()
                with file_database.transaction() as fast:
                    fresh = fast.query(models.Account).filter(models.Account.id == account_id).one()
                    ledger.apply_balance_change(fast, fresh, Decimal("100"))
                ledger.apply_balance_change(slow, stale, Decimal("50"))

        with file_database.transaction() as db:
            assert crud.get_account(db, account_id).balance == Decimal("100")

    def test_run_retries_and_rereads(self, file_database):
        account_id = _open(file_database)
        attempts = []

        def _credit(db):
            acc = db.query(models.Account).filter(models.Account.id == account_id).one()
            if not attempts:
                with file_database.transaction() as other:
                    competitor = other.query(models.Account).filter(models.Account.id == account_id).one()
                    ledger.apply_balance_change(other, competitor, Decimal("100"))
            attempts.append(1)
            return ledger.apply_balance_change(db, acc, Decimal("50"))

        before, after = file_database.run(_credit)
        assert len(attempts) == 2
        assert (before, after) == (Decimal("100"), Decimal("150"))

    def test_retries_exhausted_surface_as_conflict(self, database):
        calls = []

        def _always_stale(db):
            calls.append(1)
            raise StaleDataError("lost the race")

        with pytest.raises(errors.ConcurrencyConflict):
            database.run(_always_stale, retries=2)
        assert len(calls) == 3


def test_balance_helper_reads_committed_state(engine, account, admin):
    fund(engine, account.id, 12.5, admin.id)
    assert balance(engine, account.id) == Decimal("12.5")
