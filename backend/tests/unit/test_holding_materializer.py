"""Tests for HoldingMaterializer persistence, reconciliation and purging."""

from datetime import date
from decimal import Decimal

import pytest

from config import settings
from models import Holding
from services.holding_calculator import LedgerInconsistencyError
from services.holding_materializer import HoldingMaterializer, MaterializationStrategy
from tests.fixtures import add_holding, add_price, add_trade, get_or_create_security

AS_OF = date(2024, 1, 5)


def _materialize(db, account, strategy=MaterializationStrategy.FORWARD, as_of=AS_OF):
    return HoldingMaterializer(db, account, strategy=strategy, as_of=as_of).materialize_holdings()


def _rows(db, account_id, security_id=None):
    query = db.query(Holding).filter(Holding.account_id == account_id)
    if security_id is not None:
        query = query.filter(Holding.security_id == security_id)
    return {h.date: h for h in query.order_by(Holding.date).all()}


@pytest.fixture
def two_buys(db, account, security):
    """Buy 10 @ 100 on Jan 2 and 10 @ 120 on Jan 5."""
    add_trade(db, account, security, date(2024, 1, 2), "10", "100")
    add_trade(db, account, security, date(2024, 1, 5), "10", "120")
    db.commit()


class TestForwardMaterialization:
    def test_persists_calculated_holdings(self, db, account, security, two_buys):
        result = _materialize(db, account)

        rows = _rows(db, account.id)
        assert sorted(rows) == [
            date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 5),
        ]
        last = rows[date(2024, 1, 5)]
        assert last.qty == Decimal("20")
        assert last.price == Decimal("120")
        assert last.amount == Decimal("2400")
        assert last.cost_basis == Decimal("110")
        assert last.cost_basis_source == "calculated"
        assert last.provider_name is None
        assert result.rows_with_cost_basis == 4
        assert result.rows_without_cost_basis == 0
        assert len(result.holdings) == 4

    def test_rerun_is_idempotent(self, db, account, security, two_buys):
        _materialize(db, account)
        before = {
            d: (h.id, h.qty, h.price, h.amount, h.cost_basis, h.cost_basis_source)
            for d, h in _rows(db, account.id).items()
        }

        result = _materialize(db, account)
        after = {
            d: (h.id, h.qty, h.price, h.amount, h.cost_basis, h.cost_basis_source)
            for d, h in _rows(db, account.id).items()
        }

        assert after == before
        assert result.rows_with_cost_basis == 0
        assert result.rows_without_cost_basis == 4
        assert result.rows_purged == 0

    def test_missing_cost_basis_never_erases_stored_value(self, db, account, security, two_buys):
        # Stored price on the start date yields a row with no computable cost basis
        add_price(db, security, date(2024, 1, 1), "95")
        add_holding(
            db, account, security, date(2024, 1, 1), qty="0", price="95",
            cost_basis=Decimal("5.00"), cost_basis_source="provider",
        )
        db.commit()

        _materialize(db, account)

        row = _rows(db, account.id)[date(2024, 1, 1)]
        assert row.qty == Decimal("0")
        assert row.cost_basis == Decimal("5.00")
        assert row.cost_basis_source == "provider"

    def test_calculated_replaces_provider_cost_basis(self, db, account, security, two_buys):
        add_holding(
            db, account, security, date(2024, 1, 2), qty="10", price="100",
            cost_basis=Decimal("5.00"), cost_basis_source="provider",
        )
        db.commit()

        _materialize(db, account)

        row = _rows(db, account.id)[date(2024, 1, 2)]
        assert row.cost_basis == Decimal("100")
        assert row.cost_basis_source == "calculated"

    def test_manual_cost_basis_survives(self, db, account, security, two_buys):
        add_holding(
            db, account, security, date(2024, 1, 5), qty="1", price="1",
            cost_basis=Decimal("99"), cost_basis_source="manual",
        )
        db.commit()

        _materialize(db, account)

        row = _rows(db, account.id)[date(2024, 1, 5)]
        assert row.qty == Decimal("20")
        assert row.cost_basis == Decimal("99")
        assert row.cost_basis_source == "manual"

    def test_locked_row_keeps_cost_basis_but_updates_quantity(self, db, account, security, two_buys):
        add_holding(
            db, account, security, date(2024, 1, 3), qty="1", price="1",
            cost_basis=Decimal("42"), cost_basis_source="calculated", cost_basis_locked=True,
        )
        db.commit()

        result = _materialize(db, account)

        row = _rows(db, account.id)[date(2024, 1, 3)]
        assert row.qty == Decimal("10")
        assert row.price == Decimal("100")
        assert row.cost_basis == Decimal("42")
        assert row.cost_basis_locked is True
        assert result.rows_without_cost_basis == 1

    def test_closed_position_persisted_as_zero(self, db, account, security):
        add_trade(db, account, security, date(2024, 1, 1), "10", "100")
        add_trade(db, account, security, date(2024, 1, 2), "-10", "105")
        db.commit()

        _materialize(db, account, as_of=date(2024, 1, 2))

        rows = _rows(db, account.id)
        assert rows[date(2024, 1, 1)].qty == Decimal("10")
        assert rows[date(2024, 1, 2)].qty == Decimal("0")

    def test_small_batches_write_every_row(self, db, account, security, two_buys, monkeypatch):
        monkeypatch.setattr(settings, "MATERIALIZE_BATCH_SIZE", 3)
        _materialize(db, account)
        assert len(_rows(db, account.id)) == 4

    def test_exchange_rate_fallbacks_reported(self, db, account, security):
        add_trade(db, account, security, date(2024, 1, 2), "10", "100", currency="GBP")
        db.commit()

        result = _materialize(db, account, as_of=date(2024, 1, 2))
        assert result.exchange_rate_fallbacks > 0

    def test_ledger_inconsistency_writes_nothing(self, db, account, security):
        add_trade(db, account, security, date(2024, 1, 2), "5", "100")
        add_trade(db, account, security, date(2024, 1, 3), "-6", "100")
        db.commit()

        with pytest.raises(LedgerInconsistencyError):
            _materialize(db, account, as_of=date(2024, 1, 3))
        assert _rows(db, account.id) == {}


class TestProviderOwnedRows:
    def test_provider_securities_skipped_and_cleaned_up(self, db, account, security, two_buys):
        other = get_or_create_security(db, "MSFT")
        add_trade(db, account, other, date(2024, 1, 2), "5", "300")
        add_holding(db, account, other, date(2024, 1, 4), qty="5", price="310")
        add_holding(
            db, account, other, date(2024, 1, 5), qty="5", price="320",
            provider_name="SnapTrade",
        )
        db.commit()

        result = _materialize(db, account)

        other_rows = _rows(db, account.id, other.id)
        assert sorted(other_rows) == [date(2024, 1, 5)]
        assert other_rows[date(2024, 1, 5)].price == Decimal("320")
        assert other_rows[date(2024, 1, 5)].provider_name == "SnapTrade"
        assert result.rows_skipped_provider == 1
        assert result.rows_purged == 1
        assert len(_rows(db, account.id, security.id)) == 4

    def test_reverse_skips_provider_owned_keys(self, db, linked_account, security):
        add_trade(db, linked_account, security, date(2024, 1, 2), "10", "100")
        add_holding(
            db, linked_account, security, AS_OF, qty="10", price="111",
            provider_name="SnapTrade", cost_basis=Decimal("90"), cost_basis_source="provider",
        )
        db.commit()

        result = _materialize(db, linked_account, strategy=MaterializationStrategy.REVERSE)

        rows = _rows(db, linked_account.id)
        assert rows[AS_OF].price == Decimal("111")
        assert rows[AS_OF].cost_basis == Decimal("90")
        assert rows[date(2024, 1, 2)].qty == Decimal("10")
        assert rows[date(2024, 1, 2)].cost_basis is None
        assert result.rows_skipped_provider == 1
        assert result.rows_with_cost_basis == 0


    def test_reverse_replays_trades_after_provider_snapshot(self, db, linked_account, security):
        add_trade(db, linked_account, security, date(2024, 1, 2), "10", "100")
        add_trade(db, linked_account, security, date(2024, 1, 4), "5", "110")
        add_holding(
            db, linked_account, security, date(2024, 1, 3),
            qty="10", price="105", provider_name="SnapTrade",
        )
        db.commit()

        _materialize(
            db, linked_account, strategy=MaterializationStrategy.REVERSE, as_of=date(2024, 1, 4)
        )

        rows = _rows(db, linked_account.id)
        assert rows[date(2024, 1, 4)].qty == Decimal("15")
        assert rows[date(2024, 1, 3)].qty == Decimal("10")
        assert rows[date(2024, 1, 3)].provider_name == "SnapTrade"
        assert rows[date(2024, 1, 2)].qty == Decimal("10")

    def test_reverse_keeps_calculated_rows_for_provider_securities(
        self, db, linked_account, security
    ):
        add_trade(db, linked_account, security, date(2024, 1, 2), "10", "100")
        add_holding(
            db, linked_account, security, AS_OF, qty="10", price="111",
            provider_name="SnapTrade",
        )
        db.commit()

        result = _materialize(db, linked_account, strategy=MaterializationStrategy.REVERSE)

        rows = _rows(db, linked_account.id, security.id)
        # Reverse history is built around the provider series, not replaced by it
        assert sorted(rows) == [
            date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4), AS_OF,
        ]
        assert [rows[d].provider_name for d in sorted(rows)] == [None, None, None, "SnapTrade"]
        assert result.rows_skipped_provider == 1
        assert result.rows_purged == 0


class TestPurgeStaleHoldings:
    def test_rows_before_start_date_removed(self, db, account, security, two_buys):
        other = get_or_create_security(db, "MSFT")
        add_holding(db, account, security, date(2023, 12, 1))
        add_holding(db, account, other, date(2023, 11, 1), provider_name="SnapTrade")
        db.commit()

        result = _materialize(db, account)

        rows = _rows(db, account.id)
        assert date(2023, 12, 1) not in rows
        assert rows[date(2023, 11, 1)].provider_name == "SnapTrade"
        assert result.rows_purged == 1

    def test_securities_no_longer_in_ledger_removed(self, db, account, security, two_buys):
        gone = get_or_create_security(db, "GONE")
        add_holding(db, account, gone, date(2024, 1, 3))
        db.commit()

        _materialize(db, account)

        assert _rows(db, account.id, gone.id) == {}

    def test_empty_ledger_clears_calculated_rows(self, db, account, security):
        add_holding(db, account, security, date(2024, 1, 3))
        add_holding(db, account, security, date(2024, 1, 4), provider_name="SnapTrade")
        db.commit()

        result = _materialize(db, account)

        assert result.holdings == []
        assert result.rows_purged == 1
        assert sorted(_rows(db, account.id)) == [date(2024, 1, 4)]

    def test_other_accounts_untouched(self, db, account, linked_account, security, two_buys):
        add_holding(db, linked_account, security, date(2023, 1, 1))
        db.commit()

        _materialize(db, account)

        assert len(_rows(db, linked_account.id)) == 1

    def test_reverse_mode_does_not_purge(self, db, linked_account, security):
        add_trade(db, linked_account, security, date(2024, 1, 2), "10", "100")
        add_holding(db, linked_account, security, date(2023, 6, 1))
        db.commit()

        result = _materialize(db, linked_account, strategy=MaterializationStrategy.REVERSE)

        assert result.rows_purged == 0
        assert date(2023, 6, 1) in _rows(db, linked_account.id)
