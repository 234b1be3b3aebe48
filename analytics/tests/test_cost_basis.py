"""
Tests for the FIFO cost-basis ledger.
Decimal inputs given as strings so expected values are exact.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from analytics.calculations.cost_basis import (
    CostBasisLedger,
    InsufficientCostBasis,
    build_ledger,
)
from analytics.guardrails import InputValidationError
from analytics.models import Transaction, TransactionType


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _tx(tx_type, quantity, price, days):
    return Transaction(
        asset_id='ETH',
        type=tx_type,
        quantity=Decimal(quantity),
        price_usd=Decimal(price),
        timestamp=T0 + timedelta(days=days),
        wallet_id='w1',
    )


class TestDispose:
    """Tests for FIFO disposal and realized P&L."""

    def test_single_lot_full_disposal(self):
        """Buy 100 @ 50, sell 100 @ 70 -> P&L 2000."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('100', '50', T0)

        pnl = ledger.dispose('100', '70', T0 + timedelta(days=1))

        assert pnl == Decimal('2000')
        assert ledger.total_quantity() == Decimal('0')
        assert len(ledger) == 0

    def test_fifo_consumes_oldest_first(self):
        """Buy 100 @ 50, buy 100 @ 60, sell 150 @ 70 -> 2500, 50 left at 60."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('100', '50', T0)
        ledger.add_acquisition('100', '60', T0 + timedelta(days=1))

        pnl = ledger.dispose('150', '70', T0 + timedelta(days=2))

        # 100 x (70-50) + 50 x (70-60)
        assert pnl == Decimal('2500')
        assert ledger.total_quantity() == Decimal('50')
        assert ledger.average_cost_basis() == Decimal('60')
        assert ledger.total_cost_basis() == Decimal('3000')

    def test_partial_lot_stays_at_head(self):
        """A partially consumed lot keeps its unit cost and position."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('10', '5', T0)
        ledger.add_acquisition('10', '8', T0 + timedelta(days=1))

        ledger.dispose('4', '6', T0 + timedelta(days=2))

        lots = ledger.remaining_lots()
        assert [lot.quantity for lot in lots] == [Decimal('6'), Decimal('10')]
        assert lots[0].cost_basis_per_unit == Decimal('5')

    def test_loss_is_negative(self):
        """Selling below cost realizes a loss."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('2', '100', T0)

        assert ledger.dispose('2', '75', T0) == Decimal('-50')

    def test_decimal_precision_exact(self):
        """Fractional quantities do not accumulate float error."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('0.1', '0.2', T0)
        ledger.add_acquisition('0.2', '0.3', T0)

        pnl = ledger.dispose('0.3', '0.4', T0)

        assert pnl == Decimal('0.04')
        assert ledger.total_quantity() == Decimal('0')

    def test_disposal_recorded(self):
        """Each successful disposal is kept for window attribution."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('100', '50', T0)
        sold_at = T0 + timedelta(days=3)

        ledger.dispose('40', '55', sold_at)

        disposals = ledger.disposals()
        assert len(disposals) == 1
        assert disposals[0].quantity == Decimal('40')
        assert disposals[0].sold_at == sold_at
        assert disposals[0].realized_pnl == Decimal('200')
        assert ledger.realized_pnl() == Decimal('200')


class TestInsufficientCostBasis:
    """Tests for overselling."""

    def test_oversell_raises(self):
        """Disposing more than held raises with requested/available."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('10', '5', T0)

        with pytest.raises(InsufficientCostBasis) as exc_info:
            ledger.dispose('11', '6', T0)

        assert exc_info.value.requested == Decimal('11')
        assert exc_info.value.available == Decimal('10')

    def test_oversell_leaves_ledger_untouched(self):
        """A failed disposal mutates nothing."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('10', '5', T0)
        ledger.add_acquisition('5', '7', T0 + timedelta(days=1))

        with pytest.raises(InsufficientCostBasis):
            ledger.dispose('20', '6', T0 + timedelta(days=2))

        assert ledger.total_quantity() == Decimal('15')
        assert ledger.total_cost_basis() == Decimal('85')
        assert len(ledger) == 2
        assert ledger.disposals() == ()

    def test_dispose_from_empty_ledger(self):
        """Nothing to sell in an empty ledger."""
        with pytest.raises(InsufficientCostBasis):
            CostBasisLedger().dispose('1', '1', T0)


class TestEighteenDecimalQuantities:
    """Lot bookkeeping stays exact for large token balances with 18 decimals."""

    @pytest.mark.parametrize('balance,remainder', [
        ('1000000000000.123456789012345612', '999999999999.123456789012345612'),
        ('1000000000000.123456789012345672', '999999999999.123456789012345672'),
    ])
    def test_full_sale_after_partial(self, balance, remainder):
        """Selling the exact remainder empties the ledger with no dust."""
        ledger = CostBasisLedger()
        ledger.add_acquisition(balance, '0.00001', T0)

        ledger.dispose('1', '0.00002', T0 + timedelta(days=1))
        assert ledger.total_quantity() == Decimal(remainder)

        ledger.dispose(remainder, '0.00002', T0 + timedelta(days=2))

        assert ledger.total_quantity() == Decimal('0')
        assert len(ledger) == 0

    def test_sum_of_lots_is_exact(self):
        """Total quantity equals bought minus sold to the last digit."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('99999999999.999999999999999999', '1', T0)
        ledger.add_acquisition('0.000000000000000001', '1', T0 + timedelta(days=1))

        assert ledger.total_quantity() == Decimal('100000000000')

        ledger.dispose('99999999999.999999999999999998', '1', T0 + timedelta(days=2))

        assert ledger.total_quantity() == Decimal('0.000000000000000002')
        assert [lot.quantity for lot in ledger.remaining_lots()] == [
            Decimal('0.000000000000000001'),
            Decimal('0.000000000000000001'),
        ]


class TestValidation:
    """Tests for rejected inputs."""

    @pytest.mark.parametrize('quantity', ['0', '-1', 'NaN', 'Infinity', 'abc', None])
    def test_invalid_acquisition_quantity(self, quantity):
        """Quantity must be a positive finite decimal."""
        with pytest.raises(InputValidationError):
            CostBasisLedger().add_acquisition(quantity, '1', T0)

    def test_negative_price_rejected(self):
        """Negative prices are malformed."""
        with pytest.raises(InputValidationError):
            CostBasisLedger().add_acquisition('1', '-1', T0)

    def test_zero_price_accepted(self):
        """Airdrops arrive at zero cost."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('5', '0', T0)

        assert ledger.dispose('5', '2', T0) == Decimal('10')

    def test_invalid_disposal_leaves_ledger_untouched(self):
        """Validation happens before any lot is touched."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('5', '1', T0)

        with pytest.raises(InputValidationError):
            ledger.dispose('1', 'NaN', T0)

        assert ledger.total_quantity() == Decimal('5')


class TestAggregates:
    """Tests for totals, averages and marks."""

    def test_empty_ledger_average_is_zero(self):
        """Average cost of nothing is 0, not an error."""
        ledger = CostBasisLedger()

        assert ledger.average_cost_basis() == Decimal('0')
        assert ledger.total_cost_basis() == Decimal('0')
        assert ledger.total_quantity() == Decimal('0')

    def test_weighted_average(self):
        """Average is weighted by quantity."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('1', '10', T0)
        ledger.add_acquisition('3', '20', T0)

        assert ledger.average_cost_basis() == Decimal('17.5')

    def test_unrealized_pnl(self):
        """Open lots marked to market."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('2', '10', T0)
        ledger.add_acquisition('3', '20', T0)

        # 5 x 25 - (20 + 60)
        assert ledger.unrealized_pnl('25') == Decimal('45')

    def test_remaining_lots_are_copies(self):
        """Mutating a snapshot does not reach the ledger."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('2', '10', T0)

        ledger.remaining_lots()[0].quantity = Decimal('999')

        assert ledger.total_quantity() == Decimal('2')

    def test_reset(self):
        """Reset clears lots and disposal history."""
        ledger = CostBasisLedger()
        ledger.add_acquisition('2', '10', T0)
        ledger.dispose('1', '12', T0)

        ledger.reset()

        assert ledger.total_quantity() == Decimal('0')
        assert ledger.disposals() == ()
        assert ledger.realized_pnl() == Decimal('0')


class TestBuildLedger:
    """Tests for replaying transaction history."""

    def test_replays_in_timestamp_order(self):
        """Out-of-order input is sorted before replay."""
        history = [
            _tx(TransactionType.SELL, '150', '70', 2),
            _tx(TransactionType.BUY, '100', '60', 1),
            _tx(TransactionType.BUY, '100', '50', 0),
        ]

        ledger = build_ledger(history)

        assert ledger.realized_pnl() == Decimal('2500')
        assert ledger.total_quantity() == Decimal('50')

    def test_transfers_have_no_cost_basis_effect(self):
        """Transfers neither add nor consume lots."""
        history = [
            _tx(TransactionType.BUY, '10', '5', 0),
            _tx(TransactionType.TRANSFER, '4', '0', 1),
        ]

        ledger = build_ledger(history)

        assert ledger.total_quantity() == Decimal('10')
        assert ledger.realized_pnl() == Decimal('0')

    def test_history_that_oversells_raises(self):
        """Selling before buying surfaces InsufficientCostBasis."""
        history = [
            _tx(TransactionType.SELL, '1', '5', 0),
            _tx(TransactionType.BUY, '1', '4', 1),
        ]

        with pytest.raises(InsufficientCostBasis):
            build_ledger(history)

    def test_apply_transaction_returns_pnl(self):
        """Sells return their realized P&L, buys return zero."""
        ledger = CostBasisLedger()

        assert ledger.apply_transaction(_tx(TransactionType.BUY, '1', '10', 0)) == Decimal('0')
        assert ledger.apply_transaction(_tx(TransactionType.SELL, '1', '13', 1)) == Decimal('3')
