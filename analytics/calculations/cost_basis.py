"""
FIFO cost-basis ledger.
Tracks acquisition lots for one (wallet, asset) pair and turns disposals into
realized P&L. Earliest lots are always consumed first.

The ledger is the only mutable object in the engine: one instance per
(wallet, asset), single writer. Callers that feed it concurrently must
serialize access themselves.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Deque, Iterable, List, Tuple

from analytics.guardrails import require_positive, to_decimal
from analytics.models import Transaction, TransactionType
from analytics.precision import ZERO, decimal_context, quantity_context

logger = logging.getLogger(__name__)


class InsufficientCostBasis(Exception):
    """Raised when a disposal requests more units than the ledger holds."""

    def __init__(self, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient cost basis: trying to dispose {requested} "
            f"but only {available} available in lots"
        )


@dataclass
class TaxLot:
    """A discrete acquisition: quantity still held, unit cost, acquisition time."""
    quantity: Decimal
    cost_basis_per_unit: Decimal
    acquired_at: datetime


@dataclass(frozen=True)
class Disposal:
    """Record of one completed disposal."""
    quantity: Decimal
    sale_price: Decimal
    sold_at: datetime
    realized_pnl: Decimal


class CostBasisLedger:
    """
    FIFO queue of tax lots for a single asset.

    Example:
        ledger = CostBasisLedger()
        ledger.add_acquisition('100', '50', t0)   # buy 100 @ $50
        ledger.add_acquisition('100', '60', t1)   # buy 100 @ $60
        ledger.dispose('150', '70', t2)           # -> Decimal('2500')
        ledger.total_quantity()                   # -> Decimal('50')
        ledger.average_cost_basis()               # -> Decimal('60')
    """

    def __init__(self):
        self._lots: Deque[TaxLot] = deque()
        self._disposals: List[Disposal] = []

    def add_acquisition(self, quantity: Any, price_per_unit: Any, acquired_at: datetime) -> None:
        """
        Append a new lot at the tail of the queue.

        Args:
            quantity: Units acquired (> 0)
            price_per_unit: Cost per unit in USD (>= 0)
            acquired_at: Acquisition timestamp

        Raises:
            InputValidationError: If quantity or price is invalid
        """
        qty = require_positive(to_decimal(quantity, 'quantity'), 'quantity')
        price = to_decimal(price_per_unit, 'price_per_unit')

        self._lots.append(TaxLot(quantity=qty, cost_basis_per_unit=price, acquired_at=acquired_at))

    def dispose(self, quantity: Any, sale_price: Any, sold_at: datetime) -> Decimal:
        """
        Consume lots from the head and return realized P&L.

        Availability is checked before any lot is touched, so a failed
        disposal leaves the ledger exactly as it was.

        Args:
            quantity: Units sold (> 0)
            sale_price: Sale price per unit in USD (>= 0)
            sold_at: Disposal timestamp

        Returns:
            Realized P&L in USD (positive = profit, negative = loss)

        Raises:
            InputValidationError: If quantity or price is invalid
            InsufficientCostBasis: If fewer units are held than requested
        """
        qty = require_positive(to_decimal(quantity, 'quantity'), 'quantity')
        price = to_decimal(sale_price, 'sale_price')

        available = self.total_quantity()
        if available < qty:
            raise InsufficientCostBasis(requested=qty, available=available)

        remaining = qty
        total_pnl = ZERO

        while remaining > 0 and self._lots:
            lot = self._lots[0]
            matched = min(remaining, lot.quantity)

            with decimal_context():
                total_pnl += (price - lot.cost_basis_per_unit) * matched

            with quantity_context():
                lot.quantity -= matched
                remaining -= matched

            if lot.quantity == 0:
                self._lots.popleft()

        self._disposals.append(
            Disposal(quantity=qty, sale_price=price, sold_at=sold_at, realized_pnl=total_pnl)
        )
        return total_pnl

    def total_cost_basis(self) -> Decimal:
        """Sum of quantity x unit cost over all remaining lots."""
        with decimal_context():
            return sum((lot.quantity * lot.cost_basis_per_unit for lot in self._lots), ZERO)

    def total_quantity(self) -> Decimal:
        """Units still held across all lots, summed exactly."""
        with quantity_context():
            return sum((lot.quantity for lot in self._lots), ZERO)

    def average_cost_basis(self) -> Decimal:
        """Weighted average unit cost; 0 for an empty ledger."""
        total_quantity = self.total_quantity()
        if total_quantity == 0:
            return ZERO

        with decimal_context():
            return self.total_cost_basis() / total_quantity

    def unrealized_pnl(self, market_price: Any) -> Decimal:
        """Mark remaining lots to market: quantity x price - cost basis."""
        price = to_decimal(market_price, 'market_price')
        with decimal_context():
            return self.total_quantity() * price - self.total_cost_basis()

    def realized_pnl(self) -> Decimal:
        """Total P&L realized by every disposal so far."""
        with decimal_context():
            return sum((d.realized_pnl for d in self._disposals), ZERO)

    def remaining_lots(self) -> Tuple[TaxLot, ...]:
        """Copies of the open lots, oldest first (safe to inspect)."""
        return tuple(replace(lot) for lot in self._lots)

    def disposals(self) -> Tuple[Disposal, ...]:
        """Disposals recorded so far, in the order they happened."""
        return tuple(self._disposals)

    def apply_transaction(self, tx: Transaction) -> Decimal:
        """
        Feed one transaction history entry into the ledger.

        Transfers move units between the holder's own wallets and have no
        cost-basis effect here.

        Returns:
            Realized P&L of the entry (0 for buys and transfers)
        """
        if tx.type == TransactionType.BUY:
            self.add_acquisition(tx.quantity, tx.price_usd, tx.timestamp)
            return ZERO

        if tx.type == TransactionType.SELL:
            return self.dispose(tx.quantity, tx.price_usd, tx.timestamp)

        logger.debug(f"Ignoring transfer of {tx.quantity} {tx.asset_id} at {tx.timestamp}")
        return ZERO

    def reset(self) -> None:
        """Drop every lot and disposal record."""
        self._lots.clear()
        self._disposals.clear()

    def __len__(self) -> int:
        return len(self._lots)


def build_ledger(transactions: Iterable[Transaction]) -> CostBasisLedger:
    """
    Reconstruct a ledger from one asset's transaction history.

    Transactions are replayed in timestamp order (stable for ties).

    Args:
        transactions: Transaction history for a single (wallet, asset)

    Returns:
        Ledger holding the open lots and disposal history

    Raises:
        InsufficientCostBasis: If the history sells more than it bought
    """
    ledger = CostBasisLedger()
    for tx in sorted(transactions, key=lambda t: t.timestamp):
        ledger.apply_transaction(tx)
    return ledger
