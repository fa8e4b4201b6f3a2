# Overview: Service-layer operations for fuel sales; records dispensing events.

"""
Sales Recorder

WHY: Every dispensing event becomes an immutable Sale record. Sales feed
invoicing (credit-account customers are billed later) and shift
reconciliation (cash sales expected in the drawer).

DESIGN PRINCIPLES:
- total_amount_cents is computed here, never trusted from the caller
- Recording a sale never touches inventory or customer balances
- invoice_id starts as None and is stamped once by the Invoice Manager
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterator

from stationledger.errors import InvalidStateError, NotFoundError, ValidationError
from stationledger.models import Customer, FuelType, Sale, Vehicle
from stationledger.time_utils import utcnow
from stationledger.validation import (
    coerce_cents,
    coerce_choice,
    coerce_datetime,
    coerce_id,
    coerce_optional_datetime,
    coerce_optional_id,
    coerce_quantity,
    line_total_cents,
)


logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

SALE_CASH = "cash"
SALE_CREDIT_CARD = "credit_card"
SALE_DEBIT_CARD = "debit_card"
SALE_CREDIT_ACCOUNT = "credit_account"

VALID_SALE_PAYMENT_METHODS = [
    SALE_CASH,
    SALE_CREDIT_CARD,
    SALE_DEBIT_CARD,
    SALE_CREDIT_ACCOUNT,
]

CUSTOMER_ACTIVE = "active"


class CashSaleTotals:
    """
    Lazy, restartable sequence of cash-sale totals (cents) for a station window.

    Each iteration runs the query again, so the same object can be summed
    more than once and always reflects the store.
    """

    def __init__(self, store, station_id: int, window_start: datetime, window_end: datetime, employee_id: int | None = None):
        self._store = store
        self.station_id = station_id
        self.window_start = window_start
        self.window_end = window_end
        self.employee_id = employee_id

    def __iter__(self) -> Iterator[int]:
        filters = {"station_id": self.station_id, "payment_method": SALE_CASH}
        if self.employee_id is not None:
            filters["employee_id"] = self.employee_id
        sales = self._store.iter_find(
            Sale,
            filters,
            sort=["transaction_date", "id"],
            conditions=(
                Sale.transaction_date >= self.window_start,
                Sale.transaction_date <= self.window_end,
            ),
        )
        for sale in sales:
            yield sale.total_amount_cents


class SalesRecorder:
    """
    Converts dispensing events into persisted Sale records.

    Args:
        store: LedgerStore
        shift_gate: optional callable(employee_id, dispenser_id) that raises
            when the employee may not sell on that dispenser
    """

    def __init__(self, store, *, shift_gate: Callable[[int, int], object] | None = None):
        self.store = store
        self.shift_gate = shift_gate

    def record_sale(
        self,
        *,
        station_id: int,
        dispenser_id: int,
        employee_id: int,
        fuel_type_id: int,
        quantity_liters,
        payment_method: str,
        price_per_liter_cents: int | None = None,
        customer_id: int | None = None,
        vehicle_id: int | None = None,
        transaction_date=None,
    ) -> Sale:
        """
        Persist a fuel sale.

        price_per_liter_cents defaults to the fuel type's current price.

        Raises:
            ValidationError: non-positive quantity, negative price, unknown payment
                method, credit_account sale without customer, vehicle of another customer
            NotFoundError: unknown fuel type, customer or vehicle
            InvalidStateError: no active shift on the dispenser (when gated),
                credit_account sale for a customer that is not active
        """
        quantity = coerce_quantity("quantity_liters", quantity_liters)
        method = coerce_choice("payment_method", payment_method, VALID_SALE_PAYMENT_METHODS)
        if price_per_liter_cents is not None:
            price_per_liter_cents = coerce_cents("price_per_liter_cents", price_per_liter_cents)

        station_id = coerce_id("station_id", station_id)
        dispenser_id = coerce_id("dispenser_id", dispenser_id)
        employee_id = coerce_id("employee_id", employee_id)
        fuel_type_id = coerce_id("fuel_type_id", fuel_type_id)
        customer_id = coerce_optional_id("customer_id", customer_id)
        vehicle_id = coerce_optional_id("vehicle_id", vehicle_id)
        occurred_at = coerce_datetime("transaction_date", transaction_date) if transaction_date else utcnow()

        if method == SALE_CREDIT_ACCOUNT and customer_id is None:
            raise ValidationError("customer_id is required for credit_account sales")

        if self.shift_gate is not None:
            self.shift_gate(employee_id, dispenser_id)

        fuel_type = self.store.require(FuelType, fuel_type_id, label="Fuel type")
        if price_per_liter_cents is None:
            price_per_liter_cents = fuel_type.price_per_liter_cents

        if customer_id is not None:
            customer = self.store.require(Customer, customer_id)
            if method == SALE_CREDIT_ACCOUNT and customer.status != CUSTOMER_ACTIVE:
                raise InvalidStateError(
                    f"Customer {customer_id} is {customer.status}; credit sales are not allowed",
                    details={"customer_id": customer_id, "status": customer.status},
                )

        if vehicle_id is not None:
            vehicle = self.store.require(Vehicle, vehicle_id)
            if customer_id is not None and vehicle.customer_id != customer_id:
                raise ValidationError(
                    f"Vehicle {vehicle_id} does not belong to customer {customer_id}",
                    details={"vehicle_id": vehicle_id, "customer_id": customer_id},
                )

        sale = self.store.create(
            Sale,
            station_id=station_id,
            dispenser_id=dispenser_id,
            employee_id=employee_id,
            customer_id=customer_id,
            vehicle_id=vehicle_id,
            fuel_type_id=fuel_type_id,
            quantity_liters=quantity,
            price_per_liter_cents=price_per_liter_cents,
            total_amount_cents=line_total_cents(quantity, price_per_liter_cents, name="total_amount_cents"),
            payment_method=method,
            transaction_date=occurred_at,
            invoice_id=None,
        )

        logger.info(
            "Sale %s recorded: station=%s dispenser=%s liters=%s total_cents=%s method=%s",
            sale.id, station_id, dispenser_id, quantity, sale.total_amount_cents, method,
        )
        return sale

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    def sum_cash_sales(
        self,
        station_id: int,
        window_start,
        window_end,
        *,
        employee_id: int | None = None,
    ) -> CashSaleTotals:
        """
        Cash-sale totals for a station between window_start and window_end (inclusive).

        Returns a lazy, restartable iterable; callers sum() it.
        """
        start = coerce_datetime("window_start", window_start)
        end = coerce_datetime("window_end", window_end)
        if end < start:
            raise ValidationError("window_end must not be before window_start")
        return CashSaleTotals(self.store, coerce_id("station_id", station_id), start, end, employee_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_sale(self, sale_id: int) -> Sale:
        return self.store.require(Sale, coerce_id("sale_id", sale_id))

    def _between(self, filters: dict, start, end) -> list[Sale]:
        start = coerce_optional_datetime("start", start)
        end = coerce_optional_datetime("end", end)
        conditions = []
        if start is not None:
            conditions.append(Sale.transaction_date >= start)
        if end is not None:
            conditions.append(Sale.transaction_date <= end)
        return self.store.find(Sale, filters, sort=["-transaction_date", "-id"], conditions=conditions)

    def list_sales(self, station_id: int, start=None, end=None) -> list[Sale]:
        return self._between({"station_id": coerce_id("station_id", station_id)}, start, end)

    def customer_sales(self, customer_id: int, start=None, end=None) -> list[Sale]:
        return self._between({"customer_id": coerce_id("customer_id", customer_id)}, start, end)

    def vehicle_sales(self, vehicle_id: int, start=None, end=None) -> list[Sale]:
        return self._between({"vehicle_id": coerce_id("vehicle_id", vehicle_id)}, start, end)

    def uninvoiced_sales(self, customer_id: int) -> list[Sale]:
        """Credit sales for a customer not yet on any invoice, oldest first."""
        customer_id = coerce_id("customer_id", customer_id)
        if self.store.get_by_id(Customer, customer_id) is None:
            raise NotFoundError(f"Customer {customer_id} not found", details={"id": customer_id})
        return self.store.find(
            Sale,
            {"customer_id": customer_id, "invoice_id": None},
            sort=["transaction_date", "id"],
        )
