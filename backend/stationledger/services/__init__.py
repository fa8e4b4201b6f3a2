# Overview: Wires the ledger services around one store instance.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .invoice_service import InvoiceManager
from .payment_service import PaymentProcessor
from .sales_service import SalesRecorder
from .shift_service import ShiftManager


EXTENSION_KEY = "stationledger"


@dataclass
class LedgerServices:
    store: object
    sales: SalesRecorder
    shifts: ShiftManager
    invoices: InvoiceManager
    payments: PaymentProcessor

    def close(self) -> None:
        self.store.close()


def build_services(store, config) -> LedgerServices:
    """
    Build every service around the same store.

    config is a mapping (Flask app.config) providing REQUIRE_ACTIVE_SHIFT_FOR_SALES
    and INVOICE_NUMBER_PREFIX.
    """
    sales = SalesRecorder(store)
    shifts = ShiftManager(store, sales)
    if config.get("REQUIRE_ACTIVE_SHIFT_FOR_SALES", True):
        sales.shift_gate = shifts.require_active_shift

    return LedgerServices(
        store=store,
        sales=sales,
        shifts=shifts,
        invoices=InvoiceManager(store, number_prefix=config.get("INVOICE_NUMBER_PREFIX", "INV")),
        payments=PaymentProcessor(store),
    )


def get_services() -> LedgerServices:
    return current_app.extensions[EXTENSION_KEY]
