# Overview: Service-layer operations for invoices; builds invoices and tracks paid/outstanding amounts.

"""
Invoice Manager

WHY: Credit-account customers are billed with invoices assembled from line
items, usually one per fuel sale taken on account.

DESIGN PRINCIPLES:
- total_amount_cents is derived from the items; caller totals are ignored
- A sale can be billed at most once (conditional stamp on sales.invoice_id)
- Losing a stamp race reverts this invoice's stamps and deletes the invoice
- Creating an invoice raises the customer balance; exceeding the credit
  limit is flagged, never blocked

INVOICE STATUS:
- pending: nothing paid (overdue once due_date has passed)
- partially_paid: 0 < paid < total
- paid: paid == total
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping

from stationledger.errors import ConflictError, LedgerError, StoreError, ValidationError
from stationledger.models import Customer, DocumentSequence, FuelType, Invoice, InvoiceItem, Sale, Vehicle
from stationledger.time_utils import to_utc_z, utcnow
from stationledger.validation import (
    check_total_cents,
    clean_text,
    coerce_cents,
    coerce_datetime,
    coerce_id,
    coerce_optional_datetime,
    coerce_optional_id,
    coerce_quantity,
    line_total_cents,
)


logger = logging.getLogger(__name__)


# =============================================================================
# INVOICE STATUS (CONSTANTS)
# =============================================================================

INVOICE_PENDING = "pending"
INVOICE_PARTIALLY_PAID = "partially_paid"
INVOICE_PAID = "paid"
INVOICE_OVERDUE = "overdue"


def invoice_status_for(paid_cents: int, total_cents: int, due_date: datetime, now: datetime) -> str:
    """
    Status transition rule shared by invoicing and payments.

    - paid == 0: pending, or overdue when due_date < now
    - 0 < paid < total: partially_paid
    - paid >= total: paid
    """
    if paid_cents >= total_cents:
        return INVOICE_PAID
    if paid_cents <= 0:
        return INVOICE_OVERDUE if due_date < now else INVOICE_PENDING
    return INVOICE_PARTIALLY_PAID


@dataclass
class InvoiceCreation:
    """
    Result of create_invoice.

    balance_updated=False with an error means the invoice exists but the
    customer balance increment failed (partial success).
    """
    invoice: Invoice
    credit_limit_exceeded: bool = False
    balance_updated: bool = True
    customer_balance_cents: int | None = None
    error: LedgerError | None = None

    def to_dict(self) -> dict:
        return {
            "invoice": self.invoice.to_dict(),
            "credit_limit_exceeded": self.credit_limit_exceeded,
            "balance_updated": self.balance_updated,
            "customer_balance_cents": self.customer_balance_cents,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class SaleSnapshot:
    """Originating sale of an invoice item, with fuel type and vehicle resolved."""
    sale_id: int
    transaction_date: datetime
    fuel_type_id: int
    fuel_type_name: str | None
    quantity_liters: Decimal
    price_per_liter_cents: int
    total_amount_cents: int
    payment_method: str
    vehicle: dict | None = None

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "transaction_date": to_utc_z(self.transaction_date),
            "fuel_type": {"id": self.fuel_type_id, "name": self.fuel_type_name},
            "quantity_liters": str(self.quantity_liters),
            "price_per_liter_cents": self.price_per_liter_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "vehicle": self.vehicle,
        }


@dataclass
class InvoiceItemContext:
    item: InvoiceItem
    sale: SaleSnapshot | None = None

    def to_dict(self) -> dict:
        return {**self.item.to_dict(), "sale": self.sale.to_dict() if self.sale else None}


@dataclass
class _ItemDraft:
    position: int
    description: str | None
    quantity: Decimal
    unit_price_cents: int
    sale_id: int | None
    total_price_cents: int = field(init=False)

    def __post_init__(self):
        self.total_price_cents = line_total_cents(
            self.quantity, self.unit_price_cents, name=f"items[{self.position}] total"
        )


def _parse_items(items: Iterable[Mapping[str, Any]] | None) -> list[_ItemDraft]:
    if not items:
        raise ValidationError("Invoice must have at least one item")

    drafts = []
    seen_sales: set[int] = set()
    for position, raw in enumerate(items, start=1):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Item {position} must be an object")
        sale_id = coerce_optional_id("sale_id", raw.get("sale_id"))
        if sale_id is not None:
            if sale_id in seen_sales:
                raise ValidationError(f"Sale {sale_id} appears more than once on the invoice")
            seen_sales.add(sale_id)

        description = clean_text(raw.get("description"), max_length=255, name="description")
        if not description and sale_id is None:
            raise ValidationError(f"Item {position} requires a description")

        drafts.append(_ItemDraft(
            position=position,
            description=description,
            quantity=coerce_quantity(f"items[{position}].quantity", raw.get("quantity")),
            unit_price_cents=coerce_cents(f"items[{position}].unit_price_cents", raw.get("unit_price_cents")),
            sale_id=sale_id,
        ))
    return drafts


class InvoiceManager:
    """
    Builds invoices and owns the invoice status rule.

    Args:
        store: LedgerStore
        number_prefix: invoice number prefix (INV -> INV-202610-0001)
        clock: callable returning UTC-naive "now"
    """

    SEQUENCE_ATTEMPTS = 5

    def __init__(self, store, *, number_prefix: str = "INV", clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.number_prefix = number_prefix
        self.clock = clock

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_invoice(
        self,
        *,
        customer_id: int,
        issue_date,
        due_date,
        items: Iterable[Mapping[str, Any]],
        invoice_number: str | None = None,
        notes: str | None = "",
    ) -> InvoiceCreation:
        """
        Create an invoice from a batch of items and bill the referenced sales.

        Raises:
            ValidationError: empty items, bad quantity/price, due_date <= issue_date,
                duplicate sale on the batch, sale of another customer
            NotFoundError: unknown customer or sale
            ConflictError: sale already invoiced (before or during creation),
                duplicate invoice number
        """
        customer_id = coerce_id("customer_id", customer_id)
        issue = coerce_datetime("issue_date", issue_date)
        due = coerce_datetime("due_date", due_date)
        if due <= issue:
            raise ValidationError("due_date must be after issue_date")
        drafts = _parse_items(items)
        notes = clean_text(notes, name="notes") or ""
        if invoice_number is not None:
            invoice_number = clean_text(invoice_number, max_length=64, name="invoice_number") or None

        self.store.require(Customer, customer_id)

        for draft in drafts:
            if draft.sale_id is None:
                continue
            sale = self.store.require(Sale, draft.sale_id)
            if sale.invoice_id is not None:
                raise ConflictError(
                    f"Sale {sale.id} is already billed on invoice {sale.invoice_id}",
                    details={"sale_id": sale.id, "invoice_id": sale.invoice_id},
                )
            if sale.customer_id is not None and sale.customer_id != customer_id:
                raise ValidationError(
                    f"Sale {sale.id} belongs to customer {sale.customer_id}",
                    details={"sale_id": sale.id, "customer_id": sale.customer_id},
                )
            if not draft.description:
                draft.description = f"Fuel sale #{sale.id}"

        total_cents = check_total_cents("total_amount_cents", sum(d.total_price_cents for d in drafts))
        number = invoice_number or self.next_invoice_number(issue)

        try:
            invoice = self.store.create(
                Invoice,
                customer_id=customer_id,
                invoice_number=number,
                issue_date=issue,
                due_date=due,
                total_amount_cents=total_cents,
                paid_amount_cents=0,
                status=INVOICE_PENDING,
                notes=notes,
                items=[
                    InvoiceItem(
                        position=d.position,
                        description=d.description,
                        quantity=d.quantity,
                        unit_price_cents=d.unit_price_cents,
                        total_price_cents=d.total_price_cents,
                        sale_id=d.sale_id,
                    )
                    for d in drafts
                ],
            )
        except ConflictError as exc:
            raise ConflictError(
                f"Invoice number {number} already exists",
                details={"invoice_number": number},
            ) from exc
        invoice_id = invoice.id

        self._stamp_sales(invoice_id, [d.sale_id for d in drafts if d.sale_id is not None])

        logger.info(
            "Invoice %s (%s) created: customer=%s total_cents=%s items=%s",
            invoice_id, number, customer_id, total_cents, len(drafts),
        )

        result = InvoiceCreation(invoice=invoice)
        try:
            customer = self.store.update_by_id(
                Customer,
                customer_id,
                increments={"current_balance_cents": total_cents},
            )
        except StoreError as exc:
            logger.warning(
                "Invoice %s created but customer %s balance was not updated: %s",
                invoice_id, customer_id, exc,
            )
            result.balance_updated = False
            result.error = exc
            result.invoice = self.store.get_by_id(Invoice, invoice_id) or invoice
            return result

        if customer is not None:
            result.customer_balance_cents = customer.current_balance_cents
            if customer.current_balance_cents > customer.credit_limit_cents:
                result.credit_limit_exceeded = True
                logger.warning(
                    "Customer %s balance %s exceeds credit limit %s after invoice %s",
                    customer_id, customer.current_balance_cents, customer.credit_limit_cents, invoice_id,
                )
        result.invoice = self.store.require(Invoice, invoice_id)
        return result

    def _stamp_sales(self, invoice_id: int, sale_ids: list[int]) -> None:
        """
        Point each sale at the invoice, only if it is still unbilled.

        On a lost race or a store failure, stamps made for this invoice are
        reverted and the invoice is deleted before the error propagates.
        """
        stamped: list[int] = []
        for sale_id in sale_ids:
            try:
                sale = self.store.update_by_id(
                    Sale,
                    sale_id,
                    {"invoice_id": invoice_id},
                    where={"invoice_id": None},
                )
            except StoreError:
                self._compensate(invoice_id, stamped)
                raise
            if sale is None:
                self._compensate(invoice_id, stamped)
                raise ConflictError(
                    f"Sale {sale_id} was billed by another invoice",
                    details={"sale_id": sale_id},
                )
            stamped.append(sale_id)

    def _compensate(self, invoice_id: int, stamped: list[int]) -> None:
        """Best effort: failures are logged so the caller can raise the original error."""
        logger.warning("Reverting invoice %s (sales stamped: %s)", invoice_id, stamped)
        stuck = []
        for sale_id in stamped:
            try:
                self.store.update_by_id(Sale, sale_id, {"invoice_id": None}, where={"invoice_id": invoice_id})
            except StoreError:
                logger.exception("Could not unstamp sale %s from invoice %s", sale_id, invoice_id)
                stuck.append(sale_id)
        if stuck:
            # stamped sales must keep pointing at an existing invoice
            logger.error("Invoice %s kept for repair: sales %s still reference it", invoice_id, stuck)
            return
        try:
            self.store.delete_by_id(Invoice, invoice_id)
        except StoreError:
            logger.exception("Could not delete reverted invoice %s", invoice_id)

    def next_invoice_number(self, issue_date: datetime | None = None) -> str:
        """
        Allocate the next invoice number for the issue month (INV-YYYYMM-NNNN).

        The counter is claimed with a compare-and-swap on next_number, so two
        concurrent callers never receive the same number.
        """
        issued = issue_date or self.clock()
        prefix = f"{self.number_prefix}-{issued:%Y%m}"

        for _ in range(self.SEQUENCE_ATTEMPTS):
            sequences = self.store.find(DocumentSequence, {"prefix": prefix}, limit=1)
            if not sequences:
                try:
                    self.store.create(DocumentSequence, prefix=prefix, next_number=2)
                except ConflictError:
                    continue
                return f"{prefix}-{1:04d}"

            current = sequences[0].next_number
            claimed = self.store.update_where(
                DocumentSequence,
                {"prefix": prefix, "next_number": current},
                increments={"next_number": 1},
            )
            if claimed:
                return f"{prefix}-{current:04d}"

        raise ConflictError(f"Could not allocate an invoice number for {prefix}")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_invoice(self, invoice_id: int) -> Invoice:
        return self.store.require(Invoice, coerce_id("invoice_id", invoice_id))

    def list_invoices(self, customer_id: int) -> list[Invoice]:
        """Invoices for a customer, newest issue date first."""
        return self.store.find(
            Invoice,
            {"customer_id": coerce_id("customer_id", customer_id)},
            sort=["-issue_date", "-id"],
        )

    def get_invoice_items_with_context(self, invoice_id: int) -> list[InvoiceItemContext]:
        """Each item paired with its originating sale snapshot (None when not from a sale)."""
        invoice = self.get_invoice(invoice_id)
        contexts = []
        for item in invoice.items:
            snapshot = None
            if item.sale_id is not None:
                sale = self.store.get_by_id(Sale, item.sale_id)
                if sale is not None:
                    snapshot = self._snapshot(sale)
            contexts.append(InvoiceItemContext(item=item, sale=snapshot))
        return contexts

    def _snapshot(self, sale: Sale) -> SaleSnapshot:
        fuel_type = self.store.get_by_id(FuelType, sale.fuel_type_id)
        vehicle = self.store.get_by_id(Vehicle, sale.vehicle_id) if sale.vehicle_id else None
        return SaleSnapshot(
            sale_id=sale.id,
            transaction_date=sale.transaction_date,
            fuel_type_id=sale.fuel_type_id,
            fuel_type_name=fuel_type.name if fuel_type else None,
            quantity_liters=sale.quantity_liters,
            price_per_liter_cents=sale.price_per_liter_cents,
            total_amount_cents=sale.total_amount_cents,
            payment_method=sale.payment_method,
            vehicle={
                "id": vehicle.id,
                "license_plate": vehicle.license_plate,
                "make": vehicle.make,
                "model": vehicle.model,
            } if vehicle else None,
        )

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def mark_overdue(self, as_of=None) -> list[int]:
        """
        Move unpaid pending invoices past their due date to overdue.

        Each transition is conditional on the invoice still being pending and
        unpaid, so a payment landing concurrently wins.
        """
        now = coerce_optional_datetime("as_of", as_of) or self.clock()
        candidates = self.store.find(
            Invoice,
            {"status": INVOICE_PENDING, "paid_amount_cents": 0},
            sort=["due_date", "id"],
            conditions=(Invoice.due_date < now,),
        )

        marked = []
        for invoice in candidates:
            updated = self.store.update_by_id(
                Invoice,
                invoice.id,
                {"status": INVOICE_OVERDUE},
                where={"status": INVOICE_PENDING, "paid_amount_cents": 0},
            )
            if updated is not None:
                marked.append(invoice.id)

        if marked:
            logger.info("Marked %s invoice(s) overdue as of %s", len(marked), to_utc_z(now))
        return marked
