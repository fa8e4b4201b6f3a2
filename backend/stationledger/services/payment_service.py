# Overview: Service-layer operations for customer payments; applies them to balances and invoices.

"""
Payment Processor

WHY: Credit-account customers pay against their account balance and,
optionally, against one invoice.

ORDERING (no transaction spans Customer + Invoice):
1. Validate everything (no writes on failure)
2. Create the Payment record
3. Atomically decrement Customer.current_balance_cents
4. Apply to the invoice (version-checked, optimistic retry)

Failures after step 2 are returned as partial-success outcomes, never rolled
back. The invoice step can be retried by payment id; Payment.invoice_status
makes that retry idempotent:

    pending/failed --claim--> applying --> applied | overpayment | failed

OVERPAYMENT: paid + amount > total leaves the invoice untouched. The balance
credit from step 3 stands and the excess is reported to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm.exc import StaleDataError

from stationledger.errors import (
    ConflictError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
    OverpaymentError,
    StoreError,
    ValidationError,
)
from stationledger.models import Customer, Invoice, Payment
from stationledger.services.concurrency import run_with_retry
from stationledger.services.invoice_service import invoice_status_for
from stationledger.time_utils import utcnow
from stationledger.validation import (
    clean_text,
    coerce_cents,
    coerce_choice,
    coerce_datetime,
    coerce_id,
    coerce_optional_id,
)


logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT METHODS AND INVOICE-STEP STATUS (CONSTANTS)
# =============================================================================

PAYMENT_CASH = "cash"
PAYMENT_BANK_TRANSFER = "bank_transfer"
PAYMENT_CREDIT_CARD = "credit_card"
PAYMENT_CHECK = "check"

PAYMENT_METHODS = [
    PAYMENT_CASH,
    PAYMENT_BANK_TRANSFER,
    PAYMENT_CREDIT_CARD,
    PAYMENT_CHECK,
]

APPLY_NOT_APPLICABLE = "not_applicable"
APPLY_PENDING = "pending"
APPLY_APPLYING = "applying"
APPLY_APPLIED = "applied"
APPLY_OVERPAYMENT = "overpayment"
APPLY_FAILED = "failed"

RETRYABLE_APPLY_STATUSES = [APPLY_PENDING, APPLY_FAILED]


@dataclass
class PaymentOutcome:
    """
    Result of recording (or re-applying) a payment.

    payment_recorded is True whenever the Payment row exists. The failure
    flags describe which later step did not complete.
    """
    payment: Payment
    invoice: Invoice | None = None
    customer_balance_cents: int | None = None
    payment_recorded: bool = True
    balance_update_failed: bool = False
    invoice_update_failed: bool = False
    overpayment_cents: int = 0
    error: LedgerError | None = None

    @property
    def is_partial(self) -> bool:
        return self.balance_update_failed or self.invoice_update_failed

    def to_dict(self) -> dict:
        return {
            "payment": self.payment.to_dict(),
            "invoice": self.invoice.to_dict() if self.invoice is not None else None,
            "customer_balance_cents": self.customer_balance_cents,
            "payment_recorded": self.payment_recorded,
            "balance_update_failed": self.balance_update_failed,
            "invoice_update_failed": self.invoice_update_failed,
            "overpayment_cents": self.overpayment_cents,
            "error": self.error.to_dict() if self.error is not None else None,
        }


class PaymentProcessor:
    """
    Applies payments to customer balances and invoices.

    Args:
        store: LedgerStore
        clock: callable returning UTC-naive "now" (overdue evaluation)
        attempts: optimistic retries for the invoice update
        backoff_base: base sleep between retries (seconds)
    """

    def __init__(
        self,
        store,
        *,
        clock: Callable[[], datetime] = utcnow,
        attempts: int = 3,
        backoff_base: float = 0.05,
    ):
        self.store = store
        self.clock = clock
        self.attempts = attempts
        self.backoff_base = backoff_base

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record_payment(
        self,
        customer_id: int,
        amount_cents: int,
        payment_date,
        method: str,
        *,
        invoice_id: int | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> PaymentOutcome:
        """
        Record a customer payment.

        Raises (before any write):
            ValidationError: amount <= 0, unknown method, invoice of another customer
            NotFoundError: unknown customer or invoice

        Store failures after the payment row exists are reported on the outcome.
        """
        customer_id = coerce_id("customer_id", customer_id)
        amount_cents = coerce_cents("amount_cents", amount_cents, allow_zero=False)
        method = coerce_choice("method", method, PAYMENT_METHODS)
        paid_at = coerce_datetime("payment_date", payment_date) if payment_date else self.clock()
        invoice_id = coerce_optional_id("invoice_id", invoice_id)
        reference_number = clean_text(reference_number, max_length=128, name="reference_number") or None
        notes = clean_text(notes, name="notes")

        self.store.require(Customer, customer_id)
        if invoice_id is not None:
            invoice = self.store.require(Invoice, invoice_id)
            if invoice.customer_id != customer_id:
                raise ValidationError(
                    f"Invoice {invoice_id} belongs to customer {invoice.customer_id}",
                    details={"invoice_id": invoice_id, "customer_id": invoice.customer_id},
                )

        payment = self.store.create(
            Payment,
            customer_id=customer_id,
            invoice_id=invoice_id,
            amount_cents=amount_cents,
            payment_date=paid_at,
            method=method,
            reference_number=reference_number,
            notes=notes,
            invoice_status=APPLY_PENDING if invoice_id is not None else APPLY_NOT_APPLICABLE,
        )
        payment_id = payment.id
        logger.info(
            "Payment %s recorded: customer=%s amount_cents=%s method=%s invoice=%s",
            payment_id, customer_id, amount_cents, method, invoice_id,
        )

        outcome = PaymentOutcome(payment=payment)

        try:
            customer = self.store.update_by_id(
                Customer,
                customer_id,
                increments={"current_balance_cents": -amount_cents},
            )
        except StoreError as exc:
            logger.warning(
                "Payment %s recorded but customer %s balance was not updated: %s",
                payment_id, customer_id, exc,
            )
            outcome.balance_update_failed = True
            outcome.error = exc
            return outcome
        if customer is not None:
            outcome.customer_balance_cents = customer.current_balance_cents

        if invoice_id is not None:
            self._apply_to_invoice(payment, outcome)
        return outcome

    def retry_invoice_application(self, payment_id: int) -> PaymentOutcome:
        """
        Re-run the invoice step for a payment.

        Idempotent: an applied payment returns the current invoice unchanged,
        an overpayment reports the excess again without touching the invoice.

        Raises:
            NotFoundError: unknown payment
            InvalidStateError: payment has no invoice, or its invoice step is in flight
        """
        payment = self.get_payment(payment_id)
        if payment.invoice_id is None:
            raise InvalidStateError(
                f"Payment {payment.id} is not applied to an invoice",
                details={"payment_id": payment.id},
            )

        outcome = PaymentOutcome(payment=payment)
        customer = self.store.get_by_id(Customer, payment.customer_id)
        if customer is not None:
            outcome.customer_balance_cents = customer.current_balance_cents

        if payment.invoice_status == APPLY_APPLIED:
            outcome.invoice = self.store.require(Invoice, payment.invoice_id)
            return outcome
        if payment.invoice_status == APPLY_OVERPAYMENT:
            invoice = self.store.require(Invoice, payment.invoice_id)
            outcome.invoice = invoice
            self._flag_overpayment(outcome, invoice, payment.amount_cents)
            return outcome
        if payment.invoice_status not in RETRYABLE_APPLY_STATUSES:
            raise InvalidStateError(
                f"Payment {payment.id} invoice step is {payment.invoice_status}",
                details={"payment_id": payment.id, "invoice_status": payment.invoice_status},
            )

        self._apply_to_invoice(payment, outcome)
        return outcome

    # =========================================================================
    # INVOICE STEP
    # =========================================================================

    def _apply_to_invoice(self, payment: Payment, outcome: PaymentOutcome) -> None:
        payment_id = payment.id
        try:
            claimed = self.store.update_where(
                Payment,
                {"id": payment_id},
                {"invoice_status": APPLY_APPLYING},
                conditions=(Payment.invoice_status.in_(RETRYABLE_APPLY_STATUSES),),
            )
        except StoreError as exc:
            # claim never landed: payment keeps its retryable status
            logger.warning(
                "Payment %s recorded but invoice %s step could not be claimed: %s",
                payment_id, payment.invoice_id, exc,
            )
            outcome.invoice_update_failed = True
            outcome.error = exc
            return
        if not claimed:
            raise InvalidStateError(
                f"Payment {payment_id} invoice step was claimed by another request",
                details={"payment_id": payment_id},
            )

        def apply():
            invoice = self.store.require(Invoice, payment.invoice_id)
            new_paid = invoice.paid_amount_cents + payment.amount_cents
            if new_paid > invoice.total_amount_cents:
                return invoice, new_paid - invoice.total_amount_cents
            status = invoice_status_for(new_paid, invoice.total_amount_cents, invoice.due_date, self.clock())
            matched = self.store.update_where(
                Invoice,
                {"id": invoice.id, "version_id": invoice.version_id},
                {"paid_amount_cents": new_paid, "status": status},
            )
            if not matched:
                raise StaleDataError(f"Invoice {invoice.id} changed since version {invoice.version_id}")
            return None, 0

        try:
            invoice, excess = run_with_retry(apply, attempts=self.attempts, backoff_base=self.backoff_base)
        except StaleDataError as exc:
            error = ConflictError(
                f"Invoice {payment.invoice_id} kept changing; payment {payment_id} not applied",
                details={"payment_id": payment_id, "invoice_id": payment.invoice_id},
            )
            error.__cause__ = exc
            self._fail_invoice_step(payment, outcome, error)
            return
        except (StoreError, NotFoundError) as exc:
            self._fail_invoice_step(payment, outcome, exc)
            return

        if excess:
            outcome.invoice = invoice
            self._mark(payment, APPLY_OVERPAYMENT, outcome)
            self._flag_overpayment(outcome, invoice, payment.amount_cents)
            logger.warning(
                "Payment %s overpays invoice %s by %s cents; invoice left unchanged",
                payment_id, invoice.id, excess,
            )
            return

        # the invoice UPDATE has committed; later failures must not downgrade it
        self._mark(payment, APPLY_APPLIED, outcome)
        logger.info("Payment %s applied to invoice %s", payment_id, payment.invoice_id)
        try:
            outcome.invoice = self.store.get_by_id(Invoice, payment.invoice_id)
        except StoreError as exc:
            logger.warning("Payment %s applied but invoice %s could not be re-read: %s", payment_id, payment.invoice_id, exc)
            if outcome.error is None:
                outcome.error = exc

    def _flag_overpayment(self, outcome: PaymentOutcome, invoice: Invoice, amount_cents: int) -> None:
        excess = invoice.paid_amount_cents + amount_cents - invoice.total_amount_cents
        outcome.overpayment_cents = excess
        outcome.error = OverpaymentError(
            f"Payment exceeds invoice {invoice.invoice_number} outstanding amount by {excess} cents",
            excess_cents=excess,
            details={
                "invoice_id": invoice.id,
                "outstanding_cents": invoice.outstanding_cents,
                "amount_cents": amount_cents,
            },
        )

    def _fail_invoice_step(self, payment: Payment, outcome: PaymentOutcome, error: LedgerError) -> None:
        logger.warning(
            "Payment %s recorded but invoice %s was not updated: %s",
            payment.id, payment.invoice_id, error,
        )
        outcome.invoice_update_failed = True
        outcome.error = error
        self._mark(payment, APPLY_FAILED, outcome)

    def _mark(self, payment: Payment, status: str, outcome: PaymentOutcome) -> None:
        """Record the invoice-step result on the payment (only from applying)."""
        try:
            self.store.update_where(
                Payment,
                {"id": payment.id, "invoice_status": APPLY_APPLYING},
                {"invoice_status": status},
            )
            refreshed = self.store.get_by_id(Payment, payment.id)
        except StoreError as exc:
            logger.exception("Could not mark payment %s invoice step as %s", payment.id, status)
            if outcome.error is None:
                outcome.error = exc
            return
        outcome.payment = refreshed or payment

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_payment(self, payment_id: int) -> Payment:
        return self.store.require(Payment, coerce_id("payment_id", payment_id))

    def list_payments(self, customer_id: int) -> list[Payment]:
        """Payments for a customer, newest first."""
        return self.store.find(
            Payment,
            {"customer_id": coerce_id("customer_id", customer_id)},
            sort=["-payment_date", "-id"],
        )
