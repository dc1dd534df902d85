from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

from db.tenant import TenantScope
from models.rental_models import Customer, CustomerPaymentHistory, Payment, Rental
from services.clock import utc_now
from services.errors import InvalidStateError, NotFoundError
from services.identifier_service import generate_payment_number

LOGGER = logging.getLogger("rental_management.payments")

PAYMENT_TYPE_RENTAL_FEE = "Rental Fee"
PAYMENT_TYPE_DAMAGE_CHARGE = "Damage Charge"
PAYMENT_TYPE_EXTENSION_FEE = "Extension Fee"
PAYMENT_TYPE_OTHER = "Other"
OPEN_STATUSES = {"Pending", "Partially Paid"}

PAYMENT_DUE_DAYS = 7
LATE_FEE_MONTHLY_RATE = 0.05

# (status, event) -> status; the "settle" target depends on the paid amount.
PAYMENT_TRANSITIONS = {
    ("Pending", "settle"): {"Completed", "Partially Paid"},
    ("Partially Paid", "settle"): {"Completed", "Partially Paid"},
    ("Completed", "refund_full"): {"Refunded"},
    ("Completed", "refund_partial"): {"Completed"},
}


def _transition(payment: Payment, event: str, target: str, message: str) -> None:
    allowed = PAYMENT_TRANSITIONS.get((payment.Status, event), set())
    if target not in allowed:
        raise InvalidStateError(message)
    payment.Status = target
    payment.UpdatedDate = utc_now()


def create_derived_payment(
    scope: TenantScope,
    rental: Rental,
    amount: float,
    payment_type: str,
    due_date: datetime | None = None,
) -> Payment:
    """Record a Pending bookkeeping entry generated by a rental transition."""
    payment = Payment(
        PaymentNumber=generate_payment_number(scope),
        Rental=rental,
        CustomerID=rental.CustomerID,
        Amount=float(amount),
        PaymentType=payment_type,
        PaymentMethod="Pending",
        Status="Pending",
        DueDate=due_date or (utc_now() + timedelta(days=PAYMENT_DUE_DAYS)),
        LateFeeAmount=0,
        CreatedDate=utc_now(),
        UpdatedDate=utc_now(),
    )
    scope.add(payment)
    scope.flush()
    LOGGER.info(
        "Derived payment dealer=%s payment=%s rental=%s type=%s amount=%s",
        scope.dealer_id,
        payment.PaymentNumber,
        rental.RentalNumber,
        payment_type,
        payment.Amount,
    )
    return payment


def get_payment_or_404(scope: TenantScope, payment_id: int) -> Payment:
    payment = scope.get(
        Payment,
        payment_id,
        selectinload(Payment.Customer),
        selectinload(Payment.Rental),
    )
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def process_payment(
    scope: TenantScope,
    payment_id: int,
    payment_method: str,
    transaction_id: str | None = None,
    reference: str | None = None,
    paid_amount: float | None = None,
    notes: str | None = None,
) -> Payment:
    payment = get_payment_or_404(scope, payment_id)
    if payment.Status == "Completed":
        raise InvalidStateError("Payment already completed")
    if payment.Status == "Refunded":
        raise InvalidStateError("Payment has been refunded")

    amount_to_pay = float(paid_amount) if paid_amount is not None else float(payment.Amount or 0)
    now = utc_now()

    payment.PaymentMethod = payment_method
    payment.TransactionID = transaction_id
    payment.Reference = reference
    payment.PaidDate = now
    payment.Notes = notes

    target = "Completed" if amount_to_pay >= float(payment.Amount or 0) else "Partially Paid"
    # TODO: decide with billing whether the unpaid remainder becomes its own Payment row.
    _transition(payment, "settle", target, "Payment cannot be processed")

    customer = payment.Customer
    if customer is not None:
        if payment.PaymentType == PAYMENT_TYPE_RENTAL_FEE:
            customer.CurrentBalance = float(customer.CurrentBalance or 0) - amount_to_pay
        customer.PaymentHistory.append(
            CustomerPaymentHistory(
                PaymentID=payment.PaymentID,
                Amount=amount_to_pay,
                Date=now,
                Method=payment_method,
                Reference=reference or transaction_id,
            )
        )
        customer.UpdatedDate = now

    LOGGER.info(
        "Processed payment dealer=%s payment=%s paid=%s status=%s",
        scope.dealer_id,
        payment.PaymentNumber,
        amount_to_pay,
        payment.Status,
    )
    return payment


def refund_payment(
    scope: TenantScope,
    payment_id: int,
    refund_amount: float,
    reason: str | None = None,
    refund_method: str | None = None,
) -> Payment:
    payment = get_payment_or_404(scope, payment_id)
    if payment.Status != "Completed":
        raise InvalidStateError("Can only refund completed payments")
    if payment.RefundAmount:
        raise InvalidStateError("Payment has already been refunded")
    original = float(payment.Amount or 0)
    if refund_amount > original:
        raise InvalidStateError("Refund amount cannot exceed payment amount")

    payment.RefundAmount = float(refund_amount)
    payment.RefundReason = reason
    payment.RefundMethod = refund_method
    payment.RefundProcessedDate = utc_now()

    if refund_amount == original:
        _transition(payment, "refund_full", "Refunded", "Can only refund completed payments")
    else:
        _transition(payment, "refund_partial", "Completed", "Can only refund completed payments")

    LOGGER.info(
        "Refunded payment dealer=%s payment=%s amount=%s status=%s",
        scope.dealer_id,
        payment.PaymentNumber,
        refund_amount,
        payment.Status,
    )
    return payment


def apply_late_fee(scope: TenantScope, payment_id: int, late_fee_amount: float) -> Payment:
    payment = get_payment_or_404(scope, payment_id)
    if float(payment.LateFeeAmount or 0) > 0:
        raise InvalidStateError("Late fee already applied to this payment")

    now = utc_now()
    payment.LateFeeAmount = float(late_fee_amount)
    payment.LateFeeAppliedDate = now
    payment.Amount = float(payment.Amount or 0) + float(late_fee_amount)
    payment.UpdatedDate = now
    LOGGER.info(
        "Late fee applied dealer=%s payment=%s fee=%s",
        scope.dealer_id,
        payment.PaymentNumber,
        late_fee_amount,
    )
    return payment


def days_overdue(due_date: datetime, now: datetime | None = None) -> int:
    elapsed = (now or utc_now()) - due_date
    return max(0, elapsed.days)


def calculate_late_fee(amount: float, overdue_days: int) -> int:
    return math.floor(float(amount or 0) * LATE_FEE_MONTHLY_RATE * (overdue_days / 30))


def list_overdue_payments(scope: TenantScope, now: datetime | None = None) -> list[dict]:
    """Open payments past due, with the late fee they would attract today.

    The fee is computed for display only; nothing is written back.
    """
    now = now or utc_now()
    stmt = (
        scope.select(Payment, selectinload(Payment.Customer), selectinload(Payment.Rental))
        .where(Payment.Status.in_(OPEN_STATUSES))
        .where(Payment.DueDate < now)
        .order_by(Payment.DueDate.asc())
    )
    out = []
    for payment in scope.all(stmt):
        overdue_days = days_overdue(payment.DueDate, now)
        payload = serialize_payment(payment)
        payload["daysOverdue"] = overdue_days
        payload["calculatedLateFee"] = calculate_late_fee(payment.Amount, overdue_days)
        out.append(payload)
    return out


def list_payments(
    scope: TenantScope,
    page: int = 1,
    limit: int = 10,
    status: str = "",
    payment_type: str = "",
    search: str = "",
) -> tuple[list[Payment], int]:
    stmt = scope.select(Payment, selectinload(Payment.Customer), selectinload(Payment.Rental))
    if status:
        stmt = stmt.where(Payment.Status == status)
    if payment_type:
        stmt = stmt.where(Payment.PaymentType == payment_type)
    if search:
        pattern = f"%{search}%"
        customer_ids = select(Customer.CustomerID).where(
            Customer.DealerID == scope.dealer_id, Customer.Name.ilike(pattern)
        )
        rental_ids = select(Rental.RentalID).where(
            Rental.DealerID == scope.dealer_id, Rental.RentalNumber.ilike(pattern)
        )
        stmt = stmt.where(
            or_(
                Payment.PaymentNumber.ilike(pattern),
                Payment.CustomerID.in_(customer_ids),
                Payment.RentalID.in_(rental_ids),
            )
        )
    total = scope.count(stmt)
    stmt = stmt.order_by(Payment.CreatedDate.desc(), Payment.PaymentID.desc()).limit(limit).offset((page - 1) * limit)
    return scope.all(stmt), total


def serialize_payment(payment: Payment) -> dict:
    customer = payment.Customer
    rental = payment.Rental
    return {
        "paymentID": payment.PaymentID,
        "paymentNumber": payment.PaymentNumber,
        "rentalID": payment.RentalID,
        "customerID": payment.CustomerID,
        "amount": payment.Amount,
        "paymentType": payment.PaymentType,
        "paymentMethod": payment.PaymentMethod,
        "status": payment.Status,
        "dueDate": payment.DueDate,
        "paidDate": payment.PaidDate,
        "transactionID": payment.TransactionID,
        "reference": payment.Reference,
        "notes": payment.Notes,
        "lateFee": {
            "amount": payment.LateFeeAmount or 0,
            "appliedDate": payment.LateFeeAppliedDate,
        },
        "refund": {
            "amount": payment.RefundAmount,
            "reason": payment.RefundReason,
            "refundMethod": payment.RefundMethod,
            "processedDate": payment.RefundProcessedDate,
        } if payment.RefundAmount else None,
        "customer": {
            "customerID": customer.CustomerID,
            "customerNumber": customer.CustomerNumber,
            "name": customer.Name,
            "email": customer.Email,
        } if customer else None,
        "rental": {
            "rentalID": rental.RentalID,
            "rentalNumber": rental.RentalNumber,
            "vehicleID": rental.VehicleID,
        } if rental else None,
        "createdDate": payment.CreatedDate,
        "updatedDate": payment.UpdatedDate,
    }
