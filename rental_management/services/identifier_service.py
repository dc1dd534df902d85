from __future__ import annotations

from db.tenant import TenantScope
from models.rental_models import Customer, Payment, Rental


def _next_number(scope: TenantScope, model, number_column, prefix: str) -> str:
    token = prefix.upper()
    rows = scope.db.execute(
        scope.select_columns(model, number_column)
        .where(number_column.like(f"{token}-%"))
    ).scalars().all()
    max_suffix = 0
    for number in rows:
        raw = (number or "").replace(f"{token}-", "", 1)
        try:
            suffix = int(raw)
        except ValueError:
            continue
        if suffix > max_suffix:
            max_suffix = suffix
    return f"{token}-{max_suffix + 1:04d}"


def generate_rental_number(scope: TenantScope, prefix: str = "RNT") -> str:
    return _next_number(scope, Rental, Rental.RentalNumber, prefix)


def generate_payment_number(scope: TenantScope, prefix: str = "PAY") -> str:
    return _next_number(scope, Payment, Payment.PaymentNumber, prefix)


def generate_customer_number(scope: TenantScope, prefix: str = "CUS") -> str:
    return _next_number(scope, Customer, Customer.CustomerNumber, prefix)
