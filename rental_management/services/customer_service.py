from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from db.tenant import TenantScope
from models.rental_models import Customer, Payment, Rental
from services.clock import utc_now
from services.errors import NotFoundError, RentalServiceError
from services.identifier_service import generate_customer_number

LOGGER = logging.getLogger("rental_management.customers")

# Request field -> column; only these are writable through create/update.
_EDITABLE_FIELDS = {
    "name": "Name",
    "email": "Email",
    "phone": "Phone",
    "businessType": "BusinessType",
    "address": "Address",
    "contactPerson": "ContactPerson",
    "creditLimit": "CreditLimit",
    "notes": "Notes",
}


def _normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def _email_taken(scope: TenantScope, email: str, exclude_customer_id: int | None = None) -> bool:
    stmt = scope.select(Customer).where(Customer.Email == email)
    if exclude_customer_id is not None:
        stmt = stmt.where(Customer.CustomerID != exclude_customer_id)
    return scope.first(stmt) is not None


def get_customer_or_404(scope: TenantScope, customer_id: int) -> Customer:
    customer = scope.get(
        Customer,
        customer_id,
        selectinload(Customer.RentalHistory),
        selectinload(Customer.PaymentHistory),
    )
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def list_customers(
    scope: TenantScope,
    page: int = 1,
    limit: int = 10,
    search: str = "",
    business_type: str = "",
) -> tuple[list[Customer], int]:
    stmt = scope.select(Customer).where(Customer.IsActive.is_(True))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                Customer.Name.ilike(pattern),
                Customer.Email.ilike(pattern),
                Customer.CustomerNumber.ilike(pattern),
            )
        )
    if business_type:
        stmt = stmt.where(Customer.BusinessType == business_type)
    total = scope.count(stmt)
    stmt = stmt.order_by(Customer.CreatedDate.desc(), Customer.CustomerID.desc()).limit(limit).offset((page - 1) * limit)
    return scope.all(stmt), total


def create_customer(scope: TenantScope, values: dict) -> Customer:
    email = _normalize_email(values.get("email"))
    if _email_taken(scope, email):
        raise RentalServiceError("Customer with this email already exists")

    now = utc_now()
    customer = Customer(
        CustomerNumber=generate_customer_number(scope),
        CurrentBalance=0,
        TotalRentals=0,
        IsActive=True,
        CreatedDate=now,
        UpdatedDate=now,
    )
    for field, column in _EDITABLE_FIELDS.items():
        if field in values:
            setattr(customer, column, values[field])
    customer.Email = email
    if customer.CreditLimit is None:
        customer.CreditLimit = 0
    scope.add(customer)
    scope.flush()
    LOGGER.info("Customer created dealer=%s customer=%s", scope.dealer_id, customer.CustomerNumber)
    return customer


def update_customer(scope: TenantScope, customer_id: int, values: dict) -> Customer:
    customer = get_customer_or_404(scope, customer_id)
    if "email" in values:
        email = _normalize_email(values.get("email"))
        if _email_taken(scope, email, exclude_customer_id=customer.CustomerID):
            raise RentalServiceError("Customer with this email already exists")
        values = {**values, "email": email}
    for field, column in _EDITABLE_FIELDS.items():
        if field in values:
            setattr(customer, column, values[field])
    customer.UpdatedDate = utc_now()
    return customer


def deactivate_customer(scope: TenantScope, customer_id: int) -> Customer:
    customer = scope.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found")
    customer.IsActive = False
    customer.UpdatedDate = utc_now()
    LOGGER.info("Customer deactivated dealer=%s customer=%s", scope.dealer_id, customer.CustomerNumber)
    return customer


def customer_rentals(scope: TenantScope, customer: Customer) -> list[Rental]:
    stmt = (
        scope.select(Rental, selectinload(Rental.Vehicle), selectinload(Rental.Customer))
        .where(Rental.CustomerID == customer.CustomerID)
        .order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
    )
    return scope.all(stmt)


def customer_payments(scope: TenantScope, customer: Customer) -> list[Payment]:
    stmt = (
        scope.select(Payment, selectinload(Payment.Rental), selectinload(Payment.Customer))
        .where(Payment.CustomerID == customer.CustomerID)
        .order_by(Payment.CreatedDate.desc(), Payment.PaymentID.desc())
    )
    return scope.all(stmt)


def customer_analytics(scope: TenantScope, customer: Customer) -> dict:
    rentals = customer_rentals(scope, customer)
    if not rentals:
        return {
            "overview": {"totalRentals": 0, "totalRevenue": 0, "averageRentalDuration": 0},
            "vehiclePreferences": [],
            "monthlyPattern": [],
        }

    total_revenue = sum(float(r.TotalAmount or 0) for r in rentals)
    durations = [(r.ExpectedEndDate - r.StartDate).total_seconds() / 86400 for r in rentals]

    preferences: dict[str, dict] = defaultdict(lambda: {"count": 0, "totalAmount": 0.0})
    monthly: dict[int, dict] = defaultdict(lambda: {"count": 0, "revenue": 0.0})
    for rental in rentals:
        vehicle_type = rental.Vehicle.Type if rental.Vehicle else "Unknown"
        preferences[vehicle_type]["count"] += 1
        preferences[vehicle_type]["totalAmount"] += float(rental.TotalAmount or 0)
        month = rental.StartDate.month
        monthly[month]["count"] += 1
        monthly[month]["revenue"] += float(rental.TotalAmount or 0)

    return {
        "overview": {
            "totalRentals": len(rentals),
            "totalRevenue": total_revenue,
            "averageRentalDuration": sum(durations) / len(durations),
        },
        "vehiclePreferences": sorted(
            ({"type": key, **value} for key, value in preferences.items()),
            key=lambda item: item["count"],
            reverse=True,
        ),
        "monthlyPattern": [{"month": key, **monthly[key]} for key in sorted(monthly)],
    }


def serialize_customer(customer: Customer, include_history: bool = False) -> dict:
    payload = {
        "customerID": customer.CustomerID,
        "customerNumber": customer.CustomerNumber,
        "name": customer.Name,
        "email": customer.Email,
        "phone": customer.Phone,
        "businessType": customer.BusinessType,
        "address": customer.Address,
        "contactPerson": customer.ContactPerson,
        "creditLimit": customer.CreditLimit,
        "currentBalance": customer.CurrentBalance,
        "totalRentals": customer.TotalRentals,
        "notes": customer.Notes,
        "isActive": bool(customer.IsActive),
        "createdDate": customer.CreatedDate,
        "updatedDate": customer.UpdatedDate,
    }
    if include_history:
        payload["rentalHistory"] = [
            {
                "rentalID": entry.RentalID,
                "vehicleID": entry.VehicleID,
                "startDate": entry.StartDate,
                "endDate": entry.EndDate,
                "returnCondition": entry.ReturnCondition,
                "totalAmount": entry.TotalAmount,
                "paidAmount": entry.PaidAmount,
            }
            for entry in customer.RentalHistory
        ]
        payload["paymentHistory"] = [
            {
                "paymentID": entry.PaymentID,
                "amount": entry.Amount,
                "date": entry.Date,
                "method": entry.Method,
                "reference": entry.Reference,
            }
            for entry in customer.PaymentHistory
        ]
    return payload
