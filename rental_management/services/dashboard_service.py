from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from db.tenant import TenantScope
from models.rental_models import Alert, Customer, Payment, Rental, Vehicle
from services.alert_service import generate_overdue_rental_alerts, serialize_alert
from services.clock import utc_now
from services.payment_service import serialize_payment
from services.rental_service import serialize_rental

_VEHICLE_BUCKETS = {
    "Available": "available",
    "Rented": "rented",
    "Reserved": "reserved",
    "Under Maintenance": "maintenance",
    "Out of Service": "outOfService",
}
_RENTAL_BUCKETS = {
    "Active": "active",
    "Completed": "completed",
    "Overdue": "overdue",
    "Cancelled": "cancelled",
}


def dashboard_stats(scope: TenantScope, now: datetime | None = None) -> dict:
    now = now or utc_now()
    generate_overdue_rental_alerts(scope, now)
    scope.flush()

    vehicles = {"total": 0, "available": 0, "rented": 0, "reserved": 0, "maintenance": 0, "outOfService": 0}
    vehicle_rows = scope.rows(
        scope.select_columns(Vehicle, Vehicle.Status, func.count(Vehicle.VehicleID))
        .where(Vehicle.IsActive.is_(True))
        .group_by(Vehicle.Status)
    )
    for status, count in vehicle_rows:
        vehicles["total"] += count
        bucket = _VEHICLE_BUCKETS.get(status)
        if bucket:
            vehicles[bucket] = count

    rentals = {"active": 0, "completed": 0, "overdue": 0, "cancelled": 0}
    rental_rows = scope.rows(
        scope.select_columns(Rental, Rental.Status, func.count(Rental.RentalID)).group_by(Rental.Status)
    )
    for status, count in rental_rows:
        bucket = _RENTAL_BUCKETS.get(status)
        if bucket:
            rentals[bucket] = count

    payments = {
        "totalRevenue": 0,
        "pendingAmount": 0,
        "overdueAmount": 0,
        "paidCount": 0,
        "pendingCount": 0,
        "overdueCount": 0,
    }
    payment_rows = scope.rows(
        scope.select_columns(Payment, Payment.Status, func.count(Payment.PaymentID), func.sum(Payment.Amount))
        .group_by(Payment.Status)
    )
    for status, count, total in payment_rows:
        total = float(total or 0)
        if status == "Completed":
            payments["totalRevenue"] = total
            payments["paidCount"] = count
        elif status == "Pending":
            payments["pendingAmount"] = total
            payments["pendingCount"] = count
        elif status == "Partially Paid":
            payments["overdueAmount"] += total
            payments["overdueCount"] += count

    customer_count = scope.count(scope.select(Customer).where(Customer.IsActive.is_(True)))
    alert_count = scope.count(scope.select(Alert).where(Alert.Status == "Active"))

    return {
        "vehicles": vehicles,
        "rentals": rentals,
        "payments": payments,
        "customers": customer_count,
        "alerts": alert_count,
        "lastUpdated": now,
    }


def recent_activity(scope: TenantScope, limit: int = 10) -> dict:
    rentals = scope.all(
        scope.select(Rental, selectinload(Rental.Customer), selectinload(Rental.Vehicle))
        .order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
        .limit(limit)
    )
    payments = scope.all(
        scope.select(Payment, selectinload(Payment.Customer), selectinload(Payment.Rental))
        .order_by(Payment.CreatedDate.desc(), Payment.PaymentID.desc())
        .limit(limit)
    )
    alerts = scope.all(
        scope.select(Alert)
        .where(Alert.Status == "Active")
        .order_by(Alert.CreatedDate.desc(), Alert.AlertID.desc())
        .limit(limit)
    )
    return {
        "rentals": [serialize_rental(rental) for rental in rentals],
        "payments": [serialize_payment(payment) for payment in payments],
        "alerts": [serialize_alert(alert) for alert in alerts],
    }


def _month_start(value: datetime, months_back: int) -> datetime:
    year = value.year
    month = value.month - months_back
    while month < 1:
        month += 12
        year -= 1
    return datetime(year, month, 1)


def revenue_chart(scope: TenantScope, period: str = "month", now: datetime | None = None) -> list[dict]:
    now = now or utc_now()
    if period == "year":
        start, key_format = _month_start(now, 12), "%Y-%m"
    elif period == "quarter":
        start, key_format = _month_start(now, 3), "%Y-%m"
    else:
        day = now - timedelta(days=30)
        start, key_format = datetime(day.year, day.month, day.day), "%Y-%m-%d"

    rows = scope.rows(
        scope.select_columns(Payment, Payment.PaidDate, Payment.Amount)
        .where(Payment.Status == "Completed")
        .where(Payment.PaidDate >= start)
        .order_by(Payment.PaidDate.asc())
    )
    buckets: OrderedDict[str, dict] = OrderedDict()
    for paid_date, amount in rows:
        key = paid_date.strftime(key_format)
        bucket = buckets.setdefault(key, {"period": key, "totalRevenue": 0.0, "count": 0})
        bucket["totalRevenue"] += float(amount or 0)
        bucket["count"] += 1
    return list(buckets.values())
