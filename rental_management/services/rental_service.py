from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

from db.tenant import TenantScope
from models.rental_models import Customer, CustomerRentalHistory, Rental, Vehicle, VehicleRentalHistory
from services.alert_service import generate_vehicle_damage_alert
from services.clock import utc_now
from services.errors import InvalidStateError, NotFoundError, RentalServiceError
from services.identifier_service import generate_rental_number
from services.payment_service import (
    PAYMENT_DUE_DAYS,
    PAYMENT_TYPE_DAMAGE_CHARGE,
    PAYMENT_TYPE_EXTENSION_FEE,
    PAYMENT_TYPE_OTHER,
    PAYMENT_TYPE_RENTAL_FEE,
    create_derived_payment,
    serialize_payment,
)

LOGGER = logging.getLogger("rental_management.rentals")

RENTAL_TRANSITIONS = {
    ("Active", "return"): "Completed",
    ("Active", "return_late"): "Overdue",
    ("Active", "extend"): "Active",
    ("Active", "cancel"): "Cancelled",
}

VEHICLE_STATUS_AVAILABLE = "Available"
VEHICLE_STATUS_RENTED = "Rented"


def _transition_state(rental: Rental, event: str, message: str) -> str:
    target = RENTAL_TRANSITIONS.get((rental.Status, event))
    if target is None:
        raise InvalidStateError(message)
    rental.Status = target
    rental.UpdatedDate = utc_now()
    return target


def returned_vehicle_condition(current: str | None, return_condition: str | None) -> str | None:
    # One-way: a return can degrade the recorded condition, never improve it.
    if return_condition == "Damaged":
        return "Needs Inspection"
    if return_condition == "Fair" and current == "Good":
        return "Fair"
    return current


def rental_hours(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() / 3600)


def _release_vehicle(vehicle: Vehicle) -> None:
    vehicle.Status = VEHICLE_STATUS_AVAILABLE
    vehicle.CurrentRentalID = None
    vehicle.ExpectedReturnDate = None
    vehicle.UpdatedDate = utc_now()


def get_rental_or_404(scope: TenantScope, rental_id: int) -> Rental:
    rental = scope.get(
        Rental,
        rental_id,
        selectinload(Rental.Vehicle),
        selectinload(Rental.Customer).selectinload(Customer.RentalHistory),
        selectinload(Rental.Payments),
    )
    if not rental:
        raise NotFoundError("Rental not found")
    return rental


def create_rental(
    scope: TenantScope,
    customer_id: int,
    vehicle_id: int,
    start_date: datetime,
    expected_end_date: datetime,
    total_amount: float,
    notes: str | None = None,
) -> Rental:
    customer = scope.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found")
    vehicle = scope.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    if vehicle.Status != VEHICLE_STATUS_AVAILABLE:
        raise InvalidStateError("Vehicle is not available for rental")

    now = utc_now()
    rental = Rental(
        RentalNumber=generate_rental_number(scope),
        CustomerID=customer.CustomerID,
        VehicleID=vehicle.VehicleID,
        Status="Active",
        StartDate=start_date,
        ExpectedEndDate=expected_end_date,
        TotalAmount=float(total_amount),
        Notes=notes,
        CreatedDate=now,
        UpdatedDate=now,
    )
    scope.add(rental)
    scope.flush()

    vehicle.Status = VEHICLE_STATUS_RENTED
    vehicle.CurrentRentalID = rental.RentalID
    vehicle.ExpectedReturnDate = rental.ExpectedEndDate
    vehicle.UpdatedDate = now

    customer.TotalRentals = int(customer.TotalRentals or 0) + 1
    customer.RentalHistory.append(
        CustomerRentalHistory(
            RentalID=rental.RentalID,
            VehicleID=vehicle.VehicleID,
            StartDate=rental.StartDate,
            EndDate=rental.ExpectedEndDate,
            TotalAmount=rental.TotalAmount,
            PaidAmount=0,
            CreatedDate=now,
        )
    )
    customer.UpdatedDate = now

    create_derived_payment(
        scope,
        rental,
        rental.TotalAmount,
        PAYMENT_TYPE_RENTAL_FEE,
        due_date=rental.StartDate + timedelta(days=PAYMENT_DUE_DAYS),
    )

    LOGGER.info(
        "Rental created dealer=%s rental=%s vehicle=%s customer=%s amount=%s",
        scope.dealer_id,
        rental.RentalNumber,
        vehicle.VehicleNumber,
        customer.CustomerNumber,
        rental.TotalAmount,
    )
    return rental


def return_rental(
    scope: TenantScope,
    rental_id: int,
    return_condition: str,
    notes: str | None = None,
    images: list[str] | None = None,
    checked_by: str | None = None,
    damage_charges: float = 0,
    actual_end_date: datetime | None = None,
) -> Rental:
    rental = get_rental_or_404(scope, rental_id)
    if rental.Status != "Active":
        raise InvalidStateError("Rental is not active")

    now = utc_now()
    actual_end_date = actual_end_date or now
    if actual_end_date < rental.StartDate:
        raise RentalServiceError("actualEndDate must be on or after startDate.")

    rental.ActualEndDate = actual_end_date
    rental.ReturnCondition = return_condition
    rental.ReturnNotes = notes
    rental.ReturnImages = list(images or [])
    rental.CheckedBy = checked_by
    rental.CheckDate = now
    rental.DamageCharges = float(damage_charges or 0)

    # A late return is recorded as Overdue instead of Completed.
    event = "return_late" if rental.ActualEndDate > rental.ExpectedEndDate else "return"
    _transition_state(rental, event, "Rental is not active")

    hours = rental_hours(rental.StartDate, rental.ActualEndDate)
    vehicle = rental.Vehicle
    _release_vehicle(vehicle)
    vehicle.Condition = returned_vehicle_condition(vehicle.Condition, return_condition)
    vehicle.RentalHistory.append(
        VehicleRentalHistory(
            RentalID=rental.RentalID,
            CustomerID=rental.CustomerID,
            StartDate=rental.StartDate,
            EndDate=rental.ActualEndDate,
            ReturnCondition=return_condition,
            TotalHours=hours,
            CreatedDate=now,
        )
    )
    vehicle.TotalRentalHours = int(vehicle.TotalRentalHours or 0) + hours

    customer = rental.Customer
    entry = next((h for h in customer.RentalHistory if h.RentalID == rental.RentalID), None)
    if entry is not None:
        entry.EndDate = rental.ActualEndDate
        entry.ReturnCondition = return_condition
    else:
        LOGGER.warning(
            "No customer history entry dealer=%s rental=%s customer=%s",
            scope.dealer_id,
            rental.RentalNumber,
            customer.CustomerNumber,
        )
    customer.UpdatedDate = now

    if rental.DamageCharges > 0:
        create_derived_payment(scope, rental, rental.DamageCharges, PAYMENT_TYPE_DAMAGE_CHARGE)
        generate_vehicle_damage_alert(scope, rental, notes)

    LOGGER.info(
        "Rental returned dealer=%s rental=%s status=%s hours=%s condition=%s",
        scope.dealer_id,
        rental.RentalNumber,
        rental.Status,
        hours,
        return_condition,
    )
    return rental


def extend_rental(
    scope: TenantScope,
    rental_id: int,
    new_end_date: datetime,
    additional_amount: float = 0,
) -> Rental:
    rental = get_rental_or_404(scope, rental_id)
    _transition_state(rental, "extend", "Can only extend active rentals")
    if new_end_date < rental.StartDate:
        raise RentalServiceError("newEndDate must be on or after startDate.")

    additional = float(additional_amount or 0)
    rental.ExpectedEndDate = new_end_date
    rental.TotalAmount = float(rental.TotalAmount or 0) + additional

    vehicle = rental.Vehicle
    vehicle.ExpectedReturnDate = new_end_date
    vehicle.UpdatedDate = utc_now()

    if additional > 0:
        create_derived_payment(scope, rental, additional, PAYMENT_TYPE_EXTENSION_FEE)

    LOGGER.info(
        "Rental extended dealer=%s rental=%s until=%s additional=%s",
        scope.dealer_id,
        rental.RentalNumber,
        new_end_date,
        additional,
    )
    return rental


def cancel_rental(
    scope: TenantScope,
    rental_id: int,
    reason: str | None = None,
    cancellation_fee: float = 0,
) -> Rental:
    rental = get_rental_or_404(scope, rental_id)
    _transition_state(rental, "cancel", "Can only cancel active rentals")

    line = f"Cancelled: {reason or 'No reason given'}"
    rental.Notes = (rental.Notes + "\n" if rental.Notes else "") + line

    _release_vehicle(rental.Vehicle)

    fee = float(cancellation_fee or 0)
    if fee > 0:
        create_derived_payment(scope, rental, fee, PAYMENT_TYPE_OTHER)

    LOGGER.info(
        "Rental cancelled dealer=%s rental=%s fee=%s",
        scope.dealer_id,
        rental.RentalNumber,
        fee,
    )
    return rental


def list_rentals(
    scope: TenantScope,
    page: int = 1,
    limit: int = 10,
    status: str = "",
    search: str = "",
) -> tuple[list[Rental], int]:
    stmt = scope.select(Rental, selectinload(Rental.Customer), selectinload(Rental.Vehicle))
    if status:
        stmt = stmt.where(Rental.Status == status)
    if search:
        pattern = f"%{search}%"
        customer_ids = select(Customer.CustomerID).where(
            Customer.DealerID == scope.dealer_id, Customer.Name.ilike(pattern)
        )
        vehicle_ids = select(Vehicle.VehicleID).where(
            Vehicle.DealerID == scope.dealer_id, Vehicle.VehicleNumber.ilike(pattern)
        )
        stmt = stmt.where(
            or_(
                Rental.RentalNumber.ilike(pattern),
                Rental.CustomerID.in_(customer_ids),
                Rental.VehicleID.in_(vehicle_ids),
            )
        )
    total = scope.count(stmt)
    stmt = stmt.order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc()).limit(limit).offset((page - 1) * limit)
    return scope.all(stmt), total


def serialize_rental(rental: Rental, include_payments: bool = False) -> dict:
    customer = rental.Customer
    vehicle = rental.Vehicle
    payload = {
        "rentalID": rental.RentalID,
        "rentalNumber": rental.RentalNumber,
        "customerID": rental.CustomerID,
        "vehicleID": rental.VehicleID,
        "status": rental.Status,
        "startDate": rental.StartDate,
        "expectedEndDate": rental.ExpectedEndDate,
        "actualEndDate": rental.ActualEndDate,
        "totalAmount": rental.TotalAmount,
        "returnCondition": {
            "condition": rental.ReturnCondition,
            "notes": rental.ReturnNotes,
            "images": rental.ReturnImages or [],
            "checkedBy": rental.CheckedBy,
            "checkDate": rental.CheckDate,
            "damageCharges": rental.DamageCharges or 0,
        } if rental.ReturnCondition else None,
        "notes": rental.Notes,
        "customer": {
            "customerID": customer.CustomerID,
            "customerNumber": customer.CustomerNumber,
            "name": customer.Name,
            "email": customer.Email,
            "phone": customer.Phone,
        } if customer else None,
        "vehicle": {
            "vehicleID": vehicle.VehicleID,
            "vehicleNumber": vehicle.VehicleNumber,
            "type": vehicle.Type,
            "model": vehicle.Model,
            "manufacturer": vehicle.Manufacturer,
        } if vehicle else None,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
    }
    if include_payments:
        payload["payments"] = [serialize_payment(payment) for payment in rental.Payments]
    return payload
