from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from db.tenant import TenantScope
from models.rental_models import Vehicle
from services.clock import utc_now
from services.errors import NotFoundError, RentalServiceError

LOGGER = logging.getLogger("rental_management.vehicles")

# Status, linkage and hours belong to the rental lifecycle and are not listed here.
_EDITABLE_FIELDS = {
    "vehicleNumber": "VehicleNumber",
    "type": "Type",
    "model": "Model",
    "manufacturer": "Manufacturer",
    "year": "Year",
    "dailyRate": "DailyRate",
    "condition": "Condition",
    "isActive": "IsActive",
}


def get_vehicle_or_404(scope: TenantScope, vehicle_id: int) -> Vehicle:
    vehicle = scope.get(Vehicle, vehicle_id, selectinload(Vehicle.RentalHistory))
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    return vehicle


def _number_taken(scope: TenantScope, vehicle_number: str, exclude_vehicle_id: int | None = None) -> bool:
    stmt = scope.select(Vehicle).where(Vehicle.VehicleNumber == vehicle_number)
    if exclude_vehicle_id is not None:
        stmt = stmt.where(Vehicle.VehicleID != exclude_vehicle_id)
    return scope.first(stmt) is not None


def list_vehicles(
    scope: TenantScope,
    page: int = 1,
    limit: int = 10,
    status: str = "",
    vehicle_type: str = "",
    search: str = "",
) -> tuple[list[Vehicle], int]:
    stmt = scope.select(Vehicle)
    if status:
        stmt = stmt.where(Vehicle.Status == status)
    if vehicle_type:
        stmt = stmt.where(Vehicle.Type == vehicle_type)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                Vehicle.VehicleNumber.ilike(pattern),
                Vehicle.Model.ilike(pattern),
                Vehicle.Manufacturer.ilike(pattern),
            )
        )
    total = scope.count(stmt)
    stmt = stmt.order_by(Vehicle.CreatedDate.desc(), Vehicle.VehicleID.desc()).limit(limit).offset((page - 1) * limit)
    return scope.all(stmt), total


def register_vehicle(scope: TenantScope, values: dict) -> Vehicle:
    vehicle_number = (values.get("vehicleNumber") or "").strip()
    if _number_taken(scope, vehicle_number):
        raise RentalServiceError(f"Vehicle {vehicle_number} already exists")

    now = utc_now()
    vehicle = Vehicle(
        Status="Available",
        Condition="Good",
        TotalRentalHours=0,
        IsActive=True,
        DailyRate=0,
        CreatedDate=now,
        UpdatedDate=now,
    )
    for field, column in _EDITABLE_FIELDS.items():
        if values.get(field) is not None:
            setattr(vehicle, column, values[field])
    vehicle.VehicleNumber = vehicle_number
    scope.add(vehicle)
    scope.flush()
    LOGGER.info("Vehicle registered dealer=%s vehicle=%s", scope.dealer_id, vehicle.VehicleNumber)
    return vehicle


def update_vehicle(scope: TenantScope, vehicle_id: int, values: dict) -> Vehicle:
    vehicle = get_vehicle_or_404(scope, vehicle_id)
    if "vehicleNumber" in values:
        vehicle_number = (values.get("vehicleNumber") or "").strip()
        if _number_taken(scope, vehicle_number, exclude_vehicle_id=vehicle.VehicleID):
            raise RentalServiceError(f"Vehicle {vehicle_number} already exists")
        values = {**values, "vehicleNumber": vehicle_number}
    for field, column in _EDITABLE_FIELDS.items():
        if values.get(field) is not None:
            setattr(vehicle, column, values[field])
    vehicle.UpdatedDate = utc_now()
    return vehicle


def serialize_vehicle(vehicle: Vehicle, include_history: bool = False) -> dict:
    payload = {
        "vehicleID": vehicle.VehicleID,
        "vehicleNumber": vehicle.VehicleNumber,
        "type": vehicle.Type,
        "model": vehicle.Model,
        "manufacturer": vehicle.Manufacturer,
        "year": vehicle.Year,
        "dailyRate": vehicle.DailyRate,
        "status": vehicle.Status,
        "condition": vehicle.Condition,
        "currentRentalID": vehicle.CurrentRentalID,
        "expectedReturnDate": vehicle.ExpectedReturnDate,
        "totalRentalHours": vehicle.TotalRentalHours,
        "isActive": bool(vehicle.IsActive),
        "createdDate": vehicle.CreatedDate,
        "updatedDate": vehicle.UpdatedDate,
    }
    if include_history:
        payload["rentalHistory"] = [
            {
                "rentalID": entry.RentalID,
                "customerID": entry.CustomerID,
                "startDate": entry.StartDate,
                "endDate": entry.EndDate,
                "returnCondition": entry.ReturnCondition,
                "totalHours": entry.TotalHours,
            }
            for entry in vehicle.RentalHistory
        ]
    return payload
