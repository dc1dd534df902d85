from __future__ import annotations

import logging
from datetime import datetime

from db.tenant import TenantScope
from models.rental_models import Alert, Rental
from services.clock import utc_now

LOGGER = logging.getLogger("rental_management.alerts")

ALERT_TYPE_VEHICLE_DAMAGE = "Vehicle Damage"
ALERT_TYPE_OVERDUE_RENTAL = "Overdue Rental"


def generate_vehicle_damage_alert(scope: TenantScope, rental: Rental, notes: str | None) -> Alert:
    vehicle_label = rental.Vehicle.VehicleNumber if rental.Vehicle else str(rental.VehicleID)
    alert = Alert(
        AlertType=ALERT_TYPE_VEHICLE_DAMAGE,
        Severity="High",
        Title=f"Damage reported on {vehicle_label}",
        Message=notes or f"Vehicle returned damaged from rental {rental.RentalNumber}.",
        RentalID=rental.RentalID,
        VehicleID=rental.VehicleID,
        Status="Active",
        CreatedDate=utc_now(),
    )
    scope.add(alert)
    LOGGER.warning(
        "Damage alert dealer=%s rental=%s vehicle=%s",
        scope.dealer_id,
        rental.RentalNumber,
        vehicle_label,
    )
    return alert


def generate_overdue_rental_alerts(scope: TenantScope, now: datetime | None = None) -> list[Alert]:
    now = now or utc_now()
    overdue = scope.all(
        scope.select(Rental)
        .where(Rental.Status == "Active")
        .where(Rental.ExpectedEndDate < now)
    )
    if not overdue:
        return []

    already_alerted = set(
        scope.db.execute(
            scope.select_columns(Alert, Alert.RentalID)
            .where(Alert.AlertType == ALERT_TYPE_OVERDUE_RENTAL)
            .where(Alert.RentalID.in_([rental.RentalID for rental in overdue]))
        ).scalars().all()
    )

    created = []
    for rental in overdue:
        if rental.RentalID in already_alerted:
            continue
        alert = Alert(
            AlertType=ALERT_TYPE_OVERDUE_RENTAL,
            Severity="Medium",
            Title=f"Rental {rental.RentalNumber} is past its return date",
            Message=f"Expected back {rental.ExpectedEndDate:%Y-%m-%d %H:%M}.",
            RentalID=rental.RentalID,
            VehicleID=rental.VehicleID,
            Status="Active",
            CreatedDate=now,
        )
        scope.add(alert)
        created.append(alert)
    if created:
        LOGGER.info("Overdue alerts dealer=%s created=%s", scope.dealer_id, len(created))
    return created


def serialize_alert(alert: Alert) -> dict:
    return {
        "alertID": alert.AlertID,
        "alertType": alert.AlertType,
        "severity": alert.Severity,
        "title": alert.Title,
        "message": alert.Message,
        "rentalID": alert.RentalID,
        "vehicleID": alert.VehicleID,
        "status": alert.Status,
        "createdDate": alert.CreatedDate,
    }
