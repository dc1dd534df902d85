"""Recompute the denormalized vehicle and customer fields from rental facts.

Rentals are the record of truth. ``Vehicle.Status``/``CurrentRentalID``/
``ExpectedReturnDate`` and ``Customer.TotalRentals`` are copies maintained by
the lifecycle engine; this module finds and repairs rows where the copies
drifted, e.g. after a manual database edit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.tenant import TenantScope
from models.rental_models import Customer, Rental, Vehicle
from services.clock import utc_now

LOGGER = logging.getLogger("rental_management.reconcile")


@dataclass
class Finding:
    dealer_id: int
    entity: str
    entity_id: int
    issue: str
    action: str


def dealer_ids(db: Session) -> list[int]:
    ids = set(db.execute(select(Vehicle.DealerID).distinct()).scalars().all())
    ids.update(db.execute(select(Customer.DealerID).distinct()).scalars().all())
    return sorted(ids)


def reconcile_vehicles(scope: TenantScope) -> list[Finding]:
    findings: list[Finding] = []
    active = scope.all(scope.select(Rental).where(Rental.Status == "Active").order_by(Rental.RentalID.asc()))
    held: dict[int, Rental] = {}
    for rental in active:
        if rental.VehicleID in held:
            findings.append(
                Finding(
                    scope.dealer_id,
                    "Vehicle",
                    rental.VehicleID,
                    f"held by active rentals {held[rental.VehicleID].RentalNumber} and {rental.RentalNumber}",
                    "manual review",
                )
            )
            continue
        held[rental.VehicleID] = rental

    for vehicle in scope.all(scope.select(Vehicle).order_by(Vehicle.VehicleID.asc())):
        rental = held.get(vehicle.VehicleID)
        if rental is not None:
            if (
                vehicle.Status != "Rented"
                or vehicle.CurrentRentalID != rental.RentalID
                or vehicle.ExpectedReturnDate != rental.ExpectedEndDate
            ):
                findings.append(
                    Finding(
                        scope.dealer_id,
                        "Vehicle",
                        vehicle.VehicleID,
                        f"status={vehicle.Status} currentRental={vehicle.CurrentRentalID} "
                        f"but rental {rental.RentalNumber} is active",
                        "attach to active rental",
                    )
                )
                vehicle.Status = "Rented"
                vehicle.CurrentRentalID = rental.RentalID
                vehicle.ExpectedReturnDate = rental.ExpectedEndDate
                vehicle.UpdatedDate = utc_now()
            continue

        if vehicle.Status == "Rented" or vehicle.CurrentRentalID is not None:
            findings.append(
                Finding(
                    scope.dealer_id,
                    "Vehicle",
                    vehicle.VehicleID,
                    f"status={vehicle.Status} currentRental={vehicle.CurrentRentalID} with no active rental",
                    "release",
                )
            )
            if vehicle.Status == "Rented":
                vehicle.Status = "Available"
            vehicle.CurrentRentalID = None
            vehicle.ExpectedReturnDate = None
            vehicle.UpdatedDate = utc_now()
    return findings


def reconcile_customers(scope: TenantScope) -> list[Finding]:
    findings: list[Finding] = []
    counts = dict(
        scope.rows(
            scope.select_columns(Rental, Rental.CustomerID, func.count(Rental.RentalID)).group_by(Rental.CustomerID)
        )
    )
    for customer in scope.all(scope.select(Customer).order_by(Customer.CustomerID.asc())):
        actual = int(counts.get(customer.CustomerID, 0))
        recorded = int(customer.TotalRentals or 0)
        # The counter only ever grows; a higher recorded value is left alone.
        if recorded < actual:
            findings.append(
                Finding(
                    scope.dealer_id,
                    "Customer",
                    customer.CustomerID,
                    f"totalRentals={recorded} but {actual} rentals exist",
                    f"set totalRentals={actual}",
                )
            )
            customer.TotalRentals = actual
            customer.UpdatedDate = utc_now()
    return findings


def reconcile_dealer(scope: TenantScope) -> list[Finding]:
    findings = reconcile_vehicles(scope) + reconcile_customers(scope)
    for finding in findings:
        LOGGER.warning(
            "Drift dealer=%s %s=%s issue=%s action=%s",
            finding.dealer_id,
            finding.entity,
            finding.entity_id,
            finding.issue,
            finding.action,
        )
    return findings
