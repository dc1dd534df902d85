import sys
import unittest
from pathlib import Path
from unittest import mock

from sqlalchemy import delete

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models.rental_models import CustomerRentalHistory
from services.errors import InvalidStateError
from services.rental_service import rental_hours, returned_vehicle_condition
from tests.rental_api_case import DEALER_ONE, DEALER_TWO, RentalApiCase


class RentalLifecycleTests(RentalApiCase):
    def test_requests_without_dealer_header_are_rejected(self):
        resp = self.client.get("/api/rentals")
        self.assertEqual(resp.status_code, 401)
        self.assertFalse(resp.json()["success"])

        bad = self.client.get("/api/rentals", headers={"X-Dealer-ID": "abc"})
        self.assertEqual(bad.status_code, 401)

    def test_create_rental_marks_vehicle_rented_and_bills_rental_fee(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()

        resp = self.create_rental(customer, vehicle, notes="Site B")
        self.assertEqual(resp.status_code, 201, resp.text)
        body = resp.json()
        self.assertTrue(body["success"])
        rental = body["data"]
        self.assertEqual(rental["rentalNumber"], "RNT-0001")
        self.assertEqual(rental["status"], "Active")
        self.assertEqual(rental["customer"]["name"], "Prairie Earthworks")
        self.assertEqual(rental["vehicle"]["vehicleNumber"], "EX-100")

        stored_vehicle = self.get_vehicle(vehicle["vehicleID"])
        self.assertEqual(stored_vehicle["status"], "Rented")
        self.assertEqual(stored_vehicle["currentRentalID"], rental["rentalID"])
        self.assertEqual(stored_vehicle["expectedReturnDate"], "2026-01-04T08:00:00")

        stored_customer = self.get_customer(customer["customerID"])
        self.assertEqual(stored_customer["customer"]["totalRentals"], 1)
        self.assertEqual(len(stored_customer["customer"]["rentalHistory"]), 1)

        payments = self.rental_payments(rental["rentalID"])
        self.assertEqual(len(payments), 1)
        self.assertEqual(payments[0]["paymentType"], "Rental Fee")
        self.assertEqual(payments[0]["status"], "Pending")
        self.assertEqual(payments[0]["amount"], 1350)
        self.assertEqual(payments[0]["dueDate"], "2026-01-08T08:00:00")

    def test_create_rental_on_unavailable_vehicle_leaves_state_unchanged(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        first = self.create_rental(customer, vehicle)
        self.assertEqual(first.status_code, 201)

        second = self.create_rental(customer, vehicle, totalAmount=10)
        self.assertEqual(second.status_code, 400)
        self.assertEqual(second.json()["message"], "Vehicle is not available for rental")

        stored_vehicle = self.get_vehicle(vehicle["vehicleID"])
        self.assertEqual(stored_vehicle["currentRentalID"], first.json()["data"]["rentalID"])
        listing = self.client.get("/api/rentals", headers=DEALER_ONE).json()
        self.assertEqual(listing["pagination"]["total"], 1)

    def test_create_rental_rejects_end_before_start(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        resp = self.create_rental(customer, vehicle, expectedEndDate="2025-12-30T08:00:00")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.get_vehicle(vehicle["vehicleID"])["status"], "Available")

    def test_create_rental_with_unknown_customer_is_not_found(self):
        vehicle = self.create_vehicle()
        resp = self.create_rental({"customerID": 999}, vehicle)
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["message"], "Customer not found")

    def test_failed_transition_rolls_back_every_write(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()

        with mock.patch(
            "services.rental_service.create_derived_payment",
            side_effect=InvalidStateError("billing unavailable"),
        ):
            resp = self.create_rental(customer, vehicle)
        self.assertEqual(resp.status_code, 400)

        stored_vehicle = self.get_vehicle(vehicle["vehicleID"])
        self.assertEqual(stored_vehicle["status"], "Available")
        self.assertIsNone(stored_vehicle["currentRentalID"])
        self.assertEqual(self.get_customer(customer["customerID"])["customer"]["totalRentals"], 0)
        self.assertEqual(self.client.get("/api/rentals", headers=DEALER_ONE).json()["data"], [])

    def test_on_time_return_completes_rental_and_releases_vehicle(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]

        resp = self.client.put(
            f"/api/rentals/{rental['rentalID']}/return",
            json={"returnCondition": "Good", "checkedBy": "yard", "actualEndDate": "2026-01-03T20:00:00"},
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        returned = resp.json()["data"]
        self.assertEqual(returned["status"], "Completed")
        self.assertEqual(returned["returnCondition"]["checkedBy"], "yard")

        stored_vehicle = self.get_vehicle(vehicle["vehicleID"])
        self.assertEqual(stored_vehicle["status"], "Available")
        self.assertIsNone(stored_vehicle["currentRentalID"])
        self.assertIsNone(stored_vehicle["expectedReturnDate"])
        self.assertEqual(stored_vehicle["condition"], "Good")
        self.assertEqual(stored_vehicle["totalRentalHours"], 60)
        self.assertEqual(len(stored_vehicle["rentalHistory"]), 1)

        history = self.get_customer(customer["customerID"])["customer"]["rentalHistory"]
        self.assertEqual(history[0]["endDate"], "2026-01-03T20:00:00")
        self.assertEqual(history[0]["returnCondition"], "Good")

    def test_late_damaged_return_marks_overdue_and_bills_damage(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]

        resp = self.client.put(
            f"/api/rentals/{rental['rentalID']}/return",
            json={
                "returnCondition": "Damaged",
                "notes": "Cracked bucket",
                "damageCharges": 800,
                "actualEndDate": "2026-01-06T08:00:00",
            },
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["data"]["status"], "Overdue")

        stored_vehicle = self.get_vehicle(vehicle["vehicleID"])
        self.assertEqual(stored_vehicle["status"], "Available")
        self.assertEqual(stored_vehicle["condition"], "Needs Inspection")
        self.assertEqual(stored_vehicle["totalRentalHours"], 120)

        payments = self.rental_payments(rental["rentalID"])
        damage = [p for p in payments if p["paymentType"] == "Damage Charge"]
        self.assertEqual(len(damage), 1)
        self.assertEqual(damage[0]["amount"], 800)
        self.assertEqual(damage[0]["status"], "Pending")

        activity = self.client.get("/api/dashboard/recent-activity", headers=DEALER_ONE).json()["data"]
        self.assertEqual([a["alertType"] for a in activity["alerts"]], ["Vehicle Damage"])

    def test_return_before_start_is_rejected_and_hours_never_drop(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        first = self.create_rental(customer, vehicle).json()["data"]
        self.client.put(
            f"/api/rentals/{first['rentalID']}/return",
            json={"returnCondition": "Good", "actualEndDate": "2026-01-03T08:00:00"},
            headers=DEALER_ONE,
        )
        self.assertEqual(self.get_vehicle(vehicle["vehicleID"])["totalRentalHours"], 48)

        future = self.create_rental(
            customer,
            vehicle,
            startDate="2099-01-01T08:00:00",
            expectedEndDate="2099-01-04T08:00:00",
        ).json()["data"]

        # No actualEndDate means "now", which is before this booking starts.
        resp = self.client.put(
            f"/api/rentals/{future['rentalID']}/return",
            json={"returnCondition": "Good"},
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "actualEndDate must be on or after startDate.")

        explicit = self.client.put(
            f"/api/rentals/{future['rentalID']}/return",
            json={"returnCondition": "Good", "actualEndDate": "2098-12-31T08:00:00"},
            headers=DEALER_ONE,
        )
        self.assertEqual(explicit.status_code, 400)

        stored_vehicle = self.get_vehicle(vehicle["vehicleID"])
        self.assertEqual(stored_vehicle["totalRentalHours"], 48)
        self.assertEqual(stored_vehicle["status"], "Rented")
        self.assertEqual(len(stored_vehicle["rentalHistory"]), 1)
        detail = self.client.get(f"/api/rentals/{future['rentalID']}", headers=DEALER_ONE).json()["data"]
        self.assertEqual(detail["rental"]["status"], "Active")
        self.assertIsNone(detail["rental"]["actualEndDate"])

    def test_return_without_customer_history_entry_still_succeeds(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]
        with self.session_factory() as db:
            db.execute(delete(CustomerRentalHistory).where(CustomerRentalHistory.RentalID == rental["rentalID"]))
            db.commit()

        resp = self.client.put(
            f"/api/rentals/{rental['rentalID']}/return",
            json={"returnCondition": "Good", "actualEndDate": "2026-01-02T08:00:00"},
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["data"]["status"], "Completed")

        stored_vehicle = self.get_vehicle(vehicle["vehicleID"])
        self.assertEqual(stored_vehicle["status"], "Available")
        self.assertEqual(stored_vehicle["totalRentalHours"], 24)
        self.assertEqual(self.get_customer(customer["customerID"])["customer"]["rentalHistory"], [])

    def test_return_twice_is_rejected(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]
        url = f"/api/rentals/{rental['rentalID']}/return"
        body = {"returnCondition": "Good", "actualEndDate": "2026-01-02T08:00:00"}

        self.assertEqual(self.client.put(url, json=body, headers=DEALER_ONE).status_code, 200)
        again = self.client.put(url, json=body, headers=DEALER_ONE)
        self.assertEqual(again.status_code, 400)
        self.assertEqual(self.get_vehicle(vehicle["vehicleID"])["totalRentalHours"], 24)

    def test_extend_with_amount_adds_extension_fee(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]

        resp = self.client.put(
            f"/api/rentals/{rental['rentalID']}/extend",
            json={"newEndDate": "2026-01-06T08:00:00", "additionalAmount": 900},
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        extended = resp.json()["data"]
        self.assertEqual(extended["status"], "Active")
        self.assertEqual(extended["expectedEndDate"], "2026-01-06T08:00:00")
        self.assertEqual(extended["totalAmount"], 2250)
        self.assertEqual(self.get_vehicle(vehicle["vehicleID"])["expectedReturnDate"], "2026-01-06T08:00:00")

        types = sorted(p["paymentType"] for p in self.rental_payments(rental["rentalID"]))
        self.assertEqual(types, ["Extension Fee", "Rental Fee"])

    def test_extend_without_amount_creates_no_payment(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]

        resp = self.client.put(
            f"/api/rentals/{rental['rentalID']}/extend",
            json={"newEndDate": "2026-01-05T08:00:00"},
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["data"]["totalAmount"], 1350)
        self.assertEqual(len(self.rental_payments(rental["rentalID"])), 1)

    def test_extend_before_start_is_rejected(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]

        resp = self.client.put(
            f"/api/rentals/{rental['rentalID']}/extend",
            json={"newEndDate": "2025-12-01T08:00:00", "additionalAmount": 50},
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.get_vehicle(vehicle["vehicleID"])["expectedReturnDate"], "2026-01-04T08:00:00")

    def test_cancel_without_fee_releases_vehicle(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle, notes="Phone order").json()["data"]

        resp = self.client.put(
            f"/api/rentals/{rental['rentalID']}/cancel",
            json={"reason": "Weather"},
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        cancelled = resp.json()["data"]
        self.assertEqual(cancelled["status"], "Cancelled")
        self.assertEqual(cancelled["notes"], "Phone order\nCancelled: Weather")
        self.assertEqual(self.get_vehicle(vehicle["vehicleID"])["status"], "Available")
        self.assertEqual(len(self.rental_payments(rental["rentalID"])), 1)

        extend = self.client.put(
            f"/api/rentals/{rental['rentalID']}/extend",
            json={"newEndDate": "2026-01-09T08:00:00"},
            headers=DEALER_ONE,
        )
        self.assertEqual(extend.status_code, 400)

    def test_cancel_with_fee_bills_other_payment(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]

        resp = self.client.put(
            f"/api/rentals/{rental['rentalID']}/cancel",
            json={"reason": "Changed plans", "cancellationFee": 100},
            headers=DEALER_ONE,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        payments = self.rental_payments(rental["rentalID"])
        self.assertEqual(payments[0]["paymentType"], "Other")
        self.assertEqual(payments[0]["amount"], 100)
        self.assertEqual(self.get_vehicle(vehicle["vehicleID"])["status"], "Available")

    def test_other_dealer_cannot_see_or_touch_rental(self):
        customer = self.create_customer()
        vehicle = self.create_vehicle()
        rental = self.create_rental(customer, vehicle).json()["data"]

        self.assertEqual(self.client.get(f"/api/rentals/{rental['rentalID']}", headers=DEALER_TWO).status_code, 404)
        cancel = self.client.put(f"/api/rentals/{rental['rentalID']}/cancel", json={}, headers=DEALER_TWO)
        self.assertEqual(cancel.status_code, 404)
        listing = self.client.get("/api/rentals", headers=DEALER_TWO).json()
        self.assertEqual(listing["data"], [])
        self.assertEqual(listing["pagination"]["total"], 0)

        # Dealer 2 numbering starts fresh and may reuse the same vehicle number.
        other_customer = self.create_customer(headers=DEALER_TWO)
        other_vehicle = self.create_vehicle(headers=DEALER_TWO)
        other = self.create_rental(other_customer, other_vehicle, headers=DEALER_TWO)
        self.assertEqual(other.status_code, 201, other.text)
        self.assertEqual(other.json()["data"]["rentalNumber"], "RNT-0001")

        cross = self.create_rental(customer, other_vehicle, headers=DEALER_TWO)
        self.assertEqual(cross.status_code, 404)

    def test_list_rentals_filters_by_status_and_search(self):
        customer = self.create_customer()
        first = self.create_rental(customer, self.create_vehicle()).json()["data"]
        self.create_rental(customer, self.create_vehicle(vehicleNumber="LD-7", type="Loader"))
        self.client.put(f"/api/rentals/{first['rentalID']}/cancel", json={}, headers=DEALER_ONE)

        active = self.client.get("/api/rentals?status=Active", headers=DEALER_ONE).json()
        self.assertEqual([r["vehicle"]["vehicleNumber"] for r in active["data"]], ["LD-7"])

        found = self.client.get("/api/rentals?search=EX-1", headers=DEALER_ONE).json()
        self.assertEqual([r["rentalID"] for r in found["data"]], [first["rentalID"]])

        paged = self.client.get("/api/rentals?limit=1&page=2", headers=DEALER_ONE).json()
        self.assertEqual(paged["pagination"], {"current": 2, "pages": 2, "total": 2})


class RentalRulesTests(unittest.TestCase):
    def test_return_condition_only_degrades(self):
        self.assertEqual(returned_vehicle_condition("Good", "Damaged"), "Needs Inspection")
        self.assertEqual(returned_vehicle_condition("Good", "Fair"), "Fair")
        self.assertEqual(returned_vehicle_condition("Fair", "Good"), "Fair")
        self.assertEqual(returned_vehicle_condition("Needs Inspection", "Excellent"), "Needs Inspection")

    def test_rental_hours_truncates(self):
        from datetime import datetime

        self.assertEqual(rental_hours(datetime(2026, 1, 1, 8), datetime(2026, 1, 1, 10, 59)), 2)


if __name__ == "__main__":
    unittest.main()
