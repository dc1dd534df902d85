import os
import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient


os.environ.setdefault("RENTAL_MANAGEMENT_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import RentalMan as app_module
from db.base import Base
from db.deps import get_rental_db
from db.engine import build_engine, build_sessionmaker


DEALER_ONE = {"X-Dealer-ID": "1"}
DEALER_TWO = {"X-Dealer-ID": "2"}


class RentalApiCase(unittest.TestCase):
    """Runs the API against a fresh in-memory database per test."""

    def setUp(self):
        self.engine = build_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.session_factory = build_sessionmaker(self.engine)

        def _override_db():
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[get_rental_db] = _override_db
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def create_customer(self, headers=DEALER_ONE, **overrides):
        body = {
            "name": "Prairie Earthworks",
            "email": "ops@prairie.example",
            "phone": "555-0100",
            "businessType": "Construction",
            "address": {"street": "1 Quarry Rd", "city": "Dodge", "state": "KS", "zipCode": "67801"},
        }
        body.update(overrides)
        resp = self.client.post("/api/customers", json=body, headers=headers)
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()["data"]

    def create_vehicle(self, headers=DEALER_ONE, **overrides):
        body = {
            "vehicleNumber": "EX-100",
            "type": "Excavator",
            "model": "320",
            "manufacturer": "CAT",
            "year": 2021,
            "dailyRate": 450,
        }
        body.update(overrides)
        resp = self.client.post("/api/vehicles", json=body, headers=headers)
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()["data"]

    def create_rental(self, customer, vehicle, headers=DEALER_ONE, **overrides):
        body = {
            "customerID": customer["customerID"],
            "vehicleID": vehicle["vehicleID"],
            "startDate": "2026-01-01T08:00:00",
            "expectedEndDate": "2026-01-04T08:00:00",
            "totalAmount": 1350,
        }
        body.update(overrides)
        return self.client.post("/api/rentals", json=body, headers=headers)

    def get_vehicle(self, vehicle_id, headers=DEALER_ONE):
        resp = self.client.get(f"/api/vehicles/{vehicle_id}", headers=headers)
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()["data"]

    def get_customer(self, customer_id, headers=DEALER_ONE):
        resp = self.client.get(f"/api/customers/{customer_id}", headers=headers)
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()["data"]

    def rental_payments(self, rental_id, headers=DEALER_ONE):
        resp = self.client.get(f"/api/rentals/{rental_id}", headers=headers)
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()["data"]["payments"]
