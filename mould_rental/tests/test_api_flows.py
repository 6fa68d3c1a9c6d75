import os
import unittest

from fastapi.testclient import TestClient

os.environ.setdefault("MOULD_RENTAL_DB_URL", "sqlite+pysqlite:///:memory:")

from db_helpers import SqliteDatabase

import MouldRental as app_module
from models.rental_models import AuditLog


class ApiFlowTests(unittest.TestCase):
    def setUp(self):
        self.database = SqliteDatabase()
        self.indiana = self.database.add_mould("Indiana", 5)
        self.stone = self.database.add_mould("Stone", 2)

        def _override():
            db = self.database.Session()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[app_module.get_rental_db] = _override
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        self.database.close()

    def _create(self, items, **extra):
        body = {"pickupDateTime": "2024-01-01T09:00:00", "items": items}
        body.update(extra)
        return self.client.post("/api/rentals", json=body)

    def test_healthcheck(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})
        self.assertEqual(self.client.get("/api/healthz").status_code, 200)

    def test_create_return_and_audit(self):
        created = self._create(
            [{"mouldTypeID": self.indiana, "quantity": 2}, {"mouldTypeID": self.stone, "quantity": 1}],
            fullName="Ama Mensah",
            idCardNumber="GHA-7",
            idCardCollected=True,
        )
        self.assertEqual(created.status_code, 200)
        body = created.json()
        self.assertEqual(body["receiptNumber"], "MRT-000001")
        self.assertEqual(body["status"], "ACTIVE")
        self.assertEqual(body["customer"]["fullName"], "Ama Mensah")
        self.assertEqual(self.database.available(self.indiana), 3)

        returned = self.client.post(
            f"/api/rentals/{body['rentalID']}/return",
            json={"returnDateTime": "2024-01-03T10:00:00"},
        )
        self.assertEqual(returned.status_code, 200)
        result = returned.json()
        self.assertEqual(result["status"], "RETURNED")
        self.assertEqual(result["daysUsed"], 2)
        self.assertEqual(float(result["totalCharge"]), 200.0)
        self.assertEqual(float(result["refundAmount"]), 800.0)
        self.assertEqual(float(result["additionalPayment"]), 0.0)
        self.assertEqual(self.database.available(self.indiana), 5)
        self.assertEqual(self.database.available(self.stone), 2)

        again = self.client.post(f"/api/rentals/{body['rentalID']}/return", json={"returnDateTime": "2024-01-04T10:00:00"})
        self.assertEqual(again.status_code, 400)

        with self.database.Session() as db:
            actions = [row.Action for row in db.query(AuditLog).order_by(AuditLog.AuditID)]
        self.assertEqual(actions, ["CreateRental", "Return"])

    def test_insufficient_availability_is_a_conflict(self):
        response = self._create([{"mouldTypeID": self.indiana, "quantity": 1}, {"mouldTypeID": self.stone, "quantity": 3}])
        self.assertEqual(response.status_code, 409)
        detail = response.json()["detail"]
        self.assertEqual(detail["shortfall"], 1)
        self.assertEqual(detail["name"], "Stone")
        self.assertEqual(self.database.available(self.indiana), 5)

    def test_validation_and_not_found(self):
        self.assertEqual(self._create([]).status_code, 400)
        self.assertEqual(self._create([{"mouldTypeID": self.indiana, "quantity": 0}]).status_code, 400)
        self.assertEqual(self._create([{"mouldTypeID": 999, "quantity": 1}]).status_code, 404)
        self.assertEqual(self.client.get("/api/rentals/999").status_code, 404)
        self.assertEqual(self.client.post("/api/rentals/999/return", json={}).status_code, 404)

        created = self._create([{"mouldTypeID": self.indiana, "quantity": 1}]).json()
        early = self.client.post(
            f"/api/rentals/{created['rentalID']}/return",
            json={"returnDateTime": "2023-12-31T10:00:00"},
        )
        self.assertEqual(early.status_code, 400)

    def test_delete_active_rental_puts_units_back(self):
        created = self._create([{"mouldTypeID": self.indiana, "quantity": 4}]).json()
        self.assertEqual(self.database.available(self.indiana), 1)
        response = self.client.delete(f"/api/rentals/{created['rentalID']}")
        self.assertEqual(response.json(), {"message": "Deleted", "released": True})
        self.assertEqual(self.database.available(self.indiana), 5)
        self.assertEqual(self.client.get(f"/api/rentals/{created['rentalID']}").status_code, 404)

    def test_quote_previews_without_mutation(self):
        response = self.client.post(
            "/api/rentals/quote",
            json={
                "pickupDateTime": "2024-01-01T14:00:00",
                "returnDateTime": "2024-01-03T10:00:00",
                "depositAmount": 1000,
                "dailyRate": 100,
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["daysUsed"], 1)
        self.assertEqual(float(response.json()["refundAmount"]), 900.0)

        backwards = self.client.post(
            "/api/rentals/quote",
            json={"pickupDateTime": "2024-01-03T10:00:00", "returnDateTime": "2024-01-01T14:00:00"},
        )
        self.assertEqual(backwards.status_code, 400)

    def test_mould_management_and_reconcile(self):
        created = self.client.post("/api/moulds", json={"name": "Compass", "quantity": 4})
        self.assertEqual(created.status_code, 200)
        compass = created.json()["mouldTypeID"]
        self.assertEqual(self.client.post("/api/moulds", json={"name": " compass ", "quantity": 1}).status_code, 400)
        self.assertEqual(self.client.post("/api/moulds", json={"name": "  ", "quantity": 1}).status_code, 400)

        self._create([{"mouldTypeID": compass, "quantity": 3}])
        detail = self.client.get(f"/api/moulds/{compass}").json()
        self.assertEqual((detail["quantity"], detail["available"], detail["rented"]), (4, 1, 3))

        self.assertEqual(self.client.patch(f"/api/moulds/{compass}", json={"quantity": 2}).status_code, 400)
        grown = self.client.patch(f"/api/moulds/{compass}", json={"quantity": 10}).json()
        self.assertEqual((grown["quantity"], grown["available"]), (10, 7))
        self.assertEqual(self.client.delete(f"/api/moulds/{compass}").status_code, 400)

        report = self.client.post(f"/api/moulds/{compass}/reconcile").json()
        self.assertEqual((report["old"], report["new"], report["delta"]), (7, 7, 0))
        self.assertEqual(self.client.post("/api/moulds/999/reconcile").status_code, 404)

        names = [row["name"] for row in self.client.get("/api/moulds").json()]
        self.assertEqual(names, ["Compass", "Indiana", "Stone"])
        reports = self.client.post("/api/moulds/reconcile").json()
        self.assertEqual(len(reports), 3)
        self.assertTrue(all(row["delta"] == 0 for row in reports))

        unused = self.client.post("/api/moulds", json={"name": "Y wood"}).json()
        self.assertEqual(self.client.delete(f"/api/moulds/{unused['mouldTypeID']}").status_code, 200)

    def test_rental_listing_and_stats(self):
        self._create([{"mouldTypeID": self.indiana, "quantity": 1}], fullName="Yaw Asante", contactNumber="0551234567")
        self._create([{"mouldTypeID": self.stone, "quantity": 1}])

        self.assertEqual(len(self.client.get("/api/rentals").json()), 2)
        found = self.client.get("/api/rentals", params={"search": "asante"}).json()
        self.assertEqual([row["receiptNumber"] for row in found], ["MRT-000001"])
        self.assertEqual(len(self.client.get("/api/rentals", params={"status": "returned"}).json()), 0)
        self.assertEqual(self.client.get("/api/rentals", params={"status": "bogus"}).status_code, 400)

        stats = self.client.get("/api/stats").json()
        self.assertEqual(stats["activeRentals"], 2)
        self.assertIn("monthlyRevenue", stats)

    def test_customer_routes(self):
        created = self._create([{"mouldTypeID": self.indiana, "quantity": 1}], fullName="Kofi Boateng", idCardNumber="GHA-9").json()
        customer_id = created["customer"]["customerID"]

        customer = self.client.get(f"/api/customers/{customer_id}").json()
        self.assertEqual(customer["fullName"], "Kofi Boateng")
        self.assertEqual(len(customer["rentals"]), 1)
        history = self.client.get(f"/api/customers/{customer_id}/history").json()
        self.assertEqual(history[0]["receiptNumber"], "MRT-000001")

        self.assertEqual(self.client.delete(f"/api/customers/{customer_id}").status_code, 400)
        self.client.post(f"/api/rentals/{created['rentalID']}/return", json={"returnDateTime": "2024-01-02T13:00:00"})
        self.assertEqual(self.client.delete(f"/api/customers/{customer_id}").json(), {"success": True})
        self.assertEqual(self.client.get(f"/api/customers/{customer_id}").status_code, 404)


if __name__ == "__main__":
    unittest.main()
