import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from fastapi.testclient import TestClient

from dealersync.api import create_app
from dealersync.config import SyncConfig
from dealersync.errors import PageLoadError
from dealersync.pages import PageData
from dealersync.runtime import build_runtime

FIXTURES = Path(__file__).resolve().parent / "fixtures"
BROWNBOYS_URL = "https://www.brownboysauto.com/cars/used/2021-Land-Rover-Range-Rover-509760"
CARSCOM_URL = "https://www.cars.com/vehicledetail/3f6a2b1c/"
SLOW_URL = "https://www.autotrader.com/cars-for-sale/vehicle/999"

ADMIN = {"X-Organization-Id": "org-1", "X-User-Id": "admin-1", "X-User-Role": "admin"}
ALICE = {"X-Organization-Id": "org-1", "X-User-Id": "alice", "X-User-Role": "member"}


class FixtureLoader:
    def __init__(self) -> None:
        self.pages = {
            BROWNBOYS_URL: (FIXTURES / "brownboys_listing.html").read_text(encoding="utf-8"),
            CARSCOM_URL: (FIXTURES / "carscom_listing.html").read_text(encoding="utf-8"),
        }

    def load(self, url: str) -> PageData:
        if url not in self.pages:
            raise PageLoadError(f"Timed out loading {url}", url=url)
        return PageData(url=url, html=self.pages[url])


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        config = SyncConfig(log_dir=Path(self._tmp.name))
        config.rate_limit.per_url_delay = 0.0
        self.runtime = build_runtime(config, loader=FixtureLoader())
        self.client = TestClient(create_app(self.runtime))

    def tearDown(self) -> None:
        self.client.close()
        self.runtime.close()
        self._tmp.cleanup()


class ScrapeBulkEndpointTestCase(ApiTestCase):
    def test_batch_reports_each_url(self) -> None:
        response = self.client.post(
            "/scrape-bulk",
            json={"urls": [BROWNBOYS_URL, SLOW_URL, CARSCOM_URL]},
            headers=ALICE,
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual((body["total"], body["success"], body["failed"]), (3, 2, 1))
        self.assertEqual([item["status"] for item in body["items"]], ["success", "failed", "success"])
        self.assertEqual(body["items"][0]["title"], "2021 Land Rover Range Rover")
        self.assertEqual(body["items"][1]["errorType"], "PageLoadError")
        stored = self.runtime.vehicles.find_by_vin("org-1", "SALWS2RU3MA767985")
        self.assertEqual(stored.assigned_user, "alice")

    def test_repeat_batch_reports_duplicates(self) -> None:
        self.client.post("/scrape-bulk", json={"urls": [BROWNBOYS_URL]}, headers=ALICE)

        body = self.client.post("/scrape-bulk", json={"urls": [BROWNBOYS_URL]}, headers=ALICE).json()

        self.assertEqual(body["failed"], 1)
        self.assertEqual(body["items"][0]["errorType"], "DuplicateVehicle")
        self.assertEqual(self.runtime.vehicles.count("org-1"), 1)

    def test_urls_must_be_an_array(self) -> None:
        for payload in ({"urls": BROWNBOYS_URL}, {}, ["not", "an", "object"]):
            response = self.client.post("/scrape-bulk", json=payload, headers=ALICE)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json(), {"error": "urls must be an array"})

    def test_empty_array_is_ok(self) -> None:
        response = self.client.post("/scrape-bulk", json={"urls": []}, headers=ALICE)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total"], 0)


class JobsEndpointTestCase(ApiTestCase):
    def _create(self, headers: dict, **payload) -> dict:
        payload.setdefault("url", BROWNBOYS_URL)
        response = self.client.post("/jobs", json=payload, headers=headers)
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_create_job_schedules_it(self) -> None:
        job = self._create(ALICE)

        self.assertEqual(job["status"], "scheduled")
        self.assertEqual(job["assignedUser"], "alice")
        self.assertEqual(job["organization"], "org-1")

    def test_list_jobs_scopes_members_to_their_own(self) -> None:
        self._create(ALICE)
        self._create(ADMIN, assignedUserId="bob")

        self.assertEqual(self.client.get("/jobs", headers=ADMIN).json()["total"], 2)
        mine = self.client.get("/jobs", headers=ALICE).json()
        self.assertEqual([job["assignedUser"] for job in mine["items"]], ["alice"])
        self.assertEqual(self.client.get("/jobs?assignedTo=bob", headers=ADMIN).json()["total"], 1)
        self.assertEqual(self.client.get("/jobs?status=stuck", headers=ADMIN).json()["total"], 0)

    def test_list_jobs_rejects_unknown_status(self) -> None:
        self.assertEqual(self.client.get("/jobs?status=paused", headers=ADMIN).status_code, 400)

    def test_reassignment_is_admin_only(self) -> None:
        job = self._create(ALICE)

        denied = self.client.patch(f"/jobs/{job['id']}", json={"assignedTo": "bob"}, headers=ALICE)
        allowed = self.client.patch(f"/jobs/{job['id']}", json={"assignedTo": "bob"}, headers=ADMIN)

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(allowed.status_code, 200)
        self.assertEqual(allowed.json()["assignedUser"], "bob")

    def test_illegal_status_change_conflicts(self) -> None:
        job = self._create(ALICE)

        response = self.client.patch(f"/jobs/{job['id']}", json={"status": "succeeded"}, headers=ALICE)

        self.assertEqual(response.status_code, 409)

    def test_unknown_job_is_404(self) -> None:
        response = self.client.patch(
            "/jobs/0190a5f2-1c2d-7000-8000-000000000001", json={"scraped": True}, headers=ADMIN
        )

        self.assertEqual(response.status_code, 404)

    def test_other_organizations_jobs_are_hidden(self) -> None:
        job = self._create(ALICE)
        outsider = {"X-Organization-Id": "org-2", "X-User-Role": "admin"}

        self.assertEqual(self.client.post(f"/jobs/{job['id']}/requeue", headers=outsider).status_code, 404)

    def test_requeue_stuck_job(self) -> None:
        job = self._create(ALICE, scheduledTime="2020-01-01T00:00:00Z")
        self.runtime.scheduler.sweep_stuck()

        response = self.client.post(f"/jobs/{job['id']}/requeue", headers=ADMIN)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "scheduled")

    def test_requeue_scheduled_job_conflicts(self) -> None:
        job = self._create(ALICE)

        self.assertEqual(self.client.post(f"/jobs/{job['id']}/requeue", headers=ADMIN).status_code, 409)


if __name__ == "__main__":
    unittest.main()
