import unittest
from datetime import datetime, timedelta, timezone

from dealersync.dedupe import AdmitDecision, DedupGate
from dealersync.jobs import JobScheduler, JobStatus
from dealersync.persistence import SqlJobStore, SqlVehicleStore
from dealersync.records import VehicleRecord
from dealersync.runtime import build_session_factory
from dealersync.store import DuplicateKeyError

ORG = "org-1"
VIN = "SALWS2RU3MA767985"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def _record(url: str, vin: str | None = VIN) -> VehicleRecord:
    return VehicleRecord(
        source_url=url,
        vin=vin,
        year="2021",
        make="Land Rover",
        model="Range Rover",
        mileage=45000,
        price=89995,
        features=["Heated Seats"],
        images=["https://cdn.example.com/1.jpg", "https://cdn.example.com/2.jpg"],
        site="brownboys",
        warnings=["Listing moved"],
    )


class SqlVehicleStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SqlVehicleStore(build_session_factory("sqlite://"))

    def test_create_and_find_round_trip(self) -> None:
        created = self.store.create(ORG, _record("https://dealer.example.com/a"), "user-1")

        by_vin = self.store.find_by_vin(ORG, VIN)
        by_url = self.store.find_by_url(ORG, "https://dealer.example.com/a")

        self.assertEqual(by_vin.id, created.id)
        self.assertEqual(by_url.id, created.id)
        self.assertEqual(by_vin.assigned_user, "user-1")
        self.assertEqual(by_vin.record.images, ["https://cdn.example.com/1.jpg", "https://cdn.example.com/2.jpg"])
        self.assertEqual(by_vin.record.site, "brownboys")
        self.assertEqual(by_vin.record.warnings, ["Listing moved"])
        self.assertEqual(by_vin.record.scraped_at.tzinfo, timezone.utc)
        self.assertIsNone(self.store.find_by_vin("org-2", VIN))

    def test_unique_vin_per_organization(self) -> None:
        self.store.create(ORG, _record("https://dealer.example.com/a"))

        with self.assertRaises(DuplicateKeyError):
            self.store.create(ORG, _record("https://dealer.example.com/b"))
        self.store.create("org-2", _record("https://dealer.example.com/b"))

        self.assertEqual(self.store.count(ORG), 1)
        self.assertEqual(self.store.count("org-2"), 1)

    def test_vehicles_without_vin_do_not_collide(self) -> None:
        self.store.create(ORG, _record("https://dealer.example.com/a", vin=None))
        self.store.create(ORG, _record("https://dealer.example.com/b", vin=None))

        self.assertEqual(self.store.count(ORG), 2)

    def test_update_maps_record_fields(self) -> None:
        created = self.store.create(ORG, _record("https://dealer.example.com/a", vin=None))

        updated = self.store.update(created.id, {"price": 79995.0, "warnings": [], "images": ["https://cdn.example.com/3.jpg"]})

        self.assertEqual(updated.record.price, 79995.0)
        self.assertEqual(updated.record.warnings, [])
        self.assertEqual(updated.record.images, ["https://cdn.example.com/3.jpg"])

    def test_gate_over_sql_store(self) -> None:
        gate = DedupGate(self.store)

        first = gate.admit(_record("https://dealer.example.com/a"), ORG)
        second = gate.admit(_record("https://dealer.example.com/b"), ORG)

        self.assertEqual(first.decision, AdmitDecision.CREATED)
        self.assertEqual(second.decision, AdmitDecision.SKIPPED)
        self.assertEqual(second.vehicle_id, first.vehicle_id)


class SqlJobStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.store = SqlJobStore(build_session_factory("sqlite://"))
        self.scheduler = JobScheduler(self.store, clock=self.clock)

    def test_lifecycle_persists_result(self) -> None:
        job = self.scheduler.submit("https://dealer.example.com/a", ORG, "user-1")
        self.scheduler.claim(job.id)

        done = self.scheduler.complete(job.id, vehicle_id="0190a5f2-1c2d-7000-8000-000000000001", outcome="created")

        reloaded = self.store.get(job.id)
        self.assertEqual(done.status, JobStatus.SUCCEEDED)
        self.assertEqual(reloaded.status, JobStatus.SUCCEEDED)
        self.assertEqual(reloaded.attempts, 1)
        self.assertTrue(reloaded.scraped)
        self.assertEqual(reloaded.result.outcome, "created")
        self.assertEqual(reloaded.result.vehicle_id, "0190a5f2-1c2d-7000-8000-000000000001")
        self.assertEqual(reloaded.scheduled_time, self.clock.now)

    def test_compare_and_set_rejects_unexpected_status(self) -> None:
        job = self.scheduler.submit("https://dealer.example.com/a", ORG)

        self.assertIsNone(self.store.compare_and_set(job.id, {JobStatus.RUNNING}, {"status": JobStatus.SUCCEEDED}))
        self.assertEqual(self.store.get(job.id).status, JobStatus.SCHEDULED)

    def test_sweep_marks_overdue_jobs(self) -> None:
        overdue = self.scheduler.submit(
            "https://dealer.example.com/a", ORG, scheduled_time=self.clock.now - timedelta(minutes=3)
        )
        recent = self.scheduler.submit(
            "https://dealer.example.com/b", ORG, scheduled_time=self.clock.now - timedelta(minutes=1)
        )

        marked = self.scheduler.sweep_stuck()

        self.assertEqual([job.id for job in marked], [overdue.id])
        self.assertEqual(self.store.get(recent.id).status, JobStatus.SCHEDULED)
        self.assertEqual(self.scheduler.sweep_stuck(), [])

    def test_failed_result_round_trip(self) -> None:
        job = self.scheduler.submit("https://dealer.example.com/a", ORG)
        self.scheduler.claim(job.id)

        self.scheduler.fail(job.id, error="No slug", error_type="SlugUnresolved", needs_human=True)

        reloaded = self.store.get(job.id)
        self.assertEqual(reloaded.status, JobStatus.FAILED)
        self.assertTrue(reloaded.result.needs_human)
        self.assertEqual(reloaded.result.error_type, "SlugUnresolved")

    def test_list_filters(self) -> None:
        self.scheduler.submit("https://dealer.example.com/a", ORG, "alice")
        self.scheduler.enqueue("https://dealer.example.com/b", ORG, "bob")

        self.assertEqual(len(self.store.list(status=JobStatus.SCHEDULED)), 1)
        self.assertEqual(len(self.store.list(assigned_to="bob")), 1)
        self.assertEqual(len(self.store.list(organization="org-2")), 0)

    def test_unknown_id_returns_none(self) -> None:
        self.assertIsNone(self.store.get("not-a-uuid"))


if __name__ == "__main__":
    unittest.main()
