import threading
import unittest
from datetime import timedelta
from unittest import mock

from sqlalchemy.exc import OperationalError, ProgrammingError

from projectorhub.models.models import Projector
from projectorhub.services import reconciler
from projectorhub.services.clock import FixedClock, as_utc

from support import NOW, StoreTestMixin, make_session_factory


class TestSweep(StoreTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.site = self.add_site()
        self.worker = self.add_worker("Ravi Kumar", "ravi@example.com")

    def reload(self, projector):
        self.db.expire_all()
        return self.db.get(Projector, projector.id)

    def run_sweep(self, **kwargs):
        return reconciler.sweep(self.Session, self.clock, **kwargs)

    def test_last_service_is_latest_completed_visit(self):
        projector = self.add_projector(self.site)
        self.add_visit(projector, 1, NOW - timedelta(days=100), self.worker, report_generated=True)
        self.add_visit(projector, 2, NOW - timedelta(days=40), self.worker, end_time=NOW - timedelta(days=40))
        self.add_visit(projector, 3, NOW - timedelta(days=5), self.worker, start_time=NOW - timedelta(days=5))

        result = self.run_sweep()

        projector = self.reload(projector)
        self.assertEqual(as_utc(projector.last_service_at), NOW - timedelta(days=40))
        # the started visit keeps it in the pipeline
        self.assertEqual(projector.status, "scheduled")
        self.assertEqual(result.processed, 1)
        self.assertEqual(result.updated, 1)

    def test_never_serviced_projector_stays_pending(self):
        projector = self.add_projector(self.site)
        result = self.run_sweep()
        projector = self.reload(projector)
        self.assertIsNone(projector.last_service_at)
        self.assertEqual(projector.status, "pending")
        self.assertEqual(result.unchanged, 1)

    def test_overdue_projector_goes_pending_until_scheduled(self):
        projector = self.add_projector(self.site, status="completed")
        self.add_visit(projector, 1, NOW - timedelta(days=200), self.worker, report_generated=True)
        self.run_sweep()
        self.assertEqual(self.reload(projector).status, "pending")

        self.add_visit(projector, 2, NOW + timedelta(days=3), self.worker)
        self.run_sweep()
        self.assertEqual(self.reload(projector).status, "scheduled")

    def test_second_sweep_changes_nothing(self):
        for i in range(3):
            projector = self.add_projector(self.site, serial=f"CP-{i}")
            self.add_visit(projector, 1, NOW - timedelta(days=10 + i), self.worker, report_generated=True)
        first = self.run_sweep()
        second = self.run_sweep()
        self.assertEqual(first.updated, 3)
        self.assertEqual(second.updated, 0)
        self.assertEqual(second.unchanged, 3)
        self.assertEqual(second.status_counts, {"completed": 3})

    def test_dry_run_writes_nothing(self):
        projector = self.add_projector(self.site)
        self.add_visit(projector, 1, NOW - timedelta(days=10), self.worker, report_generated=True)
        result = self.run_sweep(dry_run=True)
        self.assertEqual(result.updated, 1)
        projector = self.reload(projector)
        self.assertEqual(projector.status, "pending")
        self.assertIsNone(projector.last_service_at)

    def test_resume_after_skips_processed_ids(self):
        projectors = [self.add_projector(self.site, serial=f"CP-{i}") for i in range(4)]
        ordered = sorted(p.id for p in projectors)
        result = self.run_sweep(resume_after=ordered[1])
        self.assertEqual(result.processed, 2)
        self.assertEqual(result.last_processed_id, ordered[-1])

    def test_failing_projector_does_not_stop_sweep(self):
        projectors = [self.add_projector(self.site, serial=f"CP-{i}") for i in range(3)]
        for p in projectors:
            self.add_visit(p, 1, NOW - timedelta(days=1), self.worker, report_generated=True)
        broken = projectors[1].id
        real = reconciler.refresh_projector

        def flaky(db, projector, *args, **kwargs):
            if projector.id == broken:
                raise OperationalError("SELECT 1", {}, Exception("connection reset"))
            return real(db, projector, *args, **kwargs)

        with mock.patch.object(reconciler, "refresh_projector", side_effect=flaky):
            result = self.run_sweep()

        self.assertEqual(result.failed, [broken])
        self.assertEqual(result.processed, 2)
        self.assertEqual(self.reload(projectors[1]).status, "pending")
        self.assertEqual(self.reload(projectors[0]).status, "completed")

        retry = self.run_sweep()
        self.assertEqual(retry.failed, [])
        self.assertEqual(retry.updated, 1)

    def test_to_dict_is_serialisable(self):
        self.add_projector(self.site)
        body = self.run_sweep().to_dict()
        self.assertEqual(body["processed"], 1)
        self.assertEqual(body["failed"], [])
        self.assertFalse(body["dry_run"])


class TestBackgroundSweeper(unittest.TestCase):
    def test_failed_pass_does_not_stop_the_thread(self):
        calls = []
        second_pass = threading.Event()

        def fail_then_empty(session_factory, resume_after):
            calls.append(resume_after)
            if len(calls) == 1:
                raise ProgrammingError("SELECT projectors.id FROM projectors", {}, Exception("no such column"))
            second_pass.set()
            return []

        sweeper = reconciler.BackgroundSweeper(1, make_session_factory(), FixedClock(NOW))
        sweeper.interval_seconds = 0.01
        with mock.patch.object(reconciler, "_projector_ids", side_effect=fail_then_empty):
            sweeper.start()
            try:
                self.assertTrue(second_pass.wait(5))
                self.assertTrue(sweeper.is_alive())
            finally:
                sweeper.stop()
                sweeper.join(5)
        self.assertGreaterEqual(len(calls), 2)
        self.assertFalse(sweeper.is_alive())

    def test_stop_ends_the_loop(self):
        sweeper = reconciler.BackgroundSweeper(1, make_session_factory(), FixedClock(NOW))
        with mock.patch.object(reconciler, "sweep") as run_sweep:
            sweeper.start()
            sweeper.stop()
            sweeper.join(5)
        self.assertFalse(sweeper.is_alive())
        run_sweep.assert_not_called()


if __name__ == "__main__":
    unittest.main()
