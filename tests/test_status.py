import unittest
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytz

from projectorhub.errors import ValidationError
from projectorhub.schemas.services import ActivityBucket, EquipmentStatus, VisitStatus
from projectorhub.services.status import (
    activity_bucket,
    derive_visit_status,
    equipment_maintenance_status,
    equipment_status,
    last_served_at,
    maintenance_interval,
    next_service_due,
    service_number_label,
    visit_status,
)

NOW = datetime(2026, 3, 15, 10, 0, tzinfo=pytz.UTC)
WORKER = "worker-1"


def visit(date=NOW, worker=WORKER, start=None, end=None, report=False):
    return SimpleNamespace(
        date=date,
        created_at=date,
        assigned_to_id=worker,
        start_time=start,
        end_time=end,
        report_generated=report,
    )


class TestVisitStatus(unittest.TestCase):
    def test_unassigned_untouched_visit_is_pending(self):
        self.assertEqual(derive_visit_status(None, None, False, False), VisitStatus.pending)

    def test_assigned_visit_is_scheduled(self):
        self.assertEqual(derive_visit_status(None, None, False, True), VisitStatus.scheduled)

    def test_started_visit_is_in_progress(self):
        self.assertEqual(derive_visit_status(NOW, None, False, True), VisitStatus.in_progress)
        # Unassigning does not undo a start
        self.assertEqual(derive_visit_status(NOW, None, False, False), VisitStatus.in_progress)

    def test_end_time_or_report_completes(self):
        self.assertEqual(derive_visit_status(NOW, NOW, False, True), VisitStatus.completed)
        self.assertEqual(derive_visit_status(None, None, True, False), VisitStatus.completed)
        self.assertEqual(derive_visit_status(None, NOW, False, False), VisitStatus.completed)

    def test_visit_status_reads_record_fields(self):
        self.assertEqual(visit_status(visit()), VisitStatus.scheduled)
        self.assertEqual(visit_status(visit(worker=None)), VisitStatus.pending)
        self.assertEqual(visit_status(visit(report=True)), VisitStatus.completed)


class TestEquipmentStatus(unittest.TestCase):
    def test_never_served_is_pending(self):
        self.assertEqual(equipment_maintenance_status(None, NOW), EquipmentStatus.pending)

    def test_within_interval_is_completed(self):
        served = NOW - timedelta(days=30)
        self.assertEqual(equipment_maintenance_status(served, NOW), EquipmentStatus.completed)

    def test_interval_boundary_is_pending(self):
        served = NOW - timedelta(days=180)
        self.assertEqual(
            equipment_maintenance_status(served, NOW, timedelta(days=180)),
            EquipmentStatus.pending,
        )

    def test_naive_served_at_is_treated_as_utc(self):
        served = (NOW - timedelta(days=10)).replace(tzinfo=None)
        self.assertEqual(equipment_maintenance_status(served, NOW), EquipmentStatus.completed)

    def test_negative_interval_rejected(self):
        with self.assertRaises(ValidationError):
            equipment_maintenance_status(NOW, NOW, timedelta(days=-1))
        with self.assertRaises(ValidationError):
            maintenance_interval(-5)

    def test_non_datetime_input_rejected(self):
        with self.assertRaises(ValidationError):
            equipment_maintenance_status("2026-01-01", NOW)
        with self.assertRaises(ValidationError):
            equipment_maintenance_status(None, "now")

    def test_last_served_ignores_open_visits(self):
        history = [
            visit(date=NOW - timedelta(days=90), report=True),
            visit(date=NOW - timedelta(days=20), end=NOW - timedelta(days=20)),
            visit(date=NOW - timedelta(days=2)),
        ]
        self.assertEqual(last_served_at(history), NOW - timedelta(days=20))
        self.assertIsNone(last_served_at([visit()]))

    def test_open_visit_overrides_overdue(self):
        history = [
            visit(date=NOW - timedelta(days=200), report=True),
            visit(date=NOW + timedelta(days=1)),
        ]
        self.assertEqual(equipment_status(history, NOW), EquipmentStatus.scheduled)
        self.assertEqual(equipment_status(history[:1], NOW), EquipmentStatus.pending)

    def test_unassigned_open_visit_holds_scheduled(self):
        history = [visit(date=NOW - timedelta(days=10), report=True), visit(worker=None)]
        self.assertEqual(equipment_status(history, NOW), EquipmentStatus.scheduled)
        history[1].report_generated = True
        self.assertEqual(equipment_status(history, NOW), EquipmentStatus.completed)

    def test_next_service_due(self):
        served = NOW - timedelta(days=10)
        self.assertEqual(next_service_due(served, timedelta(days=180)), served + timedelta(days=180))
        self.assertIsNone(next_service_due(None))


class TestActivityBucket(unittest.TestCase):
    def test_recent_open_visit_is_in_progress(self):
        self.assertEqual(activity_bucket(visit(date=NOW - timedelta(hours=2)), NOW), ActivityBucket.in_progress)

    def test_stale_open_visit_is_pending(self):
        self.assertEqual(activity_bucket(visit(date=NOW - timedelta(hours=25)), NOW), ActivityBucket.pending)

    def test_started_but_stale_visit_is_still_pending(self):
        stale = visit(date=NOW - timedelta(days=3), start=NOW - timedelta(days=3))
        self.assertEqual(activity_bucket(stale, NOW), ActivityBucket.pending)

    def test_completed_visit(self):
        done = visit(date=NOW - timedelta(days=3), report=True)
        self.assertEqual(activity_bucket(done, NOW), ActivityBucket.completed)


class TestServiceNumberLabel(unittest.TestCase):
    def test_labels(self):
        self.assertEqual(service_number_label(1), "First")
        self.assertEqual(service_number_label(12), "Twelfth")
        self.assertEqual(service_number_label(20), "Twentieth")
        self.assertEqual(service_number_label(21), "Twenty-First")
        self.assertEqual(service_number_label(99), "Ninety-Ninth")
        self.assertEqual(service_number_label(100), "One Hundredth")
        self.assertEqual(service_number_label(101), "101th")


if __name__ == "__main__":
    unittest.main()
