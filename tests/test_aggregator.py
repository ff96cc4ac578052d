import unittest
from datetime import timedelta

from projectorhub.errors import NotFoundError, UnauthorizedError, ValidationError
from projectorhub.schemas.services import EquipmentStatus, VisitStatus
from projectorhub.services import aggregator
from projectorhub.services.reconciler import sweep

from support import NOW, StoreTestMixin


class AggregatorTestBase(StoreTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.regal = self.add_site()
        self.star = self.add_site("Star Multiplex", "44 Park Street", "033-8765")
        self.p1 = self.add_projector(self.regal, serial="CP-001", model="Christie CP2220")
        self.p2 = self.add_projector(self.regal, serial="CP-002", model="Barco DP2K")
        self.p3 = self.add_projector(self.star, serial="NEC-01", model="NEC NC2000")
        self.ravi = self.add_worker("Ravi Kumar", "ravi@example.com")
        self.anita = self.add_worker("Anita Shah", "anita@example.com")


class TestWorkerStatistics(AggregatorTestBase):
    def setUp(self):
        super().setUp()
        self.add_visit(self.p1, 1, NOW - timedelta(days=60), self.ravi, report_generated=True)
        self.add_visit(self.p1, 2, NOW - timedelta(days=1), self.ravi, start_time=NOW - timedelta(hours=20))
        self.add_visit(self.p3, 1, NOW + timedelta(days=2), self.ravi)
        self.add_visit(self.p2, 1, NOW - timedelta(days=3), self.anita, end_time=NOW - timedelta(days=3))

    def test_counts_partition_total(self):
        stats = aggregator.worker_statistics(self.db, self.ravi.id)
        self.assertEqual(stats.total_services, 3)
        self.assertEqual(stats.completed, 1)
        self.assertEqual(stats.in_progress, 1)
        self.assertEqual(stats.pending, 1)
        self.assertEqual(stats.completed + stats.pending + stats.in_progress, stats.total_services)
        self.assertEqual(stats.sites_worked, 2)
        self.assertEqual(stats.projectors_worked, 2)
        self.assertEqual(stats.last_completed_at, NOW - timedelta(days=60))

    def test_partition_holds_for_every_worker(self):
        listing = aggregator.list_field_workers(self.db)
        self.assertEqual(listing.count, 2)
        for summary in listing.workers:
            s = summary.statistics
            self.assertEqual(s.completed + s.pending + s.in_progress, s.total_services)

    def test_unknown_or_admin_worker(self):
        with self.assertRaises(NotFoundError):
            aggregator.worker_statistics(self.db, self.admin.id)

    def test_work_history_newest_first(self):
        history = aggregator.work_history(self.db, self.ravi.id)
        dates = [item.date for item in history.work_history]
        self.assertEqual(dates, sorted(dates, reverse=True))
        self.assertEqual(history.work_history[0].status, VisitStatus.scheduled)
        self.assertEqual({s.name for s in history.sites_worked}, {"Regal Cinema", "Star Multiplex"})
        self.assertEqual(history.worker.statistics.total_services, 3)

    def test_worker_worklist_excludes_completed(self):
        listing = aggregator.worker_worklist(self.db, self.actor_for(self.ravi))
        self.assertEqual(listing.count, 2)
        self.assertEqual([s.service_label for s in listing.services], ["Second", "First"])
        with self.assertRaises(UnauthorizedError):
            aggregator.worker_worklist(self.db, self.admin_actor)


class TestSiteViews(AggregatorTestBase):
    def test_site_statistics_counts_completed_visits(self):
        self.add_visit(self.p1, 1, NOW - timedelta(days=60), self.ravi, report_generated=True)
        self.add_visit(self.p2, 1, NOW - timedelta(days=30), self.ravi, end_time=NOW - timedelta(days=30))
        self.add_visit(self.p2, 2, NOW + timedelta(days=1), self.ravi)
        self.assertEqual(aggregator.site_statistics(self.db, self.regal.id).total_completed_services, 2)
        self.assertEqual(aggregator.site_statistics(self.db, self.star.id).total_completed_services, 0)

    def test_sites_overview_derives_live_status(self):
        self.add_visit(self.p1, 1, NOW - timedelta(days=200), self.ravi, report_generated=True)
        self.add_visit(self.p2, 1, NOW - timedelta(days=30), self.ravi, report_generated=True)
        response = aggregator.sites_overview(self.db, NOW)
        self.assertEqual([s.name for s in response.sites], ["Regal Cinema", "Star Multiplex"])
        regal = {p.serial_number: p for p in response.sites[0].projectors}
        self.assertEqual(regal["CP-001"].status, EquipmentStatus.pending)
        self.assertEqual(regal["CP-002"].status, EquipmentStatus.completed)
        self.assertEqual(regal["CP-002"].next_service_due, NOW - timedelta(days=30) + timedelta(days=180))
        self.assertEqual(response.sites[0].total_completed_services, 2)


class TestEngineerActivity(AggregatorTestBase):
    def setUp(self):
        super().setUp()
        # NOW is 15:30 in Asia/Kolkata
        self.add_visit(self.p1, 1, NOW - timedelta(hours=1), self.ravi, report_generated=True)
        self.add_visit(self.p2, 1, NOW - timedelta(hours=2), self.ravi)
        self.add_visit(self.p3, 1, NOW - timedelta(days=3), self.anita)

    def test_today(self):
        response = aggregator.engineer_activity(self.db, "today", NOW)
        self.assertEqual(response.totals.engineers, 2)
        self.assertEqual(len(response.engineers), 1)
        ravi = response.engineers[0]
        self.assertEqual((ravi.completed, ravi.in_progress, ravi.pending, ravi.total), (1, 1, 0, 2))

    def test_seven_days_orders_by_total(self):
        response = aggregator.engineer_activity(self.db, "7days", NOW)
        self.assertEqual([e.name for e in response.engineers], ["Ravi Kumar", "Anita Shah"])
        anita = response.engineers[1]
        self.assertEqual(anita.pending, 1)
        self.assertEqual(response.totals.total_assigned, 3)
        self.assertEqual(response.totals.total_pending, 1)

    def test_custom_day(self):
        response = aggregator.engineer_activity(self.db, "custom", NOW, custom_day="2026-03-12")
        self.assertEqual([e.name for e in response.engineers], ["Anita Shah"])

    def test_unknown_filter(self):
        with self.assertRaises(ValidationError):
            aggregator.engineer_activity(self.db, "yesterday", NOW)
        with self.assertRaises(ValidationError):
            aggregator.engineer_activity(self.db, "custom", NOW, custom_day="12/03/2026")


class TestScheduledWorklist(AggregatorTestBase):
    def setUp(self):
        super().setUp()
        self.add_visit(self.p1, 1, NOW + timedelta(days=5), self.ravi)
        self.add_visit(self.p1, 2, NOW + timedelta(days=9), self.anita)
        self.add_visit(self.p3, 1, NOW + timedelta(days=2), self.anita)
        self.add_visit(self.p2, 1, NOW - timedelta(days=2), self.ravi, report_generated=True)
        sweep(self.Session, self.clock)

    def test_lists_earliest_open_visit_per_scheduled_projector(self):
        services = aggregator.scheduled_worklist(self.db).services
        self.assertEqual([s.projector_serial for s in services], ["NEC-01", "CP-001"])
        self.assertEqual(services[1].assigned_to_name, "Ravi Kumar")
        self.assertEqual(services[1].service_label, "First")

    def test_search_is_case_insensitive(self):
        services = aggregator.scheduled_worklist(self.db, "park STREET").services
        self.assertEqual([s.projector_serial for s in services], ["NEC-01"])
        services = aggregator.scheduled_worklist(self.db, "ravi").services
        self.assertEqual([s.projector_serial for s in services], ["CP-001"])
        self.assertEqual(aggregator.scheduled_worklist(self.db, "nothing").services, [])


class TestOverview(AggregatorTestBase):
    def test_counts(self):
        self.add_visit(self.p1, 1, NOW - timedelta(days=10), self.ravi, report_generated=True)
        self.add_visit(self.p2, 1, NOW + timedelta(days=1), self.anita)
        response = aggregator.overview(self.db, NOW)
        stats = response.stats
        self.assertEqual(stats.total_sites, 2)
        self.assertEqual(stats.total_projectors, 3)
        self.assertEqual(stats.field_workers, 2)
        self.assertEqual(
            (stats.completed_projectors, stats.scheduled_projectors, stats.pending_projectors),
            (1, 1, 1),
        )
        # Ravi last worked 10 days ago
        self.assertEqual(stats.active_workers, 1)
        self.assertEqual([p.name for p in response.pending_projectors], ["NEC NC2000 (NEC-01)"])
        self.assertEqual(len(response.recent_tasks), 1)
        self.assertEqual(response.recent_tasks[0].worker_name, "Anita Shah")


if __name__ == "__main__":
    unittest.main()
