from io import StringIO
from unittest.mock import patch

from celery import current_app
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from .models import InstallmentPayment
from .tasks import sweep_overdue_plans
from .test_data_seeder import TestDataSeeder


# Use eager task execution for testing
@override_settings(CELERY_TASK_ALWAYS_EAGER=True)
class SweepOverduePlansTaskTest(TestCase):
    """Celery overdue sweep task"""

    def setUp(self):
        current_app.conf.task_always_eager = True
        current_app.conf.task_eager_propagates = True
        current_app.conf.task_store_eager_result = False

        self.seeder = TestDataSeeder()
        self.scenario = self.seeder.create_test_scenario('overdue_sweep')

    def tearDown(self):
        current_app.conf.task_always_eager = False
        self.seeder.cleanup_all()

    def test_task_marks_overdue_installments(self):
        result = sweep_overdue_plans.delay('2024-04-01').get()

        self.assertEqual(result['installments_marked'], 2)
        self.assertEqual(result['plans_updated'], 1)
        self.assertEqual(result['failed_plan_ids'], [])
        self.assertEqual(
            InstallmentPayment.objects.filter(
                plan_id=self.scenario['late_plan'].pk,
                status=InstallmentPayment.OVERDUE,
            ).count(),
            2
        )

    def test_task_defaults_to_today(self):
        # Every seeded due date lies in 2024, so everything pending on active plans is late today
        result = sweep_overdue_plans.delay().get()

        self.assertEqual(result['plans_checked'], 2)
        self.assertEqual(result['installments_marked'], 8)

    def test_task_result_is_json_friendly(self):
        result = sweep_overdue_plans.delay('2024-04-01').get()
        self.assertEqual(result['as_of'], '2024-04-01')
        self.assertIsInstance(result['failed_plan_ids'], list)


class SweepOverduePlansCommandTest(TestCase):
    """Management command wrapper around the overdue sweep"""

    def setUp(self):
        self.seeder = TestDataSeeder()
        self.scenario = self.seeder.create_test_scenario('overdue_sweep')

    def tearDown(self):
        self.seeder.cleanup_all()

    def overdue_count(self):
        return InstallmentPayment.objects.filter(status=InstallmentPayment.OVERDUE).count()

    def test_command_marks_overdue(self):
        out = StringIO()
        call_command('sweep_overdue_plans', '--as-of', '2024-04-01', stdout=out)

        self.assertEqual(self.overdue_count(), 2)
        self.assertIn('Installments marked overdue: 2', out.getvalue())
        self.assertIn('Successfully marked 2 installments as overdue', out.getvalue())

    def test_dry_run(self):
        out = StringIO()
        call_command('sweep_overdue_plans', '--as-of', '2024-04-01', '--dry-run', stdout=out)

        self.assertEqual(self.overdue_count(), 0)
        self.assertIn('DRY RUN', out.getvalue())

    def test_verbose_lists_plans(self):
        out = StringIO()
        call_command('sweep_overdue_plans', '--as-of', '2024-04-01', '--verbose', stdout=out)

        self.assertIn(f"Plan {self.scenario['late_plan'].pk}", out.getvalue())

    def test_nothing_to_sweep(self):
        out = StringIO()
        call_command('sweep_overdue_plans', '--as-of', '2024-02-01', stdout=out)

        self.assertEqual(self.overdue_count(), 0)
        self.assertIn('No overdue installments found.', out.getvalue())

    def test_failed_plans_raise_command_error(self):
        result = {
            'as_of': '2024-04-01',
            'plans_checked': 1,
            'plans_updated': 0,
            'installments_marked': 0,
            'failed_plan_ids': [self.scenario['late_plan'].pk],
        }
        with patch('apps.installments.services.PlanLifecycleService.sweep_overdue', return_value=result):
            with self.assertRaises(CommandError):
                call_command('sweep_overdue_plans', '--as-of', '2024-04-01', stdout=StringIO())
