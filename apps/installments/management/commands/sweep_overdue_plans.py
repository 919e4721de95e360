from datetime import date
import logging

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from apps.installments.services import PlanLifecycleService

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Mark past-due pending installments as overdue on all active plans'

    def add_arguments(self, parser):
        parser.add_argument(
            '--as-of',
            type=date.fromisoformat,
            help='Sweep as of this date, YYYY-MM-DD (default: today)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be updated without saving any changes',
        )
        parser.add_argument(
            '--verbose',
            action='store_true',
            help='List the plans that were checked',
        )

    def handle(self, *args, **options):
        as_of = options['as_of'] or timezone.localdate()
        service = PlanLifecycleService()

        self.stdout.write(
            self.style.SUCCESS(f"Starting overdue sweep as of {as_of} at {timezone.now()}")
        )

        if options['verbose']:
            plans = service.repository.find_active_with_overdue_payments(as_of)
            for plan in plans:
                self.stdout.write(
                    f"  - Plan {plan.pk} ({plan.customer_id}): next due {plan.next_due_date}, "
                    f"remaining {plan.remaining_balance}"
                )

        try:
            result = service.sweep_overdue(as_of, dry_run=options['dry_run'])
        except Exception as e:
            logger.error(f"Error in sweep_overdue_plans command: {e}")
            raise CommandError(f"Command failed: {str(e)}")

        self.display_report(result, options['dry_run'])

        if result['failed_plan_ids']:
            raise CommandError(f"Sweep failed for plans: {result['failed_plan_ids']}")

    def display_report(self, result, dry_run=False):
        self.stdout.write("\n" + "=" * 50)
        self.stdout.write("OVERDUE SWEEP REPORT" + (" (DRY RUN)" if dry_run else ""))
        self.stdout.write("=" * 50)
        self.stdout.write(f"As of: {result['as_of']}")
        self.stdout.write(f"Plans checked: {result['plans_checked']}")
        self.stdout.write(f"Plans updated: {result['plans_updated']}")
        self.stdout.write(f"Installments marked overdue: {result['installments_marked']}")
        if result['failed_plan_ids']:
            self.stdout.write(self.style.ERROR(f"Failed plans: {result['failed_plan_ids']}"))
        self.stdout.write("=" * 50 + "\n")

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN: no changes were saved"))
        elif result['installments_marked']:
            self.stdout.write(
                self.style.SUCCESS(f"Successfully marked {result['installments_marked']} installments as overdue")
            )
        else:
            self.stdout.write(self.style.SUCCESS("No overdue installments found."))
