from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from .exceptions import (
    AlreadyPaidError,
    IndexOutOfRangeError,
    InstallmentValidationError,
    InvalidAmountError,
    InvalidPrincipalError,
    InvalidStateError,
    InvalidTermError,
    PlanNotActiveError,
)
from .models import InstallmentPayment, InstallmentPlan
from .repositories import DjangoPlanRepository
from .utils import add_months, calculate_installment_amount, calculate_total_payable, generate_schedule


class AmortizationCalculatorTest(SimpleTestCase):
    """Installment amounts and schedule generation"""

    def test_exact_division_schedule(self):
        schedule = generate_schedule(Decimal('1000.00'), Decimal('12'), 10, date(2024, 1, 15))

        self.assertEqual(len(schedule), 10)
        self.assertEqual(sum(line.amount_due for line in schedule), Decimal('1120.00'))
        for line in schedule:
            self.assertEqual(line.amount_due, Decimal('112.00'))
            self.assertEqual(line.principal_component, Decimal('100.00'))
            self.assertEqual(line.interest_component, Decimal('12.00'))

    def test_last_line_absorbs_rounding_remainder(self):
        schedule = generate_schedule(Decimal('1000.00'), Decimal('15'), 3, date(2024, 1, 15))

        self.assertEqual(
            [line.amount_due for line in schedule],
            [Decimal('383.33'), Decimal('383.33'), Decimal('383.34')]
        )
        self.assertEqual(sum(line.amount_due for line in schedule), Decimal('1150.00'))
        self.assertEqual(sum(line.principal_component for line in schedule), Decimal('1000.00'))

    def test_schedule_sums_to_rounded_total_payable(self):
        cases = [
            ('999.99', '7.5', 7),
            ('1234.56', '33.33', 11),
            ('100.00', '0', 3),
            ('0.10', '0', 1),
            ('5000.00', '99.99', 120),
        ]
        for principal, rate, months in cases:
            with self.subTest(principal=principal, rate=rate, months=months):
                schedule = generate_schedule(Decimal(principal), Decimal(rate), months, date(2024, 3, 1))
                self.assertEqual(len(schedule), months)
                self.assertEqual(
                    sum(line.amount_due for line in schedule),
                    calculate_total_payable(Decimal(principal), Decimal(rate))
                )

    def test_due_dates_advance_by_calendar_month(self):
        start = date(2024, 1, 15)
        schedule = generate_schedule(Decimal('600.00'), Decimal('0'), 6, start)

        self.assertEqual(
            [line.due_date for line in schedule],
            [add_months(start, k) for k in range(1, 7)]
        )
        self.assertEqual(schedule[0].due_date, date(2024, 2, 15))
        self.assertEqual([line.installment_number for line in schedule], [1, 2, 3, 4, 5, 6])

    def test_due_dates_clamp_to_month_end(self):
        schedule = generate_schedule(Decimal('300.00'), Decimal('0'), 3, date(2024, 1, 31))

        self.assertEqual(
            [line.due_date for line in schedule],
            [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]
        )

    def test_reamortized_schedule_starts_at_first_due_date(self):
        schedule = generate_schedule(
            Decimal('500.00'), Decimal('10'), 3, date(2024, 1, 15),
            first_due_date=date(2024, 7, 15), first_number=6
        )

        self.assertEqual([line.installment_number for line in schedule], [6, 7, 8])
        self.assertEqual(schedule[0].due_date, date(2024, 7, 15))
        self.assertEqual(schedule[-1].due_date, date(2024, 9, 15))

    def test_installment_amount_rounds_half_up(self):
        self.assertEqual(calculate_installment_amount(Decimal('1000'), Decimal('10'), 12), Decimal('91.67'))
        self.assertEqual(calculate_installment_amount(1000, 12, 10), Decimal('112.00'))

    def test_zero_months_rejected(self):
        with self.assertRaises(InvalidTermError):
            calculate_installment_amount(Decimal('1000'), Decimal('12'), 0)
        with self.assertRaises(InvalidTermError):
            generate_schedule(Decimal('1000'), Decimal('12'), 0, date(2024, 1, 1))

    def test_non_positive_principal_rejected(self):
        with self.assertRaises(InvalidPrincipalError):
            calculate_installment_amount(Decimal('0'), Decimal('12'), 10)
        with self.assertRaises(InvalidPrincipalError):
            generate_schedule(Decimal('-5'), Decimal('12'), 10, date(2024, 1, 1))

    def test_principal_too_small_for_term_rejected(self):
        with self.assertRaises(InvalidTermError):
            generate_schedule(Decimal('0.05'), Decimal('0'), 10, date(2024, 1, 1))


class InstallmentPlanCreateTest(SimpleTestCase):
    """Plan creation and validation"""

    def test_create_builds_active_plan_with_schedule(self):
        plan = InstallmentPlan.create(
            total_price=Decimal('1000.00'),
            down_payment=Decimal('200.00'),
            number_of_installments=4,
            interest_rate=Decimal('10'),
            start_date=date(2024, 1, 15),
            customer_id='cust-1',
        )

        self.assertEqual(plan.status, InstallmentPlan.ACTIVE)
        self.assertEqual(plan.total_paid, Decimal('0.00'))
        self.assertEqual(plan.total_amount_with_interest, Decimal('880.00'))
        self.assertEqual(plan.remaining_balance, plan.total_amount_with_interest)
        self.assertEqual(plan.installment_amount, Decimal('220.00'))
        self.assertEqual(len(plan.schedule), 4)
        self.assertEqual(plan.end_date, date(2024, 5, 15))
        self.assertEqual(plan.next_due_date, date(2024, 2, 15))
        self.assertTrue(all(line.status == InstallmentPayment.PENDING for line in plan.schedule))
        self.assertTrue(all(line.amount_paid == Decimal('0.00') for line in plan.schedule))

    def test_total_price_derived_from_products(self):
        plan = InstallmentPlan.create(
            products=[
                {'product_id': 'p1', 'name': 'Laptop', 'price': '900.00', 'quantity': 1},
                {'product_id': 'p2', 'name': 'Mouse', 'price': '25.50', 'quantity': 2},
            ],
            number_of_installments=6,
            start_date=date(2024, 1, 15),
        )

        self.assertEqual(plan.total_price, Decimal('951.00'))
        self.assertEqual([product.position for product in plan.product_lines], [1, 2])
        self.assertEqual(plan.product_lines[1].line_total, Decimal('51.00'))

    def test_total_price_must_match_products(self):
        with self.assertRaises(InstallmentValidationError):
            InstallmentPlan.create(
                products=[{'product_id': 'p1', 'price': '100.00', 'quantity': 2}],
                total_price=Decimal('150.00'),
                number_of_installments=3,
            )

    def test_down_payment_must_be_below_total_price(self):
        for down_payment in ('1000.00', '1200.00'):
            with self.subTest(down_payment=down_payment):
                with self.assertRaises(InvalidPrincipalError):
                    InstallmentPlan.create(
                        total_price=Decimal('1000.00'),
                        down_payment=Decimal(down_payment),
                        number_of_installments=3,
                    )

    def test_installment_count_limits(self):
        for months in (0, 121):
            with self.subTest(months=months):
                with self.assertRaises(InvalidTermError):
                    InstallmentPlan.create(total_price=Decimal('1000.00'), number_of_installments=months)

        plan = InstallmentPlan.create(total_price=Decimal('1200.00'), number_of_installments=120)
        self.assertEqual(len(plan.schedule), 120)

    def test_multi_product_plans_limited_to_sixty_installments(self):
        products = [
            {'product_id': 'p1', 'price': '500.00', 'quantity': 1},
            {'product_id': 'p2', 'price': '500.00', 'quantity': 1},
        ]
        with self.assertRaises(InvalidTermError):
            InstallmentPlan.create(products=products, number_of_installments=61)

        plan = InstallmentPlan.create(products=products, number_of_installments=60)
        self.assertEqual(plan.number_of_installments, 60)

    @override_settings(MAX_INSTALLMENTS_SINGLE_PRODUCT=24)
    def test_installment_limit_is_configurable(self):
        with self.assertRaises(InvalidTermError):
            InstallmentPlan.create(total_price=Decimal('1000.00'), number_of_installments=25)

    def test_interest_rate_range(self):
        with self.assertRaises(InstallmentValidationError):
            InstallmentPlan.create(
                total_price=Decimal('1000.00'),
                number_of_installments=3,
                interest_rate=Decimal('100.01'),
            )

    def test_non_numeric_quantity_rejected(self):
        with self.assertRaises(InstallmentValidationError):
            InstallmentPlan.create(
                products=[{'product_id': 'p1', 'price': '10.00', 'quantity': 'x'}],
                number_of_installments=3,
            )


class RecordPaymentTest(SimpleTestCase):
    """Payment recording against schedule lines"""

    def setUp(self):
        # 1000 at 10% over 12 months: 11 x 91.67 and a final 91.63
        self.plan = InstallmentPlan.create(
            total_price=Decimal('1000.00'),
            number_of_installments=12,
            interest_rate=Decimal('10'),
            start_date=date(2024, 1, 15),
        )

    def test_partial_payments_accumulate(self):
        line = self.plan.schedule[0]
        self.assertEqual(line.amount_due, Decimal('91.67'))

        self.plan.record_payment(0, Decimal('50'))
        self.assertEqual(line.amount_paid, Decimal('50.00'))
        self.assertEqual(line.status, InstallmentPayment.PENDING)
        self.assertIsNotNone(line.payment_date)

        self.plan.record_payment(0, Decimal('50'))
        self.assertEqual(line.status, InstallmentPayment.PAID)
        self.assertEqual(self.plan.total_paid, Decimal('100.00'))
        self.assertEqual(self.plan.remaining_balance, Decimal('1000.00'))

        # The 8.33 the first line did not need is credited to the next one
        self.assertEqual(line.amount_paid, Decimal('91.67'))
        self.assertEqual(self.plan.schedule[1].amount_paid, Decimal('8.33'))
        self.assertEqual(self.plan.schedule[1].status, InstallmentPayment.PENDING)
        self.assertEqual(self.plan.outstanding_balance, self.plan.remaining_balance)

    def test_overpayments_keep_totals_consistent(self):
        payments = 0
        while self.plan.status == InstallmentPlan.ACTIVE:
            index = next(
                position for position, line in enumerate(self.plan.schedule)
                if line.status != InstallmentPayment.PAID
            )
            self.plan.record_payment(index, min(Decimal('100'), self.plan.outstanding_balance))
            payments += 1
            self.assertEqual(
                self.plan.total_paid + self.plan.remaining_balance,
                self.plan.total_amount_with_interest
            )
            self.assertEqual(self.plan.outstanding_balance, self.plan.remaining_balance)

        self.assertEqual(payments, 11)
        self.assertEqual(self.plan.status, InstallmentPlan.COMPLETED)
        self.assertEqual(self.plan.total_paid, Decimal('1100.00'))
        self.assertEqual(
            sum((line.amount_paid for line in self.plan.schedule), Decimal('0')),
            Decimal('1100.00')
        )

    def test_payment_above_outstanding_balance_rejected(self):
        with self.assertRaises(InvalidAmountError):
            self.plan.record_payment(0, Decimal('1100.01'))
        self.assertEqual(self.plan.total_paid, Decimal('0.00'))

        self.plan.record_payment(0, Decimal('1100.00'))
        self.assertEqual(self.plan.status, InstallmentPlan.COMPLETED)
        self.assertEqual(self.plan.remaining_balance, Decimal('0.00'))

    def test_excess_on_last_unpaid_line_settles_earlier_lines(self):
        self.plan.record_payment(11, Decimal('100'))

        self.assertEqual(self.plan.schedule[11].status, InstallmentPayment.PAID)
        self.assertEqual(self.plan.schedule[0].amount_paid, Decimal('8.37'))
        self.assertEqual(self.plan.outstanding_balance, Decimal('1000.00'))

    def test_paid_line_rejects_further_payments(self):
        self.plan.record_payment(0, Decimal('91.67'))

        with self.assertRaises(AlreadyPaidError):
            self.plan.record_payment(0, Decimal('10'))
        self.assertEqual(self.plan.total_paid, Decimal('91.67'))
        self.assertEqual(self.plan.schedule[0].amount_paid, Decimal('91.67'))

    def test_index_out_of_range(self):
        for index in (-1, 12, 100):
            with self.subTest(index=index):
                with self.assertRaises(IndexOutOfRangeError):
                    self.plan.record_payment(index, Decimal('10'))

    def test_non_positive_amount_rejected(self):
        for amount in ('0', '-5'):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmountError):
                    self.plan.record_payment(1, Decimal(amount))
        self.assertEqual(self.plan.total_paid, Decimal('0.00'))

    def test_non_finite_amount_rejected(self):
        for amount in ('NaN', 'Infinity', '-Infinity', Decimal('NaN'), float('inf')):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmountError):
                    self.plan.record_payment(0, amount)
        self.assertEqual(self.plan.total_paid, Decimal('0.00'))

    def test_sub_cent_amount_rejected(self):
        with self.assertRaises(InvalidAmountError):
            self.plan.record_payment(0, Decimal('0.004'))

        line = self.plan.schedule[0]
        self.assertIsNone(line.payment_date)
        self.assertEqual(line.amount_paid, Decimal('0.00'))
        self.assertEqual(self.plan.total_paid, Decimal('0.00'))

    def test_payment_date_stored_timezone_aware(self):
        line = self.plan.record_payment(0, Decimal('91.67'), date(2024, 2, 10))

        self.assertTrue(timezone.is_aware(line.payment_date))
        self.assertEqual(line.payment_date.date(), date(2024, 2, 10))

    def test_already_paid_checked_before_amount(self):
        self.plan.record_payment(0, Decimal('91.67'))
        with self.assertRaises(AlreadyPaidError):
            self.plan.record_payment(0, Decimal('0'))

    def test_inactive_plan_rejects_payments(self):
        self.plan.cancel()
        with self.assertRaises(PlanNotActiveError):
            self.plan.record_payment(99, Decimal('10'))

    def test_overdue_line_can_be_paid(self):
        self.plan.mark_overdue(date(2024, 3, 1))
        self.assertEqual(self.plan.schedule[0].status, InstallmentPayment.OVERDUE)

        self.plan.record_payment(0, Decimal('91.67'))
        self.assertEqual(self.plan.schedule[0].status, InstallmentPayment.PAID)

    def test_paying_every_line_completes_plan(self):
        for index, line in enumerate(self.plan.schedule):
            self.plan.record_payment(index, line.amount_due)

        self.assertEqual(self.plan.status, InstallmentPlan.COMPLETED)
        self.assertTrue(self.plan.is_completed)
        self.assertEqual(self.plan.total_paid, Decimal('1100.00'))
        self.assertEqual(self.plan.remaining_balance, Decimal('0.00'))
        self.assertIsNone(self.plan.next_due_date)

    def test_totals_stay_consistent(self):
        self.plan.record_payment(0, Decimal('91.67'))
        self.plan.record_payment(1, Decimal('40'))
        self.plan.record_payment(2, Decimal('91.67'))

        self.assertEqual(
            self.plan.total_paid + self.plan.remaining_balance,
            self.plan.total_amount_with_interest
        )
        self.assertEqual(self.plan.paid_installments, 2)
        self.assertEqual(self.plan.pending_installments, 10)
        self.assertEqual(self.plan.next_due_date, date(2024, 3, 15))


class PlanStatusTest(SimpleTestCase):
    """Overdue marking and the plan status machine"""

    def setUp(self):
        self.plan = InstallmentPlan.create(
            total_price=Decimal('400.00'),
            number_of_installments=4,
            start_date=date(2024, 1, 15),
        )

    def test_mark_overdue_is_idempotent(self):
        self.assertEqual(self.plan.mark_overdue(date(2024, 4, 1)), 2)
        self.assertEqual(self.plan.mark_overdue(date(2024, 4, 1)), 0)
        self.assertEqual(self.plan.overdue_installments, 2)
        self.assertEqual(self.plan.pending_installments, 2)

    def test_mark_overdue_skips_paid_and_due_today(self):
        self.plan.record_payment(0, Decimal('100'))

        # The second line falls due on 2024-03-15 and is not yet late
        self.assertEqual(self.plan.mark_overdue(date(2024, 3, 15)), 0)
        self.assertEqual(self.plan.schedule[0].status, InstallmentPayment.PAID)
        self.assertEqual(self.plan.mark_overdue(date(2024, 3, 16)), 1)

    def test_mark_overdue_ignores_inactive_plans(self):
        self.plan.mark_defaulted()
        self.assertEqual(self.plan.mark_overdue(date(2025, 1, 1)), 0)
        self.assertEqual(self.plan.overdue_installments, 0)

    def test_cancel_and_default_only_from_active(self):
        self.plan.cancel()
        self.assertEqual(self.plan.status, InstallmentPlan.CANCELLED)

        with self.assertRaises(PlanNotActiveError):
            self.plan.mark_defaulted()
        with self.assertRaises(InvalidStateError):
            self.plan.cancel()

    def test_completed_plan_is_terminal(self):
        for index in range(4):
            self.plan.record_payment(index, Decimal('100'))
        self.assertEqual(self.plan.status, InstallmentPlan.COMPLETED)

        with self.assertRaises(PlanNotActiveError):
            self.plan.cancel()
        with self.assertRaises(PlanNotActiveError):
            self.plan.mark_defaulted()


class InstallmentPlanPersistenceTest(TestCase):
    """Saved plans load back with products and schedule"""

    def test_plan_round_trips_through_repository(self):
        repository = DjangoPlanRepository()
        plan = InstallmentPlan.create(
            products=[{'product_id': 'p1', 'name': 'Chair', 'price': '150.00', 'quantity': 2}],
            number_of_installments=3,
            interest_rate=Decimal('15'),
            start_date=date(2024, 1, 31),
            customer_id='cust-9',
        )
        repository.save(plan)

        loaded = repository.load(plan.pk)
        self.assertEqual(loaded.total_price, Decimal('300.00'))
        self.assertEqual(len(loaded.product_lines), 1)
        self.assertEqual(
            [line.amount_due for line in loaded.schedule],
            [Decimal('115.00'), Decimal('115.00'), Decimal('115.00')]
        )
        self.assertEqual(loaded.schedule[0].due_date, date(2024, 2, 29))
        self.assertEqual(loaded.version, 0)
