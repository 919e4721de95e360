from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase

from .changes import (
    ADD_PRODUCTS,
    CHANGE_DOWN_PAYMENT,
    CHANGE_INSTALLMENT_COUNT,
    CHANGE_INTEREST_RATE,
    DownPaymentChange,
    InstallmentCountChange,
    InterestRateChange,
    ProductAddition,
    ProductLine,
    change_from_payload,
)
from .exceptions import (
    InstallmentValidationError,
    InvalidModificationTypeError,
    InvalidPrincipalError,
    InvalidTermError,
    NothingToModifyError,
    PlanNotActiveError,
)
from .models import InstallmentPayment, InstallmentPlan, InstallmentPlanModification
from .modifications import ModificationEngine, build_recommendation


def make_half_paid_plan():
    """
    909.09 financed at 10% over 10 months: ten lines of 100.00.
    The first five are paid, leaving 500.00 across five unpaid lines.
    """
    plan = InstallmentPlan.create(
        total_price=Decimal('909.09'),
        number_of_installments=10,
        interest_rate=Decimal('10'),
        start_date=date(2024, 1, 15),
        customer_id='cust-1',
    )
    for index in range(5):
        plan.record_payment(index, Decimal('100.00'))
    return plan


def make_modification(modification_type, **details):
    return InstallmentPlanModification(
        modification_type=modification_type,
        reason='test',
        details=details,
        status=InstallmentPlanModification.APPROVED,
    )


def snapshot(plan):
    return {
        'status': plan.status,
        'installment_amount': plan.installment_amount,
        'number_of_installments': plan.number_of_installments,
        'interest_rate': plan.interest_rate,
        'total_price': plan.total_price,
        'down_payment': plan.down_payment,
        'total_paid': plan.total_paid,
        'remaining_balance': plan.remaining_balance,
        'end_date': plan.end_date,
        'products': len(plan.product_lines),
        'schedule': [
            (id(line), line.installment_number, line.due_date, line.amount_due, line.amount_paid, line.status)
            for line in plan.schedule
        ],
    }


class ModificationPreviewTest(SimpleTestCase):
    """Financial impact of proposed changes"""

    def setUp(self):
        self.engine = ModificationEngine()
        self.plan = make_half_paid_plan()

    def test_fixture_plan(self):
        self.assertEqual(self.plan.installment_amount, Decimal('100.00'))
        self.assertEqual(len(self.plan.unpaid_lines), 5)
        self.assertEqual(self.plan.outstanding_balance, Decimal('500.00'))
        self.assertEqual(self.plan.remaining_balance, Decimal('500.00'))

    def test_longer_term_lowers_emi_but_costs_more(self):
        preview = self.engine.preview(self.plan, InstallmentCountChange(new_installment_count=10))

        self.assertEqual(preview.current_monthly_emi, Decimal('100.00'))
        self.assertEqual(preview.current_remaining_balance, Decimal('500.00'))
        self.assertEqual(preview.current_remaining_installments, 5)
        self.assertEqual(preview.current_total_payable, Decimal('1000.00'))

        self.assertEqual(preview.new_monthly_emi, Decimal('55.00'))
        self.assertEqual(preview.new_remaining_balance, Decimal('550.00'))
        self.assertEqual(preview.new_remaining_installments, 10)
        self.assertEqual(preview.new_total_payable, Decimal('1050.00'))

        self.assertEqual(preview.emi_difference, Decimal('-45.00'))
        self.assertEqual(preview.total_payable_difference, Decimal('50.00'))
        self.assertEqual(preview.time_difference_months, 5)
        self.assertFalse(preview.is_financially_beneficial)
        self.assertIn("Lower installments come at a higher total cost", preview.recommendation_note)

    def test_preview_schedule_continues_after_paid_lines(self):
        preview = self.engine.preview(self.plan, InstallmentCountChange(new_installment_count=10))
        lines = preview.new_payment_schedule

        self.assertEqual(len(lines), 10)
        self.assertEqual(lines[0].installment_number, 6)
        self.assertEqual(lines[0].due_date, date(2024, 7, 15))
        self.assertEqual(lines[-1].installment_number, 15)
        self.assertEqual(lines[-1].due_date, date(2025, 4, 15))
        self.assertEqual(preview.new_end_date, date(2025, 4, 15))
        self.assertEqual(lines[0].remaining_balance, Decimal('495.00'))
        self.assertEqual(lines[-1].remaining_balance, Decimal('0.00'))
        self.assertEqual(sum(line.total_amount for line in lines), Decimal('550.00'))

    def test_preview_does_not_mutate_plan(self):
        before = snapshot(self.plan)
        changes = [
            InstallmentCountChange(new_installment_count=3),
            InterestRateChange(new_interest_rate=Decimal('25')),
            ProductAddition(products=(ProductLine('p9', 'Bag', Decimal('80.00'), 1),)),
            DownPaymentChange(additional_down_payment=Decimal('100.00')),
        ]
        for change in changes:
            self.engine.preview(self.plan, change)
        self.assertEqual(snapshot(self.plan), before)

    def test_extra_down_payment_is_beneficial(self):
        preview = self.engine.preview(self.plan, DownPaymentChange(additional_down_payment=Decimal('100.00')))

        self.assertEqual(preview.new_monthly_emi, Decimal('88.00'))
        self.assertEqual(preview.new_total_payable, Decimal('940.00'))
        self.assertTrue(preview.is_financially_beneficial)
        self.assertEqual(preview.time_difference_months, 0)

    def test_down_payment_covering_balance_rejected(self):
        with self.assertRaises(InvalidPrincipalError):
            self.engine.preview(self.plan, DownPaymentChange(additional_down_payment=Decimal('500.00')))

    def test_installment_count_above_limit_rejected(self):
        with self.assertRaises(InvalidTermError):
            self.engine.preview(self.plan, InstallmentCountChange(new_installment_count=121))

    def test_partial_payment_reduces_outstanding(self):
        self.plan.record_payment(5, Decimal('40.00'))
        preview = self.engine.preview(self.plan, InterestRateChange(new_interest_rate=Decimal('0')))

        self.assertEqual(preview.current_remaining_balance, Decimal('460.00'))
        self.assertEqual(preview.current_remaining_installments, 5)
        self.assertEqual(preview.new_monthly_emi, Decimal('92.00'))
        self.assertEqual(preview.new_payment_schedule[0].installment_number, 6)

    def test_unknown_change_rejected(self):
        with self.assertRaises(InvalidModificationTypeError):
            self.engine.preview(self.plan, object())

    def test_fully_paid_plan_has_nothing_to_preview(self):
        for index in range(5, 10):
            self.plan.record_payment(index, Decimal('100.00'))
        with self.assertRaises(NothingToModifyError):
            self.engine.preview(self.plan, InstallmentCountChange(new_installment_count=2))


class ModificationApplyTest(SimpleTestCase):
    """Committing changes to the plan"""

    def setUp(self):
        self.engine = ModificationEngine()
        self.plan = make_half_paid_plan()
        self.paid_lines = list(self.plan.schedule[:5])

    def assert_paid_lines_untouched(self):
        self.assertEqual(self.plan.schedule[:5], self.paid_lines)
        for line in self.plan.schedule[:5]:
            self.assertEqual(line.status, InstallmentPayment.PAID)
            self.assertEqual(line.amount_paid, Decimal('100.00'))

    def test_apply_installment_count_change(self):
        self.engine.apply(self.plan, make_modification(CHANGE_INSTALLMENT_COUNT, new_installment_count=10))

        self.assert_paid_lines_untouched()
        self.assertEqual(len(self.plan.schedule), 15)
        self.assertEqual(self.plan.number_of_installments, 15)
        self.assertEqual(self.plan.installment_amount, Decimal('55.00'))
        self.assertEqual(self.plan.remaining_balance, Decimal('550.00'))
        self.assertEqual(self.plan.total_paid, Decimal('500.00'))
        self.assertEqual(self.plan.end_date, date(2025, 4, 15))
        self.assertEqual(self.plan.next_due_date, date(2024, 7, 15))
        self.assertEqual(self.plan.status, InstallmentPlan.ACTIVE)

    def test_apply_interest_rate_change(self):
        self.engine.apply(self.plan, make_modification(CHANGE_INTEREST_RATE, new_interest_rate='20'))

        self.assert_paid_lines_untouched()
        self.assertEqual(self.plan.interest_rate, Decimal('20'))
        self.assertEqual(self.plan.installment_amount, Decimal('120.00'))
        self.assertEqual(self.plan.remaining_balance, Decimal('600.00'))
        self.assertEqual(self.plan.number_of_installments, 10)
        self.assertEqual(self.plan.end_date, date(2024, 11, 15))

    def test_apply_product_addition(self):
        products = [{'product_id': 'p2', 'name': 'Stand', 'price': '50.00', 'quantity': 2}]
        self.engine.apply(self.plan, make_modification(ADD_PRODUCTS, additional_products=products))

        self.assert_paid_lines_untouched()
        self.assertEqual(self.plan.total_price, Decimal('1009.09'))
        self.assertEqual(len(self.plan.product_lines), 1)
        self.assertEqual(self.plan.product_lines[0].product_id, 'p2')
        self.assertEqual(self.plan.installment_amount, Decimal('132.00'))
        self.assertEqual(self.plan.remaining_balance, Decimal('660.00'))

    def test_apply_down_payment_change(self):
        self.engine.apply(self.plan, make_modification(CHANGE_DOWN_PAYMENT, additional_down_payment='100.00'))

        self.assert_paid_lines_untouched()
        self.assertEqual(self.plan.down_payment, Decimal('100.00'))
        self.assertEqual(self.plan.installment_amount, Decimal('88.00'))
        self.assertEqual(self.plan.remaining_balance, Decimal('440.00'))

    def test_new_lines_replace_unpaid_lines(self):
        self.engine.apply(self.plan, make_modification(CHANGE_INSTALLMENT_COUNT, new_installment_count=2))

        new_lines = self.plan.schedule[5:]
        self.assertEqual([line.installment_number for line in new_lines], [6, 7])
        self.assertTrue(all(line.pk is None for line in new_lines))
        self.assertTrue(all(line.status == InstallmentPayment.PENDING for line in new_lines))
        self.assertEqual(sum(line.amount_due for line in new_lines), Decimal('550.00'))

    def test_apply_on_fully_paid_plan(self):
        for index in range(5, 10):
            self.plan.record_payment(index, Decimal('100.00'))
        self.assertEqual(self.plan.status, InstallmentPlan.COMPLETED)

        with self.assertRaises(NothingToModifyError):
            self.engine.apply(self.plan, make_modification(CHANGE_INSTALLMENT_COUNT, new_installment_count=2))

    def test_apply_on_inactive_plan(self):
        self.plan.mark_defaulted()
        before = snapshot(self.plan)

        with self.assertRaises(PlanNotActiveError):
            self.engine.apply(self.plan, make_modification(CHANGE_INSTALLMENT_COUNT, new_installment_count=2))
        self.assertEqual(snapshot(self.plan), before)

    def test_apply_unknown_type(self):
        with self.assertRaises(InvalidModificationTypeError):
            self.engine.apply(self.plan, make_modification('extend_warranty'))


class OutOfOrderPaymentTest(SimpleTestCase):
    """Re-amortizing after a later line was paid ahead of earlier ones"""

    def setUp(self):
        self.engine = ModificationEngine()
        # Ten lines of 100.00 due 2024-02-15 .. 2024-11-15; only the July line is paid
        self.plan = InstallmentPlan.create(
            total_price=Decimal('1000.00'),
            number_of_installments=10,
            start_date=date(2024, 1, 15),
        )
        self.paid_line = self.plan.record_payment(5, Decimal('100.00'))

    def assert_schedule_in_due_date_order(self):
        numbers = [line.installment_number for line in self.plan.schedule]
        due_dates = [line.due_date for line in self.plan.schedule]
        self.assertEqual(numbers, list(range(1, len(self.plan.schedule) + 1)))
        self.assertTrue(all(earlier < later for earlier, later in zip(due_dates, due_dates[1:])))

    def test_longer_term_skips_the_paid_month(self):
        self.engine.apply(self.plan, make_modification(CHANGE_INSTALLMENT_COUNT, new_installment_count=12))

        self.assert_schedule_in_due_date_order()
        self.assertEqual(len(self.plan.schedule), 13)
        self.assertIs(self.plan.schedule[5], self.paid_line)
        self.assertEqual(self.paid_line.installment_number, 6)
        self.assertEqual(self.paid_line.status, InstallmentPayment.PAID)
        self.assertEqual(self.plan.schedule[0].due_date, date(2024, 2, 15))
        self.assertEqual(self.plan.schedule[6].due_date, date(2024, 8, 15))
        self.assertEqual(self.plan.end_date, date(2025, 2, 15))
        self.assertEqual(self.plan.installment_amount, Decimal('75.00'))

    def test_shorter_term_moves_paid_line_up(self):
        preview = self.engine.preview(
            self.plan, change_from_payload(CHANGE_INSTALLMENT_COUNT, {'new_installment_count': 2})
        )
        self.assertEqual([line.installment_number for line in preview.new_payment_schedule], [1, 2])
        self.assertEqual(preview.new_end_date, date(2024, 7, 15))

        self.engine.apply(self.plan, make_modification(CHANGE_INSTALLMENT_COUNT, new_installment_count=2))

        self.assert_schedule_in_due_date_order()
        self.assertEqual(
            [(line.installment_number, line.due_date, line.status) for line in self.plan.schedule],
            [
                (1, date(2024, 2, 15), InstallmentPayment.PENDING),
                (2, date(2024, 3, 15), InstallmentPayment.PENDING),
                (3, date(2024, 7, 15), InstallmentPayment.PAID),
            ]
        )
        self.assertEqual(self.plan.end_date, date(2024, 7, 15))



class ChangePayloadTest(SimpleTestCase):
    """Typed modification payloads"""

    def test_payload_builds_matching_change(self):
        change = change_from_payload(CHANGE_INTEREST_RATE, {'new_interest_rate': '7.5'})
        self.assertIsInstance(change, InterestRateChange)
        self.assertEqual(change.new_interest_rate, Decimal('7.5'))

        change = change_from_payload(ADD_PRODUCTS, {
            'additional_products': [{'product_id': 'a', 'price': '10.00', 'quantity': 3}]
        })
        self.assertEqual(change.added_total, Decimal('30.00'))
        self.assertEqual(change.to_payload()['additional_products'][0]['price'], '10.00')

    def test_zero_interest_rate_is_a_valid_change(self):
        change = change_from_payload(CHANGE_INTEREST_RATE, {'new_interest_rate': '0'})
        self.assertEqual(change.new_interest_rate, Decimal('0'))

    def test_missing_payload_field_rejected(self):
        for modification_type in (CHANGE_INSTALLMENT_COUNT, CHANGE_INTEREST_RATE, ADD_PRODUCTS, CHANGE_DOWN_PAYMENT):
            with self.subTest(modification_type=modification_type):
                with self.assertRaises(InstallmentValidationError):
                    change_from_payload(modification_type, {})

    def test_invalid_payload_values_rejected(self):
        with self.assertRaises(InvalidTermError):
            InstallmentCountChange(new_installment_count=0)
        with self.assertRaises(InstallmentValidationError):
            InterestRateChange(new_interest_rate=Decimal('120'))
        with self.assertRaises(InstallmentValidationError):
            DownPaymentChange(additional_down_payment=Decimal('0'))
        with self.assertRaises(InstallmentValidationError):
            ProductAddition(products=())

    def test_unknown_type_rejected(self):
        with self.assertRaises(InvalidModificationTypeError):
            change_from_payload('extend_warranty', {})

    def test_non_numeric_values_rejected(self):
        with self.assertRaises(InstallmentValidationError):
            change_from_payload(CHANGE_INSTALLMENT_COUNT, {'new_installment_count': 'ten'})
        with self.assertRaises(InstallmentValidationError):
            change_from_payload(ADD_PRODUCTS, {
                'additional_products': [{'product_id': 'a', 'price': '10.00', 'quantity': 'three'}]
            })



class RecommendationTest(SimpleTestCase):

    def test_no_change(self):
        self.assertEqual(
            build_recommendation(Decimal('0'), Decimal('0'), 0),
            "No change to installments or total cost"
        )

    def test_higher_installments_reduce_total_cost(self):
        note = build_recommendation(Decimal('20.00'), Decimal('-15.00'), -1)
        self.assertEqual(
            note,
            "Higher monthly installment by 20.00. Save 15.00 over the life of the plan. "
            "Finish 1 month earlier. Higher installments reduce the total cost"
        )
