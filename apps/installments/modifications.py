"""
Financial impact and application of installment plan modifications.

Both operations work on the plan's unpaid lines only: the outstanding amount
is re-amortized from the next unpaid due date according to the requested
change. Paid lines keep their amounts and dates; the whole schedule is
numbered by due date afterwards.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional
import logging

from .changes import DownPaymentChange, InstallmentCountChange, InterestRateChange, ProductAddition
from .exceptions import InvalidModificationTypeError, InvalidTermError, NothingToModifyError
from .models import InstallmentPayment, PlanProduct, max_installments_for
from .utils import ZERO, add_months, calculate_installment_amount, generate_schedule

logger = logging.getLogger(__name__)


@dataclass
class PreviewLine:
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    remaining_balance: Decimal


@dataclass
class ModificationPreview:
    plan_id: Optional[int]
    modification_type: str

    current_monthly_emi: Decimal
    current_remaining_balance: Decimal
    current_remaining_installments: int
    current_end_date: Optional[date]
    current_total_payable: Decimal

    new_monthly_emi: Decimal
    new_remaining_balance: Decimal
    new_remaining_installments: int
    new_end_date: Optional[date]
    new_total_payable: Decimal

    emi_difference: Decimal
    total_payable_difference: Decimal
    time_difference_months: int
    is_financially_beneficial: bool
    recommendation_note: str
    new_payment_schedule: List[PreviewLine] = field(default_factory=list)


def _months(count):
    return f"{count} month" if count == 1 else f"{count} months"


def build_recommendation(emi_difference, total_payable_difference, time_difference_months):
    notes = []

    if emi_difference < 0:
        notes.append(f"Lower monthly installment by {abs(emi_difference):.2f}")
    elif emi_difference > 0:
        notes.append(f"Higher monthly installment by {emi_difference:.2f}")

    if total_payable_difference < 0:
        notes.append(f"Save {abs(total_payable_difference):.2f} over the life of the plan")
    elif total_payable_difference > 0:
        notes.append(f"Pay {total_payable_difference:.2f} more over the life of the plan")

    if time_difference_months < 0:
        notes.append(f"Finish {_months(abs(time_difference_months))} earlier")
    elif time_difference_months > 0:
        notes.append(f"Extend plan by {_months(time_difference_months)}")

    if emi_difference < 0 < total_payable_difference:
        notes.append("Lower installments come at a higher total cost")
    elif total_payable_difference < 0 < emi_difference:
        notes.append("Higher installments reduce the total cost")

    if not notes:
        return "No change to installments or total cost"
    return '. '.join(notes)


class ModificationEngine:
    """Computes and commits changes to an active plan's remaining schedule"""

    def preview(self, plan, change):
        """Financial impact of ``change`` on ``plan``. Never mutates the plan."""
        preview, _ = self._plan_change(plan, change)
        return preview

    def apply(self, plan, modification):
        """Replace the plan's unpaid lines with the re-amortized schedule"""
        # A fully paid plan is already completed; report that nothing is left to change
        if not plan.unpaid_lines:
            raise NothingToModifyError(plan_id=plan.pk)
        plan.require_active()
        change = modification.change
        preview, paid_numbers = self._plan_change(plan, change)

        paid_lines = self._paid_lines(plan)
        for line, number in zip(paid_lines, paid_numbers):
            line.installment_number = number
        new_lines = [
            InstallmentPayment(
                installment_number=line.installment_number,
                due_date=line.due_date,
                amount_due=line.total_amount,
                amount_paid=ZERO,
                status=InstallmentPayment.PENDING,
                principal_component=line.principal_amount,
                interest_component=line.interest_amount,
            )
            for line in preview.new_payment_schedule
        ]

        if isinstance(change, InterestRateChange):
            plan.interest_rate = change.new_interest_rate
        elif isinstance(change, ProductAddition):
            position = len(plan.product_lines)
            plan.product_lines = plan.product_lines + [
                PlanProduct.from_product_line(product, position + offset)
                for offset, product in enumerate(change.products, start=1)
            ]
            plan.total_price += change.added_total
        elif isinstance(change, DownPaymentChange):
            plan.down_payment += change.additional_down_payment

        plan.schedule = sorted(paid_lines + new_lines, key=lambda line: line.installment_number)
        plan.number_of_installments = len(plan.schedule)
        plan.installment_amount = preview.new_monthly_emi
        plan.remaining_balance = preview.new_remaining_balance
        plan.end_date = plan.schedule[-1].due_date

        logger.info(
            f"Applied {change.modification_type} to plan {plan.pk}: "
            f"{preview.current_remaining_installments} -> {preview.new_remaining_installments} "
            f"remaining installments, EMI {preview.current_monthly_emi} -> {preview.new_monthly_emi}"
        )
        return plan

    def _plan_change(self, plan, change):
        """The preview of ``change`` plus the installment numbers the paid lines end up with"""
        unpaid = plan.unpaid_lines
        if not unpaid:
            raise NothingToModifyError(plan_id=plan.pk)

        paid_lines = self._paid_lines(plan)
        outstanding = plan.outstanding_balance
        remaining_count = len(unpaid)
        first_due_date = min(line.due_date for line in unpaid)
        current_total_payable = plan.total_paid + outstanding

        principal, rate, count = self._rebase(plan, change, outstanding, remaining_count)

        schedule = generate_schedule(principal, rate, count, plan.start_date, first_due_date=first_due_date)
        due_dates = self._open_due_dates(first_due_date, count, paid_lines)
        paid_numbers, new_numbers = self._number_by_due_date(paid_lines, due_dates)

        new_emi = calculate_installment_amount(principal, rate, count)
        new_remaining_balance = sum((line.amount_due for line in schedule), ZERO)
        new_total_payable = plan.total_paid + new_remaining_balance

        preview_lines = []
        balance = new_remaining_balance
        for line, due_date, number in zip(schedule, due_dates, new_numbers):
            balance -= line.amount_due
            preview_lines.append(PreviewLine(
                installment_number=number,
                due_date=due_date,
                principal_amount=line.principal_component,
                interest_amount=line.interest_component,
                total_amount=line.amount_due,
                remaining_balance=balance,
            ))

        emi_difference = new_emi - plan.installment_amount
        total_payable_difference = new_total_payable - current_total_payable
        time_difference_months = count - remaining_count

        preview = ModificationPreview(
            plan_id=plan.pk,
            modification_type=change.modification_type,
            current_monthly_emi=plan.installment_amount,
            current_remaining_balance=outstanding,
            current_remaining_installments=remaining_count,
            current_end_date=plan.end_date,
            current_total_payable=current_total_payable,
            new_monthly_emi=new_emi,
            new_remaining_balance=new_remaining_balance,
            new_remaining_installments=count,
            new_end_date=max([due_dates[-1]] + [line.due_date for line in paid_lines]),
            new_total_payable=new_total_payable,
            emi_difference=emi_difference,
            total_payable_difference=total_payable_difference,
            time_difference_months=time_difference_months,
            is_financially_beneficial=total_payable_difference < 0,
            recommendation_note=build_recommendation(
                emi_difference, total_payable_difference, time_difference_months
            ),
            new_payment_schedule=preview_lines,
        )
        return preview, paid_numbers

    @staticmethod
    def _paid_lines(plan):
        return sorted(
            (line for line in plan.schedule if line.status == InstallmentPayment.PAID),
            key=lambda line: line.due_date,
        )

    @staticmethod
    def _open_due_dates(first_due_date, count, paid_lines):
        """Monthly due dates from ``first_due_date``, skipping months a paid line already covers"""
        taken = {(line.due_date.year, line.due_date.month) for line in paid_lines}
        due_dates = []
        offset = 0
        while len(due_dates) < count:
            due_date = add_months(first_due_date, offset)
            offset += 1
            if (due_date.year, due_date.month) not in taken:
                due_dates.append(due_date)
        return due_dates

    @staticmethod
    def _number_by_due_date(paid_lines, due_dates):
        """Installment numbers 1..N following due-date order across paid and new lines"""
        entries = sorted(
            [(line.due_date, 0, position) for position, line in enumerate(paid_lines)]
            + [(due_date, 1, position) for position, due_date in enumerate(due_dates)]
        )
        paid_numbers = [0] * len(paid_lines)
        new_numbers = [0] * len(due_dates)
        for number, (_, kind, position) in enumerate(entries, start=1):
            if kind == 0:
                paid_numbers[position] = number
            else:
                new_numbers[position] = number
        return paid_numbers, new_numbers

    def _rebase(self, plan, change, outstanding, remaining_count):
        """Principal, annual rate and installment count after ``change``"""
        principal = outstanding
        rate = plan.interest_rate
        count = remaining_count

        if isinstance(change, InstallmentCountChange):
            max_installments = max_installments_for(len(plan.product_lines))
            if change.new_installment_count > max_installments:
                raise InvalidTermError(
                    f"Number of installments must be between 1 and {max_installments}",
                    new_installment_count=change.new_installment_count,
                )
            count = change.new_installment_count
        elif isinstance(change, InterestRateChange):
            rate = change.new_interest_rate
        elif isinstance(change, ProductAddition):
            principal = outstanding + change.added_total
        elif isinstance(change, DownPaymentChange):
            principal = outstanding - change.additional_down_payment
        else:
            raise InvalidModificationTypeError(
                modification_type=getattr(change, 'modification_type', type(change).__name__)
            )
        return principal, rate, count
