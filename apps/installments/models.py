from decimal import Decimal
import logging

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from .changes import MODIFICATION_TYPE_CHOICES, ProductLine, change_from_payload
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
from .utils import (
    ZERO,
    calculate_total_payable,
    generate_schedule,
    quantize_currency,
    to_decimal,
    to_payment_timestamp,
)

logger = logging.getLogger(__name__)


def max_installments_for(product_count):
    """Single-product (or product-less) plans allow longer terms than multi-product ones"""
    if product_count > 1:
        return getattr(settings, 'MAX_INSTALLMENTS_MULTI_PRODUCT', 60)
    return getattr(settings, 'MAX_INSTALLMENTS_SINGLE_PRODUCT', 120)


class InstallmentPlan(models.Model):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    DEFAULTED = 'defaulted'
    CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (ACTIVE, 'Active'),
        (COMPLETED, 'Completed'),
        (DEFAULTED, 'Defaulted'),
        (CANCELLED, 'Cancelled'),
    ]

    sale_id = models.CharField(max_length=64, blank=True, default='')
    customer_id = models.CharField(max_length=64, db_index=True)
    total_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    down_payment = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(0)]
    )
    number_of_installments = models.PositiveIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(120)]
    )
    installment_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    interest_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    start_date = models.DateField()
    end_date = models.DateField()
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=ACTIVE
    )
    total_paid = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    remaining_balance = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    # Bumped on every write; saves against a stale version are rejected
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Installment Plan'
        verbose_name_plural = 'Installment Plans'
        indexes = [
            models.Index(fields=['status'], name='installment_status_7c1e2a_idx'),
        ]

    def __str__(self):
        return f"Plan {self.id} - {self.customer_id} - {self.total_price}"

    @classmethod
    def create(cls, total_price=None, down_payment=ZERO, number_of_installments=None,
               interest_rate=ZERO, start_date=None, products=None, sale_id='', customer_id=''):
        """
        Build a new active plan with its full payment schedule.

        The plan is not persisted; hand it to a repository to save it.
        """
        lines = [
            product if isinstance(product, ProductLine) else ProductLine.from_dict(product)
            for product in (products or [])
        ]

        if lines:
            lines_total = sum((line.line_total for line in lines), ZERO)
            if total_price is None:
                total_price = lines_total
            elif quantize_currency(total_price) != lines_total:
                raise InstallmentValidationError(
                    "Total price does not match the product lines",
                    total_price=str(total_price),
                    products_total=str(lines_total),
                )
        if total_price is None or to_decimal(total_price) <= 0:
            raise InstallmentValidationError("Total price must be greater than 0", total_price=str(total_price))

        total_price = quantize_currency(total_price)
        down_payment = quantize_currency(down_payment or ZERO)
        interest_rate = to_decimal(interest_rate or ZERO)

        if down_payment < 0:
            raise InstallmentValidationError("Down payment cannot be negative", down_payment=str(down_payment))
        if down_payment >= total_price:
            raise InvalidPrincipalError(
                "Down payment must be less than the total price",
                down_payment=str(down_payment),
                total_price=str(total_price),
            )
        if not 0 <= interest_rate <= 100:
            raise InstallmentValidationError(
                "Interest rate must be between 0 and 100",
                interest_rate=str(interest_rate),
            )

        max_installments = max_installments_for(len(lines))
        if not isinstance(number_of_installments, int) or not 1 <= number_of_installments <= max_installments:
            raise InvalidTermError(
                f"Number of installments must be between 1 and {max_installments}",
                number_of_installments=number_of_installments,
            )

        start_date = start_date or timezone.localdate()
        principal = total_price - down_payment
        schedule = generate_schedule(principal, interest_rate, number_of_installments, start_date)

        plan = cls(
            sale_id=sale_id or '',
            customer_id=customer_id,
            total_price=total_price,
            down_payment=down_payment,
            number_of_installments=number_of_installments,
            installment_amount=schedule[0].amount_due,
            interest_rate=interest_rate,
            start_date=start_date,
            end_date=schedule[-1].due_date,
            status=cls.ACTIVE,
            total_paid=ZERO,
            remaining_balance=sum((line.amount_due for line in schedule), ZERO),
        )
        plan.product_lines = [
            PlanProduct.from_product_line(line, position) for position, line in enumerate(lines, start=1)
        ]
        plan.schedule = [InstallmentPayment.from_schedule_line(line) for line in schedule]
        return plan

    # In-memory views of the related rows. Repositories load and persist them.

    @property
    def schedule(self):
        if getattr(self, '_schedule', None) is None:
            self._schedule = list(self.payments.all()) if self.pk else []
        return self._schedule

    @schedule.setter
    def schedule(self, lines):
        self._schedule = list(lines)

    @property
    def product_lines(self):
        if getattr(self, '_product_lines', None) is None:
            self._product_lines = list(self.products.all()) if self.pk else []
        return self._product_lines

    @product_lines.setter
    def product_lines(self, lines):
        self._product_lines = list(lines)

    @property
    def total_amount_with_interest(self):
        return calculate_total_payable(self.total_price - self.down_payment, self.interest_rate)

    @property
    def paid_installments(self):
        return sum(1 for line in self.schedule if line.status == InstallmentPayment.PAID)

    @property
    def pending_installments(self):
        return sum(1 for line in self.schedule if line.status == InstallmentPayment.PENDING)

    @property
    def overdue_installments(self):
        return sum(1 for line in self.schedule if line.status == InstallmentPayment.OVERDUE)

    @property
    def is_completed(self):
        return self.paid_installments == self.number_of_installments

    @property
    def next_due_date(self):
        pending = [line.due_date for line in self.schedule if line.status == InstallmentPayment.PENDING]
        return min(pending) if pending else None

    @property
    def unpaid_lines(self):
        return [line for line in self.schedule if line.status != InstallmentPayment.PAID]

    @property
    def outstanding_balance(self):
        """Amount still owed on the unpaid schedule lines"""
        return sum((line.outstanding for line in self.unpaid_lines), ZERO)

    def require_active(self):
        if self.status != self.ACTIVE:
            raise PlanNotActiveError(
                f"Plan {self.pk} is {self.status}",
                plan_id=self.pk,
                status=self.status,
            )

    def check_payment(self, installment_index, amount):
        """
        Run every payment guard without touching the plan.

        Returns the targeted line and the amount rounded to cents.
        """
        self.require_active()

        if (not isinstance(installment_index, int) or isinstance(installment_index, bool)
                or not 0 <= installment_index < len(self.schedule)):
            raise IndexOutOfRangeError(
                installment_index=installment_index,
                installments=len(self.schedule),
            )

        line = self.schedule[installment_index]
        if line.status == InstallmentPayment.PAID:
            raise AlreadyPaidError(
                f"Installment {installment_index + 1} is already paid",
                installment_index=installment_index,
            )

        try:
            amount = quantize_currency(amount)
        except InstallmentValidationError:
            raise InvalidAmountError(amount=str(amount))
        if amount <= 0:
            raise InvalidAmountError(amount=str(amount))

        outstanding = self.outstanding_balance
        if amount > outstanding:
            raise InvalidAmountError(
                f"Payment of {amount} exceeds the outstanding balance of {outstanding}",
                amount=str(amount),
                outstanding_balance=str(outstanding),
            )
        return line, amount

    def record_payment(self, installment_index, amount, payment_date=None):
        """Record a (possibly partial) payment against one schedule line"""
        line, amount = self.check_payment(installment_index, amount)
        paid_at = to_payment_timestamp(payment_date)

        # Whatever the line does not need settles the next unpaid lines in schedule order
        unpaid = self.unpaid_lines
        start = next(position for position, candidate in enumerate(unpaid) if candidate is line)
        left = amount
        for target in unpaid[start:] + unpaid[:start]:
            if left <= 0:
                break
            portion = min(left, target.outstanding)
            target.apply_payment(portion, paid_at)
            left -= portion

        self.total_paid += amount
        self.remaining_balance = max(ZERO, self.remaining_balance - amount)

        if self.is_completed:
            self.status = self.COMPLETED
            logger.info(f"Installment plan {self.pk} completed - all installments paid")
        return line

    def pay_off(self, payment_date=None):
        """Settle every unpaid line at once; returns the amount collected"""
        self.require_active()
        paid_at = to_payment_timestamp(payment_date)

        settled = ZERO
        for line in self.unpaid_lines:
            amount = line.outstanding
            line.apply_payment(amount, paid_at)
            settled += amount

        self.total_paid += settled
        self.remaining_balance = max(ZERO, self.remaining_balance - settled)
        self.status = self.COMPLETED
        logger.info(f"Installment plan {self.pk} paid off early with {settled}")
        return settled

    def mark_overdue(self, as_of=None):
        """Flag pending lines due before ``as_of``; returns how many changed"""
        if self.status != self.ACTIVE:
            return 0

        as_of = as_of or timezone.localdate()
        marked = 0
        for line in self.schedule:
            if line.status == InstallmentPayment.PENDING and line.due_date < as_of:
                line.status = InstallmentPayment.OVERDUE
                marked += 1
        return marked

    def cancel(self):
        self.require_active()
        self.status = self.CANCELLED

    def mark_defaulted(self):
        self.require_active()
        self.status = self.DEFAULTED


class PlanProduct(models.Model):
    plan = models.ForeignKey(
        InstallmentPlan,
        on_delete=models.CASCADE,
        related_name='products'
    )
    position = models.PositiveIntegerField()
    product_id = models.CharField(max_length=64)
    name = models.CharField(max_length=200, blank=True, default='')
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    category = models.CharField(max_length=100, blank=True, default='')
    description = models.TextField(blank=True, default='')

    class Meta:
        ordering = ['position']
        verbose_name = 'Plan Product'
        verbose_name_plural = 'Plan Products'

    def __str__(self):
        return f"{self.name} x{self.quantity}"

    @classmethod
    def from_product_line(cls, line, position):
        return cls(
            position=position,
            product_id=line.product_id,
            name=line.name,
            price=line.price,
            quantity=line.quantity,
            category=line.category,
            description=line.description,
        )

    @property
    def line_total(self):
        return quantize_currency(self.price * self.quantity)


class InstallmentPayment(models.Model):
    PENDING = 'pending'
    PAID = 'paid'
    OVERDUE = 'overdue'

    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (PAID, 'Paid'),
        (OVERDUE, 'Overdue'),
    ]

    plan = models.ForeignKey(
        InstallmentPlan,
        on_delete=models.CASCADE,
        related_name='payments'
    )
    installment_number = models.PositiveIntegerField()
    due_date = models.DateField()
    amount_due = models.DecimalField(max_digits=12, decimal_places=2)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    payment_date = models.DateTimeField(null=True, blank=True)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=PENDING
    )
    principal_component = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    interest_component = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['installment_number']
        unique_together = ['plan', 'installment_number']
        verbose_name = 'Installment Payment'
        verbose_name_plural = 'Installment Payments'

    def __str__(self):
        return f"Installment {self.installment_number} - {self.amount_due}"

    @classmethod
    def from_schedule_line(cls, line):
        return cls(
            installment_number=line.installment_number,
            due_date=line.due_date,
            amount_due=line.amount_due,
            amount_paid=ZERO,
            status=cls.PENDING,
            principal_component=line.principal_component,
            interest_component=line.interest_component,
        )

    @property
    def outstanding(self):
        if self.status == self.PAID:
            return ZERO
        return max(ZERO, self.amount_due - self.amount_paid)

    def apply_payment(self, amount, payment_date):
        self.amount_paid += amount
        self.payment_date = payment_date
        if self.amount_paid >= self.amount_due:
            self.status = self.PAID


class InstallmentPlanModification(models.Model):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    APPLIED = 'applied'

    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (APPROVED, 'Approved'),
        (REJECTED, 'Rejected'),
        (APPLIED, 'Applied'),
    ]

    plan = models.ForeignKey(
        InstallmentPlan,
        on_delete=models.CASCADE,
        related_name='modifications'
    )
    modification_type = models.CharField(max_length=40, choices=MODIFICATION_TYPE_CHOICES)
    reason = models.TextField()
    requested_by = models.CharField(max_length=64, blank=True, default='')
    details = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    financial_impact = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=PENDING
    )
    approved_by = models.CharField(max_length=64, blank=True, default='')
    approval_notes = models.TextField(blank=True, default='')
    rejected_by = models.CharField(max_length=64, blank=True, default='')
    rejection_reason = models.TextField(blank=True, default='')
    approved_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    applied_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Installment Plan Modification'
        verbose_name_plural = 'Installment Plan Modifications'
        indexes = [
            models.Index(fields=['status'], name='installment_status_4d9b0f_idx'),
        ]

    def __str__(self):
        return f"Modification {self.id} - plan {self.plan_id} - {self.modification_type} ({self.status})"

    @property
    def change(self):
        """Typed payload for this modification's type"""
        return change_from_payload(self.modification_type, self.details)

    def _require_status(self, expected, action):
        if self.status != expected:
            raise InvalidStateError(
                f"Only {expected} modifications can be {action}",
                modification_id=self.pk,
                status=self.status,
            )

    def approve(self, approved_by, notes=''):
        self._require_status(self.PENDING, 'approved')
        if not approved_by:
            raise InstallmentValidationError("Approver is required", field='approved_by')
        self.status = self.APPROVED
        self.approved_by = approved_by
        self.approval_notes = notes or ''
        self.approved_at = timezone.now()

    def reject(self, rejected_by, reason):
        self._require_status(self.PENDING, 'rejected')
        if not rejected_by:
            raise InstallmentValidationError("Rejecter is required", field='rejected_by')
        if not reason:
            raise InstallmentValidationError("Rejection reason is required", field='rejection_reason')
        self.status = self.REJECTED
        self.rejected_by = rejected_by
        self.rejection_reason = reason
        self.rejected_at = timezone.now()

    def mark_applied(self):
        self._require_status(self.APPROVED, 'applied')
        self.status = self.APPLIED
        self.applied_at = timezone.now()
