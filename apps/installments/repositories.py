"""
Persistence for installment plans and their modifications.

``PlanRepository`` is the interface the services depend on;
``DjangoPlanRepository`` stores plans through the Django ORM. Plan writes are
a compare-and-set on ``InstallmentPlan.version`` so two concurrent
read-modify-write cycles on the same plan cannot silently overwrite each other.
"""

from abc import ABC, abstractmethod
import logging

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from .exceptions import ModificationNotFoundError, PersistenceConflictError, PlanNotFoundError
from .models import InstallmentPayment, InstallmentPlan, InstallmentPlanModification

logger = logging.getLogger(__name__)

PLAN_UPDATE_FIELDS = [
    'sale_id', 'customer_id', 'total_price', 'down_payment', 'number_of_installments',
    'installment_amount', 'interest_rate', 'start_date', 'end_date', 'status',
    'total_paid', 'remaining_balance',
]

MODIFICATION_UPDATE_FIELDS = [
    'status', 'approved_by', 'approval_notes', 'rejected_by', 'rejection_reason',
    'approved_at', 'rejected_at', 'applied_at', 'financial_impact',
]


class PlanRepository(ABC):

    @abstractmethod
    def load(self, plan_id):
        """Return the plan with its products and schedule, or raise PlanNotFoundError"""

    @abstractmethod
    def save(self, plan):
        """Persist the plan, raising PersistenceConflictError if it changed since it was loaded"""

    @abstractmethod
    def find_active_with_overdue_payments(self, as_of):
        """Active plans holding a pending line due before ``as_of``"""

    @abstractmethod
    def overdue_plans(self, as_of):
        """Active plans with a line already marked overdue or still pending past ``as_of``"""

    @abstractmethod
    def plans_for_customer(self, customer_id):
        pass

    @abstractmethod
    def all_plans(self):
        pass


    @abstractmethod
    def load_modification(self, modification_id):
        pass

    @abstractmethod
    def save_modification(self, modification, expected_status=None):
        pass

    @abstractmethod
    def modifications_for_plan(self, plan_id):
        pass

    @abstractmethod
    def pending_modifications(self):
        pass

    @abstractmethod
    def modifications_for_customer(self, customer_id):
        pass


class DjangoPlanRepository(PlanRepository):

    def _plans(self):
        return InstallmentPlan.objects.prefetch_related('products', 'payments')

    def _hydrate(self, plan):
        plan.schedule = plan.payments.all()
        plan.product_lines = plan.products.all()
        return plan

    def load(self, plan_id):
        try:
            plan = self._plans().get(pk=plan_id)
        except (InstallmentPlan.DoesNotExist, ValueError, TypeError):
            raise PlanNotFoundError(f"Installment plan {plan_id} not found", plan_id=plan_id)
        return self._hydrate(plan)

    def save(self, plan):
        with transaction.atomic():
            if plan.pk is None:
                plan.save()
                logger.info(f"Installment plan {plan.pk} created")
            else:
                self._compare_and_set(plan)
            self._sync_products(plan)
            self._sync_schedule(plan)
        return plan

    def _compare_and_set(self, plan):
        now = timezone.now()
        updated = InstallmentPlan.objects.filter(pk=plan.pk, version=plan.version).update(
            version=F('version') + 1,
            updated_at=now,
            **{name: getattr(plan, name) for name in PLAN_UPDATE_FIELDS}
        )
        if not updated:
            logger.warning(f"Stale write rejected for plan {plan.pk} at version {plan.version}")
            raise PersistenceConflictError(plan_id=plan.pk, version=plan.version)
        plan.version += 1
        plan.updated_at = now

    def _sync_products(self, plan):
        kept = [product.pk for product in plan.product_lines if product.pk]
        plan.products.exclude(pk__in=kept).delete()
        for product in plan.product_lines:
            product.plan = plan
            product.save()

    def _sync_schedule(self, plan):
        # Replaced lines go first so new lines can reuse their installment numbers
        kept = [line.pk for line in plan.schedule if line.pk]
        plan.payments.exclude(pk__in=kept).delete()

        stored = dict(plan.payments.values_list('pk', 'installment_number'))
        moved = [line.pk for line in plan.schedule if line.pk and stored.get(line.pk) != line.installment_number]
        if moved:
            # Renumbered rows step past every number in use until they are saved
            offset = max(stored.values()) + len(plan.schedule)
            plan.payments.filter(pk__in=moved).update(installment_number=F('installment_number') + offset)

        for line in plan.schedule:
            line.plan = plan
            line.save()

    def find_active_with_overdue_payments(self, as_of):
        plans = self._plans().filter(
            status=InstallmentPlan.ACTIVE,
            payments__status=InstallmentPayment.PENDING,
            payments__due_date__lt=as_of,
        ).distinct()
        return [self._hydrate(plan) for plan in plans]

    def overdue_plans(self, as_of):
        plans = self._plans().filter(
            Q(payments__status=InstallmentPayment.OVERDUE)
            | Q(payments__status=InstallmentPayment.PENDING, payments__due_date__lt=as_of),
            status=InstallmentPlan.ACTIVE,
        ).distinct()
        return [self._hydrate(plan) for plan in plans]

    def plans_for_customer(self, customer_id):
        return [self._hydrate(plan) for plan in self._plans().filter(customer_id=customer_id)]

    def all_plans(self):
        return [self._hydrate(plan) for plan in self._plans()]

    def load_modification(self, modification_id):
        try:
            return InstallmentPlanModification.objects.get(pk=modification_id)
        except (InstallmentPlanModification.DoesNotExist, ValueError, TypeError):
            raise ModificationNotFoundError(
                f"Modification {modification_id} not found",
                modification_id=modification_id,
            )

    def save_modification(self, modification, expected_status=None):
        """Insert or update a modification; ``expected_status`` guards against racing transitions"""
        if modification.pk is None or expected_status is None:
            modification.save()
            return modification

        now = timezone.now()
        updated = InstallmentPlanModification.objects.filter(
            pk=modification.pk,
            status=expected_status,
        ).update(
            updated_at=now,
            **{name: getattr(modification, name) for name in MODIFICATION_UPDATE_FIELDS}
        )
        if not updated:
            logger.warning(f"Modification {modification.pk} left {expected_status} before this update")
            raise PersistenceConflictError(
                "Modification was changed concurrently, reload and retry",
                modification_id=modification.pk,
                expected_status=expected_status,
            )
        modification.updated_at = now
        return modification

    def modifications_for_plan(self, plan_id):
        return list(InstallmentPlanModification.objects.filter(plan_id=plan_id))

    def pending_modifications(self):
        return list(InstallmentPlanModification.objects.filter(status=InstallmentPlanModification.PENDING))

    def modifications_for_customer(self, customer_id):
        return list(InstallmentPlanModification.objects.filter(plan__customer_id=customer_id))
