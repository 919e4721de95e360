"""
Orchestration of installment plan operations.

``PlanLifecycleService`` owns plan creation, payment recording, the overdue
sweep and terminal status changes. ``ModificationWorkflowService`` drives a
modification request through pending -> approved -> applied (or rejected).

Both services take a ``PlanRepository``; every write goes through it so the
version check on plans is applied consistently.
"""

import logging

from django.db import DatabaseError, transaction
from django.utils import timezone

from .changes import ProductLine, REQUIRED_FIELDS, change_from_payload
from .exceptions import InstallmentError, InvalidModificationTypeError, InvalidStateError
from .modifications import ModificationEngine
from .models import InstallmentPlan, InstallmentPlanModification
from .repositories import DjangoPlanRepository
from .serializers import (
    CreatePlanSerializer,
    ModificationPreviewRequestSerializer,
    ModificationPreviewSerializer,
    ModificationRequestSerializer,
    PlanSnapshotSerializer,
    validate_payload,
)

logger = logging.getLogger(__name__)


class PlanLifecycleService:

    def __init__(self, repository=None):
        self.repository = repository or DjangoPlanRepository()

    def create_plan(self, data):
        """Validate a create request, build the schedule and persist the new plan"""
        validated = validate_payload(CreatePlanSerializer, data)
        products = [ProductLine.from_dict(product) for product in validated.get('products', [])]

        plan = InstallmentPlan.create(
            total_price=validated.get('total_price'),
            down_payment=validated['down_payment'],
            number_of_installments=validated['number_of_installments'],
            interest_rate=validated['interest_rate'],
            start_date=validated.get('start_date'),
            products=products,
            sale_id=validated['sale_id'],
            customer_id=validated['customer_id'],
        )
        self.repository.save(plan)

        logger.info(
            f"Created installment plan {plan.pk} for customer {plan.customer_id}: "
            f"{plan.number_of_installments} x {plan.installment_amount} at {plan.interest_rate}%"
        )
        return plan

    def get_plan(self, plan_id):
        return self.repository.load(plan_id)

    def save_plan(self, plan):
        return self.repository.save(plan)

    def describe_plan(self, plan_id):
        """Plan snapshot with derived fields, ready for rendering"""
        return PlanSnapshotSerializer(self.get_plan(plan_id)).data

    def plans_for_customer(self, customer_id):
        return self.repository.plans_for_customer(customer_id)

    def all_plans(self):
        return self.repository.all_plans()

    def overdue_plans(self, as_of=None):
        return self.repository.overdue_plans(as_of or timezone.localdate())

    def validate_payment(self, plan_id, installment_index, amount):
        """Whether ``record_payment`` would accept this payment; nothing is saved"""
        try:
            self.get_plan(plan_id).check_payment(installment_index, amount)
        except InstallmentError as e:
            logger.debug(f"Payment on plan {plan_id} installment {installment_index} would be rejected: {e.code}")
            return False
        return True

    def record_payment(self, plan_id, installment_index, amount, payment_date=None):
        plan = self.get_plan(plan_id)
        try:
            line = plan.record_payment(installment_index, amount, payment_date)
        except InstallmentError as e:
            logger.warning(f"Payment on plan {plan_id} installment {installment_index} rejected: {e.code}")
            raise
        self.save_plan(plan)

        logger.info(
            f"Recorded payment of {amount} on plan {plan.pk} installment "
            f"{line.installment_number} ({line.status})"
        )
        return plan

    def complete_plan(self, plan_id, payment_date=None):
        """Early payoff: settle every unpaid line and close the plan"""
        plan = self.get_plan(plan_id)
        settled = plan.pay_off(payment_date)
        self.save_plan(plan)
        logger.info(f"Installment plan {plan.pk} completed with a final payment of {settled}")
        return plan

    def cancel_plan(self, plan_id):
        plan = self.get_plan(plan_id)
        plan.cancel()
        self.save_plan(plan)
        logger.info(f"Installment plan {plan.pk} cancelled")
        return plan

    def mark_defaulted(self, plan_id):
        plan = self.get_plan(plan_id)
        plan.mark_defaulted()
        self.save_plan(plan)
        logger.info(f"Installment plan {plan.pk} marked as defaulted")
        return plan

    def sweep_overdue(self, as_of=None, dry_run=False):
        """
        Mark pending lines due before ``as_of`` as overdue on every active plan.

        A failure on one plan is logged and recorded in ``failed_plan_ids``;
        the sweep carries on with the remaining plans.
        """
        as_of = as_of or timezone.localdate()
        plans = self.repository.find_active_with_overdue_payments(as_of)

        result = {
            'as_of': str(as_of),
            'plans_checked': len(plans),
            'plans_updated': 0,
            'installments_marked': 0,
            'failed_plan_ids': [],
        }

        for plan in plans:
            try:
                marked = plan.mark_overdue(as_of)
                if marked and not dry_run:
                    self.save_plan(plan)
            except (InstallmentError, DatabaseError) as e:
                logger.error(f"Overdue sweep failed for plan {plan.pk}: {e}")
                result['failed_plan_ids'].append(plan.pk)
                continue

            if marked:
                result['plans_updated'] += 1
                result['installments_marked'] += marked

        logger.info(
            f"Overdue sweep as of {as_of}: {result['installments_marked']} installments marked "
            f"on {result['plans_updated']} of {result['plans_checked']} plans"
            f"{' (dry run)' if dry_run else ''}"
        )
        if result['failed_plan_ids']:
            logger.warning(f"Overdue sweep skipped plans {result['failed_plan_ids']}")
        return result


class ModificationWorkflowService:

    def __init__(self, lifecycle=None, engine=None):
        self.lifecycle = lifecycle or PlanLifecycleService()
        self.engine = engine or ModificationEngine()

    @property
    def repository(self):
        return self.lifecycle.repository

    def _change_for(self, data, serializer_class):
        modification_type = data.get('modification_type')
        if modification_type not in REQUIRED_FIELDS:
            raise InvalidModificationTypeError(modification_type=modification_type)
        validated = validate_payload(serializer_class, data)
        return validated, change_from_payload(modification_type, validated)

    def preview_modification(self, data):
        """What-if impact of a change, without creating a modification record"""
        validated, change = self._change_for(data, ModificationPreviewRequestSerializer)
        plan = self.lifecycle.get_plan(validated['plan_id'])
        return self.engine.preview(plan, change)

    def request_modification(self, data):
        validated, change = self._change_for(data, ModificationRequestSerializer)
        plan = self.lifecycle.get_plan(validated['plan_id'])
        plan.require_active()

        impact = dict(ModificationPreviewSerializer(self.engine.preview(plan, change)).data)
        impact.pop('new_payment_schedule', None)

        modification = InstallmentPlanModification(
            plan=plan,
            modification_type=change.modification_type,
            reason=validated['reason'],
            requested_by=validated['requested_by'],
            details=change.to_payload(),
            financial_impact=impact,
        )
        self.repository.save_modification(modification)

        logger.info(
            f"Modification {modification.pk} ({modification.modification_type}) requested "
            f"for plan {plan.pk} by {modification.requested_by or 'unknown'}"
        )
        return modification

    def get_modification(self, modification_id):
        return self.repository.load_modification(modification_id)

    def approve_modification(self, modification_id, approved_by, notes=''):
        modification = self.get_modification(modification_id)
        modification.approve(approved_by, notes)
        self.repository.save_modification(
            modification, expected_status=InstallmentPlanModification.PENDING
        )
        logger.info(f"Modification {modification.pk} approved by {approved_by}")
        return modification

    def reject_modification(self, modification_id, rejected_by, reason):
        modification = self.get_modification(modification_id)
        modification.reject(rejected_by, reason)
        self.repository.save_modification(
            modification, expected_status=InstallmentPlanModification.PENDING
        )
        logger.info(f"Modification {modification.pk} rejected by {rejected_by}: {reason}")
        return modification

    def apply_modification(self, modification_id):
        """Commit an approved modification to its plan; plan and record are saved together"""
        modification = self.get_modification(modification_id)
        if modification.status != InstallmentPlanModification.APPROVED:
            raise InvalidStateError(
                "Only approved modifications can be applied",
                modification_id=modification.pk,
                status=modification.status,
            )

        with transaction.atomic():
            plan = self.lifecycle.get_plan(modification.plan_id)
            self.engine.apply(plan, modification)
            self.lifecycle.save_plan(plan)
            modification.mark_applied()
            self.repository.save_modification(
                modification, expected_status=InstallmentPlanModification.APPROVED
            )

        logger.info(f"Modification {modification.pk} applied to plan {plan.pk}")
        return plan

    def modifications_for_plan(self, plan_id):
        return self.repository.modifications_for_plan(plan_id)

    def pending_modifications(self):
        return self.repository.pending_modifications()

    def modifications_for_customer(self, customer_id):
        return self.repository.modifications_for_customer(customer_id)
