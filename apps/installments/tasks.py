from datetime import date
import logging

from celery import shared_task

from .services import PlanLifecycleService

logger = logging.getLogger(__name__)


@shared_task
def sweep_overdue_plans(as_of=None):
    """
    Periodic sweep marking past-due pending installments as overdue

    ``as_of`` is an ISO date string so the task stays JSON serializable;
    it defaults to today.
    """
    as_of_date = date.fromisoformat(as_of) if as_of else None
    result = PlanLifecycleService().sweep_overdue(as_of_date)

    if result['failed_plan_ids']:
        logger.error(
            f"Overdue sweep finished with {len(result['failed_plan_ids'])} failed plans: "
            f"{result['failed_plan_ids']}"
        )
    else:
        logger.info(f"Overdue sweep finished: {result['installments_marked']} installments marked")
    return result
