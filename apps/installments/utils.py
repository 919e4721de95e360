from collections import namedtuple
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
import logging

from dateutil.relativedelta import relativedelta
from django.utils import timezone

from .exceptions import (
    InstallmentValidationError,
    InvalidPrincipalError,
    InvalidTermError,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
HUNDRED = Decimal('100')
ZERO = Decimal('0.00')

ScheduleLine = namedtuple(
    'ScheduleLine',
    ['installment_number', 'due_date', 'amount_due', 'principal_component', 'interest_component']
)


def to_decimal(value):
    """Convert ints, floats, strings and Decimals to Decimal without float noise"""
    if value is None or isinstance(value, bool):
        raise InstallmentValidationError(f"Invalid numeric value: {value!r}")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise InstallmentValidationError(f"Invalid numeric value: {value!r}")
    if not value.is_finite():
        raise InstallmentValidationError(f"Invalid numeric value: {value!r}")
    return value


def to_payment_timestamp(value=None):
    """Timezone-aware moment of a payment; plain dates are taken as the start of that day"""
    if value is None:
        return timezone.now()
    if isinstance(value, datetime):
        return value if timezone.is_aware(value) else timezone.make_aware(value)
    if isinstance(value, date):
        return timezone.make_aware(datetime.combine(value, time.min))
    raise InstallmentValidationError(f"Invalid payment date: {value!r}", field='payment_date')


def quantize_currency(value):
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def add_months(start_date, months):
    """Calendar month arithmetic, clamps to the last day of shorter months"""
    return start_date + relativedelta(months=months)


def _validated_terms(principal, months):
    if not isinstance(months, int) or isinstance(months, bool) or months <= 0:
        raise InvalidTermError(months=months)

    principal = quantize_currency(principal)
    if principal <= 0:
        raise InvalidPrincipalError(
            "Financed amount must be greater than 0, down payment cannot meet or exceed the price",
            principal=str(principal),
        )
    return principal


def calculate_total_payable(principal, annual_rate):
    """Add-on interest: the annual rate is charged once on the financed amount"""
    principal = to_decimal(principal)
    annual_rate = to_decimal(annual_rate)
    return quantize_currency(principal + principal * annual_rate / HUNDRED)


def calculate_installment_amount(principal, annual_rate, months):
    """Per-period amount of an add-on interest schedule, rounded half-up to cents"""
    principal = _validated_terms(principal, months)
    total_payable = calculate_total_payable(principal, annual_rate)
    return quantize_currency(total_payable / Decimal(months))


def generate_schedule(principal, annual_rate, months, start_date, first_due_date=None, first_number=1):
    """
    Generate a payment schedule of ``months`` lines.

    Due dates are ``start_date + k`` calendar months for k = 1..months. When
    ``first_due_date`` is given (re-amortizing an existing plan) the first line
    falls on that date and later lines follow monthly from it.

    The last line absorbs the rounding remainder so the amounts sum exactly to
    the rounded total payable.
    """
    principal = _validated_terms(principal, months)
    total_payable = calculate_total_payable(principal, annual_rate)
    amount = quantize_currency(total_payable / Decimal(months))
    principal_share = quantize_currency(principal / Decimal(months))

    remaining_total = total_payable
    remaining_principal = principal
    schedule = []

    for period in range(1, months + 1):
        if first_due_date is None:
            due_date = add_months(start_date, period)
        else:
            due_date = add_months(first_due_date, period - 1)

        if period == months:
            amount_due = remaining_total
            principal_component = remaining_principal
        else:
            amount_due = amount
            principal_component = principal_share

        if amount_due <= 0:
            raise InvalidTermError(
                "Financed amount is too small for the requested number of installments",
                months=months,
                principal=str(principal),
            )

        schedule.append(ScheduleLine(
            installment_number=first_number + period - 1,
            due_date=due_date,
            amount_due=amount_due,
            principal_component=principal_component,
            interest_component=amount_due - principal_component,
        ))
        remaining_total -= amount_due
        remaining_principal -= principal_component

    logger.debug(
        f"Generated {months} installments totalling {total_payable} "
        f"for principal {principal} at {annual_rate}%"
    )
    return schedule
