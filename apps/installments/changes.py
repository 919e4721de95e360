"""
Typed payloads for installment plan modifications.

Each modification type carries exactly one kind of payload. Payloads are
stored on the modification record as JSON and rebuilt through
``change_from_payload``.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Tuple

from .exceptions import (
    InstallmentValidationError,
    InvalidModificationTypeError,
    InvalidTermError,
)
from .utils import quantize_currency, to_decimal

CHANGE_INSTALLMENT_COUNT = 'change_installment_count'
CHANGE_INTEREST_RATE = 'change_interest_rate'
ADD_PRODUCTS = 'add_products'
CHANGE_DOWN_PAYMENT = 'change_down_payment'

MODIFICATION_TYPE_CHOICES = [
    (CHANGE_INSTALLMENT_COUNT, 'Change installment count'),
    (CHANGE_INTEREST_RATE, 'Change interest rate'),
    (ADD_PRODUCTS, 'Add products'),
    (CHANGE_DOWN_PAYMENT, 'Change down payment'),
]

# Payload field each modification type requires
REQUIRED_FIELDS = {
    CHANGE_INSTALLMENT_COUNT: 'new_installment_count',
    CHANGE_INTEREST_RATE: 'new_interest_rate',
    ADD_PRODUCTS: 'additional_products',
    CHANGE_DOWN_PAYMENT: 'additional_down_payment',
}


def _require(payload, field):
    value = payload.get(field)
    if value is None or value == [] or value == '':
        raise InstallmentValidationError(f"'{field}' is required for this modification type", field=field)
    return value


def _to_int(value, field):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InstallmentValidationError(f"'{field}' must be a whole number", field=field, value=str(value))



@dataclass(frozen=True)
class ProductLine:
    product_id: str
    name: str
    price: Decimal
    quantity: int
    category: str = ''
    description: str = ''

    def __post_init__(self):
        if to_decimal(self.price) <= 0:
            raise InstallmentValidationError("Price must be greater than 0", product_id=self.product_id)
        if not isinstance(self.quantity, int) or self.quantity < 1:
            raise InstallmentValidationError("Quantity must be at least 1", product_id=self.product_id)

    @property
    def line_total(self):
        return quantize_currency(to_decimal(self.price) * self.quantity)

    @classmethod
    def from_dict(cls, data):
        try:
            return cls(
                product_id=str(data['product_id']),
                name=data.get('name') or '',
                price=quantize_currency(data['price']),
                quantity=_to_int(data.get('quantity', 1), 'quantity'),
                category=data.get('category') or '',
                description=data.get('description') or '',
            )
        except KeyError as e:
            raise InstallmentValidationError(f"Product line is missing '{e.args[0]}'")

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'name': self.name,
            'price': str(self.price),
            'quantity': self.quantity,
            'category': self.category,
            'description': self.description,
        }


@dataclass(frozen=True)
class InstallmentCountChange:
    modification_type: ClassVar[str] = CHANGE_INSTALLMENT_COUNT
    new_installment_count: int

    def __post_init__(self):
        count = self.new_installment_count
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            raise InvalidTermError(new_installment_count=count)

    @classmethod
    def from_payload(cls, payload):
        count = _require(payload, 'new_installment_count')
        return cls(new_installment_count=_to_int(count, 'new_installment_count'))

    def to_payload(self):
        return {'new_installment_count': self.new_installment_count}


@dataclass(frozen=True)
class InterestRateChange:
    modification_type: ClassVar[str] = CHANGE_INTEREST_RATE
    new_interest_rate: Decimal

    def __post_init__(self):
        if not 0 <= to_decimal(self.new_interest_rate) <= 100:
            raise InstallmentValidationError(
                "Interest rate must be between 0 and 100",
                new_interest_rate=str(self.new_interest_rate),
            )

    @classmethod
    def from_payload(cls, payload):
        return cls(new_interest_rate=to_decimal(_require(payload, 'new_interest_rate')))

    def to_payload(self):
        return {'new_interest_rate': str(self.new_interest_rate)}


@dataclass(frozen=True)
class ProductAddition:
    modification_type: ClassVar[str] = ADD_PRODUCTS
    products: Tuple[ProductLine, ...]

    def __post_init__(self):
        if not self.products:
            raise InstallmentValidationError("At least one product is required")

    @property
    def added_total(self):
        return sum((product.line_total for product in self.products), Decimal('0.00'))

    @classmethod
    def from_payload(cls, payload):
        products = _require(payload, 'additional_products')
        return cls(products=tuple(
            product if isinstance(product, ProductLine) else ProductLine.from_dict(product)
            for product in products
        ))

    def to_payload(self):
        return {'additional_products': [product.to_dict() for product in self.products]}


@dataclass(frozen=True)
class DownPaymentChange:
    modification_type: ClassVar[str] = CHANGE_DOWN_PAYMENT
    additional_down_payment: Decimal

    def __post_init__(self):
        if to_decimal(self.additional_down_payment) <= 0:
            raise InstallmentValidationError(
                "Additional down payment must be greater than 0",
                additional_down_payment=str(self.additional_down_payment),
            )

    @classmethod
    def from_payload(cls, payload):
        return cls(additional_down_payment=quantize_currency(_require(payload, 'additional_down_payment')))

    def to_payload(self):
        return {'additional_down_payment': str(self.additional_down_payment)}


CHANGE_TYPES = {
    change_class.modification_type: change_class
    for change_class in (InstallmentCountChange, InterestRateChange, ProductAddition, DownPaymentChange)
}


def change_from_payload(modification_type, payload):
    """Build the typed change for ``modification_type`` from a stored or validated payload"""
    try:
        change_class = CHANGE_TYPES[modification_type]
    except (KeyError, TypeError):
        raise InvalidModificationTypeError(modification_type=modification_type)
    return change_class.from_payload(payload or {})
