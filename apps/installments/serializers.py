from decimal import Decimal
import logging

from django.conf import settings
from rest_framework import serializers

from .changes import MODIFICATION_TYPE_CHOICES, REQUIRED_FIELDS
from .exceptions import InstallmentValidationError
from .models import InstallmentPayment, InstallmentPlan, InstallmentPlanModification, PlanProduct

logger = logging.getLogger(__name__)


def validate_payload(serializer_class, data):
    """Run an inbound serializer, raising InstallmentValidationError with the field errors"""
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        logger.warning(f"{serializer_class.__name__} rejected payload: {serializer.errors}")
        raise InstallmentValidationError("Invalid request payload", errors=serializer.errors)
    return serializer.validated_data


class ProductLineSerializer(serializers.Serializer):
    product_id = serializers.CharField(max_length=64)
    name = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    quantity = serializers.IntegerField(min_value=1, default=1)
    category = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')


class CreatePlanSerializer(serializers.Serializer):
    sale_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    customer_id = serializers.CharField(max_length=64)
    products = ProductLineSerializer(many=True, required=False)
    total_price = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0.01'), required=False
    )
    down_payment = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0'), default=Decimal('0.00')
    )
    number_of_installments = serializers.IntegerField(min_value=1, max_value=120)
    interest_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal('0'), max_value=Decimal('100'), required=False
    )
    start_date = serializers.DateField(required=False)

    def validate(self, attrs):
        if not attrs.get('products') and attrs.get('total_price') is None:
            raise serializers.ValidationError(
                {'total_price': "Total price is required when no products are given"}
            )
        if attrs.get('interest_rate') is None:
            attrs['interest_rate'] = Decimal(str(getattr(settings, 'DEFAULT_INTEREST_RATE', 0)))
        return attrs


class ModificationPreviewRequestSerializer(serializers.Serializer):
    plan_id = serializers.IntegerField()
    modification_type = serializers.ChoiceField(choices=MODIFICATION_TYPE_CHOICES)
    new_installment_count = serializers.IntegerField(min_value=1, required=False)
    new_interest_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal('0'), max_value=Decimal('100'), required=False
    )
    additional_products = ProductLineSerializer(many=True, required=False)
    additional_down_payment = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0.01'), required=False
    )

    def validate(self, attrs):
        field = REQUIRED_FIELDS[attrs['modification_type']]
        if attrs.get(field) in (None, [], ''):
            raise serializers.ValidationError({field: "This field is required for this modification type."})
        return attrs


class ModificationRequestSerializer(ModificationPreviewRequestSerializer):
    reason = serializers.CharField()
    requested_by = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')


class PlanProductSerializer(serializers.ModelSerializer):
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = PlanProduct
        fields = ['product_id', 'name', 'price', 'quantity', 'category', 'description', 'line_total']


class InstallmentPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = InstallmentPayment
        fields = [
            'installment_number', 'due_date', 'amount_due', 'amount_paid',
            'payment_date', 'status', 'principal_component', 'interest_component'
        ]


class PlanSnapshotSerializer(serializers.ModelSerializer):
    products = PlanProductSerializer(source='product_lines', many=True, read_only=True)
    payments = InstallmentPaymentSerializer(source='schedule', many=True, read_only=True)
    total_amount_with_interest = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    paid_installments = serializers.ReadOnlyField()
    pending_installments = serializers.ReadOnlyField()
    overdue_installments = serializers.ReadOnlyField()
    is_completed = serializers.ReadOnlyField()
    next_due_date = serializers.DateField(read_only=True)

    class Meta:
        model = InstallmentPlan
        fields = [
            'id', 'sale_id', 'customer_id', 'products', 'total_price', 'down_payment',
            'number_of_installments', 'installment_amount', 'interest_rate',
            'start_date', 'end_date', 'status', 'payments', 'total_paid', 'remaining_balance',
            'total_amount_with_interest', 'paid_installments', 'pending_installments',
            'overdue_installments', 'is_completed', 'next_due_date', 'version',
            'created_at', 'updated_at'
        ]


class PreviewLineSerializer(serializers.Serializer):
    installment_number = serializers.IntegerField()
    due_date = serializers.DateField()
    principal_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    interest_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    remaining_balance = serializers.DecimalField(max_digits=12, decimal_places=2)


class ModificationPreviewSerializer(serializers.Serializer):
    plan_id = serializers.IntegerField()
    modification_type = serializers.CharField()

    current_monthly_emi = serializers.DecimalField(max_digits=12, decimal_places=2)
    current_remaining_balance = serializers.DecimalField(max_digits=12, decimal_places=2)
    current_remaining_installments = serializers.IntegerField()
    current_end_date = serializers.DateField(allow_null=True)
    current_total_payable = serializers.DecimalField(max_digits=12, decimal_places=2)

    new_monthly_emi = serializers.DecimalField(max_digits=12, decimal_places=2)
    new_remaining_balance = serializers.DecimalField(max_digits=12, decimal_places=2)
    new_remaining_installments = serializers.IntegerField()
    new_end_date = serializers.DateField(allow_null=True)
    new_total_payable = serializers.DecimalField(max_digits=12, decimal_places=2)

    emi_difference = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_payable_difference = serializers.DecimalField(max_digits=12, decimal_places=2)
    time_difference_months = serializers.IntegerField()
    is_financially_beneficial = serializers.BooleanField()
    recommendation_note = serializers.CharField()
    new_payment_schedule = PreviewLineSerializer(many=True)


class ModificationSerializer(serializers.ModelSerializer):
    plan_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = InstallmentPlanModification
        fields = [
            'id', 'plan_id', 'modification_type', 'reason', 'requested_by', 'details',
            'financial_impact', 'status', 'approved_by', 'approval_notes', 'rejected_by',
            'rejection_reason', 'approved_at', 'rejected_at', 'applied_at',
            'created_at', 'updated_at'
        ]
