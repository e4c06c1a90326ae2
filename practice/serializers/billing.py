from decimal import Decimal

from rest_framework import serializers

from practice.models import Invoice, Payment
from practice.serializers.common import CleanCharField, PageQuerySerializer

MONEY = {'max_digits': 10, 'decimal_places': 2}


class InvoiceListQuerySerializer(PageQuerySerializer):
    patientId = serializers.IntegerField(required=False)
    status = serializers.ChoiceField(choices=[c for c, _ in Invoice.STATUS_CHOICES], required=False)
    start = serializers.DateField(required=False)
    end = serializers.DateField(required=False)
    q = serializers.CharField(required=False, allow_blank=True)


class StatsQuerySerializer(serializers.Serializer):
    start = serializers.DateField(required=False)
    end = serializers.DateField(required=False)


class InvoiceCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    visitId = serializers.IntegerField(required=False, allow_null=True)
    serviceDescription = CleanCharField(source='service_description', max_length=255)
    amount = serializers.DecimalField(min_value=Decimal('0.01'), **MONEY)
    taxAmount = serializers.DecimalField(source='tax_amount', required=False, min_value=Decimal('0'), **MONEY)
    invoiceDate = serializers.DateField(source='invoice_date', required=False)
    dueDate = serializers.DateField(source='due_date', required=False)
    notes = CleanCharField(required=False, allow_blank=True)


class InvoiceUpdateSerializer(serializers.Serializer):
    serviceDescription = CleanCharField(source='service_description', required=False, max_length=255)
    amount = serializers.DecimalField(required=False, min_value=Decimal('0.01'), **MONEY)
    taxAmount = serializers.DecimalField(source='tax_amount', required=False, min_value=Decimal('0'), **MONEY)
    dueDate = serializers.DateField(source='due_date', required=False)
    notes = CleanCharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=[c for c, _ in Invoice.STATUS_CHOICES], required=False)


class PaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(min_value=Decimal('0.01'), **MONEY)
    paymentMethod = serializers.ChoiceField(source='payment_method', choices=[c for c, _ in Payment.METHOD_CHOICES],
                                            required=False, default='OTHER')
    paymentDate = serializers.DateField(source='payment_date', required=False)
    reference = CleanCharField(required=False, allow_blank=True, max_length=100, default='')


class MarkPaidSerializer(serializers.Serializer):
    paymentMethod = serializers.ChoiceField(source='payment_method', choices=[c for c, _ in Payment.METHOD_CHOICES],
                                            required=False, default='OTHER')
    paymentDate = serializers.DateField(source='payment_date', required=False)
