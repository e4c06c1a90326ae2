"""
Invoice and payment views.

Invoices are scoped through their patient.  Paid invoices are immutable:
updates and deletes answer 409.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes

from practice.models import Invoice, Patient, Visit
from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.billing import (
    InvoiceCreateSerializer,
    InvoiceListQuerySerializer,
    InvoiceUpdateSerializer,
    MarkPaidSerializer,
    PaymentSerializer,
    StatsQuerySerializer,
)
from practice.services import billing
from practice.services.audit import log_action
from practice.services.email import format_email_log
from practice.services.scope import ensure_patient_access


def load_invoice(user, pk) -> Invoice:
    invoice = get_object(Invoice.objects.select_related('patient', 'visit', 'visit__dietitian'), pk, 'Invoice')
    ensure_patient_access(user, invoice.patient)
    return invoice


@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, method_permissions(GET='billing.read', POST='billing.create')])
def invoices_view(request):
    if request.method == 'GET':
        q = InvoiceListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        qs = billing.list_invoices(request.user, patient_id=vd.get('patientId'), status=vd.get('status'),
                                   start=vd.get('start'), end=vd.get('end'), q=vd.get('q'))
        return paginated(qs, vd, billing.format_invoice)

    s = InvoiceCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    patient = get_object(Patient.objects.all(), data.pop('patientId'), 'Patient')
    visit_id = data.pop('visitId', None)
    data['visit'] = get_object(Visit.objects.all(), visit_id, 'Visit') if visit_id else None
    invoice = billing.create_invoice(request.user, patient, data)
    log_action(user=request.user, action='CREATE', resource_type='invoice', resource_id=invoice.pk,
               changes={'invoiceNumber': invoice.invoice_number, 'total': invoice.total_amount}, request=request)
    return created(billing.format_invoice(invoice, detailed=True))


@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('billing.read')])
def invoice_stats_view(request):
    q = StatsQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return ok(billing.invoice_stats(request.user, start=q.validated_data.get('start'),
                                    end=q.validated_data.get('end')))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, method_permissions(GET='billing.read', PUT='billing.update',
                                                     DELETE='billing.delete')])
def invoice_detail_view(request, pk: int):
    invoice = load_invoice(request.user, pk)
    if request.method == 'GET':
        return ok(billing.format_invoice(invoice, detailed=True))

    if request.method == 'PUT':
        s = InvoiceUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        changes = billing.update_invoice(invoice, s.validated_data)
        if changes:
            log_action(user=request.user, action='UPDATE', resource_type='invoice', resource_id=invoice.pk,
                       changes=changes, request=request)
        return ok(billing.format_invoice(invoice, detailed=True))

    number = invoice.invoice_number
    billing.delete_invoice(invoice)
    log_action(user=request.user, action='DELETE', resource_type='invoice', resource_id=pk,
               changes={'invoiceNumber': number}, request=request)
    return ok({'deleted': True})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('billing.update')])
def invoice_send_view(request, pk: int):
    invoice = load_invoice(request.user, pk)
    log = billing.send_invoice(request.user, invoice)
    log_action(user=request.user, action='SEND', resource_type='invoice', resource_id=invoice.pk,
               changes={'to': log.to_email, 'status': log.status}, request=request)
    return ok({'invoice': billing.format_invoice(invoice), 'email': format_email_log(log)})


@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, method_permissions(GET='billing.read', POST='billing.update')])
def invoice_payments_view(request, pk: int):
    invoice = load_invoice(request.user, pk)
    if request.method == 'GET':
        return ok([billing.format_payment(p) for p in invoice.payments.order_by('payment_date', 'id')])

    s = PaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    payment = billing.record_payment(request.user, invoice, **s.validated_data)
    log_action(user=request.user, action='PAYMENT', resource_type='invoice', resource_id=invoice.pk,
               changes={'amount': payment.amount, 'status': invoice.status}, request=request)
    return created({'payment': billing.format_payment(payment), 'invoice': billing.format_invoice(invoice)})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('billing.update')])
def invoice_mark_paid_view(request, pk: int):
    invoice = load_invoice(request.user, pk)
    s = MarkPaidSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    billing.mark_paid(request.user, invoice, **s.validated_data)
    log_action(user=request.user, action='MARK_PAID', resource_type='invoice', resource_id=invoice.pk,
               request=request)
    return ok(billing.format_invoice(invoice, detailed=True))
