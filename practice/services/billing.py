"""
Invoices and payments.

Invoice numbers are ``INV-<year>-<6-digit sequence>``, the sequence
restarting every year.  ``total_amount`` is always ``amount + tax_amount``;
``amount_paid`` accumulates recorded payments and drives the PARTIAL/PAID
status.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q, Sum
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from practice.exceptions import Conflict
from practice.models import Invoice, Payment
from practice.services.email import send_templated
from practice.services.scope import ensure_patient_access, scoped_by_patient

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
DEFAULT_TERMS_DAYS = 30
OPEN_STATUSES = (Invoice.SENT, Invoice.PARTIAL, Invoice.OVERDUE)


def _money(value) -> Decimal:
    return Decimal(value).quantize(Decimal('0.01'))


def format_invoice(invoice: Invoice, *, detailed: bool = False) -> dict:
    data = {
        'id': invoice.id,
        'invoiceNumber': invoice.invoice_number,
        'patientId': invoice.patient_id,
        'patientName': invoice.patient.full_name,
        'visitId': invoice.visit_id,
        'serviceDescription': invoice.service_description,
        'amount': str(invoice.amount),
        'taxAmount': str(invoice.tax_amount),
        'totalAmount': str(invoice.total_amount),
        'amountPaid': str(invoice.amount_paid),
        'amountDue': str(invoice.amount_due),
        'status': invoice.status,
        'invoiceDate': invoice.invoice_date.isoformat() if invoice.invoice_date else None,
        'dueDate': invoice.due_date.isoformat() if invoice.due_date else None,
        'paymentMethod': invoice.payment_method or None,
        'paymentDate': invoice.payment_date.isoformat() if invoice.payment_date else None,
        'createdAt': invoice.created_at.isoformat() if invoice.created_at else None,
    }
    if detailed:
        data['notes'] = invoice.notes
        data['payments'] = [format_payment(p) for p in invoice.payments.order_by('payment_date', 'id')]
    return data


def format_payment(payment: Payment) -> dict:
    return {
        'id': payment.id,
        'invoiceId': payment.invoice_id,
        'amount': str(payment.amount),
        'paymentMethod': payment.payment_method,
        'paymentDate': payment.payment_date.isoformat() if payment.payment_date else None,
        'reference': payment.reference,
        'recordedBy': payment.recorded_by_id,
    }


def next_invoice_number(year: int | None = None) -> str:
    year = year or timezone.localdate().year
    prefix = f"INV-{year}-"
    last = (Invoice.objects.filter(invoice_number__startswith=prefix)
            .order_by('-invoice_number').values_list('invoice_number', flat=True).first())
    sequence = int(last.rsplit('-', 1)[1]) + 1 if last else 1
    return f"{prefix}{sequence:06d}"


def list_invoices(user, *, patient_id=None, status=None, start=None, end=None, q=None):
    qs = scoped_by_patient(user, Invoice.objects.select_related('patient'))
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if status:
        qs = qs.filter(status=status)
    if start:
        qs = qs.filter(invoice_date__gte=start)
    if end:
        qs = qs.filter(invoice_date__lte=end)
    if q:
        qs = qs.filter(Q(invoice_number__icontains=q) | Q(service_description__icontains=q)
                       | Q(patient__last_name__icontains=q))
    return qs.order_by('-invoice_date', '-id')


def create_invoice(user, patient, data: dict) -> Invoice:
    ensure_patient_access(user, patient)
    visit = data.get('visit')
    if visit is not None and visit.patient_id != patient.pk:
        raise ValidationError({'visitId': 'Visit belongs to another patient'})
    amount = _money(data['amount'])
    tax = _money(data.get('tax_amount') or ZERO)
    invoice_date = data.get('invoice_date') or timezone.localdate()
    due_date = data.get('due_date') or invoice_date + timedelta(days=DEFAULT_TERMS_DAYS)
    if due_date < invoice_date:
        raise ValidationError({'dueDate': 'Due date cannot be before the invoice date'})

    for attempt in range(3):
        try:
            with transaction.atomic():
                invoice = Invoice.objects.create(
                    invoice_number=next_invoice_number(invoice_date.year),
                    patient=patient,
                    visit=visit,
                    service_description=data['service_description'],
                    amount=amount,
                    tax_amount=tax,
                    total_amount=amount + tax,
                    invoice_date=invoice_date,
                    due_date=due_date,
                    notes=data.get('notes') or '',
                    created_by=user,
                )
            break
        except IntegrityError:
            if attempt == 2:
                raise
            logger.info('Invoice number collision, retrying')
    logger.info('Invoice %s created for patient %s', invoice.invoice_number, patient.pk)
    return invoice


def update_invoice(invoice: Invoice, data: dict) -> dict:
    if invoice.status == Invoice.PAID:
        raise Conflict('Paid invoices cannot be modified')
    changes = {}
    for field in ('service_description', 'notes', 'due_date'):
        if data.get(field) is not None and getattr(invoice, field) != data[field]:
            changes[field] = [getattr(invoice, field), data[field]]
            setattr(invoice, field, data[field])
    for field in ('amount', 'tax_amount'):
        if data.get(field) is not None and getattr(invoice, field) != _money(data[field]):
            changes[field] = [getattr(invoice, field), _money(data[field])]
            setattr(invoice, field, _money(data[field]))
    invoice.total_amount = invoice.amount + invoice.tax_amount
    if invoice.total_amount < invoice.amount_paid:
        raise ValidationError({'amount': 'Total cannot be lower than the amount already paid'})
    status = data.get('status')
    if status and status != invoice.status:
        if status not in (Invoice.DRAFT, Invoice.SENT, Invoice.CANCELLED):
            raise ValidationError({'status': 'Use the payment endpoints to mark invoices paid'})
        if status == Invoice.CANCELLED and invoice.amount_paid > ZERO:
            raise Conflict('Invoices with payments cannot be cancelled')
        changes['status'] = [invoice.status, status]
        invoice.status = status
    if invoice.due_date < invoice.invoice_date:
        raise ValidationError({'dueDate': 'Due date cannot be before the invoice date'})
    if invoice.status != Invoice.CANCELLED and ZERO < invoice.total_amount <= invoice.amount_paid:
        # lowering the total down to what was already paid settles the invoice
        last = invoice.payments.order_by('-payment_date', '-id').first()
        changes['status'] = [invoice.status, Invoice.PAID]
        invoice.status = Invoice.PAID
        invoice.payment_method = last.payment_method if last else 'OTHER'
        invoice.payment_date = last.payment_date if last else timezone.localdate()
    if changes:
        invoice.save()
    return changes


def delete_invoice(invoice: Invoice) -> None:
    if invoice.status == Invoice.PAID or invoice.amount_paid > ZERO:
        raise Conflict('Invoices with payments cannot be deleted')
    invoice.delete()


def record_payment(user, invoice: Invoice, *, amount, payment_method: str = 'OTHER', payment_date=None,
                   reference: str = '') -> Payment:
    if invoice.status == Invoice.CANCELLED:
        raise ValidationError({'invoice': 'Cannot pay a cancelled invoice'})
    if invoice.status == Invoice.PAID:
        raise ValidationError({'invoice': 'Invoice is already paid'})
    amount = _money(amount)
    if amount <= ZERO:
        raise ValidationError({'amount': 'Payment amount must be positive'})
    if amount > invoice.amount_due:
        raise ValidationError({'amount': f'Payment exceeds the amount due ({invoice.amount_due})'})
    payment_date = payment_date or timezone.localdate()
    with transaction.atomic():
        payment = Payment.objects.create(
            invoice=invoice, amount=amount, payment_method=payment_method, payment_date=payment_date,
            reference=reference or '', recorded_by=user,
        )
        Invoice.objects.filter(pk=invoice.pk).update(amount_paid=F('amount_paid') + amount)
        invoice.refresh_from_db(fields=['amount_paid'])
        if invoice.amount_due <= ZERO:
            invoice.status = Invoice.PAID
            invoice.payment_method = payment_method
            invoice.payment_date = payment_date
        else:
            invoice.status = Invoice.PARTIAL
        invoice.save(update_fields=['status', 'payment_method', 'payment_date', 'updated_at'])
    return payment


def mark_paid(user, invoice: Invoice, *, payment_method: str = 'OTHER', payment_date=None) -> Invoice:
    """Settle the remaining balance in one payment."""
    record_payment(user, invoice, amount=invoice.amount_due, payment_method=payment_method,
                   payment_date=payment_date, reference='mark-paid')
    return invoice


def send_invoice(user, invoice: Invoice):
    patient = invoice.patient
    if invoice.status == Invoice.CANCELLED:
        raise ValidationError({'invoice': 'Cannot send a cancelled invoice'})
    if not patient.email:
        raise ValidationError({'email': 'Patient has no e-mail address'})
    dietitian = invoice.visit.dietitian if invoice.visit and invoice.visit.dietitian else user
    log = send_templated(
        'invoice',
        {
            'patient_name': patient.full_name,
            'patient_first_name': patient.first_name,
            'dietitian_name': dietitian.get_display_name(),
            'practice_name': 'NutriVault',
            'invoice_number': invoice.invoice_number,
            'invoice_date': invoice.invoice_date.isoformat(),
            'due_date': invoice.due_date.isoformat(),
            'amount_total': str(invoice.total_amount),
            'amount_due': str(invoice.amount_due),
            'service_description': invoice.service_description,
        },
        to=patient.email,
        fallback={
            'subject': 'Invoice {{invoice_number}}',
            'body_text': 'Invoice {{invoice_number}}: {{amount_due}} due before {{due_date}}.',
        },
        patient=patient,
        invoice=invoice,
        sent_by=user,
    )
    if invoice.status == Invoice.DRAFT:
        invoice.status = Invoice.SENT
        invoice.save(update_fields=['status', 'updated_at'])
    return log


def invoice_stats(user, *, start=None, end=None) -> dict:
    qs = list_invoices(user, start=start, end=end).order_by()
    by_status = {row['status']: {'count': row['count'], 'total': str(_money(row['total'] or ZERO))}
                 for row in qs.values('status').annotate(count=Count('id'), total=Sum('total_amount'))}
    billable = qs.exclude(status=Invoice.CANCELLED)
    totals = billable.aggregate(invoiced=Sum('total_amount'), paid=Sum('amount_paid'))
    outstanding = qs.filter(status__in=OPEN_STATUSES).aggregate(
        total=Sum('total_amount'), paid=Sum('amount_paid'))
    return {
        'count': billable.count(),
        'byStatus': by_status,
        'totalInvoiced': str(_money(totals['invoiced'] or ZERO)),
        'totalPaid': str(_money(totals['paid'] or ZERO)),
        'totalOutstanding': str(_money((outstanding['total'] or ZERO) - (outstanding['paid'] or ZERO))),
        'overdueCount': qs.filter(status=Invoice.OVERDUE).count(),
    }


def mark_overdue(today=None) -> int:
    today = today or timezone.localdate()
    count = Invoice.objects.filter(status__in=(Invoice.SENT, Invoice.PARTIAL), due_date__lt=today) \
        .update(status=Invoice.OVERDUE, updated_at=timezone.now())
    if count:
        logger.info('Marked %d invoice(s) overdue', count)
    return count
