from datetime import date, timedelta

import pytest
from django.core import mail
from django.urls import reverse
from django.utils import timezone

from practice.models import EmailLog, Invoice, Patient
from practice.services import billing

pytestmark = pytest.mark.django_db


@pytest.fixture
def invoice(dietitian, patient):
    return billing.create_invoice(dietitian, patient, {
        'service_description': 'Initial consultation', 'amount': '60.00', 'tax_amount': '12.00',
    })


def test_create_invoice(client_for, dietitian, patient, visit):
    r = client_for(dietitian).post(reverse('invoices_view'), {
        'patientId': patient.pk, 'visitId': visit.pk, 'serviceDescription': 'Follow-up',
        'amount': '45.50', 'taxAmount': '4.55', 'invoiceDate': '2024-03-01',
    }, format='json')
    assert r.status_code == 201
    data = r.data['data']
    assert data['invoiceNumber'] == 'INV-2024-000001'
    assert data['totalAmount'] == '50.05'
    assert data['amountDue'] == '50.05'
    assert data['status'] == Invoice.DRAFT
    assert data['dueDate'] == '2024-03-31'
    assert data['payments'] == []


def test_numbers_follow_a_yearly_sequence(dietitian, patient):
    def make(day):
        return billing.create_invoice(dietitian, patient, {
            'service_description': 'x', 'amount': '10', 'invoice_date': day,
        }).invoice_number
    assert make(date(2024, 1, 5)) == 'INV-2024-000001'
    assert make(date(2024, 2, 5)) == 'INV-2024-000002'
    assert make(date(2025, 1, 5)) == 'INV-2025-000001'


def test_visit_of_another_patient_is_rejected(client_for, admin_user, visit):
    other = Patient.objects.create(first_name='Luc', last_name='Bernard')
    r = client_for(admin_user).post(reverse('invoices_view'), {
        'patientId': other.pk, 'visitId': visit.pk, 'serviceDescription': 'x', 'amount': '10',
    }, format='json')
    assert r.status_code == 400


def test_due_date_before_invoice_date(client_for, dietitian, patient):
    r = client_for(dietitian).post(reverse('invoices_view'), {
        'patientId': patient.pk, 'serviceDescription': 'x', 'amount': '10',
        'invoiceDate': '2024-03-10', 'dueDate': '2024-03-01',
    }, format='json')
    assert r.status_code == 400


def test_partial_then_full_payment(client_for, dietitian, invoice):
    client = client_for(dietitian)
    url = reverse('invoice_payments_view', args=[invoice.pk])
    r = client.post(url, {'amount': '30.00', 'paymentMethod': 'CARD'}, format='json')
    assert r.status_code == 201
    assert r.data['data']['invoice']['status'] == Invoice.PARTIAL
    assert r.data['data']['invoice']['amountDue'] == '42.00'

    over = client.post(url, {'amount': '50.00'}, format='json')
    assert over.status_code == 400

    r = client.post(url, {'amount': '42.00', 'paymentMethod': 'CASH'}, format='json')
    invoice.refresh_from_db()
    assert invoice.status == Invoice.PAID
    assert invoice.payment_method == 'CASH'
    assert len(client.get(url).data['data']) == 2

    again = client.post(url, {'amount': '1.00'}, format='json')
    assert again.status_code == 400


def test_paid_invoices_are_locked(client_for, admin_user, dietitian, invoice):
    client_for(dietitian).post(reverse('invoice_mark_paid_view', args=[invoice.pk]), {'paymentMethod': 'CHECK'},
                               format='json')
    invoice.refresh_from_db()
    assert invoice.status == Invoice.PAID
    assert invoice.amount_paid == invoice.total_amount

    admin = client_for(admin_user)
    r = admin.put(reverse('invoice_detail_view', args=[invoice.pk]), {'notes': 'late'}, format='json')
    assert r.status_code == 409
    r = admin.delete(reverse('invoice_detail_view', args=[invoice.pk]))
    assert r.status_code == 409
    assert r.data['error']['code'] == 'conflict'


def test_update_recomputes_total(client_for, dietitian, invoice):
    r = client_for(dietitian).put(reverse('invoice_detail_view', args=[invoice.pk]),
                                  {'amount': '80.00', 'status': 'SENT'}, format='json')
    assert r.status_code == 200
    assert r.data['data']['totalAmount'] == '92.00'
    assert r.data['data']['status'] == Invoice.SENT
    r = client_for(dietitian).put(reverse('invoice_detail_view', args=[invoice.pk]), {'status': 'PAID'},
                                  format='json')
    assert r.status_code == 400


def test_delete_needs_billing_delete(client_for, admin_user, dietitian, invoice):
    assert client_for(dietitian).delete(reverse('invoice_detail_view', args=[invoice.pk])).status_code == 403
    assert client_for(admin_user).delete(reverse('invoice_detail_view', args=[invoice.pk])).status_code == 200
    assert not Invoice.objects.exists()


def test_send_invoice(client_for, dietitian, invoice):
    r = client_for(dietitian).post(reverse('invoice_send_view', args=[invoice.pk]))
    assert r.status_code == 200
    assert r.data['data']['invoice']['status'] == Invoice.SENT
    assert r.data['data']['email']['status'] == EmailLog.SENT
    assert len(mail.outbox) == 1
    assert mail.outbox[0].to == ['marie@example.com']
    assert invoice.invoice_number in mail.outbox[0].subject


def test_send_without_email(client_for, dietitian, invoice):
    Patient.objects.filter(pk=invoice.patient_id).update(email='')
    r = client_for(dietitian).post(reverse('invoice_send_view', args=[invoice.pk]))
    assert r.status_code == 400
    assert len(mail.outbox) == 0


def test_other_dietitian_cannot_see_invoice(client_for, other_dietitian, invoice):
    assert client_for(other_dietitian).get(reverse('invoice_detail_view', args=[invoice.pk])).status_code == 403
    assert client_for(other_dietitian).get(reverse('invoices_view')).data['pagination']['total'] == 0


def test_stats_and_overdue(client_for, dietitian, patient, invoice):
    old = billing.create_invoice(dietitian, patient, {
        'service_description': 'Old', 'amount': '40.00',
        'invoice_date': timezone.localdate() - timedelta(days=60),
    })
    old.status = Invoice.SENT
    old.save()
    billing.record_payment(dietitian, invoice, amount='20.00')

    assert billing.mark_overdue() == 1
    old.refresh_from_db()
    assert old.status == Invoice.OVERDUE

    stats = client_for(dietitian).get(reverse('invoice_stats_view')).data['data']
    assert stats['count'] == 2
    assert stats['totalInvoiced'] == '112.00'
    assert stats['totalPaid'] == '20.00'
    assert stats['totalOutstanding'] == '92.00'
    assert stats['overdueCount'] == 1
    assert stats['byStatus'][Invoice.PARTIAL]['count'] == 1
    assert stats['byStatus'][Invoice.PARTIAL]['total'] == '72.00'


def test_lowering_total_to_amount_paid_settles_invoice(client_for, dietitian, invoice):
    client = client_for(dietitian)
    client.post(reverse('invoice_payments_view', args=[invoice.pk]), {'amount': '60.00', 'paymentMethod': 'CARD'},
                format='json')
    r = client.put(reverse('invoice_detail_view', args=[invoice.pk]), {'taxAmount': '0.00'}, format='json')
    assert r.status_code == 200
    assert r.data['data']['amountDue'] == '0.00'
    assert r.data['data']['status'] == Invoice.PAID
    assert r.data['data']['paymentMethod'] == 'CARD'

    r = client.put(reverse('invoice_detail_view', args=[invoice.pk]), {'notes': 'x'}, format='json')
    assert r.status_code == 409
