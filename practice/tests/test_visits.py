from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone

from practice.models import MeasureDefinition, Patient, PatientDietitian, PatientMeasure, Visit
from practice.services import measures as measure_service

pytestmark = pytest.mark.django_db


def iso(dt):
    return dt.isoformat()


def test_create_visit_defaults_to_current_dietitian(client_for, dietitian, patient):
    when = timezone.now() + timedelta(days=2)
    r = client_for(dietitian).post(reverse('visits_view'), {
        'patientId': patient.pk, 'visitDate': iso(when), 'visitType': 'Initial', 'durationMinutes': 45,
    }, format='json')
    assert r.status_code == 201
    data = r.data['data']
    assert data['dietitianId'] == dietitian.pk
    assert data['status'] == Visit.SCHEDULED
    assert data['measures'] == []


def test_create_visit_for_unlinked_patient_is_403(client_for, other_dietitian, patient):
    r = client_for(other_dietitian).post(reverse('visits_view'), {
        'patientId': patient.pk, 'visitDate': iso(timezone.now()),
    }, format='json')
    assert r.status_code == 403


def test_inactive_patient_cannot_be_booked(client_for, admin_user, patient):
    patient.is_active = False
    patient.save()
    r = client_for(admin_user).post(reverse('visits_view'), {
        'patientId': patient.pk, 'visitDate': iso(timezone.now()),
    }, format='json')
    assert r.status_code == 400


def test_next_visit_must_follow(client_for, dietitian, patient):
    now = timezone.now()
    r = client_for(dietitian).post(reverse('visits_view'), {
        'patientId': patient.pk, 'visitDate': iso(now), 'nextVisitDate': iso(now - timedelta(days=1)),
    }, format='json')
    assert r.status_code == 400
    assert 'nextVisitDate' in r.data['error']['details']


def test_assistant_must_name_a_dietitian_or_leaves_it_empty(client_for, assistant, dietitian, patient, viewer):
    client = client_for(assistant)
    r = client.post(reverse('visits_view'), {'patientId': patient.pk, 'visitDate': iso(timezone.now())},
                    format='json')
    assert r.data['data']['dietitianId'] is None
    r = client.post(reverse('visits_view'), {'patientId': patient.pk, 'visitDate': iso(timezone.now()),
                                             'dietitianId': viewer.pk}, format='json')
    assert r.status_code == 400
    r = client.post(reverse('visits_view'), {'patientId': patient.pk, 'visitDate': iso(timezone.now()),
                                             'dietitianId': dietitian.pk}, format='json')
    assert r.data['data']['dietitianId'] == dietitian.pk


def test_list_is_scoped_and_filtered(client_for, dietitian, other_dietitian, patient, visit):
    foreign = Patient.objects.create(first_name='Luc', last_name='Bernard')
    PatientDietitian.objects.create(patient=foreign, dietitian=other_dietitian)
    Visit.objects.create(patient=foreign, dietitian=other_dietitian, visit_date=timezone.now())

    client = client_for(dietitian)
    r = client.get(reverse('visits_view'))
    assert [v['id'] for v in r.data['data']] == [visit.pk]
    assert client.get(reverse('visits_view'), {'status': 'COMPLETED'}).data['pagination']['total'] == 0
    assert client.get(reverse('visits_view'), {'status': 'bogus'}).status_code == 400


def test_upcoming(client_for, dietitian, patient, visit):
    soon = Visit.objects.create(patient=patient, dietitian=dietitian, visit_date=timezone.now() + timedelta(days=3))
    Visit.objects.create(patient=patient, dietitian=dietitian, visit_date=timezone.now() + timedelta(days=30))
    r = client_for(dietitian).get(reverse('upcoming_visits_view'))
    assert [v['id'] for v in r.data['data']] == [soon.pk]
    r = client_for(dietitian).get(reverse('upcoming_visits_view'), {'days': 60})
    assert len(r.data['data']) == 2


def test_rescheduling_clears_reminder(client_for, dietitian, visit):
    visit.reminder_sent_at = timezone.now()
    visit.save()
    r = client_for(dietitian).put(reverse('visit_detail_view', args=[visit.pk]),
                                  {'visitDate': iso(timezone.now() + timedelta(days=5))}, format='json')
    assert r.status_code == 200
    visit.refresh_from_db()
    assert visit.reminder_sent_at is None


def test_complete_with_measures(client_for, dietitian, visit):
    measure_service.ensure_default_measures()
    weight = MeasureDefinition.objects.get(name='weight')
    height = MeasureDefinition.objects.get(name='height')
    r = client_for(dietitian).post(reverse('visit_complete_view', args=[visit.pk]), {
        'notes': 'Good session',
        'measures': [{'measureId': height.pk, 'value': 175}, {'measureId': weight.pk, 'value': 70}],
    }, format='json')
    assert r.status_code == 200
    data = r.data['data']
    assert data['status'] == Visit.COMPLETED
    assert {m['measureName']: m['value'] for m in data['measures']} == {'bmi': 22.9, 'height': 175.0, 'weight': 70.0}
    assert PatientMeasure.objects.filter(visit=visit, measured_at=visit.visit_date).count() == 3


def test_complete_rolls_back_on_bad_measure(client_for, dietitian, visit):
    r = client_for(dietitian).post(reverse('visit_complete_view', args=[visit.pk]), {
        'measures': [{'measureId': 999, 'value': 1}],
    }, format='json')
    assert r.status_code == 400
    visit.refresh_from_db()
    assert visit.status == Visit.SCHEDULED


def test_cancelled_visit_cannot_be_completed(client_for, dietitian, visit):
    visit.status = Visit.CANCELLED
    visit.save()
    r = client_for(dietitian).post(reverse('visit_complete_view', args=[visit.pk]), {}, format='json')
    assert r.status_code == 400


def test_delete_visit(client_for, dietitian, assistant, visit):
    assert client_for(assistant).delete(reverse('visit_detail_view', args=[visit.pk])).status_code == 403
    assert client_for(dietitian).delete(reverse('visit_detail_view', args=[visit.pk])).status_code == 200
    assert not Visit.objects.filter(pk=visit.pk).exists()
