from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone

from practice.models import MeasureDefinition, PatientMeasure
from practice.services import measures as measure_service

pytestmark = pytest.mark.django_db


@pytest.fixture
def defaults(db):
    measure_service.ensure_default_measures()
    return {d.name: d for d in MeasureDefinition.objects.all()}


def log(client, patient, definition, value, at):
    return client.post(reverse('patient_measures_view'), {
        'patientId': patient.pk, 'measureId': definition.pk, 'value': value, 'measuredAt': at.isoformat(),
    }, format='json')


def bmi_values(patient):
    return [float(m.numeric_value) for m in
            PatientMeasure.objects.filter(patient=patient, definition__name='bmi').order_by('measured_at')]


def test_defaults_are_idempotent(defaults):
    assert measure_service.ensure_default_measures() == 0
    assert defaults['bmi'].dependencies == ['weight', 'height']


def test_logging_weight_computes_bmi(client_for, dietitian, patient, defaults):
    client = client_for(dietitian)
    at = timezone.now() - timedelta(hours=1)
    assert log(client, patient, defaults['height'], 175, at).status_code == 201
    assert bmi_values(patient) == []

    r = log(client, patient, defaults['weight'], 70, at)
    assert r.status_code == 201
    assert r.data['data']['value'] == 70.0
    assert bmi_values(patient) == [22.9]
    bmi = PatientMeasure.objects.get(definition__name='bmi')
    assert bmi.is_calculated and bmi.measured_at == bmi.patient.measures.get(definition__name='weight').measured_at


def test_update_and_delete_recalculate(client_for, admin_user, dietitian, patient, defaults):
    client = client_for(dietitian)
    at = timezone.now() - timedelta(hours=1)
    log(client, patient, defaults['height'], 175, at)
    weight_id = log(client, patient, defaults['weight'], 70, at).data['data']['id']

    r = client.put(reverse('patient_measure_detail_view', args=[weight_id]), {'value': 80}, format='json')
    assert r.status_code == 200
    assert bmi_values(patient) == [26.1]

    # dietitians cannot delete values
    assert client.delete(reverse('patient_measure_detail_view', args=[weight_id])).status_code == 403
    r = client_for(admin_user).delete(reverse('patient_measure_detail_view', args=[weight_id]))
    assert r.status_code == 200
    assert bmi_values(patient) == []


def test_moving_an_input_moves_its_result(client_for, dietitian, patient, defaults):
    client = client_for(dietitian)
    now = timezone.now()
    log(client, patient, defaults['height'], 175, now - timedelta(days=3))
    weight_id = log(client, patient, defaults['weight'], 70, now - timedelta(days=2)).data['data']['id']
    assert bmi_values(patient) == [22.9]

    moved = now - timedelta(days=1)
    r = client.put(reverse('patient_measure_detail_view', args=[weight_id]), {'measuredAt': moved.isoformat()},
                   format='json')
    assert r.status_code == 200
    rows = PatientMeasure.objects.filter(patient=patient, definition__name='bmi')
    assert [(m.measured_at, float(m.numeric_value)) for m in rows] == [(moved, 22.9)]


def test_latest_dependency_value_is_used(client_for, dietitian, patient, defaults):
    client = client_for(dietitian)
    earlier = timezone.now() - timedelta(days=30)
    log(client, patient, defaults['height'], 160, earlier)
    log(client, patient, defaults['height'], 175, earlier + timedelta(days=1))
    log(client, patient, defaults['weight'], 70, timezone.now())
    assert bmi_values(patient) == [22.9]


def test_value_validation(client_for, dietitian, patient, defaults):
    client = client_for(dietitian)
    now = timezone.now()
    r = log(client, patient, defaults['weight'], 0.1, now)
    assert r.status_code == 400
    assert 'value' in r.data['error']['details']
    assert log(client, patient, defaults['weight'], 'heavy', now).status_code == 400
    assert log(client, patient, defaults['bmi'], 22, now).status_code == 400


def test_other_dietitians_patient_is_forbidden(client_for, other_dietitian, patient, defaults):
    r = log(client_for(other_dietitian), patient, defaults['weight'], 70, timezone.now())
    assert r.status_code == 403


def test_history_stats(client_for, dietitian, patient, defaults):
    client = client_for(dietitian)
    start = timezone.now() - timedelta(days=10)
    for i, value in enumerate([80, 78, 77]):
        log(client, patient, defaults['weight'], value, start + timedelta(days=i))
    r = client.get(reverse('patient_measure_history_view', args=[patient.pk, defaults['weight'].pk]))
    assert r.status_code == 200
    stats = r.data['data']['stats']
    assert stats['count'] == 3
    assert stats['min'] == 77 and stats['max'] == 80
    assert stats['change'] == -3
    assert [v['value'] for v in r.data['data']['values']] == [80.0, 78.0, 77.0]


def test_list_requires_patient(client_for, dietitian, defaults):
    r = client_for(dietitian).get(reverse('patient_measures_view'))
    assert r.status_code == 400
    assert 'patientId' in r.data['error']['details']


def test_recalculate_all(client_for, dietitian, patient, defaults):
    client = client_for(dietitian)
    at = timezone.now() - timedelta(days=1)
    PatientMeasure.objects.create(patient=patient, definition=defaults['weight'], numeric_value=70, measured_at=at)
    PatientMeasure.objects.create(patient=patient, definition=defaults['height'], numeric_value=175, measured_at=at)
    r = client.post(reverse('patient_measures_recalculate_view', args=[patient.pk]))
    assert r.status_code == 200
    assert [m['measureName'] for m in r.data['data']] == ['bmi']
    assert r.data['data'][0]['value'] == 22.9


class TestDefinitions:
    def create(self, client, **data):
        payload = {'name': 'waist_to_height', 'displayName': 'Waist to height', 'measureType': 'calculated',
                   'formula': '{waist_circumference} / {height}', 'decimalPlaces': 2}
        payload.update(data)
        return client.post(reverse('measure_definitions_view'), payload, format='json')

    def test_create_calculated(self, client_for, dietitian, defaults):
        r = self.create(client_for(dietitian))
        assert r.status_code == 201
        assert r.data['data']['dependencies'] == ['waist_circumference', 'height']

    def test_rejects_bad_names_and_formulas(self, client_for, dietitian, defaults):
        client = client_for(dietitian)
        assert self.create(client, name='Waist Ratio').status_code == 400
        assert self.create(client, formula='{unknown_thing} * 2').status_code == 400
        assert self.create(client, formula='{waist_to_height} * 2').status_code == 400
        assert self.create(client, formula='{height} +').status_code == 400
        assert self.create(client, name='weight', measureType='numeric', formula='').status_code == 409

    def test_cycle_is_rejected(self, client_for, dietitian, defaults):
        client = client_for(dietitian)
        assert self.create(client, name='double_bmi', formula='{bmi} * 2').status_code == 201
        r = client.put(reverse('measure_definition_detail_view', args=[defaults['bmi'].pk]),
                       {'formula': '{double_bmi} + 1'}, format='json')
        assert r.status_code == 400
        assert 'Circular' in r.data['error']['message']

    def test_min_above_max(self, client_for, dietitian, defaults):
        r = self.create(client_for(dietitian), name='grip', measureType='numeric', formula='',
                        minValue='10', maxValue='5')
        assert r.status_code == 400

    def test_delete_rules(self, client_for, admin_user, patient, defaults):
        client = client_for(admin_user)
        r = client.delete(reverse('measure_definition_detail_view', args=[defaults['height'].pk]))
        assert r.status_code == 400

        created = self.create(client, name='grip', measureType='numeric', formula='').data['data']
        grip = MeasureDefinition.objects.get(pk=created['id'])
        PatientMeasure.objects.create(patient=patient, definition=grip, numeric_value=30)
        r = client.delete(reverse('measure_definition_detail_view', args=[grip.pk]))
        assert r.data['data']['result'] == 'deactivated'
        listed = client.get(reverse('measure_definitions_view')).data['data']
        assert 'grip' not in [d['name'] for d in listed]

    def test_dependency_blocks_delete(self, client_for, admin_user, defaults):
        client = client_for(admin_user)
        grip = self.create(client, name='grip', measureType='numeric', formula='').data['data']
        self.create(client, name='grip_double', formula='{grip} * 2')
        r = client.delete(reverse('measure_definition_detail_view', args=[grip['id']]))
        assert r.status_code == 409


def test_formula_sandbox(client_for, dietitian):
    client = client_for(dietitian)
    r = client.post(reverse('formula_validate_view'), {'formula': '{weight} / 2'}, format='json')
    assert r.data['data'] == {'valid': True, 'error': None, 'dependencies': ['weight']}
    r = client.post(reverse('formula_validate_view'), {'formula': '{weight} /'}, format='json')
    assert r.data['data']['valid'] is False

    r = client.post(reverse('formula_preview_view'), {'formula': '{a} * {b}', 'values': {'a': 2, 'b': 3.5}},
                    format='json')
    assert r.data['data'] == {'result': 7.0, 'error': None}
    r = client.post(reverse('formula_preview_view'), {'formula': '{a} / 0', 'values': {'a': 1}}, format='json')
    assert r.data['data']['result'] is None
    assert r.data['data']['error'] == 'Division by zero'
