import pytest
from django.urls import reverse

from practice.models import CustomFieldCategory, CustomFieldDefinition, PatientCustomFieldValue

pytestmark = pytest.mark.django_db


@pytest.fixture
def category(db):
    return CustomFieldCategory.objects.create(name='Lifestyle')


@pytest.fixture
def fields(category):
    def make(name, field_type, **extra):
        return CustomFieldDefinition.objects.create(category=category, field_name=name, field_label=name.title(),
                                                    field_type=field_type, **extra)
    return {
        'sleep_hours': make('sleep_hours', 'number', validation_rules={'min': 0, 'max': 24}),
        'activity': make('activity', 'select', select_options=['low', 'moderate', 'high'], is_required=True),
        'smoker': make('smoker', 'boolean'),
        'goal': make('goal', 'text', validation_rules={'maxLength': 20}),
        'steps_goal': make('steps_goal', 'number'),
        'weekly_steps': make('weekly_steps', 'calculated', formula='{steps_goal} * 7', dependencies=['steps_goal'],
                             decimal_places=0),
    }


def values_of(response):
    return {f['fieldName']: f['value'] for c in response.data['data'] for f in c['fields']}


def put_values(client, patient, values):
    return client.put(reverse('patient_custom_fields_view', args=[patient.pk]), {'values': values}, format='json')


def test_only_admins_manage_definitions(client_for, dietitian, category):
    r = client_for(dietitian).post(reverse('categories_view'), {'name': 'Sport'}, format='json')
    assert r.status_code == 403
    assert client_for(dietitian).get(reverse('categories_view')).status_code == 200


def test_category_crud(client_for, admin_user, category):
    client = client_for(admin_user)
    r = client.post(reverse('categories_view'), {'name': 'Medical history'}, format='json')
    assert r.status_code == 201
    assert r.data['data']['displayOrder'] == 1
    assert client.post(reverse('categories_view'), {'name': 'lifestyle'}, format='json').status_code == 409

    client.put(reverse('categories_reorder_view'), {'ids': [r.data['data']['id'], category.pk]}, format='json')
    names = [c['name'] for c in client.get(reverse('categories_view')).data['data']]
    assert names == ['Medical history', 'Lifestyle']


def test_definition_validation(client_for, admin_user, category, fields):
    client = client_for(admin_user)

    def create(**data):
        payload = {'categoryId': category.pk, 'fieldName': 'waist', 'fieldLabel': 'Waist', 'fieldType': 'number'}
        payload.update(data)
        return client.post(reverse('definitions_view'), payload, format='json')

    assert create(fieldName='Waist Size').status_code == 400
    assert create(fieldName='sleep_hours').status_code == 409
    assert create(fieldType='select').status_code == 400
    assert create(validationRules={'min': 10, 'max': 1}).status_code == 400
    assert create(fieldType='text', validationRules={'pattern': '('}).status_code == 400
    assert create(validationRules={'min': 'abc'}).status_code == 400
    assert create(validationRules={'min': 'abc', 'max': 'xyz'}).status_code == 400
    assert create(fieldType='text', validationRules={'maxLength': 'long'}).status_code == 400
    assert create(fieldType='date', validationRules={'min_date': '2024-13-40'}).status_code == 400
    assert create(fieldType='calculated', formula='{unknown} * 2').status_code == 400
    assert create(fieldType='calculated', formula='{waist} * 2').status_code == 400
    assert create(categoryId=999).status_code == 404

    r = create(fieldType='calculated', formula='{sleep_hours} / 24', decimalPlaces=2)
    assert r.status_code == 201
    assert r.data['data']['dependencies'] == ['sleep_hours']
    assert r.data['data']['isRequired'] is False


def test_calculated_cycle(client_for, admin_user, fields):
    client = client_for(admin_user)
    r = client.put(reverse('definition_detail_view', args=[fields['steps_goal'].pk]),
                   {'fieldType': 'calculated', 'formula': '{weekly_steps} / 7'}, format='json')
    assert r.status_code == 400
    assert 'Circular' in r.data['error']['message']


def test_store_values_and_recalculate(client_for, dietitian, patient, fields):
    client = client_for(dietitian)
    r = put_values(client, patient, {'sleep_hours': '7.5', 'activity': 'moderate', 'smoker': 'false',
                                     'steps_goal': 8000})
    assert r.status_code == 200
    values = values_of(r)
    assert values['sleep_hours'] == 7.5
    assert values['smoker'] is False
    assert values['weekly_steps'] == 56000

    r = put_values(client, patient, {'steps_goal': 10000})
    assert values_of(r)['weekly_steps'] == 70000
    assert values_of(client.get(reverse('patient_custom_fields_view', args=[patient.pk])))['activity'] == 'moderate'


def test_values_are_all_or_nothing(client_for, dietitian, patient, fields):
    r = put_values(client_for(dietitian), patient, {
        'sleep_hours': 30, 'activity': 'extreme', 'goal': 'x' * 30, 'nope': 1, 'weekly_steps': 5,
        'smoker': True,
    })
    assert r.status_code == 400
    details = r.data['error']['details']
    assert set(details) == {'sleep_hours', 'activity', 'goal', 'nope', 'weekly_steps'}
    assert not PatientCustomFieldValue.objects.exists()


def test_required_field_cannot_be_cleared(client_for, dietitian, patient, fields):
    r = put_values(client_for(dietitian), patient, {'activity': ''})
    assert r.status_code == 400
    assert r.data['error']['details']['activity'] == ['This field is required']


def test_values_respect_patient_scope(client_for, other_dietitian, patient, fields):
    assert put_values(client_for(other_dietitian), patient, {'smoker': True}).status_code == 403


def test_delete_definition(client_for, admin_user, dietitian, patient, fields):
    put_values(client_for(dietitian), patient, {'smoker': True})
    client = client_for(admin_user)
    r = client.delete(reverse('definition_detail_view', args=[fields['steps_goal'].pk]))
    assert r.status_code == 409
    r = client.delete(reverse('definition_detail_view', args=[fields['smoker'].pk]))
    assert r.data['data']['result'] == 'deactivated'
    r = client.delete(reverse('definition_detail_view', args=[fields['goal'].pk]))
    assert r.data['data']['result'] == 'deleted'

    active = [d['fieldName'] for d in client.get(reverse('definitions_view')).data['data']]
    assert 'smoker' not in active and 'goal' not in active
    everything = client.get(reverse('definitions_view'), {'includeInactive': 'true'}).data['data']
    assert 'smoker' in [d['fieldName'] for d in everything]


def test_formula_check_endpoint(client_for, dietitian):
    r = client_for(dietitian).post(reverse('field_formula_validate_view'), {'formula': 'round({a} / {b}, 1)'},
                                   format='json')
    assert r.data['data'] == {'valid': True, 'error': None, 'dependencies': ['a', 'b']}
