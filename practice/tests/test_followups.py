import json

import pytest
import requests
from django.core import mail
from django.urls import reverse
from django.utils import timezone

from practice.models import EmailLog, EmailTemplate, Visit
from practice.services import ai_provider, followups, templates

pytestmark = pytest.mark.django_db


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=''):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError('no json')
        return self._data


@pytest.fixture(autouse=True)
def no_provider(settings):
    settings.AI_PROVIDER = ''
    settings.AI_MODEL = ''
    settings.OPENAI_API_KEY = ''
    settings.ANTHROPIC_API_KEY = ''
    settings.MISTRAL_API_KEY = ''
    settings.OLLAMA_BASE_URL = ''


@pytest.fixture
def openai(settings):
    settings.OPENAI_API_KEY = 'sk-test'
    ai_provider.save_configuration('openai')


def answer(**overrides):
    content = {
        'subject': 'Your visit, [PATIENT_NAME]',
        'greeting': 'Dear [PATIENT_NAME],',
        'summary': 'We reviewed your energy levels.',
        'keyPoints': ['More energy'],
        'recommendations': 'Add a protein snack.',
        'nextSteps': ['Buy yoghurt'],
        'closing': 'See you soon.',
        'signature': '[DIETITIAN_NAME]',
    }
    content.update(overrides)
    return content


def generate(client, visit, **extra):
    return client.post(reverse('followup_generate_view'), {'visitId': visit.pk, **extra}, format='json')


def test_anonymize_prefers_full_names(visit):
    text = followups.anonymize('Marie Dupont met Jean Martin. Marie agreed, Jean too.', visit)
    assert text == '[PATIENT_NAME] met [DIETITIAN_NAME]. [PATIENT_NAME] agreed, [DIETITIAN_NAME] too.'


def test_restore_names_walks_nested_values():
    restored = followups.restore_names({'a': ['[PATIENT_NAME]'], 'b': '[DIETITIAN_NAME]', 'c': 3}, 'Marie', 'Jean')
    assert restored == {'a': ['Marie'], 'b': 'Jean', 'c': 3}


def test_mock_followup_without_provider(client_for, dietitian, visit):
    r = generate(client_for(dietitian), visit, language='en', includeNextSteps=False)
    assert r.status_code == 200
    data = r.data['data']
    day = timezone.localtime(visit.visit_date).strftime('%Y-%m-%d')
    assert data['subject'] == f'Follow-up: your consultation on {day}'
    assert data['aiContent']['greeting'] == 'Hello Marie Dupont,'
    assert data['aiContent']['signature'] == 'Jean Martin'
    assert data['aiContent']['nextSteps'] == []
    assert data['metadata']['provider'] == 'mock'
    assert 'Key points' in data['bodyHtml']
    assert '[PATIENT_NAME]' not in data['bodyText']


def test_generated_followup_hides_names_from_provider(monkeypatch, client_for, dietitian, visit, openai):
    calls = []
    raw = '```json\n' + json.dumps(answer()) + '\n```'

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({'url': url, 'payload': json, 'headers': headers})
        return FakeResponse(data={'choices': [{'message': {'content': raw}}]})

    monkeypatch.setattr(requests, 'post', fake_post)
    r = generate(client_for(dietitian), visit, tone='friendly')
    assert r.status_code == 200

    prompt = calls[0]['payload']['messages'][1]['content']
    assert 'Marie' not in prompt and 'Dupont' not in prompt
    assert '[PATIENT_NAME] reports better energy levels.' in prompt
    assert calls[0]['headers']['Authorization'] == 'Bearer sk-test'
    assert calls[0]['payload']['model'] == 'gpt-4o-mini'

    data = r.data['data']
    assert data['subject'] == 'Your visit, Marie Dupont'
    assert data['aiContent']['signature'] == 'Jean Martin'
    assert data['metadata']['provider'] == 'openai'
    assert (data['metadata']['language'], data['metadata']['tone']) == ('fr', 'friendly')


@pytest.mark.parametrize('response,fragment', [
    (FakeResponse(429, text='slow down'), 'rate limit'),
    (FakeResponse(401, text='bad key'), 'invalid API key'),
    (FakeResponse(200, data={'choices': [{'message': {'content': 'Sure! Here is your email.'}}]}), 'valid JSON'),
])
def test_provider_failures_map_to_upstream_error(monkeypatch, client_for, dietitian, visit, openai,
                                                 response, fragment):
    monkeypatch.setattr(requests, 'post', lambda *a, **kw: response)
    r = generate(client_for(dietitian), visit)
    assert r.status_code == 502
    assert r.data['error']['code'] == 'upstream_error'
    assert fragment in r.data['error']['message']


def test_unreachable_provider(monkeypatch, client_for, dietitian, visit, openai):
    def refuse(*args, **kwargs):
        raise requests.ConnectionError('refused')
    monkeypatch.setattr(requests, 'post', refuse)
    r = generate(client_for(dietitian), visit)
    assert r.status_code == 502
    assert 'unreachable' in r.data['error']['message']


def test_visit_without_notes(client_for, dietitian, patient):
    empty = Visit.objects.create(patient=patient, dietitian=dietitian, visit_date=timezone.now())
    assert generate(client_for(dietitian), empty).status_code == 400


def test_followups_respect_scope_and_permissions(client_for, other_dietitian, assistant, visit):
    assert generate(client_for(other_dietitian), visit).status_code == 403
    assert generate(client_for(assistant), visit).status_code == 403


def test_send_followup(client_for, dietitian, visit):
    r = client_for(dietitian).post(reverse('followup_send_view'), {
        'visitId': visit.pk, 'subject': 'After our visit', 'bodyText': 'Keep going!',
    }, format='json')
    assert r.status_code == 200
    assert r.data['data']['status'] == EmailLog.SENT
    assert r.data['data']['visitId'] == visit.pk
    assert mail.outbox[0].to == ['marie@example.com']
    assert mail.outbox[0].body == 'Keep going!'


def test_send_followup_from_template(client_for, dietitian, visit):
    templates.ensure_default_templates()
    template = EmailTemplate.objects.get(slug='followup')
    client = client_for(dietitian)
    url = reverse('followup_send_view')
    assert client.post(url, {'visitId': visit.pk, 'bodyText': 'y'}, format='json').status_code == 400

    r = client.post(url, {'visitId': visit.pk, 'useTemplate': True}, format='json')
    assert r.status_code == 200
    assert r.data['data']['templateId'] == template.pk
    assert r.data['data']['emailType'] == 'followup'
    message = mail.outbox[0]
    assert message.subject.startswith('Following your visit on ')
    assert 'Hello Marie,' in message.body
    assert visit.recommendations in message.body
    assert 'next appointment' not in message.body


def test_send_followup_needs_body_and_email(client_for, dietitian, visit):
    client = client_for(dietitian)
    url = reverse('followup_send_view')
    assert client.post(url, {'visitId': visit.pk, 'subject': 'x'}, format='json').status_code == 400
    visit.patient.email = ''
    visit.patient.save()
    r = client.post(url, {'visitId': visit.pk, 'subject': 'x', 'bodyText': 'y'}, format='json')
    assert r.status_code == 400
    assert len(mail.outbox) == 0


def test_ai_configuration(client_for, admin_user, dietitian, settings):
    assert client_for(dietitian).get(reverse('ai_config_view')).data['data']['available'] is False
    assert client_for(dietitian).put(reverse('ai_config_view'), {'provider': 'openai'},
                                     format='json').status_code == 403

    admin = client_for(admin_user)
    r = admin.put(reverse('ai_config_view'), {'provider': 'mistral', 'model': 'gpt-4o'}, format='json')
    assert r.status_code == 400
    r = admin.put(reverse('ai_config_view'), {'provider': 'mistral'}, format='json')
    assert r.data['data'] == {'provider': 'mistral', 'model': 'mistral-small-latest', 'available': False}

    settings.MISTRAL_API_KEY = 'key'
    providers = {p['id']: p['available'] for p in admin.get(reverse('ai_providers_view')).data['data']}
    assert providers == {'openai': False, 'anthropic': False, 'mistral': True, 'ollama': False}
