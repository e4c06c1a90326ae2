import smtplib

import pytest
from django.core import mail
from django.core.mail import EmailMultiAlternatives
from django.urls import reverse

from practice.exceptions import UpstreamError
from practice.models import EmailLog, EmailTemplate
from practice.services import templates
from practice.services.email import send_email, send_templated
from practice.services.templates import render_string


@pytest.mark.parametrize('source,context,expected', [
    ('Hi {{name}}!', {'name': 'Marie'}, 'Hi Marie!'),
    ('Hi {{ name }}', {'name': 'Marie'}, 'Hi Marie'),
    ('Hi {{name}}', {}, 'Hi '),
    ('A{{#if x}} and {{x}}{{/if}}.', {'x': 'B'}, 'A and B.'),
    ('A{{#if x}} and {{x}}{{/if}}.', {'x': ''}, 'A.'),
    ('{{#if a}}1{{#if b}}2{{/if}}3{{/if}}', {'a': True, 'b': False}, '13'),
    ('{{#if a}}1{{#if b}}2{{/if}}3{{/if}}', {'a': False, 'b': True}, ''),
])
def test_render_string(source, context, expected):
    assert render_string(source, context) == expected


def test_html_values_are_escaped():
    assert render_string('<p>{{name}}</p>', {'name': '<script>'}, html=True) == '<p>&lt;script&gt;</p>'
    assert render_string('{{name}}', {'name': '<b>'}) == '<b>'


def test_used_variables():
    assert templates.used_variables('{{a}} {{#if b}}{{c}}{{/if}}', '{{a}}') == ['a', 'c', 'b']


@pytest.mark.django_db
class TestTemplateApi:
    def payload(self, **extra):
        data = {'slug': 'welcome', 'name': 'Welcome', 'category': 'general',
                'subject': 'Welcome {{patient_first_name}}', 'bodyText': 'Hello {{patient_name}}'}
        data.update(extra)
        return data

    def test_crud(self, client_for, admin_user):
        client = client_for(admin_user)
        r = client.post(reverse('templates_view'), self.payload(), format='json')
        assert r.status_code == 201
        assert r.data['data']['variables'] == ['patient_first_name', 'patient_name']
        assert client.post(reverse('templates_view'), self.payload(), format='json').status_code == 409

        pk = r.data['data']['id']
        r = client.put(reverse('template_detail_view', args=[pk]), {'bodyText': '{{#if x}}open'}, format='json')
        assert r.status_code == 400
        r = client.put(reverse('template_detail_view', args=[pk]), {'isActive': False}, format='json')
        assert r.data['data']['isActive'] is False
        assert client.delete(reverse('template_detail_view', args=[pk])).status_code == 200

    def test_body_required(self, client_for, admin_user):
        r = client_for(admin_user).post(reverse('templates_view'), self.payload(bodyText=''), format='json')
        assert r.status_code == 400

    def test_system_templates_cannot_be_deleted(self, client_for, admin_user):
        templates.ensure_default_templates()
        assert templates.ensure_default_templates() == 0
        invoice = EmailTemplate.objects.get(slug='invoice')
        assert client_for(admin_user).delete(reverse('template_detail_view', args=[invoice.pk])).status_code == 400

    def test_dietitians_read_only(self, client_for, dietitian):
        client = client_for(dietitian)
        assert client.get(reverse('templates_view')).status_code == 200
        assert client.post(reverse('templates_view'), self.payload(), format='json').status_code == 403

    def test_preview_uses_sample_data(self, client_for, dietitian):
        templates.ensure_default_templates()
        reminder = EmailTemplate.objects.get(slug='appointment_reminder')
        r = client_for(dietitian).post(reverse('template_preview_view', args=[reminder.pk]),
                                       {'variables': {'dietitian_name': ''}}, format='json')
        assert r.status_code == 200
        assert 'Marie' in r.data['data']['text']
        assert 'You will see' not in r.data['data']['text']
        assert r.data['data']['subject'] == 'Reminder: your appointment on 2024-03-15'

    def test_variables_catalog(self, client_for, dietitian):
        data = client_for(dietitian).get(reverse('template_variables_view')).data['data']
        assert 'invoice_number' in data['categories']['invoice']
        assert data['sample']['patient_name'] == 'Marie Dupont'


@pytest.mark.django_db
def test_active_template_overrides_fallback(patient):
    EmailTemplate.objects.create(slug='note', name='Note', subject='Note for {{patient_name}}',
                                 body_html='<p>{{patient_name}}</p>')
    log = send_templated('note', {'patient_name': 'Marie <Dupont>'}, to='marie@example.com',
                         fallback={'subject': 'unused'}, patient=patient)
    message = mail.outbox[0]
    assert message.subject == 'Note for Marie <Dupont>'
    assert message.alternatives[0][0] == '<p>Marie &lt;Dupont&gt;</p>'
    assert log.template.slug == 'note'
    assert log.patient == patient


@pytest.mark.django_db
def test_delivery_failure_is_logged(monkeypatch):
    def boom(self, fail_silently=False):
        raise smtplib.SMTPException('relay refused')
    monkeypatch.setattr(EmailMultiAlternatives, 'send', boom)

    log = send_email(to='a@example.com', subject='s', body_text='b', email_type='general', fail_silently=True)
    assert log.status == EmailLog.FAILED
    assert 'relay refused' in log.error_message

    with pytest.raises(UpstreamError):
        send_email(to='a@example.com', subject='s', body_text='b', email_type='general')
    assert EmailLog.objects.filter(status=EmailLog.FAILED).count() == 2


@pytest.mark.django_db
def test_email_log_scope(client_for, dietitian, other_dietitian, patient, admin_user):
    send_email(to='marie@example.com', subject='a', body_text='x', email_type='general', patient=patient)
    send_email(to='x@example.com', subject='b', body_text='x', email_type='general', sent_by=other_dietitian)

    mine = client_for(dietitian).get(reverse('email_logs_view')).data
    assert [log['subject'] for log in mine['data']] == ['a']
    theirs = client_for(other_dietitian).get(reverse('email_logs_view')).data
    assert [log['subject'] for log in theirs['data']] == ['b']
    assert client_for(admin_user).get(reverse('email_logs_view')).data['pagination']['total'] == 2
