from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from practice.models import AuditLog, Invoice, Theme, Visit
from practice.services import billing, themes
from practice.services.audit import log_action

pytestmark = pytest.mark.django_db


def test_healthz():
    r = APIClient().get(reverse('healthz'))
    assert r.status_code == 200
    assert r.json() == {'ok': True, 'db': True}


def test_routes_are_named_after_their_views():
    from practice.routers import urlpatterns

    names = [p.name for p in urlpatterns]
    assert 'view' not in names
    assert len(names) == len(set(names))
    assert reverse('login_view') == '/api/auth/login'
    assert reverse('patient_detail_view', args=[3]) == '/api/patients/3'


class TestThemes:
    colors = {'primary': '#123456', 'text': '#fff'}

    def test_default_theme_is_seeded(self):
        assert themes.ensure_default_theme() is True
        assert themes.ensure_default_theme() is False
        assert themes.default_theme().name == 'NutriVault'

    def test_admin_manages_themes(self, client_for, admin_user):
        client = client_for(admin_user)
        r = client.post(reverse('themes_view'), {'name': 'Ocean', 'colors': self.colors}, format='json')
        assert r.status_code == 201
        assert client.post(reverse('themes_view'), {'name': 'ocean', 'colors': self.colors},
                           format='json').status_code == 409
        bad = client.post(reverse('themes_view'), {'name': 'Dusk', 'colors': {'primary': 'blue'}}, format='json')
        assert bad.status_code == 400

        pk = r.data['data']['id']
        r = client.put(reverse('theme_detail_view', args=[pk]), {'description': 'Blues'}, format='json')
        assert r.data['data']['description'] == 'Blues'
        assert r.data['data']['colors'] == self.colors

    def test_set_default_is_exclusive(self, client_for, admin_user):
        themes.ensure_default_theme()
        ocean = Theme.objects.create(name='Ocean', colors=self.colors)
        client = client_for(admin_user)
        r = client.post(reverse('theme_set_default_view', args=[ocean.pk]))
        assert r.data['data']['isDefault'] is True
        assert list(Theme.objects.filter(is_default=True)) == [ocean]
        assert client.delete(reverse('theme_detail_view', args=[ocean.pk])).status_code == 400

    def test_system_theme_is_protected(self, client_for, admin_user):
        themes.ensure_default_theme()
        system = Theme.objects.get(name='NutriVault')
        Theme.objects.update(is_default=False)
        client = client_for(admin_user)
        assert client.put(reverse('theme_detail_view', args=[system.pk]), {'name': 'Mine'},
                          format='json').status_code == 400
        assert client.delete(reverse('theme_detail_view', args=[system.pk])).status_code == 400

    def test_anyone_picks_their_theme(self, client_for, viewer):
        ocean = Theme.objects.create(name='Ocean', colors=self.colors)
        client = client_for(viewer)
        assert client.get(reverse('themes_view')).status_code == 200
        assert client.post(reverse('themes_view'), {'name': 'X', 'colors': self.colors},
                           format='json').status_code == 403
        r = client.put(reverse('my_theme_view'), {'themeId': ocean.pk}, format='json')
        assert r.data['data'] == {'themeId': ocean.pk}
        assert client.put(reverse('my_theme_view'), {'themeId': 999}, format='json').status_code == 400
        assert client.put(reverse('my_theme_view'), {'themeId': None}, format='json').data['data'] == {'themeId': None}


def test_audit_log_filters(client_for, admin_user, dietitian):
    log_action(user=dietitian, action='LOGIN', resource_type='auth')
    log_action(user=dietitian, action='LOGIN_FAILED', resource_type='auth', status=AuditLog.FAILURE)
    log_action(user=admin_user, action='DELETE', resource_type='patient', resource_id=7)

    client = client_for(admin_user)
    assert client.get(reverse('audit_logs_view')).data['pagination']['total'] == 3
    r = client.get(reverse('audit_logs_view'), {'userId': dietitian.pk, 'status': 'failure'})
    assert [a['action'] for a in r.data['data']] == ['LOGIN_FAILED']
    r = client.get(reverse('audit_logs_view'), {'resourceType': 'patient', 'resourceId': '7'})
    assert r.data['pagination']['total'] == 1
    assert client.get(reverse('audit_logs_view'), {'action': 'login'}).data['pagination']['total'] == 1

    assert client_for(dietitian).get(reverse('audit_logs_view')).status_code == 403


def test_dashboard(client_for, dietitian, other_dietitian, assistant, patient, visit):
    Visit.objects.create(patient=patient, dietitian=dietitian, visit_date=timezone.now() + timedelta(days=2))
    billing.create_invoice(dietitian, patient, {'service_description': 'x', 'amount': '30.00'})
    Invoice.objects.update(status=Invoice.SENT)

    data = client_for(dietitian).get(reverse('dashboard_view')).data['data']
    assert data['activePatients'] == 1
    assert data['upcomingVisits'] == 1
    assert data['revenue']['pending'] == '30.00'

    assert client_for(other_dietitian).get(reverse('dashboard_view')).data['data']['activePatients'] == 0
    assert client_for(assistant).get(reverse('dashboard_view')).data['data']['activePatients'] == 1
