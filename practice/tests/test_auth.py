import re
from datetime import timedelta

import pytest
from django.core import mail
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from practice.models import ApiKey, AuditLog, Patient, Role, User
from practice.services import api_keys

from .conftest import PASSWORD

pytestmark = pytest.mark.django_db


def login(client, username, password=PASSWORD, **extra):
    return client.post(reverse('login_view'), {'username': username, 'password': password, **extra}, format='json')


def test_login_returns_token_pair_and_profile(dietitian):
    r = login(APIClient(), 'diet1')
    assert r.status_code == 200
    data = r.data['data']
    assert data['access'] and data['refresh']
    assert data['user']['role'] == Role.DIETITIAN
    assert 'patients.read' in data['user']['permissions']
    assert AuditLog.objects.filter(action='LOGIN', user=dietitian).exists()


def test_login_with_bad_password_is_generic_401(dietitian):
    r = login(APIClient(), 'diet1', 'wrong-password')
    assert r.status_code == 401
    assert r.data['ok'] is False
    assert r.data['error']['message'] == 'Invalid credentials'
    dietitian.refresh_from_db()
    assert dietitian.failed_login_attempts == 1


def test_unknown_user_gets_same_message(roles):
    r = login(APIClient(), 'ghost')
    assert r.status_code == 401
    assert r.data['error']['message'] == 'Invalid credentials'


def test_lockout_after_max_attempts(settings, dietitian):
    settings.MAX_LOGIN_ATTEMPTS = 3
    client = APIClient()
    for _ in range(3):
        assert login(client, 'diet1', 'nope').status_code == 401
    dietitian.refresh_from_db()
    assert dietitian.locked_until is not None

    # correct password while locked still answers 423
    r = login(client, 'diet1')
    assert r.status_code == 423
    assert r.data['error']['code'] == 'account_locked'
    assert r.data['error']['minutesRemaining'] >= 1


def test_expired_lock_allows_login_and_resets_counter(dietitian):
    dietitian.failed_login_attempts = 5
    dietitian.locked_until = timezone.now() - timedelta(minutes=1)
    dietitian.save()
    assert login(APIClient(), 'diet1').status_code == 200
    dietitian.refresh_from_db()
    assert dietitian.failed_login_attempts == 0
    assert dietitian.locked_until is None


def test_inactive_user_cannot_login(dietitian):
    dietitian.is_active = False
    dietitian.save()
    assert login(APIClient(), 'diet1').status_code == 401


def test_patient_can_login_with_email(make_user):
    user = make_user('portal-user', Role.PATIENT, email='lea@example.com')
    Patient.objects.create(first_name='Lea', last_name='Petit', email='lea@example.com', user=user)
    r = login(APIClient(), 'lea@example.com')
    assert r.status_code == 200
    assert r.data['data']['user']['patientId'] is not None


def test_me_requires_authentication(roles):
    r = APIClient().get(reverse('me_view'))
    assert r.status_code == 401
    assert r.data['error']['code'] == 'not_authenticated'


def test_refresh_rotates_and_blacklists(dietitian):
    client = APIClient()
    tokens = login(client, 'diet1').data['data']
    r = client.post(reverse('refresh_view'), {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['data']['refresh'] != tokens['refresh']
    again = client.post(reverse('refresh_view'), {'refresh': tokens['refresh']}, format='json')
    assert again.status_code == 401


def test_bearer_token_and_logout(dietitian):
    client = APIClient()
    tokens = login(client, 'diet1').data['data']
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
    assert client.get(reverse('me_view')).data['data']['username'] == 'diet1'
    r = client.post(reverse('logout_view'), {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 200
    r = APIClient().post(reverse('refresh_view'), {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 401


def test_change_password(client_for, dietitian):
    client = client_for(dietitian)
    bad = client.post(reverse('change_password_view'),
                      {'currentPassword': 'nope', 'newPassword': 'Another-Secret-99'}, format='json')
    assert bad.status_code == 400
    r = client.post(reverse('change_password_view'),
                    {'currentPassword': PASSWORD, 'newPassword': 'Another-Secret-99'}, format='json')
    assert r.status_code == 200
    dietitian.refresh_from_db()
    assert dietitian.check_password('Another-Secret-99')


def test_forgot_password_is_silent_for_unknown_email(roles):
    r = APIClient().post(reverse('forgot_password_view'), {'email': 'nobody@example.com'}, format='json')
    assert r.status_code == 200
    assert len(mail.outbox) == 0


def test_password_reset_flow_clears_lock(dietitian):
    dietitian.failed_login_attempts = 5
    dietitian.locked_until = timezone.now() + timedelta(minutes=20)
    dietitian.save()
    client = APIClient()
    r = client.post(reverse('forgot_password_view'), {'email': 'diet1@example.com'}, format='json')
    assert r.status_code == 200
    assert len(mail.outbox) == 1
    token = re.search(r'token=([0-9a-f]{64})', mail.outbox[0].body).group(1)

    dietitian.refresh_from_db()
    assert dietitian.password_reset_token != token

    r = client.post(reverse('reset_password_view'), {'token': token, 'newPassword': 'Fresh-Start-2025'},
                    format='json')
    assert r.status_code == 200
    dietitian.refresh_from_db()
    assert dietitian.locked_until is None
    assert dietitian.password_reset_token is None
    assert login(client, 'diet1', 'Fresh-Start-2025').status_code == 200

    # tokens are single use
    r = client.post(reverse('reset_password_view'), {'token': token, 'newPassword': 'Other-Start-2025'},
                    format='json')
    assert r.status_code == 400


def test_api_key_lifecycle(client_for, dietitian):
    client = client_for(dietitian)
    r = client.post(reverse('api_keys_view'), {'name': 'lab import'}, format='json')
    assert r.status_code == 201
    raw = r.data['data']['key']
    assert raw.startswith('diet_ak_') and len(raw) == len('diet_ak_') + 64
    assert ApiKey.objects.get().key_hash != raw

    keyed = APIClient()
    keyed.credentials(HTTP_X_API_KEY=raw)
    me = keyed.get(reverse('me_view'))
    assert me.status_code == 200
    assert me.data['data']['username'] == 'diet1'
    assert ApiKey.objects.get().usage_count == 1

    listed = client.get(reverse('api_keys_view')).data['data']
    assert 'key' not in listed[0]

    key_id = r.data['data']['id']
    assert client.delete(reverse('api_key_detail_view', args=[key_id])).status_code == 200
    assert keyed.get(reverse('me_view')).status_code == 401


def test_expired_api_key_is_rejected(dietitian):
    key, raw = api_keys.generate_api_key(dietitian, name='old')
    ApiKey.objects.filter(pk=key.pk).update(expires_at=timezone.now() - timedelta(days=1))
    client = APIClient()
    client.credentials(HTTP_X_API_KEY=raw)
    assert client.get(reverse('me_view')).status_code == 401


def test_api_key_of_inactive_user_is_rejected(dietitian):
    _, raw = api_keys.generate_api_key(dietitian, name='k')
    User.objects.filter(pk=dietitian.pk).update(is_active=False)
    client = APIClient()
    client.credentials(HTTP_X_API_KEY=raw)
    assert client.get(reverse('me_view')).status_code == 401


def test_admin_can_unlock(client_for, admin_user, dietitian):
    dietitian.failed_login_attempts = 5
    dietitian.locked_until = timezone.now() + timedelta(minutes=30)
    dietitian.save()
    r = client_for(admin_user).post(reverse('user_unlock_view', args=[dietitian.pk]))
    assert r.status_code == 200
    assert r.data['data']['isLocked'] is False
    assert client_for(dietitian).post(reverse('user_unlock_view', args=[dietitian.pk])).status_code == 403
