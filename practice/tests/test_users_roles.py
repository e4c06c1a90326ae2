from io import StringIO

import pytest
from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.urls import reverse

from practice.models import EmailTemplate, Permission, Role, ScheduledJob, Theme
from practice.permissions import any_permission_required, has_permission, permission_required, role_required
from practice.services import rbac

from .conftest import PASSWORD

User = get_user_model()

pytestmark = pytest.mark.django_db


def test_seed_is_idempotent(roles):
    call_command('seed_rbac')
    assert Role.objects.count() == len(rbac.DEFAULT_ROLES)
    assert Permission.objects.count() == len(rbac.ALL_CODES)
    assert Role.objects.get(name=Role.ADMIN).permissions.count() == len(rbac.ALL_CODES)
    assert ScheduledJob.objects.count() == 3
    assert EmailTemplate.objects.filter(is_system=True).count() == 4
    assert Theme.objects.get(is_default=True).is_system


def test_default_matrix(roles):
    dietitian = set(roles[Role.DIETITIAN].permissions.values_list('code', flat=True))
    assert 'patients.delete' not in dietitian
    assert 'system.settings' not in dietitian
    assert 'followups.send' in dietitian
    viewer = set(roles[Role.VIEWER].permissions.values_list('code', flat=True))
    assert all(code.endswith('.read') for code in viewer - {'reports.view'})
    assert not roles[Role.PATIENT].permissions.exists()


class TestUsers:
    def test_create_user(self, client_for, admin_user):
        client = client_for(admin_user)
        r = client.post(reverse('users_view'), {
            'username': 'asst2', 'password': PASSWORD, 'email': 'asst2@example.com',
            'firstName': 'Anna', 'lastName': 'Petit', 'role': 'ASSISTANT',
        }, format='json')
        assert r.status_code == 201
        assert r.data['data']['role'] == 'ASSISTANT'
        assert r.data['data']['name'] == 'Anna Petit'
        assert 'password' not in r.data['data']
        assert User.objects.get(username='asst2').check_password(PASSWORD)

    @pytest.mark.parametrize('payload,status', [
        ({'username': 'diet1'}, 409),
        ({'email': 'DIET1@example.com'}, 409),
        ({'password': 'short'}, 400),
        ({'role': 'WIZARD'}, 400),
        ({'username': 'a b'}, 400),
    ])
    def test_create_rejections(self, client_for, admin_user, dietitian, payload, status):
        data = {'username': 'newbie', 'password': PASSWORD, 'email': 'newbie@example.com'}
        data.update(payload)
        assert client_for(admin_user).post(reverse('users_view'), data, format='json').status_code == status

    def test_only_user_managers(self, client_for, dietitian, viewer):
        assert client_for(dietitian).get(reverse('users_view')).status_code == 403
        assert client_for(viewer).post(reverse('users_view'), {}, format='json').status_code == 403

    def test_list_filters(self, client_for, admin_user, dietitian, other_dietitian, assistant):
        client = client_for(admin_user)
        r = client.get(reverse('users_view'), {'role': 'DIETITIAN'})
        assert [u['username'] for u in r.data['data']] == ['diet1', 'diet2']
        r = client.get(reverse('users_view'), {'q': 'martin'})
        assert [u['username'] for u in r.data['data']] == ['diet1']

    def test_detail_lists_permissions(self, client_for, admin_user, dietitian):
        client = client_for(admin_user)
        data = client.get(reverse('user_detail_view', args=[dietitian.pk])).data['data']
        assert 'visits.create' in data['permissions']
        assert client.get(reverse('user_detail_view', args=[admin_user.pk])).data['data']['permissions'] == ['*']

    def test_update_user(self, client_for, admin_user, dietitian):
        client = client_for(admin_user)
        r = client.put(reverse('user_detail_view', args=[dietitian.pk]),
                       {'role': 'VIEWER', 'phone': '0102030405', 'password': 'Another-Secret-99'}, format='json')
        assert r.status_code == 200
        assert r.data['data']['role'] == 'VIEWER'
        dietitian.refresh_from_db()
        assert dietitian.check_password('Another-Secret-99')

        own = client.put(reverse('user_detail_view', args=[admin_user.pk]), {'role': 'VIEWER'}, format='json')
        assert own.status_code == 400

    def test_delete_deactivates(self, client_for, admin_user, dietitian):
        client = client_for(admin_user)
        r = client.delete(reverse('user_detail_view', args=[dietitian.pk]))
        assert r.data['data'] == {'id': dietitian.pk, 'isActive': False}
        assert User.objects.filter(pk=dietitian.pk, is_active=False).exists()
        assert client.delete(reverse('user_detail_view', args=[admin_user.pk])).status_code == 400

        r = client.put(reverse('user_toggle_active_view', args=[dietitian.pk]), {'isActive': True}, format='json')
        assert r.data['data']['isActive'] is True

    def test_dietitian_directory(self, client_for, assistant, dietitian, other_dietitian):
        other_dietitian.is_active = False
        other_dietitian.save()
        names = [u['username'] for u in client_for(assistant).get(reverse('dietitians_view')).data['data']]
        assert names == ['diet1']


class TestRoles:
    def test_admin_only(self, client_for, dietitian):
        assert client_for(dietitian).get(reverse('roles_view')).status_code == 403
        assert client_for(dietitian).get(reverse('permissions_view')).status_code == 403

    def test_custom_role_lifecycle(self, client_for, admin_user):
        client = client_for(admin_user)
        r = client.post(reverse('roles_view'), {
            'name': 'NURSE', 'description': 'Ward nurse', 'permissions': ['patients.read', 'visits.read'],
        }, format='json')
        assert r.status_code == 201
        role_id = r.data['data']['id']
        assert r.data['data']['permissions'] == ['patients.read', 'visits.read']
        assert client.post(reverse('roles_view'), {'name': 'NURSE'}, format='json').status_code == 409

        r = client.put(reverse('role_permissions_view', args=[role_id]),
                       {'permissions': ['patients.read', 'patients.update']}, format='json')
        assert r.data['data']['permissions'] == ['patients.read', 'patients.update']
        bad = client.put(reverse('role_permissions_view', args=[role_id]), {'permissions': ['patients.fly']},
                         format='json')
        assert bad.status_code == 400

        nurse = User.objects.create_user(username='nurse1', password=PASSWORD, role=Role.objects.get(name='NURSE'))
        assert client_for(nurse).get(reverse('patients_view')).status_code == 200
        assert client_for(nurse).get(reverse('visits_view')).status_code == 403

        assert client.delete(reverse('role_detail_view', args=[role_id])).status_code == 409
        nurse.delete()
        assert client.delete(reverse('role_detail_view', args=[role_id])).status_code == 200

    def test_inactive_role_grants_nothing(self, client_for, admin_user, viewer):
        role = Role.objects.get(name=Role.VIEWER)
        r = client_for(admin_user).put(reverse('role_detail_view', args=[role.pk]), {'isActive': False},
                                       format='json')
        assert r.data['data']['isActive'] is False
        viewer.refresh_from_db()
        assert client_for(viewer).get(reverse('patients_view')).status_code == 403

    def test_system_roles_are_protected(self, client_for, admin_user, roles):
        client = client_for(admin_user)
        admin_role = roles[Role.ADMIN]
        assert client.delete(reverse('role_detail_view', args=[admin_role.pk])).status_code == 400
        assert client.put(reverse('role_detail_view', args=[admin_role.pk]), {'name': 'ROOT'},
                          format='json').status_code == 400
        assert client.put(reverse('role_detail_view', args=[admin_role.pk]), {'isActive': False},
                          format='json').status_code == 400
        assert client.put(reverse('role_permissions_view', args=[admin_role.pk]), {'permissions': []},
                          format='json').status_code == 400

    def test_permission_catalog(self, client_for, admin_user):
        grouped = client_for(admin_user).get(reverse('permissions_view')).data['data']
        assert set(grouped) == set(rbac.PERMISSION_CATALOG)
        assert [p['action'] for p in grouped['followups']] == ['generate', 'send']


def test_manage_admin_creates_then_resets(dietitian):
    call_command('manage_admin', 'root', '--password', 'Root-Password-1', no_color=True, stdout=StringIO())
    root = User.objects.get(username='root')
    assert root.role.name == Role.ADMIN

    dietitian.failed_login_attempts = 5
    dietitian.save()
    out = StringIO()
    call_command('manage_admin', 'diet1', '--password', 'Fresh-Password-2', no_color=True, stdout=out)
    dietitian.refresh_from_db()
    assert 'reset admin diet1' in out.getvalue()
    assert dietitian.role.name == Role.ADMIN
    assert dietitian.failed_login_attempts == 0
    assert dietitian.check_password('Fresh-Password-2')

    with pytest.raises(CommandError):
        call_command('manage_admin', 'root', '--password', 'short')


def test_permission_guards(rf, assistant, viewer):
    either = any_permission_required('billing.delete', 'billing.read')()
    both = permission_required('billing.delete', 'billing.read')()
    request = rf.get('/')
    request.user = assistant
    assert either.has_permission(request, None)
    assert not both.has_permission(request, None)
    request.user = viewer
    assert not role_required(Role.ADMIN, Role.ASSISTANT)().has_permission(request, None)
    assert has_permission(viewer, 'reports.view')
    assert not has_permission(viewer, 'documents.download')
