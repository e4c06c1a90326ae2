from datetime import timedelta

import pytest
from django.core.cache import cache
from django.utils import timezone
from rest_framework.test import APIClient

from practice.models import Patient, PatientDietitian, Role, User, Visit
from practice.services import rbac

PASSWORD = 'Kiwi-Salad-2024!'


@pytest.fixture(autouse=True)
def _clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def roles(db):
    return rbac.ensure_default_roles()


@pytest.fixture
def make_user(roles):
    def _make(username, role=Role.DIETITIAN, **extra):
        extra.setdefault('email', f'{username}@example.com')
        return User.objects.create_user(username=username, password=PASSWORD, role=roles[role], **extra)
    return _make


@pytest.fixture
def admin_user(make_user):
    return make_user('admin', Role.ADMIN)


@pytest.fixture
def dietitian(make_user):
    return make_user('diet1', Role.DIETITIAN, first_name='Jean', last_name='Martin')


@pytest.fixture
def other_dietitian(make_user):
    return make_user('diet2', Role.DIETITIAN, first_name='Anne', last_name='Leroy')


@pytest.fixture
def assistant(make_user):
    return make_user('assistant', Role.ASSISTANT)


@pytest.fixture
def viewer(make_user):
    return make_user('viewer', Role.VIEWER)


@pytest.fixture
def client_for():
    def _client(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client
    return _client


@pytest.fixture
def patient(dietitian):
    p = Patient.objects.create(first_name='Marie', last_name='Dupont', email='marie@example.com',
                               created_by=dietitian)
    PatientDietitian.objects.create(patient=p, dietitian=dietitian)
    return p


@pytest.fixture
def visit(patient, dietitian):
    return Visit.objects.create(
        patient=patient, dietitian=dietitian, created_by=dietitian,
        visit_date=timezone.now() - timedelta(days=1),
        assessment='Marie Dupont reports better energy levels.',
        recommendations='Keep the vegetable intake, add a protein snack.',
    )
