from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Q
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from practice.exceptions import Conflict
from practice.models import Patient, PatientDietitian, Role
from practice.permissions import has_role, is_admin
from practice.services.rbac import get_role
from practice.services.scope import scoped_patients
from practice.services.users import check_password_strength

logger = logging.getLogger(__name__)

User = get_user_model()

PATIENT_FIELDS = (
    'first_name', 'last_name', 'date_of_birth', 'gender', 'email', 'phone', 'address', 'city',
    'postal_code', 'medical_notes', 'dietary_preferences', 'allergies',
)


def format_patient(patient: Patient, *, detailed: bool = False) -> dict:
    data = {
        'id': patient.id,
        'firstName': patient.first_name,
        'lastName': patient.last_name,
        'fullName': patient.full_name,
        'dateOfBirth': patient.date_of_birth.isoformat() if patient.date_of_birth else None,
        'gender': patient.gender or None,
        'email': patient.email or None,
        'phone': patient.phone or None,
        'city': patient.city or None,
        'isActive': patient.is_active,
        'hasPortalAccount': patient.user_id is not None,
        'createdAt': patient.created_at.isoformat() if patient.created_at else None,
        'updatedAt': patient.updated_at.isoformat() if patient.updated_at else None,
    }
    if detailed:
        data.update({
            'address': patient.address,
            'postalCode': patient.postal_code,
            'medicalNotes': patient.medical_notes,
            'dietaryPreferences': patient.dietary_preferences,
            'allergies': patient.allergies,
            'dietitians': [format_link(link) for link in patient.dietitian_links.select_related('dietitian')],
        })
    return data


def format_link(link: PatientDietitian) -> dict:
    return {
        'id': link.id,
        'patientId': link.patient_id,
        'dietitianId': link.dietitian_id,
        'dietitianName': link.dietitian.get_display_name(),
        'createdAt': link.created_at.isoformat() if link.created_at else None,
    }


def search_patients(user, *, q: str | None = None, is_active: bool | None = True, dietitian_id=None):
    qs = scoped_patients(user)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if q:
        qs = qs.filter(
            Q(first_name__icontains=q) | Q(last_name__icontains=q) | Q(email__icontains=q) | Q(phone__icontains=q)
        )
    if dietitian_id and is_admin(user):
        qs = qs.filter(dietitian_links__dietitian_id=dietitian_id).distinct()
    return qs.order_by('last_name', 'first_name', 'id')


def _check_email(email: str, exclude_pk=None) -> None:
    if not email:
        return
    qs = Patient.objects.filter(email__iexact=email, is_active=True)
    if exclude_pk:
        qs = qs.exclude(pk=exclude_pk)
    if qs.exists():
        raise Conflict('A patient with this e-mail already exists')


def create_patient(current_user, data: dict) -> Patient:
    """Create a patient; a dietitian creator is linked to the new record."""
    _check_email(data.get('email', ''))
    with transaction.atomic():
        patient = Patient.objects.create(
            created_by=current_user,
            **{k: data[k] for k in PATIENT_FIELDS if k in data and data[k] is not None},
        )
        if has_role(current_user, Role.DIETITIAN):
            PatientDietitian.objects.create(patient=patient, dietitian=current_user)
    logger.info('Patient %s created by %s', patient.pk, current_user.pk)
    return patient


def update_patient(patient: Patient, data: dict) -> dict:
    """Apply ``data``; return the changed fields as ``{field: [old, new]}``."""
    if 'email' in data and data['email'] != patient.email:
        _check_email(data['email'], exclude_pk=patient.pk)
    changes = {}
    for field in PATIENT_FIELDS:
        if field in data:
            old = getattr(patient, field)
            new = data[field] if data[field] is not None else ('' if field != 'date_of_birth' else None)
            if old != new:
                changes[field] = [old, new]
                setattr(patient, field, new)
    if 'is_active' in data and data['is_active'] is not None and data['is_active'] != patient.is_active:
        changes['is_active'] = [patient.is_active, data['is_active']]
        patient.is_active = data['is_active']
    if changes:
        patient.save()
    return changes


def delete_patient(current_user, patient: Patient, *, hard: bool = False) -> str:
    if hard:
        if not is_admin(current_user):
            raise PermissionDenied('Only administrators can permanently delete patients')
        patient.delete()
        return 'deleted'
    patient.is_active = False
    patient.save(update_fields=['is_active', 'updated_at'])
    return 'deactivated'


def add_dietitian_link(current_user, patient: Patient, dietitian_id: int) -> PatientDietitian:
    if not is_admin(current_user) and current_user.pk != dietitian_id:
        raise PermissionDenied('Only administrators can link another dietitian')
    dietitian = User.objects.select_related('role').filter(pk=dietitian_id, is_active=True).first()
    if dietitian is None or dietitian.role_name not in (Role.DIETITIAN, Role.ADMIN):
        raise ValidationError({'dietitianId': 'User is not an active dietitian'})
    link, created = PatientDietitian.objects.get_or_create(patient=patient, dietitian=dietitian)
    if not created:
        raise Conflict('Dietitian is already linked to this patient')
    return link


def remove_dietitian_link(current_user, patient: Patient, dietitian_id: int) -> None:
    if not is_admin(current_user):
        raise PermissionDenied('Only administrators can remove dietitian links')
    deleted, _ = PatientDietitian.objects.filter(patient=patient, dietitian_id=dietitian_id).delete()
    if not deleted:
        raise NotFound('Link not found')


def create_portal_account(patient: Patient, *, password: str) -> User:
    """Give ``patient`` a PATIENT-role login (username = e-mail)."""
    if patient.user_id:
        raise Conflict('Patient already has a portal account')
    if not patient.email:
        raise ValidationError({'email': 'Patient needs an e-mail address for portal access'})
    if User.objects.filter(username__iexact=patient.email).exists():
        raise Conflict('A user with this e-mail already exists')
    candidate = User(username=patient.email, email=patient.email,
                     first_name=patient.first_name, last_name=patient.last_name)
    check_password_strength(password, candidate)
    user = User.objects.create_user(
        username=patient.email, email=patient.email, password=password,
        first_name=patient.first_name, last_name=patient.last_name, role=get_role(Role.PATIENT),
    )
    patient.user = user
    patient.save(update_fields=['user', 'updated_at'])
    return user
