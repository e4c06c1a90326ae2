"""
Patient-level data scoping.

ADMIN sees every patient, a DIETITIAN only the patients linked to them
through :class:`PatientDietitian`, a PATIENT only their own record, and any
other staff role the whole practice.  Visits, invoices, documents, measures
and custom field values follow the scope of their patient.
"""
from __future__ import annotations

from rest_framework.exceptions import PermissionDenied

from practice.models import Patient, PatientDietitian, Role
from practice.permissions import is_admin


def scoped_patients(user, queryset=None):
    qs = Patient.objects.all() if queryset is None else queryset
    if is_admin(user):
        return qs
    role = getattr(user, 'role_name', None)
    if role == Role.DIETITIAN:
        return qs.filter(dietitian_links__dietitian=user).distinct()
    if role == Role.PATIENT:
        return qs.filter(user=user)
    if role is None:
        return qs.none()
    return qs


def scoped_by_patient(user, queryset, field: str = 'patient'):
    """Restrict any queryset with a patient foreign key to ``user``'s scope."""
    if is_admin(user):
        return queryset
    role = getattr(user, 'role_name', None)
    if role == Role.DIETITIAN:
        return queryset.filter(**{f'{field}__dietitian_links__dietitian': user}).distinct()
    if role == Role.PATIENT:
        return queryset.filter(**{f'{field}__user': user})
    if role is None:
        return queryset.none()
    return queryset


def can_access_patient(user, patient: Patient) -> bool:
    if is_admin(user):
        return True
    role = getattr(user, 'role_name', None)
    if role == Role.DIETITIAN:
        return PatientDietitian.objects.filter(patient=patient, dietitian=user).exists()
    if role == Role.PATIENT:
        return patient.user_id == user.pk
    return role is not None


def ensure_patient_access(user, patient: Patient) -> Patient:
    if not can_access_patient(user, patient):
        raise PermissionDenied('You do not have access to this patient')
    return patient
