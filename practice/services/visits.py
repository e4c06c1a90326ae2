from __future__ import annotations

import logging
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from practice.models import MeasureDefinition, Role, Visit
from practice.permissions import has_role
from practice.services import measures as measure_service
from practice.services.scope import ensure_patient_access, scoped_by_patient

logger = logging.getLogger(__name__)

User = get_user_model()

VISIT_FIELDS = (
    'visit_date', 'visit_type', 'duration_minutes', 'status', 'chief_complaint', 'assessment',
    'recommendations', 'notes', 'next_visit_date',
)


def format_visit(visit: Visit, *, detailed: bool = False) -> dict:
    data = {
        'id': visit.id,
        'patientId': visit.patient_id,
        'patientName': visit.patient.full_name,
        'dietitianId': visit.dietitian_id,
        'dietitianName': visit.dietitian.get_display_name() if visit.dietitian else None,
        'visitDate': visit.visit_date.isoformat() if visit.visit_date else None,
        'visitType': visit.visit_type,
        'durationMinutes': visit.duration_minutes,
        'status': visit.status,
        'nextVisitDate': visit.next_visit_date.isoformat() if visit.next_visit_date else None,
        'reminderSentAt': visit.reminder_sent_at.isoformat() if visit.reminder_sent_at else None,
        'createdAt': visit.created_at.isoformat() if visit.created_at else None,
    }
    if detailed:
        data.update({
            'chiefComplaint': visit.chief_complaint,
            'assessment': visit.assessment,
            'recommendations': visit.recommendations,
            'notes': visit.notes,
            'measures': [measure_service.format_measure(m)
                         for m in visit.measures.select_related('definition').order_by('definition__name')],
        })
    return data


def list_visits(user, *, patient_id=None, dietitian_id=None, status=None, start=None, end=None):
    qs = scoped_by_patient(user, Visit.objects.select_related('patient', 'dietitian'))
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if dietitian_id:
        qs = qs.filter(dietitian_id=dietitian_id)
    if status:
        qs = qs.filter(status=status)
    if start:
        qs = qs.filter(visit_date__gte=start)
    if end:
        qs = qs.filter(visit_date__lte=end)
    return qs.order_by('-visit_date', '-id')


def upcoming_visits(user, *, days: int = 7):
    now = timezone.now()
    return list_visits(user, status=Visit.SCHEDULED, start=now, end=now + timedelta(days=days)) \
        .order_by('visit_date', 'id')


def _resolve_dietitian(user, dietitian_id):
    if dietitian_id is None:
        return user if has_role(user, Role.DIETITIAN) else None
    dietitian = User.objects.select_related('role').filter(pk=dietitian_id, is_active=True).first()
    if dietitian is None or dietitian.role_name not in (Role.DIETITIAN, Role.ADMIN):
        raise ValidationError({'dietitianId': 'User is not an active dietitian'})
    return dietitian


def create_visit(user, patient, data: dict) -> Visit:
    ensure_patient_access(user, patient)
    if not patient.is_active:
        raise ValidationError({'patientId': 'Patient is inactive'})
    dietitian = _resolve_dietitian(user, data.pop('dietitian_id', None))
    visit = Visit.objects.create(
        patient=patient, dietitian=dietitian, created_by=user,
        **{k: v for k, v in data.items() if k in VISIT_FIELDS and v is not None},
    )
    logger.info('Visit %s scheduled for patient %s', visit.pk, patient.pk)
    return visit


def update_visit(user, visit: Visit, data: dict) -> dict:
    changes = {}
    if 'dietitian_id' in data:
        dietitian = _resolve_dietitian(user, data.pop('dietitian_id'))
        if dietitian and dietitian.pk != visit.dietitian_id:
            changes['dietitian_id'] = [visit.dietitian_id, dietitian.pk]
            visit.dietitian = dietitian
    for field in VISIT_FIELDS:
        if field in data and data[field] is not None and getattr(visit, field) != data[field]:
            changes[field] = [getattr(visit, field), data[field]]
            setattr(visit, field, data[field])
    if 'visit_date' in changes:
        visit.reminder_sent_at = None
    if changes:
        visit.save()
    return changes


def complete_visit(user, visit: Visit, data: dict) -> Visit:
    """Mark ``visit`` COMPLETED, optionally storing notes and measures.

    ``data['measures']`` is a list of ``{'measure_id': .., 'value': ..}``.
    """
    if visit.status == Visit.CANCELLED:
        raise ValidationError({'status': 'Cancelled visits cannot be completed'})
    measures = data.pop('measures', None) or []
    definitions = {d.pk: d for d in MeasureDefinition.objects.filter(pk__in=[m['measure_id'] for m in measures])}
    with transaction.atomic():
        for field in ('chief_complaint', 'assessment', 'recommendations', 'notes', 'next_visit_date'):
            if data.get(field) is not None:
                setattr(visit, field, data[field])
        visit.status = Visit.COMPLETED
        visit.save()
        for item in measures:
            definition = definitions.get(item['measure_id'])
            if definition is None:
                raise ValidationError({'measures': f"Unknown measure {item['measure_id']}"})
            measure_service.log_measure(
                visit.patient, definition, value=item.get('value'), user=user,
                measured_at=visit.visit_date, visit=visit,
            )
    return visit
